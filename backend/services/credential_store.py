"""Persistence for user credentials."""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.user import User
from services.errors import ErrorKind, Outcome

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class CredentialStore:
    """Reads and writes User rows within the caller's session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User)
            .where(User.email == normalize_email(email))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        role: str,
    ) -> Outcome[User]:
        """
        Insert a new user.

        The unique constraint on ``email`` is the final arbiter: a concurrent
        registration that slipped past the caller's pre-check surfaces here as
        an IntegrityError and is reported as DUPLICATE_REGISTRATION. The unit
        of work is rolled back, so callers must create the user before making
        any other change in the same session.
        """
        user = User(
            email=normalize_email(email),
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            role=role,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            logger.info("Registration rejected: email already exists")
            return Outcome.fail(ErrorKind.DUPLICATE_REGISTRATION)
        # Load server-side defaults (created_at) while we are still in async context
        await self.db.refresh(user)
        return Outcome.success(user)

    async def update_password(self, user_id: str, password_hash: str) -> bool:
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(password_hash=password_hash)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount == 1
