"""Persistence for refresh token rows."""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.refresh_token import RefreshToken


class TokenStore:
    """
    Reads and writes RefreshToken rows within the caller's session.

    Every state change is a single conditional UPDATE so concurrent
    revocations of the same row commute: the second one simply matches no
    rows.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert(self, token: RefreshToken) -> RefreshToken:
        self.db.add(token)
        await self.db.flush()
        return token

    async def find_by_token_id(self, token_id: str) -> Optional[RefreshToken]:
        result = await self.db.execute(
            select(RefreshToken)
            .where(RefreshToken.id == token_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_active_flag(
        self,
        token_id: str,
        active: bool,
        revoked_at: Optional[datetime] = None,
    ) -> int:
        """
        Deactivate a token.

        Only the True -> False transition exists; asking to reactivate is a
        programming error. Returns the number of rows changed (0 when the row
        was already inactive).
        """
        if active:
            raise ValueError("Refresh tokens cannot be reactivated")

        result = await self.db.execute(
            update(RefreshToken)
            .where(
                and_(
                    RefreshToken.id == token_id,
                    RefreshToken.is_active == True,  # noqa: E712
                )
            )
            .values(is_active=False, revoked_at=revoked_at)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount

    async def touch_last_used(self, token_id: str, when: datetime) -> None:
        await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_id)
            .values(last_used=when)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()

    async def bulk_expire(self, now: datetime) -> int:
        """Deactivate every active row whose expiry has passed. Returns the count."""
        result = await self.db.execute(
            update(RefreshToken)
            .where(
                and_(
                    RefreshToken.is_active == True,  # noqa: E712
                    RefreshToken.expires_at < now,
                )
            )
            .values(is_active=False, revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount

