"""Session lifecycle facade used by the HTTP layer and the CLI."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings
from models.user import User
from services.clock import Clock
from services.credential_store import CredentialStore
from services.errors import ErrorKind, Outcome
from services.security import SecretHasher
from services.token_issuer import ACCESS_TOKEN_TYPE, TokenIssuer
from services.token_store import TokenStore
from services.token_validator import RenewedAccess, TokenValidator, ValidatedToken

logger = logging.getLogger(__name__)


@dataclass
class NewUser:
    email: str
    first_name: str
    last_name: str
    password: str
    confirm_password: str


@dataclass
class SessionBundle:
    access_token: str
    refresh_token: str
    refresh_token_expires_at: datetime
    user: User


@dataclass
class Hashers:
    """Password and refresh-token hashers; they differ only in work factor."""
    password: SecretHasher
    token: SecretHasher

    @classmethod
    def from_settings(cls, settings: Settings) -> "Hashers":
        return cls(
            password=SecretHasher(
                time_cost=settings.PASSWORD_HASH_TIME_COST,
                memory_cost=settings.HASH_MEMORY_COST_KIB,
                parallelism=settings.HASH_PARALLELISM,
            ),
            token=SecretHasher(
                time_cost=settings.REFRESH_TOKEN_HASH_TIME_COST,
                memory_cost=settings.HASH_MEMORY_COST_KIB,
                parallelism=settings.HASH_PARALLELISM,
            ),
        )


class AuthService:
    """
    Wires the credential store, token store, issuer and validator together
    for one unit of work (one AsyncSession).

    Nothing here commits; the caller owns the transaction.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        hashers: Hashers,
        clock: Clock,
    ):
        self.db = db
        self.settings = settings
        self.hashers = hashers
        self.clock = clock
        self.credentials = CredentialStore(db)
        self.tokens = TokenStore(db)
        self.issuer = TokenIssuer(settings, self.tokens, hashers.token, clock)
        self.validator = TokenValidator(
            settings,
            self.tokens,
            self.credentials,
            self.issuer,
            hashers.token,
            clock,
        )

    async def _issue_session(
        self, user: User, ip: str, user_agent: Optional[str]
    ) -> Outcome[SessionBundle]:
        access = self.issuer.issue_access_token(
            {"user_id": user.id, "email": user.email, "role": user.role}
        )
        if not access.ok:
            return Outcome(failure=access.failure)

        refresh = await self.issuer.issue_refresh_token(user.id, ip, user_agent)
        if not refresh.ok:
            return Outcome(failure=refresh.failure)

        return Outcome.success(
            SessionBundle(
                access_token=access.value,
                refresh_token=refresh.value.token,
                refresh_token_expires_at=refresh.value.expires_at,
                user=user,
            )
        )

    async def issue_on_register(
        self,
        new_user: NewUser,
        ip: str,
        user_agent: Optional[str],
    ) -> Outcome[SessionBundle]:
        if new_user.password != new_user.confirm_password:
            return Outcome.fail(ErrorKind.PASSWORD_MISMATCH)

        if await self.credentials.get_by_email(new_user.email) is not None:
            logger.info("Registration rejected: email already exists")
            return Outcome.fail(ErrorKind.DUPLICATE_REGISTRATION)

        password_hash = await self.hashers.password.hash_async(new_user.password)
        created = await self.credentials.create(
            email=new_user.email,
            password_hash=password_hash,
            first_name=new_user.first_name,
            last_name=new_user.last_name,
            role=self.settings.DEFAULT_USER_ROLE,
        )
        if not created.ok:
            return Outcome(failure=created.failure)

        logger.info("User registered: %s", created.value.id)
        return await self._issue_session(created.value, ip, user_agent)

    async def issue_on_login(
        self,
        email: str,
        password: str,
        ip: str,
        user_agent: Optional[str],
    ) -> Outcome[SessionBundle]:
        user = await self.credentials.get_by_email(email)
        # Unknown email and wrong password are indistinguishable to the caller
        if user is None or not await self.hashers.password.verify_async(
            user.password_hash, password
        ):
            logger.info("Login failed for %s", email)
            return Outcome.fail(ErrorKind.INVALID_CREDENTIALS)

        if self.hashers.password.needs_rehash(user.password_hash):
            await self.credentials.update_password(
                user.id, await self.hashers.password.hash_async(password)
            )

        return await self._issue_session(user, ip, user_agent)

    async def refresh(
        self,
        raw_token: Optional[str],
        ip: str,
        user_agent: Optional[str],
    ) -> Outcome[RenewedAccess]:
        return await self.validator.refresh(raw_token, ip, user_agent)

    async def logout(
        self,
        raw_token: Optional[str],
        ip: str,
        user_agent: Optional[str],
    ) -> Outcome[ValidatedToken]:
        return await self.validator.logout(raw_token, ip, user_agent)

    async def fetch_user_info(self, user_id: str) -> Outcome[User]:
        user = await self.credentials.get_by_id(user_id)
        if user is None:
            return Outcome.fail(ErrorKind.USER_NOT_FOUND)
        return Outcome.success(user)

    async def update_password(
        self,
        user_id: str,
        password: str,
        confirm_password: str,
    ) -> Outcome[User]:
        if password != confirm_password:
            return Outcome.fail(ErrorKind.PASSWORD_MISMATCH)

        password_hash = await self.hashers.password.hash_async(password)
        if not await self.credentials.update_password(user_id, password_hash):
            return Outcome.fail(ErrorKind.USER_NOT_FOUND)

        logger.info("Password updated for user %s", user_id)
        return await self.fetch_user_info(user_id)

    async def authenticate_access_token(self, token: Optional[str]) -> Outcome[User]:
        """
        Resolve a bearer access token to the live user.

        The token is rejected when the user no longer exists or when its
        email or role claims no longer match the stored user.
        """
        if not token or not token.strip():
            return Outcome.fail(ErrorKind.EMPTY_TOKEN, "Access token is required")

        try:
            claims = jwt.decode(
                token.strip(),
                self.settings.JWT_ACCESS_TOKEN_SECRET,
                algorithms=[self.settings.ALGORITHM],
                audience=self.settings.JWT_AUDIENCE,
                issuer=self.settings.JWT_ISSUER,
                options={"verify_exp": False},
            )
        except JWTError:
            return Outcome.fail(ErrorKind.MALFORMED_TOKEN, "Invalid access token")

        if claims.get("type") != ACCESS_TOKEN_TYPE or not claims.get("user_id"):
            return Outcome.fail(ErrorKind.MALFORMED_TOKEN, "Invalid access token")

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or self.clock.now().timestamp() >= exp:
            return Outcome.fail(ErrorKind.EXPIRED_TOKEN, "Access token has expired")

        user = await self.credentials.get_by_id(claims["user_id"])
        if user is None:
            return Outcome.fail(ErrorKind.USER_NOT_FOUND)

        if user.email != claims.get("email") or user.role != claims.get("role"):
            logger.warning("Access token claims are stale for user %s", user.id)
            return Outcome.fail(ErrorKind.AUTHENTICATION_ERROR, "Access token is no longer valid")

        return Outcome.success(user)
