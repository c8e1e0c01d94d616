"""Minting of access and refresh tokens."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from jose import jwt

from config import Settings
from models.refresh_token import RefreshToken
from services.clock import Clock
from services.errors import ErrorKind, Outcome
from services.security import SecretHasher, truncate_ip
from services.token_store import TokenStore

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

_ACCESS_PAYLOAD_FIELDS = ("user_id", "email", "role")


@dataclass
class IssuedRefreshToken:
    """The raw token is only ever available here, right after issuance."""
    token: str
    token_id: str
    expires_at: datetime


class TokenIssuer:
    """
    Signs access tokens and issues persisted refresh tokens.

    Access and refresh tokens are signed with different secrets, so one kind
    can never be presented as the other.
    """

    def __init__(
        self,
        settings: Settings,
        token_store: TokenStore,
        hasher: SecretHasher,
        clock: Clock,
    ):
        self.settings = settings
        self.token_store = token_store
        self.hasher = hasher
        self.clock = clock

    def issue_access_token(self, payload: dict) -> Outcome[str]:
        """
        Sign ``{user_id, email, role}`` with the access secret.

        Fails with CONFIGURATION_ERROR when the secret is unset or the payload
        is missing a field.
        """
        if not self.settings.JWT_ACCESS_TOKEN_SECRET:
            logger.error("Access token secret is not configured")
            return Outcome.fail(ErrorKind.CONFIGURATION_ERROR)

        missing = [name for name in _ACCESS_PAYLOAD_FIELDS if not payload.get(name)]
        if missing:
            logger.error("Access token payload incomplete, missing: %s", ", ".join(missing))
            return Outcome.fail(
                ErrorKind.CONFIGURATION_ERROR,
                f"Access token payload is missing {', '.join(missing)}",
            )

        now = self.clock.now()
        expire = now + timedelta(minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        to_encode = {
            "user_id": str(payload["user_id"]),
            "email": payload["email"],
            "role": payload["role"],
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
            "iss": self.settings.JWT_ISSUER,
            "aud": self.settings.JWT_AUDIENCE,
            "type": ACCESS_TOKEN_TYPE,
        }
        return Outcome.success(
            jwt.encode(
                to_encode,
                self.settings.JWT_ACCESS_TOKEN_SECRET,
                algorithm=self.settings.ALGORITHM,
            )
        )

    async def issue_refresh_token(
        self,
        user_id: str,
        ip: str,
        user_agent: Optional[str],
    ) -> Outcome[IssuedRefreshToken]:
        """
        Sign a refresh token, persist its hash with the device fingerprint,
        and return the raw token.
        """
        if not self.settings.JWT_REFRESH_TOKEN_SECRET:
            logger.error("Refresh token secret is not configured")
            return Outcome.fail(ErrorKind.CONFIGURATION_ERROR)

        token_id = str(uuid4())
        now = self.clock.now()
        expire = now + timedelta(days=self.settings.REFRESH_TOKEN_EXPIRE_DAYS)
        to_encode = {
            "token_id": token_id,
            "user_id": str(user_id),
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
            "iss": self.settings.JWT_ISSUER,
            "aud": self.settings.JWT_AUDIENCE,
            "type": REFRESH_TOKEN_TYPE,
        }
        raw_token = jwt.encode(
            to_encode,
            self.settings.JWT_REFRESH_TOKEN_SECRET,
            algorithm=self.settings.ALGORITHM,
        )

        token_hash = await self.hasher.hash_async(raw_token)
        await self.token_store.insert(
            RefreshToken(
                id=token_id,
                user_id=str(user_id),
                token_hash=token_hash,
                ip_fragment=truncate_ip(ip or ""),
                user_agent=user_agent or "",
                expires_at=expire,
                is_active=True,
            )
        )
        logger.debug("Issued refresh token %s for user %s", token_id, user_id)

        return Outcome.success(
            IssuedRefreshToken(token=raw_token, token_id=token_id, expires_at=expire)
        )
