"""
Refresh token validation and the refresh/logout transitions.

A presented refresh token goes through these checks, stopping at the first
failure:

    1. present                        -> EMPTY_TOKEN
    2. signature, shape, claim expiry -> MALFORMED_TOKEN / EXPIRED_TOKEN
    3. row exists for the token id    -> TOKEN_NOT_FOUND
    4. row is active                  -> REVOKED_TOKEN
    5. row expiry not reached         -> EXPIRED_TOKEN
    6. same IP prefix and User-Agent  -> DEVICE_MISMATCH
    7. token matches the stored hash  -> AUTHENTICATION_ERROR

Refresh does not consume the token: it stays valid until it expires or is
revoked, and concurrent refreshes of the same token all succeed.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from jose import JWTError, jwt

from config import Settings
from models.refresh_token import RefreshToken
from services.clock import Clock, ensure_utc
from services.credential_store import CredentialStore
from services.errors import ErrorKind, Outcome
from services.security import SecretHasher, truncate_ip
from services.token_issuer import REFRESH_TOKEN_TYPE, TokenIssuer
from services.token_store import TokenStore

logger = logging.getLogger(__name__)


@dataclass
class ValidatedToken:
    record: RefreshToken
    claims: dict


@dataclass
class RenewedAccess:
    access_token: str
    user_id: str


class TokenValidator:
    def __init__(
        self,
        settings: Settings,
        token_store: TokenStore,
        credential_store: CredentialStore,
        issuer: TokenIssuer,
        hasher: SecretHasher,
        clock: Clock,
    ):
        self.settings = settings
        self.token_store = token_store
        self.credential_store = credential_store
        self.issuer = issuer
        self.hasher = hasher
        self.clock = clock

    def _fail(self, kind: ErrorKind, token_id: Optional[str] = None) -> Outcome:
        logger.warning("Refresh token rejected: %s (token_id=%s)", kind.value, token_id)
        return Outcome.fail(kind)

    def _decode(self, raw_token: str) -> Outcome[dict]:
        if not self.settings.JWT_REFRESH_TOKEN_SECRET:
            logger.error("Refresh token secret is not configured")
            return Outcome.fail(ErrorKind.CONFIGURATION_ERROR)

        # Expiry is checked below against the injected clock, not wall time
        try:
            claims = jwt.decode(
                raw_token,
                self.settings.JWT_REFRESH_TOKEN_SECRET,
                algorithms=[self.settings.ALGORITHM],
                audience=self.settings.JWT_AUDIENCE,
                issuer=self.settings.JWT_ISSUER,
                options={"verify_exp": False},
            )
        except JWTError:
            return self._fail(ErrorKind.MALFORMED_TOKEN)

        if (
            claims.get("type") != REFRESH_TOKEN_TYPE
            or not claims.get("token_id")
            or not claims.get("user_id")
            or not isinstance(claims.get("exp"), (int, float))
        ):
            return self._fail(ErrorKind.MALFORMED_TOKEN)

        if self.clock.now().timestamp() >= claims["exp"]:
            return self._fail(ErrorKind.EXPIRED_TOKEN, claims["token_id"])

        return Outcome.success(claims)

    async def validate(
        self,
        raw_token: Optional[str],
        ip: str,
        user_agent: Optional[str],
    ) -> Outcome[ValidatedToken]:
        if not raw_token or not raw_token.strip():
            return self._fail(ErrorKind.EMPTY_TOKEN)
        raw_token = raw_token.strip()

        decoded = self._decode(raw_token)
        if not decoded.ok:
            return Outcome(failure=decoded.failure)
        claims = decoded.value
        token_id = claims["token_id"]

        record = await self.token_store.find_by_token_id(token_id)
        if record is None:
            return self._fail(ErrorKind.TOKEN_NOT_FOUND, token_id)

        if not record.is_active:
            return self._fail(ErrorKind.REVOKED_TOKEN, token_id)

        if ensure_utc(record.expires_at) <= self.clock.now():
            return self._fail(ErrorKind.EXPIRED_TOKEN, token_id)

        if (
            record.ip_fragment != truncate_ip(ip or "")
            or record.user_agent != (user_agent or "")
        ):
            return self._fail(ErrorKind.DEVICE_MISMATCH, token_id)

        if not await self.hasher.verify_async(record.token_hash, raw_token):
            return self._fail(ErrorKind.AUTHENTICATION_ERROR, token_id)

        return Outcome.success(ValidatedToken(record=record, claims=claims))

    async def refresh(
        self,
        raw_token: Optional[str],
        ip: str,
        user_agent: Optional[str],
    ) -> Outcome[RenewedAccess]:
        """Validate the refresh token and mint a new access token from the live user."""
        validated = await self.validate(raw_token, ip, user_agent)
        if not validated.ok:
            return Outcome(failure=validated.failure)
        record = validated.value.record

        user = await self.credential_store.get_by_id(record.user_id)
        if user is None:
            return self._fail(ErrorKind.USER_NOT_FOUND, record.id)

        access = self.issuer.issue_access_token(
            {"user_id": user.id, "email": user.email, "role": user.role}
        )
        if not access.ok:
            return Outcome(failure=access.failure)

        await self.token_store.touch_last_used(record.id, self.clock.now())
        logger.info("Access token renewed for user %s (token_id=%s)", user.id, record.id)
        return Outcome.success(RenewedAccess(access_token=access.value, user_id=user.id))

    async def logout(
        self,
        raw_token: Optional[str],
        ip: str,
        user_agent: Optional[str],
    ) -> Outcome[ValidatedToken]:
        """Validate the refresh token and deactivate it."""
        validated = await self.validate(raw_token, ip, user_agent)
        if not validated.ok:
            return validated
        record = validated.value.record

        changed = await self.token_store.update_active_flag(
            record.id, active=False, revoked_at=self.clock.now()
        )
        if not changed:
            # Revoked concurrently; the outcome is the same
            logger.info("Refresh token %s was already revoked", record.id)
        else:
            logger.info("Refresh token %s revoked for user %s", record.id, record.user_id)
        return validated
