"""Authentication routes: registration, login, refresh, logout, profile."""

import logging
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from api.dependencies import get_app_settings, get_auth_service, get_current_user, require_role
from api.errors import failure_response
from config import Settings
from middleware.rate_limit import request_client_ip
from models.auth_audit import AuthAuditLog
from models.user import ROLE_ADMIN, User
from schemas.common import ApiResponse
from schemas.user import (
    AccessTokenData,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    SessionData,
    UpdatePasswordRequest,
    UserResponse,
)
from services.audit import AuditService
from services.auth_service import AuthService, NewUser, SessionBundle
from services.errors import AuthFailure, ErrorCategory, ErrorKind

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)

REFRESH_COOKIE_NAME = "refresh_token"

# A token that failed one of these checks can never succeed again
_DEAD_TOKEN_KINDS = {
    ErrorKind.MALFORMED_TOKEN,
    ErrorKind.EXPIRED_TOKEN,
    ErrorKind.REVOKED_TOKEN,
    ErrorKind.TOKEN_NOT_FOUND,
}


def _client_info(request: Request) -> tuple[str, str]:
    return request_client_ip(request), request.headers.get("user-agent", "")


def _cookie_secure(request: Request, settings: Settings) -> bool:
    return not settings.is_dev or request.url.scheme == "https"


def _set_refresh_cookie(
    response: Response,
    request: Request,
    settings: Settings,
    refresh_token: str,
) -> None:
    response.set_cookie(
        key=REFRESH_COOKIE_NAME,
        value=refresh_token,
        httponly=True,
        secure=_cookie_secure(request, settings),
        samesite="strict",
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        path="/",
    )


def _clear_refresh_cookie(response: Response, request: Request, settings: Settings) -> None:
    response.delete_cookie(
        key=REFRESH_COOKIE_NAME,
        path="/",
        secure=_cookie_secure(request, settings),
        httponly=True,
        samesite="strict",
    )


def _should_clear_cookie(failure: AuthFailure, settings: Settings) -> bool:
    """
    Outside development every auth failure clears the cookie, so the response
    headers reveal no more than the collapsed body.
    """
    if not settings.is_dev and failure.category == ErrorCategory.AUTH:
        return True
    return failure.kind in _DEAD_TOKEN_KINDS


def _pick_refresh_token(
    body: Optional[RefreshTokenRequest], cookie_token: Optional[str]
) -> Optional[str]:
    """Body first (API clients), then the httpOnly cookie (browsers)."""
    if body is not None and body.refresh_token:
        return body.refresh_token
    return cookie_token


def _session_data(bundle: SessionBundle, settings: Settings) -> SessionData:
    return SessionData(
        access_token=bundle.access_token,
        refresh_token=bundle.refresh_token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(bundle.user),
    )


async def _audit_failure(
    auth: AuthService,
    action: str,
    failure: AuthFailure,
    ip_address: str,
    user_agent: str,
    user_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> None:
    # Nothing else is pending on a failed request, so the audit row commits alone
    await auth.db.rollback()
    await AuditService(auth.db).log(
        action=action,
        user_id=user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        success=False,
        error_kind=failure.kind.value,
        metadata=metadata,
    )
    await auth.db.commit()


@router.post(
    "/register",
    response_model=ApiResponse[SessionData],
    status_code=status.HTTP_201_CREATED,
)
async def register(
    payload: RegisterRequest,
    request: Request,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
):
    """Create an account and start a session. The refresh token is also set as a cookie."""
    ip_address, user_agent = _client_info(request)

    outcome = await auth.issue_on_register(
        NewUser(
            email=payload.email,
            first_name=payload.first_name,
            last_name=payload.last_name,
            password=payload.password,
            confirm_password=payload.confirm_password,
        ),
        ip_address,
        user_agent,
    )
    if not outcome.ok:
        return failure_response(outcome.failure, settings)

    bundle = outcome.value
    await AuditService(auth.db).log(
        action=AuthAuditLog.ACTION_REGISTER,
        user_id=bundle.user.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await auth.db.commit()

    # Only set the cookie after commit so we never hand out a rolled-back token
    _set_refresh_cookie(response, request, settings, bundle.refresh_token)
    return ApiResponse(
        message="User registered successfully",
        data=_session_data(bundle, settings),
    )


@router.post("/login", response_model=ApiResponse[SessionData])
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
):
    ip_address, user_agent = _client_info(request)

    outcome = await auth.issue_on_login(payload.email, payload.password, ip_address, user_agent)
    if not outcome.ok:
        await _audit_failure(
            auth,
            AuthAuditLog.ACTION_FAILED_LOGIN,
            outcome.failure,
            ip_address,
            user_agent,
            metadata={"email": payload.email},
        )
        return failure_response(outcome.failure, settings)

    bundle = outcome.value
    await AuditService(auth.db).log(
        action=AuthAuditLog.ACTION_LOGIN,
        user_id=bundle.user.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await auth.db.commit()

    _set_refresh_cookie(response, request, settings, bundle.refresh_token)
    return ApiResponse(message="Login successful", data=_session_data(bundle, settings))


@router.post("/refresh", response_model=ApiResponse[AccessTokenData])
async def refresh(
    request: Request,
    body: Optional[RefreshTokenRequest] = None,
    refresh_token_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE_NAME),
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
):
    """
    Mint a new access token from a refresh token.

    The refresh token itself is not replaced and stays valid until it
    expires or is revoked.
    """
    ip_address, user_agent = _client_info(request)
    raw_token = _pick_refresh_token(body, refresh_token_cookie)

    outcome = await auth.refresh(raw_token, ip_address, user_agent)
    if not outcome.ok:
        await _audit_failure(
            auth, AuthAuditLog.ACTION_TOKEN_REFRESH, outcome.failure, ip_address, user_agent
        )
        error_response = failure_response(outcome.failure, settings)
        if _should_clear_cookie(outcome.failure, settings):
            _clear_refresh_cookie(error_response, request, settings)
        return error_response

    await AuditService(auth.db).log(
        action=AuthAuditLog.ACTION_TOKEN_REFRESH,
        user_id=outcome.value.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await auth.db.commit()

    return ApiResponse(
        message="Token refreshed successfully",
        data=AccessTokenData(
            access_token=outcome.value.access_token,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        ),
    )


@router.post("/logout", response_model=ApiResponse[None])
async def logout(
    request: Request,
    body: Optional[RefreshTokenRequest] = None,
    refresh_token_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE_NAME),
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
):
    """Revoke the presented refresh token and clear the cookie."""
    ip_address, user_agent = _client_info(request)
    raw_token = _pick_refresh_token(body, refresh_token_cookie)

    outcome = await auth.logout(raw_token, ip_address, user_agent)
    if not outcome.ok:
        await _audit_failure(
            auth, AuthAuditLog.ACTION_LOGOUT, outcome.failure, ip_address, user_agent
        )
        error_response = failure_response(outcome.failure, settings)
        if _should_clear_cookie(outcome.failure, settings):
            _clear_refresh_cookie(error_response, request, settings)
        return error_response

    await AuditService(auth.db).log(
        action=AuthAuditLog.ACTION_LOGOUT,
        user_id=outcome.value.record.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await auth.db.commit()

    response = JSONResponse(content={"success": True, "message": "Logged out successfully", "data": None})
    _clear_refresh_cookie(response, request, settings)
    return response


@router.get("/profile", response_model=ApiResponse[UserResponse])
async def profile(
    current_user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
):
    outcome = await auth.fetch_user_info(current_user.id)
    if not outcome.ok:
        return failure_response(outcome.failure, settings)
    return ApiResponse(
        message="User info retrieved successfully",
        data=UserResponse.model_validate(outcome.value),
    )


@router.post("/update-password", response_model=ApiResponse[UserResponse])
async def update_password(
    payload: UpdatePasswordRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
):
    ip_address, user_agent = _client_info(request)

    outcome = await auth.update_password(
        current_user.id, payload.password, payload.confirm_password
    )
    if not outcome.ok:
        return failure_response(outcome.failure, settings)

    await AuditService(auth.db).log(
        action=AuthAuditLog.ACTION_PASSWORD_CHANGE,
        user_id=current_user.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await auth.db.commit()

    return ApiResponse(
        message="Password updated successfully",
        data=UserResponse.model_validate(outcome.value),
    )


@router.get("/admin", response_model=ApiResponse[UserResponse])
async def admin(current_user: User = Depends(require_role(ROLE_ADMIN))):
    return ApiResponse(
        message="Admin access granted",
        data=UserResponse.model_validate(current_user),
    )
