# catalog_access/routers/auth.py
from fastapi import APIRouter, Depends, Query, Response

from catalog_access.core.auth import (
    Identity,
    get_identity,
    get_session_data,
    require_admin,
    require_token_auth,
)
from catalog_access.core.config import Settings
from catalog_access.core.email_client import EmailSender
from catalog_access.core.rate_limit import SlidingWindowRateLimiter
from catalog_access.core.security import DeviceContext, device_context
from catalog_access.core.sessions import SessionData, destroy_session, establish_session
from catalog_access.database import get_storage
from catalog_access.dependencies import (
    get_access_limiter,
    get_app_settings,
    get_email_sender,
    get_login_limiter,
    get_request_origin,
)
from catalog_access.models.user import User
from catalog_access.repositories.storage import Storage
from catalog_access.schemas.auth import (
    AccessCheckOut,
    AdminLoginIn,
    AdminLoginOut,
    BoundLoginResult,
    CompleteProfileIn,
    LogoutResult,
    MeOut,
    ProfileResult,
    RequestAccessIn,
    RequestAccessOut,
    ResendTokenOut,
    TokenListOut,
    TokenValidationResult,
    UserRead,
    UserSummary,
)
from catalog_access.services.auth_service import AuthService
from catalog_access.services.profile_service import ProfileService
from catalog_access.services.redemption_service import RedemptionService
from catalog_access.services.token_service import TokenService

router = APIRouter(prefix="/auth", tags=["Auth"])

redemption_service = RedemptionService()


def get_token_service(
    settings: Settings = Depends(get_app_settings),
    email_sender: EmailSender = Depends(get_email_sender),
) -> TokenService:
    return TokenService(settings, email_sender)


def get_profile_service(settings: Settings = Depends(get_app_settings)) -> ProfileService:
    return ProfileService(settings)


def get_auth_service(settings: Settings = Depends(get_app_settings)) -> AuthService:
    return AuthService(settings)


# -------- Access links --------


@router.post("/request-access", response_model=RequestAccessOut)
def request_access(
    payload: RequestAccessIn,
    device: DeviceContext = Depends(device_context),
    limiter: SlidingWindowRateLimiter = Depends(get_access_limiter),
    storage: Storage = Depends(get_storage),
    origin: str = Depends(get_request_origin),
    service: TokenService = Depends(get_token_service),
):
    """
    Mail a fresh access link to ``email``.

    Rate limited per client IP (5 requests per 15 minutes by default).
    A failed email send is reported as 500, never as success.
    """
    limiter.hit(device.ip, "Too many access requests. Please try again later.")
    return service.request_access(storage, payload.email, origin)


@router.get("/validate-token", response_model=TokenValidationResult)
def validate_token(
    response: Response,
    token: str = Query(default=""),
    device: DeviceContext = Depends(device_context),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
    current: SessionData | None = Depends(get_session_data),
):
    """
    Redeem an access link.

    First redemption binds the token to the caller's IP + fingerprint.
    Later redemptions from the same IP resume; other IPs get 403.
    Returning visitors with a completed profile are logged in directly.
    """
    redemption = redemption_service.validate_token(storage, token, device)
    if redemption.login_user_id is not None:
        establish_session(
            response,
            storage,
            settings,
            user_id=redemption.login_user_id,
            token_id=redemption.result.token_id,
            previous=current,
        )
    return redemption.result


@router.post("/complete-profile", response_model=ProfileResult)
def complete_profile(
    payload: CompleteProfileIn,
    response: Response,
    device: DeviceContext = Depends(device_context),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
    current: SessionData | None = Depends(get_session_data),
    service: ProfileService = Depends(get_profile_service),
):
    """
    Turn a redeemed link into a named user and log them in.

    The session cookie is set before responding, so the client's next
    request is already authenticated.
    """
    user = service.complete_profile(storage, payload, device)
    establish_session(
        response,
        storage,
        settings,
        user_id=user.id,
        token_id=payload.token_id,
        previous=current,
    )
    return ProfileResult(
        success=True,
        user=UserRead.model_validate(user),
        message="Profile completed successfully",
    )


# -------- Session --------


@router.get("/me", response_model=MeOut)
def read_me(
    identity: Identity = Depends(get_identity),
    storage: Storage = Depends(get_storage),
    service: AuthService = Depends(get_auth_service),
):
    """
    Return the authenticated user.

    Works from the session cookie or, failing that, from an active device
    binding (the cookie is restored on the response).
    """
    user = service.current_user(storage, identity)
    return MeOut(user=UserRead.model_validate(user), source=identity.source.value)


@router.get("/verify-access", response_model=AccessCheckOut)
def verify_access(
    identity: Identity = Depends(get_identity),
    user: User = Depends(require_token_auth),
):
    """
    Run the full device-bound check used by catalog routes.

    Non-admins must come from an active binding (user, IP, fingerprint);
    admins always pass.
    """
    return AccessCheckOut(
        success=True,
        user=UserSummary.from_user(user),
        source=identity.source.value,
    )


@router.post("/logout", response_model=LogoutResult)
def logout(
    response: Response,
    device: DeviceContext = Depends(device_context),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
    current: SessionData | None = Depends(get_session_data),
    service: AuthService = Depends(get_auth_service),
):
    """
    Soft logout.

    The device session is deactivated (not deleted) and the session cookie
    cleared. ``boundUser`` lets the client offer "log back in as <name>".
    """
    bound_user = service.logout(storage, device)
    destroy_session(response, storage, settings, current)
    return LogoutResult(success=True, bound_user=bound_user)


@router.post("/login-as-bound-device", response_model=BoundLoginResult)
def login_as_bound_device(
    response: Response,
    device: DeviceContext = Depends(device_context),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
    current: SessionData | None = Depends(get_session_data),
    service: AuthService = Depends(get_auth_service),
):
    """Reactivate this device's binding and log its user back in."""
    user, bound = service.login_bound_device(storage, device)
    establish_session(
        response,
        storage,
        settings,
        user_id=user.id,
        token_id=bound.token_id,
        previous=current,
    )
    return BoundLoginResult(success=True, user=UserSummary.from_user(user))


@router.post("/admin-login", response_model=AdminLoginOut)
def admin_login(
    payload: AdminLoginIn,
    response: Response,
    device: DeviceContext = Depends(device_context),
    limiter: SlidingWindowRateLimiter = Depends(get_login_limiter),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
    current: SessionData | None = Depends(get_session_data),
    service: AuthService = Depends(get_auth_service),
):
    """
    Password login for admins.

    Admin sessions carry no token id; admins are never device bound.
    """
    limiter.hit(device.ip, "Too many login attempts. Please try again later.")
    user = service.admin_login(storage, payload.phone, payload.password)
    establish_session(
        response,
        storage,
        settings,
        user_id=user.id,
        token_id=None,
        previous=current,
    )
    return AdminLoginOut(success=True, user=UserRead.model_validate(user))


# -------- Admin token views --------


@router.get(
    "/tokens",
    response_model=TokenListOut,
    dependencies=[Depends(require_admin)],
)
def list_tokens(
    storage: Storage = Depends(get_storage),
    service: TokenService = Depends(get_token_service),
):
    """List all access tokens with their linked users (admin only)."""
    return TokenListOut(tokens=service.list_tokens(storage))


@router.post(
    "/tokens/{token_id}/resend",
    response_model=ResendTokenOut,
    dependencies=[Depends(require_admin)],
)
def resend_token(
    token_id: int,
    storage: Storage = Depends(get_storage),
    origin: str = Depends(get_request_origin),
    service: TokenService = Depends(get_token_service),
):
    """Re-send an existing access link (admin only)."""
    return service.resend(storage, token_id, origin)
