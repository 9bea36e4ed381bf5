# src/routers/auth_router.py
from fastapi import APIRouter, Depends, HTTPException, status
import structlog
from jose import JWTError

from ..dependencies.auth import get_auth_service, get_current_user, oauth2_scheme
from ..UAA.errors import (
    AccountNotActivatedError,
    AlreadyEnabledError,
    AuthenticationError,
    AuthError,
    ConflictError,
    RateLimitedError,
    SetupNotFoundError,
    ValidationError,
)
from ..UAA.schemas import (
    LoginResponse,
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    RegisterResponse,
    TokenIn,
    TwoFactorEnable,
    TwoFactorSetupResponse,
    UserCreate,
    UserLogin,
    UserRead,
)
from ..UAA.services import AuthService, RequiresTwoFactor
from ..UAA import utils

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def _http_error(e: AuthError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    if isinstance(e, (ConflictError, AlreadyEnabledError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    if isinstance(e, RateLimitedError):
        headers = {"Retry-After": str(e.retry_after)} if e.retry_after else None
        return HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=e.message, headers=headers)
    if isinstance(e, AuthenticationError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)
    if isinstance(e, AccountNotActivatedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
    if isinstance(e, SetupNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(user_in: UserCreate, svc: AuthService = Depends(get_auth_service)):
    try:
        result = await svc.register(user_in.username, user_in.email, user_in.password, user_in.display_name)
    except AuthError as e:
        logger.info("register_failed", error=e.message, email=user_in.email)
        raise _http_error(e)
    return {
        "user": UserRead.model_validate(result.user, from_attributes=True),
        "message": result.message,
        "access_token": result.access_token,
        "token_type": "bearer" if result.access_token else None,
    }


@router.post("/login", response_model=LoginResponse)
async def login(form_data: UserLogin, svc: AuthService = Depends(get_auth_service)):
    """
    Expects JSON: {"email": "...", "password": "..."}. When the account has
    two-factor enabled, the first call answers with a challenge token; repeat
    the call with "challenge_token" and either "code" or "backup_code".
    """
    try:
        result = await svc.login(
            form_data.email,
            form_data.password,
            challenge_token=form_data.challenge_token,
            code=form_data.code,
            backup_code=form_data.backup_code,
        )
    except AuthError as e:
        # Do not reveal whether email exists
        logger.warning("login_failed", reason=e.__class__.__name__, email=form_data.email)
        raise _http_error(e)

    if isinstance(result, RequiresTwoFactor):
        return {"message": result.message, "requires_two_factor": True, "challenge_token": result.challenge_token}
    return {
        "message": result.message,
        "access_token": result.access_token,
        "token_type": "bearer",
        "expires_in": svc.settings.access_token_ttl,
        "expires_at": result.expires_at,
        "two_factor_required": result.two_factor_required_by_policy,
        "user": UserRead.model_validate(result.user, from_attributes=True),
    }


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(body: TokenIn, svc: AuthService = Depends(get_auth_service)):
    try:
        return {"message": await svc.verify_email(body.token)}
    except AuthError as e:
        raise _http_error(e)


@router.post("/password-reset/request", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
async def request_password_reset(body: PasswordResetRequest, svc: AuthService = Depends(get_auth_service)):
    try:
        return {"message": await svc.request_password_reset(body.email)}
    except AuthError as e:
        raise _http_error(e)


@router.post("/password-reset/confirm", response_model=MessageResponse)
async def reset_password(body: PasswordResetConfirm, svc: AuthService = Depends(get_auth_service)):
    try:
        return {"message": await svc.reset_password(body.token, body.new_password)}
    except AuthError as e:
        raise _http_error(e)


@router.post("/2fa/setup", response_model=TwoFactorSetupResponse)
async def setup_two_factor(current_user=Depends(get_current_user), svc: AuthService = Depends(get_auth_service)):
    try:
        setup = await svc.setup_two_factor(current_user.id)
    except AuthError as e:
        raise _http_error(e)
    return {
        "secret": setup.secret,
        "provisioning_uri": setup.provisioning_uri,
        "backup_codes": setup.backup_codes,
        "message": setup.message,
    }


@router.post("/2fa/enable", response_model=MessageResponse)
async def enable_two_factor(body: TwoFactorEnable, current_user=Depends(get_current_user), svc: AuthService = Depends(get_auth_service)):
    try:
        return {"message": await svc.enable_two_factor(current_user.id, body.code)}
    except AuthError as e:
        raise _http_error(e)


@router.post("/logout", response_model=MessageResponse)
async def logout(token: str = Depends(oauth2_scheme), svc: AuthService = Depends(get_auth_service)):
    try:
        payload = utils.decode_access_token(token, svc.settings)
    except JWTError:
        payload = None
    if payload and payload.get("sid"):
        try:
            await svc.logout(payload["sid"])
        except AuthError as e:
            raise _http_error(e)
    return {"message": "Logged out"}
