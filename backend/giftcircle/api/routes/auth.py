import logging
from typing import TypedDict

from fastapi import APIRouter, Cookie, HTTPException, Request, Response, status
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from giftcircle.api.deps import CurrentUserDep, DbSessionDep
from giftcircle.core.audit import (
    AuditAction,
    audit_log,
    audit_login_failed,
    audit_login_success,
    audit_register,
)
from giftcircle.core.config import settings
from giftcircle.core.rate_limit import check_rate_limit
from giftcircle.core.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    get_password_hash,
    verify_password,
)
from giftcircle.models.models import User
from giftcircle.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    RegisterRequest,
    UserPublic,
    UserUpdate,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("giftcircle.auth")


class CookieOptions(TypedDict, total=False):
    samesite: str
    secure: bool


def _cookie_options() -> CookieOptions:
    """
    Return cookie options based on environment.

    Local development runs over plain HTTP on one origin (lax, not secure);
    deployed frontends talk to the API cross-origin over HTTPS (none, secure).
    """
    environment = (settings.environment or "local").lower()
    if environment == "local":
        return {"samesite": "lax", "secure": False}
    return {"samesite": "none", "secure": True}


def _set_auth_cookies(response: Response, user_id: int, *, remember_me: bool = True) -> None:
    access_max_age = settings.access_token_expire_minutes * 60 if remember_me else None
    refresh_max_age = settings.refresh_token_expire_minutes * 60 if remember_me else None
    response.set_cookie(
        "access_token",
        create_access_token(str(user_id)),
        httponly=True,
        max_age=access_max_age,
        path="/",
        **_cookie_options(),
    )
    response.set_cookie(
        "refresh_token",
        create_refresh_token(str(user_id)),
        httponly=True,
        max_age=refresh_max_age,
        path="/",
        **_cookie_options(),
    )


def _clear_auth_cookies(response: Response) -> None:
    response.delete_cookie("access_token", path="/", **_cookie_options())
    response.delete_cookie("refresh_token", path="/", **_cookie_options())


@router.post("/register", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def register_user(
    payload: RegisterRequest,
    db: DbSessionDep,
    request: Request,
    response: Response,
) -> UserPublic:
    check_rate_limit(request, window_seconds=300, key_suffix="register")

    email = payload.email.lower()
    existing = await db.execute(select(User.id).where(func.lower(User.email) == email))
    if existing.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    user = User(
        email=email,
        hashed_password=get_password_hash(payload.password),
        name=payload.name,
        birthday=payload.birthday,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    _set_auth_cookies(response, user.id, remember_me=payload.remember_me)
    audit_register(request, user.id, user.email)
    logger.info("Auth register success user_id=%s", user.id)
    return UserPublic.model_validate(user)


@router.post("/login", response_model=UserPublic)
async def login_user(
    payload: LoginRequest,
    response: Response,
    db: DbSessionDep,
    request: Request,
) -> UserPublic:
    check_rate_limit(
        request,
        max_requests=settings.rate_limit_login_requests,
        window_seconds=60,
        key_suffix="login",
    )

    request_id = request.headers.get("X-Request-Id")
    email = payload.email.lower()
    try:
        result = await db.execute(select(User).where(func.lower(User.email) == email))
        user = result.scalar_one_or_none()
    except SQLAlchemyError:
        logger.exception("Auth login db error id=%s email=%s", request_id, email)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from None

    if not user or not verify_password(payload.password, user.hashed_password):
        reason = "user_not_found" if not user else "invalid_password"
        logger.info("Auth login rejected id=%s email=%s reason=%s", request_id, email, reason)
        audit_login_failed(request, email, reason)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    _set_auth_cookies(response, user.id, remember_me=payload.remember_me)
    audit_login_success(request, user.id, user.email)
    logger.info("Auth login success id=%s user_id=%s", request_id, user.id)
    return UserPublic.model_validate(user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout_user(request: Request, response: Response) -> None:
    _clear_auth_cookies(response)
    audit_log(AuditAction.LOGOUT, request=request)


@router.post("/refresh", status_code=status.HTTP_204_NO_CONTENT)
async def refresh_session(
    response: Response,
    db: DbSessionDep,
    refresh_token: str | None = Cookie(default=None, alias="refresh_token"),
) -> None:
    if not refresh_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_refresh_token(refresh_token)
    subject = payload.get("sub") if payload else None
    try:
        user_id = int(subject) if subject is not None else None
    except (TypeError, ValueError):
        user_id = None
    if user_id is None or await db.get(User, user_id) is None:
        response.delete_cookie("refresh_token", path="/", **_cookie_options())
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    _set_auth_cookies(response, user_id)


@router.get("/me", response_model=UserPublic)
async def get_me(current_user: CurrentUserDep) -> UserPublic:
    return UserPublic.model_validate(current_user)


@router.put("/me", response_model=UserPublic)
async def update_profile(
    payload: UserUpdate,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> UserPublic:
    changes = payload.model_dump(exclude_unset=True)
    theme = changes.pop("theme", None)
    if theme is not None:
        current_user.theme = theme.value
    for key, value in changes.items():
        setattr(current_user, key, value)

    await db.commit()
    await db.refresh(current_user)
    return UserPublic.model_validate(current_user)


@router.post("/change-password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    payload: ChangePasswordRequest,
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
) -> None:
    if not verify_password(payload.old_password, current_user.hashed_password):
        audit_log(AuditAction.PASSWORD_CHANGE, request=request, user_id=current_user.id, success=False)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Incorrect old password",
        )

    current_user.hashed_password = get_password_hash(payload.new_password)
    await db.commit()
    audit_log(AuditAction.PASSWORD_CHANGE, request=request, user_id=current_user.id)
