import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from auth.models import LoginRequest, RegisterRequest, TokenResponse, UserResponse
from auth.utils import (
    create_token,
    get_current_user,
    hash_password,
    normalize_username,
    verify_password,
)
from config import settings
from db.database import get_db
from db.models import User
from db.user_repository import find_user_by_username
from services.rate_limit_service import RateLimiter, RateLimitRule, enforce_rate_limit, get_rate_limiter

router = APIRouter(prefix="/auth", tags=["auth"])


def _client_ip(request: Request) -> str:
    return (request.client.host if request.client else "") or "unknown"


def _set_session_cookie(response: Response, token: str, *, max_age_seconds: int) -> None:
    samesite = (settings.AUTH_COOKIE_SAMESITE or "lax").strip().lower()
    if samesite not in {"strict", "lax", "none"}:
        samesite = "lax"
    response.set_cookie(
        key=(settings.AUTH_COOKIE_NAME or "habit_session").strip() or "habit_session",
        value=token,
        httponly=bool(settings.AUTH_COOKIE_HTTPONLY),
        secure=bool(settings.AUTH_COOKIE_SECURE),
        samesite=samesite,  # type: ignore[arg-type]
        domain=settings.AUTH_COOKIE_DOMAIN,
        path=settings.AUTH_COOKIE_PATH or "/",
        max_age=max(int(max_age_seconds), 1),
    )


def _clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=(settings.AUTH_COOKIE_NAME or "habit_session").strip() or "habit_session",
        domain=settings.AUTH_COOKIE_DOMAIN,
        path=settings.AUTH_COOKIE_PATH or "/",
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(
    req: RegisterRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    normalized_username = normalize_username(req.username)
    enforce_rate_limit(
        limiter,
        rule=RateLimitRule(
            endpoint="/api/auth/register",
            limit=settings.RATE_LIMIT_AUTH_REGISTER_ATTEMPTS,
            window_seconds=settings.RATE_LIMIT_AUTH_REGISTER_WINDOW_SECONDS,
        ),
        scope_key=f"{_client_ip(request)}:{normalized_username}",
        detail="Too many registration attempts. Please try again later.",
    )
    if len(normalized_username) < 3:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username must be at least 3 characters")

    if find_user_by_username(db, normalized_username):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already taken")

    user = User(
        external_id=f"local:{uuid.uuid4().hex}",
        username=normalized_username,
        password_hash=hash_password(req.password),
        display_name=req.display_name.strip(),
        token_version=0,
    )
    db.add(user)
    db.commit()
    token = create_token(user.external_id, token_version=user.token_version)
    _set_session_cookie(response, token, max_age_seconds=max(int(settings.JWT_EXPIRY_HOURS), 1) * 3600)
    return TokenResponse(access_token=token)


@router.post("/login", response_model=TokenResponse)
def login(
    req: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    normalized_username = normalize_username(req.username)
    enforce_rate_limit(
        limiter,
        rule=RateLimitRule(
            endpoint="/api/auth/login",
            limit=settings.RATE_LIMIT_AUTH_LOGIN_ATTEMPTS,
            window_seconds=settings.RATE_LIMIT_AUTH_LOGIN_WINDOW_SECONDS,
        ),
        scope_key=f"{_client_ip(request)}:{normalized_username}",
        detail="Too many login attempts. Please try again later.",
    )
    user = find_user_by_username(db, normalized_username)
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = create_token(user.external_id, token_version=user.token_version)
    _set_session_cookie(response, token, max_age_seconds=max(int(settings.JWT_EXPIRY_HOURS), 1) * 3600)
    return TokenResponse(access_token=token)


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return user


@router.post("/logout")
def logout(response: Response):
    _clear_session_cookie(response)
    return {"status": "ok"}
