from fastapi import APIRouter, Cookie, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import update
from airpurifier.database import get_db
from airpurifier.models.user import User
from airpurifier.services.auth import (
    authenticate_user, decode_token, get_user_by_id, get_user_by_username,
    hash_password, issue_tokens, log_audit, role_of, verify_password,
)
from airpurifier.middleware.rbac import get_current_user
from airpurifier.schemas.auth import (
    LoginRequest, Token, PasswordChangeRequest, RefreshTokenRequest, RegisterRequest,
)
from airpurifier.schemas.user import UserResponse
from airpurifier.config import settings
from airpurifier.extensions import limiter
from datetime import datetime, timezone
import logging

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
logger = logging.getLogger(__name__)

REFRESH_COOKIE = "airpurifier_refresh"


def _set_refresh_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=token,
        httponly=True,
        secure=settings.HTTPS_ONLY,
        samesite="strict",
        max_age=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 86400,
        path="/api/auth",
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(key=REFRESH_COOKIE, path="/api/auth")


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _token_response(user: User) -> JSONResponse:
    access_token, refresh_token = issue_tokens(user)
    token = Token(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        must_change_password=bool(user.must_change_password),
        role=role_of(user),
    )
    response = JSONResponse(content=token.model_dump())
    _set_refresh_cookie(response, refresh_token)
    return response


@router.post("/login")
@limiter.limit(settings.RATE_LIMIT_LOGIN)
async def login(
    request: Request,
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    source_ip = get_client_ip(request)
    user, error = await authenticate_user(db, payload.username, payload.password)
    if not user:
        await log_audit(
            db, "login_failed", username=payload.username,
            source_ip=source_ip, success=False, details=error
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error or "Invalid credentials",
        )

    await log_audit(
        db, "login_success", user_id=user.id, username=user.username,
        source_ip=source_ip, success=True,
    )
    return _token_response(user)


@router.post("/register", status_code=201)
@limiter.limit(settings.RATE_LIMIT_LOGIN)
async def register(
    request: Request,
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    if not settings.ALLOW_SELF_REGISTRATION:
        raise HTTPException(status_code=403, detail="Self-registration is disabled")
    if await get_user_by_username(db, payload.username):
        raise HTTPException(status_code=400, detail="Username already exists")

    user = User(
        username=payload.username,
        password_hash=hash_password(payload.password),
        is_admin=False,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    await log_audit(
        db, "user_registered", user_id=user.id, username=user.username,
        resource_type="user", resource_id=str(user.id),
        source_ip=get_client_ip(request),
    )
    response = _token_response(user)
    response.status_code = 201
    return response


@router.post("/refresh")
async def refresh_token(
    payload: Optional[RefreshTokenRequest] = None,
    db: AsyncSession = Depends(get_db),
    airpurifier_refresh: Optional[str] = Cookie(default=None),
):
    raw_token = airpurifier_refresh or (payload.refresh_token if payload else None)
    if not raw_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No refresh token provided")

    token_data = decode_token(raw_token, expected_type="refresh")
    if not token_data:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    user = await get_user_by_id(db, token_data.user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found or disabled")
    return _token_response(user)


@router.post("/change-password")
async def change_password(
    request: Request,
    payload: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    # A forced change (first login) skips the current-password check
    if not current_user.must_change_password:
        if not payload.current_password:
            raise HTTPException(status_code=400, detail="Current password is required")
        if not verify_password(payload.current_password, current_user.password_hash):
            raise HTTPException(status_code=400, detail="Current password is incorrect")

    await db.execute(
        update(User)
        .where(User.id == current_user.id)
        .values(
            password_hash=hash_password(payload.new_password),
            must_change_password=False,
            updated_at=datetime.now(timezone.utc),
        )
    )
    await db.commit()

    await log_audit(
        db, "password_changed", user_id=current_user.id,
        username=current_user.username, source_ip=get_client_ip(request),
        resource_type="user", resource_id=str(current_user.id),
    )
    return {"message": "Password changed successfully"}


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/logout")
async def logout(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await log_audit(
        db, "logout", user_id=current_user.id,
        username=current_user.username,
        source_ip=get_client_ip(request),
    )
    response = JSONResponse(content={"message": "Logged out successfully"})
    _clear_refresh_cookie(response)
    return response
