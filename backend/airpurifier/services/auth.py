import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from airpurifier.config import settings
from airpurifier.models.user import User, AuditLog
from airpurifier.schemas.auth import TokenData

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

DEFAULT_ADMIN_USERNAME = "admin"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def role_of(user: User) -> str:
    return "admin" if user.is_admin else "user"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_refresh_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)
    to_encode.update({"exp": expire, "type": "refresh"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def issue_tokens(user: User) -> Tuple[str, str]:
    claims = {"sub": str(user.id), "username": user.username}
    access = create_access_token(dict(claims, role=role_of(user)))
    return access, create_refresh_token(claims)


def decode_token(token: str, expected_type: str = "access") -> Optional[TokenData]:
    """Decode and check the token type. Returns None for anything invalid."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if user_id is None or payload.get("type") != expected_type:
        return None
    return TokenData(user_id=int(user_id), username=payload.get("username"), role=payload.get("role"))


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    result = await db.execute(
        select(User).where(User.username == username.lower())
    )
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def authenticate_user(
    db: AsyncSession, username: str, password: str
) -> Tuple[Optional[User], str]:
    """Returns (user, error_message). error_message is empty on success."""
    user = await get_user_by_username(db, username)

    if not user or not verify_password(password, user.password_hash):
        return None, "Invalid credentials"

    if not user.is_active:
        return None, "Account is disabled"

    await db.execute(
        update(User)
        .where(User.id == user.id)
        .values(last_login=datetime.now(timezone.utc))
    )
    await db.commit()
    await db.refresh(user)
    return user, ""


async def log_audit(
    db: AsyncSession,
    action: str,
    user_id: Optional[int] = None,
    username: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    details: Optional[str] = None,
    source_ip: Optional[str] = None,
    success: bool = True,
):
    audit = AuditLog(
        user_id=user_id,
        username=username,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        source_ip=source_ip,
        success=success,
    )
    db.add(audit)
    await db.commit()


async def create_default_admin(db: AsyncSession) -> Optional[str]:
    """Create the first admin when the users table is empty.

    Returns the generated password, or None when users already exist.
    """
    count = await db.execute(select(func.count(User.id)))
    if count.scalar_one():
        return None

    temp_password = secrets.token_urlsafe(16)
    db.add(User(
        username=DEFAULT_ADMIN_USERNAME,
        password_hash=hash_password(temp_password),
        is_admin=True,
        is_active=True,
        must_change_password=True,
    ))
    await db.commit()
    logger.warning("=" * 60)
    logger.warning("  DEFAULT ADMIN CREDENTIALS (first run only)")
    logger.warning("  Username: %s", DEFAULT_ADMIN_USERNAME)
    logger.warning("  Password: %s", temp_password)
    logger.warning("  You MUST change this password on first login.")
    logger.warning("=" * 60)
    return temp_password
