from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from airpurifier.database import get_db
from airpurifier.models.device import Device
from airpurifier.models.user import User
from airpurifier.services import store
from airpurifier.services.auth import decode_token, get_user_by_id

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data = decode_token(credentials.credentials)
    if not token_data or not token_data.user_id:
        raise credentials_exception

    user = await get_user_by_id(db, token_data.user_id)
    if not user:
        raise credentials_exception
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled",
        )
    return user


def require_admin():
    """Dependency factory: requires an active admin."""
    async def admin_checker(current_user: User = Depends(get_current_user)) -> User:
        if not current_user.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Admin access required",
            )
        return current_user
    return admin_checker


async def get_device_for_user(
    db: AsyncSession, device_id: str, user: User, write: bool = False
) -> Device:
    """Load a device the user may see. Writes need ownership or admin;
    reads also accept a share."""
    device = await store.get_device(db, device_id)
    if not device:
        raise HTTPException(status_code=404, detail="Device not found")
    if user.is_admin or device.owner_id == user.id:
        return device
    if not write and await store.get_share(db, device_id, user.id):
        return device
    raise HTTPException(status_code=403, detail="Access denied to this device")
