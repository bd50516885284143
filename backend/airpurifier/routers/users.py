from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from typing import List
from airpurifier.database import get_db
from airpurifier.models.user import User, AuditLog
from airpurifier.services.auth import hash_password, log_audit, get_user_by_username
from airpurifier.middleware.rbac import get_current_user, require_admin
from airpurifier.schemas.user import UserCreate, UserUpdate, UserResponse, ProfileUpdate, AuditLogResponse

router = APIRouter(prefix="/api/users", tags=["User Management"])


def _source_ip(request: Request):
    return request.client.host if request.client else None


@router.get("/", response_model=List[UserResponse], dependencies=[Depends(require_admin())])
async def list_users(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()).limit(limit).offset(offset))
    return result.scalars().all()


@router.post("/", response_model=UserResponse, status_code=201)
async def create_user(
    request: Request,
    payload: UserCreate,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    # A soft-deleted user with the same name is reactivated with the new details
    existing_user = await get_user_by_username(db, payload.username)
    if existing_user:
        if existing_user.is_active:
            raise HTTPException(status_code=400, detail="Username already exists")
        existing_user.password_hash = hash_password(payload.password)
        existing_user.is_admin = payload.is_admin
        existing_user.is_active = True
        existing_user.must_change_password = payload.must_change_password
        new_user = existing_user
    else:
        new_user = User(
            username=payload.username,
            password_hash=hash_password(payload.password),
            is_admin=payload.is_admin,
            is_active=payload.is_active,
            must_change_password=payload.must_change_password,
        )
        db.add(new_user)
    await db.commit()
    await db.refresh(new_user)

    await log_audit(
        db, "user_created",
        user_id=current_user.id, username=current_user.username,
        resource_type="user", resource_id=str(new_user.id),
        details=f"Created user: {new_user.username} (admin={new_user.is_admin})",
        source_ip=_source_ip(request),
    )
    return new_user


@router.get("/me/profile", response_model=UserResponse)
async def get_profile(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/me/profile", response_model=UserResponse)
async def update_profile(
    request: Request,
    payload: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if payload.username and payload.username != current_user.username:
        if await get_user_by_username(db, payload.username):
            raise HTTPException(status_code=400, detail="Username already exists")
        current_user.username = payload.username
        await db.commit()
        await db.refresh(current_user)
        await log_audit(
            db, "profile_updated",
            user_id=current_user.id, username=current_user.username,
            resource_type="user", resource_id=str(current_user.id),
            source_ip=_source_ip(request),
        )
    return current_user


@router.get("/audit/logs", response_model=List[AuditLogResponse], dependencies=[Depends(require_admin())])
async def get_audit_logs(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(AuditLog)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return result.scalars().all()


@router.get("/{user_id}", response_model=UserResponse, dependencies=[Depends(require_admin())])
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    request: Request,
    user_id: int,
    payload: UserUpdate,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    update_data = payload.model_dump(exclude_unset=True, exclude_none=True)
    if user_id == current_user.id and (
        update_data.get("is_admin") is False or update_data.get("is_active") is False
    ):
        raise HTTPException(status_code=400, detail="Cannot remove your own admin rights or deactivate yourself")
    if "username" in update_data and update_data["username"] != user.username:
        if await get_user_by_username(db, update_data["username"]):
            raise HTTPException(status_code=400, detail="Username already exists")
    if "password" in update_data:
        update_data["password_hash"] = hash_password(update_data.pop("password"))

    if update_data:
        await db.execute(
            update(User).where(User.id == user_id).values(**update_data)
        )
        await db.commit()
        await db.refresh(user)

    await log_audit(
        db, "user_updated",
        user_id=current_user.id, username=current_user.username,
        resource_type="user", resource_id=str(user_id),
        details=f"Updated fields: {sorted(k if k != 'password_hash' else 'password' for k in update_data)}",
        source_ip=_source_ip(request),
    )
    return user


@router.delete("/{user_id}")
async def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    # Soft delete
    await db.execute(update(User).where(User.id == user_id).values(is_active=False))
    await db.commit()

    await log_audit(
        db, "user_deleted",
        user_id=current_user.id, username=current_user.username,
        resource_type="user", resource_id=str(user_id),
        details=f"Deactivated user: {user.username}",
        source_ip=_source_ip(request),
    )
    return {"message": "User deactivated"}
