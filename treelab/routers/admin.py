# treelab/routers/admin.py
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from treelab.config import Settings
from treelab.deps import require_admin, get_encryption, get_settings
from treelab.errors import ClientInputError, AuthorizationError, NotFoundError, ConflictError
from treelab.utils.database import get_db
from treelab.models.user import User
from treelab.services.encryption_service import EncryptionService
from treelab.services import auth_service
import logging

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger("treelab.admin")


class NewUserIn(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    is_admin: bool = False


class AdminStatusIn(BaseModel):
    is_admin: bool


class ResetPasswordIn(BaseModel):
    new_password: Optional[str] = None


class GlobalSettingsIn(BaseModel):
    allow_public_registration: bool


def _check_password(password: Optional[str]) -> str:
    if not password:
        raise ClientInputError("Password is required")
    if auth_service.password_too_long(password):
        raise ClientInputError("Password must be at most 72 bytes")
    return password


async def _load_target(db: AsyncSession, user_id: str) -> User:
    user = await auth_service.get_user_by_id(db, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


@router.get("/users")
async def list_users(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    encryption: EncryptionService = Depends(get_encryption),
):
    users = await auth_service.list_users(db)
    return [auth_service.serialize_user(u, encryption) for u in users]


@router.post("/users")
async def add_user(
    payload: NewUserIn,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    encryption: EncryptionService = Depends(get_encryption),
):
    if not payload.username:
        raise ClientInputError("Username is required")
    password = _check_password(payload.password)
    if await auth_service.get_user_by_username(db, payload.username):
        raise ConflictError("Username already taken")

    user = await auth_service.create_user(db, payload.username, password, is_admin=payload.is_admin)
    if user is None:
        raise ConflictError("Username already taken")
    logger.info(f"Admin {admin.id} created user {user.id}")
    return auth_service.serialize_user(user, encryption)


@router.patch("/users/{user_id}/admin")
async def update_admin_status(
    user_id: str,
    payload: AdminStatusIn,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    if user_id == admin.id:
        raise AuthorizationError("Admins cannot change their own status")
    user = await _load_target(db, user_id)
    user.is_admin = payload.is_admin
    db.add(user)
    await db.commit()
    logger.info(f"Admin {admin.id} set is_admin={payload.is_admin} on user {user_id}")
    return {"message": "updated"}


@router.post("/users/{user_id}/password")
async def reset_password(
    user_id: str,
    payload: ResetPasswordIn,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    password = _check_password(payload.new_password)
    user = await _load_target(db, user_id)
    await auth_service.set_password(db, user, password)
    logger.info(f"Admin {admin.id} reset the password of user {user_id}")
    return {"message": "Password reset"}


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    settings: Settings = Depends(get_settings),
):
    if user_id == admin.id:
        raise AuthorizationError("Users cannot delete themselves")
    user = await _load_target(db, user_id)
    await auth_service.delete_user(db, user, settings.users_dir)
    return {"message": "deleted"}


@router.get("/settings")
async def get_global_settings(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    settings = await auth_service.load_global_settings(db)
    return {
        "allow_public_registration": settings.allow_public_registration,
        "updated_at": str(settings.updated_at) if settings.updated_at else None,
    }


@router.put("/settings")
async def save_global_settings(
    payload: GlobalSettingsIn,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    settings = await auth_service.save_global_settings(db, payload.allow_public_registration)
    logger.info(f"Admin {admin.id} set allow_public_registration={settings.allow_public_registration}")
    return {"allow_public_registration": settings.allow_public_registration}
