# treelab/routers/profile.py
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from treelab.deps import get_current_user, get_encryption
from treelab.utils.database import get_db
from treelab.models.user import User
from treelab.services.auth_service import serialize_user, encrypt_git_settings, load_global_settings
from treelab.services.encryption_service import EncryptionService
import logging

router = APIRouter(prefix="/api", tags=["profile"])
logger = logging.getLogger("treelab.profile")


class GitSettingsIn(BaseModel):
    secret_token: Optional[str] = None


class UpdateSettings(BaseModel):
    theme: Optional[str] = None
    date_format: Optional[str] = None
    last_active_tree_id: Optional[str] = None
    inactivity_timeout_minutes: Optional[int] = Field(default=None, ge=0)
    git_settings: Optional[GitSettingsIn] = None


@router.get("/me")
async def me(
    current_user: User = Depends(get_current_user),
    encryption: EncryptionService = Depends(get_encryption),
):
    return serialize_user(current_user, encryption)


@router.patch("/me/settings")
async def update_settings(
    payload: UpdateSettings,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    encryption: EncryptionService = Depends(get_encryption),
):
    changes = payload.model_dump(exclude_unset=True)
    git_settings = changes.pop("git_settings", None)

    for field, value in changes.items():
        if value is None and field == "inactivity_timeout_minutes":
            continue
        setattr(current_user, field, value)
    if "git_settings" in payload.model_fields_set:
        # JSON columns are replaced wholesale so SQLAlchemy sees the change
        current_user.git_settings = (
            encrypt_git_settings(git_settings, encryption) if git_settings is not None else None
        )

    db.add(current_user)
    await db.commit()
    await db.refresh(current_user)
    logger.info(f"Updated settings for user {current_user.id}")
    return serialize_user(current_user, encryption)


@router.get("/settings/public")
async def public_settings(db: AsyncSession = Depends(get_db)):
    settings = await load_global_settings(db)
    return {"allow_public_registration": settings.allow_public_registration}
