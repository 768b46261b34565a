# treelab/deps.py
from typing import Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from treelab.config import Settings
from treelab.errors import AuthenticationError, AuthorizationError
from treelab.utils.database import get_db
from treelab.services.session_service import SessionStore, SessionIdentity, get_session
from treelab.services.encryption_service import EncryptionService
from treelab.services.attachment_service import AttachmentStore
from treelab.services.auth_service import get_user_by_id
from treelab.models.user import User


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_encryption(request: Request) -> EncryptionService:
    return request.app.state.encryption


def get_attachment_store(request: Request) -> AttachmentStore:
    return request.app.state.attachment_store


def get_optional_identity(
    request: Request, store: SessionStore = Depends(get_session_store)
) -> Optional[SessionIdentity]:
    return get_session(request, store)


async def get_current_user(
    identity: Optional[SessionIdentity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the session cookie to a User or raise 401.
    A valid token for a deleted user is treated as no session.
    """
    if identity is None:
        raise AuthenticationError()
    user = await get_user_by_id(db, identity.user_id)
    if not user:
        raise AuthenticationError()
    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise AuthorizationError("Admin privileges required")
    return current_user
