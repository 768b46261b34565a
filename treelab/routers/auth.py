from typing import Optional
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from treelab.config import Settings
from treelab.utils.database import get_db
from treelab.models.user import User
from treelab.errors import (
    ClientInputError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    UnexpectedError,
)
from treelab.services.auth_service import (
    validate_login,
    register_user,
    change_password,
    get_user_by_id,
    load_global_settings,
    password_too_long,
    serialize_user,
)
from treelab.services.session_service import SessionStore, SessionIdentity, create_session, clear_session
from treelab.services.encryption_service import EncryptionService
from treelab.deps import (
    get_settings,
    get_session_store,
    get_encryption,
    get_optional_identity,
    get_current_user,
)
import logging

router = APIRouter(prefix="/api/auth", tags=["auth"])

logger = logging.getLogger("treelab.auth")

INVALID_CREDENTIALS = "Invalid credentials"


# ---------------------- MODELS ----------------------
class LoginIn(BaseModel):
    identifier: Optional[str] = None
    password: Optional[str] = None


class RegisterIn(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class ChangePasswordIn(BaseModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


# ---------------------- ROUTES ----------------------
@router.post("/login")
async def login(
    payload: LoginIn,
    response: Response,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
    encryption: EncryptionService = Depends(get_encryption),
):
    if not payload.identifier or not payload.password:
        raise ClientInputError("Username and password are required")

    logger.info(f"POST /login received for identifier: {payload.identifier}")
    try:
        user = await validate_login(db, payload.identifier, payload.password)
    except Exception as e:
        logger.error(f"Login API error: {e}", exc_info=True)
        raise UnexpectedError()

    if not user:
        raise AuthenticationError(INVALID_CREDENTIALS)

    create_session(response, user.id, store, settings)
    logger.info(f"User logged in successfully: {user.id}")
    return serialize_user(user, encryption)


@router.post("/logout")
async def logout(
    response: Response,
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    clear_session(response, store, settings)
    return {"message": "Logged out successfully"}


@router.get("/session")
async def session(
    identity: Optional[SessionIdentity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
    encryption: EncryptionService = Depends(get_encryption),
):
    # 200 with null rather than 401: anonymous page loads are the normal case.
    if identity is None:
        return None
    user = await get_user_by_id(db, identity.user_id)
    if not user:
        return None
    return serialize_user(user, encryption)


@router.post("/register")
async def register(
    payload: RegisterIn,
    response: Response,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
    encryption: EncryptionService = Depends(get_encryption),
):
    global_settings = await load_global_settings(db)
    if not global_settings.allow_public_registration:
        raise AuthorizationError("Registration disabled")

    if not payload.username or not payload.password:
        raise ClientInputError("Username and password are required")
    if password_too_long(payload.password):
        raise ClientInputError("Password must be at most 72 bytes")

    logger.info(f"POST /register received for username: {payload.username}")
    user = await register_user(db, payload.username, payload.password)
    if not user:
        raise ConflictError("Username already taken")

    create_session(response, user.id, store, settings)
    return serialize_user(user, encryption)


@router.post("/change-password")
async def change_password_route(
    payload: ChangePasswordIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not payload.current_password or not payload.new_password:
        raise ClientInputError("Current and new password are required")
    if password_too_long(payload.new_password):
        raise ClientInputError("Password must be at most 72 bytes")

    if not await change_password(db, current_user, payload.current_password, payload.new_password):
        raise ClientInputError("Current password is incorrect")
    logger.info(f"Password changed for user {current_user.id}")
    return {"message": "Password changed"}
