import asyncio
import bcrypt
import hmac
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from treelab.errors import UnexpectedError
from treelab.models.user import User, GlobalSettings
from treelab.services.encryption_service import EncryptionService

logger = logging.getLogger("treelab.auth_service")

BCRYPT_ROUNDS = 12
# bcrypt only looks at the first 72 bytes; longer passwords are refused outright
MAX_PASSWORD_BYTES = 72

SECRET_TOKEN_FIELD = "secret_token"


# ---------------- PASSWORD HASHING ----------------

def generate_salt() -> str:
    return bcrypt.gensalt(rounds=BCRYPT_ROUNDS).decode("utf-8")


def hash_password(password: str, salt: str) -> str:
    """Derive the bcrypt hash of password under the given salt."""
    return bcrypt.hashpw(password.encode("utf-8"), salt.encode("utf-8")).decode("utf-8")


def password_matches(password: str, salt: str, expected_hash: str) -> bool:
    if password_too_long(password):
        # older bcrypt releases truncate instead of raising
        return False
    try:
        candidate = hash_password(password, salt)
    except ValueError:
        # over-long password or corrupted salt
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected_hash.encode("utf-8"))


def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


# ---------------- USER LOOKUP & LOGIN ----------------

async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
    q = await db.execute(select(User).filter_by(id=user_id))
    return q.scalars().first()


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    q = await db.execute(select(User).filter_by(username=username))
    return q.scalars().first()


async def validate_login(db: AsyncSession, identifier: str, password: str) -> Optional[User]:
    """
    Return the user when identifier/password match, otherwise None.

    Unknown identifiers and wrong passwords are indistinguishable to the caller.
    """
    user = await get_user_by_username(db, str(identifier))
    if not user or not user.salt:
        # same bcrypt cost as a real check
        password_matches(str(password), generate_salt(), "")
        logger.warning(f"Login failed for identifier '{identifier}'")
        return None

    if not password_matches(str(password), user.salt, user.password_hash):
        logger.warning(f"Login failed for identifier '{identifier}'")
        return None
    return user


# ---------------- ACCOUNT MANAGEMENT ----------------

async def create_user(
    db: AsyncSession,
    username: str,
    password: str,
    is_admin: bool = False,
) -> Optional[User]:
    """Insert a new account. Returns None if the username is already taken."""
    salt = generate_salt()
    user = User(
        username=username,
        password_hash=hash_password(password, salt),
        salt=salt,
        is_admin=is_admin,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # lost a race on the unique username
        await db.rollback()
        logger.warning(f"Username '{username}' already taken")
        return None
    await db.refresh(user)
    return user


async def count_users(db: AsyncSession) -> int:
    q = await db.execute(select(func.count()).select_from(User))
    return q.scalar_one()


async def register_user(db: AsyncSession, username: str, password: str) -> Optional[User]:
    """Create a self-registered account. Returns None if the username is taken."""
    if await get_user_by_username(db, username):
        return None
    is_first_user = await count_users(db) == 0
    user = await create_user(db, username, password, is_admin=is_first_user)
    if user is None:
        return None
    logger.info(f"Registered user {user.id} (admin={user.is_admin})")
    return user


async def set_password(db: AsyncSession, user: User, new_password: str) -> None:
    # fresh salt on every change
    user.salt = generate_salt()
    user.password_hash = hash_password(new_password, user.salt)
    db.add(user)
    await db.commit()


async def change_password(db: AsyncSession, user: User, current_password: str, new_password: str) -> bool:
    if not user.salt or not password_matches(current_password, user.salt, user.password_hash):
        return False
    await set_password(db, user, new_password)
    return True


async def delete_user(db: AsyncSession, user: User, users_dir: Path) -> None:
    """Remove the user's data directory, then the account row."""
    user_id = user.id
    user_dir = users_dir / user_id

    def _remove_data() -> None:
        if user_dir.is_dir():
            shutil.rmtree(user_dir)

    loop = asyncio.get_event_loop()
    try:
        await loop.run_in_executor(None, _remove_data)
    except OSError:
        logger.error(f"Failed to remove data directory of user {user_id}", exc_info=True)
        raise UnexpectedError()

    await db.delete(user)
    await db.commit()
    logger.info(f"Deleted user {user_id} and all associated data.")


async def list_users(db: AsyncSession) -> List[User]:
    q = await db.execute(select(User).order_by(User.created_at, User.username))
    return list(q.scalars().all())


# ---------------- GLOBAL SETTINGS ----------------

async def load_global_settings(db: AsyncSession) -> GlobalSettings:
    q = await db.execute(select(GlobalSettings).order_by(GlobalSettings.id))
    settings = q.scalars().first()
    if settings:
        return settings
    settings = GlobalSettings(allow_public_registration=True)
    db.add(settings)
    await db.commit()
    await db.refresh(settings)
    return settings


async def save_global_settings(db: AsyncSession, allow_public_registration: bool) -> GlobalSettings:
    settings = await load_global_settings(db)
    settings.allow_public_registration = allow_public_registration
    db.add(settings)
    await db.commit()
    await db.refresh(settings)
    return settings


# ---------------- SERIALIZATION ----------------

def encrypt_git_settings(git_settings: Dict[str, Any], encryption: EncryptionService) -> Dict[str, Any]:
    stored = dict(git_settings)
    if stored.get(SECRET_TOKEN_FIELD):
        stored[SECRET_TOKEN_FIELD] = encryption.encrypt(stored[SECRET_TOKEN_FIELD])
    else:
        stored.pop(SECRET_TOKEN_FIELD, None)
    return stored


def serialize_user(user: User, encryption: EncryptionService) -> Dict[str, Any]:
    """
    Client-safe view of a user.

    Password hash and salt are never included. The stored secret token is
    decrypted when possible and dropped when it is not.
    """
    data = {
        "id": user.id,
        "username": user.username,
        "is_admin": bool(user.is_admin),
        "theme": user.theme,
        "date_format": user.date_format,
        "last_active_tree_id": user.last_active_tree_id,
        "inactivity_timeout_minutes": user.inactivity_timeout_minutes,
        "created_at": str(user.created_at) if user.created_at else None,
    }

    if user.git_settings is not None:
        git_settings = dict(user.git_settings)
        if SECRET_TOKEN_FIELD in git_settings:
            outcome = encryption.try_decrypt(git_settings[SECRET_TOKEN_FIELD])
            if outcome.ok:
                git_settings[SECRET_TOKEN_FIELD] = outcome.plaintext
            else:
                logger.warning(f"Failed to decrypt secret token for user {user.id}; omitting it")
                del git_settings[SECRET_TOKEN_FIELD]
        data["git_settings"] = git_settings
    else:
        data["git_settings"] = None

    return data
