# treelab/models/user.py
import sqlalchemy as sa
import uuid
from treelab.utils.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"
    id = sa.Column(sa.String(36), primary_key=True, default=_new_id)
    username = sa.Column(sa.String(255), unique=True, nullable=False, index=True)
    # bcrypt digest of the password, derived with the per-user salt below
    password_hash = sa.Column(sa.String(128), nullable=False)
    salt = sa.Column(sa.String(64), nullable=False)
    is_admin = sa.Column(sa.Boolean, nullable=False, default=False)
    theme = sa.Column(sa.String(32), nullable=True)
    date_format = sa.Column(sa.String(64), nullable=True)
    last_active_tree_id = sa.Column(sa.String(64), nullable=True)
    inactivity_timeout_minutes = sa.Column(sa.Integer, nullable=False, default=15)
    # {"secret_token": <ciphertext>}; the token is never stored in plaintext
    git_settings = sa.Column(sa.JSON, nullable=True)
    created_at = sa.Column(sa.DateTime(timezone=True), server_default=sa.func.now())


class GlobalSettings(Base):
    __tablename__ = "global_settings"
    id = sa.Column(sa.Integer, primary_key=True)
    allow_public_registration = sa.Column(sa.Boolean, nullable=False, default=True)
    updated_at = sa.Column(sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now())
