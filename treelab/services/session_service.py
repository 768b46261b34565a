# treelab/services/session_service.py
"""
Signed, time-bound session tokens carried in an HTTP-only cookie.

SessionStore knows nothing about HTTP: it issues and verifies HS256 JWTs
holding the user id. The cookie helpers below adapt it to requests and
responses. Verification failure of any kind looks exactly like "no session".
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt.utils import base64url_decode, base64url_encode
from fastapi import Request, Response

from treelab.config import Settings

logger = logging.getLogger("treelab.session")

SESSION_COOKIE_NAME = "session"
JWT_ALGORITHM = "HS256"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class SessionIdentity:
    user_id: str
    issued_at: datetime
    expires_at: datetime


def _is_canonical(token: str) -> bool:
    # base64 decoders ignore stray characters and trailing bits, so a flipped
    # character can still decode to the signed bytes. Only accept the one
    # encoding we would have produced ourselves.
    segments = token.split(".")
    if len(segments) != 3:
        return False
    try:
        return all(
            base64url_encode(base64url_decode(seg)).decode("ascii") == seg
            for seg in segments
        )
    except (ValueError, UnicodeError):
        return False


class SessionStore:
    def __init__(self, secret: str, max_age_seconds: int):
        self._secret = secret
        self.max_age_seconds = max_age_seconds

    def issue(self, user_id: str, now: Optional[datetime] = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=self.max_age_seconds),
        }
        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)

    def verify(self, token: Optional[str]) -> Optional[SessionIdentity]:
        if not token or not isinstance(token, str) or not _is_canonical(token):
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.PyJWTError as e:
            logger.info(f"Session token rejected: {e}")
            return None

        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            return None
        try:
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            return None
        return SessionIdentity(user_id=user_id, issued_at=issued_at, expires_at=expires_at)

    def revoke(self) -> str:
        return ""


# ---------------- COOKIE ADAPTER ----------------

def create_session(response: Response, user_id: str, store: SessionStore, settings: Settings) -> str:
    """Mint a token for user_id and attach it to the response as the session cookie."""
    now = datetime.now(timezone.utc).replace(microsecond=0)
    token = store.issue(user_id, now=now)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=store.max_age_seconds,
        expires=now + timedelta(seconds=store.max_age_seconds),
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    return token


def get_session(request: Request, store: SessionStore) -> Optional[SessionIdentity]:
    return store.verify(request.cookies.get(SESSION_COOKIE_NAME))


def clear_session(response: Response, store: SessionStore, settings: Settings) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=store.revoke(),
        max_age=0,
        expires=EPOCH,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
