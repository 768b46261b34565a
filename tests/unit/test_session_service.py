"""
Session token tests.

Checks:
1. issue -> verify yields the same user
2. every single-bit flip of the token verifies to None (never raises, never another user)
3. expiry, wrong key, missing claims
4. cookie adapter attributes for create/clear
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import Response
from starlette.requests import Request

from conftest import SESSION_SECRET
from treelab.config import Settings
from treelab.services.session_service import (
    SESSION_COOKIE_NAME,
    SessionStore,
    clear_session,
    create_session,
    get_session,
)


def _request_with_cookie(value: str) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(b"cookie", f"{SESSION_COOKIE_NAME}={value}".encode("latin-1"))],
    }
    return Request(scope)


class TestIssueVerify:
    def test_round_trip(self, session_store: SessionStore):
        identity = session_store.verify(session_store.issue("user-123"))
        assert identity is not None
        assert identity.user_id == "user-123"
        assert identity.expires_at - identity.issued_at == timedelta(days=7)

    def test_every_bit_flip_is_rejected(self, session_store: SessionStore):
        token = session_store.issue("user-123")
        raw = token.encode("ascii")
        for i in range(len(raw)):
            for bit in range(8):
                mutated = bytearray(raw)
                mutated[i] ^= 1 << bit
                candidate = bytes(mutated).decode("latin-1")
                assert session_store.verify(candidate) is None, (i, bit)

    def test_expired_token(self, session_store: SessionStore):
        issued = datetime.now(timezone.utc) - timedelta(days=8)
        assert session_store.verify(session_store.issue("user-123", now=issued)) is None

    def test_other_secret(self, session_store: SessionStore):
        other = SessionStore("another-secret-that-is-also-long-enough-xx", 3600)
        assert session_store.verify(other.issue("user-123")) is None

    def test_missing_subject(self, session_store: SessionStore):
        now = datetime.now(timezone.utc)
        token = jwt.encode({"iat": now, "exp": now + timedelta(hours=1)}, SESSION_SECRET, algorithm="HS256")
        assert session_store.verify(token) is None

    def test_unsigned_token(self, session_store: SessionStore):
        now = datetime.now(timezone.utc)
        token = jwt.encode({"sub": "admin", "iat": now, "exp": now + timedelta(hours=1)}, None, algorithm="none")
        assert session_store.verify(token) is None

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c", "...."])
    def test_malformed(self, session_store: SessionStore, token):
        assert session_store.verify(token) is None

    def test_revoke_is_empty(self, session_store: SessionStore):
        assert session_store.revoke() == ""


class TestCookieAdapter:
    def test_create_session_sets_hardened_cookie(self, session_store: SessionStore, settings: Settings):
        response = Response()
        token = create_session(response, "user-123", session_store, settings)
        header = response.headers["set-cookie"]
        lowered = header.lower()
        assert header.startswith(f"{SESSION_COOKIE_NAME}={token}")
        assert "httponly" in lowered
        assert "secure" in lowered
        assert "samesite=lax" in lowered
        assert "path=/" in lowered
        assert f"max-age={7 * 24 * 60 * 60}" in lowered

    def test_get_session_reads_cookie(self, session_store: SessionStore):
        token = session_store.issue("user-123")
        identity = get_session(_request_with_cookie(token), session_store)
        assert identity is not None
        assert identity.user_id == "user-123"

    def test_get_session_without_cookie(self, session_store: SessionStore):
        request = Request({"type": "http", "method": "GET", "path": "/", "headers": []})
        assert get_session(request, session_store) is None

    def test_clear_session_expires_cookie(self, session_store: SessionStore, settings: Settings):
        response = Response()
        clear_session(response, session_store, settings)
        lowered = response.headers["set-cookie"].lower()
        assert "max-age=0" in lowered
        assert "1970" in lowered
        assert "httponly" in lowered
