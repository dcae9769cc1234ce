from __future__ import annotations

import pytest
from fastapi import HTTPException

from app.core.sessions import register_session, require_session, revoke_session


def test_bearer_token_resolves_registered_session():
    session = register_session("user-9", "maker@example.com", plan_id="power", token="tok-1")
    try:
        resolved = require_session("Bearer tok-1")
    finally:
        revoke_session("tok-1")

    assert resolved.user_id == "user-9"
    assert resolved.plan_id == "power"
    assert resolved is session


@pytest.mark.parametrize(
    ("header", "detail"),
    [
        (None, "Missing or invalid authorization"),
        ("Token tok-2", "Missing or invalid authorization"),
        ("Bearer unknown", "Invalid session"),
    ],
)
def test_bad_headers_are_unauthorized(header, detail):
    with pytest.raises(HTTPException) as excinfo:
        require_session(header)

    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == detail


def test_expired_session_is_rejected():
    register_session("user-9", "maker@example.com", token="tok-old", ttl_seconds=-1)
    try:
        with pytest.raises(HTTPException) as excinfo:
            require_session("Bearer tok-old")
    finally:
        revoke_session("tok-old")

    assert excinfo.value.detail == "Session expired"
