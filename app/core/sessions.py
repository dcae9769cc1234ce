"""Bearer session lookup for owner-scoped endpoints.

Sessions are issued by the external auth service; this module only keeps the
registry of live tokens and resolves the ``Authorization`` header.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 3600


@dataclass
class SessionContext:
    token: str
    user_id: str
    email: str
    expires_at: datetime
    plan_id: str | None = None


_sessions: dict[str, SessionContext] = {}


def _now() -> datetime:
    return datetime.now(UTC)


def _mask_email(email: str) -> str:
    return email.split("@", 1)[1] if "@" in email else "unknown"


def register_session(
    user_id: str,
    email: str,
    *,
    plan_id: str | None = None,
    token: str | None = None,
    ttl_seconds: int = SESSION_TTL_SECONDS,
) -> SessionContext:
    """Store a session handed over by the auth service and return it."""
    ctx = SessionContext(
        token=token or secrets.token_urlsafe(32),
        user_id=user_id,
        email=email,
        expires_at=_now() + timedelta(seconds=ttl_seconds),
        plan_id=plan_id,
    )
    _sessions[ctx.token] = ctx
    logger.info("auth.session.registered", extra={"email_domain": _mask_email(email)})
    return ctx


def revoke_session(token: str) -> None:
    _sessions.pop(token, None)


def _resolve_session(token: str) -> SessionContext:
    ctx = _sessions.get(token)
    if not ctx:
        logger.warning("auth.session.invalid")
        raise HTTPException(status_code=401, detail="Invalid session")
    if ctx.expires_at < _now():
        logger.warning("auth.session.expired", extra={"email_domain": _mask_email(ctx.email)})
        raise HTTPException(status_code=401, detail="Session expired")
    return ctx


def require_session(authorization: str | None = Header(default=None)) -> SessionContext:
    if not authorization or not authorization.lower().startswith("bearer "):
        logger.warning("auth.session.missing_header")
        raise HTTPException(status_code=401, detail="Missing or invalid authorization")
    token = authorization.split(" ", 1)[1].strip()
    return _resolve_session(token)
