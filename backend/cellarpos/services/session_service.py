# Overview: Opaque session tokens: issue, validate with absolute/idle timeouts, revoke.

"""
Session Service

A login issues a random 32-byte token. The client keeps the plaintext (body
and HTTP-only cookie); the database keeps only its SHA-256, which is enough
for a high-entropy secret and keeps lookups a single indexed equality.

Timeouts come from config:
- SESSION_ABSOLUTE_HOURS: hard lifetime from creation
- SESSION_IDLE_HOURS: maximum gap between two authenticated requests
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..validation import NotFoundError
from cellarpos.time_utils import utcnow


@dataclass(frozen=True)
class SessionContext:
    user: User
    session: SessionToken


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _hours(key: str, default: int) -> timedelta:
    return timedelta(hours=current_app.config.get(key, default))


def _live_session(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter(SessionToken.token_hash == hash_token(token), SessionToken.is_revoked.is_(False))
        .first()
    )


def _mark_revoked(sessions, reason: str, when: datetime) -> int:
    count = 0
    for session in sessions:
        session.is_revoked = True
        session.revoked_at = when
        session.revoked_reason = reason
        count += 1
    db.session.commit()
    return count


def create_session(user_id: int, user_agent: str | None = None, ip_address: str | None = None) -> tuple[SessionToken, str]:
    """Returns (session row, plaintext token). The plaintext is never stored."""
    if db.session.get(User, user_id) is None:
        raise NotFoundError("User not found")

    token = secrets.token_hex(32)
    now = utcnow()
    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _hours("SESSION_ABSOLUTE_HOURS", 24),
        user_agent=user_agent[:512] if user_agent else None,
        ip_address=ip_address[:45] if ip_address else None,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a presented token to its user.

    None for unknown, revoked or expired tokens. A session that sat idle too
    long, or whose user was deactivated, is revoked on the spot. A valid
    session has its last_used_at bumped.
    """
    if not token:
        return None

    session = _live_session(token)
    if session is None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    user = session.user
    if now - session.last_used_at > _hours("SESSION_IDLE_HOURS", 2):
        _mark_revoked([session], "Idle timeout", now)
        return None
    if user is None or not user.is_active:
        _mark_revoked([session], "User account deactivated", now)
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=session)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    session = _live_session(token)
    if session is None:
        return False
    _mark_revoked([session], reason, utcnow())
    return True


def revoke_all_user_sessions(user_id: int, reason: str, keep_session_id: int | None = None) -> int:
    """Revoke every live session of a user except ``keep_session_id``; returns how many."""
    q = db.session.query(SessionToken).filter(
        SessionToken.user_id == user_id, SessionToken.is_revoked.is_(False)
    )
    if keep_session_id is not None:
        q = q.filter(SessionToken.id != keep_session_id)
    revoked = _mark_revoked(q.all(), reason, utcnow())
    if revoked:
        current_app.logger.info("Revoked %s session(s) for user=%s: %s", revoked, user_id, reason)
    return revoked
