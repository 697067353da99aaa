# Overview: Failed-login counting and temporary account lockout.

"""
Login Throttling Service

WHY: The counter terminal sits on a shop LAN; without a limit a guessed
username can be brute-forced through /api/auth/login.

- Every failed login is stored as a LOGIN_FAILED security event, keyed by
  the normalized username (unknown usernames are counted too).
- A username is locked once LOGIN_MAX_FAILED_ATTEMPTS failures fall inside
  LOGIN_LOCKOUT_WINDOW_MINUTES; the lock lasts LOGIN_LOCKOUT_MINUTES after the
  latest failure.
- A successful login restarts the count.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import SecurityEvent, User
from cellarpos.time_utils import utcnow


MAX_FAILED_ATTEMPTS = 10
LOCKOUT_WINDOW_MINUTES = 15
LOCKOUT_MINUTES = 15


def max_failed_attempts() -> int:
    return int(current_app.config.get("LOGIN_MAX_FAILED_ATTEMPTS", MAX_FAILED_ATTEMPTS))


def _window() -> timedelta:
    return timedelta(minutes=current_app.config.get("LOGIN_LOCKOUT_WINDOW_MINUTES", LOCKOUT_WINDOW_MINUTES))


def _lockout() -> timedelta:
    return timedelta(minutes=current_app.config.get("LOGIN_LOCKOUT_MINUTES", LOCKOUT_MINUTES))


def _identifier(username) -> str:
    return str(username or "").strip().lower()[:64]


def _last_event_at(identifier: str, event_type: str) -> datetime | None:
    return (
        db.session.query(db.func.max(SecurityEvent.occurred_at))
        .filter(SecurityEvent.identifier == identifier, SecurityEvent.event_type == event_type)
        .scalar()
    )


def _failures_query(identifier: str, now: datetime):
    cutoff = now - _window()
    last_success = _last_event_at(identifier, SecurityEvent.LOGIN_SUCCESS)
    if last_success is not None and last_success > cutoff:
        cutoff = last_success

    return db.session.query(SecurityEvent).filter(
        SecurityEvent.identifier == identifier,
        SecurityEvent.event_type == SecurityEvent.LOGIN_FAILED,
        SecurityEvent.occurred_at > cutoff,
    )


def get_recent_failed_attempts(username) -> int:
    """Failures inside the window and after the latest successful login."""
    return _failures_query(_identifier(username), utcnow()).count()


def is_account_locked(username) -> tuple[bool, int | None]:
    """
    Returns:
    - (True, seconds_remaining) while locked
    - (False, None) otherwise
    """
    identifier = _identifier(username)
    now = utcnow()
    failures = _failures_query(identifier, now)
    if failures.count() < max_failed_attempts():
        return False, None

    latest = failures.order_by(SecurityEvent.occurred_at.desc()).first()
    lockout_end = latest.occurred_at + _lockout()
    if now >= lockout_end:
        return False, None
    return True, max(1, int((lockout_end - now).total_seconds()))


def _record(event_type: str, identifier: str, user_id, ip_address, user_agent, reason=None) -> None:
    db.session.add(SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        identifier=identifier,
        reason=reason,
        ip_address=ip_address[:45] if ip_address else None,
        user_agent=user_agent[:512] if user_agent else None,
        occurred_at=utcnow(),
    ))
    db.session.commit()


def record_failed_attempt(username, ip_address: str | None = None, user_agent: str | None = None,
                          reason: str = "Invalid credentials") -> int:
    """Store a failure; returns the number of recent failures including this one."""
    identifier = _identifier(username)
    user = db.session.query(User).filter(User.username == identifier).first()
    _record(SecurityEvent.LOGIN_FAILED, identifier, user.id if user else None, ip_address, user_agent, reason)
    return get_recent_failed_attempts(identifier)


def record_successful_login(user_id: int, username, ip_address: str | None = None,
                            user_agent: str | None = None) -> None:
    _record(SecurityEvent.LOGIN_SUCCESS, _identifier(username), user_id, ip_address, user_agent)
