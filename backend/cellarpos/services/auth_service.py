# Overview: Service-layer operations for auth; password hashing, user accounts and login.

"""
Authentication Service

WHY: Every sale, delivery and crate movement must be attributable to a user.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 6 characters
- Usernames are case-insensitive (stored lower-case)
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User, UserRole
from ..validation import AuthError, ConflictError, NotFoundError, ValidationError, coerce_enum
from cellarpos.time_utils import utcnow


MIN_PASSWORD_LENGTH = 6


def normalize_username(username) -> str:
    if not isinstance(username, str) or not username.strip():
        raise ValidationError("Username is required")
    return username.strip().lower()


def validate_password_strength(password) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for length before hashing.
    """
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison; malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(username, password, full_name, role=UserRole.STAFF) -> User:
    """
    Create a user account.

    Raises:
        ValidationError: missing username / full name, short password, bad role
        ConflictError: username already taken
    """
    username = normalize_username(username)
    if len(username) > 64:
        raise ValidationError("Username exceeds max length 64")
    if not isinstance(full_name, str) or not full_name.strip():
        raise ValidationError("Full name is required")
    full_name = full_name.strip()
    if len(full_name) > 100:
        raise ValidationError("Full name exceeds max length 100")
    role = coerce_enum(UserRole, role or UserRole.STAFF, "role")

    existing = db.session.query(User).filter(User.username == username).first()
    if existing:
        raise ConflictError("Username already exists", details={"username": username})

    user = User(
        username=username,
        full_name=full_name,
        password_hash=hash_password(password),
        role=role,
    )

    db.session.add(user)
    db.session.commit()
    current_app.logger.info("User created: username=%s role=%s", user.username, user.role.value)
    return user


def authenticate(username, password) -> User | None:
    """
    Authenticate user with username and password.

    Returns User if credentials are valid and the account is active, None
    otherwise. Updates last_login_at on success.
    """
    if not isinstance(username, str) or not isinstance(password, str):
        return None

    user = (
        db.session.query(User)
        .filter(User.username == username.strip().lower(), User.is_active.is_(True))
        .first()
    )
    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def change_password(user_id: int, current_password, new_password) -> User:
    """
    Change a user's own password.

    Raises:
        ValidationError: fields missing or new password too short
        AuthError: current password is wrong
    """
    if not current_password or not new_password:
        raise ValidationError("Current password and new password are required")

    user = db.session.query(User).filter_by(id=user_id).first()
    if user is None:
        raise NotFoundError("User not found")

    if not verify_password(current_password, user.password_hash):
        raise AuthError("Current password is incorrect")

    user.password_hash = hash_password(new_password)
    db.session.commit()
    current_app.logger.info("Password changed: user=%s", user.username)
    return user


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.username.asc()).all()
