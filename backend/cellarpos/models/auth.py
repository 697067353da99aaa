from __future__ import annotations

from ..extensions import db
from cellarpos.time_utils import to_utc_z, utcnow
from .enums import UserRole, enum_column


class User(db.Model):
    """
    Shop staff account.

    Sales, deliveries and crate ledger entries all point back at the user who
    recorded them. ``username`` is stored lower-case.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    full_name = db.Column(db.String(100), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)  # bcrypt
    role = db.Column(enum_column(UserRole, "user_role"), nullable=False, default=UserRole.STAFF)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.username} ({self.role.value if self.role else '?'})>"

    def to_summary(self) -> dict:
        return {"id": self.id, "username": self.username, "full_name": self.full_name}

    def to_dict(self) -> dict:
        data = self.to_summary()
        data.update({
            "role": self.role.value if self.role else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
        })
        return data


class SessionToken(db.Model):
    """
    Login session. The client holds an opaque token; only its SHA-256 lands here.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    user = db.relationship("User")


class SecurityEvent(db.Model):
    """
    Append-only record of login outcomes.

    ``identifier`` is the normalized username as submitted, so failures
    against unknown usernames are counted too (``user_id`` is then NULL).
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_identifier_type_occurred", "identifier", "event_type", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    event_type = db.Column(db.String(32), nullable=False)
    identifier = db.Column(db.String(64), nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
