# Overview: Request authentication and role decorators for API routes.

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps

from flask import current_app, g, jsonify, request

from .models import User, UserRole
from .services import session_service
from .validation import PermissionDeniedError


@dataclass(frozen=True)
class AuthContext:
    """
    Identity of the caller for the current request.

    Routes read it from ``g.auth`` and pass ``user_id`` explicitly to the
    services; services never look at request state.
    """
    user: User
    session_id: int
    token: str

    @property
    def user_id(self) -> int:
        return self.user.id

    @property
    def role(self) -> UserRole:
        return self.user.role


def extract_token() -> str | None:
    """Bearer header first, then the HTTP-only session cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        if token:
            return token
    cookie_name = current_app.config.get("SESSION_COOKIE_NAME_TOKEN", "session_token")
    return request.cookies.get(cookie_name) or None


def require_auth(f):
    """
    Require a valid session.

    Sets:
    - g.auth: AuthContext for the caller
    - g.current_user: the authenticated User

    Returns 401 if no token is presented or the session is invalid, expired,
    revoked, or belongs to a deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = extract_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.auth = AuthContext(user=context.user, session_id=context.session.id, token=token)
        g.current_user = context.user

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: UserRole):
    """Require one of the given roles. Must be stacked under @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            auth = getattr(g, "auth", None)
            if auth is None:
                return jsonify({"error": "Authentication required"}), 401

            if auth.role not in roles:
                current_app.logger.warning(
                    "Permission denied: user=%s role=%s path=%s",
                    auth.user.username, auth.role.value, request.path,
                )
                error = PermissionDeniedError(
                    "Permission denied", details={"required_roles": [r.value for r in roles]}
                )
                return jsonify(error.to_dict()), error.status_code

            return f(*args, **kwargs)

        return decorated_function
    return decorator
