# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/cellarpos/routes/auth.py
"""
Authentication API routes

- Login returns the session token in the body and sets it as an HTTP-only
  cookie; either can be presented on later requests.
- User management is restricted to admins.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models import UserRole
from ..services import auth_service, login_throttle_service, session_service
from ..validation import ServiceError
from cellarpos.time_utils import to_utc_z
from .common import internal_error_response, json_body, service_error_response


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _set_session_cookie(response, token: str, max_age_seconds: int):
    response.set_cookie(
        current_app.config["SESSION_COOKIE_NAME_TOKEN"],
        token,
        max_age=max_age_seconds,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite="Lax",
    )
    return response


def _locked_response(seconds_remaining: int | None):
    response = jsonify({
        "error": "Account temporarily locked due to too many failed login attempts",
        "locked": True,
        "retry_after_seconds": seconds_remaining,
    })
    if seconds_remaining:
        response.headers["Retry-After"] = str(seconds_remaining)
    return response, 429


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Returns user info and session token on success.
    """
    try:
        data = json_body()
        username = data.get("username")
        password = data.get("password")

        if not username or not password:
            return jsonify({"error": "Username and password are required"}), 400

        ip_address = request.remote_addr
        user_agent = request.headers.get("User-Agent")

        locked, seconds_remaining = login_throttle_service.is_account_locked(username)
        if locked:
            return _locked_response(seconds_remaining)

        user = auth_service.authenticate(username, password)
        if not user:
            current_app.logger.warning("Failed login for username=%r from %s", username, ip_address)
            failed_count = login_throttle_service.record_failed_attempt(
                username, ip_address=ip_address, user_agent=user_agent
            )
            if failed_count >= login_throttle_service.max_failed_attempts():
                current_app.logger.warning("Login locked for username=%r after %s failures", username, failed_count)
                _, seconds_remaining = login_throttle_service.is_account_locked(username)
                return _locked_response(seconds_remaining)
            return jsonify({"error": "Invalid credentials"}), 401

        login_throttle_service.record_successful_login(user.id, username, ip_address=ip_address, user_agent=user_agent)

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address,
        )

        response = jsonify({
            "message": "Login successful",
            "user": user.to_dict(),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
        })
        max_age = int(current_app.config.get("SESSION_ABSOLUTE_HOURS", 24)) * 3600
        return _set_session_cookie(response, token, max_age), 200

    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Login failed", e)


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.auth.token, reason="User logout")
    response = jsonify({"message": "Logout successful"})
    response.delete_cookie(current_app.config["SESSION_COOKIE_NAME_TOKEN"])
    return response, 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.auth.user.to_dict()}), 200


@auth_bp.post("/change-password")
@require_auth
def change_password_route():
    """
    Change the caller's password.

    Other sessions of the same user are revoked; the current one stays valid.
    """
    try:
        data = json_body()
        auth_service.change_password(
            g.auth.user_id,
            data.get("current_password"),
            data.get("new_password"),
        )
        session_service.revoke_all_user_sessions(
            g.auth.user_id, reason="Password changed", keep_session_id=g.auth.session_id
        )
        return jsonify({"message": "Password changed successfully"}), 200

    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to change password", e)


@auth_bp.get("/users")
@require_auth
@require_role(UserRole.ADMIN)
def list_users_route():
    users = auth_service.list_users()
    return jsonify({"items": [u.to_dict() for u in users], "count": len(users)}), 200


@auth_bp.post("/users")
@require_auth
@require_role(UserRole.ADMIN)
def create_user_route():
    """Create a user account (admin only)."""
    try:
        data = json_body()
        user = auth_service.create_user(
            username=data.get("username"),
            password=data.get("password"),
            full_name=data.get("full_name"),
            role=data.get("role") or UserRole.STAFF,
        )
        return jsonify({"message": "User created successfully", "user": user.to_dict()}), 201

    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to create user", e)
