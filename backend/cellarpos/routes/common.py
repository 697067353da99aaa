# Overview: Shared request parsing and error responses for API routes.

from __future__ import annotations

from flask import current_app, jsonify, request

from ..validation import ServiceError, ValidationError, coerce_date, coerce_int


def service_error_response(e: ServiceError):
    return jsonify(e.to_dict()), e.status_code


def internal_error_response(log_message: str, e: Exception):
    """Log the traceback and return a generic 500; the message is only exposed in debug mode."""
    current_app.logger.exception(log_message)
    body = {"error": "Internal server error"}
    if current_app.debug:
        body["message"] = str(e)
    return jsonify(body), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def query_int(name: str, *, minimum: int | None = None) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    value = coerce_int(raw, name)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    return value


def query_date(name: str):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    return coerce_date(raw, name)


def query_bool(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes", "on"}
