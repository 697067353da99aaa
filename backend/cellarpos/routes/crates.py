# Overview: Flask API routes for the crate ledger; parses input and returns JSON responses.

# backend/cellarpos/routes/crates.py
"""
Crate ledger API routes

Balances, per-product history, returns, manual adjustments and summaries.
Read-only except for /return and /adjust, which append ledger entries.
"""

from flask import Blueprint, g, jsonify

from ..decorators import require_auth
from ..services import crate_service
from ..validation import ServiceError
from .common import (
    internal_error_response,
    json_body,
    query_date,
    query_int,
    service_error_response,
)


crates_bp = Blueprint("crates", __name__, url_prefix="/api/crates")


@crates_bp.get("/balances")
@require_auth
def balances_route():
    balances = crate_service.get_all_balances()
    return jsonify({"balances": balances, "count": len(balances)}), 200


@crates_bp.get("/product/<int:product_id>")
@require_auth
def history_route(product_id: int):
    """Paginated ledger history for one product, newest first."""
    try:
        result = crate_service.get_history(
            product_id,
            page=query_int("page", minimum=1),
            page_size=query_int("per_page", minimum=1),
        )
        return jsonify(result), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to load crate history", e)


@crates_bp.post("/return")
@require_auth
def return_route():
    """Body: {product_id, crates_returned, notes?}"""
    try:
        data = json_body()
        entry = crate_service.record_return(
            product_id=data.get("product_id"),
            crates_returned=data.get("crates_returned"),
            notes=data.get("notes"),
            user_id=g.auth.user_id,
        )
        return jsonify({
            "message": "Crate return recorded successfully",
            "entry": entry.to_dict(),
            "new_balance": entry.balance,
        }), 201
    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to record crate return", e)


@crates_bp.post("/adjust")
@require_auth
def adjust_route():
    """Body: {product_id, adjustment (non-zero, signed), notes}"""
    try:
        data = json_body()
        entry = crate_service.adjust_balance(
            product_id=data.get("product_id"),
            adjustment=data.get("adjustment"),
            notes=data.get("notes"),
            user_id=g.auth.user_id,
        )
        return jsonify({
            "message": "Crate balance adjusted successfully",
            "entry": entry.to_dict(),
            "new_balance": entry.balance,
        }), 201
    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to adjust crate balance", e)


@crates_bp.get("/summary")
@require_auth
def summary_route():
    """Query params: start_date, end_date (YYYY-MM-DD, both optional, inclusive)."""
    try:
        result = crate_service.get_summary(query_date("start_date"), query_date("end_date"))
        return jsonify(result), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to build crate summary", e)
