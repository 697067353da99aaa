# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/cellarpos/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import sales_service
from ..validation import ServiceError
from .common import (
    internal_error_response,
    json_body,
    query_date,
    query_int,
    service_error_response,
)


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    List non-voided sales, newest first.

    Query params: start_date, end_date (YYYY-MM-DD, inclusive),
    payment_method, page, per_page.
    """
    try:
        result = sales_service.list_sales(
            start_date=query_date("start_date"),
            end_date=query_date("end_date"),
            payment_method=request.args.get("payment_method"),
            page=query_int("page", minimum=1),
            per_page=query_int("per_page", minimum=1),
        )
        return jsonify(result), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to list sales", e)


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        return jsonify({"sale": sales_service.get_sale(sale_id).to_dict()}), 200
    except ServiceError as e:
        return service_error_response(e)


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Record a sale.

    Body: {items: [{product_id, quantity, unit_price_cents?}], payment_method,
    customer_name?, customer_contact?, notes?}
    """
    try:
        data = json_body()
        sale = sales_service.create_sale(
            items=data.get("items"),
            payment_method=data.get("payment_method"),
            customer_name=data.get("customer_name"),
            customer_contact=data.get("customer_contact"),
            notes=data.get("notes"),
            user_id=g.auth.user_id,
        )
        return jsonify({"message": "Sale completed successfully", "sale": sale.to_dict()}), 201

    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to create sale", e)


@sales_bp.post("/<int:sale_id>/void")
@require_auth
def void_sale_route(sale_id: int):
    """Void a sale; restores stock and reverses crate balances."""
    try:
        data = json_body()
        reason = data.get("reason")
        if not isinstance(reason, str) or not reason.strip():
            return jsonify({"error": "Void reason is required"}), 400

        sale = sales_service.void_sale(sale_id=sale_id, user_id=g.auth.user_id, reason=reason)
        return jsonify({"message": "Sale voided successfully", "sale": sale.to_dict()}), 200

    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to void sale", e)
