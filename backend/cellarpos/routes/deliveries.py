# Overview: Flask API routes for delivery operations; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import delivery_service
from ..validation import ServiceError
from .common import (
    internal_error_response,
    json_body,
    query_date,
    query_int,
    service_error_response,
)


deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api/deliveries")


@deliveries_bp.get("")
@require_auth
def list_deliveries_route():
    """Query params: start_date, end_date, supplier (substring), page, per_page."""
    try:
        result = delivery_service.list_deliveries(
            start_date=query_date("start_date"),
            end_date=query_date("end_date"),
            supplier=request.args.get("supplier"),
            page=query_int("page", minimum=1),
            per_page=query_int("per_page", minimum=1),
        )
        return jsonify(result), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to list deliveries", e)


@deliveries_bp.get("/meta/suppliers")
@require_auth
def suppliers_route():
    return jsonify({"suppliers": delivery_service.list_suppliers()}), 200


@deliveries_bp.get("/<int:delivery_id>")
@require_auth
def get_delivery_route(delivery_id: int):
    try:
        return jsonify({"delivery": delivery_service.get_delivery(delivery_id).to_dict()}), 200
    except ServiceError as e:
        return service_error_response(e)


@deliveries_bp.post("")
@require_auth
def create_delivery_route():
    """
    Receive a delivery.

    Body: {supplier, delivery_date?, notes?, items: [{product_id, quantity,
    unit_cost_cents?, expiry_date?}]}
    """
    try:
        data = json_body()
        delivery = delivery_service.create_delivery(
            supplier=data.get("supplier"),
            delivery_date=data.get("delivery_date"),
            notes=data.get("notes"),
            items=data.get("items"),
            user_id=g.auth.user_id,
        )
        return jsonify({"message": "Delivery recorded successfully", "delivery": delivery.to_dict()}), 201

    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to create delivery", e)


@deliveries_bp.put("/<int:delivery_id>")
@require_auth
def update_delivery_route(delivery_id: int):
    try:
        delivery = delivery_service.update_delivery(delivery_id, json_body())
        return jsonify({"message": "Delivery updated successfully", "delivery": delivery.to_dict()}), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to update delivery", e)
