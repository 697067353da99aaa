# Overview: Flask API routes for products operations; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import require_auth
from ..models import ProductCategory, UnitType
from ..models.enums import enum_values
from ..services import products_service
from ..validation import ServiceError
from .common import internal_error_response, json_body, query_bool, service_error_response


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    List active products.

    Query params:
        category: one of the product categories
        search: case-insensitive name substring
        low_stock: true to return only products at or below minimum stock
    """
    try:
        products = products_service.list_products(
            category=request.args.get("category"),
            search=request.args.get("search"),
            low_stock=query_bool("low_stock"),
        )
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to list products", e)


@products_bp.get("/meta/categories")
@require_auth
def categories_route():
    return jsonify({"categories": enum_values(ProductCategory)}), 200


@products_bp.get("/meta/unit-types")
@require_auth
def unit_types_route():
    return jsonify({"unit_types": enum_values(UnitType)}), 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return jsonify({"product": products_service.get_product(product_id).to_dict()}), 200
    except ServiceError as e:
        return service_error_response(e)


@products_bp.post("")
@require_auth
def create_product_route():
    try:
        product = products_service.create_product(json_body())
        return jsonify({"message": "Product created successfully", "product": product.to_dict()}), 201
    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to create product", e)


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    try:
        product = products_service.update_product(product_id, json_body())
        return jsonify({"message": "Product updated successfully", "product": product.to_dict()}), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to update product", e)


@products_bp.delete("/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    """
    Delete a product.

    Products referenced by sales, deliveries or crate entries are retired
    (is_active=false); others are removed. The response says which.
    """
    try:
        result = products_service.delete_product(product_id)
        return jsonify(result), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception as e:
        return internal_error_response("Failed to delete product", e)
