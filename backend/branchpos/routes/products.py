# Overview: Flask API routes for branch products and stock receiving.

# backend/branchpos/routes/products.py
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import products_service, stock_service
from ..services.permission_service import PermissionDeniedError
from ..services.stock_service import BranchClosedError, StockError
from ..validation import ConflictError, ValidationError, parse_optional_int
from ..visibility import ScopeViolation


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
@require_permission("VIEW_INVENTORY")
def list_products_route():
    """
    Query: branch_id, search, include_inactive=true, page, per_page.

    Without page the full scoped list is returned.
    """
    try:
        result = products_service.list_products(
            g.actor,
            branch_id=parse_optional_int(request.args.get("branch_id"), "branch_id"),
            search=request.args.get("search"),
            include_inactive=request.args.get("include_inactive", "false").lower() == "true",
            page=parse_optional_int(request.args.get("page"), "page"),
            per_page=parse_optional_int(request.args.get("per_page"), "per_page"),
        )
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/low-stock")
@require_auth
@require_permission("VIEW_INVENTORY")
def low_stock_route():
    try:
        products = stock_service.list_low_stock(
            g.actor, branch_id=parse_optional_int(request.args.get("branch_id"), "branch_id")
        )
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list low stock products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
@require_auth
@require_permission("VIEW_INVENTORY")
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(g.actor, product_id)
        return jsonify({"product": product.to_dict()}), 200
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": "Product not found"}), 404
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to load product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/movements")
@require_auth
@require_permission("VIEW_INVENTORY")
def list_movements_route(product_id: int):
    """Stock movement history, newest first. Query: limit (default 100, max 500)."""
    try:
        limit = parse_optional_int(request.args.get("limit"), "limit", default=100)
        movements = stock_service.list_movements(g.actor, product_id, limit=max(1, min(limit, 500)))
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": "Product not found"}), 404
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def create_product_route():
    """
    Body: branch_id, sku, name, retail_price_cents, optional
    wholesale_price_cents, unit_cost_cents, category, low_stock_threshold,
    opening_stock.
    """
    try:
        data = request.get_json(silent=True) or {}
        payload = {k: v for k, v in data.items() if k not in ("branch_id", "opening_stock")}
        product = products_service.create_product(
            g.actor,
            branch_id=data.get("branch_id", g.actor.branch_id),
            payload=payload,
            opening_stock=data.get("opening_stock"),
        )
        return jsonify({"product": product.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except (ConflictError, BranchClosedError) as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def update_product_route(product_id: int):
    """Stock quantity is not patchable; use /receive."""
    try:
        data = request.get_json(silent=True) or {}
        product = products_service.update_product(g.actor, product_id, data)
        return jsonify({"product": product.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except (ConflictError, BranchClosedError) as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": "Product not found"}), 404
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/receive")
@require_auth
@require_permission("RECEIVE_STOCK")
def receive_stock_route(product_id: int):
    """Body: {"quantity": 10, "note": "optional"}."""
    try:
        data = request.get_json(silent=True) or {}
        movement = products_service.receive_product_stock(
            g.actor, product_id, data.get("quantity"), note=data.get("note")
        )
        return jsonify({
            "movement": movement.to_dict(),
            "stock_quantity": movement.quantity_after,
        }), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except StockError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": "Product not found"}), 404
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "Internal server error"}), 500
