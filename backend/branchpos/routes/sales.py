# Overview: Flask API routes for checkout and sale history.

# backend/branchpos/routes/sales.py
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import sales_service
from ..services.permission_service import PermissionDeniedError
from ..services.sales_service import SaleError
from ..services.stock_service import BranchClosedError, InsufficientStockError, UnknownProductError
from ..validation import ValidationError, parse_datetime_arg, parse_optional_int
from ..visibility import ScopeViolation


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
@require_permission("PROCESS_SALE")
def checkout_route():
    """
    Deduct stock and record the sale in one transaction.

    Body:
    {
      "branch_id": 1,
      "lines": [{"product_id": 3, "quantity": 2, "price_type": "retail"}],
      "payment_method": "Cash",
      "customer_ref": "optional",
      "customer_count": 1
    }

    Insufficient stock returns 409 with every short line in details.items;
    nothing is deducted or recorded in that case.
    """
    try:
        data = request.get_json(silent=True) or {}
        branch_id = data.get("branch_id", g.actor.branch_id)
        if branch_id is None:
            return jsonify({"error": "branch_id is required"}), 400

        sale = sales_service.checkout(
            g.actor,
            branch_id=branch_id,
            lines=data.get("lines"),
            customer_ref=data.get("customer_ref"),
            payment_method=data.get("payment_method"),
            customer_count=data.get("customer_count", 1),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except InsufficientStockError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except BranchClosedError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except UnknownProductError as e:
        current_app.logger.warning(
            "Unknown products %s in branch %s from staff %s", e.product_ids, e.branch_id, g.actor.staff_id
        )
        return jsonify({"error": "Unknown product"}), 400
    except (ValidationError, SaleError) as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to record sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
@require_permission("VIEW_SALES")
def list_sales_route():
    """
    Scoped sale history, newest first.

    Query: start, end (ISO 8601, end exclusive), branch_id, staff_id, limit.
    """
    try:
        sales = sales_service.list_sales(
            g.actor,
            parse_datetime_arg(request.args.get("start"), "start"),
            parse_datetime_arg(request.args.get("end"), "end"),
            branch_id=parse_optional_int(request.args.get("branch_id"), "branch_id"),
            staff_id=parse_optional_int(request.args.get("staff_id"), "staff_id"),
            limit=parse_optional_int(request.args.get("limit"), "limit", default=100),
        )
        return jsonify({"sales": [s.to_dict(include_lines=False) for s in sales], "count": len(sales)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("VIEW_SALES")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(g.actor, sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": "Sale not found"}), 404
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500
