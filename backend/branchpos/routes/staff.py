# Overview: Flask API routes for staff accounts within one business.

# backend/branchpos/routes/staff.py
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import auth_service
from ..services.auth_service import PasswordValidationError
from ..services.permission_service import PermissionDeniedError
from ..validation import ConflictError, ValidationError
from ..visibility import ScopeViolation


staff_bp = Blueprint("staff", __name__, url_prefix="/api/staff")


@staff_bp.get("")
@require_auth
@require_permission("VIEW_STAFF")
def list_staff_route():
    try:
        include_inactive = request.args.get("include_inactive", "false").lower() == "true"
        staff = auth_service.list_staff(g.actor, include_inactive=include_inactive)
        return jsonify({"staff": [s.to_dict() for s in staff]}), 200
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list staff")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.post("")
@require_auth
@require_permission("MANAGE_STAFF")
def create_staff_route():
    """
    Create a staff account with an issued password.

    Body: email, full_name, role, password, branch_id (required for
    branch-pinned roles). The new account must change its password at
    first login.
    """
    try:
        data = request.get_json(silent=True) or {}
        staff = auth_service.create_staff(
            g.actor,
            email=data.get("email"),
            full_name=data.get("full_name"),
            role=data.get("role"),
            password=data.get("password") or "",
            branch_id=data.get("branch_id"),
        )
        return jsonify({"staff": staff.to_dict()}), 201
    except (ValidationError, PasswordValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to create staff")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.patch("/<int:staff_id>")
@require_auth
@require_permission("MANAGE_STAFF")
def update_staff_route(staff_id: int):
    """Body may include role, branch_id and full_name."""
    try:
        data = request.get_json(silent=True)
        staff = auth_service.update_staff(g.actor, staff_id, data if data is not None else {})
        return jsonify({"staff": staff.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": "Staff member not found"}), 404
    except Exception:
        current_app.logger.exception("Failed to update staff")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.post("/<int:staff_id>/deactivate")
@require_auth
@require_permission("MANAGE_STAFF")
def deactivate_staff_route(staff_id: int):
    try:
        staff = auth_service.deactivate_staff(g.actor, staff_id)
        return jsonify({"staff": staff.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": "Staff member not found"}), 404
    except Exception:
        current_app.logger.exception("Failed to deactivate staff")
        return jsonify({"error": "Internal server error"}), 500
