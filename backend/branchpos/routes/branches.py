# Overview: Flask API routes for branch listing, creation and status changes.

# backend/branchpos/routes/branches.py
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import branch_service
from ..services.branch_service import BranchError
from ..services.permission_service import PermissionDeniedError
from ..validation import ConflictError, ValidationError
from ..visibility import ScopeViolation


branches_bp = Blueprint("branches", __name__, url_prefix="/api/branches")


@branches_bp.get("")
@require_auth
@require_permission("VIEW_BRANCHES")
def list_branches_route():
    """Query: include_inactive=true|false (default true)."""
    try:
        include_inactive = request.args.get("include_inactive", "true").lower() != "false"
        branches = branch_service.list_branches(g.actor, include_inactive=include_inactive)
        return jsonify({"branches": [b.to_dict() for b in branches]}), 200
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list branches")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.post("")
@require_auth
@require_permission("MANAGE_BRANCHES")
def create_branch_route():
    """Body: {"name": "...", "location": "..."}. Subject to the plan's branch cap."""
    try:
        data = request.get_json(silent=True) or {}
        branch = branch_service.create_branch(g.actor, data.get("name"), data.get("location"))
        return jsonify({"branch": branch.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to create branch")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.get("/<int:branch_id>")
@require_auth
@require_permission("VIEW_BRANCHES")
def get_branch_route(branch_id: int):
    try:
        branch = branch_service.get_branch(g.actor, branch_id)
        return jsonify({"branch": branch.to_dict()}), 200
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": "Branch not found"}), 404
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to load branch")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.patch("/<int:branch_id>")
@require_auth
@require_permission("MANAGE_BRANCHES")
def update_branch_route(branch_id: int):
    """Body may include name and location. Status changes use /deactivate and /reactivate."""
    try:
        data = request.get_json(silent=True) or {}
        branch = branch_service.update_branch(
            g.actor, branch_id, name=data.get("name"), location=data.get("location")
        )
        return jsonify({"branch": branch.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except (ConflictError, BranchError) as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": "Branch not found"}), 404
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to update branch")
        return jsonify({"error": "Internal server error"}), 500


def _change_status(branch_id: int, deactivate: bool):
    try:
        if deactivate:
            branch = branch_service.deactivate_branch(g.actor, branch_id)
        else:
            branch = branch_service.reactivate_branch(g.actor, branch_id)
        return jsonify({"branch": branch.to_dict()}), 200
    except BranchError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except ScopeViolation as e:
        current_app.logger.warning(
            "Scope violation: %s %s by staff %s: %s", request.method, request.path, g.actor.staff_id, e.details
        )
        return jsonify({"error": "Branch not found"}), 404
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to change branch status")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.post("/<int:branch_id>/deactivate")
@require_auth
@require_permission("CHANGE_BRANCH_STATUS")
def deactivate_branch_route(branch_id: int):
    """Staff pinned to the branch are blocked from their next request on."""
    return _change_status(branch_id, deactivate=True)


@branches_bp.post("/<int:branch_id>/reactivate")
@require_auth
@require_permission("CHANGE_BRANCH_STATUS")
def reactivate_branch_route(branch_id: int):
    return _change_status(branch_id, deactivate=False)
