# Overview: Flask API routes for business registration and tenant settings.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import session_service, tenant_service
from ..services.auth_service import PasswordValidationError
from ..services.permission_service import PermissionDeniedError
from ..validation import ValidationError


business_bp = Blueprint("business", __name__, url_prefix="/api/business")


@business_bp.post("/register")
def register_business_route():
    """
    Create a business with its owner and first branch, then log the owner in.

    Body: business_name, owner_name, email, password, optional branch_name,
    branch_location, plan, currency, timezone.
    """
    try:
        data = request.get_json(silent=True) or {}
        password = data.get("password")
        if not password:
            return jsonify({"error": "password required"}), 400

        registration = tenant_service.register_business(
            business_name=data.get("business_name"),
            owner_email=data.get("email"),
            owner_name=data.get("owner_name"),
            password=password,
            branch_name=data.get("branch_name") or "Main Branch",
            branch_location=data.get("branch_location"),
            plan=data.get("plan") or tenant_service.DEFAULT_PLAN,
            currency=data.get("currency"),
            timezone=data.get("timezone"),
        )

        login = session_service.login(
            registration.owner.email,
            password,
            business_id=registration.business.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "business": registration.business.to_dict(),
            "branch": registration.branch.to_dict(),
            "staff": registration.owner.to_dict(),
            "token": login.token,
            "state": login.state.value,
        }), 201

    except (ValidationError, PasswordValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to register business")
        return jsonify({"error": "Internal server error"}), 500


@business_bp.get("")
@require_auth
def get_business_route():
    try:
        business = tenant_service.get_business(g.actor.business_id)
        return jsonify({"business": business.to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to load business")
        return jsonify({"error": "Internal server error"}), 500


@business_bp.patch("")
@require_auth
@require_permission("MANAGE_BUSINESS")
def update_business_route():
    """Owner-only settings: name, currency, timezone, tax rule."""
    try:
        data = request.get_json(silent=True) or {}
        business = tenant_service.update_business_settings(g.actor, data)
        return jsonify({"business": business.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to update business settings")
        return jsonify({"error": "Internal server error"}), 500
