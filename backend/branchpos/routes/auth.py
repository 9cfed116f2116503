# Overview: Flask API routes for login, logout, credential change and session state.

# backend/branchpos/routes/auth.py
"""
Authentication API routes

Login outcomes map onto session gate states:
- credentials rejected            -> 401
- assigned branch inactive        -> 403, state BRANCH_CLOSED_BLOCKED, no token
- must change issued credential   -> 200, state PENDING_CREDENTIAL_CHANGE
- otherwise                       -> 200, state ACTIVE
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import bearer_token, require_auth
from ..permissions import get_role_permissions
from ..services import session_service
from ..services.auth_service import BranchInactiveError, InvalidCredentialError, PasswordValidationError
from ..services.session_gate import BLOCKED_ACTIONS, BRANCH_CLOSED_PATH, SessionSnapshot, SessionState, evaluate
from ..validation import ValidationError, parse_optional_int


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")
session_bp = Blueprint("session", __name__, url_prefix="/api/session")


def _session_payload(context) -> dict:
    return {
        "staff": context.staff.to_dict(),
        "business_id": context.actor.business_id,
        "branch_id": context.actor.branch_id,
        "role": context.actor.role.value,
        "permissions": sorted(get_role_permissions(context.actor.role)),
        "state": context.state.value,
        "session": context.session.to_dict(),
    }


@auth_bp.post("/login")
def login_route():
    """
    Authenticate staff and create a session token.

    Token must be included in the Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        business_id = parse_optional_int(data.get("business_id"), "business_id")

        result = session_service.login(
            email,
            password,
            business_id=business_id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "staff": result.staff.to_dict(),
            "permissions": sorted(get_role_permissions(result.staff.role)),
            "token": result.token,
            "session": result.session.to_dict(),
            "business_id": result.session.business_id,
            "branch_id": result.session.branch_id,
            "state": result.state.value,
            "must_change_credential": result.state == SessionState.PENDING_CREDENTIAL_CHANGE,
            "message": "Login successful",
        }), 200

    except InvalidCredentialError:
        return jsonify({"error": "Invalid credentials"}), 401
    except BranchInactiveError as e:
        return jsonify({
            "error": str(e),
            "details": e.details,
            "state": SessionState.BRANCH_CLOSED_BLOCKED.value,
            "redirect": BRANCH_CLOSED_PATH,
            "actions": list(BLOCKED_ACTIONS),
        }), 403
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to login staff")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke session token (logout).

    Allowed in every gate state, including BRANCH_CLOSED_BLOCKED.
    """
    try:
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authorization header required"}), 401

        revoked = session_service.logout(token)

        if not revoked:
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful", "state": SessionState.UNAUTHENTICATED.value}), 200

    except Exception:
        current_app.logger.exception("Failed to logout staff")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/change-credential")
@require_auth
def change_credential_route():
    """Rotate the password; clears the forced-change flag and revokes other sessions."""
    try:
        data = request.get_json(silent=True) or {}
        current_password = data.get("current_password")
        new_password = data.get("new_password")

        if not all([current_password, new_password]):
            return jsonify({"error": "current_password and new_password required"}), 400

        state = session_service.change_credential(
            g.current_staff.id,
            current_password,
            new_password,
            keep_session_id=g.session_context.session.id,
        )
        return jsonify({"message": "Credential changed", "state": state.value}), 200

    except InvalidCredentialError as e:
        return jsonify({"error": str(e)}), 401
    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to change credential")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/session")
@require_auth
def session_route():
    """Current staff, role permissions and gate state. Valid in every authenticated state."""
    try:
        return jsonify(_session_payload(g.session_context)), 200
    except Exception:
        current_app.logger.exception("Failed to load session")
        return jsonify({"error": "Internal server error"}), 500


@session_bp.post("/navigate")
def navigate_route():
    """
    Ask the session gate about a client-side navigation.

    Body: {"path": "/app/sales"}. Returns {decision, target, state}.
    Anonymous callers get the UNAUTHENTICATED decision rather than a 401.
    """
    try:
        data = request.get_json(silent=True) or {}
        path = data.get("path")
        if not isinstance(path, str) or not path.strip():
            return jsonify({"error": "path required"}), 400

        token = bearer_token()
        context = session_service.validate_session(token) if token else None
        snapshot = context.snapshot if context else SessionSnapshot.anonymous()

        return jsonify(evaluate(snapshot, path).to_dict()), 200

    except Exception:
        current_app.logger.exception("Failed to evaluate navigation")
        return jsonify({"error": "Internal server error"}), 500
