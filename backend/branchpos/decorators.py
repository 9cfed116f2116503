# Overview: Request decorators rendering session gate decisions and role permissions.

from functools import wraps

from flask import g, jsonify, request

from .services import permission_service, session_service
from .services.permission_service import PermissionDeniedError
from .services.session_gate import LOGIN_PATH, SessionSnapshot, evaluate


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def _is_authenticated() -> bool:
    return hasattr(g, "actor") and hasattr(g, "session_context")


def require_auth(f):
    """
    Validate the session and render the session gate's decision.

    Sets the following Flask g attributes:
    - g.current_staff: the authenticated StaffMember
    - g.actor: frozen Actor snapshot (business, branch, role, staff id)
    - g.session_context: the full SessionContext

    The gate is the only routing authority. This decorator never decides on
    its own; it returns 401 when the gate redirects to login and 403 with
    {"state", "redirect"} for any other redirect.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        context = session_service.validate_session(token) if token else None
        snapshot = context.snapshot if context else SessionSnapshot.anonymous()

        decision = evaluate(snapshot, request.path)
        if not decision.allowed:
            if decision.target == LOGIN_PATH:
                error = "Authentication required" if not token else "Invalid or expired token"
                return jsonify({"error": error, **decision.to_dict(), "redirect": decision.target}), 401

            permission_service.log_security_event(
                staff_id=context.staff.id,
                event_type="GATE_REDIRECT",
                success=False,
                resource=request.path,
                action=request.method,
                reason=f"{decision.state.value} -> {decision.target}",
                business_id=context.actor.business_id,
                branch_id=context.actor.branch_id,
            )
            return jsonify({
                "error": "Access blocked by session state",
                **decision.to_dict(),
                "redirect": decision.target,
            }), 403

        g.current_staff = context.staff if context else None
        g.actor = context.actor if context else None
        g.session_context = context
        g.gate_decision = decision

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """
    Require the actor's role to hold a permission.

    Denials are logged to security_events with tenant context.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated() or g.actor is None:
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_permission(g.actor, permission_code, resource=request.path)
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
