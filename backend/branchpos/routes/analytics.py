# Overview: Flask API routes for scoped sales analytics.

"""
Analytics API routes

All endpoints accept optional query filters:
- start, end: ISO 8601 datetimes (UTC when no offset; end exclusive)
- branch_id, staff_id: narrow the caller's visibility scope

Filters outside the caller's scope return empty figures, never other
tenants' or branches' data.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import analytics_service
from ..services.permission_service import PermissionDeniedError
from ..validation import ValidationError, parse_datetime_arg, parse_optional_int


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")


def _range_args():
    start = parse_datetime_arg(request.args.get("start"), "start")
    end = parse_datetime_arg(request.args.get("end"), "end")
    if start and end and end <= start:
        raise ValidationError("end must be after start")
    return start, end


def _filter_args() -> dict:
    return {
        "branch_id": parse_optional_int(request.args.get("branch_id"), "branch_id"),
        "staff_id": parse_optional_int(request.args.get("staff_id"), "staff_id"),
    }


@analytics_bp.get("/summary")
@require_auth
@require_permission("VIEW_REPORTS")
def summary_route():
    try:
        start, end = _range_args()
        return jsonify(analytics_service.summary(g.actor, start, end, **_filter_args())), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to compute analytics summary")
        return jsonify({"error": "Internal server error"}), 500


@analytics_bp.get("/best-sellers")
@require_auth
@require_permission("VIEW_REPORTS")
def best_sellers_route():
    """Query: rank_by=quantity|revenue, limit (default 10)."""
    try:
        start, end = _range_args()
        items = analytics_service.best_sellers(
            g.actor,
            start,
            end,
            rank_by=request.args.get("rank_by", "quantity"),
            limit=parse_optional_int(request.args.get("limit"), "limit", default=10),
            **_filter_args(),
        )
        return jsonify({"items": items}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to compute best sellers")
        return jsonify({"error": "Internal server error"}), 500


@analytics_bp.get("/daily")
@require_auth
@require_permission("VIEW_REPORTS")
def daily_route():
    """Query: days (default 7). Calendar days in the business timezone."""
    try:
        days = parse_optional_int(request.args.get("days"), "days", default=7)
        series = analytics_service.daily_series(g.actor, days, **_filter_args())
        return jsonify({"days": days, "series": series}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to compute daily series")
        return jsonify({"error": "Internal server error"}), 500


@analytics_bp.get("/branches")
@require_auth
@require_permission("VIEW_REPORTS")
def branches_route():
    try:
        start, end = _range_args()
        items = analytics_service.branch_performance(
            g.actor, start, end, branch_id=_filter_args()["branch_id"]
        )
        return jsonify({"items": items}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to compute branch performance")
        return jsonify({"error": "Internal server error"}), 500


@analytics_bp.get("/staff")
@require_auth
@require_permission("VIEW_REPORTS")
def staff_route():
    try:
        start, end = _range_args()
        items = analytics_service.staff_performance(g.actor, start, end, **_filter_args())
        return jsonify({"items": items}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to compute staff performance")
        return jsonify({"error": "Internal server error"}), 500
