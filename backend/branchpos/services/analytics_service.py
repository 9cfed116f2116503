# Overview: Read-only sale aggregates, always filtered through the actor's visibility scope.

"""
Analytics

Every function takes the acting Actor and applies visibility.scope(actor)
before touching a row, so callers never see unscoped data. Optional
branch_id / staff_id filters can only narrow that scope; a filter outside it
yields empty results.

Ranges are UTC with start inclusive and end exclusive. Revenue is the sum of
sale totals; cost of goods sold is the sum of frozen line cost x quantity.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Branch, Business, Sale, SaleLine, StaffMember
from ..time_utils import local_date, local_day_start_utc, to_utc_z, trailing_local_days
from ..validation import ValidationError
from ..visibility import Actor, Scope, scope
from .permission_service import actor_has_permission, require_permission


RANK_BY_OPTIONS = ("quantity", "revenue")
MAX_SERIES_DAYS = 366


def _scope_for(actor: Actor, branch_id: int | None, staff_id: int | None) -> Scope:
    return scope(actor).narrow(branch_id=branch_id, staff_id=staff_id)


def _filtered(query, current: Scope, start: datetime | None, end: datetime | None):
    query = query.filter(*current.criteria(Sale))
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at < end)
    return query


def revenue(actor: Actor, start=None, end=None, *, branch_id=None, staff_id=None) -> int:
    require_permission(actor, "VIEW_REPORTS", resource="analytics")
    current = _scope_for(actor, branch_id, staff_id)
    query = _filtered(db.session.query(func.coalesce(func.sum(Sale.total_cents), 0)), current, start, end)
    return int(query.scalar() or 0)


def transaction_count(actor: Actor, start=None, end=None, *, branch_id=None, staff_id=None) -> int:
    require_permission(actor, "VIEW_REPORTS", resource="analytics")
    current = _scope_for(actor, branch_id, staff_id)
    query = _filtered(db.session.query(func.count(Sale.id)), current, start, end)
    return int(query.scalar() or 0)


def cost_of_goods_sold(actor: Actor, start=None, end=None, *, branch_id=None, staff_id=None) -> int:
    require_permission(actor, "VIEW_COGS", resource="analytics")
    current = _scope_for(actor, branch_id, staff_id)
    query = _filtered(
        db.session.query(func.coalesce(func.sum(SaleLine.unit_cost_cents * SaleLine.quantity), 0))
        .join(Sale, SaleLine.sale_id == Sale.id),
        current,
        start,
        end,
    )
    return int(query.scalar() or 0)


def gross_profit(actor: Actor, start=None, end=None, *, branch_id=None, staff_id=None) -> int:
    return (
        revenue(actor, start, end, branch_id=branch_id, staff_id=staff_id)
        - cost_of_goods_sold(actor, start, end, branch_id=branch_id, staff_id=staff_id)
    )


def profit_summary(actor: Actor, start=None, end=None, *, branch_id=None, staff_id=None) -> dict:
    rev = revenue(actor, start, end, branch_id=branch_id, staff_id=staff_id)
    cogs = cost_of_goods_sold(actor, start, end, branch_id=branch_id, staff_id=staff_id)
    profit = rev - cogs
    return {
        "revenue_cents": rev,
        "cogs_cents": cogs,
        "gross_profit_cents": profit,
        "margin_percent": round(profit * 100 / rev, 2) if rev else 0.0,
    }


def summary(actor: Actor, start=None, end=None, *, branch_id=None, staff_id=None) -> dict:
    """Dashboard headline figures. Cost and profit appear only for roles holding VIEW_COGS."""
    require_permission(actor, "VIEW_REPORTS", resource="analytics")
    current = _scope_for(actor, branch_id, staff_id)
    row = _filtered(
        db.session.query(
            func.count(Sale.id).label("transactions"),
            func.coalesce(func.sum(Sale.total_cents), 0).label("revenue_cents"),
            func.coalesce(func.sum(Sale.tax_cents), 0).label("tax_cents"),
            func.coalesce(func.sum(Sale.customer_count), 0).label("customers"),
        ),
        current,
        start,
        end,
    ).one()

    transactions = int(row.transactions or 0)
    revenue_cents = int(row.revenue_cents or 0)
    result = {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "transactions": transactions,
        "revenue_cents": revenue_cents,
        "tax_cents": int(row.tax_cents or 0),
        "customers": int(row.customers or 0),
        "average_sale_cents": (revenue_cents + transactions // 2) // transactions if transactions else 0,
    }
    if actor_has_permission(actor, "VIEW_COGS"):
        result.update(profit_summary(actor, start, end, branch_id=branch_id, staff_id=staff_id))
    return result


def best_sellers(
    actor: Actor,
    start=None,
    end=None,
    *,
    rank_by: str = "quantity",
    limit: int = 10,
    branch_id=None,
    staff_id=None,
) -> list[dict]:
    """Products ranked by units sold or revenue; ties go to the lower product id."""
    require_permission(actor, "VIEW_REPORTS", resource="analytics")
    if rank_by not in RANK_BY_OPTIONS:
        raise ValidationError(f"rank_by must be one of {', '.join(RANK_BY_OPTIONS)}")
    if limit is None or limit < 1:
        raise ValidationError("limit must be a positive integer")

    current = _scope_for(actor, branch_id, staff_id)
    rows = _filtered(
        db.session.query(
            SaleLine.product_id.label("product_id"),
            func.max(SaleLine.product_name).label("product_name"),
            func.sum(SaleLine.quantity).label("quantity"),
            func.sum(SaleLine.line_total_cents).label("revenue_cents"),
        ).join(Sale, SaleLine.sale_id == Sale.id),
        current,
        start,
        end,
    ).group_by(SaleLine.product_id).all()

    items = [
        {
            "product_id": row.product_id,
            "product_name": row.product_name,
            "quantity": int(row.quantity or 0),
            "revenue_cents": int(row.revenue_cents or 0),
        }
        for row in rows
    ]
    items.sort(key=lambda item: (-item["quantity" if rank_by == "quantity" else "revenue_cents"], item["product_id"]))
    return items[:limit]


def daily_series(
    actor: Actor,
    days: int,
    *,
    now: datetime | None = None,
    branch_id=None,
    staff_id=None,
) -> list[dict]:
    """
    Trailing `days` calendar days in the business timezone, oldest first.

    Days without sales are present with zeros.
    """
    require_permission(actor, "VIEW_REPORTS", resource="analytics")
    if isinstance(days, bool) or not isinstance(days, int) or days < 1 or days > MAX_SERIES_DAYS:
        raise ValidationError(f"days must be between 1 and {MAX_SERIES_DAYS}")

    business = db.session.get(Business, actor.business_id)
    tz_name = business.timezone if business else None

    dates = trailing_local_days(days, tz_name, now=now)
    window_start = local_day_start_utc(dates[0], tz_name)
    window_end = local_day_start_utc(dates[-1] + timedelta(days=1), tz_name)

    buckets = {
        day: {"date": day.isoformat(), "revenue_cents": 0, "transactions": 0, "customers": 0}
        for day in dates
    }

    current = _scope_for(actor, branch_id, staff_id)
    rows = _filtered(
        db.session.query(Sale.created_at, Sale.total_cents, Sale.customer_count),
        current,
        window_start,
        window_end,
    ).all()

    for created_at, total_cents, customers in rows:
        bucket = buckets.get(local_date(created_at, tz_name))
        if bucket is None:
            continue
        bucket["revenue_cents"] += total_cents
        bucket["transactions"] += 1
        bucket["customers"] += customers or 0

    return [buckets[day] for day in dates]


def branch_performance(actor: Actor, start=None, end=None, *, branch_id=None) -> list[dict]:
    """Sale count, revenue and revenue share per visible branch."""
    require_permission(actor, "VIEW_REPORTS", resource="analytics")
    current = _scope_for(actor, branch_id, None)
    rows = _filtered(
        db.session.query(
            Sale.branch_id.label("branch_id"),
            func.count(Sale.id).label("transactions"),
            func.coalesce(func.sum(Sale.total_cents), 0).label("revenue_cents"),
        ),
        current,
        start,
        end,
    ).group_by(Sale.branch_id).all()

    totals = {row.branch_id: (int(row.transactions), int(row.revenue_cents)) for row in rows}
    grand_total = sum(rev for _, rev in totals.values())

    branch_query = db.session.query(Branch).filter(Branch.business_id == actor.business_id)
    if current.deny_all:
        return []
    if current.branch_id is not None:
        branch_query = branch_query.filter(Branch.id == current.branch_id)

    result = []
    for branch in branch_query.order_by(Branch.name.asc()).all():
        count, rev = totals.get(branch.id, (0, 0))
        result.append({
            "branch_id": branch.id,
            "branch_name": branch.name,
            "status": branch.status,
            "transactions": count,
            "revenue_cents": rev,
            "revenue_share_percent": round(rev * 100 / grand_total, 2) if grand_total else 0.0,
        })
    result.sort(key=lambda item: (-item["revenue_cents"], item["branch_id"]))
    return result


def staff_performance(actor: Actor, start=None, end=None, *, branch_id=None, staff_id=None) -> list[dict]:
    """Sale count, revenue and average sale per staff member with sales in range."""
    require_permission(actor, "VIEW_REPORTS", resource="analytics")
    current = _scope_for(actor, branch_id, staff_id)
    rows = _filtered(
        db.session.query(
            Sale.staff_id.label("staff_id"),
            func.max(Sale.staff_name).label("staff_name"),
            func.count(Sale.id).label("transactions"),
            func.coalesce(func.sum(Sale.total_cents), 0).label("revenue_cents"),
        ),
        current,
        start,
        end,
    ).group_by(Sale.staff_id).all()

    names = {}
    staff_ids = [row.staff_id for row in rows]
    if staff_ids:
        names = {
            s.id: (s.full_name, s.role.value)
            for s in db.session.query(StaffMember).filter(StaffMember.id.in_(staff_ids)).all()
        }

    result = []
    for row in rows:
        count = int(row.transactions)
        rev = int(row.revenue_cents)
        name, role = names.get(row.staff_id, (row.staff_name, None))
        result.append({
            "staff_id": row.staff_id,
            "staff_name": name,
            "role": role,
            "transactions": count,
            "revenue_cents": rev,
            "average_sale_cents": (rev + count // 2) // count if count else 0,
        })
    result.sort(key=lambda item: (-item["revenue_cents"], item["staff_id"]))
    return result
