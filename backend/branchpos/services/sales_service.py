"""
Sale Recorder: checkout and append-only sale recording

WHY: A sale exists only because stock left the shelf. record_sale() demands
the DeductionReceipt from a successful stock_service.deduct() for the same
branch and line set, so a sale can never be recorded ahead of, or without,
its deduction.

Sales are immutable after append. There is no update or void path; ORM
listeners on Sale and SaleLine reject both.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Iterable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Branch, Business, Product, ReceiptSequence, Sale, SaleLine, StaffMember, StockMovement
from ..time_utils import utcnow
from ..validation import MAX_LINE_QUANTITY, ValidationError, parse_int, parse_positive_int
from ..visibility import Actor, require_branch_access, require_visible, scope
from .concurrency import branch_lock, run_with_retry
from .permission_service import require_permission
from .stock_service import BranchClosedError, DeductionReceipt, ProductSnapshot, deduct


PRICE_TYPES = ("retail", "wholesale")
PAYMENT_METHODS = ("Cash", "Bank", "Mobile")
DEFAULT_PAYMENT_METHOD = "Cash"
RECEIPT_PREFIX = "R-"
RECEIPT_PAD = 6


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    tax_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    quantity: int
    unit_price_cents: int
    price_type: str = "retail"

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


def round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounding halves up, for non-negative operands."""
    return (2 * numerator + denominator) // (2 * denominator)


def compute_totals(business: Business, priced_lines: Iterable[PricedLine]) -> SaleTotals:
    """
    Subtotal, tax and total in cents under the business tax rule.

    Exclusive tax is added on top; inclusive tax is extracted from the
    subtotal, which then equals the total.
    """
    subtotal = sum(line.line_total_cents for line in priced_lines)
    bps = business.tax_rate_bps or 0

    if not business.tax_enabled or bps == 0:
        return SaleTotals(subtotal_cents=subtotal, tax_cents=0, total_cents=subtotal)

    if business.tax_inclusive:
        net = round_half_up_div(subtotal * 10000, 10000 + bps)
        return SaleTotals(subtotal_cents=subtotal, tax_cents=subtotal - net, total_cents=subtotal)

    tax = round_half_up_div(subtotal * bps, 10000)
    return SaleTotals(subtotal_cents=subtotal, tax_cents=tax, total_cents=subtotal + tax)


def _price_for(prices: dict[str, int | None], price_type: str, unit_price_cents: Any, product_id: int) -> tuple[str, int]:
    """
    Resolve the unit price of a line.

    An explicit unit price must match one of the product's offered prices.
    """
    if unit_price_cents is not None:
        price = parse_int(unit_price_cents, "unit_price_cents")
        if price_type is None:
            matches = [ptype for ptype in PRICE_TYPES if prices.get(ptype) == price]
            if not matches:
                raise SaleError(
                    "Unit price does not match any offered price",
                    details={"product_id": product_id, "unit_price_cents": price},
                )
            return matches[0], price
    else:
        price = None

    ptype = price_type or "retail"
    if ptype not in PRICE_TYPES:
        raise ValidationError(f"price_type must be one of {', '.join(PRICE_TYPES)}")
    offered = prices.get(ptype)
    if offered is None:
        raise SaleError(
            f"Product has no {ptype} price",
            details={"product_id": product_id, "price_type": ptype},
        )
    if price is not None and price != offered:
        raise SaleError(
            "Unit price does not match the offered price",
            details={"product_id": product_id, "price_type": ptype, "unit_price_cents": price, "offered_cents": offered},
        )
    return ptype, offered


def _snapshot_prices(snapshot: ProductSnapshot) -> dict[str, int | None]:
    return {"retail": snapshot.retail_price_cents, "wholesale": snapshot.wholesale_price_cents}


def _raw_line(line: Any) -> dict:
    if isinstance(line, PricedLine):
        return asdict(line)
    if isinstance(line, dict):
        return line
    raise ValidationError("Each line must be an object")


def next_receipt_number(business_id: int) -> str:
    """
    Atomically allocate the next receipt number for a business.

    R-000001, R-000002, ... strictly increasing per business.
    """
    stmt = (
        update(ReceiptSequence)
        .where(ReceiptSequence.business_id == business_id)
        .values(next_number=ReceiptSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(ReceiptSequence(business_id=business_id, next_number=2))
            return f"{RECEIPT_PREFIX}{1:0{RECEIPT_PAD}d}"
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(ReceiptSequence.next_number)
        .filter_by(business_id=business_id)
        .scalar()
    )
    return f"{RECEIPT_PREFIX}{current - 1:0{RECEIPT_PAD}d}"


def record_sale(
    receipt: DeductionReceipt,
    *,
    business_id: int,
    branch_id: int,
    staff_id: int,
    lines: Iterable[Any],
    totals: SaleTotals,
    customer_ref: str | None = None,
    payment_method: str | None = None,
    customer_count: int = 1,
    commit: bool = True,
) -> Sale:
    """
    Append an immutable sale for a completed deduction.

    Raises:
        SaleError: no receipt, receipt for another branch / line set, receipt
            already used, price mismatch, totals mismatch
        BranchClosedError: branch inactive
    """
    if not isinstance(receipt, DeductionReceipt):
        raise SaleError("A successful stock deduction is required before recording a sale")

    lines = [_raw_line(line) for line in lines]
    if receipt.business_id != business_id or not receipt.covers(branch_id, lines):
        raise SaleError(
            "Sale lines do not match the stock deduction",
            details={"branch_id": branch_id, "receipt_branch_id": receipt.branch_id},
        )

    unconsumed = (
        db.session.query(StockMovement)
        .filter(StockMovement.id.in_(receipt.movement_ids), StockMovement.sale_id.is_(None))
        .count()
    )
    if unconsumed != len(receipt.movement_ids):
        raise SaleError("Stock deduction has already been recorded as a sale")

    branch = db.session.get(Branch, branch_id)
    if branch is None or branch.business_id != business_id:
        raise SaleError("Branch not found", details={"branch_id": branch_id})
    if not branch.is_active:
        raise BranchClosedError(branch.id, branch.name)

    staff = db.session.get(StaffMember, staff_id)
    if staff is None or staff.business_id != business_id or not staff.is_active:
        raise SaleError("Staff member not found", details={"staff_id": staff_id})

    business = db.session.get(Business, business_id)

    priced: list[PricedLine] = []
    sale_lines: list[SaleLine] = []
    for position, raw in enumerate(lines, start=1):
        product_id = parse_positive_int(raw.get("product_id"), "product_id")
        quantity = parse_positive_int(raw.get("quantity"), "quantity", maximum=MAX_LINE_QUANTITY)
        snapshot = receipt.snapshot_for(product_id)
        price_type, unit_price = _price_for(
            _snapshot_prices(snapshot), raw.get("price_type"), raw.get("unit_price_cents"), product_id
        )
        line = PricedLine(product_id=product_id, quantity=quantity, unit_price_cents=unit_price, price_type=price_type)
        priced.append(line)
        sale_lines.append(SaleLine(
            position=position,
            product_id=product_id,
            product_name=snapshot.name,
            sku=snapshot.sku,
            price_type=price_type,
            quantity=quantity,
            unit_price_cents=unit_price,
            unit_cost_cents=snapshot.unit_cost_cents,
            line_total_cents=line.line_total_cents,
        ))

    expected = compute_totals(business, priced)
    if totals != expected:
        raise SaleError(
            "Sale totals do not match the priced lines",
            details={
                "expected": expected.to_dict(),
                "submitted": totals.to_dict() if isinstance(totals, SaleTotals) else None,
            },
        )

    method = payment_method or DEFAULT_PAYMENT_METHOD
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
    count = parse_positive_int(customer_count, "customer_count")

    sale = Sale(
        receipt_number=next_receipt_number(business_id),
        business_id=business_id,
        branch_id=branch.id,
        staff_id=staff.id,
        staff_role=staff.role.value,
        staff_name=staff.full_name,
        customer_ref=(customer_ref or "").strip()[:255] or None,
        payment_method=method,
        customer_count=count,
        subtotal_cents=expected.subtotal_cents,
        tax_cents=expected.tax_cents,
        total_cents=expected.total_cents,
        created_at=utcnow(),
        lines=sale_lines,
    )
    db.session.add(sale)
    db.session.flush()

    db.session.query(StockMovement).filter(StockMovement.id.in_(receipt.movement_ids)).update(
        {"sale_id": sale.id, "note": f"Sale {sale.receipt_number}"},
        synchronize_session=False,
    )

    if commit:
        db.session.commit()
    return sale


def _parse_checkout_lines(lines: Any) -> list[dict]:
    if not isinstance(lines, (list, tuple)) or not lines:
        raise ValidationError("At least one line is required")
    parsed = []
    for index, raw in enumerate(lines):
        raw = _raw_line(raw)
        parsed.append({
            "product_id": parse_positive_int(raw.get("product_id"), f"lines[{index}].product_id"),
            "quantity": parse_positive_int(raw.get("quantity"), f"lines[{index}].quantity", maximum=MAX_LINE_QUANTITY),
            "unit_price_cents": raw.get("unit_price_cents"),
            "price_type": raw.get("price_type"),
        })
    return parsed


def checkout(
    actor: Actor,
    *,
    branch_id,
    lines: Any,
    customer_ref: str | None = None,
    payment_method: str | None = None,
    customer_count: Any = 1,
) -> Sale:
    """
    Checkout entry point: deduct then record, one transaction, one branch lock.

    Prices are resolved from the products' offered prices; totals are
    computed here and re-verified by record_sale against the snapshots taken
    under lock. On any failure nothing is committed.
    """
    require_permission(actor, "PROCESS_SALE", resource="/api/sales")
    branch_id = parse_positive_int(branch_id, "branch_id")
    branch = db.session.get(Branch, branch_id)
    require_branch_access(actor, branch, action="write", resource="sale")
    if not branch.is_active:
        raise BranchClosedError(branch.id, branch.name)

    parsed = _parse_checkout_lines(lines)
    count = parse_positive_int(customer_count if customer_count is not None else 1, "customer_count")

    def _op():
        with branch_lock(branch_id):
            try:
                products = {
                    p.id: p
                    for p in db.session.query(Product)
                    .filter(Product.branch_id == branch_id, Product.id.in_([l["product_id"] for l in parsed]))
                    .populate_existing()
                    .all()
                }
                priced = []
                for line in parsed:
                    product = products.get(line["product_id"])
                    if product is None:
                        # Let the ledger report unknown products uniformly
                        priced = None
                        break
                    price_type, unit_price = _price_for(
                        product.sell_prices(), line["price_type"], line["unit_price_cents"], product.id
                    )
                    priced.append(PricedLine(
                        product_id=product.id,
                        quantity=line["quantity"],
                        unit_price_cents=unit_price,
                        price_type=price_type,
                    ))

                receipt = deduct(
                    branch_id,
                    parsed,
                    staff_id=actor.staff_id,
                    business_id=actor.business_id,
                    commit=False,
                )

                business = db.session.get(Business, actor.business_id)
                totals = compute_totals(business, priced)
                sale = record_sale(
                    receipt,
                    business_id=actor.business_id,
                    branch_id=branch_id,
                    staff_id=actor.staff_id,
                    lines=[asdict(line) for line in priced],
                    totals=totals,
                    customer_ref=customer_ref,
                    payment_method=payment_method,
                    customer_count=count,
                    commit=False,
                )
                db.session.commit()
                return sale
            except Exception:
                db.session.rollback()
                raise

    return run_with_retry(_op)


def get_sale(actor: Actor, sale_id: int) -> Sale:
    """Return a sale visible to the actor; ScopeViolation otherwise (rendered as not found)."""
    require_permission(actor, "VIEW_SALES", resource="/api/sales")
    sale = db.session.get(Sale, sale_id)
    return require_visible(actor, sale, action="read", resource="sale")


def list_sales(
    actor: Actor,
    start=None,
    end=None,
    *,
    branch_id: int | None = None,
    staff_id: int | None = None,
    limit: int = 100,
) -> list[Sale]:
    """Scoped sales, newest first. start inclusive, end exclusive (UTC)."""
    require_permission(actor, "VIEW_SALES", resource="/api/sales")
    current = scope(actor).narrow(branch_id=branch_id, staff_id=staff_id)
    query = current.apply(db.session.query(Sale), Sale)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at < end)
    limit = max(1, min(100 if limit is None else int(limit), 500))
    return query.order_by(Sale.id.desc()).limit(limit).all()
