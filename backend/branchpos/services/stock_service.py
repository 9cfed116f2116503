# Overview: Stock Ledger. Sole owner and mutator of quantity on hand per product per branch.

"""
Stock Ledger

WHY: A multi-item sale must never leave inventory half-deducted, and two
terminals selling the last unit must not both succeed.

deduct() validates the whole batch before touching anything. The commit
runs inside a per-branch critical section (concurrency.branch_lock), takes
row locks where the database supports them, and decrements with a
conditional UPDATE ... WHERE stock_quantity >= :qty. If any conditional
update misses, the transaction rolls back and nothing changes.

Every mutation appends a StockMovement row. Nothing else in the codebase
writes Product.stock_quantity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import select, update

from ..extensions import db
from ..models import Branch, Product, StockMovement
from ..models.inventory import MOVEMENT_RECEIVE, MOVEMENT_SALE
from ..time_utils import utcnow
from ..validation import MAX_LINE_QUANTITY, ValidationError, parse_positive_int
from ..visibility import Actor, ScopeViolation, require_visible, scope
from .concurrency import branch_lock, lock_for_update, run_with_retry
from .permission_service import log_security_event, require_permission


class StockError(Exception):
    """Base class for stock ledger failures."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(StockError):
    """
    Recoverable: the caller asked for more than is on hand.

    product_id / available / requested describe the first short line;
    details["items"] lists every short line in the batch.
    """
    def __init__(
        self,
        product_id: int,
        available: int,
        requested: int,
        product_name: str | None = None,
        items: list[dict] | None = None,
    ):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        self.product_name = product_name
        self.items = items or [{
            "product_id": product_id,
            "product_name": product_name,
            "available": available,
            "requested": requested,
        }]
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}: available {available}, requested {requested}",
            details={"items": self.items},
        )


class UnknownProductError(StockError):
    """Data-integrity error: a product id does not exist in the branch. Not retried."""
    def __init__(self, branch_id: int, product_ids: list[int]):
        self.branch_id = branch_id
        self.product_ids = product_ids
        super().__init__(
            "Unknown product",
            details={"branch_id": branch_id, "product_ids": product_ids},
        )


class BranchClosedError(StockError):
    """The branch is inactive and rejects stock and sale writes."""
    def __init__(self, branch_id: int, branch_name: str | None = None):
        self.branch_id = branch_id
        super().__init__(
            "Branch is inactive",
            details={"branch_id": branch_id, "branch_name": branch_name},
        )


@dataclass(frozen=True)
class StockLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class ProductSnapshot:
    """Product fields captured under lock at deduction time."""
    product_id: int
    name: str
    sku: str
    unit_cost_cents: int
    retail_price_cents: int
    wholesale_price_cents: int | None
    quantity_after: int


@dataclass(frozen=True)
class DeductionReceipt:
    """
    Proof of a successful deduct(). record_sale() requires one.

    lines are normalized: one entry per product, ordered by product id.
    """
    business_id: int
    branch_id: int
    lines: tuple[StockLine, ...]
    snapshots: tuple[ProductSnapshot, ...]
    movement_ids: tuple[int, ...]

    def snapshot_for(self, product_id: int) -> ProductSnapshot:
        for snap in self.snapshots:
            if snap.product_id == product_id:
                return snap
        raise KeyError(product_id)

    def covers(self, branch_id: int, lines: Iterable[Any]) -> bool:
        """True if this receipt was issued for exactly this branch and line set."""
        try:
            return self.branch_id == branch_id and normalize_lines(lines) == self.lines
        except ValidationError:
            return False


def _line_fields(line: Any) -> tuple[Any, Any]:
    if isinstance(line, StockLine):
        return line.product_id, line.quantity
    if isinstance(line, dict):
        return line.get("product_id"), line.get("quantity")
    return getattr(line, "product_id", None), getattr(line, "quantity", None)


def normalize_lines(lines: Iterable[Any]) -> tuple[StockLine, ...]:
    """
    Validate and merge a batch.

    Quantities for a repeated product id are summed. The result is ordered by
    product id, which is also the row-lock order.
    """
    if lines is None:
        raise ValidationError("At least one line is required")

    totals: dict[int, int] = {}
    count = 0
    for index, line in enumerate(lines):
        count += 1
        raw_product_id, raw_quantity = _line_fields(line)
        if raw_product_id is None:
            raise ValidationError(f"lines[{index}].product_id is required")
        product_id = parse_positive_int(raw_product_id, f"lines[{index}].product_id")
        quantity = parse_positive_int(raw_quantity, f"lines[{index}].quantity", maximum=MAX_LINE_QUANTITY)
        totals[product_id] = totals.get(product_id, 0) + quantity

    if count == 0:
        raise ValidationError("At least one line is required")

    return tuple(StockLine(product_id=pid, quantity=qty) for pid, qty in sorted(totals.items()))


def _require_active_branch(branch_id: int, business_id: int | None) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None or (business_id is not None and branch.business_id != business_id):
        raise ScopeViolation("Branch not found", details={"branch_id": branch_id})
    if not branch.is_active:
        raise BranchClosedError(branch.id, branch.name)
    return branch


def _report_unknown_products(branch: Branch, product_ids: list[int], staff_id: int | None) -> None:
    db.session.rollback()
    log_security_event(
        staff_id=staff_id,
        event_type="UNKNOWN_PRODUCT",
        success=False,
        resource="stock_ledger",
        action="deduct",
        reason=f"Products {product_ids} not found in branch {branch.id}",
        business_id=branch.business_id,
        branch_id=branch.id,
    )


def _deduct_locked(
    branch_id: int,
    normalized: tuple[StockLine, ...],
    *,
    staff_id: int | None,
    business_id: int | None,
) -> DeductionReceipt:
    branch = _require_active_branch(branch_id, business_id)

    product_ids = [line.product_id for line in normalized]
    products = (
        lock_for_update(
            db.session.query(Product)
            .filter(Product.branch_id == branch.id, Product.id.in_(product_ids))
            .order_by(Product.id)
        )
        .populate_existing()
        .all()
    )
    by_id = {p.id: p for p in products}

    missing = [pid for pid in product_ids if pid not in by_id]
    if missing:
        _report_unknown_products(branch, missing, staff_id)
        raise UnknownProductError(branch.id, missing)

    inactive = [pid for pid in product_ids if not by_id[pid].is_active]
    if inactive:
        raise ValidationError("Product is not available for sale", details={"product_ids": inactive})

    # Validate the whole batch before any mutation
    short = []
    for line in normalized:
        product = by_id[line.product_id]
        if line.quantity > product.stock_quantity:
            short.append({
                "product_id": product.id,
                "product_name": product.name,
                "available": product.stock_quantity,
                "requested": line.quantity,
            })
    if short:
        db.session.rollback()
        first = short[0]
        raise InsufficientStockError(
            first["product_id"], first["available"], first["requested"], first["product_name"], items=short
        )

    now = utcnow()
    snapshots = []
    movements = []
    for line in normalized:
        result = db.session.execute(
            update(Product)
            .where(Product.id == line.product_id, Product.stock_quantity >= line.quantity)
            .values(stock_quantity=Product.stock_quantity - line.quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Another writer got there first; undo every decrement in this batch
            db.session.rollback()
            available = db.session.execute(
                select(Product.stock_quantity).where(Product.id == line.product_id)
            ).scalar_one()
            raise InsufficientStockError(line.product_id, available, line.quantity, by_id[line.product_id].name)

        product = by_id[line.product_id]
        db.session.refresh(product, ["stock_quantity"])

        snapshots.append(ProductSnapshot(
            product_id=product.id,
            name=product.name,
            sku=product.sku,
            unit_cost_cents=product.unit_cost_cents,
            retail_price_cents=product.retail_price_cents,
            wholesale_price_cents=product.wholesale_price_cents,
            quantity_after=product.stock_quantity,
        ))

        movement = StockMovement(
            business_id=branch.business_id,
            branch_id=branch.id,
            product_id=product.id,
            kind=MOVEMENT_SALE,
            quantity_delta=-line.quantity,
            quantity_after=product.stock_quantity,
            staff_id=staff_id,
            occurred_at=now,
        )
        db.session.add(movement)
        movements.append(movement)

    db.session.flush()

    return DeductionReceipt(
        business_id=branch.business_id,
        branch_id=branch.id,
        lines=normalized,
        snapshots=tuple(snapshots),
        movement_ids=tuple(m.id for m in movements),
    )


def deduct(
    branch_id: int,
    lines: Iterable[Any],
    *,
    staff_id: int | None = None,
    business_id: int | None = None,
    commit: bool = True,
) -> DeductionReceipt:
    """
    Atomically deduct a batch of lines from one branch.

    All-or-nothing: any short line raises InsufficientStockError and no
    product changes. With commit=False the caller owns the transaction and
    must commit or roll back (checkout does this to record the sale in the
    same unit of work).
    """
    normalized = normalize_lines(lines)

    def _op():
        with branch_lock(branch_id):
            receipt = _deduct_locked(branch_id, normalized, staff_id=staff_id, business_id=business_id)
            if commit:
                db.session.commit()
            return receipt

    if not commit:
        return _op()
    return run_with_retry(_op)


def get_stock(branch_id: int, product_id: int) -> int:
    """Read accessor for quantity on hand."""
    quantity = db.session.execute(
        select(Product.stock_quantity).where(Product.id == product_id, Product.branch_id == branch_id)
    ).scalar_one_or_none()
    if quantity is None:
        raise UnknownProductError(branch_id, [product_id])
    return quantity


def receive_stock(
    branch_id: int,
    product_id: int,
    quantity: Any,
    *,
    staff_id: int | None = None,
    note: str | None = None,
    business_id: int | None = None,
    commit: bool = True,
) -> StockMovement:
    """Restock a product. The branch must be active."""
    qty = parse_positive_int(quantity, "quantity", maximum=MAX_LINE_QUANTITY)

    def _op():
        with branch_lock(branch_id):
            branch = _require_active_branch(branch_id, business_id)
            product = lock_for_update(
                db.session.query(Product).filter_by(id=product_id, branch_id=branch.id)
            ).first()
            if product is None:
                raise UnknownProductError(branch.id, [product_id])

            db.session.execute(
                update(Product)
                .where(Product.id == product.id)
                .values(stock_quantity=Product.stock_quantity + qty)
                .execution_options(synchronize_session=False)
            )
            db.session.refresh(product, ["stock_quantity"])

            movement = StockMovement(
                business_id=branch.business_id,
                branch_id=branch.id,
                product_id=product.id,
                kind=MOVEMENT_RECEIVE,
                quantity_delta=qty,
                quantity_after=product.stock_quantity,
                staff_id=staff_id,
                note=note,
                occurred_at=utcnow(),
            )
            db.session.add(movement)
            if commit:
                db.session.commit()
            else:
                db.session.flush()
            return movement

    if not commit:
        return _op()
    return run_with_retry(_op)


def list_low_stock(actor: Actor, branch_id: int | None = None) -> list[Product]:
    """Active products below their low-stock threshold, within the actor's scope."""
    require_permission(actor, "VIEW_INVENTORY", resource="/api/products/low-stock")
    current = scope(actor).narrow(branch_id=branch_id)
    query = current.apply(db.session.query(Product), Product).filter(
        Product.is_active.is_(True),
        Product.stock_quantity < Product.low_stock_threshold,
    )
    return query.order_by(Product.stock_quantity.asc(), Product.id.asc()).all()


def list_movements(actor: Actor, product_id: int, limit: int = 100) -> list[StockMovement]:
    """
    Stock movement history for one product, newest first.

    Rows pass through the actor's scope like any other read, so cashiers
    see only the movements they made.
    """
    require_permission(actor, "VIEW_INVENTORY", resource="/api/products/movements")
    product = db.session.get(Product, product_id)
    require_visible(actor, product, action="read", resource="product")
    return (
        scope(actor)
        .apply(db.session.query(StockMovement), StockMovement)
        .filter(StockMovement.product_id == product.id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )
