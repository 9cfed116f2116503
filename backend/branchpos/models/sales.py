from __future__ import annotations

from sqlalchemy import event, inspect

from ..extensions import db
from ..time_utils import to_utc_z


class ImmutableRecordError(Exception):
    """Raised when code attempts to change or remove a recorded sale."""
    pass


class Sale(db.Model):
    """
    Completed sale. Immutable once appended.

    A sale is written exactly once per checkout, in the same transaction as
    the stock deduction for its lines. Lines carry frozen copies of product
    name, price and cost so later product edits never change history.

    id is autoincrement without reuse, so it orders sales monotonically;
    receipt_number is the human-readable per-business sequence.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("business_id", "receipt_number", name="uq_sales_business_receipt"),
        db.Index("ix_sales_business_created", "business_id", "created_at"),
        db.Index("ix_sales_branch_created", "branch_id", "created_at"),
        db.Index("ix_sales_staff_created", "staff_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_number = db.Column(db.String(32), nullable=False)

    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff_members.id"), nullable=False)

    # Attribution snapshot at time of sale
    staff_role = db.Column(db.String(16), nullable=False)
    staff_name = db.Column(db.String(255), nullable=False)

    customer_ref = db.Column(db.String(255), nullable=True)
    payment_method = db.Column(db.String(32), nullable=True)
    customer_count = db.Column(db.Integer, nullable=False, default=1)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship(
        "SaleLine",
        backref="sale",
        order_by="SaleLine.position",
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<Sale id={self.id} receipt={self.receipt_number!r} total_cents={self.total_cents}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "business_id": self.business_id,
            "branch_id": self.branch_id,
            "staff_id": self.staff_id,
            "staff_role": self.staff_role,
            "staff_name": self.staff_name,
            "customer_ref": self.customer_ref,
            "payment_method": self.payment_method,
            "customer_count": self.customer_count,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Line item on a sale; a frozen snapshot of the product at sale time."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "position", name="uq_sale_lines_position"),
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    price_type = db.Column(db.String(16), nullable=False, default="retail")

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "price_type": self.price_type,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
        }


class ReceiptSequence(db.Model):
    """
    Atomic per-business receipt number sequence.

    Allocation is an UPDATE ... SET next_number = next_number + 1 so two
    checkouts never share a number.
    """
    __tablename__ = "receipt_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)


def _reject_update(mapper, connection, target):
    state = inspect(target)
    changed = [
        prop.key
        for prop in mapper.column_attrs
        if state.attrs[prop.key].history.has_changes()
    ]
    if changed:
        raise ImmutableRecordError(
            f"{type(target).__name__} {target.id} is immutable (attempted change: {', '.join(changed)})"
        )


def _reject_delete(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} {target.id} cannot be deleted")


for _model in (Sale, SaleLine):
    event.listen(_model, "before_update", _reject_update)
    event.listen(_model, "before_delete", _reject_delete)
