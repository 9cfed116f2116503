# backend/branchpos/services/products_service.py
"""
Products Service

MULTI-TENANT: All product operations are tenant and branch scoped.
- list_products filters through the actor's visibility scope
- create_product requires a branch the actor may write to
- update_product validates visibility before touching the row

Stock quantity is never patched here. Opening stock and restocking go
through stock_service.receive_stock so every change leaves a movement row.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Product
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_product,
    parse_positive_int,
    validate_payload,
)
from ..visibility import Actor, require_branch_access, require_visible, scope
from .permission_service import require_permission
from .stock_service import BranchClosedError, receive_stock
from .tenant_service import require_branch_in_business


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "name",
        "category",
        "unit_cost_cents",
        "retail_price_cents",
        "wholesale_price_cents",
        "low_stock_threshold",
        "is_active",
    },
    required_on_create={"sku", "name", "retail_price_cents"},
)


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_POLICY.writable_fields:
            continue
        setattr(p, k, v)


def list_products(
    actor: Actor,
    *,
    branch_id: int | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Scoped product listing with optional pagination.

    A branch_id outside the actor's scope yields an empty list.
    """
    require_permission(actor, "VIEW_INVENTORY", resource="/api/products")
    current = scope(actor).narrow(branch_id=branch_id)

    base_query = current.apply(db.session.query(Product), Product)
    if not include_inactive:
        base_query = base_query.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        base_query = base_query.filter(or_(Product.name.ilike(like), Product.sku.ilike(like)))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(actor: Actor, product_id: int) -> Product:
    require_permission(actor, "VIEW_INVENTORY", resource="/api/products")
    product = db.session.get(Product, product_id)
    return require_visible(actor, product, action="read", resource="product")


def create_product(actor: Actor, *, branch_id, payload: dict, opening_stock=None) -> Product:
    """
    Create a product in one branch, optionally with opening stock.

    Raises:
        TenantAccessError / ScopeViolation: branch outside the actor's reach
        BranchClosedError: branch inactive
        ConflictError: SKU already exists in the branch
    """
    require_permission(actor, "MANAGE_PRODUCTS", resource="/api/products")
    if branch_id is None:
        raise ValidationError("branch_id is required")
    branch_id = parse_positive_int(branch_id, "branch_id")

    branch = require_branch_in_business(branch_id, actor.business_id)
    require_branch_access(actor, branch, action="write", resource="product")
    if not branch.is_active:
        raise BranchClosedError(branch.id, branch.name)

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    existing = (
        db.session.query(Product)
        .filter(Product.branch_id == branch.id, Product.sku == patch["sku"])
        .first()
    )
    if existing:
        raise ConflictError("SKU already exists for this branch.")

    p = Product(business_id=branch.business_id, branch_id=branch.id, stock_quantity=0)
    apply_product_patch(p, patch)
    db.session.add(p)
    db.session.flush()

    if opening_stock not in (None, 0, "0"):
        receive_stock(
            branch.id,
            p.id,
            opening_stock,
            staff_id=actor.staff_id,
            note="Opening stock",
            business_id=actor.business_id,
            commit=False,
        )

    db.session.commit()
    return p


def update_product(actor: Actor, product_id: int, payload: dict) -> Product:
    """
    Administrative edits (name, prices, cost, threshold, active flag).

    Price edits never touch recorded sales; sale lines hold frozen copies.
    Products of an inactive branch are frozen until it is reactivated.
    """
    require_permission(actor, "MANAGE_PRODUCTS", resource="/api/products")
    product = db.session.get(Product, product_id)
    require_visible(actor, product, action="write", resource="product")
    if not product.branch.is_active:
        raise BranchClosedError(product.branch_id, product.branch.name)

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    if "sku" in patch and patch["sku"] != product.sku:
        clash = (
            db.session.query(Product)
            .filter(Product.branch_id == product.branch_id, Product.sku == patch["sku"], Product.id != product.id)
            .first()
        )
        if clash:
            raise ConflictError("SKU already exists for this branch.")

    apply_product_patch(product, patch)
    db.session.commit()
    return product


def receive_product_stock(actor: Actor, product_id: int, quantity, note: str | None = None):
    """Restock through the ledger after permission and visibility checks."""
    require_permission(actor, "RECEIVE_STOCK", resource="/api/products/receive")
    product = db.session.get(Product, product_id)
    require_visible(actor, product, action="write", resource="product")
    return receive_stock(
        product.branch_id,
        product.id,
        quantity,
        staff_id=actor.staff_id,
        note=note,
        business_id=actor.business_id,
    )
