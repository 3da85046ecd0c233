# Overview: Product and category management; keeps the stock ledger in step with manual edits.

from __future__ import annotations

from sqlalchemy import or_, func

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Category, Product, InvoiceItem, StoreSetting
from .activity_service import log_activity
from .concurrency import begin_write, commit_with_retry, lock_for_update, run_with_retry
from .inventory_service import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_PURCHASE,
    record_stock_movement,
)
from .pagination import paginate


# =============================================================================
# PRODUCTS
# =============================================================================

def _ensure_unique_codes(patch: dict, *, exclude_id: int | None = None) -> None:
    for field in ("sku", "barcode"):
        value = patch.get(field)
        if not value:
            continue
        q = db.session.query(Product.id).filter(getattr(Product, field) == value)
        if exclude_id is not None:
            q = q.filter(Product.id != exclude_id)
        if q.first() is not None:
            raise ConflictError(f"Product with {field} '{value}' already exists")


def _ensure_category(category_id: int | None) -> None:
    if category_id is not None and db.session.get(Category, category_id) is None:
        raise NotFoundError(f"Category {category_id} not found")


def list_products(
    *,
    query: str | None = None,
    category_id: int | None = None,
    low_stock: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional search and pagination.

    query matches name, description, sku or barcode. low_stock keeps
    products at or below their own min_stock.
    """
    q = db.session.query(Product)
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)
    if query:
        like = f"%{query.strip()}%"
        q = q.filter(or_(
            Product.name.ilike(like),
            Product.description.ilike(like),
            Product.sku.ilike(like),
            Product.barcode.ilike(like),
        ))
    if low_stock:
        q = q.filter(Product.stock <= Product.min_stock)

    q = q.order_by(Product.updated_at.desc(), Product.id.desc())
    return paginate(q, page=page, per_page=per_page, serialize=lambda p: p.to_dict())


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def create_product(*, patch: dict, user_id: int | None = None) -> Product:
    """
    Create a product. Initial stock is written to the ledger as `purchase`.
    Missing tax_rate_bps falls back to the store default.
    """
    def _op():
        begin_write()
        _ensure_unique_codes(patch)
        _ensure_category(patch.get("category_id"))

        fields = dict(patch)
        if fields.get("tax_rate_bps") is None:
            settings = db.session.get(StoreSetting, 1)
            fields["tax_rate_bps"] = settings.default_tax_rate_bps if settings else 0
        initial_stock = fields.pop("stock", None) or 0

        product = Product(**fields, stock=initial_stock)
        db.session.add(product)
        db.session.flush()

        if initial_stock > 0:
            record_stock_movement(
                product_id=product.id,
                quantity_delta=initial_stock,
                movement_type=MOVEMENT_PURCHASE,
                note="Initial stock",
                user_id=user_id,
            )

        log_activity(
            user_id=user_id,
            action="CREATE_PRODUCT",
            entity_type="product",
            entity_id=product.id,
            details=f"Created product: {product.name}",
        )
        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(
    *,
    product_id: int,
    patch: dict,
    user_id: int | None = None,
    stock_note: str | None = None,
) -> Product:
    """
    Patch a product. A stock change is written to the ledger: `purchase`
    when stock rises, `adjustment` when it falls.
    """
    def _op():
        begin_write()
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")

        _ensure_unique_codes(patch, exclude_id=product.id)
        if "category_id" in patch:
            _ensure_category(patch["category_id"])

        fields = dict(patch)
        new_stock = fields.pop("stock", None)
        for k, v in fields.items():
            setattr(product, k, v)

        if new_stock is not None and new_stock != product.stock:
            delta = new_stock - product.stock
            product.stock = new_stock
            record_stock_movement(
                product_id=product.id,
                quantity_delta=delta,
                movement_type=MOVEMENT_PURCHASE if delta > 0 else MOVEMENT_ADJUSTMENT,
                note=stock_note or "Manual adjustment",
                user_id=user_id,
            )

        log_activity(
            user_id=user_id,
            action="UPDATE_PRODUCT",
            entity_type="product",
            entity_id=product.id,
            details=f"Updated product: {product.name}",
        )
        db.session.commit()
        return product

    return run_with_retry(_op)


def delete_product(*, product_id: int, user_id: int | None = None) -> None:
    """Delete a product that has never been invoiced."""
    product = get_product(product_id)

    used = db.session.query(InvoiceItem.id).filter(InvoiceItem.product_id == product_id).first()
    if used is not None:
        raise ValidationError(
            "Cannot delete product that has been used in invoices",
            details={"suggestion": "Consider setting stock to 0 instead"},
        )

    def _op():
        begin_write()
        name = product.name
        # Ledger rows go with the product they describe
        product.stock_history.delete(synchronize_session=False)
        db.session.delete(product)
        log_activity(
            user_id=user_id,
            action="DELETE_PRODUCT",
            entity_type="product",
            entity_id=product_id,
            details=f"Deleted product: {name}",
        )
        db.session.commit()

    run_with_retry(_op)


def bulk_update_products(*, updates: list, user_id: int | None = None, validate) -> list[dict]:
    """
    Apply several product patches. Each entry succeeds or fails on its own.

    `validate` turns a raw payload into a clean patch (the route's policy).
    """
    if not isinstance(updates, list):
        raise ValidationError("products must be a list")

    results = []
    for item in updates:
        product_id = item.get("id") if isinstance(item, dict) else None
        if not product_id:
            results.append({"id": None, "error": "Product ID is required"})
            continue
        payload = {k: v for k, v in item.items() if k != "id"}
        try:
            patch = validate(payload)
            update_product(product_id=product_id, patch=patch, user_id=user_id)
        except (ValidationError, NotFoundError, ConflictError) as e:
            results.append({"id": product_id, "error": str(e)})
            continue
        results.append({"id": product_id, "success": True})
    return results


# =============================================================================
# CATEGORIES
# =============================================================================

def list_categories() -> list[dict]:
    counts = dict(
        db.session.query(Product.category_id, func.count(Product.id))
        .filter(Product.category_id.isnot(None))
        .group_by(Product.category_id)
        .all()
    )
    categories = db.session.query(Category).order_by(Category.name.asc()).all()
    return [c.to_dict(product_count=counts.get(c.id, 0)) for c in categories]


def _ensure_unique_category_name(name: str, *, exclude_id: int | None = None) -> None:
    q = db.session.query(Category.id).filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(Category.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Category with this name already exists")


def create_category(*, patch: dict, user_id: int | None = None) -> Category:
    _ensure_unique_category_name(patch["name"])

    category = Category(**patch)
    db.session.add(category)
    db.session.flush()
    log_activity(
        user_id=user_id,
        action="CREATE_CATEGORY",
        entity_type="category",
        entity_id=category.id,
        details=f"Created category: {category.name}",
    )
    commit_with_retry()
    return category


def update_category(*, category_id: int, patch: dict, user_id: int | None = None) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")
    if patch.get("name"):
        _ensure_unique_category_name(patch["name"], exclude_id=category_id)

    for k, v in patch.items():
        setattr(category, k, v)
    log_activity(
        user_id=user_id,
        action="UPDATE_CATEGORY",
        entity_type="category",
        entity_id=category.id,
        details=f"Updated category: {category.name}",
    )
    commit_with_retry()
    return category


def delete_category(*, category_id: int, force: bool = False, user_id: int | None = None) -> dict:
    """
    Delete a category. With products attached this needs force=True, and
    those products become uncategorized.
    """
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")

    product_count = db.session.query(Product).filter(Product.category_id == category_id).count()
    if product_count and not force:
        raise ValidationError(
            "Category has products associated with it",
            details={
                "product_count": product_count,
                "message": "Set force=true to remove anyway - products will be uncategorized",
            },
        )

    if product_count:
        db.session.query(Product).filter(Product.category_id == category_id).update(
            {Product.category_id: None}, synchronize_session=False
        )

    name = category.name
    db.session.delete(category)
    log_activity(
        user_id=user_id,
        action="DELETE_CATEGORY",
        entity_type="category",
        entity_id=category_id,
        details=f"Deleted category: {name} ({product_count} products uncategorized)",
    )
    commit_with_retry()
    return {"deleted": True, "uncategorized_products": product_count}
