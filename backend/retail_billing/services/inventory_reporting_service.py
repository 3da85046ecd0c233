# Overview: Inventory reports; stock status, ledger movement, valuation and turnover.

from __future__ import annotations

from ..extensions import db
from ..errors import ValidationError
from ..models import Category, Invoice, InvoiceItem, Product, StockHistory
from .invoice_service import INVOICE_STATUS_VOIDED
from .report_utils import average, percent_of, period_payload, resolve_window


INVENTORY_REPORT_TYPES = ("overview", "stock-status", "movement", "valuation", "turnover")

STOCK_STATUS_OUT = "out_of_stock"
STOCK_STATUS_LOW = "low_stock"
STOCK_STATUS_IN = "in_stock"

DEFAULT_LIMIT = 100
RECENT_MOVEMENTS = 5
UNCATEGORIZED = "Uncategorized"


def stock_status(product: Product) -> str:
    """out_of_stock at 0, low_stock at or below the product's min_stock."""
    if product.stock == 0:
        return STOCK_STATUS_OUT
    if product.stock <= product.min_stock:
        return STOCK_STATUS_LOW
    return STOCK_STATUS_IN


def count_stock_alerts(products) -> tuple[int, int]:
    """(low_stock, out_of_stock) counts; a product is in at most one of them."""
    statuses = [stock_status(p) for p in products]
    return statuses.count(STOCK_STATUS_LOW), statuses.count(STOCK_STATUS_OUT)


def _valuation_row(product: Product) -> dict:
    cost_value = product.cost_cents * product.stock
    retail_value = product.price_cents * product.stock
    profit = retail_value - cost_value
    return {
        "product_id": product.id,
        "name": product.name,
        "sku": product.sku,
        "category": product.category.name if product.category else UNCATEGORIZED,
        "stock": product.stock,
        "cost_cents": product.cost_cents,
        "price_cents": product.price_cents,
        "cost_value_cents": cost_value,
        "retail_value_cents": retail_value,
        "potential_profit_cents": profit,
        "margin_percentage": percent_of(profit, retail_value),
    }


def _category_rollup(rows: list[dict]) -> list[dict]:
    grouped: dict[str, dict] = {}
    for row in rows:
        entry = grouped.setdefault(row["category"], {
            "category": row["category"],
            "product_count": 0,
            "total_stock": 0,
            "cost_value_cents": 0,
            "retail_value_cents": 0,
        })
        entry["product_count"] += 1
        entry["total_stock"] += row["stock"]
        entry["cost_value_cents"] += row["cost_value_cents"]
        entry["retail_value_cents"] += row["retail_value_cents"]

    data = sorted(grouped.values(), key=lambda e: (-e["retail_value_cents"], e["category"]))
    for entry in data:
        profit = entry["retail_value_cents"] - entry["cost_value_cents"]
        entry["potential_profit_cents"] = profit
        entry["margin_percentage"] = percent_of(profit, entry["retail_value_cents"])
    return data


def _overview() -> dict:
    products = db.session.query(Product).order_by(Product.id).all()
    rows = [_valuation_row(p) for p in products]

    cost_value = sum(r["cost_value_cents"] for r in rows)
    retail_value = sum(r["retail_value_cents"] for r in rows)
    profit = retail_value - cost_value
    low_stock, out_of_stock = count_stock_alerts(products)

    recent = (
        db.session.query(StockHistory)
        .order_by(StockHistory.created_at.desc(), StockHistory.id.desc())
        .limit(RECENT_MOVEMENTS)
        .all()
    )
    return {
        "summary": {
            "total_products": len(products),
            "total_categories": db.session.query(Category).count(),
            "total_cost_value_cents": cost_value,
            "total_retail_value_cents": retail_value,
            "potential_profit_cents": profit,
            "profit_margin": percent_of(profit, retail_value),
            "out_of_stock_count": out_of_stock,
            "low_stock_count": low_stock,
        },
        "categories": _category_rollup(rows),
        "recent_movements": [m.to_dict() for m in recent],
    }


def _stock_status_report(
    *,
    category_id: int | None,
    low_stock_only: bool,
    out_of_stock_only: bool,
    limit: int,
) -> dict:
    query = db.session.query(Product)
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if low_stock_only:
        query = query.filter(Product.stock > 0, Product.stock <= Product.min_stock)
    if out_of_stock_only:
        query = query.filter(Product.stock == 0)

    products = query.order_by(Product.stock.asc(), Product.name.asc()).limit(limit).all()

    data = []
    for p in products:
        data.append({
            "product_id": p.id,
            "name": p.name,
            "sku": p.sku,
            "category": p.category.name if p.category else UNCATEGORIZED,
            "stock": p.stock,
            "min_stock": p.min_stock,
            "status": stock_status(p),
            "retail_value_cents": p.price_cents * p.stock,
        })

    return {
        "data": data,
        "summary": {
            "total": len(data),
            "out_of_stock": sum(1 for d in data if d["status"] == STOCK_STATUS_OUT),
            "low_stock": sum(1 for d in data if d["status"] == STOCK_STATUS_LOW),
            "in_stock": sum(1 for d in data if d["status"] == STOCK_STATUS_IN),
        },
    }


def _movement_report(start_dt, end_dt, *, product_id: int | None, limit: int) -> dict:
    query = db.session.query(StockHistory).filter(
        StockHistory.created_at >= start_dt,
        StockHistory.created_at <= end_dt,
    )
    if product_id is not None:
        query = query.filter(StockHistory.product_id == product_id)

    movements = query.order_by(StockHistory.created_at.desc(), StockHistory.id.desc()).all()

    by_type: dict[str, dict] = {}
    daily: dict[str, dict] = {}
    for m in movements:
        entry = by_type.setdefault(m.type, {"type": m.type, "count": 0, "total_quantity": 0})
        entry["count"] += 1
        entry["total_quantity"] += m.quantity_delta

        day = m.created_at.strftime("%Y-%m-%d")
        bucket = daily.setdefault(day, {"date": day, "inflow": 0, "outflow": 0, "net": 0})
        if m.quantity_delta > 0:
            bucket["inflow"] += m.quantity_delta
        else:
            bucket["outflow"] += -m.quantity_delta
        bucket["net"] += m.quantity_delta

    return {
        "data": [m.to_dict() for m in movements[:limit]],
        "by_type": sorted(by_type.values(), key=lambda e: e["type"]),
        "daily": [daily[k] for k in sorted(daily)],
        "summary": {
            "total_movements": len(movements),
            "total_inflow": sum(d["inflow"] for d in daily.values()),
            "total_outflow": sum(d["outflow"] for d in daily.values()),
        },
    }


def _valuation_report() -> dict:
    products = db.session.query(Product).order_by(Product.id).all()
    rows = sorted((_valuation_row(p) for p in products), key=lambda r: (-r["retail_value_cents"], r["product_id"]))
    cost_value = sum(r["cost_value_cents"] for r in rows)
    retail_value = sum(r["retail_value_cents"] for r in rows)
    return {
        "products": rows,
        "categories": _category_rollup(rows),
        "summary": {
            "total_cost_value_cents": cost_value,
            "total_retail_value_cents": retail_value,
            "potential_profit_cents": retail_value - cost_value,
            "profit_margin": percent_of(retail_value - cost_value, retail_value),
        },
    }


def _turnover_report(start_dt, end_dt, *, limit: int) -> dict:
    """
    Units sold in the window against current stock.

    Average inventory is approximated as stock / 2; days_on_hand projects
    how long current stock lasts at the window's sales rate.
    """
    sold_rows = (
        db.session.query(InvoiceItem.product_id, db.func.sum(InvoiceItem.quantity))
        .join(Invoice, InvoiceItem.invoice_id == Invoice.id)
        .filter(
            Invoice.status != INVOICE_STATUS_VOIDED,
            Invoice.created_at >= start_dt,
            Invoice.created_at <= end_dt,
        )
        .group_by(InvoiceItem.product_id)
        .all()
    )
    sold = {product_id: int(qty or 0) for product_id, qty in sold_rows}
    days = max((end_dt - start_dt).days, 1)

    data = []
    for p in db.session.query(Product).order_by(Product.id).all():
        quantity_sold = sold.get(p.id, 0)
        average_inventory = p.stock / 2
        turnover = round(quantity_sold / average_inventory, 2) if average_inventory else 0.0
        daily_rate = quantity_sold / days
        data.append({
            "product_id": p.id,
            "name": p.name,
            "category": p.category.name if p.category else UNCATEGORIZED,
            "stock": p.stock,
            "quantity_sold": quantity_sold,
            "average_inventory": average_inventory,
            "turnover_ratio": turnover,
            "days_on_hand": round(p.stock / daily_rate, 1) if daily_rate else None,
            "is_active": quantity_sold > 0,
        })

    data.sort(key=lambda d: (-d["turnover_ratio"], -d["quantity_sold"], d["product_id"]))

    categories: dict[str, dict] = {}
    for d in data:
        entry = categories.setdefault(d["category"], {"category": d["category"], "quantity_sold": 0, "stock": 0, "product_count": 0})
        entry["quantity_sold"] += d["quantity_sold"]
        entry["stock"] += d["stock"]
        entry["product_count"] += 1
    for entry in categories.values():
        entry["average_turnover"] = average(entry["quantity_sold"], entry["stock"] / 2) if entry["stock"] else 0.0

    return {
        "data": data[:limit],
        "categories": sorted(categories.values(), key=lambda e: (-e["quantity_sold"], e["category"])),
        "summary": {
            "total_products": len(data),
            "active_products": sum(1 for d in data if d["is_active"]),
            "total_quantity_sold": sum(d["quantity_sold"] for d in data),
        },
    }


def inventory_report(
    *,
    report_type: str = "overview",
    start: str | None = None,
    end: str | None = None,
    category_id: int | None = None,
    product_id: int | None = None,
    low_stock_only: bool = False,
    out_of_stock_only: bool = False,
    limit: int = DEFAULT_LIMIT,
) -> dict:
    if report_type not in INVENTORY_REPORT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(INVENTORY_REPORT_TYPES)}")

    result: dict = {"type": report_type}

    if report_type == "overview":
        result.update(_overview())
    elif report_type == "stock-status":
        result.update(_stock_status_report(
            category_id=category_id,
            low_stock_only=low_stock_only,
            out_of_stock_only=out_of_stock_only,
            limit=limit,
        ))
    elif report_type == "movement":
        start_dt, end_dt = resolve_window(start, end, default_days=30)
        result["period"] = period_payload(start_dt, end_dt)
        result.update(_movement_report(start_dt, end_dt, product_id=product_id, limit=limit))
    elif report_type == "valuation":
        result.update(_valuation_report())
    else:
        start_dt, end_dt = resolve_window(start, end, default_days=90)
        result["period"] = period_payload(start_dt, end_dt)
        result.update(_turnover_report(start_dt, end_dt, limit=limit))

    return result
