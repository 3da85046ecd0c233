# Overview: Sales reports and the dashboard; read-only aggregation over invoices.

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from ..extensions import db
from ..errors import ValidationError
from ..models import (
    Category,
    Customer,
    Invoice,
    InvoiceItem,
    Product,
    ReturnOrder,
    StockHistory,
    User,
)
from .invoice_service import INVOICE_STATUS_VOIDED
from .inventory_reporting_service import count_stock_alerts
from .report_utils import (
    PERIODS,
    average,
    growth_percent,
    hourly_buckets,
    percent_of,
    period_key,
    period_payload,
    previous_window,
    resolve_window,
    timeframe_range,
    with_percentages,
)
from .return_service import RETURN_STATUS_COMPLETED


SALES_REPORT_TYPES = ("overview", "sales", "products", "customers", "categories", "payments")

TOP_LIMIT = 10
OVERVIEW_TOP_LIMIT = 5

UNCATEGORIZED = "Uncategorized"
UNSPECIFIED_PAYMENT = "unspecified"


# =============================================================================
# Row fetching
# =============================================================================

def _invoice_query(start_dt: datetime, end_dt: datetime, include_voided: bool):
    query = db.session.query(Invoice).filter(
        Invoice.created_at >= start_dt,
        Invoice.created_at <= end_dt,
    )
    if not include_voided:
        query = query.filter(Invoice.status != INVOICE_STATUS_VOIDED)
    return query


def _invoices(start_dt: datetime, end_dt: datetime, include_voided: bool = False) -> list[Invoice]:
    return _invoice_query(start_dt, end_dt, include_voided).order_by(Invoice.created_at, Invoice.id).all()


def _item_rows(start_dt: datetime, end_dt: datetime, include_voided: bool = False):
    """(InvoiceItem, Product, Category-or-None) for invoices in the window."""
    query = (
        db.session.query(InvoiceItem, Product, Category)
        .join(Invoice, InvoiceItem.invoice_id == Invoice.id)
        .join(Product, InvoiceItem.product_id == Product.id)
        .outerjoin(Category, Product.category_id == Category.id)
        .filter(Invoice.created_at >= start_dt, Invoice.created_at <= end_dt)
    )
    if not include_voided:
        query = query.filter(Invoice.status != INVOICE_STATUS_VOIDED)
    return query.all()


def _net_line(item: InvoiceItem) -> int:
    return item.line_total_cents - item.discount_cents


def _completed_returns(start_dt: datetime, end_dt: datetime) -> list[ReturnOrder]:
    return (
        db.session.query(ReturnOrder)
        .filter(
            ReturnOrder.status == RETURN_STATUS_COMPLETED,
            ReturnOrder.return_date >= start_dt,
            ReturnOrder.return_date <= end_dt,
        )
        .all()
    )


def _sales_stats(invoices: list[Invoice]) -> dict:
    total = sum(inv.total_cents for inv in invoices)
    return {
        "total_sales_cents": total,
        "invoice_count": len(invoices),
        "average_sale_cents": average(total, len(invoices)),
        "total_tax_cents": sum(inv.tax_cents for inv in invoices),
        "total_discounts_cents": sum(inv.discount_cents for inv in invoices),
    }


# =============================================================================
# Sales report sections
# =============================================================================

def _top_products(rows, *, limit: int) -> list[dict]:
    grouped: dict[int, dict] = {}
    for item, product, category in rows:
        entry = grouped.setdefault(product.id, {
            "product_id": product.id,
            "name": product.name,
            "sku": product.sku,
            "category": category.name if category else UNCATEGORIZED,
            "total_quantity": 0,
            "total_sales_cents": 0,
        })
        entry["total_quantity"] += item.quantity
        entry["total_sales_cents"] += _net_line(item)

    ranked = sorted(grouped.values(), key=lambda e: (-e["total_sales_cents"], e["product_id"]))[:limit]
    for entry in ranked:
        entry["average_price_cents"] = average(entry["total_sales_cents"], entry["total_quantity"])
    return ranked


def _top_customers(invoices: list[Invoice], *, limit: int) -> list[dict]:
    grouped: dict[int, dict] = {}
    for inv in invoices:
        if inv.customer_id is None:
            continue
        entry = grouped.setdefault(inv.customer_id, {"customer_id": inv.customer_id, "total_cents": 0, "invoice_count": 0})
        entry["total_cents"] += inv.total_cents
        entry["invoice_count"] += 1

    ranked = sorted(grouped.values(), key=lambda e: (-e["total_cents"], e["customer_id"]))[:limit]
    customers = {
        c.id: c
        for c in db.session.query(Customer).filter(Customer.id.in_([e["customer_id"] for e in ranked])).all()
    } if ranked else {}

    result = []
    for entry in ranked:
        customer = customers.get(entry["customer_id"])
        result.append({
            "customer_id": entry["customer_id"],
            "name": customer.name if customer else None,
            "email": customer.email if customer else None,
            "phone": customer.phone if customer else None,
            "loyalty_points": customer.loyalty_points if customer else 0,
            "total_purchases_cents": entry["total_cents"],
            "invoice_count": entry["invoice_count"],
            "average_purchase_cents": average(entry["total_cents"], entry["invoice_count"]),
        })
    return result


def _sales_by_period(invoices: list[Invoice], period: str) -> dict:
    buckets: dict[str, dict] = {}
    for inv in invoices:
        key = period_key(inv.created_at, period)
        bucket = buckets.setdefault(key, {"period": key, "total_cents": 0, "count": 0})
        bucket["total_cents"] += inv.total_cents
        bucket["count"] += 1

    data = [buckets[k] for k in sorted(buckets)]
    for bucket in data:
        bucket["average_cents"] = average(bucket["total_cents"], bucket["count"])

    total = sum(inv.total_cents for inv in invoices)
    return {
        "period_type": period,
        "data": data,
        "summary": {
            "total_sales_cents": total,
            "total_invoices": len(invoices),
            "average_sale_cents": average(total, len(invoices)),
        },
    }


def _sales_by_category(rows) -> dict:
    grouped: dict[str, dict] = {}
    for item, product, category in rows:
        name = category.name if category else UNCATEGORIZED
        entry = grouped.setdefault(name, {
            "category_id": category.id if category else None,
            "category": name,
            "total_cents": 0,
            "quantity": 0,
            "product_ids": set(),
        })
        entry["total_cents"] += _net_line(item)
        entry["quantity"] += item.quantity
        entry["product_ids"].add(product.id)

    data = []
    for entry in sorted(grouped.values(), key=lambda e: (-e["total_cents"], e["category"])):
        entry["product_count"] = len(entry.pop("product_ids"))
        data.append(entry)

    total = sum(e["total_cents"] for e in data)
    with_percentages(data, value_key="total_cents", total=total)
    return {"data": data, "summary": {"total_sales_cents": total, "category_count": len(data)}}


def _sales_by_payment(invoices: list[Invoice]) -> dict:
    grouped: dict[str, dict] = {}
    for inv in invoices:
        method = inv.payment_method or UNSPECIFIED_PAYMENT
        entry = grouped.setdefault(method, {"payment_method": method, "total_cents": 0, "count": 0})
        entry["total_cents"] += inv.total_cents
        entry["count"] += 1

    data = sorted(grouped.values(), key=lambda e: (-e["total_cents"], e["payment_method"]))
    for entry in data:
        entry["average_cents"] = average(entry["total_cents"], entry["count"])

    total = sum(e["total_cents"] for e in data)
    with_percentages(data, value_key="total_cents", total=total)
    return {"data": data, "summary": {"total_sales_cents": total, "total_invoices": len(invoices)}}


def _overview(start_dt: datetime, end_dt: datetime, include_voided: bool) -> dict:
    invoices = _invoices(start_dt, end_dt, include_voided)
    prev_start, prev_end = previous_window(start_dt, end_dt)
    previous_total = sum(inv.total_cents for inv in _invoices(prev_start, prev_end, include_voided))

    stats = _sales_stats(invoices)
    stats["sales_growth"] = growth_percent(stats["total_sales_cents"], previous_total)

    returns = _completed_returns(start_dt, end_dt)
    new_customers = (
        db.session.query(Customer)
        .filter(Customer.created_at >= start_dt, Customer.created_at <= end_dt)
        .count()
    )
    low_stock, out_of_stock = count_stock_alerts(db.session.query(Product).all())

    return {
        "sales_stats": stats,
        "customer_stats": {"new_customers": new_customers},
        "return_stats": {
            "return_count": len(returns),
            "total_returned_cents": sum(r.total_cents for r in returns),
        },
        "inventory_stats": {"low_stock_items": low_stock, "out_of_stock_items": out_of_stock},
        "top_products": _top_products(_item_rows(start_dt, end_dt, include_voided), limit=OVERVIEW_TOP_LIMIT),
    }


def sales_report(
    *,
    report_type: str = "overview",
    start: str | None = None,
    end: str | None = None,
    period: str = "day",
    include_voided: bool = False,
) -> dict:
    """
    Sales report over [start, end], default the last 30 days.

    report_type:
    - overview: totals, growth vs. the previous equal-length window, returns,
      low stock and the top 5 products
    - sales: buckets by day|week|month|year; bucket totals sum to the summary total
    - products / customers: top 10 by revenue
    - categories / payments: revenue shares with percentages
    """
    if report_type not in SALES_REPORT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(SALES_REPORT_TYPES)}")
    if period not in PERIODS:
        raise ValidationError(f"period must be one of {', '.join(PERIODS)}")

    start_dt, end_dt = resolve_window(start, end, default_days=30)

    if report_type == "overview":
        body = _overview(start_dt, end_dt, include_voided)
    elif report_type == "sales":
        body = _sales_by_period(_invoices(start_dt, end_dt, include_voided), period)
    elif report_type == "products":
        data = _top_products(_item_rows(start_dt, end_dt, include_voided), limit=TOP_LIMIT)
        body = {
            "data": data,
            "summary": {
                "product_count": len(data),
                "total_quantity": sum(e["total_quantity"] for e in data),
                "total_sales_cents": sum(e["total_sales_cents"] for e in data),
            },
        }
    elif report_type == "customers":
        data = _top_customers(_invoices(start_dt, end_dt, include_voided), limit=TOP_LIMIT)
        body = {
            "data": data,
            "summary": {
                "customer_count": len(data),
                "total_sales_cents": sum(e["total_purchases_cents"] for e in data),
            },
        }
    elif report_type == "categories":
        body = _sales_by_category(_item_rows(start_dt, end_dt, include_voided))
    else:
        body = _sales_by_payment(_invoices(start_dt, end_dt, include_voided))

    return {
        "type": report_type,
        "period": period_payload(start_dt, end_dt),
        "include_voided": include_voided,
        **body,
    }


# =============================================================================
# Dashboard
# =============================================================================

def _dashboard_sales(invoices, previous, rows) -> dict:
    total = sum(inv.total_cents for inv in invoices)
    previous_total = sum(inv.total_cents for inv in previous)

    return {
        "total_sales_cents": total,
        "sales_growth": growth_percent(total, previous_total),
        "order_count": len(invoices),
        "order_growth": growth_percent(len(invoices), len(previous)),
        "average_order_cents": average(total, len(invoices)),
        "total_tax_cents": sum(inv.tax_cents for inv in invoices),
        "total_discounts_cents": sum(inv.discount_cents for inv in invoices),
        "payment_methods": _sales_by_payment(invoices)["data"],
        "hourly_distribution": hourly_buckets(invoices),
        "top_products": _top_products(rows, limit=OVERVIEW_TOP_LIMIT),
    }


def _dashboard_inventory() -> dict:
    products = db.session.query(Product).all()
    cost_value = sum(p.cost_cents * p.stock for p in products)
    retail_value = sum(p.price_cents * p.stock for p in products)
    profit = retail_value - cost_value
    low_stock, out_of_stock = count_stock_alerts(products)

    recent = (
        db.session.query(StockHistory)
        .order_by(StockHistory.created_at.desc(), StockHistory.id.desc())
        .limit(OVERVIEW_TOP_LIMIT)
        .all()
    )
    return {
        "total_products": len(products),
        "total_cost_value_cents": cost_value,
        "total_retail_value_cents": retail_value,
        "potential_profit_cents": profit,
        "profit_margin": percent_of(profit, retail_value),
        "low_stock_count": low_stock,
        "out_of_stock_count": out_of_stock,
        "stock_alert_percentage": percent_of(low_stock + out_of_stock, len(products)),
        "recent_movements": [m.to_dict() for m in recent],
    }


def _dashboard_customers(invoices, previous, start_dt, end_dt, prev_start, prev_end) -> dict:
    total_customers = db.session.query(Customer).count()

    def _new_between(a, b) -> int:
        return db.session.query(Customer).filter(Customer.created_at >= a, Customer.created_at <= b).count()

    new_now = _new_between(start_dt, end_dt)
    new_before = _new_between(prev_start, prev_end)

    active = {inv.customer_id for inv in invoices if inv.customer_id is not None}
    previously_active = {inv.customer_id for inv in previous if inv.customer_id is not None}
    engagement = percent_of(len(active), total_customers)
    previous_engagement = percent_of(len(previously_active), total_customers)

    total_loyalty = db.session.query(db.func.coalesce(db.func.sum(Customer.loyalty_points), 0)).scalar()

    return {
        "total_customers": total_customers,
        "new_customers": new_now,
        "customer_growth": growth_percent(new_now, new_before),
        "active_customers": len(active),
        "engagement_rate": engagement,
        "engagement_growth": round(engagement - previous_engagement, 2),
        "total_loyalty_points": int(total_loyalty),
        "average_loyalty_points": average(int(total_loyalty), total_customers),
        "top_customers": _top_customers(invoices, limit=OVERVIEW_TOP_LIMIT),
    }


def _dashboard_performance(invoices, start_dt, end_dt) -> dict:
    by_user: dict[int, dict] = defaultdict(lambda: {"total_sales_cents": 0, "invoice_count": 0})
    for inv in invoices:
        by_user[inv.user_id]["total_sales_cents"] += inv.total_cents
        by_user[inv.user_id]["invoice_count"] += 1

    users = {
        u.id: u for u in db.session.query(User).filter(User.id.in_(list(by_user))).all()
    } if by_user else {}

    employees = []
    for user_id, entry in sorted(by_user.items(), key=lambda kv: (-kv[1]["total_sales_cents"], kv[0])):
        employees.append({
            "user_id": user_id,
            "name": users[user_id].name if user_id in users else None,
            "total_sales_cents": entry["total_sales_cents"],
            "invoice_count": entry["invoice_count"],
            "average_sale_cents": average(entry["total_sales_cents"], entry["invoice_count"]),
        })

    customer_invoices = [inv for inv in invoices if inv.customer_id is not None]
    distinct_customers = len({inv.customer_id for inv in customer_invoices})
    returns = _completed_returns(start_dt, end_dt)

    return {
        "employee_sales": employees,
        "transactions_per_customer": average(len(customer_invoices), distinct_customers),
        "return_count": len(returns),
        "total_returns_cents": sum(r.total_cents for r in returns),
        "return_rate": percent_of(len(returns), len(invoices)),
    }


def dashboard_report(*, timeframe: str = "last_30_days", now: datetime | None = None) -> dict:
    """
    Dashboard metrics for a named timeframe, compared with the previous
    period of the same length. VOIDED invoices are always excluded.
    """
    start_dt, end_dt, prev_start, prev_end = timeframe_range(timeframe, now)

    invoices = _invoices(start_dt, end_dt)
    previous = _invoices(prev_start, prev_end)
    rows = _item_rows(start_dt, end_dt)

    return {
        "timeframe": timeframe,
        "period": period_payload(start_dt, end_dt),
        "previous_period": period_payload(prev_start, prev_end),
        "sales": _dashboard_sales(invoices, previous, rows),
        "inventory": _dashboard_inventory(),
        "customers": _dashboard_customers(invoices, previous, start_dt, end_dt, prev_start, prev_end),
        "performance": _dashboard_performance(invoices, start_dt, end_dt),
    }
