# Overview: Customer reports; activity, loyalty tiers, purchase frequency, cohorts and spending tiers.

from __future__ import annotations

from collections import defaultdict

from ..extensions import db
from ..errors import ValidationError
from ..models import Customer, Invoice, LoyaltyHistory
from .invoice_service import INVOICE_STATUS_VOIDED
from .report_utils import average, month_keys, percent_of, period_payload, resolve_window, with_percentages


CUSTOMER_REPORT_TYPES = ("overview", "loyalty", "purchase-frequency", "retention", "spending-tiers")

TOP_LIMIT = 10

# (name, lowest points, highest points or None)
LOYALTY_TIERS = (
    ("No Points", 0, 0),
    ("Bronze", 1, 100),
    ("Silver", 101, 500),
    ("Gold", 501, 1000),
    ("Platinum", 1001, None),
)

# (name, lowest cents, highest cents or None); spend within the window
SPENDING_TIERS = (
    ("Low", 0, 10_000),
    ("Medium", 10_001, 50_000),
    ("High", 50_001, 100_000),
    ("VIP", 100_001, None),
)

# Average days between purchases
FREQUENT_MAX_DAYS = 7
REGULAR_MAX_DAYS = 15


def _tier_for(value: int, tiers) -> str:
    for name, low, high in tiers:
        if value >= low and (high is None or value <= high):
            return name
    return tiers[0][0]


def _window_invoices(start_dt, end_dt) -> list[Invoice]:
    return (
        db.session.query(Invoice)
        .filter(
            Invoice.customer_id.isnot(None),
            Invoice.status != INVOICE_STATUS_VOIDED,
            Invoice.created_at >= start_dt,
            Invoice.created_at <= end_dt,
        )
        .order_by(Invoice.created_at, Invoice.id)
        .all()
    )


def _spend_by_customer(invoices) -> dict[int, dict]:
    spend: dict[int, dict] = {}
    for inv in invoices:
        entry = spend.setdefault(inv.customer_id, {"total_cents": 0, "invoice_count": 0, "dates": []})
        entry["total_cents"] += inv.total_cents
        entry["invoice_count"] += 1
        entry["dates"].append(inv.created_at)
    return spend


def _customer_rows(spend: dict[int, dict], *, limit: int) -> list[dict]:
    ranked = sorted(spend.items(), key=lambda kv: (-kv[1]["total_cents"], kv[0]))[:limit]
    ids = [customer_id for customer_id, _ in ranked]
    customers = {c.id: c for c in db.session.query(Customer).filter(Customer.id.in_(ids)).all()} if ids else {}

    rows = []
    for customer_id, entry in ranked:
        customer = customers.get(customer_id)
        rows.append({
            "customer_id": customer_id,
            "name": customer.name if customer else None,
            "email": customer.email if customer else None,
            "loyalty_points": customer.loyalty_points if customer else 0,
            "total_spent_cents": entry["total_cents"],
            "invoice_count": entry["invoice_count"],
            "average_purchase_cents": average(entry["total_cents"], entry["invoice_count"]),
        })
    return rows


# =============================================================================
# Sections
# =============================================================================

def _overview(start_dt, end_dt) -> dict:
    customers = db.session.query(Customer).all()
    invoices = _window_invoices(start_dt, end_dt)
    spend = _spend_by_customer(invoices)

    total = len(customers)
    new = sum(1 for c in customers if start_dt <= c.created_at <= end_dt)
    active = len(spend)
    loyal = sum(1 for c in customers if c.loyalty_points > 0)

    growth = {key: {"month": key, "new_customers": 0, "active_customers": set()} for key in month_keys(start_dt, end_dt)}
    for c in customers:
        key = c.created_at.strftime("%Y-%m")
        if key in growth and start_dt <= c.created_at <= end_dt:
            growth[key]["new_customers"] += 1
    for inv in invoices:
        key = inv.created_at.strftime("%Y-%m")
        if key in growth:
            growth[key]["active_customers"].add(inv.customer_id)

    customer_growth = [
        {"month": g["month"], "new_customers": g["new_customers"], "active_customers": len(g["active_customers"])}
        for g in growth.values()
    ]

    return {
        "summary": {
            "total_customers": total,
            "new_customers": new,
            "active_customers": active,
            "inactive_customers": total - active,
            "loyal_customers": loyal,
            "loyalty_rate": percent_of(loyal, total),
            "activation_rate": percent_of(active, total),
        },
        "top_customers": _customer_rows(spend, limit=TOP_LIMIT),
        "customer_growth": customer_growth,
    }


def _loyalty() -> dict:
    customers = db.session.query(Customer).order_by(Customer.loyalty_points.desc(), Customer.id).all()

    tiers = {name: {"tier": name, "customer_count": 0, "total_points": 0} for name, _, _ in LOYALTY_TIERS}
    for c in customers:
        tier = tiers[_tier_for(c.loyalty_points, LOYALTY_TIERS)]
        tier["customer_count"] += 1
        tier["total_points"] += c.loyalty_points

    tier_rows = list(tiers.values())
    with_percentages(tier_rows, value_key="customer_count", total=len(customers))

    total_points = sum(c.loyalty_points for c in customers)
    with_points = [c for c in customers if c.loyalty_points > 0]

    recent = (
        db.session.query(LoyaltyHistory)
        .order_by(LoyaltyHistory.created_at.desc(), LoyaltyHistory.id.desc())
        .limit(TOP_LIMIT)
        .all()
    )
    return {
        "tiers": tier_rows,
        "summary": {
            "total_customers": len(customers),
            "customers_with_points": len(with_points),
            "total_points": total_points,
            "average_points": average(total_points, len(customers)),
        },
        "top_customers": [c.to_dict() for c in with_points[:TOP_LIMIT]],
        "recent_activity": [h.to_dict() for h in recent],
    }


def _frequency_label(dates) -> tuple[str, float | None]:
    if len(dates) < 2:
        return "One-time", None
    gaps = [(b - a).total_seconds() / 86400 for a, b in zip(dates, dates[1:])]
    avg_gap = sum(gaps) / len(gaps)
    if avg_gap < FREQUENT_MAX_DAYS:
        label = "Frequent"
    elif avg_gap < REGULAR_MAX_DAYS:
        label = "Regular"
    else:
        label = "Occasional"
    return label, round(avg_gap, 1)


def _purchase_frequency(start_dt, end_dt) -> dict:
    spend = _spend_by_customer(_window_invoices(start_dt, end_dt))

    segments = {
        name: {"segment": name, "customer_count": 0, "total_spent_cents": 0}
        for name in ("Frequent", "Regular", "Occasional", "One-time")
    }
    for entry in spend.values():
        label, _ = _frequency_label(entry["dates"])
        segments[label]["customer_count"] += 1
        segments[label]["total_spent_cents"] += entry["total_cents"]

    rows = list(segments.values())
    with_percentages(rows, value_key="customer_count", total=len(spend))
    for row in rows:
        row["average_spent_cents"] = average(row["total_spent_cents"], row["customer_count"])
    return {"segments": rows, "summary": {"purchasing_customers": len(spend)}}


def _retention(start_dt, end_dt) -> dict:
    """
    Cohorts by first purchase month (over all history). For each cohort
    whose first month falls in the window, the share of its customers who
    bought again in each later month up to the window end.
    """
    rows = (
        db.session.query(Invoice.customer_id, Invoice.created_at)
        .filter(
            Invoice.customer_id.isnot(None),
            Invoice.status != INVOICE_STATUS_VOIDED,
            Invoice.created_at <= end_dt,
        )
        .order_by(Invoice.created_at)
        .all()
    )

    first_month: dict[int, str] = {}
    active_months: dict[int, set[str]] = defaultdict(set)
    for customer_id, created_at in rows:
        key = created_at.strftime("%Y-%m")
        first_month.setdefault(customer_id, key)
        active_months[customer_id].add(key)

    window_months = month_keys(start_dt, end_dt)
    cohort_members: dict[str, list[int]] = defaultdict(list)
    for customer_id, key in first_month.items():
        if key in window_months:
            cohort_members[key].append(customer_id)

    cohorts = []
    offset_rates: dict[int, list[float]] = defaultdict(list)
    for key in window_months:
        members = cohort_members.get(key)
        if not members:
            continue
        later = window_months[window_months.index(key):]
        retention = []
        for offset, month in enumerate(later):
            count = sum(1 for m in members if month in active_months[m])
            rate = percent_of(count, len(members))
            retention.append({"month": month, "offset": offset, "customers": count, "rate": rate})
            offset_rates[offset].append(rate)
        cohorts.append({"cohort": key, "size": len(members), "retention": retention})

    overall = [
        {"offset": offset, "rate": round(sum(rates) / len(rates), 2)}
        for offset, rates in sorted(offset_rates.items())
    ]
    follow_up = [o["rate"] for o in overall if o["offset"] > 0]

    return {
        "cohorts": cohorts,
        "overall_retention": overall,
        "summary": {
            "cohort_count": len(cohorts),
            "customers": sum(c["size"] for c in cohorts),
            "average_retention_rate": round(sum(follow_up) / len(follow_up), 2) if follow_up else 0.0,
        },
    }


def _spending_tiers(start_dt, end_dt) -> dict:
    spend = _spend_by_customer(_window_invoices(start_dt, end_dt))

    tiers = {
        name: {"tier": name, "min_cents": low, "max_cents": high, "customer_count": 0, "total_spent_cents": 0}
        for name, low, high in SPENDING_TIERS
    }
    for entry in spend.values():
        tier = tiers[_tier_for(entry["total_cents"], SPENDING_TIERS)]
        tier["customer_count"] += 1
        tier["total_spent_cents"] += entry["total_cents"]

    rows = list(tiers.values())
    with_percentages(rows, value_key="customer_count", total=len(spend))
    for row in rows:
        row["average_spent_cents"] = average(row["total_spent_cents"], row["customer_count"])

    return {
        "tiers": rows,
        "top_spenders": _customer_rows(spend, limit=TOP_LIMIT),
        "summary": {
            "purchasing_customers": len(spend),
            "total_spent_cents": sum(e["total_cents"] for e in spend.values()),
        },
    }


def customer_report(*, report_type: str = "overview", start: str | None = None, end: str | None = None) -> dict:
    if report_type not in CUSTOMER_REPORT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(CUSTOMER_REPORT_TYPES)}")

    start_dt, end_dt = resolve_window(start, end, default_days=90)
    result: dict = {"type": report_type, "period": period_payload(start_dt, end_dt)}

    if report_type == "overview":
        result.update(_overview(start_dt, end_dt))
    elif report_type == "loyalty":
        result.update(_loyalty())
    elif report_type == "purchase-frequency":
        result.update(_purchase_frequency(start_dt, end_dt))
    elif report_type == "retention":
        result.update(_retention(start_dt, end_dt))
    else:
        result.update(_spending_tiers(start_dt, end_dt))

    return result
