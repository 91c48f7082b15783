"""
Read-only subscription analytics for the platform admin dashboard.

Month buckets are "%Y-%m" strings in UTC and are computed in Python, so the
same code runs on SQLite and Postgres.
"""
from collections import Counter
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import BadRequestError
from app.features.plans.models import BillingCycle, Plan
from app.features.subscriptions.models import Subscription, SubscriptionStatus
from app.features.subscriptions.service import YEARLY_MRR_MULTIPLIER, add_months
from app.utils import as_utc, get_logger, utcnow


log = get_logger(__name__)

UNKNOWN_PLAN = "Unknown"
# Months covered when no start date is given, counting the current one
DEFAULT_RANGE_MONTHS = 12


def build_date_range(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
) -> tuple[datetime, datetime]:
    """
    Resolve a reporting window. Defaults to the last twelve months up to now.

    Raises:
        BadRequestError: start is after end
    """
    end = as_utc(end) if end else utcnow()
    start = as_utc(start) if start else add_months(end, -(DEFAULT_RANGE_MONTHS - 1))
    if start > end:
        raise BadRequestError("start_date must be before end_date")
    return start, end


def month_key(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m")


def _whole(amount: Decimal) -> int:
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _rate(part: int, whole: int) -> float:
    """Percentage with one decimal, half rounded up."""
    rate = Decimal(part) * 100 / Decimal(max(whole, 1))
    return float(rate.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


async def get_revenue_by_plan(db: AsyncSession) -> list[dict]:
    """
    Current subscriptions and monthly recurring revenue per plan.

    Every current subscription is counted, but only ACTIVE ones earn revenue,
    a yearly one at YEARLY_MRR_MULTIPLIER times the plan price. Subscriptions
    on archived plans are reported together under "Unknown" with no revenue,
    so the revenue column adds up to the MRR KPI.
    """
    plans = {
        plan.id: plan
        for plan in (await db.scalars(select(Plan).where(Plan.is_active.is_(True)))).all()
    }
    result = await db.execute(
        select(Subscription.plan_id, Subscription.billing_cycle, Subscription.status, func.count())
        .where(Subscription.is_active.is_(True))
        .group_by(Subscription.plan_id, Subscription.billing_cycle, Subscription.status)
    )

    rows: dict[str, dict] = {}
    for plan_id, billing_cycle, status, count in result.all():
        plan = plans.get(plan_id)
        name = plan.name if plan is not None else UNKNOWN_PLAN
        row = rows.setdefault(name, {"plan": name, "subscriptions": 0, "mrr": Decimal(0)})
        row["subscriptions"] += count
        if plan is None or status != SubscriptionStatus.ACTIVE:
            continue
        monthly = Decimal(plan.price or 0)
        if billing_cycle == BillingCycle.YEARLY:
            monthly *= YEARLY_MRR_MULTIPLIER
        row["mrr"] += monthly * count

    report = [{**row, "mrr": _whole(row["mrr"])} for row in rows.values()]
    report.sort(key=lambda row: (-row["mrr"], -row["subscriptions"], row["plan"]))
    return report


async def get_plan_distribution(db: AsyncSession) -> list[dict]:
    """Current subscriptions grouped by plan name, largest first."""
    result = await db.execute(
        select(Plan.name, func.count(Subscription.id))
        .join(Plan, Plan.id == Subscription.plan_id)
        .where(Subscription.is_active.is_(True))
        .group_by(Plan.name)
    )
    distribution = [{"plan": name, "count": count} for name, count in result.all()]
    distribution.sort(key=lambda row: (-row["count"], row["plan"]))
    return distribution


async def get_status_breakdown(db: AsyncSession) -> list[dict]:
    """All subscriptions, current or not, counted by status."""
    result = await db.execute(
        select(Subscription.status, func.count()).group_by(Subscription.status)
    )
    counts = {SubscriptionStatus(status): count for status, count in result.all()}
    return [{"status": status, "count": counts.get(status, 0)} for status in SubscriptionStatus]


async def get_new_vs_canceled(
    db: AsyncSession,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
) -> list[dict]:
    """
    Per month: subscriptions created, and CANCELED subscriptions by the month
    they were cancelled. Months with neither are omitted.
    """
    start, end = build_date_range(start, end)

    created = await db.scalars(
        select(Subscription.created_at).where(Subscription.created_at >= start, Subscription.created_at <= end)
    )
    new_by_month = Counter(month_key(value) for value in created.all())

    cancelled = await db.scalars(
        select(Subscription.cancelled_at).where(
            Subscription.status == SubscriptionStatus.CANCELED,
            Subscription.cancelled_at >= start,
            Subscription.cancelled_at <= end
        )
    )
    canceled_by_month = Counter(month_key(value) for value in cancelled.all())

    return [
        {"month": month, "new_subscriptions": new_by_month[month], "canceled": canceled_by_month[month]}
        for month in sorted(new_by_month.keys() | canceled_by_month.keys())
    ]


async def get_churn_trend(
    db: AsyncSession,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
) -> list[dict]:
    """
    Per month with at least one cancellation: how many subscriptions were
    cancelled, and the churn rate against the current subscriptions created
    that month (a month with none counts as one).
    """
    start, end = build_date_range(start, end)

    cancelled = await db.scalars(
        select(Subscription.cancelled_at).where(
            Subscription.status == SubscriptionStatus.CANCELED,
            Subscription.cancelled_at >= start,
            Subscription.cancelled_at <= end
        )
    )
    churned_by_month = Counter(month_key(value) for value in cancelled.all())

    created = await db.scalars(
        select(Subscription.created_at).where(
            Subscription.is_active.is_(True),
            Subscription.created_at >= start,
            Subscription.created_at <= end
        )
    )
    active_by_month = Counter(month_key(value) for value in created.all())

    log.debug("Churn trend %s..%s over %d months", start, end, len(churned_by_month))
    return [
        {"month": month, "churned": churned, "churn_rate": _rate(churned, active_by_month[month])}
        for month, churned in sorted(churned_by_month.items())
    ]
