"""
Subscription lifecycle engine.

Every transition follows the same order: validate, commit the subscription
row, then append the history row, then write the audit entry. A crash can
leave a transition without history, never history without a transition.

States: TRIAL, ACTIVE, PAST_DUE, CANCELED, EXPIRED. is_active is separate
from status and marks the organization's current row.
"""
import calendar
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core import config
from app.core.errors import BadRequestError, ConflictError, NotFoundError
from app.features.audit.models import AuditAction
from app.features.audit.service import log_audit
from app.features.organizations.models import Organization
from app.features.plans.models import BillingCycle, Plan
from app.features.plans.service import get_plan
from app.features.subscriptions.models import (
    PaymentProvider,
    Subscription,
    SubscriptionChangeType,
    SubscriptionCreatedBy,
    SubscriptionHistory,
    SubscriptionStatus,
)
from app.utils import as_utc, get_logger, utcnow


log = get_logger(__name__)

RESOURCE = "Subscription"

PLAN_TIER: dict[str, int] = {"FREE": 0, "STARTER": 1, "PRO": 2, "ENTERPRISE": 3}

TRIAL_ENDING_SOON_DAYS = 3

# Yearly subscriptions count as ten months of the monthly price
YEARLY_MRR_MULTIPLIER = 10


# ============================================================================
# Pure helpers
# ============================================================================

def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def compute_renewal_date(billing_cycle: BillingCycle, from_date: Optional[datetime] = None) -> datetime:
    """One calendar year ahead for YEARLY, one calendar month ahead otherwise."""
    from_date = from_date or utcnow()
    if BillingCycle(billing_cycle) == BillingCycle.YEARLY:
        return add_months(from_date, 12)
    return add_months(from_date, 1)


def plan_tier(plan_name: Optional[str]) -> int:
    """Tier rank of a plan name; unknown names rank as FREE."""
    return PLAN_TIER.get((plan_name or "").upper(), 0)


def get_change_type(old_plan_name: Optional[str], new_plan_name: Optional[str]) -> SubscriptionChangeType:
    if plan_tier(new_plan_name) > plan_tier(old_plan_name):
        return SubscriptionChangeType.UPGRADE
    return SubscriptionChangeType.DOWNGRADE


# ============================================================================
# Lookups
# ============================================================================

async def get_subscription(db: AsyncSession, subscription_id: str) -> Subscription:
    subscription = await db.get(Subscription, subscription_id)
    if subscription is None:
        raise NotFoundError("Subscription not found")
    return subscription


async def get_active_subscription(db: AsyncSession, organization_id: str) -> Optional[Subscription]:
    return await db.scalar(
        select(Subscription).where(
            Subscription.organization_id == organization_id,
            Subscription.is_active.is_(True)
        )
    )


async def require_active_subscription(db: AsyncSession, organization_id: str) -> Subscription:
    subscription = await get_active_subscription(db, organization_id)
    if subscription is None:
        raise NotFoundError("Subscription not found")
    return subscription


async def get_latest_subscription(db: AsyncSession, organization_id: str) -> Subscription:
    """The active row, or else the most recent one."""
    subscription = await get_active_subscription(db, organization_id)
    if subscription is None:
        subscription = await db.scalar(
            select(Subscription)
            .where(Subscription.organization_id == organization_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
    if subscription is None:
        raise NotFoundError("Subscription not found")
    return subscription


async def list_history(
    db: AsyncSession,
    subscription_id: Optional[str] = None,
    organization_id: Optional[str] = None
) -> list[SubscriptionHistory]:
    """History rows, newest first, for one subscription or a whole organization."""
    stmt = select(SubscriptionHistory)
    if subscription_id:
        stmt = stmt.where(SubscriptionHistory.subscription_id == subscription_id)
    if organization_id:
        stmt = stmt.where(SubscriptionHistory.organization_id == organization_id)
    stmt = stmt.order_by(SubscriptionHistory.created_at.desc(), SubscriptionHistory.id.desc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ============================================================================
# Persistence steps
# ============================================================================

async def _commit_subscription(db: AsyncSession, subscription: Subscription) -> None:
    """
    Commit the pending subscription change.

    Raises:
        ConflictError: the row changed underneath us, or the organization
            would end up with two active subscriptions
    """
    # Captured up front: a rollback expires the instance
    subscription_id, organization_id = subscription.id, subscription.organization_id
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        log.warning("Concurrent update of subscription %s", subscription_id)
        raise ConflictError("Subscription was modified by another request, retry")
    except IntegrityError:
        await db.rollback()
        log.warning("Active subscription conflict for organization %s", organization_id)
        raise ConflictError("Organization already has an active subscription")
    await db.refresh(subscription)


async def _record_transition(
    db: AsyncSession,
    subscription: Subscription,
    change_type: SubscriptionChangeType,
    action: AuditAction,
    changed_by: Optional[str],
    reason: Optional[str] = None,
    previous_plan_id: Optional[str] = None,
    new_plan_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    audit_details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None
) -> SubscriptionHistory:
    """Append the history row, then the audit entry, for a committed transition."""
    history = SubscriptionHistory(
        subscription_id=subscription.id,
        organization_id=subscription.organization_id,
        previous_plan_id=previous_plan_id,
        new_plan_id=new_plan_id,
        change_type=change_type,
        changed_by=changed_by,
        reason=reason,
        details=details,
    )
    db.add(history)
    await db.commit()

    await log_audit(
        db,
        user_id=changed_by,
        action=action,
        resource=RESOURCE,
        resource_id=subscription.id,
        organization_id=subscription.organization_id,
        details=audit_details,
        request=request
    )
    log.info(
        "Subscription %s of org %s: %s -> status %s",
        subscription.id, subscription.organization_id, change_type.value, subscription.status.value
    )
    return history


def _start_trial(subscription: Subscription, trial_days: int, now: datetime) -> None:
    trial_end = now + timedelta(days=trial_days)
    subscription.status = SubscriptionStatus.TRIAL
    subscription.is_trial = True
    subscription.trial_end_date = trial_end
    subscription.renewal_date = trial_end


def _clear_trial(subscription: Subscription) -> None:
    subscription.is_trial = False
    subscription.trial_end_date = None


# ============================================================================
# Transitions
# ============================================================================

async def create_subscription(
    db: AsyncSession,
    organization_id: str,
    plan_id: str,
    changed_by: Optional[str],
    billing_cycle: Optional[BillingCycle] = None,
    is_trial: Optional[bool] = None,
    trial_days: Optional[int] = None,
    payment_provider: PaymentProvider = PaymentProvider.NONE,
    payment_reference_id: Optional[str] = None,
    created_by: SubscriptionCreatedBy = SubscriptionCreatedBy.ADMIN,
    reason: Optional[str] = None,
    request: Optional[Request] = None
) -> Subscription:
    """
    Create the organization's current subscription, superseding any active one.

    is_trial None means "trial if the plan defines trial days". A requested
    trial lasts trial_days, else the plan's trial days, else the configured
    default. Prior active rows become EXPIRED and inactive in the same commit.

    Raises:
        NotFoundError: organization or plan does not exist
        ConflictError: a concurrent request created a subscription first
    """
    if await db.get(Organization, organization_id) is None:
        raise NotFoundError("Organization not found")
    plan = await get_plan(db, plan_id)

    if is_trial is None:
        is_trial = plan.trial_days > 0
    days = trial_days or plan.trial_days or config.DEFAULT_TRIAL_DAYS
    billing_cycle = billing_cycle or plan.billing_cycle
    now = utcnow()

    result = await db.execute(
        select(Subscription).where(
            Subscription.organization_id == organization_id,
            Subscription.is_active.is_(True)
        )
    )
    superseded = list(result.scalars().all())
    for previous in superseded:
        previous.is_active = False
        previous.status = SubscriptionStatus.EXPIRED
        previous.end_date = now
        _clear_trial(previous)
    if superseded:
        await db.flush()

    subscription = Subscription(
        organization_id=organization_id,
        plan_id=plan.id,
        billing_cycle=billing_cycle,
        status=SubscriptionStatus.ACTIVE,
        start_date=now,
        is_trial=False,
        payment_provider=payment_provider,
        payment_reference_id=payment_reference_id,
        created_by=created_by,
        is_active=True,
    )
    if is_trial:
        _start_trial(subscription, days, now)
    else:
        subscription.renewal_date = compute_renewal_date(billing_cycle, now)
    db.add(subscription)
    await _commit_subscription(db, subscription)

    await _record_transition(
        db,
        subscription,
        change_type=SubscriptionChangeType.TRIAL_START if is_trial else SubscriptionChangeType.MANUAL_OVERRIDE,
        action=AuditAction.SUBSCRIPTION_CREATED,
        changed_by=changed_by,
        reason=reason or ("Trial started" if is_trial else "Subscription created"),
        new_plan_id=plan.id,
        details={"created": True, "superseded": [s.id for s in superseded]},
        audit_details={"plan": plan.name, "is_trial": is_trial, "billing_cycle": billing_cycle.value},
        request=request
    )
    return subscription


async def change_plan(
    db: AsyncSession,
    subscription_id: str,
    new_plan_id: str,
    changed_by: Optional[str],
    billing_cycle: Optional[BillingCycle] = None,
    reason: Optional[str] = None,
    admin_override: bool = True,
    request: Optional[Request] = None
) -> Subscription:
    """
    Move a subscription to another plan, effective immediately.

    Ends any trial. A CANCELED or EXPIRED subscription is reactivated by the
    change. The renewal date restarts from now; nothing is prorated.

    Raises:
        NotFoundError: subscription or plan does not exist
        BadRequestError: already on the plan
    """
    subscription = await get_subscription(db, subscription_id)
    new_plan = await get_plan(db, new_plan_id)
    if subscription.plan_id == new_plan.id:
        raise BadRequestError("Already on this plan")

    old_plan = await db.get(Plan, subscription.plan_id)
    old_plan_id = subscription.plan_id
    old_plan_name = old_plan.name if old_plan is not None else None
    change_type = get_change_type(old_plan_name, new_plan.name)
    billing_cycle = billing_cycle or subscription.billing_cycle
    reactivated = subscription.status in (SubscriptionStatus.CANCELED, SubscriptionStatus.EXPIRED)

    subscription.plan_id = new_plan.id
    subscription.billing_cycle = billing_cycle
    subscription.renewal_date = compute_renewal_date(billing_cycle)
    if subscription.is_trial or subscription.status == SubscriptionStatus.TRIAL:
        _clear_trial(subscription)
        subscription.status = SubscriptionStatus.ACTIVE
    if reactivated:
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.is_active = True
        subscription.cancelled_at = None
        subscription.cancel_reason = None
        subscription.end_date = None

    await _commit_subscription(db, subscription)

    action = (
        AuditAction.SUBSCRIPTION_UPGRADED
        if change_type == SubscriptionChangeType.UPGRADE
        else AuditAction.SUBSCRIPTION_DOWNGRADED
    )
    await _record_transition(
        db,
        subscription,
        change_type=change_type,
        action=action,
        changed_by=changed_by,
        reason=reason,
        previous_plan_id=old_plan_id,
        new_plan_id=new_plan.id,
        details={"adminOverride": admin_override, "reactivated": reactivated},
        audit_details={
            "oldPlan": old_plan_name,
            "newPlan": new_plan.name,
            "billingCycle": billing_cycle.value,
            "reason": reason,
            "adminOverride": admin_override,
        },
        request=request
    )
    return subscription


async def extend_trial(
    db: AsyncSession,
    subscription_id: str,
    additional_days: int,
    changed_by: Optional[str],
    reason: Optional[str] = None,
    request: Optional[Request] = None
) -> Subscription:
    """
    Push the trial end out by additional_days.

    Counts from the current trial end while it is in the future, from now
    otherwise. The renewal date follows the trial end.

    Raises:
        BadRequestError: subscription is not in trial
    """
    if additional_days < 1:
        raise BadRequestError("additional_days must be at least 1")

    subscription = await get_subscription(db, subscription_id)
    if not subscription.is_trial:
        raise BadRequestError("Subscription is not in trial")

    now = utcnow()
    old_trial_end = as_utc(subscription.trial_end_date)
    base = old_trial_end if old_trial_end is not None and old_trial_end > now else now
    new_trial_end = base + timedelta(days=additional_days)

    subscription.trial_end_date = new_trial_end
    subscription.renewal_date = new_trial_end
    subscription.status = SubscriptionStatus.TRIAL
    await _commit_subscription(db, subscription)

    await _record_transition(
        db,
        subscription,
        change_type=SubscriptionChangeType.TRIAL_EXTEND,
        action=AuditAction.TRIAL_EXTENDED,
        changed_by=changed_by,
        reason=reason or f"Trial extended by {additional_days} days",
        details={
            "oldTrialEnd": old_trial_end.isoformat() if old_trial_end else None,
            "newTrialEnd": new_trial_end.isoformat(),
            "additionalDays": additional_days,
        },
        audit_details={"additionalDays": additional_days, "newTrialEnd": new_trial_end.isoformat()},
        request=request
    )
    return subscription


async def cancel_subscription(
    db: AsyncSession,
    subscription_id: str,
    changed_by: Optional[str],
    reason: Optional[str] = None,
    admin_override: bool = True,
    request: Optional[Request] = None
) -> Subscription:
    """
    Cancel a subscription. Not idempotent.

    Raises:
        BadRequestError: already cancelled
    """
    subscription = await get_subscription(db, subscription_id)
    if subscription.status == SubscriptionStatus.CANCELED:
        raise BadRequestError("Subscription is already cancelled")

    subscription.status = SubscriptionStatus.CANCELED
    subscription.is_active = False
    subscription.cancelled_at = utcnow()
    subscription.cancel_reason = reason
    _clear_trial(subscription)
    await _commit_subscription(db, subscription)

    await _record_transition(
        db,
        subscription,
        change_type=SubscriptionChangeType.CANCEL,
        action=AuditAction.SUBSCRIPTION_CANCELLED,
        changed_by=changed_by,
        reason=reason or "Subscription cancelled",
        previous_plan_id=subscription.plan_id,
        details={"adminOverride": admin_override},
        audit_details={"reason": reason, "adminOverride": admin_override},
        request=request
    )
    return subscription


async def reactivate_subscription(
    db: AsyncSession,
    subscription_id: str,
    plan_id: str,
    changed_by: Optional[str],
    billing_cycle: Optional[BillingCycle] = None,
    reason: Optional[str] = None,
    request: Optional[Request] = None
) -> Subscription:
    """
    Make a subscription current and ACTIVE on the given plan.

    The billing cycle defaults to MONTHLY. Trial and cancellation fields are
    cleared and the renewal date restarts from now.

    Raises:
        NotFoundError: subscription or plan does not exist
        ConflictError: the organization already has another active subscription
    """
    subscription = await get_subscription(db, subscription_id)
    plan = await get_plan(db, plan_id)
    billing_cycle = billing_cycle or BillingCycle.MONTHLY
    previous_plan_id = subscription.plan_id

    subscription.plan_id = plan.id
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.billing_cycle = billing_cycle
    subscription.is_active = True
    subscription.renewal_date = compute_renewal_date(billing_cycle)
    subscription.cancelled_at = None
    subscription.cancel_reason = None
    subscription.end_date = None
    _clear_trial(subscription)
    await _commit_subscription(db, subscription)

    await _record_transition(
        db,
        subscription,
        change_type=SubscriptionChangeType.REACTIVATION,
        action=AuditAction.SUBSCRIPTION_REACTIVATED,
        changed_by=changed_by,
        reason=reason or "Reactivated by admin",
        previous_plan_id=previous_plan_id,
        new_plan_id=plan.id,
        details={"adminOverride": True},
        audit_details={"planName": plan.name, "reason": reason},
        request=request
    )
    return subscription


async def force_expire(
    db: AsyncSession,
    subscription_id: str,
    changed_by: Optional[str],
    reason: Optional[str] = None,
    request: Optional[Request] = None
) -> Subscription:
    """Expire a subscription from any state."""
    subscription = await get_subscription(db, subscription_id)

    subscription.status = SubscriptionStatus.EXPIRED
    subscription.is_active = False
    subscription.end_date = utcnow()
    _clear_trial(subscription)
    await _commit_subscription(db, subscription)

    await _record_transition(
        db,
        subscription,
        change_type=SubscriptionChangeType.MANUAL_OVERRIDE,
        action=AuditAction.SUBSCRIPTION_EXPIRED,
        changed_by=changed_by,
        reason=reason,
        details={"forceExpired": True},
        audit_details={"reason": reason, "adminOverride": True},
        request=request
    )
    return subscription


# ============================================================================
# Reporting
# ============================================================================

async def list_subscriptions(
    db: AsyncSession,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    status: Optional[SubscriptionStatus] = None,
    plan_id: Optional[str] = None,
    billing_cycle: Optional[BillingCycle] = None,
    payment_provider: Optional[PaymentProvider] = None,
    created_by: Optional[SubscriptionCreatedBy] = None,
    is_active: Optional[bool] = None,
    trial_ending_soon: bool = False,
    renewal_before: Optional[datetime] = None,
    renewal_after: Optional[datetime] = None
) -> tuple[list[tuple[Subscription, str, str]], int]:
    """
    Filtered page of all subscriptions with organization and plan names.

    Returns:
        ([(subscription, organization_name, plan_name)], total)
    """
    stmt = (
        select(Subscription, Organization.name, Plan.name)
        .join(Organization, Organization.id == Subscription.organization_id)
        .join(Plan, Plan.id == Subscription.plan_id)
    )

    if status:
        stmt = stmt.where(Subscription.status == status)
    if plan_id:
        stmt = stmt.where(Subscription.plan_id == plan_id)
    if billing_cycle:
        stmt = stmt.where(Subscription.billing_cycle == billing_cycle)
    if payment_provider:
        stmt = stmt.where(Subscription.payment_provider == payment_provider)
    if created_by:
        stmt = stmt.where(Subscription.created_by == created_by)
    if is_active is not None:
        stmt = stmt.where(Subscription.is_active.is_(is_active))
    if trial_ending_soon:
        now = utcnow()
        stmt = stmt.where(
            Subscription.is_trial.is_(True),
            Subscription.trial_end_date >= now,
            Subscription.trial_end_date <= now + timedelta(days=TRIAL_ENDING_SOON_DAYS)
        )
    if renewal_before:
        stmt = stmt.where(Subscription.renewal_date <= renewal_before)
    if renewal_after:
        stmt = stmt.where(Subscription.renewal_date >= renewal_after)
    if search:
        stmt = stmt.where(Organization.name.ilike(f"%{search}%"))

    total = await db.scalar(select(func.count()).select_from(stmt.subquery())) or 0

    stmt = stmt.order_by(Subscription.created_at.desc(), Subscription.id.desc())
    result = await db.execute(stmt.offset((page - 1) * limit).limit(limit))
    return [tuple(row) for row in result.all()], total


async def compute_mrr(db: AsyncSession) -> Decimal:
    """
    Monthly recurring revenue over current ACTIVE subscriptions.

    A monthly subscription contributes its plan price, a yearly one ten times
    the plan price. There is no proration. Subscriptions still sitting on an
    archived plan are left out.
    """
    result = await db.execute(
        select(Plan.price, Subscription.billing_cycle)
        .join(Plan, Plan.id == Subscription.plan_id)
        .where(
            Subscription.is_active.is_(True),
            Subscription.status == SubscriptionStatus.ACTIVE,
            Plan.is_active.is_(True)
        )
    )
    mrr = Decimal(0)
    for price, billing_cycle in result.all():
        monthly = Decimal(price or 0)
        mrr += monthly * YEARLY_MRR_MULTIPLIER if billing_cycle == BillingCycle.YEARLY else monthly
    return mrr


async def get_kpi_counts(db: AsyncSession) -> dict[str, int]:
    """Subscription counts by status plus MRR, rounded to a whole unit."""
    result = await db.execute(
        select(Subscription.status, func.count()).group_by(Subscription.status)
    )
    by_status = {SubscriptionStatus(status): count for status, count in result.all()}
    mrr = await compute_mrr(db)

    return {
        "active": by_status.get(SubscriptionStatus.ACTIVE, 0),
        "trial": by_status.get(SubscriptionStatus.TRIAL, 0),
        "past_due": by_status.get(SubscriptionStatus.PAST_DUE, 0),
        "expired": by_status.get(SubscriptionStatus.EXPIRED, 0),
        "canceled": by_status.get(SubscriptionStatus.CANCELED, 0),
        "mrr": int(mrr.quantize(Decimal(1), rounding=ROUND_HALF_UP)),
    }
