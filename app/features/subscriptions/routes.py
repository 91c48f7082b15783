"""
Subscription routes.

org_router serves an organization its own subscription; admin_router exposes
every subscription and every lifecycle transition to platform staff.
"""
from datetime import datetime
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.pagination import Page, page_count
from app.features.permissions.catalog import Permission
from app.features.permissions.dependencies import MembershipContext, require_permission
from app.features.plans.models import BillingCycle
from app.features.platform_rbac.catalog import PlatformPermissionKey
from app.features.platform_rbac.dependencies import check_platform_permission
from app.features.subscriptions import service
from app.features.subscriptions.models import (
    PaymentProvider,
    SubscriptionCreatedBy,
    SubscriptionStatus,
)
from app.features.subscriptions.schemas import (
    AdminSubscriptionResponse,
    CancelSubscriptionRequest,
    ChangePlanRequest,
    ExtendTrialRequest,
    ForceExpireRequest,
    ReactivateSubscriptionRequest,
    SubscriptionCreate,
    SubscriptionHistoryResponse,
    SubscriptionKpiResponse,
    SubscriptionResponse,
)
from app.features.users.auth import Principal


org_router = APIRouter()
admin_router = APIRouter()

can_view = check_platform_permission(PlatformPermissionKey.SUBSCRIPTION_VIEW)
can_change = check_platform_permission(PlatformPermissionKey.PLAN_CHANGE)


# ============================================================================
# Organization Routes
# ============================================================================

@org_router.get("/{organization_id}", response_model=SubscriptionResponse)
async def get_organization_subscription(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_permission(Permission.SUBSCRIPTION_VIEW))]
):
    """Current subscription of the organization, or its latest one."""
    return await service.get_latest_subscription(db, organization_id)


@org_router.get("/{organization_id}/history", response_model=List[SubscriptionHistoryResponse])
async def get_organization_subscription_history(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_permission(Permission.SUBSCRIPTION_VIEW))]
):
    return await service.list_history(db, organization_id=organization_id)


@org_router.patch("/{organization_id}/plan", response_model=SubscriptionResponse)
async def change_organization_plan(
    organization_id: str,
    change: ChangePlanRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_permission(Permission.SUBSCRIPTION_MANAGE))]
):
    """Change the plan of the organization's active subscription."""
    subscription = await service.require_active_subscription(db, organization_id)
    return await service.change_plan(
        db,
        subscription.id,
        change.plan_id,
        changed_by=membership.user_id,
        billing_cycle=change.billing_cycle,
        reason=change.reason,
        admin_override=False,
        request=request
    )


@org_router.post("/{organization_id}/cancel", response_model=SubscriptionResponse)
async def cancel_organization_subscription(
    organization_id: str,
    cancel: CancelSubscriptionRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_permission(Permission.SUBSCRIPTION_MANAGE))]
):
    """Cancel the organization's active subscription."""
    subscription = await service.require_active_subscription(db, organization_id)
    return await service.cancel_subscription(
        db,
        subscription.id,
        changed_by=membership.user_id,
        reason=cancel.reason,
        admin_override=False,
        request=request
    )


# ============================================================================
# Admin Routes
# ============================================================================

@admin_router.get("/", response_model=Page[AdminSubscriptionResponse])
async def list_subscriptions(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_view)],
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    search: Optional[str] = Query(None, description="Organization name contains"),
    status_filter: Optional[SubscriptionStatus] = Query(None, alias="status"),
    plan_id: Optional[str] = None,
    billing_cycle: Optional[BillingCycle] = None,
    payment_provider: Optional[PaymentProvider] = None,
    created_by: Optional[SubscriptionCreatedBy] = None,
    is_active: Optional[bool] = None,
    trial_ending_soon: bool = Query(False, description="Trial ends within 3 days"),
    renewal_before: Optional[datetime] = None,
    renewal_after: Optional[datetime] = None
):
    """List all subscriptions with filtering."""
    rows, total = await service.list_subscriptions(
        db,
        page=page,
        limit=limit,
        search=search,
        status=status_filter,
        plan_id=plan_id,
        billing_cycle=billing_cycle,
        payment_provider=payment_provider,
        created_by=created_by,
        is_active=is_active,
        trial_ending_soon=trial_ending_soon,
        renewal_before=renewal_before,
        renewal_after=renewal_after
    )
    items = []
    for subscription, organization_name, _plan_name in rows:
        item = AdminSubscriptionResponse.model_validate(subscription)
        item.organization_name = organization_name
        items.append(item)

    return Page[AdminSubscriptionResponse](
        items=items,
        total=total,
        page=page,
        page_size=limit,
        pages=page_count(total, limit)
    )


@admin_router.get("/kpi", response_model=SubscriptionKpiResponse)
async def get_subscription_kpis(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_view)]
):
    """Counts by status and monthly recurring revenue."""
    return await service.get_kpi_counts(db)


@admin_router.post("/", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    subscription_data: SubscriptionCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(can_change)]
):
    """Create a subscription, superseding the organization's current one."""
    return await service.create_subscription(
        db,
        subscription_data.organization_id,
        subscription_data.plan_id,
        changed_by=principal.user_id,
        billing_cycle=subscription_data.billing_cycle,
        is_trial=subscription_data.is_trial,
        trial_days=subscription_data.trial_days,
        payment_provider=subscription_data.payment_provider,
        payment_reference_id=subscription_data.payment_reference_id,
        created_by=SubscriptionCreatedBy.ADMIN,
        reason=subscription_data.reason,
        request=request
    )


@admin_router.get("/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_view)]
):
    return await service.get_subscription(db, subscription_id)


@admin_router.get("/{subscription_id}/history", response_model=List[SubscriptionHistoryResponse])
async def get_subscription_history(
    subscription_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_view)]
):
    await service.get_subscription(db, subscription_id)
    return await service.list_history(db, subscription_id=subscription_id)


@admin_router.patch("/{subscription_id}/plan", response_model=SubscriptionResponse)
async def change_plan(
    subscription_id: str,
    change: ChangePlanRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(can_change)]
):
    """Change plan (admin override). Reactivates cancelled or expired subscriptions."""
    return await service.change_plan(
        db,
        subscription_id,
        change.plan_id,
        changed_by=principal.user_id,
        billing_cycle=change.billing_cycle,
        reason=change.reason,
        request=request
    )


@admin_router.post("/{subscription_id}/extend-trial", response_model=SubscriptionResponse)
async def extend_trial(
    subscription_id: str,
    extension: ExtendTrialRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(can_change)]
):
    return await service.extend_trial(
        db,
        subscription_id,
        extension.additional_days,
        changed_by=principal.user_id,
        reason=extension.reason,
        request=request
    )


@admin_router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    subscription_id: str,
    cancel: CancelSubscriptionRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(can_change)]
):
    return await service.cancel_subscription(
        db,
        subscription_id,
        changed_by=principal.user_id,
        reason=cancel.reason,
        request=request
    )


@admin_router.post("/{subscription_id}/reactivate", response_model=SubscriptionResponse)
async def reactivate_subscription(
    subscription_id: str,
    reactivation: ReactivateSubscriptionRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(can_change)]
):
    return await service.reactivate_subscription(
        db,
        subscription_id,
        reactivation.plan_id,
        changed_by=principal.user_id,
        billing_cycle=reactivation.billing_cycle,
        reason=reactivation.reason,
        request=request
    )


@admin_router.post("/{subscription_id}/expire", response_model=SubscriptionResponse)
async def force_expire(
    subscription_id: str,
    expiry: ForceExpireRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(can_change)]
):
    """Expire a subscription regardless of its state."""
    return await service.force_expire(
        db,
        subscription_id,
        changed_by=principal.user_id,
        reason=expiry.reason,
        request=request
    )
