from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.core.errors import BadRequestError, ConflictError
from app.features.audit.models import AuditAction, AuditLog
from app.features.organizations.service import add_member, create_organization
from app.features.permissions.catalog import OrgRole
from app.features.plans.models import BillingCycle
from app.features.plans.service import set_plan_active
from app.features.subscriptions import service
from app.features.subscriptions.models import (
    Subscription,
    SubscriptionChangeType,
    SubscriptionHistory,
    SubscriptionStatus,
)
from app.utils import as_utc, utcnow


pytestmark = pytest.mark.anyio


async def active_rows(db, organization_id):
    return await db.scalar(
        select(func.count()).select_from(Subscription).where(
            Subscription.organization_id == organization_id,
            Subscription.is_active.is_(True)
        )
    )


async def history_of(db, subscription_id, change_type):
    result = await db.execute(
        select(SubscriptionHistory).where(
            SubscriptionHistory.subscription_id == subscription_id,
            SubscriptionHistory.change_type == change_type
        )
    )
    return list(result.scalars().all())


class TestHelpers:
    def test_add_months_clamps_to_month_end(self):
        assert service.add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
        assert service.add_months(datetime(2023, 1, 31), 1) == datetime(2023, 2, 28)
        assert service.add_months(datetime(2023, 12, 15), 1) == datetime(2024, 1, 15)

    def test_renewal_date_follows_billing_cycle(self):
        start = datetime(2024, 3, 10, tzinfo=timezone.utc)
        assert service.compute_renewal_date(BillingCycle.MONTHLY, start) == datetime(2024, 4, 10, tzinfo=timezone.utc)
        assert service.compute_renewal_date(BillingCycle.YEARLY, start) == datetime(2025, 3, 10, tzinfo=timezone.utc)

    def test_change_type_is_derived_from_tiers(self):
        assert service.get_change_type("PRO", "STARTER") == SubscriptionChangeType.DOWNGRADE
        assert service.get_change_type("STARTER", "ENTERPRISE") == SubscriptionChangeType.UPGRADE
        assert service.get_change_type("CUSTOM", "STARTER") == SubscriptionChangeType.UPGRADE
        assert service.get_change_type("free", "pro") == SubscriptionChangeType.UPGRADE


async def test_new_organization_starts_on_free(db, organization, plans):
    subscription = await service.require_active_subscription(db, organization.id)

    assert subscription.plan_id == plans["FREE"].id
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.is_trial is False
    assert await active_rows(db, organization.id) == 1


async def test_upgrade_free_to_pro_yearly(db, organization, plans, owner):
    subscription = await service.require_active_subscription(db, organization.id)
    before = utcnow()

    updated = await service.change_plan(
        db,
        subscription.id,
        plans["PRO"].id,
        changed_by=owner.id,
        billing_cycle=BillingCycle.YEARLY,
        reason="upsell"
    )

    assert updated.plan_id == plans["PRO"].id
    assert updated.billing_cycle == BillingCycle.YEARLY
    renewal = as_utc(updated.renewal_date)
    assert service.add_months(before, 12) - timedelta(minutes=1) <= renewal
    assert renewal <= service.add_months(utcnow(), 12) + timedelta(minutes=1)

    [history] = await history_of(db, subscription.id, SubscriptionChangeType.UPGRADE)
    assert history.previous_plan_id == plans["FREE"].id
    assert history.new_plan_id == plans["PRO"].id
    assert history.reason == "upsell"

    audit = await db.scalar(
        select(AuditLog).where(AuditLog.resource_id == subscription.id, AuditLog.action == AuditAction.SUBSCRIPTION_UPGRADED.value)
    )
    assert audit is not None
    assert audit.organization_id == organization.id
    assert audit.details["newPlan"] == "PRO"


async def test_downgrade_records_downgrade(db, organization, plans, owner):
    subscription = await service.require_active_subscription(db, organization.id)
    await service.change_plan(db, subscription.id, plans["ENTERPRISE"].id, changed_by=owner.id)
    await service.change_plan(db, subscription.id, plans["STARTER"].id, changed_by=owner.id)

    assert len(await history_of(db, subscription.id, SubscriptionChangeType.DOWNGRADE)) == 1


async def test_same_plan_is_rejected(db, organization, plans, owner):
    subscription = await service.require_active_subscription(db, organization.id)

    with pytest.raises(BadRequestError):
        await service.change_plan(db, subscription.id, plans["FREE"].id, changed_by=owner.id)


async def test_at_most_one_active_subscription(db, organization, plans, owner):
    subscription = await service.require_active_subscription(db, organization.id)
    assert await active_rows(db, organization.id) == 1

    await service.change_plan(db, subscription.id, plans["PRO"].id, changed_by=owner.id)
    assert await active_rows(db, organization.id) == 1

    await service.cancel_subscription(db, subscription.id, changed_by=owner.id, reason="too expensive")
    assert await active_rows(db, organization.id) == 0

    await service.reactivate_subscription(db, subscription.id, plans["STARTER"].id, changed_by=owner.id)
    assert await active_rows(db, organization.id) == 1

    created = await service.create_subscription(db, organization.id, plans["PRO"].id, changed_by=owner.id, is_trial=False)
    assert await active_rows(db, organization.id) == 1

    superseded = await db.get(Subscription, subscription.id, populate_existing=True)
    assert superseded.status == SubscriptionStatus.EXPIRED
    assert superseded.is_active is False
    assert created.is_active is True


async def test_second_active_row_is_rejected_by_storage(db, organization, plans):
    db.add(Subscription(
        organization_id=organization.id,
        plan_id=plans["PRO"].id,
        status=SubscriptionStatus.ACTIVE,
        billing_cycle=BillingCycle.MONTHLY,
        is_active=True
    ))
    with pytest.raises(IntegrityError):
        await db.commit()
    await db.rollback()

    assert await active_rows(db, organization.id) == 1


async def test_trial_end_tracks_renewal_date(db, organization, plans, owner):
    subscription = await service.create_subscription(db, organization.id, plans["STARTER"].id, changed_by=owner.id)

    assert subscription.status == SubscriptionStatus.TRIAL
    assert subscription.is_trial is True
    assert as_utc(subscription.trial_end_date) == as_utc(subscription.renewal_date)
    first_end = as_utc(subscription.trial_end_date)

    extended = await service.extend_trial(db, subscription.id, 7, changed_by=owner.id)

    assert extended.status == SubscriptionStatus.TRIAL
    assert as_utc(extended.trial_end_date) == as_utc(extended.renewal_date)
    assert abs(as_utc(extended.trial_end_date) - (first_end + timedelta(days=7))) < timedelta(seconds=1)
    assert len(await history_of(db, subscription.id, SubscriptionChangeType.TRIAL_EXTEND)) == 1


async def test_plan_change_ends_trial(db, organization, plans, owner):
    subscription = await service.create_subscription(db, organization.id, plans["STARTER"].id, changed_by=owner.id)

    changed = await service.change_plan(db, subscription.id, plans["PRO"].id, changed_by=owner.id)

    assert changed.status == SubscriptionStatus.ACTIVE
    assert changed.is_trial is False
    assert changed.trial_end_date is None


async def test_extending_a_paid_subscription_is_rejected(db, organization, owner):
    subscription = await service.require_active_subscription(db, organization.id)

    with pytest.raises(BadRequestError):
        await service.extend_trial(db, subscription.id, 7, changed_by=owner.id)


async def test_cancel_twice_is_rejected(db, organization, owner):
    subscription = await service.require_active_subscription(db, organization.id)
    await service.cancel_subscription(db, subscription.id, changed_by=owner.id, reason="first")

    with pytest.raises(BadRequestError):
        await service.cancel_subscription(db, subscription.id, changed_by=owner.id, reason="second")

    current = await db.get(Subscription, subscription.id, populate_existing=True)
    assert current.status == SubscriptionStatus.CANCELED
    assert current.cancel_reason == "first"
    assert len(await history_of(db, subscription.id, SubscriptionChangeType.CANCEL)) == 1


async def test_force_expire(db, organization, owner):
    subscription = await service.require_active_subscription(db, organization.id)

    expired = await service.force_expire(db, subscription.id, changed_by=owner.id, reason="fraud")

    assert expired.status == SubscriptionStatus.EXPIRED
    assert expired.is_active is False
    assert expired.end_date is not None
    latest = await service.get_latest_subscription(db, organization.id)
    assert latest.id == subscription.id


@pytest.mark.parametrize("end_state", ["cancel", "expire"])
async def test_plan_change_reactivates_ended_subscription(db, organization, plans, owner, end_state):
    subscription = await service.require_active_subscription(db, organization.id)
    if end_state == "cancel":
        await service.cancel_subscription(db, subscription.id, changed_by=owner.id, reason="pause")
    else:
        await service.force_expire(db, subscription.id, changed_by=owner.id, reason="lapsed")
    assert await active_rows(db, organization.id) == 0

    changed = await service.change_plan(db, subscription.id, plans["PRO"].id, changed_by=owner.id)

    assert changed.status == SubscriptionStatus.ACTIVE
    assert changed.is_active is True
    assert changed.cancelled_at is None
    assert changed.cancel_reason is None
    assert changed.end_date is None
    assert await active_rows(db, organization.id) == 1
    [history] = await history_of(db, subscription.id, SubscriptionChangeType.UPGRADE)
    assert history.details["reactivated"] is True


async def test_concurrent_update_is_a_conflict(session_factory, organization, plans, owner):
    async with session_factory() as first, session_factory() as second:
        stale = await service.require_active_subscription(first, organization.id)
        fresh = await service.require_active_subscription(second, organization.id)

        await service.cancel_subscription(second, fresh.id, changed_by=owner.id)

        with pytest.raises(ConflictError):
            await service.change_plan(first, stale.id, plans["PRO"].id, changed_by=owner.id)


async def test_kpis_and_mrr(db, organization, plans, owner):
    yearly = await create_organization(db, owner.id, "Yearly Co")
    yearly_subscription = await service.require_active_subscription(db, yearly.id)
    await service.create_subscription(
        db, yearly.id, plans["PRO"].id, changed_by=owner.id, billing_cycle=BillingCycle.YEARLY, is_trial=False
    )
    await create_organization(db, owner.id, "Trial Co", plan_id=plans["STARTER"].id)

    kpis = await service.get_kpi_counts(db)

    assert kpis["active"] == 2
    assert kpis["trial"] == 1
    assert kpis["expired"] == 1
    assert kpis["canceled"] == 0
    # yearly PRO counts ten monthly prices, FREE adds nothing, trials are excluded
    assert kpis["mrr"] == 790
    superseded = await db.get(Subscription, yearly_subscription.id, populate_existing=True)
    assert superseded.status == SubscriptionStatus.EXPIRED


async def test_mrr_leaves_out_archived_plans(db, organization, plans, owner):
    subscription = await service.require_active_subscription(db, organization.id)
    await service.change_plan(db, subscription.id, plans["STARTER"].id, changed_by=owner.id)
    other = await create_organization(db, owner.id, "Pro Co")
    await service.create_subscription(db, other.id, plans["PRO"].id, changed_by=owner.id, is_trial=False)
    assert await service.compute_mrr(db) == 29 + 79

    await set_plan_active(db, plans["PRO"].id, False)

    assert await service.compute_mrr(db) == 29
    kpis = await service.get_kpi_counts(db)
    assert kpis["active"] == 2
    assert kpis["mrr"] == 29


class TestRoutes:
    async def test_member_reads_subscription(self, client, db, organization, owner, auth_headers):
        response = await client.get(f"/subscriptions/{organization.id}", headers=auth_headers(owner))

        assert response.status_code == 200
        body = response.json()
        assert body["organization_id"] == organization.id
        assert body["status"] == "ACTIVE"

    async def test_plain_member_cannot_change_plan(self, client, db, organization, plans, owner, make_user, auth_headers):
        member = await make_user("member@example.com")
        await add_member(db, organization.id, member.email, OrgRole.MEMBER, added_by=owner.id)

        response = await client.patch(
            f"/subscriptions/{organization.id}/plan",
            json={"plan_id": plans["PRO"].id},
            headers=auth_headers(member)
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    async def test_owner_changes_plan(self, client, db, organization, plans, owner, auth_headers):
        response = await client.patch(
            f"/subscriptions/{organization.id}/plan",
            json={"plan_id": plans["STARTER"].id, "reason": "growing"},
            headers=auth_headers(owner)
        )

        assert response.status_code == 200
        assert response.json()["plan_id"] == plans["STARTER"].id

        response = await client.get(f"/subscriptions/{organization.id}/history", headers=auth_headers(owner))
        change_types = [entry["change_type"] for entry in response.json()]
        assert change_types[0] == "UPGRADE"

    async def test_admin_routes_need_platform_permission(self, client, organization, owner, auth_headers):
        response = await client.get("/admin/subscriptions/kpi", headers=auth_headers(owner))

        assert response.status_code == 403

    async def test_super_admin_cancels_and_reactivates(self, client, db, organization, plans, super_admin, auth_headers):
        subscription = await service.require_active_subscription(db, organization.id)

        response = await client.post(
            f"/admin/subscriptions/{subscription.id}/cancel",
            json={"reason": "requested"},
            headers=auth_headers(super_admin)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "CANCELED"

        response = await client.post(
            f"/admin/subscriptions/{subscription.id}/cancel",
            json={},
            headers=auth_headers(super_admin)
        )
        assert response.status_code == 400

        response = await client.post(
            f"/admin/subscriptions/{subscription.id}/reactivate",
            json={"plan_id": plans["PRO"].id},
            headers=auth_headers(super_admin)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "ACTIVE"
        assert response.json()["billing_cycle"] == "MONTHLY"

        response = await client.get("/admin/subscriptions/kpi", headers=auth_headers(super_admin))
        assert response.json()["mrr"] == 79
