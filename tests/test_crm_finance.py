from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.errors import ConflictError, NotFoundError
from app.features.audit.models import AuditAction, AuditLog
from app.features.crm import service as crm
from app.features.crm.models import LeadStatus
from app.features.crm.schemas import LeadCreate
from app.features.finance import service as finance
from app.features.finance.models import FinanceEntryType
from app.features.finance.schemas import FinancialEntryCreate
from app.features.organizations.service import add_member, create_organization
from app.features.permissions.catalog import OrgRole


pytestmark = pytest.mark.anyio


@pytest.fixture
async def member(db, organization, owner, make_user):
    user = await make_user("member@example.com")
    await add_member(db, organization.id, user.email, OrgRole.MEMBER, added_by=owner.id)
    return user


async def test_lead_emails_are_unique_per_organization(db, organization, owner, make_user):
    await crm.create_lead(db, organization.id, owner.id, LeadCreate(name="Jane Roe", email="Jane@Example.com"))

    with pytest.raises(ConflictError):
        await crm.create_lead(db, organization.id, owner.id, LeadCreate(name="Jane Again", email="jane@example.com"))

    other_owner = await make_user("other@example.com")
    other = await create_organization(db, other_owner.id, "Other Org")
    lead = await crm.create_lead(db, other.id, other_owner.id, LeadCreate(name="Jane Roe", email="jane@example.com"))
    assert lead.organization_id == other.id

    with pytest.raises(NotFoundError):
        await crm.get_lead(db, organization.id, lead.id)


async def test_lead_update_audit_action(db, organization, owner):
    lead = await crm.create_lead(db, organization.id, owner.id, LeadCreate(name="John Doe", email="john@example.com"))

    await crm.update_lead(db, organization.id, lead.id, owner.id, {"status": LeadStatus.CONTACTED})
    await crm.update_lead(db, organization.id, lead.id, owner.id, {"assigned_to": owner.id})
    await crm.update_lead(db, organization.id, lead.id, owner.id, {"notes": "Call back Monday"})

    result = await db.scalars(
        select(AuditLog).where(AuditLog.resource_id == lead.id).order_by(AuditLog.created_at, AuditLog.id)
    )
    entries = result.all()
    assert [entry.action for entry in entries] == [
        AuditAction.LEAD_CREATED.value,
        AuditAction.LEAD_STATUS_CHANGED.value,
        AuditAction.LEAD_ASSIGNED.value,
        AuditAction.LEAD_UPDATED.value,
    ]
    assert entries[1].details["changes"]["status"] == {"old": "NEW", "new": "CONTACTED"}


async def test_lead_statistics(db, organization, owner):
    for name, email, status, value in [
        ("Ann Lee", "ann@example.com", LeadStatus.NEW, "100"),
        ("Bob Ray", "bob@example.com", LeadStatus.NEW, "50.50"),
        ("Cal Oak", "cal@example.com", LeadStatus.WON, "1000"),
    ]:
        await crm.create_lead(
            db, organization.id, owner.id,
            LeadCreate(name=name, email=email, status=status, value=Decimal(value))
        )

    stats = await crm.get_statistics(db, organization.id)

    assert stats["total"] == 3
    assert stats["total_value"] == Decimal("1150.50")
    assert stats["by_status"][LeadStatus.NEW]["count"] == 2


async def test_monthly_summary(db, organization, owner):
    entries = [
        (FinanceEntryType.INCOME, "1500", datetime(2024, 3, 5, tzinfo=timezone.utc)),
        (FinanceEntryType.INCOME, "500", datetime(2024, 3, 31, 23, 0, tzinfo=timezone.utc)),
        (FinanceEntryType.EXPENSE, "300", datetime(2024, 3, 10, tzinfo=timezone.utc)),
        (FinanceEntryType.INCOME, "999", datetime(2024, 4, 1, tzinfo=timezone.utc)),
    ]
    for entry_type, amount, date in entries:
        await finance.create_entry(
            db, organization.id, owner.id,
            FinancialEntryCreate(type=entry_type, amount=Decimal(amount), category="Ops", date=date)
        )

    summary = await finance.get_monthly_summary(db, organization.id, 2024, 3)

    assert summary["total_income"] == Decimal("2000")
    assert summary["total_expense"] == Decimal("300")
    assert summary["net_balance"] == Decimal("1700")
    assert summary["entry_count"] == 3

    yearly = await finance.get_yearly_summary(db, organization.id, 2024)
    assert len(yearly) == 12
    assert yearly[3]["total_income"] == Decimal("999")
    assert yearly[0]["entry_count"] == 0


def test_month_bounds_wrap_the_year():
    start, end = finance.month_bounds(2024, 12)

    assert start == datetime(2024, 12, 1, tzinfo=timezone.utc)
    assert end == datetime(2025, 1, 1, tzinfo=timezone.utc)


class TestRoutes:
    async def test_member_creates_but_cannot_delete_leads(self, client, organization, member, auth_headers):
        headers = auth_headers(member)

        response = await client.post(
            f"/crm/{organization.id}/leads",
            json={"name": "Dana Fox", "email": "dana@example.com", "value": "250"},
            headers=headers
        )
        assert response.status_code == 201
        lead_id = response.json()["id"]

        response = await client.get(f"/crm/{organization.id}/leads", headers=headers)
        assert response.json()["total"] == 1

        response = await client.delete(f"/crm/{organization.id}/leads/{lead_id}", headers=headers)
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "You do not have permission to DELETE in the CRM module"

    async def test_owner_deletes_leads(self, client, db, organization, owner, auth_headers):
        lead = await crm.create_lead(db, organization.id, owner.id, LeadCreate(name="Eve Kim", email="eve@example.com"))

        response = await client.delete(f"/crm/{organization.id}/leads/{lead.id}", headers=auth_headers(owner))
        assert response.status_code == 204

        response = await client.get(f"/crm/{organization.id}/leads/{lead.id}", headers=auth_headers(owner))
        assert response.status_code == 404

    async def test_member_reads_but_cannot_write_finance(self, client, organization, member, auth_headers):
        headers = auth_headers(member)

        response = await client.post(
            f"/finance/{organization.id}/entries",
            json={"type": "INCOME", "amount": "10", "category": "Sales"},
            headers=headers
        )
        assert response.status_code == 403

        response = await client.get(f"/finance/{organization.id}/summary", params={"year": 2024, "month": 1}, headers=headers)
        assert response.status_code == 200
        assert response.json()["entry_count"] == 0

    async def test_stranger_cannot_see_tenant_data(self, client, organization, make_user, auth_headers):
        stranger = await make_user("stranger@example.com")

        response = await client.get(f"/crm/{organization.id}/leads", headers=auth_headers(stranger))
        assert response.status_code == 403

        response = await client.get(f"/finance/{organization.id}/entries", headers=auth_headers(stranger))
        assert response.status_code == 403
