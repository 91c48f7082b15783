from decimal import Decimal

import pytest

from app.core.errors import ConflictError, NotFoundError
from app.features.plans import service
from app.features.plans.schemas import PlanCreate, PlanUpdate


pytestmark = pytest.mark.anyio


async def test_names_are_unique_ignoring_case(db, plans):
    with pytest.raises(ConflictError):
        await service.create_plan(db, PlanCreate(name="pro", price=Decimal("1")))

    plan = await service.create_plan(db, PlanCreate(name="team_plus", price=Decimal("49")))
    assert plan.name == "TEAM_PLUS"
    assert plan.slug == "team-plus"

    with pytest.raises(ConflictError):
        await service.update_plan(db, plan.id, PlanUpdate(name="Starter"))


async def test_archived_plans_are_hidden(db, plans):
    await service.set_plan_active(db, plans["ENTERPRISE"].id, False)

    public = await service.list_public_plans(db)
    assert [plan.name for plan in public] == ["FREE", "STARTER", "PRO"]

    with pytest.raises(NotFoundError):
        await service.get_plan_by_name(db, "enterprise")

    _, total = await service.list_plans(db, include_inactive=True)
    assert total == 4


class TestRoutes:
    async def test_public_plans_need_no_token(self, client, plans):
        response = await client.get("/plans/public")

        assert response.status_code == 200
        assert [plan["name"] for plan in response.json()] == ["FREE", "STARTER", "PRO", "ENTERPRISE"]

    async def test_plan_management_is_platform_only(self, client, plans, owner, super_admin, auth_headers):
        response = await client.post("/plans/", json={"name": "Agency", "price": "99"}, headers=auth_headers(owner))
        assert response.status_code == 403

        response = await client.post("/plans/", json={"name": "Agency", "price": "99"}, headers=auth_headers(super_admin))
        assert response.status_code == 201
        plan_id = response.json()["id"]

        response = await client.patch(f"/plans/{plan_id}/toggle", headers=auth_headers(super_admin))
        assert response.json()["is_active"] is False

        response = await client.get("/plans/", headers=auth_headers(super_admin))
        assert "AGENCY" not in [plan["name"] for plan in response.json()["items"]]
