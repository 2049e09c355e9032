"""
BharatCRM - Manual reassignment authorization tests
A rejected request must leave every lead untouched.
"""

import pytest

from models.auth import AuthContext
from services.lead_access import (
    reassign_leads,
    get_all_reportees,
    LeadAccessDenied,
    LeadsNotFound,
)
from tests.helpers import add_user, add_lead, ORG_ID, OTHER_ORG_ID


async def build_team(db):
    """
    manager-1
      └── lead-rep
            └── junior
    outsider (no manager)
    """
    await add_user(db, "admin-1", role="admin")
    await add_user(db, "manager-1", role="manager")
    await add_user(db, "lead-rep", manager_id="manager-1")
    await add_user(db, "junior", manager_id="lead-rep")
    await add_user(db, "outsider")


async def owner_of(db, lead_id):
    doc = await db.leads.find_one({"id": lead_id})
    return doc.get("assigned_to")


class TestHierarchy:

    @pytest.mark.asyncio
    async def test_transitive_reportees(self, mock_db):
        await build_team(mock_db)
        assert await get_all_reportees("manager-1", ORG_ID) == {"lead-rep", "junior"}

    @pytest.mark.asyncio
    async def test_cycle_terminates(self, mock_db):
        await add_user(mock_db, "a", manager_id="b")
        await add_user(mock_db, "b", manager_id="a")
        assert await get_all_reportees("a", ORG_ID) == {"b"}


class TestManager:

    @pytest.mark.asyncio
    async def test_assign_within_subtree(self, mock_db):
        await build_team(mock_db)
        lead = await add_lead(mock_db, phone="1", assigned_to="lead-rep")
        ctx = AuthContext(user_id="manager-1", org_id=ORG_ID, role="manager")

        result = await reassign_leads(ctx, [lead["id"]], "junior")
        assert result["success"]
        assert await owner_of(mock_db, lead["id"]) == "junior"

    @pytest.mark.asyncio
    async def test_lead_owned_outside_subtree_rejected_without_mutation(self, mock_db):
        await build_team(mock_db)
        mine = await add_lead(mock_db, phone="1", assigned_to="lead-rep")
        theirs = await add_lead(mock_db, phone="2", assigned_to="outsider")
        ctx = AuthContext(user_id="manager-1", org_id=ORG_ID, role="manager")

        with pytest.raises(LeadAccessDenied):
            await reassign_leads(ctx, [mine["id"], theirs["id"]], "junior")

        assert await owner_of(mock_db, mine["id"]) == "lead-rep"
        assert await owner_of(mock_db, theirs["id"]) == "outsider"

    @pytest.mark.asyncio
    async def test_target_outside_subtree_rejected(self, mock_db):
        await build_team(mock_db)
        lead = await add_lead(mock_db, phone="1", assigned_to="lead-rep")
        ctx = AuthContext(user_id="manager-1", org_id=ORG_ID, role="manager")
        with pytest.raises(LeadAccessDenied):
            await reassign_leads(ctx, [lead["id"]], "outsider")

    @pytest.mark.asyncio
    async def test_unassigned_created_outside_subtree_rejected(self, mock_db):
        await build_team(mock_db)
        lead = await add_lead(mock_db, phone="1", assigned_to=None, created_by="admin-1")
        ctx = AuthContext(user_id="manager-1", org_id=ORG_ID, role="manager")
        with pytest.raises(LeadAccessDenied):
            await reassign_leads(ctx, [lead["id"]], "manager-1")

    @pytest.mark.asyncio
    async def test_unassigned_created_in_subtree_allowed(self, mock_db):
        await build_team(mock_db)
        lead = await add_lead(mock_db, phone="1", assigned_to=None, created_by="junior")
        ctx = AuthContext(user_id="manager-1", org_id=ORG_ID, role="manager")
        await reassign_leads(ctx, [lead["id"]], "manager-1")
        assert await owner_of(mock_db, lead["id"]) == "manager-1"


class TestSalesAndAdmin:

    @pytest.mark.asyncio
    async def test_sales_claims_own_unassigned(self, mock_db):
        await build_team(mock_db)
        lead = await add_lead(mock_db, phone="1", assigned_to=None, created_by="junior")
        ctx = AuthContext(user_id="junior", org_id=ORG_ID, role="sales")
        await reassign_leads(ctx, [lead["id"]], "junior")
        assert await owner_of(mock_db, lead["id"]) == "junior"

    @pytest.mark.asyncio
    async def test_sales_cannot_assign_to_others(self, mock_db):
        await build_team(mock_db)
        lead = await add_lead(mock_db, phone="1", assigned_to=None, created_by="junior")
        ctx = AuthContext(user_id="junior", org_id=ORG_ID, role="sales")
        with pytest.raises(LeadAccessDenied):
            await reassign_leads(ctx, [lead["id"]], "lead-rep")

    @pytest.mark.asyncio
    async def test_sales_cannot_claim_assigned(self, mock_db):
        await build_team(mock_db)
        lead = await add_lead(mock_db, phone="1", assigned_to="outsider", created_by="junior")
        ctx = AuthContext(user_id="junior", org_id=ORG_ID, role="sales")
        with pytest.raises(LeadsNotFound):
            await reassign_leads(ctx, [lead["id"]], "junior")
        assert await owner_of(mock_db, lead["id"]) == "outsider"

    @pytest.mark.asyncio
    async def test_admin_any_lead_in_org(self, mock_db):
        await build_team(mock_db)
        lead = await add_lead(mock_db, phone="1", assigned_to="outsider")
        ctx = AuthContext(user_id="admin-1", org_id=ORG_ID, role="admin")
        await reassign_leads(ctx, [lead["id"]], "junior")
        assert await owner_of(mock_db, lead["id"]) == "junior"

    @pytest.mark.asyncio
    async def test_admin_cannot_touch_other_org(self, mock_db):
        await build_team(mock_db)
        foreign = await add_lead(mock_db, phone="1", org_id=OTHER_ORG_ID, assigned_to="x")
        ctx = AuthContext(user_id="admin-1", org_id=ORG_ID, role="admin")
        with pytest.raises(LeadsNotFound):
            await reassign_leads(ctx, [foreign["id"]], "junior")
        assert await owner_of(mock_db, foreign["id"]) == "x"
