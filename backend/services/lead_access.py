"""
BharatCRM - Lead access (manual reassignment)

Who may move which leads to whom:
- admin / super_admin: any lead of the org, to any active user of the org
- manager: to self or a transitive reportee, over leads that are unassigned
  (and created within the subtree) or already owned within the subtree
- sales: only unassigned leads they created, only to themselves

The whole candidate set is read once and checked before the single
update_many: a request is applied entirely or not at all.
"""

import logging
from typing import List, Set, Dict, Any

from config import get_db, now_iso
from models.auth import AuthContext
from services.assignment import get_active_org_user

logger = logging.getLogger("lead_access")

MAX_HIERARCHY_DEPTH = 20


class LeadAccessDenied(Exception):
    """403"""


class LeadsNotFound(Exception):
    """404"""


async def get_all_reportees(manager_id: str, org_id: str) -> Set[str]:
    """Direct and indirect reportees (breadth-first over users.manager_id)"""
    reportees: Set[str] = set()
    frontier = [manager_id]
    depth = 0

    while frontier and depth < MAX_HIERARCHY_DEPTH:
        users = await get_db().users.find(
            {"org_id": org_id, "manager_id": {"$in": frontier}},
            {"_id": 0, "id": 1},
        ).to_list(1000)
        frontier = [u["id"] for u in users if u["id"] not in reportees and u["id"] != manager_id]
        reportees.update(frontier)
        depth += 1

    return reportees


def _check_manager(ctx: AuthContext, leads: List[Dict[str, Any]], assigned_to: str, subtree: Set[str]):
    if assigned_to not in subtree:
        raise LeadAccessDenied("You can only assign leads to yourself or your team members")

    for lead in leads:
        owner = lead.get("assigned_to")
        if owner and owner not in subtree:
            raise LeadAccessDenied("You can only assign unassigned leads or leads assigned to you or your team")
        if not owner and lead.get("created_by") and lead["created_by"] not in subtree:
            raise LeadAccessDenied("You can only assign unassigned leads created by you or your team")


def _check_sales(ctx: AuthContext, leads: List[Dict[str, Any]], assigned_to: str):
    if assigned_to != ctx.user_id:
        raise LeadAccessDenied("You can only assign leads to yourself")

    for lead in leads:
        if lead.get("assigned_to") or lead.get("created_by") != ctx.user_id:
            raise LeadsNotFound("Some leads were not found or are not available for assignment")


async def reassign_leads(ctx: AuthContext, lead_ids: List[str], assigned_to: str) -> Dict[str, Any]:
    lead_ids = list(dict.fromkeys(lead_ids or []))
    if not lead_ids:
        raise ValueError("lead_ids array is required")
    if not assigned_to:
        raise ValueError("assigned_to is required")

    leads = await get_db().leads.find(
        {"id": {"$in": lead_ids}, "org_id": ctx.org_id},
        {"_id": 0, "id": 1, "assigned_to": 1, "created_by": 1},
    ).to_list(len(lead_ids))

    if len(leads) != len(lead_ids):
        raise LeadsNotFound("Some leads were not found or do not belong to your organization")

    if ctx.is_admin:
        if not await get_active_org_user(ctx.org_id, assigned_to):
            raise LeadAccessDenied("Target user is not an active member of your organization")
    elif ctx.is_manager:
        subtree = {ctx.user_id} | await get_all_reportees(ctx.user_id, ctx.org_id)
        _check_manager(ctx, leads, assigned_to, subtree)
    else:
        _check_sales(ctx, leads, assigned_to)

    result = await get_db().leads.update_many(
        {"id": {"$in": lead_ids}, "org_id": ctx.org_id},
        {"$set": {"assigned_to": assigned_to, "updated_at": now_iso()}},
    )
    logger.info(
        f"[ASSIGN] {ctx.role} {ctx.user_id} reassigned {len(lead_ids)} leads -> {assigned_to}"
    )
    return {
        "success": True,
        "updated": result.modified_count,
        "message": f"{len(lead_ids)} lead(s) assigned successfully",
    }
