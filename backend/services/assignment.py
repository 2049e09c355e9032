"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  BharatCRM - Lead assignment                                                 ║
║                                                                              ║
║  PRIORITY ORDER (first hit wins):                                            ║
║  1. Form rule      (org, integration, form_id) active                        ║
║  2. Campaign rule  (org, integration, campaign_id) active                    ║
║  3. Sheet default  config.sheet_assigned_to (Google Sheets)                  ║
║  4. Sales self     manual creation by a sales user                           ║
║  5. Distribution   opt-in "percentage" | "round_robin"                       ║
║  6. Unassigned     created_by = importer, else earliest org admin            ║
║                                                                              ║
║  A lead carrying a form_id with no active form rule never falls through      ║
║  to campaign rules or distribution.                                          ║
║  Rule targets must be active users of the same org, otherwise ignored.       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Optional, Dict, Any, List

from config import get_db
from models.auth import ADMIN_ROLES, UserRole
from models.lead import CandidateLead, routing_keys

logger = logging.getLogger("assignment")

DISTRIBUTION_MODES = ("percentage", "round_robin")


class AssignmentResult:
    def __init__(
        self,
        assigned_to: Optional[str],
        created_by: Optional[str],
        method: str,
    ):
        self.assigned_to = assigned_to
        self.created_by = created_by
        self.method = method  # form | campaign | sheet | sales_auto | percentage | round_robin | unassigned

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assigned_to": self.assigned_to,
            "created_by": self.created_by,
            "assignment_method": self.method,
        }


# ==================== LOOKUPS ====================

async def get_active_org_user(org_id: str, user_id: Optional[str]) -> Optional[Dict]:
    if not user_id:
        return None
    return await get_db().users.find_one(
        {"id": user_id, "org_id": org_id, "is_active": {"$ne": False}},
        {"_id": 0, "id": 1, "role": 1, "org_id": 1},
    )


async def _rule_target(collection: str, org_id: str, integration_id: str, key: str, value: str) -> Optional[str]:
    rule = await get_db()[collection].find_one(
        {"org_id": org_id, "integration_id": integration_id, key: value, "is_active": True},
        {"_id": 0, "assigned_to": 1},
    )
    if not rule or not rule.get("assigned_to"):
        return None

    user = await get_active_org_user(org_id, rule["assigned_to"])
    if not user:
        logger.warning(
            f"[ASSIGN] {collection} {key}={value} targets {rule['assigned_to']} "
            f"which is not an active user of org {org_id} - ignored"
        )
        return None
    return user["id"]


async def get_form_assignment(org_id: str, integration_id: str, form_id: str) -> Optional[str]:
    return await _rule_target("lead_form_assignments", org_id, integration_id, "form_id", form_id)


async def get_campaign_assignment(org_id: str, integration_id: str, campaign_id: str) -> Optional[str]:
    return await _rule_target("campaign_assignments", org_id, integration_id, "campaign_id", campaign_id)


async def get_org_admin_id(org_id: str) -> Optional[str]:
    """Earliest active, approved admin of the org"""
    admins = await get_db().users.find(
        {
            "org_id": org_id,
            "role": {"$in": list(ADMIN_ROLES)},
            "is_active": True,
            "is_approved": True,
        },
        {"_id": 0, "id": 1},
    ).sort("created_at", 1).limit(1).to_list(1)
    return admins[0]["id"] if admins else None


async def _sales_team(org_id: str, with_percent: bool = False) -> List[Dict]:
    query = {
        "org_id": org_id,
        "role": UserRole.SALES.value,
        "is_active": True,
        "is_approved": True,
    }
    if with_percent:
        query["lead_allocation_percent"] = {"$ne": None}
    return await get_db().users.find(
        query, {"_id": 0, "id": 1, "lead_allocation_percent": 1}
    ).sort("created_at", 1).to_list(500)


async def get_assigned_lead_counts(org_id: str, user_ids: List[str]) -> Dict[str, int]:
    counts = {uid: 0 for uid in user_ids}
    if not user_ids:
        return counts
    pipeline = [
        {"$match": {"org_id": org_id, "assigned_to": {"$in": user_ids}}},
        {"$group": {"_id": "$assigned_to", "count": {"$sum": 1}}},
    ]
    async for row in get_db().leads.aggregate(pipeline):
        counts[row["_id"]] = row["count"]
    return counts


async def get_percentage_assignment(org_id: str) -> Optional[str]:
    """
    Pick the rep furthest below their allocation share.
    Only applies when allocations sum to exactly 100.
    """
    team = await _sales_team(org_id, with_percent=True)
    if not team:
        return None

    total_percent = sum(u.get("lead_allocation_percent") or 0 for u in team)
    if total_percent != 100:
        return None

    counts = await get_assigned_lead_counts(org_id, [u["id"] for u in team])
    total_assigned = sum(counts.values())

    best_id, best_deficit = None, None
    for user in team:
        target = (user.get("lead_allocation_percent") or 0) / 100 * (total_assigned + 1)
        deficit = target - counts.get(user["id"], 0)
        if best_deficit is None or deficit > best_deficit:
            best_id, best_deficit = user["id"], deficit
    return best_id


async def get_round_robin_assignment(org_id: str) -> Optional[str]:
    """Rep with the fewest assigned leads, oldest account first on ties"""
    team = await _sales_team(org_id)
    if not team:
        return None

    counts = await get_assigned_lead_counts(org_id, [u["id"] for u in team])
    return min(team, key=lambda u: counts.get(u["id"], 0))["id"]


# ==================== RESOLVER ====================

async def assign_lead(
    lead: CandidateLead,
    org_id: str,
    created_by_user_id: Optional[str] = None,
    fallback_creator_id: Optional[str] = None,
    sheet_assigned_to: Optional[str] = None,
    distribution: Optional[str] = None,
) -> AssignmentResult:
    """
    Never fails for lack of a rule: worst case is unassigned with an
    accountable creator (or both None when the org has no admin at all).
    """
    keys = routing_keys(lead.integration_metadata)
    form_id = keys["form_id"]
    campaign_id = keys["campaign_id"]
    form_without_rule = False

    # 1. Form rule
    if lead.integration_id and form_id:
        target = await get_form_assignment(org_id, lead.integration_id, form_id)
        if target:
            return AssignmentResult(target, created_by_user_id or target, "form")
        form_without_rule = True

    # 2. Campaign rule
    if lead.integration_id and campaign_id and not form_without_rule:
        target = await get_campaign_assignment(org_id, lead.integration_id, campaign_id)
        if target:
            return AssignmentResult(target, created_by_user_id or target, "campaign")

    # 3. Sheet default
    if sheet_assigned_to:
        user = await get_active_org_user(org_id, sheet_assigned_to)
        if user:
            return AssignmentResult(user["id"], created_by_user_id or user["id"], "sheet")
        logger.warning(f"[ASSIGN] sheet_assigned_to={sheet_assigned_to} not in org {org_id} - ignored")

    # 4. Sales self-assign (manual creation only)
    if created_by_user_id and not lead.integration_id:
        creator = await get_active_org_user(org_id, created_by_user_id)
        if creator and creator.get("role") == UserRole.SALES.value:
            return AssignmentResult(creator["id"], creator["id"], "sales_auto")

    # 5. Opt-in distribution
    if distribution in DISTRIBUTION_MODES and not form_without_rule:
        if distribution == "percentage":
            target = await get_percentage_assignment(org_id)
        else:
            target = await get_round_robin_assignment(org_id)
        if target:
            return AssignmentResult(target, created_by_user_id or fallback_creator_id, distribution)

    # 6. Unassigned, kept visible through created_by
    creator = created_by_user_id or fallback_creator_id or await get_org_admin_id(org_id)
    return AssignmentResult(None, creator, "unassigned")
