"""
BharatCRM - Routes Integrations

- Manual "Sync now" and preview import (admin)
- Scheduled poll (external cron, POLLING_SECRET)
- Form / campaign assignment rules (admin)
"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from config import get_db, generate_id, now_iso
from models.auth import AuthContext
from models.integration import (
    SyncRequest,
    ImportLeadsRequest,
    FormAssignmentUpsert,
    CampaignAssignmentUpsert,
)
from routes.auth import require_admin, require_polling_secret
from services.assignment import get_active_org_user
from services.ingestion import (
    run_integration_sync,
    poll_all_integrations,
    import_preview_leads,
    load_integration,
    IntegrationNotFound,
    IntegrationSyncError,
)
from services.sync_log import get_sync_logs
from services.sync_state import SyncAlreadyRunning

logger = logging.getLogger("routes.integrations")

router = APIRouter(prefix="/integrations", tags=["Integrations"])


async def _get_org_integration(integration_id: str, ctx: AuthContext) -> dict:
    try:
        return await load_integration(integration_id, ctx.org_id)
    except IntegrationNotFound:
        raise HTTPException(status_code=404, detail="Integration not found")


# ==================== POLL (cron) ====================

@router.post("/poll")
async def poll_integrations(_: None = Depends(require_polling_secret)):
    """Poll every due, active, not-syncing integration"""
    return await poll_all_integrations()


@router.get("/poll")
async def poll_integrations_get(_: None = Depends(require_polling_secret)):
    return await poll_all_integrations()


# ==================== SYNC ====================

@router.post("/{integration_id}/sync")
async def sync_integration(
    integration_id: str,
    data: Optional[SyncRequest] = None,
    ctx: AuthContext = Depends(require_admin)
):
    """Manual sync with optional backfill / since / full_sync / sheet assignee"""
    await _get_org_integration(integration_id, ctx)
    try:
        result = await run_integration_sync(
            integration_id,
            org_id=ctx.org_id,
            actor_user_id=ctx.user_id,
            options=data or SyncRequest(),
        )
    except SyncAlreadyRunning:
        raise HTTPException(status_code=409, detail="Sync already in progress")
    except IntegrationSyncError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, **result}


@router.post("/{integration_id}/import-leads")
async def import_leads(
    integration_id: str,
    data: ImportLeadsRequest,
    ctx: AuthContext = Depends(require_admin)
):
    if not data.leads:
        raise HTTPException(status_code=400, detail="leads array is required")
    try:
        return await import_preview_leads(ctx, integration_id, data.leads)
    except IntegrationNotFound:
        raise HTTPException(status_code=404, detail="Integration not found")
    except IntegrationSyncError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{integration_id}")
async def delete_integration(integration_id: str, ctx: AuthContext = Depends(require_admin)):
    """Removes the integration with its assignment rules and sync logs. Leads stay."""
    await _get_org_integration(integration_id, ctx)
    scope = {"integration_id": integration_id, "org_id": ctx.org_id}

    await get_db().lead_form_assignments.delete_many(scope)
    await get_db().campaign_assignments.delete_many(scope)
    await get_db().integration_sync_logs.delete_many(scope)
    await get_db().integrations.delete_one({"id": integration_id, "org_id": ctx.org_id})

    logger.info(f"[INTEGRATIONS] {integration_id} deleted by {ctx.user_id}")
    return {"success": True}


@router.get("/{integration_id}/sync-logs")
async def list_sync_logs(integration_id: str, limit: int = 20, ctx: AuthContext = Depends(require_admin)):
    await _get_org_integration(integration_id, ctx)
    logs = await get_sync_logs(integration_id, ctx.org_id, limit=min(limit, 100))
    return {"logs": logs, "count": len(logs)}


# ==================== ASSIGNMENT RULES ====================

async def _list_rules(collection: str, integration_id: str, ctx: AuthContext) -> list:
    await _get_org_integration(integration_id, ctx)
    return await get_db()[collection].find(
        {"org_id": ctx.org_id, "integration_id": integration_id},
        {"_id": 0},
    ).sort("created_at", 1).to_list(500)


async def _upsert_rule(collection: str, key: str, integration_id: str, ctx: AuthContext, data: dict) -> dict:
    """Natural key (org, integration, form/campaign id): last write wins"""
    await _get_org_integration(integration_id, ctx)

    if not await get_active_org_user(ctx.org_id, data["assigned_to"]):
        raise HTTPException(status_code=400, detail="assigned_to must be an active user of your organization")

    natural_key = {"org_id": ctx.org_id, "integration_id": integration_id, key: data[key]}
    now = now_iso()
    await get_db()[collection].update_one(
        natural_key,
        {
            "$set": {**data, "updated_at": now},
            "$setOnInsert": {"id": generate_id(), "created_at": now},
        },
        upsert=True,
    )
    rule = await get_db()[collection].find_one(natural_key, {"_id": 0})
    logger.info(f"[RULES] {collection} {key}={data[key]} -> {data['assigned_to']} by {ctx.user_id}")
    return rule


async def _delete_rule(collection: str, integration_id: str, assignment_id: str, ctx: AuthContext):
    await _get_org_integration(integration_id, ctx)
    result = await get_db()[collection].delete_one(
        {"id": assignment_id, "org_id": ctx.org_id, "integration_id": integration_id}
    )
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Assignment not found")
    return {"success": True}


@router.get("/{integration_id}/form-assignments")
async def list_form_assignments(integration_id: str, ctx: AuthContext = Depends(require_admin)):
    rules = await _list_rules("lead_form_assignments", integration_id, ctx)
    return {"assignments": rules, "count": len(rules)}


@router.post("/{integration_id}/form-assignments")
async def upsert_form_assignment(
    integration_id: str,
    data: FormAssignmentUpsert,
    ctx: AuthContext = Depends(require_admin)
):
    rule = await _upsert_rule("lead_form_assignments", "form_id", integration_id, ctx, data.model_dump())
    return {"success": True, "assignment": rule}


@router.delete("/{integration_id}/form-assignments/{assignment_id}")
async def delete_form_assignment(integration_id: str, assignment_id: str, ctx: AuthContext = Depends(require_admin)):
    return await _delete_rule("lead_form_assignments", integration_id, assignment_id, ctx)


@router.get("/{integration_id}/campaign-assignments")
async def list_campaign_assignments(integration_id: str, ctx: AuthContext = Depends(require_admin)):
    rules = await _list_rules("campaign_assignments", integration_id, ctx)
    return {"assignments": rules, "count": len(rules)}


@router.post("/{integration_id}/campaign-assignments")
async def upsert_campaign_assignment(
    integration_id: str,
    data: CampaignAssignmentUpsert,
    ctx: AuthContext = Depends(require_admin)
):
    rule = await _upsert_rule("campaign_assignments", "campaign_id", integration_id, ctx, data.model_dump())
    return {"success": True, "assignment": rule}


@router.delete("/{integration_id}/campaign-assignments/{assignment_id}")
async def delete_campaign_assignment(integration_id: str, assignment_id: str, ctx: AuthContext = Depends(require_admin)):
    return await _delete_rule("campaign_assignments", integration_id, assignment_id, ctx)
