"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  BharatCRM - Ingestion orchestrator                                          ║
║                                                                              ║
║  Per raw lead:                                                               ║
║    external_id dedupe -> map -> validate -> phone dedupe -> assign ->        ║
║    insert -> count                                                           ║
║                                                                              ║
║  Batch:  idle -> running -> completed | partial | failed                     ║
║  - per-lead failures are collected, never raised                             ║
║  - integration-level failures (credentials, platform API, config) abort     ║
║    the run, mark the integration error and leave the watermark alone         ║
║  - fan-out bounded by INGESTION_CONCURRENCY                                  ║
║                                                                              ║
║  Entry paths: manual sync, scheduled poll, webhook, preview import,          ║
║  manual entry.                                                               ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List

from pymongo.errors import DuplicateKeyError

from config import get_db, now_iso, mask_phone, INGESTION_CONCURRENCY, MAX_BATCH_ERRORS
from models.auth import AuthContext
from models.integration import Platform, SyncType, SyncLogStatus, SyncRequest, ImportLeadRow
from models.lead import (
    RawLeadData,
    CandidateLead,
    LeadCreateManual,
    MetaLeadMetadata,
    GenericMetadata,
    SheetRowMetadata,
)
from services.assignment import assign_lead, get_active_org_user, get_org_admin_id
from services.duplicate_detector import find_by_external_id, find_duplicate_by_phone, DuplicateResult
from services.lead_mapper import map_lead_data, validate_mapped_lead
from services.lead_store import insert_lead
from services.phone import phone_suffix
from services.platforms.base import PlatformError
from services.platforms.credentials import refresh_access_token, CredentialError
from services.platforms.factory import get_platform_client
from services.sync_log import log_sync, summarize_errors
from services.sync_state import (
    SyncAlreadyRunning,
    try_begin_sync,
    finish_sync,
    fail_sync,
    resolve_since,
    list_pollable_integrations,
    is_due,
    poll_interval_seconds,
)

logger = logging.getLogger("ingestion")

META_PLATFORMS = (Platform.FACEBOOK.value, Platform.INSTAGRAM.value)


class IntegrationSyncError(Exception):
    """Run-level failure: nothing was ingested"""


class IntegrationNotFound(Exception):
    pass


class LeadValidationError(Exception):
    def __init__(self, errors: List[str]):
        super().__init__(", ".join(errors))
        self.errors = errors


class DuplicateLeadError(Exception):
    def __init__(self, duplicate: DuplicateResult):
        super().__init__(f"Duplicate lead ({duplicate.match_type})")
        self.duplicate = duplicate


# ==================== BATCH STATE ====================

class BatchOutcome:
    """Order-independent aggregate of one batch"""

    def __init__(self):
        self.state = "idle"
        self.created = 0
        self.skipped_duplicates = 0
        self.skipped_missing_phone = 0
        self.error_count = 0
        self.errors: List[str] = []
        self.created_ids: List[str] = []
        self.max_sheet_row: Optional[int] = None

    def start(self):
        self.state = "running"

    def add_error(self, external_id: Optional[str], message: str):
        self.error_count += 1
        if len(self.errors) < MAX_BATCH_ERRORS:
            self.errors.append(f"Lead {external_id or '-'}: {message}")

    def add_created(self, lead_id: str):
        self.created += 1
        self.created_ids.append(lead_id)

    def see_sheet_row(self, raw: RawLeadData):
        if isinstance(raw.metadata, SheetRowMetadata) and raw.metadata.gsheets_row is not None:
            row = raw.metadata.gsheets_row
            self.max_sheet_row = row if self.max_sheet_row is None else max(self.max_sheet_row, row)

    def finish(self):
        self.state = "partial" if self.error_count else "completed"

    def fail(self, message: str):
        self.state = "failed"
        self.add_error(None, message)

    @property
    def log_status(self) -> str:
        return {
            "completed": SyncLogStatus.SUCCESS.value,
            "partial": SyncLogStatus.PARTIAL.value,
        }.get(self.state, SyncLogStatus.ERROR.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "created": self.created,
            "skipped_duplicates": self.skipped_duplicates,
            "skipped_missing_phone": self.skipped_missing_phone,
            "error_count": self.error_count,
            "errors": self.errors,
        }


@dataclass
class BatchContext:
    org_id: str
    integration_id: Optional[str] = None
    platform: Optional[str] = None
    # set only for manual entry (sales self-assign)
    created_by_user_id: Optional[str] = None
    # importer / earliest admin, used when a lead ends up unassigned
    fallback_creator_id: Optional[str] = None
    sheet_assigned_to: Optional[str] = None
    distribution: Optional[str] = None
    require_phone: bool = True
    # preview import counts missing phones instead of erroring
    skip_missing_phone: bool = False
    phone_locks: Dict[str, asyncio.Lock] = field(default_factory=dict)

    def phone_lock(self, phone: str) -> asyncio.Lock:
        return self.phone_locks.setdefault(phone_suffix(phone) or phone, asyncio.Lock())


# ==================== PER LEAD ====================

async def _dedupe_assign_insert(lead: CandidateLead, raw: RawLeadData, ctx: BatchContext,
                                outcome: BatchOutcome):
    if lead.phone:
        duplicate = await find_duplicate_by_phone(ctx.org_id, lead.phone)
        if duplicate.is_duplicate:
            outcome.skipped_duplicates += 1
            outcome.see_sheet_row(raw)
            logger.info(f"[INGEST] duplicate phone {mask_phone(lead.phone)} -> lead {duplicate.lead_id}")
            return

    assignment = await assign_lead(
        lead,
        ctx.org_id,
        created_by_user_id=ctx.created_by_user_id,
        fallback_creator_id=ctx.fallback_creator_id,
        sheet_assigned_to=ctx.sheet_assigned_to,
        distribution=ctx.distribution,
    )
    if not assignment.assigned_to and not assignment.created_by:
        outcome.add_error(raw.external_id, "Unassigned lead has no accountable creator (org has no active admin)")
        return

    lead.assigned_to = assignment.assigned_to
    lead.created_by = assignment.created_by

    doc = await insert_lead(lead)
    outcome.add_created(doc["id"])
    outcome.see_sheet_row(raw)


async def process_one_lead(raw: RawLeadData, ctx: BatchContext, outcome: BatchOutcome):
    """Never raises: every failure lands in outcome.errors"""
    external_id = raw.external_id
    try:
        if external_id:
            existing = await find_by_external_id(ctx.org_id, external_id)
            if existing.is_duplicate:
                outcome.skipped_duplicates += 1
                outcome.see_sheet_row(raw)
                return

        lead = map_lead_data(raw, ctx.org_id, ctx.integration_id, ctx.platform)

        if ctx.skip_missing_phone and not lead.phone:
            outcome.skipped_missing_phone += 1
            return

        validation = validate_mapped_lead(lead, require_phone=ctx.require_phone)
        if not validation.valid:
            outcome.add_error(external_id, ", ".join(validation.errors))
            return

        # Same-phone leads of one batch are serialized so the scan sees the first insert
        if lead.phone:
            async with ctx.phone_lock(lead.phone):
                await _dedupe_assign_insert(lead, raw, ctx, outcome)
        else:
            await _dedupe_assign_insert(lead, raw, ctx, outcome)

    except DuplicateKeyError:
        # Lost the race on (org_id, external_id) against a concurrent run
        outcome.skipped_duplicates += 1
        outcome.see_sheet_row(raw)
    except Exception as e:
        logger.warning(f"[INGEST] lead {external_id} failed: {e}")
        outcome.add_error(external_id, str(e))


async def run_batch(raws: List[RawLeadData], ctx: BatchContext,
                    concurrency: int = None) -> BatchOutcome:
    outcome = BatchOutcome()
    outcome.start()

    semaphore = asyncio.Semaphore(concurrency or INGESTION_CONCURRENCY)

    async def worker(raw: RawLeadData):
        async with semaphore:
            await process_one_lead(raw, ctx, outcome)

    await asyncio.gather(*(worker(raw) for raw in raws))
    outcome.finish()

    logger.info(
        f"[INGEST] org={ctx.org_id} integration={ctx.integration_id} state={outcome.state} "
        f"created={outcome.created} duplicates={outcome.skipped_duplicates} "
        f"missing_phone={outcome.skipped_missing_phone} errors={outcome.error_count}"
    )
    return outcome


# ==================== INTEGRATIONS ====================

async def load_integration(integration_id: str, org_id: Optional[str] = None) -> Dict[str, Any]:
    query = {"id": integration_id}
    if org_id:
        query["org_id"] = org_id
    integration = await get_db().integrations.find_one(query, {"_id": 0})
    if not integration:
        raise IntegrationNotFound("Integration not found")
    return integration


async def build_effective_config(integration: Dict[str, Any], options: SyncRequest) -> Dict[str, Any]:
    """Config for this run only; raises IntegrationSyncError when the integration cannot sync"""
    config = dict(integration.get("config") or {})
    platform = integration.get("platform")

    if platform == Platform.GOOGLE_SHEETS.value:
        if not (config.get("sheet_url") or config.get("sheet_id")) or not config.get("sheet_tab_name"):
            raise IntegrationSyncError(
                "Google Sheets not configured: set the sheet URL and tab name in the integration settings"
            )
        if options.full_sync:
            config["cursor_last_row"] = 1
        return config

    if platform in META_PLATFORMS:
        if not config.get("selected_forms") and not config.get("form_id"):
            rules = await get_db().lead_form_assignments.find(
                {"integration_id": integration["id"], "org_id": integration["org_id"], "is_active": True},
                {"_id": 0, "form_id": 1},
            ).to_list(500)
            form_ids = [r["form_id"] for r in rules if r.get("form_id")]
            if not form_ids:
                raise IntegrationSyncError(
                    "No lead forms configured: assign at least one form to a sales rep before syncing"
                )
            config["selected_forms"] = form_ids
        return config

    raise IntegrationSyncError(f"Sync not implemented for platform {platform}")


async def _apply_sheet_assignment(integration: Dict[str, Any], assigned_to: Optional[str],
                                  fallback_creator_id: Optional[str] = None) -> int:
    """
    Explicit sheet assignee applies to every lead of the integration.
    Clearing it leaves leads unassigned, so each one must keep a creator.
    """
    scope = {"org_id": integration["org_id"], "integration_id": integration["id"]}
    now = now_iso()
    result = await get_db().leads.update_many(scope, {"$set": {"assigned_to": assigned_to, "updated_at": now}})

    if not assigned_to and fallback_creator_id:
        await get_db().leads.update_many(
            {**scope, "created_by": None},
            {"$set": {"created_by": fallback_creator_id, "updated_at": now}},
        )

    logger.info(
        f"[INGEST] sheet assignment integration={integration['id']} -> {assigned_to} "
        f"({result.modified_count} leads)"
    )
    return result.modified_count


async def run_integration_sync(
    integration_id: str,
    org_id: Optional[str] = None,
    sync_type: str = SyncType.MANUAL.value,
    actor_user_id: Optional[str] = None,
    options: Optional[SyncRequest] = None,
    transport=None,
) -> Dict[str, Any]:
    """
    One pull run for one integration.

    Raises IntegrationNotFound, SyncAlreadyRunning or IntegrationSyncError.
    Config / option errors are raised before the lock is taken and leave the
    integration untouched; credential and platform failures happen under the
    lock and are recorded on the integration and in the sync log.
    """
    options = options or SyncRequest()
    integration = await load_integration(integration_id, org_id)
    org_id = integration["org_id"]
    platform = integration.get("platform")

    if not integration.get("is_active"):
        raise IntegrationSyncError("Integration is not active")

    effective_config = await build_effective_config(integration, options)

    override_sheet_assignee = "sheet_assigned_to" in options.model_fields_set
    sheet_assigned_to = None
    if platform == Platform.GOOGLE_SHEETS.value:
        sheet_assigned_to = options.sheet_assigned_to if override_sheet_assignee \
            else effective_config.get("sheet_assigned_to")
        sheet_assigned_to = sheet_assigned_to or None
        if override_sheet_assignee and sheet_assigned_to \
                and not await get_active_org_user(org_id, sheet_assigned_to):
            raise IntegrationSyncError("sheet_assigned_to is not an active user of this organization")

    try:
        since = resolve_since(integration, since_iso=options.since_iso, backfill_days=options.backfill_days)
    except (TypeError, ValueError) as e:
        raise IntegrationSyncError(f"Invalid since_iso: {e}") from e

    if not await try_begin_sync(integration_id):
        raise SyncAlreadyRunning(f"Integration {integration_id} is already syncing")

    # Anchor taken before the fetch: leads arriving during the run are re-read next time
    watermark = now_iso()
    logger.info(f"[SYNC] start integration={integration_id} type={sync_type} since={since}")

    try:
        access_token = await refresh_access_token(platform, integration.get("credentials") or {})
        credentials = {**(integration.get("credentials") or {}), "access_token": access_token}
        client = get_platform_client(platform, transport=transport)
        raws = await client.fetch_leads(credentials, effective_config, since=datetime.fromisoformat(since))

        fallback_creator_id = actor_user_id or await get_org_admin_id(org_id)
        ctx = BatchContext(
            org_id=org_id,
            integration_id=integration_id,
            platform=platform,
            fallback_creator_id=fallback_creator_id,
            sheet_assigned_to=sheet_assigned_to,
            distribution=effective_config.get("distribution"),
        )
        outcome = await run_batch(raws, ctx)

        if override_sheet_assignee:
            await _apply_sheet_assignment(integration, sheet_assigned_to, fallback_creator_id)
    except (CredentialError, PlatformError, IntegrationSyncError) as e:
        message = str(e)
        await fail_sync(integration_id, message)
        await log_sync(integration_id, org_id, sync_type, SyncLogStatus.ERROR.value, errors=[message],
                       details={"since": since})
        raise IntegrationSyncError(message) from e
    except Exception as e:
        # Unexpected: release the lock before propagating
        await fail_sync(integration_id, f"Unexpected sync failure: {e}")
        raise

    config_updates = {}
    if outcome.max_sheet_row is not None:
        config_updates["cursor_last_row"] = max(outcome.max_sheet_row, effective_config.get("cursor_last_row") or 1)
    if override_sheet_assignee:
        config_updates["sheet_assigned_to"] = sheet_assigned_to

    await finish_sync(
        integration_id,
        watermark=watermark,
        error_message=summarize_errors(outcome.errors),
        config_updates=config_updates,
    )
    await log_sync(
        integration_id,
        org_id,
        sync_type,
        outcome.log_status,
        leads_created=outcome.created,
        leads_updated=outcome.skipped_duplicates,
        errors=outcome.errors,
        details={"since": since, "fetched": len(raws)},
    )

    return {
        "integration_id": integration_id,
        "since": since,
        "last_sync_at": watermark,
        "fetched": len(raws),
        **outcome.to_dict(),
    }


async def poll_all_integrations(transport=None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Scheduled entry point (external cron). Each integration is isolated:
    one failing never stops the others.
    """
    integrations = await list_pollable_integrations()
    if not integrations:
        return {"message": "No active integrations to poll", "results": []}

    results = []
    due = 0
    skipped_not_due = 0

    for integration in integrations:
        integration_id = integration["id"]
        base = {"integration_id": integration_id, "integration_name": integration.get("name")}

        if not is_due(integration, now):
            skipped_not_due += 1
            results.append({
                **base,
                "status": "skipped",
                "message": f"Not due yet (poll every {poll_interval_seconds(integration)}s)",
            })
            continue

        due += 1
        try:
            summary = await run_integration_sync(
                integration_id,
                sync_type=SyncType.SCHEDULED.value,
                transport=transport,
            )
            results.append({**base, "status": "partial" if summary["error_count"] else "success", **summary})
        except SyncAlreadyRunning as e:
            results.append({**base, "status": "skipped", "message": str(e)})
        except (IntegrationSyncError, IntegrationNotFound) as e:
            results.append({**base, "status": "error", "message": str(e)})
        except Exception as e:
            logger.error(f"[POLL] integration={integration_id} unexpected failure: {e}")
            results.append({**base, "status": "error", "message": str(e)})

    logger.info(f"[POLL] polled={due} skipped_not_due={skipped_not_due} total={len(integrations)}")
    return {
        "message": f"Polled {due} integrations",
        "due": due,
        "skipped_not_due": skipped_not_due,
        "results": results,
    }


# ==================== PUSH / IMPORT / MANUAL ====================

async def find_webhook_integration(webhook_secret: str) -> Optional[Dict[str, Any]]:
    if not webhook_secret:
        return None
    return await get_db().integrations.find_one(
        {"webhook_secret": webhook_secret, "is_active": True},
        {"_id": 0},
    )


async def ingest_webhook_leads(integration: Dict[str, Any], raws: List[RawLeadData]) -> Dict[str, Any]:
    """
    Push delivery. Does not take the run lock and does not move the polling
    watermark: polls keep re-reading the window they own.
    """
    org_id = integration["org_id"]
    ctx = BatchContext(
        org_id=org_id,
        integration_id=integration["id"],
        platform=integration.get("platform"),
        fallback_creator_id=await get_org_admin_id(org_id),
        distribution=(integration.get("config") or {}).get("distribution"),
    )
    outcome = await run_batch(raws, ctx)
    await log_sync(
        integration["id"],
        org_id,
        SyncType.WEBHOOK.value,
        outcome.log_status,
        leads_created=outcome.created,
        leads_updated=outcome.skipped_duplicates,
        errors=outcome.errors,
    )
    return {"integration_id": integration["id"], "lead_ids": outcome.created_ids, **outcome.to_dict()}


def _raw_from_import_row(row: ImportLeadRow, platform: Optional[str]) -> RawLeadData:
    if platform in META_PLATFORMS:
        metadata = MetaLeadMetadata(form_id=row.form_id)
    else:
        metadata = GenericMetadata(form_id=row.form_id)
    return RawLeadData(
        external_id=row.external_id,
        name=row.name,
        phone=row.phone,
        email=row.email,
        company=row.company,
        created_at=row.created_at,
        metadata=metadata,
    )


async def import_preview_leads(ctx: AuthContext, integration_id: str, rows: List[ImportLeadRow]) -> Dict[str, Any]:
    """Rows picked on the preview screen, imported by an admin"""
    integration = await load_integration(integration_id, ctx.org_id)
    if not integration.get("is_active"):
        raise IntegrationSyncError("Integration is not active")

    platform = integration.get("platform")
    batch_ctx = BatchContext(
        org_id=integration["org_id"],
        integration_id=integration_id,
        platform=platform,
        fallback_creator_id=ctx.user_id,
        distribution=(integration.get("config") or {}).get("distribution"),
        skip_missing_phone=True,
    )
    outcome = await run_batch([_raw_from_import_row(r, platform) for r in rows], batch_ctx)
    await log_sync(
        integration_id,
        integration["org_id"],
        SyncType.MANUAL.value,
        outcome.log_status,
        leads_created=outcome.created,
        leads_updated=outcome.skipped_duplicates,
        errors=outcome.errors,
        details={"import": True, "rows": len(rows), "skipped_missing_phone": outcome.skipped_missing_phone},
    )
    return {
        "success": True,
        "created": outcome.created,
        "skipped_duplicates": outcome.skipped_duplicates,
        "skipped_missing_phone": outcome.skipped_missing_phone,
        "errors": outcome.errors,
    }


async def create_manual_lead(ctx: AuthContext, data: LeadCreateManual, require_phone: bool = False) -> Dict[str, Any]:
    """
    Lead typed in by a user. Sales users get it assigned to themselves.
    Raises LeadValidationError / DuplicateLeadError.
    """
    raw = RawLeadData(
        name=data.name,
        phone=data.phone,
        email=data.email,
        company=data.company,
        metadata=GenericMetadata(),
    )
    lead = map_lead_data(raw, ctx.org_id, None)
    lead.custom_fields.update(data.custom_fields or {})

    validation = validate_mapped_lead(lead, require_phone=require_phone)
    if not validation.valid:
        raise LeadValidationError(validation.errors)

    if lead.phone:
        duplicate = await find_duplicate_by_phone(ctx.org_id, lead.phone)
        if duplicate.is_duplicate:
            raise DuplicateLeadError(duplicate)

    assignment = await assign_lead(lead, ctx.org_id, created_by_user_id=ctx.user_id)
    lead.assigned_to = assignment.assigned_to
    lead.created_by = assignment.created_by

    doc = await insert_lead(lead)
    logger.info(
        f"[INGEST] manual lead {doc['id']} by {ctx.user_id} -> {assignment.method} ({lead.assigned_to})"
    )
    return {**doc, **assignment.to_dict()}
