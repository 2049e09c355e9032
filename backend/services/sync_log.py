"""
BharatCRM - Sync Logger

Append-only audit trail of integration runs.
One entry per batch (manual, scheduled or webhook), never updated afterwards.
"""

import logging
from typing import List, Optional

from config import get_db, generate_id, now_iso, MAX_BATCH_ERRORS

logger = logging.getLogger("sync_log")

ERROR_MESSAGE_MAX_ITEMS = 5


def summarize_errors(errors: List[str], limit: int = ERROR_MESSAGE_MAX_ITEMS) -> Optional[str]:
    """First `limit` errors joined for display, None when there are none"""
    if not errors:
        return None
    return "; ".join(errors[:limit])


async def log_sync(
    integration_id: str,
    org_id: str,
    sync_type: str,
    status: str,
    leads_created: int = 0,
    leads_updated: int = 0,
    errors: List[str] = None,
    details: dict = None,
):
    """
    Write a single entry to integration_sync_logs.

    Args:
        sync_type: manual | scheduled | webhook
        status: success | partial | error
        leads_created: new leads inserted by the run
        leads_updated: duplicates detected and skipped
        errors: per-lead / run errors, stored bounded
        details: free-form dict (since, pages, options...)
    """
    errors = (errors or [])[:MAX_BATCH_ERRORS]
    entry = {
        "id": generate_id(),
        "integration_id": integration_id,
        "org_id": org_id,
        "sync_type": sync_type,
        "status": status,
        "leads_created": leads_created,
        "leads_updated": leads_updated,
        "errors": errors,
        "error_message": summarize_errors(errors),
        "details": details or {},
        "created_at": now_iso(),
    }
    await get_db().integration_sync_logs.insert_one(entry)
    entry.pop("_id", None)

    logger.info(
        f"[SYNC_LOG] integration={integration_id} type={sync_type} status={status} "
        f"created={leads_created} duplicates={leads_updated} errors={len(errors)}"
    )
    return entry


async def get_sync_logs(integration_id: str, org_id: str, limit: int = 20) -> List[dict]:
    return await get_db().integration_sync_logs.find(
        {"integration_id": integration_id, "org_id": org_id},
        {"_id": 0},
    ).sort("created_at", -1).limit(limit).to_list(limit)
