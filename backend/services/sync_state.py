"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  BharatCRM - Integration sync state                                          ║
║                                                                              ║
║  idle ──try_begin_sync──> syncing ──finish_sync──> idle | error              ║
║                              └──────fail_sync────> error                     ║
║                                                                              ║
║  - syncing is the run lock, taken with one conditional update                ║
║  - a lock older than SYNC_LOCK_TIMEOUT_SECONDS belongs to a crashed run      ║
║    and can be taken over                                                     ║
║  - last_sync_at only moves forward on a completed batch (overlap, no gap)    ║
║  - error integrations stay pollable (next run retries)                       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, List

from config import (
    get_db,
    now_iso,
    to_utc_iso,
    DEFAULT_LOOKBACK_HOURS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    SYNC_LOCK_TIMEOUT_SECONDS,
)
from models.integration import SyncStatus

logger = logging.getLogger("sync_state")

MIN_POLL_INTERVAL_SECONDS = 30
MAX_POLL_INTERVAL_SECONDS = 3600

POLLABLE_STATUSES = [SyncStatus.IDLE.value, SyncStatus.ERROR.value]


class SyncAlreadyRunning(Exception):
    """Another run holds the lock for this integration"""


# ==================== LOCK ====================

def stale_lock_cutoff(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return to_utc_iso(now - timedelta(seconds=SYNC_LOCK_TIMEOUT_SECONDS))


def is_lock_stale(integration: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    started = integration.get("sync_started_at")
    if integration.get("sync_status") != SyncStatus.SYNCING.value or not started:
        return False
    try:
        started_at = datetime.fromisoformat(to_utc_iso(started))
    except (TypeError, ValueError):
        return False
    now = now or datetime.now(timezone.utc)
    return (now - started_at).total_seconds() > SYNC_LOCK_TIMEOUT_SECONDS


async def try_begin_sync(integration_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """
    Atomically move the integration to syncing.
    Returns the updated document, or None when a live run is already in
    flight (or the integration does not exist).
    """
    integration = await get_db().integrations.find_one_and_update(
        {
            "id": integration_id,
            "$or": [
                {"sync_status": {"$ne": SyncStatus.SYNCING.value}},
                {"sync_started_at": {"$lt": stale_lock_cutoff(now)}},
            ],
        },
        {"$set": {"sync_status": SyncStatus.SYNCING.value, "sync_started_at": now_iso()}},
        return_document=True,
    )
    if integration:
        integration.pop("_id", None)
        logger.info(f"[SYNC] Lock acquired integration={integration_id}")
    else:
        logger.info(f"[SYNC] Lock busy integration={integration_id}")
    return integration


async def finish_sync(
    integration_id: str,
    watermark: str,
    error_message: Optional[str] = None,
    config_updates: Optional[Dict[str, Any]] = None,
):
    """Batch ran to the end. error_message set means some leads failed."""
    update = {
        "sync_status": SyncStatus.ERROR.value if error_message else SyncStatus.IDLE.value,
        "last_sync_at": watermark,
        "error_message": error_message,
        "updated_at": now_iso(),
    }
    for key, value in (config_updates or {}).items():
        update[f"config.{key}"] = value

    await get_db().integrations.update_one({"id": integration_id}, {"$set": update})
    logger.info(
        f"[SYNC] Finished integration={integration_id} status={update['sync_status']} "
        f"watermark={watermark}"
    )


async def fail_sync(integration_id: str, error_message: str):
    """Run aborted before completing: watermark untouched."""
    await get_db().integrations.update_one(
        {"id": integration_id},
        {"$set": {
            "sync_status": SyncStatus.ERROR.value,
            "error_message": error_message,
            "updated_at": now_iso(),
        }},
    )
    logger.warning(f"[SYNC] Failed integration={integration_id}: {error_message}")


# ==================== POLLING ====================

def is_eligible_for_poll(integration: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    if not integration.get("is_active"):
        return False
    return integration.get("sync_status", SyncStatus.IDLE.value) in POLLABLE_STATUSES \
        or is_lock_stale(integration, now)


async def list_pollable_integrations(now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Idle / error integrations, plus syncing ones whose run died"""
    return await get_db().integrations.find(
        {
            "is_active": True,
            "$or": [
                {"sync_status": {"$in": POLLABLE_STATUSES}},
                {"sync_status": SyncStatus.SYNCING.value, "sync_started_at": {"$lt": stale_lock_cutoff(now)}},
            ],
        },
        {"_id": 0},
    ).to_list(1000)


def poll_interval_seconds(integration: Dict[str, Any]) -> int:
    raw = (integration.get("config") or {}).get("poll_interval_seconds")
    try:
        interval = int(raw) if raw is not None else DEFAULT_POLL_INTERVAL_SECONDS
    except (TypeError, ValueError):
        interval = DEFAULT_POLL_INTERVAL_SECONDS
    return max(MIN_POLL_INTERVAL_SECONDS, min(MAX_POLL_INTERVAL_SECONDS, interval))


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(to_utc_iso(value))


def is_due(integration: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    last = integration.get("last_sync_at")
    if not last:
        return True
    now = now or datetime.now(timezone.utc)
    try:
        elapsed = (now - _parse(last)).total_seconds()
    except (TypeError, ValueError):
        return True
    return elapsed >= poll_interval_seconds(integration)


def resolve_since(
    integration: Dict[str, Any],
    since_iso: Optional[str] = None,
    backfill_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> str:
    """explicit since > backfill days > last_sync_at watermark > default lookback"""
    now = now or datetime.now(timezone.utc)

    if since_iso:
        return to_utc_iso(since_iso)
    if backfill_days:
        return to_utc_iso(now - timedelta(days=backfill_days))
    if integration.get("last_sync_at"):
        return to_utc_iso(integration["last_sync_at"])
    return to_utc_iso(now - timedelta(hours=DEFAULT_LOOKBACK_HOURS))
