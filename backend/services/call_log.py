"""
BharatCRM - Device call logs

Uploads from the mobile client are at-least-once (the device retries and
may read the same call from both the call-state monitor and the system call
log). A call is a duplicate of an existing one when:
  same user + same phone_number
  AND call_started_at within +/- 10s
  AND duration differs by at most 5s
"""

import logging
import re
from typing import Optional, Dict, Any

from config import get_db, generate_id, now_iso, to_utc_iso, mask_phone
from models.auth import AuthContext
from models.call_log import CallLogCreate
from services.phone import normalize_phone, last_digits, phones_match
from services.tolerance_window import find_within_window, within_tolerance

logger = logging.getLogger("call_log")

START_WINDOW_SECONDS = 10
DURATION_TOLERANCE_SECONDS = 5
LEAD_CANDIDATE_LIMIT = 50


async def resolve_lead_id(org_id: str, phone_number: str) -> Optional[str]:
    """Most recently updated lead of the org whose phone matches"""
    normalized = normalize_phone(phone_number)
    tail = last_digits(normalized, 4)
    if not tail:
        return None

    candidates = await get_db().leads.find(
        {"org_id": org_id, "phone": {"$regex": f"{re.escape(tail)}\\s*$"}},
        {"_id": 0, "id": 1, "phone": 1, "updated_at": 1},
    ).sort("updated_at", -1).limit(LEAD_CANDIDATE_LIMIT).to_list(LEAD_CANDIDATE_LIMIT)

    for lead in candidates:
        if phones_match(lead.get("phone"), normalized):
            return lead["id"]
    return None


async def find_duplicate_call(user_id: str, data: CallLogCreate) -> Optional[Dict[str, Any]]:
    duration = data.duration_seconds or 0
    return await find_within_window(
        get_db().call_logs,
        base_query={"user_id": user_id, "phone_number": data.phone_number},
        time_field="call_started_at",
        center=data.call_started_at,
        window_seconds=START_WINDOW_SECONDS,
        predicate=lambda log: within_tolerance(log.get("duration_seconds"), duration, DURATION_TOLERANCE_SECONDS),
    )


async def log_native_call(ctx: AuthContext, data: CallLogCreate) -> Dict[str, Any]:
    lead_id = data.lead_id
    if not lead_id:
        try:
            lead_id = await resolve_lead_id(ctx.org_id, data.phone_number)
        except Exception as e:
            # The call is still logged without a lead
            logger.warning(f"[CALLS] lead lookup failed for {mask_phone(data.phone_number)}: {e}")

    duplicate = await find_duplicate_call(ctx.user_id, data)
    if duplicate:
        logger.info(f"[CALLS] duplicate upload {mask_phone(data.phone_number)} -> {duplicate.get('id')}")
        return {
            "call_log": duplicate,
            "message": "Call already logged (duplicate prevented)",
            "duplicate": True,
        }

    call_log = {
        "id": generate_id(),
        "org_id": ctx.org_id,
        "user_id": ctx.user_id,
        "lead_id": lead_id,
        "phone_number": data.phone_number,
        "call_direction": data.call_direction,
        "call_status": data.call_status,
        "call_started_at": to_utc_iso(data.call_started_at),
        "call_ended_at": to_utc_iso(data.call_ended_at) if data.call_ended_at else None,
        "duration_seconds": data.duration_seconds or 0,
        "ring_duration_seconds": data.ring_duration_seconds or 0,
        "talk_time_seconds": data.talk_time_seconds or 0,
        "device_info": data.device_info,
        "network_type": data.network_type,
        "created_at": now_iso(),
    }
    await get_db().call_logs.insert_one(call_log)
    call_log.pop("_id", None)

    logger.info(f"[CALLS] logged {data.call_direction} {mask_phone(data.phone_number)} lead={lead_id}")
    return {"call_log": call_log, "message": "Call logged successfully", "duplicate": False}
