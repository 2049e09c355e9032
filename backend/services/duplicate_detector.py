"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  BharatCRM - Duplicate detection                                             ║
║                                                                              ║
║  Two independent checks, in this order:                                      ║
║  1. external_id: exact (org_id, external_id) lookup, authoritative           ║
║  2. phone: normalized comparison done in Python, never in the query          ║
║     - pass 1: identical normalized phone                                     ║
║     - pass 2: identical last 10 digits (accepted false-positive risk)        ║
║                                                                              ║
║  A failed store query raises DuplicateCheckError: the caller must record     ║
║  the lead as errored, neither create it blindly nor skip it silently.        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Optional, Dict, Any

from config import get_db, mask_phone
from services.phone import normalize_phone, last_digits

logger = logging.getLogger("duplicate_detector")

SCAN_BATCH_SIZE = 1000
LEAD_PROJECTION = {"_id": 0, "id": 1, "name": 1, "phone": 1, "assigned_to": 1, "created_at": 1}


class DuplicateCheckError(Exception):
    """Store failure while looking for duplicates"""


class DuplicateResult:
    """Outcome of a duplicate check"""

    def __init__(
        self,
        is_duplicate: bool,
        match_type: Optional[str] = None,
        lead: Optional[Dict[str, Any]] = None,
    ):
        self.is_duplicate = is_duplicate
        self.match_type = match_type  # "external_id" | "phone_exact" | "phone_suffix"
        self.lead = lead

    @property
    def lead_id(self) -> Optional[str]:
        return self.lead.get("id") if self.lead else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_duplicate": self.is_duplicate,
            "match_type": self.match_type,
            "lead_id": self.lead_id,
            "lead_name": self.lead.get("name") if self.lead else None,
            "lead_phone": self.lead.get("phone") if self.lead else None,
        }


NOT_DUPLICATE = DuplicateResult(is_duplicate=False)


async def find_by_external_id(org_id: str, external_id: Optional[str]) -> DuplicateResult:
    """Provider ids are opaque: plain equality, no normalization."""
    if not org_id or not external_id:
        return NOT_DUPLICATE

    try:
        existing = await get_db().leads.find_one(
            {"org_id": org_id, "external_id": external_id},
            LEAD_PROJECTION,
        )
    except Exception as e:
        logger.error(f"[DEDUP] external_id lookup failed org={org_id} ext={external_id}: {e}")
        raise DuplicateCheckError(f"Duplicate check failed: {e}") from e

    if existing:
        return DuplicateResult(is_duplicate=True, match_type="external_id", lead=existing)
    return NOT_DUPLICATE


async def find_duplicate_by_phone(org_id: str, phone: Optional[str]) -> DuplicateResult:
    """
    Scan the org's leads that have a phone, newest first, in batches.

    Exact normalized matches win over suffix matches wherever they sit in
    the scan; the first suffix match is only returned once the scan is done.
    """
    if not org_id or not phone:
        return NOT_DUPLICATE

    normalized = normalize_phone(phone)
    suffix = last_digits(normalized)
    if not normalized:
        return NOT_DUPLICATE

    collection = get_db().leads
    query = {"org_id": org_id, "phone": {"$nin": [None, ""]}}

    suffix_match = None
    offset = 0
    scanned = 0

    while True:
        try:
            batch = await collection.find(query, LEAD_PROJECTION) \
                .sort([("created_at", -1), ("id", 1)]) \
                .skip(offset) \
                .limit(SCAN_BATCH_SIZE) \
                .to_list(SCAN_BATCH_SIZE)
        except Exception as e:
            logger.error(f"[DEDUP] phone scan failed org={org_id} offset={offset}: {e}")
            raise DuplicateCheckError(f"Duplicate check failed: {e}") from e

        for lead in batch:
            lead_normalized = normalize_phone(lead.get("phone"))
            if lead_normalized == normalized:
                logger.info(
                    f"[DEDUP] exact match {mask_phone(normalized)} -> lead {lead.get('id')}"
                )
                return DuplicateResult(is_duplicate=True, match_type="phone_exact", lead=lead)
            if suffix_match is None and suffix and last_digits(lead_normalized) == suffix:
                suffix_match = lead

        scanned += len(batch)
        if len(batch) < SCAN_BATCH_SIZE:
            break
        offset += SCAN_BATCH_SIZE

    if suffix_match:
        logger.info(
            f"[DEDUP] suffix match ***{suffix[-4:]} -> lead {suffix_match.get('id')} "
            f"(scanned={scanned})"
        )
        return DuplicateResult(is_duplicate=True, match_type="phone_suffix", lead=suffix_match)

    return NOT_DUPLICATE
