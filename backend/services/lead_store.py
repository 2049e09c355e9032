"""
BharatCRM - Lead persistence
Document shape + indexes. Uniqueness of (org_id, external_id) is enforced
by the store itself through a unique sparse index on external_key.
"""

import logging
from typing import Dict, Any

from config import get_db, generate_id, now_iso
from models.lead import CandidateLead

logger = logging.getLogger("lead_store")


def external_key(org_id: str, external_id) -> str:
    return f"{org_id}:{external_id}"


def build_lead_document(lead: CandidateLead) -> Dict[str, Any]:
    now = now_iso()
    doc = lead.model_dump(mode="json")
    doc["id"] = generate_id()
    doc["created_at"] = lead.created_at or now
    doc["updated_at"] = now
    # Leads without a provider id stay out of the unique sparse index
    if lead.external_id:
        doc["external_key"] = external_key(lead.org_id, lead.external_id)
    return doc


async def insert_lead(lead: CandidateLead) -> Dict[str, Any]:
    """Raises the store error (e.g. DuplicateKeyError) to the caller."""
    doc = build_lead_document(lead)
    await get_db().leads.insert_one(doc)
    doc.pop("_id", None)
    return doc


async def ensure_indexes(db=None):
    db = db if db is not None else get_db()

    await db.leads.create_index("external_key", unique=True, sparse=True)
    await db.leads.create_index([("org_id", 1), ("created_at", -1)])
    await db.leads.create_index([("org_id", 1), ("phone", 1)])
    await db.leads.create_index([("org_id", 1), ("assigned_to", 1)])
    await db.leads.create_index("id", unique=True)

    await db.integrations.create_index("id", unique=True)
    await db.integrations.create_index("webhook_secret", sparse=True)
    await db.integrations.create_index([("is_active", 1), ("sync_status", 1)])

    await db.lead_form_assignments.create_index(
        [("org_id", 1), ("integration_id", 1), ("form_id", 1)], unique=True
    )
    await db.campaign_assignments.create_index(
        [("org_id", 1), ("integration_id", 1), ("campaign_id", 1)], unique=True
    )

    await db.integration_sync_logs.create_index([("integration_id", 1), ("created_at", -1)])

    await db.call_logs.create_index([("user_id", 1), ("phone_number", 1), ("call_started_at", 1)])

    await db.users.create_index("id", unique=True)
    await db.users.create_index([("org_id", 1), ("manager_id", 1)])
    await db.sessions.create_index("token")

    logger.info("[STORE] MongoDB indexes ensured")
