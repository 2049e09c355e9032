"""
BharatCRM - Test data builders
"""

import uuid
from datetime import datetime, timezone, timedelta

from services.lead_store import build_lead_document
from models.lead import CandidateLead

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"


def iso(minutes_ago: int = 0) -> str:
    return (datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)).isoformat()


async def add_user(db, user_id, role="sales", org_id=ORG_ID, manager_id=None,
                   is_active=True, is_approved=True, created_at=None, **extra):
    doc = {
        "id": user_id,
        "org_id": org_id,
        "role": role,
        "manager_id": manager_id,
        "is_active": is_active,
        "is_approved": is_approved,
        "created_at": created_at or iso(),
        **extra,
    }
    await db.users.insert_one(doc)
    return doc


async def add_lead(db, phone=None, org_id=ORG_ID, external_id=None, created_at=None, **extra):
    lead = CandidateLead(
        org_id=org_id,
        phone=phone,
        external_id=external_id,
        name=extra.pop("name", "Existing"),
        created_at=created_at or iso(),
    )
    doc = build_lead_document(lead)
    doc.update(extra)
    await db.leads.insert_one(doc)
    doc.pop("_id", None)
    return doc


async def add_integration(db, platform="facebook", org_id=ORG_ID, config=None, **extra):
    doc = {
        "id": extra.pop("id", str(uuid.uuid4())),
        "org_id": org_id,
        "name": f"{platform} integration",
        "platform": platform,
        "credentials": {"access_token": "token-123"},
        "config": config if config is not None else {"selected_forms": ["form-1"]},
        "webhook_secret": extra.pop("webhook_secret", None),
        "is_active": True,
        "sync_status": "idle",
        "last_sync_at": None,
        "error_message": None,
        **extra,
    }
    await db.integrations.insert_one(doc)
    doc.pop("_id", None)
    return doc


async def add_session(db, user_id, token="session-token"):
    expires = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
    await db.sessions.insert_one({"token": token, "user_id": user_id, "expires_at": expires})
    return token
