"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  BharatCRM - Integrations, assignment rules and sync logs                    ║
║                                                                              ║
║  - One integration = one connection to an external lead source               ║
║  - sync_status=syncing is the run lock (set atomically)                      ║
║  - Assignment rules are upserted on their natural key (last write wins)      ║
║  - Sync logs are append-only                                                 ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Optional, List
from pydantic import BaseModel, Field, validator
from enum import Enum

from config import to_utc_iso


class Platform(str, Enum):
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    GOOGLE_SHEETS = "google_sheets"


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class SyncType(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    WEBHOOK = "webhook"


class SyncLogStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class SyncRequest(BaseModel):
    """Body of a manual "Sync now" (all optional)"""
    backfill_days: Optional[int] = Field(default=None, ge=1, le=90)
    since_iso: Optional[str] = None
    full_sync: bool = False
    # "" or None clears the sheet default for this run
    sheet_assigned_to: Optional[str] = None

    @validator("since_iso")
    def validate_since_iso(cls, v):
        if v is None or v == "":
            return None
        try:
            return to_utc_iso(v)
        except (TypeError, ValueError):
            raise ValueError("since_iso must be an ISO-8601 datetime")


class ImportLeadRow(BaseModel):
    """One row selected on the preview screen"""
    external_id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    company: Optional[str] = None
    form_id: Optional[str] = None
    created_at: Optional[str] = None


class ImportLeadsRequest(BaseModel):
    leads: List[ImportLeadRow]


class FormAssignmentUpsert(BaseModel):
    form_id: str
    form_name: Optional[str] = ""
    assigned_to: str
    is_active: bool = True


class CampaignAssignmentUpsert(BaseModel):
    campaign_id: str
    campaign_name: Optional[str] = ""
    assigned_to: str
    is_active: bool = True
