"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  BharatCRM - Lead model                                                      ║
║                                                                              ║
║  FUNDAMENTAL RULES:                                                          ║
║  1. A lead always belongs to exactly one org (org_id never changes)          ║
║  2. (org_id, external_id) is unique when external_id is present              ║
║  3. phone is the duplicate-detection key, required on automated paths        ║
║  4. assigned_to = None means unassigned; created_by keeps it visible         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Optional, Dict, Any, Union, Literal, List, Annotated
from pydantic import BaseModel, Field
from enum import Enum


class LeadSource(str, Enum):
    MANUAL = "manual"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    GOOGLE_SHEETS = "google_sheets"
    WEBHOOK = "webhook"
    OTHER = "other"


VALID_LEAD_SOURCES = [s.value for s in LeadSource]


class LeadStatus(str, Enum):
    """
    Underlying status values. Orgs customize label/color only,
    business logic always works on these values.
    """
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    NEGOTIATION = "negotiation"
    WON = "won"
    LOST = "lost"


VALID_LEAD_STATUSES = [s.value for s in LeadStatus]


# ==================== INTEGRATION METADATA (tagged union) ====================

class MetaLeadMetadata(BaseModel):
    """Facebook / Instagram lead ads"""
    kind: Literal["meta"] = "meta"
    form_id: Optional[str] = None
    page_id: Optional[str] = None
    campaign_id: Optional[str] = None
    campaign_name: Optional[str] = None
    ad_set_id: Optional[str] = None
    ad_id: Optional[str] = None
    ad_name: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class SheetRowMetadata(BaseModel):
    """Google Sheets row"""
    kind: Literal["sheet_row"] = "sheet_row"
    sheet_id: Optional[str] = None
    gsheets_row: Optional[int] = None
    source: Optional[str] = None  # per-row source override
    extra: Dict[str, Any] = Field(default_factory=dict)


class GenericMetadata(BaseModel):
    """Unstructured passthrough (manual, generic webhook, preview import)"""
    kind: Literal["generic"] = "generic"
    form_id: Optional[str] = None
    campaign_id: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


LeadMetadata = Annotated[
    Union[MetaLeadMetadata, SheetRowMetadata, GenericMetadata],
    Field(discriminator="kind"),
]


def routing_keys(metadata: Optional[LeadMetadata]) -> Dict[str, Optional[str]]:
    """form_id / campaign_id carried by a metadata variant"""
    if isinstance(metadata, (MetaLeadMetadata, GenericMetadata)):
        return {"form_id": metadata.form_id or None, "campaign_id": metadata.campaign_id or None}
    return {"form_id": None, "campaign_id": None}


# ==================== RAW / CANDIDATE ====================

class RawLeadData(BaseModel):
    """
    Normalized shape every platform adapter hands to the mapper.
    Wire formats stay inside the adapters.
    """
    external_id: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    company: Optional[str] = None
    created_at: Optional[str] = None
    metadata: Optional[LeadMetadata] = None


class CandidateLead(BaseModel):
    """Mapped lead, not yet persisted"""
    org_id: str
    integration_id: Optional[str] = None
    external_id: Optional[str] = None
    name: str = "Unknown"
    phone: Optional[str] = None
    email: Optional[str] = None
    company: Optional[str] = None
    source: LeadSource = LeadSource.MANUAL
    status: LeadStatus = LeadStatus.NEW
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    integration_metadata: Optional[LeadMetadata] = None
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    created_at: str = ""


class LeadCreateManual(BaseModel):
    """Lead typed in by a user on the Leads screen"""
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    company: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class LeadAssignRequest(BaseModel):
    lead_ids: List[str]
    assigned_to: str


class DuplicateCheckRequest(BaseModel):
    phone: str
