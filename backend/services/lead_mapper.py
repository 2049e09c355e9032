"""
BharatCRM - Lead Mapper
Platform payload (RawLeadData) -> canonical CandidateLead, then validation.

Mapping is pure: no store access, no assignment. Validation is a separate
step so that each entry path chooses whether phone is mandatory.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from config import now_iso, to_utc_iso
from models.lead import (
    RawLeadData,
    CandidateLead,
    LeadSource,
    SheetRowMetadata,
    VALID_LEAD_SOURCES,
)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PLATFORM_SOURCE_MAP = {
    "facebook": LeadSource.FACEBOOK,
    "instagram": LeadSource.INSTAGRAM,
    "google_sheets": LeadSource.GOOGLE_SHEETS,
    "webhook": LeadSource.WEBHOOK,
}


def get_source_from_platform(platform: Optional[str]) -> LeadSource:
    """Unknown platforms map to manual"""
    return PLATFORM_SOURCE_MAP.get((platform or "").lower(), LeadSource.MANUAL)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _resolve_created_at(raw_created_at: Optional[str]) -> str:
    if raw_created_at:
        try:
            return to_utc_iso(raw_created_at)
        except (ValueError, TypeError):
            pass
    return now_iso()


def map_lead_data(
    raw: RawLeadData,
    org_id: str,
    integration_id: Optional[str],
    platform: Optional[str] = None,
) -> CandidateLead:
    source = get_source_from_platform(platform)

    # Spreadsheet rows may carry their own source column
    if isinstance(raw.metadata, SheetRowMetadata) and raw.metadata.source:
        row_source = raw.metadata.source.strip().lower()
        source = LeadSource(row_source) if row_source in VALID_LEAD_SOURCES else LeadSource.OTHER

    custom_fields = {}
    company = _clean(raw.company)
    if company:
        custom_fields["company"] = company

    email = _clean(raw.email)

    return CandidateLead(
        org_id=org_id,
        integration_id=integration_id,
        external_id=_clean(raw.external_id),
        name=_clean(raw.name) or "Unknown",
        phone=_clean(raw.phone),
        email=email.lower() if email else None,
        company=company,
        source=source,
        custom_fields=custom_fields,
        integration_metadata=raw.metadata,
        created_at=_resolve_created_at(raw.created_at),
    )


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def validate_mapped_lead(lead: CandidateLead, require_phone: bool = True) -> ValidationResult:
    """
    require_phone is True on every automated/platform path. Only the legacy
    manual-entry path turns it off, and then email must be present instead.
    """
    errors = []

    if not lead.org_id:
        errors.append("Organization ID is required")

    if require_phone and not lead.phone:
        errors.append("Phone is required")

    if not require_phone and not lead.phone and not lead.email:
        errors.append("Lead must have either email or phone")

    if lead.email and not EMAIL_RE.match(lead.email):
        errors.append("Invalid email format")

    return ValidationResult(valid=not errors, errors=errors)
