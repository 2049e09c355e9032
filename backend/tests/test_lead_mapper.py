"""
BharatCRM - Lead Mapper Tests (direct, no database)
"""

from models.lead import (
    RawLeadData,
    LeadSource,
    MetaLeadMetadata,
    SheetRowMetadata,
    CandidateLead,
)
from services.lead_mapper import map_lead_data, validate_mapped_lead, get_source_from_platform


class TestMapping:

    def test_defaults_and_trimming(self):
        raw = RawLeadData(external_id=" fb-1 ", name="  ", phone=" 9876543210 ", email=" A@B.COM ")
        lead = map_lead_data(raw, "org-1", "int-1", "facebook")

        assert lead.name == "Unknown"
        assert lead.phone == "9876543210"
        assert lead.email == "a@b.com"
        assert lead.external_id == "fb-1"
        assert lead.source == LeadSource.FACEBOOK
        assert lead.integration_id == "int-1"
        assert lead.status.value == "new"

    def test_company_goes_to_custom_fields(self):
        lead = map_lead_data(RawLeadData(phone="1", company="Acme"), "org-1", None)
        assert lead.custom_fields["company"] == "Acme"

    def test_source_created_at_kept_in_utc(self):
        raw = RawLeadData(phone="9876543210", created_at="2026-01-05T10:00:00+05:30")
        lead = map_lead_data(raw, "org-1", None)
        assert lead.created_at == "2026-01-05T04:30:00+00:00"

    def test_unparseable_created_at_falls_back_to_now(self):
        lead = map_lead_data(RawLeadData(phone="1", created_at="yesterday"), "org-1", None)
        assert lead.created_at.endswith("+00:00")

    def test_metadata_is_carried(self):
        raw = RawLeadData(phone="1", metadata=MetaLeadMetadata(form_id="F1", campaign_id="C1"))
        lead = map_lead_data(raw, "org-1", "int-1", "instagram")
        assert isinstance(lead.integration_metadata, MetaLeadMetadata)
        assert lead.integration_metadata.form_id == "F1"
        assert lead.source == LeadSource.INSTAGRAM

    def test_sheet_row_source_override(self):
        raw = RawLeadData(phone="1", metadata=SheetRowMetadata(gsheets_row=4, source="Facebook"))
        assert map_lead_data(raw, "org-1", "i", "google_sheets").source == LeadSource.FACEBOOK

    def test_sheet_row_unknown_source_is_other(self):
        raw = RawLeadData(phone="1", metadata=SheetRowMetadata(gsheets_row=4, source="billboard"))
        assert map_lead_data(raw, "org-1", "i", "google_sheets").source == LeadSource.OTHER

    def test_unknown_platform_is_manual(self):
        assert get_source_from_platform("linkedin") == LeadSource.MANUAL
        assert get_source_from_platform(None) == LeadSource.MANUAL

    def test_metadata_round_trips_through_discriminator(self):
        dumped = CandidateLead(
            org_id="o", integration_metadata=SheetRowMetadata(gsheets_row=7)
        ).model_dump(mode="json")
        assert dumped["integration_metadata"]["kind"] == "sheet_row"
        restored = CandidateLead(**dumped)
        assert isinstance(restored.integration_metadata, SheetRowMetadata)


class TestValidation:

    def test_phone_required_by_default(self):
        result = validate_mapped_lead(CandidateLead(org_id="o", email="a@b.com"))
        assert not result.valid
        assert "Phone is required" in result.errors

    def test_manual_path_accepts_email_only(self):
        result = validate_mapped_lead(CandidateLead(org_id="o", email="a@b.com"), require_phone=False)
        assert result.valid

    def test_manual_path_needs_one_contact(self):
        result = validate_mapped_lead(CandidateLead(org_id="o"), require_phone=False)
        assert "Lead must have either email or phone" in result.errors

    def test_invalid_email(self):
        result = validate_mapped_lead(CandidateLead(org_id="o", phone="9876543210", email="nope"))
        assert result.errors == ["Invalid email format"]

    def test_org_required(self):
        result = validate_mapped_lead(CandidateLead(org_id="", phone="9876543210"))
        assert "Organization ID is required" in result.errors
