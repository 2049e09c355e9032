"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  BharatCRM - Models Package                                                  ║
║                                                                              ║
║  from models import RawLeadData, CandidateLead, Platform, AuthContext, ...   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from .lead import (
    LeadSource,
    LeadStatus,
    VALID_LEAD_SOURCES,
    VALID_LEAD_STATUSES,
    MetaLeadMetadata,
    SheetRowMetadata,
    GenericMetadata,
    LeadMetadata,
    routing_keys,
    RawLeadData,
    CandidateLead,
    LeadCreateManual,
    LeadAssignRequest,
    DuplicateCheckRequest,
)

from .integration import (
    Platform,
    SyncStatus,
    SyncType,
    SyncLogStatus,
    SyncRequest,
    ImportLeadRow,
    ImportLeadsRequest,
    FormAssignmentUpsert,
    CampaignAssignmentUpsert,
)

from .auth import (
    UserRole,
    VALID_ROLES,
    ADMIN_ROLES,
    AuthContext,
)

from .call_log import (
    CallLogCreate,
    VALID_CALL_DIRECTIONS,
    VALID_CALL_STATUSES,
)
