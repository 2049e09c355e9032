"""
BharatCRM - Call log (device / native call tracking upload)
"""

from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, validator

from config import to_utc_iso


VALID_CALL_DIRECTIONS = ["incoming", "outgoing"]

VALID_CALL_STATUSES = [
    "completed",
    "missed",
    "rejected",
    "blocked",
    "busy",
    "failed",
    "voicemail",
    "answered_externally",
    "unknown",
]


class CallLogCreate(BaseModel):
    lead_id: Optional[str] = None
    phone_number: str
    call_direction: str
    call_status: str
    call_started_at: str
    call_ended_at: Optional[str] = None
    duration_seconds: int = Field(default=0, ge=0)
    ring_duration_seconds: int = Field(default=0, ge=0)
    talk_time_seconds: int = Field(default=0, ge=0)
    device_info: Optional[Dict[str, Any]] = None
    network_type: Optional[str] = None

    @validator("call_direction")
    def validate_direction(cls, v):
        if v not in VALID_CALL_DIRECTIONS:
            raise ValueError(f"Invalid call_direction. Must be one of: {', '.join(VALID_CALL_DIRECTIONS)}")
        return v

    @validator("call_status")
    def validate_status(cls, v):
        if v not in VALID_CALL_STATUSES:
            raise ValueError(f"Invalid call_status. Must be one of: {', '.join(VALID_CALL_STATUSES)}")
        return v

    @validator("call_started_at", "call_ended_at")
    def validate_timestamp(cls, v):
        if v is None:
            return v
        try:
            return to_utc_iso(v)
        except (TypeError, ValueError):
            raise ValueError("Call timestamps must be ISO-8601 datetimes")
