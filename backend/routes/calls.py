"""
BharatCRM - Routes Calls
Call logs uploaded by the mobile client (bearer session token).
"""

from fastapi import APIRouter, Depends

from models.auth import AuthContext
from models.call_log import CallLogCreate
from routes.auth import get_auth_context
from services.call_log import log_native_call

router = APIRouter(prefix="/calls", tags=["Calls"])


@router.post("/log-native")
async def log_native(data: CallLogCreate, ctx: AuthContext = Depends(get_auth_context)):
    """Idempotent within the duplicate window: a retried upload returns the stored call"""
    return await log_native_call(ctx, data)
