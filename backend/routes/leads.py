"""
BharatCRM - Routes Leads
Manual entry, manual reassignment and the duplicate check used by the lead form.
"""

from fastapi import APIRouter, HTTPException, Depends

from models.auth import AuthContext
from models.lead import LeadCreateManual, LeadAssignRequest, DuplicateCheckRequest
from routes.auth import get_auth_context
from services.duplicate_detector import find_duplicate_by_phone, DuplicateCheckError
from services.ingestion import create_manual_lead, LeadValidationError, DuplicateLeadError
from services.lead_access import reassign_leads, LeadAccessDenied, LeadsNotFound

router = APIRouter(prefix="/leads", tags=["Leads"])


@router.post("")
async def create_lead(data: LeadCreateManual, ctx: AuthContext = Depends(get_auth_context)):
    try:
        lead = await create_manual_lead(ctx, data)
    except LeadValidationError as e:
        raise HTTPException(status_code=400, detail={"error": "Invalid lead data", "details": e.errors})
    except DuplicateLeadError as e:
        raise HTTPException(status_code=409, detail={"error": "Duplicate lead", **e.duplicate.to_dict()})
    except DuplicateCheckError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"success": True, "lead": lead}


@router.post("/assign")
async def assign_leads(data: LeadAssignRequest, ctx: AuthContext = Depends(get_auth_context)):
    try:
        return await reassign_leads(ctx, data.lead_ids, data.assigned_to)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LeadAccessDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except LeadsNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/check-duplicate")
async def check_duplicate(data: DuplicateCheckRequest, ctx: AuthContext = Depends(get_auth_context)):
    """Phone lookup before the user saves a manual lead"""
    try:
        result = await find_duplicate_by_phone(ctx.org_id, data.phone)
    except DuplicateCheckError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return result.to_dict()
