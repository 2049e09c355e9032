"""
BharatCRM - Routes Auth
Session token -> AuthContext. Login, signup and approvals live in the auth
service; this module only resolves the caller for the API below.
"""

from fastapi import APIRouter, HTTPException, Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional

from config import get_db, now_iso, POLLING_SECRET
from models.auth import AuthContext

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== HELPERS ====================

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Connected user from the bearer session token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Unauthorized")

    session = await get_db().sessions.find_one({
        "token": credentials.credentials,
        "expires_at": {"$gt": now_iso()}
    })
    if not session:
        raise HTTPException(status_code=401, detail="Session expired")

    user = await get_db().users.find_one(
        {"id": session["user_id"]},
        {"_id": 0, "password": 0}
    )
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")

    if not user.get("is_approved", True):
        raise HTTPException(status_code=403, detail="Account pending approval")

    return user


async def get_auth_context(user: dict = Depends(get_current_user)) -> AuthContext:
    if not user.get("org_id"):
        raise HTTPException(status_code=404, detail="Profile not found")
    return AuthContext(user_id=user["id"], org_id=user["org_id"], role=user.get("role", "sales"))


async def require_admin(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """Admin or super_admin access."""
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    return ctx


async def require_polling_secret(authorization: Optional[str] = Header(None)):
    """Cron caller. Open when POLLING_SECRET is not configured."""
    if POLLING_SECRET and authorization != f"Bearer {POLLING_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")


# ==================== SESSION ====================

@router.get("/me")
async def get_me(ctx: AuthContext = Depends(get_auth_context)):
    return ctx.model_dump()
