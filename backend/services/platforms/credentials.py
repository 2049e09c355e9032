"""
BharatCRM - Credential refresh

refresh_access_token(platform, credentials) -> usable access token.

- Meta (facebook / instagram): long-lived page token stored as-is
- Google Sheets: OAuth refresh_token grant, falls back to the stored
  access_token when the refresh call fails
"""

import logging
from typing import Optional, Dict, Any

import httpx

from config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, PLATFORM_TIMEOUT_SECONDS

logger = logging.getLogger("credentials")

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


class CredentialError(Exception):
    """No usable credential for the integration"""


async def refresh_google_access_token(
    refresh_token: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[str]:
    if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
        raise CredentialError("Google OAuth credentials not configured (GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET)")

    async with httpx.AsyncClient(timeout=PLATFORM_TIMEOUT_SECONDS, transport=transport) as client:
        resp = await client.post(GOOGLE_TOKEN_URL, data={
            "client_id": GOOGLE_CLIENT_ID,
            "client_secret": GOOGLE_CLIENT_SECRET,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })
    if resp.status_code != 200:
        raise CredentialError(f"Google token refresh failed ({resp.status_code})")
    return resp.json().get("access_token")


async def refresh_access_token(
    platform: str,
    credentials: Dict[str, Any],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    credentials = credentials or {}
    access_token = credentials.get("access_token")

    if platform == "google_sheets":
        refresh_token = credentials.get("refresh_token")
        if refresh_token:
            try:
                refreshed = await refresh_google_access_token(refresh_token, transport=transport)
                if refreshed:
                    return refreshed
            except (CredentialError, httpx.HTTPError) as e:
                logger.warning(f"[CREDENTIALS] Google refresh failed, using stored token: {e}")
        if not access_token:
            raise CredentialError("Google Sheets not connected (missing access_token/refresh_token)")
        return access_token

    if not access_token:
        raise CredentialError(f"Missing access_token for {platform}")
    return access_token
