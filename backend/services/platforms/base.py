"""
BharatCRM - Platform client base

Every lead source implements the same three operations:
  - fetch_leads(credentials, config, since)   polling
  - extract_lead_from_webhook(payload)        push
  - verify_webhook_signature(body, sig, key)  push authentication

Adapters return RawLeadData only; wire formats never leave this package.
HTTP goes through httpx with a hard timeout. Timeouts, transport errors and
non-2xx answers surface as PlatformError (integration-level failure).
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Dict, Any, List

import httpx

from config import PLATFORM_TIMEOUT_SECONDS
from models.lead import RawLeadData

logger = logging.getLogger("platforms")


class PlatformError(Exception):
    """Platform API unreachable, timed out or rejected the request"""


class PlatformClient(ABC):
    platform: str = ""
    name: str = ""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = None):
        self.transport = transport
        self.timeout = timeout if timeout is not None else PLATFORM_TIMEOUT_SECONDS

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def get_json(self, client: httpx.AsyncClient, url: str, params: Dict[str, Any] = None,
                       headers: Dict[str, str] = None) -> Dict[str, Any]:
        try:
            resp = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(f"[{self.platform.upper()}] timeout after {self.timeout}s")
            raise PlatformError(f"{self.name} API timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.warning(f"[{self.platform.upper()}] transport error: {e}")
            raise PlatformError(f"{self.name} API unreachable: {e}") from e

        if resp.status_code >= 400:
            try:
                message = resp.json().get("error", {}).get("message") or resp.text
            except ValueError:
                message = resp.text
            raise PlatformError(f"{self.name} API error {resp.status_code}: {message}")

        return resp.json()

    @abstractmethod
    async def fetch_leads(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
        since: Optional[datetime] = None,
    ) -> List[RawLeadData]:
        ...

    def extract_lead_from_webhook(self, payload: Any) -> Optional[RawLeadData]:
        """Push not supported unless overridden"""
        return None

    def extract_leads_from_webhook(self, payload: Any) -> List[RawLeadData]:
        lead = self.extract_lead_from_webhook(payload)
        return [lead] if lead else []

    def verify_webhook_signature(self, body: bytes, signature: str, secret: str) -> bool:
        return False
