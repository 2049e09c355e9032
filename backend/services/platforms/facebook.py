"""
BharatCRM - Facebook Lead Ads

Polling:  GET https://graph.facebook.com/{version}/{form_id}/leads (paged)
Push:     leadgen webhook, signed with X-Hub-Signature-256 (HMAC-SHA256, app secret)
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from config import FACEBOOK_GRAPH_VERSION
from models.lead import RawLeadData, MetaLeadMetadata
from services.platforms.base import PlatformClient, PlatformError

logger = logging.getLogger("platforms.facebook")

GRAPH_URL = "https://graph.facebook.com"
MAX_PAGES = 50
SIGNATURE_PREFIX = "sha256="


def flatten_field_data(field_data: Optional[List[Dict[str, Any]]]) -> Dict[str, str]:
    """[{name, values: [..]}] -> {name: first value}; malformed items are dropped"""
    fields = {}
    if not isinstance(field_data, list):
        return fields
    for field in field_data:
        if not isinstance(field, dict):
            continue
        name = field.get("name")
        values = field.get("values")
        if name and isinstance(values, list) and values and values[0] is not None:
            fields[str(name)] = str(values[0])
    return fields


def _id(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def _digits(phone: Optional[str]) -> Optional[str]:
    if not phone:
        return None
    digits = "".join(ch for ch in str(phone) if ch.isdigit())
    return digits or None


def _email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    email = email.strip().lower()
    if "@" not in email or "." not in email.split("@")[-1]:
        return None
    return email


def _common_fields(fields: Dict[str, str]) -> Dict[str, Optional[str]]:
    name = fields.get("full_name") or fields.get("first_name") or fields.get("name") or ""
    return {
        "name": name.strip() or "Unknown",
        "phone": _digits(fields.get("phone_number") or fields.get("phone")),
        "email": _email(fields.get("email")),
        "company": fields.get("company_name") or fields.get("company") or None,
    }


class FacebookClient(PlatformClient):
    platform = "facebook"
    name = "Facebook Lead Ads"

    def graph_url(self, path: str) -> str:
        return f"{GRAPH_URL}/{FACEBOOK_GRAPH_VERSION}/{path}"

    # ==================== WEBHOOK ====================

    def verify_webhook_signature(self, body: bytes, signature: str, secret: str) -> bool:
        if not signature or not secret:
            return False
        if isinstance(body, str):
            body = body.encode("utf-8")
        expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        received = signature[len(SIGNATURE_PREFIX):] if signature.startswith(SIGNATURE_PREFIX) else signature
        return hmac.compare_digest(expected, received)

    def _lead_from_change(self, value: Dict[str, Any]) -> Optional[RawLeadData]:
        """None for anything that is not a well-formed leadgen change"""
        if not isinstance(value, dict) or not value.get("leadgen_id"):
            return None

        fields = flatten_field_data(value.get("field_data"))
        created_time = value.get("created_time")
        created_at = None
        if created_time:
            try:
                created_at = datetime.fromtimestamp(int(created_time), tz=timezone.utc).isoformat()
            except (TypeError, ValueError, OverflowError, OSError):
                logger.warning(f"[FACEBOOK] leadgen {value.get('leadgen_id')} bad created_time {created_time!r}, skipped")
                return None

        return RawLeadData(
            external_id=str(value["leadgen_id"]),
            created_at=created_at,
            metadata=MetaLeadMetadata(
                form_id=_id(value.get("form_id")),
                page_id=_id(value.get("page_id")),
                campaign_id=_id(value.get("adgroup_id")),
                ad_set_id=_id(value.get("adgroup_id")),
                ad_id=_id(value.get("ad_id")),
                extra={"field_data": fields, "created_time": created_time},
            ),
            **_common_fields(fields),
        )

    def extract_leads_from_webhook(self, payload: Any) -> List[RawLeadData]:
        """Every leadgen change in the delivery (Meta batches them)"""
        leads = []
        if not isinstance(payload, dict):
            return leads
        entries = payload.get("entry")
        for entry in entries if isinstance(entries, list) else []:
            changes = entry.get("changes") if isinstance(entry, dict) else None
            for change in changes if isinstance(changes, list) else []:
                if not isinstance(change, dict):
                    continue
                lead = self._lead_from_change(change.get("value"))
                if lead:
                    leads.append(lead)
        return leads

    def extract_lead_from_webhook(self, payload: Any) -> Optional[RawLeadData]:
        leads = self.extract_leads_from_webhook(payload)
        return leads[0] if leads else None

    # ==================== POLLING ====================

    @staticmethod
    def form_ids(config: Dict[str, Any]) -> List[str]:
        forms = config.get("selected_forms") or []
        if not forms and config.get("form_id"):
            forms = [config["form_id"]]
        return [str(f) for f in forms if f]

    def _lead_from_api(self, item: Dict[str, Any], form_id: str) -> RawLeadData:
        fields = flatten_field_data(item.get("field_data"))
        return RawLeadData(
            external_id=str(item["id"]),
            created_at=item.get("created_time"),
            metadata=MetaLeadMetadata(
                form_id=form_id,
                campaign_id=item.get("campaign_id") or item.get("adset_id"),
                campaign_name=item.get("campaign_name") or item.get("adset_name"),
                ad_set_id=item.get("adset_id"),
                ad_id=item.get("ad_id"),
                ad_name=item.get("ad_name"),
                extra={"field_data": fields},
            ),
            **_common_fields(fields),
        )

    async def fetch_leads(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
        since: Optional[datetime] = None,
    ) -> List[RawLeadData]:
        access_token = credentials.get("access_token")
        forms = self.form_ids(config)
        if not access_token or not forms:
            raise PlatformError("Missing access_token or form_id in credentials/config")

        leads = []
        async with self.http_client() as client:
            for form_id in forms:
                url = self.graph_url(f"{form_id}/leads")
                params = {"access_token": access_token}
                if since:
                    params["since"] = int(since.timestamp())

                pages = 0
                while url and pages < MAX_PAGES:
                    data = await self.get_json(client, url, params=params)
                    for item in data.get("data") or []:
                        if item.get("id"):
                            leads.append(self._lead_from_api(item, form_id))
                    # paging.next already carries every query parameter
                    url = (data.get("paging") or {}).get("next")
                    params = None
                    pages += 1

                logger.info(f"[FACEBOOK] form={form_id} pages={pages} leads={len(leads)}")

        return leads
