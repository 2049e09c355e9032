"""
BharatCRM - Google Sheets

Polling only. Reads the header row, maps columns by header name, then reads
rows after config.cursor_last_row (row 1 is the header). The cursor is
advanced by the ingestion run, not here.

external_id = "gsheets:<spreadsheet_id>:<tab>:<row>"
"""

import logging
import re
from datetime import datetime
from typing import Optional, Dict, Any, List
from urllib.parse import quote

from models.lead import RawLeadData, SheetRowMetadata
from services.platforms.base import PlatformClient, PlatformError

logger = logging.getLogger("platforms.google_sheets")

SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"
DEFAULT_MAX_ROWS = 500

HEADER_FALLBACKS = {
    "phone": ["phone", "phone number", "mobile", "mobile number", "contact"],
    "name": ["name", "full name"],
    "email": ["email", "email id"],
    "company": ["company", "organization"],
    "source": ["source", "lead source"],
}

_SPREADSHEET_ID_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")


def extract_spreadsheet_id(sheet_url_or_id: Optional[str]) -> Optional[str]:
    value = (sheet_url_or_id or "").strip()
    if not value:
        return None
    if not value.startswith("http"):
        return value
    match = _SPREADSHEET_ID_RE.search(value)
    return match.group(1) if match else None


def pick_header_index(headers: List[str], desired: Optional[str], fallbacks: List[str]) -> int:
    normalized = [h.strip().lower() for h in headers]
    candidates = ([desired] if desired else []) + fallbacks
    for candidate in candidates:
        key = candidate.strip().lower()
        if key in normalized:
            return normalized.index(key)
    return -1


def _cell(row: List[Any], idx: int) -> str:
    if idx < 0 or idx >= len(row):
        return ""
    return str(row[idx] or "").strip()


class GoogleSheetsClient(PlatformClient):
    platform = "google_sheets"
    name = "Google Sheets"

    def values_url(self, spreadsheet_id: str, a1_range: str) -> str:
        return f"{SHEETS_API_URL}/{spreadsheet_id}/values/{quote(a1_range, safe='')}"

    async def fetch_leads(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
        since: Optional[datetime] = None,
    ) -> List[RawLeadData]:
        tab = config.get("sheet_tab_name")
        spreadsheet_id = extract_spreadsheet_id(config.get("sheet_url") or config.get("sheet_id"))
        if not spreadsheet_id or not tab:
            raise PlatformError("Missing sheet_url or sheet_tab_name in integration config")

        access_token = credentials.get("access_token")
        if not access_token:
            raise PlatformError("Missing Google access token")

        headers = {"Authorization": f"Bearer {access_token}"}
        mapping = config.get("column_mapping") or {}

        cursor_last_row = config.get("cursor_last_row")
        cursor_last_row = cursor_last_row if isinstance(cursor_last_row, int) else 1
        start_row = max(2, cursor_last_row + 1)
        max_rows = config.get("max_rows_per_sync") or DEFAULT_MAX_ROWS

        async with self.http_client() as client:
            header_data = await self.get_json(
                client, self.values_url(spreadsheet_id, f"'{tab}'!1:1"),
                params={"majorDimension": "ROWS"}, headers=headers,
            )
            header_row = [str(v) for v in ((header_data.get("values") or [[]])[0])]
            if not header_row:
                return []

            idx = {
                field: pick_header_index(header_row, mapping.get(field), fallbacks)
                for field, fallbacks in HEADER_FALLBACKS.items()
            }
            if idx["phone"] < 0:
                logger.warning(f"[GSHEETS] No phone column in '{tab}' of {spreadsheet_id}")
                return []

            end_row = start_row + max_rows - 1
            data = await self.get_json(
                client, self.values_url(spreadsheet_id, f"'{tab}'!A{start_row}:ZZ{end_row}"),
                params={"majorDimension": "ROWS"}, headers=headers,
            )

        leads = []
        for offset, row in enumerate(data.get("values") or []):
            row_number = start_row + offset
            phone = "".join(ch for ch in _cell(row, idx["phone"]) if ch.isdigit())
            if not phone:
                continue

            source = _cell(row, idx["source"])
            leads.append(RawLeadData(
                external_id=f"gsheets:{spreadsheet_id}:{tab}:{row_number}",
                name=_cell(row, idx["name"]) or "Unknown",
                phone=phone,
                email=_cell(row, idx["email"]) or None,
                company=_cell(row, idx["company"]) or None,
                metadata=SheetRowMetadata(
                    sheet_id=spreadsheet_id,
                    gsheets_row=row_number,
                    source=source or None,
                    extra={"tab": tab},
                ),
            ))

        logger.info(f"[GSHEETS] {spreadsheet_id} '{tab}' rows from {start_row}: {len(leads)} leads")
        return leads
