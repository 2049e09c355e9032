"""
BharatCRM - Sync state tests (run lock, polling cadence, lookback window)
"""

import asyncio
from datetime import datetime, timezone, timedelta

import pytest

from services.sync_state import (
    try_begin_sync,
    finish_sync,
    fail_sync,
    is_eligible_for_poll,
    is_lock_stale,
    list_pollable_integrations,
    poll_interval_seconds,
    is_due,
    resolve_since,
)
from tests.helpers import add_integration

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestRunLock:

    @pytest.mark.asyncio
    async def test_single_winner_under_concurrency(self, mock_db):
        integration = await add_integration(mock_db)
        results = await asyncio.gather(*(try_begin_sync(integration["id"]) for _ in range(5)))
        winners = [r for r in results if r]
        assert len(winners) == 1
        assert winners[0]["sync_status"] == "syncing"

    @pytest.mark.asyncio
    async def test_finish_releases_lock(self, mock_db):
        integration = await add_integration(mock_db)
        assert await try_begin_sync(integration["id"])
        await finish_sync(integration["id"], watermark=NOW.isoformat(), config_updates={"cursor_last_row": 9})

        doc = await mock_db.integrations.find_one({"id": integration["id"]})
        assert doc["sync_status"] == "idle"
        assert doc["last_sync_at"] == NOW.isoformat()
        assert doc["config"]["cursor_last_row"] == 9
        assert doc["config"]["selected_forms"] == ["form-1"]
        assert await try_begin_sync(integration["id"])

    @pytest.mark.asyncio
    async def test_finish_with_errors_marks_error(self, mock_db):
        integration = await add_integration(mock_db)
        await try_begin_sync(integration["id"])
        await finish_sync(integration["id"], watermark=NOW.isoformat(), error_message="Lead x: Phone is required")
        doc = await mock_db.integrations.find_one({"id": integration["id"]})
        assert doc["sync_status"] == "error"
        assert doc["error_message"] == "Lead x: Phone is required"

    @pytest.mark.asyncio
    async def test_fail_keeps_watermark(self, mock_db):
        integration = await add_integration(mock_db, last_sync_at="2026-02-01T00:00:00+00:00")
        await try_begin_sync(integration["id"])
        await fail_sync(integration["id"], "Facebook API timeout")
        doc = await mock_db.integrations.find_one({"id": integration["id"]})
        assert doc["sync_status"] == "error"
        assert doc["last_sync_at"] == "2026-02-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_acquired_document_is_clean(self, mock_db):
        integration = await add_integration(mock_db)
        locked = await try_begin_sync(integration["id"])
        assert "_id" not in locked
        assert locked["id"] == integration["id"]
        assert locked["sync_started_at"]

    @pytest.mark.asyncio
    async def test_crashed_run_lock_taken_over(self, mock_db):
        crashed_at = (datetime.now(timezone.utc) - timedelta(hours=2)).isoformat()
        integration = await add_integration(mock_db, sync_status="syncing", sync_started_at=crashed_at)

        locked = await try_begin_sync(integration["id"])
        assert locked
        assert locked["sync_started_at"] > crashed_at

    @pytest.mark.asyncio
    async def test_live_run_lock_respected(self, mock_db):
        started_at = (datetime.now(timezone.utc) - timedelta(seconds=30)).isoformat()
        integration = await add_integration(mock_db, sync_status="syncing", sync_started_at=started_at)
        assert await try_begin_sync(integration["id"]) is None


class TestPolling:

    @pytest.mark.asyncio
    async def test_pollable_selection(self, mock_db):
        idle = await add_integration(mock_db)
        errored = await add_integration(mock_db, sync_status="error")
        await add_integration(mock_db, sync_status="syncing")
        await add_integration(mock_db, is_active=False)

        ids = {i["id"] for i in await list_pollable_integrations()}
        assert ids == {idle["id"], errored["id"]}

    @pytest.mark.asyncio
    async def test_crashed_run_is_pollable_again(self, mock_db):
        crashed_at = (datetime.now(timezone.utc) - timedelta(hours=2)).isoformat()
        live_at = datetime.now(timezone.utc).isoformat()
        crashed = await add_integration(mock_db, sync_status="syncing", sync_started_at=crashed_at)
        await add_integration(mock_db, sync_status="syncing", sync_started_at=live_at)

        ids = {i["id"] for i in await list_pollable_integrations()}
        assert ids == {crashed["id"]}

    def test_stale_lock(self):
        stale = {"is_active": True, "sync_status": "syncing", "sync_started_at": (NOW - timedelta(hours=1)).isoformat()}
        live = {"is_active": True, "sync_status": "syncing", "sync_started_at": (NOW - timedelta(minutes=1)).isoformat()}
        assert is_lock_stale(stale, NOW)
        assert not is_lock_stale(live, NOW)
        assert not is_lock_stale({"sync_status": "syncing", "sync_started_at": "garbage"}, NOW)
        assert is_eligible_for_poll(stale, NOW)
        assert not is_eligible_for_poll(live, NOW)

    def test_eligibility(self):
        assert is_eligible_for_poll({"is_active": True, "sync_status": "error"})
        assert not is_eligible_for_poll({"is_active": True, "sync_status": "syncing"})
        assert not is_eligible_for_poll({"is_active": False, "sync_status": "idle"})

    def test_interval_clamped(self):
        assert poll_interval_seconds({}) == 180
        assert poll_interval_seconds({"config": {"poll_interval_seconds": 5}}) == 30
        assert poll_interval_seconds({"config": {"poll_interval_seconds": 99999}}) == 3600
        assert poll_interval_seconds({"config": {"poll_interval_seconds": "abc"}}) == 180

    def test_due(self):
        recent = {"last_sync_at": (NOW - timedelta(seconds=60)).isoformat()}
        old = {"last_sync_at": (NOW - timedelta(seconds=200)).isoformat()}
        assert not is_due(recent, NOW)
        assert is_due(old, NOW)
        assert is_due({"last_sync_at": None}, NOW)


class TestLookback:

    def test_explicit_since_wins(self):
        integration = {"last_sync_at": "2026-02-01T00:00:00+00:00"}
        since = resolve_since(integration, since_iso="2026-01-01T00:00:00Z", backfill_days=3, now=NOW)
        assert since == "2026-01-01T00:00:00+00:00"

    def test_backfill_days(self):
        since = resolve_since({"last_sync_at": "2026-02-01T00:00:00+00:00"}, backfill_days=3, now=NOW)
        assert since == (NOW - timedelta(days=3)).isoformat()

    def test_watermark(self):
        assert resolve_since({"last_sync_at": "2026-02-01T00:00:00+00:00"}, now=NOW) == "2026-02-01T00:00:00+00:00"

    def test_default_24h(self):
        assert resolve_since({}, now=NOW) == (NOW - timedelta(hours=24)).isoformat()
