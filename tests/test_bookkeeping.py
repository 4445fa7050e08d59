"""Unit tests for sync/bookkeeping.py -- per-integration sync history.

Covers:
- Only the newest `keep` outcomes survive per integration
- Pruning one integration never touches another's history
- latest() / last_synced_map() report the newest record
- Unknown statuses and keep < 1 are rejected
- Database errors are logged and swallowed
"""

from __future__ import annotations

import logging

import pytest
from sqlalchemy.exc import OperationalError

from inventory.models import SYNC_ERROR, SYNC_SUCCESS
from inventory.store import InventoryStore
from sync.bookkeeping import SyncBookkeeper


def _stamp(minute: int) -> str:
    return f"2026-03-01T10:{minute:02d}:00.000000+00:00"


class TestRetention:
    def test_keeps_newest_five_of_seven(self, store: InventoryStore) -> None:
        keeper = SyncBookkeeper(store, keep=5)
        for minute in range(7):
            keeper.record_outcome(1, SYNC_SUCCESS, synced_at=_stamp(minute))
        history = keeper.history(1)
        assert len(history) == 5, f"Expected 5 retained records, got {len(history)}"
        assert [r.synced_at for r in history] == [_stamp(m) for m in (6, 5, 4, 3, 2)]

    def test_pruning_is_per_integration(self, store: InventoryStore) -> None:
        keeper = SyncBookkeeper(store, keep=2)
        keeper.record_outcome(2, SYNC_SUCCESS, synced_at=_stamp(0))
        for minute in range(4):
            keeper.record_outcome(1, SYNC_SUCCESS, synced_at=_stamp(minute))
        assert len(keeper.history(1)) == 2
        assert len(keeper.history(2)) == 1, "Integration 2's history must be untouched"

    def test_error_message_is_stored(self, store: InventoryStore) -> None:
        keeper = SyncBookkeeper(store)
        keeper.record_outcome(1, SYNC_ERROR, error_message="UNIQUE constraint failed", synced_at=_stamp(1))
        latest = keeper.latest(1)
        assert latest.status == SYNC_ERROR
        assert latest.error_message == "UNIQUE constraint failed"


class TestQueries:
    def test_latest_none_without_history(self, store: InventoryStore) -> None:
        assert SyncBookkeeper(store).latest(9) is None

    def test_last_synced_map(self, store: InventoryStore) -> None:
        keeper = SyncBookkeeper(store)
        keeper.record_outcome(1, SYNC_SUCCESS, synced_at=_stamp(3))
        keeper.record_outcome(1, SYNC_ERROR, error_message="boom", synced_at=_stamp(8))
        keeper.record_outcome(2, SYNC_SUCCESS, synced_at=_stamp(5))
        assert keeper.last_synced_map() == {1: _stamp(8), 2: _stamp(5)}

    def test_default_stamp_is_now(self, store: InventoryStore) -> None:
        keeper = SyncBookkeeper(store)
        keeper.record_outcome(1, SYNC_SUCCESS)
        assert keeper.latest(1).synced_at.startswith("20")


class TestValidation:
    def test_rejects_unknown_status(self, store: InventoryStore) -> None:
        with pytest.raises(ValueError, match="Unknown sync status"):
            SyncBookkeeper(store).record_outcome(1, "Pending")

    def test_rejects_keep_below_one(self, store: InventoryStore) -> None:
        with pytest.raises(ValueError):
            SyncBookkeeper(store, keep=0)

    def test_database_error_is_swallowed(
        self, store: InventoryStore, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A bookkeeping failure must never fail the sync that produced it."""

        def broken_begin():
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(store.engine, "begin", broken_begin)
        with caplog.at_level(logging.ERROR, logger="vulnwatch.sync"):
            SyncBookkeeper(store).record_outcome(1, SYNC_SUCCESS)
        assert "Could not record" in caplog.text
