"""Unit tests for inventory/classification.py -- device group find-or-create.

Covers:
- resolve() creates a group with only the CPE set, then returns the same row
- A lost insert race (IntegrityError) re-reads the winner's row
- resolve_all() keeps input order, including duplicates
- resolve_all() fans out over a thread pool when max_workers > 1
"""

from __future__ import annotations

import threading

import pytest
from sqlalchemy import func, insert, select

from core.config import now_iso
from inventory import schema
from inventory.classification import ClassificationResolver
from inventory.models import ClassificationGroup
from inventory.store import InventoryStore

PUMP = "cpe:2.3:h:acme:infusion_pump:2.1"
MONITOR = "cpe:2.3:h:acme:patient_monitor:4.0"


def _group_count(store: InventoryStore) -> int:
    with store.engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(schema.device_groups)).scalar()


class TestResolve:
    def test_creates_group_with_only_cpe(self, store: InventoryStore) -> None:
        group = ClassificationResolver(store).resolve(PUMP)
        assert group.id is not None
        assert group.cpe == PUMP
        assert group.manufacturer is None, "Descriptive fields are filled in later by a person"
        assert group.model_name is None

    def test_second_resolve_returns_same_group(self, store: InventoryStore) -> None:
        resolver = ClassificationResolver(store)
        first = resolver.resolve(PUMP)
        second = resolver.resolve(PUMP)
        assert first.id == second.id
        assert _group_count(store) == 1

    def test_lost_race_rereads_winner(self, store: InventoryStore, monkeypatch: pytest.MonkeyPatch) -> None:
        """Another writer inserts between our lookup and our insert; we must return its row."""
        resolver = ClassificationResolver(store)
        real_find = resolver._find
        calls = {"n": 0}

        def find_after_competitor(cpe: str):
            calls["n"] += 1
            if calls["n"] == 1:
                now = now_iso()
                with store.engine.begin() as conn:
                    conn.execute(insert(schema.device_groups).values(cpe=cpe, created_at=now, updated_at=now))
                return None
            return real_find(cpe)

        monkeypatch.setattr(resolver, "_find", find_after_competitor)
        group = resolver.resolve(PUMP)
        assert group.cpe == PUMP
        assert _group_count(store) == 1, "The losing insert must not leave a second row"


class TestResolveAll:
    def test_preserves_order_and_duplicates(self, store: InventoryStore) -> None:
        groups = ClassificationResolver(store).resolve_all([MONITOR, PUMP, MONITOR])
        assert [g.cpe for g in groups] == [MONITOR, PUMP, MONITOR]
        assert groups[0].id == groups[2].id
        assert _group_count(store) == 2

    def test_empty_input(self, store: InventoryStore) -> None:
        assert ClassificationResolver(store).resolve_all([]) == []

    def test_parallel_resolution_uses_worker_threads(
        self, store: InventoryStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        resolver = ClassificationResolver(store, max_workers=4)
        seen_threads: set[int] = set()

        def fake_resolve(cpe: str) -> ClassificationGroup:
            seen_threads.add(threading.get_ident())
            return ClassificationGroup(cpe=cpe, id=len(cpe))

        monkeypatch.setattr(resolver, "resolve", fake_resolve)
        groups = resolver.resolve_all([PUMP, MONITOR, PUMP])
        assert [g.cpe for g in groups] == [PUMP, MONITOR, PUMP]
        assert threading.get_ident() not in seen_threads, "Keys should be resolved off the calling thread"

    def test_max_workers_floor_is_one(self, store: InventoryStore) -> None:
        assert ClassificationResolver(store, max_workers=0).max_workers == 1
