"""
sync/scheduler.py -- Decide which integrations are due and run one sync pass.

An integration is due when it has never been synced or when at least
sync_every seconds have passed since its newest sync record. One pass:

  for each due integration:
    fetch raw items (fetcher)  -> FetchError      -> Error outcome recorded
    parse_batch()              -> BatchValidation -> Error outcome recorded
    Reconciler.reconcile()     -> records its own outcome

The scheduler never retries. A failed integration stays due (its newest
record is the failure, stamped now) and is tried again after sync_every.

Generic integrations are push-only: the partner posts to
/{kind}/integration-upload itself, so run_due() skips them.

Triggers: `python main.py sync` (cron), POST /api/v1/integrations/sync-due,
or the optional in-process loop started by api/main.py.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from core.config import parse_iso, to_iso
from inventory.models import SYNC_ERROR, Integration
from inventory.store import InventoryStore
from sync.bookkeeping import SyncBookkeeper
from sync.fetcher import FetchError, fetch_partner_batch
from sync.inbound import BatchValidationError, parse_batch
from sync.reconciler import ReconcileResult, Reconciler

logger = logging.getLogger("vulnwatch.sync")

Fetcher = Callable[..., list[Any]]


@dataclass
class ScheduledRun:
    """What happened to one integration during a scheduler pass."""

    integration_id: int
    name: str
    result: Optional[ReconcileResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None and not self.result.should_retry


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncScheduler:
    def __init__(
        self,
        store: InventoryStore,
        reconciler: Reconciler,
        bookkeeper: SyncBookkeeper,
        fetcher: Fetcher = fetch_partner_batch,
        clock: Callable[[], datetime] = _utcnow,
        page_size: int = 500,
        timeout: float = 30.0,
        max_pages: int = 20,
    ) -> None:
        self.store = store
        self.reconciler = reconciler
        self.bookkeeper = bookkeeper
        self.fetcher = fetcher
        self.clock = clock
        self.page_size = page_size
        self.timeout = timeout
        self.max_pages = max_pages

    def due_integrations(self, now: Optional[datetime] = None) -> list[Integration]:
        """Return integrations whose sync interval has elapsed, oldest first."""
        now = now or self.clock()
        last_synced = self.bookkeeper.last_synced_map()
        due = []
        for integration in self.store.list_integrations().items:
            last = last_synced.get(integration.id)
            if last is None or now >= parse_iso(last) + timedelta(seconds=integration.sync_every):
                due.append(integration)
        due.sort(key=lambda i: i.id)
        return due

    def run_due(self, now: Optional[datetime] = None, force: bool = False) -> list[ScheduledRun]:
        """Sync every due integration once. force=True ignores sync_every."""
        now = now or self.clock()
        if force:
            candidates = sorted(self.store.list_integrations().items, key=lambda i: i.id)
        else:
            candidates = self.due_integrations(now)
        last_synced = self.bookkeeper.last_synced_map()

        runs = []
        for integration in candidates:
            if integration.is_generic:
                logger.debug("Skipping push-only integration %d", integration.id)
                continue
            runs.append(self._run_one(integration, last_synced.get(integration.id), now))
        logger.info("Scheduler pass: %d integration(s) synced", len(runs))
        return runs

    def _run_one(self, integration: Integration, last_sync: Optional[str], now: datetime) -> ScheduledRun:
        run = ScheduledRun(integration_id=integration.id, name=integration.name)
        try:
            raw = self.fetcher(
                integration,
                page_size=self.page_size,
                timeout=self.timeout,
                max_pages=self.max_pages,
                last_sync=last_sync,
            )
            batch = parse_batch(integration.resource_type, raw)
        except (FetchError, BatchValidationError) as exc:
            run.error = str(exc)
            logger.warning("Integration %d (%s) sync failed: %s", integration.id, integration.name, exc)
            self.bookkeeper.record_outcome(integration.id, SYNC_ERROR, error_message=run.error, synced_at=to_iso(now))
            return run
        run.result = self.reconciler.reconcile(integration.id, batch)
        return run
