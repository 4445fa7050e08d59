"""
sync/bookkeeping.py -- Per-integration sync outcome history.

Each reconcile call ends with one record_outcome(). Only the newest `keep`
records per integration are retained; older ones are pruned in the same
transaction as the insert, so the table never grows beyond
keep x number-of-integrations rows.

Bookkeeping is best-effort. A failure here must not turn a successful batch
into an error response, so record_outcome() logs and swallows database
errors instead of raising.
"""

import logging
from typing import Optional

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError

from core.config import now_iso
from inventory import schema
from inventory.models import SYNC_ERROR, SYNC_SUCCESS, SyncRecord
from inventory.store import InventoryStore

logger = logging.getLogger("vulnwatch.sync")


class SyncBookkeeper:
    def __init__(self, store: InventoryStore, keep: int = 5) -> None:
        if keep < 1:
            raise ValueError("keep must be >= 1")
        self.store = store
        self.keep = keep

    def record_outcome(
        self,
        integration_id: int,
        status: str,
        error_message: Optional[str] = None,
        synced_at: Optional[str] = None,
    ) -> None:
        """Store one outcome and prune all but the newest `keep` for the integration."""
        if status not in (SYNC_SUCCESS, SYNC_ERROR):
            raise ValueError(f"Unknown sync status: {status!r}")
        t = schema.sync_records
        try:
            with self.store.engine.begin() as conn:
                conn.execute(
                    insert(t).values(
                        integration_id=integration_id,
                        status=status,
                        error_message=error_message,
                        synced_at=synced_at or now_iso(),
                    )
                )
                survivors = (
                    select(t.c.id)
                    .where(t.c.integration_id == integration_id)
                    .order_by(t.c.synced_at.desc(), t.c.id.desc())
                    .limit(self.keep)
                )
                keep_ids = conn.execute(survivors).scalars().all()
                conn.execute(delete(t).where((t.c.integration_id == integration_id) & t.c.id.not_in(keep_ids)))
        except SQLAlchemyError:
            logger.exception("Could not record %s sync outcome for integration %d", status, integration_id)

    def history(self, integration_id: int) -> list[SyncRecord]:
        """Retained outcomes, newest first."""
        t = schema.sync_records
        with self.store.engine.connect() as conn:
            rows = conn.execute(
                select(t).where(t.c.integration_id == integration_id).order_by(t.c.synced_at.desc(), t.c.id.desc())
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def latest(self, integration_id: int) -> Optional[SyncRecord]:
        records = self.history(integration_id)
        return records[0] if records else None

    def last_synced_map(self) -> dict[int, str]:
        """Return {integration_id: newest synced_at} over every integration with history."""
        t = schema.sync_records
        with self.store.engine.connect() as conn:
            rows = conn.execute(
                select(t.c.integration_id, func.max(t.c.synced_at).label("last")).group_by(t.c.integration_id)
            ).fetchall()
        return {row.integration_id: row.last for row in rows}


def _row_to_record(row) -> SyncRecord:
    return SyncRecord(
        id=row.id,
        integration_id=row.integration_id,
        status=row.status,
        error_message=row.error_message,
        synced_at=row.synced_at,
    )
