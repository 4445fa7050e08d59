"""
inventory/classification.py -- Find-or-create for device classification groups.

Every item references one or more ClassificationGroups by CPE string. Groups
are created lazily the first time any integration mentions a CPE, so two
concurrent syncs may race to create the same one. The UNIQUE constraint on
device_groups.cpe arbitrates: the loser's insert fails with IntegrityError and
it re-reads the winner's row (insert-then-reread). A plain check-then-insert
would let both callers insert.

resolve() always runs on its own connection and commits before returning, so
callers must resolve before opening the item transaction that references the
group id.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError

from core.config import now_iso
from inventory import schema
from inventory.models import ClassificationGroup
from inventory.store import InventoryStore, row_to_group

logger = logging.getLogger("vulnwatch.classification")


class ClassificationResolver:
    def __init__(self, store: InventoryStore, max_workers: int = 1) -> None:
        self.store = store
        self.max_workers = max(1, max_workers)

    def resolve(self, cpe: str) -> ClassificationGroup:
        """Return the group for cpe, creating it with only the key set if absent."""
        existing = self._find(cpe)
        if existing is not None:
            return existing

        now = now_iso()
        try:
            with self.store.engine.begin() as conn:
                conn.execute(insert(schema.device_groups).values(cpe=cpe, created_at=now, updated_at=now))
        except IntegrityError:
            logger.debug("Lost device group insert race for %s; re-reading", cpe)
        else:
            logger.info("Created device group %s", cpe)

        group = self._find(cpe)
        if group is None:
            # Insert failed for a reason other than a duplicate key and left nothing behind.
            raise LookupError(f"Device group {cpe!r} could not be created")
        return group

    def resolve_all(self, cpes: list[str]) -> list[ClassificationGroup]:
        """Resolve each key independently, preserving input order.

        Duplicate keys are resolved twice and yield the same group twice.
        """
        if self.max_workers == 1 or len(cpes) < 2:
            return [self.resolve(cpe) for cpe in cpes]
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(pool.map(self.resolve, cpes))

    def _find(self, cpe: str) -> Optional[ClassificationGroup]:
        with self.store.engine.connect() as conn:
            row = conn.execute(select(schema.device_groups).where(schema.device_groups.c.cpe == cpe)).fetchone()
        return row_to_group(row) if row is not None else None
