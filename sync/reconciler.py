"""
sync/reconciler.py -- Idempotent reconciliation of partner batches into the inventory.

Given a batch of validated items from one integration, decide per item whether
it is new or already known, then create or update it together with its
classification groups, its external mapping and (for remediations and device
artifacts) its artifact versions.

Matching order for one item:
  1. Mapping   -- (integration, vendorId) already mapped: update that item.
  2. Identity  -- any non-empty identifying attribute (hostname, MAC, serial
                  number, CVE id) equals an item this integration has not
                  mapped yet: adopt it (insert mapping, update).
  3. Create    -- item, mapping and artifact wrappers in one transaction.
                  If the insert loses a UNIQUE race on an identifying
                  attribute, re-read the winner and adopt it instead.

Replaying the same batch is therefore a no-op apart from last_synced and
updated_at: every vendorId hits step 1 the second time.

Failure policy: items are processed sequentially, each in its own
transaction. The first failing item stops the batch, whether the database
refused it or it names a vulnerability that does not exist. Items already
committed stay committed and the caller gets should_retry=True. Replaying
the whole batch is safe because of the idempotence above.

Known gap: an item with no identifying attribute always creates a new item
when it is not yet mapped. Two integrations reporting the same
serial-less device therefore produce two assets.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.config import to_iso
from inventory.classification import ClassificationResolver
from inventory.errors import InvalidInputError, LockTimeoutError, NotFoundError
from inventory.kinds import ResourceKind, get_kind
from inventory.models import SYNC_ERROR, SYNC_SUCCESS, ExternalMapping, Integration
from inventory.store import InventoryStore
from inventory.versions import VersionChain
from sync.bookkeeping import SyncBookkeeper
from sync.inbound import InboundItem

logger = logging.getLogger("vulnwatch.sync")

_CREATED = "created"
_UPDATED = "updated"


@dataclass
class ReconcileResult:
    message: str = "success"
    created_items_count: int = 0
    updated_items_count: int = 0
    should_retry: bool = False
    synced_at: str = ""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    def __init__(
        self,
        store: InventoryStore,
        resolver: ClassificationResolver,
        versions: VersionChain,
        bookkeeper: SyncBookkeeper,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.versions = versions
        self.bookkeeper = bookkeeper
        self.clock = clock

    def reconcile(self, integration_id: int, batch: list[InboundItem]) -> ReconcileResult:
        """Apply one batch for integration_id and record its outcome.

        Raises NotFoundError for an unknown integration and ValueError when
        the batch holds records of a different kind than the integration
        feeds. Neither case touches the database or the sync history.
        Database errors during the batch never raise; they are reported in
        the result.
        """
        integration = self.store.get_integration(integration_id)
        if integration is None:
            raise NotFoundError("Integration", integration_id)
        kind = get_kind(integration.resource_type)
        for item in batch:
            if not isinstance(item.record, kind.record_type):
                raise InvalidInputError(
                    f"Integration {integration_id} feeds {kind.resource_type} items, "
                    f"got {type(item.record).__name__}"
                )

        synced_at = to_iso(self.clock())
        result = ReconcileResult(synced_at=synced_at)
        owner_id = integration.integration_user_id or integration.user_id

        for position, item in enumerate(batch):
            try:
                outcome = self._apply(integration, kind, item, owner_id, synced_at)
            except (SQLAlchemyError, NotFoundError, LockTimeoutError) as exc:
                result.message = str(getattr(exc, "orig", None) or exc)
                result.should_retry = True
                logger.warning(
                    "Sync of integration %d stopped at item %d/%d (vendorId=%s): %s",
                    integration_id,
                    position + 1,
                    len(batch),
                    item.vendor_id,
                    result.message,
                )
                break
            if outcome == _CREATED:
                result.created_items_count += 1
            else:
                result.updated_items_count += 1

        self.bookkeeper.record_outcome(
            integration_id,
            SYNC_ERROR if result.should_retry else SYNC_SUCCESS,
            error_message=result.message if result.should_retry else None,
            synced_at=synced_at,
        )
        logger.info(
            "Integration %d %s sync: %d created, %d updated",
            integration_id,
            kind.resource_type,
            result.created_items_count,
            result.updated_items_count,
        )
        return result

    # ------------------------------------------------------------------
    # Per-item steps
    # ------------------------------------------------------------------

    def _apply(
        self,
        integration: Integration,
        kind: ResourceKind,
        item: InboundItem,
        owner_id: int,
        synced_at: str,
    ) -> str:
        # A remediation may only point at a vulnerability that exists.
        self.store.require_references(kind, item.record)
        mapping = self.store.find_mapping(integration.id, item.vendor_id)
        if mapping is not None:
            group_ids = self._resolve_groups(kind, item)
            with self.store.transaction() as conn:
                self.store.touch_mapping(conn, mapping.id, synced_at)
                self._update(conn, kind, mapping.item_id, item, group_ids, owner_id)
            return _UPDATED

        conditions = kind.identity_conditions(item.record)
        match_id = self.store.find_identity_match(kind, integration.id, conditions)
        group_ids = self._resolve_groups(kind, item)
        if match_id is not None:
            self._adopt(integration, kind, item, match_id, group_ids, owner_id, synced_at)
            return _UPDATED

        try:
            with self.store.transaction() as conn:
                item_id = self.store.create_item(kind, item.record, group_ids, owner_id, conn=conn)
                self.store.insert_mapping(conn, self._mapping(integration, kind, item, item_id, synced_at))
                if kind.artifact_fk and item.artifacts:
                    self.versions.create_wrappers_for_item(
                        item_id, kind.artifact_fk, item.artifacts, owner_id, conn=conn
                    )
        except IntegrityError:
            if not conditions:
                raise
            # A concurrent writer took the identifying attribute first.
            match_id = self.store.find_identity_match(kind, integration.id, conditions, include_mapped=True)
            if match_id is None:
                raise
            logger.info("vendorId %s lost create race; linking to %s %d", item.vendor_id, kind.resource_type, match_id)
            self._adopt(integration, kind, item, match_id, group_ids, owner_id, synced_at)
            return _UPDATED
        return _CREATED

    def _adopt(
        self,
        integration: Integration,
        kind: ResourceKind,
        item: InboundItem,
        item_id: int,
        group_ids: list[int],
        owner_id: int,
        synced_at: str,
    ) -> None:
        with self.store.transaction() as conn:
            self.store.insert_mapping(conn, self._mapping(integration, kind, item, item_id, synced_at))
            self._update(conn, kind, item_id, item, group_ids, owner_id)

    def _update(self, conn, kind: ResourceKind, item_id: int, item: InboundItem, group_ids, owner_id: int) -> None:
        if not self.store.update_item(kind, item_id, item.record, group_ids, conn=conn):
            raise NotFoundError(kind.resource_type, item_id)
        if kind.artifact_fk:
            self.versions.attach_versions(conn, item_id, kind.artifact_fk, item.artifacts, owner_id)

    def _resolve_groups(self, kind: ResourceKind, item: InboundItem) -> list[int]:
        return [g.id for g in self.resolver.resolve_all(kind.classification_keys(item.record))]

    @staticmethod
    def _mapping(
        integration: Integration,
        kind: ResourceKind,
        item: InboundItem,
        item_id: int,
        synced_at: str,
    ) -> ExternalMapping:
        return ExternalMapping(
            integration_id=integration.id,
            resource_type=kind.resource_type,
            external_id=item.vendor_id,
            item_id=item_id,
            last_synced=synced_at,
        )


def build_reconciler(store: InventoryStore, history_limit: int = 5, resolver_workers: int = 1) -> Reconciler:
    """Wire the default component graph around one store."""
    return Reconciler(
        store,
        ClassificationResolver(store, max_workers=resolver_workers),
        VersionChain(store),
        SyncBookkeeper(store, keep=history_limit),
    )
