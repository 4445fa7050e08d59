"""
inventory/store.py -- SQLAlchemy-backed store client for the VulnWatch inventory.

Uses SQLAlchemy Core (not ORM) so the dataclasses in inventory/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. InventoryStore owns the engine and is
constructed explicitly (no module-level connection) and passed to every
component that needs the database: ClassificationResolver, VersionChain,
SyncBookkeeper, Reconciler. Its lifecycle is application start/stop.

Transactions: write methods accept an optional `conn`. When given, they run
inside the caller's transaction (the reconciler composes mapping + item +
artifact writes that way); otherwise they open and commit their own.
transaction() hands out such a connection. Locks registered on it with
hold() stay held until that transaction has committed or rolled back, so
anything read under the lock is still current when other writers get in.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = InventoryStore("sqlite:///:memory:")
    item_id = store.create_item(ASSET, asset, [group.id], owner_id=1)
    page = store.list_items(ASSET, PageRequest(page=1, page_size=10))
    store.close()
"""

import json
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from typing import Optional

from sqlalchemy import create_engine, delete, event, func, insert, or_, select, update
from sqlalchemy.engine import Connection, Engine

from core.config import now_iso
from core.pagination import Page, PageRequest, build_page_meta
from inventory import schema
from inventory.errors import LockTimeoutError, NotFoundError
from inventory.kinds import VULNERABILITY, ResourceKind
from inventory.models import ClassificationGroup, ExternalMapping, Integration

_DEFAULT_DB_URL = "sqlite:///vulnwatch_inventory.db"
# Connection.info key for the ExitStack releasing locks taken via hold().
_HELD_LOCKS = "vulnwatch.held_locks"


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class InventoryStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # TestClient and the scheduler thread both touch the engine, so the
            # SQLite connection may cross threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        schema.metadata.create_all(self.engine)

    @contextmanager
    def transaction(self, conn: Optional[Connection] = None) -> Iterator[Connection]:
        """Yield conn unchanged, or a fresh connection inside BEGIN ... COMMIT."""
        if conn is not None:
            yield conn
            return
        # Exit order: commit (or rollback) first, then release held locks.
        with ExitStack() as held, self.engine.begin() as own:
            own.info[_HELD_LOCKS] = held
            try:
                yield own
            finally:
                own.info.pop(_HELD_LOCKS, None)

    def hold(self, conn: Connection, lock, timeout: float) -> None:
        """Acquire lock now and release it when conn's transaction ends.

        conn must come from transaction(). Raises LockTimeoutError when the
        lock is not free within timeout seconds.
        """
        held: Optional[ExitStack] = conn.info.get(_HELD_LOCKS)
        if held is None:
            raise RuntimeError("hold() needs a connection opened by InventoryStore.transaction()")
        if not lock.acquire(timeout=timeout):
            raise LockTimeoutError(f"Gave up waiting {timeout:g}s for a lock held by another writer")
        held.callback(lock.release)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    # ------------------------------------------------------------------
    # Device groups (writes go through ClassificationResolver)
    # ------------------------------------------------------------------

    def get_group(self, group_id: int) -> Optional[ClassificationGroup]:
        with self.engine.connect() as conn:
            row = conn.execute(schema.device_groups.select().where(schema.device_groups.c.id == group_id)).fetchone()
        return row_to_group(row) if row is not None else None

    def list_groups(self, page: PageRequest) -> Page[ClassificationGroup]:
        """Return device groups ordered by CPE, filtered by a CPE/manufacturer substring."""
        t = schema.device_groups
        where = None
        if page.search:
            pattern = f"%{page.search}%"
            where = or_(t.c.cpe.ilike(pattern), t.c.manufacturer.ilike(pattern), t.c.model_name.ilike(pattern))
        count_stmt = select(func.count()).select_from(t)
        stmt = t.select().order_by(t.c.cpe)
        if where is not None:
            count_stmt = count_stmt.where(where)
            stmt = stmt.where(where)
        with self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            meta = build_page_meta(page, total)
            rows = conn.execute(stmt.offset(meta.offset).limit(meta.page_size)).fetchall()
        return Page(items=[row_to_group(r) for r in rows], meta=meta)

    def update_group(self, group_id: int, **fields) -> Optional[ClassificationGroup]:
        """Enrich descriptive fields (manufacturer, model_name, version).

        The cpe key itself is never rewritten. Returns the updated group or
        None if group_id does not exist.
        """
        allowed = {"manufacturer", "model_name", "version"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update device group fields: {sorted(unknown)!r}")
        with self.engine.begin() as conn:
            result = conn.execute(
                update(schema.device_groups)
                .where(schema.device_groups.c.id == group_id)
                .values(updated_at=now_iso(), **fields)
            )
        if result.rowcount == 0:
            return None
        return self.get_group(group_id)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get_item(self, kind: ResourceKind, item_id: int):
        """Return the item as its domain dataclass, or None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(kind.table.select().where(kind.table.c.id == item_id)).fetchone()
            if row is None:
                return None
            groups = self._groups_for(conn, kind, [row])
        cpes, ids = groups.get(row.id, ([], []))
        return kind.build_record(row, cpes, ids)

    def require_references(self, kind: ResourceKind, record, conn: Optional[Connection] = None) -> None:
        """Raise NotFoundError if record links to an item that does not exist.

        The schema carries no foreign keys, so this is the only check that a
        remediation's vulnerability_id points somewhere.
        """
        with self.transaction(conn) as c:
            for column, target in kind.references:
                target_id = getattr(record, column)
                if target_id is None:
                    continue
                found = c.execute(select(target.table.c.id).where(target.table.c.id == target_id)).first()
                if found is None:
                    raise NotFoundError(target.resource_type, target_id)

    def list_items(self, kind: ResourceKind, page: PageRequest) -> Page:
        """Return one page of items, newest first, optionally substring-filtered."""
        t = kind.table
        where = None
        if page.search and kind.search_columns:
            pattern = f"%{page.search}%"
            where = or_(*[t.c[name].ilike(pattern) for name in kind.search_columns])
        count_stmt = select(func.count()).select_from(t)
        stmt = t.select().order_by(t.c.created_at.desc(), t.c.id.desc())
        if where is not None:
            count_stmt = count_stmt.where(where)
            stmt = stmt.where(where)
        with self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            meta = build_page_meta(page, total)
            rows = conn.execute(stmt.offset(meta.offset).limit(meta.page_size)).fetchall()
            groups = self._groups_for(conn, kind, rows)
        items = []
        for row in rows:
            cpes, ids = groups.get(row.id, ([], []))
            items.append(kind.build_record(row, cpes, ids))
        return Page(items=items, meta=meta)

    def create_item(
        self,
        kind: ResourceKind,
        record,
        group_ids: list[int],
        owner_id: int,
        conn: Optional[Connection] = None,
    ) -> int:
        """Insert an item linked to group_ids and return its new id.

        Raises sqlalchemy.exc.IntegrityError when an identifying attribute is
        already taken by another item.
        """
        now = now_iso()
        values = kind.row_values(record)
        if not kind.multi_group:
            values[kind.group_column] = group_ids[0]
        with self.transaction(conn) as c:
            result = c.execute(insert(kind.table).values(user_id=owner_id, created_at=now, updated_at=now, **values))
            item_id = result.inserted_primary_key[0]
            if kind.multi_group:
                self._link_groups(c, kind, item_id, group_ids)
        return item_id

    def update_item(
        self,
        kind: ResourceKind,
        item_id: int,
        record,
        group_ids: list[int],
        conn: Optional[Connection] = None,
    ) -> bool:
        """Overwrite an item's mutable fields and reassign its group(s).

        Owner and created_at never change. Returns False if item_id is unknown.
        """
        values = kind.row_values(record)
        if not kind.multi_group:
            values[kind.group_column] = group_ids[0]
        with self.transaction(conn) as c:
            result = c.execute(
                update(kind.table).where(kind.table.c.id == item_id).values(updated_at=now_iso(), **values)
            )
            if result.rowcount == 0:
                return False
            if kind.multi_group:
                link = kind.group_link
                c.execute(delete(link).where(link.c[kind.group_link_column] == item_id))
                self._link_groups(c, kind, item_id, group_ids)
        return True

    def delete_item(self, kind: ResourceKind, item_id: int) -> bool:
        """Delete an item and everything hanging off it, in one transaction.

        Cascades: external mappings, group links, artifact wrappers and all
        their versions. Remediations pointing at a deleted vulnerability keep
        existing with vulnerability_id cleared.
        """
        wrappers = schema.artifact_wrappers
        mappings = schema.external_mappings
        with self.engine.begin() as conn:
            conn.execute(
                delete(mappings).where(
                    (mappings.c.resource_type == kind.resource_type) & (mappings.c.item_id == item_id)
                )
            )
            if kind.multi_group:
                link = kind.group_link
                conn.execute(delete(link).where(link.c[kind.group_link_column] == item_id))
            if kind.artifact_fk:
                wrapper_ids = select(wrappers.c.id).where(wrappers.c[kind.artifact_fk] == item_id)
                conn.execute(delete(schema.artifacts).where(schema.artifacts.c.wrapper_id.in_(wrapper_ids)))
                conn.execute(delete(wrappers).where(wrappers.c[kind.artifact_fk] == item_id))
            if kind is VULNERABILITY:
                conn.execute(
                    update(schema.remediations)
                    .where(schema.remediations.c.vulnerability_id == item_id)
                    .values(vulnerability_id=None)
                )
            result = conn.execute(delete(kind.table).where(kind.table.c.id == item_id))
        return result.rowcount > 0

    def _link_groups(self, conn: Connection, kind: ResourceKind, item_id: int, group_ids: list[int]) -> None:
        seen: set[int] = set()
        rows = []
        for gid in group_ids:
            if gid in seen:
                continue
            seen.add(gid)
            rows.append({kind.group_link_column: item_id, "device_group_id": gid})
        if rows:
            conn.execute(insert(kind.group_link), rows)

    def _groups_for(self, conn: Connection, kind: ResourceKind, rows) -> dict[int, tuple[list[str], list[int]]]:
        """Return {item_id: (cpes, group_ids)} for the given item rows in one query."""
        groups = schema.device_groups
        result: dict[int, tuple[list[str], list[int]]] = {}
        if not rows:
            return result
        if not kind.multi_group:
            by_group: dict[int, list[int]] = {}
            for row in rows:
                by_group.setdefault(getattr(row, kind.group_column), []).append(row.id)
            found = conn.execute(
                select(groups.c.id, groups.c.cpe).where(groups.c.id.in_(list(by_group)))
            ).fetchall()
            for g in found:
                for item_id in by_group[g.id]:
                    result[item_id] = ([g.cpe], [g.id])
            return result
        link = kind.group_link
        item_col = link.c[kind.group_link_column]
        found = conn.execute(
            select(item_col.label("item_id"), groups.c.id, groups.c.cpe)
            .select_from(link.join(groups, link.c.device_group_id == groups.c.id))
            .where(item_col.in_([r.id for r in rows]))
            .order_by(groups.c.cpe)
        ).fetchall()
        for g in found:
            cpes, ids = result.setdefault(g.item_id, ([], []))
            cpes.append(g.cpe)
            ids.append(g.id)
        return result

    # ------------------------------------------------------------------
    # External mappings
    # ------------------------------------------------------------------

    def find_mapping(self, integration_id: int, external_id: str) -> Optional[ExternalMapping]:
        m = schema.external_mappings
        with self.engine.connect() as conn:
            row = conn.execute(
                m.select().where((m.c.integration_id == integration_id) & (m.c.external_id == external_id))
            ).fetchone()
        return row_to_mapping(row) if row is not None else None

    def find_identity_match(
        self,
        kind: ResourceKind,
        integration_id: int,
        conditions: dict[str, str],
        include_mapped: bool = False,
    ) -> Optional[int]:
        """Return the id of an item matching ANY of the identifying conditions.

        By default items this integration already maps are skipped, so a new
        vendor id never silently steals another vendor id's item. With
        include_mapped=True every item is a candidate (used to re-read after
        a UNIQUE conflict). Oldest match wins when several qualify.
        """
        if not conditions:
            return None
        t = kind.table
        m = schema.external_mappings
        stmt = select(t.c.id).where(or_(*[t.c[name] == value for name, value in conditions.items()]))
        if not include_mapped:
            mapped = select(m.c.item_id).where(
                (m.c.integration_id == integration_id) & (m.c.resource_type == kind.resource_type)
            )
            stmt = stmt.where(t.c.id.not_in(mapped))
        with self.engine.connect() as conn:
            return conn.execute(stmt.order_by(t.c.id).limit(1)).scalar()

    def insert_mapping(self, conn: Connection, mapping: ExternalMapping) -> int:
        """Insert a mapping inside the caller's transaction.

        Raises IntegrityError if (integration_id, external_id) is already mapped.
        """
        result = conn.execute(
            insert(schema.external_mappings).values(
                integration_id=mapping.integration_id,
                resource_type=mapping.resource_type,
                external_id=mapping.external_id,
                item_id=mapping.item_id,
                last_synced=mapping.last_synced,
            )
        )
        return result.inserted_primary_key[0]

    def touch_mapping(self, conn: Connection, mapping_id: int, last_synced: str) -> None:
        m = schema.external_mappings
        conn.execute(update(m).where(m.c.id == mapping_id).values(last_synced=last_synced))

    def list_mappings(self, integration_id: int) -> list[ExternalMapping]:
        m = schema.external_mappings
        with self.engine.connect() as conn:
            rows = conn.execute(m.select().where(m.c.integration_id == integration_id).order_by(m.c.id)).fetchall()
        return [row_to_mapping(r) for r in rows]

    def count_mappings(self, integration_id: int) -> int:
        m = schema.external_mappings
        with self.engine.connect() as conn:
            return (
                conn.execute(select(func.count()).select_from(m).where(m.c.integration_id == integration_id)).scalar()
                or 0
            )

    # ------------------------------------------------------------------
    # Integrations
    # ------------------------------------------------------------------

    def create_integration(self, integration: Integration) -> int:
        now = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(schema.integrations).values(
                    user_id=integration.user_id,
                    integration_user_id=integration.integration_user_id,
                    api_key_id=integration.api_key_id,
                    name=integration.name,
                    platform=integration.platform,
                    integration_uri=integration.integration_uri,
                    is_generic=integration.is_generic,
                    prompt=integration.prompt,
                    resource_type=integration.resource_type,
                    sync_every=integration.sync_every,
                    auth_type=integration.auth_type,
                    authentication=json.dumps(integration.authentication) if integration.authentication else None,
                    created_at=now,
                    updated_at=now,
                )
            )
        return result.inserted_primary_key[0]

    def get_integration(self, integration_id: int) -> Optional[Integration]:
        t = schema.integrations
        with self.engine.connect() as conn:
            row = conn.execute(t.select().where(t.c.id == integration_id)).fetchone()
        return row_to_integration(row) if row is not None else None

    def list_integrations(
        self,
        page: Optional[PageRequest] = None,
        resource_type: Optional[str] = None,
    ) -> Page[Integration]:
        """Return integrations newest first. Without a page, returns all of them."""
        t = schema.integrations
        stmt = t.select().order_by(t.c.created_at.desc(), t.c.id.desc())
        count_stmt = select(func.count()).select_from(t)
        filters = []
        if resource_type:
            filters.append(t.c.resource_type == resource_type)
        if page is not None and page.search:
            filters.append(t.c.name.ilike(f"%{page.search}%"))
        for f in filters:
            stmt = stmt.where(f)
            count_stmt = count_stmt.where(f)
        with self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            if page is None:
                rows = conn.execute(stmt).fetchall()
                meta = build_page_meta(PageRequest(page_size=100), total)
            else:
                meta = build_page_meta(page, total)
                rows = conn.execute(stmt.offset(meta.offset).limit(meta.page_size)).fetchall()
        return Page(items=[row_to_integration(r) for r in rows], meta=meta)

    def set_integration_credentials(self, integration_id: int, integration_user_id: int, api_key_id: int) -> None:
        t = schema.integrations
        with self.engine.begin() as conn:
            conn.execute(
                update(t)
                .where(t.c.id == integration_id)
                .values(integration_user_id=integration_user_id, api_key_id=api_key_id, updated_at=now_iso())
            )

    def delete_integration(self, integration_id: int) -> bool:
        """Delete an integration with its mappings and sync history. Items stay."""
        with self.engine.begin() as conn:
            conn.execute(
                delete(schema.external_mappings).where(schema.external_mappings.c.integration_id == integration_id)
            )
            conn.execute(delete(schema.sync_records).where(schema.sync_records.c.integration_id == integration_id))
            result = conn.execute(delete(schema.integrations).where(schema.integrations.c.id == integration_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Vulnerability threat scores (written by sync.enrichment only)
    # ------------------------------------------------------------------

    def vulnerability_ids_with_cve(self) -> list[int]:
        t = schema.vulnerabilities
        with self.engine.connect() as conn:
            return list(conn.execute(select(t.c.id).where(t.c.cve_id.is_not(None)).order_by(t.c.id)).scalars())

    def set_threat_scores(self, vulnerability_id: int, **values) -> bool:
        """Store EPSS / KEV / priority columns. Returns False if the vulnerability is gone."""
        allowed = {"epss", "epss_updated_at", "in_kev", "kev_updated_at", "priority"}
        unknown = set(values) - allowed
        if unknown:
            raise ValueError(f"Not a threat score column: {sorted(unknown)!r}")
        t = schema.vulnerabilities
        with self.engine.begin() as conn:
            result = conn.execute(update(t).where(t.c.id == vulnerability_id).values(**values))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def row_to_group(row) -> ClassificationGroup:
    return ClassificationGroup(
        id=row.id,
        cpe=row.cpe,
        manufacturer=row.manufacturer,
        model_name=row.model_name,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def row_to_mapping(row) -> ExternalMapping:
    return ExternalMapping(
        id=row.id,
        integration_id=row.integration_id,
        resource_type=row.resource_type,
        external_id=row.external_id,
        item_id=row.item_id,
        last_synced=row.last_synced,
    )


def row_to_integration(row) -> Integration:
    return Integration(
        id=row.id,
        user_id=row.user_id,
        integration_user_id=row.integration_user_id,
        api_key_id=row.api_key_id,
        name=row.name,
        platform=row.platform,
        integration_uri=row.integration_uri,
        is_generic=bool(row.is_generic),
        prompt=row.prompt,
        resource_type=row.resource_type,
        sync_every=row.sync_every,
        auth_type=row.auth_type,
        authentication=json.loads(row.authentication) if row.authentication else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
