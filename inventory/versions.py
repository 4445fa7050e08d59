"""
inventory/versions.py -- Append-only version chains for downloadable artifacts.

An ArtifactWrapper is the stable handle ("the firmware image for this
remediation"); each Artifact row is one immutable version of its content.
Versions are numbered 1, 2, 3, ... with no gaps, each links to the one it
superseded via prev_version_id, and the wrapper's latest_artifact_id always
points at the highest number.

Appending a version is a read-modify-write (read latest, insert latest + 1,
move the pointer). Writers to one wrapper are serialized by a per-wrapper
lock that is held until the enclosing transaction commits or rolls back
(InventoryStore.hold), not merely until create_version returns: a reconciler
or route that appends inside its own transaction keeps the wrapper until its
version is visible to everyone else. Other processes are kept out by
SELECT ... FOR UPDATE on the wrapper row (a no-op on SQLite, whose single
writer lock covers it). UNIQUE(wrapper_id, version_number) remains the
backstop if both are bypassed.

Content (download_url, hash) is never edited in place. update_metadata() only
touches name, artifact_type and size.
"""

import logging
import threading
import weakref
from typing import Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Connection

from core.config import now_iso
from core.pagination import Page, PageRequest, build_page_meta
from inventory import schema
from inventory.errors import InvalidInputError, NotFoundError
from inventory.models import ARTIFACT_TYPES, Artifact, ArtifactInput, ArtifactWrapper
from inventory.store import InventoryStore

logger = logging.getLogger("vulnwatch.versions")

# artifact_wrappers columns that may name the owning item.
OWNER_COLUMNS = ("remediation_id", "device_artifact_id")


class VersionChain:
    def __init__(self, store: InventoryStore, lock_timeout: float = 30.0) -> None:
        self.store = store
        self.lock_timeout = lock_timeout
        # Entries vanish once no transaction holds or waits for the lock.
        self._locks: "weakref.WeakValueDictionary[int, threading.RLock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, wrapper_id: int):
        with self._locks_guard:
            lock = self._locks.get(wrapper_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[wrapper_id] = lock
            return lock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_version(
        self,
        wrapper_id: int,
        version_input: ArtifactInput,
        owner_id: int,
        conn: Optional[Connection] = None,
    ) -> Artifact:
        """Append version_input as the wrapper's next version and return it.

        Raises NotFoundError if the wrapper does not exist and
        LockTimeoutError if another writer keeps the wrapper too long.
        """
        w = schema.artifact_wrappers
        a = schema.artifacts
        with self.store.transaction(conn) as c:
            self.store.hold(c, self._lock_for(wrapper_id), self.lock_timeout)
            wrapper = c.execute(select(w).where(w.c.id == wrapper_id).with_for_update()).fetchone()
            if wrapper is None:
                raise NotFoundError("Artifact wrapper", wrapper_id)

            prev_id = None
            next_version = 1
            if wrapper.latest_artifact_id is not None:
                latest = c.execute(
                    select(a.c.id, a.c.version_number).where(a.c.id == wrapper.latest_artifact_id)
                ).fetchone()
                if latest is not None:
                    prev_id = latest.id
                    next_version = latest.version_number + 1

            now = now_iso()
            result = c.execute(
                insert(a).values(
                    wrapper_id=wrapper_id,
                    user_id=owner_id,
                    name=version_input.name,
                    artifact_type=version_input.artifact_type,
                    download_url=version_input.download_url,
                    hash=version_input.hash,
                    size=version_input.size,
                    version_number=next_version,
                    prev_version_id=prev_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            artifact_id = result.inserted_primary_key[0]
            c.execute(update(w).where(w.c.id == wrapper_id).values(latest_artifact_id=artifact_id))
            row = c.execute(select(a).where(a.c.id == artifact_id)).fetchone()

        logger.info("Wrapper %d now at version %d (artifact %d)", wrapper_id, next_version, artifact_id)
        return row_to_artifact(row)

    def create_wrappers_for_item(
        self,
        item_id: int,
        foreign_key_name: str,
        version_inputs: list[ArtifactInput],
        owner_id: int,
        conn: Optional[Connection] = None,
    ) -> list[ArtifactWrapper]:
        """Create one wrapper per input, each seeded with version 1."""
        _check_owner_column(foreign_key_name)
        wrappers = []
        with self.store.transaction(conn) as c:
            for version_input in version_inputs:
                wrapper_id = self._insert_wrapper(c, foreign_key_name, item_id, owner_id)
                self.create_version(wrapper_id, version_input, owner_id, conn=c)
                wrappers.append(self._load_wrapper(c, wrapper_id))
        return wrappers

    def attach_versions(
        self,
        conn: Connection,
        item_id: int,
        foreign_key_name: str,
        version_inputs: list[ArtifactInput],
        owner_id: int,
    ) -> int:
        """Merge re-synced artifact inputs into an existing item's wrappers.

        Each input claims at most one existing wrapper and each wrapper is
        claimed by at most one input. Claims are made in rounds, every input
        trying a round before any input moves on to the next:
          1. same name, type and content as the wrapper's latest version
          2. same type and content (the name was dropped or changed)
          3. same name and type (new content)
        A claimed wrapper gets a new version only if download_url or hash
        differ from its latest; an unclaimed input gets a new wrapper. Two
        unnamed Firmware inputs therefore keep landing on their own wrappers
        when a batch is replayed. Returns the number of versions written.
        """
        _check_owner_column(foreign_key_name)
        if not version_inputs:
            return 0
        w = schema.artifact_wrappers
        a = schema.artifacts
        unclaimed = list(
            conn.execute(
                select(w.c.id.label("wrapper_id"), a.c.name, a.c.artifact_type, a.c.download_url, a.c.hash)
                .select_from(w.join(a, w.c.latest_artifact_id == a.c.id))
                .where(w.c[foreign_key_name] == item_id)
                .order_by(w.c.id)
            ).fetchall()
        )

        claims: dict[int, object] = {}
        for matches in (_same_artifact, _same_content, _same_key):
            for position, version_input in enumerate(version_inputs):
                if position in claims:
                    continue
                for index, row in enumerate(unclaimed):
                    if matches(row, version_input):
                        claims[position] = unclaimed.pop(index)
                        break

        written = 0
        for position, version_input in enumerate(version_inputs):
            current = claims.get(position)
            if current is None:
                wrapper_id = self._insert_wrapper(conn, foreign_key_name, item_id, owner_id)
            elif _same_content(current, version_input):
                continue
            else:
                wrapper_id = current.wrapper_id
            self.create_version(wrapper_id, version_input, owner_id, conn=conn)
            written += 1
        return written

    def update_metadata(
        self,
        artifact_id: int,
        name: Optional[str] = None,
        artifact_type: Optional[str] = None,
        size: Optional[int] = None,
    ) -> Artifact:
        """Edit descriptive fields of one version. Content stays immutable."""
        if artifact_type is not None and artifact_type not in ARTIFACT_TYPES:
            raise InvalidInputError(f"Unknown artifact type: {artifact_type!r}")
        values = {"updated_at": now_iso()}
        if name is not None:
            values["name"] = name
        if artifact_type is not None:
            values["artifact_type"] = artifact_type
        if size is not None:
            values["size"] = size
        a = schema.artifacts
        with self.store.engine.begin() as conn:
            result = conn.execute(update(a).where(a.c.id == artifact_id).values(**values))
            if result.rowcount == 0:
                raise NotFoundError("Artifact", artifact_id)
            row = conn.execute(select(a).where(a.c.id == artifact_id)).fetchone()
        return row_to_artifact(row)

    def _insert_wrapper(self, conn: Connection, foreign_key_name: str, item_id: int, owner_id: int) -> int:
        result = conn.execute(
            insert(schema.artifact_wrappers).values(
                user_id=owner_id,
                created_at=now_iso(),
                **{foreign_key_name: item_id},
            )
        )
        return result.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_versions(self, wrapper_id: int, page: PageRequest) -> Page[Artifact]:
        """Return one page of a wrapper's versions, oldest (version 1) first."""
        a = schema.artifacts
        with self.store.engine.connect() as conn:
            self._require_wrapper(conn, wrapper_id)
            total = conn.execute(select(func.count()).select_from(a).where(a.c.wrapper_id == wrapper_id)).scalar() or 0
            meta = build_page_meta(page, total)
            rows = conn.execute(
                select(a)
                .where(a.c.wrapper_id == wrapper_id)
                .order_by(a.c.version_number)
                .offset(meta.offset)
                .limit(meta.page_size)
            ).fetchall()
        return Page(items=[row_to_artifact(r) for r in rows], meta=meta)

    def history(self, wrapper_id: int) -> list[Artifact]:
        """Walk the chain from the latest version back to version 1."""
        a = schema.artifacts
        with self.store.engine.connect() as conn:
            wrapper = self._require_wrapper(conn, wrapper_id)
            rows = conn.execute(select(a).where(a.c.wrapper_id == wrapper_id)).fetchall()
        by_id = {row.id: row_to_artifact(row) for row in rows}
        chain = []
        current = by_id.get(wrapper.latest_artifact_id)
        while current is not None:
            chain.append(current)
            current = by_id.get(current.prev_version_id)
        return chain

    def get_artifact(self, artifact_id: int) -> Optional[Artifact]:
        a = schema.artifacts
        with self.store.engine.connect() as conn:
            row = conn.execute(select(a).where(a.c.id == artifact_id)).fetchone()
        return row_to_artifact(row) if row is not None else None

    def get_wrapper(self, wrapper_id: int) -> Optional[ArtifactWrapper]:
        with self.store.engine.connect() as conn:
            return self._load_wrapper(conn, wrapper_id)

    def wrappers_for_item(self, foreign_key_name: str, item_id: int) -> list[ArtifactWrapper]:
        _check_owner_column(foreign_key_name)
        w = schema.artifact_wrappers
        with self.store.engine.connect() as conn:
            ids = conn.execute(select(w.c.id).where(w.c[foreign_key_name] == item_id).order_by(w.c.id)).scalars().all()
            return [self._load_wrapper(conn, wrapper_id) for wrapper_id in ids]

    def _require_wrapper(self, conn: Connection, wrapper_id: int):
        w = schema.artifact_wrappers
        row = conn.execute(select(w).where(w.c.id == wrapper_id)).fetchone()
        if row is None:
            raise NotFoundError("Artifact wrapper", wrapper_id)
        return row

    def _load_wrapper(self, conn: Connection, wrapper_id: int) -> Optional[ArtifactWrapper]:
        w = schema.artifact_wrappers
        a = schema.artifacts
        row = conn.execute(select(w).where(w.c.id == wrapper_id)).fetchone()
        if row is None:
            return None
        latest = None
        if row.latest_artifact_id is not None:
            latest_row = conn.execute(select(a).where(a.c.id == row.latest_artifact_id)).fetchone()
            latest = row_to_artifact(latest_row) if latest_row is not None else None
        count = conn.execute(select(func.count()).select_from(a).where(a.c.wrapper_id == wrapper_id)).scalar() or 0
        return ArtifactWrapper(
            id=row.id,
            user_id=row.user_id,
            remediation_id=row.remediation_id,
            device_artifact_id=row.device_artifact_id,
            latest_artifact_id=row.latest_artifact_id,
            latest_artifact=latest,
            versions_count=count,
            created_at=row.created_at,
        )


# Claim rounds for attach_versions. row is a wrapper joined to its latest version.


def _same_key(row, version_input: ArtifactInput) -> bool:
    return row.name == version_input.name and row.artifact_type == version_input.artifact_type


def _same_content(row, version_input: ArtifactInput) -> bool:
    return (
        row.artifact_type == version_input.artifact_type
        and row.download_url == version_input.download_url
        and row.hash == version_input.hash
    )


def _same_artifact(row, version_input: ArtifactInput) -> bool:
    return _same_key(row, version_input) and _same_content(row, version_input)


def _check_owner_column(foreign_key_name: str) -> None:
    if foreign_key_name not in OWNER_COLUMNS:
        raise ValueError(f"Artifact wrappers cannot belong to {foreign_key_name!r}")


def row_to_artifact(row) -> Artifact:
    return Artifact(
        id=row.id,
        wrapper_id=row.wrapper_id,
        user_id=row.user_id,
        name=row.name,
        artifact_type=row.artifact_type,
        download_url=row.download_url,
        hash=row.hash,
        size=row.size,
        version_number=row.version_number,
        prev_version_id=row.prev_version_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
