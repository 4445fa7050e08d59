"""Unit tests for inventory/versions.py -- artifact version chains.

Covers:
- create_wrappers_for_item() seeds each wrapper with version 1
- create_version() numbers versions without gaps and links prev_version_id
- history() walks latest -> version 1; list_versions() pages oldest first
- attach_versions() appends only when content (downloadUrl/hash) changed
- attach_versions() pairs inputs and wrappers one-to-one, so unnamed twins replay cleanly
- update_metadata() edits name/type/size but never content
- appends to one wrapper are serialized until the appending transaction commits
- Unknown wrappers/artifacts raise NotFoundError; bad owner columns raise ValueError
"""

from __future__ import annotations

import threading
import time

import pytest

from core.pagination import PageRequest
from inventory.errors import LockTimeoutError, NotFoundError
from inventory.models import ArtifactInput
from inventory.store import InventoryStore
from inventory.versions import VersionChain

OWNER = 7


def _firmware(url: str, name: str = "pump-firmware") -> ArtifactInput:
    return ArtifactInput(artifact_type="Firmware", name=name, download_url=url)


@pytest.fixture
def chain(store: InventoryStore) -> VersionChain:
    return VersionChain(store)


@pytest.fixture
def wrapper_id(chain: VersionChain) -> int:
    wrappers = chain.create_wrappers_for_item(1, "remediation_id", [_firmware("https://fw.example.com/v1.bin")], OWNER)
    return wrappers[0].id


class TestCreate:
    def test_wrapper_seeded_with_version_one(self, chain: VersionChain) -> None:
        wrappers = chain.create_wrappers_for_item(
            5,
            "device_artifact_id",
            [_firmware("https://fw.example.com/a.bin", "a"), ArtifactInput(artifact_type="Document", hash="abc123")],
            OWNER,
        )
        assert len(wrappers) == 2
        for wrapper in wrappers:
            assert wrapper.device_artifact_id == 5
            assert wrapper.remediation_id is None
            assert wrapper.versions_count == 1
            assert wrapper.latest_artifact.version_number == 1
            assert wrapper.latest_artifact.prev_version_id is None

    def test_versions_are_gapless_and_linked(self, chain: VersionChain, wrapper_id: int) -> None:
        v2 = chain.create_version(wrapper_id, _firmware("https://fw.example.com/v2.bin"), OWNER)
        v3 = chain.create_version(wrapper_id, _firmware("https://fw.example.com/v3.bin"), OWNER)
        assert v2.version_number == 2
        assert v3.version_number == 3
        assert v3.prev_version_id == v2.id
        wrapper = chain.get_wrapper(wrapper_id)
        assert wrapper.latest_artifact_id == v3.id, "Wrapper must point at the newest version"
        assert wrapper.versions_count == 3

    def test_unknown_wrapper(self, chain: VersionChain) -> None:
        with pytest.raises(NotFoundError):
            chain.create_version(999, _firmware("https://fw.example.com/x.bin"), OWNER)

    def test_rejects_unknown_owner_column(self, chain: VersionChain) -> None:
        with pytest.raises(ValueError, match="cannot belong"):
            chain.create_wrappers_for_item(1, "asset_id", [_firmware("https://fw.example.com/x.bin")], OWNER)


class TestReads:
    def test_history_runs_latest_to_first(self, chain: VersionChain, wrapper_id: int) -> None:
        chain.create_version(wrapper_id, _firmware("https://fw.example.com/v2.bin"), OWNER)
        chain.create_version(wrapper_id, _firmware("https://fw.example.com/v3.bin"), OWNER)
        assert [a.version_number for a in chain.history(wrapper_id)] == [3, 2, 1]

    def test_list_versions_pages_oldest_first(self, chain: VersionChain, wrapper_id: int) -> None:
        for n in range(2, 6):
            chain.create_version(wrapper_id, _firmware(f"https://fw.example.com/v{n}.bin"), OWNER)
        page = chain.list_versions(wrapper_id, PageRequest(page=2, page_size=2))
        assert [a.version_number for a in page.items] == [3, 4]
        assert page.meta.total_count == 5

    def test_list_versions_unknown_wrapper(self, chain: VersionChain) -> None:
        with pytest.raises(NotFoundError):
            chain.list_versions(42, PageRequest())

    def test_wrappers_for_item(self, chain: VersionChain, wrapper_id: int) -> None:
        assert [w.id for w in chain.wrappers_for_item("remediation_id", 1)] == [wrapper_id]
        assert chain.wrappers_for_item("remediation_id", 2) == []


class TestAttachVersions:
    def test_unchanged_content_writes_nothing(self, store: InventoryStore, chain: VersionChain, wrapper_id: int) -> None:
        with store.transaction() as conn:
            written = chain.attach_versions(conn, 1, "remediation_id", [_firmware("https://fw.example.com/v1.bin")], OWNER)
        assert written == 0
        assert chain.get_wrapper(wrapper_id).versions_count == 1

    def test_changed_content_appends_to_matching_wrapper(
        self, store: InventoryStore, chain: VersionChain, wrapper_id: int
    ) -> None:
        with store.transaction() as conn:
            written = chain.attach_versions(conn, 1, "remediation_id", [_firmware("https://fw.example.com/v2.bin")], OWNER)
        assert written == 1
        wrapper = chain.get_wrapper(wrapper_id)
        assert wrapper.versions_count == 2
        assert wrapper.latest_artifact.download_url == "https://fw.example.com/v2.bin"

    def test_new_name_gets_new_wrapper(self, store: InventoryStore, chain: VersionChain, wrapper_id: int) -> None:
        with store.transaction() as conn:
            chain.attach_versions(conn, 1, "remediation_id", [_firmware("https://fw.example.com/m.pdf", "manual")], OWNER)
        wrappers = chain.wrappers_for_item("remediation_id", 1)
        assert len(wrappers) == 2
        assert wrappers[1].latest_artifact.name == "manual"

    def test_unnamed_twins_replay_without_new_versions(self, store: InventoryStore, chain: VersionChain) -> None:
        twins = [
            ArtifactInput(artifact_type="Firmware", download_url="https://fw.example.com/a.bin"),
            ArtifactInput(artifact_type="Firmware", download_url="https://fw.example.com/b.bin"),
        ]
        chain.create_wrappers_for_item(3, "remediation_id", twins, OWNER)
        for _ in range(3):
            with store.transaction() as conn:
                assert chain.attach_versions(conn, 3, "remediation_id", twins, OWNER) == 0
        assert [w.versions_count for w in chain.wrappers_for_item("remediation_id", 3)] == [1, 1]

    def test_unnamed_twin_change_lands_on_its_own_wrapper(self, store: InventoryStore, chain: VersionChain) -> None:
        a = ArtifactInput(artifact_type="Firmware", download_url="https://fw.example.com/a.bin")
        b = ArtifactInput(artifact_type="Firmware", download_url="https://fw.example.com/b.bin")
        b2 = ArtifactInput(artifact_type="Firmware", download_url="https://fw.example.com/b2.bin")
        chain.create_wrappers_for_item(3, "remediation_id", [a, b], OWNER)
        with store.transaction() as conn:
            assert chain.attach_versions(conn, 3, "remediation_id", [a, b2], OWNER) == 1
        first, second = chain.wrappers_for_item("remediation_id", 3)
        assert first.versions_count == 1
        assert first.latest_artifact.download_url == "https://fw.example.com/a.bin"
        assert second.versions_count == 2
        assert second.latest_artifact.download_url == "https://fw.example.com/b2.bin"


class TestUpdateMetadata:
    def test_updates_descriptive_fields_only(self, chain: VersionChain, wrapper_id: int) -> None:
        artifact_id = chain.get_wrapper(wrapper_id).latest_artifact_id
        updated = chain.update_metadata(artifact_id, name="renamed", artifact_type="Binary", size=2048)
        assert updated.name == "renamed"
        assert updated.artifact_type == "Binary"
        assert updated.size == 2048
        assert updated.download_url == "https://fw.example.com/v1.bin", "Content must stay immutable"
        assert updated.version_number == 1

    def test_unknown_type(self, chain: VersionChain, wrapper_id: int) -> None:
        artifact_id = chain.get_wrapper(wrapper_id).latest_artifact_id
        with pytest.raises(ValueError, match="Unknown artifact type"):
            chain.update_metadata(artifact_id, artifact_type="Spreadsheet")

    def test_unknown_artifact(self, chain: VersionChain) -> None:
        with pytest.raises(NotFoundError):
            chain.update_metadata(404, name="ghost")


class TestConcurrentAppends:
    """Runs against a SQLite file so every thread sees the same database."""

    @pytest.fixture
    def file_store(self, tmp_path):
        s = InventoryStore(f"sqlite:///{tmp_path / 'versions.db'}")
        yield s
        s.close()

    @pytest.fixture
    def file_chain(self, file_store: InventoryStore) -> VersionChain:
        return VersionChain(file_store, lock_timeout=10.0)

    @pytest.fixture
    def shared_wrapper(self, file_chain: VersionChain) -> int:
        wrappers = file_chain.create_wrappers_for_item(
            1, "remediation_id", [_firmware("https://fw.example.com/v1.bin")], OWNER
        )
        return wrappers[0].id

    def test_append_waits_for_open_transaction(
        self, file_store: InventoryStore, file_chain: VersionChain, shared_wrapper: int
    ) -> None:
        appended = threading.Event()
        errors: list[BaseException] = []
        results = {}

        def hold_open() -> None:
            try:
                with file_store.transaction() as conn:
                    results["a"] = file_chain.create_version(
                        shared_wrapper, _firmware("https://fw.example.com/a.bin"), OWNER, conn=conn
                    )
                    appended.set()
                    time.sleep(0.3)
            except BaseException as exc:  # surfaced by the assertion below
                errors.append(exc)
                appended.set()

        def append_meanwhile() -> None:
            appended.wait(5)
            try:
                results["b"] = file_chain.create_version(shared_wrapper, _firmware("https://fw.example.com/b.bin"), OWNER)
            except BaseException as exc:
                errors.append(exc)

        threads = [threading.Thread(target=hold_open), threading.Thread(target=append_meanwhile)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(15)

        assert errors == []
        assert results["a"].version_number == 2
        assert results["b"].version_number == 3, "Second writer must see the first writer's committed version"
        assert results["b"].prev_version_id == results["a"].id

    def test_parallel_appends_are_gapless(self, file_chain: VersionChain, shared_wrapper: int) -> None:
        errors: list[BaseException] = []

        def append(n: int) -> None:
            try:
                file_chain.create_version(shared_wrapper, _firmware(f"https://fw.example.com/p{n}.bin"), OWNER)
            except BaseException as exc:
                errors.append(exc)

        threads = [threading.Thread(target=append, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(30)

        assert errors == []
        assert [a.version_number for a in file_chain.history(shared_wrapper)] == list(range(9, 0, -1))

    def test_busy_wrapper_times_out(self, file_store: InventoryStore, shared_wrapper: int) -> None:
        impatient = VersionChain(file_store, lock_timeout=0.05)
        raised = []

        def append() -> None:
            try:
                impatient.create_version(shared_wrapper, _firmware("https://fw.example.com/late.bin"), OWNER)
            except LockTimeoutError as exc:
                raised.append(exc)

        with file_store.transaction() as conn:
            impatient.create_version(shared_wrapper, _firmware("https://fw.example.com/first.bin"), OWNER, conn=conn)
            t = threading.Thread(target=append)
            t.start()
            t.join(5)
        assert len(raised) == 1

    def test_lock_registry_does_not_grow(self, file_chain: VersionChain, shared_wrapper: int) -> None:
        for n in range(3):
            file_chain.create_version(shared_wrapper, _firmware(f"https://fw.example.com/r{n}.bin"), OWNER)
        assert len(file_chain._locks) == 0, "Locks nobody holds must be dropped"

    def test_caller_connection_must_come_from_transaction(self, file_store: InventoryStore, shared_wrapper: int) -> None:
        chain = VersionChain(file_store)
        with file_store.engine.begin() as conn:
            with pytest.raises(RuntimeError, match="transaction"):
                chain.create_version(shared_wrapper, _firmware("https://fw.example.com/x.bin"), OWNER, conn=conn)
