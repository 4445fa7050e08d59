"""
inventory/schema.py -- SQLAlchemy Core table definitions for the VulnWatch inventory.

One MetaData holds every table the sync engine touches. Components import the
tables from here and run their own bound-parameter queries; there is no ORM.

UNIQUE constraints carry the find-or-create guarantees:
  device_groups.cpe                     -- one group per classification string
  assets.hostname / mac_address / serial_number, vulnerabilities.cve_id
                                        -- fallback identity attributes
  external_mappings(integration_id, external_id)
                                        -- one item per vendor id per integration
  artifacts(wrapper_id, version_number) -- no two versions share a number

SQLite and PostgreSQL both treat NULLs as distinct under UNIQUE, so items
without an identifying attribute never collide on it.

Timestamps are ISO 8601 UTC strings (see core.config.to_iso).
"""

from sqlalchemy import Boolean, Column, Float, Index, Integer, MetaData, String, Table, Text, UniqueConstraint

metadata = MetaData()

# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

device_groups = Table(
    "device_groups",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("cpe", String(255), nullable=False, unique=True),
    Column("manufacturer", String(255)),
    Column("model_name", String(255)),
    Column("version", String(100)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

assets = Table(
    "assets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("device_group_id", Integer, nullable=False),
    Column("ip", String(45), nullable=False),
    Column("network_segment", String(100)),
    Column("role", String(255), nullable=False),
    Column("upstream_api", String(2048), nullable=False),
    Column("hostname", String(255), unique=True),
    Column("mac_address", String(32), unique=True),
    Column("serial_number", String(255), unique=True),
    Column("location", Text),  # JSON object serialized as text
    Column("status", String(30)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

vulnerabilities = Table(
    "vulnerabilities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("cve_id", String(30), unique=True),
    Column("sarif", Text),  # JSON document serialized as text
    Column("cvss_score", Float),
    Column("epss", Float),
    Column("epss_updated_at", String(32)),
    Column("in_kev", Boolean, nullable=False, default=False, server_default="0"),
    Column("kev_updated_at", String(32)),
    Column("priority", String(10), nullable=False, default="Unsorted", server_default="Unsorted"),
    Column("exploit_uri", String(2048), nullable=False),
    Column("upstream_api", String(2048), nullable=False),
    Column("description", Text, nullable=False),
    Column("narrative", Text, nullable=False),
    Column("impact", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

vulnerability_groups = Table(
    "vulnerability_groups",
    metadata,
    Column("vulnerability_id", Integer, nullable=False),
    Column("device_group_id", Integer, nullable=False),
    UniqueConstraint("vulnerability_id", "device_group_id", name="uq_vulnerability_group"),
)

device_artifacts = Table(
    "device_artifacts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("device_group_id", Integer, nullable=False),
    Column("role", String(255), nullable=False),
    Column("description", Text, nullable=False),
    Column("download_url", String(2048)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

remediations = Table(
    "remediations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("vulnerability_id", Integer),  # no FK; InventoryStore.require_references checks it
    Column("fix_uri", String(2048)),
    Column("description", Text, nullable=False),
    Column("narrative", Text, nullable=False),
    Column("upstream_api", String(2048)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

remediation_groups = Table(
    "remediation_groups",
    metadata,
    Column("remediation_id", Integer, nullable=False),
    Column("device_group_id", Integer, nullable=False),
    UniqueConstraint("remediation_id", "device_group_id", name="uq_remediation_group"),
)

# ---------------------------------------------------------------------------
# Integrations and sync housekeeping
# ---------------------------------------------------------------------------

integrations = Table(
    "integrations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("integration_user_id", Integer),
    Column("api_key_id", Integer),
    Column("name", String(255), nullable=False),
    Column("platform", String(255)),
    Column("integration_uri", String(2048), nullable=False),
    Column("is_generic", Boolean, nullable=False, server_default="0"),
    Column("prompt", Text),
    Column("resource_type", String(30), nullable=False),
    Column("sync_every", Integer, nullable=False),
    Column("auth_type", String(20), nullable=False, server_default="None"),
    Column("authentication", Text),  # JSON object serialized as text
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

external_mappings = Table(
    "external_mappings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("integration_id", Integer, nullable=False),
    Column("resource_type", String(30), nullable=False),
    Column("external_id", String(255), nullable=False),
    Column("item_id", Integer, nullable=False),
    Column("last_synced", String(32), nullable=False),
    UniqueConstraint("integration_id", "external_id", name="uq_integration_external_id"),
    Index("ix_external_mappings_item", "resource_type", "item_id"),
)

sync_records = Table(
    "sync_records",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("integration_id", Integer, nullable=False),
    Column("status", String(20), nullable=False),
    Column("error_message", Text),
    Column("synced_at", String(32), nullable=False),
    Index("ix_sync_records_integration_synced", "integration_id", "synced_at"),
)

# ---------------------------------------------------------------------------
# Artifact version chain
# ---------------------------------------------------------------------------

artifact_wrappers = Table(
    "artifact_wrappers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("remediation_id", Integer),
    Column("device_artifact_id", Integer),
    Column("latest_artifact_id", Integer),
    Column("created_at", String(32), nullable=False),
)

artifacts = Table(
    "artifacts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("wrapper_id", Integer, nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("name", String(255)),
    Column("artifact_type", String(30), nullable=False),
    Column("download_url", String(2048)),
    Column("hash", String(255)),
    Column("size", Integer),
    Column("version_number", Integer, nullable=False),
    Column("prev_version_id", Integer),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("wrapper_id", "version_number", name="uq_wrapper_version"),
)
