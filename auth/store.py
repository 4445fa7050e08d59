"""
auth/store.py -- Credential storage: people, integration service users, API keys.

Auth lives in its own database (AUTH_DATABASE_URL) so credentials never share
a file with partner-supplied inventory data. Same Repository + Data Mapper
split as inventory/store.py, with SQLAlchemy Core and bound parameters only.

An identity and its first key are written in one transaction
(create_user_with_key). An integration is never left with a service user
that has no key, and the CLI never creates an admin nobody can log in as.

Layer rule: no imports from api/, inventory/, or sync/.
"""

from __future__ import annotations

from dataclasses import fields

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Connection, Engine

from auth.models import ROLE_INTEGRATION, ApiKey, User
from auth.tokens import generate_api_key, hash_api_key
from core.config import now_iso

_DEFAULT_DB_URL = "sqlite:///vulnwatch_auth.db"
# Characters of the raw key kept in clear for display ("vw_" + 9).
_KEY_PREFIX_LEN = 12

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

users_table = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL for integration service users
    Column("role", String(30), nullable=False, server_default="user"),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

api_keys_table = Table(
    "api_keys",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("key_hash", String(64), nullable=False, unique=True),
    Column("key_prefix", String(_KEY_PREFIX_LEN), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("last_used", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)


def _enable_wal(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _to_entity(cls, row):
    """Map a Core row onto a dataclass by field name; 0/1 flags become bools."""
    values = {f.name: row._mapping[f.name] for f in fields(cls) if f.name in row._mapping}
    if "is_active" in values:
        values["is_active"] = bool(values["is_active"])
    return cls(**values)


class UserStore:
    """Repository for User and ApiKey records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id, key_id, raw_key = store.create_user_with_key(User(username="ops", role="admin"), "ci")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        is_sqlite = db_url.startswith("sqlite")
        self.engine: Engine = create_engine(db_url, connect_args={"check_same_thread": False} if is_sqlite else {})
        if is_sqlite:
            event.listen(self.engine, "connect", _enable_wal)
        _metadata.create_all(self.engine)

    def _fetch(self, table: Table, *criteria):
        with self.engine.connect() as conn:
            return conn.execute(table.select().where(*criteria)).fetchone()

    def _deactivate(self, table: Table, row_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(table.update().where(table.c.id == row_id).values(is_active=0))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            return bool(conn.execute(select(func.count()).select_from(users_table)).scalar())

    def _insert_user(self, conn: Connection, user: User) -> int:
        result = conn.execute(
            users_table.insert().values(
                username=user.username,
                hashed_password=user.hashed_password,
                role=user.role,
                created_at=now_iso(),
                is_active=int(user.is_active),
            )
        )
        return result.inserted_primary_key[0]

    def create_user(self, user: User) -> int:
        """Insert a user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the username is taken.
        """
        with self.engine.begin() as conn:
            return self._insert_user(conn, user)

    def create_user_with_key(self, user: User, key_name: str) -> tuple[int, int, str]:
        """Insert a user and its first API key atomically.

        Returns (user_id, key_id, raw_key). The raw key is not stored and
        must be handed out now.
        """
        with self.engine.begin() as conn:
            user_id = self._insert_user(conn, user)
            key_id, raw_key = self._insert_key(conn, user_id, key_name)
        return user_id, key_id, raw_key

    def create_service_user(self, integration_id: int, integration_name: str) -> tuple[int, int, str]:
        """Create the identity an integration's items are owned by, plus its key."""
        service_user = User(username=f"integration-{integration_id}", role=ROLE_INTEGRATION)
        return self.create_user_with_key(service_user, f"{integration_name} sync key")

    def get_by_username(self, username: str) -> User | None:
        row = self._fetch(users_table, users_table.c.username == username)
        return _to_entity(User, row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        row = self._fetch(users_table, users_table.c.id == user_id)
        return _to_entity(User, row) if row is not None else None

    def deactivate_user(self, user_id: int) -> bool:
        return self._deactivate(users_table, user_id)

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    def _insert_key(self, conn: Connection, user_id: int, name: str) -> tuple[int, str]:
        raw_key = generate_api_key()
        result = conn.execute(
            api_keys_table.insert().values(
                user_id=user_id,
                name=name[:100],
                key_hash=hash_api_key(raw_key),
                key_prefix=raw_key[:_KEY_PREFIX_LEN],
                created_at=now_iso(),
                is_active=1,
            )
        )
        return result.inserted_primary_key[0], raw_key

    def issue_api_key(self, user_id: int, name: str) -> tuple[int, str]:
        """Generate and store a new key for an existing user. Returns (key_id, raw_key)."""
        with self.engine.begin() as conn:
            return self._insert_key(conn, user_id, name)

    def get_api_key_by_hash(self, key_hash: str) -> ApiKey | None:
        """Active key with this HMAC hash, or None."""
        row = self._fetch(api_keys_table, api_keys_table.c.key_hash == key_hash, api_keys_table.c.is_active == 1)
        return _to_entity(ApiKey, row) if row is not None else None

    def touch_api_key(self, key_id: int) -> None:
        with self.engine.begin() as conn:
            conn.execute(api_keys_table.update().where(api_keys_table.c.id == key_id).values(last_used=now_iso()))

    def revoke_api_key(self, key_id: int) -> bool:
        """Deactivate a key. Returns False if key_id was not found."""
        return self._deactivate(api_keys_table, key_id)

    def close(self) -> None:
        self.engine.dispose()
