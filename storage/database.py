"""
storage/database.py -- SQLAlchemy Core persistence for the HRBAC engine.

Uses SQLAlchemy Core (not ORM) so the dataclasses in core/models.py stay the
authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Pattern: Table Gateway. SqlTable wraps one table behind four primitives --
find_by / insert / update_by_id / delete_by_id -- and speaks plain dicts.
hrbac/ services build on those primitives only and never touch SQL, which
keeps them testable against any object with the same four methods.

Security: all queries use bound parameters. Column names are checked against
the table definition before any statement is built.

Integrity: hierarchy cascades are a storage concern. parent_id and
user_scopes.scope_id are ON DELETE CASCADE foreign keys, and the composite
primary key on hrbac_user_scopes is the unique constraint that makes
concurrent assign() calls safe. SQLite only enforces foreign keys with
PRAGMA foreign_keys=ON, which is set on every new connection.

Usage:
    db = Database()                                   # settings.database_url
    db = Database("postgresql://user:pw@host/db")
    rows = db.scopes.find_by({"parent_id": None})
    db.user_scopes.delete_by_id({"user_id": "u1", "scope_id": "s1"})
    db.close()

Layer rule: imports core/ only; never hrbac/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Any, Optional

from sqlalchemy import (
    Column,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine

from core.config import get_settings

logger = logging.getLogger("hrbac.storage")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()


def _new_id() -> str:
    return str(uuid.uuid4())


_scopes = Table(
    "hrbac_scopes",
    metadata,
    Column("id", String(36), primary_key=True, default=_new_id),
    Column("name", String(255), nullable=False),
    Column("level", String(100), nullable=False),  # free-text display tag
    Column("parent_id", String(36), ForeignKey("hrbac_scopes.id", ondelete="CASCADE"), index=True),
    Column("logo_url", String(500)),
    Column("primary_color", String(7)),  # #RRGGBB
    Column("secondary_color", String(7)),
    Column("tagline", String(200)),
    Column("created_at", String(32), nullable=False),
    Column("changed_at", String(32), nullable=False),
)

_user_scopes = Table(
    "hrbac_user_scopes",
    metadata,
    Column("user_id", String(64), primary_key=True),
    Column(
        "scope_id",
        String(36),
        ForeignKey("hrbac_scopes.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    ),
    Column("root_scope_id", String(36), nullable=False),
    Column("role_id", String(36), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("changed_at", String(32), nullable=False),
)

_roles = Table(
    "hrbac_roles",
    metadata,
    Column("id", String(36), primary_key=True, default=_new_id),
    Column("role_name", String(100), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Column("changed_at", String(32), nullable=False),
)

_permissions = Table(
    "hrbac_permissions",
    metadata,
    Column("id", String(36), primary_key=True, default=_new_id),
    Column("permission_name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
    Column("changed_at", String(32), nullable=False),
)

_role_permissions = Table(
    "hrbac_role_permissions",
    metadata,
    Column("role_id", String(36), ForeignKey("hrbac_roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(36), ForeignKey("hrbac_permissions.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", String(32), nullable=False),
    Column("changed_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _sqlite_pragmas(wal: bool, foreign_keys: bool):
    """Build a connect listener applying per-connection PRAGMAs.

    SQLite PRAGMAs are not inherited by new connections from the pool, so
    they are set every time the pool opens one.
    """

    def _on_connect(dbapi_conn, connection_record) -> None:
        if wal:
            dbapi_conn.execute("PRAGMA journal_mode=WAL")
        if foreign_keys:
            dbapi_conn.execute("PRAGMA foreign_keys=ON")

    return _on_connect


# ---------------------------------------------------------------------------
# Table gateway
# ---------------------------------------------------------------------------


class SqlTable:
    """Exact-match CRUD over a single table, rows as dicts.

    Keys for update_by_id / delete_by_id are a scalar for single-column
    primary keys, or a mapping of every primary key column for composite
    keys (hrbac_user_scopes, hrbac_role_permissions).

    Unknown column names raise ValueError -- that is a programming error, not
    a runtime condition. Database errors propagate unchanged; callers decide
    how to report them.
    """

    def __init__(self, engine: Engine, table: Table) -> None:
        self.engine = engine
        self.table = table
        self.name = table.name
        self.primary_key: tuple[str, ...] = tuple(col.name for col in table.primary_key.columns)
        # Creation order, so "first assignment" means the same thing on every backend.
        order = [table.c.created_at] if "created_at" in table.c else []
        self._order_by = order + [table.c[name] for name in self.primary_key]

    def find_by(self, criteria: Optional[Mapping[str, Any]] = None) -> list[dict]:
        """Return rows whose columns equal every value in criteria.

        An empty or missing criteria returns every row. A None value matches
        SQL NULL (e.g. {"parent_id": None} finds root scopes). Rows come back
        oldest first.
        """
        criteria = dict(criteria or {})
        self._check_columns(criteria)
        stmt = self.table.select().order_by(*self._order_by)
        if criteria:
            stmt = stmt.where(self._where(criteria))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [dict(row._mapping) for row in rows]

    def insert(self, fields: Mapping[str, Any]) -> list[dict]:
        """Insert one row and return it as stored, defaults included.

        Raises sqlalchemy.exc.IntegrityError on primary key, unique, or
        foreign key violations.
        """
        self._check_columns(fields)
        with self.engine.connect() as conn:
            result = conn.execute(self.table.insert().values(**fields))
            conn.commit()
            key = dict(zip(self.primary_key, result.inserted_primary_key))
        return self.find_by(key)

    def update_by_id(self, key: Any, fields: Mapping[str, Any]) -> list[dict]:
        """Update the row identified by key. Returns [] when no row matched."""
        self._check_columns(fields)
        criteria = self._key_criteria(key)
        with self.engine.connect() as conn:
            result = conn.execute(self.table.update().where(self._where(criteria)).values(**fields))
            conn.commit()
        if result.rowcount == 0:
            return []
        # Primary key columns may themselves have been updated.
        return self.find_by({col: fields.get(col, value) for col, value in criteria.items()})

    def delete_by_id(self, key: Any) -> None:
        criteria = self._key_criteria(key)
        with self.engine.connect() as conn:
            conn.execute(self.table.delete().where(self._where(criteria)))
            conn.commit()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_columns(self, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - set(self.table.c.keys())
        if unknown:
            raise ValueError(f"Unknown columns for {self.name}: {sorted(unknown)!r}")

    def _key_criteria(self, key: Any) -> dict:
        if isinstance(key, Mapping):
            missing = set(self.primary_key) - set(key)
            if missing:
                raise ValueError(f"Key for {self.name} is missing {sorted(missing)!r}")
            return {col: key[col] for col in self.primary_key}
        if len(self.primary_key) != 1:
            raise ValueError(f"{self.name} has a composite primary key {self.primary_key!r}; pass a mapping")
        return {self.primary_key[0]: key}

    def _where(self, criteria: Mapping[str, Any]):
        clauses = [
            self.table.c[name].is_(None) if value is None else self.table.c[name] == value
            for name, value in criteria.items()
        ]
        return and_(*clauses)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Owns the engine and one SqlTable per HRBAC table.

    Arguments left as None fall back to Settings (HRBAC_DATABASE_URL,
    HRBAC_SQLITE_WAL, HRBAC_ENFORCE_FOREIGN_KEYS). Tables are created on
    construction; create_all only adds missing tables, so this is safe on
    every startup.
    """

    def __init__(
        self,
        db_url: Optional[str] = None,
        *,
        sqlite_wal: Optional[bool] = None,
        enforce_foreign_keys: Optional[bool] = None,
    ) -> None:
        settings = get_settings()
        self.db_url = db_url or settings.database_url
        wal = settings.sqlite_wal if sqlite_wal is None else sqlite_wal
        foreign_keys = settings.enforce_foreign_keys if enforce_foreign_keys is None else enforce_foreign_keys

        connect_args: dict = {}
        is_sqlite = self.db_url.startswith("sqlite")
        if is_sqlite:
            # The same connection may be used from threads managed by the
            # host application's server.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(self.db_url, connect_args=connect_args)
        if is_sqlite:
            event.listen(self.engine, "connect", _sqlite_pragmas(wal, foreign_keys))
        metadata.create_all(self.engine)

        self._tables = {name: SqlTable(self.engine, table) for name, table in metadata.tables.items()}
        self.scopes = self._tables[_scopes.name]
        self.user_scopes = self._tables[_user_scopes.name]
        self.roles = self._tables[_roles.name]
        self.permissions = self._tables[_permissions.name]
        self.role_permissions = self._tables[_role_permissions.name]
        logger.debug("Database ready (%s, foreign_keys=%s)", self.engine.url.render_as_string(), foreign_keys)

    def table(self, name: str) -> SqlTable:
        """Look up a table gateway by table name (e.g. "hrbac_scopes")."""
        try:
            return self._tables[name]
        except KeyError:
            raise ValueError(f"Unknown table: {name!r}") from None

    def close(self) -> None:
        self.engine.dispose()
