"""
posture/store.py -- SQLAlchemy-backed persistence for ThreatMap entities.

Uses SQLAlchemy Core (not ORM) so the dataclasses in core/models.py remain
the authoritative domain representation. One repository covers all five
record kinds; callers name the kind ("risk", "threat", "vulnerability",
"asset", "alert") instead of calling a method per table.

Pattern: Repository + Data Mapper. PostureStore is the repository. The
_row_to_* functions translate raw DB rows into domain dataclasses. Mutation
rules (score recompute, coercion, validation) live in posture/risks.py and
friends, not here: the store writes what it is given.

Filters: keyword arguments to find()/count() name columns. A list, tuple or
set value means set-membership (IN); None means IS NULL; anything else is
equality.

Every SQLAlchemyError is re-raised as core.errors.RepositoryError with the
original kept as __cause__.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = PostureStore("sqlite:///threatmap.db")
    risk = store.create("risk", {"user_id": 1, "name": "Laptop theft", ...})
    severe = store.find("risk", user_id=1, level=["critical", "high"])
    store.update("risk", risk.id, {"status": "closed"})
    store.close()
"""

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import RepositoryError
from core.models import Alert, Asset, Risk, Threat, Vulnerability

logger = logging.getLogger("threatmap.posture.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_risks = Table(
    "risks",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("name", String(200), nullable=False),
    Column("description", Text),
    Column("category", String(30), nullable=False),
    Column("probability", Float),
    Column("impact", Integer),
    Column("score", Float),
    Column("level", String(10)),
    Column("status", String(20), nullable=False, server_default="identified"),
    Column("treatment_strategy", String(20)),
    Column("treatment_plan", Text),
    Column("residual_probability", Float),
    Column("residual_impact", Integer),
    Column("residual_score", Float),
    Column("threat_id", String(36)),
    Column("vulnerability_id", String(36)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_threats = Table(
    "threats",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("name", String(200), nullable=False),
    Column("description", Text),
    Column("type", String(30), nullable=False),
    Column("severity", String(10), nullable=False),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("source", String(255)),
    Column("probability", Float),
    Column("impact", Integer),
    Column("risk_score", Float),
    Column("mitigation_strategy", Text),
    Column("detected_at", String(32), nullable=False),
    Column("mitigated_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_vulnerabilities = Table(
    "vulnerabilities",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("name", String(200), nullable=False),
    Column("description", Text),
    Column("cve_id", String(30)),
    Column("cvss_score", Float),
    Column("severity", String(10), nullable=False),
    Column("status", String(20), nullable=False, server_default="open"),
    Column("affected_systems", Text),
    Column("remediation", Text),
    Column("discovered_at", String(32), nullable=False),
    Column("patched_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_assets = Table(
    "assets",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("name", String(200), nullable=False),
    Column("type", String(30), nullable=False),
    Column("description", Text),
    Column("ip_address", String(45)),
    Column("hostname", String(255)),
    Column("os", String(100)),
    Column("location", String(255)),
    Column("criticality", String(10), nullable=False, server_default="medium"),
    Column("is_public_facing", Boolean, nullable=False, default=False),
    Column("ports_open", Text),  # JSON array serialized as text
    Column("services", Text),  # JSON array
    Column("status", String(20), nullable=False, server_default="active"),
    Column("exposure_level", String(20), nullable=False, server_default="internal"),
    Column("position_x", Float),
    Column("position_y", Float),
    Column("connections", Text),  # JSON array of asset ids
    Column("tags", Text),  # JSON array
    Column("owner", String(255)),
    Column("notes", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_alerts = Table(
    "alerts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("title", String(255), nullable=False),
    Column("message", Text, nullable=False),
    Column("type", String(20), nullable=False, server_default="system"),
    Column("severity", String(10), nullable=False, server_default="info"),
    Column("status", String(20), nullable=False, server_default="new"),
    Column("is_read", Boolean, nullable=False, default=False),
    Column("email_sent", Boolean, nullable=False, default=False),
    Column("related_entity_type", String(20), nullable=False),
    Column("related_entity_id", String(36), nullable=False),
    Column("acknowledged_by", Integer),
    Column("acknowledged_at", String(32)),
    Column("resolved_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("user_id", "related_entity_type", "related_entity_id", name="uq_alert_entity"),
)

_TABLES: dict[str, Table] = {
    "risk": _risks,
    "threat": _threats,
    "vulnerability": _vulnerabilities,
    "asset": _assets,
    "alert": _alerts,
}

_JSON_COLUMNS: dict[str, tuple[str, ...]] = {
    "asset": ("ports_open", "services", "connections", "tags"),
}

# Columns that search= matches against (case-insensitive substring).
_SEARCH_COLUMNS = ("name", "description")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _table_for(kind: str) -> Table:
    try:
        return _TABLES[kind]
    except KeyError:
        raise ValueError(f"Unknown record kind: {kind!r}") from None


def _column(table: Table, name: str):
    if name not in table.c:
        raise ValueError(f"Unknown column {name!r} on {table.name}")
    return table.c[name]


def _serialize(kind: str, table: Table, fields: dict) -> dict:
    """Validate column names and JSON-encode list columns."""
    values: dict[str, Any] = {}
    json_columns = _JSON_COLUMNS.get(kind, ())
    for name, value in fields.items():
        _column(table, name)
        if name in json_columns:
            value = json.dumps(list(value or []))
        values[name] = value
    return values


def _where(table: Table, user_id: Optional[int], filters: dict, search: Optional[str] = None) -> list:
    clauses = []
    if user_id is not None:
        clauses.append(table.c.user_id == user_id)
    for name, value in filters.items():
        col = _column(table, name)
        if isinstance(value, (list, tuple, set, frozenset)):
            clauses.append(col.in_(list(value)))
        elif value is None:
            clauses.append(col.is_(None))
        else:
            clauses.append(col == value)
    if search:
        pattern = f"%{search}%"
        clauses.append(or_(*(table.c[name].ilike(pattern) for name in _SEARCH_COLUMNS if name in table.c)))
    return clauses


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


class PostureStore:
    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a threadpool, so a pooled SQLite
            # connection may be used from a thread other than its creator.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    @contextmanager
    def _connect(self, action: str) -> Iterator:
        try:
            with self.engine.connect() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.error("Storage failure during %s: %s", action, exc)
            raise RepositoryError(f"Storage failure during {action}") from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(
        self,
        kind: str,
        user_id: Optional[int] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        search: Optional[str] = None,
        **filters,
    ) -> list:
        """Return all records of `kind` matching the filters.

        Default ordering is created_at, newest last (descending=True flips it).
        """
        table = _table_for(kind)
        col = _column(table, order_by or "created_at")
        stmt = table.select().where(*_where(table, user_id, filters, search))
        stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        with self._connect(f"find {kind}") as conn:
            rows = conn.execute(stmt).fetchall()
        return [_MAPPERS[kind](r) for r in rows]

    def find_one(self, kind: str, record_id: str, user_id: Optional[int] = None):
        """Fetch one record by id. Returns None if absent or owned by another user."""
        table = _table_for(kind)
        stmt = table.select().where(table.c.id == record_id, *_where(table, user_id, {}))
        with self._connect(f"find_one {kind}") as conn:
            row = conn.execute(stmt).fetchone()
        return _MAPPERS[kind](row) if row is not None else None

    def count(self, kind: str, user_id: Optional[int] = None, search: Optional[str] = None, **filters) -> int:
        table = _table_for(kind)
        stmt = select(func.count()).select_from(table).where(*_where(table, user_id, filters, search))
        with self._connect(f"count {kind}") as conn:
            return conn.execute(stmt).scalar_one()

    def find_alert(self, user_id: int, entity_type: str, entity_id: str) -> Optional[Alert]:
        """Look up the Alert row for one (user, entity type, entity id) key."""
        rows = self.find(
            "alert",
            user_id=user_id,
            related_entity_type=entity_type,
            related_entity_id=entity_id,
        )
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, kind: str, fields: dict):
        """Insert a record and return it as a dataclass.

        id, created_at and updated_at are assigned here; any values for them
        in `fields` are ignored.
        """
        table = _table_for(kind)
        now = _now_iso()
        fields = {k: v for k, v in fields.items() if k not in ("id", "created_at", "updated_at")}
        values = _serialize(kind, table, fields)
        values.update(id=str(uuid.uuid4()), created_at=now, updated_at=now)
        with self._connect(f"create {kind}") as conn:
            conn.execute(table.insert().values(**values))
            conn.commit()
        logger.debug("Created %s %s", kind, values["id"])
        return self.find_one(kind, values["id"])

    def update(self, kind: str, record_id: str, patch: dict):
        """Apply `patch` to one record and return the updated dataclass.

        Returns None if record_id was not found.
        """
        table = _table_for(kind)
        values = _serialize(kind, table, {k: v for k, v in patch.items() if k not in ("id", "created_at")})
        values["updated_at"] = _now_iso()
        with self._connect(f"update {kind}") as conn:
            result = conn.execute(table.update().where(table.c.id == record_id).values(**values))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.find_one(kind, record_id)

    def delete(self, kind: str, record_id: str) -> bool:
        """Delete one record. Returns True if a row was removed."""
        table = _table_for(kind)
        with self._connect(f"delete {kind}") as conn:
            result = conn.execute(table.delete().where(table.c.id == record_id))
            conn.commit()
        return result.rowcount > 0

    def delete_many(self, kind: str, record_ids: list[str]) -> int:
        """Delete a batch of records by id in one statement. Returns the row count."""
        if not record_ids:
            return 0
        table = _table_for(kind)
        with self._connect(f"delete_many {kind}") as conn:
            result = conn.execute(table.delete().where(table.c.id.in_(list(record_ids))))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_risk(row) -> Risk:
    return Risk(**row._mapping)


def _row_to_threat(row) -> Threat:
    return Threat(**row._mapping)


def _row_to_vulnerability(row) -> Vulnerability:
    return Vulnerability(**row._mapping)


def _row_to_asset(row) -> Asset:
    data = dict(row._mapping)
    for name in _JSON_COLUMNS["asset"]:
        data[name] = json.loads(data[name]) if data[name] else []
    data["is_public_facing"] = bool(data["is_public_facing"])
    return Asset(**data)


def _row_to_alert(row) -> Alert:
    data = dict(row._mapping)
    data["is_read"] = bool(data["is_read"])
    data["email_sent"] = bool(data["email_sent"])
    return Alert(**data)


_MAPPERS = {
    "risk": _row_to_risk,
    "threat": _row_to_threat,
    "vulnerability": _row_to_vulnerability,
    "asset": _row_to_asset,
    "alert": _row_to_alert,
}
