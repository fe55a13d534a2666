"""
market/store.py -- SQLAlchemy-backed persistence for symbols, team picks and config.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in market/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a DATABASE_URL change, not a rewrite.

Pattern: Repository + Data Mapper. MarketStore is the repository (one clean
interface per entity). The _row_to_* functions are the mappers. Route
handlers never touch SQL directly.

Document-style semantics on relational tables:
  - list fields (sectors, watchlists) and free-form config values are JSON
    serialized into TEXT columns
  - "status is not active" also matches rows with no status at all
  - add_* bulk actions never duplicate a name; remove_* removes every copy

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = MarketStore()                               # DATABASE_URL default
    store = MarketStore("postgresql://user:pw@host/db")
    sid = store.create_symbol(Symbol(symbol="INFY"))
    invalid = store.list_invalid_symbols()
    created, updated = store.upsert_symbols([{"symbol": "TCS", "is_liquid": True}])
    store.close()
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

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
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.config import get_settings
from core.database import dispose_engine, get_engine
from market.models import ACTIVE_STATUS, ConfigEntry, Symbol, TeamPick

logger = logging.getLogger("autozonex.market.store")

# Fields a caller may change on an existing symbol.
SYMBOL_MUTABLE_FIELDS = frozenset(
    {"symbol", "company_name", "ltp", "day_low", "sectors", "watchlists", "status", "is_liquid", "last_updated"}
)
_LIST_FIELDS = ("sectors", "watchlists")

BULK_ACTIONS = (
    "update_status",
    "update_liquidity",
    "add_sector",
    "remove_sector",
    "add_watchlist",
    "remove_watchlist",
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_symbols = Table(
    "symbols",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("symbol", String(64), nullable=False, unique=True),
    Column("company_name", String(255), index=True),
    Column("ltp", Float),
    Column("day_low", Float),
    Column("sectors", Text, nullable=False, server_default="[]"),  # JSON array serialized as text
    Column("watchlists", Text, nullable=False, server_default="[]"),  # JSON array, like sectors
    Column("status", String(50)),  # NULL = never set
    Column("is_liquid", Boolean, nullable=False, server_default="0"),
    Column("last_updated", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_team_picks = Table(
    "team_picks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("item_id", String(64), nullable=False),
    Column("type", String(20), nullable=False, index=True),
    Column("added_by", String(64), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("item_id", "type", name="uq_team_pick_item_type"),
)

# Table name is fixed to "config" (singular); other tooling reads it directly.
_config = Table(
    "config",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("key", String(255), nullable=False, unique=True),
    Column("value", Text, nullable=False),  # any JSON value, serialized
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _add_to_set(items: list, value: Any) -> list:
    return items if value in items else [*items, value]


def _pull(items: list, value: Any) -> list:
    return [item for item in items if item != value]


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MarketStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        self.db_url = db_url or get_settings().database_url
        self.engine: Engine = get_engine(self.db_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Symbols
    # ------------------------------------------------------------------

    def create_symbol(self, symbol: Symbol) -> int:
        """Insert a symbol and return its id.

        Raises sqlalchemy.exc.IntegrityError if the ticker already exists.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _symbols.insert().values(
                    symbol=symbol.symbol,
                    company_name=symbol.company_name,
                    ltp=symbol.ltp,
                    day_low=symbol.day_low,
                    sectors=json.dumps(symbol.sectors),
                    watchlists=json.dumps(symbol.watchlists),
                    status=symbol.status,
                    is_liquid=symbol.is_liquid,
                    last_updated=symbol.last_updated,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_symbol(self, symbol_id: int) -> Optional[Symbol]:
        with self.engine.connect() as conn:
            row = conn.execute(_symbols.select().where(_symbols.c.id == symbol_id)).fetchone()
        return _row_to_symbol(row) if row is not None else None

    def get_symbol_by_ticker(self, ticker: str) -> Optional[Symbol]:
        with self.engine.connect() as conn:
            row = conn.execute(_symbols.select().where(_symbols.c.symbol == ticker)).fetchone()
        return _row_to_symbol(row) if row is not None else None

    def list_symbols(self) -> list[Symbol]:
        """Return every symbol ordered by ticker."""
        with self.engine.connect() as conn:
            rows = conn.execute(_symbols.select().order_by(_symbols.c.symbol)).fetchall()
        return [_row_to_symbol(r) for r in rows]

    def search_symbols(
        self,
        search: str = "",
        is_liquid: Optional[bool] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Symbol], int]:
        """Return one page of symbols and the total match count.

        search is a case-insensitive substring match on ticker or company
        name. Wildcard characters in search are matched literally.
        """
        conditions = []
        if search:
            conditions.append(
                or_(
                    _symbols.c.symbol.icontains(search, autoescape=True),
                    _symbols.c.company_name.icontains(search, autoescape=True),
                )
            )
        if is_liquid is not None:
            conditions.append(_symbols.c.is_liquid == is_liquid)
        if status:
            conditions.append(_symbols.c.status == status)

        page = max(1, page)
        limit = max(1, limit)
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_symbols).where(*conditions)).scalar() or 0
            rows = conn.execute(
                _symbols.select()
                .where(*conditions)
                .order_by(_symbols.c.symbol)
                .offset((page - 1) * limit)
                .limit(limit)
            ).fetchall()
        return [_row_to_symbol(r) for r in rows], total

    def list_invalid_symbols(self) -> list[Symbol]:
        """Return symbols whose status is anything but "active", including no status.

        SQL's != never matches NULL, so the missing-status case is an explicit
        IS NULL branch.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                _symbols.select()
                .where(or_(_symbols.c.status.is_(None), _symbols.c.status != ACTIVE_STATUS))
                .order_by(_symbols.c.symbol)
            ).fetchall()
        return [_row_to_symbol(r) for r in rows]

    def count_symbols(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_symbols)).scalar() or 0

    def update_symbol(self, symbol_id: int, **fields) -> Optional[Symbol]:
        """Apply a partial update and return the updated symbol, or None if not found.

        Only keys in SYMBOL_MUTABLE_FIELDS are accepted. Unknown keys raise
        ValueError rather than being silently ignored.

        Raises sqlalchemy.exc.IntegrityError when renaming onto an existing ticker.
        """
        unknown = set(fields) - SYMBOL_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown symbol fields: {sorted(unknown)!r}")
        for name in _LIST_FIELDS:
            if name in fields:
                fields[name] = json.dumps(list(fields[name] or []))
        if fields:
            fields["updated_at"] = _now_iso()
            with self.engine.connect() as conn:
                conn.execute(_symbols.update().where(_symbols.c.id == symbol_id).values(**fields))
                conn.commit()
        return self.get_symbol(symbol_id)

    def delete_symbol(self, symbol_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_symbols.delete().where(_symbols.c.id == symbol_id))
            conn.commit()
        return result.rowcount > 0

    def delete_symbols(self, symbol_ids: list[int]) -> int:
        """Delete every symbol in symbol_ids. Unknown ids are skipped. Returns rows removed."""
        if not symbol_ids:
            return 0
        with self.engine.connect() as conn:
            result = conn.execute(_symbols.delete().where(_symbols.c.id.in_(symbol_ids)))
            conn.commit()
        return result.rowcount

    def bulk_update_symbols(self, symbol_ids: list[int], action: str, value: Any) -> int:
        """Apply one bulk action to every symbol in symbol_ids. Returns symbols touched.

        update_status / update_liquidity are a single UPDATE. The list actions
        read and rewrite each row inside one transaction.
        """
        if action not in BULK_ACTIONS:
            raise ValueError(f"Unknown bulk action: {action!r}")
        if not symbol_ids:
            return 0

        now = _now_iso()
        where = _symbols.c.id.in_(symbol_ids)

        if action in ("update_status", "update_liquidity"):
            column = "status" if action == "update_status" else "is_liquid"
            with self.engine.connect() as conn:
                result = conn.execute(_symbols.update().where(where).values({column: value, "updated_at": now}))
                conn.commit()
            return result.rowcount

        field_name = "sectors" if action.endswith("_sector") else "watchlists"
        apply = _add_to_set if action.startswith("add_") else _pull
        column = _symbols.c[field_name]
        touched = 0
        with self.engine.begin() as conn:
            rows = conn.execute(select(_symbols.c.id, column).where(where)).fetchall()
            for row in rows:
                current = json.loads(row[1]) if row[1] else []
                updated = apply(current, value)
                if updated != current:
                    conn.execute(
                        _symbols.update()
                        .where(_symbols.c.id == row[0])
                        .values({field_name: json.dumps(updated), "updated_at": now})
                    )
                touched += 1
        return touched

    def upsert_symbols(self, rows: list[dict[str, Any]]) -> tuple[int, int]:
        """Insert or update symbols keyed by ticker, all in one transaction.

        Each row holds "symbol" plus the columns to write. Columns a row omits
        keep their stored value on update and the column default on insert.
        A ticker repeated later in rows updates the earlier one.

        Returns (created, updated).
        """
        created = updated = 0
        now = _now_iso()
        with self.engine.begin() as conn:
            for row in rows:
                fields = dict(row)
                ticker = fields.pop("symbol")
                unknown = set(fields) - SYMBOL_MUTABLE_FIELDS
                if unknown:
                    raise ValueError(f"Unknown symbol fields: {sorted(unknown)!r}")
                for name in _LIST_FIELDS:
                    if name in fields:
                        fields[name] = json.dumps(list(fields[name] or []))
                existing = conn.execute(select(_symbols.c.id).where(_symbols.c.symbol == ticker)).fetchone()
                if existing is None:
                    conn.execute(_symbols.insert().values(symbol=ticker, created_at=now, updated_at=now, **fields))
                    created += 1
                else:
                    conn.execute(_symbols.update().where(_symbols.c.id == existing[0]).values(updated_at=now, **fields))
                    updated += 1
        return created, updated

    # ------------------------------------------------------------------
    # Team picks
    # ------------------------------------------------------------------

    def toggle_team_pick(self, item_id: str, pick_type: str, added_by: str) -> bool:
        """Flip the pick state of (item_id, pick_type). Returns True if it is now a pick."""
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(_team_picks.c.id).where((_team_picks.c.item_id == item_id) & (_team_picks.c.type == pick_type))
            ).fetchone()
            if existing is not None:
                conn.execute(_team_picks.delete().where(_team_picks.c.id == existing[0]))
                return False
            now = _now_iso()
            conn.execute(
                _team_picks.insert().values(
                    item_id=item_id,
                    type=pick_type,
                    added_by=added_by,
                    created_at=now,
                    updated_at=now,
                )
            )
            return True

    def list_team_picks(self, pick_type: Optional[str] = None) -> list[TeamPick]:
        """Return picks newest first, optionally filtered by type."""
        query = _team_picks.select().order_by(_team_picks.c.id.desc())
        if pick_type:
            query = query.where(_team_picks.c.type == pick_type)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_team_pick(r) for r in rows]

    def delete_team_pick_by_item(self, item_id: str) -> bool:
        """Delete the oldest pick with this item_id, whatever its type.

        Returns False when nothing matched. Callers do not treat that as an error.
        """
        with self.engine.begin() as conn:
            row = conn.execute(
                select(_team_picks.c.id).where(_team_picks.c.item_id == item_id).order_by(_team_picks.c.id).limit(1)
            ).fetchone()
            if row is None:
                return False
            conn.execute(_team_picks.delete().where(_team_picks.c.id == row[0]))
        return True

    def count_team_picks(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_team_picks)).scalar() or 0

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def list_configs(self) -> list[ConfigEntry]:
        with self.engine.connect() as conn:
            rows = conn.execute(_config.select().order_by(_config.c.key)).fetchall()
        return [_row_to_config(r) for r in rows]

    def get_config(self, key: str) -> Optional[ConfigEntry]:
        with self.engine.connect() as conn:
            row = conn.execute(_config.select().where(_config.c.key == key)).fetchone()
        return _row_to_config(row) if row is not None else None

    def upsert_config(self, key: str, value: Any) -> ConfigEntry:
        """Create or replace the value stored under key and return the entry.

        Raises ValueError if value is None -- a config entry always holds a value.
        """
        if value is None:
            raise ValueError("Config value must not be null")
        serialized = json.dumps(value)
        now = _now_iso()
        try:
            self._write_config(key, serialized, now)
        except IntegrityError:
            # A concurrent insert won the UNIQUE(key) race; the row exists now.
            logger.info("Config insert race on %r, retrying as update", key)
            self._write_config(key, serialized, now)
        entry = self.get_config(key)
        if entry is None:
            raise RuntimeError(f"Config {key!r} missing after write")
        return entry

    def _write_config(self, key: str, serialized: str, now: str) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                _config.update().where(_config.c.key == key).values(value=serialized, updated_at=now)
            )
            if result.rowcount == 0:
                conn.execute(_config.insert().values(key=key, value=serialized, created_at=now, updated_at=now))

    def delete_config(self, key: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_config.delete().where(_config.c.key == key))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        dispose_engine(self.db_url)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_symbol(row) -> Symbol:
    return Symbol(
        id=row.id,
        symbol=row.symbol,
        company_name=row.company_name,
        ltp=row.ltp,
        day_low=row.day_low,
        sectors=json.loads(row.sectors) if row.sectors else [],
        watchlists=json.loads(row.watchlists) if row.watchlists else [],
        status=row.status,
        is_liquid=bool(row.is_liquid),
        last_updated=row.last_updated,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_team_pick(row) -> TeamPick:
    return TeamPick(
        id=row.id,
        item_id=row.item_id,
        type=row.type,
        added_by=row.added_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_config(row) -> ConfigEntry:
    return ConfigEntry(
        id=row.id,
        key=row.key,
        value=json.loads(row.value),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
