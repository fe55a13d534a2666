"""
market/models.py -- Domain dataclasses for the Autozonex market data.

These are pure data containers with zero logic. Query and mutation rules
(invalid-symbol filter, team-pick toggling, config upserts) live in
market/store.py.

Separation of concerns: these dataclasses are the market layer's domain
truth, just as auth/models.py is the account layer's. Neither imports the
other.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

ACTIVE_STATUS = "active"
PICK_TYPES = ("zone", "trade", "alert")


@dataclass
class Symbol:
    """A tradable instrument.

    status is free text. Only the literal "active" counts as valid; anything
    else, including no status at all, is reported as invalid.

    id is None before the record is written to the database.
    """

    symbol: str
    id: Optional[int] = None
    company_name: Optional[str] = None
    ltp: Optional[float] = None
    day_low: Optional[float] = None
    sectors: list[str] = field(default_factory=list)
    watchlists: list[str] = field(default_factory=list)
    status: Optional[str] = None
    is_liquid: bool = False
    last_updated: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class TeamPick:
    """An item (zone, trade or alert) highlighted by the team.

    (item_id, type) is unique. added_by is the curating user's id.
    """

    item_id: str
    type: str  # "zone" | "trade" | "alert"
    added_by: str
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class ConfigEntry:
    """A key/value setting. value is any JSON value except null."""

    key: str
    value: Any
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
