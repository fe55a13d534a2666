"""
market/ingest.py -- CSV parser for bulk symbol import.

Expected header: symbol, company_name, status, is_liquid, sectors, watchlists.
Header names are matched case-insensitively and in any order; only symbol is
required and extra columns are ignored. Rows with an empty symbol are skipped.

Cell rules:
  status      -- blank means "active"
  is_liquid   -- "true" (any case) is liquid, any other value is not; a blank
                 cell leaves the stored flag alone
  sectors,
  watchlists  -- pipe separated ("IT|Large Cap"); a blank cell leaves the
                 stored list alone

Pipeline:
  upload -> parse_symbols_csv() -> list[SymbolRow]
  -> SymbolRow.fields() -> MarketStore.upsert_symbols()
"""

import csv
import io
from dataclasses import dataclass, field
from typing import Any, Optional

from market.models import ACTIVE_STATUS


@dataclass
class SymbolRow:
    """One parsed CSV row. None means the column was absent or blank."""

    symbol: str
    company_name: Optional[str] = None
    status: str = ACTIVE_STATUS
    is_liquid: Optional[bool] = None
    sectors: Optional[list[str]] = None
    watchlists: Optional[list[str]] = None
    raw: dict = field(default_factory=dict)

    def fields(self) -> dict[str, Any]:
        """The columns to write for this row, always including symbol and status."""
        values: dict[str, Any] = {"symbol": self.symbol, "status": self.status}
        for name in ("company_name", "is_liquid", "sectors", "watchlists"):
            value = getattr(self, name)
            if value is not None:
                values[name] = value
        return values


def _cell(row: dict, name: str) -> str:
    return (row.get(name) or "").strip()


def _split_names(cell: str) -> list[str]:
    return [part.strip() for part in cell.split("|") if part.strip()]


def parse_symbols_csv(content: str) -> list[SymbolRow]:
    """Parse a symbol CSV into SymbolRow records, in file order."""
    reader = csv.DictReader(io.StringIO(content))
    if reader.fieldnames is None:
        return []
    reader.fieldnames = [(name or "").strip().lower() for name in reader.fieldnames]

    rows: list[SymbolRow] = []
    for row in reader:
        ticker = _cell(row, "symbol")
        if not ticker:
            continue
        liquid = _cell(row, "is_liquid")
        sectors = _cell(row, "sectors")
        watchlists = _cell(row, "watchlists")
        rows.append(
            SymbolRow(
                symbol=ticker,
                company_name=_cell(row, "company_name") or None,
                status=_cell(row, "status") or ACTIVE_STATUS,
                is_liquid=liquid.lower() == "true" if liquid else None,
                sectors=_split_names(sectors) if sectors else None,
                watchlists=_split_names(watchlists) if watchlists else None,
                raw=dict(row),
            )
        )
    return rows
