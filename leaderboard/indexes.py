from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import tzinfo

from leaderboard.headers import normalize_header, require_headers, resolve_columns
from leaderboard.utils import parse_time_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Participant:
    epc: str
    bib: str
    name: str
    gender: str
    category: str
    source_category_key: str


@dataclass(frozen=True)
class ScanRecord:
    epc: str
    ms: int | None
    raw: str


@dataclass
class RosterIndex:
    participants: dict[str, Participant] = field(default_factory=dict)
    skipped_rows: int = 0

    def __len__(self) -> int:
        return len(self.participants)

    def get(self, epc: str) -> Participant | None:
        return self.participants.get(epc)


@dataclass
class ScanIndex:
    kind: str
    records: dict[str, ScanRecord] = field(default_factory=dict)
    skipped_rows: int = 0
    unparsed_rows: int = 0

    def __len__(self) -> int:
        return len(self.records)

    def get(self, epc: str) -> ScanRecord | None:
        return self.records.get(epc)


@dataclass
class CheckpointIndex:
    records: dict[str, list[ScanRecord]] = field(default_factory=dict)
    skipped_rows: int = 0
    unparsed_rows: int = 0

    def get(self, epc: str) -> list[ScanRecord]:
        return self.records.get(epc, [])


@dataclass
class ScanSet:
    finish: ScanIndex
    start: ScanIndex = field(default_factory=lambda: ScanIndex("start"))
    checkpoint: CheckpointIndex = field(default_factory=CheckpointIndex)

    @property
    def skipped_rows(self) -> int:
        return self.finish.skipped_rows + self.start.skipped_rows + self.checkpoint.skipped_rows

    @property
    def unparsed_rows(self) -> int:
        return self.finish.unparsed_rows + self.start.unparsed_rows + self.checkpoint.unparsed_rows


def _cell(row: list[str], columns: dict[str, int], name: str) -> str:
    index = columns.get(name)
    if index is None or index >= len(row):
        return ""
    return (row[index] or "").strip()


def _header_row(grid: list[list[str]]) -> list[str]:
    return list(grid[0]) if grid else []


def build_roster_index(
    grid: list[list[str]], categories: list[str] | None = None
) -> RosterIndex:
    """Index the master roster by EPC.

    Rows without an EPC cannot be joined and are skipped. A repeated EPC
    overwrites the earlier row (last occurrence wins).
    """
    headers = _header_row(grid)
    require_headers(headers, "master")
    columns = resolve_columns(headers)
    declared = {normalize_header(category): category for category in categories or []}

    index = RosterIndex()
    for row in grid[1:]:
        epc = _cell(row, columns, "epc")
        if not epc:
            if any(row):
                index.skipped_rows += 1
            continue
        label = _cell(row, columns, "category")
        key = declared.get(normalize_header(label), label)
        index.participants[epc] = Participant(
            epc=epc,
            bib=_cell(row, columns, "bib"),
            name=_cell(row, columns, "name"),
            gender=_cell(row, columns, "gender"),
            category=label or key,
            source_category_key=key,
        )
    logger.debug(
        "Roster indexed: %d participants, %d rows skipped", len(index), index.skipped_rows
    )
    return index


def _scan_rows(
    grid: list[list[str]], kind: str, tz: str | tzinfo
) -> Iterator[ScanRecord | None]:
    """Yield one record per non-blank row; ``None`` marks a row without an EPC."""
    headers = _header_row(grid)
    require_headers(headers, kind)
    columns = resolve_columns(headers)
    for row in grid[1:]:
        if not any(row):
            continue
        epc = _cell(row, columns, "epc")
        if not epc:
            yield None
            continue
        value = parse_time_value(_cell(row, columns, "times"), tz)
        yield ScanRecord(epc=epc, ms=value.ms, raw=value.raw)


def build_scan_index(grid: list[list[str]], kind: str, tz: str | tzinfo = "UTC") -> ScanIndex:
    """Index a start or finish scan file by EPC.

    Only the first scan per EPC is kept, so a runner read twice at the finish
    keeps the earlier row regardless of which timestamp is smaller.
    """
    if kind not in ("start", "finish"):
        raise ValueError(f"Scan index kind must be start or finish, got '{kind}'")
    index = ScanIndex(kind)
    for record in _scan_rows(grid, kind, tz):
        if record is None:
            index.skipped_rows += 1
            continue
        if record.ms is None:
            index.unparsed_rows += 1
        if record.epc in index.records:
            continue
        index.records[record.epc] = record
    logger.debug(
        "%s scans indexed: %d EPCs, %d rows skipped, %d unparsed",
        kind,
        len(index),
        index.skipped_rows,
        index.unparsed_rows,
    )
    return index


def build_checkpoint_index(grid: list[list[str]], tz: str | tzinfo = "UTC") -> CheckpointIndex:
    index = CheckpointIndex()
    for record in _scan_rows(grid, "checkpoint", tz):
        if record is None:
            index.skipped_rows += 1
            continue
        if record.ms is None:
            index.unparsed_rows += 1
        index.records.setdefault(record.epc, []).append(record)
    return index


def build_scan_set(
    finish_grid: list[list[str]],
    start_grid: list[list[str]] | None = None,
    checkpoint_grid: list[list[str]] | None = None,
    tz: str | tzinfo = "UTC",
) -> ScanSet:
    scans = ScanSet(finish=build_scan_index(finish_grid, "finish", tz))
    if start_grid:
        scans.start = build_scan_index(start_grid, "start", tz)
    if checkpoint_grid:
        scans.checkpoint = build_checkpoint_index(checkpoint_grid, tz)
    return scans
