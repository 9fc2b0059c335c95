"""Result computation and ranking.

``compute_results`` joins the roster against the finish/start scans and the
event's timing configuration, then ranks the rows overall, per gender and per
category. It is a pure function of its inputs: every call builds its rows and
rank tables from scratch and returns them, nothing is cached or shared.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace

from leaderboard.indexes import RosterIndex, ScanSet
from leaderboard.timing import TimingConfig, resolve_elapsed_ms
from leaderboard.utils import extract_time_of_day, format_duration

logger = logging.getLogger(__name__)

DNF = "DNF"
DSQ = "DSQ"

EXCLUDED_NO_FINISH = "no_finish"
EXCLUDED_FINISH_UNPARSED = "finish_unparsed"
EXCLUDED_MISSING_START = "missing_start"
EXCLUDED_NEGATIVE_ELAPSED = "negative_elapsed"


@dataclass(frozen=True)
class ResultRow:
    epc: str
    bib: str
    name: str
    gender: str
    category: str
    source_category_key: str
    finish_time_raw: str
    total_time_ms: int | None
    total_time_display: str
    rank: int | None = None
    start_source: str = ""

    @property
    def is_finisher(self) -> bool:
        return self.total_time_display not in (DNF, DSQ)


@dataclass(frozen=True)
class Exclusion:
    epc: str
    reason: str


@dataclass
class Diagnostics:
    exclusions: list[Exclusion] = field(default_factory=list)
    roster_skipped_rows: int = 0
    scan_skipped_rows: int = 0
    scan_unparsed_rows: int = 0

    @property
    def excluded_count(self) -> int:
        return len(self.exclusions)

    @property
    def excluded_reasons(self) -> dict[str, int]:
        return dict(Counter(exclusion.reason for exclusion in self.exclusions))


@dataclass
class RankIndex:
    finisher_rank_by_epc: dict[str, int] = field(default_factory=dict)
    gender_rank_by_epc: dict[str, int] = field(default_factory=dict)
    category_rank_by_epc: dict[str, int] = field(default_factory=dict)


@dataclass
class ResultSet:
    overall: list[ResultRow] = field(default_factory=list)
    by_category: dict[str, list[ResultRow]] = field(default_factory=dict)
    rank_index: RankIndex = field(default_factory=RankIndex)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    checkpoint_times: dict[str, list[str]] = field(default_factory=dict)

    def row_for(self, epc: str) -> ResultRow | None:
        for row in self.overall:
            if row.epc == epc:
                return row
        return None


@dataclass(frozen=True)
class ParticipantDetail:
    epc: str
    name: str
    bib: str
    gender: str
    category: str
    finish_time_raw: str
    total_time_display: str
    checkpoint_times: list[str]
    overall_rank: int | None
    gender_rank: int | None
    category_rank: int | None


def _display(config: TimingConfig, epc: str, total_ms: int) -> str:
    # DSQ is shown even when the cutoff is also breached
    if config.is_disqualified(epc):
        return DSQ
    if config.is_over_cutoff(total_ms):
        return DNF
    return format_duration(total_ms)


def compute_result_rows(
    roster: RosterIndex, scans: ScanSet, config: TimingConfig
) -> tuple[list[ResultRow], list[Exclusion]]:
    rows: list[ResultRow] = []
    exclusions: list[Exclusion] = []

    for participant in roster.participants.values():
        epc = participant.epc
        finish = scans.finish.get(epc)
        if finish is None:
            exclusions.append(Exclusion(epc, EXCLUDED_NO_FINISH))
            continue
        if finish.ms is None:
            exclusions.append(Exclusion(epc, EXCLUDED_FINISH_UNPARSED))
            continue

        start = scans.start.get(epc)
        total_ms, start_source = resolve_elapsed_ms(
            participant.source_category_key,
            finish.ms,
            config.category_rules,
            start.ms if start is not None else None,
            config.timezone,
        )
        if total_ms is None:
            exclusions.append(Exclusion(epc, EXCLUDED_MISSING_START))
            continue
        if total_ms < 0:
            exclusions.append(Exclusion(epc, EXCLUDED_NEGATIVE_ELAPSED))
            continue

        rows.append(
            ResultRow(
                epc=epc,
                bib=participant.bib,
                name=participant.name,
                gender=participant.gender,
                category=participant.category or participant.source_category_key,
                source_category_key=participant.source_category_key,
                finish_time_raw=extract_time_of_day(finish.raw),
                total_time_ms=total_ms,
                total_time_display=_display(config, epc, total_ms),
                start_source=start_source,
            )
        )

    for exclusion in exclusions:
        logger.debug("Excluded %s: %s", exclusion.epc, exclusion.reason)

    # last write wins, first position kept
    deduplicated = {row.epc: row for row in rows}
    return list(deduplicated.values()), exclusions


def _rank_within(rows: list[ResultRow], key) -> dict[str, int]:
    """Rank already time-sorted rows inside each partition given by ``key``."""
    positions: Counter = Counter()
    ranks: dict[str, int] = {}
    for row in rows:
        partition = key(row)
        positions[partition] += 1
        ranks[row.epc] = positions[partition]
    return ranks


def rank_results(rows: list[ResultRow], categories: list[str]) -> ResultSet:
    finishers = [row for row in rows if row.is_finisher]
    # sorted() is stable: equal times keep roster order
    finisher_sorted = [
        replace(row, rank=position)
        for position, row in enumerate(sorted(finishers, key=lambda r: r.total_time_ms), start=1)
    ]

    declared = list(dict.fromkeys(categories))
    declared_set = set(declared)
    rank_index = RankIndex(
        finisher_rank_by_epc={row.epc: row.rank for row in finisher_sorted},
        gender_rank_by_epc=_rank_within(finisher_sorted, lambda r: (r.gender or "").lower()),
        category_rank_by_epc=_rank_within(
            [row for row in finisher_sorted if row.source_category_key in declared_set],
            lambda r: r.source_category_key,
        ),
    )

    dnfs = sorted(
        (replace(row, rank=None) for row in rows if row.total_time_display == DNF),
        key=lambda r: r.total_time_ms,
    )
    dsqs = [replace(row, rank=None) for row in rows if row.total_time_display == DSQ]

    overall = finisher_sorted + dnfs + dsqs
    by_category = {
        key: [row for row in overall if row.source_category_key == key] for key in declared
    }
    return ResultSet(overall=overall, by_category=by_category, rank_index=rank_index)


def compute_results(
    roster: RosterIndex,
    scans: ScanSet,
    config: TimingConfig,
    categories: list[str],
) -> ResultSet:
    rows, exclusions = compute_result_rows(roster, scans, config)
    result = rank_results(rows, categories)
    result.diagnostics = Diagnostics(
        exclusions=exclusions,
        roster_skipped_rows=roster.skipped_rows,
        scan_skipped_rows=scans.skipped_rows,
        scan_unparsed_rows=scans.unparsed_rows,
    )
    result.checkpoint_times = {
        epc: [extract_time_of_day(record.raw) for record in records]
        for epc, records in scans.checkpoint.records.items()
    }
    logger.info(
        "Computed results: %d rows (%d ranked), %d excluded",
        len(result.overall),
        len(result.rank_index.finisher_rank_by_epc),
        result.diagnostics.excluded_count,
    )
    return result


def participant_detail(result: ResultSet, epc: str) -> ParticipantDetail | None:
    row = result.row_for(epc)
    if row is None:
        return None
    ranks = result.rank_index
    return ParticipantDetail(
        epc=row.epc,
        name=row.name,
        bib=row.bib,
        gender=row.gender,
        category=row.category,
        finish_time_raw=row.finish_time_raw,
        total_time_display=row.total_time_display,
        checkpoint_times=list(result.checkpoint_times.get(epc, [])),
        overall_rank=ranks.finisher_rank_by_epc.get(epc),
        gender_rank=ranks.gender_rank_by_epc.get(epc),
        category_rank=ranks.category_rank_by_epc.get(epc),
    )
