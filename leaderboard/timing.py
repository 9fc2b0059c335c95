from __future__ import annotations

from dataclasses import dataclass, field
from datetime import tzinfo

from leaderboard.utils import DATE_RE, normalize_cutoff_ms, parse_time_value, time_of_day_on_date_ms

START_CATEGORY_ABSOLUTE = "category_absolute"
START_CATEGORY_TIME_OF_DAY = "category_time_of_day"
START_INDIVIDUAL = "individual_start"
START_MISSING = "missing_start"


@dataclass(frozen=True)
class CategoryTimingRule:
    absolute_ms: int | None = None
    time_of_day: str | None = None

    @classmethod
    def from_raw(cls, raw: str | None, tz: str | tzinfo = "UTC") -> "CategoryTimingRule | None":
        """Classify an operator-entered category start.

        Strings carrying a ``YYYY-MM-DD`` date are absolute instants; anything
        else is kept as a time of day to be placed on each finisher's date.
        """
        value = str(raw or "").strip()
        if not value:
            return None
        if DATE_RE.search(value):
            return cls(absolute_ms=parse_time_value(value, tz).ms)
        return cls(time_of_day=value)


@dataclass(frozen=True)
class TimingConfig:
    cutoff_ms: int | None = None
    category_rules: dict[str, CategoryTimingRule] = field(default_factory=dict)
    dq: dict[str, bool] = field(default_factory=dict)
    timezone: str = "UTC"

    @classmethod
    def build(
        cls,
        cutoff_ms: int | float | str | None = None,
        category_start_times: dict[str, str] | None = None,
        dq: dict[str, bool] | None = None,
        timezone: str = "UTC",
    ) -> "TimingConfig":
        rules: dict[str, CategoryTimingRule] = {}
        for key, raw in (category_start_times or {}).items():
            rule = CategoryTimingRule.from_raw(raw, timezone)
            if rule is not None:
                rules[key] = rule
        return cls(
            cutoff_ms=normalize_cutoff_ms(cutoff_ms),
            category_rules=rules,
            dq=dict(dq or {}),
            timezone=timezone,
        )

    def is_disqualified(self, epc: str) -> bool:
        return self.dq.get(epc) is True

    def is_over_cutoff(self, total_ms: int) -> bool:
        return self.cutoff_ms is not None and total_ms > self.cutoff_ms


def _usable_delta(finish_ms: int, start_ms: int | None) -> int | None:
    if start_ms is None:
        return None
    delta = finish_ms - start_ms
    if delta < 0:
        return None
    return delta


def resolve_elapsed_ms(
    category_key: str,
    finish_ms: int,
    rules: dict[str, CategoryTimingRule],
    individual_start_ms: int | None,
    tz: str | tzinfo = "UTC",
) -> tuple[int | None, str]:
    """Elapsed time for one finisher and the start path that produced it.

    A category override is preferred when it yields a non-negative elapsed
    time; otherwise the runner's own start scan is used. Without a start scan
    the result is ``(None, "missing_start")``.
    """
    rule = rules.get(category_key)
    if rule is not None and rule.absolute_ms is not None:
        delta = _usable_delta(finish_ms, rule.absolute_ms)
        if delta is not None:
            return delta, START_CATEGORY_ABSOLUTE
    elif rule is not None and rule.time_of_day:
        candidate = time_of_day_on_date_ms(rule.time_of_day, finish_ms, tz)
        delta = _usable_delta(finish_ms, candidate)
        if delta is not None:
            return delta, START_CATEGORY_TIME_OF_DAY

    if individual_start_ms is None:
        return None, START_MISSING
    return finish_ms - individual_start_ms, START_INDIVIDUAL
