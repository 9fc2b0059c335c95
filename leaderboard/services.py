from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.orm import Session

from leaderboard import models
from leaderboard.csvgrid import count_data_rows, parse_csv_grid
from leaderboard.headers import CSV_KINDS, require_headers
from leaderboard.indexes import RosterIndex, ScanSet, build_roster_index, build_scan_set
from leaderboard.results import ResultSet, compute_results
from leaderboard.schemas import EventCreate
from leaderboard.settings import get_settings
from leaderboard.timing import TimingConfig
from leaderboard.utils import MS_PER_HOUR, normalize_cutoff_ms

logger = logging.getLogger(__name__)

MANDATORY_KINDS = ("master", "finish")


class LeaderboardError(ValueError):
    pass


class EventNotFoundError(LeaderboardError):
    pass


class MissingUploadError(LeaderboardError):
    def __init__(self, missing_kinds: list[str]):
        self.missing_kinds = missing_kinds
        super().__init__(
            "CSV not uploaded yet for this event: "
            + ", ".join(missing_kinds)
            + ". Upload the master and finish files to see results."
        )


# ---------------------------
# Events
# ---------------------------

def _validate_timezone(name: str) -> str:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise LeaderboardError(f"Unknown timezone '{name}'") from exc
    return name


def _clean_categories(categories: list[str] | None) -> list[str]:
    cleaned = [str(category).strip() for category in categories or []]
    return list(dict.fromkeys(category for category in cleaned if category))


def create_event(db: Session, payload: EventCreate) -> models.Event:
    event_id = payload.event_id.strip()
    if not event_id:
        raise LeaderboardError("Event id is required")
    if db.get(models.Event, event_id):
        raise LeaderboardError("Event already exists")
    event_date = None
    if payload.event_date:
        try:
            event_date = datetime.strptime(payload.event_date, "%Y-%m-%d").date()
        except ValueError as exc:
            raise LeaderboardError("Event date must be YYYY-MM-DD") from exc
    event = models.Event(
        event_id=event_id,
        name=payload.name.strip() or event_id,
        event_date=event_date,
        event_timezone=_validate_timezone(
            payload.event_timezone or get_settings().default_timezone
        ),
        categories=_clean_categories(payload.categories) or None,
        data_version=0,
    )
    db.add(event)
    db.commit()
    logger.info("Created event %s", event_id)
    return event


def list_events(db: Session) -> list[models.Event]:
    return db.scalars(select(models.Event).order_by(models.Event.event_date, models.Event.event_id)).all()


def get_event(db: Session, event_id: str) -> models.Event:
    event = db.get(models.Event, event_id)
    if not event:
        raise EventNotFoundError(f"Event '{event_id}' not found")
    return event


def delete_event(db: Session, event_id: str) -> None:
    event = get_event(db, event_id)
    db.delete(event)
    db.commit()
    result_cache.invalidate(event_id)
    logger.info("Deleted event %s", event_id)


def bump_data_version(event: models.Event) -> int:
    event.data_version = (event.data_version or 0) + 1
    return event.data_version


# ---------------------------
# Categories
# ---------------------------

def fetch_categories(db: Session, event_id: str) -> list[str]:
    event = get_event(db, event_id)
    return list(event.categories or get_settings().default_categories)


def set_categories(db: Session, event_id: str, categories: list[str]) -> list[str]:
    event = get_event(db, event_id)
    event.categories = _clean_categories(categories) or None
    bump_data_version(event)
    db.commit()
    return fetch_categories(db, event_id)


# ---------------------------
# CSV uploads
# ---------------------------

def _check_kind(kind: str) -> None:
    if kind not in CSV_KINDS:
        raise LeaderboardError(
            f"Unknown CSV kind '{kind}'. Expected one of: {', '.join(CSV_KINDS)}"
        )


def store_csv(
    db: Session, event_id: str, kind: str, filename: str, text: str
) -> models.CsvUpload:
    """Validate and store an uploaded CSV, replacing any earlier file of that kind."""
    _check_kind(kind)
    event = get_event(db, event_id)
    grid = parse_csv_grid(text)
    if not grid:
        raise LeaderboardError(f"CSV '{kind}': file is empty or unreadable")
    require_headers(grid[0], kind)

    upload = db.scalar(
        select(models.CsvUpload).where(
            models.CsvUpload.event_id == event_id, models.CsvUpload.kind == kind
        )
    )
    if upload is None:
        upload = models.CsvUpload(event_id=event_id, kind=kind)
        db.add(upload)
    upload.filename = filename or f"{kind}.csv"
    upload.text = text
    upload.rows = count_data_rows(grid)
    upload.updated_at = datetime.now(tz=timezone.utc)
    bump_data_version(event)
    db.commit()
    logger.info("Stored %s CSV for %s (%d rows)", kind, event_id, upload.rows)
    return upload


def list_csv_uploads(db: Session, event_id: str) -> list[models.CsvUpload]:
    get_event(db, event_id)
    return db.scalars(
        select(models.CsvUpload)
        .where(models.CsvUpload.event_id == event_id)
        .order_by(models.CsvUpload.kind)
    ).all()


def delete_csv(db: Session, event_id: str, kind: str) -> bool:
    _check_kind(kind)
    event = get_event(db, event_id)
    upload = db.scalar(
        select(models.CsvUpload).where(
            models.CsvUpload.event_id == event_id, models.CsvUpload.kind == kind
        )
    )
    if upload is None:
        return False
    db.delete(upload)
    bump_data_version(event)
    db.commit()
    return True


def reset_csv(db: Session, event_id: str) -> int:
    event = get_event(db, event_id)
    uploads = list(event.csv_uploads)
    for upload in uploads:
        db.delete(upload)
    if uploads:
        bump_data_version(event)
    db.commit()
    return len(uploads)


def fetch_text(db: Session, event_id: str, kind: str) -> str | None:
    _check_kind(kind)
    upload = db.scalar(
        select(models.CsvUpload).where(
            models.CsvUpload.event_id == event_id, models.CsvUpload.kind == kind
        )
    )
    if upload is None or not upload.text.strip():
        return None
    return upload.text


# ---------------------------
# Timing configuration and DQ
# ---------------------------

def fetch_timing_config(db: Session, event_id: str) -> dict:
    event = get_event(db, event_id)
    return {
        "cutoff_ms": event.cutoff_ms,
        "category_start_times": dict(event.category_start_times or {}),
    }


def update_timing_config(
    db: Session,
    event_id: str,
    cutoff_ms: float | None = None,
    cutoff_hours: float | None = None,
    category_start_times: dict[str, str] | None = None,
) -> dict:
    event = get_event(db, event_id)
    if cutoff_hours is not None:
        event.cutoff_ms = int(round(cutoff_hours * MS_PER_HOUR)) if cutoff_hours > 0 else None
    else:
        event.cutoff_ms = normalize_cutoff_ms(cutoff_ms)
    if category_start_times is not None:
        event.category_start_times = {
            key.strip(): str(value).strip()
            for key, value in category_start_times.items()
            if key.strip() and str(value or "").strip()
        } or None
    bump_data_version(event)
    db.commit()
    logger.info(
        "Timing updated for %s: cutoff_ms=%s, %d category starts",
        event_id,
        event.cutoff_ms,
        len(event.category_start_times or {}),
    )
    return fetch_timing_config(db, event_id)


def fetch_dq_map(db: Session, event_id: str) -> dict[str, bool]:
    get_event(db, event_id)
    epcs = db.scalars(
        select(models.Disqualification.epc).where(models.Disqualification.event_id == event_id)
    ).all()
    return {epc: True for epc in epcs}


def toggle_dq(db: Session, event_id: str, epc: str) -> bool:
    """Flip the DQ flag for one EPC and return the new state."""
    event = get_event(db, event_id)
    epc = epc.strip()
    if not epc:
        raise LeaderboardError("EPC is required")
    existing = db.scalar(
        select(models.Disqualification).where(
            models.Disqualification.event_id == event_id, models.Disqualification.epc == epc
        )
    )
    if existing:
        db.delete(existing)
        disqualified = False
    else:
        db.add(models.Disqualification(event_id=event_id, epc=epc))
        disqualified = True
    bump_data_version(event)
    db.commit()
    logger.info("DQ for %s in %s set to %s", epc, event_id, disqualified)
    return disqualified


# ---------------------------
# Results
# ---------------------------

@dataclass
class EventInputs:
    roster: RosterIndex
    scans: ScanSet
    config: TimingConfig
    categories: list[str]


@dataclass
class EventResults:
    data_version: int
    result: ResultSet


class ResultCache:
    """Latest computed results per event, keyed by the event's data version.

    A result computed for an older version than the one already held is
    refused, so a slow recompute never replaces a newer one.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, EventResults] = {}

    def get(self, event_id: str, data_version: int) -> EventResults | None:
        with self._lock:
            entry = self._entries.get(event_id)
        if entry is None or entry.data_version != data_version:
            return None
        return entry

    def latest(self, event_id: str) -> EventResults | None:
        with self._lock:
            return self._entries.get(event_id)

    def store(self, event_id: str, data_version: int, result: ResultSet) -> bool:
        with self._lock:
            current = self._entries.get(event_id)
            if current is not None and current.data_version > data_version:
                return False
            self._entries[event_id] = EventResults(data_version, result)
            return True

    def invalidate(self, event_id: str | None = None) -> None:
        with self._lock:
            if event_id is None:
                self._entries.clear()
            else:
                self._entries.pop(event_id, None)


result_cache = ResultCache()


def load_event_inputs(db: Session, event: models.Event) -> EventInputs:
    texts = {kind: fetch_text(db, event.event_id, kind) for kind in CSV_KINDS}
    missing = [kind for kind in MANDATORY_KINDS if texts[kind] is None]
    if missing:
        raise MissingUploadError(missing)

    categories = fetch_categories(db, event.event_id)
    tz = event.event_timezone
    roster = build_roster_index(parse_csv_grid(texts["master"]), categories)
    scans = build_scan_set(
        parse_csv_grid(texts["finish"]),
        parse_csv_grid(texts["start"]) if texts["start"] else None,
        parse_csv_grid(texts["checkpoint"]) if texts["checkpoint"] else None,
        tz=tz,
    )
    timing = fetch_timing_config(db, event.event_id)
    config = TimingConfig.build(
        cutoff_ms=timing["cutoff_ms"],
        category_start_times=timing["category_start_times"],
        dq=fetch_dq_map(db, event.event_id),
        timezone=tz,
    )
    return EventInputs(roster=roster, scans=scans, config=config, categories=categories)


def compute_event_results(
    db: Session, event_id: str, cache: ResultCache | None = None
) -> EventResults:
    cache = cache if cache is not None else result_cache
    event = get_event(db, event_id)
    data_version = event.data_version or 0
    cached = cache.get(event_id, data_version)
    if cached is not None:
        return cached

    inputs = load_event_inputs(db, event)
    result = compute_results(inputs.roster, inputs.scans, inputs.config, inputs.categories)
    if cache.store(event_id, data_version, result):
        return EventResults(data_version, result)

    logger.info("Discarding stale results for %s (version %d)", event_id, data_version)
    latest = cache.latest(event_id)
    # invalidated since the refused store
    if latest is None:
        return EventResults(data_version, result)
    return latest
