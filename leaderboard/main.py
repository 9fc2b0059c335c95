from __future__ import annotations

import logging
import sys
from dataclasses import asdict

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leaderboard import services
from leaderboard.csv_export import router as csv_router
from leaderboard.db import get_db, init_db
from leaderboard.models import CsvUpload, Event
from leaderboard.results import ResultSet, participant_detail
from leaderboard.schemas import CategoriesUpdate, EventCreate, TimingUpdate
from leaderboard.settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Race Leaderboard")
app.include_router(csv_router)


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    logger.info("Database ready")


def service_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, services.EventNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, services.MissingUploadError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def serialize_event(event: Event) -> dict:
    return {
        "event_id": event.event_id,
        "name": event.name,
        "event_date": event.event_date.isoformat() if event.event_date else None,
        "event_timezone": event.event_timezone,
        "categories": list(event.categories or []),
        "data_version": event.data_version,
    }


def serialize_upload(upload: CsvUpload) -> dict:
    return {
        "kind": upload.kind,
        "filename": upload.filename,
        "rows": upload.rows,
        "updated_at": upload.updated_at.isoformat() if upload.updated_at else None,
    }


def serialize_results(result: ResultSet, data_version: int) -> dict:
    diagnostics = result.diagnostics
    return {
        "data_version": data_version,
        "overall": [asdict(row) for row in result.overall],
        "by_category": {
            key: [asdict(row) for row in rows] for key, rows in result.by_category.items()
        },
        "diagnostics": {
            "excluded_count": diagnostics.excluded_count,
            "excluded_reasons": diagnostics.excluded_reasons,
            "roster_skipped_rows": diagnostics.roster_skipped_rows,
            "scan_skipped_rows": diagnostics.scan_skipped_rows,
            "scan_unparsed_rows": diagnostics.scan_unparsed_rows,
        },
    }


def event_results(db: Session, event_id: str) -> services.EventResults:
    try:
        return services.compute_event_results(db, event_id)
    except ValueError as exc:
        raise service_error(exc) from exc


@app.get("/health")
def health():
    return {"status": "ok"}


# ---------------------------
# Events
# ---------------------------

@app.post("/events", status_code=201)
def create_event(payload: EventCreate, db: Session = Depends(get_db)):
    try:
        event = services.create_event(db, payload)
    except ValueError as exc:
        raise service_error(exc) from exc
    return serialize_event(event)


@app.get("/events")
def list_events(db: Session = Depends(get_db)):
    return [serialize_event(event) for event in services.list_events(db)]


@app.get("/events/{event_id}")
def get_event(event_id: str, db: Session = Depends(get_db)):
    try:
        event = services.get_event(db, event_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return serialize_event(event)


@app.delete("/events/{event_id}")
def delete_event(event_id: str, db: Session = Depends(get_db)):
    try:
        services.delete_event(db, event_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {"ok": True}


@app.get("/events/{event_id}/categories")
def get_categories(event_id: str, db: Session = Depends(get_db)):
    try:
        return {"categories": services.fetch_categories(db, event_id)}
    except ValueError as exc:
        raise service_error(exc) from exc


@app.put("/events/{event_id}/categories")
def update_categories(event_id: str, payload: CategoriesUpdate, db: Session = Depends(get_db)):
    try:
        return {"categories": services.set_categories(db, event_id, payload.categories)}
    except ValueError as exc:
        raise service_error(exc) from exc


# ---------------------------
# CSV uploads
# ---------------------------

@app.post("/events/{event_id}/csv/{kind}", status_code=201)
def upload_csv(
    event_id: str, kind: str, file: UploadFile = File(...), db: Session = Depends(get_db)
):
    contents = file.file.read(settings.max_upload_bytes + 1)
    if len(contents) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="CSV file is too large")
    try:
        text = contents.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded") from exc
    try:
        upload = services.store_csv(db, event_id, kind, file.filename or "", text)
    except ValueError as exc:
        raise service_error(exc) from exc
    return serialize_upload(upload)


@app.get("/events/{event_id}/csv")
def list_csv(event_id: str, db: Session = Depends(get_db)):
    try:
        uploads = services.list_csv_uploads(db, event_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return [serialize_upload(upload) for upload in uploads]


@app.delete("/events/{event_id}/csv/{kind}")
def delete_csv(event_id: str, kind: str, db: Session = Depends(get_db)):
    try:
        deleted = services.delete_csv(db, event_id, kind)
    except ValueError as exc:
        raise service_error(exc) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail=f"No '{kind}' CSV uploaded")
    return {"ok": True}


@app.delete("/events/{event_id}/csv")
def reset_csv(event_id: str, db: Session = Depends(get_db)):
    try:
        removed = services.reset_csv(db, event_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {"ok": True, "removed": removed}


# ---------------------------
# Timing configuration and DQ
# ---------------------------

@app.get("/events/{event_id}/timing")
def get_timing(event_id: str, db: Session = Depends(get_db)):
    try:
        return services.fetch_timing_config(db, event_id)
    except ValueError as exc:
        raise service_error(exc) from exc


@app.put("/events/{event_id}/timing")
def update_timing(event_id: str, payload: TimingUpdate, db: Session = Depends(get_db)):
    try:
        return services.update_timing_config(
            db,
            event_id,
            cutoff_ms=payload.cutoff_ms,
            cutoff_hours=payload.cutoff_hours,
            category_start_times=payload.category_start_times,
        )
    except ValueError as exc:
        raise service_error(exc) from exc


@app.get("/events/{event_id}/dq")
def get_dq(event_id: str, db: Session = Depends(get_db)):
    try:
        return services.fetch_dq_map(db, event_id)
    except ValueError as exc:
        raise service_error(exc) from exc


@app.post("/events/{event_id}/dq/{epc}/toggle")
def toggle_dq(event_id: str, epc: str, db: Session = Depends(get_db)):
    try:
        disqualified = services.toggle_dq(db, event_id, epc)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {"epc": epc, "disqualified": disqualified}


# ---------------------------
# Results
# ---------------------------

@app.get("/events/{event_id}/results")
def get_results(event_id: str, db: Session = Depends(get_db)):
    computed = event_results(db, event_id)
    return JSONResponse(serialize_results(computed.result, computed.data_version))


@app.get("/events/{event_id}/results/category/{category}")
def get_category_results(event_id: str, category: str, db: Session = Depends(get_db)):
    computed = event_results(db, event_id)
    rows = computed.result.by_category.get(category)
    if rows is None:
        raise HTTPException(status_code=404, detail=f"Unknown category '{category}'")
    return {
        "data_version": computed.data_version,
        "category": category,
        "rows": [asdict(row) for row in rows],
    }


@app.get("/events/{event_id}/results/participant/{epc}")
def get_participant(event_id: str, epc: str, db: Session = Depends(get_db)):
    computed = event_results(db, event_id)
    detail = participant_detail(computed.result, epc)
    if detail is None:
        raise HTTPException(status_code=404, detail=f"No result for EPC '{epc}'")
    return asdict(detail)
