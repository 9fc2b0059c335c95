from __future__ import annotations

import csv
from io import StringIO

from fastapi import APIRouter, Depends, HTTPException
from starlette.responses import Response
from sqlalchemy.orm import Session

from leaderboard.db import get_db
from leaderboard.results import ResultRow
from leaderboard import services

router = APIRouter()

RESULT_COLUMNS = ["rank", "bib", "name", "gender", "category", "finish_time", "total_time"]


def _csv_response(filename: str, text: str) -> Response:
    return Response(
        content=text,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def results_csv_text(rows: list[ResultRow]) -> str:
    buf = StringIO()
    w = csv.writer(buf)
    w.writerow(RESULT_COLUMNS)
    for r in rows:
        w.writerow([
            r.rank if r.rank is not None else "-",
            r.bib,
            r.name,
            r.gender,
            r.category,
            r.finish_time_raw,
            r.total_time_display,
        ])
    return buf.getvalue()


@router.get("/events/{event_id}/results.csv")
def results_csv(event_id: str, category: str | None = None, db: Session = Depends(get_db)):
    try:
        computed = services.compute_event_results(db, event_id)
    except services.EventNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except services.MissingUploadError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    result = computed.result
    if category is None:
        rows = result.overall
        title = "Overall"
    else:
        if category not in result.by_category:
            raise HTTPException(status_code=404, detail=f"Unknown category '{category}'")
        rows = result.by_category[category]
        title = category
    safe_title = "_".join(title.split())
    return _csv_response(f"{event_id}_{safe_title}.csv", results_csv_text(rows))
