from __future__ import annotations
from pydantic import BaseModel, Field


class EventCreate(BaseModel):
    event_id: str
    name: str
    event_date: str | None = None  # YYYY-MM-DD
    event_timezone: str | None = None
    categories: list[str] | None = None


class CategoriesUpdate(BaseModel):
    categories: list[str]


class TimingUpdate(BaseModel):
    # either milliseconds or hours; hours win when both are given
    cutoff_ms: float | None = Field(default=None, ge=0)
    cutoff_hours: float | None = Field(default=None, ge=0)
    category_start_times: dict[str, str] | None = None
