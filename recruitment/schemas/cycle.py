"""Pydantic models for cycle and question-set API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class CycleCreate(BaseModel):
    name: str
    slug: str
    portal_open_at: datetime
    application_due_at: datetime
    portal_close_at: datetime
    description: str | None = None
    activate: bool = False


class CycleUpdate(BaseModel):
    name: str | None = None
    slug: str | None = None
    description: str | None = None
    portal_open_at: datetime | None = None
    application_due_at: datetime | None = None
    portal_close_at: datetime | None = None


class QuestionField(BaseModel):
    key: str
    label: str | None = None
    type: str = "text"
    required: bool = False
    word_limit: int | None = None
    order: int | None = None
    options: list[str] = []


class QuestionSetUpdate(BaseModel):
    track: str | None = None  # None applies to every track
    fields: list[QuestionField]
