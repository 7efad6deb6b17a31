"""Pydantic models for slot and booking API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class SlotCreate(BaseModel):
    kind: str  # coffee_chat/interview_round1/interview_round2
    start_time: datetime
    duration_minutes: int = 30
    host_name: str
    host_email: str | None = None
    location: str | None = None
    meeting_url: str | None = None
    for_track: str | None = None
    max_bookings: int = 1
    notes: str | None = None


class SlotBulkCreate(BaseModel):
    slots: list[SlotCreate]


class SlotUpdate(BaseModel):
    kind: str | None = None
    start_time: datetime | None = None
    duration_minutes: int | None = None
    host_name: str | None = None
    host_email: str | None = None
    location: str | None = None
    meeting_url: str | None = None
    for_track: str | None = None
    max_bookings: int | None = None
    notes: str | None = None


class BookingCreate(BaseModel):
    applicant_name: str | None = None
