"""Pydantic models for event API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class EventCreate(BaseModel):
    title: str
    start_at: datetime
    end_at: datetime
    description: str | None = None
    location: str | None = None
    is_required: bool = False
    rsvp_enabled: bool = True
    check_in_enabled: bool = False
    capacity: int | None = None


class EventUpdate(BaseModel):
    title: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    description: str | None = None
    location: str | None = None
    is_required: bool | None = None
    rsvp_enabled: bool | None = None
    check_in_enabled: bool | None = None
    capacity: int | None = None


class CheckInRequest(BaseModel):
    photo_data_url: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    applicant_name: str | None = None
