"""Pydantic models for application API."""

from __future__ import annotations

from pydantic import BaseModel


class DraftSave(BaseModel):
    answers: dict | None = None
    files: dict | None = None
    applicant_name: str | None = None
    track: str | None = None  # business/engineering


class FileAttach(BaseModel):
    key: str
    data_url: str  # data:<mime>;base64,<payload>
    filename: str | None = None


class SubmitRequest(BaseModel):
    track: str | None = None


class StageOverride(BaseModel):
    stage: str
    reason: str | None = None
