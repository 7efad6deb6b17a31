"""Question schema store and submission validation."""

from __future__ import annotations

import uuid

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ValidationError
from ..models.application import ApplicationQuestionSet
from ..pipeline import validate_track

FIELD_TYPES: tuple[str, ...] = (
    "text", "textarea", "select", "multiselect", "file", "url",
    "email", "phone", "number", "date", "checkbox",
)


def normalize_fields(fields: list[dict]) -> list[dict]:
    normalized: list[dict] = []
    seen: set[str] = set()
    for index, raw in enumerate(fields or []):
        key = str(raw.get("key") or "").strip()
        if not key:
            raise ValidationError("invalid_question", f"Question #{index + 1} has no key")
        if key in seen:
            raise ValidationError("invalid_question", f"Duplicate question key '{key}'", {"key": key})
        seen.add(key)

        field_type = raw.get("type") or "text"
        if field_type not in FIELD_TYPES:
            raise ValidationError(
                "invalid_question", f"Unknown field type '{field_type}'", {"key": key, "allowed": list(FIELD_TYPES)}
            )

        word_limit = raw.get("word_limit")
        if word_limit is not None:
            word_limit = int(word_limit)
            if word_limit < 1:
                raise ValidationError("invalid_question", f"Word limit for '{key}' must be positive", {"key": key})

        normalized.append({
            "key": key,
            "label": raw.get("label") or key,
            "type": field_type,
            "required": bool(raw.get("required", False)),
            "word_limit": word_limit,
            "order": int(raw.get("order", index)),
            "options": list(raw.get("options") or []),
        })
    return sorted(normalized, key=lambda f: (f["order"], f["key"]))


async def upsert_questions(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    track: str | None,
    fields: list[dict],
) -> ApplicationQuestionSet:
    """Replace the question set for (cycle, track); ``track`` None covers every track."""
    if track is not None:
        validate_track(track)
    normalized = normalize_fields(fields)

    stmt = select(ApplicationQuestionSet).where(ApplicationQuestionSet.cycle_id == cycle_id)
    if track is None:
        stmt = stmt.where(ApplicationQuestionSet.track.is_(None))
    else:
        stmt = stmt.where(ApplicationQuestionSet.track == track)
    question_set = (await db.execute(stmt)).scalar_one_or_none()

    if question_set is None:
        question_set = ApplicationQuestionSet(cycle_id=cycle_id, track=track, fields=normalized)
        db.add(question_set)
    else:
        question_set.fields = normalized
    await db.commit()
    await db.refresh(question_set)
    return question_set


async def get_fields(db: AsyncSession, cycle_id: uuid.UUID, track: str | None) -> list[dict]:
    """All-track fields merged with the track's own; track-specific keys win."""
    stmt = select(ApplicationQuestionSet).where(ApplicationQuestionSet.cycle_id == cycle_id)
    if track is None:
        stmt = stmt.where(ApplicationQuestionSet.track.is_(None))
    else:
        stmt = stmt.where(or_(ApplicationQuestionSet.track.is_(None), ApplicationQuestionSet.track == track))
    sets = list((await db.execute(stmt)).scalars().all())

    by_key: dict[str, dict] = {}
    for question_set in sorted(sets, key=lambda s: s.track is not None):
        for field in question_set.fields or []:
            by_key[field["key"]] = field
    return sorted(by_key.values(), key=lambda f: (f.get("order", 0), f["key"]))


def count_words(value) -> int:
    if value is None:
        return 0
    if isinstance(value, (list, tuple)):
        return sum(count_words(v) for v in value)
    return len(str(value).split())


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def validate_submission(fields: list[dict], answers: dict, files: dict) -> None:
    """Raise ``ValidationError`` when required answers are missing or too long."""
    answers = answers or {}
    files = files or {}

    missing = []
    for field in fields:
        if not field.get("required"):
            continue
        if field.get("type") == "file":
            if _is_blank(files.get(field["key"])):
                missing.append(field)
        elif field.get("type") == "checkbox":
            if answers.get(field["key"]) is not True:
                missing.append(field)
        elif _is_blank(answers.get(field["key"])):
            missing.append(field)
    if missing:
        labels = [f.get("label") or f["key"] for f in missing]
        raise ValidationError(
            "missing_required_fields",
            "Please fill in the required fields: " + ", ".join(labels),
            {"fields": [f["key"] for f in missing], "labels": labels},
        )

    over = []
    for field in fields:
        limit = field.get("word_limit")
        if not limit:
            continue
        words = count_words(answers.get(field["key"]))
        if words > limit:
            over.append({"key": field["key"], "label": field.get("label") or field["key"], "words": words, "limit": limit})
    if over:
        raise ValidationError(
            "word_limit_exceeded",
            "Some answers exceed their word limit: " + ", ".join(o["label"] for o in over),
            {"fields": over},
        )
