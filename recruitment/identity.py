"""Caller identity forwarded by the upstream auth layer."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request

from .config import settings


@dataclass(frozen=True)
class Actor:
    email: str | None
    role: str | None

    @property
    def is_admin(self) -> bool:
        return (self.role or "").strip().lower() in settings.admin_role_set


async def get_actor(request: Request) -> Actor:
    email = (request.headers.get(settings.identity_email_header) or "").strip().lower() or None
    role = (request.headers.get(settings.identity_role_header) or "").strip().lower() or None
    return Actor(email=email, role=role)


async def require_actor(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.email:
        raise HTTPException(status_code=401, detail="Missing caller identity")
    return actor


async def require_admin(actor: Actor = Depends(require_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Administrator role required")
    return actor


async def require_reviewer(actor: Actor = Depends(require_actor)) -> Actor:
    if not (actor.is_admin or actor.role == "reviewer"):
        raise HTTPException(status_code=403, detail="Reviewer role required")
    return actor


def ensure_owner_or_admin(actor: Actor, owner_email: str) -> None:
    if not (actor.is_admin or actor.email == owner_email):
        raise HTTPException(status_code=403, detail="Not allowed to act on this record")
