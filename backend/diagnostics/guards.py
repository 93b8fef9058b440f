"""Duplicate and uniqueness checks run before a mutation writes anything."""

from __future__ import annotations

from typing import Any, Optional

from django.db.models.functions import Lower, Trim

from .errors import Conflict
from .models import DiagnosticSession, DiagnosticStep, Problem
from .store import Store

# Titles only collide with problems an operator can still see.
TITLE_GUARDED_STATUSES = ("draft", "published")


def normalize_title(title: str) -> str:
    return str(title or "").strip().lower()


def ensure_unique_problem_title(store: Store, *, device_id: Any, title: str, exclude_id: Any = None) -> None:
    normalized = normalize_title(title)
    qs = (
        store.objects(Problem)
        .annotate(normalized_title=Lower(Trim("title")))
        .filter(
            device_id=device_id,
            is_active=True,
            status__in=TITLE_GUARDED_STATUSES,
            normalized_title=normalized,
        )
    )
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    existing = qs.first()
    if existing:
        raise Conflict(
            "A problem with this title already exists for the device",
            entity="problem",
            entity_id=existing.id,
            field="title",
            details={"device_id": str(device_id), "title": existing.title, "status": existing.status},
        )


def ensure_step_number_free(store: Store, *, problem_id: Any, step_number: int, exclude_id: Any = None) -> None:
    qs = store.objects(DiagnosticStep).filter(problem_id=problem_id, step_number=step_number, is_active=True)
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    existing = qs.first()
    if existing:
        raise Conflict(
            f"Step number {step_number} is already used in this problem",
            entity="step",
            entity_id=existing.id,
            field="step_number",
            details={"problem_id": str(problem_id), "step_number": step_number},
        )


def ensure_session_key_free(store: Store, *, session_key: str, exclude_id: Optional[Any] = None) -> None:
    if not session_key:
        return
    qs = store.objects(DiagnosticSession).filter(session_key=session_key, is_active=True)
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    existing = qs.first()
    if existing:
        raise Conflict(
            "An active session with this session_id already exists",
            entity="session",
            entity_id=existing.id,
            field="session_id",
            details={"session_id": session_key},
        )
