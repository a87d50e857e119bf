from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from opai.cpq.models import CpqCargo, CpqPuestoTrabajo, CpqRol


@dataclass(frozen=True)
class Found:
    id: uuid.UUID


@dataclass(frozen=True)
class Created:
    id: uuid.UUID


@dataclass(frozen=True)
class Unresolvable:
    reason: str


Resolution = Found | Created | Unresolvable


def job_title_label(custom_name: str | None, job_title: str | None) -> str:
    for candidate in (custom_name, job_title):
        if candidate and candidate.strip():
            return candidate.strip()
    return "Puesto"


def resolve_job_title(session: Session, job_title_id: uuid.UUID | None, label: str) -> Resolution:
    """Explicit active id, then case-insensitive name match, then create."""
    if job_title_id is not None:
        explicit = session.get(CpqPuestoTrabajo, job_title_id)
        if explicit is not None and explicit.active:
            return Found(explicit.id)

    by_name = session.scalar(
        select(CpqPuestoTrabajo)
        .where(or_(CpqPuestoTrabajo.name == label, func.lower(CpqPuestoTrabajo.name) == label.lower()))
        .order_by((CpqPuestoTrabajo.name == label).desc())
        .limit(1)
    )
    if by_name is not None:
        if not by_name.active:
            by_name.active = True
        return Found(by_name.id)

    created = CpqPuestoTrabajo(name=label, active=True)
    session.add(created)
    session.flush()
    return Created(created.id)


def _resolve_active_catalog(
    session: Session,
    model: type[CpqCargo] | type[CpqRol],
    explicit_id: uuid.UUID | None,
    kind: str,
) -> Resolution:
    if explicit_id is not None:
        explicit = session.get(model, explicit_id)
        if explicit is not None and explicit.active:
            return Found(explicit.id)

    default_id = session.scalar(select(model.id).where(model.active.is_(True)).order_by(model.name.asc()).limit(1))
    if default_id is None:
        return Unresolvable(f"no active {kind} configured")
    return Found(default_id)


def resolve_cargo(session: Session, cargo_id: uuid.UUID | None) -> Resolution:
    return _resolve_active_catalog(session, CpqCargo, cargo_id, "cargo")


def resolve_rol(session: Session, rol_id: uuid.UUID | None) -> Resolution:
    return _resolve_active_catalog(session, CpqRol, rol_id, "rol")
