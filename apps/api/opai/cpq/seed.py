from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from opai.cpq.models import CpqCargo, CpqCatalogItem, CpqPuestoTrabajo, CpqRol
from opai.crm.models import CRMPipelineStage


logger = logging.getLogger("opai.cpq.seed")

CARGOS = [
    ("Guardia", "Personal operativo estándar"),
    ("Supervisor", "Supervisión de turnos y equipos"),
    ("Inspector", "Inspección y control de calidad"),
    ("Jefe de Turno", "Responsable de operación por turno"),
    ("Operador CCTV", "Monitoreo de cámaras y alarmas"),
]

ROLES = [
    ("4x4", "4 días trabajo / 4 descanso"),
    ("5x2", "5 días trabajo / 2 descanso"),
    ("2x5", "2 días trabajo / 5 descanso"),
    ("6x1", "6 días trabajo / 1 descanso"),
    ("7x7", "7 días trabajo / 7 descanso"),
    ("Turno Especial", "Coberturas especiales"),
]

PUESTOS = [
    "Portería",
    "Control de Acceso",
    "CCTV (Centro de Control)",
    "Ronda",
    "Supervisión",
    "Recepción",
    "Estacionamiento",
    "Otro",
]

# (type, name, unit, base_price, is_default)
CATALOG_ITEMS = [
    ("uniform", "Camisa", "unidad", 15000, True),
    ("uniform", "Pantalon", "unidad", 18000, True),
    ("uniform", "Zapato", "unidad", 32000, True),
    ("uniform", "Polar", "unidad", 22000, True),
    ("uniform", "Geologo", "unidad", 25000, True),
    ("uniform", "Chaqueta", "unidad", 35000, True),
    ("uniform", "Velo", "unidad", 8000, True),
    ("uniform", "Casco", "unidad", 12000, False),
    ("uniform", "EPP", "unidad", 20000, False),
    ("uniform", "Chaleco Antikorper", "unidad", 28000, False),
    ("exam", "Preocupacional", "examen", 25000, False),
    ("exam", "Fisico", "examen", 12000, False),
    ("exam", "Psicotecnico", "examen", 18000, False),
    ("exam", "Altura", "examen", 22000, False),
    ("exam", "Drogas", "examen", 20000, False),
    ("system", "Sistema", "mes", 3500, False),
    ("phone", "Telefono", "mes", 12000, False),
    ("radio", "Radio", "mes", 8000, False),
    ("flashlight", "Linterna", "mes", 3000, False),
    ("transport", "Transporte", "mes", 0, False),
    ("meal", "Desayuno", "comida", 3500, False),
    ("meal", "Almuerzo", "comida", 6500, False),
    ("meal", "Comida", "comida", 6500, False),
    ("meal", "Merienda", "comida", 2500, False),
]

PIPELINE_STAGES = [
    ("Prospección", 1, "#64748b", False, False),
    ("Cotización enviada", 2, "#3b82f6", False, False),
    ("Negociación", 5, "#8b5cf6", False, False),
    ("Ganado", 6, "#10b981", True, False),
    ("Perdido", 7, "#ef4444", False, True),
]


def seed_cpq_catalogs(session: Session) -> None:
    """Upsert the global cargo, rol, job title and cost catalogs. Safe to re-run."""
    for name, description in CARGOS:
        cargo = session.scalar(select(CpqCargo).where(CpqCargo.name == name))
        if cargo is None:
            session.add(CpqCargo(name=name, description=description))
        else:
            cargo.description = description

    for name, description in ROLES:
        rol = session.scalar(select(CpqRol).where(CpqRol.name == name))
        if rol is None:
            session.add(CpqRol(name=name, description=description))
        else:
            rol.description = description

    for name in PUESTOS:
        if session.scalar(select(CpqPuestoTrabajo.id).where(CpqPuestoTrabajo.name == name)) is None:
            session.add(CpqPuestoTrabajo(name=name))

    for item_type, name, unit, base_price, is_default in CATALOG_ITEMS:
        item = session.scalar(
            select(CpqCatalogItem).where(
                CpqCatalogItem.type == item_type,
                CpqCatalogItem.name == name,
                CpqCatalogItem.tenant_id.is_(None),
            )
        )
        if item is None:
            session.add(
                CpqCatalogItem(
                    type=item_type,
                    name=name,
                    unit=unit,
                    base_price=Decimal(base_price),
                    is_default=is_default,
                )
            )
        else:
            item.unit = unit
            item.base_price = Decimal(base_price)
            item.is_default = is_default

    session.commit()
    logger.info("cpq.seed.catalogs")


def seed_pipeline_stages(session: Session, tenant_id: str) -> list[CRMPipelineStage]:
    for name, sort_order, color, is_closed_won, is_closed_lost in PIPELINE_STAGES:
        existing = session.scalar(
            select(CRMPipelineStage).where(CRMPipelineStage.tenant_id == tenant_id, CRMPipelineStage.name == name)
        )
        if existing is None:
            session.add(
                CRMPipelineStage(
                    tenant_id=tenant_id,
                    name=name,
                    sort_order=sort_order,
                    color=color,
                    is_closed_won=is_closed_won,
                    is_closed_lost=is_closed_lost,
                )
            )

    session.commit()
    logger.info("cpq.seed.pipeline_stages")
    return list(
        session.scalars(
            select(CRMPipelineStage)
            .where(CRMPipelineStage.tenant_id == tenant_id)
            .order_by(CRMPipelineStage.sort_order.asc())
        ).all()
    )
