from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from opai.context import get_correlation_id
from opai.core.auth import AuthUser, get_current_user as get_auth_user
from opai.core.database import get_db
from opai.crm.actor import ActorUser
from opai.crm.schemas import (
    DuplicateCheckResponse,
    LeadApproveRequest,
    LeadApproveResponse,
    LeadCreate,
    LeadRead,
    LeadRejectRequest,
)
from opai.crm.service import LeadService


leads_router = APIRouter(prefix="/api/crm", tags=["crm.leads"])
lead_service = LeadService()


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def _exception_response(request: Request, exc: HTTPException, default_code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=getattr(exc, "code", default_code),
        message=str(exc.detail),
        details=getattr(exc, "details", None) or exc.detail,
    )


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    header_tenant = request.headers.get("x-tenant-id")
    if header_tenant and auth_user.tenant_id and header_tenant != auth_user.tenant_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="tenant header does not match token")
    tenant_id = header_tenant or auth_user.tenant_id
    return ActorUser(
        user_id=auth_user.sub,
        tenant_id=tenant_id,
        permissions=set(auth_user.roles),
        correlation_id=correlation_id,
    )


def require_permission(user: ActorUser, permission: str) -> None:
    if permission not in user.permissions:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")


@leads_router.post("/leads", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "crm.leads.create")
        return lead_service.create_lead(db, user, dto)
    except HTTPException as exc:
        return _exception_response(request, exc, "crm_lead_create_failed")


@leads_router.get("/leads/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "crm.leads.read")
        return lead_service.get_lead(db, user, lead_id)
    except HTTPException as exc:
        return _exception_response(request, exc, "crm_lead_get_failed")


@leads_router.post("/leads/{lead_id}/approve", response_model=LeadApproveResponse | DuplicateCheckResponse)
def approve_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadApproveRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadApproveResponse | DuplicateCheckResponse | JSONResponse:
    try:
        require_permission(user, "crm.leads.approve")
        if dto.check_duplicates:
            return lead_service.check_duplicates(db, user, lead_id, dto)
        return lead_service.approve_lead(db, user, lead_id, dto)
    except HTTPException as exc:
        return _exception_response(request, exc, "crm_lead_approve_failed")


@leads_router.post("/leads/{lead_id}/reject", response_model=LeadRead)
def reject_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadRejectRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "crm.leads.reject")
        return lead_service.reject_lead(db, user, lead_id, dto)
    except HTTPException as exc:
        return _exception_response(request, exc, "crm_lead_reject_failed")
