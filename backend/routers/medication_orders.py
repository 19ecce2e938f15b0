from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session
from datetime import datetime
from typing import List, Optional
import logging

from database import get_db
from crud import medication_order as crud_order
from crud.administration import get_administrations
from crud.audit_log import get_audit_logs
from models.medication_order import OrderStatus
from schemas.administration import AdministrationEvent
from schemas.audit_log import AuditLog
from schemas.dose_schedule import DoseSchedule
from schemas.medication_order import (
    ApprovedMedicationOrder,
    DiscontinueRequest,
    MedicationOrder,
    RegenerateResult,
)
from utils.clock import get_now
from utils.tenancy import get_tenant_id

router = APIRouter(prefix="/medication-orders", tags=["medication-orders"])
logger = logging.getLogger(__name__)


@router.post("/", response_model=MedicationOrder)
def ingest_order(
    approved: ApprovedMedicationOrder,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    now: datetime = Depends(get_now),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    """Receive an approved order (or an edit of one) from the approval workflow."""
    order = crud_order.ingest_approved_order(db, approved, tenant_id=tenant_id, changed_by=x_user_id, now=now)
    logger.info(f"Order {order.id} ingested by {x_user_id or approved.approved_by}")
    return order


@router.get("/", response_model=List[MedicationOrder])
def list_orders(
    student_id: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    return crud_order.list_orders(db, tenant_id, student_id=student_id, status=status)


@router.get("/{order_id}", response_model=MedicationOrder)
def get_order(order_id: int, db: Session = Depends(get_db), tenant_id: str = Depends(get_tenant_id)):
    return crud_order.get_order(db, order_id, tenant_id)


@router.get("/{order_id}/schedules/", response_model=List[DoseSchedule])
def get_order_schedules(order_id: int, db: Session = Depends(get_db), tenant_id: str = Depends(get_tenant_id)):
    crud_order.get_order(db, order_id, tenant_id)
    return crud_order.get_schedules(db, order_id)


@router.post("/{order_id}/schedules/generate", response_model=List[DoseSchedule])
def generate_schedules(
    order_id: int,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    return crud_order.generate_schedules(db, order_id, tenant_id, changed_by=x_user_id)


@router.post("/{order_id}/schedules/regenerate", response_model=RegenerateResult)
def regenerate_schedules(
    order_id: int,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    now: datetime = Depends(get_now),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    return crud_order.regenerate_schedules(db, order_id, tenant_id, changed_by=x_user_id, now=now)


@router.get("/{order_id}/administrations/", response_model=List[AdministrationEvent])
def get_order_administrations(order_id: int, db: Session = Depends(get_db), tenant_id: str = Depends(get_tenant_id)):
    crud_order.get_order(db, order_id, tenant_id)
    return get_administrations(db, order_id)


@router.post("/{order_id}/discontinue", response_model=MedicationOrder)
def discontinue_order(
    order_id: int,
    body: DiscontinueRequest,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    order = crud_order.discontinue_order(db, order_id, body.reason, tenant_id, changed_by=x_user_id)
    logger.info(f"Order {order_id} discontinued by {x_user_id}: {body.reason}")
    return order


@router.post("/{order_id}/archive", response_model=MedicationOrder)
def archive_order(
    order_id: int,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    return crud_order.archive_order(db, order_id, tenant_id, changed_by=x_user_id)


@router.get("/{order_id}/audit/", response_model=List[AuditLog])
def get_order_audit(order_id: int, db: Session = Depends(get_db), tenant_id: str = Depends(get_tenant_id)):
    crud_order.get_order(db, order_id, tenant_id, include_archived=True)
    return get_audit_logs(db, 'medication_order', order_id)
