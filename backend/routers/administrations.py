from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
import logging

from database import get_db
from crud import administration as crud_administration
from exceptions import NotFoundError
from models.administration_event import AdministrationEvent as AdministrationEventModel
from models.medication_order import MedicationOrder as MedicationOrderModel
from schemas.administration import AdministrationEvent, CorrectionRequest, ReturnRequest
from utils.clock import get_now
from utils.notifier import Notifier, get_notifier
from utils.tenancy import get_tenant_id

router = APIRouter(prefix="/administrations", tags=["administrations"])
logger = logging.getLogger(__name__)


def _get_event(db: Session, administration_id: int, tenant_id: str) -> AdministrationEventModel:
    event = db.query(AdministrationEventModel).join(
        MedicationOrderModel, AdministrationEventModel.order_id == MedicationOrderModel.id
    ).filter(
        AdministrationEventModel.id == administration_id,
        MedicationOrderModel.tenant_id == tenant_id,
    ).first()
    if not event:
        raise NotFoundError("AdministrationEvent", administration_id)
    return event


@router.get("/{administration_id}", response_model=AdministrationEvent)
def get_administration(administration_id: int, db: Session = Depends(get_db), tenant_id: str = Depends(get_tenant_id)):
    return _get_event(db, administration_id, tenant_id)


@router.post("/{administration_id}/corrections", response_model=AdministrationEvent)
def correct_administration(
    administration_id: int,
    body: CorrectionRequest,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    """Append a correction; the original administration is left untouched."""
    _get_event(db, administration_id, tenant_id)
    return crud_administration.correct(
        db, administration_id, body.reason, body.adjustment, x_user_id, now=now, notifier=notifier,
    )


@router.post("/{administration_id}/returns", response_model=AdministrationEvent)
def return_dose(
    administration_id: int,
    body: ReturnRequest,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    _get_event(db, administration_id, tenant_id)
    return crud_administration.return_dose(
        db, administration_id, body.quantity, body.reason, x_user_id, now=now, notifier=notifier,
    )
