from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session
from datetime import date, datetime
from typing import List, Optional
import logging

from database import get_db, get_session_factory
from crud import administration as crud_administration
from crud import medication_order as crud_order
from crud.usage_history import get_usage_for_schedule
from exceptions import NotFoundError
from schemas.administration import (
    AdministrationEvent,
    AdministerRequest,
    AdministerResult,
    BulkAdministerRequest,
    BulkAdministerResponse,
    BulkItemResult,
    ConfirmRequest,
    MarkAbsentRequest,
    MarkMissedRequest,
    QuickCompleteRequest,
)
from schemas.dose_schedule import DailySchedule, DoseSchedule
from schemas.usage_history import UsageHistoryEntry
from utils.attendance import AttendanceProvider, get_attendance
from utils.clock import get_now
from utils.notifier import Notifier, get_notifier
from utils.tenancy import get_tenant_id

router = APIRouter(prefix="/dose-schedules", tags=["dose-schedules"])
logger = logging.getLogger(__name__)


def _result(db: Session, schedule_id: int, event) -> AdministerResult:
    return AdministerResult(
        schedule=DoseSchedule.model_validate(crud_order.get_schedule(db, schedule_id)),
        administration=AdministrationEvent.model_validate(event) if event is not None else None,
    )


@router.get("/daily/", response_model=DailySchedule)
def get_daily_schedule(
    day: Optional[date] = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    now: datetime = Depends(get_now),
):
    """All doses due on `day` (default today) for the school."""
    return crud_order.get_daily_schedule(db, day or now.date(), tenant_id)


@router.post("/bulk-administer", response_model=BulkAdministerResponse)
def bulk_administer(
    body: BulkAdministerRequest,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
    tenant_id: str = Depends(get_tenant_id),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    """
    Administer several doses at once. Each dose succeeds or fails on its own;
    the response lists the outcome per schedule id.
    """
    # Ids outside the school are reported as not found rather than touched.
    foreign = set()
    for schedule_id in set(body.schedule_ids):
        try:
            crud_order.get_schedule(db, schedule_id, tenant_id)
        except NotFoundError:
            foreign.add(schedule_id)
    allowed = [sid for sid in body.schedule_ids if sid not in foreign]

    processed = iter(crud_administration.bulk_administer(
        session_factory, allowed, x_user_id, body.actual_dosage,
        now=now, early=body.early, notifier=notifier,
    ))
    results = []
    for schedule_id in body.schedule_ids:
        if schedule_id in foreign:
            results.append(BulkItemResult(
                schedule_id=schedule_id,
                outcome="failed:NotFoundError",
                detail=NotFoundError("DoseSchedule", schedule_id).message,
            ))
        else:
            results.append(next(processed))

    success_count = sum(1 for r in results if r.succeeded)
    logger.info(f"Bulk administration by {x_user_id}: {success_count}/{len(results)} succeeded")
    return BulkAdministerResponse(
        total_requested=len(body.schedule_ids),
        success_count=success_count,
        failure_count=len(results) - success_count,
        results=results,
    )


@router.get("/{schedule_id}", response_model=DoseSchedule)
def get_schedule(schedule_id: int, db: Session = Depends(get_db), tenant_id: str = Depends(get_tenant_id)):
    return crud_order.get_schedule(db, schedule_id, tenant_id)


@router.get("/{schedule_id}/usage/", response_model=List[UsageHistoryEntry])
def get_schedule_usage(schedule_id: int, db: Session = Depends(get_db), tenant_id: str = Depends(get_tenant_id)):
    crud_order.get_schedule(db, schedule_id, tenant_id)
    return get_usage_for_schedule(db, schedule_id)


@router.post("/{schedule_id}/administer", response_model=AdministerResult)
def administer(
    schedule_id: int,
    body: AdministerRequest,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    crud_order.get_schedule(db, schedule_id, tenant_id)
    event = crud_administration.administer(
        db, schedule_id, x_user_id, body.actual_dosage,
        now=now,
        early=body.early,
        notes=body.notes,
        side_effects=body.side_effects,
        student_refused=body.student_refused,
        refusal_reason=body.refusal_reason,
        notifier=notifier,
    )
    return _result(db, schedule_id, event)


@router.post("/{schedule_id}/confirm", response_model=AdministerResult)
def confirm(
    schedule_id: int,
    body: ConfirmRequest,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    crud_order.get_schedule(db, schedule_id, tenant_id)
    event = crud_administration.confirm(
        db, schedule_id, x_user_id, body.actual_dosage, now=now, notes=body.notes, notifier=notifier,
    )
    return _result(db, schedule_id, event)


@router.post("/{schedule_id}/quick-complete", response_model=AdministerResult)
def quick_complete(
    schedule_id: int,
    body: QuickCompleteRequest,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    crud_order.get_schedule(db, schedule_id, tenant_id)
    event = crud_administration.quick_complete(db, schedule_id, x_user_id, now=now, notes=body.notes, notifier=notifier)
    return _result(db, schedule_id, event)


@router.post("/{schedule_id}/missed", response_model=DoseSchedule)
def mark_missed(
    schedule_id: int,
    body: MarkMissedRequest,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    crud_order.get_schedule(db, schedule_id, tenant_id)
    return crud_administration.mark_missed(
        db, schedule_id, body.reason, x_user_id, now=now, notes=body.notes, notifier=notifier,
    )


@router.post("/{schedule_id}/absent", response_model=DoseSchedule)
def mark_absent(
    schedule_id: int,
    body: MarkAbsentRequest,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    now: datetime = Depends(get_now),
    notifier: Notifier = Depends(get_notifier),
    attendance: Optional[AttendanceProvider] = Depends(get_attendance),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    crud_order.get_schedule(db, schedule_id, tenant_id)
    return crud_administration.mark_absent(
        db, schedule_id, x_user_id, now=now, notes=body.notes, notifier=notifier, attendance=attendance,
    )
