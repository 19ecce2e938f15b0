from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from datetime import date
from typing import List, Optional

from database import get_db
from crud.usage_history import get_usage_history
from models.usage_history import UsageStatus
from schemas.usage_history import UsageHistoryEntry
from utils.tenancy import get_tenant_id

router = APIRouter(prefix="/usage-history", tags=["usage-history"])


@router.get("/", response_model=List[UsageHistoryEntry])
def list_usage_history(
    order_id: Optional[int] = None,
    student_id: Optional[str] = None,
    status: Optional[UsageStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    """What happened at each dose, newest first."""
    return get_usage_history(
        db,
        tenant_id=tenant_id,
        order_id=order_id,
        student_id=student_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
    )
