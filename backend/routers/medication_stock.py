from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session
from datetime import datetime
from typing import List, Optional
import logging

from database import get_db
from crud import medication_order as crud_order
from crud import stock_ledger
from schemas.stock import StockBalance, StockEntry, StockEntryCreate
from utils.clock import get_now
from utils.tenancy import get_tenant_id

router = APIRouter(prefix="/medication-orders/{order_id}/stock", tags=["medication-stock"])
logger = logging.getLogger(__name__)


@router.post("/", response_model=StockEntry)
def add_stock(
    order_id: int,
    entry: StockEntryCreate,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    now: datetime = Depends(get_now),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    """Record a batch of medicine handed in by a guardian."""
    stock_entry = crud_order.add_stock_for_order(
        db, order_id, entry, tenant_id, changed_by=x_user_id, today=now.date(),
    )
    logger.info(f"Stock entry {stock_entry.id} ({entry.quantity} {entry.unit}) added to order {order_id} by {x_user_id}")
    return stock_entry


@router.get("/", response_model=StockBalance)
def get_balance(order_id: int, db: Session = Depends(get_db), tenant_id: str = Depends(get_tenant_id)):
    return crud_order.get_stock_balance(db, order_id, tenant_id)


@router.get("/entries/", response_model=List[StockEntry])
def get_entries(order_id: int, db: Session = Depends(get_db), tenant_id: str = Depends(get_tenant_id)):
    order = crud_order.get_order(db, order_id, tenant_id)
    return stock_ledger.entries(db, order)
