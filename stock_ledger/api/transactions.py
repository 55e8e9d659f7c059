from fastapi import APIRouter, Depends, Query, Request, status
from sqlmodel import Session
from typing import Any, Dict, Optional

from ..core import limiter
from ..core.config import settings
from ..core.security import require_user
from ..database import get_read_session, get_write_session
from ..locks import ProductLocks, get_product_locks
from ..models import TransactionType, User
from ..processor import TransactionProcessor
from ..schemas import SaleCreate, TransactionCreate, TransactionPage

router = APIRouter()


def get_processor(
    session: Session = Depends(get_write_session),
    locks: Optional[ProductLocks] = Depends(get_product_locks),
) -> TransactionProcessor:
    return TransactionProcessor(session, locks=locks)


def get_read_processor(session: Session = Depends(get_read_session)) -> TransactionProcessor:
    return TransactionProcessor(session)


@router.get("/", response_model=TransactionPage)
def list_transactions(
    product_id: Optional[int] = None,
    type: Optional[TransactionType] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    processor: TransactionProcessor = Depends(get_read_processor),
    current_user: User = Depends(require_user),
):
    return processor.list_transactions(
        product_id=product_id, type=type, page=page, page_size=page_size
    )


@router.post("/", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.WRITE_RATE_LIMIT)
def create_transaction(
    request: Request,
    payload: TransactionCreate,
    processor: TransactionProcessor = Depends(get_processor),
    current_user: User = Depends(require_user),
):
    transaction = processor.apply_single(
        product_id=payload.product_id,
        type=payload.type,
        quantity=payload.quantity,
        user_id=current_user.id,
        supplier_id=payload.supplier_id,
        notes=payload.notes,
        date=payload.date,
    )
    return {
        "success": True,
        "message": "Transaction created successfully",
        "data": transaction,
    }


@router.post("/sale", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.WRITE_RATE_LIMIT)
def create_sale(
    request: Request,
    payload: SaleCreate,
    processor: TransactionProcessor = Depends(get_processor),
    current_user: User = Depends(require_user),
):
    result = processor.apply_sale(
        payload.items, user_id=current_user.id, payment=payload.payment()
    )
    return {
        "success": True,
        "message": "Sale processed successfully",
        "data": result,
    }


@router.get("/{transaction_id}", response_model=Dict[str, Any])
def get_transaction(
    transaction_id: int,
    processor: TransactionProcessor = Depends(get_read_processor),
    current_user: User = Depends(require_user),
):
    return {"success": True, "data": processor.get_transaction(transaction_id)}


@router.delete("/{transaction_id}", response_model=Dict[str, Any])
@limiter.limit(settings.WRITE_RATE_LIMIT)
def delete_transaction(
    request: Request,
    transaction_id: int,
    force: bool = False,
    processor: TransactionProcessor = Depends(get_processor),
    current_user: User = Depends(require_user),
):
    result = processor.reverse(transaction_id, user_id=current_user.id, force=force)
    return {
        "success": True,
        "message": "Transaction deleted successfully",
        "data": result,
    }
