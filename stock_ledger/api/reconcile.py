from fastapi import APIRouter, Depends, Request
from typing import Any, Dict

from ..core import limiter
from ..core.config import settings
from ..core.security import require_admin
from ..models import User
from ..processor import TransactionProcessor
from .transactions import get_processor

router = APIRouter()


@router.post("/products/{product_id}", response_model=Dict[str, Any])
@limiter.limit(settings.WRITE_RATE_LIMIT)
def rebuild_product(
    request: Request,
    product_id: int,
    processor: TransactionProcessor = Depends(get_processor),
    current_user: User = Depends(require_admin),  # Admin only
):
    """Recompute one product's quantity from its initial stock and the ledger."""
    return {"success": True, "data": processor.rebuild_quantity(product_id, user_id=current_user.id)}


@router.post("/products", response_model=Dict[str, Any])
@limiter.limit(settings.WRITE_RATE_LIMIT)
def rebuild_all_products(
    request: Request,
    processor: TransactionProcessor = Depends(get_processor),
    current_user: User = Depends(require_admin),  # Admin only
):
    results = processor.rebuild_all(user_id=current_user.id)
    corrected = [r for r in results if r.status == "corrected"]
    return {
        "success": True,
        "count": len(results),
        "corrected": len(corrected),
        "data": results,
    }
