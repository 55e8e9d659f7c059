from .transactions import router as transactions_router
from .reports import router as reports_router
from .reconcile import router as reconcile_router

__all__ = ["transactions_router", "reports_router", "reconcile_router"]
