from datetime import date as Date
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session
from typing import Optional

from ..core.security import require_user
from ..database import get_read_session
from ..models import User
from ..reports import ReportGenerator
from ..schemas import DailySalesReport, InventoryStatusReport, MonthlySalesReport, StockReport

router = APIRouter()


def get_report_generator(session: Session = Depends(get_read_session)) -> ReportGenerator:
    return ReportGenerator(session)


@router.get("/daily-sales", response_model=DailySalesReport)
def daily_sales(
    date: Optional[Date] = Query(None, description="Day to report (YYYY-MM-DD)"),
    reports: ReportGenerator = Depends(get_report_generator),
    current_user: User = Depends(require_user),
):
    return reports.daily_sales(date)


@router.get("/monthly-sales", response_model=MonthlySalesReport)
def monthly_sales(
    month: Optional[int] = Query(None, description="Month (1-12)"),
    year: Optional[int] = Query(None, description="Year"),
    reports: ReportGenerator = Depends(get_report_generator),
    current_user: User = Depends(require_user),
):
    return reports.monthly_sales(month, year)


@router.get("/inventory-status", response_model=InventoryStatusReport)
def inventory_status(
    search: Optional[str] = Query(None, description="Filter by name or SKU"),
    reports: ReportGenerator = Depends(get_report_generator),
    current_user: User = Depends(require_user),
):
    return reports.inventory_status(search)


@router.get("/stock-report", response_model=StockReport)
def stock_report(
    start_date: Optional[Date] = Query(None, description="First day (YYYY-MM-DD)"),
    end_date: Optional[Date] = Query(None, description="Last day (YYYY-MM-DD)"),
    reports: ReportGenerator = Depends(get_report_generator),
    current_user: User = Depends(require_user),
):
    return reports.stock_report(start_date, end_date)
