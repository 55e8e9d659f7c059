from datetime import date as Date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import TransactionType
from .reconciliation import DayBucket, StockStatus


class RequestModel(BaseModel):
    """Request payloads reject fields they do not know about."""

    model_config = ConfigDict(extra="forbid")


# Requests

class TransactionCreate(RequestModel):
    product_id: int = Field(..., description="Product the stock change applies to")
    type: TransactionType = Field(..., description="in (restock) or out (sale)")
    quantity: int = Field(..., gt=0, description="Units moved, always positive")
    supplier_id: Optional[int] = Field(None, description="Supplier of an inbound delivery")
    notes: Optional[str] = Field(None, max_length=500)
    date: Optional[datetime] = Field(None, description="Defaults to now")


class SaleItem(RequestModel):
    product_id: int
    quantity: int = Field(..., gt=0)


class PaymentContext(RequestModel):
    """Sale totals, passed through as given."""

    payment_method: Optional[str] = None
    total: Optional[float] = None
    tax: Optional[float] = None
    grand_total: Optional[float] = None


class SaleCreate(PaymentContext):
    items: List[SaleItem] = Field(..., min_length=1)

    def payment(self) -> PaymentContext:
        return PaymentContext(
            payment_method=self.payment_method,
            total=self.total,
            tax=self.tax,
            grand_total=self.grand_total,
        )


# Ledger results

class TransactionRead(BaseModel):
    id: int
    product_id: int
    product_name: Optional[str] = None
    sku: Optional[str] = None
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    type: TransactionType
    quantity: int
    date: datetime
    user_id: Optional[int] = None
    username: Optional[str] = None
    notes: Optional[str] = None


class TransactionPage(BaseModel):
    count: int
    total: int
    page: int
    pages: int
    data: List[TransactionRead]


class SaleResult(BaseModel):
    transactions: List[TransactionRead]
    summary: PaymentContext


class ReversalResult(BaseModel):
    transaction_id: int
    product_id: int
    stock_corrected: bool
    quantity: Optional[int] = None  # product quantity after the reversal


class RebuildResult(BaseModel):
    product_id: int
    previous_quantity: int
    quantity: int
    status: Literal["unchanged", "corrected", "authoritative"]


# Reports

class SalesTotals(BaseModel):
    total_sales: float = 0.0
    transactions: int = 0
    items_sold: int = 0


class DailySalesItem(BaseModel):
    product_id: int
    name: Optional[str] = None
    price: float = 0.0
    qty: int = 0
    subtotal: float = 0.0


class DailySalesReport(BaseModel):
    date: Date
    timezone: str
    totals: SalesTotals
    items: List[DailySalesItem]


class MonthlySalesReport(BaseModel):
    month: int
    year: int
    timezone: str
    totals: SalesTotals
    daily: List[DayBucket]


class InventoryStatusRow(BaseModel):
    product_id: int
    name: str
    sku: str
    category: Optional[str] = None
    stock: int
    initial_stock: int
    status: StockStatus
    # quantity minus recomputed stock, non-zero means the ledger drifted
    drift: int = 0


class InventoryStatusReport(BaseModel):
    count: int
    data: List[InventoryStatusRow]


class StockReportRow(BaseModel):
    product_id: int
    name: str
    sku: str
    category: Optional[str] = None
    initial: int
    stocked_in: int
    sold: int
    current: int


class StockReport(BaseModel):
    count: int
    start_date: Optional[Date] = None
    end_date: Optional[Date] = None
    data: List[StockReportRow]
