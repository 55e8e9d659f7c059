import contextlib
import logging
from datetime import date, datetime, tzinfo
from typing import Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import and_, case
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, func, or_, select

from .core.config import settings
from .core.errors import InvalidArgument, Unavailable
from .models import Product, StockTransaction, TransactionType
from .reconciliation import (
    StockTotals,
    aggregate_by_product,
    bucket_by_day,
    classify_status,
    date_range_window,
    day_window,
    derive_current_stock,
    derive_initial_stock,
    month_window,
)
from .schemas import (
    DailySalesItem,
    DailySalesReport,
    InventoryStatusReport,
    InventoryStatusRow,
    MonthlySalesReport,
    SalesTotals,
    StockReport,
    StockReportRow,
)

logger = logging.getLogger(__name__)


def get_report_timezone(name: Optional[str] = None) -> ZoneInfo:
    name = name or settings.REPORT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidArgument(f"Unknown timezone: {name}", timezone=name)


def ledger_totals(
    session: Session,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    product_ids: Optional[List[int]] = None,
) -> Dict[int, StockTotals]:
    """In/out sums per product, grouped in SQL, optionally windowed on date."""
    query = select(
        StockTransaction.product_id,
        StockTransaction.type,
        func.sum(StockTransaction.quantity).label("quantity"),
    ).group_by(StockTransaction.product_id, StockTransaction.type)
    if start is not None:
        query = query.where(StockTransaction.date >= start)
    if end is not None:
        query = query.where(StockTransaction.date < end)
    if product_ids is not None:
        query = query.where(StockTransaction.product_id.in_(product_ids))
    return aggregate_by_product(session.exec(query).all())


class ReportGenerator:
    """
    Read-only reports over the ledger, recomputed on every call.

    Sales are valued at each product's current price, not the price at the
    time of sale. Day and month boundaries are midnights in ``tz``.
    """

    def __init__(self, session: Session, tz: Optional[tzinfo] = None):
        self.session = session
        self.tz = tz or get_report_timezone()

    @property
    def timezone_name(self) -> str:
        return str(getattr(self.tz, "key", self.tz))

    def daily_sales(self, day: Optional[date]) -> DailySalesReport:
        with self._guard():
            start, end = day_window(day, self.tz)
            transactions = self._sales_between(start, end)
            catalog = self._catalog(tr.product_id for tr in transactions)
            prices = {pid: p.price for pid, p in catalog.items()}

            items: Dict[int, DailySalesItem] = {}
            for tr in transactions:
                product = catalog.get(tr.product_id)
                item = items.setdefault(
                    tr.product_id,
                    DailySalesItem(
                        product_id=tr.product_id,
                        name=product.name if product else None,
                        price=(product.price or 0) if product else 0,
                    ),
                )
                item.qty += tr.quantity
                item.subtotal += tr.quantity * item.price

            return DailySalesReport(
                date=day,
                timezone=self.timezone_name,
                totals=self._totals(transactions, prices),
                items=[items[pid] for pid in sorted(items)],
            )

    def monthly_sales(self, month: Optional[int], year: Optional[int]) -> MonthlySalesReport:
        with self._guard():
            start, end = month_window(month, year, self.tz)
            transactions = self._sales_between(start, end)
            catalog = self._catalog(tr.product_id for tr in transactions)
            prices = {pid: p.price for pid, p in catalog.items()}

            return MonthlySalesReport(
                month=month,
                year=year,
                timezone=self.timezone_name,
                totals=self._totals(transactions, prices),
                daily=bucket_by_day(transactions, prices, self.tz),
            )

    def inventory_status(self, search: Optional[str] = None) -> InventoryStatusReport:
        with self._guard():
            rows = []
            for product, entry in self._products_with_totals(search=search):
                has_initial = product.initial_stock is not None
                initial = derive_initial_stock(product, entry.in_qty, entry.out_qty)
                current = derive_current_stock(
                    initial, entry.in_qty, entry.out_qty, has_initial, product.quantity
                )
                rows.append(
                    InventoryStatusRow(
                        product_id=product.id,
                        name=product.name,
                        sku=product.sku,
                        category=product.category,
                        stock=current,
                        initial_stock=initial,
                        status=classify_status(current, initial),
                        drift=product.quantity - current,
                    )
                )
            return InventoryStatusReport(count=len(rows), data=rows)

    def stock_report(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> StockReport:
        with self._guard():
            start, end = date_range_window(start_date, end_date, self.tz)

            rows = []
            for product, entry in self._products_with_totals(start=start, end=end):
                initial = derive_initial_stock(product, entry.in_qty, entry.out_qty)
                rows.append(
                    StockReportRow(
                        product_id=product.id,
                        name=product.name,
                        sku=product.sku,
                        category=product.category,
                        initial=initial,
                        stocked_in=entry.in_qty,
                        sold=entry.out_qty,
                        current=derive_current_stock(
                            initial,
                            entry.in_qty,
                            entry.out_qty,
                            product.initial_stock is not None,
                            product.quantity,
                        ),
                    )
                )
            return StockReport(count=len(rows), start_date=start_date, end_date=end_date, data=rows)

    @contextlib.contextmanager
    def _guard(self):
        try:
            yield
        except OperationalError as e:
            logger.error("Report query failed, database unavailable: %s", e.orig)
            raise Unavailable("Database unavailable, please retry") from e

    def _products_with_totals(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        search: Optional[str] = None,
    ) -> List[Tuple[Product, StockTotals]]:
        """Every product with its in/out sums, read in a single statement."""
        def summed(tr_type: TransactionType):
            quantity = case((StockTransaction.type == tr_type, StockTransaction.quantity), else_=0)
            return func.coalesce(func.sum(quantity), 0)

        joined = [StockTransaction.product_id == Product.id]
        if start is not None:
            joined.append(StockTransaction.date >= start)
        if end is not None:
            joined.append(StockTransaction.date < end)

        query = (
            select(Product, summed(TransactionType.IN), summed(TransactionType.OUT))
            .outerjoin(StockTransaction, and_(*joined))
            .group_by(Product.id)
            .order_by(Product.id)
        )
        if search:
            needle = search.lower()
            query = query.where(
                or_(
                    func.lower(Product.name).contains(needle, autoescape=True),
                    func.lower(Product.sku).contains(needle, autoescape=True),
                )
            )
        return [
            (product, StockTotals(in_qty=int(in_qty), out_qty=int(out_qty)))
            for product, in_qty, out_qty in self.session.exec(query).all()
        ]

    def _sales_between(self, start: datetime, end: datetime) -> List[StockTransaction]:
        query = (
            select(StockTransaction)
            .where(
                StockTransaction.type == TransactionType.OUT,
                StockTransaction.date >= start,
                StockTransaction.date < end,
            )
            .order_by(StockTransaction.date, StockTransaction.id)
        )
        return list(self.session.exec(query).all())

    def _catalog(self, product_ids: Iterable[int]) -> Dict[int, Product]:
        ids = set(product_ids)
        if not ids:
            return {}
        products = self.session.exec(select(Product).where(Product.id.in_(ids))).all()
        return {p.id: p for p in products}

    def _totals(self, transactions: List[StockTransaction], prices: Dict[int, float]) -> SalesTotals:
        buckets = bucket_by_day(transactions, prices, self.tz)
        return SalesTotals(
            total_sales=sum(b.sales for b in buckets),
            transactions=sum(b.transactions for b in buckets),
            items_sold=sum(tr.quantity for tr in transactions),
        )
