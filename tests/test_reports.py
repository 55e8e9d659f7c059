"""Tests for ReportGenerator."""

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import event

from stock_ledger.core.errors import InvalidArgument
from stock_ledger.reconciliation import StockStatus
from stock_ledger.reports import ReportGenerator, get_report_timezone


@pytest.fixture
def sales_ledger(processor, make_product):
    """Two products with sales spread over March 10th and 11th, 2025 (UTC)."""
    widget = make_product(name="Widget", sku="WID-001", price=2.5)
    gadget = make_product(name="Gadget", sku="GAD-002", price=4.0)

    processor.apply_single(widget.id, "out", 2, date=datetime(2025, 3, 10, 9, 0))
    processor.apply_single(widget.id, "in", 5, date=datetime(2025, 3, 10, 10, 0))
    processor.apply_single(gadget.id, "out", 3, date=datetime(2025, 3, 10, 12, 0))
    processor.apply_single(widget.id, "out", 1, date=datetime(2025, 3, 10, 23, 59, 59))
    processor.apply_single(widget.id, "out", 4, date=datetime(2025, 3, 11, 0, 0))
    processor.apply_single(gadget.id, "out", 1, date=datetime(2025, 4, 1, 0, 0))
    return widget, gadget


class TestDailySales:
    """Tests for the daily sales report."""

    def test_line_items_and_totals(self, reports, sales_ledger) -> None:
        widget, gadget = sales_ledger

        report = reports.daily_sales(date(2025, 3, 10))

        assert report.date == date(2025, 3, 10)
        assert report.timezone == "UTC"
        assert [(i.product_id, i.qty, i.subtotal) for i in report.items] == [
            (widget.id, 3, 7.5),
            (gadget.id, 3, 12.0),
        ]
        assert report.items[0].name == "Widget"
        assert report.items[0].price == 2.5
        assert report.totals.total_sales == 19.5
        assert report.totals.transactions == 3
        assert report.totals.items_sold == 6

    def test_empty_day(self, reports, sales_ledger) -> None:
        report = reports.daily_sales(date(2025, 3, 12))
        assert report.items == []
        assert report.totals.total_sales == 0
        assert report.totals.transactions == 0

    def test_date_is_required(self, reports) -> None:
        with pytest.raises(InvalidArgument):
            reports.daily_sales(None)

    def test_deleted_product_has_no_price(self, reports, session, processor, make_product) -> None:
        gone = make_product(price=9.0)
        processor.apply_single(gone.id, "out", 2, date=datetime(2025, 3, 10, 8))
        session.delete(gone)
        session.commit()

        report = reports.daily_sales(date(2025, 3, 10))

        assert report.items[0].name is None
        assert report.items[0].price == 0
        assert report.items[0].qty == 2
        assert report.totals.total_sales == 0
        assert report.totals.transactions == 1

    def test_day_boundaries_follow_timezone(self, session, sales_ledger) -> None:
        """Test 00:00 UTC on March 11th still belongs to March 10th in New York."""
        reports = ReportGenerator(session, tz=ZoneInfo("America/New_York"))

        report = reports.daily_sales(date(2025, 3, 10))

        assert report.timezone == "America/New_York"
        # 09:00, 12:00, 23:59:59 and 00:00 UTC are all on March 10th (UTC-4 after DST)
        assert report.totals.transactions == 4
        assert report.totals.items_sold == 10


class TestMonthlySales:
    """Tests for the monthly sales report."""

    def test_daily_buckets(self, reports, sales_ledger) -> None:
        report = reports.monthly_sales(3, 2025)

        assert [(b.day, b.sales, b.transactions) for b in report.daily] == [
            ("2025-03-10", 19.5, 3),
            ("2025-03-11", 10.0, 1),
        ]
        assert report.totals.total_sales == 29.5
        assert report.totals.transactions == 4

    def test_month_excludes_next_month(self, reports, sales_ledger) -> None:
        report = reports.monthly_sales(4, 2025)
        assert [b.day for b in report.daily] == ["2025-04-01"]

    def test_daily_report_matches_monthly_bucket(self, reports, sales_ledger) -> None:
        monthly = reports.monthly_sales(3, 2025)

        for bucket in monthly.daily:
            daily = reports.daily_sales(date.fromisoformat(bucket.day))
            assert daily.totals.total_sales == bucket.sales
            assert daily.totals.transactions == bucket.transactions

    @pytest.mark.parametrize("month,year", [(0, 2025), (13, 2025), (None, 2025), (3, None)])
    def test_invalid_month_or_year(self, reports, month, year) -> None:
        with pytest.raises(InvalidArgument):
            reports.monthly_sales(month, year)


class TestInventoryStatus:
    """Tests for the inventory status report."""

    def test_status_per_product(self, reports, processor, make_product) -> None:
        ok = make_product(name="Hammer", sku="HAM-1")
        low = make_product(name="Nails", sku="NAI-1")
        out = make_product(name="Screws", sku="SCR-1")
        processor.apply_single(low.id, "out", 50)
        processor.apply_single(out.id, "out", 100)

        rows = {r.product_id: r for r in reports.inventory_status().data}

        assert rows[ok.id].status == StockStatus.OK
        assert rows[low.id].status == StockStatus.LOW
        assert rows[low.id].stock == 50
        assert rows[out.id].status == StockStatus.OUT
        assert rows[out.id].initial_stock == 100

    def test_back_derived_initial_stock(self, reports, processor, make_product) -> None:
        p = make_product(quantity=30, initial_stock=None)
        processor.apply_single(p.id, "in", 20)
        processor.apply_single(p.id, "out", 10)

        row = reports.inventory_status().data[0]

        assert row.stock == 40
        assert row.initial_stock == 30
        assert row.status == StockStatus.OK
        assert row.drift == 0

    def test_drift_is_reported(self, reports, session, processor, product) -> None:
        processor.apply_single(product.id, "out", 10)
        product.quantity = 85
        session.add(product)
        session.commit()

        row = reports.inventory_status().data[0]

        assert row.stock == 90
        assert row.drift == -5

    def test_search_is_case_insensitive_on_name_and_sku(self, reports, make_product) -> None:
        make_product(name="Blue Paint", sku="PNT-BLU")
        make_product(name="Red Paint", sku="PNT-RED")
        make_product(name="Brush", sku="BR-100")

        assert reports.inventory_status("paint").count == 2
        assert reports.inventory_status("br-1").count == 1
        assert reports.inventory_status("BLU").data[0].name == "Blue Paint"
        assert reports.inventory_status("%").count == 0

    def test_reads_products_and_ledger_in_one_statement(self, reports, engine, processor, product) -> None:
        """Test drift cannot come from a write landing between two reads."""
        processor.apply_single(product.id, "out", 10)
        statements = []

        def record(conn, cursor, statement, *args) -> None:
            statements.append(statement)

        event.listen(engine, "before_cursor_execute", record)
        try:
            row = reports.inventory_status().data[0]
        finally:
            event.remove(engine, "before_cursor_execute", record)

        assert len(statements) == 1
        assert row.stock == 90
        assert row.drift == 0


class TestStockReport:
    """Tests for the stock movement report."""

    def test_all_history(self, reports, sales_ledger) -> None:
        widget, gadget = sales_ledger

        rows = {r.product_id: r for r in reports.stock_report().data}

        assert (rows[widget.id].stocked_in, rows[widget.id].sold) == (5, 7)
        assert rows[widget.id].initial == 100
        assert rows[widget.id].current == 98
        assert (rows[gadget.id].stocked_in, rows[gadget.id].sold) == (0, 4)

    def test_window_restricts_movements(self, reports, sales_ledger) -> None:
        widget, gadget = sales_ledger

        report = reports.stock_report(date(2025, 3, 11), date(2025, 3, 31))
        rows = {r.product_id: r for r in report.data}

        assert report.count == 2
        assert report.start_date == date(2025, 3, 11)
        assert (rows[widget.id].stocked_in, rows[widget.id].sold) == (0, 4)
        assert (rows[gadget.id].stocked_in, rows[gadget.id].sold) == (0, 0)

    def test_open_ended_window(self, reports, sales_ledger) -> None:
        widget, _ = sales_ledger
        rows = {r.product_id: r for r in reports.stock_report(end_date=date(2025, 3, 10)).data}
        assert (rows[widget.id].stocked_in, rows[widget.id].sold) == (5, 3)

    def test_reversed_window(self, reports) -> None:
        with pytest.raises(InvalidArgument):
            reports.stock_report(date(2025, 3, 2), date(2025, 3, 1))


class TestReportTimezone:
    def test_unknown_timezone(self) -> None:
        with pytest.raises(InvalidArgument):
            get_report_timezone("Mars/Olympus_Mons")

    def test_default_from_settings(self) -> None:
        assert get_report_timezone().key == "UTC"
