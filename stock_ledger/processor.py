"""
Transaction processor: the only code allowed to change product stock.

Every operation validates first, then mutates ``Product.quantity`` and the
ledger together inside one database transaction, so a failure at any point
leaves both untouched.
"""

import contextlib
import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import delete, update
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, func, select

from .audit import log_audit
from .core.errors import (
    Inconsistent,
    InsufficientStock,
    InvalidArgument,
    LedgerError,
    NotFound,
    Unavailable,
)
from .locks import ProductLocks
from .models import Product, StockTransaction, Supplier, TransactionType, User
from .reconciliation import StockTotals, rebuilt_quantity, to_utc_naive
from .reports import ledger_totals
from .schemas import (
    PaymentContext,
    RebuildResult,
    ReversalResult,
    SaleItem,
    SaleResult,
    TransactionPage,
    TransactionRead,
)

logger = logging.getLogger(__name__)

SaleLine = Union[SaleItem, Mapping[str, Any], Tuple[int, int]]


class TransactionProcessor:
    def __init__(
        self,
        session: Session,
        locks: Optional[ProductLocks] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.locks = locks
        self.clock = clock or datetime.utcnow

    # Writes

    def apply_single(
        self,
        product_id: int,
        type: Union[TransactionType, str],
        quantity: int,
        user_id: Optional[int] = None,
        supplier_id: Optional[int] = None,
        notes: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> TransactionRead:
        with self._guard("apply_single"):
            tr_type = _check_type(type)
            _check_quantity(quantity, product_id=product_id)
            if supplier_id is not None and tr_type != TransactionType.IN:
                raise InvalidArgument(
                    "supplier_id only applies to inbound transactions",
                    supplier_id=supplier_id,
                )

            with self._locked([product_id]):
                product = self._lock_products([product_id]).get(product_id)
                if product is None:
                    raise NotFound(f"Product not found: {product_id}", product_id=product_id)
                if supplier_id is not None and self.session.get(Supplier, supplier_id) is None:
                    raise NotFound(f"Supplier not found: {supplier_id}", supplier_id=supplier_id)
                if tr_type == TransactionType.OUT and product.quantity < quantity:
                    raise InsufficientStock(
                        f"Insufficient stock for product {product.name}",
                        product_id=product_id,
                        available=product.quantity,
                        requested=quantity,
                    )

                now = self.clock()
                transaction = StockTransaction(
                    product_id=product_id,
                    supplier_id=supplier_id,
                    type=tr_type,
                    quantity=quantity,
                    date=to_utc_naive(date) if date else now,
                    user_id=user_id,
                    notes=notes,
                )
                floor = 0 if tr_type == TransactionType.OUT else None
                if not self._adjust_stock(product_id, transaction.delta, now, floor=floor):
                    raise InsufficientStock(
                        f"Insufficient stock for product {product.name}",
                        product_id=product_id,
                        available=self._stored_quantity(product_id),
                        requested=quantity,
                    )
                self.session.add(transaction)
                self.session.commit()
                self.session.refresh(transaction)

            logger.info(
                "Recorded %s of %s for product %s, stock now %s",
                tr_type.value, quantity, product_id, product.quantity,
            )
            return self._read(transaction)

    def apply_sale(
        self,
        items: Sequence[SaleLine],
        user_id: Optional[int] = None,
        payment: Optional[PaymentContext] = None,
    ) -> SaleResult:
        """
        Sell several products at once, all or nothing.

        Every line is checked against current stock before anything is
        deducted. Product rows are read ``FOR UPDATE`` in id order (and
        locked in Redis when configured) so a concurrent sale cannot slip in
        between the check and the deduction.
        """
        payment = payment or PaymentContext()
        with self._guard("apply_sale"):
            lines = _normalize_sale_lines(items)
            product_ids = [product_id for product_id, _ in lines]

            with self._locked(product_ids):
                products = self._lock_products(product_ids)
                self._validate_sale(lines, products)
                created = self._commit_sale(lines, products, user_id, payment)

            logger.info(
                "Sale of %s line(s) recorded (%s)",
                len(created), payment.payment_method or "unknown",
            )
            return SaleResult(
                transactions=[self._read(tr) for tr in created],
                summary=payment,
            )

    def reverse(
        self,
        transaction_id: int,
        user_id: Optional[int] = None,
        force: bool = False,
    ) -> ReversalResult:
        """
        Undo a transaction's stock effect and delete it from the ledger.

        When the product is gone the stock cannot be corrected. That raises
        ``Inconsistent`` unless ``force`` is set, in which case only the
        ledger record is removed and the loss is written to the audit log.
        """
        with self._guard("reverse"):
            transaction = self.session.get(StockTransaction, transaction_id)
            if transaction is None:
                raise NotFound("Transaction not found", transaction_id=transaction_id)
            product_id = transaction.product_id

            with self._locked([product_id]):
                product = self._lock_products([product_id]).get(product_id)
                # Re-read under the locks, another writer may have reversed it meanwhile
                transaction = self._lock_transaction(transaction_id)
                if transaction is None:
                    raise NotFound("Transaction not found", transaction_id=transaction_id)
                user = self.session.get(User, user_id) if user_id is not None else None
                snapshot = _snapshot(transaction)

                if product is None:
                    if not force:
                        raise Inconsistent(
                            f"Product {product_id} no longer exists, stock for "
                            f"transaction {transaction_id} cannot be corrected",
                            transaction_id=transaction_id,
                            product_id=product_id,
                        )
                    log_audit(
                        self.session, "FORCE_DELETE", "StockTransaction", transaction_id,
                        old_values=snapshot, new_values={"stock_corrected": False}, user=user,
                    )
                    self._delete_transaction(transaction)
                    self.session.commit()
                    logger.warning(
                        "Transaction %s deleted without stock correction, product %s is missing",
                        transaction_id, product_id,
                    )
                    return ReversalResult(
                        transaction_id=transaction_id,
                        product_id=product_id,
                        stock_corrected=False,
                    )

                delta = transaction.delta
                self._delete_transaction(transaction)
                self._adjust_stock(product_id, -delta, self.clock())
                current = self._stored_quantity(product_id)
                previous = current + delta
                log_audit(
                    self.session, "REVERSE", "StockTransaction", transaction_id,
                    old_values={**snapshot, "product_quantity": previous},
                    new_values={"product_quantity": current},
                    user=user,
                )
                self.session.commit()

            logger.info(
                "Reversed transaction %s, product %s stock %s -> %s",
                transaction_id, product_id, previous, current,
            )
            return ReversalResult(
                transaction_id=transaction_id,
                product_id=product_id,
                stock_corrected=True,
                quantity=current,
            )

    def rebuild_quantity(self, product_id: int, user_id: Optional[int] = None) -> RebuildResult:
        """Recompute one product's quantity from its initial stock and full ledger."""
        with self._guard("rebuild_quantity"):
            with self._locked([product_id]):
                product = self._lock_products([product_id]).get(product_id)
                if product is None:
                    raise NotFound(f"Product not found: {product_id}", product_id=product_id)
                user = self.session.get(User, user_id) if user_id is not None else None
                totals = ledger_totals(self.session, product_ids=[product_id])
                result = self._rebuild(product, totals.get(product_id, StockTotals()), user)
                self.session.commit()
            return result

    def rebuild_all(self, user_id: Optional[int] = None) -> List[RebuildResult]:
        with self._guard("rebuild_all"):
            product_ids = list(self.session.exec(select(Product.id).order_by(Product.id)).all())
            with self._locked(product_ids):
                products = self._lock_products(product_ids)
                user = self.session.get(User, user_id) if user_id is not None else None
                totals = ledger_totals(self.session)
                results = [
                    self._rebuild(products[pid], totals.get(pid, StockTotals()), user)
                    for pid in product_ids
                    if pid in products
                ]
                self.session.commit()
            corrected = sum(1 for r in results if r.status == "corrected")
            logger.info("Rebuilt %s product(s), %s corrected", len(results), corrected)
            return results

    # Reads

    def list_transactions(
        self,
        product_id: Optional[int] = None,
        type: Optional[Union[TransactionType, str]] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> TransactionPage:
        with self._guard("list_transactions"):
            if page < 1 or page_size < 1:
                raise InvalidArgument("page and page_size must be >= 1", page=page, page_size=page_size)

            conditions = []
            if product_id is not None:
                conditions.append(StockTransaction.product_id == product_id)
            if type:
                conditions.append(StockTransaction.type == _check_type(type))

            total = self.session.exec(
                select(func.count()).select_from(StockTransaction).where(*conditions)
            ).one()
            query = (
                select(StockTransaction)
                .where(*conditions)
                .order_by(StockTransaction.date.desc(), StockTransaction.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            transactions = self.session.exec(query).all()

            return TransactionPage(
                count=len(transactions),
                total=total,
                page=page,
                pages=math.ceil(total / page_size),
                data=[self._read(tr) for tr in transactions],
            )

    def get_transaction(self, transaction_id: int) -> TransactionRead:
        with self._guard("get_transaction"):
            transaction = self.session.get(StockTransaction, transaction_id)
            if transaction is None:
                raise NotFound("Transaction not found", transaction_id=transaction_id)
            return self._read(transaction)

    # Internals

    @contextlib.contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except LedgerError as e:
            self.session.rollback()
            logger.warning("%s rejected (%s): %s %s", operation, e.kind, e.message, e.details)
            raise
        except OperationalError as e:
            self.session.rollback()
            logger.error("%s failed, database unavailable: %s", operation, e.orig)
            raise Unavailable("Database unavailable, please retry") from e
        except Exception:
            self.session.rollback()
            raise

    def _locked(self, product_ids: Iterable[int]):
        if self.locks is None:
            return contextlib.nullcontext()
        return self.locks.hold(product_ids)

    def _lock_products(self, product_ids: Iterable[int]) -> Dict[int, Product]:
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        query = (
            select(Product)
            .where(Product.id.in_(ids))
            .order_by(Product.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {product.id: product for product in self.session.exec(query).all()}

    def _lock_transaction(self, transaction_id: int) -> Optional[StockTransaction]:
        query = (
            select(StockTransaction)
            .where(StockTransaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.exec(query).one_or_none()

    def _adjust_stock(
        self,
        product_id: int,
        delta: int,
        now: datetime,
        floor: Optional[int] = None,
    ) -> bool:
        """
        Add ``delta`` to the stored quantity in SQL rather than writing back a
        value read earlier. With ``floor`` set the row is only updated while
        the result stays at or above it. Returns whether the row was updated.
        """
        statement = update(Product).where(Product.id == product_id)
        if floor is not None:
            statement = statement.where(Product.quantity + delta >= floor)
        statement = statement.values(
            quantity=Product.quantity + delta, updated_at=now
        ).execution_options(synchronize_session=False)
        return self.session.exec(statement).rowcount == 1

    def _stored_quantity(self, product_id: int) -> Optional[int]:
        query = select(Product.quantity).where(Product.id == product_id)
        return self.session.exec(query).one_or_none()

    def _delete_transaction(self, transaction: StockTransaction) -> None:
        statement = (
            delete(StockTransaction)
            .where(StockTransaction.id == transaction.id)
            .execution_options(synchronize_session=False)
        )
        if self.session.exec(statement).rowcount != 1:
            raise NotFound("Transaction not found", transaction_id=transaction.id)
        self.session.expunge(transaction)

    def _validate_sale(self, lines: List[Tuple[int, int]], products: Dict[int, Product]) -> None:
        requested: Dict[int, int] = {}
        for index, (product_id, quantity) in enumerate(lines):
            product = products.get(product_id)
            if product is None:
                raise NotFound(
                    f"Product not found: {product_id}",
                    product_id=product_id,
                    item_index=index,
                )
            # The same product may appear on several lines
            requested[product_id] = requested.get(product_id, 0) + quantity
            if (product.quantity or 0) < requested[product_id]:
                raise InsufficientStock(
                    f"Insufficient stock for product {product.name}",
                    product_id=product_id,
                    item_index=index,
                    available=product.quantity,
                    requested=requested[product_id],
                )

    def _commit_sale(
        self,
        lines: List[Tuple[int, int]],
        products: Dict[int, Product],
        user_id: Optional[int],
        payment: PaymentContext,
    ) -> List[StockTransaction]:
        now = self.clock()
        notes = f"Sale - {payment.payment_method or 'unknown'}"
        created = []
        for index, (product_id, quantity) in enumerate(lines):
            if not self._adjust_stock(product_id, -quantity, now, floor=0):
                raise InsufficientStock(
                    f"Insufficient stock for product {products[product_id].name}",
                    product_id=product_id,
                    item_index=index,
                    available=self._stored_quantity(product_id),
                    requested=quantity,
                )
            transaction = StockTransaction(
                product_id=product_id,
                type=TransactionType.OUT,
                quantity=quantity,
                date=now,
                user_id=user_id,
                notes=notes,
            )
            self.session.add(transaction)
            created.append(transaction)
        self.session.commit()
        for transaction in created:
            self.session.refresh(transaction)
        return created

    def _rebuild(self, product: Product, totals: StockTotals, user: Optional[User]) -> RebuildResult:
        previous = product.quantity
        target = rebuilt_quantity(product, totals.in_qty, totals.out_qty)
        if target is None:
            status = "authoritative"
        elif target == previous:
            status = "unchanged"
        else:
            status = "corrected"
            statement = (
                update(Product)
                .where(Product.id == product.id, Product.quantity == previous)
                .values(quantity=target, updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
            if self.session.exec(statement).rowcount != 1:
                raise Unavailable(
                    f"Product {product.id} changed while rebuilding, please retry",
                    product_id=product.id,
                )
            log_audit(
                self.session, "REBUILD", "Product", product.id,
                old_values={"quantity": previous},
                new_values={"quantity": target},
                user=user,
            )
            logger.warning(
                "Product %s quantity drifted from ledger, corrected %s -> %s",
                product.id, previous, target,
            )
        return RebuildResult(
            product_id=product.id,
            previous_quantity=previous,
            quantity=previous if target is None else target,
            status=status,
        )

    def _read(self, transaction: StockTransaction) -> TransactionRead:
        product = transaction.product
        user = transaction.user
        supplier = transaction.supplier
        return TransactionRead(
            id=transaction.id,
            product_id=transaction.product_id,
            product_name=product.name if product else None,
            sku=product.sku if product else None,
            supplier_id=transaction.supplier_id,
            supplier_name=supplier.name if supplier else None,
            type=transaction.type,
            quantity=transaction.quantity,
            date=transaction.date,
            user_id=transaction.user_id,
            username=user.username if user else None,
            notes=transaction.notes,
        )


def _check_type(value: Union[TransactionType, str]) -> TransactionType:
    try:
        return TransactionType(value)
    except ValueError:
        raise InvalidArgument(f"Invalid transaction type: {value!r}", type=str(value))


def _check_quantity(quantity: Any, **context: Any) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidArgument("quantity must be a positive integer", quantity=quantity, **context)


def _normalize_sale_lines(items: Optional[Sequence[SaleLine]]) -> List[Tuple[int, int]]:
    if not items:
        raise InvalidArgument("No items provided for sale")
    lines = []
    for index, item in enumerate(items):
        if isinstance(item, SaleItem):
            product_id, quantity = item.product_id, item.quantity
        elif isinstance(item, Mapping):
            product_id, quantity = item.get("product_id"), item.get("quantity")
        else:
            try:
                product_id, quantity = item
            except (TypeError, ValueError):
                raise InvalidArgument("Sale items must be (product_id, quantity) pairs", item_index=index)
        if product_id is None:
            raise InvalidArgument("product_id is required", item_index=index)
        _check_quantity(quantity, product_id=product_id, item_index=index)
        lines.append((product_id, quantity))
    return lines


def _snapshot(transaction: StockTransaction) -> Dict[str, Any]:
    return {
        "product_id": transaction.product_id,
        "supplier_id": transaction.supplier_id,
        "type": transaction.type.value,
        "quantity": transaction.quantity,
        "date": transaction.date.isoformat(),
        "user_id": transaction.user_id,
        "notes": transaction.notes,
    }
