from datetime import datetime
from typing import Optional
from enum import Enum
from sqlmodel import Field, SQLModel, Relationship

class TransactionType(str, Enum):
    IN = "in"      # Restock, increases quantity
    OUT = "out"    # Sale, decreases quantity

class StockTransaction(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)
    supplier_id: Optional[int] = Field(default=None, foreign_key="supplier.id")
    type: TransactionType = Field(index=True)
    quantity: int
    date: datetime = Field(default_factory=datetime.utcnow, index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    notes: Optional[str] = None

    # Relationships
    product: Optional["Product"] = Relationship(back_populates="transactions")
    supplier: Optional["Supplier"] = Relationship(back_populates="transactions")
    user: Optional["User"] = Relationship(back_populates="transactions")

    @property
    def delta(self) -> int:
        """Signed effect of this transaction on product quantity."""
        return self.quantity if self.type == TransactionType.IN else -self.quantity
