from typing import Optional, List
from sqlmodel import Field, Relationship
from .base import TimestampMixin

class Product(TimestampMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    sku: str = Field(unique=True, index=True)
    category: Optional[str] = Field(default=None)
    price: float = Field(default=0.0)
    # Denormalized current stock, only ever changed together with the ledger
    quantity: int = Field(default=0)
    # Baseline stock when tracking began, None when unknown
    initial_stock: Optional[int] = Field(default=None)

    # Relationships
    # Deleting a product never rewrites its ledger rows
    transactions: List["StockTransaction"] = Relationship(
        back_populates="product",
        sa_relationship_kwargs={"passive_deletes": "all"},
    )
