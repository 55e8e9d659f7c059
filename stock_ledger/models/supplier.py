from typing import Optional, List
from sqlmodel import Field, Relationship
from .base import TimestampMixin

class Supplier(TimestampMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    contact_email: Optional[str] = Field(default=None, index=True)

    # Relationships
    transactions: List["StockTransaction"] = Relationship(back_populates="supplier")
