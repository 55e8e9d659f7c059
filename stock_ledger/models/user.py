import secrets
from typing import Optional, List
from sqlmodel import Field, Relationship
from .base import TimestampMixin


def new_api_key() -> str:
    return secrets.token_urlsafe(32)


class User(TimestampMixin, table=True):
    """A clerk recording stock movements, or an admin who may also reconcile."""

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    hashed_password: str
    api_key: str = Field(default_factory=new_api_key, unique=True, index=True)
    is_active: bool = Field(default=True)
    is_admin: bool = Field(default=False)

    # Ledger rows and audit entries attributed to this user
    transactions: List["StockTransaction"] = Relationship(back_populates="user")
    audit_logs: List["AuditLog"] = Relationship(back_populates="user")

    def rotate_api_key(self) -> str:
        self.api_key = new_api_key()
        return self.api_key
