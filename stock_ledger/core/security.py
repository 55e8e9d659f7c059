import logging
from typing import Optional

from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader
from sqlmodel import Session, select

from ..models import User
from ..database import get_read_session

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

API_KEY_NAME = "X-API-Key"
api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=True)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def authenticate(session: Session, username: str, password: str) -> Optional[User]:
    """The active user with these credentials, or None."""
    user = session.exec(select(User).where(User.username == username)).first()
    if user is None or not user.is_active:
        return None
    if not pwd_context.verify(password, user.hashed_password):
        logger.warning("Failed login for %s", username)
        return None
    return user


def issue_api_key(session: Session, user: User) -> str:
    """Replace the user's API key, the previous one stops working at once."""
    key = user.rotate_api_key()
    session.add(user)
    session.commit()
    logger.info("Issued a new API key for %s", user.username)
    return key


def ensure_admin(session: Session, username: str, email: str, password: str) -> Optional[str]:
    """Create the bootstrap admin unless present. Returns the new key, if any."""
    if session.exec(select(User).where(User.username == username)).first():
        return None
    admin = User(
        username=username,
        email=email,
        hashed_password=hash_password(password),
        is_admin=True,
    )
    session.add(admin)
    session.commit()
    return admin.api_key


async def require_user(
    api_key: str = Depends(api_key_header),
    session: Session = Depends(get_read_session),
) -> User:
    user = session.exec(select(User).where(User.api_key == api_key)).first()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key or inactive user",
        )
    return user


# Reconciliation rewrites stock, clerks may only record movements
async def require_admin(current_user: User = Depends(require_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin rights required to reconcile stock",
        )
    return current_user
