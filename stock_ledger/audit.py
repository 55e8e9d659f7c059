from sqlmodel import Session
from .models import AuditLog, User
from typing import Optional, Dict, Any
import json
from datetime import datetime


def log_audit(
    session: Session,
    action: str,
    resource_type: str,
    resource_id: int,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    user: Optional[User] = None,
) -> AuditLog:
    """Add an audit log entry to the session.

    The entry is committed together with the change it describes, so a
    rolled back operation never leaves an audit record behind.
    """
    old_values_json = json.dumps(old_values, default=str) if old_values else None
    new_values_json = json.dumps(new_values, default=str) if new_values else None

    log_entry = AuditLog(
        user_id=user.id if user else None,
        username=user.username if user else "system",
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        old_values=old_values_json,
        new_values=new_values_json,
        timestamp=datetime.utcnow(),
    )
    session.add(log_entry)
    return log_entry
