from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from datetime import datetime


class AuditEntry(BaseModel):
    id: str
    institution_id: Optional[str] = None
    actor_user_id: Optional[str] = None
    actor_email: Optional[str] = None
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    request_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuditLogFilters(BaseModel):
    action: Optional[str] = None
    entity_type: Optional[str] = None
    actor: Optional[str] = None
    date_from: Optional[str] = None  # YYYY-MM-DD
    date_to: Optional[str] = None


class AuditLogPage(BaseModel):
    items: List[AuditEntry]
    has_more: bool
    next_cursor: Optional[str] = None
    source: str = "rpc"  # rpc | fallback
