# db/schemas/audit_log.py
import uuid
from datetime import datetime
from typing import Any, Optional
from pydantic import Field
from peer_teams.db.schemas._base import OrmModel

class AuditLogBase(OrmModel):
    actor_id: Optional[uuid.UUID] = None
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)

class AuditLogCreate(AuditLogBase): ...
class AuditLogRead(AuditLogBase):
    id: uuid.UUID
    created_at: datetime
