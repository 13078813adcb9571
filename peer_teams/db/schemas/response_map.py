# db/schemas/response_map.py
import uuid
from typing import Optional
from peer_teams.db.schemas._base import OrmModel

class ResponseMapBase(OrmModel):
    assignment_id: uuid.UUID
    team_reviewing_enabled: bool = False
    reviewer_participant_id: Optional[uuid.UUID] = None
    reviewer_team_id: Optional[uuid.UUID] = None
    reviewee_team_id: Optional[uuid.UUID] = None
    reviewee_participant_id: Optional[uuid.UUID] = None

class ResponseMapCreate(ResponseMapBase): ...
class ResponseMapRead(ResponseMapBase):
    id: uuid.UUID
