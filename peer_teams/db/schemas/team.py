# db/schemas/team.py
import uuid
from typing import List, Optional
from pydantic import Field
from peer_teams.db.schemas._base import OrmModel
from peer_teams.db.schemas.context import ContextRef
from peer_teams.db.enums import ContextKind
from peer_teams.utils.sentinels import Missing

class TeamBase(OrmModel):
    name: str
    context_kind: ContextKind
    assignment_id: Optional[uuid.UUID] = None
    course_id: Optional[uuid.UUID] = None
    mentored: bool = False
    directory_num: Optional[int] = None
    submitted_hyperlinks: List[str] = Field(default_factory=list)

class TeamCreate(TeamBase): ...
class TeamUpdate(OrmModel):
    id: uuid.UUID
    name: str | Missing = Missing()
    mentored: bool | Missing = Missing()
    directory_num: int | Missing | None = Missing()
    submitted_hyperlinks: List[str] | Missing = Missing()

class TeamRead(TeamBase):
    id: uuid.UUID

    @property
    def context(self) -> ContextRef:
        return ContextRef.of(assignment_id=self.assignment_id, course_id=self.course_id)

    def __hash__(self) -> int:
        return hash(self.id)
