# db/schemas/participant.py
import uuid
from typing import Optional
from peer_teams.db.schemas._base import OrmModel
from peer_teams.db.schemas.context import ContextRef
from peer_teams.db.enums import ContextKind
from peer_teams.utils.sentinels import Missing

class Capabilities(OrmModel):
    can_submit: bool = True
    can_review: bool = True
    can_take_quiz: bool = True
    can_mentor: bool = False

class ParticipantBase(Capabilities):
    user_id: uuid.UUID
    context_kind: ContextKind
    assignment_id: Optional[uuid.UUID] = None
    course_id: Optional[uuid.UUID] = None
    handle: Optional[str] = None
    permission_granted: bool = False

class ParticipantCreate(ParticipantBase): ...

class ParticipantUpdate(OrmModel):
    id: uuid.UUID
    handle: str | Missing | None = Missing()
    can_submit: bool | Missing = Missing()
    can_review: bool | Missing = Missing()
    can_take_quiz: bool | Missing = Missing()
    can_mentor: bool | Missing = Missing()
    permission_granted: bool | Missing = Missing()

class ParticipantRead(ParticipantBase):
    id: uuid.UUID

    @property
    def context(self) -> ContextRef:
        return ContextRef.of(assignment_id=self.assignment_id, course_id=self.course_id)

    def __hash__(self) -> int:
        return hash(self.id)
