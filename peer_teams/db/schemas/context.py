# db/schemas/context.py
import uuid
from typing import Optional
from pydantic import Field
from peer_teams.db.schemas._base import OrmModel
from peer_teams.db.enums import ContextKind
from peer_teams.errors import ValidationError

class CourseBase(OrmModel):
    name: str
    directory_path: Optional[str] = None

class CourseCreate(CourseBase): ...
class CourseRead(CourseBase):
    id: uuid.UUID

class AssignmentBase(OrmModel):
    name: str
    directory_path: Optional[str] = None
    max_team_size: int = Field(default=3, ge=1)
    auto_assign_mentor: bool = False
    team_reviewing_enabled: bool = False
    course_id: Optional[uuid.UUID] = None

class AssignmentCreate(AssignmentBase): ...
class AssignmentRead(AssignmentBase):
    id: uuid.UUID

class TopicCreate(OrmModel):
    name: str
    assignment_id: uuid.UUID

class TopicRead(TopicCreate):
    id: uuid.UUID

class ContextRef(OrmModel):
    """Points at exactly one assignment or course."""
    kind: ContextKind
    id: uuid.UUID

    @classmethod
    def of(cls, *, assignment_id: Optional[uuid.UUID] = None, course_id: Optional[uuid.UUID] = None) -> "ContextRef":
        if assignment_id is not None and course_id is not None:
            raise ValidationError("A record cannot belong to both an assignment and a course.")
        if assignment_id is not None:
            return cls(kind=ContextKind.ASSIGNMENT, id=assignment_id)
        if course_id is not None:
            return cls(kind=ContextKind.COURSE, id=course_id)
        raise ValidationError("Either assignment or course must be present.")

    @property
    def assignment_id(self) -> Optional[uuid.UUID]:
        return self.id if self.kind == ContextKind.ASSIGNMENT else None

    @property
    def course_id(self) -> Optional[uuid.UUID]:
        return self.id if self.kind == ContextKind.COURSE else None

    def __hash__(self) -> int:
        return hash((self.kind, self.id))
