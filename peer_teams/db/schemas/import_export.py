# db/schemas/import_export.py
from typing import List, Optional
from pydantic import Field, field_validator
from peer_teams.db.schemas._base import OrmModel
from peer_teams.db.enums import DuplicateHandling

class TeamImportRow(OrmModel):
    team_name: Optional[str] = None
    members: List[str] = Field(default_factory=list)

    @field_validator("members")
    @classmethod
    def _strip_members(cls, value: List[str]) -> List[str]:
        return [m.strip() for m in value if m and m.strip()]

class TeamImportOptions(OrmModel):
    has_team_name: bool = True
    duplicate_handling: Optional[DuplicateHandling] = None

    @field_validator("duplicate_handling", mode="before")
    @classmethod
    def _parse_handling(cls, value):
        return DuplicateHandling.parse(value)

class TeamExportOptions(OrmModel):
    include_members: bool = True

class ParticipantImportRow(OrmModel):
    username: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    extra: List[str] = Field(default_factory=list)

    def field_count(self) -> int:
        fields = [self.username, self.full_name, self.email, self.password]
        return sum(1 for f in fields if f) + len(self.extra)

class ParticipantExportOptions(OrmModel):
    personal_details: bool = False
    role: bool = False
    handle: bool = False
