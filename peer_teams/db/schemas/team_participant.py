# db/schemas/team_participant.py
import uuid
from typing import Optional
from peer_teams.db.schemas._base import OrmModel
from peer_teams.db.schemas.participant import ParticipantRead
from peer_teams.db.schemas.user import UserRead


class TeamParticipantBase(OrmModel):
    team_id: uuid.UUID
    participant_id: uuid.UUID
    duty: Optional[str] = None

class TeamParticipantRead(TeamParticipantBase):
    id: uuid.UUID

    def __hash__(self) -> int:
        return hash(self.id)

class MembershipDetail(OrmModel):
    membership: TeamParticipantRead
    participant: ParticipantRead
    user: UserRead
