# db/schemas/tree_node.py
import uuid
from typing import Optional
from peer_teams.db.schemas._base import OrmModel
from peer_teams.db.enums import NodeType

class TreeNodeRead(OrmModel):
    id: uuid.UUID
    node_type: NodeType
    parent_id: Optional[uuid.UUID] = None
    node_object_id: uuid.UUID
