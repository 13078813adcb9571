# db/models/tree_node.py
import uuid
from typing import Optional
from sqlalchemy import Enum as SAEnum, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from peer_teams.db.models._base import Base
from peer_teams.db.enums import NodeType

class TreeNode(Base):
    """
    Parent-pointer record mirroring teams and memberships for hierarchical listing.

    A team node points at its context (assignment or course id); a participant
    node points at the team node of the team it belongs to.
    """
    __tablename__ = "tree_node"
    __table_args__ = (
        UniqueConstraint("node_type", "node_object_id", name="tree_node_object_uq"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    node_type: Mapped[NodeType] = mapped_column(SAEnum(NodeType, name="node_type"), nullable=False)
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    node_object_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
