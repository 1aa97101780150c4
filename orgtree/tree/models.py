# orgtree/tree/models.py
"""
Models for the hierarchical entity store and its closure index.

Core entities:
- Entity: Tree member (id + parent reference + display data + liveness)
- ClosureEdge: Materialized (ancestor, descendant, depth) triple
"""

from datetime import datetime
from typing import Optional, Dict, Any
from dataclasses import dataclass, field


@dataclass
class Entity:
    """
    Tree member.

    parent_id is the source of truth for tree shape; None marks a root.
    is_deleted is monotonic: once set it never reverts.
    """
    id: int
    parent_id: Optional[int]
    name: str
    is_deleted: bool = False
    attrs: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    # Hops from the query anchor; only set by closure queries
    depth: Optional[int] = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "name": self.name,
            "is_deleted": self.is_deleted,
            "attrs": self.attrs,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "depth": self.depth,
        }


@dataclass(frozen=True)
class ClosureEdge:
    """One row of the closure index. depth 0 is the reflexive self-edge."""
    ancestor_id: int
    descendant_id: int
    depth: int


# Column list shared by every entity SELECT
ENTITY_COLUMNS = "e.id, e.parent_id, e.name, e.is_deleted, e.attrs, e.created_at"


def entity_from_row(row, depth: Optional[int] = None) -> Entity:
    """Build an Entity from a row selected with ENTITY_COLUMNS."""
    return Entity(
        id=row[0],
        parent_id=row[1],
        name=row[2],
        is_deleted=row[3],
        attrs=row[4] or {},
        created_at=row[5],
        depth=depth,
    )
