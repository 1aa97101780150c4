# orgtree/tree/queries.py
"""
Read-only hierarchy queries built on the closure index.

No recursion at read time: descendants and ancestors are a single join of
tree_closure against tree_entity, filtered by liveness. Direct children are
read from parent_id since that is a single-hop lookup.
"""

from typing import Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import NotFound, translate_store_error
from .models import ClosureEdge, Entity, ENTITY_COLUMNS, entity_from_row


def _require_exists(entity_id: int, session: Session, operation: str) -> None:
    row = session.execute(
        text("SELECT 1 FROM tree_entity WHERE id = :id"),
        {"id": entity_id}
    ).fetchone()
    if row is None:
        raise NotFound(
            f"Entity {entity_id} does not exist",
            operation=operation,
            entity_id=entity_id,
        )


def get_entity(entity_id: int, session: Session) -> Entity:
    """
    Get a single entity by ID, deleted or not.

    Raises:
        NotFound: If no entity has this ID
    """
    try:
        row = session.execute(
            text(f"SELECT {ENTITY_COLUMNS} FROM tree_entity e WHERE e.id = :id"),
            {"id": entity_id}
        ).fetchone()
    except SQLAlchemyError as e:
        raise translate_store_error(e, "get_entity", entity_id=entity_id) from e
    if row is None:
        raise NotFound(
            f"Entity {entity_id} does not exist",
            operation="get_entity",
            entity_id=entity_id,
        )
    return entity_from_row(row)


def descendants(entity_id: int, session: Session) -> List[Entity]:
    """
    Get all live descendants of an entity.

    Args:
        entity_id: Subtree root
        session: Database session

    Returns:
        Entities ordered by depth ascending (nearest first), ties by id.
        Each entity has depth set to its distance from entity_id.
    """
    try:
        _require_exists(entity_id, session, "descendants")
        result = session.execute(
            text(f"""
                SELECT {ENTITY_COLUMNS}, c.depth
                FROM tree_entity e
                JOIN tree_closure c ON e.id = c.descendant_id
                WHERE c.ancestor_id = :id
                  AND e.is_deleted = false
                  AND c.depth <> 0
                ORDER BY c.depth ASC, e.id ASC
            """),
            {"id": entity_id}
        )
        return [entity_from_row(row, depth=row[6]) for row in result]
    except SQLAlchemyError as e:
        raise translate_store_error(e, "descendants", entity_id=entity_id) from e


def ancestors(entity_id: int, session: Session) -> List[Entity]:
    """
    Get all live ancestors of an entity.

    Returns:
        Entities ordered nearest first (parent at depth 1, then upward).
    """
    try:
        _require_exists(entity_id, session, "ancestors")
        result = session.execute(
            text(f"""
                SELECT {ENTITY_COLUMNS}, c.depth
                FROM tree_entity e
                JOIN tree_closure c ON e.id = c.ancestor_id
                WHERE c.descendant_id = :id
                  AND e.is_deleted = false
                  AND c.depth <> 0
                ORDER BY c.depth ASC, e.id ASC
            """),
            {"id": entity_id}
        )
        return [entity_from_row(row, depth=row[6]) for row in result]
    except SQLAlchemyError as e:
        raise translate_store_error(e, "ancestors", entity_id=entity_id) from e


def direct_children(entity_id: int, session: Session) -> List[Entity]:
    """
    Get entities whose parent_id is entity_id.

    Reads parent_id directly, not the closure. Deleted children are
    included; callers filter on is_deleted if they need live ones only.
    """
    try:
        _require_exists(entity_id, session, "direct_children")
        result = session.execute(
            text(f"""
                SELECT {ENTITY_COLUMNS}
                FROM tree_entity e
                WHERE e.parent_id = :id
                ORDER BY e.id ASC
            """),
            {"id": entity_id}
        )
        return [entity_from_row(row, depth=1) for row in result]
    except SQLAlchemyError as e:
        raise translate_store_error(e, "direct_children", entity_id=entity_id) from e


def closure_edges(
    session: Session,
    entity_ids: Optional[Iterable[int]] = None,
) -> List[ClosureEdge]:
    """
    List raw closure rows.

    Args:
        session: Database session
        entity_ids: Restrict to rows whose ancestor and descendant are both
            in this set (all rows when None)

    Returns:
        Edges ordered by (ancestor_id, depth, descendant_id)
    """
    query = "SELECT ancestor_id, descendant_id, depth FROM tree_closure"
    params = {}
    if entity_ids is not None:
        entity_ids = list(entity_ids)
        if not entity_ids:
            return []
        query += " WHERE ancestor_id = ANY(:ids) AND descendant_id = ANY(:ids)"
        params["ids"] = entity_ids
    query += " ORDER BY ancestor_id, depth, descendant_id"

    try:
        result = session.execute(text(query), params)
        return [ClosureEdge(ancestor_id=row[0], descendant_id=row[1], depth=row[2]) for row in result]
    except SQLAlchemyError as e:
        raise translate_store_error(e, "closure_edges") from e
