# orgtree/tree/mutations.py
"""
Mutation engine: the only writer of tree_entity and tree_closure.

Each public method is one atomic unit. It updates the entity row(s) first,
then recomputes the affected slice of the closure index, then commits.

Transaction ownership:
- commit=True (default): the engine commits, rolls back on any failure and
  retries the whole unit on TransientStoreError.
- commit=False: the caller owns the transaction; the unit runs inside a
  SAVEPOINT and is never retried here.
"""

import json
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from ..logging import get_logger
from ..settings import settings
from .errors import (
    ConstraintViolation,
    CycleViolation,
    NotFound,
    TransientStoreError,
    TreeError,
    translate_store_error,
)

logger = get_logger(__name__)


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception()
    logger.warning(
        "mutation_retry",
        attempt=retry_state.attempt_number,
        operation=getattr(exc, "operation", None),
        error=str(exc),
    )


_retry_transient = retry(
    retry=retry_if_exception_type(TransientStoreError),
    stop=stop_after_attempt(settings.mutation_max_attempts),
    wait=wait_exponential(multiplier=0.1, max=settings.mutation_retry_wait_max_seconds),
    before_sleep=_log_retry,
    reraise=True,
)


class MutationEngine:
    """
    Applies tree edits and keeps the closure index consistent.

    Usage:
        engine = MutationEngine(session)
        owner = engine.create_node("owner 1")
        manager = engine.create_node("manager 1", parent_id=owner)
        engine.reparent(manager, other_owner)
    """

    def __init__(
        self,
        session: Session,
        commit: bool = True,
        retarget_siblings: Optional[bool] = None,
    ):
        """
        Initialize mutation engine.

        Args:
            session: SQLAlchemy session all statements run on
            commit: Commit each mutation (True) or run it in a savepoint of
                the caller's transaction (False)
            retarget_siblings: reparent moves every entity sharing the node's
                old parent (True) or only the node (False). Defaults to the
                REPARENT_RETARGET_SIBLINGS setting.
        """
        self.session = session
        self._commit = commit
        if retarget_siblings is None:
            retarget_siblings = settings.reparent_retarget_siblings
        self.retarget_siblings = retarget_siblings

    # ============================================================
    # TRANSACTION WRAPPING
    # ============================================================

    def _run(self, operation: str, work: Callable[[], Any], **context: Any) -> Any:
        if self._commit:
            return self._in_transaction(operation, work, context)
        return self._in_savepoint(operation, work, context)

    @_retry_transient
    def _in_transaction(self, operation: str, work: Callable[[], Any], context: Dict[str, Any]) -> Any:
        try:
            result = work()
            self.session.commit()
            return result
        except TreeError:
            self.session.rollback()
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            raise self._translate(e, operation, context) from e
        except Exception:
            self.session.rollback()
            raise

    def _in_savepoint(self, operation: str, work: Callable[[], Any], context: Dict[str, Any]) -> Any:
        try:
            with self.session.begin_nested():
                return work()
        except TreeError:
            raise
        except SQLAlchemyError as e:
            raise self._translate(e, operation, context) from e

    def _translate(self, exc: SQLAlchemyError, operation: str, context: Dict[str, Any]) -> TreeError:
        error = translate_store_error(exc, operation, **context)
        if isinstance(error, ConstraintViolation):
            # Closure logic attempted an invalid write
            logger.error("closure_constraint_violation", operation=operation, error=str(exc.orig), **context)
        return error

    # ============================================================
    # ENTITY LOCKING
    # ============================================================

    def _lock_entities(
        self,
        entity_ids: Iterable[int],
        operation: str,
        mode: str = "UPDATE",
    ) -> Dict[int, Dict[str, Any]]:
        """
        Lock entity rows and require them to exist and be live.

        Rows passed in one call are locked in id order. reparent locks the
        retargeted siblings in a second statement, so two overlapping
        reparents can still deadlock; Postgres reports that as 40P01, which
        surfaces as TransientStoreError and is retried.
        """
        ids = sorted(set(entity_ids))
        result = self.session.execute(
            text(f"""
                SELECT id, parent_id, is_deleted FROM tree_entity
                WHERE id = ANY(:ids)
                ORDER BY id
                FOR {mode}
            """),
            {"ids": ids}
        )
        rows = {row[0]: {"parent_id": row[1], "is_deleted": row[2]} for row in result}

        for entity_id in ids:
            row = rows.get(entity_id)
            if row is None:
                raise NotFound(
                    f"Entity {entity_id} does not exist",
                    operation=operation,
                    entity_id=entity_id,
                )
            if row["is_deleted"]:
                raise NotFound(
                    f"Entity {entity_id} is deleted",
                    operation=operation,
                    entity_id=entity_id,
                )
        return rows

    # ============================================================
    # CREATE
    # ============================================================

    def create_node(
        self,
        name: str,
        is_deleted: bool = False,
        parent_id: Optional[int] = None,
        attrs: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Create an entity and its closure rows.

        Inserts the reflexive edge, then one edge from every ancestor of the
        parent (parent included) at depth ancestor-to-parent + 1. A node with
        no parent gets only the reflexive edge.

        Args:
            name: Display name
            is_deleted: Initial liveness flag
            parent_id: Parent entity; must exist and be live
            attrs: Opaque display/business attributes

        Returns:
            New entity id

        Raises:
            NotFound: If parent_id is missing or deleted
        """
        def work() -> int:
            if parent_id is not None:
                self._lock_entities([parent_id], "create_node", mode="SHARE")

            node_id = self.session.execute(
                text("""
                    INSERT INTO tree_entity (name, parent_id, is_deleted, attrs)
                    VALUES (:name, :parent_id, :is_deleted, CAST(:attrs AS jsonb))
                    RETURNING id
                """),
                {
                    "name": name,
                    "parent_id": parent_id,
                    "is_deleted": is_deleted,
                    "attrs": json.dumps(attrs or {}),
                }
            ).scalar_one()

            self.session.execute(
                text("""
                    INSERT INTO tree_closure (ancestor_id, descendant_id, depth)
                    VALUES (:id, :id, 0)
                """),
                {"id": node_id}
            )

            linked = 0
            if parent_id is not None:
                result = self.session.execute(
                    text("""
                        INSERT INTO tree_closure (ancestor_id, descendant_id, depth)
                        SELECT p.ancestor_id, c.descendant_id, p.depth + c.depth + 1
                        FROM tree_closure p, tree_closure c
                        WHERE p.descendant_id = :parent_id AND c.ancestor_id = :id
                    """),
                    {"parent_id": parent_id, "id": node_id}
                )
                linked = result.rowcount

            logger.info("node_created", node_id=node_id, parent_id=parent_id, ancestor_edges=linked)
            return node_id

        return self._run("create_node", work, parent_id=parent_id)

    # ============================================================
    # SOFT DELETE
    # ============================================================

    def soft_delete(self, entity_id: int) -> None:
        """
        Mark an entity deleted and detach it from its parent in the closure.

        Removes every edge from an ancestor of the parent (parent included)
        to a descendant of the entity (entity included). Edges within the
        entity's own subtree are kept. A root has no parent link to sever.

        Deleting an already-deleted entity is a no-op.

        Raises:
            NotFound: If the entity does not exist
        """
        def work() -> None:
            row = self.session.execute(
                text("SELECT parent_id, is_deleted FROM tree_entity WHERE id = :id FOR UPDATE"),
                {"id": entity_id}
            ).fetchone()
            if row is None:
                raise NotFound(
                    f"Entity {entity_id} does not exist",
                    operation="soft_delete",
                    entity_id=entity_id,
                )
            parent_id, already_deleted = row[0], row[1]
            if already_deleted:
                logger.info("node_already_deleted", node_id=entity_id)
                return

            self.session.execute(
                text("UPDATE tree_entity SET is_deleted = true WHERE id = :id"),
                {"id": entity_id}
            )

            severed = 0
            if parent_id is not None:
                result = self.session.execute(
                    text("""
                        DELETE FROM tree_closure o
                        WHERE EXISTS (
                            SELECT 1
                            FROM tree_closure p, tree_closure c
                            WHERE p.ancestor_id = o.ancestor_id
                              AND c.descendant_id = o.descendant_id
                              AND p.descendant_id = :parent_id
                              AND c.ancestor_id = :id
                        )
                    """),
                    {"parent_id": parent_id, "id": entity_id}
                )
                severed = result.rowcount

            logger.info("node_soft_deleted", node_id=entity_id, parent_id=parent_id, severed_edges=severed)

        self._run("soft_delete", work, entity_id=entity_id)

    # ============================================================
    # REPARENT
    # ============================================================

    def _retarget_ids(self, node_id: int, old_parent_id: Optional[int], new_parent_id: int) -> List[int]:
        """Entities whose parent_id the reparent will rewrite."""
        if not self.retarget_siblings or old_parent_id is None:
            return [node_id]
        result = self.session.execute(
            text("""
                SELECT id FROM tree_entity
                WHERE parent_id = :old_parent_id AND id <> :new_parent_id
                ORDER BY id
                FOR UPDATE
            """),
            {"old_parent_id": old_parent_id, "new_parent_id": new_parent_id}
        )
        return [row[0] for row in result]

    def _find_cycle(self, moving_ids: List[int], new_parent_id: int) -> Optional[int]:
        """
        Return the first moving id that is the new parent or one of its
        ancestors, walking parent_id (the source of truth) and the closure.
        """
        row = self.session.execute(
            text("""
                WITH RECURSIVE chain AS (
                    SELECT id, parent_id FROM tree_entity WHERE id = :new_parent_id
                    UNION
                    SELECT e.id, e.parent_id
                    FROM tree_entity e
                    JOIN chain ch ON e.id = ch.parent_id
                )
                SELECT id FROM chain WHERE id = ANY(:moving_ids)
                UNION
                SELECT ancestor_id FROM tree_closure
                WHERE descendant_id = :new_parent_id AND ancestor_id = ANY(:moving_ids)
                LIMIT 1
            """),
            {"new_parent_id": new_parent_id, "moving_ids": moving_ids}
        ).fetchone()
        return row[0] if row else None

    def reparent(self, node_id: int, new_parent_id: int) -> None:
        """
        Move a node (and its subtree) under a new parent.

        Steps, in one transaction:
        1. Rewrite parent_id. With sibling retargeting on, every entity whose
           parent is the node's old parent moves to new_parent_id (the new
           parent itself excluded); otherwise only the node moves.
        2. Delete edges from the node's strict ancestors into its subtree.
        3. Insert supertree x subtree edges at
           depth(A, new_parent) + depth(node, D) + 1.

        Only the node's subtree is relinked in the closure; retargeted
        siblings keep their previous closure rows.

        Raises:
            NotFound: If either entity is missing or deleted
            CycleViolation: If new_parent_id is the node or inside a moving
                subtree. Raised before any write.
        """
        def work() -> None:
            rows = self._lock_entities([node_id, new_parent_id], "reparent")
            if node_id == new_parent_id:
                raise CycleViolation(
                    f"Entity {node_id} cannot be its own parent",
                    operation="reparent",
                    node_id=node_id,
                    new_parent_id=new_parent_id,
                )

            old_parent_id = rows[node_id]["parent_id"]
            moving_ids = self._retarget_ids(node_id, old_parent_id, new_parent_id)
            if node_id not in moving_ids:
                moving_ids.append(node_id)

            offender = self._find_cycle(moving_ids, new_parent_id)
            if offender is not None:
                raise CycleViolation(
                    f"Entity {new_parent_id} is a descendant of {offender}",
                    operation="reparent",
                    node_id=node_id,
                    new_parent_id=new_parent_id,
                    moving_id=offender,
                )

            self.session.execute(
                text("UPDATE tree_entity SET parent_id = :new_parent_id WHERE id = ANY(:ids)"),
                {"new_parent_id": new_parent_id, "ids": moving_ids}
            )
            siblings = [i for i in moving_ids if i != node_id]
            if siblings:
                logger.warning(
                    "reparent_retargeted_siblings",
                    node_id=node_id,
                    old_parent_id=old_parent_id,
                    new_parent_id=new_parent_id,
                    sibling_ids=siblings,
                )

            detached = self.session.execute(
                text("""
                    DELETE FROM tree_closure
                    WHERE descendant_id IN (
                        SELECT descendant_id FROM tree_closure WHERE ancestor_id = :node_id
                    )
                    AND ancestor_id IN (
                        SELECT ancestor_id FROM tree_closure
                        WHERE descendant_id = :node_id AND ancestor_id != descendant_id
                    )
                """),
                {"node_id": node_id}
            ).rowcount

            attached = self.session.execute(
                text("""
                    INSERT INTO tree_closure (ancestor_id, descendant_id, depth)
                    SELECT supertree.ancestor_id, subtree.descendant_id,
                           supertree.depth + subtree.depth + 1
                    FROM tree_closure AS supertree
                    CROSS JOIN tree_closure AS subtree
                    WHERE supertree.descendant_id = :new_parent_id
                      AND subtree.ancestor_id = :node_id
                """),
                {"new_parent_id": new_parent_id, "node_id": node_id}
            ).rowcount

            logger.info(
                "node_reparented",
                node_id=node_id,
                old_parent_id=old_parent_id,
                new_parent_id=new_parent_id,
                detached_edges=detached,
                attached_edges=attached,
            )

        self._run("reparent", work, node_id=node_id, new_parent_id=new_parent_id)
