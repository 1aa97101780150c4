# orgtree/tree/integrity.py
"""
Closure index integrity check.

Recomputes the closure from parent_id (the source of truth) and compares it
with the stored tree_closure rows. A parent link P -> n counts as live iff n
is not deleted, matching what soft_delete severs.

Reported drift:
- missing: expected edge absent from tree_closure
- unexpected: stored edge with no live path behind it
- depth_mismatches: edge present with the wrong depth
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..logging import get_logger
from .errors import translate_store_error
from .models import ClosureEdge

logger = get_logger(__name__)


@dataclass
class DepthMismatch:
    """Edge stored with a depth that disagrees with the live path length."""
    ancestor_id: int
    descendant_id: int
    expected_depth: int
    stored_depth: int


@dataclass
class IntegrityReport:
    """Result of comparing stored and recomputed closure rows."""
    checked_entities: int = 0
    missing: List[ClosureEdge] = field(default_factory=list)
    unexpected: List[ClosureEdge] = field(default_factory=list)
    depth_mismatches: List[DepthMismatch] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not (self.missing or self.unexpected or self.depth_mismatches)

    @property
    def issue_count(self) -> int:
        return len(self.missing) + len(self.unexpected) + len(self.depth_mismatches)


def _scope_filter(column: str, entity_ids: Optional[List[int]]) -> str:
    return f" AND {column} = ANY(:ids)" if entity_ids is not None else ""


def check_closure_integrity(
    session: Session,
    entity_ids: Optional[Iterable[int]] = None,
) -> IntegrityReport:
    """
    Compare the stored closure with the closure of live parent links.

    Args:
        session: Database session
        entity_ids: Restrict the check to pairs inside this set
            (whole table when None)

    Returns:
        IntegrityReport
    """
    ids = list(entity_ids) if entity_ids is not None else None
    if ids == []:
        return IntegrityReport()
    params = {"ids": ids} if ids is not None else {}

    # depth bound stops the walk if parent_id ever contains a cycle
    expected_query = f"""
        WITH RECURSIVE expected(ancestor_id, descendant_id, depth) AS (
            SELECT id, id, 0 FROM tree_entity WHERE true{_scope_filter("id", ids)}
            UNION ALL
            SELECT x.ancestor_id, e.id, x.depth + 1
            FROM expected x
            JOIN tree_entity e ON e.parent_id = x.descendant_id
            WHERE e.is_deleted = false
              AND x.depth < (SELECT COUNT(*) FROM tree_entity)
        )
        SELECT ancestor_id, descendant_id, MIN(depth)
        FROM expected
        WHERE true{_scope_filter("descendant_id", ids)}
        GROUP BY ancestor_id, descendant_id
    """
    stored_query = f"""
        SELECT ancestor_id, descendant_id, depth
        FROM tree_closure
        WHERE true{_scope_filter("ancestor_id", ids)}{_scope_filter("descendant_id", ids)}
    """

    try:
        expected: Dict[Tuple[int, int], int] = {
            (row[0], row[1]): row[2]
            for row in session.execute(text(expected_query), params)
        }
        stored: Dict[Tuple[int, int], int] = {
            (row[0], row[1]): row[2]
            for row in session.execute(text(stored_query), params)
        }
    except SQLAlchemyError as e:
        raise translate_store_error(e, "check_closure_integrity") from e

    report = IntegrityReport(
        checked_entities=len({pair[1] for pair in expected}),
    )
    for pair, depth in sorted(expected.items()):
        if pair not in stored:
            report.missing.append(ClosureEdge(pair[0], pair[1], depth))
        elif stored[pair] != depth:
            report.depth_mismatches.append(
                DepthMismatch(pair[0], pair[1], expected_depth=depth, stored_depth=stored[pair])
            )
    for pair, depth in sorted(stored.items()):
        if pair not in expected:
            report.unexpected.append(ClosureEdge(pair[0], pair[1], depth))

    if not report.is_consistent:
        logger.warning(
            "closure_drift_detected",
            missing=len(report.missing),
            unexpected=len(report.unexpected),
            depth_mismatches=len(report.depth_mismatches),
        )
    return report
