# Tree module - closure-table hierarchy with soft deletes
from .models import Entity, ClosureEdge
from .errors import (
    TreeError,
    NotFound,
    CycleViolation,
    ConstraintViolation,
    TransientStoreError,
)
from .mutations import MutationEngine
from .queries import get_entity, descendants, ancestors, direct_children, closure_edges
from .integrity import check_closure_integrity, IntegrityReport, DepthMismatch

__all__ = [
    # Models
    "Entity",
    "ClosureEdge",
    # Errors
    "TreeError",
    "NotFound",
    "CycleViolation",
    "ConstraintViolation",
    "TransientStoreError",
    # Mutations
    "MutationEngine",
    # Queries
    "get_entity",
    "descendants",
    "ancestors",
    "direct_children",
    "closure_edges",
    # Integrity
    "check_closure_integrity",
    "IntegrityReport",
    "DepthMismatch",
]
