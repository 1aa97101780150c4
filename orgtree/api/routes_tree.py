# orgtree/api/routes_tree.py
"""
Tree API routes.

Endpoints for mutating and querying the entity hierarchy.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db.engine import get_session
from ..logging import get_api_logger
from ..tree import (
    MutationEngine,
    TreeError,
    NotFound,
    CycleViolation,
    ConstraintViolation,
    TransientStoreError,
    get_entity,
    descendants,
    ancestors,
    direct_children,
    check_closure_integrity,
)

router = APIRouter(prefix="/tree", tags=["tree"])
logger = get_api_logger()


class CreateNodeRequest(BaseModel):
    """Request to create a node."""
    name: str = Field(min_length=1)
    parent_id: Optional[int] = None
    is_deleted: bool = False
    attrs: Dict[str, Any] = Field(default_factory=dict)


class ReparentRequest(BaseModel):
    """Request to move a node under a new parent."""
    new_parent_id: int


class EntityResponse(BaseModel):
    """Single entity."""
    id: int
    parent_id: Optional[int]
    name: str
    is_deleted: bool
    attrs: Dict[str, Any]
    created_at: Optional[str] = None
    depth: Optional[int] = None


class EntityListResponse(BaseModel):
    """Entities related to an anchor entity."""
    entity_id: int
    entities: List[EntityResponse]
    count: int


class IntegrityResponse(BaseModel):
    """Closure integrity report."""
    consistent: bool
    checked_entities: int
    missing: List[Dict[str, int]]
    unexpected: List[Dict[str, int]]
    depth_mismatches: List[Dict[str, int]]


# HTTP status per error kind; anything else is a 500
ERROR_STATUS = {
    NotFound: 404,
    CycleViolation: 409,
    ConstraintViolation: 500,
    TransientStoreError: 503,
}


def _http_error(error: TreeError) -> HTTPException:
    status = ERROR_STATUS.get(type(error), 500)
    if status >= 500:
        logger.error(
            "tree_request_failed",
            status=status,
            error_kind=type(error).__name__,
            detail=str(error),
            operation=error.operation,
            **error.context,
        )
    return HTTPException(status_code=status, detail=error.to_dict())


def _entity_list(entity_id: int, entities) -> EntityListResponse:
    return EntityListResponse(
        entity_id=entity_id,
        entities=[EntityResponse(**e.to_dict()) for e in entities],
        count=len(entities),
    )


@router.post("/nodes", response_model=EntityResponse, status_code=201)
def create_node(
    request: CreateNodeRequest,
    session: Session = Depends(get_session),
) -> EntityResponse:
    """
    Create a node under an optional parent.

    Returns:
        The created entity
    """
    try:
        node_id = MutationEngine(session).create_node(
            request.name,
            is_deleted=request.is_deleted,
            parent_id=request.parent_id,
            attrs=request.attrs,
        )
        return EntityResponse(**get_entity(node_id, session).to_dict())
    except TreeError as e:
        raise _http_error(e)


@router.get("/nodes/{entity_id}", response_model=EntityResponse)
def read_node(entity_id: int, session: Session = Depends(get_session)) -> EntityResponse:
    """Get a single entity, deleted or not."""
    try:
        return EntityResponse(**get_entity(entity_id, session).to_dict())
    except TreeError as e:
        raise _http_error(e)


@router.delete("/nodes/{entity_id}", status_code=204)
def delete_node(entity_id: int, session: Session = Depends(get_session)) -> None:
    """Soft-delete an entity. Deleting twice is a no-op."""
    try:
        MutationEngine(session).soft_delete(entity_id)
    except TreeError as e:
        raise _http_error(e)


@router.put("/nodes/{entity_id}/parent", response_model=EntityResponse)
def move_node(
    entity_id: int,
    request: ReparentRequest,
    session: Session = Depends(get_session),
) -> EntityResponse:
    """
    Move an entity under a new parent.

    Returns 409 when the new parent is inside the moving subtree.
    """
    try:
        MutationEngine(session).reparent(entity_id, request.new_parent_id)
        return EntityResponse(**get_entity(entity_id, session).to_dict())
    except TreeError as e:
        raise _http_error(e)


@router.get("/nodes/{entity_id}/descendants", response_model=EntityListResponse)
def list_descendants(entity_id: int, session: Session = Depends(get_session)) -> EntityListResponse:
    """Live descendants, nearest first."""
    try:
        return _entity_list(entity_id, descendants(entity_id, session))
    except TreeError as e:
        raise _http_error(e)


@router.get("/nodes/{entity_id}/ancestors", response_model=EntityListResponse)
def list_ancestors(entity_id: int, session: Session = Depends(get_session)) -> EntityListResponse:
    """Live ancestors, nearest first."""
    try:
        return _entity_list(entity_id, ancestors(entity_id, session))
    except TreeError as e:
        raise _http_error(e)


@router.get("/nodes/{entity_id}/children", response_model=EntityListResponse)
def list_children(entity_id: int, session: Session = Depends(get_session)) -> EntityListResponse:
    """Entities whose parent_id is this entity."""
    try:
        return _entity_list(entity_id, direct_children(entity_id, session))
    except TreeError as e:
        raise _http_error(e)


@router.get("/integrity", response_model=IntegrityResponse)
def closure_integrity(session: Session = Depends(get_session)) -> IntegrityResponse:
    """Compare the stored closure with the closure of live parent links."""
    try:
        report = check_closure_integrity(session)
    except TreeError as e:
        raise _http_error(e)

    return IntegrityResponse(
        consistent=report.is_consistent,
        checked_entities=report.checked_entities,
        missing=[vars(edge) for edge in report.missing],
        unexpected=[vars(edge) for edge in report.unexpected],
        depth_mismatches=[vars(m) for m in report.depth_mismatches],
    )
