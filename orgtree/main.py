# orgtree/main.py
"""
orgtree - Main Application

HTTP service over the closure-table hierarchy: create, soft-delete and
reparent entities; query ancestors, descendants and direct children.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException

from .settings import settings
from .logging import get_logger
from .db.engine import check_connection, get_engine
from .db.schema import schema_exists
from .api import tree_router

logger = get_logger(__name__)


def check_schema() -> bool:
    """True if the entity and closure tables exist."""
    with get_engine().connect() as conn:
        return schema_exists(conn)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Runs startup checks.
    """
    logger.info("service_starting")

    if not check_connection():
        logger.warning("database_unreachable", database_url=settings.database_url.split("@")[-1])
    elif not check_schema():
        logger.warning("schema_missing")
    else:
        logger.info("database_ready")

    yield

    logger.info("service_stopping")


app = FastAPI(
    title="orgtree",
    description="""
    Hierarchy service backed by a materialized closure table.

    - Ancestor / descendant / children queries without recursion at read time
    - Soft deletes detach a node from its parent in the closure
    - Reparenting reslices the closure under the new ancestor chain
    """,
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(tree_router)


@app.get("/health")
async def health_check():
    """Basic health check."""
    return {"status": "ok", "service": "orgtree"}


@app.get("/health/db")
async def db_health_check():
    """Database health check."""
    if check_connection():
        return {"status": "ok", "database": "connected"}
    raise HTTPException(status_code=503, detail="Database connection failed")


def run():
    """Run the server (entry point for CLI)."""
    import uvicorn
    uvicorn.run(
        "orgtree.main:app",
        host=settings.api_host,
        port=settings.api_port,
    )


if __name__ == "__main__":
    run()
