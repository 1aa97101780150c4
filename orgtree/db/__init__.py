# Database module
from .engine import get_engine, get_session, session_scope, SessionLocal
from .schema import create_schema, schema_exists

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "SessionLocal",
    "create_schema",
    "schema_exists",
]
