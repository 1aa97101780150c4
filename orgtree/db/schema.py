# orgtree/db/schema.py
"""
DDL for the entity store and its closure index.

tree_entity   - one row per entity, parent_id is the source of truth for shape
tree_closure  - (ancestor_id, descendant_id, depth) transitive closure rows

No ON DELETE CASCADE: entities are soft-deleted and closure cleanup is
performed explicitly by the mutation engine.
"""

from sqlalchemy import text
from sqlalchemy.engine import Connection

ENTITY_TABLE = "tree_entity"
CLOSURE_TABLE = "tree_closure"

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS tree_entity (
        id SERIAL PRIMARY KEY NOT NULL,
        parent_id INTEGER REFERENCES tree_entity(id),
        name VARCHAR NOT NULL,
        attrs JSONB NOT NULL DEFAULT '{}'::jsonb,
        is_deleted BOOLEAN NOT NULL DEFAULT false,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tree_closure (
        ancestor_id INTEGER NOT NULL REFERENCES tree_entity(id),
        descendant_id INTEGER NOT NULL REFERENCES tree_entity(id),
        depth INTEGER NOT NULL CHECK (depth >= 0),
        CONSTRAINT tree_closure_pair_uniq UNIQUE (ancestor_id, descendant_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS tree_entity_parent_idx ON tree_entity (parent_id)",
    "CREATE INDEX IF NOT EXISTS tree_closure_descendant_idx ON tree_closure (descendant_id, depth)",
]


def create_schema(conn: Connection) -> None:
    """
    Create the entity and closure tables if they do not exist.

    Args:
        conn: Open connection; caller commits
    """
    for statement in SCHEMA_STATEMENTS:
        conn.execute(text(statement))


def schema_exists(conn: Connection) -> bool:
    """Check whether both tables are present."""
    result = conn.execute(
        text("""
            SELECT COUNT(*) FROM information_schema.tables
            WHERE table_name IN (:entity_table, :closure_table)
        """),
        {"entity_table": ENTITY_TABLE, "closure_table": CLOSURE_TABLE}
    )
    return result.scalar() == 2
