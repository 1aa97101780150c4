# tests/test_queries.py
"""
Test hierarchy queries.

Verifies ordering, liveness filtering and read purity of the closure
queries.
"""

import pytest

from orgtree.tree import (
    NotFound,
    ancestors,
    descendants,
    direct_children,
    get_entity,
)

MISSING_ID = 2_000_000_000


class TestHierarchyQueries:
    """Tests for descendants / ancestors / direct_children."""

    @pytest.mark.requires_db
    def test_descendants_ordered_by_depth_then_id(self, session, tree, unique_name):
        """Nearest descendants come first; ties break by id."""
        owner = tree.create_node(unique_name("owner"))
        m1 = tree.create_node(unique_name("manager1"), parent_id=owner)
        m2 = tree.create_node(unique_name("manager2"), parent_id=owner)
        s1 = tree.create_node(unique_name("staff1"), parent_id=m2)
        s2 = tree.create_node(unique_name("staff2"), parent_id=m1)

        result = descendants(owner, session)

        assert [(e.id, e.depth) for e in result] == [(m1, 1), (m2, 1), (s1, 2), (s2, 2)]
        assert owner not in [e.id for e in result]

    @pytest.mark.requires_db
    def test_ancestors_nearest_first(self, session, chain):
        """Parent at depth 1, grandparent at depth 2, no self edge."""
        result = ancestors(chain["G"], session)

        assert [(e.id, e.depth) for e in result] == [(chain["C"], 1), (chain["R"], 2)]

    @pytest.mark.requires_db
    def test_root_has_no_ancestors_and_leaf_no_descendants(self, session, chain):
        assert ancestors(chain["R"], session) == []
        assert descendants(chain["G"], session) == []

    @pytest.mark.requires_db
    def test_direct_children_reads_parent_id(self, session, tree, chain, unique_name):
        """Single hop only, deleted children included."""
        r, c, g = chain["R"], chain["C"], chain["G"]
        sibling = tree.create_node(unique_name("sibling"), parent_id=r)
        tree.soft_delete(sibling)

        children = direct_children(r, session)

        assert [e.id for e in children] == [c, sibling]
        assert [e.is_deleted for e in children] == [False, True]
        assert g not in [e.id for e in children]

    @pytest.mark.requires_db
    def test_queries_are_pure(self, session, chain):
        """Repeated reads between mutations return identical results."""
        r, g = chain["R"], chain["G"]

        first = (descendants(r, session), ancestors(g, session), direct_children(r, session))
        second = (descendants(r, session), ancestors(g, session), direct_children(r, session))

        assert first == second

    @pytest.mark.requires_db
    def test_deleted_anchor_can_still_be_queried(self, session, tree, chain):
        """A deleted entity still reaches its own live subtree."""
        tree.soft_delete(chain["C"])

        assert get_entity(chain["C"], session).is_deleted is True
        assert [e.id for e in descendants(chain["C"], session)] == [chain["G"]]
        assert ancestors(chain["C"], session) == []

    @pytest.mark.requires_db
    def test_unknown_id_raises_not_found(self, session):
        for query in (descendants, ancestors, direct_children, get_entity):
            with pytest.raises(NotFound) as exc_info:
                query(MISSING_ID, session)
            assert exc_info.value.context["entity_id"] == MISSING_ID
