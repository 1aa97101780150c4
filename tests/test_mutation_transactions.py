# tests/test_mutation_transactions.py
"""
Test mutation transaction wrapping.

Verifies commit / rollback / retry behavior of MutationEngine without a
database.
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from orgtree.settings import settings
from orgtree.tree import (
    MutationEngine,
    CycleViolation,
    ConstraintViolation,
    TransientStoreError,
)


def _flaky(failures: int, result):
    """Work callable that raises TransientStoreError `failures` times."""
    calls = {"count": 0}

    def work():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise TransientStoreError("serialization failure", operation="reparent")
        return result

    return work, calls


class TestOwnedTransaction:
    """Engine owns the commit boundary."""

    def test_success_commits_once(self):
        session = MagicMock()
        engine = MutationEngine(session)

        assert engine._run("create_node", lambda: 42) == 42
        session.commit.assert_called_once()
        session.rollback.assert_not_called()

    def test_transient_error_is_retried(self):
        session = MagicMock()
        engine = MutationEngine(session)
        work, calls = _flaky(1, "done")

        assert engine._run("reparent", work) == "done"
        assert calls["count"] == 2
        assert session.rollback.call_count == 1
        session.commit.assert_called_once()

    def test_retries_stop_after_max_attempts(self):
        session = MagicMock()
        engine = MutationEngine(session)
        work, calls = _flaky(settings.mutation_max_attempts + 5, None)

        with pytest.raises(TransientStoreError):
            engine._run("reparent", work)

        assert calls["count"] == settings.mutation_max_attempts
        session.commit.assert_not_called()

    def test_integrity_error_rolls_back_without_retry(self):
        session = MagicMock()
        engine = MutationEngine(session)
        calls = {"count": 0}

        def work():
            calls["count"] += 1
            raise IntegrityError("INSERT INTO tree_closure ...", {}, Exception("duplicate key"))

        with pytest.raises(ConstraintViolation) as exc_info:
            engine._run("reparent", work, node_id=5, new_parent_id=2)

        assert calls["count"] == 1
        assert exc_info.value.context == {"node_id": 5, "new_parent_id": 2}
        session.rollback.assert_called_once()
        session.commit.assert_not_called()

    def test_domain_error_rolls_back(self):
        session = MagicMock()
        engine = MutationEngine(session)

        def work():
            raise CycleViolation("Entity 3 is a descendant of 1", operation="reparent")

        with pytest.raises(CycleViolation):
            engine._run("reparent", work)

        session.rollback.assert_called_once()
        session.commit.assert_not_called()

    def test_unexpected_error_rolls_back_without_retry(self):
        session = MagicMock()
        engine = MutationEngine(session)
        calls = {"count": 0}

        def work():
            calls["count"] += 1
            raise ValueError("attrs not serializable")

        with pytest.raises(ValueError):
            engine._run("create_node", work)

        assert calls["count"] == 1
        session.rollback.assert_called_once()
        session.commit.assert_not_called()


class TestCallerTransaction:
    """Caller owns the commit boundary (commit=False)."""

    def test_runs_in_savepoint_without_commit(self):
        session = MagicMock()
        engine = MutationEngine(session, commit=False)

        assert engine._run("create_node", lambda: 7) == 7
        session.begin_nested.assert_called_once()
        session.commit.assert_not_called()

    def test_transient_error_is_not_retried(self):
        session = MagicMock()
        engine = MutationEngine(session, commit=False)
        work, calls = _flaky(1, "done")

        with pytest.raises(TransientStoreError):
            engine._run("reparent", work)

        assert calls["count"] == 1


class TestRetargetSetting:

    def test_defaults_to_setting(self):
        engine = MutationEngine(MagicMock())
        assert engine.retarget_siblings is settings.reparent_retarget_siblings

    def test_explicit_override(self):
        engine = MutationEngine(MagicMock(), retarget_siblings=False)
        assert engine.retarget_siblings is False
