"""Tests for session handling and store failure mapping."""

import pytest
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError, OperationalError

from eagate.core.database import get_db_session, usage_counters
from eagate.core.errors import StoreUnavailableError


def test_session_commits_on_success():
    with get_db_session() as session:
        session.execute(insert(usage_counters).values(identity_key="anon:abc12345", identity_kind="anonymous", count=2))

    with get_db_session() as session:
        assert session.execute(select(usage_counters.c.count)).scalar_one() == 2


def test_session_rolls_back_on_error():
    with pytest.raises(RuntimeError):
        with get_db_session() as session:
            session.execute(insert(usage_counters).values(identity_key="anon:abc12345", identity_kind="anonymous"))
            raise RuntimeError("boom")

    with get_db_session() as session:
        assert session.execute(select(usage_counters)).first() is None


def test_integrity_error_is_not_masked():
    with get_db_session() as session:
        session.execute(insert(usage_counters).values(identity_key="anon:abc12345", identity_kind="anonymous"))

    with pytest.raises(IntegrityError):
        with get_db_session() as session:
            session.execute(insert(usage_counters).values(identity_key="anon:abc12345", identity_kind="anonymous"))


def test_operational_error_becomes_store_unavailable():
    with pytest.raises(StoreUnavailableError):
        with get_db_session():
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))
