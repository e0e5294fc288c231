"""Pytest configuration: set test env before any sharegate imports so DB, JWT and bcrypt use test values."""

import os
import tempfile

import pytest_asyncio

# Set before sharegate.db.session or sharegate.config are used so engine and settings use test paths
_tmp = tempfile.mkdtemp(prefix="sharegate_test_")
_db_path = os.path.join(_tmp, "test.db")
os.environ.setdefault("SHAREGATE_DB_PATH", _db_path)
os.environ.setdefault("SHAREGATE_JWT_SECRET", "test-jwt-secret-at-least-32-characters-long")
# Minimum bcrypt cost keeps password tests fast
os.environ.setdefault("SHAREGATE_BCRYPT_ROUNDS", "4")
# Public read limit is switched on only in the test that exercises it
os.environ.setdefault("SHAREGATE_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SHAREGATE_SHARE_READ_RATE_LIMIT", "5/minute")


async def _open_sql_repo(db_file):
    """Return (SqlLinkRepository, engine) on a fresh SQLite file with tables created."""
    from sharegate.db.session import create_engine_for_path, init_db, session_scope
    from sharegate.shares.repository import SqlLinkRepository

    engine = create_engine_for_path(db_file)
    await init_db(engine)
    return SqlLinkRepository(session_scope(engine)), engine


@pytest_asyncio.fixture(params=["memory", "sql"])
async def repo(request, tmp_path):
    """Run a test against both repository implementations."""
    if request.param == "memory":
        from sharegate.shares.repository import InMemoryLinkRepository

        yield InMemoryLinkRepository()
        return
    sql, engine = await _open_sql_repo(tmp_path / "links.db")
    yield sql
    await engine.dispose()
