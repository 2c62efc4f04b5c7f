"""
conftest.py — Shared pytest fixtures for the SolarOps backend test suite.

Pure unit tests (similarity, scanner) build ``ProjectForComparison`` snapshots
in memory through the ``make_project`` factory.  Repository, governance and
API tests run against a throwaway SQLite database (aiosqlite) created per test
in ``tmp_path``; tests stay synchronous and drive coroutines with
``asyncio.run``.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
import uuid
import asyncio
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

# The in-memory rate limiter would otherwise throttle the API test module
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "0")
os.environ.setdefault("LOG_FORMAT", "text")


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Scanner fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def scanner():
    """DuplicateScanner with default thresholds (40/40/50/80/75/15/20)."""
    from app.services.duplicate_scanner import DuplicateScanner
    return DuplicateScanner()


@pytest.fixture
def make_project():
    """
    Factory for ProjectForComparison snapshots.

    Defaults describe a plain project in 台南市安南區, 100 kWp, with a shared
    investor and no display code, so each test only spells out what it varies.
    """
    from app.models.dedup_schema import ProjectForComparison

    def _make(**overrides):
        fields = {
            "id": new_id(),
            "project_code": "P-" + uuid.uuid4().hex[:6],
            "project_name": "安南一號案場",
            "site_code_display": None,
            "investor_id": "inv-1",
            "investor_code": "INV01",
            "investor_name": "陽光能源股份有限公司",
            "address": "台南市安南區安和路一段100號",
            "city": "台南市",
            "district": "安南區",
            "capacity_kwp": 100.0,
            "intake_year": None,
            "seq": None,
        }
        fields.update(overrides)
        return ProjectForComparison(**fields)

    return _make


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory(tmp_path):
    """
    async_sessionmaker bound to a fresh SQLite file with every table created.

    NullPool keeps connections from outliving the event loop of each
    ``asyncio.run`` call.
    """
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import NullPool
    from app.db import create_tables

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'solarops_test.db'}",
        poolclass=NullPool,
    )
    asyncio.run(create_tables(engine))
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    asyncio.run(engine.dispose())


@pytest.fixture
def run_db(session_factory):
    """Run ``scenario(db)`` inside a fresh session and return its result."""
    def _run(scenario):
        async def _wrapper():
            async with session_factory() as db:
                return await scenario(db)
        return asyncio.run(_wrapper())
    return _run


@pytest.fixture
def seed(run_db):
    """
    Insert ORM rows and return their ids.

    Usage::

        ids = seed(Investor(...), Project(...))
    """
    def _seed(*rows):
        async def scenario(db):
            db.add_all(rows)
            await db.commit()
            return [row.id for row in rows]
        return run_db(scenario)
    return _seed


@pytest.fixture
def orm_project():
    """
    Factory for unsaved Project ORM rows with explicit UUID ids.

    Defaults mirror ``make_project`` so DB-backed scans classify the same way.
    """
    from app.models.orm_models import Project

    def _make(**overrides):
        fields = {
            "id": new_id(),
            "project_code": "P-" + uuid.uuid4().hex[:6],
            "project_name": "安南一號案場",
            "address": "台南市安南區安和路一段100號",
            "city": "台南市",
            "district": "安南區",
            "capacity_kwp": 100,
        }
        fields.update(overrides)
        return Project(**fields)

    return _make
