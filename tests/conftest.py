"""
tests/conftest.py -- Shared fixtures for the HRBAC test suite.

This module provides:
  - db: a fresh in-memory Database per test (foreign keys on)
  - hrbac: the HRBAC facade over that database
  - company: a small firm tree used by the hierarchy and access tests
  - storage_error: a SQLAlchemy OperationalError for injecting failures

Design: plain sqlite:///:memory: is enough here. Everything runs in the test
thread, and SQLAlchemy keeps one connection per thread for memory databases,
so the schema created in Database() is visible to every later query.

The company tree:

    Company (Headquarters)
    ├── Engineering (department)
    │   └── Frontend (team)
    │       └── ReactProject (project)
    └── Sales (department)
        └── SalesOps (team)
"""

from __future__ import annotations

from collections.abc import Generator
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from core.config import get_settings
from hrbac.service import HRBAC
from storage.database import Database


@pytest.fixture
def storage_error() -> OperationalError:
    """An exception shaped like a real driver failure, with a message that
    must never reach a caller."""
    return OperationalError("SELECT * FROM hrbac_scopes", {}, Exception("disk I/O error at /var/db/secret.db"))


@pytest.fixture(autouse=True)
def _fresh_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db() -> Generator[Database, None, None]:
    database = Database("sqlite:///:memory:", sqlite_wal=False, enforce_foreign_keys=True)
    yield database
    database.close()


@pytest.fixture
def hrbac(db: Database) -> HRBAC:
    return HRBAC(db)


@pytest.fixture
def company(hrbac: HRBAC) -> SimpleNamespace:
    """Build the company tree and return its scopes by short name."""
    scopes = hrbac.scopes

    def make(name, level, parent=None):
        result = scopes.create_scope(name, level, parent_id=parent.id if parent else None)
        assert result.success, result.error
        return result.scope

    company = make("Company", "Headquarters")
    engineering = make("Engineering", "department", company)
    frontend = make("Frontend", "team", engineering)
    react = make("ReactProject", "project", frontend)
    sales = make("Sales", "department", company)
    sales_ops = make("SalesOps", "team", sales)
    return SimpleNamespace(
        company=company,
        engineering=engineering,
        frontend=frontend,
        react=react,
        sales=sales,
        sales_ops=sales_ops,
    )
