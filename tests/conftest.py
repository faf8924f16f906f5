"""
tests/conftest.py -- Shared fixtures for the storefront backend tests.

This module provides:
  - make_db_url(): a fresh named shared-memory SQLite URL per test
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - stores: (PrincipalStore, AuditStore, CatalogStore) on one private database
  - harness: TestClient plus the stores and helpers to create principals and
    mint tokens for them

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Every
test gets its own name, so audit counts never leak between tests.

DEBUG and RATE_LIMIT_ENABLED must be set before any core/auth/api import:
get_settings() is cached on first call and the limiter reads it at import.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any project import so get_settings() auto-generates a
# signing secret (dev mode) and the shared limiter starts disabled.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_state
from audit.models import AuditFilters
from audit.store import AuditStore
from auth.models import Principal
from auth.passwords import hash_password
from auth.store import PrincipalStore
from auth.tokens import TOKEN_TYPE_ADMIN, TOKEN_TYPE_CUSTOMER, issue_session_token
from catalog.store import CatalogStore

DEFAULT_PASSWORD = "correct-horse-battery"


def make_db_url(prefix: str = "test") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _patch_lifespan(principal_store: PrincipalStore, audit_store: AuditStore, catalog: CatalogStore):
    """Return an async context manager that replaces the real lifespan.

    Uses the same build_state() as production so the MFA engine and the
    anomaly detector are wired exactly as they are at real startup.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_state(app, principal_store, audit_store, catalog)
        yield

    return test_lifespan


def create_principal(
    store: PrincipalStore,
    email: str,
    role: str,
    password: str = DEFAULT_PASSWORD,
    name: str | None = None,
) -> Principal:
    pid = store.create_principal(Principal(email=email, role=role, name=name, password_hash=hash_password(password)))
    return store.get_by_id(pid)


@dataclass
class Harness:
    client: TestClient
    principals: PrincipalStore
    audit: AuditStore
    catalog: CatalogStore
    password: str = DEFAULT_PASSWORD

    def admin(self, role: str = "website_admin", email: str | None = None) -> Principal:
        return create_principal(self.principals, email or f"{role}-{uuid.uuid4().hex[:6]}@example.com", role)

    def token(self, principal: Principal, token_type: str = TOKEN_TYPE_ADMIN) -> str:
        return issue_session_token(principal.id, principal.email, principal.role, token_type, expire_seconds=600)

    def headers(self, principal: Principal, token_type: str = TOKEN_TYPE_ADMIN) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token(principal, token_type)}"}

    def customer_headers(self, customer_id: int = 501, email: str = "shopper@example.com") -> dict[str, str]:
        token = issue_session_token(customer_id, email, "customer", TOKEN_TYPE_CUSTOMER, expire_seconds=600)
        return {"Authorization": f"Bearer {token}"}

    def entries(self, action: str) -> list:
        return self.audit.query(AuditFilters(action=action), limit=100).entries


class FakeClock:
    """Settable clock for stores and detectors that take a clock callable."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_url() -> str:
    return make_db_url()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def stores(db_url) -> Generator[tuple[PrincipalStore, AuditStore, CatalogStore], None, None]:
    """Three stores over one private in-memory database."""
    principal_store = PrincipalStore(db_url)
    audit_store = AuditStore(db_url)
    catalog = CatalogStore(db_url)
    yield principal_store, audit_store, catalog
    principal_store.close()
    audit_store.close()
    catalog.close()


@pytest.fixture
def harness(stores) -> Generator[Harness, None, None]:
    """Yield a Harness around a TestClient that uses the test stores.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers, middleware and exception handlers.
    """
    principal_store, audit_store, catalog = stores
    app.router.lifespan_context = _patch_lifespan(principal_store, audit_store, catalog)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield Harness(client=client, principals=principal_store, audit=audit_store, catalog=catalog)


@pytest.fixture
def new_principal(stores):
    """Factory fixture: new_principal(email, role="website_admin", password=DEFAULT_PASSWORD)."""
    principal_store, _audit_store, _catalog = stores

    def _create(email: str, role: str = "website_admin", password: str = DEFAULT_PASSWORD) -> Principal:
        return create_principal(principal_store, email, role, password)

    return _create
