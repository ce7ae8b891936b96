"""
PowerLink — Shared pytest fixtures.
"""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# ─── Environment setup (before any app imports) ───────────────────────────────

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_ACCESS_SECRET", secrets.token_hex(32))
os.environ.setdefault("JWT_REFRESH_SECRET", secrets.token_hex(32))
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("AUTH_RATE_LIMIT", "10000")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# ─── App imports (after env is set) ───────────────────────────────────────────

from powerlink.database import Base  # noqa: E402
from powerlink.models import ledger, records, users  # noqa: E402,F401

DEFAULT_PASSWORD = "Secr3t!"

# ─────────────────────────────────────────────────────────────────────────────
# DATABASE FIXTURES
# ─────────────────────────────────────────────────────────────────────────────


def _make_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_pragmas(dbapi_conn, _):
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """In-memory SQLite session — fresh for every test function."""
    engine = _make_engine()
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


# ─────────────────────────────────────────────────────────────────────────────
# FASTAPI CLIENT FIXTURES
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def clear_rate_limits():
    from powerlink.cache.rate_limit import InMemoryRedis, get_redis_client

    store = get_redis_client()
    if isinstance(store, InMemoryRedis):
        store.flush()
    yield


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with overridden DB dependency."""
    from powerlink.database import get_db
    from powerlink.main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def make_client(client: TestClient) -> Generator[Callable[[], TestClient], None, None]:
    """
    Extra clients against the same app and database. Each keeps its own
    cookie jar, so each can hold a different user's refresh cookie.
    """
    opened: List[TestClient] = []

    def _make() -> TestClient:
        c = TestClient(client.app)
        opened.append(c)
        return c

    yield _make

    for c in opened:
        c.close()


# ─────────────────────────────────────────────────────────────────────────────
# ACCOUNT HELPERS
# ─────────────────────────────────────────────────────────────────────────────


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@dataclass
class Account:
    """A user plus the client holding their refresh cookie."""

    client: TestClient
    user: Dict[str, Any]
    token: str
    password: str = DEFAULT_PASSWORD
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.user["id"]

    @property
    def headers(self) -> Dict[str, str]:
        return bearer(self.token)

    def login(self) -> "Account":
        resp = self.client.post(
            "/api/auth/login",
            json={"email": self.user["email"], "password": self.password},
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        self.user, self.token = body["user"], body["accessToken"]
        return self


def register(
    c: TestClient, name: str, email: str, password: str = DEFAULT_PASSWORD
) -> Account:
    resp = c.post(
        "/api/auth/register", json={"name": name, "email": email, "password": password}
    )
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return Account(client=c, user=body["user"], token=body["accessToken"], password=password)


@pytest.fixture(scope="function")
def admin(client: TestClient) -> Account:
    """First registered account: approved admin holding every permission."""
    return register(client, "Alice", "alice@example.com")


@pytest.fixture(scope="function")
def make_member(admin: Account, make_client) -> Callable[..., Account]:
    """
    Register a further account on its own client. Unless approve=False, the
    admin approves it with the given flags and the member logs in again so
    its access token carries the new grants.
    """

    def _make(
        email: str,
        permissions: Optional[Dict[str, bool]] = None,
        role: Optional[str] = None,
        approve: bool = True,
    ) -> Account:
        member = register(make_client(), email.split("@")[0].title(), email)
        if not approve:
            return member

        body: Dict[str, Any] = {}
        if permissions is not None:
            body["permissions"] = permissions
        if role is not None:
            body["role"] = role
        resp = admin.client.post(
            f"/api/admin/users/{member.id}/approve", json=body, headers=admin.headers
        )
        assert resp.status_code == 200, resp.text
        return member.login()

    return _make


@pytest.fixture(scope="function")
def writer(make_member) -> Account:
    return make_member("bob@example.com", {"canRead": True, "canWrite": True})


@pytest.fixture(scope="function")
def viewer(make_member) -> Account:
    return make_member("carol@example.com")


# ─────────────────────────────────────────────────────────────────────────────
# DOMAIN FIXTURES
# ─────────────────────────────────────────────────────────────────────────────


def create_worker(account: Account, **overrides) -> Dict[str, Any]:
    payload = {
        "name": "Ramesh Patil",
        "phone": "9876500001",
        "address": "Ward 4, Ichalkaranji",
        "joiningDate": "2024-01-10",
    }
    payload.update(overrides)
    resp = account.client.post("/api/workers", json=payload, headers=account.headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["worker"]


def create_loan(account: Account, worker_id: str, amount: float = 1000, **overrides) -> Dict[str, Any]:
    payload = {"workerId": worker_id, "amount": amount, "loanDate": "2024-02-01"}
    payload.update(overrides)
    resp = account.client.post("/api/loans", json=payload, headers=account.headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["loan"]


def create_installment(
    account: Account, loan_id: str, amount: float = 300, **overrides
) -> Dict[str, Any]:
    payload = {"loanId": loan_id, "amount": amount, "date": "2024-03-01"}
    payload.update(overrides)
    resp = account.client.post("/api/installments", json=payload, headers=account.headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["installment"]
