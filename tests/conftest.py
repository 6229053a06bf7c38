# tests/conftest.py
from __future__ import annotations

import asyncio
import os
from collections.abc import Generator, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")

from gatehouse.core.security import hash_password
from gatehouse.core.settings import Settings
from gatehouse.db.repository import StateRepository
from gatehouse.db.session import Base
from gatehouse.main import create_app
from gatehouse.services.container import SecurityServices, build_services
from gatehouse.services.geo import GeoProvider, GeoProviderError, GeoResult
from gatehouse.services.ip_blocks import IPBlockRegistry
from gatehouse.services.notifications import AuditLog
from gatehouse.services.store import MemoryStore

TEST_DB_URL = "sqlite://"
START_TIME = 1_750_000_000.0
ADMIN_USERNAME = "operator"
ADMIN_PASSWORD = "correct-horse-battery"
CLIENT_IP = "8.8.8.8"
OTHER_CLIENT_IP = "1.1.1.1"

RESOLVED_GEO = GeoResult(
    country="United States",
    city="Mountain View",
    region="California",
    latitude=37.4,
    longitude=-122.1,
    isp="Google LLC",
    connection_type="datacenter",
    timezone="America/Los_Angeles",
    source="fake",
)


class ManualClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: float = START_TIME) -> None:
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakeGeoProvider(GeoProvider):
    """Provider returning a canned answer, failure or delay."""

    def __init__(
        self,
        name: str,
        result: GeoResult | None = None,
        *,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.result = result
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def lookup(self, address: str) -> GeoResult:
        self.calls.append(address)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.result is None:
            raise GeoProviderError(f"{self.name} has no answer")
        return self.result


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def repository(engine: Engine) -> StateRepository:
    return StateRepository(sessionmaker(bind=engine, autoflush=False))


@pytest.fixture()
def memory_store(clock: ManualClock) -> MemoryStore:
    return MemoryStore(clock)


@pytest.fixture()
def audit(repository: StateRepository, clock: ManualClock) -> AuditLog:
    return AuditLog(repository, clock, limit=50)


@pytest.fixture()
def registry(clock: ManualClock, repository: StateRepository) -> IPBlockRegistry:
    return IPBlockRegistry(clock, repository)


@pytest.fixture()
def geo_provider() -> FakeGeoProvider:
    return FakeGeoProvider("fake", RESOLVED_GEO)


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture(scope="session")
def admin_password_hash() -> str:
    return hash_password(ADMIN_PASSWORD)


@pytest.fixture()
def test_settings(admin_password_hash: str) -> Settings:
    return Settings(
        database_url=TEST_DB_URL,
        redis_url=None,
        admin_username=ADMIN_USERNAME,
        admin_password_hash=admin_password_hash,
        sweep_interval_seconds=3600,
    )


@pytest.fixture()
def services(
    test_settings: Settings,
    clock: ManualClock,
    engine: Engine,
    memory_store: MemoryStore,
    geo_provider: FakeGeoProvider,
    recording_sleep: RecordingSleep,
) -> SecurityServices:
    return build_services(
        test_settings,
        clock=clock,
        engine=engine,
        store=memory_store,
        geo_providers=[geo_provider],
        sleep=recording_sleep,
    )


@pytest.fixture()
def app(services: SecurityServices) -> FastAPI:
    return create_app(services, run_sweeper=False)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(
        app,
        base_url="http://test",
        headers={"X-Forwarded-For": CLIENT_IP},
    ) as test_client:
        yield test_client


@pytest.fixture()
def admin_headers(client: TestClient) -> dict[str, str]:
    """Log in as the operator from a separate address and return bearer headers."""
    response = client.post(
        "/api/login",
        json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD},
        headers={"X-Forwarded-For": "9.9.9.9"},
    )
    assert response.status_code == 200, response.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['token']}", "X-Forwarded-For": "9.9.9.9"}
