"""
Shared fixtures for the PageHost test suite.

Uses a throwaway SQLite file via aiosqlite so the API, the orchestrator and
the test itself can each hold their own session. Provider adapters are
replaced by in-process fakes that record every mutation.
"""

import asyncio
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from pagehost.core.config import settings
from pagehost.core.errors import (
    HostingDomainConflictError,
    ProviderUnavailableError,
)
from pagehost.models import Base
from pagehost.services.dns_provider import DnsRecord, Zone, ZoneStatus
from pagehost.services.hosting_provider import AddDomainResult, DomainCheck, HostingProject
from pagehost.workers.log_channel import RunLogBroker
from pagehost.workers.supervisor import TaskSupervisor

# ---------------------------------------------------------------------------
# Fake providers
# ---------------------------------------------------------------------------

class FakeProvider:
    provider_name = "provider"

    def __init__(self):
        self.fail_on: set[str] = set()
        self.delays: dict[str, float] = {}
        self.calls: list[tuple] = []

    async def _enter(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        if operation in self.delays:
            await asyncio.sleep(self.delays[operation])
        if operation in self.fail_on:
            raise ProviderUnavailableError(self.provider_name, operation, "simulated outage")

    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in self.MUTATING]

    async def aclose(self) -> None:
        pass


class FakeDnsProvider(FakeProvider):
    provider_name = "dns"
    MUTATING = {"create_zone", "upsert_record", "delete_record", "delete_zone"}

    def __init__(self):
        super().__init__()
        self.zones: dict[str, Zone] = {}
        self.records: dict[str, list[DnsRecord]] = {}
        self.zone_status = "active"
        self._next_id = 0

    def _id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}{self._next_id}"

    def add_zone(self, name: str, status: str | None = None) -> Zone:
        zone = Zone(
            zone_id=self._id("zone"),
            name=name,
            nameservers=["ana.ns.cloudflare.com", "bob.ns.cloudflare.com"],
            status=status or self.zone_status,
        )
        self.zones[name] = zone
        self.records[zone.zone_id] = []
        return zone

    def _by_id(self, zone_id: str) -> Zone | None:
        return next((z for z in self.zones.values() if z.zone_id == zone_id), None)

    async def find_zone(self, domain_name):
        await self._enter("find_zone", domain_name)
        return self.zones.get(domain_name)

    async def create_zone(self, domain_name):
        await self._enter("create_zone", domain_name)
        return self.zones.get(domain_name) or self.add_zone(domain_name)

    async def get_zone_status(self, zone_id):
        await self._enter("get_zone_status", zone_id)
        zone = self._by_id(zone_id)
        if zone is None:
            return None
        return ZoneStatus(zone_id=zone.zone_id, status=zone.status, active=zone.status == "active")

    async def get_zone_status_by_name(self, domain_name):
        await self._enter("get_zone_status_by_name", domain_name)
        zone = self.zones.get(domain_name)
        if zone is None:
            return None
        return ZoneStatus(zone_id=zone.zone_id, status=zone.status, active=zone.status == "active")

    async def list_dns_records(self, zone_id, name=None):
        await self._enter("list_dns_records", zone_id, name)
        return [r for r in self.records.get(zone_id, []) if name is None or r.name == name]

    async def upsert_record(self, zone_id, record_type, name, content, proxied=False):
        await self._enter("upsert_record", zone_id, record_type, name, content)
        records = self.records.setdefault(zone_id, [])
        for record in records:
            if record.type == record_type and record.name == name:
                record.content = content
                return record
        record = DnsRecord(id=self._id("rec"), type=record_type, name=name, content=content)
        records.append(record)
        return record

    async def delete_record(self, zone_id, record_id):
        await self._enter("delete_record", zone_id, record_id)
        self.records[zone_id] = [r for r in self.records.get(zone_id, []) if r.id != record_id]
        return True

    async def delete_zone(self, zone_id):
        await self._enter("delete_zone", zone_id)
        self.zones = {n: z for n, z in self.zones.items() if z.zone_id != zone_id}
        self.records.pop(zone_id, None)
        return True


class FakeHostingProvider(FakeProvider):
    provider_name = "hosting"
    MUTATING = {"create_project", "add_domain", "remove_domain"}

    def __init__(self):
        super().__init__()
        self.default_project_id = "prj_default"
        self.projects: dict[str, HostingProject] = {}
        self.domains: dict[str, str] = {}  # host -> project id
        self.configured: set[str] = set()
        self.verify_on_attach = True

    async def create_project(self, name, framework=None):
        await self._enter("create_project", name, framework)
        if name not in self.projects:
            self.projects[name] = HostingProject(project_id=f"prj_{name}", name=name)
        return self.projects[name]

    async def add_domain(self, domain_name, project_id=None):
        target = project_id or self.default_project_id
        await self._enter("add_domain", domain_name, target)
        owner = self.domains.get(domain_name)
        if owner is not None and owner != target:
            raise HostingDomainConflictError(domain_name, owner)
        if owner == target:
            return AddDomainResult(success=True, already_exists=True)
        self.domains[domain_name] = target
        if self.verify_on_attach:
            self.configured.add(domain_name)
        return AddDomainResult(success=True)

    async def remove_domain(self, domain_name, project_id=None):
        await self._enter("remove_domain", domain_name, project_id or self.default_project_id)
        self.domains.pop(domain_name, None)
        self.configured.discard(domain_name)
        return True

    async def check_domain_status(self, domain_name, project_id=None):
        target = project_id or self.default_project_id
        await self._enter("check_domain_status", domain_name, target)
        if self.domains.get(domain_name) != target:
            return DomainCheck(exists=False, configured=False)
        return DomainCheck(exists=True, configured=domain_name in self.configured)


# ---------------------------------------------------------------------------
# Database engine & session  (SQLite file per test)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pagehost.db'}", poolclass=NullPool)

    @event.listens_for(eng.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Per-test database session for arranging and asserting."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Providers, supervisor, broker, orchestrator
# ---------------------------------------------------------------------------

@pytest.fixture()
def dns() -> FakeDnsProvider:
    return FakeDnsProvider()


@pytest.fixture()
def hosting() -> FakeHostingProvider:
    return FakeHostingProvider()


@pytest.fixture()
def broker() -> RunLogBroker:
    return RunLogBroker()


@pytest_asyncio.fixture()
async def supervisor() -> AsyncGenerator[TaskSupervisor, None]:
    sup = TaskSupervisor(max_concurrency=4)
    yield sup
    await sup.shutdown(timeout=5)


@pytest.fixture()
def test_settings():
    return settings.model_copy(
        update={
            "ZONE_ACTIVATION_POLL_ATTEMPTS": 2,
            "ZONE_ACTIVATION_POLL_INTERVAL": 0.01,
            "PROVIDER_CALL_TIMEOUT": 1.0,
        }
    )


@pytest.fixture()
def orchestrator(session_factory, dns, hosting, broker, test_settings):
    from pagehost.services.deployment_service import DeploymentOrchestrator

    return DeploymentOrchestrator(session_factory, dns, hosting, broker, config=test_settings)


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def provider_domain(db: AsyncSession):
    """A provider-managed domain with no runs yet."""
    from pagehost.services.domain_service import create_domain

    return await create_domain(db, "example.com", "provider")


@pytest_asyncio.fixture()
async def external_domain(db: AsyncSession):
    """An externally-managed domain with no runs yet."""
    from pagehost.services.domain_service import create_domain

    return await create_domain(db, "external.org", "external")


# ---------------------------------------------------------------------------
# HTTPX AsyncClient (integration tests)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def client(
    session_factory, dns, hosting, supervisor, broker, orchestrator
) -> AsyncGenerator[AsyncClient, None]:
    """
    An AsyncClient that talks to the real FastAPI app, with the database,
    providers and background machinery overridden by test doubles.
    """
    from pagehost.core.database import get_db, get_session_factory
    from pagehost.core.dependencies import (
        get_broker,
        get_dns_provider,
        get_hosting_provider,
        get_orchestrator,
        get_supervisor,
    )
    from pagehost.main import app

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_dns_provider] = lambda: dns
    app.dependency_overrides[get_hosting_provider] = lambda: hosting
    app.dependency_overrides[get_supervisor] = lambda: supervisor
    app.dependency_overrides[get_broker] = lambda: broker
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
