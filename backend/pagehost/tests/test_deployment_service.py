"""Tests for deployment runs: orchestration, exclusivity, cancellation and recovery."""

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from pagehost.core.errors import ConflictError, InvalidStateTransition, PageHostError
from pagehost.core.logging import current_run_id
from pagehost.models.base import utcnow
from pagehost.models.deployment import DeploymentLogEntry, DomainDeployment
from pagehost.models.domain import Domain
from pagehost.services import deployment_service, landing_page_service
from pagehost.services.deployment_service import (
    RESTART_MESSAGE,
    DeploymentOrchestrator,
    cancel_deployment,
    fail_orphaned_runs,
    get_deployment,
    list_deployments,
    start_deployment,
)


async def run_to_end(db, domain, supervisor, orchestrator, **kwargs) -> DomainDeployment:
    run = await start_deployment(db, domain, supervisor=supervisor, orchestrator=orchestrator, **kwargs)
    await supervisor.drain()
    await db.refresh(domain)
    return await get_deployment(db, run.run_id)


async def make_orphan(db: AsyncSession, domain, status: str = "pending") -> DomainDeployment:
    """A non-terminal run that no live worker holds."""
    run = DomainDeployment(
        run_id=uuid.uuid4().hex,
        domain_id=domain.id,
        domain_name=domain.name,
        target_host=domain.name,
        status=status,
        started_at=utcnow(),
    )
    db.add(run)
    await db.flush()
    db.add(
        DeploymentLogEntry(
            deployment_id=run.id, seq=1, timestamp=run.started_at, level="info", message="Starting deployment"
        )
    )
    domain.active_run_id = run.run_id
    domain.deployment_status = "deploying"
    await db.commit()
    return run


def messages(run: DomainDeployment) -> list[str]:
    return [entry.message for entry in run.logs]


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------

class TestSuccessfulRuns:
    @pytest.mark.asyncio
    async def test_provider_root_domain(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, dns, hosting, broker
    ):
        run = await run_to_end(db, provider_domain, supervisor, orchestrator)

        assert run.status == "deployed"
        assert run.deployment_url == "https://example.com"
        assert run.completed_at is not None
        assert run.hosting_project_id == "prj_example-com"

        assert provider_domain.deployment_status == "deployed"
        assert provider_domain.verification_status == "active"
        assert provider_domain.zone_id == dns.zones["example.com"].zone_id
        assert provider_domain.nameservers == ["ana.ns.cloudflare.com", "bob.ns.cloudflare.com"]
        assert provider_domain.active_run_id is None
        assert provider_domain.last_deployed_at is not None

        assert set(hosting.domains) == {"example.com", "www.example.com"}
        records = {(r.type, r.name, r.content) for r in dns.records[provider_domain.zone_id]}
        assert records == {
            ("A", "example.com", "76.76.21.21"),
            ("CNAME", "www.example.com", "cname.vercel-dns.com"),
        }
        assert broker.final_status(run.run_id) == "deployed"

    @pytest.mark.asyncio
    async def test_log_is_dense_and_ordered(self, db: AsyncSession, provider_domain, supervisor, orchestrator):
        run = await run_to_end(db, provider_domain, supervisor, orchestrator)

        seqs = [entry.seq for entry in run.logs]
        assert seqs == list(range(1, len(seqs) + 1))
        stamps = [entry.timestamp for entry in run.logs]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)
        assert messages(run)[0] == "Starting deployment for example.com"
        assert messages(run)[-1] == "Deployment completed: https://example.com"

    @pytest.mark.asyncio
    async def test_subdomain_binding(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, dns, hosting
    ):
        page = await landing_page_service.create_landing_page(
            db, provider_domain, name="App", affiliate_url="https://offer.test", subdomain="app"
        )
        run = await run_to_end(db, provider_domain, supervisor, orchestrator, landing_page=page)

        assert run.status == "deployed"
        assert run.target_host == "app.example.com"
        assert run.deployment_url == "https://app.example.com"
        assert run.landing_page_id == page.id
        assert set(hosting.domains) == {"app.example.com"}
        records = {(r.type, r.name) for r in dns.records[provider_domain.zone_id]}
        assert records == {("CNAME", "app.example.com")}

    @pytest.mark.asyncio
    async def test_external_domain_skips_dns(
        self, db: AsyncSession, external_domain, supervisor, orchestrator, dns, hosting
    ):
        run = await run_to_end(db, external_domain, supervisor, orchestrator)

        assert run.status == "deployed"
        assert set(hosting.domains) == {"external.org"}
        assert dns.mutations() == []
        assert any(m.startswith("External DNS: point external.org") for m in messages(run))

    @pytest.mark.asyncio
    async def test_inactive_zone_still_deploys(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, dns
    ):
        dns.zone_status = "pending"
        run = await run_to_end(db, provider_domain, supervisor, orchestrator)

        assert run.status == "deployed"
        assert provider_domain.verification_status == "pending"
        assert any("DNS zone not active yet" in m for m in messages(run))

    @pytest.mark.asyncio
    async def test_attach_conflict_is_a_warning(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, hosting
    ):
        hosting.domains["www.example.com"] = "prj_other"
        run = await run_to_end(db, provider_domain, supervisor, orchestrator)

        assert run.status == "deployed"
        warnings = [e.message for e in run.logs if e.level == "warning"]
        assert warnings == [
            "Hosting attach skipped for www.example.com: already attached to project prj_other"
        ]

    @pytest.mark.asyncio
    async def test_attach_outage_still_runs_dns(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, dns, hosting
    ):
        hosting.fail_on.add("add_domain")
        run = await run_to_end(db, provider_domain, supervisor, orchestrator)

        assert run.status == "deployed"
        assert provider_domain.deployment_status == "deployed"
        warnings = [e.message for e in run.logs if e.level == "warning"]
        assert warnings == [
            "Hosting attach failed for example.com: hosting add_domain failed: simulated outage",
            "Hosting attach failed for www.example.com: hosting add_domain failed: simulated outage",
        ]
        assert hosting.domains == {}
        assert "example.com" in dns.zones
        assert len(dns.records[provider_domain.zone_id]) == 2

    @pytest.mark.asyncio
    async def test_provider_calls_carry_run_id(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, hosting
    ):
        seen = []
        create_project = hosting.create_project

        async def recording_create_project(name, framework=None):
            seen.append(current_run_id.get())
            return await create_project(name, framework)

        hosting.create_project = recording_create_project
        run = await run_to_end(db, provider_domain, supervisor, orchestrator)

        assert seen == [run.run_id]
        assert current_run_id.get() is None

    @pytest.mark.asyncio
    async def test_redeploy_is_idempotent(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, dns, hosting
    ):
        await run_to_end(db, provider_domain, supervisor, orchestrator)
        zone_id = provider_domain.zone_id
        run = await run_to_end(db, provider_domain, supervisor, orchestrator)

        assert run.status == "deployed"
        assert provider_domain.zone_id == zone_id
        assert len(dns.zones) == 1
        assert len(dns.records[zone_id]) == 2
        assert len(hosting.projects) == 1
        assert [c[0] for c in hosting.calls].count("create_project") == 1
        assert len(await list_deployments(db, provider_domain.id)) == 2


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestFailedRuns:
    @pytest.mark.asyncio
    async def test_zone_failure_fails_run(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, dns, broker
    ):
        dns.fail_on.add("create_zone")
        run = await run_to_end(db, provider_domain, supervisor, orchestrator)

        assert run.status == "failed"
        assert run.completed_at is not None
        assert provider_domain.deployment_status == "failed"
        assert provider_domain.active_run_id is None
        assert "DNS zone setup failed: dns create_zone failed: simulated outage" in messages(run)
        assert messages(run)[-1] == "Deployment failed: dns create_zone failed: simulated outage"
        assert run.logs[-1].level == "error"
        assert broker.final_status(run.run_id) == "failed"

    @pytest.mark.asyncio
    async def test_attach_and_zone_failure_fails_run(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, dns, hosting
    ):
        hosting.fail_on.add("add_domain")
        dns.fail_on.add("create_zone")
        run = await run_to_end(db, provider_domain, supervisor, orchestrator)

        assert run.status == "failed"
        assert provider_domain.deployment_status == "failed"
        warnings = [e.message for e in run.logs if e.level == "warning"]
        assert len(warnings) == 2
        assert all(w.startswith("Hosting attach failed for") for w in warnings)
        assert run.logs[-1].level == "error"
        assert messages(run)[-1] == "Deployment failed: dns create_zone failed: simulated outage"
        assert "create_zone" in [c[0] for c in dns.calls]

    @pytest.mark.asyncio
    async def test_project_failure_is_fatal(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, dns, hosting
    ):
        hosting.fail_on.add("create_project")
        run = await run_to_end(db, provider_domain, supervisor, orchestrator)

        assert run.status == "failed"
        assert [c[0] for c in hosting.calls] == ["create_project"]
        assert dns.calls == []

    @pytest.mark.asyncio
    async def test_provider_call_deadline(
        self, db: AsyncSession, provider_domain, supervisor, session_factory, dns, hosting, broker, test_settings
    ):
        hosting.delays["create_project"] = 5
        orchestrator = DeploymentOrchestrator(
            session_factory, dns, hosting, broker,
            config=test_settings.model_copy(update={"PROVIDER_CALL_TIMEOUT": 0.05}),
        )
        run = await run_to_end(db, provider_domain, supervisor, orchestrator)

        assert run.status == "failed"
        assert messages(run)[-1] == "Deployment failed: hosting create_project failed: timed out after 0.05s"


# ---------------------------------------------------------------------------
# Exclusivity
# ---------------------------------------------------------------------------

class TestExclusivity:
    @pytest.mark.asyncio
    async def test_second_run_is_rejected(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, hosting
    ):
        hosting.delays["create_project"] = 0.2
        first = await start_deployment(db, provider_domain, supervisor=supervisor, orchestrator=orchestrator)
        first_run_id = first.run_id

        with pytest.raises(ConflictError):
            await start_deployment(db, provider_domain, supervisor=supervisor, orchestrator=orchestrator)

        await supervisor.drain()
        await db.refresh(provider_domain)
        assert provider_domain.active_run_id is None
        assert (await get_deployment(db, first_run_id)).status == "deployed"

        second = await run_to_end(db, provider_domain, supervisor, orchestrator)
        assert second.status == "deployed"

    @pytest.mark.asyncio
    async def test_unschedulable_run_fails_and_releases(
        self, db: AsyncSession, provider_domain, orchestrator, broker
    ):
        from pagehost.workers.supervisor import TaskSupervisor

        closed = TaskSupervisor()
        await closed.shutdown()

        with pytest.raises(PageHostError):
            await start_deployment(db, provider_domain, supervisor=closed, orchestrator=orchestrator)

        await db.refresh(provider_domain)
        assert provider_domain.active_run_id is None
        assert provider_domain.deployment_status == "failed"
        runs = await list_deployments(db, provider_domain.id)
        assert [r.status for r in runs] == ["failed"]
        assert broker.final_status(runs[0].run_id) == "failed"


# ---------------------------------------------------------------------------
# Cancellation & recovery
# ---------------------------------------------------------------------------

class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_live_run(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, dns, hosting, broker
    ):
        hosting.delays["create_project"] = 0.2
        run = await start_deployment(db, provider_domain, supervisor=supervisor, orchestrator=orchestrator)

        _, signalled = await cancel_deployment(db, run.run_id, supervisor=supervisor, broker=broker)
        assert signalled is True

        await supervisor.drain()
        await db.refresh(provider_domain)
        run = await get_deployment(db, run.run_id)

        assert run.status == "cancelled"
        assert run.completed_at is not None
        assert messages(run)[-1] == "Deployment cancelled"
        assert provider_domain.deployment_status == "not_deployed"
        assert provider_domain.active_run_id is None
        assert "add_domain" not in [c[0] for c in hosting.calls]
        assert dns.mutations() == []
        assert broker.final_status(run.run_id) == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_after_earlier_success_keeps_deployed(
        self, db: AsyncSession, provider_domain, supervisor, orchestrator, hosting, broker
    ):
        await run_to_end(db, provider_domain, supervisor, orchestrator)
        hosting.delays["add_domain"] = 0.2
        run = await start_deployment(db, provider_domain, supervisor=supervisor, orchestrator=orchestrator)
        await cancel_deployment(db, run.run_id, supervisor=supervisor, broker=broker)
        await supervisor.drain()

        await db.refresh(provider_domain)
        assert (await get_deployment(db, run.run_id)).status == "cancelled"
        assert provider_domain.deployment_status == "deployed"

    @pytest.mark.asyncio
    async def test_cancel_orphan(self, db: AsyncSession, provider_domain, supervisor, broker):
        orphan = await make_orphan(db, provider_domain)

        run, signalled = await cancel_deployment(db, orphan.run_id, supervisor=supervisor, broker=broker)

        assert signalled is False
        assert run.status == "cancelled"
        assert messages(run)[-1] == "Deployment cancelled (no live worker held this run)"
        assert [e.seq for e in run.logs] == [1, 2]
        await db.refresh(provider_domain)
        assert provider_domain.active_run_id is None
        assert broker.is_closed(orphan.run_id)

    @pytest.mark.asyncio
    async def test_cancel_does_not_overwrite_a_run_that_just_finished(
        self, db: AsyncSession, session_factory, provider_domain, supervisor, broker, monkeypatch
    ):
        orphan = await make_orphan(db, provider_domain, status="deploying")
        read_once = deployment_service.require_deployment
        finished_at = utcnow()

        async def read_then_finish(session, run_id):
            # The caller keeps the snapshot read here while the run completes elsewhere
            monkeypatch.setattr(deployment_service, "require_deployment", read_once)
            snapshot = await read_once(session, run_id)
            async with session_factory() as other:
                row = await get_deployment(other, run_id)
                row.status = "deployed"
                row.completed_at = finished_at
                domain = await other.get(Domain, row.domain_id)
                domain.deployment_status = "deployed"
                domain.last_deployed_at = finished_at
                domain.active_run_id = None
                await other.commit()
            return snapshot

        monkeypatch.setattr(deployment_service, "require_deployment", read_then_finish)

        with pytest.raises(InvalidStateTransition, match="already deployed"):
            await cancel_deployment(db, orphan.run_id, supervisor=supervisor, broker=broker)

        run = await get_deployment(db, orphan.run_id)
        await db.refresh(provider_domain)
        assert run.status == "deployed"
        assert messages(run) == ["Starting deployment"]
        assert provider_domain.deployment_status == "deployed"
        assert not broker.is_closed(orphan.run_id)

    @pytest.mark.asyncio
    async def test_cancel_terminal_run(self, db: AsyncSession, provider_domain, supervisor, orchestrator, broker):
        run = await run_to_end(db, provider_domain, supervisor, orchestrator)
        with pytest.raises(InvalidStateTransition):
            await cancel_deployment(db, run.run_id, supervisor=supervisor, broker=broker)


class TestRestartRecovery:
    @pytest.mark.asyncio
    async def test_orphaned_runs_fail(self, db: AsyncSession, session_factory, provider_domain, external_domain):
        orphan = await make_orphan(db, provider_domain, status="deploying")
        external_domain.active_run_id = "gone"
        await db.commit()

        assert await fail_orphaned_runs(session_factory) == 1

        run = await get_deployment(db, orphan.run_id)
        assert run.status == "failed"
        assert messages(run)[-1] == RESTART_MESSAGE
        await db.refresh(provider_domain)
        await db.refresh(external_domain)
        assert provider_domain.active_run_id is None
        assert provider_domain.deployment_status == "failed"
        assert external_domain.active_run_id is None

    @pytest.mark.asyncio
    async def test_nothing_to_recover(self, session_factory, provider_domain):
        assert await fail_orphaned_runs(session_factory) == 0
