"""Deployment runs: start, execute, cancel, and recover.

A run drives one domain (or one subdomain binding) through the hosting and
DNS providers. Requests only create the run and hand it to the
``TaskSupervisor``; ``DeploymentOrchestrator.execute`` does the provider work
in the background and journals every step into the run's log.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from pagehost.core.config import Settings, settings as default_settings
from pagehost.core.errors import (
    ConflictError,
    HostingDomainConflictError,
    InvalidStateTransition,
    NotFoundError,
    PageHostError,
    ProviderUnavailableError,
)
from pagehost.core.logging import current_run_id
from pagehost.core.validation import qualify_host
from pagehost.models.base import utcnow
from pagehost.models.deployment import DeploymentLogEntry, DomainDeployment
from pagehost.models.domain import Domain
from pagehost.models.landing_page import LandingPage
from pagehost.services.deployment_state import transition
from pagehost.services.dns_provider import CloudflareClient
from pagehost.services.domain_service import (
    ZONE_VERIFICATION_MAP,
    claim_active_run,
    release_active_run,
)
from pagehost.services.hosting_provider import VercelClient
from pagehost.workers.log_channel import LogEvent, RunLogBroker
from pagehost.workers.supervisor import TaskSupervisor
from pagehost.workers.utils import RunLogger

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACTIVE_RUN_STATUSES = ("pending", "deploying")
RESTART_MESSAGE = "Deployment interrupted by service restart"


class RunCancelled(Exception):
    """Raised inside a run when its cancel flag is observed."""


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _fallback_status(domain: Domain) -> str:
    return "deployed" if domain.last_deployed_at else "not_deployed"


class RunJournal:
    """Appends log rows for one run with dense ``seq`` and rising timestamps."""

    def __init__(
        self,
        db: AsyncSession,
        run: DomainDeployment,
        broker: RunLogBroker | None,
        *,
        last_seq: int,
        last_timestamp: datetime | None,
    ):
        self.db = db
        self.run = run
        self.broker = broker
        self.last_seq = last_seq
        self.last_timestamp = _aware(last_timestamp)

    @classmethod
    async def load(
        cls, db: AsyncSession, run: DomainDeployment, broker: RunLogBroker | None
    ) -> "RunJournal":
        result = await db.execute(
            select(func.max(DeploymentLogEntry.seq), func.max(DeploymentLogEntry.timestamp)).where(
                DeploymentLogEntry.deployment_id == run.id
            )
        )
        last_seq, last_timestamp = result.one()
        return cls(db, run, broker, last_seq=last_seq or 0, last_timestamp=last_timestamp)

    async def append(self, level: str, message: str) -> DeploymentLogEntry:
        timestamp = utcnow()
        if self.last_timestamp is not None and timestamp <= self.last_timestamp:
            timestamp = self.last_timestamp + timedelta(microseconds=1)
        self.last_seq += 1
        self.last_timestamp = timestamp

        entry = DeploymentLogEntry(
            deployment_id=self.run.id,
            seq=self.last_seq,
            timestamp=timestamp,
            level=level,
            message=message,
        )
        self.db.add(entry)
        await self.db.commit()
        if self.broker is not None:
            self.broker.publish(
                self.run.run_id,
                LogEvent(seq=entry.seq, timestamp=timestamp, level=level, message=message),
            )
        return entry


# ── Queries ────────────────────────────────────────────────

async def get_deployment(db: AsyncSession, run_id: str) -> DomainDeployment | None:
    result = await db.execute(
        select(DomainDeployment)
        .options(selectinload(DomainDeployment.logs))
        .where(DomainDeployment.run_id == run_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def require_deployment(db: AsyncSession, run_id: str) -> DomainDeployment:
    run = await get_deployment(db, run_id)
    if run is None:
        raise NotFoundError(f"Deployment run {run_id} not found")
    return run


async def list_deployments(db: AsyncSession, domain_id: int) -> list[DomainDeployment]:
    result = await db.execute(
        select(DomainDeployment)
        .where(DomainDeployment.domain_id == domain_id)
        .order_by(DomainDeployment.started_at.desc(), DomainDeployment.id.desc())
    )
    return list(result.scalars().all())


# ── Orchestrator ───────────────────────────────────────────

class DeploymentOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dns: CloudflareClient,
        hosting: VercelClient,
        broker: RunLogBroker,
        config: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.dns = dns
        self.hosting = hosting
        self.broker = broker
        self.config = config or default_settings

    async def _call(self, provider: str, operation: str, awaitable: Awaitable[T]) -> T:
        """Await one provider call under the per-call deadline."""
        timeout = self.config.PROVIDER_CALL_TIMEOUT
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except TimeoutError as exc:
            raise ProviderUnavailableError(
                provider, operation, f"timed out after {timeout:g}s"
            ) from exc

    @staticmethod
    def _check_cancel(cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled()

    async def _wait_or_cancel(self, cancel_event: asyncio.Event | None, seconds: float) -> None:
        if cancel_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), seconds)
        except TimeoutError:
            return
        raise RunCancelled()

    async def execute(self, run_id: str, cancel_event: asyncio.Event | None = None) -> str:
        """Run every provisioning step for ``run_id``. Returns the final status."""
        final_status = "failed"
        domain_id: int | None = None
        run_token = current_run_id.set(run_id)
        try:
            async with self.session_factory() as db:
                run = (
                    await db.execute(select(DomainDeployment).where(DomainDeployment.run_id == run_id))
                ).scalar_one_or_none()
                if run is None:
                    logger.error("Deployment run %s vanished before it started", run_id)
                    return final_status
                domain_id = run.domain_id
                domain = await db.get(Domain, run.domain_id)
                page = await db.get(LandingPage, run.landing_page_id) if run.landing_page_id else None

                journal = await RunJournal.load(db, run, self.broker)
                rlog = RunLogger(run_id, domain=run.domain_name, sink=journal.append)
                try:
                    if domain is None:
                        raise NotFoundError(f"Domain {run.domain_name} no longer exists")
                    await self._provision(db, run, domain, page, rlog, cancel_event)
                    final_status = "deployed"
                except RunCancelled:
                    await self._reset(db, run, domain)
                    transition(run, "cancelled")
                    domain.deployment_status = _fallback_status(domain)
                    await rlog.warning("Deployment cancelled")
                    final_status = "cancelled"
                except Exception as exc:
                    message = exc.message if isinstance(exc, PageHostError) else str(exc) or exc.__class__.__name__
                    if not isinstance(exc, PageHostError):
                        logger.exception("Deployment run %s crashed", run_id)
                    await self._reset(db, run, domain)
                    transition(run, "failed")
                    if domain is not None:
                        domain.deployment_status = "failed"
                    await rlog.error("Deployment failed: %s", message)
                    final_status = "failed"
        finally:
            try:
                if domain_id is not None:
                    async with self.session_factory() as db:
                        await release_active_run(db, domain_id, run_id)
                        await db.commit()
            finally:
                self.broker.close(run_id, final_status)
                current_run_id.reset(run_token)
        return final_status

    @staticmethod
    async def _reset(db: AsyncSession, run: DomainDeployment, domain: Domain | None) -> None:
        # Drop half-applied changes, keep what earlier log commits persisted
        await db.rollback()
        await db.refresh(run)
        if domain is not None:
            await db.refresh(domain)

    def _targets(self, domain: Domain, page: LandingPage | None) -> tuple[str, list[str]]:
        """Public host of the run and every host to attach to the hosting project."""
        if page is not None and page.subdomain:
            host = qualify_host(page.subdomain, domain.name)
            return host, [host]
        if domain.is_provider_managed:
            return domain.name, [domain.name, f"www.{domain.name}"]
        return domain.name, [domain.name]

    async def _provision(
        self,
        db: AsyncSession,
        run: DomainDeployment,
        domain: Domain,
        page: LandingPage | None,
        rlog: RunLogger,
        cancel_event: asyncio.Event | None,
    ) -> None:
        self._check_cancel(cancel_event)
        transition(run, "deploying")
        domain.deployment_status = "deploying"
        await rlog.info("Starting hosting and DNS provisioning")

        # Hosting project
        self._check_cancel(cancel_event)
        project_id = domain.hosting_project_id
        if project_id:
            await rlog.info("Using hosting project %s", project_id)
        else:
            project_name = domain.name.replace(".", "-")
            try:
                project = await self._call(
                    "hosting",
                    "create_project",
                    self.hosting.create_project(project_name, self.config.HOSTING_FRAMEWORK),
                )
            except PageHostError as exc:
                await rlog.error("Hosting project creation failed: %s", exc.message)
                raise
            project_id = project.project_id
            domain.hosting_project_id = project_id
            await rlog.info("Hosting project ready: %s", project_id)
        run.hosting_project_id = project_id

        # Attach hosts; failures here never fail the run
        host, attach_hosts = self._targets(domain, page)
        for attach_host in attach_hosts:
            self._check_cancel(cancel_event)
            try:
                result = await self._call(
                    "hosting", "add_domain", self.hosting.add_domain(attach_host, project_id)
                )
            except HostingDomainConflictError as exc:
                await rlog.warning(
                    "Hosting attach skipped for %s: already attached to project %s",
                    attach_host,
                    exc.project_id,
                )
                continue
            except PageHostError as exc:
                await rlog.warning("Hosting attach failed for %s: %s", attach_host, exc.message)
                continue
            if result.already_exists:
                await rlog.info("%s already attached to hosting project", attach_host)
            else:
                await rlog.info("Attached %s to hosting project", attach_host)

        if domain.is_provider_managed:
            await self._provision_dns(domain, page, host, rlog, cancel_event)
        else:
            await rlog.info(
                "External DNS: point %s at %s (CNAME) to finish setup",
                host,
                domain.expected_cname or self.config.HOSTING_CNAME_TARGET,
            )

        self._check_cancel(cancel_event)
        url = f"https://{host}"
        now = utcnow()
        transition(run, "deployed", now=now)
        run.deployment_url = url
        domain.deployment_status = "deployed"
        domain.deployment_url = url
        domain.last_deployed_at = now
        await rlog.info("Deployment completed: %s", url)

    async def _provision_dns(
        self,
        domain: Domain,
        page: LandingPage | None,
        host: str,
        rlog: RunLogger,
        cancel_event: asyncio.Event | None,
    ) -> None:
        self._check_cancel(cancel_event)
        try:
            zone = await self._call("dns", "create_zone", self.dns.create_zone(domain.name))
        except PageHostError as exc:
            await rlog.error("DNS zone setup failed: %s", exc.message)
            raise
        domain.zone_id = zone.zone_id
        domain.nameservers = list(zone.nameservers)
        await rlog.info(
            "DNS zone ready: %s (nameservers: %s)",
            zone.zone_id,
            ", ".join(zone.nameservers) or "none assigned yet",
        )

        if page is not None and page.subdomain:
            records = [("CNAME", host, self.config.HOSTING_CNAME_TARGET)]
        else:
            records = [
                ("A", domain.name, self.config.HOSTING_A_RECORD_IP),
                ("CNAME", f"www.{domain.name}", self.config.HOSTING_CNAME_TARGET),
            ]
        for record_type, name, content in records:
            self._check_cancel(cancel_event)
            await self._call(
                "dns",
                "upsert_record",
                self.dns.upsert_record(zone.zone_id, record_type, name, content),
            )
            await rlog.info("DNS record ensured: %s %s -> %s", record_type, name, content)

        status = zone.status
        verification = "pending"
        attempts = max(1, self.config.ZONE_ACTIVATION_POLL_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            self._check_cancel(cancel_event)
            zone_status = await self._call(
                "dns", "get_zone_status", self.dns.get_zone_status(zone.zone_id)
            )
            if zone_status is None:
                status, verification = "missing", "error"
            else:
                status = zone_status.status
                verification = ZONE_VERIFICATION_MAP.get(status, "pending")
            rlog.debug("Zone %s status %s (attempt %d/%d)", zone.zone_id, status, attempt, attempts)
            if zone_status and zone_status.active:
                break
            if attempt < attempts:
                await self._wait_or_cancel(cancel_event, self.config.ZONE_ACTIVATION_POLL_INTERVAL)

        domain.verification_status = verification
        if status == "active":
            await rlog.info("DNS zone is active")
        else:
            await rlog.info(
                "DNS zone not active yet (status: %s); update the registrar nameservers to %s",
                status,
                ", ".join(domain.nameservers) or "the assigned nameservers",
            )


# ── Entry points ───────────────────────────────────────────

async def start_deployment(
    db: AsyncSession,
    domain: Domain,
    *,
    supervisor: TaskSupervisor,
    orchestrator: DeploymentOrchestrator,
    landing_page: LandingPage | None = None,
) -> DomainDeployment:
    """Create a run for ``domain`` and hand it to the supervisor.

    Raises ``ConflictError`` when the domain already has an active run.
    """
    run_id = uuid.uuid4().hex
    domain_name = domain.name
    if not await claim_active_run(db, domain.id, run_id):
        await db.rollback()
        raise ConflictError(f"Domain {domain_name} already has an active deployment run")

    host = qualify_host(landing_page.subdomain, domain.name) if landing_page else domain.name
    started_at = utcnow()
    run = DomainDeployment(
        run_id=run_id,
        domain_id=domain.id,
        domain_name=domain.name,
        landing_page_id=landing_page.id if landing_page else None,
        target_host=host,
        hosting_project_id=domain.hosting_project_id,
        status="pending",
        started_at=started_at,
    )
    db.add(run)
    await db.flush()
    db.add(
        DeploymentLogEntry(
            deployment_id=run.id,
            seq=1,
            timestamp=started_at,
            level="info",
            message=f"Starting deployment for {host}",
        )
    )
    domain.deployment_status = "deploying"
    await db.commit()
    logger.info("Created deployment run %s for %s", run_id, host)

    try:
        supervisor.submit(run_id, lambda cancel_event: orchestrator.execute(run_id, cancel_event))
    except RuntimeError as exc:
        journal = await RunJournal.load(db, run, orchestrator.broker)
        transition(run, "failed")
        domain.deployment_status = "failed"
        await journal.append("error", f"Deployment failed: could not schedule run ({exc})")
        await release_active_run(db, domain.id, run_id)
        await db.commit()
        orchestrator.broker.close(run_id, "failed")
        raise PageHostError(f"Could not schedule deployment for {host}: {exc}") from exc

    await db.refresh(run)
    return run


async def cancel_deployment(
    db: AsyncSession,
    run_id: str,
    *,
    supervisor: TaskSupervisor,
    broker: RunLogBroker,
) -> tuple[DomainDeployment, bool]:
    """Request cancellation. Returns the run and whether a live task was signalled.

    A non-terminal run with no live task is cancelled here directly.
    """
    run = await require_deployment(db, run_id)
    if run.is_terminal:
        raise InvalidStateTransition(f"Deployment run {run_id} is already {run.status}")

    if supervisor.request_cancel(run_id):
        logger.info("Cancellation requested for run %s", run_id)
        return run, True

    # The row may have reached a terminal state since it was read, here or in
    # another process; only a still-active run is cancelled
    result = await db.execute(
        update(DomainDeployment)
        .where(
            DomainDeployment.run_id == run_id,
            DomainDeployment.status.in_(ACTIVE_RUN_STATUSES),
        )
        .values(status="cancelled", completed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        current = await require_deployment(db, run_id)
        raise InvalidStateTransition(f"Deployment run {run_id} is already {current.status}")
    await db.refresh(run)

    domain = await db.get(Domain, run.domain_id)
    journal = await RunJournal.load(db, run, broker)
    if domain is not None:
        domain.deployment_status = _fallback_status(domain)
    await journal.append("warning", "Deployment cancelled (no live worker held this run)")
    await release_active_run(db, run.domain_id, run_id)
    await db.commit()
    broker.close(run_id, "cancelled")
    return await require_deployment(db, run_id), False


async def fail_orphaned_runs(session_factory: async_sessionmaker[AsyncSession]) -> int:
    """Fail runs left non-terminal by a previous process and clear their markers."""
    async with session_factory() as db:
        runs = list(
            (
                await db.execute(
                    select(DomainDeployment).where(DomainDeployment.status.in_(ACTIVE_RUN_STATUSES))
                )
            ).scalars().all()
        )
        for run in runs:
            journal = await RunJournal.load(db, run, None)
            transition(run, "failed")
            domain = await db.get(Domain, run.domain_id)
            if domain is not None:
                domain.deployment_status = "failed"
            await journal.append("error", RESTART_MESSAGE)
            await release_active_run(db, run.domain_id, run.run_id)

        # Markers pointing at runs that are already terminal or gone
        stale = (
            await db.execute(select(Domain).where(Domain.active_run_id.is_not(None)))
        ).scalars().all()
        for domain in stale:
            holder = (
                await db.execute(
                    select(DomainDeployment.status).where(DomainDeployment.run_id == domain.active_run_id)
                )
            ).scalar_one_or_none()
            if holder not in ACTIVE_RUN_STATUSES:
                domain.active_run_id = None
        await db.commit()

    if runs:
        logger.warning("Failed %d deployment run(s) interrupted by restart", len(runs))
    return len(runs)
