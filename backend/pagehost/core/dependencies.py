"""FastAPI dependencies for process-wide collaborators.

Provider clients, the task supervisor and the log broker are created once
per process on first use. Tests swap them through ``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pagehost.core.config import settings
from pagehost.core.database import get_session_factory
from pagehost.services.deployment_service import DeploymentOrchestrator
from pagehost.services.dns_provider import CloudflareClient
from pagehost.services.hosting_provider import VercelClient
from pagehost.workers.log_channel import RunLogBroker
from pagehost.workers.supervisor import TaskSupervisor


@lru_cache
def get_dns_provider() -> CloudflareClient:
    return CloudflareClient()


@lru_cache
def get_hosting_provider() -> VercelClient:
    return VercelClient()


@lru_cache
def get_supervisor() -> TaskSupervisor:
    return TaskSupervisor(max_concurrency=settings.MAX_CONCURRENT_RUNS)


@lru_cache
def get_broker() -> RunLogBroker:
    return RunLogBroker()


def get_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    dns: CloudflareClient = Depends(get_dns_provider),
    hosting: VercelClient = Depends(get_hosting_provider),
    broker: RunLogBroker = Depends(get_broker),
) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(session_factory, dns, hosting, broker)


async def shutdown_dependencies() -> None:
    """Stop background runs and close provider connections, if they were created."""
    if get_supervisor.cache_info().currsize:
        await get_supervisor().shutdown()
    if get_dns_provider.cache_info().currsize:
        await get_dns_provider().aclose()
    if get_hosting_provider.cache_info().currsize:
        await get_hosting_provider().aclose()
