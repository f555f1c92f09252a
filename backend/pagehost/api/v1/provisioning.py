from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from pagehost.core.database import get_db
from pagehost.core.dependencies import get_orchestrator, get_supervisor
from pagehost.schemas.domain import ProvisionRequest, ProvisionResponse
from pagehost.services import domain_service
from pagehost.services.deployment_service import DeploymentOrchestrator, start_deployment
from pagehost.workers.supervisor import TaskSupervisor

router = APIRouter(tags=["provisioning"])


@router.post("/provision", response_model=ProvisionResponse, status_code=status.HTTP_202_ACCEPTED)
async def provision_endpoint(
    data: ProvisionRequest,
    db: AsyncSession = Depends(get_db),
    supervisor: TaskSupervisor = Depends(get_supervisor),
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    """Register the domain if needed and start a deployment run for it."""
    domain = await domain_service.get_or_create_domain(db, data.domain_name, data.dns_management)
    run = await start_deployment(db, domain, supervisor=supervisor, orchestrator=orchestrator)
    return ProvisionResponse(run_id=run.run_id, domain_id=domain.id)


@router.post(
    "/domains/{domain_id}/deploy",
    response_model=ProvisionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def redeploy_endpoint(
    domain_id: int,
    db: AsyncSession = Depends(get_db),
    supervisor: TaskSupervisor = Depends(get_supervisor),
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    domain = await domain_service.require_domain(db, domain_id)
    run = await start_deployment(db, domain, supervisor=supervisor, orchestrator=orchestrator)
    return ProvisionResponse(run_id=run.run_id, domain_id=domain.id)
