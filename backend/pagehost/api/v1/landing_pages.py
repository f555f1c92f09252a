import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from pagehost.core.database import get_db
from pagehost.core.dependencies import (
    get_dns_provider,
    get_hosting_provider,
    get_orchestrator,
    get_supervisor,
)
from pagehost.core.errors import ConflictError
from pagehost.schemas.landing_page import (
    LandingPageCreate,
    LandingPageCreateResponse,
    LandingPageDeleteResponse,
    LandingPageRead,
)
from pagehost.services import domain_service, landing_page_service
from pagehost.services.deployment_service import DeploymentOrchestrator, start_deployment
from pagehost.services.dns_provider import CloudflareClient
from pagehost.services.hosting_provider import VercelClient
from pagehost.workers.supervisor import TaskSupervisor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/landing-pages", tags=["landing-pages"])


@router.get("", response_model=list[LandingPageRead])
async def list_landing_pages_endpoint(
    domain_id: int | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return await landing_page_service.list_landing_pages(db, domain_id=domain_id)


@router.post("", response_model=LandingPageCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_landing_page_endpoint(
    data: LandingPageCreate,
    db: AsyncSession = Depends(get_db),
    supervisor: TaskSupervisor = Depends(get_supervisor),
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
):
    domain = await domain_service.require_domain(db, data.domain_id)
    page = await landing_page_service.create_landing_page(
        db,
        domain,
        name=data.name,
        affiliate_url=str(data.affiliate_url),
        subdomain=data.subdomain,
        original_url=str(data.original_url) if data.original_url else None,
        html_content=data.html_content,
    )

    response = LandingPageCreateResponse.model_validate(page)
    run_id = None
    if data.deploy:
        try:
            run = await start_deployment(
                db,
                domain,
                supervisor=supervisor,
                orchestrator=orchestrator,
                landing_page=page if page.subdomain else None,
            )
            run_id = run.run_id
        except ConflictError as exc:
            # The binding stands; it can be deployed once the active run ends
            logger.warning("Landing page %d created without a run: %s", response.id, exc.message)

    return response.model_copy(update={"run_id": run_id})


@router.get("/{page_id}", response_model=LandingPageRead)
async def get_landing_page_endpoint(page_id: int, db: AsyncSession = Depends(get_db)):
    return await landing_page_service.require_landing_page(db, page_id)


@router.delete("/{page_id}", response_model=LandingPageDeleteResponse)
async def delete_landing_page_endpoint(
    page_id: int,
    delete_domain: bool = False,
    db: AsyncSession = Depends(get_db),
    dns: CloudflareClient = Depends(get_dns_provider),
    hosting: VercelClient = Depends(get_hosting_provider),
):
    page = await landing_page_service.require_landing_page(db, page_id)
    teardown = await landing_page_service.delete_landing_page(
        db, page, dns, hosting, delete_domain=delete_domain
    )
    return LandingPageDeleteResponse(deleted=True, domain_deleted=delete_domain, teardown=teardown)
