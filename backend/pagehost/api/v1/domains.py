from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from pagehost.core.database import get_db
from pagehost.core.dependencies import get_dns_provider, get_hosting_provider
from pagehost.schemas.domain import (
    BulkDomainCreate,
    BulkDomainCreateResponse,
    BulkDomainDelete,
    BulkDomainDeleteResponse,
    ConfigurationReportRead,
    DomainDeleteResponse,
    DomainListItem,
    DomainNameCheck,
    DomainRead,
)
from pagehost.services import domain_service
from pagehost.services.dns_provider import CloudflareClient
from pagehost.services.hosting_provider import VercelClient
from pagehost.services.reconciliation_service import check_domain_configuration

router = APIRouter(prefix="/domains", tags=["domains"])


@router.get("", response_model=list[DomainListItem])
async def list_domains_endpoint(
    name: str | None = Query(default=None, max_length=255),
    db: AsyncSession = Depends(get_db),
):
    rows = await domain_service.list_domains(db, name=name)
    return [
        DomainListItem.model_validate(domain).model_copy(update={"landing_page_count": count})
        for domain, count in rows
    ]


@router.post("/bulk", response_model=BulkDomainCreateResponse)
async def bulk_create_domains_endpoint(data: BulkDomainCreate, db: AsyncSession = Depends(get_db)):
    registered, failed = await domain_service.bulk_create_domains(
        db, data.domain_names, data.dns_management
    )
    return BulkDomainCreateResponse(registered=registered, failed=failed)


@router.post("/bulk-delete", response_model=BulkDomainDeleteResponse)
async def bulk_delete_domains_endpoint(
    data: BulkDomainDelete,
    db: AsyncSession = Depends(get_db),
    dns: CloudflareClient = Depends(get_dns_provider),
    hosting: VercelClient = Depends(get_hosting_provider),
):
    deleted, failed = await domain_service.bulk_delete_domains(db, data.ids, dns, hosting)
    return BulkDomainDeleteResponse(deleted=deleted, failed=failed)


@router.get("/check-by-name", response_model=DomainNameCheck)
async def check_domain_by_name_endpoint(
    name: str = Query(max_length=255),
    update: bool = False,
    db: AsyncSession = Depends(get_db),
    dns: CloudflareClient = Depends(get_dns_provider),
):
    return await domain_service.check_domain_by_name(db, name, dns, update_zone=update)


@router.get("/{domain_id}", response_model=DomainRead)
async def get_domain_endpoint(domain_id: int, db: AsyncSession = Depends(get_db)):
    return await domain_service.require_domain(db, domain_id)


@router.delete("/{domain_id}", response_model=DomainDeleteResponse)
async def delete_domain_endpoint(
    domain_id: int,
    cascade: bool = False,
    db: AsyncSession = Depends(get_db),
    dns: CloudflareClient = Depends(get_dns_provider),
    hosting: VercelClient = Depends(get_hosting_provider),
):
    domain = await domain_service.require_domain(db, domain_id)
    teardown = await domain_service.delete_domain(db, domain, dns, hosting, cascade=cascade)
    return DomainDeleteResponse(deleted=True, teardown=teardown)


@router.get("/{domain_id}/status", response_model=ConfigurationReportRead)
async def domain_status_endpoint(
    domain_id: int,
    repair: bool = False,
    db: AsyncSession = Depends(get_db),
    dns: CloudflareClient = Depends(get_dns_provider),
    hosting: VercelClient = Depends(get_hosting_provider),
):
    domain = await domain_service.require_domain(db, domain_id)
    return await check_domain_configuration(db, domain, dns, hosting, repair=repair)


@router.post("/{domain_id}/verify", response_model=DomainRead)
async def verify_domain_endpoint(
    domain_id: int,
    db: AsyncSession = Depends(get_db),
    dns: CloudflareClient = Depends(get_dns_provider),
    hosting: VercelClient = Depends(get_hosting_provider),
):
    domain = await domain_service.require_domain(db, domain_id)
    return await domain_service.verify_domain(db, domain, dns, hosting)


@router.post("/{domain_id}/ban", response_model=DomainRead, status_code=status.HTTP_200_OK)
async def ban_domain_endpoint(domain_id: int, db: AsyncSession = Depends(get_db)):
    domain = await domain_service.require_domain(db, domain_id)
    return await domain_service.increment_ban_count(db, domain)
