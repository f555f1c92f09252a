from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pagehost.core.database import get_db
from pagehost.schemas.diagnostics import HostResolutionRead
from pagehost.services.landing_page_service import find_tenant_binding
from pagehost.services.subdomain_resolver import resolve_host

router = APIRouter(prefix="/diagnostics", tags=["diagnostics"])


@router.get("/resolve", response_model=HostResolutionRead)
async def resolve_host_endpoint(
    host: str = Query(max_length=1024),
    hint: str | None = Query(default=None, max_length=63),
    db: AsyncSession = Depends(get_db),
):
    """Show how a host name would be routed, and which binding would serve it."""
    resolution = resolve_host(host, routing_hint=hint)
    binding = await find_tenant_binding(db, resolution)
    return HostResolutionRead(
        **resolution.as_dict(),
        domain_id=binding[0].id if binding else None,
        landing_page_id=binding[1].id if binding else None,
    )
