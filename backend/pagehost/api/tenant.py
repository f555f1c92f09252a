"""Tenant traffic: every non-API request is routed by its Host header."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from pagehost.core.database import get_db
from pagehost.core.validation import qualify_host
from pagehost.services.landing_page_service import find_tenant_binding
from pagehost.services.page_renderer import render_landing_page
from pagehost.services.subdomain_resolver import resolve_host

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tenant"], include_in_schema=False)

TENANT_HEADERS = {
    "Cache-Control": "no-store",
    "X-Content-Type-Options": "nosniff",
}


@router.api_route("/{path:path}", methods=["GET", "HEAD"])
async def serve_tenant(path: str, request: Request, db: AsyncSession = Depends(get_db)):
    host = request.headers.get("host", "")
    # Preview and local hosts carry the tenant label in the first path segment
    hint = path.split("/", 1)[0] or request.query_params.get("subdomain")
    resolution = resolve_host(host, routing_hint=hint)
    if resolution.issues:
        logger.debug("Host %r resolved with issues: %s", host, "; ".join(resolution.issues))

    binding = await find_tenant_binding(db, resolution)
    if binding is None:
        unresolved = resolution.host or host or "<empty host>"
        return PlainTextResponse(
            f"No site is configured for {unresolved}", status_code=404, headers=TENANT_HEADERS
        )

    domain, page = binding
    html = render_landing_page(page, qualify_host(page.subdomain, domain.name))
    return HTMLResponse(html, headers=TENANT_HEADERS)
