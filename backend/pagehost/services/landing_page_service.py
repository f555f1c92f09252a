import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pagehost.core.errors import ConflictError, InputValidationError, NotFoundError, PageHostError
from pagehost.core.validation import normalize_subdomain, qualify_host
from pagehost.models.domain import Domain
from pagehost.models.landing_page import LandingPage
from pagehost.services import domain_service
from pagehost.services.dns_provider import CloudflareClient
from pagehost.services.domain_service import attempt_teardown, teardown_hosts
from pagehost.services.hosting_provider import VercelClient
from pagehost.services.subdomain_resolver import HostResolution

logger = logging.getLogger(__name__)


async def get_landing_page(db: AsyncSession, page_id: int) -> LandingPage | None:
    result = await db.execute(select(LandingPage).where(LandingPage.id == page_id))
    return result.scalar_one_or_none()


async def require_landing_page(db: AsyncSession, page_id: int) -> LandingPage:
    page = await get_landing_page(db, page_id)
    if page is None:
        raise NotFoundError(f"Landing page {page_id} not found")
    return page


async def list_landing_pages(db: AsyncSession, domain_id: int | None = None) -> list[LandingPage]:
    query = select(LandingPage).order_by(LandingPage.created_at.desc(), LandingPage.id.desc())
    if domain_id is not None:
        query = query.where(LandingPage.domain_id == domain_id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def create_landing_page(
    db: AsyncSession,
    domain: Domain,
    *,
    name: str,
    affiliate_url: str,
    subdomain: str | None = None,
    original_url: str | None = None,
    html_content: str | None = None,
) -> LandingPage:
    """Bind a tenant page to a domain.

    Externally-managed domains take exactly one root binding. Provider-managed
    domains take any number of subdomain bindings, one per label.
    """
    label = normalize_subdomain(subdomain)
    if domain.is_provider_managed and not label:
        raise InputValidationError(
            f"Domain {domain.name} uses provider-managed DNS; a subdomain label is required"
        )
    if not domain.is_provider_managed and label:
        raise InputValidationError(
            f"Domain {domain.name} uses external DNS; only the root domain can be bound"
        )

    existing = await db.execute(
        select(LandingPage.subdomain).where(LandingPage.domain_id == domain.id)
    )
    labels = [row[0] for row in existing.all()]
    if "" in labels:
        raise ConflictError(f"Domain {domain.name} already has a root landing page")
    if not label and labels:
        raise ConflictError(f"Domain {domain.name} already has landing pages bound to it")
    if label in labels:
        raise ConflictError(f"Subdomain {qualify_host(label, domain.name)} is already bound")

    page = LandingPage(
        domain_id=domain.id,
        subdomain=label,
        name=name,
        affiliate_url=affiliate_url,
        original_url=original_url,
        html_content=html_content,
    )
    db.add(page)
    await db.commit()
    await db.refresh(page)
    logger.info("Bound landing page %d to %s", page.id, qualify_host(label, domain.name))
    return page


async def delete_landing_page(
    db: AsyncSession,
    page: LandingPage,
    dns: CloudflareClient,
    hosting: VercelClient,
    *,
    delete_domain: bool = False,
) -> list[dict]:
    """Remove a binding, optionally taking its domain with it.

    The domain can only go along when no sibling bindings remain.
    """
    domain = await domain_service.require_domain(db, page.domain_id)

    if delete_domain:
        siblings = await db.execute(
            select(func.count(LandingPage.id)).where(
                LandingPage.domain_id == domain.id, LandingPage.id != page.id
            )
        )
        if siblings.scalar_one() > 0:
            raise ConflictError(
                f"Domain {domain.name} has other landing pages; delete them first"
            )
        return await domain_service.delete_domain(db, domain, dns, hosting, cascade=True)

    results: list[dict] = []
    if page.subdomain:
        host = qualify_host(page.subdomain, domain.name)
        results.extend(await teardown_hosts([host], hosting, domain.hosting_project_id))
        if domain.is_provider_managed and domain.zone_id:
            records = []
            try:
                records = await dns.list_dns_records(domain.zone_id, name=host)
            except PageHostError as exc:
                logger.warning("Could not list DNS records for %s: %s", host, exc.message)
                results.append(
                    {"action": "delete_dns_record", "target": host, "success": False, "error": exc.message}
                )
            for record in records:
                await attempt_teardown(
                    results, "delete_dns_record", f"{record.type} {record.name}",
                    dns.delete_record(domain.zone_id, record.id),
                )

    await db.delete(page)
    await db.commit()
    logger.info("Deleted landing page %d", page.id)
    return results


async def find_tenant_binding(
    db: AsyncSession, resolution: HostResolution
) -> tuple[Domain, LandingPage] | None:
    """Registry lookup for the serving path.

    A domain registered under the full host (``shop.brand.com``,
    ``example.co.uk``) is served from its root binding first. Otherwise a
    subdomain binding wins, and an unrecognized prefix without its own binding
    falls through to the domain's root binding.
    """
    if resolution.has_subdomain and not resolution.is_special_host:
        binding = await _active_binding(db, resolution.host, "")
        if binding is not None:
            return binding

    if not resolution.domain_name:
        return None

    candidates = [resolution.subdomain] if resolution.has_subdomain else [""]
    if resolution.has_subdomain and not resolution.is_recognized_prefix:
        candidates.append("")

    for label in candidates:
        binding = await _active_binding(db, resolution.domain_name, label)
        if binding is not None:
            return binding
    return None


async def _active_binding(
    db: AsyncSession, domain_name: str, label: str
) -> tuple[Domain, LandingPage] | None:
    domain = await domain_service.get_domain_by_name(db, domain_name)
    if domain is None or not domain.is_active:
        return None
    result = await db.execute(
        select(LandingPage).where(
            LandingPage.domain_id == domain.id,
            LandingPage.subdomain == label,
            LandingPage.is_active.is_(True),
        )
    )
    page = result.scalar_one_or_none()
    if page is None:
        return None
    return domain, page
