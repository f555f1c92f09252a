import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pagehost.core.config import settings
from pagehost.core.errors import ConflictError, InputValidationError, NotFoundError, PageHostError
from pagehost.core.validation import normalize_domain_name, qualify_host
from pagehost.models.deployment import DeploymentLogEntry, DomainDeployment
from pagehost.models.domain import DNS_MANAGEMENT_MODES, Domain
from pagehost.models.landing_page import LandingPage
from pagehost.services.dns_provider import CloudflareClient
from pagehost.services.hosting_provider import VercelClient

logger = logging.getLogger(__name__)

# Provider zone status -> Domain.verification_status
ZONE_VERIFICATION_MAP = {
    "active": "active",
    "pending": "pending",
    "initializing": "pending",
    "moved": "inactive",
    "deactivated": "inactive",
    "deleted": "inactive",
}


# ── Lookups ────────────────────────────────────────────────

async def get_domain(db: AsyncSession, domain_id: int) -> Domain | None:
    result = await db.execute(select(Domain).where(Domain.id == domain_id))
    return result.scalar_one_or_none()


async def require_domain(db: AsyncSession, domain_id: int) -> Domain:
    domain = await get_domain(db, domain_id)
    if domain is None:
        raise NotFoundError(f"Domain {domain_id} not found")
    return domain


async def get_domain_by_name(db: AsyncSession, name: str) -> Domain | None:
    result = await db.execute(select(Domain).where(Domain.name == name.strip().lower().rstrip(".")))
    return result.scalar_one_or_none()


async def list_domains(db: AsyncSession, name: str | None = None) -> list[tuple[Domain, int]]:
    """All domains, newest first, each with its landing-page count."""
    page_count = (
        select(LandingPage.domain_id, func.count(LandingPage.id).label("page_count"))
        .group_by(LandingPage.domain_id)
        .subquery()
    )
    query = (
        select(Domain, func.coalesce(page_count.c.page_count, 0))
        .outerjoin(page_count, page_count.c.domain_id == Domain.id)
        .order_by(Domain.created_at.desc(), Domain.id.desc())
    )
    if name:
        query = query.where(Domain.name == name.strip().lower().rstrip("."))
    result = await db.execute(query)
    return [(domain, int(count)) for domain, count in result.all()]


# ── Create ─────────────────────────────────────────────────

async def create_domain(
    db: AsyncSession,
    name: str,
    dns_management: str = "provider",
    expected_cname: str | None = None,
) -> Domain:
    domain_name = normalize_domain_name(name)
    if dns_management not in DNS_MANAGEMENT_MODES:
        raise InputValidationError(
            f"dns_management must be one of {', '.join(DNS_MANAGEMENT_MODES)}"
        )
    if await get_domain_by_name(db, domain_name):
        raise ConflictError(f"Domain {domain_name} already exists")

    domain = Domain(
        name=domain_name,
        dns_management=dns_management,
        nameservers=[],
        expected_cname=(
            (expected_cname or settings.HOSTING_CNAME_TARGET) if dns_management == "external" else None
        ),
    )
    db.add(domain)
    await db.commit()
    await db.refresh(domain)
    logger.info("Registered domain %s (%s DNS)", domain.name, dns_management)
    return domain


async def get_or_create_domain(db: AsyncSession, name: str, dns_management: str = "provider") -> Domain:
    domain_name = normalize_domain_name(name)
    existing = await get_domain_by_name(db, domain_name)
    if existing is None:
        return await create_domain(db, domain_name, dns_management)
    if existing.dns_management != dns_management:
        raise ConflictError(
            f"Domain {domain_name} is already registered with {existing.dns_management} DNS management"
        )
    return existing


async def bulk_create_domains(
    db: AsyncSession, names: list[str], dns_management: str = "provider"
) -> tuple[list[str], list[dict]]:
    """Register each name in order. Returns registered names and per-name failures."""
    registered: list[str] = []
    failed: list[dict] = []
    for raw in names:
        try:
            domain = await create_domain(db, raw, dns_management)
        except (InputValidationError, ConflictError) as exc:
            failed.append({"target": raw, "reason": exc.message})
            continue
        registered.append(domain.name)
    logger.info("Bulk register: %d registered, %d failed", len(registered), len(failed))
    return registered, failed


async def check_domain_by_name(
    db: AsyncSession,
    name: str,
    dns: CloudflareClient,
    *,
    update_zone: bool = False,
) -> dict:
    """Compare the registry entry for ``name`` with the provider's zone.

    With ``update_zone`` a provider-managed domain whose stored zone id is
    missing or stale takes the provider's id and verification status.
    """
    domain_name = normalize_domain_name(name)
    domain = await get_domain_by_name(db, domain_name)
    zone = await dns.get_zone_status_by_name(domain_name)

    report = {
        "found": domain is not None,
        "name": domain_name,
        "domain_id": domain.id if domain else None,
        "registered_zone_id": domain.zone_id if domain else None,
        "provider_zone_id": zone.zone_id if zone else None,
        "zone_status": zone.status if zone else None,
        "needs_update": False,
        "updated": False,
    }
    if domain is None or zone is None or not domain.is_provider_managed:
        return report

    if domain.zone_id != zone.zone_id:
        report["needs_update"] = True
        if update_zone:
            logger.info("Zone id for %s: %s -> %s", domain.name, domain.zone_id or "none", zone.zone_id)
            domain.zone_id = zone.zone_id
            domain.verification_status = ZONE_VERIFICATION_MAP.get(zone.status, "pending")
            await db.commit()
            report["registered_zone_id"] = zone.zone_id
            report["updated"] = True
    return report


# ── Active-run marker ──────────────────────────────────────

async def claim_active_run(db: AsyncSession, domain_id: int, run_id: str) -> bool:
    """Atomically set the domain's active run. False when another run holds it."""
    result = await db.execute(
        update(Domain)
        .where(Domain.id == domain_id, Domain.active_run_id.is_(None))
        .values(active_run_id=run_id)
    )
    return result.rowcount == 1


async def release_active_run(db: AsyncSession, domain_id: int, run_id: str) -> bool:
    """Clear the marker only if ``run_id`` still holds it."""
    result = await db.execute(
        update(Domain)
        .where(Domain.id == domain_id, Domain.active_run_id == run_id)
        .values(active_run_id=None)
    )
    return result.rowcount == 1


# ── Verification & counters ────────────────────────────────

async def verify_domain(
    db: AsyncSession,
    domain: Domain,
    dns: CloudflareClient,
    hosting: VercelClient,
) -> Domain:
    """Refresh ``verification_status`` from the provider that owns the domain's DNS."""
    if domain.is_provider_managed:
        if domain.zone_id:
            zone = await dns.get_zone_status(domain.zone_id)
        else:
            zone = await dns.get_zone_status_by_name(domain.name)
        if zone is None:
            status = "error"
        else:
            status = ZONE_VERIFICATION_MAP.get(zone.status, "pending")
    else:
        check = await hosting.check_domain_status(domain.name, domain.hosting_project_id)
        if check.configured:
            status = "active"
        elif check.exists:
            status = "pending"
        else:
            status = "inactive"

    if status != domain.verification_status:
        logger.info(
            "Domain %s verification %s -> %s", domain.name, domain.verification_status, status
        )
    domain.verification_status = status
    await db.commit()
    await db.refresh(domain)
    return domain


async def increment_ban_count(db: AsyncSession, domain: Domain) -> Domain:
    await db.execute(
        update(Domain).where(Domain.id == domain.id).values(ban_count=Domain.ban_count + 1)
    )
    await db.commit()
    await db.refresh(domain)
    return domain


# ── Delete ─────────────────────────────────────────────────

async def attempt_teardown(results: list[dict], action: str, target: str, coro) -> None:
    try:
        await coro
        results.append({"action": action, "target": target, "success": True, "error": None})
    except PageHostError as exc:
        logger.warning("Teardown %s for %s failed: %s", action, target, exc.message)
        results.append({"action": action, "target": target, "success": False, "error": exc.message})


async def teardown_hosts(
    hosts: list[str],
    hosting: VercelClient,
    project_id: str | None,
) -> list[dict]:
    results: list[dict] = []
    for host in hosts:
        await attempt_teardown(results, "remove_hosting_domain", host, hosting.remove_domain(host, project_id))
    return results


async def delete_domain(
    db: AsyncSession,
    domain: Domain,
    dns: CloudflareClient,
    hosting: VercelClient,
    *,
    cascade: bool = False,
) -> list[dict]:
    """Delete a domain with its bindings and run history.

    Provider teardown is best-effort: each step is reported and failures do
    not block the registry delete.
    """
    if domain.active_run_id:
        raise ConflictError(f"Domain {domain.name} has an active deployment run")

    pages = list(
        (await db.execute(select(LandingPage).where(LandingPage.domain_id == domain.id))).scalars().all()
    )
    if pages and not cascade:
        raise ConflictError(
            f"Domain {domain.name} still has {len(pages)} landing page(s); pass cascade=true to delete them"
        )

    hosts = [domain.name]
    if domain.is_provider_managed:
        hosts.append(f"www.{domain.name}")
    hosts.extend(qualify_host(p.subdomain, domain.name) for p in pages if p.subdomain)

    results = await teardown_hosts(hosts, hosting, domain.hosting_project_id)
    if domain.is_provider_managed and domain.zone_id:
        await attempt_teardown(results, "delete_zone", domain.zone_id, dns.delete_zone(domain.zone_id))

    run_ids = select(DomainDeployment.id).where(DomainDeployment.domain_id == domain.id)
    await db.execute(delete(DeploymentLogEntry).where(DeploymentLogEntry.deployment_id.in_(run_ids)))
    await db.execute(delete(DomainDeployment).where(DomainDeployment.domain_id == domain.id))
    await db.execute(delete(LandingPage).where(LandingPage.domain_id == domain.id))
    await db.execute(delete(Domain).where(Domain.id == domain.id))
    await db.commit()
    logger.info("Deleted domain %s with %d landing page(s)", domain.name, len(pages))
    return results


async def bulk_delete_domains(
    db: AsyncSession,
    domain_ids: list[int],
    dns: CloudflareClient,
    hosting: VercelClient,
) -> tuple[list[dict], list[dict]]:
    """Delete each domain that has no bindings and no active run.

    A domain that cannot be deleted is reported and the rest still proceed.
    """
    deleted: list[dict] = []
    failed: list[dict] = []
    for domain_id in domain_ids:
        domain = await get_domain(db, domain_id)
        if domain is None:
            failed.append({"target": str(domain_id), "reason": "Domain not found"})
            continue
        name = domain.name
        try:
            teardown = await delete_domain(db, domain, dns, hosting, cascade=False)
        except ConflictError as exc:
            failed.append({"target": str(domain_id), "reason": exc.message})
            continue
        deleted.append({"id": domain_id, "name": name, "teardown": teardown})
    logger.info("Bulk delete: %d deleted, %d failed", len(deleted), len(failed))
    return deleted, failed
