"""Periodic drift sweeps run by Celery beat.

Both tasks are read-mostly: ``verify_pending`` refreshes verification
status from the providers, ``reconcile_all`` only reports drift. Neither
touches deployment state, which belongs to the orchestrator.
"""

import asyncio
import logging

from sqlalchemy import select

from pagehost.core.database import worker_session
from pagehost.core.errors import PageHostError
from pagehost.models.domain import Domain
from pagehost.services.dns_provider import CloudflareClient
from pagehost.services.domain_service import verify_domain
from pagehost.services.hosting_provider import VercelClient
from pagehost.services.reconciliation_service import check_domain_configuration
from pagehost.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def verify_pending_domains(db, dns: CloudflareClient, hosting: VercelClient) -> dict:
    result = await db.execute(
        select(Domain).where(Domain.verification_status != "active", Domain.is_active.is_(True))
    )
    domains = list(result.scalars().all())
    summary = {"checked": 0, "activated": 0, "errors": 0}
    for domain in domains:
        name = domain.name
        before = domain.verification_status
        try:
            await verify_domain(db, domain, dns, hosting)
        except PageHostError as exc:
            summary["errors"] += 1
            logger.warning("Verification sweep: %s failed: %s", name, exc.message)
            continue
        summary["checked"] += 1
        if before != "active" and domain.verification_status == "active":
            summary["activated"] += 1
            logger.info("Verification sweep: %s is now active", name)
    return summary


async def reconcile_all_domains(db, dns: CloudflareClient, hosting: VercelClient) -> dict:
    result = await db.execute(select(Domain).order_by(Domain.id))
    domains = list(result.scalars().all())
    drifted: dict[str, list[str]] = {}
    for domain in domains:
        report = await check_domain_configuration(db, domain, dns, hosting, repair=False)
        if report.mismatches:
            drifted[domain.name] = report.mismatches
            logger.warning(
                "Drift detected for %s: %s", domain.name, ", ".join(report.mismatches)
            )
    return {"checked": len(domains), "drifted": drifted}


async def _run_sweep(sweep) -> dict:
    dns = CloudflareClient()
    hosting = VercelClient()
    try:
        async with worker_session() as db:
            return await sweep(db, dns, hosting)
    finally:
        await dns.aclose()
        await hosting.aclose()


@celery_app.task(name="domains.verify_pending")
def verify_pending() -> dict:
    """Re-check provider verification for every domain not yet active."""
    summary = asyncio.run(_run_sweep(verify_pending_domains))
    logger.info("Verification sweep finished: %s", summary)
    return summary


@celery_app.task(name="domains.reconcile_all")
def reconcile_all() -> dict:
    """Log registry/provider drift for every domain. Never repairs."""
    summary = asyncio.run(_run_sweep(reconcile_all_domains))
    logger.info(
        "Reconcile sweep finished: %d checked, %d drifted",
        summary["checked"],
        len(summary["drifted"]),
    )
    return summary
