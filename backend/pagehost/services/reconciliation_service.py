"""Registry vs. live provider drift check, with optional idempotent repair.

Repair only fills gaps or aligns values that were found to be wrong:
it persists a provider zone id and attaches a missing hosting domain.
Nothing is ever deleted, and each action reports its own outcome.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pagehost.core.config import settings
from pagehost.core.errors import PageHostError
from pagehost.models.domain import Domain
from pagehost.services.dns_provider import CloudflareClient
from pagehost.services.hosting_provider import VercelClient

logger = logging.getLogger(__name__)


@dataclass
class DnsStatus:
    managed_by: str
    status: str
    active: bool
    zone_id: str | None = None
    records_ok: bool | None = None
    error: str | None = None


@dataclass
class HostingStatus:
    exists: bool
    configured: bool
    project_id: str | None = None
    error: str | None = None


@dataclass
class RepairAction:
    action: str
    target: str
    success: bool
    error: str | None = None


@dataclass
class ConfigurationReport:
    domain: str
    dns_status: DnsStatus
    hosting_status: HostingStatus
    mismatches: list[str] = field(default_factory=list)
    recommended_actions: list[str] = field(default_factory=list)
    repair_performed: bool = False
    repair: list[RepairAction] = field(default_factory=list)
    overall_status: str = "issues_detected"
    next_steps: list[str] = field(default_factory=list)


async def _dns_status(domain: Domain, dns: CloudflareClient) -> DnsStatus:
    if not domain.is_provider_managed:
        return DnsStatus(managed_by="external", status="external", active=False, zone_id=domain.zone_id)
    try:
        zone = await dns.get_zone_status_by_name(domain.name)
    except PageHostError as exc:
        logger.warning("DNS status check for %s failed: %s", domain.name, exc.message)
        return DnsStatus(managed_by="provider", status="error", active=False, zone_id=domain.zone_id, error=exc.message)
    if zone is None:
        return DnsStatus(managed_by="provider", status="missing", active=False)

    status = DnsStatus(managed_by="provider", status=zone.status, active=zone.active, zone_id=zone.zone_id)
    try:
        records = await dns.list_dns_records(zone.zone_id, name=domain.name)
        status.records_ok = any(
            r.type == "A" and r.content == settings.HOSTING_A_RECORD_IP for r in records
        )
    except PageHostError as exc:
        status.error = exc.message
    return status


async def _hosting_status(domain: Domain, hosting: VercelClient) -> HostingStatus:
    project_id = domain.hosting_project_id or hosting.default_project_id or None
    try:
        check = await hosting.check_domain_status(domain.name, project_id)
    except PageHostError as exc:
        logger.warning("Hosting status check for %s failed: %s", domain.name, exc.message)
        return HostingStatus(exists=False, configured=False, project_id=project_id, error=exc.message)
    return HostingStatus(exists=check.exists, configured=check.configured, project_id=project_id)


def _next_steps(dns_status: DnsStatus, hosting_status: HostingStatus) -> list[str]:
    steps: list[str] = []
    if dns_status.managed_by == "provider" and not dns_status.active:
        steps.append("Ensure your domain nameservers are set to Cloudflare nameservers")
        steps.append("Wait for DNS propagation (this can take 24-48 hours)")
    if not hosting_status.exists:
        steps.append('Add your domain to Vercel project (use the "Repair" option)')
    elif not hosting_status.configured:
        steps.append("Verify your domain in Vercel (check Vercel dashboard)")
        steps.append(f"Ensure CNAME records are properly set to {settings.HOSTING_CNAME_TARGET}")
    if not steps:
        steps.append("Your domain is fully configured in both Cloudflare and Vercel")
    return steps


async def check_domain_configuration(
    db: AsyncSession,
    domain: Domain,
    dns: CloudflareClient,
    hosting: VercelClient,
    repair: bool = False,
) -> ConfigurationReport:
    dns_status = await _dns_status(domain, dns)
    hosting_status = await _hosting_status(domain, hosting)
    report = ConfigurationReport(domain=domain.name, dns_status=dns_status, hosting_status=hosting_status)

    zone_drift = False
    if dns_status.managed_by == "provider" and dns_status.status != "error":
        if dns_status.status == "missing":
            report.mismatches.append("dns_zone_missing")
            report.recommended_actions.append("redeploy")
        elif dns_status.zone_id and dns_status.zone_id != domain.zone_id:
            zone_drift = True
            report.mismatches.append("zone_id_missing" if not domain.zone_id else "zone_id_stale")
            report.recommended_actions.append("update_zone_id")
        if dns_status.status not in ("missing", "error") and not dns_status.active:
            report.mismatches.append("dns_zone_inactive")
        if dns_status.records_ok is False:
            report.mismatches.append("dns_records_missing")
            report.recommended_actions.append("redeploy")

    hosting_missing = hosting_status.error is None and not hosting_status.exists
    if hosting_missing:
        report.mismatches.append("hosting_domain_missing")
        report.recommended_actions.append("attach_hosting_domain")
    elif hosting_status.exists and not hosting_status.configured:
        report.mismatches.append("hosting_domain_unverified")

    if repair:
        report.repair_performed = True
        if zone_drift:
            old_zone = domain.zone_id
            try:
                domain.zone_id = dns_status.zone_id
                await db.commit()
                report.repair.append(RepairAction("update_zone_id", dns_status.zone_id, True))
                logger.info("Repair: %s zone id %s -> %s", domain.name, old_zone, dns_status.zone_id)
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.exception("Repair: could not persist zone id for %s", report.domain)
                report.repair.append(RepairAction("update_zone_id", dns_status.zone_id, False, str(exc)))
        if hosting_missing:
            try:
                result = await hosting.add_domain(domain.name, hosting_status.project_id)
                report.repair.append(RepairAction("attach_hosting_domain", domain.name, result.success))
                logger.info("Repair: attached %s to hosting project", domain.name)
            except PageHostError as exc:
                report.repair.append(RepairAction("attach_hosting_domain", domain.name, False, exc.message))

    fully_configured = hosting_status.exists and hosting_status.configured
    if domain.is_provider_managed:
        fully_configured = fully_configured and dns_status.active
    report.overall_status = "fully_configured" if fully_configured else "issues_detected"
    report.next_steps = _next_steps(dns_status, hosting_status)
    return report
