"""Cloudflare API v4 adapter: zones, nameservers and DNS records.

Every call is idempotent from the caller's side. An existing zone is
returned instead of being created twice, and deleting something that is
already gone counts as success. Absence is reported as ``None`` / ``[]``,
never as an exception.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from pagehost.core.config import settings
from pagehost.core.errors import ProviderUnavailableError
from pagehost.services.provider_client import ProviderClient

logger = logging.getLogger(__name__)

# Cloudflare answers lookups of unknown identifiers with 400 + one of these
_NOT_FOUND_CODES = {1001, 1003, 7000, 7003, 81044}


@dataclass
class Zone:
    zone_id: str
    name: str
    nameservers: list[str] = field(default_factory=list)
    status: str = "pending"

    @property
    def active(self) -> bool:
        return self.status == "active"


@dataclass
class ZoneStatus:
    zone_id: str
    status: str
    active: bool


@dataclass
class DnsRecord:
    id: str
    type: str
    name: str
    content: str
    proxied: bool = False


def _zone_from_result(result: dict[str, Any]) -> Zone:
    return Zone(
        zone_id=result["id"],
        name=result.get("name", ""),
        nameservers=list(result.get("name_servers") or []),
        status=result.get("status", "pending"),
    )


def _record_from_result(result: dict[str, Any]) -> DnsRecord:
    return DnsRecord(
        id=result["id"],
        type=result.get("type", ""),
        name=result.get("name", ""),
        content=result.get("content", ""),
        proxied=bool(result.get("proxied", False)),
    )


class CloudflareClient(ProviderClient):
    provider_name = "dns"

    def __init__(
        self,
        *,
        token: str | None = None,
        account_id: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(
            base_url=base_url or settings.CLOUDFLARE_API_URL,
            token=settings.CLOUDFLARE_API_TOKEN if token is None else token,
            timeout=timeout or settings.PROVIDER_TIMEOUT_SECONDS,
            max_retries=settings.PROVIDER_MAX_RETRIES if max_retries is None else max_retries,
            backoff_seconds=(
                settings.PROVIDER_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
            ),
            http_client=http_client,
        )
        self.account_id = settings.CLOUDFLARE_ACCOUNT_ID if account_id is None else account_id

    def _is_not_found(self, response: httpx.Response, body: Any) -> bool:
        if response.status_code == 404:
            return True
        if response.status_code == 400 and isinstance(body, dict):
            codes = {err.get("code") for err in body.get("errors") or [] if isinstance(err, dict)}
            return bool(codes & _NOT_FOUND_CODES)
        return False

    def _error_message(self, body: Any) -> str:
        if isinstance(body, dict) and body.get("errors"):
            return "; ".join(
                f"{err.get('code')}: {err.get('message')}" if isinstance(err, dict) else str(err)
                for err in body["errors"]
            )
        return super()._error_message(body)

    # ── Zones ──────────────────────────────────────────────

    async def find_zone(self, domain_name: str) -> Zone | None:
        body = await self._request("GET", "/zones", "find_zone", params={"name": domain_name})
        results = body.get("result") or []
        if not results:
            return None
        return _zone_from_result(results[0])

    async def create_zone(self, domain_name: str) -> Zone:
        """Create a full-setup zone, or return the one that already exists."""
        existing = await self.find_zone(domain_name)
        if existing:
            logger.info("Zone for %s already exists (%s)", domain_name, existing.zone_id)
            return existing

        payload: dict[str, Any] = {"name": domain_name, "jump_start": False, "type": "full"}
        if self.account_id:
            payload["account"] = {"id": self.account_id}
        try:
            body = await self._request("POST", "/zones", "create_zone", json=payload)
        except ProviderUnavailableError as exc:
            # Lost a race with another creator: the zone exists now
            if exc.http_status == 400:
                existing = await self.find_zone(domain_name)
                if existing:
                    return existing
            raise
        zone = _zone_from_result(body["result"])
        logger.info("Created zone %s for %s", zone.zone_id, domain_name)
        return zone

    async def get_zone_status(self, zone_id: str) -> ZoneStatus | None:
        body = await self._request("GET", f"/zones/{zone_id}", "get_zone_status", allow_not_found=True)
        if body is None or not body.get("result"):
            return None
        zone = _zone_from_result(body["result"])
        return ZoneStatus(zone_id=zone.zone_id, status=zone.status, active=zone.active)

    async def get_zone_status_by_name(self, domain_name: str) -> ZoneStatus | None:
        zone = await self.find_zone(domain_name)
        if zone is None:
            return None
        return ZoneStatus(zone_id=zone.zone_id, status=zone.status, active=zone.active)

    async def delete_zone(self, zone_id: str) -> bool:
        await self._request("DELETE", f"/zones/{zone_id}", "delete_zone", allow_not_found=True)
        return True

    # ── DNS records ────────────────────────────────────────

    async def list_dns_records(self, zone_id: str, name: str | None = None) -> list[DnsRecord]:
        params = {"per_page": "100"}
        if name:
            params["name"] = name
        body = await self._request(
            "GET",
            f"/zones/{zone_id}/dns_records",
            "list_dns_records",
            params=params,
            allow_not_found=True,
        )
        if body is None:
            return []
        return [_record_from_result(r) for r in body.get("result") or []]

    async def upsert_record(
        self,
        zone_id: str,
        record_type: str,
        name: str,
        content: str,
        proxied: bool = False,
    ) -> DnsRecord:
        """Make ``name`` resolve as ``record_type`` -> ``content``.

        An identical record is left alone. A same-type record with different
        content is updated in place. An A record replaces a CNAME on the same
        name, since the two cannot coexist.
        """
        record_type = record_type.upper()
        existing = await self.list_dns_records(zone_id, name=name)

        for record in existing:
            if record.type == record_type and record.content == content:
                logger.debug("DNS record %s %s already up to date", record_type, name)
                return record

        for record in existing:
            if record.type == record_type:
                body = await self._request(
                    "PUT",
                    f"/zones/{zone_id}/dns_records/{record.id}",
                    "upsert_record",
                    json={"type": record_type, "name": name, "content": content, "ttl": 1, "proxied": proxied},
                )
                logger.info("Updated %s record %s -> %s", record_type, name, content)
                return _record_from_result(body["result"])

        if record_type == "A":
            for record in existing:
                if record.type == "CNAME":
                    logger.info("Removing conflicting CNAME on %s", name)
                    await self.delete_record(zone_id, record.id)

        body = await self._request(
            "POST",
            f"/zones/{zone_id}/dns_records",
            "upsert_record",
            json={"type": record_type, "name": name, "content": content, "ttl": 1, "proxied": proxied},
        )
        logger.info("Created %s record %s -> %s", record_type, name, content)
        return _record_from_result(body["result"])

    async def delete_record(self, zone_id: str, record_id: str) -> bool:
        await self._request(
            "DELETE",
            f"/zones/{zone_id}/dns_records/{record_id}",
            "delete_record",
            allow_not_found=True,
        )
        return True
