from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ProvisionRequest(BaseModel):
    domain_name: str = Field(max_length=255)
    dns_management: Literal["provider", "external"] = "provider"


class ProvisionResponse(BaseModel):
    run_id: str
    domain_id: int


class DomainRead(BaseModel):
    id: int
    name: str
    zone_id: str | None
    nameservers: list[str]
    dns_management: str
    verification_status: str
    expected_cname: str | None
    hosting_project_id: str | None
    deployment_status: str
    last_deployed_at: datetime | None
    deployment_url: str | None
    active_run_id: str | None
    ban_count: int
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class DomainListItem(DomainRead):
    landing_page_count: int = 0


class TeardownStep(BaseModel):
    action: str
    target: str
    success: bool
    error: str | None = None


class DomainDeleteResponse(BaseModel):
    deleted: bool
    teardown: list[TeardownStep]


# ── Bulk operations and name lookup ───────────────────────

BULK_LIMIT = 50


class BulkDomainCreate(BaseModel):
    domain_names: list[str] = Field(min_length=1, max_length=BULK_LIMIT)
    dns_management: Literal["provider", "external"] = "provider"


class BulkDomainDelete(BaseModel):
    ids: list[int] = Field(min_length=1, max_length=BULK_LIMIT)


class BulkFailure(BaseModel):
    target: str
    reason: str


class BulkDomainCreateResponse(BaseModel):
    registered: list[str]
    failed: list[BulkFailure]


class BulkDeleted(BaseModel):
    id: int
    name: str
    teardown: list[TeardownStep]


class BulkDomainDeleteResponse(BaseModel):
    deleted: list[BulkDeleted]
    failed: list[BulkFailure]


class DomainNameCheck(BaseModel):
    found: bool
    name: str
    domain_id: int | None
    registered_zone_id: str | None
    provider_zone_id: str | None
    zone_status: str | None
    needs_update: bool
    updated: bool


# ── Configuration report ──────────────────────────────────

class DnsStatusRead(BaseModel):
    managed_by: str
    status: str
    active: bool
    zone_id: str | None
    records_ok: bool | None
    error: str | None

    model_config = {"from_attributes": True}


class HostingStatusRead(BaseModel):
    exists: bool
    configured: bool
    project_id: str | None
    error: str | None

    model_config = {"from_attributes": True}


class RepairActionRead(BaseModel):
    action: str
    target: str
    success: bool
    error: str | None

    model_config = {"from_attributes": True}


class ConfigurationReportRead(BaseModel):
    domain: str
    dns_status: DnsStatusRead
    hosting_status: HostingStatusRead
    mismatches: list[str]
    recommended_actions: list[str]
    repair_performed: bool
    repair: list[RepairActionRead]
    overall_status: Literal["fully_configured", "issues_detected"]
    next_steps: list[str]

    model_config = {"from_attributes": True}
