"""Vercel REST adapter: projects and custom-domain attachment."""

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from pagehost.core.config import settings
from pagehost.core.errors import HostingDomainConflictError, ProviderUnavailableError
from pagehost.services.provider_client import ProviderClient

logger = logging.getLogger(__name__)


@dataclass
class HostingProject:
    project_id: str
    name: str


@dataclass
class AddDomainResult:
    success: bool
    already_exists: bool = False


@dataclass
class DomainCheck:
    exists: bool
    configured: bool


def _error_code(body: Any) -> str | None:
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("code")
    return None


class VercelClient(ProviderClient):
    provider_name = "hosting"

    def __init__(
        self,
        *,
        token: str | None = None,
        team_id: str | None = None,
        default_project_id: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(
            base_url=base_url or settings.VERCEL_API_URL,
            token=settings.VERCEL_TOKEN if token is None else token,
            timeout=timeout or settings.PROVIDER_TIMEOUT_SECONDS,
            max_retries=settings.PROVIDER_MAX_RETRIES if max_retries is None else max_retries,
            backoff_seconds=(
                settings.PROVIDER_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
            ),
            http_client=http_client,
        )
        self.team_id = settings.VERCEL_TEAM_ID if team_id is None else team_id
        self.default_project_id = (
            settings.VERCEL_PROJECT_ID if default_project_id is None else default_project_id
        )

    def _default_params(self) -> dict[str, str]:
        return {"teamId": self.team_id} if self.team_id else {}

    def _error_message(self, body: Any) -> str:
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            err = body["error"]
            return f"{err.get('code')}: {err.get('message')}"
        return super()._error_message(body)

    def _project(self, project_id: str | None) -> str:
        target = project_id or self.default_project_id
        if not target:
            raise ProviderUnavailableError(
                self.provider_name, "resolve_project", "no hosting project configured"
            )
        return target

    async def get_project(self, id_or_name: str) -> HostingProject | None:
        body = await self._request(
            "GET", f"/v9/projects/{quote(id_or_name, safe='')}", "get_project", allow_not_found=True
        )
        if body is None:
            return None
        return HostingProject(project_id=body["id"], name=body.get("name", id_or_name))

    async def create_project(self, name: str, framework: str | None = None) -> HostingProject:
        """Create a project, or return the existing one when the name is taken."""
        body = await self._request(
            "POST",
            "/v9/projects",
            "create_project",
            json={"name": name, "framework": framework or settings.HOSTING_FRAMEWORK},
            accept=(400, 409),
        )
        if "id" in body:
            logger.info("Created hosting project %s (%s)", body.get("name", name), body["id"])
            return HostingProject(project_id=body["id"], name=body.get("name", name))

        if _error_code(body) in ("project_name_already_exists", "conflict"):
            existing = await self.get_project(name)
            if existing:
                logger.info("Hosting project %s already exists (%s)", name, existing.project_id)
                return existing
        raise ProviderUnavailableError(
            self.provider_name, "create_project", self._error_message(body)
        )

    async def add_domain(self, domain_name: str, project_id: str | None = None) -> AddDomainResult:
        target = self._project(project_id)
        body = await self._request(
            "POST",
            f"/v9/projects/{target}/domains",
            "add_domain",
            json={"name": domain_name},
            accept=(400, 409),
        )
        code = _error_code(body)
        if code is None:
            logger.info("Attached %s to hosting project %s", domain_name, target)
            return AddDomainResult(success=True)
        if code == "domain_already_in_use":
            owner = body["error"].get("projectId")
            if owner == target:
                return AddDomainResult(success=True, already_exists=True)
            raise HostingDomainConflictError(domain_name, owner)
        if code == "domain_already_exists":
            return AddDomainResult(success=True, already_exists=True)
        raise ProviderUnavailableError(self.provider_name, "add_domain", self._error_message(body))

    async def remove_domain(self, domain_name: str, project_id: str | None = None) -> bool:
        target = self._project(project_id)
        await self._request(
            "DELETE",
            f"/v9/projects/{target}/domains/{domain_name}",
            "remove_domain",
            allow_not_found=True,
        )
        return True

    async def check_domain_status(self, domain_name: str, project_id: str | None = None) -> DomainCheck:
        target = self._project(project_id)
        body = await self._request(
            "GET",
            f"/v9/projects/{target}/domains/{domain_name}",
            "check_domain_status",
            allow_not_found=True,
        )
        if body is None:
            return DomainCheck(exists=False, configured=False)
        return DomainCheck(exists=True, configured=bool(body.get("verified")))
