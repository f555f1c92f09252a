"""Shared HTTP plumbing for the DNS and hosting provider adapters.

Both providers are token-authenticated JSON APIs. This base class owns the
``httpx.AsyncClient``, maps transport and HTTP failures onto the provider
error taxonomy, and retries rate-limited calls with exponential backoff.
"""

import logging
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pagehost.core.errors import (
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)


class ProviderClient:
    provider_name = "provider"

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token = token
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        )

    async def aclose(self) -> None:
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _default_params(self) -> dict[str, str]:
        return {}

    def _is_not_found(self, response: httpx.Response, body: Any) -> bool:
        return response.status_code == 404

    def _error_message(self, body: Any) -> str:
        return str(body)[:500]

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        allow_not_found: bool = False,
        accept: tuple[int, ...] = (),
    ) -> Any:
        """Send one API call, retrying only when the provider rate-limits us.

        Returns the decoded JSON body (``{}`` for empty responses), or
        ``None`` when ``allow_not_found`` is set and the target is absent.
        Error statuses listed in ``accept`` return their body instead of
        raising, so callers can inspect provider error codes.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(ProviderRateLimitError),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=30),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._send(
                    method,
                    path,
                    operation,
                    json=json,
                    params=params,
                    allow_not_found=allow_not_found,
                    accept=accept,
                )

    async def _send(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        json: dict | None,
        params: dict | None,
        allow_not_found: bool,
        accept: tuple[int, ...],
    ) -> Any:
        query = {**self._default_params(), **(params or {})}
        try:
            response = await self._client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                json=json,
                params=query or None,
            )
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                self.provider_name, operation, f"request timed out ({exc.__class__.__name__})"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(self.provider_name, operation, str(exc)) from exc

        body: Any = {}
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = {"raw": response.text[:500]}

        status = response.status_code
        if status in (401, 403):
            raise ProviderAuthError(
                self.provider_name, operation, "authentication failed", http_status=status
            )
        if status == 429:
            logger.warning("%s rate limited during %s", self.provider_name, operation)
            raise ProviderRateLimitError(
                self.provider_name, operation, "rate limited", http_status=status
            )
        if allow_not_found and self._is_not_found(response, body):
            return None
        if status >= 400 and status not in accept:
            raise ProviderUnavailableError(
                self.provider_name,
                operation,
                f"HTTP {status}: {self._error_message(body)}",
                http_status=status,
            )
        return body
