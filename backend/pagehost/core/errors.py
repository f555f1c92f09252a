# pagehost/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class PageHostError(Exception):
    """Base class for all PageHost errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# -----------------------------
# Registry Errors
# -----------------------------

class NotFoundError(PageHostError):
    """Domain, landing page or deployment run absent."""

    status_code = 404


class ConflictError(PageHostError):
    """Duplicate binding, active run already present, or domain attached elsewhere."""

    status_code = 409


class InputValidationError(PageHostError):
    """Malformed domain name or missing field, rejected before any provider call."""

    status_code = 400


class InvalidStateTransition(PageHostError):
    """Illegal deployment run state transition attempted."""

    status_code = 409


# -----------------------------
# Provider Errors
# -----------------------------

class ProviderUnavailableError(PageHostError):
    """Network, timeout or API failure talking to the DNS or hosting provider."""

    status_code = 502

    def __init__(
        self,
        provider: str,
        operation: str,
        message: str,
        *,
        http_status: int | None = None,
    ):
        super().__init__(f"{provider} {operation} failed: {message}")
        self.provider = provider
        self.operation = operation
        self.http_status = http_status


class ProviderAuthError(ProviderUnavailableError):
    """Credentials rejected by the provider. Never retried."""


class ProviderRateLimitError(ProviderUnavailableError):
    """Provider asked us to slow down. Retried with backoff."""


class HostingDomainConflictError(ConflictError):
    """Domain is already attached to a different hosting project."""

    def __init__(self, domain_name: str, project_id: str | None):
        super().__init__(
            f"Domain {domain_name} is already in use by another project ({project_id})"
        )
        self.domain_name = domain_name
        self.project_id = project_id
