"""Domain-name and subdomain-label validation.

Everything here runs before any provider call, so malformed input is
rejected as ``InputValidationError`` without side effects.
"""

import re

from pagehost.core.errors import InputValidationError

_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
_TLD_RE = re.compile(r"^(?:[a-z]{2,63}|xn--[a-z0-9-]{1,59})$")
MAX_DOMAIN_LENGTH = 253


def normalize_domain_name(value: str | None) -> str:
    """Trim, lowercase and validate a root domain name (``example.com``)."""
    if value is None or not str(value).strip():
        raise InputValidationError("Domain name is required")

    name = str(value).strip().lower().rstrip(".")
    if name.startswith("http://") or name.startswith("https://"):
        raise InputValidationError(f"Domain name must not include a scheme: {value}")
    if len(name) > MAX_DOMAIN_LENGTH:
        raise InputValidationError(f"Domain name is too long: {value}")

    labels = name.split(".")
    if len(labels) < 2:
        raise InputValidationError(f"Domain name needs at least two labels: {value}")
    for label in labels:
        if not _LABEL_RE.match(label):
            raise InputValidationError(f"Invalid domain label '{label}' in {value}")
    if not _TLD_RE.match(labels[-1]):
        raise InputValidationError(f"Invalid top-level domain in {value}")
    if labels[0] == "www":
        raise InputValidationError(f"Register the bare domain instead of {value}")
    return name


def normalize_subdomain(value: str | None) -> str:
    """Trim and lowercase a subdomain label. Empty means the root binding."""
    if value is None:
        return ""
    label = str(value).strip().lower()
    if not label:
        return ""
    if label == "www":
        raise InputValidationError("'www' is reserved and cannot be used as a subdomain")
    if not _LABEL_RE.match(label):
        raise InputValidationError(f"Invalid subdomain label: {value}")
    return label


def qualify_host(subdomain: str, domain_name: str) -> str:
    """Host name served for a binding: the bare domain or ``label.domain``."""
    return f"{subdomain}.{domain_name}" if subdomain else domain_name
