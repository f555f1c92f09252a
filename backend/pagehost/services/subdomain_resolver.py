"""Host header -> tenant domain and subdomain.

``resolve_host`` is pure and total: it never performs I/O and returns a
well-formed ``HostResolution`` for any input, including garbage. Whether an
unrecognized prefix falls through to root handling is the caller's call.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from pagehost.core.config import settings

_IPV4_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")
_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


@dataclass(frozen=True)
class HostResolution:
    host: str
    subdomain: str
    domain_name: str
    has_subdomain: bool
    is_recognized_prefix: bool
    is_tld_only: bool = False
    is_special_host: bool = False
    issues: tuple[str, ...] = field(default_factory=tuple)

    def as_dict(self) -> dict:
        return {
            "host": self.host,
            "subdomain": self.subdomain,
            "domain_name": self.domain_name,
            "has_subdomain": self.has_subdomain,
            "is_recognized_prefix": self.is_recognized_prefix,
            "is_tld_only": self.is_tld_only,
            "is_special_host": self.is_special_host,
            "issues": list(self.issues),
        }


def _strip_port(host: str) -> tuple[str, bool]:
    """Return (host without port, is_ipv6_literal)."""
    if host.startswith("["):
        end = host.find("]")
        return (host[1:end] if end > 0 else host[1:]), True
    if host.count(":") > 1:
        return host, True
    return host.split(":", 1)[0], False


def _normalize_hint(hint: str | None) -> str:
    if not hint:
        return ""
    label = str(hint).strip().strip("/").lower()
    return label if _LABEL_RE.match(label) and label != "www" else ""


def _is_preview(host: str, suffixes: Iterable[str]) -> bool:
    for suffix in suffixes:
        suffix = suffix.lower().strip(".")
        if suffix and (host == suffix or host.endswith("." + suffix)):
            return True
    return False


def resolve_host(
    host: str | None,
    *,
    routing_hint: str | None = None,
    primary_domain: str | None = None,
    recognized_prefixes: Iterable[str] | None = None,
    preview_suffixes: Iterable[str] | None = None,
    local_hosts: Iterable[str] | None = None,
) -> HostResolution:
    primary = (settings.PRIMARY_DOMAIN if primary_domain is None else primary_domain).lower()
    prefixes = frozenset(
        p.lower() for p in (settings.ROUTING_PREFIXES if recognized_prefixes is None else recognized_prefixes)
    )
    previews = list(settings.PREVIEW_HOST_SUFFIXES if preview_suffixes is None else preview_suffixes)
    locals_ = {h.lower() for h in (settings.LOCAL_HOSTS if local_hosts is None else local_hosts)}

    raw = "" if host is None else str(host)
    value = raw.strip().lower()
    value, is_ipv6 = _strip_port(value)
    value = value.rstrip(".")
    if value.startswith("www.") and len(value) > 4:
        value = value[4:]

    issues: list[str] = []

    # Preview, local and IP hosts carry no tenant structure in their labels
    is_local = value in locals_ or value == "localhost" or value.endswith(".localhost")
    if is_ipv6 or is_local or _IPV4_RE.match(value) or _is_preview(value, previews):
        subdomain = _normalize_hint(routing_hint)
        if routing_hint and not subdomain:
            issues.append(f"Ignored invalid routing hint '{routing_hint}'")
        recognized = bool(subdomain) and subdomain in prefixes
        if subdomain and not recognized:
            issues.append(f"Unrecognized routing prefix '{subdomain}'")
        return HostResolution(
            host=value,
            subdomain=subdomain,
            domain_name=primary,
            has_subdomain=bool(subdomain),
            is_recognized_prefix=recognized,
            is_special_host=True,
            issues=tuple(issues),
        )

    labels = value.split(".")
    if len(labels) < 2 or any(not label for label in labels):
        issues.append(f"Host '{value}' has no domain and TLD, using primary domain")
        return HostResolution(
            host=value,
            subdomain="",
            domain_name=primary,
            has_subdomain=False,
            is_recognized_prefix=False,
            is_tld_only=True,
            issues=tuple(issues),
        )

    subdomain = ""
    domain_name = value
    if len(labels) > 2:
        domain_name = ".".join(labels[1:])
        if labels[0] != "www":
            subdomain = labels[0]

    recognized = bool(subdomain) and subdomain in prefixes
    if subdomain and not recognized:
        issues.append(f"Unrecognized routing prefix '{subdomain}'")

    return HostResolution(
        host=value,
        subdomain=subdomain,
        domain_name=domain_name,
        has_subdomain=bool(subdomain),
        is_recognized_prefix=recognized,
        issues=tuple(issues),
    )
