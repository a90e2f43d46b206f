"""Domain normalization and validation for tenant whitelists.

Every domain that is stored (``Tenant.domain``, ``Tenant.allowed_domains``) and
every origin that is compared against them passes through
:func:`normalize_domain`, so origin checks reduce to set membership.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Iterable
from urllib.parse import urlsplit

from chatdesk.core.errors import ValidationFailed


_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://")
_DOMAIN_RE = re.compile(r"^[a-z0-9]+([\-.][a-z0-9]+)*\.[a-z]{2,}$")
_PORT_RE = re.compile(r":\d*$")
_PATH_DELIMITERS = ("/", "?", "#")


def _normalize_once(value: str) -> str:
    value = _SCHEME_RE.sub("", value.strip())
    for delimiter in _PATH_DELIMITERS:
        value = value.split(delimiter, 1)[0]
    if "@" in value:
        value = value.rsplit("@", 1)[1]
    value = _PORT_RE.sub("", value)
    if value.startswith("www."):
        value = value[4:]
    return value.rstrip(".").strip()


def normalize_domain(raw: str | None) -> str:
    """Reduce a URL, origin or host to a bare lowercase domain.

    ``https://www.Example.com/chat``, ``example.com`` and ``WWW.EXAMPLE.COM`` all
    normalize to ``example.com``. The steps are applied until nothing changes,
    which makes the function idempotent even for inputs like ``www.www.a.com``.
    """
    value = (raw or "").lower()
    while True:
        normalized = _normalize_once(value)
        if normalized == value:
            return normalized
        value = normalized


def is_valid_domain(domain: str) -> bool:
    return bool(_DOMAIN_RE.match(domain))


def _is_ip_literal(value: str) -> bool:
    try:
        ipaddress.ip_address(value.strip("[]"))
    except ValueError:
        return False
    return True


def validate_and_normalize_domain(raw: str | None) -> str:
    # Normalize user input and reject values that cannot be a public website domain.
    if raw is None or not raw.strip():
        raise ValidationFailed("Domain is required", code="INVALID_DOMAIN")
    normalized = normalize_domain(raw)
    if "localhost" in normalized:
        raise ValidationFailed("Localhost is not allowed for production use", code="INVALID_DOMAIN")
    if _is_ip_literal(normalized):
        raise ValidationFailed("IP addresses are not allowed", code="INVALID_DOMAIN")
    if not is_valid_domain(normalized):
        raise ValidationFailed(
            "Invalid domain format. Use format: example.com (no http, www, or paths)",
            code="INVALID_DOMAIN",
        )
    return normalized


def normalize_allowed_domains(primary: str, extra: Iterable[str] | None = None) -> list[str]:
    # Keep the canonical domain first and drop duplicates while preserving order.
    domains = [primary]
    for raw in extra or ():
        domain = validate_and_normalize_domain(raw)
        if domain not in domains:
            domains.append(domain)
    return domains


def is_origin_allowed(origin: str | None, allowed_domains: Iterable[str]) -> bool:
    if not origin:
        return False
    normalized = normalize_domain(origin)
    if not normalized:
        return False
    return normalized in set(allowed_domains)


def extract_domain_from_url(url: str) -> str:
    # Prefer the parsed hostname; fall back to string normalization for scheme-less input.
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        hostname = None
    return normalize_domain(hostname or url)
