from __future__ import annotations

import pytest

from chatdesk.core.errors import ValidationFailed
from chatdesk.services.domains import (
    extract_domain_from_url,
    is_origin_allowed,
    normalize_allowed_domains,
    normalize_domain,
    validate_and_normalize_domain,
)


@pytest.mark.parametrize(
    "raw",
    [
        "https://www.Example.com/chat",
        "example.com",
        "WWW.EXAMPLE.COM",
        "http://example.com:8080/path?q=1#frag",
        "https://example.com.",
    ],
)
def test_normalize_domain_strips_to_bare_host(raw: str) -> None:
    assert normalize_domain(raw) == "example.com"


def test_normalize_domain_is_idempotent() -> None:
    for raw in ["www.www.acme.com", "https://http://acme.com", "user@www.acme.com:443/x", "", "  "]:
        once = normalize_domain(raw)
        assert normalize_domain(once) == once


def test_normalize_domain_handles_missing_input() -> None:
    assert normalize_domain(None) == ""
    assert normalize_domain("   ") == ""


def test_subdomains_other_than_www_are_kept() -> None:
    assert normalize_domain("https://shop.acme.com") == "shop.acme.com"


@pytest.mark.parametrize("raw", ["localhost", "http://localhost:3000", "127.0.0.1", "not a domain", "acme", ""])
def test_validate_rejects_non_public_domains(raw: str) -> None:
    with pytest.raises(ValidationFailed) as exc:
        validate_and_normalize_domain(raw)
    assert exc.value.code == "INVALID_DOMAIN"


def test_allowed_domains_keep_primary_first_without_duplicates() -> None:
    domains = normalize_allowed_domains("acme.com", ["https://www.acme.com", "shop.acme.com", "SHOP.acme.com"])
    assert domains == ["acme.com", "shop.acme.com"]


def test_origin_allowed_is_exact_membership() -> None:
    allowed = ["acme.com", "shop.acme.com"]
    assert is_origin_allowed("https://www.acme.com", allowed)
    assert is_origin_allowed("https://shop.acme.com/cart", allowed)
    assert not is_origin_allowed("https://evil-acme.com", allowed)
    assert not is_origin_allowed("https://acme.com.evil.io", allowed)
    assert not is_origin_allowed("https://blog.acme.com", allowed)
    assert not is_origin_allowed(None, allowed)
    assert not is_origin_allowed("", allowed)


def test_extract_domain_from_url() -> None:
    assert extract_domain_from_url("https://www.acme.com:8443/path") == "acme.com"
    assert extract_domain_from_url("acme.com/path") == "acme.com"
