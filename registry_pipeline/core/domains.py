from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlparse

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://")
_HOST_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]*[a-z0-9])?)*$")
FREE_EMAIL_PROVIDERS = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "hotmail.com",
        "outlook.com",
        "live.com",
        "yahoo.com",
        "icloud.com",
        "me.com",
        "aol.com",
        "protonmail.com",
        "proton.me",
        "gmx.de",
        "gmx.net",
        "web.de",
        "online.no",
        "mail.ru",
    }
)


def normalize_domain(raw: Any) -> str | None:
    """Reduce a URL or hostname to a bare lowercase host.

    ``"https://www.Example.com/about"`` becomes ``"example.com"``. Values that
    do not look like a hostname afterwards return ``None`` so callers can
    treat them as absent.
    """
    if not isinstance(raw, str):
        return None
    value = raw.strip().lower()
    if not value:
        return None
    value = _SCHEME_RE.sub("", value)
    if value.startswith("www."):
        value = value[4:]
    value = re.split(r"[/?#]", value, maxsplit=1)[0]
    host, _, port = value.partition(":")
    if port and not port.isdigit():
        return None
    host = host.rstrip(".")
    if not host or not _HOST_RE.match(host):
        return None
    return host


def domain_from_url(url: str | None) -> str | None:
    if not url:
        return None
    parsed = urlparse(url.strip())
    return normalize_domain(parsed.netloc or parsed.path)


def is_professional_email(email: str | None) -> bool:
    """True when the address is not hosted by a free webmail provider."""
    if not email or "@" not in email:
        return False
    mailbox_domain = normalize_domain(email.rsplit("@", 1)[1])
    return mailbox_domain is not None and mailbox_domain not in FREE_EMAIL_PROVIDERS
