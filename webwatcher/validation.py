"""
validation.py

Guardrails for caller input. Anything rejected here raises ``InvalidInput``
and the scan never starts.
"""

import ipaddress
import re
from urllib.parse import urlparse, urlunparse

from .errors import InvalidInput

MAX_URL_LENGTH = 2048
DEFAULT_SCHEME = "https"

DOMAIN_RE = re.compile(r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z][a-z0-9-]{0,62}$", re.I)
EMAIL_RE = re.compile(r"^[^@\s]{1,64}@([^@\s]+)$")
CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
        return True
    except ValueError:
        return False


def validate_domain(domain: str) -> str:
    if not isinstance(domain, str) or not domain.strip():
        raise InvalidInput("domain must be a non-empty string", field="domain")
    domain = domain.strip().lower().rstrip(".")
    if not DOMAIN_RE.match(domain):
        raise InvalidInput(f"invalid domain: {domain!r}", field="domain")
    return domain


def validate_email(email: str) -> str:
    if not isinstance(email, str) or not email.strip():
        raise InvalidInput("email must be a non-empty string", field="email")
    email = email.strip()
    match = EMAIL_RE.match(email)
    if not match:
        raise InvalidInput(f"invalid email: {email!r}", field="email")
    validate_domain(match.group(1))
    return email


def normalize_url(url: str) -> str:
    """
    Validate a caller-supplied URL and return it with an explicit scheme.

    Bare domains ("example.com/login") get ``https://``. Only http and https
    targets with a hostname or IP literal are accepted.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidInput("url must be a non-empty string", field="url")
    url = url.strip()
    if len(url) > MAX_URL_LENGTH:
        raise InvalidInput(f"url exceeds {MAX_URL_LENGTH} characters", field="url")
    if CONTROL_CHARS_RE.search(url):
        raise InvalidInput("url contains control characters", field="url")
    if "@" in url and "://" not in url and "/" not in url:
        raise InvalidInput("looks like an email address, not a URL", field="url")

    if not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", url):
        url = f"{DEFAULT_SCHEME}://{url}"
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("http", "https"):
        raise InvalidInput(f"unsupported scheme: {parsed.scheme}", field="url")

    host = parsed.hostname or ""
    if not host:
        raise InvalidInput("url has no host", field="url")
    if not is_ip_literal(host):
        validate_domain(host)
    try:
        parsed.port
    except ValueError:
        raise InvalidInput("url has an invalid port", field="url") from None

    return urlunparse(parsed._replace(scheme=parsed.scheme.lower(), netloc=parsed.netloc.lower()))


def hostname_of(url: str) -> str:
    return (urlparse(url).hostname or "").lower()
