"""
clients.py

Thin clients for the collaborators the pipeline depends on: HTTP fetch,
DNS-over-HTTPS, certificate-transparency logs and the live TLS certificate.
Every failure surfaces as ``FetchFailed`` or ``ParseFailed``; callers decide
whether it matters.
"""

import datetime
import logging
import socket
import ssl
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from cryptography import x509

from .errors import FetchFailed, ParseFailed

logger = logging.getLogger("clients")

DOH_ENDPOINT = "https://dns.google/resolve"
CRTSH_ENDPOINT = "https://crt.sh/"
DNS_TYPE_CODES = {"A": 1, "NS": 2, "MX": 15, "TXT": 16, "AAAA": 28}


@dataclass
class FetchResponse:
    url: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)  # lower-cased names
    body: str = ""

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


class HttpFetcher:
    """
    GET a URL with a timeout, a body size cap and optional manual redirects.

    Connection errors and timeouts are retried once after a short backoff;
    everything here is an idempotent read.
    """

    def __init__(self, timeout: float = 8.0, max_bytes: int = 1024 * 1024,
                 user_agent: str = "WebWatcher/1.0", retry_backoff: float = 0.5):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.user_agent = user_agent
        self.retry_backoff = retry_backoff

    def fetch(self, url: str, follow_redirects: bool = False,
              headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        request_headers = {"User-Agent": self.user_agent}
        request_headers.update(headers or {})
        last_error: Optional[Exception] = None
        for attempt in range(2):
            try:
                return self._get(url, follow_redirects, request_headers)
            except (requests.ConnectionError, requests.Timeout) as e:
                last_error = e
                logger.debug("fetch attempt %d for %s failed: %s", attempt + 1, url, e)
                if attempt == 0:
                    time.sleep(self.retry_backoff)
            except requests.RequestException as e:
                raise FetchFailed(f"fetch failed for {url}", detail=str(e)) from e
        raise FetchFailed(f"fetch failed for {url}", detail=str(last_error)) from last_error

    def _get(self, url: str, follow_redirects: bool, headers: Dict[str, str]) -> FetchResponse:
        with requests.get(url, headers=headers, timeout=self.timeout,
                          allow_redirects=follow_redirects, stream=True) as r:
            size = 0
            chunks = []
            for chunk in r.iter_content(8192):
                if not chunk:
                    break
                size += len(chunk)
                chunks.append(chunk)
                if size >= self.max_bytes:
                    logger.debug("truncating %s at %d bytes", url, self.max_bytes)
                    break
            encoding = r.encoding or "utf-8"
            body = b"".join(chunks)[: self.max_bytes].decode(encoding, errors="replace")
            return FetchResponse(
                url=r.url or url,
                status=r.status_code,
                headers={k.lower(): v for k, v in r.headers.items()},
                body=body,
            )


class DohResolver:
    """DNS-over-HTTPS lookups against the dns.google JSON API."""

    def __init__(self, timeout: float = 8.0, endpoint: str = DOH_ENDPOINT):
        self.timeout = timeout
        self.endpoint = endpoint

    def resolve(self, domain: str, record_type: str) -> List[str]:
        record_type = record_type.upper()
        try:
            resp = requests.get(self.endpoint, params={"name": domain, "type": record_type},
                                timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise FetchFailed(f"DNS {record_type} lookup failed for {domain}", detail=str(e)) from e
        try:
            data = resp.json()
        except ValueError as e:
            raise ParseFailed(f"DNS {record_type} answer for {domain} is not JSON") from e
        wanted = DNS_TYPE_CODES.get(record_type)
        return [
            str(answer.get("data", ""))
            for answer in data.get("Answer") or []
            if wanted is None or answer.get("type") == wanted
        ]


class CertificateTransparencyClient:
    """crt.sh lookups. Returns the raw log entries."""

    def __init__(self, timeout: float = 8.0, endpoint: str = CRTSH_ENDPOINT):
        self.timeout = timeout
        self.endpoint = endpoint

    def lookup(self, domain: str) -> List[Dict[str, Any]]:
        try:
            resp = requests.get(self.endpoint, params={"q": domain, "output": "json"},
                                timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise FetchFailed(f"CT lookup failed for {domain}", detail=str(e)) from e
        try:
            entries = resp.json()
        except ValueError as e:
            raise ParseFailed(f"CT answer for {domain} is not JSON") from e
        if not isinstance(entries, list):
            raise ParseFailed(f"CT answer for {domain} is not a list")
        return entries


@dataclass
class PeerCertificate:
    issuer: str
    not_before: datetime.datetime
    not_after: datetime.datetime
    subject_alt_names: List[str]
    verified: bool


class PeerCertificateFetcher:
    """Reads the certificate a server presents during the TLS handshake."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def _der_certificate(self, domain: str, port: int, verify: bool) -> bytes:
        ctx = ssl.create_default_context()
        if not verify:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        with socket.create_connection((domain, port), timeout=self.timeout) as sock:
            with ctx.wrap_socket(sock, server_hostname=domain) as conn:
                return conn.getpeercert(True)

    def fetch(self, domain: str, port: int = 443) -> PeerCertificate:
        verified = True
        try:
            der = self._der_certificate(domain, port, verify=True)
        except ssl.SSLError:
            # still read what the server presents, but remember it did not verify
            verified = False
            try:
                der = self._der_certificate(domain, port, verify=False)
            except (OSError, ssl.SSLError) as e:
                raise FetchFailed(f"TLS handshake failed for {domain}", detail=str(e)) from e
        except OSError as e:
            raise FetchFailed(f"TLS handshake failed for {domain}", detail=str(e)) from e

        try:
            cert = x509.load_der_x509_certificate(der)
        except ValueError as e:
            raise ParseFailed(f"certificate from {domain} could not be parsed") from e
        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            alt_names = san.value.get_values_for_type(x509.DNSName)
        except x509.ExtensionNotFound:
            alt_names = []
        return PeerCertificate(
            issuer=cert.issuer.rfc4514_string(),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            subject_alt_names=list(alt_names),
            verified=verified,
        )
