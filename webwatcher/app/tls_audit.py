"""
tls_audit.py

Network/TLS auditor for a resolved URL: security response headers, DNS
records, certificate-transparency history and the live certificate.

Public function:
    audit_tls(url, ctx) -> TLSAudit

Each sub-check runs on its own; when one fails the others still report and the
failed part is listed in ``TLSAudit.unavailable``.
"""

import datetime
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..errors import FetchFailed, ParseFailed, WebWatcherError
from ..models import CertificateInfo, DnsRecords, SecurityHeaders, TLSAudit, add_flag
from ..validation import is_ip_literal

logger = logging.getLogger("tls_audit")

DNS_RECORD_TYPES = ("A", "AAAA", "MX", "TXT", "NS")
MAX_SANS = 10
EXPIRY_WARNING_DAYS = 30
MAX_CERTIFICATES = 50
NEW_CERTIFICATE_DAYS = 7


def check_security_headers(url: str, is_https: bool, ctx, flags: List[str],
                           unavailable: List[str]) -> Optional[SecurityHeaders]:
    try:
        resp = ctx.fetcher.fetch(url, follow_redirects=True)
    except FetchFailed as e:
        logger.warning("Header check failed for %s: %s", url, e.detail or e)
        unavailable.append("headers")
        return None

    headers = SecurityHeaders(
        hsts=resp.header("strict-transport-security") is not None,
        csp=resp.header("content-security-policy") is not None,
        x_frame_options=resp.header("x-frame-options") is not None,
        x_content_type_options=resp.header("x-content-type-options") is not None,
        referrer_policy=resp.header("referrer-policy") is not None,
    )
    # HSTS is meaningless on a plain http response
    if is_https and not headers.hsts:
        add_flag(flags, "missing_hsts")
    if not headers.csp:
        add_flag(flags, "missing_csp")
    if not headers.x_frame_options:
        add_flag(flags, "missing_x_frame_options")
    if not headers.x_content_type_options:
        add_flag(flags, "missing_x_content_type_options")
    return headers


def query_dns(domain: str, ctx, unavailable: List[str]) -> Optional[DnsRecords]:
    """Query each record type; one failing type leaves that list empty."""
    records = DnsRecords()
    answered = 0
    for record_type in DNS_RECORD_TYPES:
        try:
            values = ctx.resolver.resolve(domain, record_type)
        except WebWatcherError as e:
            logger.debug("DNS %s lookup for %s failed: %s", record_type, domain, e)
            continue
        setattr(records, record_type.lower(), list(values))
        answered += 1
    if not answered:
        unavailable.append("dns")
        return None
    return records


def _parse_ct_time(value: Any) -> datetime.datetime:
    try:
        parsed = datetime.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise ParseFailed(f"bad certificate timestamp {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def summarize_ct(entries: List[Dict[str, Any]], now: datetime.datetime) -> Dict[str, Any]:
    """
    Reduce crt.sh entries to the latest certificate plus counts.

    Raises ParseFailed when an entry lacks the expected fields.
    """
    parsed = []
    for entry in entries:
        if not isinstance(entry, dict) or "not_before" not in entry or "not_after" not in entry:
            raise ParseFailed("certificate transparency entry is malformed")
        parsed.append((_parse_ct_time(entry["not_before"]), _parse_ct_time(entry["not_after"]), entry))

    not_before, not_after, latest = max(parsed, key=lambda item: item[0])
    sans: List[str] = []
    for _, _, entry in parsed:
        for name in str(entry.get("name_value", "")).splitlines():
            name = name.strip().lower()
            if name and name not in sans:
                sans.append(name)
    return {
        "issuer": str(latest.get("issuer_name") or "Unknown"),
        "not_before": not_before,
        "not_after": not_after,
        "days_until_expiry": (not_after - now).days,
        "age_days": (now - not_before).days,
        "subject_alt_names": sans[:MAX_SANS],
        "certificate_count": len(parsed),
    }


def _flag_validity(days_until_expiry: int, age_days: int, flags: List[str]) -> None:
    if 0 <= days_until_expiry < EXPIRY_WARNING_DAYS:
        add_flag(flags, "certificate_expiring_soon")
    if 0 <= age_days < NEW_CERTIFICATE_DAYS:
        add_flag(flags, "very_new_certificate")


def certificate_from_ct(domain: str, ctx, flags: List[str],
                        unavailable: List[str]) -> Optional[CertificateInfo]:
    try:
        entries = ctx.ct_log.lookup(domain)
        if not entries:
            return None
        summary = summarize_ct(entries, ctx.now())
    except FetchFailed as e:
        logger.warning("CT lookup failed for %s: %s", domain, e.detail or e)
        unavailable.append("certificate_transparency")
        return None
    except ParseFailed as e:
        logger.warning("CT data for %s unusable: %s", domain, e)
        add_flag(flags, "parse_error")
        unavailable.append("certificate_transparency")
        return None

    _flag_validity(summary["days_until_expiry"], summary["age_days"], flags)
    if summary["certificate_count"] > MAX_CERTIFICATES:
        add_flag(flags, "excessive_certificates")
    return CertificateInfo(
        issuer=summary["issuer"],
        valid_from=summary["not_before"].isoformat(),
        valid_to=summary["not_after"].isoformat(),
        days_until_expiry=summary["days_until_expiry"],
        subject_alt_names=summary["subject_alt_names"],
        certificate_count=summary["certificate_count"],
    )


def fetch_peer_certificate(domain: str, port: int, ctx, flags: List[str], unavailable: List[str]):
    if ctx.certificates is None:
        return None
    try:
        return ctx.certificates.fetch(domain, port)
    except FetchFailed as e:
        logger.warning("Could not read certificate for %s: %s", domain, e.detail or e)
        unavailable.append("certificate")
    except ParseFailed as e:
        logger.warning("Certificate for %s unusable: %s", domain, e)
        add_flag(flags, "parse_error")
        unavailable.append("certificate")
    return None


def audit_tls(url: str, ctx) -> TLSAudit:
    """
    Audit transport security for ``url``.

    A plain-http target always carries ``no_tls_encryption``. Certificate data
    comes from CT logs; the live peer certificate fills in when CT has nothing
    and decides ``certificate.valid``.
    """
    parsed = urlparse(url)
    domain = (parsed.hostname or "").lower()
    is_https = parsed.scheme == "https"
    flags: List[str] = []
    unavailable: List[str] = []

    headers = check_security_headers(url, is_https, ctx, flags, unavailable)

    if is_ip_literal(domain):
        # no DNS name to look up or to find in CT logs
        dns_records = None
        certificate = None
        unavailable.extend(["dns", "certificate_transparency"])
    else:
        dns_records = query_dns(domain, ctx, unavailable)
        certificate = certificate_from_ct(domain, ctx, flags, unavailable)

    peer = None
    if is_https:
        peer = fetch_peer_certificate(domain, parsed.port or 443, ctx, flags, unavailable)
    else:
        add_flag(flags, "no_tls_encryption")

    if certificate is None:
        certificate = CertificateInfo()
        if peer is not None:
            now = ctx.now()
            days_left = (peer.not_after - now).days
            _flag_validity(days_left, (now - peer.not_before).days, flags)
            certificate.issuer = peer.issuer
            certificate.valid_from = peer.not_before.isoformat()
            certificate.valid_to = peer.not_after.isoformat()
            certificate.days_until_expiry = days_left
            certificate.subject_alt_names = peer.subject_alt_names[:MAX_SANS]
    certificate.valid = peer.verified if peer is not None else is_https

    return TLSAudit(
        certificate=certificate,
        security_headers=headers,
        dns_records=dns_records,
        flags=flags,
        risk_score=ctx.score_flags(flags),
        unavailable=unavailable,
    )
