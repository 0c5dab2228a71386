"""
threat_intel.py

Threat-intelligence sources and the aggregator that runs them.

Every source is a collaborator with a ``check(target) -> dict`` method returning
at least ``{"flags": [...], "riskScore": 0..100}``; extra keys are kept as raw
data. The aggregator calls each source with a bounded timeout and turns any
failure into "no signal" for that source instead of aborting the scan.

Public functions:
    - build_target(url, ctx, email=None) -> IntelTarget
    - normalize_result(source, raw) -> ThreatIntelResult
    - aggregate_threat_intel(target, ctx) -> dict[str, ThreatIntelResult]
"""

import base64
import datetime
import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import requests
import whois

from .. import feed_updater
from ..errors import ErrorCode, WebWatcherError
from ..models import ThreatIntelResult
from ..validation import hostname_of, is_ip_literal

logger = logging.getLogger("threat_intel")

SUSPICIOUS_TLDS = {"tk", "ml", "ga", "cf", "gq", "xyz", "top", "work"}
BULLETPROOF_KEYWORDS = ("bulletproof", "offshore", "anonymous", "privacy")
CLOUD_PROVIDERS = ("amazon", "google", "microsoft", "digitalocean", "vultr", "linode", "ovh", "hetzner")
PRIVACY_MARKERS = ("privacy", "redacted", "protected")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class IntelTarget:
    url: str
    domain: str
    ip: Optional[str] = None
    email: Optional[str] = None

    def value_for(self, kind: str) -> Optional[str]:
        return getattr(self, kind, None)


class IntelSource(ABC):
    """A reputation/WHOIS/IP-risk/breach collaborator."""

    name = "source"
    target_kind = "url"  # one of: url, domain, ip, email

    @abstractmethod
    def check(self, target: str) -> Dict[str, Any]:
        ...


class ReputationSource(IntelSource):
    """Local phishing-feed index plus Google Safe Browsing and VirusTotal when keyed."""

    name = "reputation"
    target_kind = "url"

    def __init__(self, feed_dir: str = "feeds", safe_browsing_api_key: Optional[str] = None,
                 virustotal_api_key: Optional[str] = None, timeout: float = 6.0):
        self.feed_dir = feed_dir
        self.safe_browsing_api_key = safe_browsing_api_key
        self.virustotal_api_key = virustotal_api_key
        self.timeout = timeout

    def _safe_browsing(self, url: str) -> Optional[str]:
        resp = requests.post(
            "https://safebrowsing.googleapis.com/v4/threatMatches:find",
            params={"key": self.safe_browsing_api_key},
            json={
                "client": {"clientId": "webwatcher", "clientVersion": "1.0.0"},
                "threatInfo": {
                    "threatTypes": ["MALWARE", "SOCIAL_ENGINEERING", "UNWANTED_SOFTWARE"],
                    "platformTypes": ["ANY_PLATFORM"],
                    "threatEntryTypes": ["URL"],
                    "threatEntries": [{"url": url}],
                },
            },
            timeout=self.timeout,
        )
        resp.raise_for_status()
        matches = resp.json().get("matches") or []
        return matches[0].get("threatType") if matches else None

    def _virustotal(self, url: str) -> int:
        url_id = base64.urlsafe_b64encode(url.encode()).decode().strip("=")
        resp = requests.get(f"https://www.virustotal.com/api/v3/urls/{url_id}",
                            headers={"x-apikey": self.virustotal_api_key}, timeout=self.timeout)
        if resp.status_code == 404:
            return 0
        resp.raise_for_status()
        stats = resp.json().get("data", {}).get("attributes", {}).get("last_analysis_stats", {})
        return int(stats.get("malicious", 0))

    def check(self, target: str) -> Dict[str, Any]:
        flags = []
        score = 0
        sources = []

        entry = feed_updater.lookup(feed_updater.load_index(self.feed_dir), target)
        if entry:
            flags.append("phishing_feed_listed")
            score += 90
            sources.append({"name": entry.get("feed", "feed"), "status": "malicious"})
        else:
            sources.append({"name": "phishing_feeds", "status": "clean"})

        if self.safe_browsing_api_key:
            try:
                threat = self._safe_browsing(target)
            except (requests.RequestException, ValueError) as e:
                logger.warning("Google Safe Browsing check failed: %s", e)
                sources.append({"name": "Google Safe Browsing", "status": "unknown"})
            else:
                if threat:
                    flags.append("google_safe_browsing_malicious")
                    score += 80
                sources.append({"name": "Google Safe Browsing",
                                "status": "malicious" if threat else "clean", "details": threat})

        if self.virustotal_api_key:
            try:
                malicious = self._virustotal(target)
            except (requests.RequestException, ValueError) as e:
                logger.warning("VirusTotal check failed: %s", e)
                sources.append({"name": "VirusTotal", "status": "unknown"})
            else:
                if malicious > 0:
                    flags.append("virustotal_malicious")
                    score += 70
                sources.append({"name": "VirusTotal", "status": "malicious" if malicious else "clean",
                                "details": f"{malicious} engines flagged as malicious"})

        tld = hostname_of(target).rsplit(".", 1)[-1]
        if tld in SUSPICIOUS_TLDS:
            flags.append("suspicious_tld")
            score += 20

        return {"flags": flags, "riskScore": min(score, 100), "sources": sources}


class WhoisSource(IntelSource):
    """Domain age and registrant privacy from WHOIS (python-whois)."""

    name = "whois"
    target_kind = "domain"

    def __init__(self, clock: Callable[[], datetime.datetime] = _utcnow):
        self.clock = clock

    def check(self, target: str) -> Dict[str, Any]:
        w = whois.whois(target)
        creation_date = w.get("creation_date")
        if isinstance(creation_date, list):  # sometimes it's a list
            creation_date = min(creation_date) if creation_date else None
        registrar = str(w.get("registrar") or "Unknown")
        registrant = str(w.get("name") or w.get("org") or "Unknown")

        flags = []
        score = 0
        age_days = -1
        if isinstance(creation_date, datetime.datetime):
            if creation_date.tzinfo is None:
                creation_date = creation_date.replace(tzinfo=datetime.timezone.utc)
            age_days = (self.clock() - creation_date).days
            if age_days < 30:
                flags.append("newly_registered_domain")
                score += 40
            elif age_days < 90:
                flags.append("recently_registered_domain")
                score += 20
            elif age_days < 365:
                flags.append("domain_less_than_1_year")
                score += 10

        if any(marker in registrant.lower() for marker in PRIVACY_MARKERS):
            flags.append("privacy_protected_registrant")
            score += 15

        return {
            "flags": flags,
            "riskScore": min(score, 100),
            "registrar": registrar,
            "registrant": registrant,
            "createdDate": creation_date.isoformat() if isinstance(creation_date, datetime.datetime) else "Unknown",
            "ageInDays": age_days,
        }


class IpRiskSource(IntelSource):
    """Hosting/proxy profile of the resolved IP from ip-api.com."""

    name = "ip_risk"
    target_kind = "ip"

    def __init__(self, timeout: float = 6.0):
        self.timeout = timeout

    def check(self, target: str) -> Dict[str, Any]:
        resp = requests.get(
            f"http://ip-api.com/json/{target}",
            params={"fields": "status,message,country,city,isp,as,proxy,hosting,query"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        geo = resp.json()
        if geo.get("status") == "fail":
            raise WebWatcherError(geo.get("message") or "IP lookup failed")

        as_field = geo.get("as") or ""
        asn, _, asn_org = as_field.partition(" ")
        asn_org_lower = asn_org.lower()

        flags = []
        score = 0
        if geo.get("proxy"):
            flags.append("proxy_or_vpn_detected")
            score += 40
        if geo.get("hosting"):
            flags.append("datacenter_ip")
            score += 30
        if any(k in asn_org_lower for k in BULLETPROOF_KEYWORDS):
            flags.append("bulletproof_hosting")
            score += 50
        if any(p in asn_org_lower for p in CLOUD_PROVIDERS):
            flags.append("cloud_hosting")
            score += 15

        return {
            "flags": flags,
            "riskScore": min(score, 100),
            "ip": target,
            "country": geo.get("country") or "Unknown",
            "city": geo.get("city") or "Unknown",
            "asn": asn or "Unknown",
            "asnOrg": asn_org or "Unknown",
            "hostingProvider": geo.get("isp") or "Unknown",
        }


class BreachSource(IntelSource):
    """HaveIBeenPwned breached-account lookup for an email address."""

    name = "breach"
    target_kind = "email"

    def __init__(self, api_key: str, timeout: float = 6.0,
                 clock: Callable[[], datetime.datetime] = _utcnow):
        self.api_key = api_key
        self.timeout = timeout
        self.clock = clock

    def check(self, target: str) -> Dict[str, Any]:
        resp = requests.get(
            f"https://haveibeenpwned.com/api/v3/breachedaccount/{quote(target)}",
            params={"truncateResponse": "false"},
            headers={"hibp-api-key": self.api_key, "user-agent": "WebWatcher"},
            timeout=self.timeout,
        )
        if resp.status_code == 404:
            return {"flags": ["no_breaches_found"], "riskScore": 0, "totalBreaches": 0, "breaches": []}
        resp.raise_for_status()
        breaches = resp.json()

        flags = []
        score = 0
        total = len(breaches)
        if total > 10:
            flags.append("high_breach_count")
            score += 60
        elif total > 5:
            flags.append("moderate_breach_count")
            score += 40
        elif total > 0:
            flags.append("low_breach_count")
            score += 20

        one_year_ago = (self.clock() - datetime.timedelta(days=365)).date().isoformat()
        if any((b.get("BreachDate") or "") > one_year_ago for b in breaches):
            flags.append("recent_breaches")
            score += 30
        if any(b.get("IsSensitive") for b in breaches):
            flags.append("sensitive_data_exposed")
            score += 25

        return {
            "flags": flags,
            "riskScore": min(score, 100),
            "totalBreaches": total,
            "totalPwnCount": sum(b.get("PwnCount") or 0 for b in breaches),
            "breaches": [b.get("Name") for b in breaches],
        }


def normalize_result(source: str, raw: Any) -> ThreatIntelResult:
    """Coerce a collaborator answer into the common {flags, riskScore} shape."""
    if not isinstance(raw, dict):
        return ThreatIntelResult(source=source, flags=["parse_error"], error=ErrorCode.PARSE_FAILED.value)
    flags = raw.get("flags", [])
    score = raw.get("riskScore", raw.get("risk_score", 0))
    if not isinstance(flags, list) or not all(isinstance(f, str) for f in flags) \
            or isinstance(score, bool) or not isinstance(score, (int, float)):
        return ThreatIntelResult(source=source, flags=["parse_error"], error=ErrorCode.PARSE_FAILED.value)
    extra = {k: v for k, v in raw.items() if k not in ("flags", "riskScore", "risk_score")}
    return ThreatIntelResult(
        source=source,
        flags=list(dict.fromkeys(flags)),
        risk_score=int(max(0, min(100, round(score)))),
        raw=extra,
    )


def build_target(url: str, ctx, email: Optional[str] = None) -> IntelTarget:
    domain = hostname_of(url)
    ip = None
    if is_ip_literal(domain):
        ip = domain.strip("[]")
    else:
        try:
            answers = ctx.resolver.resolve(domain, "A")
            ip = answers[0] if answers else None
        except WebWatcherError as e:
            logger.warning("Could not resolve %s for IP reputation: %s", domain, e)
    return IntelTarget(url=url, domain=domain, ip=ip, email=email)


def aggregate_threat_intel(target: IntelTarget, ctx) -> Dict[str, ThreatIntelResult]:
    """
    Run every configured source concurrently, each bounded by the intel timeout.

    Failures and timeouts become empty, zero-risk results carrying an error
    code. Sources whose target is missing are reported the same way, except
    the email-based ones, which are simply not run without an email.
    """
    results: Dict[str, ThreatIntelResult] = {}
    runnable = []
    for source in ctx.intel_sources:
        value = target.value_for(source.target_kind)
        if value:
            runnable.append((source, value))
        elif source.target_kind != "email":
            results[source.name] = ThreatIntelResult(
                source=source.name, error=ErrorCode.FETCH_FAILED.value,
                raw={"reason": f"no {source.target_kind} to check"},
            )
    if not runnable:
        return results

    pool = ThreadPoolExecutor(max_workers=len(runnable))
    try:
        futures = [(source, pool.submit(source.check, value)) for source, value in runnable]
        deadline = time.monotonic() + ctx.settings.intel_timeout
        for source, future in futures:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                results[source.name] = normalize_result(source.name, future.result(timeout=remaining))
            except FutureTimeout:
                logger.warning("Threat intel source %s timed out", source.name)
                results[source.name] = ThreatIntelResult(
                    source=source.name, error=ErrorCode.FETCH_FAILED.value, raw={"reason": "timeout"})
            except WebWatcherError as e:
                logger.warning("Threat intel source %s failed: %s", source.name, e)
                results[source.name] = ThreatIntelResult(
                    source=source.name, flags=["parse_error"] if e.code == ErrorCode.PARSE_FAILED else [],
                    error=e.code.value, raw={"reason": str(e)})
            except ValueError as e:
                logger.warning("Threat intel source %s returned malformed data: %s", source.name, e)
                results[source.name] = ThreatIntelResult(
                    source=source.name, flags=["parse_error"], error=ErrorCode.PARSE_FAILED.value,
                    raw={"reason": str(e)})
            except Exception as e:  # collaborator failure is "no signal"
                logger.warning("Threat intel source %s failed: %s", source.name, e)
                results[source.name] = ThreatIntelResult(
                    source=source.name, error=ErrorCode.FETCH_FAILED.value, raw={"reason": str(e)})
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
    return {name: results[name] for name in sorted(results)}
