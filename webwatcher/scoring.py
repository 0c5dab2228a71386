"""
scoring.py

Risk scoring engine: turns the raw component outputs of a scan into findings,
per-component scores and one composite 0-100 score with a severity band.

Public functions:
    severity_for(score) -> Severity
    collect_findings(results, settings=None, adjustments=None) -> list[Finding]
    component_scores(results, settings=None, adjustments=None) -> dict[str, int]
    score_risk(results, settings=None, adjustments=None) -> RiskScoreResult

The composite takes the strongest high-confidence source (reputation, breach)
and a capped weighted sum of the weaker heuristic components, so one strong
signal is never diluted while many weak ones still escalate:

    strong  = max(high-confidence scores)
    weak    = min(cap, sum(weight * score))
    overall = min(100, round(max(strong, weak) + 0.25 * min(strong, weak)))

Everything here is a pure function of its arguments.
"""

from typing import Dict, Iterable, List, Optional

from .config import Settings
from .models import (FORM_RISK, PAGE_CONTENT, REDIRECT, THREAT_INTEL, TLS_SECURITY, Finding,
                     RiskScoreResult, ScanResults, Severity)

# Severity thresholds (inclusive lower bounds)
CRITICAL_THRESHOLD = 85
HIGH_THRESHOLD = 60
MEDIUM_THRESHOLD = 30
WEAKER_SIGNAL_SHARE = 0.25

FLAG_DESCRIPTIONS = {
    "https_to_http_downgrade": "Redirect downgrades from HTTPS to plain HTTP",
    "ip_based_redirect": "Redirects to a raw IP address",
    "redirect_loop_detected": "Redirect loop detected",
    "geo_based_redirect": "Geo-based redirect headers present",
    "excessive_redirects": "More than 5 redirect hops",
    "meta_refresh_redirect": "Meta-refresh redirect in page body",
    "javascript_redirect": "JavaScript redirect in page body",
    "login_form_detected": "Login form with password field (possible credential harvesting)",
    "excessive_hidden_inputs": "Many hidden input fields",
    "suspicious_javascript_clipboard_keylog": "Clipboard or keylogging script identifiers (possible credential theft)",
    "obfuscated_javascript": "Obfuscated JavaScript (eval/atob/fromCharCode)",
    "excessive_iframes": "More than 3 iframes",
    "cross_domain_form_submission": "Form submits to a different domain (possible credential theft)",
    "password_field": "Collects a password (credential field)",
    "seed_phrase_collection": "Collects a wallet seed or recovery phrase (credential theft)",
    "credit_card_collection": "Collects payment card details",
    "missing_hsts": "Missing Strict-Transport-Security header",
    "missing_csp": "Missing Content-Security-Policy header",
    "missing_x_frame_options": "Missing X-Frame-Options header",
    "missing_x_content_type_options": "Missing X-Content-Type-Options header",
    "certificate_expiring_soon": "TLS certificate expires within 30 days",
    "excessive_certificates": "More than 50 certificates issued for the domain",
    "very_new_certificate": "TLS certificate issued less than 7 days ago",
    "no_tls_encryption": "Served without TLS encryption",
    "parse_error": "Malformed data, check skipped",
    "phishing_feed_listed": "Listed in a phishing feed (PhishTank/OpenPhish)",
    "google_safe_browsing_malicious": "Google Safe Browsing reports phishing or malware",
    "virustotal_malicious": "VirusTotal engines report malware or phishing",
    "suspicious_tld": "Top-level domain commonly abused for phishing",
    "newly_registered_domain": "Domain registered less than 30 days ago",
    "recently_registered_domain": "Domain registered less than 90 days ago",
    "domain_less_than_1_year": "Domain registered less than a year ago",
    "privacy_protected_registrant": "WHOIS registrant is privacy protected",
    "proxy_or_vpn_detected": "Hosted behind a proxy or VPN",
    "datacenter_ip": "Hosted on a datacenter IP",
    "bulletproof_hosting": "Hosted with a bulletproof/offshore provider (malware hosting risk)",
    "cloud_hosting": "Hosted on a public cloud provider",
    "high_breach_count": "Email appears in more than 10 breaches",
    "moderate_breach_count": "Email appears in more than 5 breaches",
    "low_breach_count": "Email appears in known breaches",
    "recent_breaches": "Email appears in a breach from the last year",
    "sensitive_data_exposed": "Sensitive breach data exposed",
}


def severity_for(score: int) -> Severity:
    if score >= CRITICAL_THRESHOLD:
        return Severity.CRITICAL
    if score >= HIGH_THRESHOLD:
        return Severity.HIGH
    if score >= MEDIUM_THRESHOLD:
        return Severity.MEDIUM
    return Severity.LOW


def describe_flag(flag: str) -> str:
    if flag in FLAG_DESCRIPTIONS:
        return FLAG_DESCRIPTIONS[flag]
    if flag.startswith("brand_impersonation_"):
        return f"Brand impersonation: mentions {flag[len('brand_impersonation_'):]} on a foreign domain"
    return flag.replace("_", " ").capitalize()


def _clamp(value: float) -> int:
    return int(max(0, min(100, value)))


def _flag_risk(flag: str, settings: Settings, adjustments: Dict[str, int]) -> int:
    return _clamp((settings.weight(flag) or 0) + adjustments.get(flag, 0))


def _adjusted(score: int, flags: Iterable[str], settings: Settings, adjustments: Dict[str, int],
              from_weights: bool = True) -> int:
    """
    Component score with learned deltas applied per flag, each flag clamped to
    0-100 before the capped sum. Intel sources score themselves, so there only
    the change to each weighted flag is applied on top of the source's score.
    """
    distinct = set(flags)
    if not any(adjustments.get(flag) for flag in distinct):
        return score
    if from_weights:
        return _clamp(sum(_flag_risk(flag, settings, adjustments) for flag in distinct))
    delta = 0
    for flag in distinct:
        weight = settings.weight(flag)
        if weight is not None:
            delta += _flag_risk(flag, settings, adjustments) - _clamp(weight)
    return _clamp(score + delta)


def collect_findings(results: ScanResults, settings: Optional[Settings] = None,
                     adjustments: Optional[Dict[str, int]] = None) -> List[Finding]:
    """Every fired flag as a finding tagged with its component, then the inconclusive checks."""
    settings = settings or Settings()
    adjustments = adjustments or {}
    findings: List[Finding] = []

    def add(component: str, flags: Iterable[str], prefix: str = "") -> None:
        for flag in flags:
            findings.append(Finding(
                type=component,
                description=prefix + describe_flag(flag),
                risk_score=_flag_risk(flag, settings, adjustments),
                flag=flag,
            ))

    if results.redirect_analysis is not None:
        add(REDIRECT, results.redirect_analysis.flags)
    if results.page_content is not None:
        add(PAGE_CONTENT, results.page_content.flags)
    for form in results.form_risks:
        add(FORM_RISK, form.flags, prefix=f"Form {form.form_index}: ")
    if results.tls_audit is not None:
        add(TLS_SECURITY, results.tls_audit.flags)
    for name in sorted(results.threat_intel):
        add(THREAT_INTEL, results.threat_intel[name].flags, prefix=f"{name}: ")

    for check in sorted(results.inconclusive):
        findings.append(Finding(
            type=check.split(".", 1)[0],
            description=f"{check} check inconclusive ({results.inconclusive[check]})",
            risk_score=0,
            flag="inconclusive",
        ))
    return findings


def component_scores(results: ScanResults, settings: Optional[Settings] = None,
                     adjustments: Optional[Dict[str, int]] = None) -> Dict[str, int]:
    """
    Learned-adjusted score per component. Forms contribute their riskiest
    form; each threat-intel source is its own component.
    """
    settings = settings or Settings()
    adjustments = adjustments or {}
    scores: Dict[str, int] = {}
    if results.redirect_analysis is not None:
        scores[REDIRECT] = _adjusted(results.redirect_analysis.risk_score,
                                     results.redirect_analysis.flags, settings, adjustments)
    if results.page_content is not None:
        scores[PAGE_CONTENT] = _adjusted(results.page_content.risk_score,
                                         results.page_content.flags, settings, adjustments)
    if results.form_risks:
        scores[FORM_RISK] = max(_adjusted(f.risk_score, f.flags, settings, adjustments)
                                for f in results.form_risks)
    if results.tls_audit is not None:
        scores[TLS_SECURITY] = _adjusted(results.tls_audit.risk_score, results.tls_audit.flags,
                                         settings, adjustments)
    for name, intel in results.threat_intel.items():
        scores[name] = _adjusted(intel.risk_score, intel.flags, settings, adjustments, from_weights=False)
    return scores


def _explain(score: int, severity: Severity, findings: List[Finding], inconclusive: List[str]) -> str:
    parts = [f"Overall risk {score}/100 ({severity.value})."]
    contributing = sorted(
        (f for f in findings if f.flag != "inconclusive" and f.risk_score > 0),
        key=lambda f: (-f.risk_score, f.type, f.description),
    )
    if contributing:
        parts.append("Signals: " + "; ".join(f"{f.description} [{f.type}, +{f.risk_score}]"
                                              for f in contributing) + ".")
    else:
        parts.append("No risk signals found.")
    if inconclusive:
        parts.append("Inconclusive checks: " + ", ".join(inconclusive) + ".")
    return " ".join(parts)


def score_risk(results: ScanResults, settings: Optional[Settings] = None,
               adjustments: Optional[Dict[str, int]] = None) -> RiskScoreResult:
    settings = settings or Settings()
    adjustments = adjustments or {}
    breakdown = component_scores(results, settings, adjustments)

    strong = max((s for name, s in breakdown.items() if name in settings.high_confidence_sources), default=0)
    weak_total = sum(settings.component_weight(name) * s
                     for name, s in breakdown.items() if name not in settings.high_confidence_sources)
    weak = min(settings.weak_signal_cap, weak_total)
    overall = _clamp(round(max(strong, weak) + WEAKER_SIGNAL_SHARE * min(strong, weak)))

    severity = severity_for(overall)
    inconclusive = sorted(results.inconclusive)
    findings = collect_findings(results, settings, adjustments)
    return RiskScoreResult(
        overall_risk_score=overall,
        severity=severity,
        explanation=_explain(overall, severity, findings, inconclusive),
        breakdown=dict(sorted(breakdown.items())),
        inconclusive=inconclusive,
    )
