"""
models.py

Data model for a scan: per-component results, the composite risk score and the
incident/feedback records. Everything converts to plain JSON-ready dicts via
``to_dict()``; the stored records (incidents, feedback) also load back with
``from_dict()``.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

# Component names; also used as finding ``type`` tags.
REDIRECT = "redirect"
PAGE_CONTENT = "page_content"
FORM_RISK = "form_risk"
TLS_SECURITY = "tls_security"
THREAT_INTEL = "threat_intel"


class RedirectKind(str, Enum):
    HTTP = "http"
    META = "meta"
    JAVASCRIPT = "javascript"
    NONE = "none"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FeedbackType(str, Enum):
    FALSE_POSITIVE = "false_positive"
    CONFIRMED_PHISH = "confirmed_phish"
    BENIGN_TEST = "benign_test"
    OTHER = "other"


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def add_flag(flags: List[str], flag: str) -> None:
    """Append ``flag`` unless already present (flags behave as an ordered set)."""
    if flag not in flags:
        flags.append(flag)


class Serializable:
    def to_dict(self) -> Dict[str, Any]:
        return _plain(self)


@dataclass
class RedirectHop(Serializable):
    url: str
    status_code: int
    response_headers: Dict[str, str] = field(default_factory=dict)
    redirect_kind: RedirectKind = RedirectKind.NONE


@dataclass
class RedirectAnalysis(Serializable):
    chain: List[RedirectHop]
    final_url: str
    flags: List[str] = field(default_factory=list)
    risk_score: int = 0
    error: Optional[str] = None


@dataclass
class DomCounts(Serializable):
    forms: int = 0
    scripts: int = 0
    iframes: int = 0
    external_links: int = 0


@dataclass
class PageContent(Serializable):
    html: str
    dom_counts: DomCounts = field(default_factory=DomCounts)
    flags: List[str] = field(default_factory=list)
    risk_score: int = 0
    error: Optional[str] = None


@dataclass
class FormField(Serializable):
    name: str
    type: str
    suspicious: bool = False


@dataclass
class FormRisk(Serializable):
    form_index: int
    action: str
    method: str
    fields: List[FormField] = field(default_factory=list)
    flags: List[str] = field(default_factory=list)
    risk_score: int = 0


@dataclass
class CertificateInfo(Serializable):
    valid: bool = False
    issuer: str = "Unknown"
    valid_from: str = "Unknown"
    valid_to: str = "Unknown"
    days_until_expiry: int = -1
    subject_alt_names: Optional[List[str]] = None
    certificate_count: Optional[int] = None


@dataclass
class SecurityHeaders(Serializable):
    hsts: bool = False
    csp: bool = False
    x_frame_options: bool = False
    x_content_type_options: bool = False
    referrer_policy: bool = False


@dataclass
class DnsRecords(Serializable):
    a: List[str] = field(default_factory=list)
    aaaa: List[str] = field(default_factory=list)
    mx: List[str] = field(default_factory=list)
    txt: List[str] = field(default_factory=list)
    ns: List[str] = field(default_factory=list)


@dataclass
class TLSAudit(Serializable):
    certificate: CertificateInfo = field(default_factory=CertificateInfo)
    security_headers: Optional[SecurityHeaders] = None
    dns_records: Optional[DnsRecords] = None
    flags: List[str] = field(default_factory=list)
    risk_score: int = 0
    # sub-checks that could not be completed: "headers", "dns", "certificate_transparency"
    unavailable: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class ThreatIntelResult(Serializable):
    source: str
    flags: List[str] = field(default_factory=list)
    risk_score: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class ScanResults(Serializable):
    """Raw component outputs for one scan. Absent components stay ``None``."""
    url: str
    redirect_analysis: Optional[RedirectAnalysis] = None
    page_content: Optional[PageContent] = None
    form_risks: List[FormRisk] = field(default_factory=list)
    tls_audit: Optional[TLSAudit] = None
    threat_intel: Dict[str, ThreatIntelResult] = field(default_factory=dict)
    # component name -> error code for checks that produced no signal
    inconclusive: Dict[str, str] = field(default_factory=dict)

    @property
    def final_url(self) -> str:
        if self.redirect_analysis and self.redirect_analysis.final_url:
            return self.redirect_analysis.final_url
        return self.url


@dataclass
class Finding(Serializable):
    type: str
    description: str
    risk_score: int
    flag: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Finding":
        return cls(
            type=data["type"],
            description=data["description"],
            risk_score=int(data["risk_score"]),
            flag=data.get("flag", ""),
        )


@dataclass
class RiskScoreResult(Serializable):
    overall_risk_score: int
    severity: Severity
    explanation: str
    breakdown: Dict[str, int] = field(default_factory=dict)
    inconclusive: List[str] = field(default_factory=list)


@dataclass
class IncidentReport(Serializable):
    id: str
    timestamp: str
    url: str
    severity: Severity
    category: str
    findings: List[Finding]
    overall_risk_score: int
    recommendation: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    siem_ready: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IncidentReport":
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            url=data["url"],
            severity=Severity(data["severity"]),
            category=data["category"],
            findings=[Finding.from_dict(f) for f in data.get("findings", [])],
            overall_risk_score=int(data["overall_risk_score"]),
            recommendation=data.get("recommendation", ""),
            metadata=data.get("metadata", {}),
            siem_ready=bool(data.get("siem_ready", True)),
        )

    @property
    def flags(self) -> List[str]:
        return [f.flag for f in self.findings if f.flag and f.flag != "inconclusive"]


@dataclass
class UserFeedback(Serializable):
    id: str
    timestamp: str
    url: str
    feedback_type: FeedbackType
    incident_id: Optional[str] = None
    comment: Optional[str] = None
    user_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserFeedback":
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            url=data["url"],
            feedback_type=FeedbackType(data["feedback_type"]),
            incident_id=data.get("incident_id"),
            comment=data.get("comment"),
            user_id=data.get("user_id"),
        )


@dataclass
class FeedbackStats(Serializable):
    total: int = 0
    false_positives: int = 0
    confirmed_phish: int = 0
    benign_tests: int = 0
    other: int = 0


@dataclass
class ScanOutcome(Serializable):
    results: ScanResults
    risk: RiskScoreResult
    incident: IncidentReport
