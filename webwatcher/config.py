"""
config.py

Runtime configuration for WebWatcher. Values come from WEBWATCHER_* environment
variables with conservative defaults; weight tables are kept here so every
analyzer reads them through the scan context instead of module globals.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

# Per-flag risk weights (0-100 scale). Flags are additive per component and
# each component total saturates at 100.
DEFAULT_FLAG_WEIGHTS = {
    # redirect tracer
    "https_to_http_downgrade": 40,
    "ip_based_redirect": 25,
    "redirect_loop_detected": 30,
    "geo_based_redirect": 10,
    "excessive_redirects": 20,
    "meta_refresh_redirect": 15,
    "javascript_redirect": 15,
    # page content
    "login_form_detected": 20,
    "brand_impersonation": 30,
    "excessive_hidden_inputs": 15,
    "suspicious_javascript_clipboard_keylog": 35,
    "obfuscated_javascript": 25,
    "excessive_iframes": 20,
    # forms
    "cross_domain_form_submission": 40,
    "password_field": 15,
    "seed_phrase_collection": 50,
    "credit_card_collection": 40,
    # tls / headers
    "missing_hsts": 20,
    "missing_csp": 15,
    "missing_x_frame_options": 15,
    "missing_x_content_type_options": 10,
    "certificate_expiring_soon": 25,
    "excessive_certificates": 15,
    "very_new_certificate": 20,
    "no_tls_encryption": 50,
    # threat intel; sources score themselves, these weight the findings
    "phishing_feed_listed": 90,
    "google_safe_browsing_malicious": 80,
    "virustotal_malicious": 70,
    "suspicious_tld": 20,
    "newly_registered_domain": 40,
    "recently_registered_domain": 20,
    "domain_less_than_1_year": 10,
    "privacy_protected_registrant": 15,
    "proxy_or_vpn_detected": 40,
    "datacenter_ip": 30,
    "bulletproof_hosting": 50,
    "cloud_hosting": 15,
    "high_breach_count": 60,
    "moderate_breach_count": 40,
    "low_breach_count": 20,
    "recent_breaches": 30,
    "sensitive_data_exposed": 25,
    # malformed collaborator data never adds risk
    "parse_error": 0,
}

# Weights for the heuristic (weak) components in the composite score.
# They intentionally sum above 1.0 so that many weak signals escalate.
DEFAULT_COMPONENT_WEIGHTS = {
    "redirect": 0.35,
    "page_content": 0.4,
    "form_risk": 0.4,
    "tls_security": 0.2,
    "whois": 0.3,
    "ip_risk": 0.3,
}
DEFAULT_WEAK_COMPONENT_WEIGHT = 0.3

HIGH_CONFIDENCE_SOURCES = ("reputation", "breach")
WEAK_SIGNAL_CAP = 80


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass
class Settings:
    request_timeout: float = 8.0
    branch_timeout: float = 10.0
    intel_timeout: float = 6.0
    max_redirects: int = 10
    max_bytes: int = 1024 * 1024
    retry_backoff: float = 0.5
    user_agent: str = "Mozilla/5.0 (compatible; WebWatcher/1.0)"

    database_url: str = "sqlite:///webwatcher.db"
    feed_dir: str = "feeds"

    virustotal_api_key: Optional[str] = None
    safe_browsing_api_key: Optional[str] = None
    hibp_api_key: Optional[str] = None

    api_key: Optional[str] = None
    redis_url: Optional[str] = None
    default_rate_limit: str = "60 per minute"
    scan_rate_limit: str = "30 per minute"

    flag_weights: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_FLAG_WEIGHTS))
    component_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_COMPONENT_WEIGHTS))
    high_confidence_sources: Tuple[str, ...] = HIGH_CONFIDENCE_SOURCES
    weak_signal_cap: int = WEAK_SIGNAL_CAP

    @classmethod
    def from_env(cls) -> "Settings":
        db_file = os.getenv("WEBWATCHER_DB", "webwatcher.db")
        return cls(
            request_timeout=_env_float("WEBWATCHER_REQUEST_TIMEOUT", 8.0),
            branch_timeout=_env_float("WEBWATCHER_BRANCH_TIMEOUT", 10.0),
            intel_timeout=_env_float("WEBWATCHER_INTEL_TIMEOUT", 6.0),
            max_redirects=_env_int("WEBWATCHER_MAX_REDIRECTS", 10),
            max_bytes=_env_int("WEBWATCHER_MAX_BYTES", 1024 * 1024),
            database_url=os.getenv("WEBWATCHER_DATABASE_URL", f"sqlite:///{db_file}"),
            feed_dir=os.getenv("WEBWATCHER_FEED_DIR", "feeds"),
            virustotal_api_key=os.getenv("VIRUSTOTAL_API_KEY"),
            safe_browsing_api_key=os.getenv("GOOGLE_SAFE_BROWSING_API_KEY"),
            hibp_api_key=os.getenv("HIBP_API_KEY"),
            api_key=os.getenv("WEBWATCHER_API_KEY"),
            redis_url=os.getenv("REDIS_URL"),
            default_rate_limit=os.getenv("WEBWATCHER_RATE_LIMIT", "60 per minute"),
            scan_rate_limit=os.getenv("WEBWATCHER_SCAN_RATE_LIMIT", "30 per minute"),
        )

    def weight(self, flag: str) -> Optional[int]:
        """Weight for a flag: exact match first, then the longest known prefix."""
        if flag in self.flag_weights:
            return self.flag_weights[flag]
        best = None
        for name in self.flag_weights:
            if flag.startswith(name + "_") and (best is None or len(name) > len(best)):
                best = name
        return self.flag_weights[best] if best else None

    def component_weight(self, component: str) -> float:
        return self.component_weights.get(component, DEFAULT_WEAK_COMPONENT_WEIGHT)
