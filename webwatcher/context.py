"""
context.py

The per-scan context object. It carries configuration, collaborator clients,
the threat-intel sources and the learned flag adjustments through every
component call, so no analyzer reaches for module-level state.
"""

import datetime
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from .clients import CertificateTransparencyClient, DohResolver, HttpFetcher, PeerCertificateFetcher
from .config import Settings
from .app.threat_intel import BreachSource, IntelSource, IpRiskSource, ReputationSource, WhoisSource


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class ScanContext:
    settings: Settings
    fetcher: HttpFetcher
    resolver: DohResolver
    ct_log: CertificateTransparencyClient
    certificates: Optional[PeerCertificateFetcher] = None
    intel_sources: List[IntelSource] = field(default_factory=list)
    flag_adjustments: Dict[str, int] = field(default_factory=dict)
    clock: Callable[[], datetime.datetime] = utcnow

    @classmethod
    def default(cls, settings: Optional[Settings] = None,
                flag_adjustments: Optional[Dict[str, int]] = None) -> "ScanContext":
        settings = settings or Settings.from_env()
        sources: List[IntelSource] = [
            ReputationSource(
                feed_dir=settings.feed_dir,
                safe_browsing_api_key=settings.safe_browsing_api_key,
                virustotal_api_key=settings.virustotal_api_key,
                timeout=settings.intel_timeout,
            ),
            WhoisSource(),
            IpRiskSource(timeout=settings.intel_timeout),
        ]
        if settings.hibp_api_key:
            sources.append(BreachSource(settings.hibp_api_key, timeout=settings.intel_timeout))
        return cls(
            settings=settings,
            fetcher=HttpFetcher(
                timeout=settings.request_timeout,
                max_bytes=settings.max_bytes,
                user_agent=settings.user_agent,
                retry_backoff=settings.retry_backoff,
            ),
            resolver=DohResolver(timeout=settings.request_timeout),
            ct_log=CertificateTransparencyClient(timeout=settings.request_timeout),
            certificates=PeerCertificateFetcher(timeout=min(5.0, settings.request_timeout)),
            intel_sources=sources,
            flag_adjustments=dict(flag_adjustments or {}),
        )

    def now(self) -> datetime.datetime:
        return self.clock()

    def score_flags(self, flags: Iterable[str]) -> int:
        """Saturating sum of the configured weights of distinct flags."""
        total = sum(self.settings.weight(flag) or 0 for flag in set(flags))
        return max(0, min(100, total))
