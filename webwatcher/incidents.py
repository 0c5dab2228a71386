"""
incidents.py

Incident & feedback service. Turns a completed scan into a stored incident
report, records analyst feedback and hands it to the learning strategy.

Storage is best effort: a failed write is logged and the report or feedback
object is still returned to the caller. Reads never raise on an empty store.

Public class:
    IncidentService(store, learning=None, settings=None)
"""

import datetime
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from .config import Settings
from .errors import InvalidInput, StorageUnavailable
from .learning import LearningStrategy, NoopLearning
from .models import (FeedbackStats, FeedbackType, IncidentReport, RiskScoreResult, ScanResults, Severity,
                     UserFeedback)
from .scoring import collect_findings, score_risk
from .validation import normalize_url

logger = logging.getLogger("incidents")

INCIDENT_PREFIX = "INC-"
FEEDBACK_PREFIX = "FB-"

# first match wins
CATEGORY_KEYWORDS = (
    ("phishing", "phishing"),
    ("malware", "malware"),
    ("brand_impersonation", "brand impersonation"),
    ("credential_theft", "credential"),
)

RECOMMENDATIONS = {
    Severity.CRITICAL: "Block this URL immediately and alert affected users.",
    Severity.HIGH: "Block or quarantine this URL and review it manually.",
    Severity.MEDIUM: "Treat with caution; review before allowing access.",
    Severity.LOW: "No immediate action required; keep monitoring.",
}


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _new_id(prefix: str, now: datetime.datetime) -> str:
    return f"{prefix}{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}"


def categorize(descriptions: List[str]) -> str:
    text = " ".join(descriptions).lower()
    for category, keyword in CATEGORY_KEYWORDS:
        if keyword in text:
            return category
    return "unknown"


class IncidentService:
    def __init__(self, store, learning: Optional[LearningStrategy] = None,
                 settings: Optional[Settings] = None,
                 clock: Callable[[], datetime.datetime] = _utcnow):
        self.store = store
        self.learning = learning or NoopLearning()
        self.settings = settings or Settings()
        self.clock = clock

    def _persist(self, record_id: str, record: Dict[str, Any]) -> bool:
        try:
            self.store.put(record_id, record)
            return True
        except StorageUnavailable:
            logger.exception("Could not persist %s", record_id)
            return False

    def generate_incident_report(self, url: str, results: ScanResults,
                                 risk: Optional[RiskScoreResult] = None,
                                 metadata: Optional[Dict[str, Any]] = None) -> IncidentReport:
        """Build, persist and return the incident report for a finished scan."""
        adjustments = self.learning.adjustments()
        if risk is None:
            risk = score_risk(results, self.settings, adjustments)
        findings = collect_findings(results, self.settings, adjustments)
        scored = [f for f in findings if f.flag != "inconclusive"]
        now = self.clock()

        completed = [name for name, present in (
            ("redirect", results.redirect_analysis is not None),
            ("page_content", results.page_content is not None),
            ("form_risk", True),
            ("tls_security", results.tls_audit is not None),
        ) if present and name not in results.inconclusive]
        completed += [f"threat_intel.{name}" for name, intel in sorted(results.threat_intel.items())
                      if not intel.error]

        report = IncidentReport(
            id=_new_id(INCIDENT_PREFIX, now),
            timestamp=now.isoformat(),
            url=url,
            severity=risk.severity,
            category=categorize([f.description for f in scored]),
            findings=findings,
            overall_risk_score=risk.overall_risk_score,
            recommendation=f"{RECOMMENDATIONS[risk.severity]} {risk.explanation}",
            metadata={
                "final_url": results.final_url,
                "checks_completed": completed,
                "checks_inconclusive": sorted(results.inconclusive),
                "breakdown": dict(risk.breakdown),
                **(metadata or {}),
            },
        )
        self._persist(report.id, report.to_dict())
        return report

    def _flags_for(self, url: str, incident_id: Optional[str]) -> List[str]:
        if incident_id:
            if not incident_id.startswith(INCIDENT_PREFIX):
                logger.warning("Feedback names %s, which is not an incident", incident_id)
                return []
            record = self.store.get(incident_id)
            if not record:
                return []
            try:
                return IncidentReport.from_dict(record).flags
            except (KeyError, ValueError):
                logger.warning("Incident %s is malformed, no flags to adjust", incident_id)
                return []
        for record in self.store.list(INCIDENT_PREFIX):
            if record.get("url") == url:
                return IncidentReport.from_dict(record).flags
        return []

    def submit_feedback(self, url: str, feedback_type, comment: Optional[str] = None,
                        incident_id: Optional[str] = None, user_id: Optional[str] = None) -> UserFeedback:
        """
        Store analyst feedback and pass it to the learning strategy. The
        flags it applies to come from ``incident_id``, or else from the most
        recent incident filed for ``url``.
        """
        url = normalize_url(url)
        try:
            feedback_type = FeedbackType(feedback_type)
        except ValueError:
            raise InvalidInput(f"unknown feedback type {feedback_type!r}", field="feedback_type") from None

        now = self.clock()
        feedback = UserFeedback(
            id=_new_id(FEEDBACK_PREFIX, now),
            timestamp=now.isoformat(),
            url=url,
            feedback_type=feedback_type,
            incident_id=incident_id,
            comment=comment,
            user_id=user_id,
        )
        if self._persist(feedback.id, feedback.to_dict()):
            self.apply_feedback(feedback)
        return feedback

    def apply_feedback(self, feedback: UserFeedback) -> bool:
        """Run the learning step for ``feedback``; applying the same id twice has no further effect."""
        flags = self._flags_for(feedback.url, feedback.incident_id)
        try:
            return self.learning.apply(feedback, flags)
        except StorageUnavailable:
            logger.exception("Learning update for %s not stored", feedback.id)
            return False

    def get_feedback_stats(self) -> FeedbackStats:
        stats = FeedbackStats()
        for record in self.store.list(FEEDBACK_PREFIX):
            stats.total += 1
            kind = record.get("feedback_type")
            if kind == FeedbackType.FALSE_POSITIVE.value:
                stats.false_positives += 1
            elif kind == FeedbackType.CONFIRMED_PHISH.value:
                stats.confirmed_phish += 1
            elif kind == FeedbackType.BENIGN_TEST.value:
                stats.benign_tests += 1
            else:
                stats.other += 1
        return stats

    def get_recent_incidents(self, limit: int = 10) -> List[IncidentReport]:
        return [IncidentReport.from_dict(r) for r in self.store.list(INCIDENT_PREFIX, limit=max(0, limit))]
