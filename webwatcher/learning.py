"""
learning.py

Feedback learning strategies. Analyst feedback on a URL nudges the weights of
the flags that fired for it; the resulting per-flag deltas are loaded into the
scan context and applied by the scoring engine.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List

from .models import FeedbackType, UserFeedback

logger = logging.getLogger("learning")

ADJUSTMENT_PREFIX = "ADJ-"


class LearningStrategy(ABC):
    @abstractmethod
    def apply(self, feedback: UserFeedback, flags: List[str]) -> bool:
        """Record the effect of ``feedback``. Returns False when it was already applied."""

    @abstractmethod
    def adjustments(self) -> Dict[str, int]:
        """Current per-flag weight deltas."""


class NoopLearning(LearningStrategy):
    def apply(self, feedback: UserFeedback, flags: List[str]) -> bool:
        return False

    def adjustments(self) -> Dict[str, int]:
        return {}


class FlagWeightLearning(LearningStrategy):
    """
    ``false_positive`` lowers each fired flag by ``step``, ``confirmed_phish``
    raises it; other feedback types are recorded with no effect. One
    ``ADJ-<feedback id>`` record per feedback makes re-application a no-op.
    Totals are clamped to +/- ``bound``.
    """

    DIRECTIONS = {FeedbackType.FALSE_POSITIVE: -1, FeedbackType.CONFIRMED_PHISH: 1}

    def __init__(self, store, step: int = 5, bound: int = 50):
        self.store = store
        self.step = step
        self.bound = bound

    def apply(self, feedback: UserFeedback, flags: List[str]) -> bool:
        record_id = ADJUSTMENT_PREFIX + feedback.id
        if self.store.exists(record_id):
            logger.info("Feedback %s already applied", feedback.id)
            return False
        delta = self.DIRECTIONS.get(feedback.feedback_type, 0) * self.step
        deltas = {flag: delta for flag in sorted(set(flags))} if delta else {}
        self.store.put(record_id, {"id": record_id, "feedback_id": feedback.id, "deltas": deltas})
        return True

    def adjustments(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for record in self.store.list(ADJUSTMENT_PREFIX):
            for flag, delta in record.get("deltas", {}).items():
                totals[flag] = totals.get(flag, 0) + int(delta)
        return {flag: max(-self.bound, min(self.bound, total)) for flag, total in sorted(totals.items())}
