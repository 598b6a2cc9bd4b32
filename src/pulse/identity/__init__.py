"""Pulse identity correlation - alt-account detection."""

from pulse.identity.detector import EventPublisher, IdentityCorrelationDetector
from pulse.identity.scoring import EMAIL_MATCH_CONFIDENCE, score_confidence

__all__ = [
    "EMAIL_MATCH_CONFIDENCE",
    "EventPublisher",
    "IdentityCorrelationDetector",
    "score_confidence",
]
