"""Confidence heuristic for alt-account detections.

The score only travels with the event for the notifier to render; the
detector never branches on it.
"""

from pulse.core.types import ConfidenceScore

BASE_CONFIDENCE = 0.5
SEVERAL_MATCHES_CONFIDENCE = 0.7
MANY_MATCHES_CONFIDENCE = 0.9
REGISTRATION_BONUS = 0.1
EMAIL_MATCH_CONFIDENCE = 0.95


def score_confidence(match_count: int, *, registration: bool = False) -> ConfidenceScore:
    """Score an IP-path detection.

    1 match scores 0.5, 2-3 matches 0.7, more than 3 matches 0.9. Detections
    made at registration get 0.1 more.

    Raises:
        ValueError: If match_count is less than 1.
    """
    if match_count < 1:
        msg = f"match_count must be at least 1, got {match_count}"
        raise ValueError(msg)

    if match_count > 3:
        confidence = MANY_MATCHES_CONFIDENCE
    elif match_count > 1:
        confidence = SEVERAL_MATCHES_CONFIDENCE
    else:
        confidence = BASE_CONFIDENCE

    if registration:
        confidence += REGISTRATION_BONUS
    return round(min(confidence, 1.0), 2)
