"""
Lesson confidence scoring

Confidence = base(occurrences) x recency x sqrt(successRate) x validation boost.

Recency is deliberately bimodal: a lesson that has succeeded decays slowly
from its last success (90-day window, floor 0.7); one that never succeeded
decays faster from when it was first seen (30-day window, floor 0.5).
"""

import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .models import ConfidenceHistoryEntry, Lesson, parse_iso

MAX_CONFIDENCE_HISTORY_ENTRIES = 100
CONFIDENCE_HISTORY_RETENTION_DAYS = 90
DECLINING_WINDOW = 30
DECLINING_RATIO = 0.8
LOW_CONFIDENCE_THRESHOLD = 0.4
TREND_DELTA = 0.1
VALIDATION_BOOST = 1.2
OCCURRENCE_SATURATION = 10


def days_between(a: datetime, b: datetime) -> float:
    """Absolute difference in (fractional) days."""
    return abs((a - b).total_seconds()) / 86400


def _days_since(value: Optional[str], now: datetime) -> Optional[float]:
    parsed = parse_iso(value)
    if parsed is None:
        return None
    return days_between(now, parsed)


def calculate_confidence(lesson: Lesson, now: Optional[datetime] = None) -> float:
    now = now or datetime.now(timezone.utc)
    metrics = lesson.metrics

    base = min(metrics.occurrences / OCCURRENCE_SATURATION, 1.0)

    since_success = _days_since(metrics.last_success, now)
    if since_success is not None:
        recency = max(1 - (since_success / 90) * 0.3, 0.7)
    else:
        since_first_seen = _days_since(metrics.first_seen, now) or 0.0
        recency = max(1 - (since_first_seen / 30) * 0.5, 0.5)

    success_factor = math.sqrt(max(metrics.success_rate, 0.0))
    validation = VALIDATION_BOOST if lesson.validation.human_reviewed else 1.0

    score = base * recency * success_factor * validation
    return round(max(0.0, min(score, 1.0)), 2)


def detect_declining_confidence(lesson: Lesson) -> bool:
    """True when current confidence is under 80% of the recent historical mean."""
    history = lesson.metrics.confidence_history
    if len(history) < 2:
        return False
    recent = history[-DECLINING_WINDOW:]
    average = sum(entry.value for entry in recent) / len(recent)
    return lesson.metrics.confidence < average * DECLINING_RATIO


def update_confidence_history(lesson: Lesson, now: Optional[datetime] = None) -> List[ConfidenceHistoryEntry]:
    """
    Return the lesson's history with its current confidence appended. Entries
    past the retention window are dropped and the list is capped at the most
    recent MAX_CONFIDENCE_HISTORY_ENTRIES.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=CONFIDENCE_HISTORY_RETENTION_DAYS)

    kept = []
    for entry in lesson.metrics.confidence_history:
        parsed = parse_iso(entry.date)
        if parsed is not None and parsed >= cutoff:
            kept.append(entry)

    stamp = now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    kept.append(ConfidenceHistoryEntry(date=stamp, value=lesson.metrics.confidence))
    return kept[-MAX_CONFIDENCE_HISTORY_ENTRIES:]


def get_confidence_trend(history: List[ConfidenceHistoryEntry]) -> str:
    """increasing | decreasing | stable | unknown (fewer than 3 points)"""
    if len(history) < 3:
        return "unknown"

    third = len(history) // 3
    first = history[:third]
    last = history[-third:]
    first_avg = sum(e.value for e in first) / len(first)
    last_avg = sum(e.value for e in last) / len(last)

    if first_avg == 0:
        return "increasing" if last_avg > 0 else "stable"

    # Relative change
    delta = (last_avg - first_avg) / first_avg
    if delta > TREND_DELTA:
        return "increasing"
    if delta < -TREND_DELTA:
        return "decreasing"
    return "stable"


def needs_confidence_review(lesson: Lesson, threshold: float = LOW_CONFIDENCE_THRESHOLD) -> bool:
    return lesson.metrics.confidence < threshold
