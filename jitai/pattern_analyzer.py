"""
Pattern Analyzer

This module aggregates raw usage episodes into rolling window statistics,
flags anomalous windows against a baseline, and builds daily summaries.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
import logging
import math

from jitai.config_loader import get_section
from jitai.models import (
    AnomalyReport,
    AppCategory,
    CategoryUsage,
    DailySummary,
    UsageEpisode,
    UsagePattern,
)

logger = logging.getLogger(__name__)

# Load configuration
_pattern_config = get_section("pattern_analyzer")

DEFAULT_WINDOW_MINUTES = _pattern_config.get("window_minutes", 60)
SHORT_EPISODE_SECONDS = _pattern_config.get("short_episode_seconds", 30)
FREQUENCY_ANOMALY_RATIO = _pattern_config.get("frequency_anomaly_ratio", 1.5)
SCREEN_TIME_ANOMALY_RATIO = _pattern_config.get("screen_time_anomaly_ratio", 1.5)
COMPULSIVENESS_SPIKE = _pattern_config.get("compulsiveness_spike", 0.2)

# Explicit tie-break order for category rankings
_CATEGORY_ORDER = {category: index for index, category in enumerate(AppCategory)}


def to_minutes(seconds: float) -> int:
    """Whole minutes, halves rounded up (150 s -> 3)."""
    return int(math.floor(seconds / 60 + 0.5))


def _now_for(episodes: Sequence[UsageEpisode]) -> datetime:
    """Current wall-clock time in the timezone carried by the episodes."""
    tz = episodes[0].start_time.tzinfo if episodes else None
    return datetime.now(tz)


def _compulsiveness(episodes: Sequence[UsageEpisode]) -> float:
    if not episodes:
        return 0.0
    short = sum(1 for ep in episodes if ep.duration < SHORT_EPISODE_SECONDS)
    return short / len(episodes)


def _dominant_category(episodes: Sequence[UsageEpisode]) -> AppCategory:
    counts: Dict[AppCategory, int] = {}
    for ep in episodes:
        counts[ep.app_category] = counts.get(ep.app_category, 0) + 1
    if not counts:
        return AppCategory.UNKNOWN
    # Highest count wins; ties go to the lowest category ordinal
    return min(counts, key=lambda category: (-counts[category], _CATEGORY_ORDER[category]))


def analyze_usage_pattern(
    episodes: Sequence[UsageEpisode],
    window_minutes: float = DEFAULT_WINDOW_MINUTES,
    now: Optional[datetime] = None
) -> UsagePattern:
    """
    Analyze usage episodes within a trailing time window.

    Args:
        episodes: Usage episodes to analyze (any order)
        window_minutes: Window size in minutes
        now: End of the window. Defaults to the current time.

    Returns:
        UsagePattern for the window. The hourly distribution covers all
        supplied episodes, not only the window.
    """
    now = now or _now_for(episodes)
    window_start = now - timedelta(minutes=window_minutes)

    window_episodes = [ep for ep in episodes if ep.start_time >= window_start]

    pickup_count = len(window_episodes)
    total_screen_time = sum(ep.duration for ep in window_episodes)
    avg_duration = total_screen_time / pickup_count if pickup_count > 0 else 0.0

    hourly_distribution = [0] * 24
    for ep in episodes:
        hourly_distribution[ep.start_time.hour] += 1

    pattern = UsagePattern(
        window_start=window_start,
        window_end=now,
        pickup_count=pickup_count,
        total_screen_time=total_screen_time,
        avg_episode_duration=avg_duration,
        dominant_category=_dominant_category(window_episodes),
        pickup_frequency=pickup_count / (window_minutes / 60),
        compulsiveness_score=_compulsiveness(window_episodes),
        hourly_distribution=hourly_distribution
    )

    logger.debug(
        f"Window {window_minutes}min: pickups={pattern.pickup_count}, "
        f"screen_time={pattern.total_screen_time:.0f}s, "
        f"compulsiveness={pattern.compulsiveness_score:.2f}, "
        f"dominant={pattern.dominant_category.value}"
    )
    return pattern


def detect_anomalous_usage(current: UsagePattern, baseline: UsagePattern) -> AnomalyReport:
    """
    Score how far the current window departs from a baseline window.

    Returns:
        AnomalyReport with a score in [0, 1] (0 = normal) and a readable reason.
    """
    anomaly_score = 0.0
    reasons = []

    if baseline.pickup_frequency > 0:
        freq_ratio = current.pickup_frequency / baseline.pickup_frequency
        if freq_ratio > FREQUENCY_ANOMALY_RATIO:
            anomaly_score += 0.3
            reasons.append(f"Pickup frequency {freq_ratio:.1f}x above normal")

    if baseline.total_screen_time > 0:
        time_ratio = current.total_screen_time / baseline.total_screen_time
        if time_ratio > SCREEN_TIME_ANOMALY_RATIO:
            anomaly_score += 0.3
            reasons.append(f"Screen time {time_ratio:.1f}x above normal")

    if current.compulsiveness_score > baseline.compulsiveness_score + COMPULSIVENESS_SPIKE:
        anomaly_score += 0.4
        reasons.append("Unusually high ratio of short, aimless pickups")

    reason = ". ".join(reasons) if reasons else "Usage patterns are within normal range"
    anomaly_score = min(max(anomaly_score, 0.0), 1.0)

    if reasons:
        logger.info(f"Anomalous usage detected: score={anomaly_score:.2f}, reason={reason}")

    return AnomalyReport(anomaly_score=anomaly_score, reason=reason)


def compute_daily_summary(episodes: Sequence[UsageEpisode]) -> DailySummary:
    """Compute headline daily metrics for a list of episodes."""
    total_pickups = len(episodes)
    total_screen_time = sum(ep.duration for ep in episodes)
    longest = max((ep.duration for ep in episodes), default=0.0)

    # Category breakdown
    category_stats: Dict[AppCategory, Dict[str, float]] = {}
    for ep in episodes:
        stats = category_stats.setdefault(ep.app_category, {"count": 0, "duration": 0.0})
        stats["count"] += 1
        stats["duration"] += ep.duration

    top_categories: List[CategoryUsage] = [
        CategoryUsage(
            category=category,
            count=int(stats["count"]),
            minutes=to_minutes(stats["duration"])
        )
        for category, stats in category_stats.items()
    ]
    top_categories.sort(key=lambda usage: (-usage.minutes, _CATEGORY_ORDER[usage.category]))

    # Peak hour: first maximum, so the earliest hour wins ties
    hour_counts = [0] * 24
    for ep in episodes:
        hour_counts[ep.start_time.hour] += 1
    peak_hour = hour_counts.index(max(hour_counts))

    return DailySummary(
        total_pickups=total_pickups,
        total_screen_time_minutes=to_minutes(total_screen_time),
        avg_session_seconds=total_screen_time / total_pickups if total_pickups > 0 else 0.0,
        longest_session_minutes=to_minutes(longest),
        top_categories=top_categories,
        peak_hour=peak_hour,
        compulsiveness_score=_compulsiveness(episodes)
    )
