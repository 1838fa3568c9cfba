"""
Feature Extractor

Turns one usage episode plus its recent history into a ContextFeatures
snapshot, and names the boolean indicators the context classifier scores on.
"""

from datetime import timedelta
from typing import Dict, List, Optional, Sequence
import logging

from jitai.config_loader import get_section
from jitai.models import AppCategory, ContextFeatures, UsageEpisode

logger = logging.getLogger(__name__)

_feature_config = get_section("feature_extractor")

DEFAULT_GAP_SECONDS = _feature_config.get("default_gap_seconds", 3600)
DEFAULT_AVG_INTERVAL_SECONDS = _feature_config.get("default_avg_interval_seconds", 900)


def extract_features(
    episode: UsageEpisode,
    recent_episodes: Sequence[UsageEpisode],
    avg_intervals: Optional[Dict[int, float]] = None,
    notification_triggered: bool = False
) -> ContextFeatures:
    """
    Extract context features from a usage episode and recent history.

    Args:
        episode: Current usage episode
        recent_episodes: Recent usage history (roughly the last hour)
        avg_intervals: Historical average pickup interval in seconds, keyed by hour
        notification_triggered: Whether a notification caused the pickup. Supplied
            by the platform integration; nothing here infers it.

    Returns:
        ContextFeatures for classification
    """
    start = episode.start_time
    hour = start.hour
    one_hour_ago = start - timedelta(hours=1)

    previous_starts = [ep.start_time for ep in recent_episodes if ep.start_time < start]
    if previous_starts:
        time_since_last_pickup = (start - max(previous_starts)).total_seconds()
    else:
        time_since_last_pickup = float(DEFAULT_GAP_SECONDS)

    recent_count = sum(1 for ep in recent_episodes if one_hour_ago <= ep.start_time < start)

    avg_interval = DEFAULT_AVG_INTERVAL_SECONDS
    if avg_intervals and hour in avg_intervals:
        avg_interval = avg_intervals[hour]

    return ContextFeatures(
        time_since_last_pickup=time_since_last_pickup,
        hour_of_day=hour,
        notification_triggered=notification_triggered,
        current_duration=episode.duration,
        app_category=episode.app_category,
        recent_pickup_count=recent_count,
        in_focus_session=episode.during_focus_session,
        # isoweekday: Monday=1 .. Sunday=7
        day_of_week=start.isoweekday() % 7,
        avg_pickup_interval_for_hour=avg_interval
    )


def is_work_hours(hour: int) -> bool:
    return 9 <= hour <= 17


def is_commute_hours(hour: int) -> bool:
    return 7 <= hour <= 9 or 16 <= hour <= 18


def get_active_features(features: ContextFeatures) -> List[str]:
    """
    Name every boolean indicator that holds for these features.

    The names match the adjustment keys used by the context classifier, so a
    correction can only move weights the scoring rules actually read.
    """
    f = features
    gap = f.time_since_last_pickup
    duration = f.current_duration
    checks = [
        ("productivity", f.app_category == AppCategory.PRODUCTIVITY),
        ("utility", f.app_category == AppCategory.UTILITY),
        ("social_media", f.app_category == AppCategory.SOCIAL_MEDIA),
        ("messaging", f.app_category == AppCategory.MESSAGING),
        ("entertainment", f.app_category == AppCategory.ENTERTAINMENT),
        ("leisure_app", f.app_category in (AppCategory.SOCIAL_MEDIA, AppCategory.ENTERTAINMENT)),
        ("very_short", duration < 15),
        ("short_duration", duration < 60),
        ("short_reply", duration < 90),
        ("moderate_duration", 60 <= duration <= 300),
        ("browse_duration", 30 < duration < 180),
        ("long_gap", gap > 1800),
        ("short_gap", gap < 300),
        ("moderate_gap", 600 <= gap <= 3600),
        ("rapid_repeat", gap < 180 and f.recent_pickup_count > 4),
        ("below_avg_interval", gap < f.avg_pickup_interval_for_hour * 0.5),
        ("notification", f.notification_triggered),
        ("no_trigger", not f.notification_triggered),
        ("high_frequency", f.recent_pickup_count > 6),
        ("low_frequency", f.recent_pickup_count < 4),
        ("in_session", f.in_focus_session),
        ("work_hours", is_work_hours(f.hour_of_day)),
        ("commute_hours", is_commute_hours(f.hour_of_day)),
    ]
    return [name for name, active in checks if active]
