"""
Unit Tests: Feature Extraction and Context Classification

Tests feature extraction from episode history, the softmax classifier, and
weight updates from user corrections.

Run with: pytest testing/test_context_classifier.py -v
"""

import pytest
import sys
import os
from datetime import datetime, timedelta

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from jitai.context_classifier import (
    classify_context,
    classify_episodes,
    compute_raw_scores,
    update_weights_from_feedback,
)
from jitai.feature_extractor import extract_features, get_active_features
from jitai.models import (
    AppCategory,
    ContextFeatures,
    ContextWeights,
    UsageContext,
    UsageEpisode,
)


# =============================================================================
# Test Fixtures & Helpers
# =============================================================================

# A Tuesday
BASE = datetime(2026, 3, 10, 20, 0, 0)


def make_features(**overrides) -> ContextFeatures:
    """Helper to create ContextFeatures with neutral defaults."""
    values = dict(
        time_since_last_pickup=2000.0,
        hour_of_day=20,
        notification_triggered=False,
        current_duration=400.0,
        app_category=AppCategory.UNKNOWN,
        recent_pickup_count=5,
        in_focus_session=False,
        day_of_week=2,
        avg_pickup_interval_for_hour=900.0,
    )
    values.update(overrides)
    return ContextFeatures(**values)


def make_episode(seconds_after_base: float, duration: float = 30.0,
                 category: AppCategory = AppCategory.SOCIAL_MEDIA,
                 in_session: bool = False) -> UsageEpisode:
    start = BASE + timedelta(seconds=seconds_after_base)
    return UsageEpisode(
        id=f"ep-{seconds_after_base}",
        start_time=start,
        end_time=start + timedelta(seconds=duration),
        duration=duration,
        app_category=category,
        during_focus_session=in_session
    )


# =============================================================================
# Test Suite: Feature Extraction
# =============================================================================

class TestExtractFeatures:

    def test_gap_and_recent_count_from_history(self):
        history = [make_episode(-4000), make_episode(-1800), make_episode(-600), make_episode(-120)]
        episode = make_episode(0, duration=12, in_session=True)

        features = extract_features(episode, history)

        assert features.time_since_last_pickup == pytest.approx(120)
        # -4000s is outside the trailing hour
        assert features.recent_pickup_count == 3
        assert features.hour_of_day == 20
        assert features.current_duration == pytest.approx(12)
        assert features.in_focus_session is True
        assert features.day_of_week == 2

    def test_later_episodes_are_not_prior_pickups(self):
        history = [make_episode(-300), make_episode(60)]

        features = extract_features(make_episode(0), history)

        assert features.time_since_last_pickup == pytest.approx(300)
        assert features.recent_pickup_count == 1

    def test_defaults_without_history(self):
        features = extract_features(make_episode(0), [])

        assert features.time_since_last_pickup == pytest.approx(3600)
        assert features.recent_pickup_count == 0
        assert features.avg_pickup_interval_for_hour == pytest.approx(900)
        assert features.notification_triggered is False

    def test_avg_interval_for_hour_from_caller(self):
        features = extract_features(make_episode(0), [], avg_intervals={20: 420.0, 9: 1200.0})
        assert features.avg_pickup_interval_for_hour == pytest.approx(420)

        features = extract_features(make_episode(0), [], avg_intervals={9: 1200.0})
        assert features.avg_pickup_interval_for_hour == pytest.approx(900)

    def test_zero_avg_interval_is_accepted(self):
        history = [make_episode(-120)]

        features = extract_features(make_episode(0), history, avg_intervals={20: 0.0})

        assert features.avg_pickup_interval_for_hour == 0.0
        assert "below_avg_interval" not in get_active_features(features)
        assert classify_context(features).context in UsageContext

    def test_notification_flag_is_passed_through(self):
        features = extract_features(make_episode(0), [], notification_triggered=True)
        assert features.notification_triggered is True

    def test_sunday_is_zero(self):
        sunday = UsageEpisode(id="sun", start_time=datetime(2026, 3, 8, 10, 0), duration=10)
        assert extract_features(sunday, []).day_of_week == 0


# =============================================================================
# Test Suite: Classification
# =============================================================================

class TestClassifyContext:

    @pytest.mark.parametrize("features", [
        make_features(),
        make_features(app_category=AppCategory.MESSAGING, notification_triggered=True, current_duration=20),
        make_features(app_category=AppCategory.SOCIAL_MEDIA, time_since_last_pickup=30, recent_pickup_count=12),
        make_features(app_category=AppCategory.PRODUCTIVITY, hour_of_day=8, current_duration=45),
    ])
    def test_probabilities_sum_to_one(self, features):
        result = classify_context(features)

        assert set(result.scores) == set(UsageContext)
        assert sum(result.scores.values()) == pytest.approx(1.0)
        assert result.confidence == pytest.approx(result.scores[result.context])
        assert result.confidence == max(result.scores.values())

    def test_classification_is_deterministic(self):
        features = make_features(app_category=AppCategory.ENTERTAINMENT, current_duration=120)
        weights = ContextWeights(adjustments={UsageContext.WORK_BREAK: {"leisure_app": 0.1}}, correction_count=1)

        first = classify_context(features, weights)
        second = classify_context(features, weights)

        assert first == second

    def test_compulsive_social_media_in_focus_session(self):
        """
        social_media, 10s, 60s gap, 8 recent pickups, in a focus session.

        boredom_habit: 0.35 + 0.3 + 0.25 + 0.1 + 0.2 = 1.2
        anxiety_check: 0.35 + 0.3 + 0.25 = 0.9
        """
        features = make_features(
            app_category=AppCategory.SOCIAL_MEDIA,
            current_duration=10,
            time_since_last_pickup=60,
            recent_pickup_count=8,
            in_focus_session=True
        )

        result = classify_context(features)

        assert result.context in (UsageContext.BOREDOM_HABIT, UsageContext.ANXIETY_CHECK)
        others = [p for ctx, p in result.scores.items() if ctx != result.context]
        assert all(result.confidence > p for p in others)

    def test_messaging_notification_is_social_response(self):
        features = make_features(
            app_category=AppCategory.MESSAGING,
            notification_triggered=True,
            current_duration=40
        )

        assert classify_context(features).context == UsageContext.SOCIAL_RESPONSE

    def test_productivity_after_long_gap_is_intentional(self):
        features = make_features(app_category=AppCategory.PRODUCTIVITY, current_duration=45, time_since_last_pickup=4000)

        assert classify_context(features).context == UsageContext.INTENTIONAL_TASK

    def test_unknown_baseline_and_floor_at_zero(self):
        weights = ContextWeights(adjustments={UsageContext.WORK_BREAK: {"moderate_duration": -5.0}})
        features = make_features(current_duration=120)

        scores = compute_raw_scores(features, weights)

        assert scores[UsageContext.UNKNOWN] == pytest.approx(0.1)
        assert scores[UsageContext.WORK_BREAK] == 0.0

    def test_learned_adjustment_shifts_prediction(self):
        features = make_features(app_category=AppCategory.MESSAGING, notification_triggered=True, current_duration=40)
        weights = ContextWeights(adjustments={
            UsageContext.SOCIAL_RESPONSE: {"messaging": -0.5, "notification": -0.5},
            UsageContext.WORK_BREAK: {"low_frequency": 0.0},
        })

        result = classify_context(features, weights)

        assert result.context != UsageContext.SOCIAL_RESPONSE


class TestClassifyEpisodes:

    def test_uses_only_preceding_episodes(self):
        episodes = [make_episode(i * 30, duration=8) for i in range(10)]

        classified = classify_episodes(episodes)

        assert len(classified) == 10
        assert [ep.id for ep in classified] == [ep.id for ep in episodes]
        # Episode 0 has no history: default 3600s gap, so it is not a rapid pickup
        first_features = extract_features(episodes[0], [])
        assert classified[0].classified_context == classify_context(first_features).context
        last_features = extract_features(episodes[9], episodes[:9])
        assert classified[9].classified_context == classify_context(last_features).context

    def test_inputs_not_mutated(self):
        episodes = [make_episode(0), make_episode(60)]

        classified = classify_episodes(episodes)

        assert all(ep.classified_context == UsageContext.UNKNOWN for ep in episodes)
        assert classified[0] is not episodes[0]


# =============================================================================
# Test Suite: Weight Updates
# =============================================================================

class TestUpdateWeightsFromFeedback:

    def test_increments_correction_count_without_mutating_input(self):
        weights = ContextWeights(
            adjustments={UsageContext.BOREDOM_HABIT: {"social_media": 0.1}},
            correction_count=3
        )
        original = weights.model_dump()
        features = make_features(app_category=AppCategory.SOCIAL_MEDIA, current_duration=10)

        updated = update_weights_from_feedback(
            weights, features, UsageContext.BOREDOM_HABIT, UsageContext.WORK_BREAK
        )

        assert updated is not weights
        assert updated.correction_count == 4
        assert weights.model_dump() == original
        assert weights.adjustments[UsageContext.BOREDOM_HABIT]["social_media"] == pytest.approx(0.1)

    def test_asymmetric_boost_and_suppression(self):
        features = make_features(app_category=AppCategory.SOCIAL_MEDIA, current_duration=10)
        active = get_active_features(features)

        updated = update_weights_from_feedback(
            ContextWeights(), features,
            UsageContext.BOREDOM_HABIT, UsageContext.WORK_BREAK,
            learning_rate=0.1
        )

        assert "social_media" in active
        for feature in active:
            assert updated.get_adjustment(UsageContext.WORK_BREAK, feature) == pytest.approx(0.1)
            assert updated.get_adjustment(UsageContext.BOREDOM_HABIT, feature) == pytest.approx(-0.05)
        assert updated.get_adjustment(UsageContext.WORK_BREAK, "messaging") == 0.0

    def test_repeated_corrections_accumulate(self):
        features = make_features(app_category=AppCategory.MESSAGING, current_duration=40)
        weights = ContextWeights()
        for _ in range(3):
            weights = update_weights_from_feedback(
                weights, features, UsageContext.SOCIAL_RESPONSE, UsageContext.INTENTIONAL_TASK
            )

        assert weights.correction_count == 3
        assert weights.get_adjustment(UsageContext.INTENTIONAL_TASK, "messaging") == pytest.approx(0.15)
        assert weights.get_adjustment(UsageContext.SOCIAL_RESPONSE, "messaging") == pytest.approx(-0.075)

    def test_active_features_match_thresholds(self):
        features = make_features(
            app_category=AppCategory.ENTERTAINMENT,
            current_duration=120,
            time_since_last_pickup=700,
            recent_pickup_count=2,
            hour_of_day=17,
            notification_triggered=True,
            in_focus_session=True
        )

        active = set(get_active_features(features))

        assert active == {
            "entertainment", "leisure_app", "moderate_duration", "browse_duration",
            "moderate_gap", "notification", "low_frequency", "in_session",
            "work_hours", "commute_hours",
        }
