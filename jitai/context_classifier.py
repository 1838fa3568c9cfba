"""
Context Classifier

This module scores the seven usage contexts from extracted features, applies
the per-indicator adjustments learned from user corrections, and normalizes
the scores with a temperature softmax.

Algorithm:
1. Each context has fixed scoring rules: indicator terms gated by feature
   thresholds, summed
2. Every active indicator term also adds its learned adjustment for that context
3. Each context score is floored at 0; "unknown" is a fixed baseline
4. Softmax with temperature over all seven scores
5. The most probable context is returned with its probability as confidence
"""

import copy
import math
from typing import Callable, Dict, List, Optional, Sequence
import logging

from jitai.config_loader import get_section
from jitai.feature_extractor import (
    extract_features,
    get_active_features,
    is_commute_hours,
    is_work_hours,
)
from jitai.models import (
    AppCategory,
    ClassificationResult,
    ContextFeatures,
    ContextWeights,
    UsageContext,
    UsageEpisode,
)

logger = logging.getLogger(__name__)

# Load configuration
_classifier_config = get_section("context_classifier")

SOFTMAX_TEMPERATURE = _classifier_config.get("softmax_temperature", 0.3)
UNKNOWN_BASELINE = _classifier_config.get("unknown_baseline", 0.1)
DEFAULT_LEARNING_RATE = _classifier_config.get("learning_rate", 0.05)
# Wrong-label penalty relative to the correct-label boost
SUPPRESSION_FACTOR = _classifier_config.get("suppression_factor", 0.5)


# =============================================================================
# Scoring rules
# =============================================================================

def _scorer(context: UsageContext, weights: ContextWeights) -> Callable[[str, float], float]:
    """Return term(indicator, base) -> base + learned adjustment for this context."""
    def term(indicator: str, base: float) -> float:
        return base + weights.get_adjustment(context, indicator)
    return term


def _score_intentional_task(f: ContextFeatures, w: ContextWeights) -> float:
    term = _scorer(UsageContext.INTENTIONAL_TASK, w)
    score = 0.0
    # Productivity/utility apps suggest intention
    if f.app_category == AppCategory.PRODUCTIVITY:
        score += term("productivity", 0.4)
    if f.app_category == AppCategory.UTILITY:
        score += term("utility", 0.3)
    # Quick lookup
    if f.current_duration < 60:
        score += term("short_duration", 0.2)
    # Deliberate pickup after a long gap
    if f.time_since_last_pickup > 1800:
        score += term("long_gap", 0.2)
    return max(score, 0.0)


def _score_work_break(f: ContextFeatures, w: ContextWeights) -> float:
    term = _scorer(UsageContext.WORK_BREAK, w)
    score = 0.0
    if is_work_hours(f.hour_of_day):
        score += term("work_hours", 0.2)
    # A break, not a pattern
    if f.recent_pickup_count < 4:
        score += term("low_frequency", 0.2)
    if 60 <= f.current_duration <= 300:
        score += term("moderate_duration", 0.3)
    if f.app_category in (AppCategory.SOCIAL_MEDIA, AppCategory.ENTERTAINMENT):
        score += term("leisure_app", 0.15)
    return max(score, 0.0)


def _score_social_response(f: ContextFeatures, w: ContextWeights) -> float:
    term = _scorer(UsageContext.SOCIAL_RESPONSE, w)
    score = 0.0
    if f.notification_triggered:
        score += term("notification", 0.4)
    if f.app_category == AppCategory.MESSAGING:
        score += term("messaging", 0.35)
    # Quick reply
    if f.current_duration < 90:
        score += term("short_reply", 0.15)
    return max(score, 0.0)


def _score_boredom_habit(f: ContextFeatures, w: ContextWeights) -> float:
    term = _scorer(UsageContext.BOREDOM_HABIT, w)
    score = 0.0
    if f.time_since_last_pickup < 300:
        score += term("short_gap", 0.35)
    if f.app_category == AppCategory.SOCIAL_MEDIA:
        score += term("social_media", 0.3)
    if f.app_category == AppCategory.ENTERTAINMENT:
        score += term("entertainment", 0.2)
    if f.recent_pickup_count > 6:
        score += term("high_frequency", 0.25)
    if not f.notification_triggered:
        score += term("no_trigger", 0.1)
    # Pickup interval much shorter than usual for this hour
    if f.time_since_last_pickup < f.avg_pickup_interval_for_hour * 0.5:
        score += term("below_avg_interval", 0.2)
    return max(score, 0.0)


def _score_anxiety_check(f: ContextFeatures, w: ContextWeights) -> float:
    term = _scorer(UsageContext.ANXIETY_CHECK, w)
    score = 0.0
    # Just checking, not engaging
    if f.current_duration < 15:
        score += term("very_short", 0.35)
    if f.time_since_last_pickup < 180 and f.recent_pickup_count > 4:
        score += term("rapid_repeat", 0.3)
    if f.in_focus_session:
        score += term("in_session", 0.25)
    return max(score, 0.0)


def _score_transition_moment(f: ContextFeatures, w: ContextWeights) -> float:
    term = _scorer(UsageContext.TRANSITION_MOMENT, w)
    score = 0.0
    if is_commute_hours(f.hour_of_day):
        score += term("commute_hours", 0.25)
    # Between activities
    if 600 <= f.time_since_last_pickup <= 3600:
        score += term("moderate_gap", 0.2)
    if 30 < f.current_duration < 180:
        score += term("browse_duration", 0.15)
    return max(score, 0.0)


_SCORERS = {
    UsageContext.INTENTIONAL_TASK: _score_intentional_task,
    UsageContext.WORK_BREAK: _score_work_break,
    UsageContext.SOCIAL_RESPONSE: _score_social_response,
    UsageContext.BOREDOM_HABIT: _score_boredom_habit,
    UsageContext.ANXIETY_CHECK: _score_anxiety_check,
    UsageContext.TRANSITION_MOMENT: _score_transition_moment,
}


def compute_raw_scores(features: ContextFeatures, weights: Optional[ContextWeights] = None) -> Dict[UsageContext, float]:
    """Pre-softmax score for every context, in UsageContext declaration order."""
    weights = weights or ContextWeights()
    scores = {}
    for context in UsageContext:
        if context == UsageContext.UNKNOWN:
            scores[context] = UNKNOWN_BASELINE
        else:
            scores[context] = _SCORERS[context](features, weights)
    return scores


def softmax(scores: Dict[UsageContext, float], temperature: float = SOFTMAX_TEMPERATURE) -> Dict[UsageContext, float]:
    max_score = max(scores.values())
    exp_scores = {ctx: math.exp((score - max_score) / temperature) for ctx, score in scores.items()}
    total = sum(exp_scores.values())
    return {ctx: value / total for ctx, value in exp_scores.items()}


# =============================================================================
# Classification
# =============================================================================

def classify_context(
    features: ContextFeatures,
    weights: Optional[ContextWeights] = None
) -> ClassificationResult:
    """
    Classify the usage context for one feature snapshot.

    Deterministic: identical features and weights always give identical results.

    Args:
        features: Extracted context features
        weights: Adjustments learned from feedback. None means no adjustments.

    Returns:
        ClassificationResult with the top context, its probability as
        confidence, and the probability of every context
    """
    raw_scores = compute_raw_scores(features, weights)
    probabilities = softmax(raw_scores)

    # Strict comparison keeps the first context in declaration order on exact ties
    best_context = UsageContext.UNKNOWN
    best_prob = -1.0
    for context, prob in probabilities.items():
        if prob > best_prob:
            best_context = context
            best_prob = prob

    logger.debug(
        "Raw context scores: " + ", ".join(f"{ctx.value}={score:.3f}" for ctx, score in raw_scores.items())
    )
    logger.debug(f"Classified context '{best_context.value}' (confidence: {best_prob:.3f})")

    return ClassificationResult(
        context=best_context,
        confidence=best_prob,
        scores=probabilities
    )


def classify_episodes(
    episodes: Sequence[UsageEpisode],
    weights: Optional[ContextWeights] = None,
    avg_intervals: Optional[Dict[int, float]] = None
) -> List[UsageEpisode]:
    """
    Classify a chronological batch of episodes.

    Features for each episode are extracted from the episodes preceding it.

    Returns:
        New episodes with classified_context set; inputs are unchanged.
    """
    classified = []
    for index, episode in enumerate(episodes):
        features = extract_features(episode, episodes[:index], avg_intervals)
        result = classify_context(features, weights)
        classified.append(episode.with_classification(result.context))

    logger.info(f"Classified {len(classified)} episodes")
    return classified


# =============================================================================
# Weight updates from human feedback
# =============================================================================

def update_weights_from_feedback(
    weights: ContextWeights,
    features: ContextFeatures,
    predicted_context: UsageContext,
    corrected_context: UsageContext,
    learning_rate: float = DEFAULT_LEARNING_RATE
) -> ContextWeights:
    """
    Move classifier adjustments toward a user-corrected label.

    For every indicator active in these features, the corrected context gains
    +learning_rate and the wrongly predicted context loses
    learning_rate * SUPPRESSION_FACTOR.

    Args:
        weights: Current weights (never mutated)
        features: Features of the corrected episode
        predicted_context: What the classifier predicted
        corrected_context: What the user said it actually was
        learning_rate: Size of the boost for the corrected context

    Returns:
        New ContextWeights with correction_count incremented by 1
    """
    adjustments = copy.deepcopy(weights.adjustments)
    active_features = get_active_features(features)

    for feature in active_features:
        boosted = adjustments.setdefault(corrected_context, {})
        boosted[feature] = boosted.get(feature, 0.0) + learning_rate

        suppressed = adjustments.setdefault(predicted_context, {})
        suppressed[feature] = suppressed.get(feature, 0.0) - learning_rate * SUPPRESSION_FACTOR

    logger.info(
        f"Classifier correction #{weights.correction_count + 1}: "
        f"{predicted_context.value} -> {corrected_context.value} "
        f"({len(active_features)} active features, lr={learning_rate})"
    )

    return ContextWeights(
        adjustments=adjustments,
        correction_count=weights.correction_count + 1
    )
