"""
Human Feedback Loop

This module applies user feedback on a delivered intervention to both
learners at once:
- If the user corrected the context, the context classifier weights move
  toward the corrected label
- The bandit arm for (classified context, delivered level) always records
  the outcome

It also builds the lightweight feedback prompt and computes adaptation
analytics over the feedback history. Nothing here holds state; every
function returns new values for the caller to persist.
"""

from typing import Dict, Optional, Sequence
import logging

from jitai.config_loader import get_section
from jitai.context_classifier import update_weights_from_feedback
from jitai.feature_extractor import extract_features
from jitai.intervention_engine import update_adaptation
from jitai.models import (
    AdaptationMetrics,
    AdaptationPhase,
    AdaptationState,
    ContextOption,
    ContextWeights,
    FeedbackPrompt,
    FeedbackRecord,
    FeedbackResult,
    Intervention,
    InterventionFeedback,
    InterventionOutcome,
    UsageContext,
    UsageEpisode,
)

logger = logging.getLogger(__name__)

# Load configuration
_feedback_config = get_section("feedback_loop")

LEARNING_PHASE_MIN_FEEDBACK = _feedback_config.get("learning_phase_min_feedback", 10)
ADAPTING_CORRECTION_RATE = _feedback_config.get("adapting_correction_rate", 0.2)
IMPROVEMENT_HIGHLIGHT = _feedback_config.get("improvement_highlight", 0.1)

POSITIVE_OUTCOMES = (InterventionOutcome.STOPPED_USAGE, InterventionOutcome.REDUCED_USAGE)

CONTEXT_DISPLAY_NAMES = {
    UsageContext.INTENTIONAL_TASK: "Doing something specific",
    UsageContext.WORK_BREAK: "Taking a break",
    UsageContext.SOCIAL_RESPONSE: "Responding to someone",
    UsageContext.BOREDOM_HABIT: "Habit/boredom pickup",
    UsageContext.ANXIETY_CHECK: "Anxiety check",
    UsageContext.TRANSITION_MOMENT: "Between activities",
    UsageContext.UNKNOWN: "Unknown",
}

# Options offered when the user says the context was wrong
CONTEXT_OPTION_LABELS = {
    UsageContext.INTENTIONAL_TASK: "I was doing something specific",
    UsageContext.WORK_BREAK: "Taking a break",
    UsageContext.SOCIAL_RESPONSE: "Responding to someone",
    UsageContext.BOREDOM_HABIT: "Just a habit",
    UsageContext.ANXIETY_CHECK: "Checking out of anxiety",
    UsageContext.TRANSITION_MOMENT: "Between activities",
}


def is_positive_outcome(outcome: InterventionOutcome, helpful: bool) -> bool:
    return helpful or outcome in POSITIVE_OUTCOMES


def context_display_name(context: UsageContext) -> str:
    return CONTEXT_DISPLAY_NAMES.get(context, "Unknown")


# =============================================================================
# Feedback processing
# =============================================================================

def process_feedback(
    intervention: Intervention,
    feedback: InterventionFeedback,
    outcome: InterventionOutcome,
    episode: UsageEpisode,
    recent_episodes: Sequence[UsageEpisode],
    classifier_weights: ContextWeights,
    adaptation_state: AdaptationState,
    avg_intervals: Optional[Dict[int, float]] = None,
    notification_triggered: bool = False
) -> FeedbackResult:
    """
    Apply one feedback event to the intervention, classifier and bandit.

    Steps:
    1. Mark the intervention acknowledged and attach feedback and outcome
    2. If the user corrected the context to something other than the
       classified one, re-extract features and update classifier weights
    3. success = helpful, or the user stopped/reduced usage
    4. Update the bandit arm for (classified context, intervention level)

    Calling this twice for the same intervention counts it twice; callers that
    need idempotence key feedback by intervention id (see AdaptationStore).

    Args:
        intervention: The delivered intervention
        feedback: The user's feedback
        outcome: What happened after the intervention
        episode: The usage episode that triggered the intervention
        recent_episodes: Usage history for feature re-extraction
        classifier_weights: Current classifier weights
        adaptation_state: Current bandit state
        avg_intervals: Historical average pickup interval per hour
        notification_triggered: Notification signal recorded for the episode

    Returns:
        FeedbackResult with the updated intervention, weights and state
    """
    # Step 1: Update the intervention record
    updated_intervention = intervention.model_copy(update={
        "acknowledged": True,
        "feedback": feedback,
        "outcome": outcome,
    })

    # Step 2: Classifier correction
    updated_weights = classifier_weights
    if (feedback.context_correct is False
            and feedback.corrected_context is not None
            and feedback.corrected_context != episode.classified_context):
        features = extract_features(episode, recent_episodes, avg_intervals, notification_triggered)
        updated_weights = update_weights_from_feedback(
            classifier_weights,
            features,
            episode.classified_context,
            feedback.corrected_context
        )
    elif feedback.context_correct is False:
        logger.debug(f"Context marked wrong for {intervention.id} without a usable correction; weights unchanged")

    # Step 3: Outcome
    success = is_positive_outcome(outcome, feedback.helpful)

    # Step 4: Bandit update
    updated_state = update_adaptation(
        adaptation_state,
        episode.classified_context,
        intervention.level,
        success
    )

    logger.info(
        f"Processed feedback for {intervention.id}: helpful={feedback.helpful}, "
        f"outcome={outcome.value}, success={success}, "
        f"corrected={updated_weights is not classifier_weights}"
    )

    return FeedbackResult(
        updated_intervention=updated_intervention,
        updated_classifier_weights=updated_weights,
        updated_adaptation_state=updated_state,
        success=success
    )


def generate_feedback_prompt(intervention: Intervention, classified_context: UsageContext) -> FeedbackPrompt:
    """Build the one-tap feedback prompt shown after an intervention."""
    return FeedbackPrompt(
        intervention_id=intervention.id,
        question="Was this nudge helpful?",
        context_label=f"We thought this was: {context_display_name(classified_context)}",
        context_options=[
            ContextOption(value=context, label=label)
            for context, label in CONTEXT_OPTION_LABELS.items()
        ]
    )


# =============================================================================
# Adaptation analytics
# =============================================================================

def _positive_rate(records: Sequence[FeedbackRecord]) -> float:
    if not records:
        return 0.0
    positives = sum(1 for r in records if is_positive_outcome(r.outcome, r.feedback.helpful))
    return positives / len(records)


def compute_adaptation_metrics(history: Sequence[FeedbackRecord]) -> AdaptationMetrics:
    """
    Measure how feedback has changed intervention outcomes.

    The chronological history is split at its midpoint; the improvement is the
    positive-outcome rate of the second half minus that of the first.
    """
    if not history:
        return AdaptationMetrics()

    total_feedback = len(history)
    helpful_count = sum(1 for r in history if r.feedback.helpful)
    correction_count = sum(1 for r in history if r.feedback.context_correct is False)
    correction_rate = correction_count / total_feedback

    mid = total_feedback // 2
    outcome_improvement = _positive_rate(history[mid:]) - _positive_rate(history[:mid])

    if total_feedback < LEARNING_PHASE_MIN_FEEDBACK:
        phase = AdaptationPhase.LEARNING
    elif correction_rate > ADAPTING_CORRECTION_RATE:
        phase = AdaptationPhase.ADAPTING
    else:
        phase = AdaptationPhase.STABLE

    return AdaptationMetrics(
        total_feedback=total_feedback,
        helpful_rate=helpful_count / total_feedback,
        context_correction_rate=correction_rate,
        outcome_improvement=outcome_improvement,
        adaptation_phase=phase
    )


def generate_adaptation_summary(metrics: AdaptationMetrics) -> str:
    """Readable summary of how far the system has adapted to the user."""
    if metrics.total_feedback == 0:
        return (
            "Your feedback helps the system learn when to nudge you. "
            "Tap 'helpful' or 'not helpful' after each intervention."
        )

    parts = []
    if metrics.adaptation_phase == AdaptationPhase.LEARNING:
        parts.append(f"Still learning your patterns ({metrics.total_feedback} feedback points so far).")
    elif metrics.adaptation_phase == AdaptationPhase.ADAPTING:
        parts.append(
            f"Actively adapting based on your corrections. "
            f"{metrics.context_correction_rate * 100:.0f}% of context classifications have been corrected."
        )
    else:
        parts.append(
            f"System is well-calibrated to your patterns "
            f"({metrics.helpful_rate * 100:.0f}% of nudges rated helpful)."
        )

    if metrics.outcome_improvement > IMPROVEMENT_HIGHLIGHT:
        parts.append(
            f"Intervention effectiveness has improved by {metrics.outcome_improvement * 100:.0f}% "
            f"since we started learning from your feedback."
        )

    return " ".join(parts)
