"""
Intervention Engine

This module decides whether to intervene on a classified pickup and at what
intrusiveness level, and maintains the Thompson Sampling bandit state.

Selection combines a deterministic graduated-response ladder with a
Beta-Bernoulli bandit over (context, level) arms. The ladder is used when no
arm exists for the context and as a ceiling on the bandit when there is
little evidence of compulsive use.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple
import logging
import uuid

import numpy as np

from jitai.config_loader import get_section
from jitai.models import (
    INTRUSIVENESS_ORDER,
    AdaptationState,
    ArmEstimate,
    BanditArm,
    Intervention,
    InterventionLevel,
    UsageContext,
    UsagePattern,
)
from jitai.pattern_analyzer import to_minutes
from jitai.sampling import beta_sample, make_rng

logger = logging.getLogger(__name__)

# Load configuration
_engine_config = get_section("intervention_engine")

SAFETY_COMPULSIVENESS_THRESHOLD = _engine_config.get("safety_compulsiveness_threshold", 0.3)
MAX_UNCLAMPED_RANK = _engine_config.get("max_unclamped_rank", 2)

# Contexts and levels the bandit learns over
BANDIT_CONTEXTS = [
    UsageContext.BOREDOM_HABIT,
    UsageContext.ANXIETY_CHECK,
    UsageContext.TRANSITION_MOMENT,
    UsageContext.SOCIAL_RESPONSE,
]
BANDIT_LEVELS = [
    InterventionLevel.AWARENESS_NUDGE,
    InterventionLevel.FRICTION_DELAY,
    InterventionLevel.REFLECTION_PROMPT,
    InterventionLevel.SOFT_LOCK,
]

# Contexts that only warrant an intervention inside a focus session
FOCUS_ONLY_CONTEXTS = (UsageContext.INTENTIONAL_TASK, UsageContext.WORK_BREAK)

MESSAGE_TEMPLATES = {
    InterventionLevel.AWARENESS_NUDGE:
        "You've picked up your phone {pickups} times in the last hour. "
        "That's {minutes} minutes of screen time.",
    InterventionLevel.FRICTION_DELAY:
        "Taking a moment before opening this app. 5... 4... 3... 2... 1...",
    InterventionLevel.REFLECTION_PROMPT:
        "Before you continue, what were you planning to do? "
        "If you can't answer in 3 seconds, this might be a habit pickup.",
    InterventionLevel.USAGE_SUMMARY:
        "Today so far: {pickups} pickups, {minutes} minutes of screen time. "
        "Your focus session is {progress}% complete.",
    InterventionLevel.SOFT_LOCK:
        "Distracting apps are paused for 5 minutes. "
        "Take a breath, you're building something valuable here.",
    InterventionLevel.FULL_LOCK:
        "All non-essential apps are locked. "
        "Your focus session needs your full attention right now.",
}


def render_message(level: InterventionLevel, pattern: UsagePattern, session_progress: int = 0) -> str:
    """Fill the level's message template from pattern statistics."""
    return MESSAGE_TEMPLATES[level].format(
        pickups=pattern.pickup_count,
        minutes=to_minutes(pattern.total_screen_time),
        progress=session_progress
    )


def in_quiet_hours(quiet_hours: Iterable[Tuple[int, int]], hour: int) -> bool:
    return any(start <= hour < end for start, end in quiet_hours)


# =============================================================================
# Intervention selection
# =============================================================================

def select_intervention(
    context: UsageContext,
    pattern: UsagePattern,
    adaptation_state: AdaptationState,
    episode_id: str,
    in_focus_session: bool,
    rng: Optional[np.random.Generator] = None,
    current_hour: Optional[int] = None,
    now: Optional[datetime] = None,
    session_progress: int = 0
) -> Optional[Intervention]:
    """
    Select and create an intervention for a classified pickup.

    Args:
        context: Classified usage context
        pattern: Current usage pattern
        adaptation_state: Learned bandit state, opt-outs and quiet hours
        episode_id: ID of the triggering usage episode
        in_focus_session: Whether the user is in an active focus session
        rng: Random generator for the bandit draw
        current_hour: Wall-clock hour from the focus session service.
                      Defaults to the current local hour.
        now: Timestamp for the intervention record. Defaults to now.
        session_progress: Focus session completion percentage for summaries

    Returns:
        Intervention to deliver, or None if no intervention is warranted
    """
    if context in adaptation_state.suppressed_contexts:
        logger.info(f"No intervention: context '{context.value}' is suppressed by the user")
        return None

    if current_hour is None:
        current_hour = datetime.now().hour
    if in_quiet_hours(adaptation_state.quiet_hours, current_hour):
        logger.info(f"No intervention: hour {current_hour} is inside quiet hours")
        return None

    if context in FOCUS_ONLY_CONTEXTS and not in_focus_session:
        logger.info(f"No intervention: '{context.value}' outside a focus session")
        return None

    level = select_level(context, pattern, adaptation_state, in_focus_session, rng)
    if level is None:
        logger.info(f"No intervention: no level selected for '{context.value}'")
        return None

    intervention = Intervention(
        id=f"int-{uuid.uuid4()}",
        timestamp=now or datetime.now(),
        level=level,
        triggering_episode_id=episode_id,
        message=render_message(level, pattern, session_progress),
        acknowledged=False,
        feedback=None,
        outcome=None
    )

    logger.info(
        f"Intervention {intervention.id}: level={level.value}, context={context.value}, "
        f"episode={episode_id}, in_focus_session={in_focus_session}"
    )
    return intervention


def select_level(
    context: UsageContext,
    pattern: UsagePattern,
    state: AdaptationState,
    in_focus_session: bool,
    rng: Optional[np.random.Generator] = None
) -> Optional[InterventionLevel]:
    """
    Select an intervention level with Thompson Sampling and the graduated ladder.

    Without arms for the context the ladder decides. Otherwise one Beta sample
    is drawn per matching arm and the highest wins, unless compulsiveness is
    low and the winner ranks above the unclamped ceiling, in which case the
    ladder decides instead.
    """
    context_arms = [arm for arm in state.arms if arm.context == context]

    if not context_arms:
        level = graduated_response(pattern, in_focus_session)
        logger.debug(f"No bandit arms for '{context.value}', graduated response -> {level.value}")
        return level

    rng = rng if rng is not None else make_rng()

    best_arm = None
    best_sample = -1.0
    for arm in context_arms:
        sample = beta_sample(arm.alpha, arm.beta, rng)
        logger.debug(f"Arm ({arm.context.value}, {arm.level.value}) Beta({arm.alpha}, {arm.beta}) -> {sample:.3f}")
        if sample > best_sample:
            best_arm = arm
            best_sample = sample

    if (pattern.compulsiveness_score < SAFETY_COMPULSIVENESS_THRESHOLD
            and INTRUSIVENESS_ORDER.index(best_arm.level) > MAX_UNCLAMPED_RANK):
        level = graduated_response(pattern, in_focus_session)
        logger.debug(
            f"Bandit chose {best_arm.level.value} with compulsiveness "
            f"{pattern.compulsiveness_score:.2f}; clamped to {level.value}"
        )
        return level

    return best_arm.level


def graduated_response(pattern: UsagePattern, in_focus_session: bool) -> InterventionLevel:
    """Deterministic severity ladder."""
    if in_focus_session:
        if pattern.compulsiveness_score > 0.6:
            return InterventionLevel.SOFT_LOCK
        if pattern.pickup_frequency > 8:
            return InterventionLevel.REFLECTION_PROMPT
        return InterventionLevel.FRICTION_DELAY

    if pattern.compulsiveness_score > 0.7:
        return InterventionLevel.REFLECTION_PROMPT
    if pattern.pickup_frequency > 10:
        return InterventionLevel.USAGE_SUMMARY
    if pattern.pickup_frequency > 6:
        return InterventionLevel.FRICTION_DELAY
    return InterventionLevel.AWARENESS_NUDGE


# =============================================================================
# Adaptation state management
# =============================================================================

def initialize_adaptation(now: Optional[datetime] = None) -> AdaptationState:
    """Fresh state: one Beta(1, 1) arm per bandit (context, level) pair."""
    arms = tuple(
        BanditArm(context=context, level=level, alpha=1.0, beta=1.0, total_pulls=0)
        for context in BANDIT_CONTEXTS
        for level in BANDIT_LEVELS
    )
    return AdaptationState(
        arms=arms,
        suppressed_contexts=(),
        quiet_hours=(),
        total_interventions=0,
        total_feedback=0,
        last_updated=now or datetime.now()
    )


def update_adaptation(
    state: AdaptationState,
    context: UsageContext,
    level: InterventionLevel,
    success: bool,
    now: Optional[datetime] = None
) -> AdaptationState:
    """
    Record one intervention outcome on the matching arm.

    Args:
        state: Current adaptation state (never mutated)
        context: Context the intervention was delivered in
        level: Level that was used
        success: Whether the outcome was positive

    Returns:
        New state. Only the matching arm is replaced; every other arm object
        is carried over as is.
    """
    matched = False
    arms = []
    for arm in state.arms:
        if arm.context == context and arm.level == level:
            arm = arm.model_copy(update={
                "alpha": arm.alpha + (1 if success else 0),
                "beta": arm.beta + (0 if success else 1),
                "total_pulls": arm.total_pulls + 1,
            })
            matched = True
        arms.append(arm)

    if matched:
        logger.info(f"Bandit update ({context.value}, {level.value}): success={success}")
    else:
        logger.warning(f"No bandit arm for ({context.value}, {level.value}); only counters updated")

    return state.model_copy(update={
        "arms": tuple(arms),
        "total_interventions": state.total_interventions + 1,
        "total_feedback": state.total_feedback + 1,
        "last_updated": now or datetime.now(),
    })


def get_arm_estimates(state: AdaptationState) -> List[ArmEstimate]:
    """
    Posterior mean success rate per arm.

    confidence = 1 - 1/sqrt(pulls + 1) is a monotonic proxy, not a statistical
    confidence level.
    """
    return [
        ArmEstimate(
            context=arm.context,
            level=arm.level,
            estimated_success_rate=arm.alpha / (arm.alpha + arm.beta),
            total_pulls=arm.total_pulls,
            confidence=1.0 - 1.0 / (arm.total_pulls + 1) ** 0.5
        )
        for arm in state.arms
    ]


def suppress_context(state: AdaptationState, context: UsageContext) -> AdaptationState:
    """Opt the user out of interventions for a context."""
    if context in state.suppressed_contexts:
        return state
    return state.model_copy(update={"suppressed_contexts": state.suppressed_contexts + (context,)})


def unsuppress_context(state: AdaptationState, context: UsageContext) -> AdaptationState:
    return state.model_copy(update={
        "suppressed_contexts": tuple(c for c in state.suppressed_contexts if c != context)
    })


def set_quiet_hours(state: AdaptationState, quiet_hours: Sequence[Tuple[int, int]]) -> AdaptationState:
    """Replace the quiet-hour intervals. Each is [start_hour, end_hour)."""
    # Validate through the model rather than model_copy, which skips validation
    data = state.model_dump()
    data["quiet_hours"] = [tuple(interval) for interval in quiet_hours]
    return AdaptationState.model_validate(data)
