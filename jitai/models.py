"""
Pydantic Models for the JITAI Engine

This module defines the closed enumerations, usage records, classifier and
bandit state, and the result structures passed between the pattern analyzer,
context classifier, intervention engine and feedback loop.

State objects (ContextWeights, BanditArm, AdaptationState) and delivered
interventions are frozen: every update produces a new value.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AppCategory(str, Enum):
    """App category of a usage episode. Declaration order is the tie-break order."""
    SOCIAL_MEDIA = "social_media"
    MESSAGING = "messaging"
    ENTERTAINMENT = "entertainment"
    PRODUCTIVITY = "productivity"
    UTILITY = "utility"
    HEALTH = "health"
    EDUCATION = "education"
    UNKNOWN = "unknown"


class UsageContext(str, Enum):
    """Inferred reason for a phone pickup."""
    INTENTIONAL_TASK = "intentional_task"
    WORK_BREAK = "work_break"
    SOCIAL_RESPONSE = "social_response"
    BOREDOM_HABIT = "boredom_habit"
    ANXIETY_CHECK = "anxiety_check"
    TRANSITION_MOMENT = "transition_moment"
    UNKNOWN = "unknown"


class InterventionLevel(str, Enum):
    """Intervention levels, declared in increasing order of intrusiveness."""
    AWARENESS_NUDGE = "awareness_nudge"
    FRICTION_DELAY = "friction_delay"
    REFLECTION_PROMPT = "reflection_prompt"
    USAGE_SUMMARY = "usage_summary"
    SOFT_LOCK = "soft_lock"
    FULL_LOCK = "full_lock"


INTRUSIVENESS_ORDER: List[InterventionLevel] = list(InterventionLevel)


class InterventionOutcome(str, Enum):
    """What the user did after an intervention."""
    STOPPED_USAGE = "stopped_usage"
    REDUCED_USAGE = "reduced_usage"
    CONTINUED_USAGE = "continued_usage"
    INCREASED_USAGE = "increased_usage"
    UNINSTALLED_APP = "uninstalled_app"


class AdaptationPhase(str, Enum):
    LEARNING = "learning"
    ADAPTING = "adapting"
    STABLE = "stable"


# =============================================================================
# Usage records
# =============================================================================

class UsageEpisode(BaseModel):
    """One contiguous span of phone usage."""
    model_config = ConfigDict(frozen=True)

    id: str
    start_time: datetime
    end_time: Optional[datetime] = Field(default=None, description="None while the episode is ongoing")
    duration: Optional[float] = Field(
        default=None, ge=0.0, description="Duration in seconds; derived from end - start when omitted"
    )
    app_category: AppCategory = AppCategory.UNKNOWN
    app_name: Optional[str] = None
    during_focus_session: bool = False
    classified_context: UsageContext = UsageContext.UNKNOWN
    user_corrected_context: Optional[UsageContext] = None

    @model_validator(mode="after")
    def derive_duration(self) -> "UsageEpisode":
        """Check timestamp timezones agree and fill in a missing duration."""
        if self.end_time is not None and (self.start_time.tzinfo is None) != (self.end_time.tzinfo is None):
            raise ValueError("start_time and end_time must both be timezone-aware or both naive")
        if self.duration is None:
            if self.end_time is not None:
                derived = max((self.end_time - self.start_time).total_seconds(), 0.0)
            else:
                derived = 0.0
            # Frozen model: bypass __setattr__ during validation
            object.__setattr__(self, "duration", derived)
        return self

    def with_classification(self, context: UsageContext) -> "UsageEpisode":
        return self.model_copy(update={"classified_context": context})

    def with_correction(self, context: UsageContext) -> "UsageEpisode":
        return self.model_copy(update={"user_corrected_context": context})


class ContextFeatures(BaseModel):
    """Feature snapshot for one episode. Always recomputable, never persisted."""
    time_since_last_pickup: float = Field(ge=0.0, description="Seconds since the previous pickup started")
    hour_of_day: int = Field(ge=0, le=23)
    notification_triggered: bool = False
    current_duration: float = Field(ge=0.0, description="Episode duration so far in seconds")
    app_category: AppCategory
    recent_pickup_count: int = Field(ge=0, description="Pickups in the trailing hour")
    in_focus_session: bool = False
    day_of_week: int = Field(ge=0, le=6, description="0=Sunday, 6=Saturday")
    avg_pickup_interval_for_hour: float = Field(default=900.0, ge=0.0)


class UsagePattern(BaseModel):
    """Rolling summary of a trailing usage window."""
    window_start: datetime
    window_end: datetime
    pickup_count: int = 0
    total_screen_time: float = 0.0
    avg_episode_duration: float = 0.0
    dominant_category: AppCategory = AppCategory.UNKNOWN
    pickup_frequency: float = Field(default=0.0, description="Pickups per hour")
    compulsiveness_score: float = Field(default=0.0, ge=0.0, le=1.0)
    hourly_distribution: List[int] = Field(default_factory=lambda: [0] * 24)

    @field_validator("hourly_distribution")
    @classmethod
    def check_24_buckets(cls, value: List[int]) -> List[int]:
        if len(value) != 24:
            raise ValueError(f"hourly_distribution must have 24 buckets, got {len(value)}")
        return value


class AnomalyReport(BaseModel):
    anomaly_score: float = Field(ge=0.0, le=1.0)
    reason: str


class CategoryUsage(BaseModel):
    category: AppCategory
    count: int
    minutes: int


class DailySummary(BaseModel):
    total_pickups: int
    total_screen_time_minutes: int
    avg_session_seconds: float
    longest_session_minutes: int
    top_categories: List[CategoryUsage] = Field(default_factory=list)
    peak_hour: int = Field(ge=0, le=23)
    compulsiveness_score: float = Field(ge=0.0, le=1.0)


# =============================================================================
# Classifier
# =============================================================================

class ClassificationResult(BaseModel):
    context: UsageContext
    confidence: float = Field(ge=0.0, le=1.0)
    scores: Dict[UsageContext, float] = Field(description="Softmax probability per context")


class ContextWeights(BaseModel):
    """Per-context, per-indicator score adjustments learned from corrections."""
    model_config = ConfigDict(frozen=True)

    adjustments: Dict[UsageContext, Dict[str, float]] = Field(default_factory=dict)
    correction_count: int = Field(default=0, ge=0)

    def get_adjustment(self, context: UsageContext, indicator: str) -> float:
        return self.adjustments.get(context, {}).get(indicator, 0.0)


# =============================================================================
# Bandit state
# =============================================================================

MIN_BETA_PARAMETER = 0.01


class BanditArm(BaseModel):
    """Beta-Bernoulli arm for one (context, level) pair."""
    model_config = ConfigDict(frozen=True)

    context: UsageContext
    level: InterventionLevel
    alpha: float = Field(default=1.0, ge=MIN_BETA_PARAMETER)
    beta: float = Field(default=1.0, ge=MIN_BETA_PARAMETER)
    total_pulls: int = Field(default=0, ge=0)


class AdaptationState(BaseModel):
    """Bandit arms plus user opt-outs and quiet hours. Owned by the caller."""
    model_config = ConfigDict(frozen=True)

    arms: Tuple[BanditArm, ...] = ()
    suppressed_contexts: Tuple[UsageContext, ...] = ()
    quiet_hours: Tuple[Tuple[int, int], ...] = Field(
        default=(), description="[start_hour, end_hour) intervals with no interventions"
    )
    total_interventions: int = 0
    total_feedback: int = 0
    last_updated: datetime

    @field_validator("quiet_hours")
    @classmethod
    def check_hours(cls, value):
        for start, end in value:
            if not (0 <= start <= 24 and 0 <= end <= 24):
                raise ValueError(f"Quiet hours must lie within 0-24, got ({start}, {end})")
        return value


class ArmEstimate(BaseModel):
    context: UsageContext
    level: InterventionLevel
    estimated_success_rate: float
    total_pulls: int
    confidence: float


# =============================================================================
# Interventions and feedback
# =============================================================================

class InterventionFeedback(BaseModel):
    """Lightweight user feedback on one intervention."""
    helpful: bool
    context_correct: Optional[bool] = None
    corrected_context: Optional[UsageContext] = None
    reason: Optional[str] = None
    timestamp: datetime


class Intervention(BaseModel):
    """An intervention delivered to the user."""
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    level: InterventionLevel
    triggering_episode_id: str
    message: str
    acknowledged: bool = False
    feedback: Optional[InterventionFeedback] = None
    outcome: Optional[InterventionOutcome] = None


class FeedbackRecord(BaseModel):
    """One entry of feedback history, used for adaptation analytics."""
    intervention_id: Optional[str] = None
    feedback: InterventionFeedback
    outcome: InterventionOutcome
    timestamp: datetime


class FeedbackResult(BaseModel):
    """Artifacts produced by one feedback event, for the caller to persist."""
    updated_intervention: Intervention
    updated_classifier_weights: ContextWeights
    updated_adaptation_state: AdaptationState
    success: bool


class AdaptationMetrics(BaseModel):
    total_feedback: int = 0
    helpful_rate: float = 0.0
    context_correction_rate: float = 0.0
    outcome_improvement: float = 0.0
    adaptation_phase: AdaptationPhase = AdaptationPhase.LEARNING


class ContextOption(BaseModel):
    value: UsageContext
    label: str


class FeedbackPrompt(BaseModel):
    """Post-intervention prompt: one tap for helpful, optional context correction."""
    intervention_id: str
    question: str
    context_label: str
    context_options: List[ContextOption]
