"""
Per-user Adaptation Store

The JITAI core only returns new values; this module is the owning wrapper
that holds one user's classifier weights, bandit state and feedback history,
serializes writes, rejects duplicate feedback, and persists to JSON.

Readers take immutable snapshots and never block writers beyond the swap.
"""

import json
import logging
import os
import threading
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np
from pydantic import BaseModel, Field

from jitai import activity_logger
from jitai.context_classifier import classify_context
from jitai.feature_extractor import extract_features
from jitai.feedback_loop import (
    compute_adaptation_metrics,
    generate_adaptation_summary,
    process_feedback,
)
from jitai.intervention_engine import (
    initialize_adaptation,
    select_intervention,
    set_quiet_hours,
    suppress_context,
    unsuppress_context,
)
from jitai.models import (
    AdaptationMetrics,
    AdaptationState,
    ClassificationResult,
    ContextWeights,
    FeedbackRecord,
    FeedbackResult,
    Intervention,
    InterventionFeedback,
    InterventionOutcome,
    UsageContext,
    UsageEpisode,
    UsagePattern,
)
from jitai.sampling import make_rng

logger = logging.getLogger(__name__)


class DuplicateFeedbackError(ValueError):
    """Feedback was already applied for this intervention."""


class StoreSnapshot(BaseModel):
    """Serializable state of one user's store."""
    user_id: str
    classifier_weights: ContextWeights
    adaptation_state: AdaptationState
    feedback_history: List[FeedbackRecord] = Field(default_factory=list)


class AdaptationStore:
    """
    Owns the adaptation state of one user.

    Args:
        user_id: User identifier
        classifier_weights: Initial weights (default: no adjustments)
        adaptation_state: Initial bandit state (default: fresh 16-arm state)
        feedback_history: Previously applied feedback, oldest first
        state_path: JSON file to save to after every write. None disables saving.
        rng: Generator for bandit draws
    """

    def __init__(
        self,
        user_id: str,
        classifier_weights: Optional[ContextWeights] = None,
        adaptation_state: Optional[AdaptationState] = None,
        feedback_history: Optional[Sequence[FeedbackRecord]] = None,
        state_path: Optional[str] = None,
        rng: Optional[np.random.Generator] = None
    ):
        self.user_id = user_id
        self.state_path = state_path
        self._rng = rng if rng is not None else make_rng()
        self._lock = threading.Lock()
        # numpy Generators are not thread-safe
        self._rng_lock = threading.Lock()
        self._weights = classifier_weights or ContextWeights()
        self._state = adaptation_state or initialize_adaptation()
        self._history: Tuple[FeedbackRecord, ...] = tuple(feedback_history or ())
        self._processed_ids: Set[str] = {
            record.intervention_id for record in self._history if record.intervention_id
        }

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------
    @property
    def classifier_weights(self) -> ContextWeights:
        return self._weights

    @property
    def adaptation_state(self) -> AdaptationState:
        return self._state

    @property
    def feedback_history(self) -> Tuple[FeedbackRecord, ...]:
        return self._history

    def snapshot(self) -> StoreSnapshot:
        with self._lock:
            return StoreSnapshot(
                user_id=self.user_id,
                classifier_weights=self._weights,
                adaptation_state=self._state,
                feedback_history=list(self._history)
            )

    def has_feedback(self, intervention_id: str) -> bool:
        return intervention_id in self._processed_ids

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    def classify(
        self,
        episode: UsageEpisode,
        recent_episodes: Sequence[UsageEpisode],
        avg_intervals: Optional[Dict[int, float]] = None,
        notification_triggered: bool = False
    ) -> ClassificationResult:
        features = extract_features(episode, recent_episodes, avg_intervals, notification_triggered)
        return classify_context(features, self._weights)

    def select_intervention(
        self,
        context: UsageContext,
        pattern: UsagePattern,
        episode_id: str,
        in_focus_session: bool,
        current_hour: Optional[int] = None,
        session_progress: int = 0,
        context_confidence: Optional[float] = None
    ) -> Optional[Intervention]:
        """Select an intervention against the current bandit snapshot and log the decision."""
        with self._rng_lock:
            intervention = select_intervention(
                context,
                pattern,
                self._state,
                episode_id,
                in_focus_session,
                rng=self._rng,
                current_hour=current_hour,
                session_progress=session_progress
            )
        activity_logger.log_intervention_activity(
            user_id=self.user_id,
            timestamp=intervention.timestamp if intervention else datetime.now(),
            status="delivered" if intervention else "skipped",
            episode_id=episode_id,
            context=context.value,
            context_confidence=context_confidence,
            level=intervention.level.value if intervention else None,
            intervention_id=intervention.id if intervention else None,
            in_focus_session=in_focus_session,
            pickup_count=pattern.pickup_count,
            compulsiveness_score=pattern.compulsiveness_score
        )
        return intervention

    def metrics(self) -> AdaptationMetrics:
        return compute_adaptation_metrics(self._history)

    def summary(self) -> str:
        return generate_adaptation_summary(self.metrics())

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------
    def submit_feedback(
        self,
        intervention: Intervention,
        feedback: InterventionFeedback,
        outcome: InterventionOutcome,
        episode: UsageEpisode,
        recent_episodes: Sequence[UsageEpisode],
        avg_intervals: Optional[Dict[int, float]] = None,
        notification_triggered: bool = False
    ) -> FeedbackResult:
        """
        Apply feedback for an intervention exactly once.

        Raises:
            DuplicateFeedbackError: If feedback for this intervention id was
                already applied. State is left untouched.
            OSError: If the state file cannot be written. The feedback is not
                applied and may be resubmitted.
        """
        with self._lock:
            if intervention.id in self._processed_ids:
                logger.warning(f"Rejected duplicate feedback for intervention {intervention.id} (user {self.user_id})")
                activity_logger.log_feedback_activity(
                    user_id=self.user_id,
                    timestamp=feedback.timestamp,
                    status="duplicate",
                    intervention_id=intervention.id
                )
                raise DuplicateFeedbackError(f"Feedback already recorded for intervention {intervention.id}")

            result = process_feedback(
                intervention,
                feedback,
                outcome,
                episode,
                recent_episodes,
                self._weights,
                self._state,
                avg_intervals=avg_intervals,
                notification_triggered=notification_triggered
            )

            history = self._history + (FeedbackRecord(
                intervention_id=intervention.id,
                feedback=feedback,
                outcome=outcome,
                timestamp=feedback.timestamp
            ),)

            # Persist first; a failed save leaves the in-memory state untouched
            self._commit_locked(
                weights=result.updated_classifier_weights,
                state=result.updated_adaptation_state,
                history=history
            )
            self._processed_ids.add(intervention.id)

        activity_logger.log_feedback_activity(
            user_id=self.user_id,
            timestamp=feedback.timestamp,
            status="applied",
            intervention_id=intervention.id,
            level=intervention.level.value,
            context=episode.classified_context.value,
            helpful=feedback.helpful,
            outcome=outcome.value,
            success=result.success,
            corrected_context=feedback.corrected_context.value if feedback.corrected_context else None,
            correction_count=result.updated_classifier_weights.correction_count,
            total_feedback=result.updated_adaptation_state.total_feedback
        )
        return result

    def suppress_context(self, context: UsageContext) -> AdaptationState:
        with self._lock:
            self._commit_locked(state=suppress_context(self._state, context))
            return self._state

    def unsuppress_context(self, context: UsageContext) -> AdaptationState:
        with self._lock:
            self._commit_locked(state=unsuppress_context(self._state, context))
            return self._state

    def set_quiet_hours(self, quiet_hours: Sequence[Tuple[int, int]]) -> AdaptationState:
        with self._lock:
            self._commit_locked(state=set_quiet_hours(self._state, quiet_hours))
            return self._state

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------
    def save(self, path: Optional[str] = None):
        with self._lock:
            self._write_snapshot(self._build_snapshot(), path or self.state_path)

    def _build_snapshot(
        self,
        weights: Optional[ContextWeights] = None,
        state: Optional[AdaptationState] = None,
        history: Optional[Tuple[FeedbackRecord, ...]] = None
    ) -> StoreSnapshot:
        return StoreSnapshot(
            user_id=self.user_id,
            classifier_weights=weights if weights is not None else self._weights,
            adaptation_state=state if state is not None else self._state,
            feedback_history=list(history if history is not None else self._history)
        )

    def _commit_locked(
        self,
        weights: Optional[ContextWeights] = None,
        state: Optional[AdaptationState] = None,
        history: Optional[Tuple[FeedbackRecord, ...]] = None
    ):
        """
        Save the new values, then swap them in.

        Raises:
            OSError: If the state file cannot be written. Nothing is swapped.
        """
        self._write_snapshot(self._build_snapshot(weights, state, history), self.state_path)
        if weights is not None:
            self._weights = weights
        if state is not None:
            self._state = state
        if history is not None:
            self._history = history

    def _write_snapshot(self, snapshot: StoreSnapshot, path: Optional[str]):
        if path is None:
            return
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        tmp_path = f"{path}.tmp"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                f.write(snapshot.model_dump_json(indent=2))
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        logger.debug(f"Saved adaptation state for user {self.user_id} to {path}")

    @classmethod
    def load(
        cls,
        path: str,
        user_id: Optional[str] = None,
        rng: Optional[np.random.Generator] = None
    ) -> "AdaptationStore":
        """
        Load a store from JSON, or start fresh if the file does not exist.

        Raises:
            ValueError: If the file belongs to a different user or is not valid state
        """
        if not os.path.exists(path):
            if user_id is None:
                raise ValueError(f"No state file at {path} and no user_id to start a fresh store")
            logger.info(f"No saved state at {path}, starting fresh for user {user_id}")
            return cls(user_id, state_path=path, rng=rng)

        with open(path, 'r', encoding='utf-8') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON in state file {path}: {e}") from e

        snapshot = StoreSnapshot.model_validate(data)
        if user_id is not None and snapshot.user_id != user_id:
            raise ValueError(f"State file {path} belongs to user {snapshot.user_id}, not {user_id}")

        logger.info(
            f"Loaded adaptation state for user {snapshot.user_id} from {path} "
            f"({len(snapshot.feedback_history)} feedback records)"
        )
        return cls(
            snapshot.user_id,
            classifier_weights=snapshot.classifier_weights,
            adaptation_state=snapshot.adaptation_state,
            feedback_history=snapshot.feedback_history,
            state_path=path,
            rng=rng
        )
