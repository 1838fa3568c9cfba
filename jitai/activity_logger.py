"""
Activity Logger Utility

Provides activity logging for intervention selection and feedback events.
Logs are written to JSONL files (one per service per day) for easy parsing
and offline analysis of how the adaptation evolves.
"""

import json
import os
import logging
import threading
from datetime import datetime
from typing import Dict, Optional, Any, List
from pathlib import Path

from jitai.config_loader import get_section

logger = logging.getLogger(__name__)

# Base directory for activity logs (env var wins over config)
BASE_LOG_DIR = os.getenv(
    "JITAI_ACTIVITY_LOG_DIR",
    get_section("activity_logger").get("base_log_dir", "data/activity_logs")
)

INTERVENTION_SERVICE = "intervention"
FEEDBACK_SERVICE = "feedback"

# Locks for thread-safe file writing
_locks = {
    INTERVENTION_SERVICE: threading.Lock(),
    FEEDBACK_SERVICE: threading.Lock(),
}


def get_log_dir(service: str) -> str:
    return os.path.join(BASE_LOG_DIR, service)


def _get_log_file(service: str, day: Optional[datetime] = None) -> str:
    """
    Get log file path for a service and day.

    Args:
        service: Service name ("intervention", "feedback")
        day: Day of the log file. Defaults to today.

    Returns:
        Path to log file
    """
    log_dir = get_log_dir(service)
    os.makedirs(log_dir, exist_ok=True)
    stamp = (day or datetime.now()).strftime("%Y%m%d")
    return os.path.join(log_dir, f"{service}_activity_{stamp}.jsonl")


def _append(service: str, log_entry: Dict[str, Any]):
    try:
        log_file = _get_log_file(service)
        with _locks[service]:
            with open(log_file, 'a', encoding='utf-8') as f:
                f.write(json.dumps(log_entry, ensure_ascii=False) + '\n')
        logger.debug(f"Logged {service} activity to {log_file}")
    except OSError as e:
        logger.warning(f"Failed to log {service} activity: {e}", exc_info=True)


def log_intervention_activity(
    user_id: str,
    timestamp: datetime,
    status: str,  # "delivered", "skipped"
    episode_id: Optional[str] = None,
    context: Optional[str] = None,
    context_confidence: Optional[float] = None,
    level: Optional[str] = None,
    intervention_id: Optional[str] = None,
    in_focus_session: bool = False,
    pickup_count: Optional[int] = None,
    compulsiveness_score: Optional[float] = None
):
    """
    Log one intervention decision.

    Args:
        user_id: User identifier
        timestamp: Decision timestamp
        status: "delivered" if an intervention was produced, else "skipped"
        episode_id: Triggering usage episode
        context: Classified usage context
        context_confidence: Classifier confidence for that context
        level: Intervention level (if delivered)
        intervention_id: Intervention id (if delivered)
        in_focus_session: Whether a focus session was active
        pickup_count: Pickups in the analysis window
        compulsiveness_score: Compulsiveness of the analysis window
    """
    _append(INTERVENTION_SERVICE, {
        "timestamp": timestamp.isoformat(),
        "logged_at": datetime.now().isoformat(),
        "user_id": user_id,
        "status": status,
        "episode_id": episode_id,
        "classification": {
            "context": context,
            "confidence": context_confidence
        },
        "intervention": {
            "id": intervention_id,
            "level": level
        },
        "pattern": {
            "pickup_count": pickup_count,
            "compulsiveness_score": compulsiveness_score
        },
        "in_focus_session": in_focus_session
    })


def log_feedback_activity(
    user_id: str,
    timestamp: datetime,
    status: str,  # "applied", "duplicate"
    intervention_id: str,
    level: Optional[str] = None,
    context: Optional[str] = None,
    helpful: Optional[bool] = None,
    outcome: Optional[str] = None,
    success: Optional[bool] = None,
    corrected_context: Optional[str] = None,
    correction_count: Optional[int] = None,
    total_feedback: Optional[int] = None
):
    """
    Log one feedback event.

    Args:
        user_id: User identifier
        timestamp: Feedback timestamp
        status: "applied", or "duplicate" when the store rejected it
        intervention_id: Intervention the feedback refers to
        level: Intervention level that was delivered
        context: Context the bandit update was keyed on
        helpful: User's helpful flag
        outcome: Reported outcome
        success: Bandit success flag derived from helpful/outcome
        corrected_context: Context the user corrected to (if any)
        correction_count: Classifier correction count after the update
        total_feedback: Bandit feedback count after the update
    """
    _append(FEEDBACK_SERVICE, {
        "timestamp": timestamp.isoformat(),
        "logged_at": datetime.now().isoformat(),
        "user_id": user_id,
        "status": status,
        "intervention_id": intervention_id,
        "bandit": {
            "context": context,
            "level": level,
            "success": success,
            "total_feedback": total_feedback
        },
        "feedback": {
            "helpful": helpful,
            "outcome": outcome,
            "corrected_context": corrected_context
        },
        "classifier": {
            "correction_count": correction_count
        }
    })


def read_activity_logs(
    service: str,
    limit: int = 100,
    user_id: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Read activity logs for a service.

    Args:
        service: Service name ("intervention", "feedback")
        limit: Maximum number of entries to return
        user_id: Optional filter by user_id

    Returns:
        List of log entries (newest first)
    """
    log_dir = get_log_dir(service)
    if not os.path.exists(log_dir):
        return []

    all_entries = []
    for log_file in Path(log_dir).glob("*.jsonl"):
        try:
            with open(log_file, 'r', encoding='utf-8') as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if user_id and entry.get("user_id") != user_id:
                        continue
                    all_entries.append(entry)
        except OSError as e:
            logger.warning(f"Error reading log file {log_file}: {e}")
            continue

    def get_sort_key(entry):
        try:
            return datetime.fromisoformat(entry.get("logged_at", "")).timestamp()
        except ValueError:
            return 0

    all_entries.sort(key=get_sort_key, reverse=True)
    return all_entries[:limit]
