"""
Simulation Runner: One Day of Adaptive Interventions

Replays a simulated day of phone pickups through the full loop:
classify -> analyze pattern -> select intervention -> simulated feedback.
Prints the daily summary, learned bandit estimates and adaptation summary.

Run with: python testing/run_jitai_simulation.py [--seed 7] [--days 3]
"""

import argparse
import logging
import os
import sys
from datetime import datetime, timedelta

from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from jitai.feedback_loop import generate_feedback_prompt
from jitai.intervention_engine import get_arm_estimates
from jitai.models import InterventionFeedback, InterventionLevel, InterventionOutcome, UsageContext
from jitai.pattern_analyzer import analyze_usage_pattern, compute_daily_summary
from jitai.sampling import make_rng
from jitai.state_store import AdaptationStore
from synthetic_usage import SyntheticUsageSource, average_intervals_by_hour

# Load environment variables
load_dotenv()

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

DEFAULT_USER_ID = "sim-user-00000000-0000-0000-0000-000000000000"

# Focus sessions of the simulated user: [start_hour, end_hour)
FOCUS_SESSIONS = [(9, 12), (14, 17)]

# Chance the simulated user stops or reduces usage after each level
STOP_PROBABILITY = {
    InterventionLevel.AWARENESS_NUDGE: 0.25,
    InterventionLevel.FRICTION_DELAY: 0.55,
    InterventionLevel.REFLECTION_PROMPT: 0.45,
    InterventionLevel.USAGE_SUMMARY: 0.3,
    InterventionLevel.SOFT_LOCK: 0.35,
    InterventionLevel.FULL_LOCK: 0.2,
}


def in_focus_session(moment: datetime) -> bool:
    return any(start <= moment.hour < end for start, end in FOCUS_SESSIONS)


def session_progress(moment: datetime) -> int:
    for start, end in FOCUS_SESSIONS:
        if start <= moment.hour < end:
            elapsed = (moment.hour - start) * 60 + moment.minute
            return int(100 * elapsed / ((end - start) * 60))
    return 0


def simulate_response(level: InterventionLevel, context: UsageContext, rng):
    """Simulated user reaction: an outcome plus occasional context corrections."""
    stopped = rng.random() < STOP_PROBABILITY[level]
    outcome = InterventionOutcome.STOPPED_USAGE if stopped else InterventionOutcome.CONTINUED_USAGE

    corrected_context = None
    if context == UsageContext.BOREDOM_HABIT and rng.random() < 0.2:
        corrected_context = UsageContext.WORK_BREAK

    return outcome, corrected_context


def run_day(store: AdaptationStore, source: SyntheticUsageSource, day: datetime, rng) -> dict:
    episodes = source.fetch_episodes(day, day + timedelta(days=1))
    avg_intervals = average_intervals_by_hour(episodes)
    stats = {"episodes": len(episodes), "delivered": 0, "stopped": 0, "corrections": 0}

    for i, raw in enumerate(episodes):
        focus = in_focus_session(raw.start_time)
        episode = raw.model_copy(update={"during_focus_session": focus})
        history = episodes[:i]

        classification = store.classify(episode, history, avg_intervals)
        episode = episode.with_classification(classification.context)
        pattern = analyze_usage_pattern(history + [episode], now=episode.start_time)

        intervention = store.select_intervention(
            classification.context,
            pattern,
            episode.id,
            focus,
            current_hour=episode.start_time.hour,
            session_progress=session_progress(episode.start_time),
            context_confidence=classification.confidence
        )
        if intervention is None:
            continue

        stats["delivered"] += 1
        prompt = generate_feedback_prompt(intervention, classification.context)
        logger.debug(f"{prompt.question} {prompt.context_label}")

        outcome, corrected_context = simulate_response(intervention.level, classification.context, rng)
        feedback = InterventionFeedback(
            helpful=outcome == InterventionOutcome.STOPPED_USAGE,
            context_correct=False if corrected_context else True,
            corrected_context=corrected_context,
            timestamp=episode.start_time + timedelta(seconds=episode.duration)
        )
        store.submit_feedback(intervention, feedback, outcome, episode, history, avg_intervals)
        stats["stopped"] += outcome == InterventionOutcome.STOPPED_USAGE
        stats["corrections"] += corrected_context is not None

    stats["summary"] = compute_daily_summary(episodes)
    return stats


def print_report(store: AdaptationStore, days: list):
    print("\n" + "=" * 80)
    print("DAILY RESULTS")
    print("=" * 80)
    print(f"{'Day':<12} {'Pickups':>8} {'Screen min':>11} {'Peak hr':>8} {'Delivered':>10} {'Stopped':>8} {'Corrected':>10}")
    for day, stats in days:
        summary = stats["summary"]
        print(
            f"{day:%Y-%m-%d}   {summary.total_pickups:>8} {summary.total_screen_time_minutes:>11} "
            f"{summary.peak_hour:>8} {stats['delivered']:>10} {stats['stopped']:>8} {stats['corrections']:>10}"
        )

    print("\n" + "=" * 80)
    print("BANDIT ESTIMATES")
    print("=" * 80)
    print(f"{'Context':<20} {'Level':<20} {'Success':>8} {'Pulls':>6} {'Conf':>6}")
    for estimate in sorted(get_arm_estimates(store.adaptation_state), key=lambda e: -e.estimated_success_rate):
        print(
            f"{estimate.context.value:<20} {estimate.level.value:<20} "
            f"{estimate.estimated_success_rate:>8.2f} {estimate.total_pulls:>6} {estimate.confidence:>6.2f}"
        )

    metrics = store.metrics()
    print("\n" + "=" * 80)
    print("ADAPTATION")
    print("=" * 80)
    print(f"Phase: {metrics.adaptation_phase.value}")
    print(f"Helpful rate: {metrics.helpful_rate:.2f}")
    print(f"Context correction rate: {metrics.context_correction_rate:.2f}")
    print(f"Classifier corrections: {store.classifier_weights.correction_count}")
    print(store.summary())
    print("=" * 80)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Simulate adaptive interventions over synthetic usage days")
    parser.add_argument(
        "--user-id",
        type=str,
        default=DEFAULT_USER_ID,
        help=f"User identifier (default: {DEFAULT_USER_ID})"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=7,
        help="Seed for usage simulation, bandit draws and simulated responses (default: 7)"
    )
    parser.add_argument(
        "--days",
        type=int,
        default=1,
        help="Number of consecutive days to simulate (default: 1)"
    )
    parser.add_argument(
        "--state-path",
        type=str,
        default=None,
        help="JSON file to load and save adaptation state (default: in-memory only)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        # Per-intervention logs drown the report
        logging.getLogger("jitai").setLevel(logging.WARNING)

    if args.state_path:
        store = AdaptationStore.load(args.state_path, user_id=args.user_id, rng=make_rng(args.seed))
    else:
        store = AdaptationStore(args.user_id, rng=make_rng(args.seed))

    source = SyntheticUsageSource(seed=args.seed)
    response_rng = make_rng(args.seed + 1)
    first_day = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(days=args.days)

    logger.info(f"Simulating {args.days} day(s) for user {args.user_id} (seed {args.seed})")
    days = []
    for offset in range(args.days):
        day = first_day + timedelta(days=offset)
        days.append((day, run_day(store, source, day, response_rng)))

    print_report(store, days)


if __name__ == "__main__":
    main()
