"""
JITAI package for adaptive smartphone-overuse interventions.

This package provides:
- Pattern analyzer: Sliding-window usage statistics, anomalies, daily summaries
- Feature extractor / context classifier: Why the phone was picked up
- Intervention engine: Graduated response plus Thompson Sampling bandit
- Feedback loop: Applies user feedback to classifier and bandit, analytics
- State store: Per-user owner of the adaptation state with persistence
"""

from . import models
from . import pattern_analyzer
from . import feature_extractor
from . import context_classifier
from . import sampling
from . import intervention_engine
from . import feedback_loop
from . import usage_source
from . import state_store

__all__ = [
    'models',
    'pattern_analyzer',
    'feature_extractor',
    'context_classifier',
    'sampling',
    'intervention_engine',
    'feedback_loop',
    'usage_source',
    'state_store'
]
