"""
Configuration Loader for the JITAI Engine

This module loads configuration from a JSON file and provides fallback defaults.
The file location can be overridden with the JITAI_CONFIG_PATH environment
variable (a .env file is honoured).
"""

import json
import os
import logging
from typing import Dict, Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

# Default configuration (used as fallback)
DEFAULT_CONFIG = {
    "pattern_analyzer": {
        "window_minutes": 60,
        "short_episode_seconds": 30,
        "frequency_anomaly_ratio": 1.5,
        "screen_time_anomaly_ratio": 1.5,
        "compulsiveness_spike": 0.2
    },
    "feature_extractor": {
        "default_gap_seconds": 3600,
        "default_avg_interval_seconds": 900
    },
    "context_classifier": {
        "softmax_temperature": 0.3,
        "unknown_baseline": 0.1,
        "learning_rate": 0.05,
        "suppression_factor": 0.5
    },
    "intervention_engine": {
        "safety_compulsiveness_threshold": 0.3,
        "max_unclamped_rank": 2,
        "min_shape": 0.01
    },
    "feedback_loop": {
        "learning_phase_min_feedback": 10,
        "adapting_correction_rate": 0.2,
        "improvement_highlight": 0.1
    },
    "activity_logger": {
        "base_log_dir": "data/activity_logs"
    }
}

# Cache for loaded config
_config_cache: Dict[str, Any] = None


def load_config(config_path: str = None) -> Dict[str, Any]:
    """
    Load configuration from JSON file.

    Args:
        config_path: Path to config file. If None, uses JITAI_CONFIG_PATH or
                     config.json relative to this module.

    Returns:
        Configuration dictionary. Returns default config if file not found or invalid.
    """
    global _config_cache

    # Return cached config if available
    if _config_cache is not None:
        return _config_cache

    # Determine config file path
    if config_path is None:
        config_path = os.getenv("JITAI_CONFIG_PATH")
    if config_path is None:
        module_dir = os.path.dirname(os.path.abspath(__file__))
        config_path = os.path.join(module_dir, "config.json")

    try:
        if os.path.exists(config_path):
            with open(config_path, 'r', encoding='utf-8') as f:
                config = json.load(f)
            logger.info(f"Loaded configuration from {config_path}")
            _config_cache = _merge_with_defaults(config)
            return _config_cache
        else:
            logger.warning(f"Config file not found at {config_path}, using default configuration")
            _config_cache = DEFAULT_CONFIG
            return DEFAULT_CONFIG
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in config file {config_path}: {e}. Using default configuration.")
        _config_cache = DEFAULT_CONFIG
        return DEFAULT_CONFIG
    except OSError as e:
        logger.error(f"Error loading config file {config_path}: {e}. Using default configuration.")
        _config_cache = DEFAULT_CONFIG
        return DEFAULT_CONFIG


def _merge_with_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay a loaded config onto the defaults, section by section."""
    merged = {section: dict(values) for section, values in DEFAULT_CONFIG.items()}
    for section, values in config.items():
        if isinstance(values, dict) and section in merged:
            merged[section].update(values)
        else:
            merged[section] = values
    return merged


def get_section(name: str) -> Dict[str, Any]:
    """Return one configuration section (empty dict if absent)."""
    return load_config().get(name, {})
