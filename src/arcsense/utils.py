"""
Shared helper functions and utilities.

Logging setup, default configuration, configuration persistence/validation and
session result export.
"""

import copy
import json
import logging
import os
from datetime import datetime
from pathlib import Path

from arcsense.errors import ConfigurationError
from arcsense.technique import Technique

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'technique': 'MIG',

    # Marker geometry (20mm marker seen from a camera 150mm behind the tip)
    'geometry': {
        'marker_size_mm': 20.0,
        'focal_length_px': 800.0,
        'max_angle_deg': 30.0,
        'tip_offset_mm': 150.0,
        'frame_width': 640,
        'frame_height': 480,
    },

    # Filter tuning and marker-loss policy
    'fusion': {
        'angle_process_noise': 0.01,
        'angle_measurement_noise': 0.1,
        'distance_process_noise': 0.05,
        'distance_measurement_noise': 0.2,
        'motion_process_noise': 0.01,
        'motion_measurement_noise': 0.1,
        'rotation_control_gain': 0.0,
        'lost_after_ticks': 15,
        'vibration_window': 30,
    },

    # Session aggregation
    'session': {
        'max_samples': 1000,
        'tolerance_threshold': 80.0,
        'duration_seconds': None,  # None = technique default
    },

    # ArUco detection
    'marker_detection': {
        'dictionary': 'DICT_4X4_50',
        'marker_id': None,  # None = largest visible marker
    },

    # Live capture
    'video': {
        'camera_id': 0,
        'fps': 30,
    },
}


def setup_logging(level=logging.INFO):
    """Set up logging configuration.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    LOGGER.debug("Logging initialized")


def get_config(config_path=None):
    """Load configuration from file or return defaults.

    Sections present in the file are merged key by key into the defaults.

    Args:
        config_path: Path to JSON configuration file (optional)

    Returns:
        dict: Configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            LOGGER.warning("Failed to load config from %s: %s", config_path, e)
            return config

        for key, value in loaded_config.items():
            if isinstance(value, dict) and isinstance(config.get(key), dict):
                config[key].update(value)
            else:
                config[key] = value
        LOGGER.info("Configuration loaded from %s", config_path)
    elif config_path:
        LOGGER.warning("Config file %s not found, using defaults", config_path)

    return config


def save_config(config, config_path):
    """Save configuration to file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration file

    Returns:
        bool: True if save successful, False otherwise
    """
    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=4)
    except OSError as e:
        LOGGER.error("Failed to save config to %s: %s", config_path, e)
        return False
    LOGGER.info("Configuration saved to %s", config_path)
    return True


def validate_config(config):
    """Validate configuration parameters.

    Args:
        config: Configuration dictionary

    Returns:
        bool: True if valid, False otherwise
    """
    valid = True

    for section in ('geometry', 'fusion', 'session'):
        if not isinstance(config.get(section), dict):
            LOGGER.error("Missing required config section: %s", section)
            valid = False

    try:
        Technique.from_name(config.get('technique', 'MIG'))
    except ConfigurationError as e:
        LOGGER.error("%s", e)
        valid = False

    geometry = config.get('geometry') or {}
    for key in ('marker_size_mm', 'focal_length_px', 'max_angle_deg', 'frame_width', 'frame_height'):
        value = geometry.get(key)
        if value is not None and value <= 0:
            LOGGER.error("geometry.%s must be positive, got %s", key, value)
            valid = False

    fusion = config.get('fusion') or {}
    for key in ('angle_process_noise', 'angle_measurement_noise', 'distance_process_noise',
                'distance_measurement_noise', 'motion_process_noise'):
        value = fusion.get(key)
        if value is not None and value < 0:
            LOGGER.error("fusion.%s must be non-negative, got %s", key, value)
            valid = False
    for channel in ('angle', 'distance'):
        process = fusion.get(f'{channel}_process_noise')
        measurement = fusion.get(f'{channel}_measurement_noise')
        if process == 0 and measurement == 0:
            LOGGER.error("fusion.%s_process_noise and fusion.%s_measurement_noise cannot both be zero",
                         channel, channel)
            valid = False
    if fusion.get('motion_measurement_noise', 1.0) <= 0:
        LOGGER.error("fusion.motion_measurement_noise must be positive")
        valid = False
    if fusion.get('lost_after_ticks', 1) < 1:
        LOGGER.error("fusion.lost_after_ticks must be at least 1")
        valid = False

    session = config.get('session') or {}
    if session.get('max_samples', 1) < 1:
        LOGGER.error("session.max_samples must be at least 1")
        valid = False
    duration = session.get('duration_seconds')
    if duration is not None and duration <= 0:
        LOGGER.error("session.duration_seconds must be positive")
        valid = False

    if valid:
        LOGGER.debug("Configuration validated successfully")
    return valid


def get_timestamp():
    """Get current timestamp string.

    Returns:
        str: Formatted timestamp
    """
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def save_session_result(result, output_path):
    """Write a session result as JSON.

    Args:
        result: SessionResult to export
        output_path: File path, or a directory to create a timestamped file in

    Returns:
        Path: The written file
    """
    path = Path(output_path)
    if path.is_dir():
        path = path / f"session_{result.technique.value.lower()}_{get_timestamp()}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open('w', encoding='utf-8') as f:
        json.dump(result.to_dict(), f, indent=4)
    LOGGER.info("Session result saved to %s", path)
    return path


def format_session_result(result):
    """Render a session result as a short human-readable report."""
    lines = [
        f"Technique: {result.technique.value}",
        f"Duration:  {result.duration_seconds:.1f}s ({result.sample_count} samples)",
        f"Score:     {result.score} ({result.grade.value})",
        f"In tolerance: {result.time_in_tolerance_ratio * 100:.1f}%",
    ]
    if result.component_scores is not None:
        scores = result.component_scores
        lines.append(
            f"Components: angle {scores.angle:.0f}, distance {scores.distance:.0f}, "
            f"speed {scores.speed:.0f}, stability {scores.stability:.0f}, "
            f"consistency {result.consistency:.0f}"
        )
    lines.append("Feedback:")
    lines.extend(f"  - {line}" for line in result.feedback)
    return "\n".join(lines)
