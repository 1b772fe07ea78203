"""
Configuration management for the course progression core.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
import json

from .exceptions import ConfigurationError


SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class CourseConfig:
    """Course structure and progression settings."""
    num_levels: int = 4
    days_per_level: int = 3
    day_gap_seconds: float = 24 * 60 * 60   # minimum wait between consecutive days
    months_for_rewatch: int = 3              # a month is counted as 30 days
    meditation_gated_level: int = 4          # level that requires the meditation test
    content_urls: List[str] = field(
        default_factory=lambda: ["https://www.w3schools.com/html/mov_bbb.mp4"]
    )

    @property
    def rewatch_expiry_seconds(self) -> float:
        return self.months_for_rewatch * 30 * SECONDS_PER_DAY


@dataclass
class AccessConfig:
    """Daily content access windows (24-hour local time)."""
    windows: List[Dict[str, int]] = field(default_factory=lambda: [
        {"start_hour": 6, "end_hour": 8},
        {"start_hour": 18, "end_hour": 20},
    ])
    countdown_lead_seconds: float = 5 * 60


@dataclass
class MeditationTestConfig:
    """Meditation test capture and pass criteria."""
    min_minutes: float = 30.0
    min_closed_pct: float = 90.0
    max_head_move_factor: float = 0.05   # per minute of the required duration
    max_hand_move_factor: float = 0.05
    min_hand_stability: float = 0.5
    max_duration_minutes: float = 60.0
    ear_threshold: float = 0.18
    snapshot_interval_frames: int = 30
    pass_policy: str = "always_pass"     # always_pass, enforce_thresholds


@dataclass
class SyncConfig:
    """Remote progress store settings."""
    base_url: str = "http://localhost:5000/api"
    timeout_seconds: float = 10.0


@dataclass
class LoggingConfig:
    """Logging settings."""
    enable_file_logging: bool = False
    log_dir: str = "logs"
    log_level: str = "INFO"
    console_level: str = "ERROR"


SECTIONS = ['course', 'access', 'meditation', 'sync', 'logging']
PASS_POLICIES = ('always_pass', 'enforce_thresholds')


class Config:
    """Main configuration class for the course progression core."""

    def __init__(self, config_file: Optional[str] = None):
        """Initialize configuration with optional config file."""
        self.course = CourseConfig()
        self.access = AccessConfig()
        self.meditation = MeditationTestConfig()
        self.sync = SyncConfig()
        self.logging = LoggingConfig()

        if config_file and os.path.exists(config_file):
            self.load_from_file(config_file)

    def load_from_file(self, config_file: str) -> None:
        """Load configuration from JSON file."""
        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Could not load config file {config_file}: {e}") from e

        self.update_from_dict(config_data)

    def update_from_dict(self, config_data: Dict[str, Any]) -> None:
        """Apply a section -> {field: value} mapping; unknown keys are ignored."""
        for section_name, section_data in config_data.items():
            if section_name in SECTIONS and isinstance(section_data, dict):
                section = getattr(self, section_name)
                for key, value in section_data.items():
                    if hasattr(section, key):
                        setattr(section, key, value)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Convert each config section to a dictionary."""
        config_data = {}
        for section_name in SECTIONS:
            section = getattr(self, section_name)
            config_data[section_name] = {
                key: getattr(section, key)
                for key in section.__dataclass_fields__.keys()
            }
        return config_data

    def save_to_file(self, config_file: str) -> None:
        """Save current configuration to JSON file."""
        directory = os.path.dirname(config_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(config_file, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def validate_config(self) -> bool:
        """Validate configuration settings. Raises ConfigurationError listing every problem."""
        errors = []

        # Course structure
        if self.course.num_levels <= 0:
            errors.append("Number of levels must be positive")

        if self.course.days_per_level <= 0:
            errors.append("Days per level must be positive")

        if self.course.day_gap_seconds <= 0:
            errors.append("Day gap duration must be positive")

        if self.course.months_for_rewatch <= 0:
            errors.append("Rewatch expiry months must be positive")

        if not 2 <= self.course.meditation_gated_level <= max(self.course.num_levels, 2):
            errors.append("Meditation gated level must be between 2 and the number of levels")

        if not self.course.content_urls:
            errors.append("At least one content URL is required")

        # Access windows
        for index, window in enumerate(self.access.windows):
            start = window.get('start_hour') if isinstance(window, dict) else None
            end = window.get('end_hour') if isinstance(window, dict) else None
            if not isinstance(start, int) or not isinstance(end, int):
                errors.append(f"Access window {index} needs integer start_hour and end_hour")
                continue
            if not (0 <= start <= 23 and 0 <= end <= 23):
                errors.append(f"Access window {index} hours must be within 0-23")
            elif end <= start:
                errors.append(f"Access window {index} ends before it starts ({start}-{end})")

        # Meditation test
        meditation = self.meditation
        if meditation.min_minutes <= 0:
            errors.append("Meditation minimum minutes must be positive")

        if not 0 <= meditation.min_closed_pct <= 100:
            errors.append("Minimum eyes-closed percentage must be between 0 and 100")

        if meditation.max_head_move_factor < 0 or meditation.max_hand_move_factor < 0:
            errors.append("Movement factors must not be negative")

        if not 0 < meditation.min_hand_stability <= 1:
            errors.append("Minimum hand stability must be within (0, 1]")

        if meditation.max_duration_minutes <= 0:
            errors.append("Maximum test duration must be positive")

        if meditation.ear_threshold <= 0:
            errors.append("EAR threshold must be positive")

        if meditation.snapshot_interval_frames <= 0:
            errors.append("Snapshot interval must be positive")

        if meditation.pass_policy not in PASS_POLICIES:
            errors.append(f"Pass policy must be one of {', '.join(PASS_POLICIES)}")

        # Sync
        if self.sync.timeout_seconds <= 0:
            errors.append("Sync timeout must be positive")

        if errors:
            raise ConfigurationError(
                "Configuration validation errors: " + "; ".join(errors), errors
            )

        return True


# Global configuration instance
config = Config()

# Default configuration file path
DEFAULT_CONFIG_FILE = os.environ.get(
    "MEDITATION_COURSE_CONFIG", "data/configs/default_config.json"
)

# Load default configuration if available
if os.path.exists(DEFAULT_CONFIG_FILE):
    config.load_from_file(DEFAULT_CONFIG_FILE)
    config.validate_config()
