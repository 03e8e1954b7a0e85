#!/usr/bin/env python3
"""
Configuration loader for SpeakUp.
Loads and validates engine thresholds from ~/.config/speakup/config.toml
"""

import sys
import tomllib
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class LiveConfig:
    """Live metrics and ingestion settings"""
    window_seconds: float = 15.0
    speaking_threshold_db: float = -40.0
    min_pause_seconds: float = 0.5
    min_wpm_elapsed_seconds: float = 2.0
    stall_threshold_seconds: float = 3.0
    pause_gap_seconds: float = 0.3


@dataclass
class ScoringWeights:
    """Relative weight of each sub-score in the overall score"""
    clarity: float = 1.0
    pace: float = 1.0
    filler_usage: float = 1.0
    pause_quality: float = 1.0


@dataclass
class ScoringConfig:
    """Post-session scoring thresholds"""
    ideal_wpm_min: float = 130.0
    ideal_wpm_max: float = 170.0
    pace_falloff_per_wpm: float = 1.0
    filler_penalty_per_percent: float = 5.0
    good_pause_min_seconds: float = 0.3
    good_pause_max_seconds: float = 1.5
    ideal_pauses_per_minute_min: float = 2.0
    ideal_pauses_per_minute_max: float = 12.0
    min_duration_seconds: float = 3.0
    plausible_wpm_min: float = 60.0
    plausible_wpm_max: float = 240.0
    recognized_confidence: float = 0.5
    neutral_clarity: float = 80.0
    weights: ScoringWeights = field(default_factory=ScoringWeights)


@dataclass
class DrillConfig:
    """Drill pass/fail thresholds"""
    target_wpm_min: float = 130.0
    target_wpm_max: float = 170.0
    pace_falloff_per_wpm: float = 2.0
    filler_penalty: int = 25
    marker_count: int = 3
    marker_tolerance_seconds: float = 1.0
    marker_pass_fraction: float = 2 / 3
    grace_seconds: float = 2.0
    max_silence_seconds: float = 3.0


@dataclass
class StorageConfig:
    """Persistence settings"""
    database_path: str = "~/.local/share/speakup/practice.db"


@dataclass
class FeedbackConfig:
    """Console feedback settings"""
    show_realtime_feedback: bool = True


@dataclass
class SpeakUpConfig:
    """Complete SpeakUp configuration"""
    live: LiveConfig = field(default_factory=LiveConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    drills: DrillConfig = field(default_factory=DrillConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)


class ConfigLoader:
    """Loads and validates SpeakUp configuration from TOML file"""

    DEFAULT_CONFIG_PATH = Path.home() / ".config/speakup/config.toml"

    # Validation ranges
    SPEAKING_THRESHOLD_MIN = -160.0
    SPEAKING_THRESHOLD_MAX = 0.0
    WINDOW_SECONDS_MIN = 1.0
    WINDOW_SECONDS_MAX = 120.0

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize ConfigLoader.

        Args:
            config_path: Path to config file (default: ~/.config/speakup/config.toml)
        """
        self.config_path = Path(config_path) if config_path else self.DEFAULT_CONFIG_PATH

    def load(self) -> SpeakUpConfig:
        """
        Load and validate configuration from file.

        Returns:
            SpeakUpConfig with validated settings

        Raises:
            SystemExit: On validation errors (with clear error messages)
        """
        # Create default config if file doesn't exist
        if not self.config_path.exists():
            self._create_default_config()
            print(f"✓ Created default config: {self.config_path}", flush=True)
            return SpeakUpConfig()

        # Load TOML file
        try:
            with open(self.config_path, 'rb') as f:
                config_data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            self._error(f"Invalid TOML syntax in config file:\n{e}\n\nPlease fix {self.config_path} and restart.")
        except OSError as e:
            self._error(f"Failed to read config file:\n{e}\n\nPlease check {self.config_path} and restart.")

        config = SpeakUpConfig(
            live=self._load_live_config(config_data.get('live', {})),
            scoring=self._load_scoring_config(config_data.get('scoring', {})),
            drills=self._load_drill_config(config_data.get('drills', {})),
            storage=StorageConfig(
                database_path=str(config_data.get('storage', {}).get(
                    'database_path', StorageConfig.database_path))
            ),
            feedback=FeedbackConfig(
                show_realtime_feedback=bool(config_data.get('feedback', {}).get(
                    'show_realtime_feedback', True))
            ),
        )

        self._validate(config)
        return config

    def _number(self, section: dict, section_name: str, key: str, default: float) -> float:
        """Read an optional numeric key, exiting with a readable error if malformed."""
        value = section.get(key, default)
        try:
            return float(value)
        except (ValueError, TypeError):
            self._error(
                f"Invalid value for '{key}' in [{section_name}]: {value!r}\n"
                f"Must be a number.\n\n"
                f"Please fix {self.config_path} and restart."
            )

    def _load_live_config(self, section: dict) -> LiveConfig:
        defaults = LiveConfig()
        return LiveConfig(
            window_seconds=self._number(section, 'live', 'window_seconds', defaults.window_seconds),
            speaking_threshold_db=self._number(section, 'live', 'speaking_threshold_db', defaults.speaking_threshold_db),
            min_pause_seconds=self._number(section, 'live', 'min_pause_seconds', defaults.min_pause_seconds),
            min_wpm_elapsed_seconds=self._number(section, 'live', 'min_wpm_elapsed_seconds', defaults.min_wpm_elapsed_seconds),
            stall_threshold_seconds=self._number(section, 'live', 'stall_threshold_seconds', defaults.stall_threshold_seconds),
            pause_gap_seconds=self._number(section, 'live', 'pause_gap_seconds', defaults.pause_gap_seconds),
        )

    def _load_scoring_config(self, section: dict) -> ScoringConfig:
        defaults = ScoringConfig()
        weights_section = section.get('weights', {})
        weights = ScoringWeights(
            clarity=self._number(weights_section, 'scoring.weights', 'clarity', 1.0),
            pace=self._number(weights_section, 'scoring.weights', 'pace', 1.0),
            filler_usage=self._number(weights_section, 'scoring.weights', 'filler_usage', 1.0),
            pause_quality=self._number(weights_section, 'scoring.weights', 'pause_quality', 1.0),
        )

        values = {
            name: self._number(section, 'scoring', name, getattr(defaults, name))
            for name in (
                'ideal_wpm_min', 'ideal_wpm_max', 'pace_falloff_per_wpm',
                'filler_penalty_per_percent', 'good_pause_min_seconds',
                'good_pause_max_seconds', 'ideal_pauses_per_minute_min',
                'ideal_pauses_per_minute_max', 'min_duration_seconds',
                'plausible_wpm_min', 'plausible_wpm_max',
                'recognized_confidence', 'neutral_clarity',
            )
        }
        return ScoringConfig(weights=weights, **values)

    def _load_drill_config(self, section: dict) -> DrillConfig:
        defaults = DrillConfig()
        return DrillConfig(
            target_wpm_min=self._number(section, 'drills', 'target_wpm_min', defaults.target_wpm_min),
            target_wpm_max=self._number(section, 'drills', 'target_wpm_max', defaults.target_wpm_max),
            pace_falloff_per_wpm=self._number(section, 'drills', 'pace_falloff_per_wpm', defaults.pace_falloff_per_wpm),
            filler_penalty=int(self._number(section, 'drills', 'filler_penalty', defaults.filler_penalty)),
            marker_count=int(self._number(section, 'drills', 'marker_count', defaults.marker_count)),
            marker_tolerance_seconds=self._number(section, 'drills', 'marker_tolerance_seconds', defaults.marker_tolerance_seconds),
            marker_pass_fraction=self._number(section, 'drills', 'marker_pass_fraction', defaults.marker_pass_fraction),
            grace_seconds=self._number(section, 'drills', 'grace_seconds', defaults.grace_seconds),
            max_silence_seconds=self._number(section, 'drills', 'max_silence_seconds', defaults.max_silence_seconds),
        )

    def _validate(self, config: SpeakUpConfig):
        """Validate cross-field constraints and ranges"""
        live = config.live
        if not (self.WINDOW_SECONDS_MIN <= live.window_seconds <= self.WINDOW_SECONDS_MAX):
            self._error(
                f"ERROR: Invalid window_seconds in config.toml\n"
                f"Found: {live.window_seconds}\n"
                f"Valid range: {self.WINDOW_SECONDS_MIN} to {self.WINDOW_SECONDS_MAX} seconds\n"
                f"- 15.0 = recommended default\n\n"
                f"Please fix {self.config_path} and restart."
            )

        if not (self.SPEAKING_THRESHOLD_MIN <= live.speaking_threshold_db <= self.SPEAKING_THRESHOLD_MAX):
            self._error(
                f"ERROR: Invalid speaking_threshold_db in config.toml\n"
                f"Found: {live.speaking_threshold_db}\n"
                f"Valid range: {self.SPEAKING_THRESHOLD_MIN} to {self.SPEAKING_THRESHOLD_MAX} dB\n"
                f"- -40.0 = recommended default\n\n"
                f"Please fix {self.config_path} and restart."
            )

        scoring = config.scoring
        if scoring.ideal_wpm_min >= scoring.ideal_wpm_max:
            self._error(
                f"ERROR: [scoring] ideal_wpm_min ({scoring.ideal_wpm_min}) must be below "
                f"ideal_wpm_max ({scoring.ideal_wpm_max})\n\n"
                f"Please fix {self.config_path} and restart."
            )
        if scoring.good_pause_min_seconds >= scoring.good_pause_max_seconds:
            self._error(
                f"ERROR: [scoring] good_pause_min_seconds must be below good_pause_max_seconds\n\n"
                f"Please fix {self.config_path} and restart."
            )

        weights = scoring.weights
        weight_values = (weights.clarity, weights.pace, weights.filler_usage, weights.pause_quality)
        if any(w < 0 for w in weight_values) or sum(weight_values) <= 0:
            self._error(
                f"ERROR: [scoring.weights] must be non-negative with a positive sum\n"
                f"Found: {weight_values}\n\n"
                f"Please fix {self.config_path} and restart."
            )

        drills = config.drills
        if drills.target_wpm_min >= drills.target_wpm_max:
            self._error(
                f"ERROR: [drills] target_wpm_min must be below target_wpm_max\n\n"
                f"Please fix {self.config_path} and restart."
            )
        if drills.marker_count < 1:
            self._error(
                f"ERROR: [drills] marker_count must be at least 1\n\n"
                f"Please fix {self.config_path} and restart."
            )

    def _create_default_config(self):
        """Create default configuration file"""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        default_content = """# SpeakUp Configuration

[live]
# Trailing window for live words-per-minute (seconds)
window_seconds = 15.0

# Audio level above which the speaker counts as speaking (dBFS)
# - -40.0 = recommended default
# - Raise toward -30.0 in noisy rooms
speaking_threshold_db = -40.0

# Gaps shorter than this are normal inter-word gaps, not pauses
min_pause_seconds = 0.5

# A producer lagging the other by this long is treated as stalled
stall_threshold_seconds = 3.0

[scoring]
# Ideal speaking pace band (words per minute)
ideal_wpm_min = 130.0
ideal_wpm_max = 170.0

# Sessions shorter than this are flagged but still scored
min_duration_seconds = 3.0

[scoring.weights]
clarity = 1.0
pace = 1.0
filler_usage = 1.0
pause_quality = 1.0

[drills]
target_wpm_min = 130.0
target_wpm_max = 170.0
marker_tolerance_seconds = 1.0
grace_seconds = 2.0
max_silence_seconds = 3.0

[storage]
database_path = "~/.local/share/speakup/practice.db"

[feedback]
show_realtime_feedback = true
"""

        with open(self.config_path, 'w') as f:
            f.write(default_content)

    def _error(self, message: str):
        """Print error message and exit"""
        print(f"\n{message}\n", file=sys.stderr, flush=True)
        sys.exit(1)
