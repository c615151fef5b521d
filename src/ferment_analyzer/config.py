"""
Configuration management for Ferment Analyzer.

Single source of truth for tunable thresholds, the database location and
the user's timezone. Values load from YAML; anything missing keeps its
default.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from ferment_analyzer.core.models import OutlierOptions
from ferment_analyzer.utils.constants import (
    ALERT_DEDUP_HOURS,
    ALERT_FEED_LIMIT,
    APP_VERSION,
    DEFAULT_EXPECTED_FINAL_GRAVITY,
    DEFAULT_TIMEZONE,
    OUTLIER_HEAD_TAIL_CHECK_SIZE,
    OUTLIER_HEAD_TAIL_REF_SIZE,
    OUTLIER_MID_LOG_THRESHOLD,
    OUTLIER_SMALL_DATASET_THRESHOLD,
    OUTLIER_WINDOW_SIZE,
    RECENT_RAW_READINGS,
    STATUS_FEED_LIMIT,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".ferment_analyzer"


@dataclass
class DatabaseConfig:
    """
    Database configuration.

    Default: ~/.ferment_analyzer/ferment.db
    """
    path: Path = field(default_factory=lambda: DEFAULT_CONFIG_DIR / "ferment.db")
    echo: bool = False

    def ensure_directory(self) -> Path:
        """Ensure database directory exists."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return self.path


@dataclass
class AnalysisConfig:
    """Outlier detection and phase evaluation tuning."""
    window_size: int = OUTLIER_WINDOW_SIZE
    mid_log_threshold: float = OUTLIER_MID_LOG_THRESHOLD
    small_dataset_threshold: float = OUTLIER_SMALL_DATASET_THRESHOLD
    head_tail_check_size: int = OUTLIER_HEAD_TAIL_CHECK_SIZE
    head_tail_ref_size: int = OUTLIER_HEAD_TAIL_REF_SIZE
    expected_final_gravity: float = DEFAULT_EXPECTED_FINAL_GRAVITY

    def outlier_options(self) -> OutlierOptions:
        return OutlierOptions(
            window_size=self.window_size,
            mid_log_threshold=self.mid_log_threshold,
            small_dataset_threshold=self.small_dataset_threshold,
            head_tail_check_size=self.head_tail_check_size,
            head_tail_ref_size=self.head_tail_ref_size,
        )


@dataclass
class AlertConfig:
    """Alert scanning configuration."""
    enabled: bool = True
    dedup_hours: float = ALERT_DEDUP_HOURS
    feed_limit: int = ALERT_FEED_LIMIT


@dataclass
class TimelineConfig:
    """Timeline and day-boundary configuration."""
    timezone: str = DEFAULT_TIMEZONE
    status_feed_limit: int = STATUS_FEED_LIMIT
    recent_raw_readings: int = RECENT_RAW_READINGS


@dataclass
class Config:
    """Main configuration container."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    timeline: TimelineConfig = field(default_factory=TimelineConfig)

    version: str = APP_VERSION

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """
        Load configuration from YAML file.

        Falls back to defaults if file doesn't exist.
        """
        config = cls()

        if config_path is None:
            config_path = DEFAULT_CONFIG_DIR / "config.yaml"

        if config_path.exists():
            try:
                with open(config_path) as f:
                    data = yaml.safe_load(f) or {}

                for section_name in ("database", "analysis", "alerts", "timeline"):
                    section = getattr(config, section_name)
                    for key, value in (data.get(section_name) or {}).items():
                        if not hasattr(section, key):
                            logger.debug(f"Ignoring unknown config key {section_name}.{key}")
                            continue
                        if section_name == "database" and key == "path":
                            value = Path(os.path.expandvars(str(value))).expanduser()
                        setattr(section, key, value)

                logger.info(f"Loaded config from {config_path}")

            except Exception as e:
                logger.warning(f"Failed to load config from {config_path}: {e}")

        return config

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to YAML file."""
        if config_path is None:
            config_path = DEFAULT_CONFIG_DIR / "config.yaml"

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "database": {
                "path": str(self.database.path),
                "echo": self.database.echo,
            },
            "analysis": {
                "window_size": self.analysis.window_size,
                "mid_log_threshold": self.analysis.mid_log_threshold,
                "small_dataset_threshold": self.analysis.small_dataset_threshold,
                "head_tail_check_size": self.analysis.head_tail_check_size,
                "head_tail_ref_size": self.analysis.head_tail_ref_size,
                "expected_final_gravity": self.analysis.expected_final_gravity,
            },
            "alerts": {
                "enabled": self.alerts.enabled,
                "dedup_hours": self.alerts.dedup_hours,
                "feed_limit": self.alerts.feed_limit,
            },
            "timeline": {
                "timezone": self.timeline.timezone,
                "status_feed_limit": self.timeline.status_feed_limit,
                "recent_raw_readings": self.timeline.recent_raw_readings,
            },
        }

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False)

        logger.info(f"Saved config to {config_path}")


# Singleton config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global config instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def reload_config(config_path: Optional[Path] = None) -> Config:
    """Reload configuration from file."""
    global _config
    _config = Config.load(config_path)
    return _config
