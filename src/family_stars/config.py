"""
Configuration management for Family Stars

Dataclass sections with sensible defaults, an optional JSON config file and
environment variable overrides.
"""

import json
import os
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, asdict, field
import logging


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class DatabaseConfig:
    """Database configuration."""

    url: str = "sqlite:///family_stars.db"
    echo: bool = False
    pool_pre_ping: bool = True
    log_queries: bool = False  # Enable query logging for performance analysis


@dataclass
class ServerConfig:
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    auto_reload: bool = False
    allowed_origins: List[str] = field(
        default_factory=lambda: ["http://127.0.0.1:8000", "http://localhost:8000"]
    )


@dataclass
class CelebrationConfig:
    """Timing of the celebration queue."""

    visible_seconds: float = 2.0  # How long a celebration stays on screen
    fade_seconds: float = 0.3  # Fade buffer before the next one may start
    poll_interval_seconds: float = 0.1


@dataclass
class AppConfig:
    """Main application configuration."""

    app_name: str = "Family Stars"
    version: str = "1.0.0"
    description: str = "Progression ledger and celebration pipeline for family task rewards"

    # Logging
    log_level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"

    # Environment
    is_development: bool = False


@dataclass
class FamilyStarsConfig:
    """Complete configuration for Family Stars."""

    app: AppConfig
    server: ServerConfig
    database: DatabaseConfig
    celebrations: CelebrationConfig

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "app": asdict(self.app),
            "server": asdict(self.server),
            "database": asdict(self.database),
            "celebrations": asdict(self.celebrations),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FamilyStarsConfig":
        """Create from dictionary."""
        return cls(
            app=AppConfig(**data.get("app", {})),
            server=ServerConfig(**data.get("server", {})),
            database=DatabaseConfig(**data.get("database", {})),
            celebrations=CelebrationConfig(**data.get("celebrations", {})),
        )


class ConfigManager:
    """Manages configuration loading, saving, and environment overrides."""

    def __init__(self):
        self.config_file: Optional[Path] = None
        self.config: Optional[FamilyStarsConfig] = None

    def detect_environment(self) -> Dict[str, Any]:
        """Read environment overrides."""
        debug = _env_flag("FAMILY_STARS_DEBUG", False)
        return {
            "debug": debug,
            "is_development": _env_flag("FAMILY_STARS_DEV_MODE", False),
            "database_url": os.getenv("FAMILY_STARS_DATABASE_URL"),
            "log_to_file": _env_flag("FAMILY_STARS_LOG_TO_FILE", True),
            "log_dir": os.getenv("FAMILY_STARS_LOG_DIR"),
        }

    def get_config_file_path(self) -> Path:
        """Get the path for the config file."""
        config_dir = os.getenv("FAMILY_STARS_CONFIG_DIR")
        if config_dir:
            return Path(config_dir) / "config.json"
        return Path(__file__).parent.parent.parent / "data" / "config.json"

    def _apply_environment(self, config: FamilyStarsConfig) -> FamilyStarsConfig:
        env_info = self.detect_environment()

        if env_info["database_url"]:
            config.database.url = env_info["database_url"]
        if env_info["debug"]:
            config.server.debug = True
            config.app.log_level = "DEBUG"
        if env_info["is_development"]:
            config.app.is_development = True
        if env_info["log_dir"]:
            config.app.log_dir = env_info["log_dir"]
        config.app.log_to_file = config.app.log_to_file and env_info["log_to_file"]
        return config

    def create_default_config(self) -> FamilyStarsConfig:
        """Create default configuration with environment overrides applied."""
        config = FamilyStarsConfig(
            app=AppConfig(),
            server=ServerConfig(),
            database=DatabaseConfig(),
            celebrations=CelebrationConfig(),
        )
        return self._apply_environment(config)

    def load_config(self) -> FamilyStarsConfig:
        """Load configuration from file or create default."""
        self.config_file = self.get_config_file_path()

        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    data = json.load(f)

                self.config = self._apply_environment(FamilyStarsConfig.from_dict(data))
                logging.info(f"Loaded configuration from {self.config_file}")

            except (OSError, ValueError, TypeError) as e:
                logging.warning(f"Failed to load config from {self.config_file}: {e}")
                logging.info("Creating default configuration")
                self.config = self.create_default_config()
        else:
            self.config = self.create_default_config()

        return self.config

    def get(self) -> FamilyStarsConfig:
        """Return the loaded configuration, loading it on first use."""
        if self.config is None:
            self.load_config()
        return self.config

    def reset(self) -> None:
        """Forget the loaded configuration so the next access reloads it."""
        self.config = None

    def save_config(self, config: Optional[FamilyStarsConfig] = None) -> bool:
        """Save configuration to file."""
        if config is None:
            config = self.config

        if config is None:
            logging.error("No configuration to save")
            return False

        try:
            if self.config_file is None:
                self.config_file = self.get_config_file_path()

            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(config.to_dict(), f, indent=2, ensure_ascii=False)

            logging.info(f"Saved configuration to {self.config_file}")
            return True

        except OSError as e:
            logging.error(f"Failed to save config to {self.config_file}: {e}")
            return False

    def validate_config(self) -> List[str]:
        """Validate configuration and return list of warnings/errors."""
        config = self.get()
        issues = []

        timing = config.celebrations
        if timing.visible_seconds <= 0:
            issues.append("celebrations.visible_seconds must be positive")
        if timing.fade_seconds < 0:
            issues.append("celebrations.fade_seconds must not be negative")
        if timing.poll_interval_seconds <= 0:
            issues.append("celebrations.poll_interval_seconds must be positive")

        db_url = config.database.url
        if db_url.startswith("sqlite:///") and db_url != "sqlite:///:memory:":
            db_dir = Path(db_url.replace("sqlite:///", "")).parent
            if db_dir.exists() and not os.access(db_dir, os.W_OK):
                issues.append(f"Database directory is not writable: {db_dir}")

        return issues


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> FamilyStarsConfig:
    """Get the current configuration."""
    return config_manager.get()


def get_database_url() -> str:
    """Get the database URL."""
    return get_config().database.url


def get_celebration_config() -> CelebrationConfig:
    """Get celebration queue timing."""
    return get_config().celebrations
