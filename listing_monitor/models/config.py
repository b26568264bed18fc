"""Configuration management for the listing monitor."""

import os
import re
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from listing_monitor.models.data_models import Target, readable_slug


_CRON_FIELD = re.compile(r"^[\d*/,\-]+$")


class TargetConfig(BaseModel):
    """Configuration for a single monitored listing page."""
    id: Optional[str] = Field(default=None, description="Target identifier (derived from URL if omitted)")
    url: str = Field(description="Listing page URL")
    selector_hints: List[str] = Field(default_factory=list, description="Selectors tried before the defaults")
    enabled: bool = Field(default=True, description="Whether the target is monitored")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL format."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError(f"URL must start with http:// or https://, got: {v}")
        return v

    @model_validator(mode='after')
    def default_id(self) -> "TargetConfig":
        if not self.id:
            self.id = readable_slug(self.url) or "target"
        return self

    def to_target(self) -> Target:
        return Target(
            id=self.id,
            url=self.url,
            selector_hints=list(self.selector_hints),
            monitoring_enabled=self.enabled,
        )


class MonitorConfig(BaseModel):
    """Main monitor configuration."""

    # Targets
    targets: List[TargetConfig] = Field(default_factory=list, description="Listing pages to monitor")

    # Scheduling
    monitoring_cron: str = Field(default="*/5 * * * *", description="Cron expression for monitoring cycles")
    statistics_cron: str = Field(default="0 * * * *", description="Cron expression for statistics reports")
    inter_request_delay: float = Field(default=2.0, description="Delay between targets in seconds")
    run_on_start: bool = Field(default=True, description="Run one cycle immediately on start")

    # Circuit breaker
    circuit_breaker_max_consecutive_errors: int = Field(default=5, description="Consecutive errors before opening")
    circuit_breaker_error_rate_threshold: float = Field(default=0.5, description="Windowed error rate (0-1) that opens the circuit")
    circuit_breaker_window_seconds: float = Field(default=3600.0, description="Sliding error window in seconds")
    circuit_breaker_recovery_seconds: float = Field(default=1800.0, description="Delay before automatic half-open")
    circuit_breaker_auto_recovery: bool = Field(default=True, description="Schedule automatic recovery when opened")
    circuit_breaker_min_error_samples: int = Field(default=10, description="Errors required before the rate is evaluated")
    circuit_breaker_check_interval_seconds: float = Field(default=300.0, description="Expected spacing of checks")

    # Lightweight HTTP fetch
    http_connect_timeout: float = Field(default=10.0, description="HTTP connect timeout in seconds")
    http_read_timeout: float = Field(default=30.0, description="HTTP read timeout in seconds")
    http_max_retries: int = Field(default=3, description="Retries for transient HTTP failures")
    http_retry_delay: float = Field(default=2.0, description="Base delay between HTTP retries")
    http_backoff_multiplier: float = Field(default=2.0, description="Backoff multiplier between HTTP retries")
    initial_delay_min: float = Field(default=2.0, description="Minimum randomized delay before a request")
    initial_delay_max: float = Field(default=5.0, description="Maximum randomized delay before a request")
    fetch_timeout: float = Field(default=180.0, description="Overall timeout per fetch strategy")
    max_listings: int = Field(default=3, description="Latest listings tracked per target")

    # Stealth browser fetch
    browser_enabled: bool = Field(default=True, description="Escalate to the headless browser strategy")
    browser_headless: bool = Field(default=True, description="Run the browser headless")
    browser_max_retries: int = Field(default=2, description="Fresh-context retries on challenge pages")
    browser_backoff_base: float = Field(default=1.5, description="Backoff base in seconds between browser attempts")
    browser_navigation_timeout: float = Field(default=60.0, description="Page navigation timeout in seconds")
    warmup_urls: List[str] = Field(
        default=["https://bot.sannysoft.com", "https://www.google.com"],
        description="Neutral pages visited before the first browser attempt"
    )

    # Detection
    notify_on_cold_start: bool = Field(default=False, description="Notify listings found on the first check")

    # Notification
    telegram_bot_token: Optional[str] = Field(default=None, description="Telegram bot token")
    telegram_chat_id: Optional[str] = Field(default=None, description="Telegram chat id")
    error_alert_cooldown: float = Field(default=3600.0, description="Minimum seconds between repeated error alerts")

    # Operating hours
    operating_hours_enabled: bool = Field(default=False, description="Skip cycles outside operating hours")
    operating_start_hour: int = Field(default=6, description="First operating hour (inclusive)")
    operating_end_hour: int = Field(default=22, description="End of operating hours (exclusive)")
    timezone: str = Field(default="Asia/Tokyo", description="Timezone for operating hours and messages")

    # Storage / output / logging
    data_dir: str = Field(default="data", description="Directory for persisted state")
    log_level: str = Field(default="INFO", description="Logging level")
    output_directory: str = Field(default="out", description="Output directory for cycle reports")
    output_filename: str = Field(default="cycle_report.json", description="Cycle report filename")

    @field_validator('monitoring_cron', 'statistics_cron')
    @classmethod
    def validate_cron(cls, v: str) -> str:
        """Validate a five-field cron expression."""
        fields = v.split()
        if len(fields) != 5 or not all(_CRON_FIELD.match(f) for f in fields):
            raise ValueError(f"cron expression must have 5 fields, got: {v!r}")
        return v

    @field_validator('inter_request_delay', 'initial_delay_min', 'initial_delay_max', 'http_retry_delay')
    @classmethod
    def validate_non_negative(cls, v: float, info) -> float:
        if v < 0:
            raise ValueError(f"{info.field_name} must not be negative, got: {v}")
        return v

    @field_validator(
        'fetch_timeout', 'http_connect_timeout', 'http_read_timeout',
        'browser_navigation_timeout', 'circuit_breaker_window_seconds',
        'circuit_breaker_recovery_seconds', 'circuit_breaker_check_interval_seconds'
    )
    @classmethod
    def validate_positive(cls, v: float, info) -> float:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got: {v}")
        return v

    @field_validator('circuit_breaker_max_consecutive_errors', 'max_listings')
    @classmethod
    def validate_positive_int(cls, v: int, info) -> int:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got: {v}")
        return v

    @field_validator('circuit_breaker_error_rate_threshold')
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError(f"circuit_breaker_error_rate_threshold must be in (0, 1], got: {v}")
        return v

    @field_validator('operating_start_hour', 'operating_end_hour')
    @classmethod
    def validate_hour(cls, v: int, info) -> int:
        if not 0 <= v <= 23:
            raise ValueError(f"{info.field_name} must be between 0 and 23, got: {v}")
        return v

    @property
    def output_path(self) -> Path:
        """Get full output file path."""
        return Path(self.output_directory) / self.output_filename

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    def build_targets(self) -> List[Target]:
        """Create runtime targets from the configured entries."""
        return [target.to_target() for target in self.targets]

    # Environment variable overrides
    @classmethod
    def env_overrides(cls) -> Dict:
        """Collect configuration overrides from environment variables."""
        overrides: Dict = {}

        env_mappings = {
            "MONITOR_INTERVAL": "monitoring_cron",
            "MONITOR_STATISTICS_INTERVAL": "statistics_cron",
            "MONITOR_DATA_DIR": "data_dir",
            "MONITOR_LOG_LEVEL": "log_level",
            "MONITOR_INTER_REQUEST_DELAY": "inter_request_delay",
            "MONITOR_FETCH_TIMEOUT": "fetch_timeout",
            "MONITOR_BROWSER_ENABLED": "browser_enabled",
            "MONITOR_BROWSER_HEADLESS": "browser_headless",
            "TELEGRAM_BOT_TOKEN": "telegram_bot_token",
            "TELEGRAM_CHAT_ID": "telegram_chat_id",
        }

        for env_var, field_name in env_mappings.items():
            if env_var in os.environ:
                value = os.environ[env_var]
                # Convert to appropriate type based on field type
                field_info = cls.model_fields[field_name]
                if field_info.annotation == int:
                    overrides[field_name] = int(value)
                elif field_info.annotation == float:
                    overrides[field_name] = float(value)
                elif field_info.annotation == bool:
                    overrides[field_name] = value.strip().lower() in ("1", "true", "yes", "on")
                else:
                    overrides[field_name] = value

        if os.environ.get("MONITOR_URLS"):
            overrides["targets"] = [{"url": url} for url in parse_url_list(os.environ["MONITOR_URLS"])]

        return overrides


def parse_url_list(raw: str) -> List[str]:
    """Split a newline or semicolon separated URL list."""
    cleaned = raw.strip().strip('"')
    separator = "\n" if "\n" in cleaned else ";"
    return [url.strip() for url in cleaned.split(separator) if url.strip()]


class ConfigManager:
    """Manages configuration loading with override precedence."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or Path("config/config.yaml")
        self._config: Optional[MonitorConfig] = None

    def load_config(self, cli_overrides: Optional[Dict] = None) -> MonitorConfig:
        """
        Load configuration with override precedence: CLI > ENV > YAML.

        Each tier can override values from lower tiers, with CLI flags
        having the highest precedence. Targets from ``MONITOR_URLS`` are
        appended to the YAML targets rather than replacing them.

        Args:
            cli_overrides: Optional dictionary of CLI flag overrides

        Returns:
            Fully merged MonitorConfig instance

        Raises:
            ValueError: If configuration validation fails
        """
        config_dict: Dict = {}

        # Load from YAML file if it exists
        if self.config_file.exists():
            with open(self.config_file, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    config_dict.update(yaml_config)

        # Apply environment variable overrides
        env_dict = MonitorConfig.env_overrides()
        env_targets = env_dict.pop("targets", [])
        config_dict.update(env_dict)
        if env_targets:
            known = {t.get("url") if isinstance(t, dict) else t for t in config_dict.get("targets", [])}
            config_dict["targets"] = list(config_dict.get("targets", [])) + [
                t for t in env_targets if t["url"] not in known
            ]

        # Apply CLI overrides (highest precedence)
        if cli_overrides:
            # Filter out None values from CLI
            cli_overrides = {k: v for k, v in cli_overrides.items() if v is not None}
            config_dict.update(cli_overrides)

        self._config = MonitorConfig(**config_dict)
        return self._config

    @property
    def config(self) -> MonitorConfig:
        """Get the loaded configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config
