"""
Comply Agent Configuration Settings

Centralized configuration management using Pydantic Settings.
Supports environment variables and .env files.
"""

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogFormat(str, Enum):
    """Log renderer selection."""
    JSON = "json"
    CONSOLE = "console"


class NotifierKind(str, Enum):
    """Notification backends."""
    LOG = "log"
    WEBHOOK = "webhook"


class Settings(BaseSettings):
    """
    Comply Agent Configuration.

    All settings can be configured via environment variables with the COMPLY_ prefix.
    Example: COMPLY_LOG_LEVEL=DEBUG, COMPLY_NOTIFIER=webhook
    """

    model_config = SettingsConfigDict(
        env_prefix="COMPLY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Identity
    organization_id: str = Field(default="default", description="Organization identifier")
    organization_name: str = Field(default="Default Organization", description="Organization name")
    actor: str = Field(
        default="ComplianceAgent",
        description="Actor recorded on automated incident timeline events"
    )

    # Server settings
    host: str = Field(default="0.0.0.0", description="Control API host")
    port: int = Field(default=8090, description="Control API port")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: LogFormat = Field(default=LogFormat.JSON, description="Log output format")

    # Playbook engine
    max_steps_per_run: int = Field(
        default=100,
        ge=1,
        description="Maximum step visits in one playbook run before it is aborted"
    )
    execution_history_limit: int = Field(
        default=10,
        ge=1,
        description="Default number of ledger entries returned by history queries"
    )
    scan_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Overall deadline for a detection scan (None = no deadline)"
    )
    playbooks_path: Optional[str] = Field(
        default=None,
        description="YAML file or directory with additional playbook definitions"
    )

    # Notifications
    notifier: NotifierKind = Field(
        default=NotifierKind.LOG,
        description="Notification backend: log (structured log only) or webhook"
    )
    slack_webhook_url: Optional[str] = Field(default=None, description="Slack incoming webhook URL")
    email_webhook_url: Optional[str] = Field(default=None, description="Email relay webhook URL")
    jira_webhook_url: Optional[str] = Field(default=None, description="Jira automation webhook URL")
    pagerduty_webhook_url: Optional[str] = Field(default=None, description="PagerDuty events URL")
    generic_webhook_url: Optional[str] = Field(default=None, description="Generic webhook URL")
    notify_timeout: float = Field(default=10.0, description="Notification request timeout in seconds")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    def webhook_urls(self) -> dict[str, str]:
        """Get configured webhook URLs keyed by notification channel."""
        urls = {
            "slack": self.slack_webhook_url,
            "email": self.email_webhook_url,
            "jira": self.jira_webhook_url,
            "pagerduty": self.pagerduty_webhook_url,
            "webhook": self.generic_webhook_url,
        }
        return {channel: url for channel, url in urls.items() if url}


# Global settings instance
settings = Settings()
