"""Configuration module."""

from comply_agent.config.log_config import configure_logging
from comply_agent.config.settings import LogFormat, NotifierKind, Settings, settings

__all__ = ["Settings", "settings", "LogFormat", "NotifierKind", "configure_logging"]
