"""Configuration module for the month-end review service."""

from monthend.config.logging import bind_command_context, configure_logging
from monthend.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings", "configure_logging", "bind_command_context"]
