"""Configuration management for shellrelay.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides with the SHELLRELAY_ prefix.
"""

from shellrelay.config.settings import ConfigurationError, Settings, load_settings

__all__ = ["ConfigurationError", "Settings", "load_settings"]
