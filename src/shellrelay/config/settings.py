"""Configuration management for shellrelay.

Loads settings from an optional YAML configuration file with environment
variable overrides (SHELLRELAY_SERVER__PORT=9000 and so on). Command-line
flags are applied on top by the CLI.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/shellrelay.yaml")
DEFAULT_PORT = 8888


class ConfigurationError(Exception):
    """Raised when the YAML file or an environment override is invalid."""


def parse_port(value: str | int) -> int:
    """Validate a port given as a decimal string (or int) in 0-65535."""
    text = str(value).strip()
    if not (text.isascii() and text.isdigit()) or int(text) > 0xFFFF:
        raise ValueError(f"Bad port, got: {value}")
    return int(text)


class ServerConfig(BaseModel):
    host: str = Field(default="", description="Bind address; empty means any IPv4 interface")
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    backlog: int = Field(default=64, gt=0)
    poll_timeout: float = Field(default=3.0, gt=0)
    buffer_size: int = Field(default=512, gt=0, description="Max bytes read for one request")


class ClientConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    buffer_size: int = Field(default=1024, gt=0)
    prompt: str = Field(default="$ ")


class LoggingConfig(BaseModel):
    level: str = Field(default="WARNING")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for shellrelay.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "SHELLRELAY_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults

    Raises:
        ConfigurationError: If the YAML cannot be parsed or a value fails
            validation.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data = {}
    if path.exists():
        try:
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid configuration file {path}: {e}") from e
        if not isinstance(yaml_data, dict):
            raise ConfigurationError(f"Invalid configuration file {path}: expected a mapping")
        logger.info("Loaded configuration from %s", path)
    elif config_path:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    try:
        # Init kwargs outrank the environment in pydantic-settings, so the
        # environment values are layered back over the YAML data here.
        env_data = Settings().model_dump(exclude_unset=True)
        return Settings(**_merge(yaml_data, env_data))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {_summarize(e)}") from e
    except SettingsError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _summarize(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
        for item in error.errors()
    )


def _merge(base: dict, override: dict) -> dict:
    """Recursively merge ``override`` into a copy of ``base``."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result
