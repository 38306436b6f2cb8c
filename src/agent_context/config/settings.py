"""Environment settings for Agent Context.

Process-level knobs (logging, config file location) come from the
environment or a ``.env`` file; everything else lives in the YAML
configuration handled by :mod:`agent_context.config.loader`.
"""

from pathlib import Path
from typing import Optional, Union

from dotenv import find_dotenv, load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_context.utils.logging import get_logger


logger = get_logger(__name__)


class ContextSettings(BaseSettings):
    """Environment configuration using Pydantic settings.

    This provides validated access to environment variables with
    type conversion and default values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    log_level: str = Field(
        "WARNING",
        alias="AGENT_CONTEXT_LOG_LEVEL",
        description="Console logging level",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
    )
    log_dir: str = Field(
        "logs",
        alias="AGENT_CONTEXT_LOG_DIR",
        description="Directory for log files",
    )
    config_path: Optional[str] = Field(
        None,
        alias="AGENT_CONTEXT_CONFIG_PATH",
        description="YAML configuration file; defaults are used when unset",
    )
    enable_timers: bool = Field(
        True,
        alias="AGENT_CONTEXT_ENABLE_TIMERS",
        description="Run periodic health and performance sweeps",
    )


def load_settings(env_file: Optional[Union[str, Path]] = None) -> ContextSettings:
    """Load ``.env`` into the process environment and read settings.

    Args:
        env_file: Explicit ``.env`` path. When omitted the nearest
            ``.env`` found from the working directory is used.

    Returns:
        Validated settings.
    """
    if env_file is not None:
        env_path = Path(env_file)
        if env_path.exists():
            load_dotenv(env_path, override=False)
            logger.debug(f"Loaded environment from {env_path}")
        else:
            logger.warning(f"Environment file not found: {env_path}")
    else:
        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=False)
            logger.debug(f"Loaded environment from {env_path}")

    return ContextSettings()
