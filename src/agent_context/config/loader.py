"""Configuration loader for Agent Context.

This module handles loading and parsing YAML configuration files
with proper error handling and validation.
"""

from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import ValidationError

from agent_context.config.models import ContextSystemConfig
from agent_context.utils.exceptions import ConfigurationError
from agent_context.utils.logging import get_logger


logger = get_logger(__name__)


def format_validation_errors(error: ValidationError) -> str:
    """Render pydantic errors as ``loc: msg`` lines."""
    error_messages = []
    for item in error.errors():
        loc = " -> ".join(str(x) for x in item["loc"])
        error_messages.append(f"{loc}: {item['msg']}")
    return "\n".join(error_messages)


class ConfigLoader:
    """Loads and validates configuration from YAML files."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """Initialize the configuration loader.

        Args:
            config_path: Path to the configuration file.
                        Defaults to 'context.yml' in current directory.
        """
        if config_path is None:
            config_path = Path("context.yml")

        self.config_path = Path(config_path)
        self._config: Optional[ContextSystemConfig] = None

    def load(self) -> ContextSystemConfig:
        """Load and validate the configuration file.

        Returns:
            Validated configuration object.

        Raises:
            ConfigurationError: If the configuration is invalid or cannot be loaded.
        """
        if self._config is not None:
            return self._config

        if not self.config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self.config_path}",
                details={"path": str(self.config_path.absolute())},
            )

        try:
            logger.info(f"Loading configuration from: {self.config_path}")
            with open(self.config_path, "r", encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML syntax in configuration file: {e}",
                details={"path": str(self.config_path), "error": str(e)},
            ) from e
        except OSError as e:
            raise ConfigurationError(
                f"Failed to read configuration: {e}",
                details={"path": str(self.config_path), "error_type": type(e).__name__},
            ) from e

        # An empty file means "all defaults"
        if raw_config is None:
            raw_config = {}

        if not isinstance(raw_config, dict):
            raise ConfigurationError(
                "Configuration root must be a mapping",
                details={"path": str(self.config_path)},
            )

        try:
            self._config = ContextSystemConfig(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(
                "Configuration validation failed:\n" + format_validation_errors(e),
                details={"path": str(self.config_path), "errors": e.error_count()},
            ) from e

        logger.info(
            f"Configuration loaded successfully: "
            f"{len(self._config.bootstrap.enabled_enrichers)} enrichers enabled"
        )
        return self._config

    def reload(self) -> ContextSystemConfig:
        """Reload the configuration file.

        Returns:
            Validated configuration object.
        """
        self._config = None
        return self.load()

    @property
    def config(self) -> ContextSystemConfig:
        """Get the loaded configuration, loading it if necessary."""
        if self._config is None:
            self.load()
        return self._config
