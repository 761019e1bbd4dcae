"""This module is used to set up all the basic configuration for later use."""

import sys
from loguru import logger
import yaml
from typing import Any
from ldap_class.exceptions import ConfigurationError

ENVIRONMENTS = ("noop", "prod")


class BasicConfig:
    """
    This class is used to set up all the basic configuration for later use.

    Parameters
    ----------
    config_file :
        Path of the main YAML configuration file.
    environment :
        ``noop`` for a dry run (searches only), ``prod`` to write.
    """

    def __init__(self, config_file: str, environment: str = "noop") -> None:
        """Initialization of the class."""
        if environment not in ENVIRONMENTS:
            raise ConfigurationError(
                f"Unknown environment '{environment}', expected one of "
                f"{', '.join(ENVIRONMENTS)}"
            )
        self.config_file = config_file
        self.environment = environment

    @staticmethod
    def _load_yaml_file(yaml_file: str) -> Any:
        """Load the requested YAML file.

        Parameters
        ----------
        yaml_file :
            The path of the file to load.

        Returns
        -------
        Dictionary of the loaded YAML file.

        Raises
        ------
        ConfigurationError
            The file can not be read or parsed.
        """
        try:
            with open(yaml_file, "r") as stream:
                return yaml.safe_load(stream)
        except (OSError, yaml.YAMLError) as exc:
            logger.error("Unable to open file:")
            logger.error(exc)
            raise ConfigurationError(f"Unable to load {yaml_file}: {exc}") from exc

    def _load_config_file(self) -> Any:
        """Load the main configuration YAML file.

        Returns
        -------
        Dictionary of the loaded YAML file.
        """
        config = self._load_yaml_file(self.config_file)
        if config:
            return config
        else:
            logger.error("Empty config file!!!")
            raise ConfigurationError(f"{self.config_file} is empty")

    def create_basic_config(self) -> dict[str, Any]:
        """Main function of the class."""
        config = self._load_config_file()
        if not isinstance(config, dict):
            raise ConfigurationError(f"{self.config_file} must hold a mapping")
        config.setdefault("settings", {})
        return {
            "config": config,
            "environment": self.environment,
        }


def setup_logging(basic_config: dict[str, Any], console_log_level: str = "INFO") -> None:
    """Replace the default loguru sink with a console sink and, when
    ``settings.log_file`` is configured, a rotating file sink.

    Parameters
    ----------
    basic_config :
        The basic configuration as per BasicConfig.
    console_log_level :
        Level of the console sink.
    """
    settings = basic_config["config"].get("settings") or {}
    environment = basic_config.get("environment", "noop")
    log_format = f"{{time}} {environment} {{module}} {{level}} {{message}}"
    logger.remove()  # Remove the default logger
    logger.add(sys.stdout, format=log_format, level=console_log_level)
    if settings.get("log_file"):
        logger.add(
            settings["log_file"],
            format=log_format,
            level=settings.get("log_file_level", "DEBUG"),
            retention=settings.get("log_file_retention", "1 month"),
            rotation=settings.get("log_file_rotation", "1 day"),
        )
