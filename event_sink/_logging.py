from __future__ import annotations

import logging
import logging.config
import os
import sys
import typing as t
from pathlib import Path

import event_sink.logging

logger = logging.getLogger(__name__)

LOG_CONFIG_ENV_VAR = "EVENT_SINK_LOG_CONFIG"


def _load_yaml_logging_config(path: Path) -> t.Any:  # noqa: ANN401
    """Load the logging config from the YAML file.

    Args:
        path: A path to the YAML file.

    Returns:
        The logging config.
    """
    import yaml  # noqa: PLC0415

    with path.open() as f:
        return yaml.safe_load(f)


def setup_console_logging(*, log_level: str | int | None = None) -> None:
    """Setup logging.

    Args:
        log_level: The log level to set.
    """
    level = log_level or logging.INFO
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(event_sink.logging.ConsoleFormatter())
    root.addHandler(handler)

    if LOG_CONFIG_ENV_VAR in os.environ:
        log_config_path = Path(os.environ[LOG_CONFIG_ENV_VAR])
        try:
            logging.config.dictConfig(_load_yaml_logging_config(log_config_path))
        except FileNotFoundError:
            logger.warning("Logging config file not found: %s", log_config_path)
