"""Helpers for parsing and wrangling configuration dictionaries."""

from __future__ import annotations

import decimal
import logging
import os
import typing as t
from pathlib import Path

import simplejson
from dotenv import find_dotenv
from dotenv.main import DotEnv

logger = logging.getLogger(__name__)

TRUTHY = ("true", "1", "yes", "on")


def _schema_types(schema: dict[str, t.Any]) -> set[str]:
    types = schema.get("type", [])
    if isinstance(types, str):
        return {types}
    return set(types)


def load_json(json_str: str) -> t.Any:  # noqa: ANN401
    """Load json data from a string.

    Args:
        json_str: A valid JSON string.

    Returns:
        A Python object, usually a dict.
    """
    return simplejson.loads(json_str, parse_float=decimal.Decimal)


def read_json_file(path: Path | str) -> dict[str, t.Any]:
    """Read json file, throwing an error if missing.

    Args:
        path: Path to the JSON file.

    Returns:
        The parsed JSON object.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    if not Path(path).is_file():
        msg = (
            f"Could not locate config file at '{path}'. Please check that "
            "the file exists."
        )
        raise FileNotFoundError(msg)

    return load_json(Path(path).read_text(encoding="utf-8"))  # type: ignore[no-any-return]


def parse_environment_config(
    config_schema: dict[str, t.Any],
    prefix: str,
    dotenv_path: str | None = None,
) -> dict[str, t.Any]:
    """Parse configuration from environment variables.

    Args:
        config_schema: A JSON Schema dictionary for the configuration.
        prefix: Prefix for environment variables.
        dotenv_path: Path to a .env file. If None, will try to find one in increasingly
            higher folders.

    Returns:
        A configuration dictionary.
    """
    result: dict[str, t.Any] = {}

    if not dotenv_path:
        dotenv_path = find_dotenv(usecwd=True)

    logger.debug("Loading configuration from %s", dotenv_path)
    DotEnv(dotenv_path).set_as_environment_variables()

    for config_key, schema in config_schema.get("properties", {}).items():
        env_var_name = prefix + config_key.upper().replace("-", "_")
        if env_var_name not in os.environ:
            continue

        env_var_value = os.environ[env_var_name]
        logger.info(
            "Parsing '%s' config from env variable '%s'.",
            config_key,
            env_var_name,
        )
        types = _schema_types(schema)
        if "integer" in types:
            result[config_key] = int(env_var_value)
        elif "boolean" in types:
            result[config_key] = env_var_value.lower() in TRUTHY
        elif "array" in types or "object" in types:
            result[config_key] = load_json(env_var_value)
        else:
            result[config_key] = env_var_value
    return result


def merge_config_sources(
    inputs: t.Iterable[str],
    config_schema: dict[str, t.Any],
    env_prefix: str,
) -> dict[str, t.Any]:
    """Merge configuration from multiple sources into a single dictionary.

    Args:
        inputs: A sequence of configuration sources (file paths or ENV).
        config_schema: A JSON Schema dictionary for the configuration.
        env_prefix: Prefix for environment variables.

    Returns:
        A single configuration dictionary.
    """
    config: dict[str, t.Any] = {}
    for config_input in inputs:
        if config_input == "ENV":
            config.update(parse_environment_config(config_schema, prefix=env_prefix))
            continue

        config.update(read_json_file(config_input))

    return config
