"""Configuration schema and validation for the load pipeline."""

from __future__ import annotations

import copy
import logging
import typing as t

from jsonschema import Draft7Validator, validators

from event_sink.configuration._dict_config import merge_config_sources
from event_sink.exceptions import ConfigValidationError

if t.TYPE_CHECKING:
    from jsonschema import ValidationError
    from jsonschema.protocols import Validator

logger = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "EVENT_SINK_"

CONFIG_JSONSCHEMA: dict[str, t.Any] = {
    "type": "object",
    "properties": {
        "sqlalchemy_url": {
            "type": "string",
            "description": (
                "SQLAlchemy connection string. Takes precedence over the individual "
                "connection settings."
            ),
        },
        "host": {"type": "string", "description": "Database host."},
        "port": {"type": "integer", "default": 5432, "description": "Database port."},
        "user": {"type": "string", "description": "Database user."},
        "password": {
            "type": "string",
            "description": "Database password.",
            "secret": True,
        },
        "database": {"type": "string", "description": "Database name."},
        "default_target_schema": {
            "type": "string",
            "default": "public",
            "description": "Schema that holds the destination tables.",
        },
        "write_mode": {
            "type": "string",
            "enum": ["create", "replace", "truncate", "append"],
            "default": "replace",
            "description": (
                "What happens to the destination table before the first batch of a "
                "load is written."
            ),
        },
        "max_retries": {
            "type": "integer",
            "minimum": 1,
            "default": 5,
            "description": "Attempts made for a statement failing with a transient error.",
        },
        "copy_chunk_size": {
            "type": "integer",
            "minimum": 1,
            "default": 1024 * 1024,
            "description": "Bytes written to the COPY channel per write call.",
        },
    },
    "anyOf": [
        {"required": ["sqlalchemy_url"]},
        {"required": ["host", "user", "database"]},
    ],
}


def extend_validator_with_defaults(validator_class: type[Validator]):  # noqa: ANN201
    """Fill in defaults, before validating with the provided JSON Schema Validator.

    Args:
        validator_class: The JSON Schema Validator class to extend.

    Returns:
        The extended JSON Schema Validator class.
    """
    validate_properties = validator_class.VALIDATORS["properties"]

    def set_defaults(
        validator: Validator,
        properties: t.Mapping[str, dict],
        instance: t.MutableMapping[str, t.Any],
        schema: dict,
    ) -> t.Generator[ValidationError, None, None]:
        for prop, subschema in properties.items():
            if "default" in subschema:
                instance.setdefault(prop, subschema["default"])

        yield from validate_properties(
            validator,
            properties,
            instance,
            schema,
        )

    return validators.extend(
        validator_class,
        {"properties": set_defaults},
    )


ConfigValidator = extend_validator_with_defaults(Draft7Validator)


def _format_validation_error(error: ValidationError) -> str:
    result = f"{error.message}"

    if error.path:
        result += f" in config[{']['.join(repr(index) for index in error.path)}]"

    return result


def validate_config(config: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
    """Validate a config dictionary and fill in defaults.

    Args:
        config: The raw configuration.

    Returns:
        A copy of the configuration with defaults applied.

    Raises:
        ConfigValidationError: If the configuration is invalid.
    """
    result = copy.deepcopy(dict(config))
    validator = ConfigValidator(CONFIG_JSONSCHEMA)
    errors = [_format_validation_error(e) for e in validator.iter_errors(result)]
    if errors:
        msg = f"Config validation failed: {'; '.join(errors)}"
        raise ConfigValidationError(msg, errors=errors)

    return result


def load_config(
    inputs: t.Iterable[str],
    *,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> dict[str, t.Any]:
    """Merge and validate configuration from files and the environment.

    Args:
        inputs: Paths to JSON config files, or ``ENV`` for environment variables.
        env_prefix: Prefix for environment variables.

    Returns:
        The validated configuration.
    """
    config = merge_config_sources(inputs, CONFIG_JSONSCHEMA, env_prefix)
    logger.debug("Loaded config keys: %s", sorted(config))
    return validate_config(config)
