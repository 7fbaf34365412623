"""
JSON schema for .mcp.json and a small validation wrapper around jsonschema.

The schema is written inline so no reference resolution against external
files is needed. Compiled validators are cached by schema name for the
lifetime of the process.
"""

import logging
from typing import Any, Dict, List

from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.exceptions import SchemaError, best_match

logger = logging.getLogger(__name__)

MCP_CONFIGURATION = "MCPConfiguration"
MCP_SERVER = "MCPServer"

STRING_MAP = {"type": "object", "additionalProperties": {"type": "string"}}
HTTP_URL = {"type": "string", "format": "uri", "pattern": "^https?://"}

STDIO_SERVER_SCHEMA = {
    "type": "object",
    "properties": {
        "type": {"type": "string", "const": "stdio"},
        "command": {"type": "string", "minLength": 1},
        "args": {"type": "array", "items": {"type": "string"}},
        "env": STRING_MAP,
        "cwd": {"type": "string"},
        "initTimeoutMs": {"type": "integer", "minimum": 1000, "maximum": 60000, "default": 10000},
        "autoRestart": {"type": "boolean", "default": False},
        "maxRestarts": {"type": "integer", "minimum": 1, "maximum": 10, "default": 3},
    },
    "required": ["command"],
    "additionalProperties": False,
}

HTTP_SERVER_SCHEMA = {
    "type": "object",
    "properties": {
        "type": {"type": "string", "const": "http"},
        "serverUrl": HTTP_URL,
        "headers": STRING_MAP,
        "connectTimeoutMs": {"type": "integer", "minimum": 1000, "maximum": 30000, "default": 5000},
        "requestTimeoutMs": {"type": "integer", "minimum": 1000, "maximum": 60000, "default": 30000},
        "verifySsl": {"type": "boolean", "default": True},
        "maxRetries": {"type": "integer", "minimum": 0, "maximum": 10, "default": 3},
        "retryDelayMs": {"type": "integer", "minimum": 100, "maximum": 10000, "default": 1000},
    },
    "required": ["serverUrl"],
    "additionalProperties": False,
}

# Entries written before "type" existed; may carry both command and serverUrl
LEGACY_SERVER_SCHEMA = {
    "type": "object",
    "properties": {
        "command": {"type": "string", "minLength": 1},
        "args": {"type": "array", "items": {"type": "string"}},
        "env": STRING_MAP,
        "cwd": {"type": "string"},
        "serverUrl": HTTP_URL,
        "headers": STRING_MAP,
    },
    "anyOf": [{"required": ["command"]}, {"required": ["serverUrl"]}],
    "additionalProperties": False,
}


def create_server_schema() -> Dict[str, Any]:
    """Schema for a single mcpServers entry."""
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "anyOf": [STDIO_SERVER_SCHEMA, HTTP_SERVER_SCHEMA, LEGACY_SERVER_SCHEMA],
    }


def create_configuration_schema() -> Dict[str, Any]:
    """Schema for a whole .mcp.json document."""
    server_schema = create_server_schema()
    server_schema.pop("$schema")
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": {
            "mcpServers": {
                "type": "object",
                "additionalProperties": server_schema,
                "minProperties": 1,
            },
            "global": {
                "type": "object",
                "properties": {
                    "timeoutMs": {"type": "integer", "minimum": 1000, "maximum": 300000, "default": 30000},
                    "maxConcurrentServers": {"type": "integer", "minimum": 1, "maximum": 50, "default": 10},
                    "debug": {"type": "boolean", "default": False},
                },
                "additionalProperties": False,
            },
            "version": {"type": "string", "default": "1.0.0"},
        },
        "required": ["mcpServers"],
        "additionalProperties": False,
    }


SCHEMA_FACTORIES = {
    MCP_CONFIGURATION: create_configuration_schema,
    MCP_SERVER: create_server_schema,
}

# schema name -> compiled validator
_validator_cache: Dict[str, Draft202012Validator] = {}


def get_validator(schema_name: str) -> Draft202012Validator:
    """Return a compiled validator, building it on first use."""
    if schema_name in _validator_cache:
        return _validator_cache[schema_name]

    factory = SCHEMA_FACTORIES.get(schema_name)
    if factory is None:
        raise KeyError(f"Schema {schema_name} not found")

    schema = factory()
    Draft202012Validator.check_schema(schema)
    validator = Draft202012Validator(schema, format_checker=FormatChecker())
    _validator_cache[schema_name] = validator
    logger.debug(f"Compiled schema {schema_name}")
    return validator


def _error_path(error) -> str:
    if not error.absolute_path:
        return "root"
    return "/" + "/".join(str(part) for part in error.absolute_path)


def _describe(error) -> Dict[str, Any]:
    # anyOf failures are more useful when reported via the closest branch
    if error.validator in ("anyOf", "oneOf") and error.context:
        error = best_match(error.context)
    return {
        "instancePath": _error_path(error),
        "keyword": error.validator,
        "message": error.message,
    }


def validate_against_schema(data: Any, schema_name: str) -> Dict[str, Any]:
    """
    Validate data against a named schema.

    Returns:
        dict with keys valid, errors (instancePath/keyword/message dicts), schema
    """
    try:
        validator = get_validator(schema_name)
    except (KeyError, SchemaError) as e:
        return {
            "valid": False,
            "errors": [{"instancePath": "root", "keyword": "system", "message": str(e)}],
            "schema": schema_name,
        }

    raw_errors = sorted(
        validator.iter_errors(data),
        key=lambda e: ([str(part) for part in e.absolute_path], e.message),
    )
    errors = [_describe(error) for error in raw_errors]
    return {"valid": not errors, "errors": errors, "schema": schema_name}


def validate_mcp_configuration(config: Any) -> Dict[str, Any]:
    return validate_against_schema(config, MCP_CONFIGURATION)


def validate_mcp_server(server_config: Any) -> Dict[str, Any]:
    return validate_against_schema(server_config, MCP_SERVER)


def format_validation_errors(errors: List[Dict[str, Any]]) -> List[str]:
    """Format validation errors as 'path: message' strings."""
    return [f"{error.get('instancePath') or 'root'}: {error.get('message') or 'Unknown error'}" for error in errors]
