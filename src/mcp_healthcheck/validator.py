"""
MCP configuration validation.

Validates .mcp.json in four categories, in order:
- structure: file exists, JSON parses, mcpServers is a non-empty object,
  document matches the JSON schema
- servers: per-entry field rules (command/serverUrl, args, env, headers)
- environment: ${VAR} placeholders resolve, credential formats look sane
- connectivity: optional reachability probe, warnings only

A structure failure stops validation; the remaining categories are reported
as not run and stay vacuously valid.

Usage:
    from mcp_healthcheck.validator import validate_config

    result = await validate_config(".mcp.json", context)
    print(result.valid, result.errors)
"""

import asyncio
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import requests

from mcp_healthcheck.catalog import get_requirements
from mcp_healthcheck.config_loader import DEFAULT_CONFIG_PATH, read_config_document, servers_from_document
from mcp_healthcheck.env_config import RunContext, build_context, find_placeholders, require_env
from mcp_healthcheck.errors import ConfigError, MissingCredential
from mcp_healthcheck.schema import format_validation_errors, validate_mcp_configuration

logger = logging.getLogger(__name__)

CONNECTIVITY_TIMEOUT = 10  # seconds

CATEGORIES = ("structure", "servers", "environment", "connectivity")

# Template values people forget to replace
PLACEHOLDER_VALUE_PATTERN = re.compile(r"(^|[^a-z])your[_-]|^changeme$|^change[_-]me$|^placeholder$|^<[^>]*>$", re.IGNORECASE)


@dataclass
class CategoryResult:
    """Errors and warnings collected by one validation category."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    ran: bool = False

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, message: str) -> None:
        self.errors.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "ran": self.ran,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class ValidationResult:
    """Aggregate of all categories; valid iff no category reported an error."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, CategoryResult] = field(
        default_factory=lambda: {name: CategoryResult() for name in CATEGORIES}
    )

    @property
    def valid(self) -> bool:
        return not self.errors

    def absorb(self, category_name: str) -> None:
        category = self.details[category_name]
        self.errors.extend(category.errors)
        self.warnings.extend(category.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "details": {name: category.to_dict() for name, category in self.details.items()},
        }


@dataclass
class ValidatorOptions:
    check_connectivity: bool = True
    strict: bool = False
    connectivity_timeout: float = CONNECTIVITY_TIMEOUT


def is_http_url(value: Any) -> bool:
    """True for absolute http/https URLs with a host."""
    if not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def looks_like_placeholder(value: str) -> bool:
    return "xxxx" in value or bool(PLACEHOLDER_VALUE_PATTERN.search(value))


def _is_string_map(value: Any) -> bool:
    return isinstance(value, dict) and all(isinstance(v, str) for v in value.values())


def _command_on_path(command: str, context: RunContext) -> bool:
    return shutil.which(command, path=context.environ.get("PATH")) is not None


# Structure

def _validate_structure(document: Any, category: CategoryResult, options: ValidatorOptions) -> bool:
    """Returns False when validation must stop."""
    category.ran = True
    try:
        servers_from_document(document)
    except ConfigError as e:
        category.error(str(e))
        return False

    schema_check = validate_mcp_configuration(document)
    for message in format_validation_errors(schema_check["errors"]):
        if options.strict:
            category.error(f"schema: {message}")
        else:
            category.warn(f"schema: {message}")

    return category.valid


# Servers

def _validate_remote(name: str, raw: Dict[str, Any], category: CategoryResult) -> None:
    server_url = raw["serverUrl"]
    if not is_http_url(server_url):
        category.error(f'Server "{name}": Invalid serverUrl format (expected an absolute http/https URL)')
    elif get_requirements(name).event_stream and "sse" not in server_url:
        category.warn(f"Server \"{name}\": URL should include 'sse' for Server-Sent Events")

    headers = raw.get("headers")
    if headers is not None and not _is_string_map(headers):
        category.error(f'Server "{name}": "headers" must be an object of string values')


def _validate_local(name: str, raw: Dict[str, Any], category: CategoryResult, context: RunContext) -> None:
    command = raw["command"]
    if not isinstance(command, str) or not command.strip():
        category.error(f'Server "{name}": "command" must be a non-empty string')
        command = None

    args = raw.get("args")
    if args is not None and not (isinstance(args, list) and all(isinstance(arg, str) for arg in args)):
        category.error(f'Server "{name}": "args" must be an array of strings')
    elif args:
        expected_package = get_requirements(name).expected_package
        if expected_package and not any(expected_package in arg for arg in args):
            category.warn(f'Server "{name}": Expected package "{expected_package}" in args')

    cwd = raw.get("cwd")
    if cwd is not None and not isinstance(cwd, str):
        category.error(f'Server "{name}": "cwd" must be a string')

    # Best effort only: PATH lookups legitimately fail in sandboxes
    if command and "/" not in command and not _command_on_path(command, context):
        category.warn(f'Server "{name}": Command "{command}" may not be available in PATH')


def _validate_entry(name: str, raw: Any, category: CategoryResult, context: RunContext) -> None:
    if not isinstance(raw, dict):
        category.error(f'Server "{name}": Entry must be an object')
        return

    has_url = bool(raw.get("serverUrl"))
    has_command = bool(raw.get("command"))

    if not has_url and not has_command:
        category.error(f'Server "{name}": Missing required "command" or "serverUrl" property')
        return

    if has_url and has_command:
        category.warn(f'Server "{name}": Has both "command" and "serverUrl", will use serverUrl')

    if has_url:
        _validate_remote(name, raw, category)
    if has_command:
        _validate_local(name, raw, category, context)

    env = raw.get("env")
    if env is not None and not _is_string_map(env):
        category.error(f'Server "{name}": "env" must be an object of string values')


def _validate_servers(servers: Dict[str, Any], category: CategoryResult, context: RunContext) -> None:
    category.ran = True
    for name, raw in servers.items():
        _validate_entry(name, raw, category, context)


# Environment

def _github_token_rule(value: str, context: RunContext) -> Optional[str]:
    if not value.startswith("ghp_"):
        return 'GITHUB_PERSONAL_ACCESS_TOKEN should start with "ghp_" for personal access tokens'
    if len(value) != 40:
        return "GITHUB_PERSONAL_ACCESS_TOKEN should be 40 characters long"
    return None


def _turso_url_rule(value: str, context: RunContext) -> Optional[str]:
    if not value.startswith("libsql://"):
        return 'TURSO_DATABASE_URL should start with "libsql://"'
    if ".turso.io" not in value:
        return 'TURSO_DATABASE_URL should include ".turso.io" domain'
    return None


def _prometheus_url_rule(value: str, context: RunContext) -> Optional[str]:
    if not is_http_url(value):
        return "PROMETHEUS_URL is not a valid URL format"
    return None


def _kubeconfig_rule(value: str, context: RunContext) -> Optional[str]:
    path = context.expand_path(value)
    if not os.path.exists(path):
        return f"KUBECONFIG file not found: {path}"
    return None


# Well-known credentials; mismatches are warnings since formats change over time
CREDENTIAL_RULES: Dict[str, Optional[Callable[[str, RunContext], Optional[str]]]] = {
    "GITHUB_PERSONAL_ACCESS_TOKEN": _github_token_rule,
    "TURSO_DATABASE_URL": _turso_url_rule,
    "TURSO_AUTH_TOKEN": None,
    "PROMETHEUS_URL": _prometheus_url_rule,
    "KUBECONFIG": _kubeconfig_rule,
}


def collect_placeholders(servers: Dict[str, Any]):
    """Return (required, optional) variable names referenced by env values, in first-seen order."""
    required: Dict[str, None] = {}
    optional: Dict[str, None] = {}

    for raw in servers.values():
        env = raw.get("env") if isinstance(raw, dict) else None
        if not isinstance(env, dict):
            continue
        for value in env.values():
            if not isinstance(value, str):
                continue
            for var, default in find_placeholders(value):
                if default is None:
                    required.setdefault(var)
                else:
                    optional.setdefault(var)

    return list(required), list(optional)


def _validate_environment(servers: Dict[str, Any], category: CategoryResult, context: RunContext) -> None:
    category.ran = True
    required, optional = collect_placeholders(servers)

    missing_required = []
    try:
        require_env(context, *required)
    except MissingCredential as e:
        missing_required = e.names
        category.error(str(e))

    missing_optional = [var for var in optional if not context.environ.get(var)]
    if missing_optional:
        category.warn(f"Missing optional environment variables: {', '.join(missing_optional)}")

    if (missing_required or missing_optional) and context.env_file_found:
        category.warn(f"Variables are still missing after loading {context.env_file}")

    for var in dict.fromkeys([*required, *optional, *CREDENTIAL_RULES]):
        value = context.environ.get(var)
        if not value:
            continue
        if looks_like_placeholder(value):
            category.warn(f"{var} appears to be a placeholder - update with real value")
            continue
        rule = CREDENTIAL_RULES.get(var)
        if rule is not None:
            message = rule(value, context)
            if message:
                category.warn(message)

    logger.info(f"Environment validation: {len(required)} required, {len(optional)} optional")


# Connectivity

async def _check_http_reachable(name: str, raw: Dict[str, Any], timeout: float) -> Optional[str]:
    server_url = raw["serverUrl"]
    headers = raw.get("headers") if _is_string_map(raw.get("headers")) else None
    try:
        response = await asyncio.to_thread(
            requests.head,
            server_url,
            headers=headers,
            timeout=timeout,
            allow_redirects=False,
        )
    except requests.exceptions.Timeout:
        return f'Server "{name}": Connection timeout'
    except requests.exceptions.ConnectionError as e:
        return f'Server "{name}": Connection failed - {e}'
    except requests.exceptions.RequestException as e:
        return f'Server "{name}": Connectivity test failed - {e}'

    if response.status_code >= 400:
        return f'Server "{name}": HTTP {response.status_code} from {server_url}'
    return None


async def _check_command_available(name: str, command: Any, context: RunContext) -> Optional[str]:
    if not isinstance(command, str):
        return None
    if "/" in command:
        found = os.path.isfile(command) and os.access(command, os.X_OK)
    else:
        found = _command_on_path(command, context)
    if not found:
        return f'Server "{name}": Command not found: {command}'
    return None


async def _validate_connectivity(
    servers: Dict[str, Any],
    category: CategoryResult,
    context: RunContext,
    timeout: float,
) -> None:
    category.ran = True
    checks = []
    for name, raw in servers.items():
        if not isinstance(raw, dict):
            continue
        if raw.get("serverUrl"):
            checks.append(_check_http_reachable(name, raw, timeout))
        elif raw.get("command"):
            checks.append(_check_command_available(name, raw["command"], context))

    outcomes = await asyncio.gather(*checks)
    for warning in outcomes:
        if warning:
            category.warn(warning)

    reachable = sum(1 for warning in outcomes if warning is None)
    logger.info(f"Connectivity tests: {reachable}/{len(outcomes)} servers reachable")


async def validate_document(
    document: Any,
    context: Optional[RunContext] = None,
    options: Optional[ValidatorOptions] = None,
    result: Optional[ValidationResult] = None,
) -> ValidationResult:
    """Validate an already parsed configuration document."""
    context = context or build_context()
    options = options or ValidatorOptions()
    result = result or ValidationResult()

    proceed = _validate_structure(document, result.details["structure"], options)
    result.absorb("structure")
    if not proceed:
        return result

    servers = document["mcpServers"]

    _validate_servers(servers, result.details["servers"], context)
    result.absorb("servers")

    _validate_environment(servers, result.details["environment"], context)
    result.absorb("environment")

    if options.check_connectivity:
        connectivity = result.details["connectivity"]
        try:
            await _validate_connectivity(servers, connectivity, context, options.connectivity_timeout)
        except Exception as e:
            logger.warning(f"Connectivity tests failed: {e}")
            connectivity.warn(f"Connectivity tests failed: {e}")
        result.absorb("connectivity")

    logger.info(
        f"Validation completed: valid={result.valid}, "
        f"{len(result.errors)} errors, {len(result.warnings)} warnings"
    )
    return result


async def validate_config(
    config_path: str = DEFAULT_CONFIG_PATH,
    context: Optional[RunContext] = None,
    options: Optional[ValidatorOptions] = None,
) -> ValidationResult:
    """Read a configuration file and validate it."""
    result = ValidationResult()
    structure = result.details["structure"]

    try:
        document = read_config_document(config_path)
    except ConfigError as e:
        structure.ran = True
        structure.error(str(e))
        result.absorb("structure")
        logger.error(f"Validation failed: {e}")
        return result

    return await validate_document(document, context, options, result=result)
