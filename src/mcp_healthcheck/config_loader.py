"""
Configuration loader for .mcp.json

Reads the JSON document describing MCP server entries and exposes them as
ServerEntry objects. Only syntactic checks happen here; field-level rules
live in the validator.

Usage:
    from mcp_healthcheck.config_loader import load_config

    config = load_config(".mcp.json")
    for name, entry in config.servers.items():
        print(name, entry.kind)
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp_healthcheck.errors import ConfigNotFound, EmptyConfig, InvalidJson, SchemaViolation

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = ".mcp.json"

KIND_LOCAL = "local"
KIND_REMOTE = "remote"


@dataclass
class ServerEntry:
    """One named server declared under mcpServers."""
    name: str
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def command(self) -> Optional[str]:
        return self.raw.get("command")

    @property
    def args(self) -> List[str]:
        return self.raw.get("args") or []

    @property
    def env(self) -> Dict[str, str]:
        return self.raw.get("env") or {}

    @property
    def cwd(self) -> Optional[str]:
        return self.raw.get("cwd")

    @property
    def server_url(self) -> Optional[str]:
        return self.raw.get("serverUrl")

    @property
    def headers(self) -> Dict[str, str]:
        return self.raw.get("headers") or {}

    @property
    def kind(self) -> Optional[str]:
        """remote if serverUrl is set (it wins over command), local if only command is set."""
        if self.server_url:
            return KIND_REMOTE
        if self.command:
            return KIND_LOCAL
        return None

    @property
    def has_both(self) -> bool:
        return bool(self.server_url) and bool(self.command)


@dataclass
class McpConfig:
    """Parsed .mcp.json document."""
    path: Optional[Path]
    servers: Dict[str, ServerEntry]
    global_settings: Dict[str, Any] = field(default_factory=dict)
    version: Optional[str] = None
    document: Dict[str, Any] = field(default_factory=dict)


def _duplicate_tracking_hook(repeated: Dict[int, List[str]]):
    """object_pairs_hook that records, per built object, object-valued keys seen twice."""
    def hook(pairs):
        result = {}
        duplicates = []
        for key, value in pairs:
            if key in result and isinstance(value, dict) and isinstance(result[key], dict):
                duplicates.append(key)
            result[key] = value
        repeated[id(result)] = duplicates
        return result

    return hook


def read_config_document(config_path: str = DEFAULT_CONFIG_PATH) -> Any:
    """
    Read and parse a configuration file without checking its contents.

    Raises:
        ConfigNotFound: If the file does not exist
        InvalidJson: If the file is not valid JSON
        SchemaViolation: If a server name is declared twice under mcpServers
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigNotFound(f"Configuration file not found: {config_path}")

    # Keyed by id(); only looked up for objects still alive in the document
    repeated: Dict[int, List[str]] = {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f, object_pairs_hook=_duplicate_tracking_hook(repeated))
    except json.JSONDecodeError as e:
        raise InvalidJson(f"Invalid JSON format: {e}") from e

    if isinstance(document, dict) and isinstance(document.get("mcpServers"), dict):
        duplicates = repeated.get(id(document["mcpServers"]))
        if duplicates:
            raise SchemaViolation(f"Duplicate server name in mcpServers: {duplicates[0]}")

    return document


def servers_from_document(document: Any) -> Dict[str, ServerEntry]:
    """
    Extract the mcpServers map from a parsed document.

    Raises:
        SchemaViolation: If mcpServers is missing or not an object
        EmptyConfig: If mcpServers has no entries
    """
    if not isinstance(document, dict) or "mcpServers" not in document:
        raise SchemaViolation('Missing required "mcpServers" property')

    mcp_servers = document["mcpServers"]
    if not isinstance(mcp_servers, dict):
        raise SchemaViolation('"mcpServers" must be an object')

    if not mcp_servers:
        raise EmptyConfig("No MCP servers configured (mcpServers is empty)")

    return {
        name: ServerEntry(name=name, raw=raw if isinstance(raw, dict) else {})
        for name, raw in mcp_servers.items()
    }


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> McpConfig:
    """Load .mcp.json and return the parsed configuration."""
    document = read_config_document(config_path)
    servers = servers_from_document(document)

    config = McpConfig(
        path=Path(config_path),
        servers=servers,
        global_settings=document.get("global") or {},
        version=document.get("version"),
        document=document,
    )
    logger.info(f"Loaded {len(servers)} server entries from {config_path}")
    return config


def load_servers(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, ServerEntry]:
    """Return only the mcpServers map of a configuration file."""
    return load_config(config_path).servers
