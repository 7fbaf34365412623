"""
Known MCP servers.

Fixed per-name facts used by the validator and the runner: whether a failure
of the server fails the run (critical), the npm package its args should
reference, the environment variables it needs, and whether it is an
event-stream (SSE) endpoint.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ServerRequirements:
    description: str = "Unknown"
    critical: bool = False
    env_vars: List[str] = field(default_factory=list)
    expected_package: Optional[str] = None
    event_stream: bool = False


UNKNOWN_SERVER = ServerRequirements()

SERVER_CATALOG: Dict[str, ServerRequirements] = {
    "context7": ServerRequirements(
        description="Context management system",
        critical=True,
        expected_package="@upstash/context7-mcp",
    ),
    "deepwiki": ServerRequirements(
        description="Remote wiki server",
        event_stream=True,
    ),
    "github": ServerRequirements(
        description="GitHub integration",
        critical=True,
        env_vars=["GITHUB_PERSONAL_ACCESS_TOKEN"],
        expected_package="@modelcontextprotocol/server-github",
    ),
    "filesystem": ServerRequirements(
        description="File system access",
        critical=True,
        expected_package="@modelcontextprotocol/server-filesystem",
    ),
    "playwright": ServerRequirements(
        description="Browser automation",
        expected_package="@playwright/mcp",
    ),
    "puppeteer": ServerRequirements(
        description="Browser automation alternative",
        expected_package="@modelcontextprotocol/server-puppeteer",
    ),
    "memory": ServerRequirements(
        description="Persistent memory",
        critical=True,
        expected_package="@modelcontextprotocol/server-memory",
    ),
    "sequential-thinking": ServerRequirements(
        description="Sequential reasoning",
        expected_package="@modelcontextprotocol/server-sequential-thinking",
    ),
    "everything": ServerRequirements(
        description="Everything server",
        expected_package="@modelcontextprotocol/server-everything",
    ),
    "kubernetes": ServerRequirements(
        description="Kubernetes management",
        env_vars=["KUBECONFIG"],
        expected_package="mcp-server-kubernetes",
    ),
    "ssh": ServerRequirements(
        description="SSH connections",
        expected_package="@modelcontextprotocol/server-ssh",
    ),
    "sqlite": ServerRequirements(
        description="SQLite database",
        expected_package="@modelcontextprotocol/server-sqlite",
    ),
    "turso": ServerRequirements(
        description="Turso database",
        env_vars=["TURSO_DATABASE_URL", "TURSO_AUTH_TOKEN"],
        expected_package="@modelcontextprotocol/server-turso",
    ),
    "terraform": ServerRequirements(
        description="Infrastructure as code",
        expected_package="@modelcontextprotocol/server-terraform",
    ),
    "nixos": ServerRequirements(
        description="NixOS package management",
        expected_package="@modelcontextprotocol/server-nixos",
    ),
    "prometheus": ServerRequirements(
        description="Prometheus monitoring",
        env_vars=["PROMETHEUS_URL"],
        expected_package="@modelcontextprotocol/server-prometheus",
    ),
    "helm": ServerRequirements(
        description="Helm chart management",
        expected_package="@modelcontextprotocol/server-helm",
    ),
    "fetch": ServerRequirements(
        description="HTTP fetch utility",
        expected_package="@modelcontextprotocol/server-fetch",
    ),
    "youtube-transcript": ServerRequirements(
        description="YouTube transcript extraction",
        expected_package="@modelcontextprotocol/server-youtube-transcript",
    ),
}


def get_requirements(server_name: str) -> ServerRequirements:
    return SERVER_CATALOG.get(server_name, UNKNOWN_SERVER)


def is_critical(server_name: str) -> bool:
    return get_requirements(server_name).critical


def check_env_requirements(server_name: str, server_env: Dict[str, Any]) -> Dict[str, List[str]]:
    """
    Compare a server's env block against the variables it is known to need.

    Returns:
        dict with "configured", "missing" and "notes" lists
    """
    result = {"configured": [], "missing": [], "notes": []}

    for var in get_requirements(server_name).env_vars:
        value = server_env.get(var)
        if not value:
            result["missing"].append(var)
            continue

        result["configured"].append(var)
        if isinstance(value, str) and "${" in value:
            if ":-" in value:
                result["notes"].append(f"{var}: optional (has default fallback)")
            else:
                result["notes"].append(f"{var}: uses environment substitution")

    return result
