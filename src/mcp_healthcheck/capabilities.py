"""
Capability checks for well-known servers.

After a successful probe, servers with registered checks get a deeper look
(are the configured paths readable, is the token set, is the cluster up).
Capability results are informational and never change a probe's pass/fail.

Checks are registered by server name with the @capability decorator:

    @capability("memory", "storage")
    async def check_memory_storage(entry, context):
        ...
"""

import asyncio
import logging
import os
import shutil
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from mcp_healthcheck.config_loader import ServerEntry
from mcp_healthcheck.env_config import RunContext
from mcp_healthcheck.errors import CapabilityStatus, CapabilityUnavailable
from mcp_healthcheck.probe import kill_process_group
from mcp_healthcheck.validator import looks_like_placeholder

logger = logging.getLogger(__name__)

CAPABILITY_TIMEOUT = 5  # seconds

DEFAULT_MEMORY_FILE = "~/.cache/mcp-memory.json"
DEFAULT_PROMETHEUS_URL = "http://localhost:9090"
SSH_KEY_NAMES = ("id_rsa", "id_ed25519")


@dataclass
class CapabilityResult:
    status: str
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


CapabilityCheck = Callable[[ServerEntry, RunContext], Awaitable[CapabilityResult]]


class CapabilityRegistry:
    """Maps server name -> ordered (capability name, check) pairs."""

    def __init__(self):
        self._checks: Dict[str, List[Tuple[str, CapabilityCheck]]] = {}

    def register(self, server_name: str, capability_name: str, check: CapabilityCheck) -> None:
        self._checks.setdefault(server_name, []).append((capability_name, check))

    def checks_for(self, server_name: str) -> List[Tuple[str, CapabilityCheck]]:
        return list(self._checks.get(server_name, []))

    def __contains__(self, server_name: str) -> bool:
        return server_name in self._checks

    async def run(self, entry: ServerEntry, context: RunContext) -> Dict[str, CapabilityResult]:
        """Run every check registered for the entry's name. Unknown names yield {}."""
        results = {}
        for capability_name, check in self.checks_for(entry.name):
            try:
                results[capability_name] = await check(entry, context)
            except CapabilityUnavailable as e:
                results[capability_name] = CapabilityResult(CapabilityStatus.UNAVAILABLE, str(e))
            except Exception as e:
                logger.warning(f"Capability check {entry.name}.{capability_name} failed: {e}")
                results[capability_name] = CapabilityResult(
                    CapabilityStatus.UNAVAILABLE,
                    f"Check failed: {e}",
                )
        return results


registry = CapabilityRegistry()


def capability(server_name: str, capability_name: str, target: Optional[CapabilityRegistry] = None):
    """Decorator registering an async check for a server name."""

    def decorator(func: CapabilityCheck) -> CapabilityCheck:
        (target or registry).register(server_name, capability_name, func)
        return func

    return decorator


async def check_capabilities(entry: ServerEntry, context: RunContext) -> Dict[str, CapabilityResult]:
    return await registry.run(entry, context)


def resolve_env_value(entry: ServerEntry, context: RunContext, key: str) -> Optional[str]:
    """Value of `key` as the server would see it: entry env first, then the run context."""
    value = entry.env.get(key)
    if isinstance(value, str) and value:
        value = context.expand(value)
        # Unresolved placeholders count as unset
        if "${" not in value:
            return value
        return None
    return context.get(key) or None


async def _run_command(argv: List[str], context: RunContext, timeout: float = CAPABILITY_TIMEOUT):
    """Run a helper command and return (exit code, combined output)."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=dict(context.environ),
            start_new_session=True,
        )
    except FileNotFoundError as e:
        raise CapabilityUnavailable(f"{argv[0]} not found") from e

    try:
        output, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        await kill_process_group(proc)
        raise CapabilityUnavailable(f"{argv[0]} timed out after {timeout}s") from e

    return proc.returncode, output.decode("utf-8", errors="replace")


def filesystem_paths(entry: ServerEntry, context: RunContext) -> List[str]:
    """Directories served by a filesystem entry: positional args after the package name."""
    positional = [arg for arg in entry.args if not arg.startswith("-")]
    return [context.expand_path(arg) for arg in positional[1:]]


@capability("filesystem", "paths")
async def check_filesystem_paths(entry: ServerEntry, context: RunContext) -> CapabilityResult:
    paths = filesystem_paths(entry, context)
    if not paths:
        return CapabilityResult(CapabilityStatus.NEEDS_CONFIG, "No paths configured")

    accessible = []
    total_items = 0
    for path in paths:
        if not (os.path.isdir(path) and os.access(path, os.R_OK)):
            continue
        try:
            total_items += len(os.listdir(path))
        except OSError:
            continue
        accessible.append(path)

    details = {"paths": paths, "accessible": accessible, "items": total_items}
    if not accessible:
        return CapabilityResult(CapabilityStatus.UNAVAILABLE, "No configured paths are accessible", details)
    return CapabilityResult(
        CapabilityStatus.HEALTHY,
        f"{len(accessible)}/{len(paths)} paths accessible, {total_items} items",
        details,
    )


@capability("github", "auth")
async def check_github_auth(entry: ServerEntry, context: RunContext) -> CapabilityResult:
    token = resolve_env_value(entry, context, "GITHUB_PERSONAL_ACCESS_TOKEN")
    if not token:
        return CapabilityResult(CapabilityStatus.NEEDS_CONFIG, "GITHUB_PERSONAL_ACCESS_TOKEN not set")
    if looks_like_placeholder(token):
        return CapabilityResult(CapabilityStatus.NEEDS_CONFIG, "GITHUB_PERSONAL_ACCESS_TOKEN is a placeholder")
    if not token.startswith(("ghp_", "github_pat_")):
        return CapabilityResult(CapabilityStatus.NEEDS_CONFIG, "Token format not recognized")
    return CapabilityResult(CapabilityStatus.HEALTHY, "Token configured")


@capability("turso", "database")
async def check_turso_database(entry: ServerEntry, context: RunContext) -> CapabilityResult:
    url = resolve_env_value(entry, context, "TURSO_DATABASE_URL")
    token = resolve_env_value(entry, context, "TURSO_AUTH_TOKEN")

    if not url or not token:
        return CapabilityResult(CapabilityStatus.OPTIONAL, "Turso credentials not configured")
    if looks_like_placeholder(url) or looks_like_placeholder(token):
        return CapabilityResult(CapabilityStatus.NEEDS_CONFIG, "Turso credentials contain placeholder values")
    return CapabilityResult(CapabilityStatus.HEALTHY, "Database credentials configured", {"url": url})


@capability("playwright", "browsers")
async def check_playwright_browsers(entry: ServerEntry, context: RunContext) -> CapabilityResult:
    runner = "bunx" if shutil.which("bunx", path=context.get("PATH")) else "npx"
    exit_code, output = await _run_command([runner, "playwright", "install", "--dry-run"], context)

    if exit_code == 0 or "already installed" in output.lower():
        return CapabilityResult(CapabilityStatus.HEALTHY, "Browsers installed", {"runner": runner})
    return CapabilityResult(
        CapabilityStatus.NEEDS_SETUP,
        f"Browsers missing, run: {runner} playwright install",
        {"runner": runner},
    )


@capability("memory", "storage")
async def check_memory_storage(entry: ServerEntry, context: RunContext) -> CapabilityResult:
    file_path = resolve_env_value(entry, context, "MEMORY_FILE_PATH") or DEFAULT_MEMORY_FILE
    storage_path = Path(context.expand_path(file_path))
    storage_dir = storage_path.parent

    try:
        storage_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise CapabilityUnavailable(f"Cannot create {storage_dir}: {e}") from e

    if not os.access(storage_dir, os.W_OK):
        return CapabilityResult(CapabilityStatus.UNAVAILABLE, f"{storage_dir} is not writable")
    return CapabilityResult(CapabilityStatus.HEALTHY, "Storage writable", {"path": str(storage_path)})


@capability("ssh", "keys")
async def check_ssh_keys(entry: ServerEntry, context: RunContext) -> CapabilityResult:
    ssh_dir = Path(context.home) / ".ssh"
    found = [name for name in SSH_KEY_NAMES if (ssh_dir / name).exists()]
    if found:
        return CapabilityResult(CapabilityStatus.HEALTHY, f"Found {', '.join(found)}", {"keys": found})
    return CapabilityResult(CapabilityStatus.OPTIONAL, f"No SSH keys in {ssh_dir}")


@capability("kubernetes", "cluster")
async def check_kubernetes_cluster(entry: ServerEntry, context: RunContext) -> CapabilityResult:
    exit_code, output = await _run_command(["kubectl", "cluster-info"], context)
    if exit_code == 0:
        return CapabilityResult(CapabilityStatus.HEALTHY, "Cluster reachable")
    return CapabilityResult(
        CapabilityStatus.UNAVAILABLE,
        "Cluster not reachable",
        {"output": output[:200]},
    )


@capability("prometheus", "metrics")
async def check_prometheus_metrics(entry: ServerEntry, context: RunContext) -> CapabilityResult:
    base_url = resolve_env_value(entry, context, "PROMETHEUS_URL") or DEFAULT_PROMETHEUS_URL
    query_url = f"{base_url.rstrip('/')}/api/v1/query"

    try:
        async with httpx.AsyncClient(transport=context.http_transport, timeout=CAPABILITY_TIMEOUT) as client:
            response = await client.get(query_url, params={"query": "up"})
    except httpx.HTTPError as e:
        raise CapabilityUnavailable(f"Prometheus not reachable at {base_url}: {e}") from e

    if response.status_code != 200:
        return CapabilityResult(CapabilityStatus.UNAVAILABLE, f"HTTP {response.status_code} from {base_url}")

    payload = response.json()
    if payload.get("status") != "success":
        return CapabilityResult(CapabilityStatus.UNAVAILABLE, "Query did not succeed")

    targets = payload.get("data", {}).get("result", [])
    return CapabilityResult(
        CapabilityStatus.HEALTHY,
        f"{len(targets)} targets reporting",
        {"targets": len(targets)},
    )
