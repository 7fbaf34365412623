"""
Server probes.

A probe is one reachability/executability check against one entry:

- remote (serverUrl): streaming GET with an event-stream Accept header; the
  status line is read and the stream closed without consuming the body
- local (command): spawn `command *args --help` and judge the exit code and
  output

Probes are functions of (entry, context) and never touch os.environ.

Usage:
    from mcp_healthcheck.probe import probe_with_retries

    result = await probe_with_retries(entry, context, timeout=20, retries=1)
"""

import asyncio
import logging
import os
import signal
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

import httpx

from mcp_healthcheck import __version__
from mcp_healthcheck.config_loader import KIND_LOCAL, KIND_REMOTE, ServerEntry
from mcp_healthcheck.env_config import RunContext
from mcp_healthcheck.errors import ErrorCodes, ProbeError, ProbeMissing, ProbeTimeout

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20  # seconds
DEFAULT_RETRIES = 1
DEFAULT_RETRY_DELAY = 1.0  # seconds

OUTPUT_LIMIT = 200

USER_AGENT = f"mcp-healthcheck/{__version__}"

# Keys only meaningful for one kind of entry; dropped from to_dict() when unset
_KIND_SPECIFIC = ("exit_code", "stdout", "stderr", "http_status")


@dataclass
class ProbeResult:
    """Outcome of probing one entry."""
    name: str
    kind: Optional[str]
    status: str
    success: bool
    message: str = ""
    duration_ms: int = 0
    attempt: int = 1
    exit_code: Optional[int] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    http_status: Optional[int] = None
    # Filled in by the runner
    capabilities: Dict[str, Any] = field(default_factory=dict)
    critical: bool = False
    description: str = "Unknown"
    env_check: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in _KIND_SPECIFIC:
            if data[key] is None:
                del data[key]
        return data


def is_help_like_output(text: Optional[str]) -> bool:
    """
    Decide whether process output looks like usage text.

    Many MCP servers exit non-zero on --help but still print usage; such a
    probe counts as a success.
    """
    if not text:
        return False
    lowered = text.lower()
    return "help" in lowered or "usage" in lowered


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


async def kill_process_group(proc: asyncio.subprocess.Process) -> None:
    """
    SIGKILL a child started with start_new_session=True and everything it spawned.

    Launchers such as npx or sh leave the real server as a grandchild that
    holds the output pipes; killing only the direct child would leave wait()
    blocked until that grandchild exits on its own.
    """
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass  # group already gone
    await proc.wait()


def _elapsed_ms(started: float) -> int:
    return int((asyncio.get_running_loop().time() - started) * 1000)


async def _probe_remote(entry: ServerEntry, context: RunContext, timeout: float) -> ProbeResult:
    url = context.expand(entry.server_url)
    headers = {"Accept": "text/event-stream", "User-Agent": USER_AGENT}
    headers.update({key: context.expand(value) for key, value in entry.headers.items()})

    async def _request() -> int:
        async with httpx.AsyncClient(
            transport=context.http_transport,
            timeout=timeout,
            follow_redirects=False,
        ) as client:
            async with client.stream("GET", url, headers=headers) as response:
                return response.status_code

    try:
        status_code = await asyncio.wait_for(_request(), timeout=timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        raise ProbeTimeout(f"No response within {timeout} seconds") from e
    except httpx.HTTPError as e:
        raise ProbeError(f"Connection failed: {e}") from e

    if 200 <= status_code < 400:
        return ProbeResult(
            name=entry.name,
            kind=KIND_REMOTE,
            status=ErrorCodes.SUCCESS,
            success=True,
            message=f"HTTP {status_code}",
            http_status=status_code,
        )

    return ProbeResult(
        name=entry.name,
        kind=KIND_REMOTE,
        status=ErrorCodes.ERROR,
        success=False,
        message=f"HTTP {status_code}",
        http_status=status_code,
    )


async def _probe_local(entry: ServerEntry, context: RunContext, timeout: float) -> ProbeResult:
    command = context.expand(entry.command)
    args = [context.expand(arg) for arg in entry.args]

    # Child sees the resolved run environment plus the entry's own env block
    env = dict(context.environ)
    env.update({key: context.expand(value) for key, value in entry.env.items()})

    cwd = None
    if entry.cwd:
        cwd = context.expand_path(entry.cwd)
        if not os.path.isdir(cwd):
            raise ProbeError(f"Working directory not found: {cwd}")

    try:
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            "--help",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            cwd=cwd,
            start_new_session=True,
        )
    except FileNotFoundError as e:
        raise ProbeMissing(f"Command not found: {command}") from e
    except PermissionError as e:
        raise ProbeError(f"Permission denied: {command}") from e

    try:
        stdout_data, stderr_data = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        await kill_process_group(proc)
        raise ProbeTimeout(f"No response within {timeout} seconds") from e

    # Judge the full output; only the stored samples are truncated
    full_stdout = _decode(stdout_data)
    full_stderr = _decode(stderr_data)
    stdout = full_stdout[:OUTPUT_LIMIT]
    stderr = full_stderr[:OUTPUT_LIMIT]
    exit_code = proc.returncode

    if exit_code == 0:
        success, message = True, "Exited cleanly"
    elif is_help_like_output(full_stdout) or is_help_like_output(full_stderr):
        success, message = True, f"Help shown (exit code {exit_code})"
    else:
        success, message = False, f"Exit code {exit_code}"
        if stderr:
            message = f"{message}: {stderr.strip()}"

    return ProbeResult(
        name=entry.name,
        kind=KIND_LOCAL,
        status=ErrorCodes.SUCCESS if success else ErrorCodes.ERROR,
        success=success,
        message=message,
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
    )


async def probe(entry: ServerEntry, context: RunContext, timeout: float = DEFAULT_TIMEOUT) -> ProbeResult:
    """Probe one entry once. Never raises for probe-level failures."""
    started = asyncio.get_running_loop().time()
    kind = entry.kind

    try:
        if kind == KIND_REMOTE:
            result = await _probe_remote(entry, context, timeout)
        elif kind == KIND_LOCAL:
            result = await _probe_local(entry, context, timeout)
        else:
            raise ProbeError('Missing "command" or "serverUrl"')
    except ProbeError as e:
        result = ProbeResult(
            name=entry.name,
            kind=kind,
            status=e.code,
            success=False,
            message=str(e),
        )

    result.duration_ms = _elapsed_ms(started)
    logger.debug(f"Probe {entry.name}: {result.status} in {result.duration_ms}ms")
    return result


async def probe_with_retries(
    entry: ServerEntry,
    context: RunContext,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    retry_delay: float = DEFAULT_RETRY_DELAY,
) -> ProbeResult:
    """
    Probe an entry, retrying failures up to `retries` extra times.

    A missing command is final; retrying cannot make the binary appear.
    """
    attempt = 1
    while True:
        result = await probe(entry, context, timeout)
        result.attempt = attempt

        if result.success or result.status == ErrorCodes.MISSING or attempt > retries:
            return result

        logger.info(f"Retrying {entry.name} after {result.status} (attempt {attempt + 1}/{retries + 1})")
        await asyncio.sleep(retry_delay)
        attempt += 1
