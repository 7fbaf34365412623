"""
Batch runner for health checks.

Entries are checked in consecutive groups of `concurrency`; every entry in a
group runs concurrently and the whole group settles before the next one
starts. A failure or unexpected exception in one entry never affects its
siblings.

Benchmark mode reuses the same groups but probes each entry several times in
a row and records min/avg/max start-up time.

Usage:
    from mcp_healthcheck.runner import RunOptions, run_health_checks

    options = RunOptions().with_overrides(concurrency=3, fast=True)
    results = await run_health_checks(config.servers, context, options)
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from mcp_healthcheck.capabilities import check_capabilities
from mcp_healthcheck.catalog import check_env_requirements, get_requirements
from mcp_healthcheck.config_loader import ServerEntry
from mcp_healthcheck.env_config import RunContext
from mcp_healthcheck.errors import ErrorCodes
from mcp_healthcheck.probe import (
    DEFAULT_RETRIES,
    DEFAULT_RETRY_DELAY,
    DEFAULT_TIMEOUT,
    ProbeResult,
    probe,
    probe_with_retries,
)

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5
DEFAULT_REPORTS_DIR = "reports"
SLOW_STARTUP_MS = 2000

OUTPUT_MODES = ("summary", "detailed", "json")
REPORT_FORMATS = ("json", "yaml", "markdown")


@dataclass
class RunOptions:
    """Knobs for one validation/health run."""
    timeout: float = DEFAULT_TIMEOUT
    concurrency: int = DEFAULT_CONCURRENCY
    retries: int = DEFAULT_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    fast: bool = False
    output: str = "summary"
    check_connectivity: bool = True
    strict: bool = False
    servers: Optional[List[str]] = None
    reports_dir: str = DEFAULT_REPORTS_DIR
    report_format: str = "json"
    save: bool = True
    benchmark: int = 0

    def with_overrides(self, **overrides: Any) -> "RunOptions":
        """Return a copy with every non-None override applied."""
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})

    @classmethod
    def from_global_settings(cls, settings: Optional[Dict[str, Any]]) -> "RunOptions":
        """Defaults taken from the config file's "global" section."""
        options = cls()
        if not settings:
            return options

        timeout_ms = settings.get("timeoutMs")
        if isinstance(timeout_ms, int) and timeout_ms > 0:
            options.timeout = timeout_ms / 1000

        max_concurrent = settings.get("maxConcurrentServers")
        if isinstance(max_concurrent, int) and max_concurrent > 0:
            options.concurrency = max_concurrent

        return options

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeout": self.timeout,
            "concurrency": self.concurrency,
            "retries": self.retries,
            "retry_delay": self.retry_delay,
            "fast": self.fast,
            "benchmark": self.benchmark,
        }


def partition(items: List[Any], size: int) -> List[List[Any]]:
    """Split items into consecutive groups of at most `size`."""
    if size < 1:
        raise ValueError(f"Group size must be at least 1, got {size}")
    return [items[i:i + size] for i in range(0, len(items), size)]


def select_servers(servers: Dict[str, ServerEntry], names: Optional[List[str]]) -> Dict[str, ServerEntry]:
    """Restrict to the named entries, keeping document order."""
    if not names:
        return dict(servers)

    unknown = [name for name in names if name not in servers]
    if unknown:
        logger.warning(f"Unknown servers ignored: {', '.join(unknown)}")

    wanted = set(names)
    return {name: entry for name, entry in servers.items() if name in wanted}


def _enrich(result: ProbeResult, entry: ServerEntry) -> ProbeResult:
    requirements = get_requirements(entry.name)
    result.critical = requirements.critical
    result.description = requirements.description
    if requirements.env_vars:
        result.env_check = check_env_requirements(entry.name, entry.env)
    return result


async def check_server(entry: ServerEntry, context: RunContext, options: RunOptions) -> ProbeResult:
    """Probe one entry, then run its capability checks if it is up."""
    result = await probe_with_retries(
        entry,
        context,
        timeout=options.timeout,
        retries=options.retries,
        retry_delay=options.retry_delay,
    )

    if result.success and not options.fast:
        capabilities = await check_capabilities(entry, context)
        result.capabilities = {name: capability.to_dict() for name, capability in capabilities.items()}

    return _enrich(result, entry)


async def run_health_checks(
    servers: Dict[str, ServerEntry],
    context: RunContext,
    options: Optional[RunOptions] = None,
    on_result: Optional[Callable[[ProbeResult], None]] = None,
    check: Optional[Callable[[ServerEntry, RunContext, RunOptions], Awaitable[ProbeResult]]] = None,
) -> Dict[str, ProbeResult]:
    """
    Check entries in groups of options.concurrency.

    Args:
        servers: Entries to check, in document order
        context: Resolved run environment
        options: Run options (defaults when None)
        on_result: Called with each result as its group settles
        check: Per-entry coroutine (check_server when None)

    Returns:
        dict of name -> ProbeResult in document order
    """
    options = options or RunOptions()
    check = check or check_server
    entries = list(select_servers(servers, options.servers).values())
    groups = partition(entries, options.concurrency)

    results: Dict[str, ProbeResult] = {}
    for index, group in enumerate(groups, 1):
        logger.info(f"Checking group {index}/{len(groups)}: {', '.join(entry.name for entry in group)}")

        outcomes = await asyncio.gather(
            *(check(entry, context, options) for entry in group),
            return_exceptions=True,
        )

        for entry, outcome in zip(group, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Health check for {entry.name} raised: {outcome}")
                outcome = _enrich(
                    ProbeResult(
                        name=entry.name,
                        kind=entry.kind,
                        status=ErrorCodes.ERROR,
                        success=False,
                        message=f"Unexpected error: {outcome}",
                    ),
                    entry,
                )
            results[entry.name] = outcome
            if on_result is not None:
                on_result(outcome)

    healthy = sum(1 for result in results.values() if result.success)
    logger.info(f"Health check: {healthy}/{len(results)} healthy in {len(groups)} groups")
    return results


def benchmark_stats(durations: List[int], successes: int) -> Dict[str, Any]:
    """min/avg/max of repeated probe durations for one entry."""
    avg_ms = int(sum(durations) / len(durations)) if durations else 0
    return {
        "runs": len(durations),
        "successes": successes,
        "min_ms": min(durations, default=0),
        "avg_ms": avg_ms,
        "max_ms": max(durations, default=0),
        "durations_ms": list(durations),
        "slow": avg_ms > SLOW_STARTUP_MS,
    }


async def run_benchmark(
    servers: Dict[str, ServerEntry],
    context: RunContext,
    options: Optional[RunOptions] = None,
    iterations: int = 3,
    on_result: Optional[Callable[[ProbeResult], None]] = None,
) -> Tuple[Dict[str, ProbeResult], Dict[str, Dict[str, Any]]]:
    """
    Probe every entry `iterations` times and time each start-up.

    Groups run as in run_health_checks; inside an entry the probes run one
    after another without retries or capability checks.

    Returns:
        (name -> last ProbeResult, name -> benchmark_stats)
    """
    if iterations < 1:
        raise ValueError(f"Benchmark iterations must be at least 1, got {iterations}")

    timings: Dict[str, Dict[str, Any]] = {}

    async def timed_check(entry: ServerEntry, context: RunContext, options: RunOptions) -> ProbeResult:
        durations = []
        successes = 0
        for _ in range(iterations):
            result = await probe(entry, context, timeout=options.timeout)
            durations.append(result.duration_ms)
            successes += 1 if result.success else 0
        timings[entry.name] = benchmark_stats(durations, successes)
        return _enrich(result, entry)

    results = await run_health_checks(servers, context, options, on_result=on_result, check=timed_check)

    slow = [name for name, stats in timings.items() if stats["slow"]]
    if slow:
        logger.warning(f"Slow start-up (avg > {SLOW_STARTUP_MS}ms): {', '.join(slow)}")
    return results, {name: timings[name] for name in results if name in timings}
