"""
Health report generation and export.

Builds the HealthReport for a run (system snapshot, run options, per-server
results, summary), renders it for the console and saves it under reports/
in JSON, YAML or Markdown.

Usage:
    from mcp_healthcheck.report import build_report, render_console, save_report

    report = build_report(results, options, started)
    print(render_console(report, "summary"))
    save_report(report.to_dict(), "reports", "health")
"""

import json
import logging
import os
import platform
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import psutil
import yaml

from mcp_healthcheck.errors import CapabilityStatus, ErrorCodes
from mcp_healthcheck.probe import ProbeResult

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    ErrorCodes.SUCCESS: "✓",
    ErrorCodes.ERROR: "✗",
    ErrorCodes.TIMEOUT: "⏱",
    ErrorCodes.MISSING: "📦",
}

CAPABILITY_ICONS = {
    CapabilityStatus.HEALTHY: "✓",
    CapabilityStatus.NEEDS_CONFIG: "⚠",
    CapabilityStatus.NEEDS_SETUP: "⚠",
    CapabilityStatus.UNAVAILABLE: "✗",
    CapabilityStatus.OPTIONAL: "ℹ",
}

FILE_EXTENSIONS = {"json": "json", "yaml": "yaml", "markdown": "md"}

SENSITIVE_MARKERS = ("key", "secret", "token", "password")

GB = 1024 ** 3


@dataclass
class HealthReport:
    timestamp: str
    system: Dict[str, Any]
    run: Dict[str, Any]
    servers: Dict[str, ProbeResult]
    summary: Dict[str, Any]
    configuration: Dict[str, Any] = field(default_factory=dict)
    benchmark: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "timestamp": self.timestamp,
            "system": self.system,
            "run": self.run,
            "summary": self.summary,
            "servers": {name: result.to_dict() for name, result in self.servers.items()},
            "configuration": self.configuration,
        }
        if self.benchmark:
            data["benchmark"] = self.benchmark
        return data


def collect_system_snapshot() -> Dict[str, Any]:
    """Host facts recorded alongside every health report."""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(os.getcwd())

    return {
        "platform": platform.system().lower(),
        "arch": platform.machine(),
        "python_version": platform.python_version(),
        "cpu_count": psutil.cpu_count(),
        "memory": {
            "total_gb": round(memory.total / GB, 2),
            "used_gb": round(memory.used / GB, 2),
            "free_gb": round(memory.available / GB, 2),
        },
        "uptime_minutes": int((time.time() - psutil.boot_time()) / 60),
        "load_average": [round(load, 2) for load in psutil.getloadavg()],
        "disk": {
            "total_gb": round(disk.total / GB, 2),
            "used_gb": round(disk.used / GB, 2),
            "free_gb": round(disk.free / GB, 2),
            "percent": disk.percent,
        },
    }


def summarize(results: Dict[str, ProbeResult], total_time_ms: int = 0) -> Dict[str, Any]:
    healthy = [r for r in results.values() if r.success]
    critical = [r for r in results.values() if r.critical]
    critical_failed = [r.name for r in critical if not r.success]
    durations = [r.duration_ms for r in results.values()]

    return {
        "total": len(results),
        "healthy": len(healthy),
        "unhealthy": len(results) - len(healthy),
        "critical": len(critical),
        "critical_failed": len(critical_failed),
        "critical_failed_servers": critical_failed,
        "avg_response_time_ms": int(sum(durations) / len(durations)) if durations else 0,
        "total_time_ms": total_time_ms,
    }


def build_report(
    results: Dict[str, ProbeResult],
    options: Any,
    started: float,
    configuration: Optional[Dict[str, Any]] = None,
    benchmark: Optional[Dict[str, Any]] = None,
) -> HealthReport:
    """
    Assemble the report for a finished run.

    Args:
        results: name -> ProbeResult from the runner
        options: RunOptions used for the run
        started: time.time() when the run began
        configuration: mcpServers entries that were checked
        benchmark: name -> timing stats from run_benchmark
    """
    total_time_ms = int((time.time() - started) * 1000)
    return HealthReport(
        timestamp=datetime.now().isoformat(),
        system=collect_system_snapshot(),
        run=options.to_dict(),
        servers=dict(results),
        summary=summarize(results, total_time_ms),
        configuration=configuration or {},
        benchmark=benchmark or {},
    )


def exit_code(report: HealthReport) -> int:
    """1 iff a critical server failed."""
    return 1 if report.summary.get("critical_failed") else 0


# Console rendering

def format_result_line(result: ProbeResult) -> str:
    icon = STATUS_ICONS.get(result.status, "✗")
    marker = " [critical]" if result.critical else ""
    line = f"{icon} {result.name}{marker}: {result.message} ({result.duration_ms}ms)"
    if result.attempt > 1:
        line += f" after {result.attempt} attempts"
    return line


def format_benchmark_line(name: str, stats: Dict[str, Any]) -> str:
    icon = "⚠" if stats.get("slow") else "⏱"
    return (
        f"{icon} {name}: min {stats['min_ms']}ms / avg {stats['avg_ms']}ms / max {stats['max_ms']}ms "
        f"({stats['successes']}/{stats['runs']} ok)"
    )


def _detail_lines(result: ProbeResult) -> List[str]:
    lines = [f"    kind: {result.kind or 'unknown'} | {result.description}"]

    if result.http_status is not None:
        lines.append(f"    http status: {result.http_status}")
    if result.exit_code is not None:
        lines.append(f"    exit code: {result.exit_code}")
    if result.stderr and not result.success:
        lines.append(f"    stderr: {result.stderr.strip()}")

    for name, capability in result.capabilities.items():
        icon = CAPABILITY_ICONS.get(capability.get("status"), "ℹ")
        lines.append(f"    {icon} {name}: {capability.get('message', '')}")

    if result.env_check and result.env_check.get("missing"):
        lines.append(f"    ⚠ missing env: {', '.join(result.env_check['missing'])}")

    return lines


def render_console(report: HealthReport, mode: str = "summary") -> str:
    """Render a report as summary, detailed or json text."""
    if mode == "json":
        return export_to_json(report.to_dict())

    lines = []
    for result in report.servers.values():
        lines.append(format_result_line(result))
        if mode == "detailed":
            lines.extend(_detail_lines(result))

    if report.benchmark:
        lines.append("")
        lines.append("Start-up benchmark:")
        for name, stats in report.benchmark.items():
            lines.append(format_benchmark_line(name, stats))

    summary = report.summary
    lines.append("")
    lines.append("=" * 50)
    lines.append(f"Healthy: {summary['healthy']}/{summary['total']}")
    lines.append(f"Critical: {summary['critical'] - summary['critical_failed']}/{summary['critical']} healthy")
    lines.append(f"Average response: {summary['avg_response_time_ms']}ms")
    lines.append(f"Total time: {summary['total_time_ms']}ms")

    if summary["critical_failed"]:
        lines.append(f"✗ Critical servers failed: {', '.join(summary['critical_failed_servers'])}")
    elif summary["unhealthy"]:
        lines.append(f"⚠ {summary['unhealthy']} non-critical servers unhealthy")
    else:
        lines.append("✓ All servers healthy")

    return "\n".join(lines)


def render_validation(result: Any) -> str:
    """Render a ValidationResult category by category."""
    lines = []
    for name, category in result.details.items():
        if not category.ran:
            lines.append(f"ℹ {name}: skipped")
            continue

        icon = "✓" if category.valid else "✗"
        if category.valid and category.warnings:
            icon = "⚠"
        lines.append(f"{icon} {name}")
        for error in category.errors:
            lines.append(f"    ✗ {error}")
        for warning in category.warnings:
            lines.append(f"    ⚠ {warning}")

    lines.append("")
    if result.valid:
        lines.append(f"✓ Configuration is valid ({len(result.warnings)} warnings)")
    else:
        lines.append(f"✗ Configuration is invalid: {len(result.errors)} errors, {len(result.warnings)} warnings")
    return "\n".join(lines)


# Export

def export_to_json(export_data: Dict[str, Any], indent: int = 2) -> str:
    return json.dumps(export_data, indent=indent, ensure_ascii=False)


def export_to_yaml(export_data: Dict[str, Any]) -> str:
    return yaml.dump(export_data, default_flow_style=False, sort_keys=False, allow_unicode=True)


def _is_sensitive(key: str) -> bool:
    return any(marker in key.lower() for marker in SENSITIVE_MARKERS)


def _validation_markdown(export_data: Dict[str, Any]) -> List[str]:
    md_lines = ["# MCP Configuration Validation", ""]
    md_lines.append(f"**Generated**: {export_data.get('timestamp', 'unknown')}")
    md_lines.append(f"**Config**: `{export_data.get('config', 'unknown')}`")
    md_lines.append(f"**Valid**: {'yes' if export_data.get('valid') else 'no'}")
    md_lines.append("")

    for name, category in export_data.get("details", {}).items():
        md_lines.append(f"## {name.capitalize()}")
        md_lines.append("")
        if not category.get("ran"):
            md_lines.append("_Skipped_")
            md_lines.append("")
            continue
        for error in category.get("errors", []):
            md_lines.append(f"- ✗ {error}")
        for warning in category.get("warnings", []):
            md_lines.append(f"- ⚠ {warning}")
        if not category.get("errors") and not category.get("warnings"):
            md_lines.append("- ✓ No issues")
        md_lines.append("")

    return md_lines


def _health_markdown(export_data: Dict[str, Any]) -> List[str]:
    summary = export_data.get("summary", {})
    md_lines = ["# MCP Server Health Report", ""]
    md_lines.append(f"**Generated**: {export_data.get('timestamp', 'unknown')}")
    md_lines.append(f"**Healthy**: {summary.get('healthy', 0)}/{summary.get('total', 0)}")
    md_lines.append(f"**Critical Failed**: {summary.get('critical_failed', 0)}")
    md_lines.append(f"**Total Time**: {summary.get('total_time_ms', 0)}ms")
    md_lines.append("")

    md_lines.append("## Servers")
    md_lines.append("")
    md_lines.append("| Server | Status | Critical | Time | Message |")
    md_lines.append("|--------|--------|----------|------|---------|")
    for name, server in export_data.get("servers", {}).items():
        icon = STATUS_ICONS.get(server.get("status"), "✗")
        critical = "yes" if server.get("critical") else ""
        md_lines.append(
            f"| `{name}` | {icon} {server.get('status')} | {critical} | "
            f"{server.get('duration_ms', 0)}ms | {server.get('message', '')} |"
        )
    md_lines.append("")

    benchmark = export_data.get("benchmark", {})
    if benchmark:
        md_lines.append("## Start-up Benchmark")
        md_lines.append("")
        md_lines.append("| Server | Runs | OK | Min | Avg | Max |")
        md_lines.append("|--------|------|----|-----|-----|-----|")
        for name, stats in benchmark.items():
            slow = " ⚠" if stats.get("slow") else ""
            md_lines.append(
                f"| `{name}` | {stats.get('runs', 0)} | {stats.get('successes', 0)} | "
                f"{stats.get('min_ms', 0)}ms | {stats.get('avg_ms', 0)}ms{slow} | {stats.get('max_ms', 0)}ms |"
            )
        md_lines.append("")

    configuration = export_data.get("configuration", {})
    if configuration:
        md_lines.append("## Server Configurations")
        md_lines.append("")
        for name, server_config in configuration.items():
            md_lines.append(f"### {name}")
            md_lines.append("")
            if not isinstance(server_config, dict):
                continue

            if server_config.get("serverUrl"):
                md_lines.append(f"**URL**: `{server_config['serverUrl']}`")
                md_lines.append("")
            if server_config.get("command"):
                md_lines.append(f"**Command**: `{server_config['command']}`")
                md_lines.append("")

            args = server_config.get("args") or []
            if args:
                md_lines.append("**Arguments**:")
                md_lines.append("```")
                for arg in args:
                    md_lines.append(f"  {arg}")
                md_lines.append("```")
                md_lines.append("")

            env = server_config.get("env") or {}
            if isinstance(env, dict) and env:
                md_lines.append("| Variable | Value |")
                md_lines.append("|----------|-------|")
                for key, value in env.items():
                    if _is_sensitive(key):
                        value = "***REDACTED***"
                    md_lines.append(f"| `{key}` | `{value}` |")
                md_lines.append("")

    system = export_data.get("system", {})
    if system:
        md_lines.append("## System")
        md_lines.append("")
        md_lines.append(f"- **Platform**: {system.get('platform')} ({system.get('arch')})")
        md_lines.append(f"- **Python**: {system.get('python_version')}")
        md_lines.append(f"- **CPUs**: {system.get('cpu_count')}")
        memory = system.get("memory") or {}
        if memory:
            md_lines.append(f"- **Memory**: {memory.get('used_gb')} / {memory.get('total_gb')} GB used")
        md_lines.append(f"- **Uptime**: {system.get('uptime_minutes')} minutes")
        md_lines.append("")

    return md_lines


def export_to_markdown(export_data: Dict[str, Any]) -> str:
    """Render a health or validation report as Markdown. Secret env values are redacted."""
    if "details" in export_data:
        md_lines = _validation_markdown(export_data)
    else:
        md_lines = _health_markdown(export_data)
    return "\n".join(md_lines)


def save_report(
    export_data: Dict[str, Any],
    reports_dir: str = "reports",
    prefix: str = "health",
    format: str = "json",
) -> Optional[Path]:
    """
    Write a report to <reports_dir>/<prefix>-<epoch ms>.<ext>.

    Returns:
        Path written, or None if the format is unknown or writing failed
    """
    if format == "json":
        content = export_to_json(export_data)
    elif format == "yaml":
        content = export_to_yaml(export_data)
    elif format == "markdown":
        content = export_to_markdown(export_data)
    else:
        logger.error(f"Unsupported report format: {format}")
        return None

    output_path = Path(reports_dir) / f"{prefix}-{int(time.time() * 1000)}.{FILE_EXTENSIONS[format]}"
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(content)
    except OSError as e:
        logger.error(f"Failed to save report to {output_path}: {e}")
        return None

    logger.info(f"Saved report to {output_path} ({format} format)")
    return output_path
