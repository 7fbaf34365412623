"""
CLI for mcp-healthcheck

Validates an MCP client configuration (.mcp.json) and health-checks every
server it declares. Useful for CI/CD pipelines, pre-commit hooks and cron jobs.

Usage:
  mcp-healthcheck                                  # Validate, then health-check
  mcp-healthcheck --check validate                 # Validation only
  mcp-healthcheck --check health --fast            # Health check without capability checks
  mcp-healthcheck --servers github memory          # Only these servers
  mcp-healthcheck --output json                    # JSON output
  mcp-healthcheck --report-format markdown         # Save the report as Markdown
  mcp-healthcheck --strict                         # Schema violations are errors
  mcp-healthcheck --check health --benchmark 5     # Start-up timing over 5 runs

Exit codes:
  0   success
  1   invalid configuration, a critical server failed, or a fatal error
  130 interrupted
"""

import argparse
import asyncio
import logging
import sys
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import sentry_sdk

from mcp_healthcheck import __version__
from mcp_healthcheck.config_loader import DEFAULT_CONFIG_PATH, load_config
from mcp_healthcheck.env_config import DEFAULT_ENV_PATH, RunContext, build_context
from mcp_healthcheck.errors import ConfigError
from mcp_healthcheck.report import (
    build_report,
    exit_code,
    export_to_json,
    format_result_line,
    render_console,
    render_validation,
    save_report,
)
from mcp_healthcheck.runner import OUTPUT_MODES, REPORT_FORMATS, RunOptions, run_benchmark, run_health_checks
from mcp_healthcheck.validator import ValidationResult, ValidatorOptions, validate_config

logger = logging.getLogger("mcp-healthcheck")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.WARNING,  # Only show warnings/errors unless --verbose
        format='%(levelname)s: %(message)s'
    )
    if verbose:
        logging.getLogger().setLevel(logging.INFO)


def init_sentry(context: RunContext) -> bool:
    """Enable Sentry error monitoring when SENTRY_DSN is configured."""
    dsn = context.get("SENTRY_DSN")
    if not dsn:
        return False

    sentry_sdk.init(
        dsn=dsn,
        traces_sample_rate=1.0,
        environment=context.get("SENTRY_ENVIRONMENT", "development"),
        release=context.get("SENTRY_RELEASE", f"mcp-healthcheck@{__version__}"),
    )
    logger.info("Sentry monitoring enabled")
    return True


class HealthCheckCLI:
    """CLI interface for mcp-healthcheck."""

    def __init__(self, args, context: Optional[RunContext] = None):
        self.args = args
        self.context = context or build_context(args.env_file)
        self.options = self.build_options()
        self.json_documents: Dict[str, Any] = {}

    def build_options(self, global_settings: Optional[Dict[str, Any]] = None) -> RunOptions:
        """CLI flags override the config file's global section, which overrides defaults."""
        args = self.args
        return RunOptions.from_global_settings(global_settings).with_overrides(
            timeout=args.timeout,
            concurrency=args.concurrency,
            retries=args.retries,
            retry_delay=args.retry_delay,
            fast=True if args.fast else None,
            output=args.output,
            check_connectivity=False if args.no_connectivity else None,
            strict=True if args.strict else None,
            servers=args.servers,
            reports_dir=args.reports_dir,
            report_format=args.report_format,
            save=False if args.no_save else None,
            benchmark=args.benchmark,
        )

    @property
    def is_json(self) -> bool:
        return self.options.output == "json"

    def say(self, message: str) -> None:
        """Progress lines go to stdout, except in JSON mode."""
        if not self.is_json:
            print(message)

    def log_result(self, result) -> None:
        logger.info(format_result_line(result))

    def save(self, data: Dict[str, Any], prefix: str) -> None:
        if not self.options.save:
            return
        path = save_report(data, self.options.reports_dir, prefix, self.options.report_format)
        if path is not None:
            self.say(f"📦 Report saved to {path}")

    async def run_validation(self) -> ValidationResult:
        self.say(f"ℹ Validating {self.args.config}...")
        if not self.context.env_file_found:
            self.say(f"⚠ No {self.args.env_file} file found, using the process environment only")

        result = await validate_config(
            self.args.config,
            self.context,
            ValidatorOptions(
                check_connectivity=self.options.check_connectivity,
                strict=self.options.strict,
            ),
        )

        data = {
            "timestamp": datetime.now().isoformat(),
            "config": self.args.config,
            **result.to_dict(),
        }
        if self.is_json:
            self.json_documents["validation"] = data
        else:
            print(render_validation(result))
        self.save(data, "validation")
        return result

    async def run_health(self) -> int:
        try:
            config = load_config(self.args.config)
        except ConfigError as e:
            if self.is_json:
                self.json_documents["health"] = {"error": str(e)}
            else:
                print(f"✗ {e}")
            return 1

        if config.global_settings.get("debug"):
            logging.getLogger().setLevel(logging.DEBUG)

        self.options = self.build_options(config.global_settings)
        options = self.options

        if options.benchmark:
            self.say(
                f"ℹ Benchmarking {len(config.servers)} servers "
                f"({options.benchmark} runs each, concurrency {options.concurrency}, timeout {options.timeout}s)..."
            )
        else:
            self.say(
                f"ℹ Checking {len(config.servers)} servers "
                f"(concurrency {options.concurrency}, timeout {options.timeout}s, retries {options.retries})..."
            )

        started = time.time()
        timings = None
        if options.benchmark:
            results, timings = await run_benchmark(
                config.servers, self.context, options, options.benchmark, on_result=self.log_result
            )
        else:
            results = await run_health_checks(config.servers, self.context, options, on_result=self.log_result)

        checked = {name: config.document["mcpServers"][name] for name in results}
        report = build_report(results, options, started, configuration=checked, benchmark=timings)

        if self.is_json:
            self.json_documents["health"] = report.to_dict()
        else:
            print(render_console(report, options.output))
        self.save(report.to_dict(), "benchmark" if options.benchmark else "health")
        return exit_code(report)

    def emit_json(self) -> None:
        """Print the collected documents as one JSON document."""
        if self.args.check == "all":
            document = {
                "validation": self.json_documents.get("validation"),
                "health": self.json_documents.get("health"),
            }
        else:
            stage = "validation" if self.args.check == "validate" else "health"
            document = self.json_documents.get(stage, {})
        print(export_to_json(document))

    async def run(self) -> int:
        """Run the checks selected by --check and return the process exit code."""
        code = await self.run_checks()
        if self.is_json:
            self.emit_json()
        return code

    async def run_checks(self) -> int:
        check_type = self.args.check

        if check_type in ("all", "validate"):
            validation = await self.run_validation()
            if check_type == "validate":
                return 0 if validation.valid else 1
            if not validation.valid:
                self.say("✗ Configuration has errors, skipping health checks")
                return 1

        return await self.run_health()


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be zero or more, got {value}")
    return number


def positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than zero, got {value}")
    return number


def non_negative_float(value: str) -> float:
    number = float(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be zero or more, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-healthcheck",
        description="Validate and health-check MCP server configurations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mcp-healthcheck                           # Validate, then health-check
  mcp-healthcheck --check validate --strict # Strict validation only
  mcp-healthcheck --check health --fast     # Skip capability checks
  mcp-healthcheck --output json --no-save   # JSON to stdout, no report file
        """
    )

    parser.add_argument(
        "--check",
        choices=["all", "validate", "health"],
        default="all",
        help="Which check(s) to run (default: all)"
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        metavar="PATH",
        help=f"Configuration file (default: {DEFAULT_CONFIG_PATH})"
    )
    parser.add_argument(
        "--env-file",
        default=DEFAULT_ENV_PATH,
        metavar="PATH",
        help=f"Environment file (default: {DEFAULT_ENV_PATH})"
    )
    parser.add_argument(
        "--timeout",
        type=positive_float,
        help="Per-server probe timeout in seconds (default: global.timeoutMs or 20)"
    )
    parser.add_argument(
        "--concurrency",
        type=positive_int,
        help="Servers checked at once (default: global.maxConcurrentServers or 5)"
    )
    parser.add_argument(
        "--retries",
        type=non_negative_int,
        help="Extra attempts after a failed probe (default: 1)"
    )
    parser.add_argument(
        "--retry-delay",
        type=non_negative_float,
        help="Seconds between attempts (default: 1)"
    )
    parser.add_argument(
        "--output",
        choices=OUTPUT_MODES,
        help="Console output mode (default: summary)"
    )
    parser.add_argument(
        "--fast",
        action="store_true",
        help="Skip capability checks"
    )
    parser.add_argument(
        "--no-connectivity",
        action="store_true",
        help="Skip connectivity tests during validation"
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Treat JSON schema violations as errors"
    )
    parser.add_argument(
        "--servers",
        nargs="+",
        metavar="NAME",
        help="Only health-check these servers"
    )
    parser.add_argument(
        "--reports-dir",
        metavar="DIR",
        help="Directory for saved reports (default: reports)"
    )
    parser.add_argument(
        "--report-format",
        choices=REPORT_FORMATS,
        help="Saved report format (default: json)"
    )
    parser.add_argument(
        "--no-save",
        action="store_true",
        help="Do not write report files"
    )
    parser.add_argument(
        "--benchmark",
        type=positive_int,
        metavar="N",
        help="Probe each server N times and report min/avg/max start-up time"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output (show info logs)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    return parser


async def main_async(argv: Optional[List[str]] = None) -> int:
    """Async main function."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    context = build_context(args.env_file)
    init_sentry(context)

    cli = HealthCheckCLI(args, context)
    return await cli.run()


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    try:
        code = asyncio.run(main_async(argv))
        sys.exit(code)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        sentry_sdk.capture_exception(e)
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
