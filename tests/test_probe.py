"""
Tests for mcp_healthcheck.probe

Local probes spawn the running interpreter with `-c` snippets; remote probes
use httpx.MockTransport so no network is touched.
"""

import asyncio
import os
import sys
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from mcp_healthcheck.config_loader import ServerEntry
from mcp_healthcheck.env_config import RunContext
from mcp_healthcheck.errors import ErrorCodes
from mcp_healthcheck.probe import OUTPUT_LIMIT, ProbeResult, is_help_like_output, probe, probe_with_retries


def python_entry(code, name="local", **extra):
    return ServerEntry(name, {"command": sys.executable, "args": ["-c", code], **extra})


def remote_entry(url="https://example.test/sse", name="remote", **extra):
    return ServerEntry(name, {"serverUrl": url, **extra})


@pytest.fixture
def context():
    return RunContext(environ=dict(os.environ))


def context_with(handler):
    return RunContext(environ={}, http_transport=httpx.MockTransport(handler))


class TestIsHelpLikeOutput:
    """Test the help-text heuristic."""

    def test_matches_help_and_usage(self):
        assert is_help_like_output("Usage: server [options]")
        assert is_help_like_output("run with --HELP for more")

    def test_rejects_other_output(self):
        assert not is_help_like_output("Segmentation fault")
        assert not is_help_like_output("")
        assert not is_help_like_output(None)


class TestLocalProbe:
    """Test probing local (stdio) entries."""

    @pytest.mark.asyncio
    async def test_clean_exit(self, context):
        result = await probe(python_entry("import sys; sys.exit(0)"), context, timeout=10)

        assert result.success is True
        assert result.status == ErrorCodes.SUCCESS
        assert result.kind == "local"
        assert result.exit_code == 0

    @pytest.mark.asyncio
    async def test_help_text_overrides_exit_code(self, context):
        code = "import sys; print('Usage: server [options]'); sys.exit(2)"
        result = await probe(python_entry(code), context, timeout=10)

        assert result.success is True
        assert result.exit_code == 2
        assert "Help shown" in result.message

    @pytest.mark.asyncio
    async def test_help_text_on_stderr(self, context):
        code = "import sys; sys.stderr.write('usage: thing\\n'); sys.exit(1)"
        result = await probe(python_entry(code), context, timeout=10)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_failure(self, context):
        code = "import sys; sys.stderr.write('boom'); sys.exit(3)"
        result = await probe(python_entry(code), context, timeout=10)

        assert result.success is False
        assert result.status == ErrorCodes.ERROR
        assert result.exit_code == 3
        assert result.message == "Exit code 3: boom"

    @pytest.mark.asyncio
    async def test_missing_command(self, context):
        entry = ServerEntry("b", {"command": "/bin/does-not-exist"})
        result = await probe(entry, context, timeout=10)

        assert result.status == ErrorCodes.MISSING
        assert result.success is False

    @pytest.mark.asyncio
    async def test_timeout_kills_child(self, context):
        result = await probe(python_entry("import time; time.sleep(30)"), context, timeout=0.5)

        assert result.status == ErrorCodes.TIMEOUT
        assert result.success is False
        assert result.duration_ms < 10000

    @pytest.mark.asyncio
    async def test_timeout_kills_grandchildren(self, context):
        """A launcher that backgrounds the real server must not outlive the deadline."""
        code = (
            "import subprocess, sys, time; "
            "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)']); "
            "time.sleep(30)"
        )
        result = await probe(python_entry(code), context, timeout=0.5)

        assert result.status == ErrorCodes.TIMEOUT
        assert result.duration_ms < 5000

    @pytest.mark.asyncio
    async def test_usage_after_long_banner(self, context):
        code = "import sys; print('x' * 300); print('Usage: server [options]'); sys.exit(2)"
        result = await probe(python_entry(code), context, timeout=10)

        assert result.success is True
        assert result.status == ErrorCodes.SUCCESS
        assert "Usage" not in result.stdout
        assert len(result.stdout) == OUTPUT_LIMIT

    @pytest.mark.asyncio
    async def test_output_truncated(self, context):
        result = await probe(python_entry("print('x' * 500)"), context, timeout=10)
        assert len(result.stdout) == OUTPUT_LIMIT

    @pytest.mark.asyncio
    async def test_placeholders_expanded_in_args_and_env(self):
        context = RunContext(environ=dict(os.environ, PROBE_NAME="world"))
        code = (
            "import os, sys; "
            "sys.exit(0 if os.environ['GREETING'] == 'world' and sys.argv[1] == 'world' else 1)"
        )
        entry = ServerEntry("local", {
            "command": sys.executable,
            "args": ["-c", code, "${PROBE_NAME}"],
            "env": {"GREETING": "${PROBE_NAME}"},
        })

        result = await probe(entry, context, timeout=10)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_probe_does_not_touch_process_environment(self):
        context = RunContext(environ=dict(os.environ, PROBE_ONLY_VAR="1"))
        await probe(python_entry("pass"), context, timeout=10)
        assert "PROBE_ONLY_VAR" not in os.environ

    @pytest.mark.asyncio
    async def test_cwd_honoured(self, context, tmp_path):
        expected = os.path.realpath(tmp_path)
        code = f"import os, sys; sys.exit(0 if os.path.realpath(os.getcwd()) == {expected!r} else 1)"
        result = await probe(python_entry(code, cwd=str(tmp_path)), context, timeout=10)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_missing_cwd(self, context, tmp_path):
        result = await probe(python_entry("pass", cwd=str(tmp_path / "gone")), context, timeout=10)
        assert result.status == ErrorCodes.ERROR
        assert "Working directory not found" in result.message

    @pytest.mark.asyncio
    async def test_entry_without_command_or_url(self, context):
        result = await probe(ServerEntry("broken", {}), context)
        assert result.status == ErrorCodes.ERROR


class TestRemoteProbe:
    """Test probing remote (HTTP) entries."""

    @pytest.mark.asyncio
    async def test_success_and_headers(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, text="event: ping\n\n")

        entry = remote_entry(headers={"Authorization": "Bearer abc"})
        result = await probe(entry, context_with(handler), timeout=5)

        assert result.success is True
        assert result.http_status == 200
        assert result.kind == "remote"
        assert seen["accept"] == "text/event-stream"
        assert seen["user-agent"].startswith("mcp-healthcheck/")
        assert seen["authorization"] == "Bearer abc"

    @pytest.mark.asyncio
    async def test_redirect_is_success(self):
        handler = lambda request: httpx.Response(302, headers={"Location": "https://elsewhere.test"})
        result = await probe(remote_entry(), context_with(handler), timeout=5)

        assert result.success is True
        assert result.http_status == 302

    @pytest.mark.asyncio
    async def test_server_error(self):
        result = await probe(remote_entry(), context_with(lambda request: httpx.Response(500)), timeout=5)

        assert result.success is False
        assert result.status == ErrorCodes.ERROR
        assert result.message == "HTTP 500"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await probe(remote_entry(), context_with(handler), timeout=5)
        assert result.status == ErrorCodes.ERROR

    @pytest.mark.asyncio
    async def test_httpx_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = await probe(remote_entry(), context_with(handler), timeout=5)
        assert result.status == ErrorCodes.TIMEOUT

    @pytest.mark.asyncio
    async def test_never_resolves_is_timeout(self):
        async def handler(request):
            await asyncio.sleep(10)
            return httpx.Response(200)

        result = await probe(remote_entry(), context_with(handler), timeout=0.2)

        assert result.status == ErrorCodes.TIMEOUT
        assert result.success is False


class TestProbeWithRetries:
    """Test retry behaviour."""

    @staticmethod
    def failing(*args, **kwargs):
        return ProbeResult(name="a", kind="local", status=ErrorCodes.ERROR, success=False)

    @pytest.mark.asyncio
    async def test_retry_then_success(self, context):
        outcomes = [
            ProbeResult(name="a", kind="local", status=ErrorCodes.ERROR, success=False),
            ProbeResult(name="a", kind="local", status=ErrorCodes.SUCCESS, success=True),
        ]
        with patch("mcp_healthcheck.probe.probe", AsyncMock(side_effect=outcomes)) as mock_probe:
            result = await probe_with_retries(ServerEntry("a"), context, retries=2, retry_delay=0)

        assert result.success is True
        assert result.attempt == 2
        assert mock_probe.await_count == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, context):
        with patch("mcp_healthcheck.probe.probe", AsyncMock(side_effect=self.failing)) as mock_probe:
            result = await probe_with_retries(ServerEntry("a"), context, retries=2, retry_delay=0)

        assert result.success is False
        assert result.attempt == 3
        assert mock_probe.await_count == 3

    @pytest.mark.asyncio
    async def test_missing_never_retried(self, context):
        missing = ProbeResult(name="a", kind="local", status=ErrorCodes.MISSING, success=False)
        with patch("mcp_healthcheck.probe.probe", AsyncMock(return_value=missing)) as mock_probe:
            result = await probe_with_retries(ServerEntry("a"), context, retries=3, retry_delay=0)

        assert result.status == ErrorCodes.MISSING
        assert mock_probe.await_count == 1

    @pytest.mark.asyncio
    async def test_fixed_delay_between_attempts(self, context):
        with patch("mcp_healthcheck.probe.probe", AsyncMock(side_effect=self.failing)):
            with patch("mcp_healthcheck.probe.asyncio.sleep", AsyncMock()) as mock_sleep:
                await probe_with_retries(ServerEntry("a"), context, retries=2, retry_delay=1.5)

        assert [call.args[0] for call in mock_sleep.await_args_list] == [1.5, 1.5]


class TestProbeResult:
    """Test ProbeResult serialisation."""

    def test_kind_specific_fields_dropped_when_unset(self):
        data = ProbeResult(name="a", kind="remote", status="success", success=True, http_status=200).to_dict()
        assert data["http_status"] == 200
        assert "exit_code" not in data
        assert "stdout" not in data
