"""
Tests for mcp_healthcheck.capabilities

Tests the capability registry and the built-in per-server checks.
"""

import asyncio
import sys
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from mcp_healthcheck.capabilities import (
    CapabilityRegistry,
    CapabilityResult,
    _run_command,
    capability,
    check_capabilities,
    filesystem_paths,
    registry,
)
from mcp_healthcheck.config_loader import ServerEntry
from mcp_healthcheck.env_config import RunContext
from mcp_healthcheck.errors import CapabilityStatus, CapabilityUnavailable

GOOD_TOKEN = "ghp_" + "abcdefghijklmnopqrstuvwxyz0123456789"


@pytest.fixture
def context(tmp_path):
    return RunContext(environ={"PATH": str(tmp_path)}, home=str(tmp_path))


class TestRegistry:
    """Test CapabilityRegistry and the @capability decorator."""

    def test_builtin_checks_registered(self):
        for name in ("filesystem", "github", "turso", "playwright", "memory", "ssh", "kubernetes", "prometheus"):
            assert name in registry

    @pytest.mark.asyncio
    async def test_unknown_server_has_no_capabilities(self, context):
        assert await check_capabilities(ServerEntry("something-else", {"command": "x"}), context) == {}

    @pytest.mark.asyncio
    async def test_decorator_and_failures(self, context):
        local = CapabilityRegistry()

        @capability("demo", "ok", target=local)
        async def ok_check(entry, ctx):
            return CapabilityResult(CapabilityStatus.HEALTHY, "fine")

        @capability("demo", "soft", target=local)
        async def soft_check(entry, ctx):
            raise CapabilityUnavailable("not here")

        @capability("demo", "broken", target=local)
        async def broken_check(entry, ctx):
            raise ValueError("bad")

        results = await local.run(ServerEntry("demo"), context)

        assert list(results) == ["ok", "soft", "broken"]
        assert results["ok"].status == CapabilityStatus.HEALTHY
        assert results["soft"] == CapabilityResult(CapabilityStatus.UNAVAILABLE, "not here")
        assert results["broken"].status == CapabilityStatus.UNAVAILABLE
        assert "bad" in results["broken"].message
        assert "demo" not in registry


class TestFilesystem:
    """Test the filesystem.paths check."""

    def test_paths_after_package_arg(self, context):
        entry = ServerEntry("filesystem", {
            "command": "npx",
            "args": ["-y", "@modelcontextprotocol/server-filesystem", "~/projects", "/tmp"],
        })
        assert filesystem_paths(entry, context) == [f"{context.home}/projects", "/tmp"]

    @pytest.mark.asyncio
    async def test_accessible_paths(self, context, tmp_path):
        (tmp_path / "a.txt").write_text("a")
        (tmp_path / "b.txt").write_text("b")
        entry = ServerEntry("filesystem", {
            "command": "npx",
            "args": ["-y", "@modelcontextprotocol/server-filesystem", str(tmp_path), str(tmp_path / "missing")],
        })

        result = (await check_capabilities(entry, context))["paths"]

        assert result.status == CapabilityStatus.HEALTHY
        assert result.message.startswith("1/2 paths accessible")
        assert result.details["items"] == 2

    @pytest.mark.asyncio
    async def test_no_paths(self, context):
        entry = ServerEntry("filesystem", {"command": "npx", "args": ["-y", "@modelcontextprotocol/server-filesystem"]})
        result = (await check_capabilities(entry, context))["paths"]
        assert result.status == CapabilityStatus.NEEDS_CONFIG

    @pytest.mark.asyncio
    async def test_no_accessible_paths(self, context, tmp_path):
        entry = ServerEntry("filesystem", {"command": "npx", "args": ["pkg", str(tmp_path / "nope")]})
        result = (await check_capabilities(entry, context))["paths"]
        assert result.status == CapabilityStatus.UNAVAILABLE


class TestCredentials:
    """Test github.auth and turso.database."""

    @pytest.mark.asyncio
    async def test_github_token_configured(self, context):
        context.environ["GITHUB_PERSONAL_ACCESS_TOKEN"] = GOOD_TOKEN
        entry = ServerEntry("github", {
            "command": "npx",
            "env": {"GITHUB_PERSONAL_ACCESS_TOKEN": "${GITHUB_PERSONAL_ACCESS_TOKEN}"},
        })
        result = (await check_capabilities(entry, context))["auth"]
        assert result.status == CapabilityStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_github_token_unresolved(self, context):
        entry = ServerEntry("github", {
            "command": "npx",
            "env": {"GITHUB_PERSONAL_ACCESS_TOKEN": "${GITHUB_PERSONAL_ACCESS_TOKEN}"},
        })
        result = (await check_capabilities(entry, context))["auth"]
        assert result.status == CapabilityStatus.NEEDS_CONFIG

    @pytest.mark.asyncio
    async def test_turso_not_configured_is_optional(self, context):
        result = (await check_capabilities(ServerEntry("turso", {"command": "npx"}), context))["database"]
        assert result.status == CapabilityStatus.OPTIONAL

    @pytest.mark.asyncio
    async def test_turso_placeholders(self, context):
        entry = ServerEntry("turso", {"command": "npx", "env": {
            "TURSO_DATABASE_URL": "libsql://your-database-name.turso.io",
            "TURSO_AUTH_TOKEN": "your-auth-token-here",
        }})
        result = (await check_capabilities(entry, context))["database"]
        assert result.status == CapabilityStatus.NEEDS_CONFIG

    @pytest.mark.asyncio
    async def test_turso_configured(self, context):
        context.environ.update({"TURSO_DATABASE_URL": "libsql://prod.turso.io", "TURSO_AUTH_TOKEN": "eyJhbGciOi"})
        result = (await check_capabilities(ServerEntry("turso", {"command": "npx"}), context))["database"]
        assert result.status == CapabilityStatus.HEALTHY


class TestLocalResources:
    """Test memory.storage and ssh.keys."""

    @pytest.mark.asyncio
    async def test_memory_storage_created(self, context, tmp_path):
        storage = tmp_path / "nested" / "memory.json"
        context.environ["MEMORY_FILE_PATH"] = str(storage)

        result = (await check_capabilities(ServerEntry("memory", {"command": "npx"}), context))["storage"]

        assert result.status == CapabilityStatus.HEALTHY
        assert storage.parent.is_dir()
        assert result.details["path"] == str(storage)

    @pytest.mark.asyncio
    async def test_ssh_keys_found(self, context, tmp_path):
        (tmp_path / ".ssh").mkdir()
        (tmp_path / ".ssh" / "id_ed25519").write_text("key")

        result = (await check_capabilities(ServerEntry("ssh", {"command": "npx"}), context))["keys"]

        assert result.status == CapabilityStatus.HEALTHY
        assert result.details["keys"] == ["id_ed25519"]

    @pytest.mark.asyncio
    async def test_ssh_keys_optional(self, context):
        result = (await check_capabilities(ServerEntry("ssh", {"command": "npx"}), context))["keys"]
        assert result.status == CapabilityStatus.OPTIONAL


class TestExternalTools:
    """Test checks that shell out (playwright, kubectl)."""

    @pytest.mark.asyncio
    async def test_playwright_installed(self, context):
        with patch("mcp_healthcheck.capabilities._run_command", AsyncMock(return_value=(1, "chromium is already installed"))) as mock_run:
            result = (await check_capabilities(ServerEntry("playwright", {"command": "npx"}), context))["browsers"]

        assert result.status == CapabilityStatus.HEALTHY
        assert mock_run.await_args.args[0] == ["npx", "playwright", "install", "--dry-run"]

    @pytest.mark.asyncio
    async def test_playwright_needs_setup(self, context):
        with patch("mcp_healthcheck.capabilities._run_command", AsyncMock(return_value=(1, "browser missing"))):
            result = (await check_capabilities(ServerEntry("playwright", {"command": "npx"}), context))["browsers"]
        assert result.status == CapabilityStatus.NEEDS_SETUP

    @pytest.mark.asyncio
    async def test_playwright_runner_missing(self, context):
        with patch(
            "mcp_healthcheck.capabilities._run_command",
            AsyncMock(side_effect=CapabilityUnavailable("npx not found")),
        ):
            result = (await check_capabilities(ServerEntry("playwright", {"command": "npx"}), context))["browsers"]
        assert result.status == CapabilityStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_kubernetes_cluster(self, context):
        with patch("mcp_healthcheck.capabilities._run_command", AsyncMock(return_value=(0, "Kubernetes control plane"))):
            healthy = (await check_capabilities(ServerEntry("kubernetes", {"command": "npx"}), context))["cluster"]
        with patch("mcp_healthcheck.capabilities._run_command", AsyncMock(return_value=(1, "refused"))):
            down = (await check_capabilities(ServerEntry("kubernetes", {"command": "npx"}), context))["cluster"]

        assert healthy.status == CapabilityStatus.HEALTHY
        assert down.status == CapabilityStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_run_command(self, context):
        exit_code, output = await _run_command([sys.executable, "-c", "print('hi')"], context)
        assert exit_code == 0
        assert output.strip() == "hi"

    @pytest.mark.asyncio
    async def test_run_command_missing_binary(self, context):
        with pytest.raises(CapabilityUnavailable):
            await _run_command(["/bin/does-not-exist"], context)

    @pytest.mark.asyncio
    async def test_run_command_timeout_kills_grandchildren(self, context):
        code = (
            "import subprocess, sys, time; "
            "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)']); "
            "time.sleep(30)"
        )
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(CapabilityUnavailable, match="timed out"):
            await _run_command([sys.executable, "-c", code], context, timeout=0.5)
        assert loop.time() - started < 5


class TestPrometheus:
    """Test prometheus.metrics."""

    @pytest.mark.asyncio
    async def test_metrics_query(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"status": "success", "data": {"result": [{}, {}]}})

        context = RunContext(
            environ={"PROMETHEUS_URL": "http://prom.test:9090/"},
            http_transport=httpx.MockTransport(handler),
        )
        result = (await check_capabilities(ServerEntry("prometheus", {"command": "npx"}), context))["metrics"]

        assert result.status == CapabilityStatus.HEALTHY
        assert result.details["targets"] == 2
        assert seen == ["http://prom.test:9090/api/v1/query?query=up"]

    @pytest.mark.asyncio
    async def test_prometheus_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        context = RunContext(environ={}, http_transport=httpx.MockTransport(handler))
        result = (await check_capabilities(ServerEntry("prometheus", {"command": "npx"}), context))["metrics"]

        assert result.status == CapabilityStatus.UNAVAILABLE
        assert "localhost:9090" in result.message
