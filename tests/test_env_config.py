"""
Tests for mcp_healthcheck.env_config

Tests .env parsing, context building and ${VAR} placeholder expansion.
"""

import os
from unittest.mock import patch

import pytest

from mcp_healthcheck.env_config import (
    RunContext,
    apply_to_process,
    build_context,
    expand_placeholders,
    find_placeholders,
    get_env,
    parse_env_file,
    require_env,
)
from mcp_healthcheck.errors import MissingCredential


class TestParseEnvFile:
    """Test parse_env_file function."""

    def test_missing_file_is_empty(self, tmp_path):
        assert parse_env_file(str(tmp_path / ".env")) == {}

    def test_comments_blank_and_malformed_lines_skipped(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# comment\n"
            "\n"
            "NOT_A_PAIR\n"
            "  TOKEN = abc  \n"
            "URL=http://x/?a=b\n"
        )

        assert parse_env_file(str(env_file)) == {"TOKEN": "abc", "URL": "http://x/?a=b"}

    def test_last_occurrence_wins(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("A=1\nA=2\n")
        assert parse_env_file(str(env_file)) == {"A": "2"}


class TestBuildContext:
    """Test build_context function."""

    def test_parent_environment_wins(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("A=from-file\nB=file-only\n")

        context = build_context(str(env_file), base_environ={"A": "from-parent"})

        assert context.environ["A"] == "from-parent"
        assert context.environ["B"] == "file-only"
        assert context.env_file_found is True

    def test_missing_env_file_recorded(self, tmp_path):
        context = build_context(str(tmp_path / ".env"), base_environ={"HOME": "/home/me"})
        assert context.env_file_found is False
        assert context.home == "/home/me"

    def test_process_environment_untouched(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("MCP_HEALTHCHECK_TEST_ONLY=1\n")

        with patch.dict(os.environ, {}, clear=False):
            build_context(str(env_file))
            assert "MCP_HEALTHCHECK_TEST_ONLY" not in os.environ

    def test_apply_to_process_does_not_overwrite(self):
        context = RunContext(environ={"MCP_HC_NEW": "new", "MCP_HC_OLD": "context"})
        with patch.dict(os.environ, {"MCP_HC_OLD": "process"}):
            apply_to_process(context)
            assert os.environ["MCP_HC_NEW"] == "new"
            assert os.environ["MCP_HC_OLD"] == "process"


class TestPlaceholders:
    """Test placeholder discovery and expansion."""

    def test_find_placeholders(self):
        found = list(find_placeholders("${A}/${B:-fallback}/${C:-}"))
        assert found == [("A", None), ("B", "fallback"), ("C", "")]

    def test_expand_set_variable(self):
        assert expand_placeholders("Bearer ${TOKEN}", {"TOKEN": "abc"}) == "Bearer abc"

    def test_unset_without_default_left_verbatim(self):
        assert expand_placeholders("${MISSING}", {}) == "${MISSING}"

    def test_default_used_when_unset_or_empty(self):
        assert expand_placeholders("${PORT:-8080}", {}) == "8080"
        assert expand_placeholders("${PORT:-8080}", {"PORT": ""}) == "8080"
        assert expand_placeholders("${PORT:-8080}", {"PORT": "9000"}) == "9000"

    def test_expand_path_home_and_tilde(self):
        context = RunContext(environ={}, home="/home/me")
        assert context.expand_path("${HOME}/.kube/config") == "/home/me/.kube/config"
        assert context.expand_path("~/.cache/x") == "/home/me/.cache/x"


class TestRequireEnv:
    """Test get_env and require_env."""

    def test_get_env_default(self):
        context = RunContext(environ={"A": "1"})
        assert get_env(context, "A") == "1"
        assert get_env(context, "B", "x") == "x"

    def test_require_env_returns_values(self):
        context = RunContext(environ={"A": "1", "B": "2"})
        assert require_env(context, "A", "B") == {"A": "1", "B": "2"}

    def test_require_env_lists_all_missing(self):
        context = RunContext(environ={"A": "1", "C": ""})
        with pytest.raises(MissingCredential) as exc_info:
            require_env(context, "A", "B", "C")

        assert exc_info.value.names == ["B", "C"]
        assert str(exc_info.value) == "Missing required environment variables: B, C"
