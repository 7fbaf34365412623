"""
Environment configuration for mcp-healthcheck.

Loads environment variables from:
1. A .env file in the working directory (if it exists)
2. System environment variables (which override .env values)

Values are collected into a RunContext that is passed down to the validator
and the probes. The process environment itself is left untouched.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from mcp_healthcheck.errors import MissingCredential

DEFAULT_ENV_PATH = ".env"

# ${NAME} or ${NAME:-default}
PLACEHOLDER_PATTERN = re.compile(r"\$\{([^}]+)\}")


def parse_env_file(env_path: str = DEFAULT_ENV_PATH) -> Dict[str, str]:
    """Parse KEY=VALUE lines from a .env file. A missing file yields {}."""
    path = Path(env_path)
    if not path.exists():
        return {}

    values = {}
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()

            # Skip comments and empty lines
            if not line or line.startswith("#"):
                continue

            # Parse KEY=VALUE, last occurrence wins
            if "=" in line:
                key, value = line.split("=", 1)
                key = key.strip()
                if key:
                    values[key] = value.strip()

    return values


@dataclass
class RunContext:
    """Resolved environment shared by every check in one run."""
    environ: Dict[str, str] = field(default_factory=dict)
    env_file: Optional[str] = None
    env_file_found: bool = False
    home: str = field(default_factory=lambda: str(Path.home()))
    # Optional httpx transport; tests inject httpx.MockTransport here
    http_transport: Any = None

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.environ.get(key, default)

    def expand(self, text: str) -> str:
        return expand_placeholders(text, self.environ)

    def expand_path(self, text: str) -> str:
        """Expand placeholders plus ${HOME} and a leading ~."""
        environ = dict(self.environ)
        environ.setdefault("HOME", self.home)
        expanded = expand_placeholders(text, environ)
        if expanded.startswith("~"):
            expanded = self.home + expanded[1:]
        return expanded


def build_context(
    env_path: str = DEFAULT_ENV_PATH,
    base_environ: Optional[Mapping[str, str]] = None,
) -> RunContext:
    """
    Build the run context from a .env file and the parent environment.

    Keys already present in the parent environment are never overwritten by
    the file.
    """
    if base_environ is None:
        base_environ = os.environ

    file_values = parse_env_file(env_path)
    environ = {**file_values, **dict(base_environ)}

    return RunContext(
        environ=environ,
        env_file=env_path,
        env_file_found=Path(env_path).exists(),
        home=environ.get("HOME") or str(Path.home()),
    )


def apply_to_process(context: RunContext) -> None:
    """Copy context values into os.environ without overwriting existing keys."""
    for key, value in context.environ.items():
        if key not in os.environ:
            os.environ[key] = value


def find_placeholders(text: str) -> Iterator[Tuple[str, Optional[str]]]:
    """Yield (name, default) for each placeholder; default is None when absent."""
    for match in PLACEHOLDER_PATTERN.finditer(text):
        body = match.group(1)
        if ":-" in body:
            name, default = body.split(":-", 1)
            yield name, default
        else:
            yield body, None


def expand_placeholders(text: str, environ: Mapping[str, str]) -> str:
    """Replace ${VAR} and ${VAR:-default}; unknown ${VAR} stays verbatim."""

    def _replace(match):
        body = match.group(1)
        if ":-" in body:
            name, default = body.split(":-", 1)
            return environ.get(name) or default
        return environ.get(body) or match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def get_env(context: RunContext, key: str, default: Optional[str] = None) -> Optional[str]:
    """Get environment variable with optional default."""
    return context.environ.get(key, default)


def require_env(context: RunContext, *keys: str) -> Dict[str, str]:
    """Get required environment variables or raise MissingCredential."""
    missing = [key for key in keys if not context.environ.get(key)]
    if missing:
        raise MissingCredential(missing)
    return {key: context.environ[key] for key in keys}
