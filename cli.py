#!/usr/bin/env python3
"""
Run mcp-healthcheck from a source checkout without installing it.

Usage:
  python cli.py                          # Validate, then health-check .mcp.json
  python cli.py --check validate         # Validation only
  python cli.py --help                   # All options
"""

import sys
from pathlib import Path

# Add src directory to path
src_path = Path(__file__).parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from mcp_healthcheck.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
