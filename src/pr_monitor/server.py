"""FastMCP server entry point for the PR monitor."""

from __future__ import annotations

from fastmcp import FastMCP

from pr_monitor.db import monitor_lifespan
from pr_monitor.logging_config import configure_logging

mcp = FastMCP(
    "pr-monitor",
    instructions=(
        "Read-only view over ingested pull requests: failing checks, unresolved "
        "comments, roadmap counts, notifications and fix suggestions. "
        "approve_fix is the only mutating tool."
    ),
    lifespan=monitor_lifespan,
)

# Import tools to register them with @mcp.tool.
# This import MUST come AFTER mcp is created to avoid circular imports.
from pr_monitor import tools  # noqa: F401, E402


def main() -> None:
    """Serve the tool surface over stdio.

    Storage:
    - Default DB path is user-scoped config dir:
      Linux: ~/.config/pr-monitor/monitor.sqlite3
      macOS: ~/Library/Application Support/pr-monitor/monitor.sqlite3
      Windows: %APPDATA%/pr-monitor/monitor.sqlite3
    - Set PR_MONITOR_DB_PATH to override with an explicit SQLite file path.
    """
    configure_logging()
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
