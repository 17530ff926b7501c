"""Daily-context collaborator: one MCP tool call against a stdio server."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence

from fastmcp import Client
from fastmcp.client.transports import StdioTransport

logger = logging.getLogger("pr_monitor.daily_context")

DEFAULT_COMMAND: tuple[str, ...] = ("timestory",)
DEFAULT_TOOL = "generate_daily_story"


def extract_summary(payload: str) -> str:
    """Pick ``summary.summaryMarkdown``, then ``message``, else the raw payload."""
    try:
        response = json.loads(payload)
    except json.JSONDecodeError:
        return payload
    if not isinstance(response, dict):
        return payload

    summary = response.get("summary")
    if isinstance(summary, dict):
        markdown = summary.get("summaryMarkdown")
        if isinstance(markdown, str) and markdown:
            return markdown

    message = response.get("message")
    if isinstance(message, str) and message:
        return message
    return payload


def _text_items(content: Sequence[object]) -> list[str]:
    return [text for item in content if isinstance(text := getattr(item, "text", None), str)]


class DailyContextClient:
    """Spawn ``command`` as an MCP stdio server and call ``tool_name``.

    ``client_factory`` builds the fastmcp ``Client``; tests pass one bound to
    an in-memory server.
    """

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_COMMAND,
        tool_name: str = DEFAULT_TOOL,
        client_factory: Callable[[], Client] | None = None,
    ) -> None:
        self.command = list(command)
        self.tool_name = tool_name
        self._client_factory = client_factory or self._stdio_client

    @property
    def enabled(self) -> bool:
        return bool(self.command)

    def _stdio_client(self) -> Client:
        transport = StdioTransport(command=self.command[0], args=self.command[1:])
        return Client(transport)

    async def fetch_daily_story(self) -> str | None:
        """Return the day's markdown summary, or None on any failure."""
        if not self.enabled:
            return None
        try:
            async with self._client_factory() as client:
                result = await client.call_tool_mcp(self.tool_name, {})
        except Exception as exc:
            logger.warning("Daily context MCP call failed: %s", exc)
            return None

        texts = _text_items(result.content)
        if result.isError:
            logger.warning("Daily context tool returned error: %s", "\n".join(texts))
            return None
        if not texts:
            return None
        return extract_summary(texts[0])
