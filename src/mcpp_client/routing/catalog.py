"""Tools offered by the configured servers."""

import logging

from ..models.tools import ToolDefinition

logger = logging.getLogger(__name__)


class ToolCatalog:
    """Maps tool names to their definition and owning server.

    When two servers expose a tool with the same name, the first registration
    wins and the later one is logged and ignored.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._server_by_tool: dict[str, str] = {}

    def register(self, server_key: str, tools: list[ToolDefinition]) -> None:
        for tool in tools:
            owner = self._server_by_tool.get(tool.name)
            if owner is not None and owner != server_key:
                logger.warning(f"[Catalog] Tool {tool.name} from {server_key} shadowed by {owner}")
                continue
            self._tools[tool.name] = tool
            self._server_by_tool[tool.name] = server_key

    def server_for(self, tool_name: str) -> str | None:
        return self._server_by_tool.get(tool_name)

    def is_sensitive(self, tool_name: str) -> bool:
        tool = self._tools.get(tool_name)
        return bool(tool and tool.is_sensitive)

    def tools(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def clear(self) -> None:
        self._tools.clear()
        self._server_by_tool.clear()

    def __len__(self) -> int:
        return len(self._tools)
