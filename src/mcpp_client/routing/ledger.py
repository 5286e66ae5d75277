"""Per-session record of which server produced which tool result."""

import logging

from ..errors import DuplicateToolCallId, ToolCallNotFound
from ..models.tools import ToolCallRecord

logger = logging.getLogger(__name__)


class ToolCallLedger:
    """Maps tool call ids to the server that handled them.

    Entries live for the whole conversation and are only dropped by reset().

    Examples:
        >>> ledger = ToolCallLedger()
        >>> ledger.record("call_1", "crm", "get_contacts", True)
        >>> ledger.lookup_server("call_1")
        'crm'
    """

    def __init__(self) -> None:
        self._records: dict[str, ToolCallRecord] = {}

    def record(self, tool_call_id: str, server_key: str, tool_name: str, is_sensitive: bool = False) -> None:
        """Record a dispatched tool call.

        Re-recording identical values is a no-op.

        Raises:
            DuplicateToolCallId: If the id is already recorded with other values
        """
        record = ToolCallRecord(
            tool_call_id=tool_call_id,
            server_key=server_key,
            tool_name=tool_name,
            is_sensitive=is_sensitive,
        )
        existing = self._records.get(tool_call_id)
        if existing is not None:
            if existing == record:
                return
            raise DuplicateToolCallId(tool_call_id)

        self._records[tool_call_id] = record
        logger.debug(f"[Ledger] {tool_call_id} -> {server_key} ({tool_name}, sensitive={is_sensitive})")

    def lookup_server(self, tool_call_id: str) -> str:
        """Get the server key that owns a tool call.

        Raises:
            ToolCallNotFound: If the id was never recorded
        """
        record = self._records.get(tool_call_id)
        if record is None:
            raise ToolCallNotFound(tool_call_id)
        return record.server_key

    def get(self, tool_call_id: str) -> ToolCallRecord | None:
        return self._records.get(tool_call_id)

    def reset(self) -> None:
        """Forget every record (chat cleared)."""
        count = len(self._records)
        self._records.clear()
        logger.info(f"[Ledger] Reset, dropped {count} records")

    def __contains__(self, tool_call_id: object) -> bool:
        return tool_call_id in self._records

    def __len__(self) -> int:
        return len(self._records)
