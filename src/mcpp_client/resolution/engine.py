"""Batched, multi-server placeholder resolution."""

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..access import AccessControlFacade, AccessDeniedError, ConsentRequired
from ..consent.coordinator import ConsentCoordinator
from ..errors import AccessDenied, McppError, NoRouteForPlaceholder, RpcError, ToolCallNotFound
from ..models.resolution import ResolutionResult, ResolutionStatus
from ..models.tools import ResolveReply
from ..models.usage import DataUsage, TargetType, UsageContext
from ..placeholders import Placeholder, extract, substitute
from ..routing.ledger import ToolCallLedger
from ..routing.router import ServerRouter
from ..transport.client import McppTransport

logger = logging.getLogger(__name__)

# Error key for placeholders no server owns
UNROUTED = ""

_MISSING = object()


@dataclass
class _ServerBatch:
    server_key: str
    placeholders: list[Placeholder] = field(default_factory=list)

    def request_data(self) -> dict[str, str]:
        """Batch keys mapped to model-facing placeholders.

        Batch keys keep two references to the same value apart,
        e.g. "{call_1.0.name}" and "{crm:call_1.0.name}".
        """
        return {f"p{i}": p.model_form for i, p in enumerate(self.placeholders)}


@dataclass
class _BatchOutcome:
    server_key: str
    values: dict[str, Any] = field(default_factory=dict)
    error: McppError | None = None


class ResolutionEngine:
    """Resolves placeholders through the servers that own them.

    Placeholders are grouped by owning server and each server receives one
    batched mcpp/resolve_placeholders call. Calls to different servers run
    concurrently; a failure or consent wait on one server never blocks or
    cancels the others.

    Attributes:
        ledger: Tool call ownership records
        router: Transport per server key
        consent: Consent state machine for -32007 errors
        access: Usage context builder and error classifier
    """

    def __init__(
        self,
        ledger: ToolCallLedger,
        router: ServerRouter,
        consent: ConsentCoordinator,
        access: AccessControlFacade,
    ) -> None:
        self.ledger = ledger
        self.router = router
        self.consent = consent
        self.access = access

    async def resolve_text(
        self,
        text: str,
        usage_context: UsageContext | None = None,
        routing: Mapping[str, str] | None = None,
        tool_name: str | None = None,
    ) -> ResolutionResult:
        """Resolve every placeholder in text and substitute the values.

        Args:
            text: Model output containing placeholders
            usage_context: Usage context sent to servers (display to client by default)
            routing: Extra tool call id -> server key hints, checked before the ledger
            tool_name: Optional tool the values are meant for

        Returns:
            ResolutionResult with best-effort text; unresolved placeholders stay as-is
        """
        placeholders = list(extract(text))
        values, errors = await self.resolve_values(placeholders, usage_context, routing, tool_name)
        status = ResolutionStatus.compute([p.token for p in placeholders], values)

        logger.info(
            f"[Resolution] Resolved {status.resolved}/{status.total} placeholders"
            + (f", failed: {status.failed}" if status.failed else "")
        )
        return ResolutionResult(
            text=substitute(text, values),
            status=status,
            resolved_values=values,
            errors=errors,
        )

    async def resolve_values(
        self,
        placeholders: Iterable[Placeholder],
        usage_context: UsageContext | None = None,
        routing: Mapping[str, str] | None = None,
        tool_name: str | None = None,
    ) -> tuple[dict[str, Any], dict[str, McppError]]:
        """Resolve placeholders without touching any text.

        Returns:
            Tuple of (values keyed by placeholder token in input order,
            errors keyed by server key)
        """
        placeholders = list(placeholders)
        if not placeholders:
            return {}, {}

        if usage_context is None:
            usage_context = self.access.build_usage_context(
                DataUsage.DISPLAY, TargetType.CLIENT, "user_interface"
            )

        batches, unrouted = self._group(placeholders, routing)
        errors: dict[str, McppError] = {}
        if unrouted:
            tokens = ", ".join(p.literal for p in unrouted)
            logger.warning(f"[Resolution] No route for {tokens}")
            errors[UNROUTED] = NoRouteForPlaceholder(tokens)

        outcomes = await asyncio.gather(
            *(self._resolve_batch(batch, usage_context, tool_name) for batch in batches)
        )

        merged: dict[str, Any] = {}
        for outcome in outcomes:
            merged.update(outcome.values)
            if outcome.error is not None:
                errors[outcome.server_key] = outcome.error

        values = {p.token: merged[p.token] for p in placeholders if p.token in merged}
        return values, errors

    async def resolve_data(
        self,
        server_key: str,
        data: Any,
        usage_context: UsageContext,
        tool_name: str | None = None,
    ) -> Any:
        """Resolve placeholders inside arbitrary data on one server.

        Raises:
            AccessDenied: If the server refuses the usage context
            ConsentDenied: If consent was denied or timed out
            McppError: On transport or other server failures
        """
        transport = self.router.client_for(server_key)
        reply = await self._request_with_consent(transport, data, usage_context, tool_name)
        return reply.resolved_data

    def owner_of(self, placeholder: Placeholder, routing: Mapping[str, str] | None = None) -> str | None:
        """Find the configured server that owns a placeholder.

        An explicit server prefix wins, then routing hints, then the ledger.
        """
        if placeholder.server_key:
            candidate = placeholder.server_key
        elif routing and placeholder.tool_call_id in routing:
            candidate = routing[placeholder.tool_call_id]
        else:
            try:
                candidate = self.ledger.lookup_server(placeholder.tool_call_id)
            except ToolCallNotFound:
                return None

        if not self.router.has_server(candidate):
            logger.warning(f"[Resolution] {placeholder.literal} belongs to unconfigured server {candidate!r}")
            return None
        return candidate

    def _group(
        self,
        placeholders: list[Placeholder],
        routing: Mapping[str, str] | None,
    ) -> tuple[list[_ServerBatch], list[Placeholder]]:
        batches: dict[str, _ServerBatch] = {}
        unrouted: list[Placeholder] = []
        for placeholder in placeholders:
            owner = self.owner_of(placeholder, routing)
            if owner is None:
                unrouted.append(placeholder)
                continue
            batches.setdefault(owner, _ServerBatch(owner)).placeholders.append(placeholder)
        return list(batches.values()), unrouted

    async def _resolve_batch(
        self,
        batch: _ServerBatch,
        usage_context: UsageContext,
        tool_name: str | None,
    ) -> _BatchOutcome:
        try:
            transport = self.router.client_for(batch.server_key)
            reply = await self._request_with_consent(transport, batch.request_data(), usage_context, tool_name)
        except McppError as e:
            logger.warning(
                f"[Resolution] {len(batch.placeholders)} placeholders on {batch.server_key} unresolved: {e}"
            )
            return _BatchOutcome(batch.server_key, error=e)

        values = self._read_reply(batch, reply)
        logger.debug(f"[Resolution] {batch.server_key} resolved {len(values)}/{len(batch.placeholders)}")
        return _BatchOutcome(batch.server_key, values=values)

    async def _request_with_consent(
        self,
        transport: McppTransport,
        data: Any,
        usage_context: UsageContext,
        tool_name: str | None,
    ) -> ResolveReply:
        """Send one batch; on consent-required, ask the user and retry exactly once."""
        try:
            return await transport.resolve_placeholders(data, usage_context, tool_name)
        except RpcError as e:
            classified = self.access.classify(e)
            if isinstance(classified, AccessDeniedError):
                raise AccessDenied(classified.code, classified.message) from e
            if not isinstance(classified, ConsentRequired):
                raise

            logger.info(f"[Resolution] {transport.server_key} requires consent ({classified.consent_request.request_id})")
            await self.consent.obtain_consent(transport, classified.consent_request, usage_context)

        try:
            return await transport.resolve_placeholders(data, usage_context, tool_name)
        except RpcError as e:
            classified = self.access.classify(e)
            if isinstance(classified, AccessDeniedError):
                raise AccessDenied(classified.code, classified.message) from e
            raise

    def _read_reply(self, batch: _ServerBatch, reply: ResolveReply) -> dict[str, Any]:
        data = reply.resolved_data
        if not isinstance(data, dict):
            logger.warning(f"[Resolution] {batch.server_key} returned {type(data).__name__} instead of an object")
            return {}

        values: dict[str, Any] = {}
        for batch_key, placeholder in zip(batch.request_data(), batch.placeholders):
            value = _MISSING
            for key in (batch_key, placeholder.body, placeholder.model_form, placeholder.token, placeholder.literal):
                if key in data:
                    value = data[key]
                    break
            if value is _MISSING:
                continue
            # Servers echo placeholders they could not resolve
            if isinstance(value, str) and value.strip() in (placeholder.model_form, placeholder.literal):
                continue
            values[placeholder.token] = value
        return values
