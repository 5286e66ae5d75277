"""Consent state machine for resolution requests blocked by a server.

Each consent request moves NONE -> REQUESTED -> APPROVED | DENIED | TIMED_OUT.
The user's answer arrives over a decision channel keyed by request id: either
the UI posts it with submit_decision(), or an awaited presenter callback
returns it. A timer races the channel when the server set a timeout, and a
timeout is handled exactly like a denial.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ..errors import ConsentDenied, ConsentTimeout, DuplicateConsentRequest
from ..models.interactions import ConsentDecision, ConsentPrompt, ConsentRequest, ConsentState
from ..models.tools import ConsentAck
from ..models.usage import UsageContext
from ..storage.consent_cache import ConsentCache
from ..transport.client import McppTransport

logger = logging.getLogger(__name__)

ConsentPresenter = Callable[[ConsentPrompt], Awaitable[ConsentDecision]]


@dataclass
class PendingConsent:
    """A consent request waiting for the user.

    Attributes:
        request_id: Server-issued correlation id
        consent_request: Request as received from the server
        server_key: Server waiting for the decision
        decision: Channel the decision is delivered on
    """

    request_id: str
    consent_request: ConsentRequest
    server_key: str
    decision: asyncio.Future

    @property
    def prompt(self) -> ConsentPrompt:
        return ConsentPrompt.from_request(self.consent_request, self.server_key)


class ConsentCoordinator:
    """Mediates consent-required responses between servers and the user.

    Several requests may be pending at once, e.g. when two servers ask for
    consent during the same resolution. The pending map is owned by the
    coordinator and only changed through its methods.

    Attributes:
        presenter: Optional callback showing the prompt and returning the decision
        cache: Remembered approvals for this session
        remember_minutes: Duration forwarded to servers for remembered approvals
    """

    def __init__(
        self,
        presenter: ConsentPresenter | None = None,
        cache: ConsentCache | None = None,
        remember_minutes: int | None = None,
    ) -> None:
        self.presenter = presenter
        self.cache = cache or ConsentCache()
        self.remember_minutes = remember_minutes
        self._pending: dict[str, PendingConsent] = {}
        self._states: dict[str, ConsentState] = {}

    def set_presenter(self, presenter: ConsentPresenter | None) -> None:
        self.presenter = presenter

    def state(self, request_id: str) -> ConsentState:
        return self._states.get(request_id, ConsentState.NONE)

    def pending_prompts(self) -> list[ConsentPrompt]:
        return [pending.prompt for pending in self._pending.values()]

    async def obtain_consent(
        self,
        transport: McppTransport,
        consent_request: ConsentRequest,
        usage_context: UsageContext | None = None,
    ) -> ConsentDecision:
        """Run the consent flow for one blocked request.

        On approval the server has been told about the decision when this
        returns, and the caller should retry its original request once.

        Args:
            transport: Transport of the server that asked for consent
            consent_request: Request carried by the -32007 error
            usage_context: Usage context of the blocked request

        Returns:
            The approving decision

        Raises:
            ConsentDenied: If the user denied consent
            ConsentTimeout: If no decision arrived within timeout_seconds
            DuplicateConsentRequest: If the request id was already used
        """
        request_id = consent_request.request_id
        if request_id in self._states:
            raise DuplicateConsentRequest(request_id)

        if usage_context is not None and self.cache.check(usage_context):
            logger.info(f"[Consent] {request_id}: remembered approval found, skipping prompt")
            self._states[request_id] = ConsentState.APPROVED
            decision = ConsentDecision(approved=True, remember_choice=True)
            await self._acknowledge(transport, consent_request, decision)
            return decision

        pending = PendingConsent(
            request_id=request_id,
            consent_request=consent_request,
            server_key=transport.server_key,
            decision=asyncio.get_running_loop().create_future(),
        )
        self._pending[request_id] = pending
        self._states[request_id] = ConsentState.REQUESTED
        logger.info(
            f"[Consent] {request_id}: REQUESTED by {transport.server_key} "
            f"(timeout={consent_request.timeout_seconds}s)"
        )

        presenter_task = None
        if self.presenter is not None:
            presenter_task = asyncio.create_task(self._present(pending))

        timeout = consent_request.timeout_seconds
        decision = None
        try:
            if timeout > 0:
                decision = await asyncio.wait_for(pending.decision, timeout=timeout)
            else:
                decision = await pending.decision
        except asyncio.TimeoutError:
            self._states[request_id] = ConsentState.TIMED_OUT
            logger.warning(f"[Consent] {request_id}: TIMED_OUT after {timeout}s, treating as denial")
            raise ConsentTimeout(request_id, timeout) from None
        finally:
            self._pending.pop(request_id, None)
            if presenter_task is not None and not presenter_task.done():
                presenter_task.cancel()
            if decision is None and self._states[request_id] is ConsentState.REQUESTED:
                self._states[request_id] = ConsentState.DENIED

        if not decision.approved:
            self._states[request_id] = ConsentState.DENIED
            logger.info(f"[Consent] {request_id}: DENIED")
            try:
                await self._acknowledge(transport, consent_request, decision)
            except Exception as e:
                logger.warning(f"[Consent] {request_id}: failed to report denial to {transport.server_key}: {e}")
            raise ConsentDenied(request_id)

        self._states[request_id] = ConsentState.APPROVED
        logger.info(f"[Consent] {request_id}: APPROVED (remember={decision.remember_choice})")
        ack = await self._acknowledge(transport, consent_request, decision)

        if consent_request.allow_remember and usage_context is not None:
            expires_at = ack.cached_until / 1000 if ack.cached_until else None
            if expires_at is None and self.remember_minutes:
                expires_at = time.time() + self.remember_minutes * 60
            self.cache.store(usage_context, decision, expires_at=expires_at)

        return decision

    def submit_decision(self, request_id: str, approved: bool, remember_choice: bool = False) -> bool:
        """Deliver the user's decision for a pending request.

        Returns:
            True if a pending request received the decision, False if it was
            unknown, already decided or timed out
        """
        pending = self._pending.get(request_id)
        if pending is None or pending.decision.done():
            logger.warning(f"[Consent] Decision for unknown or settled request {request_id} ignored")
            return False

        pending.decision.set_result(ConsentDecision(approved=approved, remember_choice=remember_choice))
        return True

    def deny_all(self) -> None:
        """Deny every pending request (session shutdown)."""
        for request_id in list(self._pending):
            self.submit_decision(request_id, approved=False)

    async def _present(self, pending: PendingConsent) -> None:
        """Show the prompt through the presenter and post its answer."""
        try:
            decision = await self.presenter(pending.prompt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Consent] {pending.request_id}: presenter failed, denying: {e}")
            decision = ConsentDecision(approved=False)

        if not pending.decision.done():
            pending.decision.set_result(decision)

    async def _acknowledge(
        self,
        transport: McppTransport,
        consent_request: ConsentRequest,
        decision: ConsentDecision,
    ) -> ConsentAck:
        remember = decision.remember_choice and consent_request.allow_remember
        return await transport.provide_consent(
            consent_request.request_id,
            decision.approved,
            remember_choice=remember,
            duration_minutes=self.remember_minutes if remember else None,
        )
