"""Consent prompts shown through MCP elicitation."""

import logging
from typing import Any

from ..models.interactions import ConsentDecision, ConsentPrompt, ConsentResponse

logger = logging.getLogger(__name__)


class ElicitationConsentPresenter:
    """Shows consent prompts as native dialogs via ctx.elicit().

    Attributes:
        ctx: MCP context for elicitation
        prompts_shown: Number of prompts shown
        prompts_approved: Number of prompts the user approved
    """

    def __init__(self, ctx: Any) -> None:
        """Initialize presenter.

        Args:
            ctx: MCP Context for calling elicit()
        """
        self.ctx = ctx
        self.prompts_shown = 0
        self.prompts_approved = 0

    async def __call__(self, prompt: ConsentPrompt) -> ConsentDecision:
        """Ask the user and convert the answer to a decision.

        Declined or cancelled dialogs count as denial.
        """
        message = prompt.render()
        logger.info(f"[Elicitation] 🔔 SHOWING CONSENT DIALOG for {prompt.request_id} from {prompt.server_key}")

        result = await self.ctx.elicit(
            message,
            response_type=ConsentResponse.all_options(allow_remember=prompt.allow_remember),
        )
        self.prompts_shown += 1
        data = getattr(result, "data", None)
        logger.info(f"[Elicitation] User responded: action={result.action}, data={data}")

        if result.action != "accept":
            return ConsentDecision(approved=False)

        try:
            decision = ConsentResponse.from_string(data).to_decision()
        except ValueError as e:
            logger.warning(f"[Elicitation] Unknown consent response, denying: {e}")
            return ConsentDecision(approved=False)

        if decision.approved:
            self.prompts_approved += 1
        return decision
