"""Consent handling for resolution requests blocked by a server.

This package consists of:

- ConsentCoordinator: state machine tracking pending consent requests,
  racing the user's decision against the server-provided timeout.

- ElicitationConsentPresenter: presenter that shows consent prompts as
  native MCP elicitation dialogs.
"""

from .coordinator import ConsentCoordinator, ConsentPresenter, PendingConsent
from .elicitation import ElicitationConsentPresenter

__all__ = ["ConsentCoordinator", "ConsentPresenter", "PendingConsent", "ElicitationConsentPresenter"]
