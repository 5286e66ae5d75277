"""Session storage for remembered consent decisions."""

import hashlib
import logging
import time

from ..models.interactions import ConsentDecision, StoredConsent
from ..models.usage import UsageContext

logger = logging.getLogger(__name__)


class ConsentCache:
    """Remembers approvals for the rest of one session.

    Only approvals given with "remember my choice" are stored; denials and
    timeouts never are. Nothing is written to disk.

    Attributes:
        session_consents: In-memory approvals keyed by hash
    """

    def __init__(self) -> None:
        self.session_consents: dict[str, StoredConsent] = {}

    def check(self, usage_context: UsageContext) -> StoredConsent | None:
        """Check if an approval is remembered for this destination and usage.

        Args:
            usage_context: Usage context of the blocked request

        Returns:
            StoredConsent if found and not expired, None otherwise
        """
        consent_hash = self._generate_hash(usage_context.destination_key, usage_context.data_usage.value)
        stored = self.session_consents.get(consent_hash)
        if stored is None:
            return None

        if stored.expires_at is not None and stored.expires_at <= time.time():
            logger.info(f"[ConsentCache] Expired approval for {stored.destination} ({stored.data_usage})")
            del self.session_consents[consent_hash]
            return None

        return stored

    def store(
        self,
        usage_context: UsageContext,
        decision: ConsentDecision,
        expires_at: float | None = None,
    ) -> None:
        """Store a consent decision.

        - approved + remember_choice: stored for the session
        - anything else: not stored

        Args:
            usage_context: Usage context the decision was given for
            decision: User decision
            expires_at: Optional epoch seconds after which the approval lapses
        """
        if not (decision.approved and decision.remember_choice):
            return

        destination = usage_context.destination_key
        data_usage = usage_context.data_usage.value
        consent_hash = self._generate_hash(destination, data_usage)
        self.session_consents[consent_hash] = StoredConsent(
            destination=destination,
            data_usage=data_usage,
            hash=consent_hash,
            expires_at=expires_at,
        )
        logger.info(f"[ConsentCache] Remembering approval for {destination} ({data_usage})")

    def clear(self) -> None:
        self.session_consents.clear()

    def _generate_hash(self, destination: str, data_usage: str) -> str:
        """Generate unique hash for a consent entry.

        Returns:
            16-character SHA256 hash
        """
        content = f"{destination}:{data_usage}"
        return hashlib.sha256(content.encode()).hexdigest()[:16]

    def __len__(self) -> int:
        return len(self.session_consents)
