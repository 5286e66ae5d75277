"""Result models for placeholder resolution."""

from dataclasses import dataclass, field
from typing import Any

from ..errors import AccessDenied, ConsentDenied, McppError


@dataclass
class ResolutionStatus:
    """Counts for one resolution attempt.

    Attributes:
        total: Number of distinct placeholders requested
        resolved: Number of placeholders that received a value
        failed: Placeholders left unresolved, in order of first occurrence
        success_rate: resolved / total, 1.0 when nothing was requested
    """

    total: int
    resolved: int
    failed: list[str] = field(default_factory=list)
    success_rate: float = 1.0

    @classmethod
    def compute(cls, requested: list[str], resolved: dict[str, Any]) -> "ResolutionStatus":
        failed = [token for token in requested if token not in resolved]
        total = len(requested)
        count = total - len(failed)
        return cls(
            total=total,
            resolved=count,
            failed=failed,
            success_rate=count / total if total else 1.0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "resolved": self.resolved,
            "failed": list(self.failed),
            "success_rate": self.success_rate,
        }


@dataclass
class ResolutionResult:
    """Outcome of resolving the placeholders in one text.

    Attributes:
        text: Text with every resolved placeholder substituted
        status: Resolution counts
        resolved_values: Resolved values keyed by placeholder token
        errors: Failure per server key ("" collects unroutable placeholders)
    """

    text: str
    status: ResolutionStatus
    resolved_values: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, McppError] = field(default_factory=dict)

    @property
    def nothing_resolved(self) -> bool:
        """True when placeholders were requested but none resolved."""
        return self.status.total > 0 and self.status.resolved == 0

    @property
    def consent_withheld(self) -> bool:
        return any(isinstance(e, ConsentDenied) for e in self.errors.values())

    @property
    def access_denied(self) -> bool:
        return any(isinstance(e, AccessDenied) for e in self.errors.values())
