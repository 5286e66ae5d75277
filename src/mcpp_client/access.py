"""Usage contexts and classification of access-control errors."""

import logging
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Union

from .errors import ACCESS_DENIED_CODES, McppErrorCode, RpcError
from .models.interactions import ConsentRequest
from .models.usage import DataUsage, LlmMetadata, Requester, Target, TargetType, UsageContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsentRequired:
    consent_request: ConsentRequest


@dataclass(frozen=True)
class AccessDeniedError:
    code: int
    message: str


@dataclass(frozen=True)
class OtherError:
    error: Any


ErrorClass = Union[ConsentRequired, AccessDeniedError, OtherError]


class AccessControlFacade:
    """Builds usage contexts and classifies server errors.

    Attributes:
        host_id: Host identity stamped into every usage context
        session_id: Conversation identity stamped into every usage context
    """

    def __init__(self, host_id: str, session_id: str | None = None) -> None:
        self.host_id = host_id
        self.session_id = session_id or f"session-{uuid.uuid4().hex[:12]}"

    def build_usage_context(
        self,
        data_usage: DataUsage | str,
        target_type: TargetType | str,
        destination: str | Sequence[str],
        purpose: str | None = None,
        llm_metadata: LlmMetadata | dict[str, Any] | None = None,
    ) -> UsageContext:
        """Build a usage context stamped with the current time.

        Raises:
            ValueError: If data_usage or target_type is not a known value
        """
        if isinstance(llm_metadata, dict):
            llm_metadata = LlmMetadata.from_dict(llm_metadata)
        if not isinstance(destination, str):
            destination = tuple(destination)

        return UsageContext(
            data_usage=DataUsage(data_usage),
            requester=Requester(
                host_id=self.host_id,
                session_id=self.session_id,
                timestamp=int(time.time() * 1000),
            ),
            target=Target(
                type=TargetType(target_type),
                destination=destination,
                purpose=purpose,
                llm_metadata=llm_metadata,
            ),
        )

    def classify(self, error: Any) -> ErrorClass:
        """Sort an error into consent-required, access-denied or other.

        Accepts RpcError instances and raw JSON-RPC error objects. Never raises;
        anything unrecognized is classified as OtherError.
        """
        code, message, data = _error_fields(error)
        if code is None:
            return OtherError(error)

        if code == McppErrorCode.CONSENT_REQUIRED:
            raw_request = data.get("consent_request") if isinstance(data, dict) else None
            if isinstance(raw_request, dict):
                try:
                    return ConsentRequired(ConsentRequest.from_dict(raw_request))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"[AccessControl] Malformed consent_request: {e}")
            return OtherError(error)

        if code in ACCESS_DENIED_CODES:
            return AccessDeniedError(code=code, message=message)

        return OtherError(error)


def _error_fields(error: Any) -> tuple[int | None, str, Any]:
    if isinstance(error, RpcError):
        return error.code, error.message, error.data
    if isinstance(error, dict):
        code = error.get("code")
        if isinstance(code, int) and not isinstance(code, bool):
            return code, str(error.get("message", "")), error.get("data")
    return None, "", None
