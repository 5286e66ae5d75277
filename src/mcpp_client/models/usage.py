"""Usage context models sent with placeholder resolution requests."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class DataUsage(Enum):
    """How resolved values are going to be used."""

    DISPLAY = "display"
    PROCESS = "process"
    STORE = "store"
    TRANSFER = "transfer"


class TargetType(Enum):
    """Kind of party that receives resolved values."""

    CLIENT = "client"
    SERVER = "server"
    SERVERS = "servers"
    LLM = "llm"
    ALL = "all"


class DataRetentionPolicy(Enum):
    NONE = "none"
    TEMPORARY = "temporary"
    TRAINING_EXCLUDED = "training_excluded"


@dataclass(frozen=True)
class LlmMetadata:
    """Describes a language model receiving data.

    Attributes:
        model_name: Model identifier
        provider: Model provider
        context_window: Context window size in tokens
        capabilities: Declared capabilities
        data_retention_policy: Provider retention policy
    """

    model_name: str | None = None
    provider: str | None = None
    context_window: int | None = None
    capabilities: tuple[str, ...] = ()
    data_retention_policy: DataRetentionPolicy | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LlmMetadata":
        policy = data.get("data_retention_policy")
        return cls(
            model_name=data.get("model_name"),
            provider=data.get("provider"),
            context_window=data.get("context_window"),
            capabilities=tuple(data.get("capabilities") or ()),
            data_retention_policy=DataRetentionPolicy(policy) if policy else None,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.model_name is not None:
            result["model_name"] = self.model_name
        if self.provider is not None:
            result["provider"] = self.provider
        if self.context_window is not None:
            result["context_window"] = self.context_window
        if self.capabilities:
            result["capabilities"] = list(self.capabilities)
        if self.data_retention_policy is not None:
            result["data_retention_policy"] = self.data_retention_policy.value
        return result


@dataclass(frozen=True)
class Requester:
    host_id: str
    session_id: str | None
    timestamp: int


@dataclass(frozen=True)
class Target:
    type: TargetType
    destination: str | tuple[str, ...]
    purpose: str | None = None
    llm_metadata: LlmMetadata | None = None


@dataclass(frozen=True)
class UsageContext:
    """Who wants a value, for what purpose, and at what usage level.

    Attributes:
        data_usage: Usage level
        requester: Host and session issuing the request
        target: Receiving party
    """

    data_usage: DataUsage
    requester: Requester
    target: Target

    @property
    def destination_key(self) -> str:
        """Normalized destination used for remembering consent decisions."""
        destination = self.target.destination
        if isinstance(destination, tuple):
            return ",".join(sorted(destination))
        return destination

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UsageContext":
        """Create UsageContext from its wire representation.

        Raises:
            KeyError: If a required field is missing
            ValueError: If an enum value is invalid
        """
        requester = data["requester"]
        target = data["target"]
        destination = target["destination"]
        llm_metadata = target.get("llm_metadata")
        return cls(
            data_usage=DataUsage(data["data_usage"]),
            requester=Requester(
                host_id=requester["host_id"],
                session_id=requester.get("session_id"),
                timestamp=int(requester["timestamp"]),
            ),
            target=Target(
                type=TargetType(target["type"]),
                destination=tuple(destination) if isinstance(destination, list) else destination,
                purpose=target.get("purpose"),
                llm_metadata=LlmMetadata.from_dict(llm_metadata) if llm_metadata else None,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire representation."""
        destination = self.target.destination
        target: dict[str, Any] = {
            "type": self.target.type.value,
            "destination": list(destination) if isinstance(destination, tuple) else destination,
        }
        if self.target.purpose is not None:
            target["purpose"] = self.target.purpose
        if self.target.llm_metadata is not None:
            target["llm_metadata"] = self.target.llm_metadata.to_dict()

        requester: dict[str, Any] = {
            "host_id": self.requester.host_id,
            "timestamp": self.requester.timestamp,
        }
        if self.requester.session_id is not None:
            requester["session_id"] = self.requester.session_id

        return {
            "data_usage": self.data_usage.value,
            "requester": requester,
            "target": target,
        }
