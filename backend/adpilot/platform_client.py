"""
Platform Client Contract — what the deployment strategies need from an ad platform.

Every call returns a PlatformResult instead of raising: either a ResourceRef
(None meaning "not found" for lookups) or a PlatformError carrying a
retryable flag that the circuit breaker and the orchestrator act on.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol


# ── Resource kinds ────────────────────────────────────────────────────
BUDGET = "budget"
CAMPAIGN = "campaign"
AD_GROUP = "ad_group"
AD_SET = "ad_set"
ASSET = "asset"
CREATIVE = "creative"
AD = "ad"

# ── Error codes ───────────────────────────────────────────────────────
RATE_LIMITED = "rate_limited"
TIMEOUT = "timeout"
SERVER_ERROR = "server_error"
UNAVAILABLE = "unavailable"
CIRCUIT_OPEN = "circuit_open"
INVALID_SPEC = "invalid_spec"
POLICY_VIOLATION = "policy_violation"
AUTH = "auth"
NOT_FOUND = "not_found"
UNKNOWN = "unknown"

RETRYABLE_CODES = frozenset({RATE_LIMITED, TIMEOUT, SERVER_ERROR, UNAVAILABLE, CIRCUIT_OPEN})


def is_retryable_code(code: str) -> bool:
    return code in RETRYABLE_CODES


@dataclass(frozen=True)
class ResourceRef:
    id: str
    kind: str
    name: str = ""


@dataclass(frozen=True)
class PlatformError:
    code: str
    message: str
    retryable: bool = False

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


@dataclass(frozen=True)
class PlatformResult:
    ref: Optional[ResourceRef] = None
    error: Optional[PlatformError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def found(self) -> bool:
        return self.error is None and self.ref is not None

    @classmethod
    def success(cls, ref: ResourceRef) -> "PlatformResult":
        return cls(ref=ref)

    @classmethod
    def not_found(cls) -> "PlatformResult":
        return cls()

    @classmethod
    def failure(cls, code: str, message: str, retryable: Optional[bool] = None) -> "PlatformResult":
        if retryable is None:
            retryable = is_retryable_code(code)
        return cls(error=PlatformError(code=code, message=message, retryable=retryable))


@dataclass
class ResourceSpec:
    """A resource to create: kind, deterministic name, and platform-specific attributes."""
    kind: str
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "name": self.name, "attributes": self.attributes}


class PlatformClient(Protocol):
    """Operations every ad platform client exposes. Implementations must not raise."""

    platform: str

    async def find_resource_by_name(self, parent_id: str, kind: str, name: str) -> PlatformResult:
        ...

    async def create_resource(self, parent_id: str, spec: ResourceSpec) -> PlatformResult:
        ...

    async def upload_asset(self, account_id: str, data: bytes, name: str) -> PlatformResult:
        ...
