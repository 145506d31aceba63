"""
Delivery result returned by every push entry point.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class EndpointOutcome:
    """Outcome of one delivery attempt to a single endpoint."""

    endpoint_id: int | str
    success: bool
    platform: str | None = None
    delivery_id: str | None = None
    error: str | None = None
    status_code: int | None = None
    removed: bool = False


@dataclass
class DeliveryResult:
    """Aggregated outcome of one notification on one channel.

    Callers always get one of these back; failures are reported through
    ``success=False`` and ``error`` instead of exceptions.
    """

    success: bool
    sent: int = 0
    failed: int = 0
    total: int = 0
    invalid_removed: int | None = None
    duration: int | None = None  # milliseconds
    error: str | None = None
    outcomes: list[EndpointOutcome] = field(default_factory=list)

    @classmethod
    def failure(cls, error: str) -> "DeliveryResult":
        return cls(success=False, error=error)

    @classmethod
    def from_outcomes(cls, outcomes: list[EndpointOutcome], **extra: Any) -> "DeliveryResult":
        sent = sum(1 for o in outcomes if o.success)
        return cls(
            success=sent > 0,
            sent=sent,
            failed=len(outcomes) - sent,
            total=len(outcomes),
            outcomes=outcomes,
            **extra,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the camelCase keys clients expect."""
        data: dict[str, Any] = {
            "success": self.success,
            "sent": self.sent,
            "failed": self.failed,
            "total": self.total,
        }
        if self.invalid_removed is not None:
            data["invalidRemoved"] = self.invalid_removed
        if self.duration is not None:
            data["duration"] = self.duration
        if self.error is not None:
            data["error"] = self.error
        return data
