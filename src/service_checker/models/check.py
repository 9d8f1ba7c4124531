"""
Per-run check types: the probe kind selected for a service, the transient
verdict produced by probing it, and what one run did overall.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .service import ServiceRecord


class CheckAction(str, Enum):
    """Probe kinds a service can be configured with."""

    GET = "GET"
    PING = "PING"
    SOCKET = "SOCKET"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["CheckAction"]:
        """Return the matching action, or None for anything unrecognized."""
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass
class ServiceCheckResult:
    """A service record paired with this run's failure verdict.

    The verdict is never stored on the record itself, so the record can be
    written back as-is.
    """

    record: ServiceRecord
    failed: bool

    @property
    def name(self) -> str:
        return self.record.name


@dataclass
class TransitionOutcome:
    """Names that changed state in one run, in snapshot order."""

    failed_names: List[str] = field(default_factory=list)
    recovered_names: List[str] = field(default_factory=list)


class RunSummary(BaseModel):
    """Response body for a triggered check run."""

    checked: int = Field(default=0, description="Number of services probed")
    disabled: List[str] = Field(
        default_factory=list, description="Services disabled for an unrecognized action"
    )
    failed: List[str] = Field(default_factory=list, description="Newly failed services")
    recovered: List[str] = Field(default_factory=list, description="Newly recovered services")
    notified: bool = Field(default=True, description="Every notification was delivered")
    persisted: bool = Field(default=True, description="The snapshot was written back")
    duration_ms: float = 0.0
