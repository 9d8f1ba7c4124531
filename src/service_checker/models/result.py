from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Result:
    """Outcome of a call into the registry or the notifier."""

    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls) -> "Result":
        return cls(ok=True)

    @classmethod
    def failure(cls, error) -> "Result":
        return cls(ok=False, error=str(error) or type(error).__name__)
