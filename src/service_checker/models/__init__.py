from .base import Base
from .check import CheckAction, RunSummary, ServiceCheckResult, TransitionOutcome
from .result import Result
from .service import ServiceRecord

__all__ = [
    "Base",
    "CheckAction",
    "Result",
    "RunSummary",
    "ServiceCheckResult",
    "ServiceRecord",
    "TransitionOutcome",
]
