"""Texas Utility-Territory Resolution Engine: ZIP or address to distribution utility (TDSP)."""

from .engine import ResolutionEngine
from .errors import ErrorCode, ResolutionError
from .models import Confidence, NonDeregulatedOutcome, ResolutionMethod, ResolutionResult

__all__ = [
    "ResolutionEngine",
    "ResolutionResult",
    "NonDeregulatedOutcome",
    "ResolutionMethod",
    "Confidence",
    "ErrorCode",
    "ResolutionError",
]
