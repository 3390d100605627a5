"""Process and scan tick orchestration."""

from .models import CleanupResult, ScanResult, StepOutcome, TickResult, TickStats
from .runner import ProcessPipeline, ScanPipeline

__all__ = [
    "CleanupResult",
    "ProcessPipeline",
    "ScanPipeline",
    "ScanResult",
    "StepOutcome",
    "TickResult",
    "TickStats",
]
