"""Run-level diagnostics for lanegraph.

Collects per-range render failures so the display layer can show a
fallback and the run can be inspected afterwards.
"""

from .error_collector import (
    CollectedError,
    ErrorCollector,
    ErrorContext,
    ErrorSeverity,
)

__all__ = [
    "CollectedError",
    "ErrorCollector",
    "ErrorContext",
    "ErrorSeverity",
]
