"""Run-scoped collection of render failures.

Render errors are fatal for one row range only. The collector keeps them
for the rest of the run so the caller can report them and, optionally,
flush them to the cache directory for later inspection.
"""

import json
import logging
import threading
import traceback
import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MAX_INDEXED_RUNS = 50


class ErrorSeverity(str, Enum):
    """Error severity levels."""
    ERROR = "error"       # A row range failed to render
    WARNING = "warning"   # Degraded output (e.g. images disabled)
    INFO = "info"         # Notable events


@dataclass
class ErrorContext:
    """Where an error happened."""
    operation: str                  # e.g. "render_range"
    component: str                  # e.g. "Renderer"
    start: int | None = None        # first row of the failing range
    stop: int | None = None         # one past the last row
    additional_context: dict[str, Any] | None = None


@dataclass
class CollectedError:
    """A single error occurrence during a run."""
    error_id: str
    run_id: str
    timestamp: str
    severity: ErrorSeverity
    error_type: str
    message: str
    context: dict[str, Any]
    traceback_lines: list[str]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


class ErrorCollector:
    """Collects errors during a single lanegraph run. Thread safe."""

    def __init__(self, command: str):
        self.command = command
        self.start_time = datetime.now(UTC)
        self.run_id = self._generate_run_id()
        self.errors: list[CollectedError] = []
        self._lock = threading.Lock()

        logger.debug(f"Initialized error collector for run {self.run_id}")

    def collect_error(
        self,
        error: BaseException,
        context: ErrorContext,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
    ) -> str:
        """Record an exception with context. Returns the short error id."""
        error_id = str(uuid.uuid4())[:8]
        collected = CollectedError(
            error_id=error_id,
            run_id=self.run_id,
            timestamp=datetime.now(UTC).isoformat(),
            severity=severity,
            error_type=type(error).__name__,
            message=str(error),
            context=asdict(context),
            traceback_lines=traceback.format_exception(type(error), error, error.__traceback__),
        )
        with self._lock:
            self.errors.append(collected)

        logger.debug(f"Collected error {error_id}: {collected.error_type} - {collected.message}")
        return error_id

    def collect_warning(self, message: str, context: ErrorContext) -> str:
        return self.collect_error(RuntimeWarning(message), context, ErrorSeverity.WARNING)

    def has_errors(self) -> bool:
        with self._lock:
            return any(e.severity == ErrorSeverity.ERROR for e in self.errors)

    def get_error_counts(self) -> dict[str, int]:
        """Get error counts by severity."""
        counts = {severity.value: 0 for severity in ErrorSeverity}
        with self._lock:
            for error in self.errors:
                counts[error.severity.value] += 1
        return counts

    def failed_ranges(self) -> list[tuple[int, int]]:
        with self._lock:
            return [
                (e.context["start"], e.context["stop"])
                for e in self.errors
                if e.severity == ErrorSeverity.ERROR and e.context.get("start") is not None
            ]

    def flush_to_filesystem(self, root: Path) -> Path | None:
        """Write collected errors to ``<root>/_errors/<run_id>.json``.

        Returns:
            Path to the run file, or None if nothing was collected
        """
        with self._lock:
            errors = list(self.errors)

        if not errors:
            logger.debug(f"No errors to flush for run {self.run_id}")
            return None

        errors_dir = root / "_errors"
        errors_dir.mkdir(parents=True, exist_ok=True)

        end_time = datetime.now(UTC)
        summary = {
            "schema_version": "1.0.0",
            "run_id": self.run_id,
            "command": self.command,
            "started_at": self.start_time.isoformat(),
            "completed_at": end_time.isoformat(),
            "duration_seconds": (end_time - self.start_time).total_seconds(),
            "total_errors": len(errors),
            "errors_by_severity": self.get_error_counts(),
            "errors": [e.to_dict() for e in errors],
        }

        error_file = errors_dir / f"{self.run_id}.json"
        with open(error_file, "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2, ensure_ascii=False)

        self._update_errors_index(errors_dir, summary)

        logger.info(f"Flushed {len(errors)} errors to: {error_file}")
        return error_file

    def _update_errors_index(self, errors_dir: Path, summary: dict[str, Any]) -> None:
        index_file = errors_dir / "index.json"

        index_data = None
        if index_file.exists():
            try:
                with open(index_file, encoding="utf-8") as f:
                    index_data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to read errors index, creating new one: {e}")
        if not isinstance(index_data, dict) or not isinstance(index_data.get("runs"), list):
            index_data = {"schema_version": "1.0.0", "runs": []}

        runs = [run for run in index_data["runs"] if run.get("run_id") != summary["run_id"]]
        runs.append({
            "run_id": summary["run_id"],
            "command": summary["command"],
            "started_at": summary["started_at"],
            "total_errors": summary["total_errors"],
            "error_file": f"{summary['run_id']}.json",
        })
        runs.sort(key=lambda r: r["started_at"], reverse=True)

        # Bound the directory: drop files of runs that fall off the index
        for old_run in runs[MAX_INDEXED_RUNS:]:
            (errors_dir / old_run["error_file"]).unlink(missing_ok=True)

        index_data["runs"] = runs[:MAX_INDEXED_RUNS]
        index_data["total_runs"] = len(index_data["runs"])
        index_data["last_updated"] = datetime.now(UTC).isoformat()

        with open(index_file, "w", encoding="utf-8") as f:
            json.dump(index_data, f, indent=2, ensure_ascii=False)

    def _generate_run_id(self) -> str:
        # Format: run-YYYYMMDD-HHMMSS-{short_uuid}
        timestamp_part = self.start_time.strftime("run-%Y%m%d-%H%M%S")
        return f"{timestamp_part}-{str(uuid.uuid4())[:8]}"
