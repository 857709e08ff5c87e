"""Unit tests for run-scoped error collection."""

import json

from lanegraph.diagnostics import ErrorCollector, ErrorContext, ErrorSeverity
from lanegraph.diagnostics.error_collector import MAX_INDEXED_RUNS
from lanegraph.errors import EncodingError


class TestErrorCollector:
    """Test ErrorCollector bookkeeping."""

    def test_collect_error(self):
        """Test errors are recorded with their context."""
        collector = ErrorCollector("show")
        error_id = collector.collect_error(EncodingError("bad", 3, 4), ErrorContext("render_range", "Renderer", 3, 4))

        assert len(error_id) == 8
        assert collector.has_errors()
        assert collector.failed_ranges() == [(3, 4)]
        assert collector.errors[0].error_type == "EncodingError"

    def test_warnings_are_not_errors(self):
        """Test warnings are counted separately."""
        collector = ErrorCollector("show")
        collector.collect_warning("images disabled", ErrorContext("emit", "TerminalWriter"))

        assert not collector.has_errors()
        assert collector.get_error_counts() == {"error": 0, "warning": 1, "info": 0}
        assert collector.errors[0].severity == ErrorSeverity.WARNING


class TestFlush:
    """Test writing collected errors to disk."""

    def test_nothing_to_flush(self, tmp_path):
        """Test an empty run writes nothing."""
        assert ErrorCollector("show").flush_to_filesystem(tmp_path) is None
        assert not (tmp_path / "_errors").exists()

    def test_flush_writes_run_and_index(self, tmp_path):
        """Test the run file and index are written."""
        collector = ErrorCollector("show")
        collector.collect_error(EncodingError("bad"), ErrorContext("render_range", "Renderer", 0, 1))

        run_file = collector.flush_to_filesystem(tmp_path)

        data = json.loads(run_file.read_text(encoding="utf-8"))
        assert data["run_id"] == collector.run_id
        assert data["total_errors"] == 1
        assert data["errors"][0]["severity"] == "error"
        assert data["errors"][0]["context"]["start"] == 0

        index = json.loads((tmp_path / "_errors" / "index.json").read_text(encoding="utf-8"))
        assert index["runs"][0]["run_id"] == collector.run_id

    def test_index_is_bounded(self, tmp_path):
        """Test old runs fall off the index and their files are removed."""
        errors_dir = tmp_path / "_errors"
        errors_dir.mkdir()
        old_runs = [
            {
                "run_id": f"run-old-{i:03d}",
                "command": "show",
                "started_at": f"2000-01-01T00:{i // 60:02d}:{i % 60:02d}+00:00",
                "total_errors": 1,
                "error_file": f"run-old-{i:03d}.json",
            }
            for i in range(MAX_INDEXED_RUNS)
        ]
        for run in old_runs:
            (errors_dir / run["error_file"]).write_text("{}")
        (errors_dir / "index.json").write_text(json.dumps({"schema_version": "1.0.0", "runs": old_runs}))

        collector = ErrorCollector("show")
        collector.collect_error(EncodingError("bad"), ErrorContext("render_range", "Renderer", 0, 1))
        collector.flush_to_filesystem(tmp_path)

        index = json.loads((errors_dir / "index.json").read_text(encoding="utf-8"))
        assert index["total_runs"] == MAX_INDEXED_RUNS
        assert index["runs"][0]["run_id"] == collector.run_id
        assert not (errors_dir / "run-old-000.json").exists()

    def test_corrupt_index_replaced(self, tmp_path):
        """Test an unreadable index is rebuilt."""
        errors_dir = tmp_path / "_errors"
        errors_dir.mkdir()
        (errors_dir / "index.json").write_text("{broken")

        collector = ErrorCollector("show")
        collector.collect_error(EncodingError("bad"), ErrorContext("render_range", "Renderer"))
        collector.flush_to_filesystem(tmp_path)

        index = json.loads((errors_dir / "index.json").read_text(encoding="utf-8"))
        assert [run["run_id"] for run in index["runs"]] == [collector.run_id]
