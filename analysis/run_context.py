"""Reusable run context for structured analysis output.

Analysis scripts use RunContext to get:
  - Structured output directories: results/<dataset>/<analysis>/<date>/data/
  - Automatic console log capture (run_log.txt)
  - Run metadata (run_info.json): git hash, timestamp, parameters
  - A `latest` symlink pointing to the most recent run

Usage:
    with RunContext(
        dataset="Senate votes 2025.csv",
        analysis_name="ideal_points",
        params=vars(args),
        primer=PRIMER,  # written to results/<dataset>/ideal_points/README.md
    ) as ctx:
        df.write_parquet(ctx.data_dir / "ideal_points.parquet")
        save_filtering_manifest(manifest, ctx.run_dir)
"""

from __future__ import annotations

import io
import json
import re
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType


class _TeeStream:
    """Writes to the wrapped stream and keeps a copy for run_log.txt."""

    def __init__(self, original: io.TextIOBase) -> None:
        self._original = original
        self._buffer = io.StringIO()

    def write(self, data: str) -> int:
        self._original.write(data)
        self._buffer.write(data)
        return len(data)

    def flush(self) -> None:
        self._original.flush()

    def getvalue(self) -> str:
        return self._buffer.getvalue()


def dataset_slug(dataset: str) -> str:
    """Directory-safe name for a dataset label or file path.

    Examples:
        "data/senate_2025.csv"   -> "senate_2025"
        "Senate votes 2025.csv"  -> "senate-votes-2025"
        "simulated"              -> "simulated"
    """
    stem = Path(dataset).stem or dataset
    slug = re.sub(r"[^a-z0-9_]+", "-", stem.lower()).strip("-")
    return slug or "dataset"


def _git_commit_hash() -> str:
    """Current git commit hash, or 'unknown' outside a repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return "unknown"
    return result.stdout.strip() if result.returncode == 0 else "unknown"


class RunContext:
    """Context manager that sets up structured output for an analysis run.

    Attributes:
        dataset: Directory-safe dataset name (see ``dataset_slug``).
        analysis_name: Name of the analysis (e.g. "ideal_points").
        params: Script parameters recorded in run_info.json.
        run_dir: Root of this run's output (results/<dataset>/<analysis>/<date>/).
        data_dir: Directory for parquet / NetCDF output.
    """

    def __init__(
        self,
        dataset: str,
        analysis_name: str,
        params: dict | None = None,
        results_root: Path | None = None,
        primer: str | None = None,
    ) -> None:
        self.dataset = dataset_slug(dataset)
        self.analysis_name = analysis_name
        self.params = params or {}

        root = results_root or Path("results")
        self._today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        self._analysis_dir = root / self.dataset / analysis_name
        self.run_dir = self._analysis_dir / self._today
        self.data_dir = self.run_dir / "data"

        self._primer = primer
        self._tee: _TeeStream | None = None
        self._original_stdout: io.TextIOBase | None = None
        self._start_time: datetime | None = None

    def __enter__(self) -> RunContext:
        self.setup()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.finalize(failed=exc_type is not None)

    def setup(self) -> None:
        """Create directories, write the primer, and start capturing stdout."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

        # Primer lives at the analysis level, shared by all dated runs
        if self._primer:
            (self._analysis_dir / "README.md").write_text(self._primer, encoding="utf-8")

        self._original_stdout = sys.stdout
        self._tee = _TeeStream(sys.stdout)
        sys.stdout = self._tee  # type: ignore[assignment]
        self._start_time = datetime.now(timezone.utc)

    def finalize(self, failed: bool = False) -> None:
        """Write run_log.txt and run_info.json, then repoint `latest`."""
        log_text = self._tee.getvalue() if self._tee is not None else ""
        if self._original_stdout is not None:
            sys.stdout = self._original_stdout  # type: ignore[assignment]
            self._original_stdout = None
        self._tee = None

        (self.run_dir / "run_log.txt").write_text(log_text, encoding="utf-8")

        run_info = {
            "analysis": self.analysis_name,
            "dataset": self.dataset,
            "run_date": self._today,
            "status": "failed" if failed else "completed",
            "timestamp_start": self._start_time.isoformat() if self._start_time else None,
            "timestamp_end": datetime.now(timezone.utc).isoformat(),
            "git_commit": _git_commit_hash(),
            "python_version": sys.version,
            "params": self.params,
        }
        with open(self.run_dir / "run_info.json", "w") as f:
            json.dump(run_info, f, indent=2, default=str)

        # Relative link so the results tree can be moved
        latest = self._analysis_dir / "latest"
        if latest.is_symlink() or latest.exists():
            latest.unlink()
        latest.symlink_to(self._today)
