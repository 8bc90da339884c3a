"""
Performance counter trace managed through logman.

The trace outlives the run that starts it; a later invocation stops it and
collects the .blg output into its work directory.
"""
import glob
import os
import shutil
import subprocess
from typing import Callable, Dict, List

from config.settings import AppProfile
from core.security import logger
from core.status import Status, StatusLedger, StatusRecord

Runner = Callable[..., subprocess.CompletedProcess]


class PerfTrace:
    """logman data collector lifecycle for one named counter set."""

    def __init__(self, profile: AppProfile, runner: Runner = subprocess.run):
        self.profile = profile
        self.name = profile.perf_collector_name
        self.output_dir = profile.perf_output_dir
        self._runner = runner

    def _logman(self, *args: str) -> subprocess.CompletedProcess:
        cmd = ["logman", *args]
        logger.debug("Running: %s", " ".join(cmd))
        return self._runner(cmd, capture_output=True, text=True, encoding="utf-8", errors="ignore")

    @staticmethod
    def _error(result: subprocess.CompletedProcess) -> str:
        return ((result.stderr or result.stdout or "").strip()) or f"exit code {result.returncode}"

    def query(self) -> Dict[str, bool]:
        try:
            result = self._logman("query", self.name)
        except OSError as e:
            logger.warning("logman query failed: %s", e)
            return {"exists": False, "running": False}
        if result.returncode != 0:
            return {"exists": False, "running": False}
        return {"exists": True, "running": "Running" in (result.stdout or "")}

    def create_command(self) -> List[str]:
        return [
            "create", "counter", self.name,
            "-f", "bincirc",
            "-max", str(self.profile.perf_max_size_mb),
            "-si", self.profile.perf_sample_interval,
            "-o", os.path.join(self.output_dir, self.name),
            "-c", *self.profile.perf_counters,
        ]

    def start(self, ledger: StatusLedger) -> StatusRecord:
        """Create (replacing any stale collector) and start the trace."""

        def _start() -> str:
            if self.query()["exists"]:
                logger.info("Replacing existing data collector %s", self.name)
                self._logman("stop", self.name)
                self._logman("delete", self.name)

            os.makedirs(self.output_dir, exist_ok=True)

            result = self._logman(*self.create_command())
            if result.returncode != 0:
                raise RuntimeError(f"logman create failed: {self._error(result)}")

            result = self._logman("start", self.name)
            if result.returncode != 0:
                raise RuntimeError(f"logman start failed: {self._error(result)}")

            return f"Sampling every {self.profile.perf_sample_interval}; stop with --perf-trace stop"

        return ledger.attempt("Performance Trace", self.output_dir, _start, success=Status.CREATED)

    def stop_and_collect(self, ledger: StatusLedger, dest_dir: str) -> StatusRecord:
        """Stop the trace, copy its .blg files into dest_dir and delete the collector."""
        state = self.query()
        if state["running"]:
            result = self._logman("stop", self.name)
            if result.returncode != 0:
                logger.warning("logman stop failed: %s", self._error(result))

        def _collect() -> str:
            files = sorted(glob.glob(os.path.join(self.output_dir, "*.blg")))
            if not files:
                raise FileNotFoundError(f"No .blg files in {self.output_dir}")
            os.makedirs(dest_dir, exist_ok=True)
            for path in files:
                shutil.copy2(path, os.path.join(dest_dir, os.path.basename(path)))
            return f"{len(files)} trace file(s)"

        if os.path.isdir(self.output_dir) and not glob.glob(os.path.join(self.output_dir, "*.blg")):
            record = ledger.record("Performance Trace", self.output_dir, Status.NOT_FOUND, "No .blg files")
        else:
            record = ledger.attempt("Performance Trace", dest_dir, _collect, source=self.output_dir)

        if state["exists"]:
            result = self._logman("delete", self.name)
            if result.returncode != 0:
                logger.warning("logman delete failed: %s", self._error(result))
        return record
