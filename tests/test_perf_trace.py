import subprocess

import pytest

from config.settings import AppProfile
from core.perf_trace import PerfTrace
from core.status import Status


class LogmanRunner:
    def __init__(self, exists=False, running=False, fail=()):
        self.exists = exists
        self.running = running
        self.fail = set(fail)
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append(args[1:])
        verb = args[1]
        if verb in self.fail:
            return subprocess.CompletedProcess(args, 1, "", f"{verb} refused")
        if verb == "query":
            if not self.exists:
                return subprocess.CompletedProcess(args, 1, "", "Data Collector Set was not found.")
            status = "Running" if self.running else "Stopped"
            return subprocess.CompletedProcess(args, 0, f"Status: {status}", "")
        return subprocess.CompletedProcess(args, 0, "The command completed successfully.", "")


@pytest.fixture
def profile(tmp_path):
    return AppProfile(perf_output_dir=str(tmp_path / "PerfLogs"))


def test_start_creates_and_starts_collector(ledger, profile):
    runner = LogmanRunner()
    record = PerfTrace(profile, runner=runner).start(ledger)

    assert record.status is Status.CREATED
    verbs = [c[0] for c in runner.calls]
    assert verbs == ["query", "create", "start"]
    create = runner.calls[1]
    assert create[:3] == ["create", "counter", profile.perf_collector_name]
    assert r"\Processor(_Total)\% Processor Time" in create


def test_start_replaces_existing_collector(ledger, profile):
    runner = LogmanRunner(exists=True, running=True)
    PerfTrace(profile, runner=runner).start(ledger)

    assert [c[0] for c in runner.calls] == ["query", "stop", "delete", "create", "start"]


def test_start_failure_is_recorded(ledger, profile):
    record = PerfTrace(profile, runner=LogmanRunner(fail={"create"})).start(ledger)

    assert record.status is Status.FAILED
    assert "create refused" in record.note


def test_stop_collects_trace_files(ledger, profile, tmp_path, make_file):
    make_file(f"{profile.perf_output_dir}/BHE_PerfTrace_000001.blg", "blg")
    dest = tmp_path / "work" / "PerfTrace"
    runner = LogmanRunner(exists=True, running=True)

    record = PerfTrace(profile, runner=runner).stop_and_collect(ledger, str(dest))

    assert record.status is Status.COLLECTED
    assert (dest / "BHE_PerfTrace_000001.blg").exists()
    assert [c[0] for c in runner.calls] == ["query", "stop", "delete"]


def test_stop_without_trace_output_is_not_found(ledger, profile, tmp_path):
    record = PerfTrace(profile, runner=LogmanRunner()).stop_and_collect(ledger, str(tmp_path / "work"))
    assert record.status is Status.NOT_FOUND


def test_stop_with_empty_output_dir_is_not_found(ledger, profile, tmp_path):
    (tmp_path / "PerfLogs").mkdir()
    record = PerfTrace(profile, runner=LogmanRunner(exists=True)).stop_and_collect(ledger, str(tmp_path / "work"))
    assert record.status is Status.NOT_FOUND


def test_query_reports_running_state(profile):
    assert PerfTrace(profile, runner=LogmanRunner(exists=True, running=True)).query() == {
        "exists": True, "running": True,
    }
    assert PerfTrace(profile, runner=LogmanRunner()).query() == {"exists": False, "running": False}
