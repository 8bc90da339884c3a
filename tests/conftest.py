import datetime
import io
import os
import subprocess

import pytest

from core.status import Reporter, StatusLedger


FIXED_NOW = datetime.datetime(2026, 1, 15, 9, 30, 0)


class FakeService:
    """Stands in for psutil.WindowsService."""

    def __init__(self, name, display_name="", description="", username="", status="running", fail_on=()):
        self._values = {
            "name": name,
            "display_name": display_name,
            "description": description,
            "username": username,
            "status": status,
        }
        self._fail_on = set(fail_on)

    def _get(self, key):
        if key in self._fail_on:
            raise PermissionError(f"access denied reading {key}")
        return self._values[key]

    def name(self):
        return self._get("name")

    def display_name(self):
        return self._get("display_name")

    def description(self):
        return self._get("description")

    def username(self):
        return self._get("username")

    def status(self):
        return self._get("status")


class FakeRunner:
    """Records commands; wevtutil epl writes the target file, everything else succeeds."""

    def __init__(self, fail=()):
        self.calls = []
        self.fail = set(fail)

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        key = " ".join(args[:2])
        if key in self.fail:
            return subprocess.CompletedProcess(args, 1, stdout="", stderr=f"{key} failed")
        if args[:2] == ["wevtutil", "epl"]:
            with open(args[3], "wb") as f:
                f.write(b"ElfFile")
        if args[:2] == ["wevtutil", "qe"]:
            return subprocess.CompletedProcess(args, 0, stdout="<Events></Events>", stderr="")
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")


@pytest.fixture
def console():
    return io.StringIO()


@pytest.fixture
def ledger(console):
    return StatusLedger(Reporter(stream=console, color=False))


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


def write_file(path, content="data"):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return path


@pytest.fixture
def make_file():
    return write_file


@pytest.fixture
def service_factory():
    return FakeService


@pytest.fixture
def runner_factory():
    return FakeRunner
