import logging

import pytest

from core.services import (
    RESTART_MATCHERS,
    ServiceController,
    ServiceIdentity,
    lookup_sid,
    resolve_profile_root,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = 0

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps += 1
        self.now += seconds


@pytest.fixture
def services(service_factory):
    return [
        service_factory("Spooler", "Print Spooler", "Loads files to memory for later printing"),
        service_factory("SHDelegator", "SharpHoundDelegator", "SharpHound Enterprise Delegator Service",
                        username="CORP\\svc_sharphound"),
        service_factory("AzureHound", "AzureHound", "AzureHound collector", username="LocalSystem"),
    ]


def test_resolve_by_exact_name(services):
    controller = ServiceController(service_iter=lambda: services)
    identity = controller.resolve("shdelegator")
    assert identity == ServiceIdentity("SHDelegator", "SharpHoundDelegator", "CORP\\svc_sharphound")


def test_resolve_falls_back_to_display_name(services):
    controller = ServiceController(service_iter=lambda: services)
    identity = controller.resolve(["SharpHound", "SharpHoundDelegator", "unused"])
    assert identity.name == "SHDelegator"


def test_resolve_falls_back_to_description(services):
    controller = ServiceController(service_iter=lambda: services)
    identity = controller.resolve(["nope", "nope", "SharpHound Enterprise Delegator Service"])
    assert identity.name == "SHDelegator"


def test_name_match_wins_over_earlier_display_match(service_factory):
    services = [
        service_factory("Other", "Target"),
        service_factory("Target", "Something else"),
    ]
    controller = ServiceController(service_iter=lambda: services)
    assert controller.resolve("Target").name == "Target"


def test_unreadable_service_attributes_are_not_matches(service_factory):
    services = [
        service_factory("Locked", "Locked", "Target", fail_on={"description"}),
        service_factory("Open", "Open", "Target"),
    ]
    controller = ServiceController(service_iter=lambda: services)
    assert controller.resolve(["x", "x", "Target"]).name == "Open"


def test_no_match_is_a_warning_not_an_error(services, caplog):
    controller = ServiceController(service_iter=lambda: services)
    with caplog.at_level(logging.WARNING):
        identity = controller.resolve(["Missing", "Missing Display", "Missing Description"])
    assert identity is None
    assert "Service not found" in caplog.text


def test_enumeration_failure_yields_no_identity():
    def broken():
        raise AttributeError("win_service_iter is Windows only")

    assert ServiceController(service_iter=broken).resolve("SHDelegator") is None


def test_restart_matchers_ignore_description(services):
    controller = ServiceController(service_iter=lambda: services)
    assert controller.resolve(["x", "x", "SharpHound Enterprise Delegator Service"], RESTART_MATCHERS) is None


def test_restart_and_verify_waits_for_running(services):
    clock = FakeClock()
    statuses = iter(["stop_pending", "start_pending", "start_pending", "running", "running"])
    restarted = []
    controller = ServiceController(
        service_iter=lambda: services,
        restart=restarted.append,
        query_status=lambda name: next(statuses),
        sleep=clock.sleep,
        monotonic=clock.monotonic,
    )

    assert controller.restart_and_verify("SHDelegator") is True
    assert restarted == ["SHDelegator"]
    assert clock.sleeps == 3


def test_restart_timeout_reports_last_status(services, caplog):
    clock = FakeClock()
    controller = ServiceController(
        service_iter=lambda: services,
        restart=lambda name: None,
        query_status=lambda name: "stopped",
        sleep=clock.sleep,
        monotonic=clock.monotonic,
    )

    with caplog.at_level(logging.WARNING):
        assert controller.restart_and_verify("AzureHound", timeout=30) is False

    assert clock.now == pytest.approx(30)
    assert "last status: stopped" in caplog.text


def test_restart_error_is_logged_not_raised(services, caplog):
    def refuse(name):
        raise PermissionError("Access is denied")

    controller = ServiceController(service_iter=lambda: services, restart=refuse)
    with caplog.at_level(logging.WARNING):
        assert controller.restart_and_verify("SHDelegator") is False
    assert "Access is denied" in caplog.text


def test_restart_of_missing_service_is_a_noop(services):
    restarted = []
    controller = ServiceController(service_iter=lambda: services, restart=restarted.append)
    assert controller.restart_and_verify("NotInstalled") is False
    assert restarted == []


# ------------------------------------------
# Profile resolution
# ------------------------------------------

def test_profile_from_registry():
    identity = ServiceIdentity("SHDelegator", "SharpHoundDelegator", "CORP\\svc_sharphound")
    root = resolve_profile_root(
        identity,
        sid_lookup=lambda account: "S-1-5-21-1-2-3-1105",
        registry_lookup=lambda sid: f"C:\\Users\\{sid}",
        fallback=lambda: "C:\\Users\\admin",
    )
    assert root == "C:\\Users\\S-1-5-21-1-2-3-1105"


def test_absent_identity_uses_current_user(caplog):
    with caplog.at_level(logging.WARNING):
        root = resolve_profile_root(None, fallback=lambda: "C:\\Users\\admin")
    assert root == "C:\\Users\\admin"
    assert "current user profile" in caplog.text


def test_lookup_failure_uses_current_user():
    def no_such_account(account):
        raise LookupError("No mapping between account names and security IDs was done")

    identity = ServiceIdentity("SHDelegator", "SharpHoundDelegator", "CORP\\gone")
    root = resolve_profile_root(identity, sid_lookup=no_such_account, fallback=lambda: "C:\\Users\\admin")
    assert root == "C:\\Users\\admin"


def test_current_user_profile_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("USERPROFILE", str(tmp_path))
    assert resolve_profile_root(None) == str(tmp_path)


@pytest.mark.parametrize("account,sid", [
    ("LocalSystem", "S-1-5-18"),
    ("NT AUTHORITY\\SYSTEM", "S-1-5-18"),
    ("NT AUTHORITY\\LocalService", "S-1-5-19"),
    ("NT AUTHORITY\\NetworkService", "S-1-5-20"),
])
def test_well_known_accounts(account, sid):
    assert lookup_sid(account) == sid
