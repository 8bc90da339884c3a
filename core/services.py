"""
Windows service lookup, restart-and-verify, and service-account profile resolution.
"""
import os
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import psutil

from config.settings import RESTART_TIMEOUT_SECONDS
from core.security import logger

# Windows-only modules; availability is checked where they are used
try:
    import win32security
    import win32serviceutil
    PYWIN32_AVAILABLE = True
except ImportError:
    PYWIN32_AVAILABLE = False

try:
    import winreg
    WINREG_AVAILABLE = True
except ImportError:
    WINREG_AVAILABLE = False


PROFILE_LIST_KEY = r"SOFTWARE\Microsoft\Windows NT\CurrentVersion\ProfileList"

WELL_KNOWN_SIDS = {
    "localsystem": "S-1-5-18",
    "nt authority\\system": "S-1-5-18",
    "system": "S-1-5-18",
    "nt authority\\localservice": "S-1-5-19",
    "nt authority\\local service": "S-1-5-19",
    "nt authority\\networkservice": "S-1-5-20",
    "nt authority\\network service": "S-1-5-20",
}


@dataclass(frozen=True)
class ServiceIdentity:
    """Resolved OS service."""
    name: str
    display_name: str
    start_account: str = ""


# ==========================================
# MATCHERS
# ==========================================

def _safe_attr(service, attr: str) -> str:
    try:
        return getattr(service, attr)() or ""
    except Exception:
        return ""


def match_name(service, wanted: str) -> bool:
    return _safe_attr(service, "name").lower() == wanted.lower()


def match_display_name(service, wanted: str) -> bool:
    return _safe_attr(service, "display_name").lower() == wanted.lower()


def match_description(service, wanted: str) -> bool:
    return _safe_attr(service, "description").lower() == wanted.lower()


Matcher = Callable[[object, str], bool]

IDENTITY_MATCHERS: Tuple[Matcher, ...] = (match_name, match_display_name, match_description)
RESTART_MATCHERS: Tuple[Matcher, ...] = (match_name, match_display_name)


def _default_restart(name: str):
    if not PYWIN32_AVAILABLE:
        raise RuntimeError("pywin32 is required to restart services")
    win32serviceutil.RestartService(name)


def _default_status(name: str) -> str:
    return psutil.win_service_get(name).status()


def _default_service_iter():
    return psutil.win_service_iter()


# ==========================================
# SERVICE CONTROLLER
# ==========================================

class ServiceController:
    """
    Resolves services and restarts them.

    The OS calls are injectable so the lookup and verification logic can run
    without a service control manager.
    """

    def __init__(
        self,
        service_iter: Callable[[], Iterable] = _default_service_iter,
        restart: Callable[[str], None] = _default_restart,
        query_status: Callable[[str], str] = _default_status,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._service_iter = service_iter
        self._restart = restart
        self._query_status = query_status
        self._sleep = sleep
        self._monotonic = monotonic

    def _services(self) -> List:
        try:
            return list(self._service_iter())
        except Exception as e:
            logger.warning("Could not enumerate services: %s", e)
            return []

    def resolve(self, wanted: Sequence[str], matchers: Sequence[Matcher] = IDENTITY_MATCHERS) -> Optional[ServiceIdentity]:
        """
        Resolve a service by trying each matcher in priority order.

        Args:
            wanted: Value compared by each matcher, one per matcher; a single
                string is used for every matcher
            matchers: Predicates tried in order; first hit wins

        Returns:
            ServiceIdentity, or None (with a warning) when nothing matches
        """
        if isinstance(wanted, str):
            wanted = [wanted] * len(matchers)

        services = self._services()
        for matcher, value in zip(matchers, wanted):
            if not value:
                continue
            for service in services:
                if matcher(service, value):
                    identity = ServiceIdentity(
                        name=_safe_attr(service, "name"),
                        display_name=_safe_attr(service, "display_name"),
                        start_account=_safe_attr(service, "username"),
                    )
                    logger.debug("Resolved service %s via %s", identity.name, matcher.__name__)
                    return identity

        logger.warning("Service not found: %s", " / ".join(v for v in wanted if v))
        return None

    def status(self, name: str) -> str:
        try:
            return self._query_status(name)
        except Exception as e:
            return f"unknown ({e})"

    def restart_and_verify(self, wanted: Sequence[str], timeout: float = RESTART_TIMEOUT_SECONDS) -> bool:
        """
        Restart a service and wait for it to report running.

        Never raises: lookup misses, restart errors and a service that does not
        come back within `timeout` seconds are logged as warnings.

        Returns:
            True if the service is running after the restart
        """
        identity = self.resolve(wanted, RESTART_MATCHERS)
        if identity is None:
            return False

        logger.info("Restarting service %s (%s)", identity.name, identity.display_name)
        try:
            self._restart(identity.name)
        except Exception as e:
            logger.warning("Restart of %s failed: %s", identity.name, e)
            return False

        deadline = self._monotonic() + timeout
        current = self.status(identity.name)
        while current != psutil.STATUS_RUNNING and self._monotonic() < deadline:
            self._sleep(1)
            current = self.status(identity.name)

        current = self.status(identity.name)
        if current == psutil.STATUS_RUNNING:
            logger.info("Service %s is running", identity.name)
            return True

        logger.warning("Service %s did not reach running within %ss (last status: %s)",
                       identity.name, timeout, current)
        return False


# ==========================================
# PROFILE RESOLUTION
# ==========================================

def current_user_profile() -> str:
    return os.environ.get("USERPROFILE") or os.path.expanduser("~")


def lookup_sid(account: str) -> str:
    """Return the string SID for a Windows account name."""
    known = WELL_KNOWN_SIDS.get(account.lower())
    if known:
        return known
    if not PYWIN32_AVAILABLE:
        raise RuntimeError("pywin32 is required to look up account SIDs")
    if account.startswith(".\\"):
        account = account[2:]
    sid, _, _ = win32security.LookupAccountName(None, account)
    return win32security.ConvertSidToStringSid(sid)


def lookup_profile_path(sid: str) -> str:
    """Read ProfileImagePath for a SID from the ProfileList registry key."""
    if not WINREG_AVAILABLE:
        raise RuntimeError("winreg is only available on Windows")
    with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, f"{PROFILE_LIST_KEY}\\{sid}") as key:
        value, _ = winreg.QueryValueEx(key, "ProfileImagePath")
    return os.path.expandvars(value)


def resolve_profile_root(
    identity: Optional[ServiceIdentity],
    sid_lookup: Callable[[str], str] = lookup_sid,
    registry_lookup: Callable[[str], str] = lookup_profile_path,
    fallback: Callable[[], str] = current_user_profile,
) -> str:
    """
    Profile directory of the account a service runs as.

    Falls back to the current user's profile when the service is absent or
    any lookup step fails.
    """
    if identity is None or not identity.start_account:
        root = fallback()
        logger.warning("No service account available, using current user profile: %s", root)
        return root

    try:
        sid = sid_lookup(identity.start_account)
        root = registry_lookup(sid)
    except Exception as e:
        root = fallback()
        logger.warning("Could not resolve profile for %s (%s), using current user profile: %s",
                       identity.start_account, e, root)
        return root

    logger.info("Service account %s profile: %s", identity.start_account, root)
    return root
