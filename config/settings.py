"""
Run configuration for the support log collector.

Everything that used to be an ambient script flag lives in one immutable
CollectorConfig that is handed to every collector and mutator.
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional, Tuple


COLLECTOR_VERSION = "1.6.0"


class Mode(Enum):
    """Which collector/mutator set an invocation activates."""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    ALL = "all"
    CONFIG_ONLY = "config-only"
    ANALYZE = "analyze"

    @property
    def collects_primary(self) -> bool:
        return self in (Mode.PRIMARY, Mode.ALL)

    @property
    def collects_secondary(self) -> bool:
        return self in (Mode.SECONDARY, Mode.ALL)

    @property
    def creates_work_dir(self) -> bool:
        return self in (Mode.PRIMARY, Mode.SECONDARY, Mode.ALL)


# Artifact categories accepted by --exclude
EXCLUDE_EVENT_LOGS = "event-logs"
EXCLUDE_SERVICE_LOG = "service-log"
EXCLUDE_SETTINGS = "settings"
EXCLUDE_LOG_ARCHIVE = "log-archive"
EXCLUDE_SECONDARY_LOGS = "secondary-logs"
EXCLUDE_SECONDARY_CONFIG = "secondary-config"

EXCLUDE_CHOICES = (
    EXCLUDE_EVENT_LOGS,
    EXCLUDE_SERVICE_LOG,
    EXCLUDE_SETTINGS,
    EXCLUDE_LOG_ARCHIVE,
    EXCLUDE_SECONDARY_LOGS,
    EXCLUDE_SECONDARY_CONFIG,
)

# low/medium/high as accepted on the command line -> value written to settings.json
VERBOSITY_LEVELS = {
    "low": "Information",
    "medium": "Debug",
    "high": "Trace",
}

SECONDARY_VERBOSITY_CHOICES = (-1, 0, 1, 2)

EVENT_LOGS = ("Application", "System")

RESTART_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class AppProfile:
    """Deployment constants for the two collected tools."""
    tool_name: str = "BHE"

    # Primary service (runs under a service account whose profile holds the logs)
    primary_label: str = "SharpHound"
    primary_service: str = "SHDelegator"
    primary_display_name: str = "SharpHoundDelegator"
    primary_description: str = "SharpHound Enterprise Delegator Service"
    primary_app_dir: str = "BloodHoundEnterprise"
    service_log: str = "service.log"
    settings_file: str = "settings.json"
    log_archive_dir: str = "log_archive"
    log_level_field: str = "LogLevel"
    enumeration_log_level_field: str = "EnumerationLogLevel"

    # Secondary tool (installed under Program Files, logs next to its config)
    secondary_label: str = "AzureHound"
    secondary_service: str = "AzureHound"
    secondary_display_name: str = "AzureHound"
    secondary_root: str = os.path.join(os.environ.get("ProgramFiles", r"C:\Program Files"), "AzureHound")
    secondary_config_file: str = "config.json"
    secondary_logs_dir: str = "logs"
    secondary_verbosity_field: str = "verbosity"

    # Performance counter trace
    perf_collector_name: str = "BHE_PerfTrace"
    perf_output_dir: str = r"C:\PerfLogs\Admin\BHE_PerfTrace"
    perf_counters: Tuple[str, ...] = (
        r"\Processor(_Total)\% Processor Time",
        r"\Memory\Available MBytes",
        r"\Process(*)\Working Set - Private",
        r"\Process(*)\% Processor Time",
        r"\PhysicalDisk(_Total)\% Disk Time",
        r"\Network Interface(*)\Bytes Total/sec",
    )
    perf_sample_interval: str = "00:00:15"
    perf_max_size_mb: int = 512

    @property
    def primary_matchers(self) -> Tuple[str, ...]:
        return (self.primary_service, self.primary_display_name, self.primary_description)


@dataclass(frozen=True)
class CollectorConfig:
    """Immutable options for one collection run."""
    output_root: str = "."
    mode: Mode = Mode.PRIMARY
    exclude: FrozenSet[str] = frozenset()
    log_archive_cap: int = 0
    log_level: Optional[str] = None
    enumeration_log_level: Optional[str] = None
    secondary_verbosity: Optional[int] = None
    restart_primary: bool = False
    restart_secondary: bool = False
    perf_trace: Optional[str] = None
    analyze_csv: Optional[str] = None
    profile_root: Optional[str] = None
    interactive: bool = False
    app: AppProfile = field(default_factory=AppProfile)

    def is_excluded(self, category: str) -> bool:
        return category in self.exclude

    def skip_reason(self, category: str) -> Optional[str]:
        """Ledger note for an excluded category, or None when it should run."""
        if self.is_excluded(category):
            return f"Excluded by --exclude {category}"
        return None

    @property
    def has_actions(self) -> bool:
        """True when any mutation, restart or perf-trace setup was requested."""
        return bool(
            self.log_level
            or self.enumeration_log_level
            or self.secondary_verbosity is not None
            or self.restart_primary
            or self.restart_secondary
            or self.perf_trace == "start"
        )

    @property
    def needs_primary_context(self) -> bool:
        return bool(self.mode.collects_primary or self.log_level or self.enumeration_log_level)
