import argparse
import ctypes
import dataclasses
import datetime
import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from config.settings import (
    AppProfile,
    CollectorConfig,
    Mode,
    COLLECTOR_VERSION,
    EVENT_LOGS,
    EXCLUDE_CHOICES,
    EXCLUDE_EVENT_LOGS,
    EXCLUDE_LOG_ARCHIVE,
    EXCLUDE_SECONDARY_CONFIG,
    EXCLUDE_SECONDARY_LOGS,
    EXCLUDE_SERVICE_LOG,
    EXCLUDE_SETTINGS,
    SECONDARY_VERBOSITY_CHOICES,
    VERBOSITY_LEVELS,
)
from core.artifacts import collect_directory, collect_file, create_archive, export_event_log
from core.config_mutators import set_json_field
from core.perf_trace import PerfTrace
from core.pivot_engine import CsvPivotEngine, PivotError
from core.security import (
    FatalCollectionError,
    close_transcript,
    logger,
    open_transcript,
    setup_logging,
    validate_output_root,
)
from core.services import IDENTITY_MATCHERS, ServiceController, ServiceIdentity, resolve_profile_root
from core.status import StatusLedger, summarize

TRANSCRIPT_FILE = "collection.log"


# ==========================================
# UTILITIES
# ==========================================

def is_admin():
    try:
        return ctypes.windll.shell32.IsUserAnAdmin()
    except Exception:
        return False


def timestamp(now: Optional[datetime.datetime] = None) -> str:
    return (now or datetime.datetime.now()).strftime("%Y%m%d_%H%M%S")


def open_in_shell(path: str, reveal: bool = False):
    """Open a folder in Explorer, or select a file in its folder."""
    if os.name != "nt":
        logger.warning("Opening %s is only supported on Windows", path)
        return
    if reveal:
        subprocess.run(["explorer", f"/select,{path}"])
    else:
        os.startfile(path)


@dataclass
class RunContext:
    """Resolved environment for one invocation."""
    output_root: str
    work_dir: str
    archive_path: str
    mode: Mode
    service: Optional[ServiceIdentity] = None
    profile_root: str = ""


# ==========================================
# MODE SELECTION
# ==========================================

class PromptState(Enum):
    PROMPT = "prompt"
    HELP = "help"
    PROCEED = "proceed"
    QUIT = "quit"


def prompt_for_mode(
    app: AppProfile,
    input_fn: Callable[[str], str] = input,
    write: Callable[[str], None] = print,
) -> Optional[Mode]:
    """
    Ask which target to collect.

    Returns the selected Mode, or None when the user quits. Anything other
    than a target or quit shows the help text and asks again.
    """
    choices = {"1": Mode.PRIMARY, "2": Mode.SECONDARY}
    help_text = (
        f"\n  1  Collect {app.primary_label} logs, settings and event logs"
        f"\n  2  Collect {app.secondary_label} logs, config and event logs"
        f"\n  Q  Quit without collecting anything"
        f"\n  Run with --all to collect both without this prompt, or -h for all options.\n"
    )
    question = f"Collect logs for [1] {app.primary_label} or [2] {app.secondary_label}? ([H]elp, [Q]uit): "

    state = PromptState.PROMPT
    selected = None
    while state not in (PromptState.PROCEED, PromptState.QUIT):
        if state is PromptState.HELP:
            write(help_text)
        try:
            answer = input_fn(question).strip().lower()
        except EOFError:
            answer = "q"

        if answer in choices:
            selected = choices[answer]
            state = PromptState.PROCEED
        elif answer == "q":
            state = PromptState.QUIT
        else:
            state = PromptState.HELP

    return selected if state is PromptState.PROCEED else None


def _collection_flags_set(args: argparse.Namespace) -> bool:
    return bool(
        args.exclude
        or args.log_archive_cap is not None
        or args.output_root is not None
        or args.perf_trace == "stop"
    )


def resolve_mode(
    args: argparse.Namespace,
    config: CollectorConfig,
    input_fn: Callable[[str], str] = input,
) -> Optional[Mode]:
    """Pick the run mode from explicit selectors, then the prompt, then the default."""
    if args.analyze_csv:
        return Mode.ANALYZE
    if args.all:
        return Mode.ALL
    if args.config_only:
        return Mode.CONFIG_ONLY
    if args.target:
        return Mode(args.target)
    if config.has_actions and not _collection_flags_set(args):
        return Mode.CONFIG_ONLY
    if config.interactive:
        return prompt_for_mode(config.app, input_fn)
    return Mode.PRIMARY


# ==========================================
# SUPPORT LOG COLLECTOR
# ==========================================

class SupportLogCollector:
    def __init__(
        self,
        config: CollectorConfig,
        ledger: Optional[StatusLedger] = None,
        services: Optional[ServiceController] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        profile_resolver: Callable[[Optional[ServiceIdentity]], str] = resolve_profile_root,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
        input_fn: Callable[[str], str] = input,
        opener: Callable[..., None] = open_in_shell,
    ):
        self.config = config
        self.app = config.app
        self.ledger = ledger if ledger is not None else StatusLedger()
        self.services = services if services is not None else ServiceController()
        self.runner = runner
        self.profile_resolver = profile_resolver
        self.clock = clock
        self.input_fn = input_fn
        self.opener = opener
        self.perf = PerfTrace(self.app, runner=runner)
        self.current_phase = 0
        self.context: Optional[RunContext] = None

    def _print_banner(self, output: str):
        print(f"""
╔══════════════════════════════════════════════════════════════╗
║       {self.app.tool_name} SUPPORT LOG COLLECTOR v{COLLECTOR_VERSION:<31}║
╠══════════════════════════════════════════════════════════════╣
║  Mode:   {self.config.mode.value:<52}║
║  Output: {output:<52}║
╚══════════════════════════════════════════════════════════════╝
        """)

    def log(self, msg: str):
        ts = self.clock().strftime("%H:%M:%S")
        print(f"[{ts}] {msg}")
        logger.debug(msg)

    def log_phase(self, phase_name: str):
        self.current_phase += 1
        self.log(f"[{self.current_phase}] {phase_name}")

    # ------------------------------------------
    # Context
    # ------------------------------------------

    def prepare_work_dir(self, output_root: str) -> RunContext:
        """Create the timestamped work directory. Failure is fatal."""
        name = f"{self.app.tool_name}_SupportLogs_{timestamp(self.clock())}"
        work_dir = os.path.join(output_root, name)
        try:
            os.makedirs(work_dir)
        except OSError as e:
            raise FatalCollectionError(f"Could not create work directory {work_dir}: {e}") from e
        return RunContext(
            output_root=output_root,
            work_dir=work_dir,
            archive_path=f"{work_dir}.zip",
            mode=self.config.mode,
        )

    def resolve_context(self, context: RunContext):
        """Resolve the primary service and the profile holding its data."""
        if not self.config.needs_primary_context:
            return
        self.log_phase(f"Resolving {self.app.primary_label} service account")
        context.service = self.services.resolve(self.app.primary_matchers, IDENTITY_MATCHERS)
        if self.config.profile_root:
            context.profile_root = self.config.profile_root
        else:
            context.profile_root = self.profile_resolver(context.service)
        self.log(f"    Profile root: {context.profile_root}")

    def primary_app_dir(self, context: RunContext) -> str:
        return os.path.join(context.profile_root, "AppData", "Roaming", self.app.primary_app_dir)

    def secondary_config_path(self) -> str:
        return os.path.join(self.app.secondary_root, self.app.secondary_config_file)

    # ------------------------------------------
    # Actions (config mutators, restarts, perf setup)
    # ------------------------------------------

    def run_actions(self, context: RunContext):
        config = self.config
        if not config.has_actions:
            return
        self.log_phase("Applying requested configuration changes")

        settings_path = os.path.join(self.primary_app_dir(context), self.app.settings_file)
        settings_skip = config.skip_reason(EXCLUDE_SETTINGS)
        set_json_field(
            self.ledger, f"{self.app.primary_label} {self.app.log_level_field}",
            settings_path, self.app.log_level_field,
            VERBOSITY_LEVELS.get(config.log_level) if config.log_level else None,
            skip_reason=settings_skip, clock=self.clock,
        )
        set_json_field(
            self.ledger, f"{self.app.primary_label} {self.app.enumeration_log_level_field}",
            settings_path, self.app.enumeration_log_level_field,
            VERBOSITY_LEVELS.get(config.enumeration_log_level) if config.enumeration_log_level else None,
            skip_reason=settings_skip, clock=self.clock,
        )
        set_json_field(
            self.ledger, f"{self.app.secondary_label} {self.app.secondary_verbosity_field}",
            self.secondary_config_path(), self.app.secondary_verbosity_field,
            config.secondary_verbosity,
            skip_reason=config.skip_reason(EXCLUDE_SECONDARY_CONFIG), clock=self.clock,
        )

        if config.restart_primary:
            self.services.restart_and_verify(self.app.primary_matchers)
        if config.restart_secondary:
            self.services.restart_and_verify((self.app.secondary_service, self.app.secondary_display_name))

        if config.perf_trace == "start":
            self.perf.start(self.ledger)

    # ------------------------------------------
    # Collectors
    # ------------------------------------------

    def collect_event_logs(self, context: RunContext):
        self.log_phase("Event logs")
        skip = self.config.skip_reason(EXCLUDE_EVENT_LOGS)
        for log_name in EVENT_LOGS:
            export_event_log(self.ledger, log_name, context.work_dir, skip_reason=skip, runner=self.runner)

    def collect_primary(self, context: RunContext):
        self.log_phase(f"{self.app.primary_label} logs and settings")
        source_dir = self.primary_app_dir(context)
        dest_dir = os.path.join(context.work_dir, self.app.primary_label)

        collect_file(
            self.ledger, f"{self.app.primary_label} Service Log",
            os.path.join(source_dir, self.app.service_log), dest_dir,
            skip_reason=self.config.skip_reason(EXCLUDE_SERVICE_LOG), runner=self.runner,
        )
        collect_file(
            self.ledger, f"{self.app.primary_label} Settings",
            os.path.join(source_dir, self.app.settings_file), dest_dir,
            skip_reason=self.config.skip_reason(EXCLUDE_SETTINGS), runner=self.runner,
        )
        collect_directory(
            self.ledger, f"{self.app.primary_label} Log Archive",
            os.path.join(source_dir, self.app.log_archive_dir),
            os.path.join(dest_dir, self.app.log_archive_dir),
            cap=self.config.log_archive_cap,
            skip_reason=self.config.skip_reason(EXCLUDE_LOG_ARCHIVE),
        )

    def collect_secondary(self, context: RunContext):
        self.log_phase(f"{self.app.secondary_label} logs and config")
        dest_dir = os.path.join(context.work_dir, self.app.secondary_label)

        collect_directory(
            self.ledger, f"{self.app.secondary_label} Logs",
            os.path.join(self.app.secondary_root, self.app.secondary_logs_dir),
            os.path.join(dest_dir, self.app.secondary_logs_dir),
            skip_reason=self.config.skip_reason(EXCLUDE_SECONDARY_LOGS),
        )
        collect_file(
            self.ledger, f"{self.app.secondary_label} Config",
            self.secondary_config_path(), dest_dir,
            skip_reason=self.config.skip_reason(EXCLUDE_SECONDARY_CONFIG), runner=self.runner,
        )

    def collect_perf_trace(self, context: RunContext):
        self.log_phase("Performance trace")
        self.perf.stop_and_collect(self.ledger, os.path.join(context.work_dir, "PerfTrace"))

    # ------------------------------------------
    # Runs
    # ------------------------------------------

    def run_config_only(self) -> None:
        """Apply mutations/restarts only; no work directory or archive."""
        context = RunContext(output_root="", work_dir="", archive_path="", mode=Mode.CONFIG_ONLY)
        self.context = context
        self.resolve_context(context)
        self.run_actions(context)
        self.report()

    def run_collection(self) -> RunContext:
        """
        Run the full collection process.

        Raises:
            FatalCollectionError: output root, work directory or archive failure
        """
        output_root = validate_output_root(self.config.output_root)
        context = self.prepare_work_dir(output_root)
        self.context = context
        self._print_banner(context.work_dir)

        transcript = open_transcript(os.path.join(context.work_dir, TRANSCRIPT_FILE))
        try:
            self.resolve_context(context)
            self.run_actions(context)
            self.collect_event_logs(context)
            if context.mode.collects_primary:
                self.collect_primary(context)
            if context.mode.collects_secondary:
                self.collect_secondary(context)
            if self.config.perf_trace == "stop":
                self.collect_perf_trace(context)
        finally:
            close_transcript(transcript)

        self.log_phase("Compressing output")
        create_archive(context.work_dir, context.archive_path)
        self.report()
        print(f"\n  Output folder: {context.work_dir}")
        print(f"  Archive:       {context.archive_path}")
        if self.config.interactive:
            self.offer_open(context)
        return context

    def run(self) -> Optional[RunContext]:
        if not self.config.mode.creates_work_dir:
            self.run_config_only()
            return None
        return self.run_collection()

    def report(self):
        self.ledger.reporter.render_summary(summarize(self.ledger))

    def offer_open(self, context: RunContext):
        try:
            answer = self.input_fn("\n[O]pen output folder, [R]eveal archive, or Enter to exit: ").strip().lower()
        except EOFError:
            return
        if answer == "o":
            self.opener(context.work_dir)
        elif answer == "r":
            self.opener(context.archive_path, reveal=True)


# ==========================================
# COMMAND LINE
# ==========================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="support-collector",
        description="Collect event logs, service logs and settings into a support archive.",
    )
    target = parser.add_argument_group("collection")
    target.add_argument("--output-root", help="Existing, writable folder for the output (default: current folder)")
    target.add_argument("--all", action="store_true", help="Collect everything without prompting")
    target.add_argument("--target", choices=[Mode.PRIMARY.value, Mode.SECONDARY.value],
                        help="Collect one target without prompting")
    target.add_argument("--exclude", action="append", choices=EXCLUDE_CHOICES, default=[],
                        help="Skip an artifact category (repeatable)")
    target.add_argument("--log-archive-cap", type=int, metavar="N",
                        help="Copy only the N most recently created log archive files")
    target.add_argument("--profile-root", help="Use this profile folder instead of resolving the service account")
    target.add_argument("--secondary-root", help="Install folder of the secondary tool")

    actions = parser.add_argument_group("configuration")
    actions.add_argument("--config-only", action="store_true",
                         help="Only apply configuration changes / restarts; collect nothing")
    actions.add_argument("--log-level", choices=list(VERBOSITY_LEVELS), help="Set the primary LogLevel")
    actions.add_argument("--enumeration-log-level", choices=list(VERBOSITY_LEVELS),
                         help="Set the primary EnumerationLogLevel")
    actions.add_argument("--secondary-verbosity", type=int, choices=SECONDARY_VERBOSITY_CHOICES,
                         help="Set the secondary tool's numeric verbosity")
    actions.add_argument("--restart-primary", action="store_true", help="Restart the primary service")
    actions.add_argument("--restart-secondary", action="store_true", help="Restart the secondary service")
    actions.add_argument("--perf-trace", choices=["start", "stop"],
                         help="Start a performance counter trace, or stop it and collect its output")

    diag = parser.add_argument_group("diagnostics")
    diag.add_argument("--analyze-csv", metavar="PATH", help="Pivot a status CSV by Status and Task, then exit")
    diag.add_argument("--non-interactive", action="store_true", help="Never prompt")
    diag.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser


def config_from_args(args: argparse.Namespace, interactive: bool) -> CollectorConfig:
    app = AppProfile(secondary_root=args.secondary_root) if args.secondary_root else AppProfile()
    return CollectorConfig(
        output_root=args.output_root or os.getcwd(),
        exclude=frozenset(args.exclude or ()),
        log_archive_cap=args.log_archive_cap or 0,
        log_level=args.log_level,
        enumeration_log_level=args.enumeration_log_level,
        secondary_verbosity=args.secondary_verbosity,
        restart_primary=args.restart_primary,
        restart_secondary=args.restart_secondary,
        perf_trace=args.perf_trace,
        analyze_csv=args.analyze_csv,
        profile_root=args.profile_root,
        interactive=interactive and not args.non_interactive,
        app=app,
    )


def run_analysis(csv_path: str) -> int:
    try:
        report = CsvPivotEngine(csv_path).analyze()
    except PivotError as e:
        logger.error("%s", e)
        return 1
    print(report.render())
    return 0


def main(argv: Optional[List[str]] = None, input_fn: Callable[[str], str] = input) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    base = config_from_args(args, interactive=sys.stdin.isatty())
    mode = resolve_mode(args, base, input_fn)
    if mode is None:
        print("Nothing collected.")
        return 0

    if mode is Mode.ANALYZE:
        return run_analysis(args.analyze_csv)

    config = dataclasses.replace(base, mode=mode)
    if (config.has_actions or mode is not Mode.CONFIG_ONLY) and not is_admin():
        logger.warning("Not running as Administrator; event log export, restarts and perf traces may fail")

    collector = SupportLogCollector(config, input_fn=input_fn)
    try:
        collector.run()
    except FatalCollectionError as e:
        logger.error("Collection aborted: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
