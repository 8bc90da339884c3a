"""
Status ledger for one collection run.

Every collector, mutator and action reports the outcome of each attempt as a
StatusRecord. Records are rendered live as they are appended and grouped into
a summary at the end of the run.
"""
import logging
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, TextIO, Tuple, Union

from config.theme import STATUS_STYLES, THEME, colorize, get_status_color, get_status_marker
from core.security import TRANSCRIPT_LOGGER, safe_str


class Status(Enum):
    """Outcome of one attempted operation."""
    COLLECTED = "Collected"
    CREATED = "Created"
    UPDATED = "Updated"
    SKIPPED = "Skipped"
    NOT_FOUND = "NotFound"
    FAILED = "Failed"


class SummaryGroup(Enum):
    COLLECTED = "collected"
    ISSUES = "issues"
    SKIPPED = "skipped"


_GROUP_BY_STATUS: Dict[Status, SummaryGroup] = {
    Status.COLLECTED: SummaryGroup.COLLECTED,
    Status.CREATED: SummaryGroup.COLLECTED,
    Status.UPDATED: SummaryGroup.COLLECTED,
    Status.SKIPPED: SummaryGroup.SKIPPED,
    Status.NOT_FOUND: SummaryGroup.ISSUES,
    Status.FAILED: SummaryGroup.ISSUES,
}

_unmapped = set(Status) - set(_GROUP_BY_STATUS)
if _unmapped:
    raise RuntimeError(f"Status values without a summary group: {sorted(s.value for s in _unmapped)}")


def group_for(status: Status) -> SummaryGroup:
    return _GROUP_BY_STATUS[status]


@dataclass(frozen=True)
class StatusRecord:
    """One outcome of one attempted operation."""
    name: str
    path: str
    status: Status
    note: str = ""


@dataclass
class LedgerSummary:
    """Ledger records partitioned for the end-of-run report."""
    collected: List[StatusRecord] = field(default_factory=list)
    issues: List[StatusRecord] = field(default_factory=list)
    skipped: List[StatusRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.collected) + len(self.issues) + len(self.skipped)

    def by_group(self, group: SummaryGroup) -> List[StatusRecord]:
        return getattr(self, group.value)


class Reporter:
    """Renders live status lines and the grouped end-of-run summary."""

    def __init__(self, stream: Optional[TextIO] = None, color: Optional[bool] = None):
        self.stream = stream if stream is not None else sys.stdout
        if color is None:
            color = hasattr(self.stream, "isatty") and self.stream.isatty()
        self.color = color
        self.encoding = getattr(self.stream, "encoding", None)
        self.ascii_markers = not self._can_encode("".join(m for m, _ in STATUS_STYLES.values()))
        self._transcript = logging.getLogger(TRANSCRIPT_LOGGER)

    def _can_encode(self, text: str) -> bool:
        if not self.encoding:
            return True
        try:
            text.encode(self.encoding)
        except (UnicodeEncodeError, LookupError):
            return False
        return True

    def _write(self, line: str = ""):
        # Paths and notes can still hold characters a legacy console code page lacks
        if not self._can_encode(line):
            line = line.encode(self.encoding, errors="replace").decode(self.encoding)
        print(line, file=self.stream)

    def format_line(self, record: StatusRecord, color: bool = False, ascii_markers: bool = False) -> str:
        marker = get_status_marker(record.status.value, ascii_only=ascii_markers)
        label = f"[{marker}] {record.status.value:<9} {record.name}"
        detail = " - ".join(p for p in (record.note, record.path) if p)
        line = f"{label}: {detail}" if detail else label
        return colorize(line, get_status_color(record.status.value), color)

    def render_record(self, record: StatusRecord):
        self._write("    " + self.format_line(record, self.color, self.ascii_markers))
        self._transcript.info(self.format_line(record))

    def render_summary(self, summary: LedgerSummary):
        headings = {
            SummaryGroup.COLLECTED: "Collected / updated",
            SummaryGroup.ISSUES: "Not found / failed",
            SummaryGroup.SKIPPED: "Skipped",
        }
        self._write()
        self._write(colorize("=" * 64, THEME.HEADING, self.color))
        self._write(colorize(
            f" Summary: {len(summary.collected)} ok, {len(summary.issues)} issues, "
            f"{len(summary.skipped)} skipped ({summary.total} total)",
            THEME.HEADING, self.color))
        self._write(colorize("=" * 64, THEME.HEADING, self.color))

        for group in SummaryGroup:
            records = summary.by_group(group)
            if not records:
                continue
            self._write(f"\n {headings[group]} ({len(records)}):")
            # Group by artifact name, preserving first-seen order
            by_name: Dict[str, List[StatusRecord]] = {}
            for record in records:
                by_name.setdefault(record.name, []).append(record)
            for name, items in by_name.items():
                self._write(f"   {name}")
                for item in items:
                    self._write("     " + self.format_line(item, self.color, self.ascii_markers))


class StatusLedger:
    """Append-only list of StatusRecords for one run."""

    def __init__(self, reporter: Optional[Reporter] = None):
        self.reporter = reporter if reporter is not None else Reporter()
        self._records: List[StatusRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self):
        return iter(list(self._records))

    @property
    def records(self) -> List[StatusRecord]:
        return list(self._records)

    def record(self, name: str, path: str, status: Status, note: str = "") -> StatusRecord:
        """Append a record and render it immediately."""
        entry = StatusRecord(name=name, path=safe_str(path), status=status, note=safe_str(note))
        self._records.append(entry)
        self.reporter.render_record(entry)
        return entry

    def attempt(
        self,
        name: str,
        path: str,
        operation: Callable[[], Union[None, str, Tuple[str, str]]],
        skip_reason: Optional[str] = None,
        source: Optional[str] = None,
        success: Status = Status.COLLECTED,
    ) -> StatusRecord:
        """
        Run one best-effort operation and record exactly one outcome.

        Order of evaluation:
            skip_reason set      -> Skipped (nothing else is touched)
            source path missing  -> NotFound
            operation raises     -> Failed (note is the error)
            otherwise            -> `success`, note returned by the operation;
                                    an operation may return (note, path) to
                                    record the path it actually wrote

        Args:
            name: Artifact / action label
            path: Path shown next to the outcome
            operation: Callable performing the work, returning an optional note
                or a (note, path) pair
            skip_reason: Exclusion note; when set the operation is not attempted
            source: Path that must exist before the operation is attempted
            success: Status recorded when the operation completes

        Returns:
            The appended StatusRecord
        """
        if skip_reason:
            return self.record(name, path, Status.SKIPPED, skip_reason)

        if source is not None and not os.path.exists(source):
            return self.record(name, source, Status.NOT_FOUND, "Source not found")

        try:
            result = operation()
        except Exception as e:
            return self.record(name, path, Status.FAILED, f"{type(e).__name__}: {e}")

        if isinstance(result, tuple):
            note, path = result
        else:
            note = result
        return self.record(name, path, success, note or "")


def summarize(ledger: StatusLedger) -> LedgerSummary:
    """Partition ledger records into collected, issue and skipped groups."""
    summary = LedgerSummary()
    for record in ledger:
        summary.by_group(group_for(record.status)).append(record)
    return summary
