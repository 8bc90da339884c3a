"""
Artifact collectors.

Each collector follows the same decision tree through StatusLedger.attempt:
excluded -> Skipped, source missing -> NotFound, copy/export raised -> Failed,
otherwise Collected.
"""
import os
import shutil
import subprocess
import zipfile
from typing import Callable, List, Optional, Tuple

from core.security import FatalCollectionError, logger
from core.status import StatusLedger, StatusRecord

Runner = Callable[..., subprocess.CompletedProcess]

EXPORT_TIMEOUT = 300


def _run(runner: Runner, args: List[str], timeout: int = EXPORT_TIMEOUT) -> subprocess.CompletedProcess:
    kwargs = dict(capture_output=True, text=True, encoding="utf-8", errors="replace", timeout=timeout)
    if os.name == "nt":
        kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW
    return runner(args, **kwargs)


def _command_error(result: subprocess.CompletedProcess) -> str:
    detail = (result.stderr or result.stdout or "").strip()
    return detail or f"exit code {result.returncode}"


def file_creation_time(path: str) -> float:
    """Creation time where the platform records one, ctime otherwise."""
    st = os.stat(path)
    return getattr(st, "st_birthtime", st.st_ctime)


# ==========================================
# EVENT LOGS
# ==========================================

def export_event_log(
    ledger: StatusLedger,
    log_name: str,
    dest_dir: str,
    skip_reason: Optional[str] = None,
    runner: Runner = subprocess.run,
) -> StatusRecord:
    """
    Export one event log channel into dest_dir.

    Tries a binary .evtx export first and falls back to an XML query of the
    same channel. Each channel is an independent ledger entry whose path is
    the file actually written.
    """
    evtx_path = os.path.join(dest_dir, f"{log_name}.evtx")
    xml_path = os.path.join(dest_dir, f"{log_name}.xml")
    label = f"{log_name} Event Log"

    def _export() -> Tuple[str, str]:
        errors = []
        try:
            result = _run(runner, ["wevtutil", "epl", log_name, evtx_path, "/ow:true"])
            if result.returncode == 0 and os.path.exists(evtx_path):
                return "EVTX", evtx_path
            errors.append(f"epl: {_command_error(result)}")
        except (OSError, subprocess.SubprocessError) as e:
            errors.append(f"epl: {e}")

        logger.warning("EVTX export of %s failed, trying XML fallback", log_name)
        try:
            result = _run(runner, ["wevtutil", "qe", log_name, "/f:xml", "/e:Events"])
            if result.returncode == 0:
                with open(xml_path, "w", encoding="utf-8") as f:
                    f.write(result.stdout or "")
                return "XML fallback", xml_path
            errors.append(f"qe: {_command_error(result)}")
        except (OSError, subprocess.SubprocessError) as e:
            errors.append(f"qe: {e}")

        raise RuntimeError("; ".join(errors))

    return ledger.attempt(label, evtx_path, _export, skip_reason=skip_reason)


# ==========================================
# FILES & DIRECTORIES
# ==========================================

def forensic_copy(src: str, dst: str, runner: Runner = subprocess.run) -> str:
    """Copy file with fallback to esentutl for files locked by a running service."""
    try:
        shutil.copy2(src, dst)
        return ""
    except PermissionError:
        if os.name != "nt":
            raise
        logger.warning("%s is locked, retrying with esentutl", src)
        result = _run(runner, ["esentutl", "/y", src, "/d", dst, "/o"], timeout=120)
        if result.returncode != 0 or not os.path.exists(dst):
            raise RuntimeError(f"esentutl copy failed: {_command_error(result)}")
        return "esentutl copy"


def collect_file(
    ledger: StatusLedger,
    name: str,
    source: str,
    dest_dir: str,
    skip_reason: Optional[str] = None,
    runner: Runner = subprocess.run,
) -> StatusRecord:
    """Copy a single file into dest_dir, replacing a stale copy."""
    dst = os.path.join(dest_dir, os.path.basename(source))

    def _copy() -> str:
        os.makedirs(dest_dir, exist_ok=True)
        if os.path.exists(dst):
            os.remove(dst)
        return forensic_copy(source, dst, runner=runner)

    return ledger.attempt(name, dst, _copy, skip_reason=skip_reason, source=source)


def most_recent_files(source: str, cap: int) -> tuple:
    """Return (newest `cap` files by creation time, total file count)."""
    files = [
        os.path.join(source, entry)
        for entry in os.listdir(source)
        if os.path.isfile(os.path.join(source, entry))
    ]
    files.sort(key=file_creation_time, reverse=True)
    return files[:cap], len(files)


def collect_directory(
    ledger: StatusLedger,
    name: str,
    source: str,
    dest: str,
    cap: int = 0,
    skip_reason: Optional[str] = None,
) -> StatusRecord:
    """
    Copy a directory into dest.

    With cap > 0 only the `cap` most recently created files at the top level
    are copied; otherwise the whole tree is. dest is removed and recreated
    first so nothing stale from an earlier run survives.
    """

    def _copy() -> str:
        if os.path.exists(dest):
            shutil.rmtree(dest)

        if cap and cap > 0:
            os.makedirs(dest)
            selected, total = most_recent_files(source, cap)
            for path in selected:
                shutil.copy2(path, os.path.join(dest, os.path.basename(path)))
            return f"Most recent {len(selected)} of {total} files collected"

        shutil.copytree(source, dest)
        count = sum(len(files) for _, _, files in os.walk(dest))
        return f"All {count} files collected"

    return ledger.attempt(name, dest, _copy, skip_reason=skip_reason, source=source)


# ==========================================
# ARCHIVE
# ==========================================

def create_archive(work_dir: str, archive_path: str) -> str:
    """
    Compress the whole work directory into archive_path.

    An existing archive at that path is replaced. Entries are stored under the
    work directory's own name.

    Raises:
        FatalCollectionError: if the archive cannot be written
    """
    parent = os.path.dirname(os.path.abspath(work_dir))
    try:
        if os.path.exists(archive_path):
            os.remove(archive_path)
        with zipfile.ZipFile(archive_path, "w", zipfile.ZIP_DEFLATED) as zf:
            for root_dir, _, files in os.walk(work_dir):
                for f in sorted(files):
                    path = os.path.join(root_dir, f)
                    zf.write(path, os.path.relpath(path, parent))
    except (OSError, zipfile.BadZipFile) as e:
        raise FatalCollectionError(f"Could not create archive {archive_path}: {e}") from e

    logger.info("Archive created: %s", archive_path)
    return archive_path
