"""
Read-modify-write mutations of small JSON configuration documents.
"""
import json
import shutil
from datetime import datetime
from typing import Any, Callable, Optional

from core.security import logger
from core.status import Status, StatusLedger, StatusRecord


def backup_path_for(config_path: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"{config_path}.bak_{stamp}"


def backup_config(config_path: str, now: Optional[datetime] = None) -> Optional[str]:
    """Copy config_path to a timestamped sibling. Failures are logged, not raised."""
    target = backup_path_for(config_path, now)
    try:
        shutil.copy2(config_path, target)
        return target
    except OSError as e:
        logger.warning("Could not back up %s: %s", config_path, e)
        return None


def load_document(config_path: str) -> dict:
    with open(config_path, "r", encoding="utf-8-sig") as f:
        data = json.load(f)
    if not data:
        raise ValueError(f"{config_path} is empty or null")
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} is not a JSON object (got {type(data).__name__})")
    return data


def write_document(config_path: str, data: dict):
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")


def set_json_field(
    ledger: StatusLedger,
    name: str,
    config_path: str,
    field_name: str,
    new_value: Any,
    skip_reason: Optional[str] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> Optional[StatusRecord]:
    """
    Set one top-level field of a JSON document.

    A None or empty new_value is a no-op: nothing is read, backed up, written
    or recorded. Otherwise the document is backed up best-effort, parsed,
    updated and written back in place; the outcome goes to the ledger.

    Args:
        ledger: Run ledger
        name: Label for the ledger entry
        config_path: JSON document to modify
        field_name: Top-level key to set
        new_value: Value to store
        skip_reason: Exclusion note; when set the document is not touched
        clock: Source of the backup timestamp

    Returns:
        The appended StatusRecord, or None for a no-op
    """
    if new_value is None or new_value == "":
        return None

    def _mutate() -> str:
        backup = backup_config(config_path, clock())
        data = load_document(config_path)
        previous = data.get(field_name)
        data[field_name] = new_value
        write_document(config_path, data)
        logger.info("%s: %s %r -> %r (backup: %s)", config_path, field_name, previous, new_value, backup)
        return f"{field_name} = {new_value}"

    return ledger.attempt(
        name,
        config_path,
        _mutate,
        skip_reason=skip_reason,
        source=config_path,
        success=Status.UPDATED,
    )
