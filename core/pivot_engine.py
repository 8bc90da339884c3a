"""
Pivot Engine - one-shot diagnostic analysis of a collection status CSV.
Counts rows per status and task so an analyst can see at a glance which
enumeration tasks failed and on which hosts.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional

import pandas as pd

from core.security import logger


class PivotError(ValueError):
    """The CSV cannot be analyzed (missing file, missing columns, unreadable)."""


@dataclass
class PivotReport:
    """Result of a pivot analysis."""
    source: str
    total_rows: int
    index: str
    columns: str
    table: pd.DataFrame
    status_counts: pd.Series
    top_hosts: Optional[pd.Series] = None
    warnings: List[str] = field(default_factory=list)

    def render(self) -> str:
        lines = [
            f"Source: {self.source}",
            f"Rows:   {self.total_rows}",
            "",
            f"{self.index} counts:",
            self.status_counts.to_string(),
            "",
            f"{self.index} x {self.columns}:",
            self.table.to_string(),
        ]
        if self.top_hosts is not None and not self.top_hosts.empty:
            lines += ["", "Hosts with the most unsuccessful rows:", self.top_hosts.to_string()]
        for warning in self.warnings:
            lines += ["", f"Warning: {warning}"]
        return "\n".join(lines)


class CsvPivotEngine:
    """
    Engine for pivoting a status CSV.
    Expects one row per (host, task) attempt with a status column.
    """

    HOST_COLUMN = "ComputerName"
    SUCCESS_VALUES = ("success", "succeeded", "ok")

    def __init__(self, csv_path: str):
        """Initialize pivot engine with the CSV file path."""
        self.csv_path = csv_path
        self._frame: Optional[pd.DataFrame] = None

    def load(self) -> pd.DataFrame:
        """Load and cache the CSV as a DataFrame."""
        if self._frame is not None:
            return self._frame

        if not os.path.isfile(self.csv_path):
            raise PivotError(f"CSV file not found: {self.csv_path}")

        try:
            frame = pd.read_csv(self.csv_path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise PivotError(f"Could not parse {self.csv_path}: {e}") from e

        frame.columns = [str(c).strip() for c in frame.columns]
        self._frame = frame
        logger.debug("Loaded %s (%d rows, columns: %s)", self.csv_path, len(frame), list(frame.columns))
        return frame

    def _resolve_column(self, frame: pd.DataFrame, wanted: str) -> str:
        for column in frame.columns:
            if column.lower() == wanted.lower():
                return column
        raise PivotError(f"Column '{wanted}' not found; available: {', '.join(frame.columns)}")

    def analyze(self, index: str = "Status", columns: str = "Task", top: int = 10) -> PivotReport:
        """
        Pivot the CSV on two columns.

        Args:
            index: Column whose values become the rows (default Status)
            columns: Column whose values become the columns (default Task)
            top: Number of hosts to list with unsuccessful rows

        Returns:
            PivotReport with counts per index value and index x columns
        """
        frame = self.load()
        index_col = self._resolve_column(frame, index)
        columns_col = self._resolve_column(frame, columns)

        warnings = []
        if frame.empty:
            warnings.append("CSV contains a header but no rows")
            table = pd.DataFrame()
        else:
            table = pd.crosstab(frame[index_col], frame[columns_col])
        status_counts = frame[index_col].value_counts()

        top_hosts = None
        host_col = next((c for c in frame.columns if c.lower() == self.HOST_COLUMN.lower()), None)
        if host_col:
            failed = frame[~frame[index_col].str.strip().str.lower().isin(self.SUCCESS_VALUES)]
            # Most failures first; ties by host name
            counts = failed[host_col].value_counts()
            order = sorted(counts.index, key=lambda host: (-counts[host], host))
            top_hosts = counts.reindex(order).head(top)

        return PivotReport(
            source=self.csv_path,
            total_rows=len(frame),
            index=index_col,
            columns=columns_col,
            table=table,
            status_counts=status_counts,
            top_hosts=top_hosts,
            warnings=warnings,
        )
