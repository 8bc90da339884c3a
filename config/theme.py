"""
Centralized console styling for live status lines and the final summary.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass
class ThemeColors:
    """ANSI color codes used by the console reporter."""
    # Status colors
    STATUS_OK: str = "\033[32m"
    STATUS_UPDATED: str = "\033[36m"
    STATUS_SKIPPED: str = "\033[90m"
    STATUS_WARNING: str = "\033[33m"
    STATUS_FAILED: str = "\033[31m"

    # Banner / headings
    HEADING: str = "\033[1;34m"
    TEXT_MUTED: str = "\033[2m"
    RESET: str = "\033[0m"


# Global theme instance
THEME = ThemeColors()

# Status value -> (marker, color)
STATUS_STYLES = {
    "Collected": ("✓", THEME.STATUS_OK),
    "Created": ("+", THEME.STATUS_OK),
    "Updated": ("↻", THEME.STATUS_UPDATED),
    "Skipped": ("⊘", THEME.STATUS_SKIPPED),
    "NotFound": ("?", THEME.STATUS_WARNING),
    "Failed": ("✗", THEME.STATUS_FAILED),
}

# Markers for consoles whose encoding cannot represent the ones above
ASCII_MARKERS = {
    "Collected": "*",
    "Created": "+",
    "Updated": "~",
    "Skipped": "-",
    "NotFound": "?",
    "Failed": "x",
}


def get_status_marker(status: str, ascii_only: bool = False) -> str:
    """
    Get the single-character marker for a status value.

    Args:
        status: Status value (e.g. 'Collected', 'Failed')
        ascii_only: Use the ASCII fallback marker

    Returns:
        Marker string
    """
    if ascii_only:
        return ASCII_MARKERS[status]
    return STATUS_STYLES[status][0]


def get_status_color(status: str) -> str:
    """
    Get the ANSI color code for a status value.

    Args:
        status: Status value (e.g. 'Collected', 'Failed')

    Returns:
        ANSI escape sequence
    """
    return STATUS_STYLES[status][1]


def colorize(text: str, color: Optional[str], enabled: bool = True) -> str:
    """Wrap text in an ANSI color when coloring is enabled."""
    if not enabled or not color:
        return text
    return f"{color}{text}{THEME.RESET}"
