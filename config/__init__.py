"""
Configuration module for the support log collector.
"""
from .settings import (
    AppProfile,
    CollectorConfig,
    Mode,
    COLLECTOR_VERSION,
    EXCLUDE_CHOICES,
    VERBOSITY_LEVELS,
)
from .theme import (
    THEME,
    ThemeColors,
    STATUS_STYLES,
    get_status_color,
    get_status_marker,
    colorize,
)

__all__ = [
    'AppProfile',
    'CollectorConfig',
    'Mode',
    'COLLECTOR_VERSION',
    'EXCLUDE_CHOICES',
    'VERBOSITY_LEVELS',
    'THEME',
    'ThemeColors',
    'STATUS_STYLES',
    'get_status_color',
    'get_status_marker',
    'colorize',
]
