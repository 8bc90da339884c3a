"""
Core modules for the support log collector.
"""
from .status import Status, StatusRecord, StatusLedger, Reporter, summarize
from .security import FatalCollectionError, setup_logging
from .services import ServiceController, ServiceIdentity

__all__ = [
    'Status',
    'StatusRecord',
    'StatusLedger',
    'Reporter',
    'summarize',
    'FatalCollectionError',
    'setup_logging',
    'ServiceController',
    'ServiceIdentity',
]
