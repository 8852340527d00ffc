"""cochange - check that if-change / then-change declarations are honoured."""

__version__ = "0.1.0"

from .config import MarkerSyntax, Settings, load_settings
from .engine import ConsistencyEngine, check, has_violations
from .models import (
    CheckResult,
    DependencyEdge,
    FileScan,
    Fingerprint,
    Region,
    Violation,
    ViolationReason,
)
from .scan import DependencyGraph, RegionParser

__all__ = [
    "__version__",
    "CheckResult",
    "ConsistencyEngine",
    "DependencyEdge",
    "DependencyGraph",
    "FileScan",
    "Fingerprint",
    "MarkerSyntax",
    "Region",
    "RegionParser",
    "Settings",
    "Violation",
    "ViolationReason",
    "check",
    "has_violations",
    "load_settings",
]
