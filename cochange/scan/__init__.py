"""Region parsing, fingerprinting and graph construction."""

from .fingerprint import fingerprint_bytes, fingerprint_region
from .graph import DependencyGraph
from .parser import RegionParser, classify_line, extract_target

__all__ = [
    "DependencyGraph",
    "RegionParser",
    "classify_line",
    "extract_target",
    "fingerprint_bytes",
    "fingerprint_region",
]
