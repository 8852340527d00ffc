"""Settings for the checker (marker syntax, close policy, matching, resolution)."""

from .load import load_settings
from .schema import ConfigError, MarkerSyntax, Settings

__all__ = ["ConfigError", "MarkerSyntax", "Settings", "load_settings"]
