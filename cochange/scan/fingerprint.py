"""Content fingerprints for regions and whole files."""

from __future__ import annotations

import hashlib

from ..models import Fingerprint, Region


def fingerprint_bytes(content: bytes | str) -> str:
    """
    Compute the sha256 hex digest of content.

    Strings are encoded as UTF-8 first. Whitespace and line endings are part
    of the content: two inputs fingerprint equal only if they are byte-equal.
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def fingerprint_region(region: Region) -> Fingerprint:
    """Fingerprint a region's raw content, keyed by its position in the file."""
    return Fingerprint(
        file_path=region.file_path,
        region_index=region.index,
        digest=fingerprint_bytes(region.raw_content),
    )
