from __future__ import annotations

from typing import Mapping

from .base import SnapshotReadError, SnapshotUnavailableError


class MemorySnapshotProvider:
    """
    Snapshots held in memory: {ref: {path: content}}.

    Useful for tests and for embedders that already materialised both
    revisions. A content value of an Exception instance makes reading that
    path raise SnapshotReadError.
    """

    def __init__(self, snapshots: Mapping[str, Mapping[str, bytes | str | Exception]] | None = None):
        self._snapshots: dict[str, dict[str, bytes | str | Exception]] = {}
        for ref, files in (snapshots or {}).items():
            self.add_snapshot(ref, files)

    def add_snapshot(self, ref: str, files: Mapping[str, bytes | str | Exception]) -> None:
        self._snapshots[ref] = dict(files)

    def _snapshot(self, ref: str) -> dict[str, bytes | str | Exception]:
        try:
            return self._snapshots[ref]
        except KeyError:
            raise SnapshotUnavailableError(f"unknown snapshot ref: {ref!r}") from None

    def list_files(self, ref: str) -> set[str]:
        return set(self._snapshot(ref))

    def read_file(self, ref: str, path: str) -> bytes | None:
        content = self._snapshot(ref).get(path)
        if content is None:
            return None
        if isinstance(content, Exception):
            raise SnapshotReadError(ref, path, str(content))
        if isinstance(content, str):
            return content.encode("utf-8")
        return content
