"""
Snapshot provider protocol.

A snapshot is a repository state named by a ref (a commit-ish, or the
working tree). The engine only ever asks two questions of it: which files
exist, and what bytes a file holds. How snapshots are materialised is the
provider's business.
"""

from __future__ import annotations

from typing import Protocol

# Ref naming the uncommitted working tree.
WORKTREE = "WORKTREE"


class SnapshotError(Exception):
    """Base class for provider failures."""


class SnapshotUnavailableError(SnapshotError):
    """A whole snapshot cannot be accessed (invalid ref, no repository).

    Fatal for a consistency check.
    """


class SnapshotReadError(SnapshotError):
    """One file of an otherwise readable snapshot could not be read."""

    def __init__(self, ref: str, path: str, reason: str):
        super().__init__(f"cannot read {path} at {ref}: {reason}")
        self.ref = ref
        self.path = path
        self.reason = reason


class SnapshotProvider(Protocol):
    """Protocol for reading two (or more) repository snapshots."""

    def list_files(self, ref: str) -> set[str]:
        """
        List every file path in the snapshot.

        Args:
            ref: Snapshot reference

        Returns:
            Repository-relative POSIX paths.

        Raises:
            SnapshotUnavailableError: if the ref cannot be resolved.
        """
        ...

    def read_file(self, ref: str, path: str) -> bytes | None:
        """
        Read one file's content.

        Args:
            ref: Snapshot reference
            path: Repository-relative POSIX path

        Returns:
            The file's bytes, or None if it does not exist in the snapshot.

        Raises:
            SnapshotReadError: if the file exists but cannot be read.
        """
        ...
