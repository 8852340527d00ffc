"""Snapshot providers: where the two compared repository states come from."""

from .base import (
    WORKTREE,
    SnapshotError,
    SnapshotProvider,
    SnapshotReadError,
    SnapshotUnavailableError,
)
from .git import GitSnapshotProvider, find_repo_root
from .memory import MemorySnapshotProvider

__all__ = [
    "WORKTREE",
    "GitSnapshotProvider",
    "MemorySnapshotProvider",
    "SnapshotError",
    "SnapshotProvider",
    "SnapshotReadError",
    "SnapshotUnavailableError",
    "find_repo_root",
]
