"""Snapshots read from a git repository through the git command line."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from .base import WORKTREE, SnapshotReadError, SnapshotUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


def _run_git(args: list[str], cwd: Path, timeout: float, git: str = "git") -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            [git, *args],
            cwd=cwd,
            capture_output=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise SnapshotUnavailableError(f"git executable not found: {git}") from e
    except subprocess.TimeoutExpired as e:
        raise SnapshotUnavailableError(f"git {' '.join(args)} timed out after {timeout}s") from e


def find_repo_root(start: Path, timeout: float = DEFAULT_TIMEOUT) -> Path:
    """Return the top level of the git work tree containing `start`."""
    result = _run_git(["rev-parse", "--show-toplevel"], cwd=start, timeout=timeout)
    if result.returncode != 0:
        raise SnapshotUnavailableError(
            f"not a git repository: {start} ({result.stderr.decode(errors='replace').strip()})"
        )
    return Path(result.stdout.decode().strip())


class GitSnapshotProvider:
    """
    Read snapshots of a git repository.

    Refs are any commit-ish git understands (HEAD, main, a sha, HEAD~1). The
    special ref WORKTREE reads files from disk: tracked files that still
    exist plus untracked files that are not ignored.
    Symlinks read as the path they point to, as git stores them.

    Refs are resolved once and cached, so a provider describes the
    repository as it was when each ref was first used.
    """

    def __init__(self, repo: Path, *, git: str = "git", timeout: float = DEFAULT_TIMEOUT):
        self.repo = repo
        self.git = git
        self.timeout = timeout
        self._commits: dict[str, str] = {}  # ref -> commit sha
        self._trees: dict[str, dict[str, str]] = {}  # commit sha -> {path: blob sha}

    def _git(self, *args: str) -> subprocess.CompletedProcess:
        return _run_git(list(args), cwd=self.repo, timeout=self.timeout, git=self.git)

    def resolve(self, ref: str) -> str:
        """Resolve a ref to a commit sha (WORKTREE resolves to itself)."""
        if ref == WORKTREE:
            return ref
        if ref not in self._commits:
            result = self._git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
            if result.returncode != 0:
                raise SnapshotUnavailableError(f"unknown git revision: {ref!r}")
            self._commits[ref] = result.stdout.decode().strip()
            logger.debug("Resolved %s to %s", ref, self._commits[ref])
        return self._commits[ref]

    def _tree(self, ref: str) -> dict[str, str]:
        sha = self.resolve(ref)
        if sha not in self._trees:
            result = self._git("ls-tree", "-r", "-z", "--full-tree", sha)
            if result.returncode != 0:
                raise SnapshotUnavailableError(
                    f"cannot list tree of {ref}: {result.stderr.decode(errors='replace').strip()}"
                )
            tree: dict[str, str] = {}
            for entry in result.stdout.split(b"\0"):
                if not entry:
                    continue
                meta, _, path = entry.partition(b"\t")
                _mode, obj_type, obj_sha = meta.decode().split()
                # submodules show up as commit entries
                if obj_type == "blob":
                    tree[path.decode("utf-8", errors="surrogateescape")] = obj_sha
            self._trees[sha] = tree
        return self._trees[sha]

    def _worktree_files(self) -> set[str]:
        result = self._git("ls-files", "-z", "--cached", "--others", "--exclude-standard")
        if result.returncode != 0:
            raise SnapshotUnavailableError(
                f"cannot list working tree: {result.stderr.decode(errors='replace').strip()}"
            )
        files = set()
        for raw in result.stdout.split(b"\0"):
            if not raw:
                continue
            path = raw.decode("utf-8", errors="surrogateescape")
            # deleted-but-tracked files are still listed by --cached
            if (self.repo / path).is_file() or (self.repo / path).is_symlink():
                files.add(path)
        return files

    def list_files(self, ref: str) -> set[str]:
        if ref == WORKTREE:
            return self._worktree_files()
        return set(self._tree(ref))

    def _read_worktree(self, path: str) -> bytes | None:
        file_path = self.repo / path
        try:
            if file_path.is_symlink():
                # git stores a symlink as the path it points to
                return os.fsencode(os.readlink(file_path))
            if not file_path.is_file():
                return None
            return file_path.read_bytes()
        except OSError as e:
            raise SnapshotReadError(WORKTREE, path, str(e)) from e

    def read_file(self, ref: str, path: str) -> bytes | None:
        if ref == WORKTREE:
            return self._read_worktree(path)

        if path not in self._tree(ref):
            return None
        # --filters applies eol conversion and smudge filters the way a
        # checkout does, so commit bytes compare equal to the working tree.
        result = self._git("cat-file", "--filters", f"{self.resolve(ref)}:{path}")
        if result.returncode != 0:
            raise SnapshotReadError(ref, path, result.stderr.decode(errors="replace").strip())
        return result.stdout
