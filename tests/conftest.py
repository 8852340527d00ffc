"""Pytest configuration and fixtures."""

import shutil
import subprocess
from pathlib import Path

import pytest

from cochange.snapshot import MemorySnapshotProvider

NEW_VERSION = "0.3.1-alpha"
OLD_VERSION = "0.3.0"


def _load_tree(root: Path, only: str | None = None) -> dict[str, bytes]:
    """Read a fixture directory into {relative posix path: bytes}."""
    base = root / only if only else root
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(base.rglob("*"))
        if path.is_file()
    }


def _downgrade(tree: dict[str, bytes], keep: frozenset[str] | set[str] = frozenset()) -> dict[str, bytes]:
    """Old snapshot of `tree`: every file not in `keep` carries the previous version."""
    return {
        path: content if path in keep else content.replace(NEW_VERSION.encode(), OLD_VERSION.encode())
        for path, content in tree.items()
    }


@pytest.fixture
def corpus_path() -> Path:
    """Path to the shell-script fixture corpus."""
    return Path(__file__).parent / "fixtures" / "corpus"


@pytest.fixture
def corpus(corpus_path: Path) -> dict[str, bytes]:
    """The whole corpus as the new snapshot's files."""
    return _load_tree(corpus_path)


@pytest.fixture
def make_provider():
    """Build a MemorySnapshotProvider from old/new file maps."""

    def _make(old: dict, new: dict) -> MemorySnapshotProvider:
        return MemorySnapshotProvider({"old": old, "new": new})

    return _make


def _git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git_repo(tmp_path: Path):
    """An empty git repository plus a helper to run git in it."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-q")
    _git(repo, "config", "user.email", "dev@example.com")
    _git(repo, "config", "user.name", "Dev")
    _git(repo, "config", "commit.gpgsign", "false")

    def run(*args: str) -> str:
        return _git(repo, *args)

    return repo, run


@pytest.fixture
def load_tree():
    return _load_tree


@pytest.fixture
def downgrade():
    return _downgrade
