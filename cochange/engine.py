"""
Consistency engine: compare two snapshots and classify every declared edge.

The contract is "if you change a region, you must also change every file it
declares". A region that did not change imposes nothing; a region that did
change is satisfied only if each declared target's whole-file fingerprint
differs between the two snapshots.
"""

from __future__ import annotations

import difflib
import fnmatch
import logging
import posixpath
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from .config.schema import Settings
from .models import CheckResult, DependencyEdge, FileScan, Region, Violation, ViolationReason
from .scan.fingerprint import fingerprint_region
from .scan.graph import DependencyGraph
from .scan.parser import RegionParser
from .snapshot.base import SnapshotProvider, SnapshotReadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilePair:
    """One path scanned in both snapshots (None = absent from that snapshot)."""

    path: str
    old: FileScan | None = None
    new: FileScan | None = None
    error: SnapshotReadError | None = None


def normalize_path(path: str) -> str | None:
    """Normalise a repository-relative path; None if it is absolute or escapes the root."""
    path = path.strip()
    if not path or path.startswith("/"):
        return None
    normalized = posixpath.normpath(path)
    if normalized == ".." or normalized.startswith("../") or normalized == ".":
        return None
    return normalized


def match_regions(old: tuple[Region, ...], new: tuple[Region, ...], matching: str = "position") -> list[tuple[Region, bool]]:
    """
    Pair each new region with a changed flag.

    position: the Nth new region is compared with the Nth old one. When the
    counts differ positional identity cannot be trusted and every new region
    counts as changed.

    sequence: regions are aligned on the longest common subsequence of their
    fingerprints; only new regions outside the alignment count as changed.
    """
    new_digests = [fingerprint_region(r).digest for r in new]
    old_digests = [fingerprint_region(r).digest for r in old]

    if matching == "sequence":
        matcher = difflib.SequenceMatcher(None, old_digests, new_digests, autojunk=False)
        unchanged: set[int] = set()
        for block in matcher.get_matching_blocks():
            unchanged.update(range(block.b, block.b + block.size))
        return [(region, i not in unchanged) for i, region in enumerate(new)]

    if len(old) != len(new):
        if old and new:
            logger.debug(
                "Region count changed in %s (%d -> %d); treating all regions as changed",
                new[0].file_path,
                len(old),
                len(new),
            )
        return [(region, True) for region in new]

    return [(region, old_digests[i] != new_digests[i]) for i, region in enumerate(new)]


def _edge_violation(edge: DependencyEdge, resolved: str | None, reason: ViolationReason, message: str) -> Violation:
    region = edge.source
    return Violation(
        source_file=region.file_path,
        reason=reason,
        message=message,
        start_line=region.start_line,
        end_line=region.end_line,
        region_index=region.index,
        target_file=resolved or edge.target_path,
        target_index=edge.target_index,
    )


class ConsistencyEngine:
    """Check that changed annotated regions are accompanied by changes to their targets."""

    def __init__(self, provider: SnapshotProvider, settings: Settings | None = None):
        self.provider = provider
        self.settings = settings or Settings()
        self.parser = RegionParser(self.settings.syntax, implicit_close=self.settings.implicit_close)

    def is_excluded(self, path: str) -> bool:
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.settings.exclude)

    def resolve_target(self, source_path: str, target: str, known: set[str]) -> str | None:
        """
        Resolve a declared target to a repository-relative path.

        Args:
            source_path: Path of the declaring file
            target: Target as written after then-change
            known: Paths present in either snapshot (used by "auto")

        Returns:
            Normalised path, or None if the target cannot name a file in the repository
        """
        from_root = normalize_path(target)
        from_file = normalize_path(posixpath.join(posixpath.dirname(source_path), target))
        mode = self.settings.resolve

        if mode == "root":
            return from_root
        if mode == "file":
            return from_file
        if from_root is not None and from_root in known:
            return from_root
        if from_file is not None and from_file in known:
            return from_file
        return from_root if from_root is not None else from_file

    def scan_pair(self, path: str, old_ref: str, new_ref: str) -> FilePair:
        """Read and parse one path in both snapshots."""
        try:
            old_data = self.provider.read_file(old_ref, path)
            new_data = self.provider.read_file(new_ref, path)
        except SnapshotReadError as e:
            logger.warning("%s", e)
            return FilePair(path=path, error=e)

        new_scan = self.parser.parse(path, new_data) if new_data is not None else None
        if old_data is None:
            old_scan = None
        elif old_data == new_data:
            old_scan = new_scan
        else:
            old_scan = self.parser.parse(path, old_data)
        return FilePair(path=path, old=old_scan, new=new_scan)

    def scan_all(self, paths: list[str], old_ref: str, new_ref: str) -> dict[str, FilePair]:
        workers = self.settings.workers
        if workers > 1 and len(paths) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                pairs = list(executor.map(lambda p: self.scan_pair(p, old_ref, new_ref), paths))
        else:
            pairs = [self.scan_pair(p, old_ref, new_ref) for p in paths]
        return {pair.path: pair for pair in pairs}

    def _target_digests(
        self,
        path: str,
        pairs: dict[str, FilePair],
        old_ref: str,
        new_ref: str,
    ) -> tuple[str | None, str | None]:
        pair = pairs.get(path)
        if pair is None:
            # Excluded from scanning but still a legitimate target.
            pair = self.scan_pair(path, old_ref, new_ref)
            pairs[path] = pair
        if pair.error is not None:
            raise pair.error
        return (
            pair.old.digest if pair.old else None,
            pair.new.digest if pair.new else None,
        )

    def check(self, old_ref: str, new_ref: str) -> CheckResult:
        """
        Compare two snapshots and return every violated declaration.

        Raises:
            SnapshotUnavailableError: if either snapshot cannot be listed.
        """
        old_files = self.provider.list_files(old_ref)
        new_files = self.provider.list_files(new_ref)
        known = old_files | new_files
        paths = sorted(p for p in known if not self.is_excluded(p))
        logger.info("Scanning %d file(s) between %s and %s", len(paths), old_ref, new_ref)

        pairs = self.scan_all(paths, old_ref, new_ref)
        result = CheckResult(files_scanned=len(paths))
        violations: list[Violation] = []

        for path in paths:
            pair = pairs[path]
            if pair.error is not None:
                violations.append(
                    Violation(
                        source_file=path,
                        reason=ViolationReason.SNAPSHOT_READ_ERROR,
                        message=str(pair.error),
                    )
                )
                continue
            if pair.new is not None:
                for err in pair.new.errors:
                    violations.append(
                        Violation(
                            source_file=path,
                            reason=ViolationReason.MALFORMED_ANNOTATION,
                            message=err.message,
                            start_line=err.line,
                        )
                    )
            if pair.old is not None and pair.old.is_malformed and pair.old is not pair.new:
                logger.info("%s is malformed in %s (%d error(s))", path, old_ref, len(pair.old.errors))

        new_scans = [pair.new for pair in pairs.values() if pair.new is not None]
        graph = DependencyGraph.from_scans(
            new_scans,
            resolve=lambda region, target: self.resolve_target(region.file_path, target, known) or target,
        )
        result.regions_found = len(graph)

        changed: set[tuple[str, int]] = set()
        for path in paths:
            pair = pairs[path]
            if pair.new is None:
                continue
            old_regions = pair.old.regions if pair.old is not None else ()
            for region, is_changed in match_regions(old_regions, pair.new.regions, self.settings.matching):
                if is_changed:
                    changed.add(region.key)
        result.regions_changed = len(changed)

        for edge in graph.iter_edges():
            region = edge.source
            if region.key not in changed:
                continue

            resolved = self.resolve_target(region.file_path, edge.target_path, known)
            if resolved == region.file_path:
                continue
            result.edges_checked += 1

            if resolved is None or resolved not in new_files:
                violations.append(
                    _edge_violation(
                        edge,
                        resolved,
                        ViolationReason.TARGET_FILE_MISSING,
                        f"then-change references file that does not exist: '{edge.target_path}'",
                    )
                )
                continue

            try:
                old_digest, new_digest = self._target_digests(resolved, pairs, old_ref, new_ref)
            except SnapshotReadError as e:
                violations.append(_edge_violation(edge, resolved, ViolationReason.SNAPSHOT_READ_ERROR, str(e)))
                continue

            if old_digest == new_digest:
                violations.append(
                    _edge_violation(
                        edge,
                        resolved,
                        ViolationReason.TARGET_UNCHANGED,
                        f"expected change in {resolved} due to change in {region.location}",
                    )
                )

        violations.sort(key=lambda v: v.sort_key)
        result.violations = violations
        logger.info(
            "%d region(s), %d changed, %d edge(s) checked, %d violation(s)",
            result.regions_found,
            result.regions_changed,
            result.edges_checked,
            len(violations),
        )
        return result

    def has_violations(self, old_ref: str, new_ref: str) -> bool:
        return bool(self.check(old_ref, new_ref).violations)


def check(
    provider: SnapshotProvider,
    old_ref: str,
    new_ref: str,
    settings: Settings | None = None,
) -> CheckResult:
    """Convenience wrapper around ConsistencyEngine.check."""
    return ConsistencyEngine(provider, settings).check(old_ref, new_ref)


def has_violations(
    provider: SnapshotProvider,
    old_ref: str,
    new_ref: str,
    settings: Settings | None = None,
) -> bool:
    return ConsistencyEngine(provider, settings).has_violations(old_ref, new_ref)
