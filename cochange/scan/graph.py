"""Dependency graph of must-co-change declarations."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator

from ..models import DependencyEdge, FileScan, Region

RegionKey = tuple[str, int]  # (file path, region index)
Resolver = Callable[[Region, str], str]


@dataclass
class DependencyGraph:
    """Regions as nodes, declared then-change targets as directed edges.

    Cycles and self-edges are legal: files commonly list each other, and a
    file may list itself. Targets are raw paths; nothing here checks that
    they exist.
    """

    regions: dict[RegionKey, Region] = field(default_factory=dict)
    edges: dict[RegionKey, tuple[str, ...]] = field(default_factory=dict)  # region -> declared targets
    reverse_edges: dict[str, set[RegionKey]] = field(
        default_factory=lambda: defaultdict(set)
    )  # target -> declaring regions; diagnostics only

    @classmethod
    def from_scans(
        cls,
        scans: Iterable[FileScan],
        resolve: Resolver | None = None,
    ) -> "DependencyGraph":
        """Build the graph from one snapshot's file scans.

        Args:
            scans: FileScan per file
            resolve: Optional callable (region, raw target) -> path used for the
                reverse map; defaults to the raw target string
        """
        graph = cls()
        for scan in sorted(scans, key=lambda s: s.file_path):
            for region in scan.regions:
                graph.add_region(region, resolve)
        return graph

    def add_region(self, region: Region, resolve: Resolver | None = None) -> None:
        self.regions[region.key] = region
        self.edges[region.key] = region.declared_targets
        for target in region.declared_targets:
            dst = resolve(region, target) if resolve else target
            self.reverse_edges[dst].add(region.key)

    def targets_of(self, key: RegionKey) -> tuple[str, ...]:
        """Declared targets of a region, in declaration order."""
        return self.edges.get(key, ())

    def dependents_of(self, path: str) -> list[Region]:
        """Regions that declare `path` as a then-change target."""
        return [self.regions[key] for key in sorted(self.reverse_edges.get(path, set()))]

    def regions_in(self, path: str) -> list[Region]:
        return [region for key, region in sorted(self.regions.items()) if key[0] == path]

    def iter_edges(self) -> Iterator[DependencyEdge]:
        """Yield every edge ordered by file, region index, then declaration."""
        for key in sorted(self.edges):
            region = self.regions[key]
            for i, target in enumerate(self.edges[key]):
                line = region.target_lines[i] if i < len(region.target_lines) else region.end_line
                yield DependencyEdge(source=region, target_path=target, target_index=i, line=line)

    def __len__(self) -> int:
        return len(self.regions)
