"""Regions command: show parsed annotations and who declares whom."""

import json
from pathlib import Path

from rich.console import Console

from ..config import Settings
from ..engine import ConsistencyEngine
from ..models import FileScan
from ..scan.graph import DependencyGraph
from ..snapshot import GitSnapshotProvider, SnapshotProvider, SnapshotReadError


def scan_snapshot(
    provider: SnapshotProvider,
    ref: str,
    settings: Settings,
) -> tuple[list[FileScan], list[SnapshotReadError], set[str]]:
    """Parse every non-excluded file of one snapshot.

    Returns:
        (scans, read errors, all listed paths)
    """
    engine = ConsistencyEngine(provider, settings)
    known = provider.list_files(ref)
    scans: list[FileScan] = []
    errors: list[SnapshotReadError] = []
    for path in sorted(known):
        if engine.is_excluded(path):
            continue
        try:
            data = provider.read_file(ref, path)
        except SnapshotReadError as e:
            errors.append(e)
            continue
        if data is not None:
            scans.append(engine.parser.parse(path, data))
    return scans, errors, known


def run_regions(
    repo: Path,
    ref: str,
    settings: Settings,
    paths: tuple[str, ...] = (),
    output_json: bool = False,
    provider: SnapshotProvider | None = None,
) -> int:
    """List annotated regions of a snapshot.

    Args:
        repo: Repository root
        ref: Snapshot to read
        settings: Effective settings
        paths: Only report these repository-relative paths (all files if empty)
        output_json: Output as JSON
        provider: Snapshot provider; defaults to git on `repo`

    Returns:
        Exit code (0 = all annotations well-formed, 1 = malformed or unreadable files)
    """
    console = Console(stderr=True)
    if provider is None:
        provider = GitSnapshotProvider(repo)
    engine = ConsistencyEngine(provider, settings)

    scans, read_errors, known = scan_snapshot(provider, ref, settings)
    graph = DependencyGraph.from_scans(
        scans,
        resolve=lambda region, target: engine.resolve_target(region.file_path, target, known) or target,
    )

    wanted = set(paths)
    shown = [s for s in scans if (not wanted or s.file_path in wanted) and (s.regions or s.errors)]
    extra = sorted(p for p in wanted if p not in {s.file_path for s in shown} and graph.dependents_of(p))

    if output_json:
        payload = {
            "ref": ref,
            "files": [
                {
                    "path": s.file_path,
                    "regions": [
                        {
                            "index": r.index,
                            "start_line": r.start_line,
                            "end_line": r.end_line,
                            "targets": list(r.declared_targets),
                        }
                        for r in s.regions
                    ],
                    "errors": [{"line": e.line, "message": e.message} for e in s.errors],
                    "declared_by": [r.location for r in graph.dependents_of(s.file_path)],
                }
                for s in shown
            ],
            "read_errors": [str(e) for e in read_errors],
        }
        print(json.dumps(payload, indent=2))
    else:
        for scan in shown:
            console.print(scan.file_path, style="bold", markup=False)
            for region in scan.regions:
                targets = ", ".join(region.declared_targets)
                console.print(f"  lines {region.start_line}-{region.end_line} -> {targets}", markup=False)
            for err in scan.errors:
                console.print(f"  ERROR: line {err.line} - {err.message}", style="bold red", markup=False)
            _print_dependents(console, graph, scan.file_path)
        for path in extra:
            console.print(path, style="bold", markup=False)
            _print_dependents(console, graph, path)
        for e in read_errors:
            console.print(f"ERROR: {e}", style="bold red", markup=False)
        if not shown and not extra:
            console.print("No annotated regions found", style="dim")

    malformed = any(s.errors for s in shown)
    return 1 if malformed or read_errors else 0


def _print_dependents(console: Console, graph: DependencyGraph, path: str) -> None:
    dependents = graph.dependents_of(path)
    if dependents:
        locations = ", ".join(r.location for r in dependents)
        console.print(f"  declared by: {locations}", style="dim", markup=False)
