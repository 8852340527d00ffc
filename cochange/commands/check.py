"""Check command implementation."""

import json
from collections import defaultdict
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..config import Settings
from ..engine import ConsistencyEngine
from ..models import CheckResult, Violation, ViolationReason
from ..snapshot import GitSnapshotProvider, SnapshotProvider

REASON_TITLES = {
    ViolationReason.TARGET_UNCHANGED: "Declared targets left unchanged",
    ViolationReason.TARGET_FILE_MISSING: "Declared targets that do not exist",
    ViolationReason.MALFORMED_ANNOTATION: "Malformed annotations",
    ViolationReason.SNAPSHOT_READ_ERROR: "Unreadable files",
}


def run_check(
    repo: Path,
    base: str,
    head: str,
    settings: Settings,
    output_json: bool = False,
    provider: SnapshotProvider | None = None,
) -> int:
    """Run the consistency check between two snapshots.

    Args:
        repo: Repository root
        base: Ref of the old snapshot
        head: Ref of the new snapshot
        settings: Effective settings
        output_json: Output results as JSON instead of human-readable
        provider: Snapshot provider; defaults to git on `repo`

    Returns:
        Exit code (0 = consistent, 1 = violations found)

    Raises:
        SnapshotUnavailableError: if either ref cannot be read.
    """
    console = Console(stderr=True)
    if provider is None:
        provider = GitSnapshotProvider(repo)

    console.print(f"Checking {base} -> {head} in {repo}...", style="dim")
    engine = ConsistencyEngine(provider, settings)
    result = engine.check(base, head)

    if output_json:
        _output_json(result, base, head)
    else:
        _print_human_output(console, result)

    return 1 if result.violations else 0


def _output_json(result: CheckResult, base: str, head: str) -> None:
    output = {
        "base": base,
        "head": head,
        "violations": [v.to_dict() for v in result.violations],
        "counts": result.counts(),
        "summary": result.summary(),
    }
    print(json.dumps(output, indent=2))


def _print_human_output(console: Console, result: CheckResult) -> None:
    by_reason: dict[ViolationReason, list[Violation]] = defaultdict(list)
    for v in result.violations:
        by_reason[v.reason].append(v)

    for reason in ViolationReason:
        found = by_reason.get(reason, [])
        if not found:
            continue
        style = "yellow" if reason is ViolationReason.TARGET_UNCHANGED else "bold red"
        console.print()
        console.print(f"✗ {REASON_TITLES[reason]} ({len(found)})", style=style)
        for v in found:
            console.print(f"  {v.location} - {v.message}", style=style, markup=False)

    console.print()
    table = Table(title="Check Summary", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Files scanned", str(result.files_scanned))
    table.add_row("Regions", str(result.regions_found))
    table.add_row("Changed regions", str(result.regions_changed))
    table.add_row("Edges checked", str(result.edges_checked))
    console.print(table)

    console.print()
    if result.violations:
        console.print(f"❌ {len(result.violations)} violation(s)", style="bold red")
    else:
        console.print("✅ All declared co-changes are satisfied", style="bold green")
