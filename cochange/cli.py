"""CLI entrypoint for cochange."""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import ConfigError, load_settings
from .config.schema import MATCHING_MODES, RESOLVE_MODES, Settings
from .snapshot import WORKTREE, SnapshotUnavailableError, find_repo_root


class FatalError(click.ClickException):
    """Errors that stop the run before any finding can be reported."""

    exit_code = 2


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _settings(ctx: click.Context, overrides: dict) -> Settings:
    try:
        return load_settings(ctx.obj["repo"], ctx.obj["config"], overrides)
    except ConfigError as e:
        raise FatalError(f"Invalid configuration: {e}") from e


@click.group()
@click.version_option(__version__, prog_name="cochange")
@click.option(
    "--repo",
    "-r",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Repository root (defaults to the git top level of the current directory)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Explicit TOML config file (overrides pyproject.toml and .cochange.toml)",
)
@click.option("--verbose", "-v", count=True, help="Log more (-v info, -vv debug)")
@click.pass_context
def cli(ctx: click.Context, repo: Path | None, config_path: Path | None, verbose: int) -> None:
    """cochange - enforce if-change / then-change co-change declarations.

    Annotate a block with `if-change` and list the files that must change
    with it after `then-change`; `cochange check` fails when the block
    changed but a listed file did not.
    """
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    if repo is None:
        try:
            repo = find_repo_root(Path.cwd())
        except SnapshotUnavailableError as e:
            raise FatalError(f"{e}. Pass --repo /path/to/repo or run from inside a git work tree.") from e
    ctx.obj["repo"] = repo.resolve()
    ctx.obj["config"] = config_path


@cli.command()
@click.option("--base", default="HEAD", show_default=True, help="Ref of the old snapshot")
@click.option(
    "--head",
    default=WORKTREE,
    show_default=True,
    help=f"Ref of the new snapshot ({WORKTREE} = uncommitted working tree)",
)
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.option(
    "--implicit-close/--strict-close",
    default=None,
    help="Allow a then-change list to end without end-change",
)
@click.option("--matching", type=click.Choice(MATCHING_MODES), default=None, help="How regions are paired across snapshots")
@click.option("--resolve", type=click.Choice(RESOLVE_MODES), default=None, help="How then-change paths are resolved")
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Files scanned in parallel")
@click.option("--exclude", multiple=True, help="Glob of paths not scanned for annotations (repeatable)")
@click.pass_context
def check(
    ctx: click.Context,
    base: str,
    head: str,
    output_json: bool,
    implicit_close: bool | None,
    matching: str | None,
    resolve: str | None,
    workers: int | None,
    exclude: tuple[str, ...],
) -> None:
    """Check that every changed region's declared targets changed too.

    Exits 1 when any violation is found.

    Examples:

        cochange check

        cochange check --base origin/main --head HEAD

        cochange check --base HEAD~1 --head HEAD --json
    """
    from .commands.check import run_check

    settings = _settings(
        ctx,
        {
            "implicit_close": implicit_close,
            "matching": matching,
            "resolve": resolve,
            "workers": workers,
            "exclude": list(exclude) or None,
        },
    )
    try:
        exit_code = run_check(ctx.obj["repo"], base, head, settings, output_json)
    except SnapshotUnavailableError as e:
        raise FatalError(str(e)) from e
    sys.exit(exit_code)


@cli.command()
@click.argument("paths", nargs=-1)
@click.option("--ref", default=WORKTREE, show_default=True, help="Snapshot to read")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.option(
    "--implicit-close/--strict-close",
    default=None,
    help="Allow a then-change list to end without end-change",
)
@click.pass_context
def regions(
    ctx: click.Context,
    paths: tuple[str, ...],
    ref: str,
    output_json: bool,
    implicit_close: bool | None,
) -> None:
    """List annotated regions, their targets and who declares each file.

    PATHS are repository-relative; all annotated files are listed if omitted.
    """
    from .commands.regions import run_regions

    settings = _settings(ctx, {"implicit_close": implicit_close})
    try:
        exit_code = run_regions(ctx.obj["repo"], ref, settings, paths, output_json)
    except SnapshotUnavailableError as e:
        raise FatalError(str(e)) from e
    sys.exit(exit_code)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
