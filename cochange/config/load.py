from __future__ import annotations

import logging
import tomllib
from dataclasses import replace
from pathlib import Path
from typing import Any

from .schema import ConfigError, MarkerSyntax, Settings

logger = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = ".cochange.toml"


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: {e}") from e


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{key} must be a boolean, got {value!r}")


def _as_str(key: str, value: Any) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ConfigError(f"{key} must be a non-empty string, got {value!r}")


def _as_int(key: str, value: Any) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise ConfigError(f"{key} must be an integer, got {value!r}")


def apply_table(settings: Settings, table: dict[str, Any]) -> Settings:
    """Overlay one `[tool.cochange]`-shaped table onto `settings`.

    Unknown keys are ignored so that newer config files keep loading.
    """
    changes: dict[str, Any] = {}

    markers = _coerce_dict(table.get("markers"))
    if markers:
        syntax = settings.syntax
        changes["syntax"] = MarkerSyntax(
            open=_as_str("markers.open", markers.get("open", syntax.open)),
            then=_as_str("markers.then", markers.get("then", syntax.then)),
            close=_as_str("markers.close", markers.get("close", syntax.close)),
        )

    if "implicit_close" in table:
        changes["implicit_close"] = _as_bool("implicit_close", table["implicit_close"])
    if "resolve" in table:
        changes["resolve"] = _as_str("resolve", table["resolve"])
    if "matching" in table:
        changes["matching"] = _as_str("matching", table["matching"])
    if "workers" in table:
        changes["workers"] = _as_int("workers", table["workers"])
    if "exclude" in table:
        exclude = table["exclude"]
        if isinstance(exclude, str):
            exclude = [exclude]
        if not isinstance(exclude, list) or not all(isinstance(p, str) for p in exclude):
            raise ConfigError(f"exclude must be a list of glob strings, got {exclude!r}")
        changes["exclude"] = tuple(p.strip() for p in exclude if p.strip())

    if not changes:
        return settings
    return replace(settings, **changes)


def load_settings(
    repo_root: Path | None = None,
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """
    Build settings from every configuration source.

    Precedence, lowest first: defaults, `[tool.cochange]` in the root
    `pyproject.toml`, the root `.cochange.toml`, an explicit config file,
    then `overrides` (CLI flags; None values are skipped).

    Args:
        repo_root: Repository root to search for project config files
        config_path: Explicit TOML file; must exist
        overrides: Flat mapping of setting name -> value

    Returns:
        Validated Settings
    """
    settings = Settings()

    if repo_root is not None:
        pyproject = repo_root / "pyproject.toml"
        if pyproject.is_file():
            tool = _coerce_dict(_read_toml(pyproject).get("tool"))
            table = _coerce_dict(tool.get("cochange"))
            if table:
                logger.debug("Loading [tool.cochange] from %s", pyproject)
                settings = apply_table(settings, table)

        project_config = repo_root / PROJECT_CONFIG_NAME
        if project_config.is_file():
            logger.debug("Loading %s", project_config)
            settings = apply_table(settings, _read_toml(project_config))

    if config_path is not None:
        if not config_path.is_file():
            raise ConfigError(f"config file not found: {config_path}")
        logger.debug("Loading %s", config_path)
        data = _read_toml(config_path)
        # Accept both a bare table and a pyproject-style [tool.cochange] table.
        nested = _coerce_dict(_coerce_dict(data.get("tool")).get("cochange"))
        settings = apply_table(settings, nested or data)

    if overrides:
        present = {k: v for k, v in overrides.items() if v is not None}
        if present:
            settings = apply_table(settings, present)

    return settings
