from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


Resolve = Literal["auto", "root", "file"]
Matching = Literal["position", "sequence"]

RESOLVE_MODES: tuple[str, ...] = ("auto", "root", "file")
MATCHING_MODES: tuple[str, ...] = ("position", "sequence")


class ConfigError(ValueError):
    """Raised when a configuration source holds an invalid value."""


@dataclass(frozen=True)
class MarkerSyntax:
    """The three directive lexemes of the annotation mini-syntax."""

    open: str = "if-change"
    then: str = "then-change"
    close: str = "end-change"

    def __post_init__(self) -> None:
        lexemes = (self.open, self.then, self.close)
        for lexeme in lexemes:
            if not lexeme or any(ch.isspace() for ch in lexeme):
                raise ConfigError(f"marker lexeme must be non-empty and contain no whitespace: {lexeme!r}")
        if len(set(lexemes)) != len(lexemes):
            raise ConfigError(f"marker lexemes must be distinct: {lexemes!r}")


@dataclass(frozen=True)
class Settings:
    syntax: MarkerSyntax = field(default_factory=MarkerSyntax)
    implicit_close: bool = False
    resolve: Resolve = "auto"
    matching: Matching = "position"
    workers: int = 1
    exclude: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.resolve not in RESOLVE_MODES:
            raise ConfigError(f"resolve must be one of {', '.join(RESOLVE_MODES)}, got {self.resolve!r}")
        if self.matching not in MATCHING_MODES:
            raise ConfigError(f"matching must be one of {', '.join(MATCHING_MODES)}, got {self.matching!r}")
        if self.workers < 1:
            raise ConfigError(f"workers must be a positive integer, got {self.workers!r}")
