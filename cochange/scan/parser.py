"""Parsing of if-change / then-change annotations.

Two forms are recognised, in any comment syntax:

    # if-change
    export VERSION="0.3.1"
    # then-change push.sh

    <!-- if-change -->
    some markup
    <!-- then-change -->
    <!--   push.sh -->
    <!--   release.sh -->
    <!-- end-change -->

A directive matches when everything before its lexeme is a comment prefix
(ASCII punctuation and whitespace). Trailing punctuation is ignored, so
block-comment closers work without per-language support; as a consequence
a trailing punctuation character in a path is dropped.
"""

from __future__ import annotations

import logging
import re
import string
from dataclasses import dataclass, field
from enum import Enum

from ..config.schema import MarkerSyntax
from ..models import AnnotationError, FileScan, Region
from .fingerprint import fingerprint_bytes

logger = logging.getLogger(__name__)

_PUNCT_WS = string.punctuation + string.whitespace
_PUNCT_CLASS = re.escape(string.punctuation)

# Optional comment prefix, whitespace, then a single path token.
TARGET_ENTRY_PATTERN = re.compile(rf"^\s*(?:[{_PUNCT_CLASS}]+\s+)?(?P<path>\S+)$")

# Comment leaders that may sit directly against a path (`#push.sh`, `//push.sh`).
# `.`, `/`, `~` and `_` are left alone when they start a path.
COMMENT_LEADER_PATTERN = re.compile(r"^(?:<!--|/\*+|/{2,}|[#;%*!'\"-]+)")


class LineKind(Enum):
    SOURCE = "source"
    OPEN = "open"
    THEN_INLINE = "then-inline"
    THEN_BLOCK = "then-block"
    CLOSE = "close"


def is_comment_prefix(text: str) -> bool:
    """True if `text` is empty or made only of ASCII punctuation and whitespace."""
    return all(ch in _PUNCT_WS for ch in text)


def _directive_tail(line: str, lexeme: str) -> str | None:
    """Return what follows `lexeme` on a directive line, or None if not a directive."""
    pre, sep, post = line.partition(lexeme)
    if not sep or not is_comment_prefix(pre):
        return None
    post = post.rstrip(_PUNCT_WS)
    if post and not post[0].isspace():
        # if-change-foo is a word, not a directive
        return None
    return post.strip()


def classify_line(line: str, syntax: MarkerSyntax) -> tuple[LineKind, str | None]:
    """Classify one line independently of parser state.

    Returns the kind and, for inline then-change, the declared path.
    """
    if _directive_tail(line, syntax.open) is not None:
        return LineKind.OPEN, None

    tail = _directive_tail(line, syntax.then)
    if tail is not None:
        if not tail:
            return LineKind.THEN_BLOCK, None
        return LineKind.THEN_INLINE, tail

    if _directive_tail(line, syntax.close) is not None:
        return LineKind.CLOSE, None

    return LineKind.SOURCE, None


def extract_target(line: str) -> str | None:
    """Extract the path from a then-change list entry such as `#   push.sh` or `#push.sh`.

    Returns None for blank or comment-only lines and for lines holding more
    than one token (ordinary source code).
    """
    trimmed = line.rstrip(_PUNCT_WS)
    if not trimmed.strip():
        return None
    match = TARGET_ENTRY_PATTERN.match(trimmed)
    if not match:
        return None
    return COMMENT_LEADER_PATTERN.sub("", match.group("path"), count=1) or None


def split_lines(data: bytes) -> list[bytes]:
    """Split on \\n, \\r\\n or \\r, keeping line endings so content stays byte-exact."""
    return data.splitlines(keepends=True)


@dataclass
class _OpenRegion:
    open_line: int
    then_line: int | None = None
    targets: list[str] = field(default_factory=list)
    target_lines: list[int] = field(default_factory=list)

    @property
    def start_line(self) -> int:
        return self.open_line + 1

    @property
    def last_line(self) -> int:
        if self.target_lines:
            return self.target_lines[-1]
        return self.then_line or self.open_line


class RegionParser:
    """Line-by-line state machine over one file.

    States: idle, inside an if-change body, inside a then-change target
    list. Each line is classified first and then handled according to the
    state, so every misplaced directive gets its own error and parsing
    resumes afterwards.
    """

    def __init__(self, syntax: MarkerSyntax | None = None, implicit_close: bool = False):
        self.syntax = syntax or MarkerSyntax()
        self.implicit_close = implicit_close

    def may_contain_markers(self, data: bytes) -> bool:
        lexemes = (self.syntax.open, self.syntax.then, self.syntax.close)
        return any(lexeme.encode("utf-8") in data for lexeme in lexemes)

    def parse(self, path: str, data: bytes | str) -> FileScan:
        """Parse all regions of one file.

        Args:
            path: Repository-relative path, recorded on regions and errors
            data: Full file content

        Returns:
            FileScan with the well-formed regions and every annotation error
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        digest = fingerprint_bytes(data)

        if b"\0" in data:
            logger.debug("Skipping binary file %s", path)
            return FileScan(file_path=path, digest=digest)
        if not self.may_contain_markers(data):
            return FileScan(file_path=path, digest=digest)

        run = _ParseRun(self, path, split_lines(data))
        run.parse()
        logger.debug("Parsed %s: %d region(s), %d error(s)", path, len(run.regions), len(run.errors))
        return FileScan(
            file_path=path,
            regions=tuple(run.regions),
            errors=tuple(run.errors),
            digest=digest,
        )


class _ParseRun:
    """Mutable state of a single RegionParser.parse call."""

    def __init__(self, parser: RegionParser, path: str, raw_lines: list[bytes]):
        self.syntax = parser.syntax
        self.implicit_close = parser.implicit_close
        self.path = path
        self.raw_lines = raw_lines
        self.regions: list[Region] = []
        self.errors: list[AnnotationError] = []
        self.current: _OpenRegion | None = None

    def error(self, line: int, message: str) -> None:
        self.errors.append(AnnotationError(file_path=self.path, line=line, message=message))

    def emit(self, start_line: int, end_line: int) -> None:
        assert self.current is not None
        content = b"".join(self.raw_lines[start_line - 1 : end_line])
        self.regions.append(
            Region(
                file_path=self.path,
                index=len(self.regions),
                start_line=start_line,
                end_line=end_line,
                declared_targets=tuple(self.current.targets),
                target_lines=tuple(self.current.target_lines),
                raw_content=content,
            )
        )
        self.current = None

    def close_target_list(self, end_line: int) -> None:
        """Finish a then-change block whose last line is `end_line`."""
        assert self.current is not None and self.current.then_line is not None
        if not self.current.targets:
            self.error(self.current.then_line, f"{self.syntax.then} block declares no targets")
            self.current = None
            return
        self.emit(self.current.start_line, end_line)

    def parse(self) -> None:
        for lineno, raw in enumerate(self.raw_lines, start=1):
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            self.feed(lineno, line)
        self.finish()

    def feed(self, lineno: int, line: str) -> None:
        kind, inline_path = classify_line(line, self.syntax)
        syn = self.syntax

        if self.current is None:
            if kind is LineKind.OPEN:
                self.current = _OpenRegion(open_line=lineno)
            elif kind in (LineKind.THEN_INLINE, LineKind.THEN_BLOCK):
                self.error(lineno, f"{syn.then} must follow an {syn.open}")
            elif kind is LineKind.CLOSE:
                self.error(lineno, f"{syn.close} must follow an {syn.open} and {syn.then}")
            return

        if self.current.then_line is None:
            # Inside the if-change body.
            if kind is LineKind.OPEN:
                self.error(lineno, f"{syn.open} nesting is not allowed")
            elif kind is LineKind.THEN_INLINE:
                self.current.then_line = lineno
                self.current.targets.append(inline_path or "")
                self.current.target_lines.append(lineno)
                self.emit(self.current.start_line, lineno)
            elif kind is LineKind.THEN_BLOCK:
                self.current.then_line = lineno
            elif kind is LineKind.CLOSE:
                self.error(lineno, f"{syn.close} must follow a {syn.then}")
            return

        # Inside a then-change target list.
        if kind is LineKind.CLOSE:
            self.close_target_list(lineno - 1)
            return

        target = extract_target(line) if kind is LineKind.SOURCE else None
        if target is not None:
            self.current.targets.append(target)
            self.current.target_lines.append(lineno)
            return

        if kind is LineKind.SOURCE and not self.implicit_close and not line.rstrip(_PUNCT_WS).strip():
            # Blank and comment-only lines may separate entries of a closed list.
            return

        # Anything else ends the target list.
        if self.implicit_close:
            self.close_target_list(self.current.last_line)
        else:
            self.error(self.current.then_line, f"{syn.then} block is not closed by {syn.close}")
            self.current = None
        self.feed(lineno, line)

    def finish(self) -> None:
        if self.current is None:
            return
        if self.current.then_line is None:
            self.error(self.current.open_line, f"{self.syntax.open} is never followed by {self.syntax.then}")
            self.current = None
        elif self.implicit_close:
            self.close_target_list(self.current.last_line)
        else:
            self.error(self.current.then_line, f"{self.syntax.then} block is not closed by {self.syntax.close}")
            self.current = None
