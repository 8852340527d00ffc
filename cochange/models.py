"""Data models for annotated regions, scans and findings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ViolationReason(str, Enum):
    TARGET_UNCHANGED = "TargetUnchanged"  # Region changed, declared target did not
    TARGET_FILE_MISSING = "TargetFileMissing"  # Declared target absent from the new snapshot
    MALFORMED_ANNOTATION = "MalformedAnnotation"  # Nested, unterminated or stray directive
    SNAPSHOT_READ_ERROR = "SnapshotReadError"  # Provider could not read the file


@dataclass(frozen=True)
class Region:
    """One if-change / then-change block inside a file."""

    file_path: str
    index: int  # position within the file, 0-based
    start_line: int  # 1-based, inclusive
    end_line: int  # 1-based, inclusive
    declared_targets: tuple[str, ...] = ()
    target_lines: tuple[int, ...] = ()  # line of each declared target
    raw_content: bytes = b""

    @property
    def key(self) -> tuple[str, int]:
        return (self.file_path, self.index)

    @property
    def location(self) -> str:
        if self.start_line == self.end_line:
            return f"{self.file_path}:{self.start_line}"
        return f"{self.file_path}:{self.start_line}-{self.end_line}"


@dataclass(frozen=True)
class AnnotationError:
    """A directive the parser could not fit into a well-formed region."""

    file_path: str
    line: int  # 1-based; points at the directive to fix, not at EOF
    message: str

    def __str__(self) -> str:
        return f"{self.file_path}:{self.line} - {self.message}"


@dataclass(frozen=True)
class FileScan:
    """All regions found in one file of one snapshot."""

    file_path: str
    regions: tuple[Region, ...] = ()
    errors: tuple[AnnotationError, ...] = ()
    digest: str | None = None  # whole-file fingerprint; None when the file is absent

    @property
    def is_malformed(self) -> bool:
        return bool(self.errors)

    @property
    def exists(self) -> bool:
        return self.digest is not None


@dataclass(frozen=True)
class Fingerprint:
    """Content digest of one region, keyed by its position within the file."""

    file_path: str
    region_index: int
    digest: str


@dataclass(frozen=True)
class DependencyEdge:
    """A region's declaration that `target_path` must change whenever it does."""

    source: Region
    target_path: str
    target_index: int  # declaration order within the region
    line: int


@dataclass(frozen=True)
class Violation:
    """A single consistency finding.

    Findings are tied to the declaring region; `target_file` names the file
    the user is expected to change.
    """

    source_file: str
    reason: ViolationReason
    message: str
    start_line: int | None = None
    end_line: int | None = None
    region_index: int | None = None  # None for file-level findings
    target_file: str | None = None
    target_index: int = 0

    @property
    def sort_key(self) -> tuple[str, int, int, str]:
        return (self.source_file, self.start_line or 0, self.target_index, self.reason.value)

    @property
    def location(self) -> str:
        loc = self.source_file
        if self.start_line is not None:
            loc += f":{self.start_line}"
            if self.end_line is not None and self.end_line != self.start_line:
                loc += f"-{self.end_line}"
        return loc

    def __str__(self) -> str:
        return f"{self.location} - [{self.reason.value}] {self.message}"

    def to_dict(self) -> dict:
        return {
            "source_file": self.source_file,
            "region_index": self.region_index,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "target_file": self.target_file,
            "reason": self.reason.value,
            "message": self.message,
        }


@dataclass
class CheckResult:
    """Ordered violations of one consistency check plus scan counters."""

    violations: list[Violation] = field(default_factory=list)
    files_scanned: int = 0
    regions_found: int = 0
    regions_changed: int = 0
    edges_checked: int = 0

    def __iter__(self):
        return iter(self.violations)

    def __len__(self) -> int:
        return len(self.violations)

    def counts(self) -> dict[str, int]:
        counts = {reason.value: 0 for reason in ViolationReason}
        for v in self.violations:
            counts[v.reason.value] += 1
        return counts

    def summary(self) -> dict[str, int]:
        return {
            "files_scanned": self.files_scanned,
            "regions_found": self.regions_found,
            "regions_changed": self.regions_changed,
            "edges_checked": self.edges_checked,
            "violations": len(self.violations),
        }
