"""Pre-flight fitting of unified diffs before they reach a prompt.

Two pure stages:

1. ``filter_diff`` drops whole file sections whose path matches an excluded
   pattern (lock files, generated files). Retained text is untouched.
2. ``maybe_summarize_diff`` bounds the size. When the diff is too long it keeps
   whole hunks from the start and lists what was left out in a short digest
   trailer. Output length never exceeds the limit and identical input always
   yields identical output.
"""

from __future__ import annotations

import fnmatch
import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

GIT_HEADER = "diff --git "
HUNK_HEADER = "@@"
_HUNK_RANGE_RE = re.compile(r"^@@ -\d+(?:,(\d+))? \+\d+(?:,(\d+))? @@")


@dataclass(frozen=True)
class FitDecision:
    """Result of fitting a diff into a size budget."""

    fitted_diff: str
    was_truncated_or_summarized: bool = False

    @property
    def is_empty(self) -> bool:
        """True when there is nothing left to describe."""
        return not self.fitted_diff.strip()


@dataclass
class FileSection:
    """One file's portion of a unified diff."""

    path: str
    old_path: str
    header: str
    hunks: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return self.header + "".join(self.hunks)

    @property
    def binary(self) -> bool:
        return "Binary files " in self.header or "GIT binary patch" in self.header


@dataclass(frozen=True)
class FileSummary:
    path: str
    added: int
    removed: int
    binary: bool = False

    def describe(self) -> str:
        if self.binary:
            return f"{self.path} (binary)"
        return f"{self.path} (+{self.added} -{self.removed})"


def _strip_prefix(path: str) -> str:
    path = path.strip().strip('"')
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def _paths_from_git_header(line: str) -> Tuple[str, str]:
    rest = line[len(GIT_HEADER):].rstrip("\r\n")
    idx = rest.rfind(" b/")
    if idx == -1:
        parts = rest.split(" ", 1)
        old = parts[0]
        new = parts[1] if len(parts) > 1 else parts[0]
    else:
        old, new = rest[:idx], rest[idx + 1:]
    return _strip_prefix(old), _strip_prefix(new)


def _paths_from_markers(header_lines: Sequence[str]) -> Tuple[Optional[str], Optional[str]]:
    old: Optional[str] = None
    new: Optional[str] = None
    for line in header_lines:
        if line.startswith("--- "):
            old = _strip_prefix(line[4:].split("\t", 1)[0].rstrip("\r\n"))
        elif line.startswith("+++ "):
            new = _strip_prefix(line[4:].split("\t", 1)[0].rstrip("\r\n"))
    return old, new


def _section_starts(lines: Sequence[str]) -> List[int]:
    git_starts = [i for i, line in enumerate(lines) if line.startswith(GIT_HEADER)]
    if git_starts:
        return git_starts
    # Plain unified diffs: a section starts at a '---' line followed by '+++',
    # but only outside hunk bodies, whose extent comes from the hunk ranges.
    starts: List[int] = []
    old_left = new_left = 0
    for i, line in enumerate(lines):
        if old_left > 0 or new_left > 0:
            if line.startswith("-"):
                old_left -= 1
            elif line.startswith("+"):
                new_left -= 1
            elif not line.startswith("\\"):
                old_left -= 1
                new_left -= 1
            continue
        hunk = _HUNK_RANGE_RE.match(line)
        if hunk:
            old_left = int(hunk.group(1)) if hunk.group(1) is not None else 1
            new_left = int(hunk.group(2)) if hunk.group(2) is not None else 1
        elif (
            line.startswith("--- ")
            and i + 1 < len(lines)
            and lines[i + 1].startswith("+++ ")
        ):
            starts.append(i)
    return starts


def _build_section(lines: Sequence[str]) -> FileSection:
    hunk_starts = [i for i, line in enumerate(lines) if line.startswith(HUNK_HEADER)]
    header_end = hunk_starts[0] if hunk_starts else len(lines)
    header_lines = list(lines[:header_end])
    old: Optional[str] = None
    new: Optional[str] = None
    if lines and lines[0].startswith(GIT_HEADER):
        old, new = _paths_from_git_header(lines[0])
    marker_old, marker_new = _paths_from_markers(header_lines)
    old = marker_old if marker_old and marker_old != "/dev/null" else old
    new = marker_new if marker_new and marker_new != "/dev/null" else new
    path = new or old or ""
    hunks: List[str] = []
    for n, start in enumerate(hunk_starts):
        end = hunk_starts[n + 1] if n + 1 < len(hunk_starts) else len(lines)
        hunks.append("".join(lines[start:end]))
    return FileSection(
        path=path,
        old_path=old or path,
        header="".join(header_lines),
        hunks=hunks,
    )


def split_sections(diff: str) -> Tuple[str, List[FileSection]]:
    """Split ``diff`` into its preamble and per-file sections.

    Concatenating the preamble and every section's ``text`` reproduces the
    input exactly.
    """
    lines = diff.splitlines(keepends=True)
    starts = _section_starts(lines)
    if not starts:
        return diff, []
    preamble = "".join(lines[: starts[0]])
    sections: List[FileSection] = []
    for n, start in enumerate(starts):
        end = starts[n + 1] if n + 1 < len(starts) else len(lines)
        sections.append(_build_section(lines[start:end]))
    return preamble, sections


def path_matches(path: str, patterns: Iterable[str]) -> bool:
    """Match ``path`` against glob patterns (full path, basename or dir prefix)."""
    if not path:
        return False
    base = posixpath.basename(path)
    for raw in patterns:
        pattern = (raw or "").strip()
        if not pattern:
            continue
        if pattern.endswith("/"):
            if path.startswith(pattern) or f"/{pattern}" in f"/{path}":
                return True
            continue
        if fnmatch.fnmatchcase(path, pattern) or fnmatch.fnmatchcase(base, pattern):
            return True
    return False


def filter_diff(diff: str, excluded_patterns: Optional[Iterable[str]]) -> str:
    """Remove file sections whose path matches any excluded pattern."""
    patterns = [p for p in (excluded_patterns or ()) if p and p.strip()]
    if not diff or not patterns:
        return diff
    preamble, sections = split_sections(diff)
    kept: List[FileSection] = []
    for section in sections:
        if path_matches(section.path, patterns) or path_matches(
            section.old_path, patterns
        ):
            logger.debug("diff.filter excluded %s", section.path)
            continue
        kept.append(section)
    return preamble + "".join(section.text for section in kept)


def _count_changes(section: FileSection) -> Tuple[int, int]:
    added = removed = 0
    for hunk in section.hunks:
        for line in hunk.splitlines()[1:]:
            if line.startswith("+"):
                added += 1
            elif line.startswith("-"):
                removed += 1
    return added, removed


def summarize_section(section: FileSection) -> FileSummary:
    added, removed = _count_changes(section)
    return FileSummary(section.path, added, removed, section.binary)


def summarize_files(diff: str) -> List[FileSummary]:
    """Per-file change counts for ``diff``."""
    _, sections = split_sections(diff)
    return [summarize_section(section) for section in sections]


def _units(preamble: str, sections: Sequence[FileSection]) -> List[Tuple[int, str]]:
    """Ordered keepable units: (section index or -1, text)."""
    units: List[Tuple[int, str]] = []
    if preamble:
        units.append((-1, preamble))
    for idx, section in enumerate(sections):
        if not section.hunks:
            units.append((idx, section.header))
            continue
        units.append((idx, section.header + section.hunks[0]))
        for hunk in section.hunks[1:]:
            units.append((idx, hunk))
    return units


def _trailer_line(summary: FileSummary) -> str:
    return f"# omitted: {summary.describe()}\n"


def maybe_summarize_diff(diff: str, max_length: int) -> FitDecision:
    """Bound ``diff`` to ``max_length`` characters.

    Diffs that already fit are returned unchanged. Otherwise whole hunks are
    kept from the start (a file header travels with its first hunk) until the
    next one would overflow; if not even the first hunk fits, its leading
    whole lines are kept instead. Files with dropped hunks are listed in a
    ``# omitted:`` trailer as far as space allows.
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")
    if len(diff) <= max_length:
        return FitDecision(diff, False)

    preamble, sections = split_sections(diff)
    summaries = [summarize_section(section) for section in sections]
    full_trailer = "".join(_trailer_line(s) for s in summaries)
    reserve = min(len(full_trailer), max_length // 4)
    body_limit = max_length - reserve

    units = _units(preamble, sections)
    kept: List[str] = []
    kept_counts: dict[int, int] = {}
    used = 0
    for idx, text in units:
        if used + len(text) > body_limit:
            break
        kept.append(text)
        kept_counts[idx] = kept_counts.get(idx, 0) + 1
        used += len(text)

    if not kept and units:
        # First unit alone is too large: keep its leading whole lines.
        first_idx, first_text = units[0]
        for line in first_text.splitlines(keepends=True):
            if used + len(line) > body_limit:
                break
            kept.append(line)
            used += len(line)
        if kept:
            kept_counts[first_idx] = 0

    body = "".join(kept)
    if body and not body.endswith("\n"):
        body += "\n"
    if len(body) > max_length:
        body = body[:-1]

    trailer: List[str] = []
    space = max_length - len(body)
    for idx, (section, summary) in enumerate(zip(sections, summaries)):
        total_units = max(1, len(section.hunks))
        if kept_counts.get(idx, -1) >= total_units:
            continue
        line = _trailer_line(summary)
        if len(line) > space:
            break
        trailer.append(line)
        space -= len(line)

    fitted = body + "".join(trailer)
    logger.debug(
        "diff.fit original=%d fitted=%d limit=%d omitted=%d",
        len(diff),
        len(fitted),
        max_length,
        len(trailer),
    )
    return FitDecision(fitted, True)


def fit_diff(
    diff: str,
    excluded_patterns: Optional[Iterable[str]],
    max_length: int,
) -> FitDecision:
    """Filter noise, then bound size."""
    return maybe_summarize_diff(filter_diff(diff, excluded_patterns), max_length)


__all__ = [
    "FileSection",
    "FileSummary",
    "FitDecision",
    "filter_diff",
    "fit_diff",
    "maybe_summarize_diff",
    "path_matches",
    "split_sections",
    "summarize_files",
]
