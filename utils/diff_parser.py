"""
Utility for parsing unified-diff patches and mapping file lines to diff positions.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Tuple

HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

METADATA_PREFIXES = (
    "---",
    "+++",
    "diff --git",
    "index ",
    "new file mode",
    "deleted file mode",
    "old mode",
    "new mode",
    "similarity index",
    "dissimilarity index",
    "rename from",
    "rename to",
    "copy from",
    "copy to",
    "\\",
)


class LineRole(str, Enum):
    CONTEXT = "context"
    ADDITION = "addition"
    DELETION = "deletion"


class PositionKind(str, Enum):
    EXACT = "exact"
    APPROXIMATE = "approximate"


@dataclass
class RawLine:
    role: LineRole
    text: str
    old_line: Optional[int] = None
    new_line: Optional[int] = None


@dataclass
class Hunk:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    header: str
    lines: List[RawLine] = field(default_factory=list)

    @property
    def added_lines(self) -> List[RawLine]:
        return [line for line in self.lines if line.role is LineRole.ADDITION]


@dataclass
class ChangeMap:
    additions: List[int] = field(default_factory=list)
    deletions: List[int] = field(default_factory=list)


@dataclass
class ChangeSet:
    changed_content: str
    change_map: ChangeMap


@dataclass(frozen=True)
class DiffPosition:
    """A resolved review-comment position; APPROXIMATE means nearest-hunk guess."""

    position: int
    kind: PositionKind

    @property
    def is_exact(self) -> bool:
        return self.kind is PositionKind.EXACT


def _split_lines(text: str) -> List[str]:
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def is_metadata_line(line: str) -> bool:
    return line.startswith(METADATA_PREFIXES)


def is_addition(line: str) -> bool:
    return line.startswith("+") and not line.startswith("+++")


def is_deletion(line: str) -> bool:
    return line.startswith("-") and not line.startswith("---")


def classify_line(line: str, in_body: bool) -> Optional[LineRole]:
    """Role of a line after a hunk header, or None for metadata.

    While the hunk header's counts are not used up, ``+++``/``---`` are an
    added ``++...`` or removed ``--...`` line, not file headers.
    """
    if line.startswith("\\"):
        return None
    if in_body:
        if line.startswith("+"):
            return LineRole.ADDITION
        if line.startswith("-"):
            return LineRole.DELETION
        return LineRole.CONTEXT
    if is_metadata_line(line):
        return None
    if is_addition(line):
        return LineRole.ADDITION
    if is_deletion(line):
        return LineRole.DELETION
    return LineRole.CONTEXT


def parse_hunk_header(line: str) -> Optional[Hunk]:
    match = HUNK_HEADER_RE.match(line)
    if not match:
        return None
    old_start, old_lines, new_start, new_lines = match.groups()
    return Hunk(
        old_start=int(old_start),
        old_lines=int(old_lines) if old_lines is not None else 1,
        new_start=int(new_start),
        new_lines=int(new_lines) if new_lines is not None else 1,
        header=line,
    )


def iter_patch_lines(
    patch: Optional[str],
) -> Iterator[Tuple[str, Optional[Hunk], Optional[LineRole]]]:
    """Yield ``(line, hunk, role)`` for every physical line of ``patch``.

    ``hunk`` is set on header lines only; ``role`` is None for headers,
    metadata and anything before the first header.
    """
    old_left = new_left = 0
    seen_header = False

    for line in _split_lines(patch or ""):
        header = parse_hunk_header(line)
        if header:
            seen_header = True
            old_left, new_left = header.old_lines, header.new_lines
            yield line, header, None
            continue
        if not seen_header:
            yield line, None, None
            continue

        role = classify_line(line, in_body=old_left > 0 or new_left > 0)
        if role is LineRole.ADDITION:
            new_left -= 1
        elif role is LineRole.DELETION:
            old_left -= 1
        elif role is LineRole.CONTEXT:
            old_left -= 1
            new_left -= 1
        yield line, None, role


def parse_patch(patch: Optional[str]) -> List[Hunk]:
    """Parse a single file's unified-diff patch into hunks.

    Lines before the first hunk header are ignored. A patch without any
    recognizable header yields an empty list rather than an error.
    """
    hunks: List[Hunk] = []
    current: Optional[Hunk] = None
    old_line = new_line = 0

    for line, header, role in iter_patch_lines(patch):
        if header:
            current = header
            hunks.append(current)
            old_line = current.old_start
            new_line = current.new_start
            continue

        if current is None or role is None:
            continue

        if role is LineRole.ADDITION:
            current.lines.append(RawLine(role, line[1:], new_line=new_line))
            new_line += 1
        elif role is LineRole.DELETION:
            current.lines.append(RawLine(role, line[1:], old_line=old_line))
            old_line += 1
        else:
            current.lines.append(
                RawLine(
                    role,
                    line[1:] if line.startswith(" ") else line,
                    old_line=old_line,
                    new_line=new_line,
                )
            )
            old_line += 1
            new_line += 1

    return hunks


def map_line_to_position(
    patch: Optional[str], line_number: int
) -> Optional[DiffPosition]:
    """Map a new-file line number to GitHub's diff ``position`` coordinate.

    Position 1 is the line right below the first ``@@`` header; every later
    physical line (further hunk headers included) adds one. If the line is not
    present in the diff, the first content line of the hunk whose start is
    closest to it is returned and tagged APPROXIMATE.
    """
    if not patch:
        return None

    diff_position = 0
    current_line = 0
    found_hunk = False
    header_positions = []

    for _, header, role in iter_patch_lines(patch):
        if found_hunk:
            diff_position += 1

        if header:
            found_hunk = True
            current_line = header.new_start
            header_positions.append((header.new_start, diff_position))
            continue

        if role is None or role is LineRole.DELETION:
            continue

        if current_line == line_number:
            return DiffPosition(diff_position, PositionKind.EXACT)
        current_line += 1

    if not header_positions:
        return None

    _, header_position = min(
        header_positions, key=lambda entry: abs(entry[0] - line_number)
    )
    return DiffPosition(header_position + 1, PositionKind.APPROXIMATE)


def extract_changed_content(patch: Optional[str]) -> ChangeSet:
    """Render the added lines of a patch with their new-file line numbers.

    Output looks like::

        Starting at line 12
        12: added code
        13: more added code
    """
    change_map = ChangeMap()
    rendered: List[str] = []

    for hunk in parse_patch(patch):
        added = hunk.added_lines
        for line in hunk.lines:
            if line.role is LineRole.DELETION:
                change_map.deletions.append(line.old_line)
        if not added:
            continue

        rendered.append(f"Starting at line {hunk.new_start}")
        for line in added:
            change_map.additions.append(line.new_line)
            rendered.append(f"{line.new_line}: {line.text}")

    return ChangeSet(changed_content="\n".join(rendered), change_map=change_map)


def _added_line_numbers(patch: str) -> List[int]:
    return [
        line.new_line for hunk in parse_patch(patch) for line in hunk.added_lines
    ]


def is_changed_line(file, line_number: int) -> bool:
    """Check whether ``line_number`` of the new file was added by the patch.

    ``file`` is anything with optional ``change_map``, ``patch`` and
    ``changed_content`` attributes. The most precise source available wins;
    with none of them the line is assumed changed.
    """
    change_map = getattr(file, "change_map", None)
    if change_map is not None and change_map.additions is not None:
        return line_number in change_map.additions

    patch = getattr(file, "patch", None)
    if patch:
        return line_number in _added_line_numbers(patch)

    changed_content = getattr(file, "changed_content", None)
    if changed_content:
        marker = re.compile(rf"^{line_number}:\s", re.MULTILINE)
        return bool(marker.search(changed_content))

    return True


class DiffParser:
    """Parsed view of one file's patch, computed once and queried per finding."""

    def __init__(self, patch: Optional[str]):
        self.patch = patch or ""
        self._change_set = extract_changed_content(self.patch)

    @property
    def change_map(self) -> ChangeMap:
        return self._change_set.change_map

    @property
    def changed_content(self) -> str:
        return self._change_set.changed_content

    def get_commentable_lines(self) -> List[int]:
        """Get all new-file line numbers added by this patch."""
        return list(self.change_map.additions)

    def is_line_commentable(self, line_number: int) -> bool:
        return line_number in self.change_map.additions

    def position_for_line(self, line_number: int) -> Optional[DiffPosition]:
        return map_line_to_position(self.patch, line_number)
