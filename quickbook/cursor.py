"""Source buffers and backtracking cursors."""

from __future__ import annotations

import bisect
import re
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class SourcePosition:
    """Snapshot of a location inside a named source.

    Attributes:
        file: Name of the source (a path, ``"command line parameter"``...).
        offset: Zero-based character offset.
        line: One-based line number.
        column: One-based column number.
    """

    file: str
    offset: int
    line: int
    column: int


class Source:
    """Named text buffer with precomputed line starts.

    Args:
        text: Full contents of the source.
        name: Name reported in diagnostics.
        origin: Position of `text` inside an enclosing source, when the text
            was cut out of one; positions are then reported relative to it.

    Examples:
        Source("first\\nsecond", "doc.qbk").position(6)  # line 2, column 1
    """

    __slots__ = ("text", "name", "origin", "_line_starts")

    def __init__(self, text: str, name: str, origin: SourcePosition | None = None):
        self.text = text
        self.name = name
        self.origin = origin
        self._line_starts = [0] + [match.end() for match in re.finditer("\n", text)]

    def position(self, offset: int) -> SourcePosition:
        line_index = bisect.bisect_right(self._line_starts, offset) - 1
        column = offset - self._line_starts[line_index] + 1
        origin = self.origin
        if origin is None:
            return SourcePosition(self.name, offset, line_index + 1, column)
        if line_index == 0:
            column += origin.column - 1
        return SourcePosition(origin.file, origin.offset + offset, origin.line + line_index, column)

    def __len__(self) -> int:
        return len(self.text)


class Cursor:
    """Restartable position over a `Source`.

    Cursors are cheap to copy; several may read the same source. Backtracking
    is done with `mark` and `rewind`.
    """

    __slots__ = ("source", "offset")

    def __init__(self, source: Source, offset: int = 0):
        self.source = source
        self.offset = offset

    @property
    def text(self) -> str:
        return self.source.text

    @property
    def at_end(self) -> bool:
        return self.offset >= len(self.source.text)

    @property
    def at_line_start(self) -> bool:
        return self.offset == 0 or self.source.text[self.offset - 1] == "\n"

    def peek(self, ahead: int = 0) -> str:
        """Return the character `ahead` places after the cursor, or ``""``."""
        index = self.offset + ahead
        if index >= len(self.source.text):
            return ""
        return self.source.text[index]

    def startswith(self, prefix: str) -> bool:
        return self.source.text.startswith(prefix, self.offset)

    def advance(self, count: int = 1) -> str:
        """Consume `count` characters and return them."""
        start = self.offset
        self.offset = min(start + count, len(self.source.text))
        return self.source.text[start : self.offset]

    def match(self, pattern: re.Pattern[str]) -> re.Match[str] | None:
        """Match `pattern` at the cursor, advancing past it on success."""
        found = pattern.match(self.source.text, self.offset)
        if found is not None:
            self.offset = found.end()
        return found

    def lookahead(self, pattern: re.Pattern[str]) -> re.Match[str] | None:
        """Match `pattern` at the cursor without consuming anything."""
        return pattern.match(self.source.text, self.offset)

    def rest_of_line(self) -> str:
        end = self.source.text.find("\n", self.offset)
        if end < 0:
            end = len(self.source.text)
        return self.source.text[self.offset : end]

    def mark(self) -> int:
        return self.offset

    def rewind(self, mark: int) -> None:
        self.offset = mark

    def copy(self) -> Cursor:
        return Cursor(self.source, self.offset)

    def position(self) -> SourcePosition:
        return self.source.position(self.offset)

    def slice(self, start: int, end: int | None = None) -> str:
        return self.source.text[start : self.offset if end is None else end]

    def __repr__(self) -> str:
        position = self.position()
        return f"Cursor({position.file!r}, line={position.line}, column={position.column})"
