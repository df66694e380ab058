"""Data models for quickbook."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Union

from .cursor import SourcePosition

Attributes = tuple[tuple[str, str], ...]


@dataclass(frozen=True, slots=True)
class StartElement:
    """Opens an element of the internal vocabulary.

    Attributes:
        name: Internal element name (for example ``"section"`` or ``"bold"``).
        attributes: Ordered ``(name, value)`` pairs.
    """

    name: str
    attributes: Attributes = ()


@dataclass(frozen=True, slots=True)
class EndElement:
    """Closes the innermost element opened with the same name."""

    name: str


@dataclass(frozen=True, slots=True)
class Text:
    """Character data, escaped by the encoder."""

    content: str


@dataclass(frozen=True, slots=True)
class Raw:
    """Markup passed through to the output unescaped."""

    content: str


OutputEvent = Union[StartElement, EndElement, Text, Raw]


@dataclass(frozen=True, slots=True)
class Author:
    surname: str
    firstname: str


@dataclass(frozen=True, slots=True)
class Copyright:
    years: tuple[str, ...]
    holder: str


@dataclass(frozen=True)
class DocInfo:
    """Document metadata collected from the leading document-info block.

    Phrase-valued fields (`title`, `purpose`, `license`) hold unexpanded
    quickbook markup; they are parsed when the header is emitted.

    Attributes:
        doc_type: Document type keyword (``"article"``, ``"library"``...).
        title: Raw title markup.
        id: Document identifier, prefix of every generated section id.
        dirname: Output directory name used by BoostBook.
        version: Version of the documented software.
        quickbook_version: Language version requested by the document.
        authors: Authors in document order.
        copyrights: Copyright statements in document order.
        purpose: Raw purpose markup.
        category: Category text.
        license: Raw license markup.
        last_revision: Revision stamp.
        source_mode: Default language of code blocks.
        lang: Document language.
        ignore: When True the block is parsed but produces no output.
    """

    doc_type: str = ""
    title: str = ""
    id: str | None = None
    dirname: str | None = None
    version: str | None = None
    quickbook_version: str | None = None
    authors: tuple[Author, ...] = ()
    copyrights: tuple[Copyright, ...] = ()
    purpose: str | None = None
    category: str | None = None
    license: str | None = None
    last_revision: str | None = None
    source_mode: str | None = None
    lang: str | None = None
    ignore: bool = False


class Severity(Enum):
    """Severity of a reported diagnostic."""

    ERROR = "error"
    WARNING = "warning"


class ErrorKind(Enum):
    """Taxonomy of diagnostics.

    Attributes:
        LOAD: A source could not be read.
        METADATA: The document-info block is malformed or incomplete.
        SYNTAX: The body grammar failed or left input unconsumed.
        STRUCTURAL: A recoverable inconsistency found by an action.
    """

    LOAD = auto()
    METADATA = auto()
    SYNTAX = auto()
    STRUCTURAL = auto()


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """A single error or warning tied to a source location.

    Attributes:
        severity: Error or warning.
        kind: Taxonomy entry the diagnostic belongs to.
        message: Human readable description.
        file: Name of the source the diagnostic refers to.
        position: Location inside `file`, or None when the whole file is meant.
    """

    severity: Severity
    kind: ErrorKind
    message: str
    file: str
    position: SourcePosition | None = None


class CompilerPhase(Enum):
    """States of the two-phase driver for one source.

    Attributes:
        AWAITING_METADATA: The document-info block has not been tried yet.
        BODY_PENDING: Metadata was accepted or ignored; the body is next.
        DONE: The body consumed the whole input.
        FAILED: Metadata or body parsing failed.
    """

    AWAITING_METADATA = auto()
    BODY_PENDING = auto()
    DONE = auto()
    FAILED = auto()


@dataclass
class CompileResult:
    """Outcome of compiling one compilation unit.

    Attributes:
        success: True when metadata and body parsed and no error was counted.
        output: Encoded (and optionally reformatted) markup; None on failure.
        error_count: Number of errors counted across the unit and its includes.
        warning_count: Number of warnings reported.
        section_level: Section nesting depth left open at the end of the unit.
        diagnostics: Every diagnostic in report order.
        events: Event stream produced by the actions.
    """

    success: bool
    output: str | None
    error_count: int
    warning_count: int
    section_level: int
    diagnostics: list[Diagnostic] = field(default_factory=list)
    events: list[OutputEvent] = field(default_factory=list)
