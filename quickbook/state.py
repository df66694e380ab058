"""Mutable compiler state shared by one compilation unit and its includes."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .config import QuickbookConfig
from .encoders import Encoding, encoding_from_name
from .models import Diagnostic, OutputEvent

MAX_INCLUDE_DEPTH = 32
MAX_EXPANSION_DEPTH = 50
MAX_PHRASE_DEPTH = 100


@dataclass(frozen=True, slots=True)
class Template:
    """A template definition.

    Attributes:
        name: Name used to invoke the template.
        params: Formal parameter names, in order.
        body: Unexpanded body markup.
        block: True when the body starts on a new line and expands to blocks.
        events: Pre-expanded output of a bound template argument; such a
            template replays its events instead of parsing `body`.
    """

    name: str
    params: tuple[str, ...]
    body: str
    block: bool = False
    events: tuple[OutputEvent, ...] | None = None


class MacroTable:
    """Mapping from macro name to unexpanded body text.

    The last definition of a name wins. Every change is journaled so that
    definitions made by an abandoned grammar alternative can be undone.

    Examples:
        macros = MacroTable()
        macros.define("VERSION", "1.2")
        macros.lookup("VERSION")  # "1.2"
    """

    def __init__(self):
        self._bodies: dict[str, str] = {}
        self._journal: list[tuple[str, str | None]] = []

    def define(self, name: str, body: str) -> str | None:
        """Bind `name` to `body` and return the body it replaced, if any."""
        previous = self._bodies.get(name)
        self._journal.append((name, previous))
        self._bodies[name] = body
        return previous

    def lookup(self, name: str) -> str | None:
        return self._bodies.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._bodies

    def __len__(self) -> int:
        return len(self._bodies)

    def checkpoint(self) -> int:
        return len(self._journal)

    def rollback(self, checkpoint: int) -> None:
        while len(self._journal) > checkpoint:
            name, previous = self._journal.pop()
            if previous is None:
                del self._bodies[name]
            else:
                self._bodies[name] = previous


class TemplateTable:
    """Scoped mapping from template name to `Template`.

    The outermost scope holds document-level definitions. Template expansion
    pushes a scope binding the parameters; lookups search the innermost scope
    first.
    """

    def __init__(self):
        self._scopes: list[dict[str, Template]] = [{}]
        self._journal: list[tuple[int, str, Template | None]] = []

    def define(self, template: Template) -> Template | None:
        """Add `template` to the innermost scope and return what it replaced."""
        scope_index = len(self._scopes) - 1
        previous = self._scopes[scope_index].get(template.name)
        self._journal.append((scope_index, template.name, previous))
        self._scopes[scope_index][template.name] = template
        return previous

    def lookup(self, name: str) -> Template | None:
        for scope in reversed(self._scopes):
            template = scope.get(name)
            if template is not None:
                return template
        return None

    def __contains__(self, name: object) -> bool:
        return any(name in scope for scope in self._scopes)

    @property
    def depth(self) -> int:
        return len(self._scopes)

    def push_scope(self, bindings: dict[str, Template]) -> None:
        self._scopes.append(dict(bindings))

    def pop_scope(self) -> None:
        if len(self._scopes) == 1:
            raise IndexError("cannot pop the document template scope")
        self._scopes.pop()

    def checkpoint(self) -> int:
        return len(self._journal)

    def rollback(self, checkpoint: int) -> None:
        while len(self._journal) > checkpoint:
            scope_index, name, previous = self._journal.pop()
            if scope_index >= len(self._scopes):
                continue
            scope = self._scopes[scope_index]
            if previous is None:
                scope.pop(name, None)
            else:
                scope[name] = previous


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """Snapshot taken before a grammar alternative is attempted."""

    events: int
    diagnostics: int
    error_count: int
    warning_count: int
    section_level: int
    section_ids: tuple[str, ...]
    block_nesting: int
    macros: int
    templates: int
    used_ids: int
    pending_paragraph: bool
    doc_id: str | None


@dataclass
class CompilerState:
    """Context threaded by reference through a compilation unit.

    One instance exists per top-level invocation. Nested ``[include]`` parses
    receive the same instance, so error counts and macro and template
    definitions are global to the unit.

    Attributes:
        config: Immutable invocation settings.
        encoding: Selected output encoding.
        section_level: Current section nesting depth, never negative.
        section_ids: Qualified ids of the open sections, outermost first.
        block_nesting: Number of open admonitions and block quotes; sections
            may only open or close when it is zero.
        error_count: Number of errors counted so far; never decreases on a
            committed path.
        warning_count: Number of warnings reported so far.
        macros: Macro table.
        templates: Template table.
        include_stack: Resolved paths of the files currently being parsed.
        expansion_depth: Nesting depth of macro and template expansion.
        phrase_depth: Nesting depth of bracketed phrase markup.
        id_scope: Number of sections open when the current include set
            `doc_id`; only sections opened after it prefix generated ids.
        doc_id: Id of the document, prefix of generated ids.
        pending_paragraph: A paragraph has started but emitted nothing yet.
        events: Output event stream.
        diagnostics: Diagnostics in report order.
    """

    config: QuickbookConfig = field(default_factory=QuickbookConfig)
    encoding: Encoding = Encoding.BOOSTBOOK
    section_level: int = 0
    section_ids: list[str] = field(default_factory=list)
    block_nesting: int = 0
    error_count: int = 0
    warning_count: int = 0
    macros: MacroTable = field(default_factory=MacroTable)
    templates: TemplateTable = field(default_factory=TemplateTable)
    include_stack: list[Path] = field(default_factory=list)
    expansion_depth: int = 0
    phrase_depth: int = 0
    id_scope: int = 0
    doc_id: str | None = None
    pending_paragraph: bool = False
    events: list[OutputEvent] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    _used_ids: list[str] = field(default_factory=list, repr=False)
    _used_id_set: set[str] = field(default_factory=set, repr=False)

    @classmethod
    def from_config(cls, config: QuickbookConfig) -> CompilerState:
        return cls(config=config, encoding=encoding_from_name(config.encoder))

    @property
    def include_depth(self) -> int:
        return len(self.include_stack)

    def unique_id(self, candidate: str) -> str:
        """Reserve `candidate`, numbering it when already taken.

        The first occurrence keeps the plain id; later ones get ``_1``,
        ``_2``... skipping suffixes that are themselves in use.

        Examples:
            state.unique_id("intro")  # "intro"
            state.unique_id("intro")  # "intro_1"
        """
        identifier = candidate
        count = 0
        while identifier in self._used_id_set:
            count += 1
            identifier = f"{candidate}_{count}"
        self._used_ids.append(identifier)
        self._used_id_set.add(identifier)
        return identifier

    def checkpoint(self) -> Checkpoint:
        return Checkpoint(
            events=len(self.events),
            diagnostics=len(self.diagnostics),
            error_count=self.error_count,
            warning_count=self.warning_count,
            section_level=self.section_level,
            section_ids=tuple(self.section_ids),
            block_nesting=self.block_nesting,
            macros=self.macros.checkpoint(),
            templates=self.templates.checkpoint(),
            used_ids=len(self._used_ids),
            pending_paragraph=self.pending_paragraph,
            doc_id=self.doc_id,
        )

    def rollback(self, checkpoint: Checkpoint) -> None:
        """Undo every change made since `checkpoint` was taken."""
        del self.events[checkpoint.events :]
        del self.diagnostics[checkpoint.diagnostics :]
        self.error_count = checkpoint.error_count
        self.warning_count = checkpoint.warning_count
        self.section_level = checkpoint.section_level
        self.section_ids[:] = checkpoint.section_ids
        self.block_nesting = checkpoint.block_nesting
        self.macros.rollback(checkpoint.macros)
        self.templates.rollback(checkpoint.templates)
        while len(self._used_ids) > checkpoint.used_ids:
            self._used_id_set.discard(self._used_ids.pop())
        self.pending_paragraph = checkpoint.pending_paragraph
        self.doc_id = checkpoint.doc_id
