"""Semantic actions invoked by the grammar on successful matches.

Actions are the only code that writes to `CompilerState`: they append output
events, count errors and warnings, maintain the macro and template tables,
derive element ids and run nested parses for macro expansion, template
expansion and ``[include]``.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from .cursor import Source, SourcePosition
from .doc_info import document_attributes, resolve_doc_info
from .exceptions import LoadError, MetadataError
from .filesystem import resolve_include
from .ids import generate_id, qualify
from .models import (
    Attributes,
    Diagnostic,
    DocInfo,
    EndElement,
    ErrorKind,
    OutputEvent,
    Raw,
    Severity,
    StartElement,
    Text,
)
from .post_process import find_markup_error
from .state import (
    MAX_EXPANSION_DEPTH,
    MAX_INCLUDE_DEPTH,
    MAX_PHRASE_DEPTH,
    Checkpoint,
    CompilerState,
    Template,
)

if TYPE_CHECKING:
    from .grammar import QuickbookGrammar

ARGUMENT_SEPARATOR = ".."


class FileParser(Protocol):
    def __call__(
        self,
        path: Path,
        state: CompilerState,
        ignore_docinfo: bool = False,
        origin: SourcePosition | None = None,
    ) -> bool: ...


def split_template_arguments(raw: str, count: int) -> list[str] | None:
    """Split the raw argument text of a template call.

    Arguments are separated by ``..`` outside nested brackets. When the
    template expects more arguments than were separated and exactly one was
    given, that argument is split on whitespace instead.

    Args:
        raw: Text between the template name and the closing bracket.
        count: Number of parameters the template declares.

    Returns:
        list[str] | None: One stripped string per parameter, or None when the
            number of arguments does not match.

    Examples:
        split_template_arguments("a..b c", 2)  # ["a", "b c"]
        split_template_arguments("a b", 2)  # ["a", "b"]
    """
    if count == 0:
        return [] if not raw.strip() else None

    arguments: list[str] = []
    current: list[str] = []
    depth = 0
    index = 0
    while index < len(raw):
        char = raw[index]
        if char == "\\" and index + 1 < len(raw):
            current.append(raw[index : index + 2])
            index += 2
            continue
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
        elif depth == 0 and raw.startswith(ARGUMENT_SEPARATOR, index):
            arguments.append("".join(current))
            current = []
            index += len(ARGUMENT_SEPARATOR)
            continue
        current.append(char)
        index += 1
    arguments.append("".join(current))

    arguments = [argument.strip() for argument in arguments]
    if len(arguments) == 1 and count > 1:
        words = arguments[0].split(None, count - 1)
        if len(words) == count:
            arguments = words
    if len(arguments) != count:
        return None
    return arguments


class Actions:
    """Semantic action layer bound to one `CompilerState`.

    Args:
        state: Compiler state shared by the whole compilation unit.
        parse_file: Parser used for ``[include]``; receives the same state.
    """

    def __init__(self, state: CompilerState, parse_file: FileParser):
        self.state = state
        self._parse_file = parse_file

    # Transactions

    def checkpoint(self) -> Checkpoint:
        return self.state.checkpoint()

    def rollback(self, checkpoint: Checkpoint) -> None:
        self.state.rollback(checkpoint)

    # Output primitives

    def _emit(self, event: OutputEvent) -> None:
        state = self.state
        if state.pending_paragraph:
            state.pending_paragraph = False
            state.events.append(StartElement("para"))
        state.events.append(event)

    def start_element(self, name: str, attributes: Attributes = ()) -> None:
        self._emit(StartElement(name, attributes))

    def end_element(self, name: str) -> None:
        self._emit(EndElement(name))

    def element(self, name: str, attributes: Attributes = ()) -> None:
        """Emit an element without content."""
        self.start_element(name, attributes)
        self.end_element(name)

    def text(self, content: str) -> None:
        if content:
            self._emit(Text(content))

    def raw(self, content: str, position: SourcePosition | None = None) -> None:
        """Pass a ``'''`` escape through unescaped.

        Content that is not a balanced markup fragment is counted as an error
        and emitted as plain text instead.
        """
        problem = find_markup_error(content)
        if problem is not None:
            self.error(position, f"Invalid markup in escape: {problem}")
            self.text(content)
            return
        self._emit(Raw(content))

    def replay(self, events: tuple[OutputEvent, ...]) -> None:
        for event in events:
            self._emit(event)

    # Diagnostics

    def error(
        self,
        position: SourcePosition | None,
        message: str,
        kind: ErrorKind = ErrorKind.STRUCTURAL,
    ) -> None:
        """Count an error and record its diagnostic."""
        self.state.error_count += 1
        self._diagnose(Severity.ERROR, kind, message, position)

    def warning(
        self,
        position: SourcePosition | None,
        message: str,
        kind: ErrorKind = ErrorKind.STRUCTURAL,
    ) -> None:
        """Record a warning; warnings never change the verdict."""
        self.state.warning_count += 1
        self._diagnose(Severity.WARNING, kind, message, position)

    def _diagnose(
        self, severity: Severity, kind: ErrorKind, message: str, position: SourcePosition | None
    ) -> None:
        name = position.file if position else ""
        self.state.diagnostics.append(Diagnostic(severity, kind, message, name, position))

    def load_failed(self, error: LoadError, origin: SourcePosition | None) -> None:
        """Count a load error at the ``[include]`` naming the file, or at 1:1 of the file itself."""
        position = origin or SourcePosition(error.filepath, 0, 1, 1)
        self.error(position, str(error), ErrorKind.LOAD)

    def doc_info_error(self, position: SourcePosition) -> None:
        self.error(position, f"Doc Info error near column {position.column}.", ErrorKind.METADATA)

    def syntax_error(self, position: SourcePosition) -> None:
        self.error(position, f"Syntax error near column {position.column}.", ErrorKind.SYNTAX)

    # Document

    def process_doc_info(
        self, grammar: QuickbookGrammar, info: DocInfo, position: SourcePosition
    ) -> bool:
        """Validate the metadata block and emit the document header.

        Args:
            grammar: Grammar used to expand phrase-valued fields.
            info: Metadata as parsed.
            position: Start of the metadata block, used for diagnostics.

        Returns:
            bool: False when a mandatory field is missing; the error has been
                counted and the body must not be parsed.
        """
        if info.ignore:
            return True

        state = self.state
        try:
            info = resolve_doc_info(info, state.encoding, state.config.current_time)
        except MetadataError as error:
            self.error(position, str(error), ErrorKind.METADATA)
            return False

        state.doc_id = info.id
        self.start_element("document", document_attributes(info))
        self.start_element("title")
        self._expand_field(grammar, info.title, position)
        self.end_element("title")
        if info.authors or info.copyrights or info.license or info.purpose or info.category:
            self._emit_doc_info(grammar, info, position)
        return True

    def _emit_doc_info(self, grammar: QuickbookGrammar, info: DocInfo, position: SourcePosition) -> None:
        self.start_element("docinfo")
        if info.authors:
            self.start_element("authorgroup")
            for author in info.authors:
                self.start_element("author")
                self._leaf("firstname", author.firstname)
                self._leaf("surname", author.surname)
                self.end_element("author")
            self.end_element("authorgroup")
        for notice in info.copyrights:
            self.start_element("copyright")
            for year in notice.years:
                self._leaf("year", year)
            self._leaf("holder", notice.holder)
            self.end_element("copyright")
        if info.license:
            self.start_element("legalnotice")
            self.start_element("para")
            self._expand_field(grammar, info.license, position)
            self.end_element("para")
            self.end_element("legalnotice")
        self.end_element("docinfo")
        if info.purpose:
            self.start_element("purpose")
            self._expand_field(grammar, info.purpose, position)
            self.end_element("purpose")
        if info.category:
            self._leaf("category", info.category)

    def _leaf(self, name: str, content: str) -> None:
        self.start_element(name)
        self.text(content)
        self.end_element(name)

    def _expand_field(self, grammar: QuickbookGrammar, markup: str, position: SourcePosition) -> None:
        checkpoint = self.checkpoint()
        if not grammar.parse_expansion(Source(markup, position.file, position)):
            self.rollback(checkpoint)
            self.text(markup)

    def process_doc_info_post(self, info: DocInfo | None) -> None:
        """Close the sections left open and the document element."""
        if info is None or info.ignore:
            return
        for _ in self.state.section_ids:
            self.end_element("section")
        self.end_element("document")

    def end_of_unit(self, position: SourcePosition) -> None:
        """Warn about sections still open at `position`, the end of the main file."""
        level = self.state.section_level
        if level:
            self.warning(position, f"{level} missing [endsect]")

    # Paragraphs

    def begin_paragraph(self) -> None:
        self.state.pending_paragraph = True

    def end_paragraph(self) -> None:
        state = self.state
        if state.pending_paragraph:
            state.pending_paragraph = False
        else:
            self.end_element("para")

    # Sections and headings

    def _id_prefix(self) -> str | None:
        state = self.state
        if len(state.section_ids) > state.id_scope:
            return state.section_ids[-1]
        return state.doc_id

    def _element_id(self, explicit_id: str | None, raw_title: str) -> str:
        local = explicit_id or generate_id(raw_title)
        return self.state.unique_id(qualify(self._id_prefix() or "", local))

    def begin_section(self, explicit_id: str | None, raw_title: str) -> None:
        """Open a section and its title."""
        state = self.state
        identifier = self._element_id(explicit_id, raw_title)
        state.section_level += 1
        state.section_ids.append(identifier)
        self.start_element("section", (("id", identifier),))
        self.start_element("title")

    def end_section_title(self) -> None:
        self.end_element("title")

    @property
    def in_nested_block(self) -> bool:
        return self.state.block_nesting > 0

    def begin_nested_block(self, name: str) -> None:
        """Open an admonition or block quote."""
        self.start_element(name)
        self.state.block_nesting += 1

    def end_nested_block(self, name: str) -> None:
        self.state.block_nesting -= 1
        self.end_element(name)

    def end_section(self, position: SourcePosition) -> None:
        state = self.state
        if state.section_level == 0:
            self.warning(position, "Mismatched [endsect]")
            return
        state.section_level -= 1
        state.section_ids.pop()
        self.end_element("section")

    def begin_heading(self, level: int | None, raw_title: str) -> None:
        if level is None:
            level = min(self.state.section_level + 1, 6)
        identifier = self._element_id(None, raw_title)
        self.start_element("heading", (("level", str(level)), ("id", identifier)))

    def end_heading(self) -> None:
        self.end_element("heading")

    # Macros and templates

    def has_macro(self, name: str) -> bool:
        return name in self.state.macros

    def lookup_template(self, name: str) -> Template | None:
        return self.state.templates.lookup(name)

    def define_macro(self, position: SourcePosition, name: str, body: str) -> None:
        if self.state.macros.define(name, body) is not None:
            self.warning(position, f"Macro '{name}' redefined")

    def define_template(
        self, position: SourcePosition, name: str, params: tuple[str, ...], body: str, block: bool
    ) -> None:
        templates = self.state.templates
        previous = templates.define(Template(name, params, body, block))
        if previous is not None and templates.depth == 1:
            self.warning(position, f"Template '{name}' redefined")

    def _enter_expansion(self, position: SourcePosition, what: str) -> bool:
        if self.state.expansion_depth >= MAX_EXPANSION_DEPTH:
            self.error(position, f"Infinite loop detected expanding {what}")
            return False
        return True

    def enter_phrase(self, position: SourcePosition) -> bool:
        """Enter one level of bracketed phrase markup.

        Returns:
            bool: False, with an error counted, when the nesting limit is
                reached; the caller skips the bracket's content and does not
                call `leave_phrase`.
        """
        state = self.state
        if state.phrase_depth >= MAX_PHRASE_DEPTH:
            self.error(position, "Phrase markup nested too deeply")
            return False
        state.phrase_depth += 1
        return True

    def leave_phrase(self) -> None:
        self.state.phrase_depth -= 1

    def expand_macro(self, grammar: QuickbookGrammar, position: SourcePosition, name: str) -> None:
        """Expand the macro `name` in place as phrase markup."""
        body = self.state.macros.lookup(name)
        if body is None:
            self.text(name)
            return
        if not self._enter_expansion(position, f"macro '{name}'"):
            return
        self._expand(grammar, Source(body, f"{position.file} (macro {name})"), False, position, f"macro '{name}'")

    def _expand(
        self,
        grammar: QuickbookGrammar,
        source: Source,
        block: bool,
        position: SourcePosition,
        what: str,
    ) -> None:
        state = self.state
        checkpoint = self.checkpoint()
        state.expansion_depth += 1
        try:
            succeeded = grammar.parse_expansion(source, block)
        finally:
            state.expansion_depth -= 1
        if not succeeded:
            self.rollback(checkpoint)
            self.error(position, f"Expanding {what} failed")

    def capture_argument(
        self, grammar: QuickbookGrammar, source: Source
    ) -> tuple[OutputEvent, ...] | None:
        """Expand a template argument and return its events without emitting them."""
        state = self.state
        checkpoint = self.checkpoint()
        pending = state.pending_paragraph
        state.pending_paragraph = False
        mark = len(state.events)
        if not grammar.parse_expansion(source):
            self.rollback(checkpoint)
            return None
        events = tuple(state.events[mark:])
        del state.events[mark:]
        state.pending_paragraph = pending
        return events

    def invoke_template(
        self,
        grammar: QuickbookGrammar,
        position: SourcePosition,
        template: Template,
        raw_arguments: str,
        block_context: bool = False,
    ) -> None:
        """Expand `template` with `raw_arguments`.

        Arguments are expanded in the caller's scope, then bound to the
        parameter names as zero-parameter templates while the body expands.

        Args:
            grammar: Grammar used for the nested parses.
            position: Position of the call, used for diagnostics.
            template: Template being called.
            raw_arguments: Unparsed argument text.
            block_context: The call stands on its own line, so a block
                template expands to blocks.
        """
        if template.events is not None:
            self.replay(template.events)
            return

        arguments = split_template_arguments(raw_arguments, len(template.params))
        if arguments is None:
            self.error(position, f"Invalid number of arguments passed to template '{template.name}'")
            return
        if not self._enter_expansion(position, f"template '{template.name}'"):
            return

        bindings: dict[str, Template] = {}
        for index, (param, argument) in enumerate(zip(template.params, arguments), start=1):
            source = Source(argument, f"{position.file} (argument {index} of {template.name})")
            events = self.capture_argument(grammar, source)
            if events is None:
                self.error(position, f"Expanding argument {index} of template '{template.name}' failed")
                return
            bindings[param] = Template(param, (), argument, events=events)

        block = template.block and block_context
        body = template.body if block else template.body.strip()
        templates = self.state.templates
        templates.push_scope(bindings)
        try:
            source = Source(body, f"{position.file} (template {template.name})")
            self._expand(grammar, source, block, position, f"template '{template.name}'")
        finally:
            templates.pop_scope()

    def undefined_template(self, position: SourcePosition, name: str, raw_text: str) -> None:
        self.error(position, f"Undefined template or macro '{name}'")
        self.text(raw_text)

    # Includes

    def include(self, position: SourcePosition, name: str, doc_id: str | None) -> None:
        """Parse the file named by an ``[include]`` with the shared state."""
        state = self.state
        including = state.include_stack[-1] if state.include_stack else None
        path = resolve_include(name, including, state.config.include_paths)
        resolved = path.resolve()
        if resolved in state.include_stack:
            self.error(position, f"Recursive include of {name}")
            return
        if state.include_depth >= MAX_INCLUDE_DEPTH:
            self.error(position, f"Include depth limit exceeded including {name}")
            return

        saved = state.doc_id, state.id_scope
        if doc_id:
            state.doc_id = doc_id
            state.id_scope = len(state.section_ids)
        try:
            self._parse_file(path, state, ignore_docinfo=True, origin=position)
        finally:
            state.doc_id, state.id_scope = saved

    def xinclude(self, name: str) -> None:
        self.element("xinclude", (("href", Path(name).as_posix()),))

    # Code

    def code_block(self, code: str) -> None:
        self.start_element("programlisting")
        self.text(code)
        self.end_element("programlisting")

    def inline_code(self, code: str) -> None:
        self.start_element("code")
        self.text(code)
        self.end_element("code")

    # Tables

    def begin_table(self, explicit_id: str | None, raw_title: str, has_title: bool) -> str:
        """Open a table and return the name of the element opened."""
        name = "table" if has_title else "informaltable"
        attributes: Attributes = ()
        if explicit_id or has_title:
            attributes = (("id", self._element_id(explicit_id, raw_title)),)
        self.start_element(name, attributes)
        return name

    def check_row(self, position: SourcePosition, cells: int, columns: int) -> None:
        if cells != columns:
            self.error(position, f"Table row has {cells} cells, expected {columns}")

    def check_varlist_entry(self, position: SourcePosition, cells: int) -> None:
        if cells != 2:
            self.error(position, f"Variable list entry has {cells} cells, expected 2")

    # Links and images

    def image(self, fileref: str) -> None:
        alt = re.sub(r"[_\-]+", " ", Path(fileref).stem).strip()
        self.element("image", (("fileref", fileref), ("alt", alt)))

