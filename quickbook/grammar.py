"""Backtracking grammar for quickbook markup.

Two entry rules exist: `DocInfoGrammar` recognizes the leading document-info
block and `QuickbookGrammar` recognizes the document body. Both are ordered
choice parsers over a `Cursor`. Every alternative of the body grammar runs
through `QuickbookGrammar._attempt`, which rewinds the cursor and rolls the
compiler state back when the alternative fails, so abandoned alternatives
leave no output, definitions or diagnostics behind.
"""

from __future__ import annotations

import re
import textwrap
from collections.abc import Callable
from enum import Enum, auto

from .actions import Actions
from .cursor import Cursor, Source
from .doc_info import DOC_TYPES
from .models import Author, Copyright, DocInfo

IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
HSPACE = re.compile(r"[ \t]*")
WHITESPACE = re.compile(r"\s*")
NEWLINE = re.compile(r"\n")
BLANK_LINE = re.compile(r"[ \t]*\n|[ \t]+\Z")
LINE_END = re.compile(r"[ \t]*(?:\n|\Z)")
PLAIN_RUN = re.compile(r"[^\[\]\\`'\nA-Za-z_]+")

# Document info
DOC_INFO_START = re.compile(r"\[(" + "|".join(DOC_TYPES) + r")(?=[\s\]])")
DOC_INFO_ATTRIBUTE = re.compile(r"\[([a-z][a-z-]*)(?=[\s\]])")
QUICKBOOK_VERSION = re.compile(r"\d+\.\d+")
COPYRIGHT = re.compile(r"((?:\d{4}(?:[\s,\-]+|(?=\D)|\Z))+)(.*)", re.DOTALL)
AUTHOR = re.compile(r"\s*\[\s*([^,\[\]]+?)\s*,\s*([^\[\]]*?)\s*\]\s*(?:,|\Z)")

# Blocks
SECTION = re.compile(r"\[section(?::([^\s\]]+))?(?=[\s\]])")
ENDSECT = re.compile(r"\[endsect[ \t]*\]")
HEADING = re.compile(r"\[(?:h([1-6])|heading)(?=[\s\]])")
MACRO_DEFINITION = re.compile(r"\[def[ \t\n]+([A-Za-z_][A-Za-z0-9_]*)(?=[\s\]])")
TEMPLATE_DEFINITION = re.compile(r"\[template[ \t\n]+([A-Za-z_][A-Za-z0-9_]*)(?=[\s\[\]])")
TEMPLATE_PARAMS = re.compile(r"[ \t]*\[([^\[\]]*)\]")
INCLUDE = re.compile(r"\[include(?::([^\s\]]+))?[ \t\n]+")
XINCLUDE = re.compile(r"\[xinclude[ \t\n]+")
ADMONITION = re.compile(r"\[(note|tip|important|caution|warning|blurb)(?=[\s\]])")
BLOCKQUOTE = re.compile(r"\[:")
PREFORMATTED = re.compile(r"\[pre(?=[\s\]])")
TABLE = re.compile(r"\[table(?::([^\s\]]+))?(?=[\s\]])")
VARIABLELIST = re.compile(r"\[variablelist(?=[\s\]])")
COMMENT = re.compile(r"\[/")
LIST_ITEM = re.compile(r"([ \t]*)([*#])[ \t]+")
FENCE_OPEN = re.compile(r"```[ \t]*[\w+#.-]*[ \t]*\n")
FENCE_CLOSE = re.compile(r"^[ \t]*```[ \t]*$", re.MULTILINE)
BLOCK_START = re.compile(
    r"\[(?:section|endsect|h[1-6]|heading|def|template|include|xinclude|note|tip"
    r"|important|caution|warning|blurb|pre|table|variablelist)(?=[\s:\]])|\[:"
)
TEMPLATE_CALL = re.compile(r"\[([A-Za-z_][A-Za-z0-9_]*)(?=[\s\]])")

# Phrases
STYLES = {
    "*": "bold",
    "'": "italic",
    "_": "underline",
    "^": "teletype",
    "-": "strikethrough",
    "~": "replaceable",
}
STYLE = re.compile(r"\[([*'_^\-~])")
URL = re.compile(r"\[@([^\s\]]+)")
LINK = re.compile(r"\[link[ \t\n]+([^\s\]]+)")
ANCHOR = re.compile(r"\[#([^\s\]]+)[ \t]*\]")
IMAGE = re.compile(r"\[\$[ \t]*([^\]]+?)[ \t]*\]")
FOOTNOTE = re.compile(r"\[footnote(?=[\s\]])")
LINE_BREAK = re.compile(r"\[br[ \t]*\]")
CONDITIONAL = re.compile(r"\[\?[ \t]*([A-Za-z_][A-Za-z0-9_]*)")
DOUBLE_CODE = re.compile(r"``(.+?)``", re.DOTALL)
SINGLE_CODE = re.compile(r"`([^`\n]+)`")
RAW_ESCAPE = re.compile(r"'''(.*?)'''", re.DOTALL)
COMMAND_LINE_MACRO = re.compile(r"[ \t]*([A-Za-z_][A-Za-z0-9_]*)[ \t]*(?:=(.*))?\Z", re.DOTALL)


def scan_balanced(cursor: Cursor) -> str | None:
    """Consume text up to the ``]`` closing the current bracket.

    Nested brackets, backslash escapes and ``'''`` escapes are skipped over.
    The closing bracket itself is not consumed.

    Returns:
        str | None: The consumed text, or None (with the cursor unchanged)
            when the input ends first.
    """
    text = cursor.text
    start = index = cursor.offset
    depth = 0
    while index < len(text):
        char = text[index]
        if char == "\\":
            index += 2
            continue
        if text.startswith("'''", index):
            end = text.find("'''", index + 3)
            if end >= 0:
                index = end + 3
                continue
        if char == "[":
            depth += 1
        elif char == "]":
            if depth == 0:
                cursor.offset = index
                return text[start:index]
            depth -= 1
        index += 1
    return None


def skip_comments(cursor: Cursor) -> None:
    """Skip whitespace and ``[/ comments ]``."""
    while True:
        cursor.match(WHITESPACE)
        mark = cursor.mark()
        if cursor.match(COMMENT) and scan_balanced(cursor) is not None:
            cursor.advance()
            continue
        cursor.rewind(mark)
        return


class DocInfoGrammar:
    """Recognizer for the leading document-info block.

    Attributes:
        failure_offset: Farthest offset reached by a failed parse, where the
            metadata error is reported.

    Examples:
        grammar = DocInfoGrammar()
        info = grammar.parse(Cursor(Source("[article Title\\n[id t]\\n]", "a.qbk")))
    """

    def __init__(self):
        self.failure_offset = 0

    def parse(self, cursor: Cursor) -> DocInfo | None:
        """Parse a document-info block at `cursor`.

        Returns:
            DocInfo | None: The parsed metadata with the cursor past the block,
                or None with the cursor unchanged.
        """
        start = cursor.mark()
        self.failure_offset = start
        info = self._doc_info(cursor)
        if info is None:
            cursor.rewind(start)
        return info

    def _fail(self, cursor: Cursor) -> None:
        self.failure_offset = max(self.failure_offset, cursor.offset)
        return None

    def _doc_info(self, cursor: Cursor) -> DocInfo | None:
        skip_comments(cursor)
        found = cursor.match(DOC_INFO_START)
        if found is None:
            return self._fail(cursor)
        cursor.match(HSPACE)
        title = self._title(cursor)

        fields: dict[str, object] = {"doc_type": found.group(1), "title": title}
        authors: list[Author] = []
        copyrights: list[Copyright] = []
        while True:
            skip_comments(cursor)
            if cursor.peek() == "]":
                cursor.advance()
                break
            attribute = cursor.match(DOC_INFO_ATTRIBUTE)
            if attribute is None:
                return self._fail(cursor)
            name = attribute.group(1)
            cursor.match(WHITESPACE)
            value = scan_balanced(cursor)
            if value is None:
                return self._fail(cursor)

            if name == "authors":
                parsed = self._authors(value)
                if not parsed:
                    return self._fail(cursor)
                authors.extend(parsed)
            elif name == "copyright":
                notice = self._copyright(value)
                if notice is None:
                    return self._fail(cursor)
                copyrights.append(notice)
            else:
                field_name = _ATTRIBUTE_FIELDS.get(name)
                if field_name is None or field_name in fields:
                    return self._fail(cursor)
                value = value.strip()
                if field_name == "quickbook_version" and not QUICKBOOK_VERSION.fullmatch(value):
                    return self._fail(cursor)
                fields[field_name] = value
            cursor.advance()

        cursor.match(LINE_END)
        return DocInfo(authors=tuple(authors), copyrights=tuple(copyrights), **fields)

    def _title(self, cursor: Cursor) -> str:
        text = cursor.text
        start = index = cursor.offset
        depth = 0
        while index < len(text):
            char = text[index]
            if char == "\n":
                break
            if char == "\\":
                index += 2
                continue
            if char == "[":
                attribute = DOC_INFO_ATTRIBUTE.match(text, index)
                if depth == 0 and attribute and attribute.group(1) in _ATTRIBUTE_NAMES:
                    break
                depth += 1
            elif char == "]":
                if depth == 0:
                    break
                depth -= 1
            index += 1
        index = min(index, len(text))
        cursor.offset = index
        return text[start:index].strip()

    def _authors(self, value: str) -> list[Author]:
        authors = []
        offset = 0
        value = value.strip()
        while offset < len(value):
            found = AUTHOR.match(value, offset)
            if found is None:
                return []
            authors.append(Author(surname=found.group(1), firstname=found.group(2)))
            offset = found.end()
        return authors

    def _copyright(self, value: str) -> Copyright | None:
        found = COPYRIGHT.fullmatch(value.strip())
        if found is None:
            return None
        holder = found.group(2).strip()
        if not holder:
            return None
        return Copyright(years=tuple(re.findall(r"\d{4}", found.group(1))), holder=holder)


_ATTRIBUTE_FIELDS = {
    "quickbook": "quickbook_version",
    "id": "id",
    "dirname": "dirname",
    "version": "version",
    "purpose": "purpose",
    "category": "category",
    "license": "license",
    "last-revision": "last_revision",
    "source-mode": "source_mode",
    "lang": "lang",
}
_ATTRIBUTE_NAMES = frozenset(_ATTRIBUTE_FIELDS) | {"authors", "copyright"}


class PhraseMode(Enum):
    """Where a phrase stops.

    Attributes:
        PARAGRAPH: At a blank line or a line starting a block construct.
        LIST_ITEM: Like PARAGRAPH, and also at the next list item.
        BRACKETED: At the unmatched ``]``; the end of input is a failure.
        EXPANSION: At the unmatched ``]`` or the end of input.
    """

    PARAGRAPH = auto()
    LIST_ITEM = auto()
    BRACKETED = auto()
    EXPANSION = auto()


Rule = Callable[..., bool]


class QuickbookGrammar:
    """Body grammar driving an `Actions` instance.

    The grammar only reads the compiler state through `actions` (to know
    whether a word names a macro or a template); every change goes through an
    action.

    Args:
        actions: Semantic actions receiving the matches.
    """

    def __init__(self, actions: Actions):
        self.actions = actions
        # (text, offset) pairs where a bracketed phrase ran off the end of input
        self._unclosed: set[tuple[str, int]] = set()

    def _attempt(self, rule: Rule, cursor: Cursor, *args) -> bool:
        mark = cursor.mark()
        checkpoint = self.actions.checkpoint()
        if rule(cursor, *args):
            return True
        cursor.rewind(mark)
        self.actions.rollback(checkpoint)
        return False

    # Entry points

    def parse_block(self, cursor: Cursor, nested: bool = False) -> bool:
        """Parse zero or more blocks.

        Top-level parsing stops at the first input no block matches; nested
        parsing (inside admonitions and block quotes) also stops before the
        ``]`` closing the enclosing construct. Full consumption is checked by
        the caller.

        Returns:
            bool: Always True; the rule matches the empty input.
        """
        while not cursor.at_end:
            if nested:
                cursor.match(HSPACE)
                if cursor.peek() == "]":
                    break
            if cursor.match(BLANK_LINE):
                continue
            if self._attempt(self._block_element, cursor, nested):
                continue
            if self._attempt(self._fenced_code, cursor):
                continue
            if self._attempt(self._list, cursor):
                continue
            if not nested and self._attempt(self._code_block, cursor):
                continue
            if self._attempt(self._paragraph, cursor):
                continue
            break
        return True

    def parse_phrase(self, cursor: Cursor, mode: PhraseMode) -> bool:
        """Parse inline markup until the stop condition of `mode`.

        Returns:
            bool: False only in BRACKETED mode when the input ends before the
                closing bracket.
        """
        actions = self.actions
        buffer: list[str] = []

        def flush() -> None:
            if buffer:
                actions.text("".join(buffer))
                buffer.clear()

        depth = 0
        while True:
            char = cursor.peek()
            if not char:
                flush()
                return mode is not PhraseMode.BRACKETED
            if char == "]":
                if depth == 0:
                    flush()
                    return True
                depth -= 1
                buffer.append(cursor.advance())
            elif char == "\n":
                if mode in (PhraseMode.PARAGRAPH, PhraseMode.LIST_ITEM) and not self._line_continues(
                    cursor, mode
                ):
                    flush()
                    return True
                buffer.append(cursor.advance())
            elif char == "[":
                flush()
                if not self._phrase_element(cursor):
                    depth += 1
                    buffer.append(cursor.advance())
            elif char == "\\":
                cursor.advance()
                buffer.append(cursor.advance() or "\\")
            elif char == "`" or cursor.startswith("'''"):
                flush()
                if not (self._attempt(self._inline_code, cursor) or self._attempt(self._raw_escape, cursor)):
                    buffer.append(cursor.advance())
            elif char.isalpha() or char == "_":
                word = cursor.lookahead(IDENTIFIER)
                if word is None:
                    buffer.append(cursor.advance())
                    continue
                name = word.group(0)
                previous = cursor.text[cursor.offset - 1 : cursor.offset]
                follows_word = previous.isalnum() or previous == "_"
                if not follows_word and actions.has_macro(name):
                    flush()
                    position = cursor.position()
                    cursor.advance(len(name))
                    actions.expand_macro(self, position, name)
                else:
                    buffer.append(cursor.advance(len(name)))
            else:
                run = cursor.match(PLAIN_RUN)
                buffer.append(run.group(0) if run else cursor.advance())

    def parse_expansion(self, source: Source, block: bool = False) -> bool:
        """Parse a whole macro body, template body or metadata phrase.

        Returns:
            bool: True when the text was consumed completely.
        """
        cursor = Cursor(source)
        if block:
            self.parse_block(cursor)
        else:
            self.parse_phrase(cursor, PhraseMode.EXPANSION)
        return cursor.at_end

    def parse_command_line_macro(self, cursor: Cursor) -> bool:
        """Parse a ``NAME=VALUE`` definition given on the command line.

        A missing ``=VALUE`` defines the macro with an empty body.
        """
        position = cursor.position()
        found = cursor.match(COMMAND_LINE_MACRO)
        if found is None:
            return False
        self.actions.define_macro(position, found.group(1), found.group(2) or "")
        return True

    # Block rules

    def _line_continues(self, cursor: Cursor, mode: PhraseMode) -> bool:
        text = cursor.text
        start = cursor.offset + 1
        end = text.find("\n", start)
        line = text[start : end if end >= 0 else len(text)]
        stripped = line.lstrip(" \t")
        if not stripped:
            return False
        if line[0] in "*#" and LIST_ITEM.match(line):
            return False
        if mode is PhraseMode.LIST_ITEM and LIST_ITEM.match(line):
            return False
        if stripped.startswith("```"):
            return False
        return not self._starts_block(stripped)

    def _starts_block(self, text: str) -> bool:
        if BLOCK_START.match(text) or text.startswith("[/"):
            return True
        call = TEMPLATE_CALL.match(text)
        if call is None:
            return False
        template = self.actions.lookup_template(call.group(1))
        return template is not None and template.block

    def _block_element(self, cursor: Cursor, nested: bool) -> bool:
        if cursor.peek() != "[":
            return False
        for rule in (
            self._block_comment,
            self._section,
            self._endsect,
            self._heading,
            self._macro_definition,
            self._template_definition,
            self._include,
            self._xinclude,
            self._admonition,
            self._blockquote,
            self._preformatted,
            self._table,
            self._variablelist,
            self._block_template_call,
        ):
            if self._attempt(rule, cursor):
                break
        else:
            return False
        cursor.match(HSPACE)
        if cursor.match(LINE_END):
            return True
        return nested and cursor.peek() == "]"

    def _close(self, cursor: Cursor) -> bool:
        if cursor.peek() != "]":
            return False
        cursor.advance()
        return True

    def _block_comment(self, cursor: Cursor) -> bool:
        if not cursor.match(COMMENT) or scan_balanced(cursor) is None:
            return False
        return self._close(cursor)

    def _section(self, cursor: Cursor) -> bool:
        if self.actions.in_nested_block:
            return False
        found = cursor.match(SECTION)
        if found is None:
            return False
        cursor.match(HSPACE)
        raw_title = scan_balanced(cursor.copy())
        if raw_title is None:
            return False
        self.actions.begin_section(found.group(1), raw_title)
        if not self._nested_phrase(cursor):
            return False
        self.actions.end_section_title()
        return self._close(cursor)

    def _endsect(self, cursor: Cursor) -> bool:
        position = cursor.position()
        if self.actions.in_nested_block or not cursor.match(ENDSECT):
            return False
        self.actions.end_section(position)
        return True

    def _heading(self, cursor: Cursor) -> bool:
        found = cursor.match(HEADING)
        if found is None:
            return False
        cursor.match(HSPACE)
        raw_title = scan_balanced(cursor.copy())
        if raw_title is None:
            return False
        level = int(found.group(1)) if found.group(1) else None
        self.actions.begin_heading(level, raw_title)
        if not self._nested_phrase(cursor):
            return False
        self.actions.end_heading()
        return self._close(cursor)

    def _macro_definition(self, cursor: Cursor) -> bool:
        position = cursor.position()
        found = cursor.match(MACRO_DEFINITION)
        if found is None:
            return False
        body = scan_balanced(cursor)
        if body is None:
            return False
        self.actions.define_macro(position, found.group(1), body.strip())
        return self._close(cursor)

    def _template_definition(self, cursor: Cursor) -> bool:
        position = cursor.position()
        found = cursor.match(TEMPLATE_DEFINITION)
        if found is None:
            return False
        params: tuple[str, ...] = ()
        mark = cursor.mark()
        declared = cursor.match(TEMPLATE_PARAMS)
        if declared is not None:
            params = tuple(declared.group(1).split())
            if not all(IDENTIFIER.fullmatch(param) for param in params):
                # The bracket opens the body of a template without parameters.
                params = ()
                cursor.rewind(mark)
        body = scan_balanced(cursor)
        if body is None:
            return False
        body = body.lstrip(" \t")
        block = body.startswith("\n")
        if block:
            body = body[1:]
        self.actions.define_template(position, found.group(1), params, body, block)
        return self._close(cursor)

    def _include(self, cursor: Cursor) -> bool:
        position = cursor.position()
        found = cursor.match(INCLUDE)
        if found is None:
            return False
        name = scan_balanced(cursor)
        if not name or not name.strip():
            return False
        if not self._close(cursor):
            return False
        self.actions.include(position, name.strip(), found.group(1))
        return True

    def _xinclude(self, cursor: Cursor) -> bool:
        if not cursor.match(XINCLUDE):
            return False
        name = scan_balanced(cursor)
        if not name or not name.strip():
            return False
        self.actions.xinclude(name.strip())
        return self._close(cursor)

    def _nested_blocks(self, cursor: Cursor, name: str) -> bool:
        self.actions.begin_nested_block(name)
        self.parse_block(cursor, nested=True)
        if not self._close(cursor):
            return False
        self.actions.end_nested_block(name)
        return True

    def _admonition(self, cursor: Cursor) -> bool:
        found = cursor.match(ADMONITION)
        if found is None:
            return False
        return self._nested_blocks(cursor, found.group(1))

    def _blockquote(self, cursor: Cursor) -> bool:
        if not cursor.match(BLOCKQUOTE):
            return False
        return self._nested_blocks(cursor, "blockquote")

    def _preformatted(self, cursor: Cursor) -> bool:
        if not cursor.match(PREFORMATTED):
            return False
        cursor.match(HSPACE)
        cursor.match(NEWLINE)
        self.actions.start_element("programlisting")
        if not self._nested_phrase(cursor):
            return False
        self.actions.end_element("programlisting")
        return self._close(cursor)

    def _table_title(self, cursor: Cursor) -> str:
        text = cursor.text
        start = index = cursor.offset
        depth = 0
        while index < len(text):
            char = text[index]
            if char == "\n":
                break
            if char == "\\":
                index += 2
                continue
            if char == "[":
                if depth == 0 and text[index + 1 : index + 2] == "[":
                    break
                depth += 1
            elif char == "]":
                if depth == 0:
                    break
                depth -= 1
            index += 1
        cursor.offset = min(index, len(text))
        return text[start : cursor.offset]

    def _scan_rows(self, cursor: Cursor) -> list[int] | None:
        counts = []
        while True:
            skip_comments(cursor)
            if cursor.peek() == "]":
                return counts
            if cursor.peek() != "[":
                return None
            cursor.advance()
            cells = 0
            while True:
                skip_comments(cursor)
                if cursor.peek() == "]":
                    cursor.advance()
                    break
                if cursor.peek() != "[":
                    return None
                cursor.advance()
                if scan_balanced(cursor) is None:
                    return None
                cursor.advance()
                cells += 1
            counts.append(cells)

    def _title_phrase(self, cursor: Cursor, raw_title: str) -> bool:
        if not raw_title.strip():
            return True
        position = cursor.position()
        self.actions.start_element("title")
        if not self.parse_expansion(Source(raw_title.strip(), position.file, position)):
            return False
        self.actions.end_element("title")
        return True

    def _cell(self, cursor: Cursor, name: str | None) -> bool:
        skip_comments(cursor)
        cursor.advance()
        if name:
            self.actions.start_element(name)
        cursor.match(HSPACE)
        if not self._nested_phrase(cursor):
            return False
        if name:
            self.actions.end_element(name)
        return self._close(cursor)

    def _table(self, cursor: Cursor) -> bool:
        found = cursor.match(TABLE)
        if found is None:
            return False
        cursor.match(HSPACE)
        title_position = cursor.copy()
        raw_title = self._table_title(cursor)
        counts = self._scan_rows(cursor.copy())
        if counts is None:
            return False

        actions = self.actions
        name = actions.begin_table(found.group(1), raw_title.strip(), bool(raw_title.strip()))
        if not self._title_phrase(title_position, raw_title):
            return False
        if counts:
            columns = counts[0]
            actions.start_element("tgroup", (("cols", str(columns)),))
            sections = [("thead", counts[:1]), ("tbody", counts[1:])] if len(counts) > 1 else [("tbody", counts)]
            for group, rows in sections:
                actions.start_element(group)
                for cells in rows:
                    skip_comments(cursor)
                    actions.check_row(cursor.position(), cells, columns)
                    cursor.advance()
                    actions.start_element("row")
                    for _ in range(cells):
                        if not self._cell(cursor, "entry"):
                            return False
                    skip_comments(cursor)
                    if not self._close(cursor):
                        return False
                    actions.end_element("row")
                actions.end_element(group)
            actions.end_element("tgroup")
        skip_comments(cursor)
        if not self._close(cursor):
            return False
        actions.end_element(name)
        return True

    def _variablelist(self, cursor: Cursor) -> bool:
        if not cursor.match(VARIABLELIST):
            return False
        cursor.match(HSPACE)
        title_position = cursor.copy()
        raw_title = self._table_title(cursor)
        counts = self._scan_rows(cursor.copy())
        if counts is None:
            return False

        actions = self.actions
        actions.start_element("variablelist")
        if not self._title_phrase(title_position, raw_title):
            return False
        for cells in counts:
            skip_comments(cursor)
            actions.check_varlist_entry(cursor.position(), cells)
            cursor.advance()
            actions.start_element("varlistentry")
            actions.start_element("term")
            if cells and not self._cell(cursor, None):
                return False
            actions.end_element("term")
            actions.start_element("listitem")
            actions.start_element("simpara")
            for _ in range(cells - 1):
                if not self._cell(cursor, None):
                    return False
            actions.end_element("simpara")
            actions.end_element("listitem")
            actions.end_element("varlistentry")
            skip_comments(cursor)
            if not self._close(cursor):
                return False
        skip_comments(cursor)
        if not self._close(cursor):
            return False
        actions.end_element("variablelist")
        return True

    def _block_template_call(self, cursor: Cursor) -> bool:
        position = cursor.position()
        found = cursor.match(TEMPLATE_CALL)
        if found is None:
            return False
        template = self.actions.lookup_template(found.group(1))
        if template is None or not template.block:
            return False
        arguments = scan_balanced(cursor)
        if arguments is None or not self._close(cursor):
            return False
        self.actions.invoke_template(self, position, template, arguments, block_context=True)
        return True

    def _fenced_code(self, cursor: Cursor) -> bool:
        if not cursor.at_line_start and cursor.text[cursor.offset - 1] not in " \t":
            return False
        if not cursor.match(FENCE_OPEN):
            return False
        close = FENCE_CLOSE.search(cursor.text, cursor.offset)
        if close is None:
            return False
        code = cursor.slice(cursor.offset, close.start())
        cursor.offset = close.end()
        cursor.match(NEWLINE)
        self.actions.code_block(code.removesuffix("\n"))
        return True

    def _code_block(self, cursor: Cursor) -> bool:
        if not cursor.at_line_start or cursor.peek() not in (" ", "\t"):
            return False
        lines = []
        while not cursor.at_end:
            line = cursor.rest_of_line()
            if line.strip() and line[0] not in " \t":
                break
            lines.append(line)
            cursor.advance(len(line))
            cursor.match(NEWLINE)
        while lines and not lines[-1].strip():
            lines.pop()
        if not lines:
            return False
        self.actions.code_block(textwrap.dedent("\n".join(lines)))
        return True

    def _list(self, cursor: Cursor) -> bool:
        actions = self.actions
        first = cursor.lookahead(LIST_ITEM)
        if first is None or first.group(1):
            return False

        # Open lists as (indent, element name), outermost first.
        open_lists: list[tuple[int, str]] = []
        while True:
            item = cursor.lookahead(LIST_ITEM)
            if item is None:
                break
            indent = len(item.group(1).expandtabs(4))
            name = "orderedlist" if item.group(2) == "#" else "itemizedlist"
            if open_lists and indent < open_lists[-1][0]:
                while len(open_lists) > 1 and indent < open_lists[-1][0]:
                    actions.end_element("listitem")
                    actions.end_element(open_lists.pop()[1])
            if not open_lists or indent > open_lists[-1][0]:
                actions.start_element(name)
                open_lists.append((indent, name))
            else:
                actions.end_element("listitem")
            cursor.match(LIST_ITEM)
            actions.start_element("listitem")
            actions.start_element("simpara")
            self.parse_phrase(cursor, PhraseMode.LIST_ITEM)
            actions.end_element("simpara")
            if not cursor.match(NEWLINE):
                break

        while open_lists:
            actions.end_element("listitem")
            actions.end_element(open_lists.pop()[1])
        return True

    def _paragraph(self, cursor: Cursor) -> bool:
        start = cursor.mark()
        self.actions.begin_paragraph()
        self.parse_phrase(cursor, PhraseMode.PARAGRAPH)
        if cursor.mark() == start:
            return False
        self.actions.end_paragraph()
        cursor.match(NEWLINE)
        return True

    # Phrase rules

    def _phrase_element(self, cursor: Cursor) -> bool:
        for rule in (
            self._inline_comment,
            self._styled,
            self._url,
            self._link,
            self._anchor,
            self._image,
            self._footnote,
            self._line_break,
            self._conditional,
            self._template_call,
        ):
            if self._attempt(rule, cursor):
                return True
        return False

    def _inline_comment(self, cursor: Cursor) -> bool:
        if not cursor.match(COMMENT) or scan_balanced(cursor) is None:
            return False
        return self._close(cursor)

    def _nested_phrase(self, cursor: Cursor) -> bool:
        """Parse phrase markup up to the bracket closing the current element.

        Whether the closing bracket exists depends only on the text, so a
        failure is remembered and the same offset fails at once when another
        alternative reaches it.
        """
        key = (cursor.text, cursor.offset)
        if key in self._unclosed:
            return False
        if not self.actions.enter_phrase(cursor.position()):
            if scan_balanced(cursor) is None:
                self._unclosed.add(key)
                return False
            return True
        try:
            closed = self.parse_phrase(cursor, PhraseMode.BRACKETED)
        finally:
            self.actions.leave_phrase()
        if not closed:
            self._unclosed.add(key)
        return closed

    def _bracketed(self, cursor: Cursor, name: str, attributes=()) -> bool:
        self.actions.start_element(name, attributes)
        if not self._nested_phrase(cursor):
            return False
        self.actions.end_element(name)
        return self._close(cursor)

    def _styled(self, cursor: Cursor) -> bool:
        found = cursor.match(STYLE)
        if found is None:
            return False
        return self._bracketed(cursor, STYLES[found.group(1)])

    def _linked(self, cursor: Cursor, name: str, attributes, target: str) -> bool:
        cursor.match(WHITESPACE)
        if cursor.peek() == "]":
            self.actions.start_element(name, attributes)
            self.actions.text(target)
            self.actions.end_element(name)
            return self._close(cursor)
        return self._bracketed(cursor, name, attributes)

    def _url(self, cursor: Cursor) -> bool:
        found = cursor.match(URL)
        if found is None:
            return False
        url = found.group(1)
        return self._linked(cursor, "ulink", (("url", url),), url)

    def _link(self, cursor: Cursor) -> bool:
        found = cursor.match(LINK)
        if found is None:
            return False
        target = found.group(1)
        return self._linked(cursor, "link", (("linkend", target),), target)

    def _anchor(self, cursor: Cursor) -> bool:
        found = cursor.match(ANCHOR)
        if found is None:
            return False
        self.actions.element("anchor", (("id", found.group(1)),))
        return True

    def _image(self, cursor: Cursor) -> bool:
        found = cursor.match(IMAGE)
        if found is None:
            return False
        self.actions.image(found.group(1))
        return True

    def _footnote(self, cursor: Cursor) -> bool:
        if not cursor.match(FOOTNOTE):
            return False
        cursor.match(WHITESPACE)
        return self._bracketed(cursor, "footnote")

    def _line_break(self, cursor: Cursor) -> bool:
        if not cursor.match(LINE_BREAK):
            return False
        self.actions.element("linebreak")
        return True

    def _conditional(self, cursor: Cursor) -> bool:
        found = cursor.match(CONDITIONAL)
        if found is None:
            return False
        cursor.match(HSPACE)
        if self.actions.has_macro(found.group(1)):
            if not self._nested_phrase(cursor):
                return False
        elif scan_balanced(cursor) is None:
            return False
        return self._close(cursor)

    def _template_call(self, cursor: Cursor) -> bool:
        position = cursor.position()
        start = cursor.mark()
        found = cursor.match(TEMPLATE_CALL)
        if found is None:
            return False
        arguments = scan_balanced(cursor)
        if arguments is None or not self._close(cursor):
            return False
        name = found.group(1)
        template = self.actions.lookup_template(name)
        if template is None:
            self.actions.undefined_template(position, name, cursor.slice(start))
        else:
            self.actions.invoke_template(self, position, template, arguments)
        return True

    def _inline_code(self, cursor: Cursor) -> bool:
        found = cursor.match(DOUBLE_CODE) or cursor.match(SINGLE_CODE)
        if found is None:
            return False
        self.actions.inline_code(found.group(1))
        return True

    def _raw_escape(self, cursor: Cursor) -> bool:
        position = cursor.position()
        found = cursor.match(RAW_ESCAPE)
        if found is None:
            return False
        self.actions.raw(found.group(1), position)
        return True
