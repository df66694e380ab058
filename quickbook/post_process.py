"""Whitespace-only reformatting of generated markup."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .exceptions import PostProcessError

DEFAULT_INDENT = 2
DEFAULT_LINEWIDTH = 80

BLOCK_TAGS = frozenset(
    {
        # BoostBook / DocBook
        "article", "book", "library", "chapter", "part", "appendix", "preface",
        "qandadiv", "qandaset", "reference", "set",
        "authorgroup", "author", "copyright", "legalnotice",
        "section", "title", "para", "simpara", "bridgehead",
        "itemizedlist", "orderedlist", "listitem",
        "variablelist", "varlistentry", "term",
        "table", "informaltable", "tgroup", "thead", "tbody", "row", "entry",
        "note", "tip", "important", "caution", "warning", "sidebar", "blockquote",
        "xi:include",
        # HTML
        "html", "head", "body", "div", "p", "ul", "ol", "li", "dl", "dt", "dd",
        "caption", "tr", "th", "td", "h1", "h2", "h3", "h4", "h5", "h6", "hr",
    }
)
BLOCK_SUFFIXES = ("info", "purpose", "category")
PREFORMATTED_TAGS = frozenset({"programlisting", "literallayout", "screen", "synopsis", "pre"})
VERBATIM_INLINE_TAGS = frozenset({"code", "literal", "computeroutput"})

_TOKEN_PATTERN = re.compile(
    r"""
      (?P<comment><!--.*?-->)
    | (?P<cdata><!\[CDATA\[.*?\]\]>)
    | (?P<pi><\?.*?\?>)
    | (?P<declaration><![A-Za-z][^>]*>)
    | (?P<end></(?P<end_name>[^\s<>/]+)\s*>)
    | (?P<start><(?P<start_name>[^\s<>/!?]+)
        (?:\s+[^\s<>/=]+\s*=\s*(?:"[^"]*"|'[^']*'))*
        \s*(?P<empty>/)?>)
    | (?P<text>[^<]+)
    """,
    re.DOTALL | re.VERBOSE,
)
_WHITESPACE = re.compile(r"[ \t\r\n]+")


@dataclass
class _Leaf:
    kind: str
    content: str


@dataclass
class _Element:
    name: str
    start_tag: str
    end_tag: str = ""
    empty: bool = False
    children: list[_Leaf | _Element] = field(default_factory=list)


def _is_block_name(name: str) -> bool:
    return name in BLOCK_TAGS or name in PREFORMATTED_TAGS or name.endswith(BLOCK_SUFFIXES)


def _is_block(node: _Leaf | _Element) -> bool:
    if isinstance(node, _Leaf):
        return node.kind in ("pi", "declaration")
    return _is_block_name(node.name)


def tokenize(markup: str) -> list[tuple[str, str, str]]:
    """Split markup into ``(kind, text, name)`` tokens.

    The tokenizer does not validate; it trusts that `markup` was generated by
    quickbook and only rejects a ``<`` that starts no recognizable construct.

    Args:
        markup: Generated XML or HTML.

    Returns:
        list[tuple[str, str, str]]: Token kind (``"start"``, ``"end"``,
            ``"empty"``, ``"text"``, ``"comment"``, ``"cdata"``, ``"pi"`` or
            ``"declaration"``), the verbatim token text, and the element name
            for tags (empty otherwise).

    Raises:
        PostProcessError: If a markup construct cannot be recognized.

    Examples:
        tokenize("<para>x</para>")
        # [("start", "<para>", "para"), ("text", "x", ""), ("end", "</para>", "para")]
    """
    tokens: list[tuple[str, str, str]] = []
    offset = 0
    while offset < len(markup):
        found = _TOKEN_PATTERN.match(markup, offset)
        if found is None:
            raise PostProcessError("unrecognized markup", offset)
        kind = found.lastgroup
        if kind == "start":
            name = found.group("start_name")
            tokens.append(("empty" if found.group("empty") else "start", found.group(0), name))
        elif kind == "end":
            tokens.append(("end", found.group(0), found.group("end_name")))
        else:
            tokens.append((kind, found.group(0), ""))
        offset = found.end()
    return tokens


def _build_tree(markup: str) -> list[_Leaf | _Element]:
    root = _Element(name="", start_tag="")
    stack = [root]
    offset = 0
    for kind, text, name in tokenize(markup):
        parent = stack[-1]
        if kind == "start":
            element = _Element(name=name, start_tag=text)
            parent.children.append(element)
            stack.append(element)
        elif kind == "empty":
            parent.children.append(_Element(name=name, start_tag=text, empty=True))
        elif kind == "end":
            if len(stack) == 1 or parent.name != name:
                expected = parent.name or "nothing"
                raise PostProcessError(f"end tag </{name}> closes {expected}", offset)
            parent.end_tag = text
            stack.pop()
        else:
            parent.children.append(_Leaf(kind=kind, content=text))
        offset += len(text)

    if len(stack) > 1:
        raise PostProcessError(f"element <{stack[-1].name}> is never closed", offset)
    return root.children


def find_markup_error(markup: str) -> str | None:
    """Describe why `markup` is not a balanced fragment.

    Returns:
        str | None: The problem, or None when every tag is recognized and
            closed in order.

    Examples:
        find_markup_error("<b>x</b>")  # None
        find_markup_error("<b>")  # "element <b> is never closed"
    """
    try:
        _build_tree(markup)
    except PostProcessError as error:
        return error.reason
    return None


def _serialize(node: _Leaf | _Element) -> str:
    if isinstance(node, _Leaf):
        return node.content
    if node.empty:
        return node.start_tag
    return node.start_tag + "".join(_serialize(child) for child in node.children) + node.end_tag


class _Formatter:
    def __init__(self, indent: int, linewidth: int):
        self.indent = indent
        self.linewidth = linewidth
        self.lines: list[str] = []

    def prefix(self, depth: int) -> str:
        return " " * (self.indent * depth)

    def format_nodes(self, nodes: list[_Leaf | _Element], depth: int) -> None:
        run: list[_Leaf | _Element] = []
        for node in nodes:
            if _is_block(node):
                self._wrap(self._words(run), depth)
                run = []
                self._format_block(node, depth)
            else:
                run.append(node)
        self._wrap(self._words(run), depth)

    def _format_block(self, node: _Leaf | _Element, depth: int) -> None:
        prefix = self.prefix(depth)
        if isinstance(node, _Leaf) or node.empty or node.name in PREFORMATTED_TAGS:
            self.lines.append(prefix + _serialize(node))
            return

        if any(_is_block(child) for child in node.children):
            self.lines.append(prefix + node.start_tag)
            self.format_nodes(node.children, depth + 1)
            self.lines.append(prefix + node.end_tag)
            return

        words = self._words(node.children)
        single_line = prefix + node.start_tag + " ".join(words) + node.end_tag
        if not words or len(single_line) <= self.linewidth:
            self.lines.append(single_line)
            return

        self.lines.append(prefix + node.start_tag)
        self._wrap(words, depth + 1)
        self.lines.append(prefix + node.end_tag)

    def _words(self, nodes: list[_Leaf | _Element]) -> list[str]:
        words: list[str] = []
        current: list[str] = []

        def finish_word() -> None:
            if current:
                words.append("".join(current))
                current.clear()

        def collect(children: list[_Leaf | _Element]) -> None:
            for child in children:
                if isinstance(child, _Leaf):
                    if child.kind != "text":
                        current.append(child.content)
                        continue
                    for index, piece in enumerate(_WHITESPACE.split(child.content)):
                        if index:
                            finish_word()
                        if piece:
                            current.append(piece)
                elif child.empty:
                    current.append(child.start_tag)
                elif child.name in PREFORMATTED_TAGS or child.name in VERBATIM_INLINE_TAGS:
                    current.append(_serialize(child))
                else:
                    current.append(child.start_tag)
                    collect(child.children)
                    current.append(child.end_tag)

        collect(nodes)
        finish_word()
        return words

    def _wrap(self, words: list[str], depth: int) -> None:
        prefix = self.prefix(depth)
        line = ""
        for word in words:
            if not line:
                line = prefix + word
            elif len(line) + 1 + len(word) <= self.linewidth:
                line += " " + word
            else:
                self.lines.append(line)
                line = prefix + word
        if line:
            self.lines.append(line)


def post_process(markup: str, indent: int | None = None, linewidth: int | None = None) -> str:
    """Reformat generated markup with consistent indentation and wrapping.

    Block elements start on their own line, indented by `indent` spaces per
    nesting level. Inline content is wrapped at whitespace so lines stay within
    `linewidth` where possible; tags, entities and verbatim elements are never
    split, and preformatted elements keep their content unchanged. Only
    whitespace outside preformatted content changes, and formatting an already
    formatted document with the same settings returns it unchanged.

    Args:
        markup: Markup produced by an encoder.
        indent: Spaces per nesting level; None or a negative value selects the
            default of 2.
        linewidth: Maximum line width; None or a non-positive value selects the
            default of 80.

    Returns:
        str: The reformatted markup, ending with a newline.

    Raises:
        PostProcessError: If the markup cannot be re-tokenized or its tags are
            not balanced.

    Examples:
        post_process("<section><para>Hello</para></section>")
        # "<section>\\n  <para>Hello</para>\\n</section>\\n"
    """
    if indent is None or indent < 0:
        indent = DEFAULT_INDENT
    if linewidth is None or linewidth <= 0:
        linewidth = DEFAULT_LINEWIDTH

    formatter = _Formatter(indent, linewidth)
    formatter.format_nodes(_build_tree(markup), 0)
    if not formatter.lines:
        return ""
    return "\n".join(formatter.lines) + "\n"
