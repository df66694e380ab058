"""Rendering of the event stream into BoostBook or HTML markup."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from xml.sax.saxutils import escape

from .exceptions import InternalFault
from .models import Attributes, EndElement, OutputEvent, Raw, StartElement, Text

BOOSTBOOK_DOCTYPE = (
    '<!DOCTYPE {doc_type} PUBLIC "-//Boost//DTD BoostBook XML V1.0//EN" '
    '"http://www.boost.org/tools/boostbook/dtd/boostbook.dtd">'
)
XINCLUDE_NAMESPACE = "http://www.w3.org/2001/XInclude"

# Elements followed by a newline in unformatted output.
BLOCK_ELEMENTS = frozenset(
    {
        "document",
        "docinfo",
        "authorgroup",
        "author",
        "copyright",
        "legalnotice",
        "purpose",
        "category",
        "section",
        "title",
        "para",
        "simpara",
        "programlisting",
        "itemizedlist",
        "orderedlist",
        "listitem",
        "variablelist",
        "varlistentry",
        "term",
        "table",
        "informaltable",
        "tgroup",
        "thead",
        "tbody",
        "row",
        "entry",
        "note",
        "tip",
        "important",
        "caution",
        "warning",
        "blurb",
        "blockquote",
        "heading",
        "xinclude",
    }
)

ADMONITIONS = ("note", "tip", "important", "caution", "warning")


class Encoding(Enum):
    """Closed set of supported output encodings."""

    BOOSTBOOK = "boostbook"
    HTML = "html"

    @property
    def extension(self) -> str:
        return ".html" if self is Encoding.HTML else ".xml"


def encoding_from_name(name: str) -> Encoding:
    """Return the `Encoding` called `name`.

    Raises:
        ValueError: If no encoding has that name.

    Examples:
        encoding_from_name("html")  # Encoding.HTML
    """
    try:
        return Encoding(name)
    except ValueError as error:
        names = ", ".join(encoding.value for encoding in Encoding)
        raise ValueError(f"Unknown encoder {name!r} (expected one of: {names})") from error


def escape_text(text: str) -> str:
    return escape(text)


def escape_attribute(value: str) -> str:
    return escape(value, {'"': "&quot;"})


def render_attributes(attributes: Attributes) -> str:
    return "".join(f' {name}="{escape_attribute(value)}"' for name, value in attributes)


def _get(attributes: Attributes, key: str, default: str = "") -> str:
    for name, value in attributes:
        if name == key:
            return value
    return default


def _tag(name: str, attributes: Attributes = ()) -> tuple[str, str]:
    return f"<{name}{render_attributes(attributes)}>", f"</{name}>"


class _Encoder:
    """Shared event walk: keeps the element stack and renders each event."""

    def __init__(self):
        self._parts: list[str] = []
        self._stack: list[tuple[str, str]] = []

    @property
    def open_names(self) -> list[str]:
        return [name for name, _ in self._stack]

    def encode(self, events: Iterable[OutputEvent]) -> str:
        for event in events:
            if isinstance(event, StartElement):
                opening, closing = self.start(event.name, event.attributes)
                self._stack.append((event.name, closing))
                self._parts.append(opening)
            elif isinstance(event, EndElement):
                if not self._stack or self._stack[-1][0] != event.name:
                    raise InternalFault(f"Unbalanced end of element {event.name!r}")
                _, closing = self._stack.pop()
                self._parts.append(closing)
                self.end(event.name)
            elif isinstance(event, Text):
                self._parts.append(self.text(event.content))
            elif isinstance(event, Raw):
                self._parts.append(event.content)
            else:
                raise InternalFault(f"Unknown output event {event!r}")

        if self._stack:
            raise InternalFault(f"Element {self._stack[-1][0]!r} is never closed")

        output = "".join(self._parts)
        if output and not output.endswith("\n"):
            output += "\n"
        return output

    def start(self, name: str, attributes: Attributes) -> tuple[str, str]:
        raise NotImplementedError

    def end(self, name: str) -> None:
        pass

    def text(self, content: str) -> str:
        return escape_text(content)

    def _block(self, name: str, pair: tuple[str, str]) -> tuple[str, str]:
        opening, closing = pair
        if name in BLOCK_ELEMENTS:
            closing += "\n"
        return opening, closing


_BOOSTBOOK_RENAMES: dict[str, tuple[str, Attributes]] = {
    "bold": ("emphasis", (("role", "bold"),)),
    "italic": ("emphasis", ()),
    "underline": ("emphasis", (("role", "underline"),)),
    "strikethrough": ("emphasis", (("role", "strikethrough"),)),
    "teletype": ("literal", ()),
    "blurb": ("sidebar", (("role", "blurb"),)),
}


class BoostBookEncoder(_Encoder):
    """Renders events as BoostBook XML.

    Internal names map one to one onto BoostBook tags except for the few
    phrase styles BoostBook expresses as roles, and the document header
    elements whose tag depends on the document type.
    """

    def __init__(self):
        super().__init__()
        self._doc_type = "article"

    def start(self, name: str, attributes: Attributes) -> tuple[str, str]:
        if name == "document":
            return self._block(name, self._document(attributes))
        if name in ("docinfo", "purpose", "category"):
            return self._block(name, _tag(f"{self._doc_type}{name.replace('doc', '')}"))
        if name == "heading":
            level = _get(attributes, "level", "1")
            renamed = (("renderas", f"sect{level}"),) + tuple(
                (key, value) for key, value in attributes if key != "level"
            )
            return self._block(name, _tag("bridgehead", renamed))
        if name == "footnote":
            return "<footnote><para>", "</para></footnote>"
        if name == "linebreak":
            return "<sbr/>", ""
        if name == "anchor":
            return f"<anchor{render_attributes(attributes)}/>", ""
        if name == "image":
            fileref = render_attributes((("fileref", _get(attributes, "fileref")),))
            return (
                f"<inlinemediaobject><imageobject><imagedata{fileref}/></imageobject>"
                "</inlinemediaobject>",
                "",
            )
        if name == "xinclude":
            return f"<xi:include{render_attributes(attributes)}/>\n", ""
        if name in _BOOSTBOOK_RENAMES:
            tag, extra = _BOOSTBOOK_RENAMES[name]
            return self._block(name, _tag(tag, extra + attributes))
        return self._block(name, _tag(name, attributes))

    def _document(self, attributes: Attributes) -> tuple[str, str]:
        self._doc_type = _get(attributes, "doctype", "article")
        rendered = tuple((key, value) for key, value in attributes if key != "doctype")
        rendered += (("xmlns:xi", XINCLUDE_NAMESPACE),)
        prolog = (
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            + BOOSTBOOK_DOCTYPE.format(doc_type=self._doc_type)
            + "\n"
        )
        opening, closing = _tag(self._doc_type, rendered)
        return prolog + opening + "\n", closing


_HTML_RENAMES: dict[str, tuple[str, Attributes]] = {
    "para": ("p", ()),
    "bold": ("strong", ()),
    "italic": ("em", ()),
    "underline": ("u", ()),
    "strikethrough": ("del", ()),
    "teletype": ("code", (("class", "teletype"),)),
    "replaceable": ("var", ()),
    "code": ("code", ()),
    "programlisting": ("pre", (("class", "programlisting"),)),
    "itemizedlist": ("ul", ()),
    "orderedlist": ("ol", ()),
    "variablelist": ("dl", ()),
    "term": ("dt", ()),
    "informaltable": ("table", ()),
    "thead": ("thead", ()),
    "tbody": ("tbody", ()),
    "row": ("tr", ()),
    "blockquote": ("blockquote", ()),
    "docinfo": ("div", (("class", "docinfo"),)),
    "authorgroup": ("div", (("class", "authorgroup"),)),
    "author": ("p", (("class", "author"),)),
    "firstname": ("span", (("class", "firstname"),)),
    "surname": ("span", (("class", "surname"),)),
    "copyright": ("p", (("class", "copyright"),)),
    "year": ("span", (("class", "year"),)),
    "holder": ("span", (("class", "holder"),)),
    "legalnotice": ("div", (("class", "legalnotice"),)),
    "purpose": ("p", (("class", "purpose"),)),
    "category": ("p", (("class", "category"),)),
    "footnote": ("span", (("class", "footnote"),)),
    "blurb": ("div", (("class", "blurb"),)),
}

# Elements that only group children in BoostBook and have no HTML counterpart.
_HTML_TRANSPARENT = frozenset({"simpara", "tgroup", "varlistentry"})


class HtmlEncoder(_Encoder):
    """Renders events as an HTML5 document.

    Sections become nested ``div.section`` elements whose titles are
    ``h2``...``h6`` according to their depth; the document title is ``h1``
    and is repeated in ``<head>``.
    """

    def __init__(self):
        super().__init__()
        self._head_index: int | None = None
        self._head_title: list[str] | None = None

    def start(self, name: str, attributes: Attributes) -> tuple[str, str]:
        if name == "document":
            lang = _get(attributes, "lang")
            html_attributes = (("lang", lang),) if lang else ()
            self._parts.append(
                f"<!DOCTYPE html>\n<html{render_attributes(html_attributes)}>\n<head>\n"
                '<meta charset="utf-8"/>\n'
            )
            self._head_index = len(self._parts)
            self._parts.append("")
            return "</head>\n<body>\n", "</body>\n</html>\n"
        if name == "title":
            return self._block(name, self._title())
        if name == "section":
            return self._block(name, _tag("div", (("class", "section"),) + attributes))
        if name == "heading":
            level = min(int(_get(attributes, "level", "1")) + 1, 6)
            identifier = tuple((key, value) for key, value in attributes if key == "id")
            return self._block(name, _tag(f"h{level}", identifier))
        if name in _HTML_TRANSPARENT:
            return "", ""
        if name == "listitem":
            parent = self._parent()
            return self._block(name, _tag("dd" if parent == "varlistentry" else "li"))
        if name == "table":
            return self._block(name, _tag("table", attributes))
        if name == "entry":
            return self._block(name, _tag("th" if "thead" in self.open_names else "td"))
        if name in ADMONITIONS:
            return self._block(name, _tag("div", (("class", name),)))
        if name == "linebreak":
            return "<br/>", ""
        if name == "anchor":
            return f"<span{render_attributes(attributes)}></span>", ""
        if name == "image":
            image_attributes = (
                ("src", _get(attributes, "fileref")),
                ("alt", _get(attributes, "alt")),
            )
            return f"<img{render_attributes(image_attributes)}/>", ""
        if name == "ulink":
            return _tag("a", (("href", _get(attributes, "url")),))
        if name == "link":
            return _tag("a", (("href", "#" + _get(attributes, "linkend")),))
        if name == "xinclude":
            href = (("class", "xinclude"), ("href", _get(attributes, "href")))
            return f"<a{render_attributes(href)}></a>\n", ""
        if name in _HTML_RENAMES:
            tag, extra = _HTML_RENAMES[name]
            return self._block(name, _tag(tag, extra + attributes))
        return _tag("span", (("class", name),) + attributes)

    def end(self, name: str) -> None:
        if name == "title" and self._head_title is not None:
            title = escape_text("".join(self._head_title))
            if self._head_index is not None:
                self._parts[self._head_index] = f"<title>{title}</title>\n"
            self._head_title = None

    def text(self, content: str) -> str:
        if self._head_title is not None:
            self._head_title.append(content)
        return escape_text(content)

    def _parent(self) -> str | None:
        names = self.open_names
        return names[-1] if names else None

    def _title(self) -> tuple[str, str]:
        parent = self._parent()
        if parent == "document":
            if self._head_index is not None and not self._parts[self._head_index]:
                self._head_title = []
            return _tag("h1", (("class", "title"),))
        if parent == "section":
            depth = self.open_names.count("section")
            return _tag(f"h{min(depth + 1, 6)}")
        if parent in ("table", "informaltable"):
            return _tag("caption")
        return _tag("p", (("class", "title"),))


_ENCODERS = {
    Encoding.BOOSTBOOK: BoostBookEncoder,
    Encoding.HTML: HtmlEncoder,
}


def encode(events: Iterable[OutputEvent], encoding: Encoding = Encoding.BOOSTBOOK) -> str:
    """Render an event stream in the requested encoding.

    Args:
        events: Balanced sequence of output events.
        encoding: Target encoding.

    Returns:
        str: The rendered markup, ending with a newline when not empty.

    Raises:
        InternalFault: If the events are unbalanced.

    Examples:
        encode([StartElement("para"), Text("a < b"), EndElement("para")])
        # "<para>a &lt; b</para>\\n"
    """
    return _ENCODERS[encoding]().encode(events)
