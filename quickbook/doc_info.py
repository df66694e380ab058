"""Validation and defaulting of document metadata."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from .encoders import Encoding
from .exceptions import MetadataError
from .ids import generate_id
from .models import Attributes, DocInfo

DOC_TYPES = (
    "book",
    "article",
    "library",
    "chapter",
    "part",
    "appendix",
    "preface",
    "qandadiv",
    "qandaset",
    "reference",
    "set",
)

REQUIRED_FIELDS = {
    Encoding.BOOSTBOOK: ("title", "id"),
    Encoding.HTML: ("title",),
}


def missing_fields(info: DocInfo, encoding: Encoding) -> tuple[str, ...]:
    """Return the mandatory fields of `encoding` that `info` leaves empty.

    Examples:
        missing_fields(DocInfo(doc_type="article", title="T"), Encoding.BOOSTBOOK)  # ("id",)
    """
    missing = []
    for name in REQUIRED_FIELDS[encoding]:
        value = getattr(info, name)
        if value is None or not value.strip():
            missing.append(name)
    return tuple(missing)


def format_revision(moment: datetime, encoding: Encoding) -> str:
    """Format the default ``last-revision`` stamp for `encoding`.

    Examples:
        format_revision(datetime(2000, 12, 20, 12), Encoding.BOOSTBOOK)
        # "$Date: 2000/12/20 12:00:00 $"
    """
    if encoding is Encoding.HTML:
        return moment.strftime("%Y-%m-%d")
    return moment.strftime("$Date: %Y/%m/%d %H:%M:%S $")


def resolve_doc_info(info: DocInfo, encoding: Encoding, current_time: datetime) -> DocInfo:
    """Validate `info` for `encoding` and fill in the defaults it implies.

    BoostBook output requires a title and an id; HTML only requires a title
    and derives the id from it. Revision stamps default to `current_time`,
    BoostBook directory names default to the id and HTML documents default to
    English.

    Args:
        info: Metadata as parsed from the document-info block.
        encoding: Output encoding the document is compiled for.
        current_time: Time used for the default revision stamp.

    Returns:
        DocInfo: Copy of `info` with whitespace trimmed and defaults applied.

    Raises:
        MetadataError: If a mandatory field is missing or blank.

    Examples:
        resolve_doc_info(DocInfo("article", "Title", id="t"), Encoding.BOOSTBOOK, now)
    """
    info = replace(
        info,
        title=info.title.strip(),
        id=info.id.strip() if info.id else info.id,
    )
    missing = missing_fields(info, encoding)
    if missing:
        raise MetadataError(missing, encoding.value)

    changes: dict[str, object] = {}
    if not info.id:
        changes["id"] = generate_id(info.title)
    if not info.last_revision:
        changes["last_revision"] = format_revision(current_time, encoding)
    if encoding is Encoding.BOOSTBOOK and not info.dirname:
        changes["dirname"] = info.id or changes.get("id")
    if encoding is Encoding.HTML and not info.lang:
        changes["lang"] = "en"
    return replace(info, **changes)


def document_attributes(info: DocInfo) -> Attributes:
    """Attributes of the ``document`` element for a resolved `info`."""
    attributes: list[tuple[str, str]] = [("doctype", info.doc_type or "article")]
    for name, value in (
        ("id", info.id),
        ("dirname", info.dirname),
        ("last-revision", info.last_revision),
        ("lang", info.lang),
    ):
        if value:
            attributes.append((name, value))
    return tuple(attributes)
