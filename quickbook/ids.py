"""Identifier generation for documents, sections and headings."""

from __future__ import annotations

import re
import unicodedata


def generate_id(text: str) -> str:
    """Generate an XML-safe identifier from a title.

    Transliterates the text to ASCII, lower-cases it and collapses every run of
    characters other than letters and digits into a single underscore.
    Returns ``"id"`` when no characters remain, and prefixes an underscore
    when the result would start with a digit.

    Args:
        text: Title or raw markup to derive the identifier from.

    Returns:
        str: Identifier usable as an ``id`` attribute value.

    Examples:
        generate_id("Hello World")  # "hello_world"
        generate_id("What's New?")  # "what_s_new"
        generate_id("   ")  # "id"
        generate_id("2nd pass")  # "_2nd_pass"
    """
    normalized = unicodedata.normalize("NFKD", text)
    identifier = normalized.encode("ascii", "ignore").decode("ascii")
    identifier = identifier.casefold()
    identifier = re.sub(r"[^a-z0-9]+", "_", identifier)
    identifier = identifier.strip("_")

    if not identifier:
        return "id"
    if identifier[0].isdigit():
        return f"_{identifier}"
    return identifier


def qualify(prefix: str | None, identifier: str) -> str:
    """Join a parent identifier and a local one with a dot.

    Examples:
        qualify("intro", "basics")  # "intro.basics"
        qualify(None, "basics")  # "basics"
    """
    if not prefix:
        return identifier
    return f"{prefix}.{identifier}"
