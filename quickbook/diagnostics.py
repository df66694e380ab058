"""Formatting and delivery of diagnostics."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from .models import Diagnostic


def format_diagnostic(diagnostic: Diagnostic, ms_errors: bool = False) -> str:
    """Render a diagnostic as a single line.

    The plain style follows compiler conventions
    (``file:line:column: error: message``); the IDE style follows the format
    Visual Studio recognizes (``file(line,column): error: message``). The
    choice only affects formatting.

    Args:
        diagnostic: Diagnostic to render.
        ms_errors: Use the IDE style.

    Returns:
        str: Formatted diagnostic without a trailing newline.

    Examples:
        format_diagnostic(Diagnostic(Severity.ERROR, ErrorKind.SYNTAX, "Syntax error", "a.qbk",
                                     SourcePosition("a.qbk", 0, 3, 7)))
        # "a.qbk:3:7: error: Syntax error"
    """
    severity = diagnostic.severity.value
    position = diagnostic.position
    if position is None:
        location = diagnostic.file
    elif ms_errors:
        location = f"{position.file}({position.line},{position.column})"
    else:
        location = f"{position.file}:{position.line}:{position.column}"
    separator = " : " if ms_errors else ": "
    return f"{location}{separator}{severity}: {diagnostic.message}"


def report(
    diagnostics: Iterable[Diagnostic],
    warn: Callable[[str], None] | None,
    ms_errors: bool = False,
) -> None:
    """Send formatted diagnostics to `warn`; do nothing when it is None."""
    if warn is None:
        return
    for diagnostic in diagnostics:
        warn(format_diagnostic(diagnostic, ms_errors))


def format_summary(file: str, error_count: int, ms_errors: bool = False) -> str:
    """Render the end-of-unit error count line.

    Examples:
        format_summary("index.qbk", 2)  # "index.qbk: error: Error count: 2."
    """
    separator = " : " if ms_errors else ": "
    return f"{file}{separator}error: Error count: {error_count}."
