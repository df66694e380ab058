"""Filesystem helpers for quickbook."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Sequence
from pathlib import Path

from .encoders import Encoding
from .exceptions import LoadError


def load_source(filepath: Path) -> str:
    """Read a quickbook source file.

    Args:
        filepath: Path to the file.

    Returns:
        str: File contents decoded as UTF-8, with a leading byte order mark
            removed and line endings normalized to ``\\n``.

    Raises:
        LoadError: If the file cannot be read or is not valid UTF-8.

    Examples:
        text = load_source(Path("doc/index.qbk"))
    """
    try:
        data = Path(filepath).read_bytes()
    except OSError as error:
        raise LoadError(str(filepath), error.strerror or str(error)) from error

    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as error:
        raise LoadError(
            str(filepath), f"invalid UTF-8 sequence at byte {error.start} ({error.reason})"
        ) from error
    return text.replace("\r\n", "\n").replace("\r", "\n")


def resolve_include(
    name: str, including_file: Path | None, include_paths: Sequence[str] = ()
) -> Path:
    """Locate the file named by an ``[include]`` directive.

    The including file's directory is searched first, then each include path
    in order. When nothing exists the first candidate is returned so that the
    load failure names a sensible path.

    Args:
        name: Path as written in the directive.
        including_file: File containing the directive, or None for text that
            did not come from a file.
        include_paths: Additional search directories.

    Returns:
        Path: Candidate path for the included file.

    Examples:
        resolve_include("intro.qbk", Path("doc/index.qbk"), ["shared"])
    """
    requested = Path(name).expanduser()
    if requested.is_absolute():
        return requested

    base = including_file.parent if including_file is not None else Path.cwd()
    candidates = [base / requested] + [Path(directory) / requested for directory in include_paths]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return candidates[0]


def default_output_path(input_path: Path, encoding: Encoding) -> Path:
    """Replace the input extension with the one of `encoding`.

    Examples:
        default_output_path(Path("doc/index.qbk"), Encoding.HTML)  # Path("doc/index.html")
    """
    return input_path.with_suffix(encoding.extension)


def write_output(filepath: Path, content: str) -> None:
    """Write `content` next to `filepath` and move it into place.

    A reader never sees a half-written output file: the text goes to a
    temporary file in the same directory, which then replaces `filepath`.

    Raises:
        IOError: If the output cannot be written.
    """
    directory = filepath.parent if str(filepath.parent) else Path(".")
    try:
        descriptor, temp_name = tempfile.mkstemp(
            prefix=f".{filepath.name}.", suffix=".tmp", dir=directory
        )
    except OSError as error:
        raise IOError(f"Error writing {filepath}: {error}") from error

    try:
        with os.fdopen(descriptor, "w", encoding="utf-8", newline="\n") as stream:
            stream.write(content)
        os.replace(temp_name, filepath)
    except OSError as error:
        Path(temp_name).unlink(missing_ok=True)
        raise IOError(f"Error writing {filepath}: {error}") from error
