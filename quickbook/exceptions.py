"""Package-specific exception types."""

from __future__ import annotations


class QuickbookError(Exception):
    """Base class for every error raised by quickbook."""


class LoadError(QuickbookError, IOError):
    """Raised when a source file cannot be read.

    Args:
        filepath: Path of the source that failed to load.
        reason: Human readable cause reported by the filesystem.
    """

    def __init__(self, filepath: str, reason: str):
        self.filepath = filepath
        self.reason = reason
        super().__init__(f"Unable to open file {filepath}: {reason}")


class MetadataError(QuickbookError, ValueError):
    """Raised when a document-info block lacks mandatory fields.

    Args:
        missing: Names of the fields that are required but absent.
        encoding: Name of the output encoding that requires them.
    """

    def __init__(self, missing: tuple[str, ...], encoding: str):
        self.missing = missing
        self.encoding = encoding
        super().__init__(
            f"Document info is missing {', '.join(missing)} (required for {encoding} output)"
        )


class InternalFault(QuickbookError, RuntimeError):
    """Raised when an invariant inside the compiler is violated.

    Signals an implementation bug rather than a problem with the document.
    """


class PostProcessError(InternalFault):
    """Raised when generated markup cannot be re-tokenized for layout.

    Args:
        message: Description of the malformed construct.
        offset: Zero-based offset into the generated markup.
    """

    def __init__(self, message: str, offset: int):
        self.reason = message
        self.offset = offset
        super().__init__(f"Post processing failed at offset {offset}: {message}")
