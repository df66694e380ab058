"""
quickbook: compiler for the quickbook documentation markup.

This package can be used both as a CLI tool and as a library.

CLI Usage:
    quickbook doc/index.qbk --html

Library Usage:
    from quickbook import QuickbookConfig, compile_source

    result = compile_source(text, "index.qbk", QuickbookConfig(encoder="html"))
    if result.success:
        html = result.output
"""

from .compiler import compile_file, compile_source, parse_file, parse_source
from .config import ConfigError, QuickbookConfig, build_config
from .encoders import Encoding, encode
from .exceptions import InternalFault, LoadError, MetadataError, PostProcessError, QuickbookError
from .models import CompileResult, Diagnostic, DocInfo, EndElement, Raw, StartElement, Text
from .post_process import post_process

__version__ = "1.5.0"

__all__ = [
    # Core functionality
    "compile_source",
    "compile_file",
    "parse_file",
    "parse_source",
    "encode",
    "post_process",
    # Configuration
    "QuickbookConfig",
    "build_config",
    "Encoding",
    # Data models
    "CompileResult",
    "Diagnostic",
    "DocInfo",
    "StartElement",
    "EndElement",
    "Text",
    "Raw",
    # Exceptions
    "QuickbookError",
    "ConfigError",
    "LoadError",
    "MetadataError",
    "InternalFault",
    "PostProcessError",
    # Version
    "__version__",
]
