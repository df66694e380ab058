"""Compilation driver: metadata, body, encoding and layout for one unit."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

from .actions import Actions
from .config import QuickbookConfig, capture_time
from .cursor import Cursor, Source, SourcePosition
from .diagnostics import format_summary, report
from .encoders import encode
from .exceptions import InternalFault, LoadError
from .filesystem import load_source
from .grammar import DocInfoGrammar, QuickbookGrammar
from .models import CompilerPhase, CompileResult, DocInfo, ErrorKind
from .post_process import post_process
from .state import CompilerState

COMMAND_LINE_SOURCE = "command line parameter"


def parse_file(
    path: Path,
    state: CompilerState,
    ignore_docinfo: bool = False,
    origin: SourcePosition | None = None,
) -> bool:
    """Load and parse one file into `state`.

    Args:
        path: File to parse.
        state: Compiler state of the unit; shared with every nested include.
        ignore_docinfo: Accept a missing metadata block and emit no header,
            as for included fragments.
        origin: Position of the ``[include]`` naming the file, used to report
            a load failure.

    Returns:
        bool: True when the metadata (or its absence) was accepted and the body
            consumed the whole file. Errors counted by actions are not part of
            this verdict.
    """
    actions = Actions(state, parse_file)
    try:
        text = load_source(path)
    except LoadError as error:
        actions.load_failed(error, origin)
        return False

    state.include_stack.append(path.resolve())
    try:
        return parse_source(Source(text, str(path)), state, ignore_docinfo)
    finally:
        state.include_stack.pop()


def parse_source(source: Source, state: CompilerState, ignore_docinfo: bool = False) -> bool:
    """Run the two-phase parse of `source`.

    The metadata rule is tried first. When it fails and `ignore_docinfo` is
    False, a metadata error is counted at the failure position and the body is
    not parsed. Otherwise the body rule starts after the metadata block, or at
    the original start when there was none, and must consume the whole input;
    leftover input is a syntax error at the first unconsumed position. For the
    main file, sections still open are reported at its end.

    Returns:
        bool: True when the parse reached the ``DONE`` phase.
    """
    actions = Actions(state, parse_file)
    grammar = QuickbookGrammar(actions)
    doc_info_grammar = DocInfoGrammar()
    cursor = Cursor(source)
    start = cursor.mark()
    info: DocInfo | None = None
    phase = CompilerPhase.AWAITING_METADATA

    while phase not in (CompilerPhase.DONE, CompilerPhase.FAILED):
        if phase is CompilerPhase.AWAITING_METADATA:
            info = doc_info_grammar.parse(cursor)
            if info is None and not ignore_docinfo:
                actions.doc_info_error(source.position(doc_info_grammar.failure_offset))
                phase = CompilerPhase.FAILED
                continue
            if info is None:
                cursor.rewind(start)
                info = DocInfo(ignore=True)
            elif ignore_docinfo:
                info = replace(info, ignore=True)
            if actions.process_doc_info(grammar, info, source.position(start)):
                phase = CompilerPhase.BODY_PENDING
            else:
                phase = CompilerPhase.FAILED
        else:
            grammar.parse_block(cursor)
            if cursor.at_end:
                actions.process_doc_info_post(info)
                phase = CompilerPhase.DONE
            else:
                actions.syntax_error(cursor.position())
                phase = CompilerPhase.FAILED

    if not ignore_docinfo:
        actions.end_of_unit(source.position(len(source.text)))
    return phase is CompilerPhase.DONE


def seed_macros(state: CompilerState, defines: tuple[str, ...]) -> None:
    """Apply ``NAME=VALUE`` definitions before any file is parsed."""
    actions = Actions(state, parse_file)
    grammar = QuickbookGrammar(actions)
    for definition in defines:
        source = Source(definition, COMMAND_LINE_SOURCE)
        if not grammar.parse_command_line_macro(Cursor(source)):
            actions.error(
                source.position(0), f"Invalid macro definition '{definition}'", ErrorKind.SYNTAX
            )


def _guarded(parse: Callable[..., bool], *args) -> bool:
    try:
        return parse(*args)
    except RecursionError as error:
        raise InternalFault("Markup nested too deeply to compile") from error


def _prepare(config: QuickbookConfig | None) -> QuickbookConfig:
    config = config or QuickbookConfig()
    if config.current_time is None:
        config = replace(config, current_time=capture_time(config.debug))
    return config


def _finish(
    state: CompilerState,
    name: str,
    parsed: bool,
    warn: Callable[[str], None] | None,
) -> CompileResult:
    config = state.config
    report(state.diagnostics, warn, config.ms_errors)
    if state.error_count and warn is not None:
        warn(format_summary(name, state.error_count, config.ms_errors))

    success = parsed and state.error_count == 0
    output = None
    if success:
        output = encode(state.events, state.encoding)
        if config.pretty_print:
            output = post_process(output, config.indent, config.linewidth)

    return CompileResult(
        success=success,
        output=output,
        error_count=state.error_count,
        warning_count=state.warning_count,
        section_level=state.section_level,
        diagnostics=list(state.diagnostics),
        events=list(state.events),
    )


def compile_source(
    text: str,
    name: str = "<string>",
    config: QuickbookConfig | None = None,
    warn: Callable[[str], None] | None = None,
) -> CompileResult:
    """Compile quickbook markup held in memory.

    Relative ``[include]`` paths are resolved from the directory of `name`.

    Args:
        text: Quickbook markup, starting with a metadata block.
        name: Name used in diagnostics.
        config: Invocation settings; defaults to BoostBook output with pretty
            printing.
        warn: Callback receiving each formatted diagnostic line.

    Returns:
        CompileResult: Verdict, output and counters of the unit.

    Raises:
        InternalFault: If the generated event stream or markup is malformed,
            or the markup nests deeper than the interpreter stack allows.

    Examples:
        result = compile_source("[article Hello\\n[id hello]\\n]\\n\\nWorld\\n")
        result.output  # BoostBook XML with one <para>
    """
    config = _prepare(config)
    state = CompilerState.from_config(config)
    seed_macros(state, config.defines)
    state.include_stack.append(Path(name).resolve())
    try:
        parsed = _guarded(parse_source, Source(text.replace("\r\n", "\n"), name), state)
    finally:
        state.include_stack.pop()
    return _finish(state, name, parsed, warn)


def compile_file(
    path: Path,
    config: QuickbookConfig | None = None,
    warn: Callable[[str], None] | None = None,
) -> CompileResult:
    """Compile the quickbook file at `path` and everything it includes.

    A file that cannot be read yields a failed result with a load error.

    Examples:
        result = compile_file(Path("doc/index.qbk"), QuickbookConfig(encoder="html"))
    """
    config = _prepare(config)
    state = CompilerState.from_config(config)
    seed_macros(state, config.defines)
    parsed = _guarded(parse_file, Path(path), state)
    return _finish(state, str(path), parsed, warn)
