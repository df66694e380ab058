"""
Compiles a quickbook document into BoostBook XML or HTML.
The output file defaults to the input path with the encoding's extension.
"""

from __future__ import annotations

from pathlib import Path

import click
from .compiler import compile_file
from .config import ConfigError, build_config
from .encoders import encoding_from_name
from .exceptions import InternalFault
from .filesystem import default_output_path, write_output

__all__ = ["cli"]


@click.command()
@click.version_option()
@click.option("--no-pretty-print", "no_pretty_print", is_flag=True, help="Disable XML pretty printing")
@click.option("--indent", type=int, help="Indent spaces")
@click.option("--linewidth", type=int, help="Line width")
@click.option("--output-file", type=click.Path(dir_okay=False), help="Output file")
@click.option("--debug", is_flag=True, help="Debug mode (fixed time stamps)")
@click.option(
    "--ms-errors",
    is_flag=True,
    help="Use Microsoft Visual Studio style error and warning format",
)
@click.option("-I", "--include-path", multiple=True, help="Include path")
@click.option("-D", "--define", multiple=True, help="Define macro (NAME=VALUE)")
@click.option("--boostbook", "encoder", flag_value="boostbook", help="Generate BoostBook (default)")
@click.option("--html", "encoder", flag_value="html", help="Generate HTML")
@click.argument("input_file", required=False, type=click.Path(dir_okay=False))
def cli(
    input_file: str | None,
    no_pretty_print: bool = False,
    indent: int | None = None,
    linewidth: int | None = None,
    output_file: str | None = None,
    debug: bool = False,
    ms_errors: bool = False,
    include_path: tuple[str, ...] = (),
    define: tuple[str, ...] = (),
    encoder: str | None = None,
):
    """
    Entry point for compiling a quickbook document.

    Args:
        input_file: Quickbook source to compile.
        no_pretty_print: Write the generated markup without reformatting it.
        indent: Spaces per nesting level when pretty printing.
        linewidth: Maximum line width when pretty printing.
        output_file: Destination; defaults to the input path with a ``.xml``
            or ``.html`` extension.
        debug: Pin time stamps to a fixed date.
        ms_errors: Format diagnostics for Visual Studio.
        include_path: Extra directories searched by ``[include]``.
        define: Macro definitions applied before parsing.
        encoder: ``"boostbook"`` or ``"html"``.

    Returns:
        None.

    Raises:
        click.BadParameter: If options or configuration values are invalid.
        click.ClickException: If no input file is given, the output cannot be
            written, or the compiler hits an internal fault.

    Examples:
        quickbook doc/index.qbk --html -I shared -D VERSION=1.2
    """
    if input_file is None:
        raise click.ClickException("No filename given")

    input_path = Path(input_file)
    try:
        config = build_config(
            input_path.parent,
            encoder=encoder,
            pretty_print=False if no_pretty_print else None,
            indent=indent,
            linewidth=linewidth,
            include_paths=include_path,
            defines=define,
            ms_errors=ms_errors or None,
            debug=debug or None,
        )
    except ConfigError as error:
        raise click.BadParameter(str(error)) from error

    if output_file is not None:
        output_path = Path(output_file)
    else:
        output_path = default_output_path(input_path, encoding_from_name(config.encoder))
    click.echo(f"Generating Output File: {output_path}")

    try:
        result = compile_file(
            input_path, config, warn=lambda message: click.echo(message, err=True)
        )
    except InternalFault as error:
        raise click.ClickException(str(error)) from error

    if not result.success or result.output is None:
        raise SystemExit(1)

    try:
        write_output(output_path, result.output)
    except IOError as error:
        raise click.ClickException(str(error)) from error


if __name__ == "__main__":
    cli()
