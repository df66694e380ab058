from __future__ import annotations

import textwrap
from pathlib import Path

from quickbook import compiler
from quickbook.cli import cli

DOCUMENT = """
[article Hello
[id hello]
]

Version VERSION
"""


def _write(tmp_path: Path, filename: str, content: str) -> Path:
    path = tmp_path / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content).lstrip(), encoding="utf-8")
    return path


def _write_pyproject(base: Path, body: str) -> Path:
    path = base / "pyproject.toml"
    path.write_text(textwrap.dedent(body).lstrip(), encoding="utf-8")
    return path


def test_cli_writes_boostbook_next_to_input(cli_runner, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    source = _write(tmp_path, "index.qbk", DOCUMENT)

    result = cli_runner.invoke(cli, [str(source), "--debug", "-D", "VERSION=1.2"])

    assert result.exit_code == 0, result.output
    target = tmp_path / "index.xml"
    assert result.output == f"Generating Output File: {target}\n"
    contents = target.read_text(encoding="utf-8")
    assert contents.startswith('<?xml version="1.0" encoding="UTF-8"?>\n')
    assert "<para>Version 1.2</para>" in contents
    assert "$Date: 2000/12/20 12:00:00 $" in contents


def test_cli_html_output(cli_runner, tmp_path):
    source = _write(tmp_path, "index.qbk", DOCUMENT)

    result = cli_runner.invoke(cli, [str(source), "--html", "--debug"])

    assert result.exit_code == 0, result.output
    contents = (tmp_path / "index.html").read_text(encoding="utf-8")
    assert contents.startswith("<!DOCTYPE html>\n")
    assert "<p>Version VERSION</p>" in contents


def test_cli_output_file_option(cli_runner, tmp_path):
    source = _write(tmp_path, "index.qbk", DOCUMENT)
    target = tmp_path / "out" / "book.xml"
    target.parent.mkdir()

    result = cli_runner.invoke(cli, [str(source), "--output-file", str(target)])

    assert result.exit_code == 0, result.output
    assert target.exists()
    assert not (tmp_path / "index.xml").exists()


def test_cli_no_pretty_print(cli_runner, tmp_path):
    source = _write(tmp_path, "index.qbk", DOCUMENT)

    result = cli_runner.invoke(cli, [str(source), "--no-pretty-print"])

    assert result.exit_code == 0, result.output
    contents = (tmp_path / "index.xml").read_text(encoding="utf-8")
    assert "\n<title>Hello</title>\n<para>Version VERSION</para>\n" in contents


def test_cli_indent_option(cli_runner, tmp_path):
    source = _write(tmp_path, "index.qbk", DOCUMENT)

    result = cli_runner.invoke(cli, [str(source), "--indent", "4"])

    assert result.exit_code == 0, result.output
    assert "\n    <title>Hello</title>\n" in (tmp_path / "index.xml").read_text(encoding="utf-8")


def test_cli_include_path_option(cli_runner, tmp_path):
    source = _write(tmp_path, "doc/index.qbk", "[article A\n[id a]\n]\n[include common.qbk]\n")
    _write(tmp_path, "shared/common.qbk", "From the include path\n")

    result = cli_runner.invoke(cli, [str(source), "-I", str(tmp_path / "shared")])

    assert result.exit_code == 0, result.output
    assert "From the include path" in (tmp_path / "doc" / "index.xml").read_text(encoding="utf-8")


def test_cli_reports_errors_and_writes_nothing(cli_runner, tmp_path):
    source = _write(tmp_path, "broken.qbk", "[article A\n[id a]\n]\ntext ]\n")

    result = cli_runner.invoke(cli, [str(source)])

    assert result.exit_code == 1
    assert f"{source}:4:6: error: Syntax error near column 6." in result.output
    assert f"{source}: error: Error count: 1." in result.output
    assert not (tmp_path / "broken.xml").exists()


def test_cli_ms_errors(cli_runner, tmp_path):
    source = _write(tmp_path, "broken.qbk", "[article A\n[id a]\n]\ntext ]\n")

    result = cli_runner.invoke(cli, [str(source), "--ms-errors"])

    assert result.exit_code == 1
    assert f"{source}(4,6) : error: Syntax error near column 6." in result.output


def test_cli_warnings_do_not_fail(cli_runner, tmp_path):
    source = _write(tmp_path, "warn.qbk", "[article A\n[id a]\n]\n[endsect]\n")

    result = cli_runner.invoke(cli, [str(source)])

    assert result.exit_code == 0, result.output
    assert f"{source}:4:1: warning: Mismatched [endsect]" in result.output
    assert (tmp_path / "warn.xml").exists()


def test_cli_missing_input_file(cli_runner, tmp_path):
    missing = tmp_path / "missing.qbk"

    result = cli_runner.invoke(cli, [str(missing)])

    assert result.exit_code == 1
    assert f"{missing}:1:1: error: Unable to open file" in result.output


def test_cli_requires_filename(cli_runner):
    result = cli_runner.invoke(cli, [])

    assert result.exit_code == 1
    assert "No filename given" in result.output


def test_cli_reads_config_from_pyproject(cli_runner, tmp_path):
    _write_pyproject(
        tmp_path,
        """
        [tool.quickbook]
        encoder = "html"
        defines = ["VERSION=2.0"]
        """,
    )
    source = _write(tmp_path, "index.qbk", DOCUMENT)

    result = cli_runner.invoke(cli, [str(source), "-D", "EXTRA=1"])

    assert result.exit_code == 0, result.output
    assert "<p>Version 2.0</p>" in (tmp_path / "index.html").read_text(encoding="utf-8")


def test_cli_flag_overrides_config(cli_runner, tmp_path):
    _write_pyproject(
        tmp_path,
        """
        [tool.quickbook]
        encoder = "html"
        """,
    )
    source = _write(tmp_path, "index.qbk", DOCUMENT)

    result = cli_runner.invoke(cli, [str(source), "--boostbook"])

    assert result.exit_code == 0, result.output
    assert (tmp_path / "index.xml").exists()


def test_cli_rejects_invalid_config(cli_runner, tmp_path):
    _write_pyproject(
        tmp_path,
        """
        [tool.quickbook]
        encoder = "pdf"
        """,
    )
    source = _write(tmp_path, "index.qbk", DOCUMENT)

    result = cli_runner.invoke(cli, [str(source)])

    assert result.exit_code == 2
    assert "encoder" in result.output


def test_cli_rejects_negative_linewidth(cli_runner, tmp_path):
    source = _write(tmp_path, "index.qbk", DOCUMENT)

    result = cli_runner.invoke(cli, [str(source), "--linewidth", "-1"])

    assert result.exit_code == 2


def test_cli_reports_stack_exhaustion_without_traceback(cli_runner, tmp_path, monkeypatch):
    source = _write(tmp_path, "deep.qbk", DOCUMENT)

    def exhausted(*args, **kwargs):
        raise RecursionError("maximum recursion depth exceeded")

    monkeypatch.setattr(compiler, "parse_file", exhausted)

    result = cli_runner.invoke(cli, [str(source)])

    assert result.exit_code == 1
    assert "Error: Markup nested too deeply to compile" in result.output
    assert not isinstance(result.exception, RecursionError)


def test_cli_reports_malformed_raw_escape(cli_runner, tmp_path):
    source = _write(tmp_path, "raw.qbk", "[article Raw\n[id raw]\n]\n\nSee '''<b>''' here\n")

    result = cli_runner.invoke(cli, [str(source)])

    assert result.exit_code == 1
    assert f"{source}:5:5: error: Invalid markup in escape" in result.output
    assert not (tmp_path / "raw.xml").exists()
