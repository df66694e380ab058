from __future__ import annotations

import pytest

from quickbook.exceptions import PostProcessError
from quickbook.post_process import find_markup_error, post_process, tokenize


def test_tokenize_splits_markup():
    assert tokenize('<?xml version="1.0"?><para a="1">x<sbr/></para>') == [
        ("pi", '<?xml version="1.0"?>', ""),
        ("start", '<para a="1">', "para"),
        ("text", "x", ""),
        ("empty", "<sbr/>", "sbr"),
        ("end", "</para>", "para"),
    ]


def test_block_elements_are_indented():
    assert post_process("<section><para>Hello</para></section>") == (
        "<section>\n  <para>Hello</para>\n</section>\n"
    )


def test_indent_setting():
    assert post_process("<section><para>Hello</para></section>", indent=4) == (
        "<section>\n    <para>Hello</para>\n</section>\n"
    )


def test_long_inline_content_is_wrapped():
    output = post_process("<para>one two three four five six</para>", linewidth=20)

    assert output == "<para>\n  one two three four\n  five six\n</para>\n"


def test_inline_elements_are_not_split():
    output = post_process(
        '<para>alpha <emphasis role="bold">beta gamma</emphasis> delta</para>', linewidth=10
    )

    assert '<emphasis role="bold">beta' in output
    assert "gamma</emphasis>" in output
    assert all(line.startswith(("<para>", "</para>", "  ")) for line in output.splitlines())


def test_preformatted_content_is_untouched():
    markup = "<section><programlisting>  int x;\n\n    return x;</programlisting></section>"

    output = post_process(markup)

    assert "  <programlisting>  int x;\n\n    return x;</programlisting>\n" in output


def test_inline_code_keeps_its_spacing():
    output = post_process("<para>use <code>a  =  b</code> here</para>")

    assert output == "<para>use <code>a  =  b</code> here</para>\n"


def test_collapses_whitespace_between_words():
    assert post_process("<para>  a \n\n b  </para>") == "<para>a b</para>\n"


def test_defaults_replace_invalid_settings():
    markup = "<section><para>x</para></section>"

    assert post_process(markup, indent=-1, linewidth=0) == post_process(markup)


def test_prolog_stays_on_its_own_lines():
    markup = '<?xml version="1.0" encoding="UTF-8"?>\n<!DOCTYPE article PUBLIC "x" "y">\n<article id="a">\n<title>T</title>\n</article>\n'

    assert post_process(markup) == (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<!DOCTYPE article PUBLIC "x" "y">\n'
        '<article id="a">\n'
        "  <title>T</title>\n"
        "</article>\n"
    )


def test_empty_markup():
    assert post_process("") == ""


def test_formatting_is_idempotent():
    markup = (
        '<article id="a"><title>Title</title><section id="a.s"><title>S</title>'
        "<para>Some <emphasis>long</emphasis> paragraph text that needs wrapping because it "
        "goes on and on well past the configured width</para><itemizedlist><listitem>"
        "<simpara>item</simpara></listitem></itemizedlist></section></article>"
    )

    once = post_process(markup, indent=2, linewidth=40)

    assert post_process(once, indent=2, linewidth=40) == once


@pytest.mark.parametrize("markup", ["<para>", "<para></section>", "</para>", "a < b"])
def test_malformed_markup_raises(markup):
    with pytest.raises(PostProcessError):
        post_process(markup)


@pytest.mark.parametrize(
    ("markup", "problem"),
    [
        ("", None),
        ("plain &amp; simple", None),
        ('<b>x</b><sbr/><?pi x?>', None),
        ("<b>", "element <b> is never closed"),
        ("</b>", "end tag </b> closes nothing"),
        ("<b><i>x</b></i>", "end tag </b> closes i"),
        ("a < b", "unrecognized markup"),
    ],
)
def test_find_markup_error(markup, problem):
    assert find_markup_error(markup) == problem
