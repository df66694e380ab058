from __future__ import annotations

import pytest

from quickbook.actions import Actions, split_template_arguments
from quickbook.compiler import parse_file
from quickbook.config import DEBUG_TIME, QuickbookConfig
from quickbook.cursor import Source, SourcePosition
from quickbook.exceptions import LoadError
from quickbook.grammar import QuickbookGrammar
from quickbook.models import DocInfo, EndElement, ErrorKind, Raw, Severity, StartElement, Text
from quickbook.state import MAX_PHRASE_DEPTH, CompilerState, Template


def _actions(encoder: str = "boostbook") -> Actions:
    config = QuickbookConfig(encoder=encoder, current_time=DEBUG_TIME)
    return Actions(CompilerState.from_config(config), parse_file)


POSITION = SourcePosition("doc.qbk", 0, 1, 1)


@pytest.mark.parametrize(
    ("raw", "count", "expected"),
    [
        ("", 0, []),
        ("  ", 0, []),
        ("x", 0, None),
        ("one", 1, ["one"]),
        ("  spaced out  ", 1, ["spaced out"]),
        ("a..b", 2, ["a", "b"]),
        ("a .. b c", 2, ["a", "b c"]),
        ("a b", 2, ["a", "b"]),
        ("a b c", 2, ["a", "b c"]),
        ("a", 2, None),
        ("a..b..c", 2, None),
        ("[x..y]..z", 2, ["[x..y]", "z"]),
        ("a\\..b", 1, ["a\\..b"]),
    ],
)
def test_split_template_arguments(raw, count, expected):
    assert split_template_arguments(raw, count) == expected


def test_paragraph_start_is_deferred_until_content():
    actions = _actions()

    actions.begin_paragraph()
    assert actions.state.events == []

    actions.text("")
    assert actions.state.events == []

    actions.text("Hello")
    actions.end_paragraph()
    assert actions.state.events == [StartElement("para"), Text("Hello"), EndElement("para")]


def test_empty_paragraph_emits_nothing():
    actions = _actions()

    actions.begin_paragraph()
    actions.end_paragraph()

    assert actions.state.events == []
    assert actions.state.pending_paragraph is False


def test_endsect_at_top_level_warns_and_keeps_level():
    actions = _actions()

    actions.end_section(POSITION)

    state = actions.state
    assert state.section_level == 0
    assert state.warning_count == 1
    assert state.error_count == 0
    assert state.diagnostics[0].severity is Severity.WARNING
    assert state.diagnostics[0].message == "Mismatched [endsect]"


def test_sections_track_level_and_ids():
    actions = _actions()
    actions.state.doc_id = "guide"

    actions.begin_section(None, "Part One")
    actions.end_section_title()
    actions.begin_section("details", "Ignored title")
    actions.end_section_title()

    assert actions.state.section_level == 2
    assert actions.state.section_ids == ["guide.part_one", "guide.part_one.details"]

    actions.end_section(POSITION)
    assert actions.state.section_ids == ["guide.part_one"]


def test_heading_level_follows_section_depth():
    actions = _actions()
    actions.state.doc_id = "d"
    actions.begin_section(None, "Outer")
    actions.end_section_title()

    actions.begin_heading(None, "Inner Heading")

    assert actions.state.events[-1] == StartElement(
        "heading", (("level", "2"), ("id", "d.outer.inner_heading"))
    )


def test_macro_redefinition_warns():
    actions = _actions()

    actions.define_macro(POSITION, "NAME", "first")
    actions.define_macro(POSITION, "NAME", "second")

    assert actions.state.macros.lookup("NAME") == "second"
    assert actions.state.warning_count == 1
    assert actions.state.diagnostics[0].message == "Macro 'NAME' redefined"


def test_template_redefinition_warns_only_at_top_scope():
    actions = _actions()
    templates = actions.state.templates

    actions.define_template(POSITION, "t", (), "one", False)
    templates.push_scope({})
    actions.define_template(POSITION, "t", (), "two", False)
    templates.pop_scope()
    actions.define_template(POSITION, "t", (), "three", False)

    assert actions.state.warning_count == 1
    assert templates.lookup("t").body == "three"


def test_error_counts_and_records_kind():
    actions = _actions()

    actions.syntax_error(SourcePosition("doc.qbk", 40, 3, 5))

    state = actions.state
    assert state.error_count == 1
    diagnostic = state.diagnostics[0]
    assert diagnostic.kind is ErrorKind.SYNTAX
    assert diagnostic.message == "Syntax error near column 5."
    assert diagnostic.file == "doc.qbk"


def test_checkpoint_and_rollback_undo_actions():
    actions = _actions()
    actions.text("kept")
    checkpoint = actions.checkpoint()

    actions.start_element("bold")
    actions.define_macro(POSITION, "M", "x")
    actions.error(POSITION, "discarded")
    actions.rollback(checkpoint)

    state = actions.state
    assert state.events == [Text("kept")]
    assert not actions.has_macro("M")
    assert state.error_count == 0
    assert state.diagnostics == []


def test_process_doc_info_emits_header():
    actions = _actions()
    grammar = QuickbookGrammar(actions)
    info = DocInfo(doc_type="article", title="The [*Title]", id="art", purpose="Testing")

    assert actions.process_doc_info(grammar, info, POSITION)

    events = actions.state.events
    assert actions.state.doc_id == "art"
    assert events[0].name == "document"
    assert ("id", "art") in events[0].attributes
    assert events[1:6] == [
        StartElement("title"),
        Text("The "),
        StartElement("bold"),
        Text("Title"),
        EndElement("bold"),
    ]
    assert StartElement("purpose") in events


def test_process_doc_info_reports_missing_id():
    actions = _actions()
    grammar = QuickbookGrammar(actions)

    assert not actions.process_doc_info(grammar, DocInfo(doc_type="article", title="T"), POSITION)

    assert actions.state.error_count == 1
    assert actions.state.diagnostics[0].kind is ErrorKind.METADATA
    assert actions.state.events == []


def test_process_doc_info_derives_html_id():
    actions = _actions("html")
    grammar = QuickbookGrammar(actions)

    assert actions.process_doc_info(grammar, DocInfo(doc_type="article", title="My Doc"), POSITION)
    assert actions.state.doc_id == "my_doc"


def test_ignored_doc_info_emits_nothing():
    actions = _actions()
    grammar = QuickbookGrammar(actions)
    info = DocInfo(ignore=True)

    assert actions.process_doc_info(grammar, info, POSITION)
    actions.process_doc_info_post(info)

    assert actions.state.events == []


def test_doc_info_post_closes_open_sections():
    actions = _actions()
    grammar = QuickbookGrammar(actions)
    info = DocInfo(doc_type="article", title="T", id="t")
    actions.process_doc_info(grammar, info, POSITION)
    actions.begin_section(None, "Open")
    actions.end_section_title()

    actions.process_doc_info_post(info)
    end = SourcePosition("doc.qbk", 40, 5, 1)
    actions.end_of_unit(end)

    assert actions.state.events[-2:] == [EndElement("section"), EndElement("document")]
    assert actions.state.warning_count == 1
    assert actions.state.diagnostics[-1].message == "1 missing [endsect]"
    assert actions.state.diagnostics[-1].position == end


def test_self_referencing_macro_reports_infinite_loop():
    actions = _actions()
    grammar = QuickbookGrammar(actions)
    actions.define_macro(POSITION, "ME", "ME")

    actions.expand_macro(grammar, POSITION, "ME")

    state = actions.state
    assert state.error_count == 1
    assert state.diagnostics[-1].message == "Infinite loop detected expanding macro 'ME'"
    assert state.expansion_depth == 0


def test_invoke_template_binds_arguments():
    actions = _actions()
    grammar = QuickbookGrammar(actions)
    template = Template("link", ("target", "label"), "<[label]|[target]>")

    actions.invoke_template(grammar, POSITION, template, "home..Go home")

    assert "".join(event.content for event in actions.state.events) == "<Go home|home>"
    assert actions.state.templates.depth == 1


def test_invoke_template_with_wrong_argument_count():
    actions = _actions()
    grammar = QuickbookGrammar(actions)
    template = Template("one", ("a",), "[a]")

    actions.invoke_template(grammar, POSITION, template, "x..y")

    assert actions.state.error_count == 1
    assert actions.state.diagnostics[0].message == (
        "Invalid number of arguments passed to template 'one'"
    )


def test_failed_expansion_rolls_back_output():
    actions = _actions()
    grammar = QuickbookGrammar(actions)
    actions.define_macro(POSITION, "BROKEN", "text ] stray")

    actions.expand_macro(grammar, POSITION, "BROKEN")

    assert actions.state.events == []
    assert actions.state.diagnostics[-1].message == "Expanding macro 'BROKEN' failed"


def test_include_of_missing_file_is_a_load_error(tmp_path):
    actions = _actions()
    actions.state.include_stack.append(tmp_path / "index.qbk")

    actions.include(POSITION, "missing.qbk", None)

    state = actions.state
    assert state.error_count == 1
    assert state.diagnostics[0].kind is ErrorKind.LOAD
    assert "missing.qbk" in state.diagnostics[0].message


def test_include_of_file_on_the_stack_is_recursive(tmp_path):
    actions = _actions()
    including = (tmp_path / "index.qbk").resolve()
    including.write_text("[article T\n[id t]\n]\n", encoding="utf-8")
    actions.state.include_stack.append(including)

    actions.include(POSITION, "index.qbk", None)

    assert actions.state.error_count == 1
    assert actions.state.diagnostics[0].message == "Recursive include of index.qbk"


def test_table_helpers():
    actions = _actions()
    actions.state.doc_id = "d"

    assert actions.begin_table(None, "", False) == "informaltable"
    assert actions.state.events[-1] == StartElement("informaltable")
    assert actions.begin_table(None, "Results", True) == "table"
    assert actions.state.events[-1] == StartElement("table", (("id", "d.results"),))

    actions.check_row(POSITION, 2, 2)
    actions.check_varlist_entry(POSITION, 2)
    assert actions.state.error_count == 0
    actions.check_row(POSITION, 1, 2)
    actions.check_varlist_entry(POSITION, 3)
    assert actions.state.error_count == 2


def test_image_alt_text_comes_from_the_file_name():
    actions = _actions()

    actions.image("images/big-red_dog.png")

    assert actions.state.events[0] == StartElement(
        "image", (("fileref", "images/big-red_dog.png"), ("alt", "big red dog"))
    )


def test_expanded_field_keeps_origin_position():
    actions = _actions()
    grammar = QuickbookGrammar(actions)
    origin = SourcePosition("doc.qbk", 10, 2, 3)

    actions._expand_field(grammar, "plain ] text", origin)

    assert actions.state.events == [Text("plain ] text")]
    assert Source("x", "doc.qbk", origin).position(0).line == 2


def test_raw_escape_with_balanced_markup_is_passed_through():
    actions = _actions()

    actions.raw("<sbr/>", POSITION)

    assert actions.state.events == [Raw("<sbr/>")]
    assert actions.state.error_count == 0


def test_raw_escape_with_unbalanced_markup_becomes_text():
    actions = _actions()

    actions.raw("<b>", POSITION)

    assert actions.state.events == [Text("<b>")]
    assert actions.state.error_count == 1
    assert actions.state.diagnostics[0].position == POSITION
    assert actions.state.diagnostics[0].message == "Invalid markup in escape: element <b> is never closed"


def test_top_level_load_failure_is_reported_at_the_start_of_the_file():
    actions = _actions()

    actions.load_failed(LoadError("gone.qbk", "No such file or directory"), None)

    diagnostic = actions.state.diagnostics[0]
    assert diagnostic.file == "gone.qbk"
    assert (diagnostic.position.line, diagnostic.position.column) == (1, 1)


def test_phrase_depth_is_limited():
    actions = _actions()
    for _ in range(MAX_PHRASE_DEPTH):
        assert actions.enter_phrase(POSITION)

    assert not actions.enter_phrase(POSITION)
    assert actions.state.error_count == 1

    actions.leave_phrase()
    assert actions.enter_phrase(POSITION)


def test_include_id_takes_over_open_section_ids():
    actions = _actions()
    actions.state.doc_id = "doc"
    actions.begin_section(None, "Outer")
    actions.end_section_title()
    actions.state.doc_id, actions.state.id_scope = "alt", 1

    actions.begin_section(None, "Inner")

    assert actions.state.section_ids == ["doc.outer", "alt.inner"]
