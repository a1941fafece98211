import pytest

from search_script.backend.messages import TermCase, TermMatch
from search_script.script.actions import LOCAL_CATALOG, REMOTE_CATALOG, Action, SearchReportMode
from search_script.script.grammar import (
    MAX_SLEEP_SECONDS,
    ParseError,
    ParseErrorKind,
    lookup_action,
    parse_line,
    split_keyword,
    tokenize,
)


def parse(line: str, catalog=REMOTE_CATALOG):
    return parse_line(catalog, line, 1)


def test_blank_line_is_nothing():
    assert parse("") is None
    assert parse("   ") is None


def test_unknown_keyword():
    with pytest.raises(ParseError) as excinfo:
        parse("frobnicate now")
    assert excinfo.value.kind == ParseErrorKind.UNKNOWN_ACTION
    assert excinfo.value.detail == "frobnicate"


def test_keyword_lookup_ignores_case():
    assert lookup_action(REMOTE_CATALOG, "OPENINDEX notes", 3).action == Action.OPEN_INDEX


def test_split_keyword_keeps_the_remainder_verbatim():
    assert split_keyword("search  two   spaces ") == ("search", "two   spaces")
    assert split_keyword("exit") == ("exit", None)


def test_open_connection_fields():
    invocation = parse("openConnection tcp localhost 9400")
    assert invocation.fields == {"protocol": "tcp", "host": "localhost", "port": 9400}


def test_port_must_be_a_number():
    with pytest.raises(ParseError) as excinfo:
        parse("openConnection tcp localhost http")
    assert excinfo.value.kind == ParseErrorKind.MALFORMED_FIELD


def test_too_few_arguments():
    with pytest.raises(ParseError) as excinfo:
        parse("openConnection tcp")
    assert excinfo.value.kind == ParseErrorKind.ARITY_MISMATCH


def test_too_many_arguments():
    with pytest.raises(ParseError) as excinfo:
        parse("searchOffsets 1 2 3")
    assert excinfo.value.kind == ParseErrorKind.ARITY_MISMATCH


def test_search_text_is_the_rest_of_the_line():
    invocation = parse("search  quick   brown fox")
    assert invocation.fields == {"search_text": "quick   brown fox"}


def test_search_without_text():
    assert parse("search").fields == {"search_text": None}


def test_open_index_name_list():
    invocation = parse("openIndex notes, mail  archive")
    assert invocation.fields == {"index_names": ["notes", "mail", "archive"]}


def test_open_index_needs_a_name():
    with pytest.raises(ParseError) as excinfo:
        parse("openIndex")
    assert excinfo.value.kind == ParseErrorKind.ARITY_MISMATCH


def test_bracketed_document_key_keeps_spaces():
    invocation = parse("retrieveDocument notes [My Doc Key] document text/plain")
    assert invocation.fields == {
        "index_name": "notes",
        "document_key": "My Doc Key",
        "item_name": "document",
        "mime_type": "text/plain",
    }


def test_document_key_must_be_bracketed():
    with pytest.raises(ParseError) as excinfo:
        parse("retrieveDocument notes key document text/plain")
    assert excinfo.value.kind == ParseErrorKind.MALFORMED_FIELD


def test_unterminated_document_key():
    with pytest.raises(ParseError) as excinfo:
        parse("retrieveDocument notes [key document text/plain")
    assert excinfo.value.kind == ParseErrorKind.MALFORMED_FIELD


def test_retrieve_bytes_range():
    invocation = parse("retrieveDocumentBytes [gamma.txt] document text/plain 0 3", LOCAL_CATALOG)
    assert invocation.fields["start"] == 0
    assert invocation.fields["end"] == 3


def test_inverted_offsets():
    with pytest.raises(ParseError) as excinfo:
        parse("searchOffsets 10 5")
    assert excinfo.value.kind == ParseErrorKind.INVERTED_RANGE


def test_search_report_mode():
    assert parse("searchReport Formatted").fields["mode"] == SearchReportMode.FORMATTED
    assert parse("searchReport whatever").fields["mode"] == SearchReportMode.NONE


def test_sleep_takes_a_signed_number():
    assert parse("sleep -1").fields == {"seconds": -1}


def test_sleep_is_bounded():
    assert parse(f"sleep {MAX_SLEEP_SECONDS}").fields == {"seconds": MAX_SLEEP_SECONDS}
    with pytest.raises(ParseError) as excinfo:
        parse("sleep 99999999999999999")
    assert excinfo.value.kind == ParseErrorKind.MALFORMED_FIELD


def test_initialize_server_defaults():
    invocation = parse("initializeServer /srv/index", LOCAL_CATALOG)
    assert invocation.fields["configuration_directory"] == "/srv/index"
    assert invocation.fields["temporary_directory"]


class TestTermInfo:
    def test_pattern_match_takes_a_lone_term(self):
        invocation = parse("getIndexTermInfo notes wildcard insensitive fo*")
        assert invocation.fields["term_match"] == TermMatch.WILDCARD
        assert invocation.fields["term_case"] == TermCase.INSENSITIVE
        assert invocation.fields["term"] == "fo*"
        assert invocation.fields["field_name"] is None

    def test_regular_match_takes_a_lone_field_name(self):
        invocation = parse("getIndexTermInfo notes regular sensitive title")
        assert invocation.fields["term"] is None
        assert invocation.fields["field_name"] == "title"

    def test_term_and_field(self):
        invocation = parse("getIndexTermInfo typo insensitive robt text", LOCAL_CATALOG)
        assert invocation.fields["term"] == "robt"
        assert invocation.fields["field_name"] == "text"

    def test_case_is_optional(self):
        invocation = parse("getIndexTermInfo stop", LOCAL_CATALOG)
        assert invocation.fields["term_match"] == TermMatch.STOP
        assert invocation.fields["term_case"] == TermCase.UNKNOWN

    def test_unknown_match_type_is_tolerated(self):
        invocation = parse("getIndexTermInfo sounds-like", LOCAL_CATALOG)
        assert invocation.fields["term_match"] == TermMatch.UNKNOWN


def test_describe_renders_fields():
    assert parse("openConnection tcp localhost 9400").describe() == "'openConnection' 'tcp' 'localhost' 9400."
    assert parse("search").describe() == "'search' ''."
    assert parse("openIndex a b").describe() == "'openIndex' 'a,b'."
    assert parse("searchReport raw").describe() == "'searchReport' 'raw'."


def test_tokenize():
    tokens = tokenize("notes [a key]  item")
    assert [(token.text, token.bracketed) for token in tokens] == [
        ("notes", False),
        ("a key", True),
        ("item", False),
    ]
    with pytest.raises(ValueError):
        tokenize("[ ]")
