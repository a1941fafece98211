"""Action catalogs for the two script dialects.

Each catalog is an ordered, immutable table of ActionDefinition entries. An
entry names the keyword, the one-line syntax shown in the help text, and the
grammar: the ordered fields the parser extracts from the rest of the line.
"""

import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from search_script.backend.messages import TermCase


class Action(Enum):
    EXIT = auto()
    OPEN_CONNECTION = auto()
    CLOSE_CONNECTION = auto()
    INITIALIZE_SERVER = auto()
    SHUTDOWN_SERVER = auto()
    LANGUAGE = auto()
    OPEN_INDEX = auto()
    CLOSE_INDEX = auto()
    SEARCH = auto()
    SEARCH_LIST = auto()
    SEARCH_OFFSETS = auto()
    SEARCH_REPORT = auto()
    RETRIEVE_DOCUMENT = auto()
    RETRIEVE_DOCUMENT_BYTES = auto()
    SAVE_DOCUMENT = auto()
    ADD_POSITIVE_FEEDBACK = auto()
    ADD_POSITIVE_FEEDBACK_TEXT = auto()
    CLEAR_POSITIVE_FEEDBACK = auto()
    ADD_NEGATIVE_FEEDBACK = auto()
    ADD_NEGATIVE_FEEDBACK_TEXT = auto()
    CLEAR_NEGATIVE_FEEDBACK = auto()
    GET_SERVER_INFO = auto()
    GET_SERVER_INDEX_INFO = auto()
    GET_INDEX_INFO = auto()
    GET_INDEX_FIELD_INFO = auto()
    GET_INDEX_TERM_INFO = auto()
    GET_DOCUMENT_INFO = auto()
    GET_INDEX_NAME = auto()
    SLEEP = auto()
    SKIP = auto()
    RESUME = auto()


class SearchReportMode(Enum):
    NONE = "none"
    RAW = "raw"
    FORMATTED = "formatted"

    @classmethod
    def from_token(cls, token: str) -> "SearchReportMode":
        try:
            return cls(token.lower())
        except ValueError:
            return cls.NONE


class FieldKind(Enum):
    WORD = "word"  # one whitespace-delimited token
    UNSIGNED = "unsigned"  # non-negative integer token
    INTEGER = "integer"  # signed integer token
    KEY = "key"  # bracketed token, embedded whitespace allowed
    NAME_LIST = "name_list"  # comma/space separated remainder
    TEXT = "text"  # free-text remainder, verbatim
    SEARCH_REPORT = "search_report"  # raw|formatted, anything else is none
    TERM_MATCH = "term_match"  # TermMatch token, unknown tolerated
    TERM_CASE = "term_case"  # TermCase token, unknown tolerated
    TERM_AND_FIELD = "term_and_field"  # up to two trailing tokens, inferred


@dataclass(frozen=True)
class Field:
    name: str
    kind: FieldKind
    optional: bool = False
    default: Any = None  # constant, or a callable of the fields parsed so far

    def default_for(self, parsed: Mapping[str, Any]) -> Any:
        if callable(self.default):
            return self.default(parsed)
        return self.default


@dataclass(frozen=True)
class ActionDefinition:
    action: Action
    keyword: str
    syntax: str
    fields: tuple[Field, ...] = ()

    @property
    def is_remainder(self) -> bool:
        """True when the grammar takes the rest of the line as a whole."""
        return len(self.fields) == 1 and self.fields[0].kind in (FieldKind.TEXT, FieldKind.NAME_LIST)


class ActionCatalog:
    """Ordered keyword table, looked up case-insensitively."""

    name: str
    definitions: tuple[ActionDefinition, ...]

    def __init__(self, name: str, definitions: Sequence[ActionDefinition]):
        self.name = name
        self.definitions = tuple(definitions)
        self._by_keyword = {definition.keyword.lower(): definition for definition in self.definitions}
        self._by_action = {definition.action: definition for definition in self.definitions}

    def lookup(self, keyword: str) -> ActionDefinition | None:
        return self._by_keyword.get(keyword.lower())

    def get(self, action: Action) -> ActionDefinition:
        return self._by_action[action]

    def __contains__(self, action: Action) -> bool:
        return action in self._by_action

    def __iter__(self):
        return iter(self.definitions)

    def __len__(self) -> int:
        return len(self.definitions)

    def syntax_lines(self) -> list[str]:
        return [definition.syntax for definition in self.definitions]


_INDEX_NAME = Field("index_name", FieldKind.WORD)
_DOCUMENT_KEY = Field("document_key", FieldKind.KEY)
_ITEM_NAME = Field("item_name", FieldKind.WORD)
_MIME_TYPE = Field("mime_type", FieldKind.WORD)
_CHUNK_START = Field("start", FieldKind.UNSIGNED)
_CHUNK_END = Field("end", FieldKind.UNSIGNED)
_SEARCH_TEXT = Field("search_text", FieldKind.TEXT)
_FEEDBACK_TEXT = Field("feedback_text", FieldKind.TEXT)
_TERM_INFO = (
    Field("term_match", FieldKind.TERM_MATCH),
    Field("term_case", FieldKind.TERM_CASE, optional=True, default=TermCase.UNKNOWN),
    Field("term_and_field", FieldKind.TERM_AND_FIELD, optional=True),
)

_TERM_INFO_SYNTAX = (
    "regular|stop|wildcard|soundex|metaphone|phonix|typo{A} sensitive|insensitive{A} (term{A}) (fieldName{A})"
)


def _shared_head() -> list[ActionDefinition]:
    return [
        ActionDefinition(Action.EXIT, "exit", "exit"),
    ]


def _shared_search() -> list[ActionDefinition]:
    return [
        ActionDefinition(Action.LANGUAGE, "language", "language languageCode{A}", (Field("language_code", FieldKind.WORD),)),
        ActionDefinition(
            Action.OPEN_INDEX,
            "openIndex",
            "openIndex indexName{A}[,...]",
            (Field("index_names", FieldKind.NAME_LIST),),
        ),
        ActionDefinition(Action.CLOSE_INDEX, "closeIndex", "closeIndex"),
        ActionDefinition(Action.SEARCH, "search", "search searchText{A}", (_SEARCH_TEXT,)),
        ActionDefinition(Action.SEARCH_LIST, "searchList", "searchList searchText{A}", (_SEARCH_TEXT,)),
        ActionDefinition(
            Action.SEARCH_OFFSETS,
            "searchOffsets",
            "searchOffsets start{N} end{N}",
            (Field("start", FieldKind.UNSIGNED), Field("end", FieldKind.UNSIGNED)),
        ),
        ActionDefinition(
            Action.SEARCH_REPORT,
            "searchReport",
            "searchReport raw/formatted{A}",
            (Field("mode", FieldKind.SEARCH_REPORT),),
        ),
    ]


def _document_actions(head: tuple[Field, ...], head_syntax: str) -> list[ActionDefinition]:
    """Document and feedback actions, optionally prefixed by an index name."""
    item = head + (_DOCUMENT_KEY, _ITEM_NAME, _MIME_TYPE)
    item_syntax = f"{head_syntax}[documentKey{{A}}] itemName{{A}} mimeType{{A}}"
    return [
        ActionDefinition(Action.RETRIEVE_DOCUMENT, "retrieveDocument", f"retrieveDocument {item_syntax}", item),
        ActionDefinition(
            Action.RETRIEVE_DOCUMENT_BYTES,
            "retrieveDocumentBytes",
            f"retrieveDocumentBytes {item_syntax} start{{N}} end{{N}}",
            item + (_CHUNK_START, _CHUNK_END),
        ),
        ActionDefinition(
            Action.SAVE_DOCUMENT,
            "saveDocument",
            f"saveDocument {item_syntax} filename{{A}}",
            item + (Field("filename", FieldKind.WORD),),
        ),
        ActionDefinition(Action.ADD_POSITIVE_FEEDBACK, "addPositiveFeedback", f"addPositiveFeedback {item_syntax}", item),
        ActionDefinition(
            Action.ADD_POSITIVE_FEEDBACK_TEXT,
            "addPositiveFeedbackText",
            "addPositiveFeedbackText feedbackText{A}",
            (_FEEDBACK_TEXT,),
        ),
        ActionDefinition(Action.CLEAR_POSITIVE_FEEDBACK, "clearPositiveFeedback", "clearPositiveFeedback"),
        ActionDefinition(Action.ADD_NEGATIVE_FEEDBACK, "addNegativeFeedback", f"addNegativeFeedback {item_syntax}", item),
        ActionDefinition(
            Action.ADD_NEGATIVE_FEEDBACK_TEXT,
            "addNegativeFeedbackText",
            "addNegativeFeedbackText feedbackText{A}",
            (_FEEDBACK_TEXT,),
        ),
        ActionDefinition(Action.CLEAR_NEGATIVE_FEEDBACK, "clearNegativeFeedback", "clearNegativeFeedback"),
        ActionDefinition(Action.GET_SERVER_INFO, "getServerInfo", "getServerInfo"),
        ActionDefinition(Action.GET_SERVER_INDEX_INFO, "getServerIndexInfo", "getServerIndexInfo"),
    ]


def _shared_tail() -> list[ActionDefinition]:
    return [
        ActionDefinition(Action.SLEEP, "sleep", "sleep seconds{N}", (Field("seconds", FieldKind.INTEGER),)),
        ActionDefinition(Action.SKIP, "skip", "skip"),
        ActionDefinition(Action.RESUME, "resume", "resume"),
    ]


def _build_remote_catalog() -> ActionCatalog:
    index_head = (_INDEX_NAME,)
    definitions = _shared_head()
    definitions.append(
        ActionDefinition(
            Action.OPEN_CONNECTION,
            "openConnection",
            "openConnection protocol{A} hostName{A} hostPort{N}",
            (
                Field("protocol", FieldKind.WORD),
                Field("host", FieldKind.WORD),
                Field("port", FieldKind.UNSIGNED),
            ),
        )
    )
    definitions.append(ActionDefinition(Action.CLOSE_CONNECTION, "closeConnection", "closeConnection"))
    definitions.extend(_shared_search())
    definitions.extend(_document_actions(index_head, "indexName{A} "))
    definitions.extend(
        [
            ActionDefinition(Action.GET_INDEX_INFO, "getIndexInfo", "getIndexInfo indexName{A}", index_head),
            ActionDefinition(
                Action.GET_INDEX_FIELD_INFO, "getIndexFieldInfo", "getIndexFieldInfo indexName{A}", index_head
            ),
            ActionDefinition(
                Action.GET_INDEX_TERM_INFO,
                "getIndexTermInfo",
                f"getIndexTermInfo indexName{{A}} {_TERM_INFO_SYNTAX}",
                index_head + _TERM_INFO,
            ),
            ActionDefinition(
                Action.GET_DOCUMENT_INFO,
                "getDocumentInfo",
                "getDocumentInfo indexName{A} [documentKey{A}]",
                index_head + (_DOCUMENT_KEY,),
            ),
        ]
    )
    definitions.extend(_shared_tail())
    return ActionCatalog("remote", definitions)


def _build_local_catalog() -> ActionCatalog:
    definitions = _shared_head()
    definitions.append(
        ActionDefinition(
            Action.INITIALIZE_SERVER,
            "initializeServer",
            "initializeServer indexDirectoryPath{A} (configurationDirectoryPath{A}) (temporaryDirectoryPath{A})",
            (
                Field("index_directory", FieldKind.WORD),
                Field(
                    "configuration_directory",
                    FieldKind.WORD,
                    optional=True,
                    default=lambda parsed: parsed["index_directory"],
                ),
                Field(
                    "temporary_directory",
                    FieldKind.WORD,
                    optional=True,
                    default=lambda parsed: tempfile.gettempdir(),
                ),
            ),
        )
    )
    definitions.append(ActionDefinition(Action.SHUTDOWN_SERVER, "shutdownServer", "shutdownServer"))
    definitions.extend(_shared_search())
    definitions.extend(_document_actions((), ""))
    definitions.extend(
        [
            ActionDefinition(Action.GET_INDEX_INFO, "getIndexInfo", "getIndexInfo"),
            ActionDefinition(Action.GET_INDEX_FIELD_INFO, "getIndexFieldInfo", "getIndexFieldInfo"),
            ActionDefinition(
                Action.GET_INDEX_TERM_INFO,
                "getIndexTermInfo",
                f"getIndexTermInfo {_TERM_INFO_SYNTAX}",
                _TERM_INFO,
            ),
            ActionDefinition(
                Action.GET_DOCUMENT_INFO,
                "getDocumentInfo",
                "getDocumentInfo [documentKey{A}]",
                (_DOCUMENT_KEY,),
            ),
            ActionDefinition(Action.GET_INDEX_NAME, "getIndexName", "getIndexName"),
        ]
    )
    definitions.extend(_shared_tail())
    return ActionCatalog("local", definitions)


REMOTE_CATALOG = _build_remote_catalog()
LOCAL_CATALOG = _build_local_catalog()
