import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import IntEnum

from pydantic import Base64Bytes

# Search reports travel as an ordinary result whose first item has this name and type
SEARCH_REPORT_ITEM_NAME = "document"
SEARCH_REPORT_MIME_TYPE = "application/x-mps-search-report"

# Unbounded weights are reported as the largest finite double
WEIGHT_MAXIMUM = sys.float_info.max
WEIGHT_MINIMUM = -sys.float_info.max


class SortType(IntEnum):
    UNKNOWN = 0
    DOUBLE_ASC = 1
    DOUBLE_DESC = 2
    FLOAT_ASC = 3
    FLOAT_DESC = 4
    UINT_ASC = 5
    UINT_DESC = 6
    ULONG_ASC = 7
    ULONG_DESC = 8
    UCHAR_ASC = 9
    UCHAR_DESC = 10
    NO_SORT = 11


class TermMatch(IntEnum):
    UNKNOWN = 0
    REGULAR = 1
    STOP = 2
    WILDCARD = 3
    SOUNDEX = 4
    METAPHONE = 5
    PHONIX = 6
    TYPO = 7
    REGEX = 8

    @classmethod
    def from_token(cls, token: str) -> "TermMatch":
        """Resolve a script token, anything unrecognized is UNKNOWN."""
        try:
            return cls[token.upper()]
        except KeyError:
            return cls.UNKNOWN

    @property
    def takes_pattern(self) -> bool:
        return self in (
            TermMatch.WILDCARD,
            TermMatch.SOUNDEX,
            TermMatch.METAPHONE,
            TermMatch.PHONIX,
            TermMatch.TYPO,
        )


class TermCase(IntEnum):
    UNKNOWN = 0
    SENSITIVE = 1
    INSENSITIVE = 2

    @classmethod
    def from_token(cls, token: str | None) -> "TermCase":
        if token is None:
            return cls.UNKNOWN
        try:
            return cls[token.upper()]
        except KeyError:
            return cls.UNKNOWN


class TermType(IntEnum):
    UNKNOWN = 0
    REGULAR = 1
    STOP = 2
    FREQUENT = 3


class ChunkType(IntEnum):
    UNKNOWN = 0
    DOCUMENT = 1
    BYTE = 2


class FieldType(IntEnum):
    UNKNOWN = 0
    TEXT = 1
    NUMERIC = 2
    DATE = 3


@dataclass
class DocumentItem:
    item_name: str
    mime_type: str
    length: int
    url: str | None = None
    data: Base64Bytes | None = None  # inline payload, when the backend sends one


@dataclass
class SearchResult:
    index_name: str
    document_key: str
    title: str
    sort_key: float | int | str | None = None
    language_code: str | None = None
    rank: int = 0
    term_count: int = 0
    ansi_date: int = 0  # YYYYMMDDHHMMSS
    items: list[DocumentItem] = field(default_factory=list)

    @property
    def is_search_report(self) -> bool:
        if not self.items:
            return False
        first = self.items[0]
        return first.item_name == SEARCH_REPORT_ITEM_NAME and first.mime_type == SEARCH_REPORT_MIME_TYPE


@dataclass
class SearchResponse:
    results: Sequence[SearchResult]
    total_results: int
    start_index: int
    end_index: int
    sort_type: SortType = SortType.UNKNOWN
    max_sort_key: float = 0.0
    search_time: float = 0.0  # milliseconds

    @property
    def search_report_count(self) -> int:
        return sum(1 for result in self.results if result.is_search_report)


@dataclass
class ServerInfo:
    name: str | None = None
    description: str | None = None
    admin_name: str | None = None
    admin_email: str | None = None
    index_count: int = 0
    ranking_algorithm: str | None = None
    weight_minimum: float = WEIGHT_MINIMUM
    weight_maximum: float = WEIGHT_MAXIMUM


@dataclass
class ServerIndexInfo:
    name: str
    description: str | None = None


@dataclass
class IndexInfo:
    name: str
    description: str | None = None
    language_code: str | None = None
    tokenizer_name: str | None = None
    stemmer_name: str | None = None
    stop_list_name: str | None = None
    document_count: int = 0
    total_term_count: int = 0
    unique_term_count: int = 0
    total_stop_term_count: int = 0
    unique_stop_term_count: int = 0
    access_control: int = 0
    update_frequency: int = 0
    last_update_ansi_date: int = 0
    case_sensitive: int = 0


@dataclass
class FieldInfo:
    name: str
    description: str | None = None
    type: FieldType = FieldType.UNKNOWN


@dataclass
class TermInfo:
    term: str
    type: TermType = TermType.UNKNOWN
    count: int = 0
    document_count: int = 0


@dataclass
class DocumentInfo:
    index_name: str
    document_key: str
    title: str
    language_code: str | None = None
    rank: int = 0
    term_count: int = 0
    ansi_date: int = 0
    items: list[DocumentItem] = field(default_factory=list)
