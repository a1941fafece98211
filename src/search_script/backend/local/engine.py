"""In-process search backend over the index files of one directory."""

import fnmatch
import itertools
import re
import sqlite3
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from search_script import report
from search_script.backend.base import Backend, IndexRef
from search_script.backend.errors import BackendStatusError, BackendTransportError, ErrorCode
from search_script.backend.local.language import (
    STEMMER_NAME,
    STOP_LIST_NAME,
    TOKENIZER_NAME,
    is_stop_word,
    iter_terms,
    soundex,
    within_one_edit,
)
from search_script.backend.local.store import INDEX_FILE_SUFFIX, SEARCH_FIELDS, IndexStore, StoredDocument
from search_script.backend.messages import (
    SEARCH_REPORT_ITEM_NAME,
    SEARCH_REPORT_MIME_TYPE,
    ChunkType,
    DocumentInfo,
    DocumentItem,
    FieldInfo,
    FieldType,
    IndexInfo,
    SearchResponse,
    SearchResult,
    ServerIndexInfo,
    ServerInfo,
    SortType,
    TermCase,
    TermInfo,
    TermMatch,
    TermType,
)
from search_script.config import ServerConfig, load_server_config
from search_script.logger import logging

logger = logging.getLogger(__name__)

# (0, 0) asks for the default page
DEFAULT_PAGE_SIZE = 10

# Feedback documents can be long, only their first distinct terms are used
MAX_FEEDBACK_TERMS = 50

FIELD_DESCRIPTIONS = {
    "title": "Document title",
    "text": "Document text",
}

INDEX_NAME_PATTERN = re.compile(r"[\w.-]+")
_FIELD_TERM_PATTERN = re.compile(r"^(\w+):(.+)$")


@dataclass
class LocalIndex:
    name: str
    store: IndexStore


@dataclass
class _QueryTerm:
    term: str
    field_name: str | None
    stop: bool


def _quote(term: str) -> str:
    return '"' + term.replace('"', '""') + '"'


def parse_query_terms(text: str | None) -> list[_QueryTerm]:
    """Split search text into terms, honouring ``field:term`` restrictions."""
    terms: list[_QueryTerm] = []
    for token in (text or "").split():
        field_name = None
        match = _FIELD_TERM_PATTERN.match(token)
        if match and match.group(1).lower() in SEARCH_FIELDS:
            field_name = match.group(1).lower()
            token = match.group(2)
        for term in iter_terms(token):
            terms.append(_QueryTerm(term, field_name, is_stop_word(term)))
    return terms


def feedback_terms(text: str | None) -> list[str]:
    """Distinct non stop terms of a feedback text, in order of appearance."""
    seen: dict[str, None] = {}
    for term in iter_terms(text or ""):
        if not is_stop_word(term):
            seen.setdefault(term, None)
    return list(seen)[:MAX_FEEDBACK_TERMS]


def build_match_query(
    terms: Sequence[_QueryTerm], positive: Sequence[str], negative: Sequence[str]
) -> str | None:
    """FTS5 query: any search or positive feedback term, none of the negative ones."""
    clauses = []
    for term in terms:
        if term.stop:
            continue
        if term.field_name:
            clauses.append(f"{term.field_name} : {_quote(term.term)}")
        else:
            clauses.append(_quote(term.term))
    clauses.extend(_quote(term) for term in positive)
    if not clauses:
        return None

    query = " OR ".join(clauses)
    if negative:
        query = f"({query}) NOT ({' OR '.join(_quote(term) for term in negative)})"
    return query


def resolve_window(start: int, end: int, total: int) -> tuple[int, int]:
    """Inclusive result window, clipped to the results. (0, 0) is the first page."""
    if start == 0 and end == 0:
        end = DEFAULT_PAGE_SIZE - 1
    return start, min(end, total - 1)


class LocalBackend(Backend):
    """
    Search backend running in the calling process.

    Every ``<name>.db`` file in the index directory is an index. Index refs
    are LocalIndex objects; plain index names are accepted too and resolve to
    the open index of that name, opening it on first use.
    """

    index_dir: Path
    config_dir: Path
    temp_dir: Path
    config: ServerConfig

    def __init__(self, index_dir: Path, config_dir: Path, temp_dir: Path, config: ServerConfig):
        self.index_dir = index_dir
        self.config_dir = config_dir
        self.temp_dir = temp_dir
        self.config = config
        self._indexes: dict[str, LocalIndex] = {}
        self._reports: dict[tuple[str, str], bytes] = {}
        self._report_counter = itertools.count(1)

    @classmethod
    def initialize(cls, index_dir: Path, config_dir: Path, temp_dir: Path) -> "LocalBackend":
        """Start the in-process server over the given directories.

        Raises:
            BackendStatusError: If a directory is missing or the configuration is invalid.
        """
        if not index_dir.is_dir():
            raise BackendStatusError(ErrorCode.INVALID_INDEX_DIRECTORY, str(index_dir))
        if not config_dir.is_dir():
            raise BackendStatusError(ErrorCode.INVALID_CONFIGURATION_DIRECTORY, str(config_dir))
        if not temp_dir.is_dir():
            raise BackendStatusError(ErrorCode.INVALID_TEMPORARY_DIRECTORY, str(temp_dir))

        try:
            config = load_server_config(config_dir)
        except ValueError as e:
            raise BackendStatusError(ErrorCode.INITIALIZE_SERVER_FAILED, str(e)) from e

        logger.info("Initialized local server '%s' on %s", config.name, index_dir)
        return cls(index_dir, config_dir, temp_dir, config)

    # Indexes

    def _index_path(self, index_name: str) -> Path:
        if not index_name or not INDEX_NAME_PATTERN.fullmatch(index_name):
            raise BackendStatusError(ErrorCode.INVALID_INDEX_NAME, index_name)
        return self.index_dir / f"{index_name}{INDEX_FILE_SUFFIX}"

    def _open(self, index_name: str) -> LocalIndex:
        if index_name in self._indexes:
            return self._indexes[index_name]

        path = self._index_path(index_name)
        if not path.is_file():
            raise BackendStatusError(ErrorCode.OPEN_INDEX_FAILED, f"no such index: {index_name}")
        try:
            index = LocalIndex(index_name, IndexStore(path))
        except sqlite3.Error as e:
            raise BackendStatusError(ErrorCode.OPEN_INDEX_FAILED, f"{index_name}: {e}") from e

        self._indexes[index_name] = index
        logger.debug("Opened index '%s'", index_name)
        return index

    def _resolve(self, index: IndexRef) -> LocalIndex:
        if isinstance(index, LocalIndex):
            return index
        if isinstance(index, str):
            return self._open(index)
        raise BackendStatusError(ErrorCode.INVALID_INDEX, repr(index))

    def open_index(self, index_names: Sequence[str]) -> list[LocalIndex]:
        opened = []
        for index_name in index_names:
            try:
                opened.append(self._open(index_name))
            except BackendStatusError as e:
                logger.error("Failed to open index '%s': %s", index_name, e)
        return opened

    def close_index(self, indexes: Sequence[IndexRef]):
        for index in indexes:
            name = index.name if isinstance(index, LocalIndex) else index
            closing = self._indexes.pop(name, None)
            if closing is not None:
                closing.store.close()
                logger.debug("Closed index '%s'", name)

    def index_name(self, index: IndexRef) -> str:
        return self._resolve(index).name

    # Searching

    def search(
        self,
        indexes: Sequence[IndexRef],
        language_code: str | None,
        search_text: str | None,
        positive_feedback_text: str | None,
        negative_feedback_text: str | None,
        start_index: int,
        end_index: int,
    ) -> SearchResponse:
        if start_index > end_index:
            raise BackendStatusError(ErrorCode.INVALID_SEARCH_RESULTS_RANGE, f"{start_index}-{end_index}")

        time_start = time.perf_counter()

        unique: dict[str, LocalIndex] = {}
        for index in indexes:
            resolved = self._resolve(index)
            unique.setdefault(resolved.name, resolved)
        if not unique:
            raise BackendStatusError(ErrorCode.INVALID_INDEX, "no index is open")

        # Only the reports of the latest search stay retrievable
        self._reports = {}

        terms = parse_query_terms(search_text)
        positive = feedback_terms(positive_feedback_text)
        negative = feedback_terms(negative_feedback_text)
        match_query = build_match_query(terms, positive, negative)

        hits: list[tuple[float, LocalIndex, StoredDocument]] = []
        reports: list[SearchResult] = []
        for index in unique.values():
            errors: list[str] = []
            if match_query is None:
                errors.append("the search contained no searchable terms")
            else:
                try:
                    for hit in index.store.search(match_query):
                        hits.append((-hit.score, index, hit.document))
                except sqlite3.OperationalError as e:
                    raise BackendStatusError(ErrorCode.SEARCH_INDEX_FAILED, str(e)) from e
            reports.append(
                self._search_report(index, search_text, match_query, terms, positive, negative, errors)
            )

        hits.sort(key=lambda hit: hit[0], reverse=True)
        total = len(hits)
        start, end = resolve_window(start_index, end_index, total)

        results = [
            SearchResult(
                index_name=index.name,
                document_key=document.document_key,
                title=document.title,
                sort_key=sort_key,
                language_code=document.language_code,
                rank=document.rank,
                term_count=document.term_count,
                ansi_date=document.ansi_date,
                items=self._document_items(index, document),
            )
            for sort_key, index, document in hits[start : end + 1]
        ]
        results.extend(reports)

        return SearchResponse(
            results=results,
            total_results=total,
            start_index=start,
            end_index=max(end, start - 1),
            sort_type=SortType.DOUBLE_DESC,
            max_sort_key=hits[0][0] if hits else 0.0,
            search_time=(time.perf_counter() - time_start) * 1000.0,
        )

    def _search_report(
        self,
        index: LocalIndex,
        search_text: str | None,
        match_query: str | None,
        terms: Sequence[_QueryTerm],
        positive: Sequence[str],
        negative: Sequence[str],
        errors: Sequence[str],
    ) -> SearchResult:
        """Write the search report for one index and cache it for retrieval."""
        info = self._index_info(index)
        lines = [
            f"{report.INDEX_NAME} {index.name}",
            f"{report.INDEX_COUNTS} {info.total_term_count} {info.unique_term_count} "
            f"{info.total_stop_term_count} {info.unique_stop_term_count} {info.document_count}",
            f"{report.STEMMER_NAME} {STEMMER_NAME}",
            f"{report.SEARCH_ORIGINAL} {search_text or ''}",
        ]
        if match_query:
            lines.append(f"{report.SEARCH_REFORMATTED} {match_query}")
        lines.extend(f"{report.SEARCH_ERROR} {error}" for error in errors)

        vocabularies: dict[str | None, dict] = {}
        for term in terms:
            if term.field_name not in vocabularies:
                vocabularies[term.field_name] = {
                    entry.term: entry for entry in index.store.vocabulary(term.field_name)
                }
            entry = vocabularies[term.field_name].get(term.term)
            if term.stop:
                counts = f"{report.TERM_STOP} {report.TERM_STOP}"
            elif entry is None:
                counts = f"{report.TERM_NON_EXISTENT} {report.TERM_NON_EXISTENT}"
            else:
                counts = f"{entry.count} {entry.document_count}"
            field_name = term.field_name or report.ANY_FIELD
            lines.append(f"{report.SEARCH_TERM} {term.term} {field_name} {term.term} 1.0000 {counts}")

        if positive:
            lines.append(f"{report.POSITIVE_FEEDBACK_COUNTS} {len(positive)} {len(positive)} {len(positive)}")
            lines.append(f"{report.POSITIVE_FEEDBACK_TERMS} {' '.join(positive)}")
        if negative:
            lines.append(f"{report.NEGATIVE_FEEDBACK_COUNTS} {len(negative)} {len(negative)} {len(negative)}")
            lines.append(f"{report.NEGATIVE_FEEDBACK_TERMS} {' '.join(negative)}")

        data = "\n".join(lines).encode("utf-8")
        document_key = f"search-report-{next(self._report_counter)}"
        self._reports[(index.name, document_key)] = data

        return SearchResult(
            index_name=index.name,
            document_key=document_key,
            title="Search report",
            sort_key=0.0,
            language_code=None,
            items=[
                DocumentItem(
                    item_name=SEARCH_REPORT_ITEM_NAME,
                    mime_type=SEARCH_REPORT_MIME_TYPE,
                    length=len(data),
                    data=data,
                )
            ],
        )

    def _document_items(self, index: LocalIndex, document: StoredDocument) -> list[DocumentItem]:
        return [
            DocumentItem(item_name=item.item_name, mime_type=item.mime_type, length=item.length, url=item.url)
            for item in index.store.get_items(document.id)
        ]

    # Documents

    def _document(self, index: LocalIndex, document_key: str) -> StoredDocument:
        if not document_key:
            raise BackendStatusError(ErrorCode.INVALID_DOCUMENT_KEY, "empty document key")
        document = index.store.get_document(document_key)
        if document is None:
            raise BackendStatusError(ErrorCode.INVALID_DOCUMENT_KEY, document_key)
        return document

    def retrieve(
        self,
        index: IndexRef,
        document_key: str,
        item_name: str,
        mime_type: str,
        chunk_type: ChunkType = ChunkType.DOCUMENT,
        chunk_start: int = 0,
        chunk_end: int = 0,
    ) -> bytes:
        resolved = self._resolve(index)

        data = None
        if item_name == SEARCH_REPORT_ITEM_NAME and mime_type == SEARCH_REPORT_MIME_TYPE:
            data = self._reports.get((resolved.name, document_key))

        if data is None:
            document = self._document(resolved, document_key)
            data = resolved.store.get_item_data(document.id, item_name, mime_type)
            if data is None:
                if resolved.store.has_item_name(document.id, item_name):
                    raise BackendStatusError(ErrorCode.INVALID_MIME_TYPE, mime_type)
                raise BackendStatusError(ErrorCode.INVALID_ITEM_NAME, item_name)

        if chunk_type == ChunkType.DOCUMENT:
            return data
        if chunk_type == ChunkType.BYTE:
            if chunk_start > chunk_end or chunk_start >= len(data):
                raise BackendStatusError(
                    ErrorCode.INVALID_CHUNK_RANGE, f"{chunk_start}-{chunk_end} of {len(data)} bytes"
                )
            return data[chunk_start : chunk_end + 1]
        raise BackendStatusError(ErrorCode.INVALID_CHUNK_TYPE, str(chunk_type))

    def document_info(self, index: IndexRef, document_key: str) -> DocumentInfo:
        resolved = self._resolve(index)
        document = self._document(resolved, document_key)
        return DocumentInfo(
            index_name=resolved.name,
            document_key=document.document_key,
            title=document.title,
            language_code=document.language_code,
            rank=document.rank,
            term_count=document.term_count,
            ansi_date=document.ansi_date,
            items=self._document_items(resolved, document),
        )

    # Metadata

    def _index_files(self) -> list[Path]:
        return sorted(self.index_dir.glob(f"*{INDEX_FILE_SUFFIX}"))

    def server_info(self) -> ServerInfo:
        return ServerInfo(
            name=self.config.name,
            description=self.config.description,
            admin_name=self.config.admin_name,
            admin_email=self.config.admin_email,
            index_count=len(self._index_files()),
            ranking_algorithm=self.config.ranking_algorithm,
            weight_minimum=self.config.weight_minimum,
            weight_maximum=self.config.weight_maximum,
        )

    def server_index_info(self) -> list[ServerIndexInfo]:
        infos = []
        for path in self._index_files():
            try:
                description = self._open(path.stem).store.get_metadata("description")
            except BackendStatusError as e:
                logger.warning("Skipping index file %s: %s", path, e)
                continue
            infos.append(ServerIndexInfo(name=path.stem, description=description))
        if not infos:
            raise BackendStatusError(ErrorCode.SERVER_HAS_NO_INDICES, str(self.index_dir))
        return infos

    def _index_info(self, index: LocalIndex) -> IndexInfo:
        store = index.store
        total = unique = total_stop = unique_stop = 0
        for entry in store.vocabulary():
            if is_stop_word(entry.term):
                total_stop += entry.count
                unique_stop += 1
            else:
                total += entry.count
                unique += 1

        last_update = store.get_metadata("last_update_ansi_date")
        return IndexInfo(
            name=index.name,
            description=store.get_metadata("description"),
            language_code=store.get_metadata("language_code"),
            tokenizer_name=store.get_metadata("tokenizer_name") or TOKENIZER_NAME,
            stemmer_name=store.get_metadata("stemmer_name") or STEMMER_NAME,
            stop_list_name=store.get_metadata("stop_list_name") or STOP_LIST_NAME,
            document_count=store.num_documents(),
            total_term_count=total,
            unique_term_count=unique,
            total_stop_term_count=total_stop,
            unique_stop_term_count=unique_stop,
            last_update_ansi_date=int(last_update) if last_update else 0,
            case_sensitive=0,
        )

    def index_info(self, index: IndexRef) -> IndexInfo:
        return self._index_info(self._resolve(index))

    def index_field_info(self, index: IndexRef) -> list[FieldInfo]:
        self._resolve(index)
        return [
            FieldInfo(name=name, description=FIELD_DESCRIPTIONS.get(name), type=FieldType.TEXT)
            for name in SEARCH_FIELDS
        ]

    def index_term_info(
        self,
        index: IndexRef,
        term_match: TermMatch,
        term_case: TermCase,
        term: str | None,
        field_name: str | None,
    ) -> list[TermInfo]:
        resolved = self._resolve(index)

        if field_name is not None and field_name.lower() not in SEARCH_FIELDS:
            raise BackendStatusError(ErrorCode.INVALID_FIELD_NAME, field_name)

        matches = self._term_matcher(term_match, term_case, term)
        infos = []
        for entry in resolved.store.vocabulary(field_name.lower() if field_name else None):
            stop = is_stop_word(entry.term)
            if term_match == TermMatch.REGULAR and stop:
                continue
            if term_match == TermMatch.STOP and not stop:
                continue
            if not matches(entry.term):
                continue
            infos.append(
                TermInfo(
                    term=entry.term,
                    type=TermType.STOP if stop else TermType.REGULAR,
                    count=entry.count,
                    document_count=entry.document_count,
                )
            )
        return infos

    def _term_matcher(self, term_match: TermMatch, term_case: TermCase, term: str | None):
        """Predicate over indexed terms for a term info request.

        Indexed terms are lower case, so only a case sensitive request can
        fail to match a term written with capitals.
        """
        sensitive = term_case == TermCase.SENSITIVE

        def same_case(value: str) -> str:
            return value if sensitive else value.lower()

        if term_match in (TermMatch.REGULAR, TermMatch.STOP):
            if term is None:
                return lambda candidate: True
            return lambda candidate: candidate == same_case(term)

        if term_match in (TermMatch.WILDCARD, TermMatch.SOUNDEX, TermMatch.TYPO) and not term:
            raise BackendStatusError(ErrorCode.INVALID_TERM, "a term is required for this match type")

        if term_match == TermMatch.WILDCARD:
            pattern = same_case(term)
            return lambda candidate: fnmatch.fnmatchcase(candidate, pattern)
        if term_match == TermMatch.SOUNDEX:
            key = soundex(term)
            return lambda candidate: soundex(candidate) == key
        if term_match == TermMatch.TYPO:
            wanted = same_case(term)
            return lambda candidate: within_one_edit(candidate, wanted)

        raise BackendStatusError(ErrorCode.INVALID_TERM_MATCH, term_match.name.lower())

    def close(self):
        for index in list(self._indexes.values()):
            try:
                index.store.close()
            except sqlite3.Error as e:
                raise BackendTransportError(f"Failed to close index '{index.name}': {e}") from e
        self._indexes.clear()
        self._reports.clear()
        logger.info("Shut down local server '%s'", self.config.name)
