import io
import threading
from collections.abc import Sequence
from pathlib import Path

import pytest

from search_script.backend.base import Backend
from search_script.backend.errors import BackendStatusError, ErrorCode
from search_script.backend.local.engine import LocalBackend
from search_script.backend.local.indexer import Indexer
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
    TermInfo,
)
from search_script.backend.remote.server import ProtocolServer
from search_script.script.reader import ScriptReader

NOTES = {
    "alpha.md": "---\ntitle: Alpha Note\n---\nThe quick brown fox jumps over the lazy dog.\n",
    "beta.md": "# Beta heading\n\nA fox and a robot walk into a bar.\n",
    "gamma.txt": "Robert wrote about databases and indexing.\n",
}

SAMPLE_REPORT = "\n".join(
    [
        "IndexName: notes",
        "IndexCounts: 100 40 20 5 3",
        "StemmerName: none",
        "SearchOriginal: fox",
        'SearchReformatted: "fox"',
        "SearchTerm: fox * fox 1.0000 2 2",
    ]
)


def script_lines(text: str, max_line_length: int = 51200) -> list:
    """Logical lines of an in-memory script."""
    return list(ScriptReader(io.BytesIO(text.encode("utf-8")), max_line_length=max_line_length))


class RecordingBackend(Backend):
    """Backend double that records every call and answers with canned data."""

    def __init__(self):
        self.calls: list[tuple[str, tuple]] = []
        self.closed = False
        self.search_results: list[SearchResult] = [
            SearchResult(
                index_name="notes",
                document_key="alpha.md",
                title="Alpha Note",
                sort_key=1.5,
                language_code="en",
                items=[DocumentItem("document", "text/plain", 12)],
            )
        ]
        self.documents: dict[str, bytes] = {"alpha.md": b"alpha text"}
        self.fail_search: BackendStatusError | None = None

    def calls_to(self, name: str) -> list[tuple]:
        return [args for call, args in self.calls if call == name]

    def open_index(self, index_names: Sequence[str]) -> list[str]:
        self.calls.append(("open_index", (list(index_names),)))
        return list(index_names)

    def close_index(self, indexes):
        self.calls.append(("close_index", (list(indexes),)))

    def search(
        self,
        indexes,
        language_code,
        search_text,
        positive_feedback_text,
        negative_feedback_text,
        start_index,
        end_index,
    ) -> SearchResponse:
        self.calls.append(
            (
                "search",
                (
                    list(indexes),
                    language_code,
                    search_text,
                    positive_feedback_text,
                    negative_feedback_text,
                    start_index,
                    end_index,
                ),
            )
        )
        if self.fail_search is not None:
            raise self.fail_search
        return SearchResponse(
            results=list(self.search_results),
            total_results=len(self.search_results),
            start_index=start_index,
            end_index=end_index,
            sort_type=SortType.DOUBLE_DESC,
            max_sort_key=1.5,
            search_time=0.5,
        )

    def retrieve(
        self,
        index,
        document_key,
        item_name,
        mime_type,
        chunk_type=ChunkType.DOCUMENT,
        chunk_start=0,
        chunk_end=0,
    ) -> bytes:
        self.calls.append(("retrieve", (index, document_key, item_name, mime_type, chunk_type, chunk_start, chunk_end)))
        if document_key not in self.documents:
            raise BackendStatusError(ErrorCode.INVALID_DOCUMENT_KEY, document_key)
        data = self.documents[document_key]
        if chunk_type == ChunkType.BYTE:
            return data[chunk_start : chunk_end + 1]
        return data

    def server_info(self) -> ServerInfo:
        self.calls.append(("server_info", ()))
        return ServerInfo(name="recording", description="Recording server", index_count=1, ranking_algorithm="bm25")

    def server_index_info(self) -> list[ServerIndexInfo]:
        self.calls.append(("server_index_info", ()))
        return [ServerIndexInfo("notes", "Test notes")]

    def index_info(self, index) -> IndexInfo:
        self.calls.append(("index_info", (index,)))
        return IndexInfo(name=index, description="Test notes", document_count=3)

    def index_field_info(self, index) -> list[FieldInfo]:
        self.calls.append(("index_field_info", (index,)))
        return [FieldInfo("title", "Document title", FieldType.TEXT)]

    def index_term_info(self, index, term_match, term_case, term, field_name) -> list[TermInfo]:
        self.calls.append(("index_term_info", (index, term_match, term_case, term, field_name)))
        return [TermInfo("fox", count=2, document_count=2)]

    def document_info(self, index, document_key) -> DocumentInfo:
        self.calls.append(("document_info", (index, document_key)))
        return DocumentInfo(index_name=index, document_key=document_key, title="Alpha Note")

    def index_name(self, index) -> str:
        return index

    def close(self):
        self.calls.append(("close", ()))
        self.closed = True


def report_result(index_name: str = "notes", data: bytes | None = SAMPLE_REPORT.encode("utf-8")) -> SearchResult:
    return SearchResult(
        index_name=index_name,
        document_key="search-report-1",
        title="Search report",
        sort_key=0.0,
        items=[
            DocumentItem(
                SEARCH_REPORT_ITEM_NAME,
                SEARCH_REPORT_MIME_TYPE,
                len(SAMPLE_REPORT),
                data=data,
            )
        ],
    )


@pytest.fixture
def recording_backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def connections(recording_backend):
    """Connector handing out the recording backend, with the list of connect actions it served."""
    served = []

    def connector(action, fields):
        served.append((action, dict(fields)))
        return recording_backend

    connector.served = served
    return connector


@pytest.fixture
def notes_dir(tmp_path: Path) -> Path:
    notes = tmp_path / "notes"
    notes.mkdir()
    for name, content in NOTES.items():
        (notes / name).write_text(content, encoding="utf-8")
    return notes


@pytest.fixture
def index_dir(tmp_path: Path, notes_dir: Path, monkeypatch) -> Path:
    monkeypatch.delenv("SEARCH_SCRIPT_SERVER_NAME", raising=False)
    directory = tmp_path / "indexes"
    indexer = Indexer.create(directory, "notes", description="Test notes")
    try:
        indexer.index([notes_dir])
    finally:
        indexer.close()
    return directory


@pytest.fixture
def local_backend(index_dir: Path, tmp_path: Path):
    backend = LocalBackend.initialize(index_dir, index_dir, tmp_path)
    yield backend
    backend.close()


@pytest.fixture
def protocol_server(index_dir: Path, tmp_path: Path):
    server = ProtocolServer(("127.0.0.1", 0), index_dir, index_dir, tmp_path)
    thread = threading.Thread(target=server.serve_forever, name="protocol-server", daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    thread.join()
