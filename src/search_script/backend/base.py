from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from search_script.backend.messages import (
    ChunkType,
    DocumentInfo,
    FieldInfo,
    IndexInfo,
    SearchResponse,
    ServerIndexInfo,
    ServerInfo,
    TermCase,
    TermInfo,
    TermMatch,
)

# What open_index hands back: an index name for the remote backend, a
# LocalIndex for the in-process one. The interpreter treats it as opaque.
IndexRef = Any


class Backend(ABC):
    """
    Capabilities the script interpreter needs from a search backend.

    Every method raises BackendTransportError when the call cannot be
    completed and BackendStatusError when the backend reports a failure.
    """

    @abstractmethod
    def open_index(self, index_names: Sequence[str]) -> list[IndexRef]:
        """Open the named indexes, skipping (and logging) those that fail."""

    @abstractmethod
    def close_index(self, indexes: Sequence[IndexRef]) -> None:
        """Close indexes returned by open_index."""

    @abstractmethod
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
        """Search the indexes, returning the results in the start/end window."""

    @abstractmethod
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
        """Retrieve a document item, or a byte range of it."""

    @abstractmethod
    def server_info(self) -> ServerInfo: ...

    @abstractmethod
    def server_index_info(self) -> list[ServerIndexInfo]: ...

    @abstractmethod
    def index_info(self, index: IndexRef) -> IndexInfo: ...

    @abstractmethod
    def index_field_info(self, index: IndexRef) -> list[FieldInfo]: ...

    @abstractmethod
    def index_term_info(
        self,
        index: IndexRef,
        term_match: TermMatch,
        term_case: TermCase,
        term: str | None,
        field_name: str | None,
    ) -> list[TermInfo]: ...

    @abstractmethod
    def document_info(self, index: IndexRef, document_key: str) -> DocumentInfo: ...

    @abstractmethod
    def index_name(self, index: IndexRef) -> str: ...

    @abstractmethod
    def close(self) -> None:
        """Release the connection or shut the in-process server down."""
