import socket
from collections.abc import Sequence
from typing import Any

from search_script.backend.base import Backend, IndexRef
from search_script.backend.errors import BackendStatusError, BackendTransportError, ErrorCode
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
from search_script.backend.remote.protocol import (
    PROTOCOL_NAME,
    decode_response,
    make_request,
    read_frame,
    write_frame,
)
from search_script.logger import logging

logger = logging.getLogger(__name__)


class RemoteBackend(Backend):
    """
    Backend reached over a protocol server connection.

    Index refs are index names; the server keeps the open indexes of the
    connection.
    """

    host: str
    port: int

    def __init__(self, sock: socket.socket, host: str, port: int):
        self.host = host
        self.port = port
        self._socket = sock
        self._stream = sock.makefile("rwb")

    @classmethod
    def connect(cls, protocol: str, host: str, port: int, timeout_ms: int) -> "RemoteBackend":
        """Open a connection to the protocol server at host:port.

        Raises:
            BackendStatusError: If the protocol is not supported.
            BackendTransportError: If the connection cannot be made.
        """
        if protocol.lower() != PROTOCOL_NAME:
            raise BackendStatusError(ErrorCode.PARAMETER_ERROR, f"unsupported protocol: '{protocol}'")

        timeout = timeout_ms / 1000.0 if timeout_ms > 0 else None
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise BackendTransportError(f"Failed to connect to {host}:{port}: {e}") from e

        logger.debug("Connected to %s:%d", host, port)
        return cls(sock, host, port)

    def _call(self, op: str, **args: Any) -> Any:
        write_frame(self._stream, make_request(op, args))
        response = read_frame(self._stream)
        if response is None:
            raise BackendTransportError(f"Connection closed by {self.host}:{self.port} during '{op}'")
        return decode_response(op, response)

    def open_index(self, index_names: Sequence[str]) -> list[str]:
        return self._call("open_index", index_names=list(index_names))

    def close_index(self, indexes: Sequence[IndexRef]):
        self._call("close_index", index_names=list(indexes))

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
        return self._call(
            "search",
            index_names=list(indexes),
            language_code=language_code,
            search_text=search_text,
            positive_feedback_text=positive_feedback_text,
            negative_feedback_text=negative_feedback_text,
            start_index=start_index,
            end_index=end_index,
        )

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
        return self._call(
            "retrieve",
            index_name=index,
            document_key=document_key,
            item_name=item_name,
            mime_type=mime_type,
            chunk_type=int(chunk_type),
            chunk_start=chunk_start,
            chunk_end=chunk_end,
        )

    def server_info(self) -> ServerInfo:
        return self._call("server_info")

    def server_index_info(self) -> list[ServerIndexInfo]:
        return self._call("server_index_info")

    def index_info(self, index: IndexRef) -> IndexInfo:
        return self._call("index_info", index_name=index)

    def index_field_info(self, index: IndexRef) -> list[FieldInfo]:
        return self._call("index_field_info", index_name=index)

    def index_term_info(
        self,
        index: IndexRef,
        term_match: TermMatch,
        term_case: TermCase,
        term: str | None,
        field_name: str | None,
    ) -> list[TermInfo]:
        return self._call(
            "index_term_info",
            index_name=index,
            term_match=int(term_match),
            term_case=int(term_case),
            term=term,
            field_name=field_name,
        )

    def document_info(self, index: IndexRef, document_key: str) -> DocumentInfo:
        return self._call("document_info", index_name=index, document_key=document_key)

    def index_name(self, index: IndexRef) -> str:
        return index

    def close(self):
        try:
            self._stream.close()
            self._socket.close()
        except OSError as e:
            raise BackendTransportError(f"Failed to close the connection to {self.host}:{self.port}: {e}") from e
        logger.debug("Disconnected from %s:%d", self.host, self.port)
