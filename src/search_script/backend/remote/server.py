"""Protocol server hosting the in-process engine for remote clients."""

import socketserver
from collections.abc import Callable
from pathlib import Path
from typing import Any

from search_script.backend.errors import BackendStatusError, BackendTransportError, ErrorCode
from search_script.backend.local.engine import LocalBackend
from search_script.backend.messages import ChunkType, TermCase, TermMatch
from search_script.backend.remote.protocol import (
    PAYLOAD_ADAPTERS,
    make_error_response,
    make_response,
    read_frame,
    write_frame,
)
from search_script.logger import logging

logger = logging.getLogger(__name__)


def _dispatch_table(backend: LocalBackend) -> dict[str, Callable[..., Any]]:
    return {
        "open_index": lambda index_names: [index.name for index in backend.open_index(index_names)],
        "close_index": lambda index_names: backend.close_index(index_names),
        "search": lambda index_names, **args: backend.search(index_names, **args),
        "retrieve": lambda index_name, chunk_type, **args: backend.retrieve(
            index_name, chunk_type=ChunkType(chunk_type), **args
        ),
        "server_info": backend.server_info,
        "server_index_info": backend.server_index_info,
        "index_info": lambda index_name: backend.index_info(index_name),
        "index_field_info": lambda index_name: backend.index_field_info(index_name),
        "index_term_info": lambda index_name, term_match, term_case, term, field_name: backend.index_term_info(
            index_name, TermMatch(term_match), TermCase(term_case), term, field_name
        ),
        "document_info": lambda index_name, document_key: backend.document_info(index_name, document_key),
        "index_name": lambda index_name: backend.index_name(index_name),
    }


def dispatch(backend: LocalBackend, request: dict) -> dict:
    """Run one request against the connection's backend and build the response frame."""
    op = request.get("op")
    args = request.get("args") or {}
    if op not in PAYLOAD_ADAPTERS or not isinstance(args, dict):
        return make_error_response(BackendStatusError(ErrorCode.PARAMETER_ERROR, f"unknown operation: {op!r}"))

    handler = _dispatch_table(backend)[op]
    try:
        return make_response(op, handler(**args))
    except BackendStatusError as e:
        logger.debug("Operation '%s' failed: %s", op, e)
        return make_error_response(e)
    except (TypeError, ValueError) as e:
        return make_error_response(BackendStatusError(ErrorCode.PARAMETER_ERROR, f"{op}: {e}"))


class ProtocolRequestHandler(socketserver.StreamRequestHandler):
    """One client connection, served by its own LocalBackend."""

    server: "ProtocolServer"

    def handle(self):
        logger.info("Connection from %s:%d", *self.client_address[:2])
        backend: LocalBackend | None = None
        try:
            while True:
                request = read_frame(self.rfile)
                if request is None:
                    break

                if backend is None:
                    try:
                        backend = self.server.open_backend()
                    except BackendStatusError as e:
                        logger.error("Failed to start a session: %s", e)
                        write_frame(self.wfile, make_error_response(e))
                        continue

                write_frame(self.wfile, dispatch(backend, request))
        except BackendTransportError as e:
            logger.warning("Dropping connection from %s:%d: %s", *self.client_address[:2], e)
        finally:
            if backend is not None:
                backend.close()
            logger.info("Closed connection from %s:%d", *self.client_address[:2])


class ProtocolServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    index_dir: Path
    config_dir: Path
    temp_dir: Path

    def __init__(self, server_address: tuple[str, int], index_dir: Path, config_dir: Path, temp_dir: Path):
        self.index_dir = index_dir
        self.config_dir = config_dir
        self.temp_dir = temp_dir
        super().__init__(server_address, ProtocolRequestHandler)

    def open_backend(self) -> LocalBackend:
        return LocalBackend.initialize(self.index_dir, self.config_dir, self.temp_dir)
