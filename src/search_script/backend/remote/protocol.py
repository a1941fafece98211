"""
Wire format shared by the remote client and the protocol server.

A frame is a 4-byte big-endian length followed by that many bytes of UTF-8
JSON. The client sends ``{"op": name, "args": {...}}`` and the server answers
every request with ``{"status": code, "error_text": str | null, "payload": ...}``.
Payloads are plain JSON produced by the pydantic adapters below, so binary
data travels base64 encoded.
"""

import json
import struct
from typing import Any, BinaryIO

from pydantic import Base64Bytes, TypeAdapter, ValidationError

from search_script.backend.errors import BackendStatusError, BackendTransportError, ErrorCode
from search_script.backend.messages import (
    DocumentInfo,
    FieldInfo,
    IndexInfo,
    SearchResponse,
    ServerIndexInfo,
    ServerInfo,
    TermInfo,
)

PROTOCOL_NAME = "tcp"
DEFAULT_PORT = 9400

FRAME_HEADER = struct.Struct(">I")
MAX_FRAME_SIZE = 64 * 1024 * 1024

# Payload type of every operation, None when it answers with no payload
PAYLOAD_ADAPTERS: dict[str, TypeAdapter | None] = {
    "open_index": TypeAdapter(list[str]),
    "close_index": None,
    "search": TypeAdapter(SearchResponse),
    "retrieve": TypeAdapter(Base64Bytes),
    "server_info": TypeAdapter(ServerInfo),
    "server_index_info": TypeAdapter(list[ServerIndexInfo]),
    "index_info": TypeAdapter(IndexInfo),
    "index_field_info": TypeAdapter(list[FieldInfo]),
    "index_term_info": TypeAdapter(list[TermInfo]),
    "document_info": TypeAdapter(DocumentInfo),
    "index_name": TypeAdapter(str),
}


def _read_exactly(stream: BinaryIO, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def read_frame(stream: BinaryIO) -> dict | None:
    """Read one frame, None on a clean end of stream.

    Raises:
        BackendTransportError: If the stream ends mid-frame or the frame is not a JSON object.
    """
    try:
        header = _read_exactly(stream, FRAME_HEADER.size)
        if not header:
            return None
        if len(header) < FRAME_HEADER.size:
            raise BackendTransportError("Connection closed inside a frame header")

        (length,) = FRAME_HEADER.unpack(header)
        if length > MAX_FRAME_SIZE:
            raise BackendTransportError(f"Frame of {length} bytes exceeds the {MAX_FRAME_SIZE} byte limit")

        body = _read_exactly(stream, length)
    except OSError as e:
        raise BackendTransportError(f"Failed to read a frame: {e}") from e

    if len(body) < length:
        raise BackendTransportError(f"Connection closed after {len(body)} of {length} frame bytes")

    try:
        message = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BackendTransportError(f"Malformed frame: {e}") from e
    if not isinstance(message, dict):
        raise BackendTransportError("Malformed frame: expected a JSON object")
    return message


def write_frame(stream: BinaryIO, message: dict):
    body = json.dumps(message, separators=(",", ":")).encode("utf-8")
    try:
        stream.write(FRAME_HEADER.pack(len(body)) + body)
        stream.flush()
    except OSError as e:
        raise BackendTransportError(f"Failed to write a frame: {e}") from e


def make_request(op: str, args: dict[str, Any]) -> dict:
    return {"op": op, "args": args}


def make_response(op: str, payload: Any = None) -> dict:
    adapter = PAYLOAD_ADAPTERS[op]
    encoded = adapter.dump_python(payload, mode="json") if adapter is not None else None
    return {"status": ErrorCode.NO_ERROR, "error_text": None, "payload": encoded}


def make_error_response(error: BackendStatusError) -> dict:
    return {"status": error.code, "error_text": error.text, "payload": None}


def decode_response(op: str, message: dict) -> Any:
    """Payload of a response to `op`.

    Raises:
        BackendStatusError: If the server reported a failure.
        BackendTransportError: If the response does not have the expected shape.
    """
    status = message.get("status")
    if not isinstance(status, int):
        raise BackendTransportError(f"Response to '{op}' has no status")
    if status != ErrorCode.NO_ERROR:
        raise BackendStatusError(status, message.get("error_text"))

    adapter = PAYLOAD_ADAPTERS[op]
    if adapter is None:
        return None
    try:
        return adapter.validate_python(message.get("payload"))
    except ValidationError as e:
        raise BackendTransportError(f"Invalid payload in response to '{op}': {e}") from e
