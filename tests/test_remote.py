import io
import socket

import pytest
from conftest import script_lines

from search_script.backend.errors import BackendStatusError, BackendTransportError, ErrorCode
from search_script.backend.messages import ChunkType, SortType, TermCase, TermMatch, TermType
from search_script.backend.remote.client import RemoteBackend
from search_script.backend.remote.protocol import (
    FRAME_HEADER,
    decode_response,
    make_response,
    read_frame,
    write_frame,
)
from search_script.report import parse_search_report
from search_script.script.actions import REMOTE_CATALOG
from search_script.script.interpreter import ScriptInterpreter


@pytest.fixture
def remote(protocol_server):
    host, port = protocol_server.server_address[:2]
    backend = RemoteBackend.connect("tcp", host, port, 5000)
    yield backend
    backend.close()


class TestFrames:
    def test_frame_layout(self):
        stream = io.BytesIO()
        write_frame(stream, {"op": "server_info", "args": {}})
        raw = stream.getvalue()
        (length,) = FRAME_HEADER.unpack(raw[: FRAME_HEADER.size])
        assert length == len(raw) - FRAME_HEADER.size
        assert raw[FRAME_HEADER.size :] == b'{"op":"server_info","args":{}}'

    def test_clean_end_of_stream(self):
        assert read_frame(io.BytesIO(b"")) is None

    def test_truncated_frame(self):
        with pytest.raises(BackendTransportError):
            read_frame(io.BytesIO(FRAME_HEADER.pack(10) + b"{}"))
        with pytest.raises(BackendTransportError):
            read_frame(io.BytesIO(b"\x00\x00"))

    def test_malformed_frame(self):
        with pytest.raises(BackendTransportError):
            read_frame(io.BytesIO(FRAME_HEADER.pack(3) + b"[1]"))
        with pytest.raises(BackendTransportError):
            read_frame(io.BytesIO(FRAME_HEADER.pack(3) + b"{x}"))

    def test_oversized_frame(self):
        with pytest.raises(BackendTransportError):
            read_frame(io.BytesIO(FRAME_HEADER.pack(2**31)))

    def test_bytes_travel_as_base64(self):
        response = make_response("retrieve", b"\x00\xffdata")
        assert isinstance(response["payload"], str)
        assert decode_response("retrieve", response) == b"\x00\xffdata"

    def test_status_becomes_an_error(self):
        with pytest.raises(BackendStatusError) as excinfo:
            decode_response("search", {"status": -405, "error_text": "broken", "payload": None})
        assert (excinfo.value.code, excinfo.value.text) == (-405, "broken")

    def test_response_without_status(self):
        with pytest.raises(BackendTransportError):
            decode_response("search", {"payload": None})


def test_unsupported_protocol():
    with pytest.raises(BackendStatusError) as excinfo:
        RemoteBackend.connect("udp", "localhost", 9400, 1000)
    assert excinfo.value.code == ErrorCode.PARAMETER_ERROR


def test_connection_refused():
    with socket.socket() as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]
    with pytest.raises(BackendTransportError):
        RemoteBackend.connect("tcp", "127.0.0.1", port, 1000)


def test_open_and_search(remote):
    assert remote.open_index(["notes", "missing"]) == ["notes"]
    response = remote.search(["notes"], None, "fox", None, None, 0, 0)
    assert response.total_results == 2
    assert response.sort_type == SortType.DOUBLE_DESC
    report_result = response.results[-1]
    assert report_result.is_search_report
    report = parse_search_report(report_result.items[0].data.decode("utf-8"))
    assert report.index_names == ["notes"]


def test_retrieve(remote):
    remote.open_index(["notes"])
    data = remote.retrieve("notes", "gamma.txt", "document", "text/plain", ChunkType.BYTE, 0, 3)
    assert data == b"Robe"


def test_status_errors_cross_the_wire(remote):
    with pytest.raises(BackendStatusError) as excinfo:
        remote.index_term_info("notes", TermMatch.METAPHONE, TermCase.INSENSITIVE, "fox", None)
    assert excinfo.value.code == ErrorCode.INVALID_TERM_MATCH
    # the connection survives a status error
    assert remote.index_name("notes") == "notes"
    assert remote.index_info("notes").document_count == 3


def test_metadata(remote):
    assert remote.server_info().index_count == 1
    assert [info.name for info in remote.server_index_info()] == ["notes"]
    assert [field.name for field in remote.index_field_info("notes")] == ["title", "text"]
    (info,) = remote.index_term_info("notes", TermMatch.REGULAR, TermCase.INSENSITIVE, "fox", None)
    assert (info.type, info.count) == (TermType.REGULAR, 2)
    assert remote.document_info("notes", "beta.md").title == "Beta heading"


def test_close_index(remote):
    remote.open_index(["notes"])
    remote.close_index(["notes"])
    assert remote.search(["notes"], None, "fox", None, None, 0, 0).total_results == 2


def test_script_against_the_server(protocol_server):
    host, port = protocol_server.server_address[:2]
    script = (
        f"openConnection tcp {host} {port}\n"
        "openIndex notes\n"
        "searchReport formatted\n"
        "searchList fox\n"
        "retrieveDocument notes [gamma.txt] document text/plain\n"
        "exit\n"
    )
    output = io.StringIO()
    ScriptInterpreter(REMOTE_CATALOG, output=output).run(script_lines(script))
    text = output.getvalue()
    assert "found: 2 documents and returned: 2 (+1 search report)" in text
    assert "Search on index: notes" in text
    assert "Robert wrote about databases and indexing." in text
    assert "Time taken:" in text
