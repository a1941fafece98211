"""Backend failures.

Backend calls fail along two independent axes: the call itself can fail
(socket, timeout, framing, local I/O) or the backend can answer with a
non-zero status code. Both abort the current script run.
"""

from enum import IntEnum


class ErrorCode(IntEnum):
    NO_ERROR = 0
    MEM_ERROR = -1
    PARAMETER_ERROR = -2
    RETURN_PARAMETER_ERROR = -3
    MISC_ERROR = -4

    EXCEEDED_LOAD_MAXIMUM = -100

    INVALID_SESSION = -200
    INVALID_INDEX_DIRECTORY = -201
    INVALID_CONFIGURATION_DIRECTORY = -202
    INVALID_TEMPORARY_DIRECTORY = -203
    INITIALIZE_SERVER_FAILED = -204
    SHUTDOWN_SERVER_FAILED = -205

    INVALID_INDEX = -300
    INVALID_INDEX_NAME = -301
    OPEN_INDEX_FAILED = -302
    CLOSE_INDEX_FAILED = -303

    INVALID_LANGUAGE_CODE = -400
    INVALID_SEARCH_TEXT = -401
    INVALID_POSITIVE_FEEDBACK_TEXT = -402
    INVALID_NEGATIVE_FEEDBACK_TEXT = -403
    INVALID_SEARCH_RESULTS_RANGE = -404
    SEARCH_INDEX_FAILED = -405

    INVALID_DOCUMENT_KEY = -501
    INVALID_ITEM_NAME = -502
    INVALID_MIME_TYPE = -503
    INVALID_CHUNK_TYPE = -504
    INVALID_CHUNK_RANGE = -505
    RETRIEVE_DOCUMENT_FAILED = -506

    GET_SERVER_INFO_FAILED = -600

    GET_SERVER_INDEX_INFO_FAILED = -610
    SERVER_HAS_NO_INDICES = -611

    GET_INDEX_INFO_FAILED = -620

    GET_INDEX_FIELD_INFO_FAILED = -630
    INDEX_HAS_NO_SEARCH_FIELDS = -631

    INVALID_TERM_MATCH = -640
    INVALID_TERM_CASE = -641
    INVALID_TERM = -642
    INVALID_FIELD_NAME = -643
    GET_INDEX_TERM_INFO_FAILED = -644
    INDEX_HAS_NO_TERMS = -645

    GET_DOCUMENT_INFO_FAILED = -650

    GET_INDEX_NAME_FAILED = -660


class BackendError(Exception):
    """Base class for every failure raised by a backend call."""


class BackendTransportError(BackendError):
    """The call did not complete: network, timeout, framing or local I/O."""


class BackendStatusError(BackendError):
    """The backend completed the call and reported a non-zero status."""

    code: int
    text: str | None

    def __init__(self, code: int, text: str | None = None):
        self.code = code
        self.text = text
        message = f"status {code}"
        if text:
            message = f"{message}: {text}"
        super().__init__(message)


class BackendUnavailableError(BackendError):
    """A backend action ran before any connection was opened."""
