import io
import sys
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from search_script.config import DEFAULT_SCRIPT_SETTINGS
from search_script.logger import logging

logger = logging.getLogger(__name__)

CONTINUATION = "\\"
COMMENT = "#"


@dataclass
class ScriptLine:
    number: int  # physical line on which the logical line ends
    text: str


def open_script_source(script_path: Path | None) -> BinaryIO:
    """Open the script for reading, standard input when no path is given.

    Raises:
        OSError: If the script file cannot be opened.
    """
    if script_path is None:
        return sys.stdin.buffer
    return open(script_path, "rb")


class ScriptReader:
    """
    Assemble logical script lines from a byte stream.

    Lines are decoded as UTF-8 with replacement and newlines are normalized.
    A trailing backslash joins the next physical line on directly, comment
    lines come back empty so the line numbering stays intact. The maximum
    line length bounds the joined logical line, not each physical read;
    anything beyond it is dropped.
    """

    source: BinaryIO
    max_line_length: int

    def __init__(self, source: BinaryIO, max_line_length: int = DEFAULT_SCRIPT_SETTINGS.max_line_length):
        self.source = source
        self.max_line_length = max_line_length

    def __iter__(self) -> Iterator[ScriptLine]:
        return self.lines()

    def lines(self) -> Iterator[ScriptLine]:
        text_stream = io.TextIOWrapper(self.source, encoding="utf-8", errors="replace", newline=None)
        pending: str | None = None
        number = 0
        try:
            for physical in text_stream:
                number += 1
                physical = physical.rstrip("\n")

                if physical.endswith(CONTINUATION):
                    pending = (pending or "") + physical[: -len(CONTINUATION)]
                    continue

                logical = (pending or "") + physical
                pending = None
                yield self._finish(number, logical)

            if pending is not None:
                yield self._finish(number, pending)
        finally:
            # The caller owns the underlying source
            if not self.source.closed:
                text_stream.detach()

    def _finish(self, number: int, logical: str) -> ScriptLine:
        if len(logical) > self.max_line_length:
            logger.debug("Truncating line %d from %d characters", number, len(logical))
            logical = logical[: self.max_line_length]

        if logical.startswith(COMMENT):
            logger.debug("Comment, line: %d, line text: '%s'", number, logical)
            return ScriptLine(number, "")

        return ScriptLine(number, logical)
