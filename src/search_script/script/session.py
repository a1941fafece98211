import time
from dataclasses import dataclass, field

from search_script.backend.base import Backend, IndexRef
from search_script.backend.errors import BackendError
from search_script.logger import logging
from search_script.script.actions import SearchReportMode

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = (0, 0)


@dataclass
class InterpreterSession:
    """
    Everything one script run accumulates.

    A session belongs to exactly one worker. close() releases the backend
    and resets the run state; the interpreter calls it on every way out.
    """

    check_only: bool = False
    backend: Backend | None = None
    open_indexes: list[IndexRef] = field(default_factory=list)
    index_names: list[str] = field(default_factory=list)
    current_index: IndexRef | None = None
    language_code: str | None = None
    positive_feedback: str = ""
    negative_feedback: str = ""
    window: tuple[int, int] = DEFAULT_WINDOW
    search_report_mode: SearchReportMode = SearchReportMode.NONE
    skipping: bool = False
    line_number: int = 0
    started_at: float = field(default_factory=time.perf_counter)

    def set_window(self, start: int, end: int) -> bool:
        """Apply a new result window, refusing an inverted one."""
        if start > end:
            logger.warning("Ignoring inverted result window %d-%d, keeping %d-%d", start, end, *self.window)
            return False
        self.window = (start, end)
        return True

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000.0

    def forget_indexes(self):
        self.open_indexes = []
        self.index_names = []
        self.current_index = None

    def release_backend(self):
        """Close the open indexes and the backend, keeping the rest of the run state."""
        backend = self.backend
        self.backend = None
        if backend is not None:
            if self.open_indexes:
                try:
                    backend.close_index(self.open_indexes)
                except BackendError as e:
                    logger.error("Failed to close the open indexes: %s", e)
            try:
                backend.close()
            except BackendError as e:
                logger.error("Failed to close the backend: %s", e)
        self.forget_indexes()

    def close(self):
        """Release the backend and clear the accumulated run state."""
        self.release_backend()
        self.positive_feedback = ""
        self.negative_feedback = ""
        self.window = DEFAULT_WINDOW
