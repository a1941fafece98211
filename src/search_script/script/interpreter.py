"""The script interpreter.

Reads logical lines, resolves each one against the action catalog, then
either echoes it (check-only runs) or dispatches it to the backend through
a handler table. The run state lives in an InterpreterSession that is torn
down on every way out of run().
"""

import time
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any, TextIO

import click

from search_script.backend.base import Backend, IndexRef
from search_script.backend.errors import (
    BackendError,
    BackendStatusError,
    BackendUnavailableError,
    ErrorCode,
)
from search_script.backend.messages import (
    WEIGHT_MAXIMUM,
    WEIGHT_MINIMUM,
    ChunkType,
    DocumentItem,
    SearchResponse,
    SearchResult,
    SortType,
)
from search_script.config import DEFAULT_SCRIPT_SETTINGS
from search_script.logger import logging
from search_script.report import ReportError, merge_and_format_search_reports
from search_script.script.actions import Action, ActionCatalog, SearchReportMode
from search_script.script.grammar import ParsedInvocation, ParseError, lookup_action, parse_arguments
from search_script.script.reader import ScriptLine
from search_script.script.session import InterpreterSession

logger = logging.getLogger(__name__)

# Builds the backend for openConnection / initializeServer
BackendConnector = Callable[[Action, Mapping[str, Any]], Backend]

_FLOAT_SORTS = (SortType.DOUBLE_ASC, SortType.DOUBLE_DESC, SortType.FLOAT_ASC, SortType.FLOAT_DESC)
_INTEGER_SORTS = (SortType.UINT_ASC, SortType.UINT_DESC, SortType.ULONG_ASC, SortType.ULONG_DESC)
_STRING_SORTS = (SortType.UCHAR_ASC, SortType.UCHAR_DESC)


def connect_backend(action: Action, fields: Mapping[str, Any], timeout_ms: int) -> Backend:
    """Open the backend a connect action asks for."""
    if action == Action.OPEN_CONNECTION:
        from search_script.backend.remote.client import RemoteBackend

        return RemoteBackend.connect(fields["protocol"], fields["host"], fields["port"], timeout_ms)

    if action == Action.INITIALIZE_SERVER:
        from search_script.backend.local.engine import LocalBackend

        return LocalBackend.initialize(
            Path(fields["index_directory"]),
            Path(fields["configuration_directory"]),
            Path(fields["temporary_directory"]),
        )

    raise ValueError(f"Not a connect action: {action}")


def format_sort_key(sort_type: SortType, sort_key: Any) -> str:
    if sort_type == SortType.NO_SORT:
        return "(none)"
    if sort_type == SortType.UNKNOWN:
        return "(unknown)"
    try:
        if sort_type in _FLOAT_SORTS:
            return f"{float(sort_key):.4f}"
        if sort_type in _INTEGER_SORTS:
            return str(int(sort_key))
        if sort_type in _STRING_SORTS and sort_key is not None:
            return str(sort_key)
    except (TypeError, ValueError):
        pass
    return "(invalid)"


def format_items(items: list[DocumentItem]) -> str:
    if not items:
        return "(none)"
    return "; ".join(f"{item.item_name}, {item.mime_type}, {item.length}" for item in items)


def _printable(value: str | None) -> str:
    return "" if value is None else value


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


class ScriptInterpreter:
    catalog: ActionCatalog
    session: InterpreterSession
    output: TextIO | None
    timeout_ms: int

    def __init__(
        self,
        catalog: ActionCatalog,
        check_only: bool = False,
        output: TextIO | None = None,
        timeout_ms: int = DEFAULT_SCRIPT_SETTINGS.timeout,
        connector: BackendConnector | None = None,
    ):
        self.catalog = catalog
        self.session = InterpreterSession(check_only=check_only)
        self.output = output
        self.timeout_ms = timeout_ms
        self._connector = connector

        self._handlers: dict[Action, Callable[[Mapping[str, Any]], None]] = {
            Action.EXIT: self._exit,
            Action.OPEN_CONNECTION: self._open_connection,
            Action.INITIALIZE_SERVER: self._initialize_server,
            Action.CLOSE_CONNECTION: self._disconnect,
            Action.SHUTDOWN_SERVER: self._shutdown_server,
            Action.LANGUAGE: self._language,
            Action.OPEN_INDEX: self._open_index,
            Action.CLOSE_INDEX: self._close_index,
            Action.SEARCH: self._search,
            Action.SEARCH_LIST: self._search_list,
            Action.SEARCH_OFFSETS: self._search_offsets,
            Action.SEARCH_REPORT: self._search_report,
            Action.RETRIEVE_DOCUMENT: self._retrieve_document,
            Action.RETRIEVE_DOCUMENT_BYTES: self._retrieve_document_bytes,
            Action.SAVE_DOCUMENT: self._save_document,
            Action.ADD_POSITIVE_FEEDBACK: self._add_positive_feedback,
            Action.ADD_POSITIVE_FEEDBACK_TEXT: self._add_positive_feedback_text,
            Action.CLEAR_POSITIVE_FEEDBACK: self._clear_positive_feedback,
            Action.ADD_NEGATIVE_FEEDBACK: self._add_negative_feedback,
            Action.ADD_NEGATIVE_FEEDBACK_TEXT: self._add_negative_feedback_text,
            Action.CLEAR_NEGATIVE_FEEDBACK: self._clear_negative_feedback,
            Action.GET_SERVER_INFO: self._server_info,
            Action.GET_SERVER_INDEX_INFO: self._server_index_info,
            Action.GET_INDEX_INFO: self._index_info,
            Action.GET_INDEX_FIELD_INFO: self._index_field_info,
            Action.GET_INDEX_TERM_INFO: self._index_term_info,
            Action.GET_DOCUMENT_INFO: self._document_info,
            Action.GET_INDEX_NAME: self._index_name,
            Action.SLEEP: self._sleep,
            Action.SKIP: self._skip,
        }

    def echo(self, message: str = ""):
        click.echo(message, file=self.output)

    def run(self, lines: Iterable[ScriptLine]):
        """Run the script until exit or the end of the lines, then tear down."""
        try:
            for line in lines:
                if not self.step(line):
                    break
        except BackendError as e:
            logger.error(
                "Aborting the script at line: %d, backend error: %s",
                self.session.line_number,
                e,
            )
        except MemoryError:
            raise
        except Exception:
            logger.exception("Aborting the script at line: %d, unexpected error", self.session.line_number)
        finally:
            self.session.close()

    def step(self, line: ScriptLine) -> bool:
        """Process one logical line. Returns False once the script should stop."""
        session = self.session
        session.line_number = line.number

        try:
            definition = lookup_action(self.catalog, line.text, line.number)
        except ParseError as e:
            self._log_parse_error(e)
            return True
        if definition is None:
            return True

        if definition.action == Action.RESUME:
            session.skipping = False
            self.echo("Valid: 'resume'." if session.check_only else "Action - Resume")
            return True

        if session.skipping:
            logger.debug("Skipping line: %d, line text: '%s'", line.number, line.text)
            return True

        try:
            invocation = parse_arguments(definition, line.text, line.number)
        except ParseError as e:
            self._log_parse_error(e)
            return True

        if session.check_only:
            self.echo(f"Valid: {invocation.describe()}")
            return invocation.action != Action.EXIT

        return self.execute(invocation)

    def execute(self, invocation: ParsedInvocation) -> bool:
        handler = self._handlers[invocation.action]
        handler(invocation.fields)
        return invocation.action != Action.EXIT

    def _log_parse_error(self, error: ParseError):
        logger.error(
            "Failed to parse line: %d, line text: '%s' (%s)",
            error.line_number,
            error.line,
            error,
        )

    def _backend(self) -> Backend:
        if self.session.backend is None:
            raise BackendUnavailableError("No connection is open")
        return self.session.backend

    def _index_for(self, fields: Mapping[str, Any]) -> IndexRef:
        """The index named on the line, else the last index opened."""
        if "index_name" in fields:
            return fields["index_name"]
        if self.session.current_index is None:
            raise BackendStatusError(ErrorCode.INVALID_INDEX, "no index is open")
        return self.session.current_index

    def _retrieve(self, fields: Mapping[str, Any], chunk_type: ChunkType = ChunkType.DOCUMENT) -> bytes:
        return self._backend().retrieve(
            self._index_for(fields),
            fields["document_key"],
            fields["item_name"],
            fields["mime_type"],
            chunk_type,
            fields.get("start", 0),
            fields.get("end", 0),
        )

    def _echo_document_request(self, fields: Mapping[str, Any]):
        index_name = fields.get("index_name")
        if index_name is None:
            index_name = self._current_index_name()
        line = (
            f"Index: '{index_name}', document key: '{fields['document_key']}', "
            f"item name: '{fields['item_name']}', mime type: '{fields['mime_type']}'"
        )
        if "start" in fields:
            line += f", chunk start: {fields['start']}, chunk end: {fields['end']}"
        self.echo(line + ".")

    def _current_index_name(self) -> str:
        if self.session.index_names:
            return self.session.index_names[-1]
        return ""

    # Connection

    def _exit(self, fields: Mapping[str, Any]):
        self.echo("Function - exiting:")
        self.session.release_backend()
        self.echo(f"Time taken: {self.session.elapsed_ms():.1f} milliseconds.")

    def _open_connection(self, fields: Mapping[str, Any]):
        self.echo("Function - Open Connection:")
        self._connect(Action.OPEN_CONNECTION, fields)

    def _initialize_server(self, fields: Mapping[str, Any]):
        self.echo("Function - Initialize Server:")
        self._connect(Action.INITIALIZE_SERVER, fields)

    def _connect(self, action: Action, fields: Mapping[str, Any]):
        session = self.session
        if session.backend is not None:
            logger.info("Closing the current connection before opening a new one")
            session.release_backend()

        if self._connector is not None:
            session.backend = self._connector(action, fields)
        else:
            session.backend = connect_backend(action, fields, self.timeout_ms)

    def _disconnect(self, fields: Mapping[str, Any]):
        self.echo("Function - Close Connection:")
        self.session.release_backend()

    def _shutdown_server(self, fields: Mapping[str, Any]):
        self.echo("Function - Shutdown Server:")
        self.session.release_backend()

    # Search settings

    def _language(self, fields: Mapping[str, Any]):
        self.session.language_code = fields["language_code"]
        self.echo(f"Action - Setting language to: '{self.session.language_code}'.")

    def _open_index(self, fields: Mapping[str, Any]):
        self.echo("Function - Open Index:")
        backend = self._backend()
        session = self.session

        if session.open_indexes:
            backend.close_index(session.open_indexes)
            session.forget_indexes()

        indexes = backend.open_index(fields["index_names"])
        session.open_indexes = list(indexes)
        session.index_names = [backend.index_name(index) for index in indexes]
        session.current_index = indexes[-1] if indexes else None

    def _close_index(self, fields: Mapping[str, Any]):
        self.echo("Function - Close Index:")
        backend = self._backend()
        if self.session.open_indexes:
            backend.close_index(self.session.open_indexes)
        self.session.forget_indexes()

    def _search_offsets(self, fields: Mapping[str, Any]):
        if self.session.set_window(fields["start"], fields["end"]):
            self.echo("Action - Setting indices to: %d-%d." % self.session.window)

    def _search_report(self, fields: Mapping[str, Any]):
        self.session.search_report_mode = fields["mode"]
        self.echo(f"Action - Getting search report now set to: '{self.session.search_report_mode.value}'.")

    # Searching

    def _search(self, fields: Mapping[str, Any]):
        self._run_search(fields["search_text"], list_hits=False)

    def _search_list(self, fields: Mapping[str, Any]):
        self._run_search(fields["search_text"], list_hits=True)

    def _run_search(self, search_text: str | None, list_hits: bool):
        self.echo("Function - Search Indices:")
        session = self.session
        backend = self._backend()
        start, end = session.window

        response = backend.search(
            session.open_indexes,
            session.language_code,
            search_text,
            session.positive_feedback or None,
            session.negative_feedback or None,
            start,
            end,
        )

        self.echo(self._search_summary(search_text, response))

        if list_hits:
            for number, result in enumerate(response.results):
                self.echo(self._hit_line(number, result, response.sort_type))

        if session.search_report_mode != SearchReportMode.NONE:
            self._render_search_reports(backend, response)

    def _search_summary(self, search_text: str | None, response: SearchResponse) -> str:
        report_count = response.search_report_count
        returned = len(response.results) - report_count
        reports = ""
        if report_count:
            reports = f" (+{report_count} search report{_plural(report_count)})"
        return (
            f"Search: '{_printable(search_text)}', found: {response.total_results} "
            f"document{_plural(response.total_results)} and returned: {returned}{reports}, "
            f"maximum sort key: {response.max_sort_key:.4f}, "
            f"search time: {response.search_time:.1f} milliseconds."
        )

    def _hit_line(self, number: int, result: SearchResult, sort_type: SortType) -> str:
        return (
            f"Hit: {number}, index: '{result.index_name}', document key: '{result.document_key}', "
            f"title: '{result.title}', sort key: {format_sort_key(sort_type, result.sort_key)}, "
            f"language code: '{_printable(result.language_code)}', rank: {result.rank}, "
            f"term count: {result.term_count}, ansi date: {result.ansi_date}, "
            f"items: '{format_items(result.items)}'."
        )

    def _render_search_reports(self, backend: Backend, response: SearchResponse):
        reports: list[str] = []
        for result in response.results:
            if not result.is_search_report:
                continue
            item = result.items[0]
            data = item.data
            if data is None:
                try:
                    data = backend.retrieve(
                        result.index_name,
                        result.document_key,
                        item.item_name,
                        item.mime_type,
                    )
                except BackendError as e:
                    logger.error("Failed to retrieve the search report from index '%s': %s", result.index_name, e)
                    continue
            reports.append(data.decode("utf-8", errors="replace"))

        if not reports:
            return

        if self.session.search_report_mode == SearchReportMode.RAW:
            for report in reports:
                self.echo(f"\n{report}\n\n")
        else:
            try:
                formatted = merge_and_format_search_reports(reports)
            except ReportError as e:
                logger.warning("Failed to merge and format the search reports: %s", e)
                return
            self.echo(f"\n{formatted}\n\n")

    # Documents

    def _retrieve_document(self, fields: Mapping[str, Any]):
        self.echo("Function - Get Document (document):")
        self._echo_document_request(fields)
        data = self._retrieve(fields)
        self.echo(f"\n{data.decode('utf-8', errors='replace')}\n\n")

    def _retrieve_document_bytes(self, fields: Mapping[str, Any]):
        self.echo("Function - Get Document (bytes):")
        self._echo_document_request(fields)
        data = self._retrieve(fields, ChunkType.BYTE)
        self.echo(f"\n{data.decode('utf-8', errors='replace')}\n\n")

    def _save_document(self, fields: Mapping[str, Any]):
        self.echo("Function - Save Document (document):")
        self._echo_document_request(fields)
        data = self._retrieve(fields)
        path = Path(fields["filename"])
        try:
            path.write_bytes(data)
        except OSError as e:
            logger.error("Failed to save the document to '%s': %s", path, e)
            return
        self.echo(f"Saved {len(data)} bytes to: '{path}'.")

    # Feedback

    def _add_positive_feedback(self, fields: Mapping[str, Any]):
        self.echo("Function - Adding positive feedback (document):")
        self._echo_document_request(fields)
        data = self._retrieve(fields)
        self.session.positive_feedback += data.decode("utf-8", errors="replace") + " "

    def _add_positive_feedback_text(self, fields: Mapping[str, Any]):
        text = fields["feedback_text"]
        self.echo(f"Function - Adding positive feedback (text): '{_printable(text)}'.")
        if text:
            self.session.positive_feedback += text + " "

    def _clear_positive_feedback(self, fields: Mapping[str, Any]):
        self.echo("Function - Clearing positive feedback text.")
        self.session.positive_feedback = ""

    def _add_negative_feedback(self, fields: Mapping[str, Any]):
        self.echo("Function - Adding negative feedback (document):")
        self._echo_document_request(fields)
        data = self._retrieve(fields)
        self.session.negative_feedback += data.decode("utf-8", errors="replace") + " "

    def _add_negative_feedback_text(self, fields: Mapping[str, Any]):
        text = fields["feedback_text"]
        self.echo(f"Function - Adding negative feedback (text): '{_printable(text)}'.")
        if text:
            self.session.negative_feedback += text + " "

    def _clear_negative_feedback(self, fields: Mapping[str, Any]):
        self.echo("Function - Clearing negative feedback text.")
        self.session.negative_feedback = ""

    # Metadata

    def _server_info(self, fields: Mapping[str, Any]):
        self.echo("Function - Get Server Info:")
        info = self._backend().server_info()
        self.echo("Server Description:")
        self.echo(f" Server name             : '{_printable(info.name)}'")
        self.echo(f" Server desc             : '{_printable(info.description)}'")
        self.echo(f" Server admin name       : '{_printable(info.admin_name)}'")
        self.echo(f" Server admin email      : '{_printable(info.admin_email)}'")
        self.echo(f" Server index #          :  {info.index_count}")
        self.echo(f" Server ranking algorithm: '{_printable(info.ranking_algorithm)}'")
        if info.weight_minimum <= WEIGHT_MINIMUM:
            self.echo(" Server min weight       : '-infinity'")
        else:
            self.echo(f" Server min weight       : {info.weight_minimum:.4f}")
        if info.weight_maximum >= WEIGHT_MAXIMUM:
            self.echo(" Server max weight       : '+infinity'")
        else:
            self.echo(f" Server max weight       : {info.weight_maximum:.4f}")

    def _server_index_info(self, fields: Mapping[str, Any]):
        self.echo("Function - Get Server Index Info:")
        infos = self._backend().server_index_info()
        self.echo("Index Descriptions:")
        self.echo(" Name               Description ")
        for info in infos:
            name = _printable(info.name)
            self.echo(f" '{name}'{' '.ljust(17 - len(name))}'{_printable(info.description)}'")

    def _index_info(self, fields: Mapping[str, Any]):
        self.echo("Function - Get Index Info:")
        info = self._backend().index_info(self._index_for(fields))
        self.echo("Index Description:")
        self.echo(f" Index Name            : '{_printable(info.name)}'")
        self.echo(f" Index Description     : '{_printable(info.description)}'")
        self.echo(f" Language Code         : '{_printable(info.language_code)}'")
        self.echo(f" Tokenizer Name        : '{_printable(info.tokenizer_name)}'")
        self.echo(f" Stemmer Name          : '{_printable(info.stemmer_name)}'")
        self.echo(f" Stop List Name        : '{_printable(info.stop_list_name)}'")
        self.echo(f" Document Count        :  {info.document_count}")
        self.echo(f" Total Term Count      :  {info.total_term_count}")
        self.echo(f" Unique Term Count     :  {info.unique_term_count}")
        self.echo(f" Total Stop Term Count :  {info.total_stop_term_count}")
        self.echo(f" Unique Stop Term Count:  {info.unique_stop_term_count}")
        self.echo(f" Access Control        :  {info.access_control}")
        self.echo(f" Update Frequency      :  {info.update_frequency}")
        self.echo(f" Last Update Ansi Date :  {info.last_update_ansi_date}")
        self.echo(f" Case Sensitive        :  {info.case_sensitive}")

    def _index_field_info(self, fields: Mapping[str, Any]):
        self.echo("Function - Get Index Field Info:")
        infos = self._backend().index_field_info(self._index_for(fields))
        self.echo("Index Field Descriptions:")
        self.echo(" Name               Description                                 Type")
        for info in infos:
            name = _printable(info.name)
            description = _printable(info.description)
            self.echo(
                f" '{name}'{' '.ljust(17 - len(name))}'{description}'{' '.ljust(42 - len(description))}{int(info.type)}"
            )

    def _index_term_info(self, fields: Mapping[str, Any]):
        self.echo("Function - Get Index Term Info:")
        infos = self._backend().index_term_info(
            self._index_for(fields),
            fields["term_match"],
            fields["term_case"],
            fields["term"],
            fields["field_name"],
        )
        self.echo("Index Terms:")
        self.echo(" Term                                         Category   TermCount   DocCount")
        for info in infos:
            self.echo(
                f" '{info.term}'{' '.ljust(32 - len(info.term))}"
                f"{int(info.type):12d}{info.count:12d}{info.document_count:12d}"
            )

    def _document_info(self, fields: Mapping[str, Any]):
        self.echo("Function - Get Document Info:")
        info = self._backend().document_info(self._index_for(fields), fields["document_key"])
        self.echo(
            f"Index: '{info.index_name}', document key: '{info.document_key}', title: '{info.title}', "
            f"language code: '{_printable(info.language_code)}', rank: {info.rank}, "
            f"term count: {info.term_count}, ansi date: {info.ansi_date}, "
            f"items: '{format_items(info.items)}'."
        )

    def _index_name(self, fields: Mapping[str, Any]):
        self.echo("Function - Get Index Name:")
        name = self._backend().index_name(self._index_for(fields))
        self.echo(f"Index name: '{name}'.")

    # Flow control

    def _sleep(self, fields: Mapping[str, Any]):
        seconds = fields["seconds"]
        self.echo(f"Sleep: {seconds} second{_plural(seconds)}")
        if seconds > 0:
            time.sleep(seconds)

    def _skip(self, fields: Mapping[str, Any]):
        self.echo("Action - Skip")
        self.session.skipping = True
