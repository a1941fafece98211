"""Run a script once inline, or replicated across worker threads."""

import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import TextIO

from search_script.config import DEFAULT_SCRIPT_SETTINGS
from search_script.logger import logging
from search_script.script.actions import ActionCatalog
from search_script.script.interpreter import BackendConnector, ScriptInterpreter
from search_script.script.reader import ScriptReader, open_script_source

logger = logging.getLogger(__name__)


class HarnessError(Exception):
    """The run cannot start as configured."""


def run_script(
    catalog: ActionCatalog,
    script_path: Path | None,
    check_only: bool = False,
    output: TextIO | None = None,
    timeout_ms: int = DEFAULT_SCRIPT_SETTINGS.timeout,
    connector: BackendConnector | None = None,
):
    """Run the script once on the calling thread.

    Raises:
        OSError: If the script cannot be opened.
    """
    interpreter = ScriptInterpreter(
        catalog,
        check_only=check_only,
        output=output,
        timeout_ms=timeout_ms,
        connector=connector,
    )
    source = open_script_source(script_path)
    try:
        interpreter.run(ScriptReader(source))
    finally:
        if script_path is not None:
            source.close()


def _worker(run: Callable[[], None], script_path: Path):
    try:
        run()
    except OSError as e:
        logger.critical("Failed to open the script file: '%s': %s", script_path, e)


def run_workers(
    catalog: ActionCatalog,
    script_path: Path | None,
    threads: int = 1,
    interval: int = DEFAULT_SCRIPT_SETTINGS.interval,
    check_only: bool = False,
    output: TextIO | None = None,
    timeout_ms: int = DEFAULT_SCRIPT_SETTINGS.timeout,
    connector: BackendConnector | None = None,
):
    """
    Run the script in `threads` independent workers.

    Each worker opens the script itself and owns its interpreter session and
    backend. Starts are spaced `interval` seconds apart and the call returns
    once every worker has finished. A single worker runs inline.

    Raises:
        HarnessError: If several workers would share standard input.
        OSError: If the inline run cannot open the script.
    """

    def run():
        run_script(
            catalog,
            script_path,
            check_only=check_only,
            output=output,
            timeout_ms=timeout_ms,
            connector=connector,
        )

    if threads <= 1:
        run()
        return

    if script_path is None:
        raise HarnessError("Running several threads requires a script file, standard input cannot be shared")

    workers: list[threading.Thread] = []
    for number in range(threads):
        if number > 0 and interval > 0:
            logger.debug("Waiting %d seconds before starting the next worker", interval)
            time.sleep(interval)
        worker = threading.Thread(
            target=_worker,
            args=(run, script_path),
            name=f"script-worker-{number + 1}",
        )
        logger.info("Starting worker %d of %d", number + 1, threads)
        worker.start()
        workers.append(worker)

    for worker in workers:
        worker.join()

    logger.info("All %d workers finished", threads)
