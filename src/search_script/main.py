import locale
import sys
import tempfile
from collections.abc import Sequence
from pathlib import Path

import click

from search_script import __version__
from search_script.config import DEFAULT_SCRIPT_SETTINGS
from search_script.logger import LOG_LEVELS, LOG_TARGET_STDERR, configure_logging, logging
from search_script.script.actions import LOCAL_CATALOG, REMOTE_CATALOG, ActionCatalog

logger = logging.getLogger(__name__)

CONTEXT_SETTINGS = {"help_option_names": ["-?", "--help", "--usage"]}


def _actions_epilog(catalog: ActionCatalog) -> str:
    # \b keeps click from rewrapping the syntax lines
    return "Actions:\n\n\b\n" + "\n".join(f"  {line}" for line in catalog.syntax_lines())


def _is_utf8_locale(name: str) -> bool:
    return "utf8" in name.lower().replace("-", "")


def _setup_logging(log_target: str, level: int):
    try:
        configure_logging(log_target, level)
    except OSError as e:
        logger.critical("Failed to open the log file: '%s': %s", log_target, e)
        sys.exit(1)


def _setup_locale(locale_name: str | None):
    if locale_name is None:
        return
    if not _is_utf8_locale(locale_name):
        logger.critical("Locale '%s' is not a UTF-8 locale", locale_name)
        sys.exit(1)
    try:
        locale.setlocale(locale.LC_ALL, locale_name)
    except locale.Error as e:
        logger.critical("Failed to set the locale to '%s': %s", locale_name, e)
        sys.exit(1)


def _validate_index_name(ctx: click.Context, param: click.Parameter, value: str) -> str:
    from search_script.backend.local.engine import INDEX_NAME_PATTERN

    if not INDEX_NAME_PATTERN.fullmatch(value):
        raise click.BadParameter("use letters, digits, '.', '-' or '_'")
    return value


def logging_options(f):
    f = click.option(
        "--level",
        "log_level",
        type=click.IntRange(min(LOG_LEVELS), max(LOG_LEVELS)),
        default=1,
        show_default=True,
        help="Log level, 0 (debug) to 4 (fatal).",
    )(f)
    f = click.option(
        "--log",
        "log_target",
        default=LOG_TARGET_STDERR,
        show_default=True,
        help="Log to a file, 'stdout' or 'stderr'.",
    )(f)
    return f


def script_options(f):
    f = click.option("--locale", "locale_name", default=None, help="UTF-8 locale to run under.")(f)
    f = click.option("--check", "check_only", is_flag=True, help="Check the script syntax without running it.")(f)
    f = click.option(
        "--interval",
        type=click.IntRange(min=0),
        default=DEFAULT_SCRIPT_SETTINGS.interval,
        show_default=True,
        help="Seconds between thread starts.",
    )(f)
    f = click.option(
        "--threads",
        type=click.IntRange(min=1),
        default=1,
        show_default=True,
        help="Number of threads running the script.",
    )(f)
    f = click.option(
        "--script",
        "script_path",
        default=None,
        help="Script to run, standard input when omitted.",
        type=click.Path(exists=True, dir_okay=False, file_okay=True, readable=True, path_type=Path),
    )(f)
    return logging_options(f)


def _run(
    catalog: ActionCatalog,
    script_path: Path | None,
    threads: int,
    interval: int,
    check_only: bool,
    locale_name: str | None,
    log_target: str,
    log_level: int,
    timeout_ms: int = DEFAULT_SCRIPT_SETTINGS.timeout,
):
    from search_script.script.harness import HarnessError, run_workers

    _setup_logging(log_target, log_level)
    _setup_locale(locale_name)

    try:
        run_workers(
            catalog,
            script_path,
            threads=threads,
            interval=interval,
            check_only=check_only,
            timeout_ms=timeout_ms,
        )
    except HarnessError as e:
        logger.critical("%s", e)
        sys.exit(1)
    except OSError as e:
        logger.critical("Failed to open the script file: '%s': %s", script_path, e)
        sys.exit(1)


@click.group("search-script", context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, prog_name="search-script")
def main():
    """
    Scriptable test and replay tool for search backends.
    """
    pass


@main.command("remote", epilog=_actions_epilog(REMOTE_CATALOG), context_settings=CONTEXT_SETTINGS)
@script_options
@click.option(
    "--timeout",
    "timeout_ms",
    type=click.IntRange(min=1),
    default=DEFAULT_SCRIPT_SETTINGS.timeout,
    show_default=True,
    help="Network timeout in milliseconds.",
)
def remote_cmd(
    script_path: Path | None,
    threads: int,
    interval: int,
    check_only: bool,
    locale_name: str | None,
    log_target: str,
    log_level: int,
    timeout_ms: int,
):
    """
    Run a script against a remote search server.
    """
    _run(
        REMOTE_CATALOG,
        script_path,
        threads,
        interval,
        check_only,
        locale_name,
        log_target,
        log_level,
        timeout_ms=timeout_ms,
    )


@main.command("local", epilog=_actions_epilog(LOCAL_CATALOG), context_settings=CONTEXT_SETTINGS)
@script_options
def local_cmd(
    script_path: Path | None,
    threads: int,
    interval: int,
    check_only: bool,
    locale_name: str | None,
    log_target: str,
    log_level: int,
):
    """
    Run a script against the in-process search engine.
    """
    _run(LOCAL_CATALOG, script_path, threads, interval, check_only, locale_name, log_target, log_level)


@main.command("serve", context_settings=CONTEXT_SETTINGS)
@click.option("--host", default="127.0.0.1", show_default=True, help="Address to listen on.")
@click.option("--port", type=click.IntRange(0, 65535), default=None, help="Port to listen on.")
@click.option(
    "--index-dir",
    "index_dir",
    required=True,
    help="Directory holding the index files.",
    type=click.Path(exists=True, dir_okay=True, file_okay=False, path_type=Path),
)
@click.option(
    "--config-dir",
    "config_dir",
    default=None,
    help="Configuration directory, the index directory when omitted.",
    type=click.Path(exists=True, dir_okay=True, file_okay=False, path_type=Path),
)
@click.option(
    "--temp-dir",
    "temp_dir",
    default=None,
    help="Temporary directory, the system one when omitted.",
    type=click.Path(exists=True, dir_okay=True, file_okay=False, path_type=Path),
)
@logging_options
def serve_cmd(
    host: str,
    port: int | None,
    index_dir: Path,
    config_dir: Path | None,
    temp_dir: Path | None,
    log_target: str,
    log_level: int,
):
    """
    Serve the indexes of a directory to remote scripts.
    """
    from search_script.backend.errors import BackendStatusError
    from search_script.backend.remote.protocol import DEFAULT_PORT
    from search_script.backend.remote.server import ProtocolServer

    _setup_logging(log_target, log_level)

    server = ProtocolServer(
        (host, DEFAULT_PORT if port is None else port),
        index_dir,
        config_dir or index_dir,
        temp_dir or Path(tempfile.gettempdir()),
    )
    try:
        # Fail at startup rather than on the first connection
        server.open_backend().close()
    except BackendStatusError as e:
        logger.critical("Failed to initialize the server: %s", e)
        server.server_close()
        sys.exit(1)

    logger.info("Listening on %s:%d", *server.server_address[:2])
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        server.server_close()


@main.command("index", context_settings=CONTEXT_SETTINGS)
@click.option(
    "--index-dir",
    "index_dir",
    required=True,
    help="Directory holding the index files.",
    type=click.Path(dir_okay=True, file_okay=False, path_type=Path),
)
@click.option("--name", required=True, callback=_validate_index_name, help="Index name.")
@click.option("--description", default=None, help="Index description.")
@click.option("--language", "language_code", default="en", show_default=True, help="Language code of the documents.")
@click.argument(
    "paths",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=True, file_okay=True, path_type=Path),
)
@logging_options
def index_cmd(
    index_dir: Path,
    name: str,
    description: str | None,
    language_code: str,
    paths: Sequence[Path],
    log_target: str,
    log_level: int,
):
    """
    Index markdown and text files into a named index.
    """
    from search_script.backend.local.indexer import Indexer

    _setup_logging(log_target, log_level)

    indexer = Indexer.create(index_dir, name, description=description, language_code=language_code)
    try:
        written = indexer.index(list(paths))
    finally:
        indexer.close()
    click.echo(f"Indexed {written} document(s) into '{name}'.")


if __name__ == "__main__":
    main()
