import tempfile

import pytest
from click.testing import CliRunner

from search_script import __version__
from search_script.main import main


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def log_args(tmp_path):
    return ["--log", str(tmp_path / "run.log"), "--level", "0"]


def write_script(tmp_path, text: str):
    path = tmp_path / "script.txt"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


@pytest.mark.parametrize("option", ["-?", "--help", "--usage"])
def test_help_lists_action_syntax(runner, option):
    result = runner.invoke(main, ["remote", option])
    assert result.exit_code == 0
    assert "openConnection protocol{A} hostName{A} hostPort{N}" in result.output
    assert "--timeout" in result.output


def test_local_help_has_no_timeout(runner):
    result = runner.invoke(main, ["local", "--help"])
    assert result.exit_code == 0
    assert "initializeServer indexDirectoryPath{A}" in result.output
    assert "--timeout" not in result.output


def test_check_only(runner, tmp_path, log_args):
    script = write_script(tmp_path, "initializeServer /nowhere\nsearch foo\nexit\n")
    result = runner.invoke(main, ["local", "--check", "--script", script, *log_args])
    assert result.exit_code == 0
    assert [line for line in result.output.splitlines() if line.startswith("Valid:")] == [
        "Valid: 'initializeServer' '/nowhere' '/nowhere' '" + tempfile.gettempdir() + "'.",
        "Valid: 'search' 'foo'.",
        "Valid: 'exit'.",
    ]


def test_script_from_standard_input(runner, log_args):
    result = runner.invoke(main, ["remote", "--check", *log_args], input="searchOffsets 0 9\nexit\n")
    assert result.exit_code == 0
    assert "Valid: 'searchOffsets' 0 9." in result.output
    assert "Valid: 'exit'." in result.output


def test_local_run(runner, tmp_path, index_dir, log_args):
    script = write_script(
        tmp_path,
        f"initializeServer {index_dir} {index_dir} {tmp_path}\n"
        "openIndex notes\n"
        "searchList robot\n"
        "getIndexName\n"
        "getIndexTermInfo typo insensitive robt\n"
        "exit\n",
    )
    result = runner.invoke(main, ["local", "--script", script, *log_args])
    assert result.exit_code == 0
    assert "found: 1 document and returned: 1 (+1 search report)" in result.output
    assert "document key: 'beta.md'" in result.output
    assert "Index name: 'notes'." in result.output
    assert "'robot'" in result.output
    assert "Time taken:" in result.output


def test_script_errors_do_not_change_the_exit_status(runner, tmp_path, log_args):
    script = write_script(tmp_path, "frobnicate\nsearch foo\n")
    result = runner.invoke(main, ["local", "--script", script, *log_args])
    assert result.exit_code == 0
    log = (tmp_path / "run.log").read_text(encoding="utf-8")
    assert "Failed to parse line: 1" in log
    assert "Aborting the script at line: 2" in log


def test_oversized_sleep_does_not_change_the_exit_status(runner, tmp_path, log_args):
    script = write_script(tmp_path, "sleep 99999999999999999\nexit\n")
    result = runner.invoke(main, ["remote", "--script", script, *log_args])
    assert result.exit_code == 0
    assert "Failed to parse line: 1" in (tmp_path / "run.log").read_text(encoding="utf-8")


def test_threads(runner, tmp_path, log_args):
    script = write_script(tmp_path, "sleep 0\nexit\n")
    result = runner.invoke(main, ["local", "--script", script, "--threads", "3", "--interval", "0", *log_args])
    assert result.exit_code == 0
    assert result.output.count("Time taken:") == 3


def test_several_threads_need_a_script_file(runner, log_args):
    result = runner.invoke(main, ["local", "--threads", "2", "--interval", "0", *log_args], input="exit\n")
    assert result.exit_code == 1


@pytest.mark.parametrize(
    "args",
    [
        ["--threads", "0"],
        ["--interval", "-1"],
        ["--level", "7"],
        ["--timeout", "0"],
        ["--script", "/does/not/exist"],
    ],
)
def test_invalid_arguments(runner, args):
    result = runner.invoke(main, ["remote", *args])
    assert result.exit_code == 2


def test_non_utf8_locale_is_fatal(runner, tmp_path, log_args):
    script = write_script(tmp_path, "exit\n")
    result = runner.invoke(main, ["local", "--script", script, "--locale", "C", *log_args])
    assert result.exit_code == 1


def test_index_command(runner, tmp_path, notes_dir, log_args):
    index_dir = tmp_path / "built"
    result = runner.invoke(
        main,
        ["index", "--index-dir", str(index_dir), "--name", "notes", "--description", "Notes", str(notes_dir), *log_args],
    )
    assert result.exit_code == 0
    assert "Indexed 3 document(s) into 'notes'." in result.output
    assert (index_dir / "notes.db").is_file()


def test_index_command_rejects_bad_names(runner, tmp_path, notes_dir):
    result = runner.invoke(main, ["index", "--index-dir", str(tmp_path), "--name", "../escape", str(notes_dir)])
    assert result.exit_code == 2


def test_serve_fails_on_bad_configuration(runner, tmp_path, log_args):
    (tmp_path / "server.toml").write_text("[server\n", encoding="utf-8")
    result = runner.invoke(main, ["serve", "--index-dir", str(tmp_path), "--port", "0", *log_args])
    assert result.exit_code == 1
