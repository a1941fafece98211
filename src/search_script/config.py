"""Runtime settings for the script tools and the in-process server."""

import os
import sys
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from search_script.logger import logging

logger = logging.getLogger(__name__)

SERVER_CONFIG_FILE_NAME = "server.toml"

ENV_SERVER_NAME = "SEARCH_SCRIPT_SERVER_NAME"


@dataclass(frozen=True)
class ScriptSettings:
    """Defaults for the script tools."""

    interval: int = 30  # seconds between worker starts
    timeout: int = 60000  # milliseconds per remote call
    max_line_length: int = 51200  # logical line bound, longer lines are truncated


DEFAULT_SCRIPT_SETTINGS = ScriptSettings()


@dataclass(frozen=True)
class ServerConfig:
    """Description the in-process server reports through getServerInfo."""

    name: str = "search-script"
    description: str = "In-process full text search server"
    admin_name: str = ""
    admin_email: str = ""
    ranking_algorithm: str = "bm25"
    weight_minimum: float = -sys.float_info.max
    weight_maximum: float = sys.float_info.max


_SERVER_CONFIG_ADAPTER = TypeAdapter(ServerConfig)


def load_server_config(config_dir: Path | None) -> ServerConfig:
    """
    Load the server configuration.

    Reads ``server.toml`` from the configuration directory when present, then
    applies the SEARCH_SCRIPT_SERVER_NAME environment override.

    Raises:
        ValueError: If the configuration file is not valid TOML or has
            unknown keys or values of the wrong type.
    """
    values: dict = {}

    if config_dir is not None:
        config_path = Path(config_dir) / SERVER_CONFIG_FILE_NAME
        if config_path.is_file():
            logger.debug("Loading server configuration from %s", config_path)
            try:
                with open(config_path, "rb") as f:
                    values = tomllib.load(f).get("server", {})
            except tomllib.TOMLDecodeError as e:
                raise ValueError(f"Invalid server configuration {config_path}: {e}") from e
            if not isinstance(values, dict):
                raise ValueError(f"Invalid server configuration {config_path}: [server] is not a table")

    env_name = os.environ.get(ENV_SERVER_NAME)
    if env_name:
        values["name"] = env_name

    unknown = set(values) - {f.name for f in fields(ServerConfig)}
    if unknown:
        raise ValueError(f"Invalid server configuration: unknown keys {sorted(unknown)}")

    try:
        return _SERVER_CONFIG_ADAPTER.validate_python(values)
    except ValidationError as e:
        raise ValueError(f"Invalid server configuration: {e}") from e
