"""Configuration management for nixlink.

Loads user settings from ~/.config/nixlink/config.cfg (or a .env file as a
fallback) and turns them into ConnectionSettings, which decide how a
StoreConnection reaches the daemon.
"""

import configparser
from dataclasses import dataclass
import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values

from nixlink.daemon.client import StoreConnection
from nixlink.daemon.stderr import StderrHandler
from nixlink.daemon.transport import (
    DEFAULT_DAEMON_PROGRAM,
    DEFAULT_SOCKET_PATH,
    SOCKET_PATH_ENV,
    get_socket_path,
)

# Default location for user configuration.
CONFIG_PATH = Path.home() / ".config" / "nixlink" / "config.cfg"
ENV_PATH = Path(".env")

TRANSPORTS = ("socket", "spawn")


@dataclass
class ConnectionSettings:
    transport: str = "socket"
    socket_path: Path = DEFAULT_SOCKET_PATH
    store_uri: str = "auto"
    daemon_program: str = DEFAULT_DAEMON_PROGRAM
    show_activities: bool = False


def load_raw_config(path: Path = CONFIG_PATH, env_path: Path = ENV_PATH) -> Dict[str, str]:
    """
    Load configuration values from the config file.
    Values are returned with lowercase keys for convenience.

    If the config file does not exist, `env_path` is read instead
    (KEY=value lines, keys lowercased).
    """
    data: Dict[str, str] = {}

    if path.exists():
        cfg = configparser.ConfigParser()
        cfg.read(path)
        if "DEFAULT" in cfg:
            data.update({k.lower(): v for k, v in cfg["DEFAULT"].items()})
    elif env_path.exists():
        data.update(
            {k.lower(): v for k, v in dotenv_values(env_path).items() if v is not None}
        )

    return data


def _get_bool(raw: Dict[str, str], key: str, default: bool = False) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def get_connection_settings(raw: Optional[Dict[str, str]] = None) -> ConnectionSettings:
    """
    Build ConnectionSettings from raw configuration values.

    Environment variables win over the config file:
    NIX_DAEMON_SOCKET_PATH, NIXLINK_TRANSPORT, NIXLINK_STORE, NIXLINK_DAEMON_PROGRAM,
    NIXLINK_SHOW_ACTIVITIES. Setting NIXLINK_STORE (or store_uri in the
    config) without an explicit transport selects the spawn transport.

    Raises ValueError for an unknown transport name.
    """
    raw = dict(raw if raw is not None else load_raw_config())

    env_map = {
        SOCKET_PATH_ENV: "socket_path",
        "NIXLINK_STORE": "store_uri",
        "NIXLINK_DAEMON_PROGRAM": "daemon_program",
        "NIXLINK_SHOW_ACTIVITIES": "show_activities",
        "NIXLINK_TRANSPORT": "transport",
    }
    for env_key, key in env_map.items():
        value = os.environ.get(env_key)
        if value is not None and value.strip() != "":
            raw[key] = value.strip()

    defaults = ConnectionSettings()
    store_uri = raw.get("store_uri", "").strip()
    transport = raw.get("transport", "").strip().lower() or ("spawn" if store_uri else "socket")
    if transport not in TRANSPORTS:
        raise ValueError(
            f"Unknown transport '{transport}'. Expected one of: {', '.join(TRANSPORTS)}"
        )

    socket_path = raw.get("socket_path", "").strip()
    return ConnectionSettings(
        transport=transport,
        socket_path=Path(socket_path) if socket_path else get_socket_path(),
        store_uri=store_uri or defaults.store_uri,
        daemon_program=raw.get("daemon_program", "").strip() or defaults.daemon_program,
        show_activities=_get_bool(raw, "show_activities", defaults.show_activities),
    )


def open_connection(
    settings: ConnectionSettings, handler: Optional[StderrHandler] = None
) -> StoreConnection:
    """Open a StoreConnection using the transport chosen in `settings`."""
    if settings.transport == "spawn":
        return StoreConnection.connect_to_store(
            settings.store_uri, program=settings.daemon_program, handler=handler
        )
    return StoreConnection.connect_local(settings.socket_path, handler=handler)
