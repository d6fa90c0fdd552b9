"""User configuration loading for mcplink.

Precedence, lowest first: ClientConfig defaults, the user config module at
~/.mcplink/config.py, then MCPLINK_* environment variables (a .env file in
the working directory is loaded first). `servers` maps a connection name to
the command connect_stdio launches when it is called without one.

Example ~/.mcplink/config.py:

    client_name = "my-host"
    roots = ["file:///home/me/projects"]
    servers = {
        "fs": ["npx", "-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
    }
"""

import importlib.util
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from .protocol import PROTOCOL_VERSION

logger = logging.getLogger('mcplink')

CONFIG_PATH = Path.home() / ".mcplink" / "config.py"

_CONFIG_NOT_FOUND = object()
_user_config = None


@dataclass
class ClientConfig:
    client_name: str = "mcplink"
    client_version: str = "0.1.0"
    protocol_version: str = PROTOCOL_VERSION
    roots: list = field(default_factory=list)
    forward_stderr: bool = True
    servers: dict = field(default_factory=dict)


_ENV_VARS = {
    'client_name': 'MCPLINK_CLIENT_NAME',
    'client_version': 'MCPLINK_CLIENT_VERSION',
    'protocol_version': 'MCPLINK_PROTOCOL_VERSION',
    'forward_stderr': 'MCPLINK_FORWARD_STDERR',
}


def get_user_config(path: Optional[Path] = None):
    """Load the user config module once; None if absent or broken."""
    global _user_config

    if path is None and _user_config is not None:
        return None if _user_config is _CONFIG_NOT_FOUND else _user_config

    config_path = path or CONFIG_PATH
    module = _CONFIG_NOT_FOUND
    if config_path.exists():
        try:
            spec = importlib.util.spec_from_file_location("mcplink_user_config", config_path)
            if spec and spec.loader:
                module = importlib.util.module_from_spec(spec)
                spec.loader.exec_module(module)
        except Exception as e:
            logger.warning(f"Failed to load user config from {config_path}: {e}")
            module = _CONFIG_NOT_FOUND

    if path is None:
        _user_config = module
    return None if module is _CONFIG_NOT_FOUND else module


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def load_config(path: Optional[Path] = None, dotenv: bool = True) -> ClientConfig:
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True))

    config = ClientConfig()

    if module := get_user_config(path):
        for f in fields(ClientConfig):
            if hasattr(module, f.name):
                setattr(config, f.name, getattr(module, f.name))

    for name, env_var in _ENV_VARS.items():
        if (value := os.getenv(env_var)) is not None:
            setattr(config, name, _parse_bool(value) if name == 'forward_stderr' else value)

    return config
