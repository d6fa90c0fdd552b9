"""Tests for mcplink.config: defaults, user module and environment."""

import os

from mcplink.config import ClientConfig, get_user_config, load_config
from mcplink.protocol import PROTOCOL_VERSION


class TestLoadConfig:
    def test_defaults(self, tmp_path, monkeypatch):
        for var in ("MCPLINK_CLIENT_NAME", "MCPLINK_CLIENT_VERSION",
                    "MCPLINK_PROTOCOL_VERSION", "MCPLINK_FORWARD_STDERR"):
            monkeypatch.delenv(var, raising=False)
        config = load_config(tmp_path / "absent.py", dotenv=False)
        assert config == ClientConfig()
        assert config.protocol_version == PROTOCOL_VERSION

    def test_user_module(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MCPLINK_CLIENT_NAME", raising=False)
        path = tmp_path / "config.py"
        path.write_text(
            'client_name = "my-host"\n'
            'roots = ["file:///work"]\n'
            'servers = {"fs": ["mcp-fs", "/tmp"]}\n'
            'unrelated = 1\n'
        )
        config = load_config(path, dotenv=False)
        assert config.client_name == "my-host"
        assert config.roots == ["file:///work"]
        assert config.servers == {"fs": ["mcp-fs", "/tmp"]}
        assert not hasattr(config, "unrelated")

    def test_environment_overrides_module(self, tmp_path, monkeypatch):
        path = tmp_path / "config.py"
        path.write_text('client_name = "from-module"\n')
        monkeypatch.setenv("MCPLINK_CLIENT_NAME", "from-env")
        monkeypatch.setenv("MCPLINK_FORWARD_STDERR", "no")
        config = load_config(path, dotenv=False)
        assert config.client_name == "from-env"
        assert config.forward_stderr is False

    def test_dotenv_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MCPLINK_CLIENT_VERSION", raising=False)
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("MCPLINK_CLIENT_VERSION=9.9.9\n")
        try:
            config = load_config(tmp_path / "absent.py")
            assert config.client_version == "9.9.9"
        finally:
            os.environ.pop("MCPLINK_CLIENT_VERSION", None)

    def test_broken_module_ignored(self, tmp_path):
        path = tmp_path / "config.py"
        path.write_text("raise RuntimeError('bad config')\n")
        assert get_user_config(path) is None
