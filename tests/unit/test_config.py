"""Tests for configuration loading."""

import os

import pytest
import yaml

from lssh.config import Config, ServerConfig, DEFAULT_PORT


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        """Should default to the ssh proxy type and ~/.bashrc."""
        server = ServerConfig(addr="10.0.0.1")
        assert server.proxy_type == "ssh"
        assert server.local_rc_file == ["~/.bashrc"]
        assert server.dial_port == DEFAULT_PORT

    def test_dial_port(self):
        """Should use the configured port when set."""
        assert ServerConfig(addr="h", port=2222).dial_port == 2222


class TestConfig:
    """Tests for Config."""

    def test_defaults(self):
        """Should have sensible defaults."""
        config = Config()
        assert config.servers == {}
        assert config.timeout == 30
        assert config.log_level == "warning"
        assert config.security.strict_host_key_checking is False

    def test_from_dict(self, sample_config):
        """Should build servers and proxies from plain data."""
        assert sample_config.server_names() == ['app', 'bastion', 'web1', 'web2']
        assert sample_config.servers['bastion'].proxy_type == 'socks5'
        assert sample_config.proxies['corp'].port == 1080

    def test_missing_addr(self):
        """Should reject a server without address."""
        with pytest.raises(ValueError, match="addr not specified"):
            Config.from_dict({'servers': {'web1': {'user': 'deploy'}}})

    def test_unknown_proxy_type(self):
        """Should reject an unknown proxy_type."""
        with pytest.raises(ValueError, match="unknown proxy_type"):
            Config.from_dict({'servers': {'web1': {'addr': 'h', 'proxy_type': 'socks4'}}})

    def test_proxy_without_port(self):
        """Should reject a tunnelling proxy without port."""
        with pytest.raises(ValueError, match="port not specified"):
            Config.from_dict({'proxies': {'corp': {'addr': '127.0.0.1'}}})

    def test_unknown_keys(self):
        """Should reject keys the configuration does not define."""
        with pytest.raises(ValueError, match="hostname"):
            Config.from_dict({'servers': {'web1': {'addr': 'h', 'hostname': 'x'}}})
        with pytest.raises(ValueError, match="colour"):
            Config.from_dict({'colour': True})

    def test_paths_expanded(self, monkeypatch, tmp_path):
        """Should expand ~ in key and rc paths."""
        monkeypatch.setenv("HOME", str(tmp_path))
        config = Config.from_dict({
            'servers': {'web1': {'addr': 'h', 'key': '~/.ssh/id_ed25519', 'local_rc_file': '~/.vimrc'}}
        })
        server = config.servers['web1']
        assert server.key == os.path.join(str(tmp_path), ".ssh", "id_ed25519")
        assert server.local_rc_file == [os.path.join(str(tmp_path), ".vimrc")]


class TestConfigLoad:
    """Tests for Config.load."""

    def test_load_yaml(self, temp_config_file):
        """Should load a YAML configuration file."""
        config = Config.load(str(temp_config_file))
        assert config.log_level == "info"
        assert config.servers['web1'].note == "frontend"
        assert config.servers['app'].proxy == "bastion"

    def test_missing_file(self, tmp_path):
        """Should raise FileNotFoundError for a missing file."""
        with pytest.raises(FileNotFoundError):
            Config.load(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        """Should raise a YAML error for malformed files."""
        path = tmp_path / "bad.yaml"
        path.write_text("servers: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            Config.load(str(path))

    def test_unsupported_extension(self, tmp_path):
        """Should reject non-YAML files."""
        path = tmp_path / "config.ini"
        path.write_text("[servers]\n")
        with pytest.raises(ValueError, match="extension"):
            Config.load(str(path))

    def test_empty_file(self, tmp_path):
        """Should load an empty file as an empty configuration."""
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert Config.load(str(path)).servers == {}
