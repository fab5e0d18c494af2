"""
Configuration management for lssh.
Provides dataclasses for server, proxy and security settings and a loader
for the YAML configuration file.
"""

import os
import yaml
from dataclasses import dataclass, field, fields
from typing import List, Optional, Dict, Any

# Author: Vamsi

DEFAULT_CONFIG_FILE = "~/.lssh.yaml"
DEFAULT_PORT = 22

PROXY_TYPES = ("ssh", "http", "https", "socks5")


@dataclass
class ServerConfig:
    """Connection settings for one server (a target or an SSH hop)."""
    addr: str = ""
    port: Optional[int] = None
    user: str = ""
    password: str = ""
    key: str = ""
    key_passphrase: str = ""
    agent_auth: bool = False
    ssh_agent_forward: bool = False
    proxy: str = ""
    proxy_type: str = "ssh"
    x11: bool = False
    pty: bool = False
    local_rc: bool = False
    local_rc_file: List[str] = field(default_factory=lambda: ["~/.bashrc"])
    local_rc_decode_cmd: str = ""
    note: str = ""

    @property
    def dial_port(self) -> int:
        """Port to dial, falling back to 22 when none is configured."""
        return int(self.port) if self.port else DEFAULT_PORT


@dataclass
class ProxyConfig:
    """Settings for an http, https or socks5 tunnelling proxy."""
    addr: str = ""
    port: Optional[int] = None
    user: str = ""
    password: str = ""


@dataclass
class SecurityConfig:
    """Security configuration."""
    strict_host_key_checking: bool = False
    known_hosts_file: str = "~/.ssh/known_hosts"


@dataclass
class Config:
    """Main configuration class for lssh."""

    servers: Dict[str, ServerConfig] = field(default_factory=dict)
    proxies: Dict[str, ProxyConfig] = field(default_factory=dict)

    # Logging configuration
    log_level: str = "warning"
    log_file: str = ""
    log_format: str = "text"

    # Advanced SSH settings
    timeout: int = 30
    banner_timeout: int = 60
    auth_timeout: int = 60
    max_retries: int = 3
    retry_delay: int = 1

    # Security settings
    security: SecurityConfig = field(default_factory=SecurityConfig)

    def __post_init__(self):
        """Post-initialization processing."""
        self._expand_paths()
        self._validate()

    def _expand_paths(self):
        """Expand user paths in configuration."""
        for server in self.servers.values():
            if server.key:
                server.key = os.path.expanduser(server.key)
            server.local_rc_file = [os.path.expanduser(p) for p in server.local_rc_file]

        if self.security.known_hosts_file:
            self.security.known_hosts_file = os.path.expanduser(self.security.known_hosts_file)

        if self.log_file:
            self.log_file = os.path.expanduser(self.log_file)

    def _validate(self):
        """Validate configuration settings."""
        for name, server in self.servers.items():
            if not server.addr:
                raise ValueError(f"Server {name}: addr not specified")
            if server.proxy_type not in PROXY_TYPES:
                raise ValueError(
                    f"Server {name}: unknown proxy_type {server.proxy_type!r}, "
                    f"expected one of {', '.join(PROXY_TYPES)}"
                )

        for name, proxy in self.proxies.items():
            if not proxy.addr:
                raise ValueError(f"Proxy {name}: addr not specified")
            if not proxy.port:
                raise ValueError(f"Proxy {name}: port not specified")

    def server_names(self) -> List[str]:
        """Sorted list of configured server names."""
        return sorted(self.servers)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """
        Build a configuration from a plain dictionary.

        :param data: Parsed configuration data
        :return: Config instance
        :raises ValueError: If configuration is invalid
        """
        data = dict(data or {})

        servers = {
            str(name): _build(ServerConfig, values, f"server {name}")
            for name, values in (data.pop('servers', None) or {}).items()
        }
        proxies = {
            str(name): _build(ProxyConfig, values, f"proxy {name}")
            for name, values in (data.pop('proxies', None) or {}).items()
        }
        security = _build(SecurityConfig, data.pop('security', None), "security")

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        return cls(servers=servers, proxies=proxies, security=security, **data)

    @classmethod
    def load(cls, filename: str) -> 'Config':
        """
        Load configuration from a YAML (.yaml/.yml) file.

        :param filename: Path to configuration file
        :return: Config instance
        :raises FileNotFoundError: If config file doesn't exist
        :raises yaml.YAMLError: If YAML config file is invalid
        :raises ValueError: If configuration is invalid
        """
        filename = os.path.expanduser(filename)
        if not os.path.exists(filename):
            raise FileNotFoundError(f"Configuration file not found: {filename}")

        ext = os.path.splitext(filename)[1].lower()
        if ext not in ['.yaml', '.yml']:
            raise ValueError(f"Unsupported config file extension: {ext}")

        try:
            with open(filename, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in configuration file: {e}")

        if data is not None and not isinstance(data, dict):
            raise ValueError("Configuration root must be a mapping")

        return cls.from_dict(data or {})


def _build(kind, values: Optional[Dict[str, Any]], label: str):
    """Instantiate a config dataclass, rejecting keys it does not define."""
    values = dict(values or {})
    known = {f.name for f in fields(kind)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown keys for {label}: {', '.join(sorted(unknown))}")
    if isinstance(values.get('local_rc_file'), str):
        values['local_rc_file'] = [values['local_rc_file']]
    return kind(**values)
