"""Pytest configuration and fixtures."""

import threading
from pathlib import Path
from typing import List, Optional

import pytest

from lssh.config import Config
from lssh.logger import StructuredLogger


class FakeTransport:
    """In-memory stand-in for a paramiko Transport."""

    def __init__(self, active: bool = True, keepalive_error: Optional[Exception] = None):
        self.active = active
        self.keepalive_error = keepalive_error
        self.global_requests: List[str] = []
        self.sessions: List["FakeChannel"] = []

    def is_active(self) -> bool:
        return self.active

    def global_request(self, kind, data=None, wait=True):
        self.global_requests.append(kind)
        if self.keepalive_error is not None:
            raise self.keepalive_error
        return None

    def open_session(self, timeout=None):
        channel = FakeChannel([b"ok\n"])
        channel.transport = self
        self.sessions.append(channel)
        return channel

    def open_channel(self, kind, dest_addr=None, src_addr=None, timeout=None):
        return FakeChannel([])


class FakeClient:
    """In-memory stand-in for a paramiko SSHClient."""

    def __init__(self, name: str, transport: Optional[FakeTransport] = None):
        self.name = name
        self.transport = transport or FakeTransport()
        self.closed = False

    def get_transport(self):
        return None if self.closed else self.transport

    def close(self):
        self.closed = True
        self.transport.active = False


class FakeChannel:
    """In-memory session channel that replays output chunks."""

    def __init__(self, chunks: Optional[List[bytes]] = None, exit_status: int = 0,
                 exec_error: Optional[Exception] = None):
        self.chunks = list(chunks or [])
        self.exit_status = exit_status
        self.exec_error = exec_error
        self.transport = FakeTransport()

        self.commands: List[str] = []
        self.sent: List[bytes] = []
        self.combine_stderr = False
        self.shell_started = False
        self.write_shutdown = False
        self.closed = False
        self.lock = threading.Lock()

    def get_transport(self):
        return self.transport

    def set_combine_stderr(self, combine):
        self.combine_stderr = combine

    def exec_command(self, command):
        if self.exec_error is not None:
            raise self.exec_error
        self.commands.append(command)

    def invoke_shell(self):
        self.shell_started = True

    def recv(self, nbytes):
        with self.lock:
            if not self.chunks:
                return b""
            return self.chunks.pop(0)

    def recv_exit_status(self):
        return self.exit_status

    def sendall(self, data):
        self.sent.append(data)

    def shutdown_write(self):
        self.write_shutdown = True

    def resize_pty(self, width=80, height=24):
        pass

    def close(self):
        self.closed = True


@pytest.fixture
def sample_config() -> Config:
    """Configuration with a direct server, an SSH hop chain and a socks5 proxy."""
    return Config.from_dict({
        'servers': {
            'web1': {'addr': '10.0.0.1', 'user': 'deploy'},
            'web2': {'addr': '10.0.0.2', 'user': 'deploy', 'port': 2222},
            'app': {'addr': '10.0.1.5', 'user': 'deploy', 'proxy': 'bastion'},
            'bastion': {
                'addr': 'bastion.example.com', 'user': 'ops',
                'proxy': 'corp', 'proxy_type': 'socks5'
            },
        },
        'proxies': {
            'corp': {'addr': '127.0.0.1', 'port': 1080},
        },
        'max_retries': 1,
    })


@pytest.fixture
def quiet_logger() -> StructuredLogger:
    """Logger without console output."""
    return StructuredLogger(level="debug", enable_console=False)


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary config file."""
    config_file = tmp_path / "lssh.yaml"
    config_file.write_text("""
log_level: info
servers:
  web1:
    addr: 10.0.0.1
    user: deploy
    note: frontend
  app:
    addr: 10.0.1.5
    user: deploy
    proxy: bastion
  bastion:
    addr: bastion.example.com
    user: ops
    proxy: corp
    proxy_type: socks5
proxies:
  corp:
    addr: 127.0.0.1
    port: 1080
""")
    return config_file
