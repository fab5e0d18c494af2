"""
lssh - run commands and interactive shells on many SSH servers at once.

Key Components:
- get_proxy_list: Resolves a server's proxy chain into dial order
- Connection: Dials a server and opens session channels, reconnecting when stale
- SessionRunner: Runs one command on a session and streams its output lines
- Run: Executes a command on many servers, in parallel or one after another
- Terminal: Interactive shell with raw mode, resize and keepalive

Example usage:
    from lssh import Config, Run

    config = Config.load('~/.lssh.yaml')
    Run(server_list=['web1', 'web2'], config=config,
        exec_cmd=['uptime'], is_parallel=True).start()
"""

# Author: Vamsi

__version__ = "1.0.0"
__email__ = "vamsi@example.com"

from .config import Config, ServerConfig, ProxyConfig, SecurityConfig
from .errors import (
    LsshError, ConfigResolutionError, SSHConnectionError, SessionCreationError,
    LivenessCheckFailure, ExecutionError, TerminalStateError, ValidationError
)
from .logger import StructuredLogger, HostLogger
from .proxy import Hop, HopKind, get_proxy_list
from .connection import Connection, ConnectionState
from .session import SessionRunner
from .executor import Run, MultiWriter
from .terminal import Terminal, TerminalState

__all__ = [
    'Config', 'ServerConfig', 'ProxyConfig', 'SecurityConfig',
    'LsshError', 'ConfigResolutionError', 'SSHConnectionError',
    'SessionCreationError', 'LivenessCheckFailure', 'ExecutionError',
    'TerminalStateError', 'ValidationError',
    'StructuredLogger', 'HostLogger',
    'Hop', 'HopKind', 'get_proxy_list',
    'Connection', 'ConnectionState',
    'SessionRunner', 'Run', 'MultiWriter',
    'Terminal', 'TerminalState',
]
