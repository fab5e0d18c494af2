"""
Exception hierarchy for lssh.

Every error raised for a single host carries that host's name so the
executor can report it with context and carry on with the other hosts.
"""

from typing import Optional

# Author: Vamsi


class LsshError(Exception):
    """Base class for all lssh errors."""

    def __init__(self, message: str, host: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.host = host

    def __str__(self) -> str:
        if self.host:
            return f"{self.host}: {self.message}"
        return self.message


class ConfigResolutionError(LsshError):
    """A server or proxy name could not be resolved from the configuration."""


class SSHConnectionError(LsshError):
    """Dialing or handshaking with a host (or one of its hops) failed."""


class SessionCreationError(LsshError):
    """A session channel could not be opened on a live connection."""


class LivenessCheckFailure(LsshError):
    """The keepalive round-trip on an established connection failed."""


class ExecutionError(LsshError):
    """The command failed mid-flight or exited with a non-zero status."""

    def __init__(self, message: str, host: Optional[str] = None,
                 exit_code: Optional[int] = None):
        super().__init__(message, host)
        self.exit_code = exit_code


class TerminalStateError(LsshError):
    """The local terminal could not be switched to raw mode or measured."""


class ValidationError(LsshError):
    """Upfront validation of an execution request failed."""
