"""
Interactive terminal sessions.

Drives one long-lived remote shell from the local terminal: raw mode,
pty allocation, window-size propagation and keepalive.
"""

import os
import select
import signal
import sys
import termios
import threading
import tty
from enum import Enum
from typing import Optional, BinaryIO

from paramiko import Channel
from paramiko.ssh_exception import SSHException

from .connection import KEEPALIVE_REQUEST
from .errors import ExecutionError, LsshError, TerminalStateError
from .local_rc import run_local_rc_shell
from .logger import HostLogger, get_logger
from .session import ECHO, TTY_OP_ISPEED, TTY_OP_OSPEED, request_pty, terminal_size

# Author: Vamsi

SHELL_TERMINAL_MODES = {ECHO: 1, TTY_OP_ISPEED: 14400, TTY_OP_OSPEED: 14400}

KEEPALIVE_INTERVAL = 15
BUFFER_SIZE = 1024


class TerminalState(Enum):
    """Lifecycle of an interactive session."""
    INIT = "init"
    PTY_REQUESTED = "pty_requested"
    SHELL_STARTED = "shell_started"
    RUNNING = "running"
    CLOSED = "closed"
    ERRORED = "errored"


class KeepAlive:
    """Sends a keepalive request on a fixed interval until stopped."""

    def __init__(self, channel: Channel, interval: float = KEEPALIVE_INTERVAL,
                 host_logger: Optional[HostLogger] = None):
        self.channel = channel
        self.interval = interval
        self.host_logger = host_logger
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    def start(self):
        self.thread = threading.Thread(target=self._worker, daemon=True)
        self.thread.start()

    def _worker(self):
        while not self.stop_event.is_set():
            transport = self.channel.get_transport()
            if transport is None or not transport.is_active():
                break
            try:
                transport.global_request(KEEPALIVE_REQUEST, wait=True)
            except (SSHException, OSError, EOFError) as e:
                if self.host_logger:
                    self.host_logger.debug("Keepalive failed", error=str(e))
                break
            self.stop_event.wait(self.interval)

    def stop(self):
        self.stop_event.set()
        if self.thread is not None:
            self.thread.join(timeout=1)


class ResizeWatcher:
    """Propagates local window-size changes (SIGWINCH) to the remote pty."""

    def __init__(self, channel: Channel, fd: int):
        self.channel = channel
        self.fd = fd
        self.resized = threading.Event()
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None
        self._previous_handler = None
        self._installed = False

    @staticmethod
    def supported() -> bool:
        # signal handlers can only be installed from the main thread
        return (hasattr(signal, "SIGWINCH")
                and threading.current_thread() is threading.main_thread())

    def start(self) -> bool:
        if not self.supported():
            return False

        self._previous_handler = signal.signal(signal.SIGWINCH, self._on_sigwinch)
        self._installed = True
        self.thread = threading.Thread(target=self._worker, daemon=True)
        self.thread.start()
        return True

    def _on_sigwinch(self, signum, frame):
        self.resized.set()

    def _worker(self):
        while not self.stop_event.is_set():
            if not self.resized.wait(0.5):
                continue
            self.resized.clear()
            if self.stop_event.is_set():
                break
            try:
                width, height = terminal_size(self.fd)
                self.channel.resize_pty(width=width, height=height)
            except (LsshError, SSHException, OSError):
                continue

    def stop(self):
        self.stop_event.set()
        self.resized.set()
        if self._installed:
            signal.signal(signal.SIGWINCH, self._previous_handler or signal.SIG_DFL)
            self._installed = False
        if self.thread is not None:
            self.thread.join(timeout=1)


class Terminal:
    """
    Interactive shell on one session channel.

    Example:
        channel = conn.create_session()
        exit_code = Terminal("web1").con_term(channel)
    """

    def __init__(self, host: str,
                 is_local_rc: bool = False,
                 local_rc_data: str = "",
                 local_rc_decode_cmd: str = "",
                 stdin: Optional[BinaryIO] = None,
                 stdout: Optional[BinaryIO] = None,
                 keepalive_interval: float = KEEPALIVE_INTERVAL,
                 logger=None):
        """
        Initialize terminal session.

        :param host: Server name
        :param is_local_rc: Start the shell with the local rc injected
        :param local_rc_data: Base64 encoded rc content
        :param local_rc_decode_cmd: Remote decode command, empty to auto-detect
        :param stdin: Local terminal input (defaults to sys.stdin)
        :param stdout: Local terminal output (defaults to sys.stdout)
        :param keepalive_interval: Seconds between keepalive requests
        :param logger: Logger instance
        """
        self.host = host
        self.is_local_rc = is_local_rc
        self.local_rc_data = local_rc_data
        self.local_rc_decode_cmd = local_rc_decode_cmd
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout.buffer
        self.keepalive_interval = keepalive_interval
        self.host_logger = HostLogger(host, logger or get_logger())
        self.state = TerminalState.INIT

    def con_term(self, channel: Channel) -> int:
        """
        Run an interactive shell until the remote side exits.

        The local terminal is restored on every exit path.

        :param channel: Session channel
        :return: Exit status of the remote shell
        :raises TerminalStateError: If the local terminal cannot be set up
        """
        fd = self.stdin.fileno()
        try:
            saved = termios.tcgetattr(fd)
        except termios.error as e:
            self.state = TerminalState.ERRORED
            raise TerminalStateError(f"stdin is not a terminal: {e}", host=self.host) from e

        keepalive = None
        resize = None
        try:
            try:
                tty.setraw(fd)
            except termios.error as e:
                raise TerminalStateError(f"cannot enter raw mode: {e}", host=self.host) from e
            width, height = terminal_size(fd)

            term = os.environ.get("TERM", "xterm")
            request_pty(channel, term, width, height, SHELL_TERMINAL_MODES)
            self.state = TerminalState.PTY_REQUESTED

            if self.is_local_rc:
                run_local_rc_shell(channel, self.local_rc_data, self.local_rc_decode_cmd)
            else:
                channel.invoke_shell()
            self.state = TerminalState.SHELL_STARTED

            resize = ResizeWatcher(channel, fd)
            resize.start()

            keepalive = KeepAlive(channel, self.keepalive_interval, self.host_logger)
            keepalive.start()

            self.state = TerminalState.RUNNING
            self._interact(channel, fd)

            exit_code = channel.recv_exit_status()
            self.state = TerminalState.CLOSED
            return exit_code

        except LsshError as e:
            self.state = TerminalState.ERRORED
            if e.host is None:
                e.host = self.host
            raise
        except (SSHException, OSError) as e:
            self.state = TerminalState.ERRORED
            raise ExecutionError(f"interactive session failed: {e}", host=self.host) from e
        finally:
            if keepalive is not None:
                keepalive.stop()
            if resize is not None:
                resize.stop()
            channel.close()
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)

    def _interact(self, channel: Channel, fd: int) -> None:
        """Copy local input to the channel and channel output to the terminal."""
        sources = [channel, fd]
        while True:
            readable, _, _ = select.select(sources, [], [])
            if channel in readable:
                data = channel.recv(BUFFER_SIZE)
                if not data:
                    break
                self.stdout.write(data)
                self.stdout.flush()
            if fd in readable:
                data = os.read(fd, BUFFER_SIZE)
                if not data:
                    # local EOF: stop reading and let the remote side finish
                    channel.shutdown_write()
                    sources = [channel]
                    continue
                channel.sendall(data)
