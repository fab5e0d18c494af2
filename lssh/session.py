"""
Command execution on a single session channel.
"""

import os
import queue
import struct
import threading
from typing import Dict, List, Optional

from paramiko import Channel
from paramiko.common import cMSG_CHANNEL_REQUEST
from paramiko.message import Message
from paramiko.ssh_exception import SSHException

from .errors import ExecutionError, TerminalStateError
from .logger import HostLogger, get_logger

# Author: Vamsi

# Terminal mode opcodes (RFC 4254, section 8)
TTY_OP_END = 0
ECHO = 53
TTY_OP_ISPEED = 128
TTY_OP_OSPEED = 129

COMMAND_TERMINAL_MODES = {ECHO: 0, TTY_OP_ISPEED: 14400, TTY_OP_OSPEED: 14400}

READ_SIZE = 32768


def encode_terminal_modes(modes: Dict[int, int]) -> bytes:
    """
    Encode terminal modes for a pty-req.

    :param modes: Mapping of opcode to value
    :return: Encoded mode string, terminated by TTY_OP_END
    """
    encoded = b"".join(struct.pack(">BI", opcode, value) for opcode, value in modes.items())
    return encoded + bytes([TTY_OP_END])


def request_pty(channel: Channel, term: str, width: int, height: int,
                modes: Dict[int, int]) -> None:
    """
    Request a pseudo-terminal with explicit terminal modes.

    paramiko's Channel.get_pty() always sends an empty mode list, so the
    request is built here the same way get_pty() builds it.

    :param channel: Session channel
    :param term: Terminal type
    :param width: Width in characters
    :param height: Height in characters
    :param modes: Terminal modes
    """
    if channel.closed or channel.eof_received or channel.eof_sent or not channel.active:
        raise SSHException("Channel is not open")

    m = Message()
    m.add_byte(cMSG_CHANNEL_REQUEST)
    m.add_int(channel.remote_chanid)
    m.add_string("pty-req")
    m.add_boolean(True)
    m.add_string(term)
    m.add_int(width)
    m.add_int(height)
    m.add_int(0)
    m.add_int(0)
    m.add_string(encode_terminal_modes(modes))
    # paramiko has no public pty-req with raw modes; recheck these private calls on upgrade
    channel._event_pending()
    channel.transport._send_user_message(m)
    channel._wait_for_event()


def terminal_size(fd: int):
    """
    Size of the local terminal.

    :param fd: File descriptor of the terminal
    :return: Tuple of (width, height)
    :raises TerminalStateError: If fd is not a terminal
    """
    try:
        size = os.get_terminal_size(fd)
    except OSError as e:
        raise TerminalStateError(f"cannot get terminal size: {e}") from e
    return size.columns, size.lines


class ChannelWriter:
    """Writable handle over the stdin of a session channel."""

    def __init__(self, channel: Channel, host: str = ""):
        self.channel = channel
        self.host = host

    def write(self, data: bytes) -> int:
        self.channel.sendall(data)
        return len(data)

    def close(self):
        """Send EOF to the remote stdin."""
        if not self.channel.closed:
            self.channel.shutdown_write()


class SessionRunner:
    """Runs one command on one session channel and streams its output."""

    def __init__(self, host: str, is_term: bool = False, stdin_fd: Optional[int] = None,
                 logger=None):
        """
        Initialize session runner.

        :param host: Server name, for error and log context
        :param is_term: Request a pty before running the command
        :param stdin_fd: Local terminal fd used to size the pty
        :param logger: Logger instance
        """
        self.host = host
        self.is_term = is_term
        self.stdin_fd = stdin_fd
        self.host_logger = HostLogger(host, logger or get_logger())

    def _set_is_term(self, channel: Channel) -> None:
        """Request a pty with echo disabled when tty mode is on."""
        if not self.is_term:
            return

        fd = self.stdin_fd if self.stdin_fd is not None else 0
        width, height = terminal_size(fd)
        term = os.environ.get("TERM", "xterm")
        request_pty(channel, term, width, height, COMMAND_TERMINAL_MODES)

    def run_cmd(self, channel: Channel, command: List[str],
                stdin_data: Optional[bytes] = None) -> int:
        """
        Execute a command and wait for it to finish.

        The channel is always closed afterwards.

        :param channel: Session channel
        :param command: Command tokens, joined with single spaces
        :param stdin_data: Bytes to feed to the command's stdin
        :return: Exit status
        :raises ExecutionError: If the command cannot be started or the transport fails
        """
        exec_cmd = " ".join(command)
        feeder = None

        try:
            try:
                self._set_is_term(channel)
                channel.exec_command(exec_cmd)
            except (SSHException, OSError) as e:
                raise ExecutionError(f"cannot run command: {e}", host=self.host) from e

            if stdin_data is not None:
                feeder = threading.Thread(
                    target=self._feed_stdin, args=(channel, stdin_data), daemon=True
                )
                feeder.start()

            exit_code = channel.recv_exit_status()
            if exit_code == -1:
                raise ExecutionError(
                    "command ended without an exit status (signal or lost connection)",
                    host=self.host
                )
            return exit_code

        finally:
            channel.close()
            if feeder is not None:
                feeder.join()

    def _feed_stdin(self, channel: Channel, data: bytes) -> None:
        """Write piped input to the remote stdin and send EOF."""
        try:
            channel.sendall(data)
            channel.shutdown_write()
        except (SSHException, OSError) as e:
            self.host_logger.debug("Remote stdin closed early", error=str(e))

    def run_cmd_with_output(self, channel: Channel, command: List[str],
                            output: "queue.Queue[Optional[bytes]]",
                            stdin_data: Optional[bytes] = None) -> int:
        """
        Execute a command, streaming combined stdout/stderr as lines.

        Every line is put on ``output`` with its terminator as soon as it is
        complete; a trailing partial line is flushed once the stream ends.
        The caller closes ``output`` after this returns.

        :param channel: Session channel
        :param command: Command tokens
        :param output: Queue receiving output lines
        :param stdin_data: Bytes to feed to the command's stdin
        :return: Exit status
        """
        channel.set_combine_stderr(True)

        reader = threading.Thread(
            target=self._read_lines, args=(channel, output), daemon=True
        )
        reader.start()
        try:
            return self.run_cmd(channel, command, stdin_data)
        finally:
            reader.join()

    def _read_lines(self, channel: Channel, output: "queue.Queue[Optional[bytes]]") -> None:
        """Push each line of channel output to the queue until EOF."""
        pending = b""
        while True:
            try:
                data = channel.recv(READ_SIZE)
            except (SSHException, OSError) as e:
                self.host_logger.debug("Output stream ended", error=str(e))
                break
            if not data:
                break

            pending += data
            while True:
                index = pending.find(b"\n")
                if index < 0:
                    break
                output.put(pending[:index + 1])
                pending = pending[index + 1:]

        # last check
        if pending:
            output.put(pending)
