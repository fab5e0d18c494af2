"""
X11 forwarding for session channels.
"""

import os
import re
import select
import shutil
import socket
import subprocess
import threading
from typing import Optional, Tuple

from paramiko import Channel
from paramiko.ssh_exception import SSHException

from .logger import HostLogger, get_logger

# Author: Vamsi

X11_BASE_PORT = 6000
X11_UNIX_SOCKET = "/tmp/.X11-unix/X{}"
BUFFER_SIZE = 32768

DISPLAY_RE = re.compile(r"^(?P<host>[^:]*):(?P<display>\d+)(?:\.(?P<screen>\d+))?$")


def parse_display(display: str) -> Tuple[str, int, int]:
    """
    Split a DISPLAY value.

    :param display: Value like ":0", "localhost:10.0" or "unix:1"
    :return: Tuple of (host, display number, screen number)
    :raises ValueError: If the value is not a valid display
    """
    match = DISPLAY_RE.match(display or "")
    if not match:
        raise ValueError(f"invalid DISPLAY: {display!r}")
    return (
        match.group('host'),
        int(match.group('display')),
        int(match.group('screen') or 0),
    )


def open_display(display: str) -> socket.socket:
    """Connect to the local X server named by DISPLAY."""
    host, number, _ = parse_display(display)
    if host in ("", "unix"):
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.connect(X11_UNIX_SOCKET.format(number))
        return sock
    return socket.create_connection((host, X11_BASE_PORT + number))


def xauth_cookie(display: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Look up the local MIT-MAGIC-COOKIE for a display with xauth.

    :return: Tuple of (protocol, hex cookie), or (None, None) if unavailable
    """
    if not shutil.which("xauth"):
        return None, None
    try:
        result = subprocess.run(
            ["xauth", "list", display], capture_output=True, text=True, timeout=5
        )
    except (OSError, subprocess.SubprocessError):
        return None, None

    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) == 3:
            return parts[1], parts[2]
    return None, None


class X11Forwarder:
    """Requests X11 forwarding on a session and bridges each X11 channel to the local display."""

    def __init__(self, host: str, display: Optional[str] = None, logger=None):
        self.host = host
        self.display = display or os.environ.get("DISPLAY", "")
        self.host_logger = HostLogger(host, logger or get_logger())

    def attach(self, channel: Channel) -> bool:
        """
        Request X11 forwarding on a session channel.

        :param channel: Session channel, before the command or shell starts
        :return: True if forwarding was requested
        """
        if not self.display:
            self.host_logger.warning("X11 forwarding requested but DISPLAY is not set")
            return False

        try:
            _, _, screen = parse_display(self.display)
        except ValueError as e:
            self.host_logger.warning("Invalid DISPLAY, X11 forwarding disabled", error=str(e))
            return False

        protocol, cookie = xauth_cookie(self.display)
        try:
            channel.request_x11(
                screen_number=screen,
                auth_protocol=protocol,
                auth_cookie=cookie,
                handler=self._handle,
            )
        except SSHException as e:
            self.host_logger.warning("X11 forwarding request failed", error=str(e))
            return False
        return True

    def _handle(self, x11_channel: Channel, origin) -> None:
        """Called by paramiko for each incoming X11 channel."""
        try:
            local = open_display(self.display)
        except OSError as e:
            self.host_logger.warning("Cannot open local display", error=str(e))
            x11_channel.close()
            return

        threading.Thread(
            target=self._pump, args=(x11_channel, local), daemon=True
        ).start()

    def _pump(self, x11_channel: Channel, local: socket.socket) -> None:
        """Copy bytes both ways until either side closes."""
        try:
            while True:
                readable, _, _ = select.select([x11_channel, local], [], [])
                if x11_channel in readable:
                    data = x11_channel.recv(BUFFER_SIZE)
                    if not data:
                        break
                    local.sendall(data)
                if local in readable:
                    data = local.recv(BUFFER_SIZE)
                    if not data:
                        break
                    x11_channel.sendall(data)
        except (OSError, SSHException) as e:
            self.host_logger.debug("X11 channel closed", error=str(e))
        finally:
            x11_channel.close()
            local.close()
