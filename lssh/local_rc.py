"""
Local rc injection: start a remote bash that sources a local rc script
sent inline, so nothing has to be staged on the remote host.
"""

import base64
import os
from typing import Iterable

from paramiko import Channel

from .errors import ValidationError

# Author: Vamsi

AUTO_DECODE = "((base64 --help | grep -q coreutils) && base64 -d <(cat) || base64 -D <(cat) )"


def build_local_rc_data(paths: Iterable[str]) -> str:
    """
    Read local rc files and encode them for transmission.

    :param paths: Local rc file paths, concatenated in order
    :return: Base64 encoded rc content
    :raises ValidationError: If a file cannot be read
    """
    content = b""
    for path in paths:
        path = os.path.expanduser(path)
        try:
            with open(path, 'rb') as f:
                content += f.read()
        except OSError as e:
            raise ValidationError(f"cannot read local rc file {path}: {e}") from e
        if not content.endswith(b"\n"):
            content += b"\n"

    return base64.b64encode(content).decode('ascii')


def build_local_rc_command(data: str, decode_cmd: str = "") -> str:
    """
    Build the remote command line that starts bash with the inline rc.

    Without a decode command the remote base64 flavour (GNU or BSD) is
    detected on the fly.

    :param data: Base64 encoded rc content
    :param decode_cmd: Remote command that decodes stdin
    :return: Remote command line
    """
    if decode_cmd:
        return f"bash --rcfile <(echo {data} | {decode_cmd})"
    return f"bash --rcfile <(echo {data}|{AUTO_DECODE})"


def run_local_rc_shell(channel: Channel, data: str, decode_cmd: str = "") -> Channel:
    """
    Start the local-rc shell on a channel that already has a pty.

    :param channel: Session channel
    :param data: Base64 encoded rc content
    :param decode_cmd: Remote command that decodes stdin
    :return: The same channel, now running the shell
    """
    channel.exec_command(build_local_rc_command(data, decode_cmd))
    return channel
