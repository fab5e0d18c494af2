"""
Default per-host output sink: prints each remote line behind a colored
"<server> :: " prefix.
"""

import threading
from typing import List, Optional

from rich.console import Console
from rich.text import Text

# Author: Vamsi

PROMPT_TEMPLATE = "{server} :: "

COLORS = ["cyan", "yellow", "magenta", "green", "blue", "bright_red", "bright_cyan", "bright_yellow"]


class Output:
    """Renders raw output lines of one host."""

    _console: Optional[Console] = None
    _console_lock = threading.Lock()

    def __init__(self, server: str, index: int, server_list: List[str],
                 template: str = PROMPT_TEMPLATE, auto_color: bool = True,
                 console: Optional[Console] = None):
        """
        Initialize output sink.

        :param server: Server name
        :param index: Position of the server in the run, selects the color
        :param server_list: All servers in the run, used to align prefixes
        :param template: Prefix template, ``{server}`` is replaced
        :param auto_color: Color the prefix by index
        :param console: Console to print to (shared stdout console by default)
        """
        self.server = server
        self.index = index
        self.server_list = server_list
        self.template = template
        self.auto_color = auto_color
        self.console = console or self.shared_console()

    @classmethod
    def shared_console(cls) -> Console:
        with cls._console_lock:
            if cls._console is None:
                cls._console = Console(highlight=False, soft_wrap=True)
            return cls._console

    @property
    def prompt(self) -> str:
        width = max((len(s) for s in self.server_list), default=len(self.server))
        return self.template.format(server=self.server.ljust(width))

    def write_line(self, line: bytes) -> None:
        """
        Print one raw output line.

        :param line: Line bytes, with or without the trailing newline
        """
        text = Text(self.prompt, style=COLORS[self.index % len(COLORS)] if self.auto_color else "")
        text.append(line.decode('utf-8', errors='replace').rstrip("\r\n"))
        self.console.print(text)


def create_output(index: int, server: str, server_list: List[str]) -> Output:
    """Default output sink factory."""
    return Output(server, index, server_list)
