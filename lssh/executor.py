"""
Run a command on many hosts at once, or an interactive shell on one.

Every host gets its own connection, execution thread and output queue.
Output is drained per host; local keyboard input can be broadcast to the
stdin of every host.
"""

import os
import queue
import select
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, List, Optional, Protocol

from paramiko.ssh_exception import SSHException
from rich.console import Console
from rich.markup import escape

from .check import check_hosts
from .config import Config
from .connection import Connection
from .errors import LsshError, ValidationError
from .logger import HostLogger, StructuredLogger, get_logger
from .output import create_output
from .session import ChannelWriter, SessionRunner
from .terminal import Terminal
from .x11 import X11Forwarder

# Author: Vamsi

INPUT_POLL_INTERVAL = 0.1
INPUT_BUFFER_SIZE = 4096


class OutputSink(Protocol):
    def write_line(self, line: bytes) -> None: ...


OutputFactory = Callable[[int, str, List[str]], OutputSink]


class MultiWriter:
    """
    Duplicates every write to several writers.

    Writes are delivered to each writer in turn, so a slow writer delays
    delivery to the ones after it. A writer that fails is dropped and the
    remaining writers keep receiving data.
    """

    def __init__(self, writers: List[Any], logger: Optional[StructuredLogger] = None):
        self.writers = list(writers)
        self.logger = logger or get_logger()
        self.lock = threading.Lock()

    def write(self, data: bytes) -> int:
        with self.lock:
            for writer in list(self.writers):
                try:
                    writer.write(data)
                except (SSHException, OSError, EOFError, LsshError) as e:
                    self._drop(writer, e)
        return len(data)

    def _drop(self, writer, error):
        self.logger.debug("Dropping input writer", host=getattr(writer, 'host', ''), error=str(error))
        self.writers.remove(writer)

    def close(self):
        with self.lock:
            for writer in self.writers:
                try:
                    writer.close()
                except (SSHException, OSError, EOFError) as e:
                    self.logger.debug("Error closing input writer",
                                      host=getattr(writer, 'host', ''), error=str(e))


def push_input(exit_input: threading.Event, writer: MultiWriter, source: BinaryIO,
               poll_interval: float = INPUT_POLL_INTERVAL) -> None:
    """
    Copy local input into the broadcast writer until told to stop.

    On end of input every remote stdin is closed.

    :param exit_input: Set to stop copying
    :param writer: Broadcast writer
    :param source: Local input stream with a file descriptor
    :param poll_interval: Seconds between checks of ``exit_input``
    """
    fd = source.fileno()
    while not exit_input.is_set():
        readable, _, _ = select.select([fd], [], [], poll_interval)
        if not readable:
            continue
        data = os.read(fd, INPUT_BUFFER_SIZE)
        if not data:
            writer.close()
            return
        writer.write(data)


def print_output(output: OutputSink, output_queue: "queue.Queue[Optional[bytes]]") -> None:
    """Drain one host's output queue into its sink until the queue is closed."""
    while True:
        line = output_queue.get()
        if line is None:
            break
        output.write_line(line)


@dataclass
class Run:
    """
    Execution descriptor and entry point.

    Example:
        Run(server_list=["web1", "web2"], config=config,
            exec_cmd=["uptime"], is_parallel=True).start()
    """
    server_list: List[str]
    config: Config
    is_parallel: bool = False
    exec_cmd: List[str] = field(default_factory=list)
    stdin_data: bytes = b""
    stdin_piped: bool = False
    is_term: bool = False
    is_x11: bool = False
    is_local_rc: bool = False
    local_rc_data: str = ""
    local_rc_decode_cmd: str = ""
    output_factory: OutputFactory = create_output
    stdin: Optional[BinaryIO] = None
    logger: Optional[StructuredLogger] = None
    error_console: Optional[Console] = None

    def __post_init__(self):
        self.logger = self.logger or get_logger()
        self.error_console = self.error_console or Console(stderr=True, highlight=False)
        self.stdin = self.stdin or sys.stdin
        self.input_writer: Optional[MultiWriter] = None
        self.input_thread: Optional[threading.Thread] = None

    @property
    def piped_input(self) -> bool:
        """Whether stdin was a pipe; an empty pipe still means EOF for every host."""
        return self.stdin_piped or bool(self.stdin_data)

    @property
    def broadcast_input(self) -> bool:
        """Whether local input is copied to every host's stdin."""
        return not self.piped_input and (self.is_parallel or len(self.server_list) == 1)

    def validate(self) -> None:
        """
        Upfront checks, before any connection is attempted.

        :raises ValidationError: If the request cannot be executed
        """
        check_hosts(self.server_list, self.config.servers)
        if not self.exec_cmd and len(self.server_list) > 1:
            raise ValidationError("An interactive shell can only be opened on one server.")

    def start(self) -> None:
        """Validate, then run the command on every host or open a shell on one."""
        try:
            self.validate()
        except ValidationError as e:
            self.error_console.print(f"[red]{escape(str(e))}[/red]")
            sys.exit(1)

        if self.exec_cmd:
            self.cmd()
        else:
            self.term()

    def create_conn(self) -> List[Connection]:
        """One dedicated connection per host."""
        return [Connection(server, self.config, self.logger) for server in self.server_list]

    def _report(self, server: str, error: Exception) -> None:
        self.error_console.print(
            f"cannot connect session [bold]{escape(server)}[/bold], {escape(str(error))}"
        )

    def cmd(self) -> None:
        """Run the command on every host and wait until all of them finish."""
        finished: "queue.Queue[bool]" = queue.Queue()
        input_writers: "queue.Queue[Optional[ChannelWriter]]" = queue.Queue()
        exit_input = threading.Event()

        conns = self.create_conn()
        concurrent = self.is_parallel or len(conns) == 1
        printers: List[threading.Thread] = []
        collector: Optional[threading.Thread] = None

        self.logger.info(f"Executing command on {len(conns)} hosts",
                         command=" ".join(self.exec_cmd), parallel=self.is_parallel)

        try:
            for index, conn in enumerate(conns):
                output = self.output_factory(index, conn.server, self.server_list)
                output_queue: "queue.Queue[Optional[bytes]]" = queue.Queue()

                task = threading.Thread(
                    target=self._cmd_task,
                    args=(conn, input_writers, output_queue, finished),
                    daemon=True
                )
                task.start()

                if concurrent:
                    printer = threading.Thread(
                        target=print_output, args=(output, output_queue), daemon=True
                    )
                    printer.start()
                    printers.append(printer)
                else:
                    print_output(output, output_queue)
                    task.join()

            if concurrent:
                if self.broadcast_input:
                    collector = threading.Thread(
                        target=self._collect_input,
                        args=(len(conns), input_writers, exit_input),
                        daemon=True
                    )
                    collector.start()

                for _ in conns:
                    finished.get()

                for printer in printers:
                    printer.join()

        finally:
            exit_input.set()
            if collector is not None:
                collector.join(timeout=1)
            if self.input_thread is not None:
                self.input_thread.join(timeout=1)

            for conn in conns:
                conn.close()

    def _cmd_task(self, conn: Connection,
                  input_writers: "queue.Queue[Optional[ChannelWriter]]",
                  output_queue: "queue.Queue[Optional[bytes]]",
                  finished: "queue.Queue[bool]") -> None:
        """Execution task of one host; always signals completion."""
        host_logger = HostLogger(conn.server, self.logger)
        published = False
        try:
            try:
                channel = conn.create_session()
            except LsshError as e:
                self._report(conn.server, e)
                return

            if self.is_x11 or conn.x11:
                X11Forwarder(conn.server, logger=self.logger).attach(channel)

            if self.broadcast_input:
                input_writers.put(ChannelWriter(channel, conn.server))
                published = True

            runner = SessionRunner(conn.server, is_term=self.is_term, logger=self.logger)
            command = " ".join(self.exec_cmd)
            start_time = time.time()
            try:
                exit_code = runner.run_cmd_with_output(
                    channel, self.exec_cmd, output_queue,
                    stdin_data=self.stdin_data if self.piped_input else None
                )
            except LsshError as e:
                self.error_console.print(escape(str(e)))
                host_logger.log_connection('failure', error=str(e))
                return

            host_logger.log_command(command, exit_code, time.time() - start_time)

        finally:
            if self.broadcast_input and not published:
                input_writers.put(None)
            output_queue.put(None)
            finished.put(True)

    def _collect_input(self, count: int,
                       input_writers: "queue.Queue[Optional[ChannelWriter]]",
                       exit_input: threading.Event) -> None:
        """Gather one input writer per host, then start copying local input."""
        writers = []
        for _ in range(count):
            writer = input_writers.get()
            if writer is not None:
                writers.append(writer)

        if not writers:
            return

        self.input_writer = MultiWriter(writers, self.logger)
        thread = threading.Thread(
            target=push_input, args=(exit_input, self.input_writer, self.stdin), daemon=True
        )
        thread.start()
        # publish only after start, cmd may join it at any time
        self.input_thread = thread

    def term(self) -> None:
        """Open an interactive shell on the single selected host."""
        server = self.server_list[0]
        conn = Connection(server, self.config, self.logger)

        try:
            channel = conn.create_session()
        except LsshError as e:
            self._report(server, e)
            return

        try:
            if self.is_x11 or conn.x11:
                X11Forwarder(server, logger=self.logger).attach(channel)

            terminal = Terminal(
                server,
                is_local_rc=self.is_local_rc,
                local_rc_data=self.local_rc_data,
                local_rc_decode_cmd=self.local_rc_decode_cmd,
                stdin=self.stdin,
                logger=self.logger,
            )
            terminal.con_term(channel)
        except LsshError as e:
            self.error_console.print(escape(str(e)))
        finally:
            conn.close()
