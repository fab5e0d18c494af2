"""Tests for interactive terminal sessions."""

import termios
import threading
import time
from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import pytest
from paramiko.ssh_exception import SSHException

from lssh.connection import KEEPALIVE_REQUEST
from lssh.errors import ExecutionError, TerminalStateError
from lssh.terminal import (
    SHELL_TERMINAL_MODES, KeepAlive, ResizeWatcher, Terminal, TerminalState
)
from lssh.session import ECHO
from tests.conftest import FakeChannel, FakeTransport

SAVED_ATTRS = ['saved-attrs']


@contextmanager
def local_terminal(setraw_error=None, size=(100, 30)):
    """Patch the local terminal so no real tty is needed."""
    with patch('lssh.terminal.termios.tcgetattr', return_value=SAVED_ATTRS) as tcgetattr, \
            patch('lssh.terminal.termios.tcsetattr') as tcsetattr, \
            patch('lssh.terminal.tty.setraw', side_effect=setraw_error) as setraw, \
            patch('lssh.terminal.terminal_size', return_value=size), \
            patch('lssh.terminal.ResizeWatcher') as resize_cls, \
            patch('lssh.terminal.KeepAlive') as keepalive_cls, \
            patch.object(Terminal, '_interact') as interact:
        yield {
            'tcgetattr': tcgetattr,
            'tcsetattr': tcsetattr,
            'setraw': setraw,
            'resize': resize_cls,
            'keepalive': keepalive_cls,
            'interact': interact,
        }


def make_terminal(quiet_logger, **kwargs):
    stdin = MagicMock()
    stdin.fileno.return_value = 7
    return Terminal('web1', stdin=stdin, stdout=MagicMock(), logger=quiet_logger, **kwargs)


def assert_restored(mocks):
    mocks['tcsetattr'].assert_called_once_with(7, termios.TCSADRAIN, SAVED_ATTRS)


class TestConTerm:
    """Tests for Terminal.con_term."""

    def test_shell_session(self, quiet_logger):
        """Should request a pty, start a shell and restore the terminal."""
        channel = FakeChannel(exit_status=0)
        terminal = make_terminal(quiet_logger)

        with local_terminal() as mocks, patch('lssh.terminal.request_pty') as request_pty:
            assert terminal.con_term(channel) == 0

        args = request_pty.call_args.args
        assert args[0] is channel
        assert args[2:] == (100, 30, SHELL_TERMINAL_MODES)
        assert channel.shell_started
        assert channel.closed
        assert terminal.state is TerminalState.CLOSED
        mocks['setraw'].assert_called_once_with(7)
        mocks['interact'].assert_called_once_with(channel, 7)
        mocks['resize'].return_value.stop.assert_called_once()
        mocks['keepalive'].return_value.stop.assert_called_once()
        assert_restored(mocks)

    def test_shell_echo_enabled(self):
        """Should keep echo on for interactive shells."""
        assert SHELL_TERMINAL_MODES[ECHO] == 1

    def test_exit_status_returned(self, quiet_logger):
        """Should return the remote shell's exit status."""
        with local_terminal(), patch('lssh.terminal.request_pty'):
            assert make_terminal(quiet_logger).con_term(FakeChannel(exit_status=130)) == 130

    def test_pty_failure_restores(self, quiet_logger):
        """Should restore the terminal when the pty request fails."""
        channel = FakeChannel()
        terminal = make_terminal(quiet_logger)

        with local_terminal() as mocks, \
                patch('lssh.terminal.request_pty', side_effect=SSHException("pty refused")):
            with pytest.raises(ExecutionError) as exc_info:
                terminal.con_term(channel)

        assert exc_info.value.host == 'web1'
        assert terminal.state is TerminalState.ERRORED
        assert not channel.shell_started
        assert channel.closed
        mocks['interact'].assert_not_called()
        assert_restored(mocks)

    def test_shell_failure_restores(self, quiet_logger):
        """Should restore the terminal when the shell cannot start."""
        channel = FakeChannel()
        channel.invoke_shell = MagicMock(side_effect=SSHException("shell refused"))
        terminal = make_terminal(quiet_logger)

        with local_terminal() as mocks, patch('lssh.terminal.request_pty'):
            with pytest.raises(ExecutionError):
                terminal.con_term(channel)

        assert terminal.state is TerminalState.ERRORED
        assert_restored(mocks)

    def test_raw_mode_failure(self, quiet_logger):
        """Should raise TerminalStateError and restore when raw mode fails."""
        terminal = make_terminal(quiet_logger)

        with local_terminal(setraw_error=termios.error(25, "Inappropriate ioctl")) as mocks, \
                patch('lssh.terminal.request_pty') as request_pty:
            with pytest.raises(TerminalStateError) as exc_info:
                terminal.con_term(FakeChannel())

        assert exc_info.value.host == 'web1'
        request_pty.assert_not_called()
        assert_restored(mocks)

    def test_not_a_terminal(self, quiet_logger):
        """Should fail before touching the channel when stdin is not a terminal."""
        channel = FakeChannel()
        terminal = make_terminal(quiet_logger)

        with patch('lssh.terminal.termios.tcgetattr', side_effect=termios.error(25, "not a tty")), \
                patch('lssh.terminal.termios.tcsetattr') as tcsetattr:
            with pytest.raises(TerminalStateError):
                terminal.con_term(channel)

        assert terminal.state is TerminalState.ERRORED
        tcsetattr.assert_not_called()

    def test_interrupted_session_restores(self, quiet_logger):
        """Should restore the terminal when the session breaks mid-flight."""
        terminal = make_terminal(quiet_logger)

        with local_terminal() as mocks, patch('lssh.terminal.request_pty'):
            mocks['interact'].side_effect = OSError("connection reset")
            with pytest.raises(ExecutionError):
                terminal.con_term(FakeChannel())

        assert_restored(mocks)
        mocks['keepalive'].return_value.stop.assert_called_once()

    def test_local_rc_shell(self, quiet_logger):
        """Should start the local-rc shell instead of the login shell."""
        channel = FakeChannel()
        terminal = make_terminal(
            quiet_logger, is_local_rc=True, local_rc_data="ZXhwb3J0IEE9MQo=",
            local_rc_decode_cmd="base64 -d"
        )

        with local_terminal(), patch('lssh.terminal.request_pty'):
            terminal.con_term(channel)

        assert not channel.shell_started
        assert channel.commands == ["bash --rcfile <(echo ZXhwb3J0IEE9MQo= | base64 -d)"]


class TestKeepAlive:
    """Tests for KeepAlive."""

    def test_sends_requests_until_stopped(self):
        """Should send keepalive requests on the interval and stop on request."""
        channel = FakeChannel()
        keepalive = KeepAlive(channel, interval=0.01)

        keepalive.start()
        for _ in range(100):
            if len(channel.transport.global_requests) >= 2:
                break
            time.sleep(0.01)
        keepalive.stop()

        assert channel.transport.global_requests[:2] == [KEEPALIVE_REQUEST, KEEPALIVE_REQUEST]
        assert not keepalive.thread.is_alive()

    def test_stops_on_dead_transport(self):
        """Should exit when the transport is gone."""
        channel = FakeChannel()
        channel.transport = FakeTransport(active=False)
        keepalive = KeepAlive(channel, interval=0.01)

        keepalive.start()
        keepalive.thread.join(timeout=1)

        assert not keepalive.thread.is_alive()
        assert channel.transport.global_requests == []


class TestResizeWatcher:
    """Tests for ResizeWatcher."""

    def test_not_started_off_main_thread(self):
        """Should not install a signal handler from a worker thread."""
        result = []
        watcher = ResizeWatcher(FakeChannel(), 0)

        worker = threading.Thread(target=lambda: result.append(watcher.start()))
        worker.start()
        worker.join()

        assert result == [False]
        watcher.stop()

    def test_resize_propagated(self):
        """Should resize the remote pty after a window change."""
        channel = MagicMock()
        watcher = ResizeWatcher(channel, 0)

        with patch('lssh.terminal.terminal_size', return_value=(132, 50)):
            if not watcher.start():
                pytest.skip("SIGWINCH not available")
            watcher._on_sigwinch(None, None)
            for _ in range(100):
                if channel.resize_pty.called:
                    break
                time.sleep(0.01)
            watcher.stop()

        channel.resize_pty.assert_called_with(width=132, height=50)
