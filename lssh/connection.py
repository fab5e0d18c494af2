"""
Connections for lssh.
Dials a server (through its proxy chain if any), keeps the authenticated
client, and opens per-command session channels from it, rebuilding the
client transparently when a liveness check fails.
"""

import os
import socket
import threading
from enum import Enum
from typing import List, Optional

import socks
from paramiko import SSHClient, AutoAddPolicy, RejectPolicy, Channel
from paramiko.agent import AgentRequestHandler
from paramiko.ssh_exception import SSHException
from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from .config import Config, ProxyConfig
from .errors import (
    LsshError, SSHConnectionError, SessionCreationError, LivenessCheckFailure
)
from .logger import HostLogger, StructuredLogger, get_logger
from .proxy import HopKind, get_proxy_list

# Author: Vamsi

KEEPALIVE_REQUEST = "keepalive@lssh.com"


class ConnectionState(Enum):
    """Lifecycle of a connection."""
    UNCONNECTED = "unconnected"
    LIVE = "live"
    STALE = "stale"


class ProxyDialer:
    """Opens TCP streams through an http, https or socks5 proxy."""

    def __init__(self, name: str, proxy: ProxyConfig, kind: HopKind, timeout: int = 30):
        """
        Initialize proxy dialer.

        :param name: Proxy name, for error messages
        :param proxy: Proxy configuration
        :param kind: Tunnel kind of the proxy
        :param timeout: Connect timeout in seconds
        """
        self.name = name
        self.proxy = proxy
        self.kind = kind
        self.timeout = timeout

    @property
    def proxy_type(self) -> int:
        # PySocks speaks CONNECT to http and https proxies alike
        if self.kind is HopKind.SOCKS5:
            return socks.SOCKS5
        return socks.HTTP

    def dial(self, host: str, port: int) -> socket.socket:
        """
        Open a tunnelled stream to host:port.

        :param host: Destination address
        :param port: Destination port
        :return: Connected socket
        """
        sock = socks.socksocket()
        sock.set_proxy(
            self.proxy_type,
            self.proxy.addr,
            int(self.proxy.port),
            rdns=True,
            username=self.proxy.user or None,
            password=self.proxy.password or None,
        )
        sock.settimeout(self.timeout)
        try:
            sock.connect((host, port))
        except Exception:
            sock.close()
            raise
        return sock


class Connection:
    """
    One server's connection state.

    A Connection owns the client for its target plus the clients of any
    SSH hops it was dialed through. It is never shared between concurrent
    command executions; each execution task gets its own.

    Example:
        conn = Connection("web1", config)
        channel = conn.create_session()
    """

    def __init__(self, server: str, config: Config, logger: Optional[StructuredLogger] = None):
        """
        Initialize connection.

        :param server: Name of the server to connect to
        :param config: Full configuration
        :param logger: Logger instance
        """
        self.server = server
        self.config = config
        self.logger = logger or get_logger()
        self.host_logger = HostLogger(server, self.logger)

        self.client: Optional[SSHClient] = None
        self.state = ConnectionState.UNCONNECTED
        self.x11 = False

        self._hop_clients: List[SSHClient] = []
        self._agent_handlers: List[AgentRequestHandler] = []
        self.lock = threading.RLock()

    @property
    def server_config(self):
        return self.config.servers[self.server]

    def create_client(self) -> SSHClient:
        """
        Dial the server, through its proxy chain if it has one.

        :return: Authenticated SSH client
        :raises ConfigResolutionError: If the proxy chain cannot be resolved
        :raises SSHConnectionError: If any dial or handshake fails
        """
        with self.lock:
            hops, _ = get_proxy_list(self.server, self.config)

            hop_clients: List[SSHClient] = []
            via_client: Optional[SSHClient] = None
            via_dialer: Optional[ProxyDialer] = None

            try:
                for hop in hops:
                    if hop.kind.is_tunnel:
                        via_dialer = ProxyDialer(
                            hop.name, self.config.proxies[hop.name], hop.kind,
                            timeout=self.config.timeout
                        )
                        continue

                    via_client = self._connect(hop.name, via_client, via_dialer)
                    hop_clients.append(via_client)

                client = self._connect(self.server, via_client, via_dialer)

            except LsshError as e:
                for hop_client in reversed(hop_clients):
                    hop_client.close()
                self.host_logger.log_connection('failure', error=str(e))
                raise

            self.client = client
            self._hop_clients = hop_clients
            self.state = ConnectionState.LIVE
            self.x11 = self.server_config.x11

            self.host_logger.log_connection(
                'connect', hops=[f"{h.name}({h.kind.value})" for h in hops]
            )
            return client

    def _open_socket(self, host: str, port: int) -> socket.socket:
        """
        Open a direct TCP connection, retrying transient failures.

        :param host: Host address
        :param port: Port number
        :return: Connected socket
        """
        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.config.max_retries)),
            wait=wait_exponential(multiplier=self.config.retry_delay, max=10),
            retry=retry_if_exception_type((socket.timeout, ConnectionError)),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return socket.create_connection((host, port), timeout=self.config.timeout)

    def _new_client(self) -> SSHClient:
        """Create an SSH client with the configured host key policy."""
        client = SSHClient()
        security = self.config.security

        if security.strict_host_key_checking:
            client.load_system_host_keys()
            if security.known_hosts_file and os.path.exists(security.known_hosts_file):
                client.load_host_keys(security.known_hosts_file)
            client.set_missing_host_key_policy(RejectPolicy())
        else:
            client.set_missing_host_key_policy(AutoAddPolicy())

        return client

    def _connect(self, name: str, via_client: Optional[SSHClient] = None,
                 via_dialer: Optional[ProxyDialer] = None) -> SSHClient:
        """
        Dial and authenticate one server.

        :param name: Server name
        :param via_client: Previous SSH hop to tunnel through
        :param via_dialer: Tunnelling proxy to dial through when no SSH hop precedes
        :return: Authenticated SSH client
        """
        server = self.config.servers[name]
        port = server.dial_port

        try:
            if via_client is not None:
                sock = via_client.get_transport().open_channel(
                    "direct-tcpip", (server.addr, port), ("127.0.0.1", 0),
                    timeout=self.config.timeout
                )
            elif via_dialer is not None:
                sock = via_dialer.dial(server.addr, port)
            else:
                sock = self._open_socket(server.addr, port)
        except (SSHException, OSError) as e:
            raise SSHConnectionError(f"cannot reach {server.addr}:{port}: {e}", host=name) from e

        client = self._new_client()
        try:
            client.connect(
                hostname=server.addr,
                port=port,
                username=server.user or None,
                password=server.password or None,
                key_filename=server.key or None,
                passphrase=server.key_passphrase or None,
                allow_agent=server.agent_auth or server.ssh_agent_forward,
                look_for_keys=False,
                sock=sock,
                timeout=self.config.timeout,
                banner_timeout=self.config.banner_timeout,
                auth_timeout=self.config.auth_timeout,
            )
        except (SSHException, OSError) as e:
            client.close()
            sock.close()
            raise SSHConnectionError(f"ssh handshake failed: {e}", host=name) from e

        return client

    def check_client_alive(self) -> None:
        """
        Send one keepalive round-trip on the connection.

        Any reply, including a request-failure, counts as alive. The wait for
        the reply is bounded by the configured timeout.

        :raises LivenessCheckFailure: If the transport is gone, the request fails or no reply arrives
        """
        transport = self.client.get_transport() if self.client else None
        if transport is None or not transport.is_active():
            raise LivenessCheckFailure("transport is not active", host=self.server)

        failure: List[BaseException] = []

        def keepalive():
            try:
                transport.global_request(KEEPALIVE_REQUEST, wait=True)
            except (SSHException, OSError, EOFError) as e:
                failure.append(e)

        # global_request(wait=True) has no timeout of its own
        waiter = threading.Thread(target=keepalive, daemon=True)
        waiter.start()
        waiter.join(self.config.timeout)

        if waiter.is_alive():
            raise LivenessCheckFailure(
                f"keepalive timed out after {self.config.timeout}s", host=self.server
            )
        if failure:
            raise LivenessCheckFailure(f"keepalive failed: {failure[0]}", host=self.server) from failure[0]

        if not transport.is_active():
            raise LivenessCheckFailure("transport closed during keepalive", host=self.server)

    def create_session(self) -> Channel:
        """
        Open a new session channel, (re)connecting as needed.

        :return: Session channel
        :raises SSHConnectionError: If connecting or reconnecting fails
        :raises SessionCreationError: If the channel cannot be opened
        """
        with self.lock:
            if self.client is None:
                self.create_client()

            try:
                self.check_client_alive()
            except LivenessCheckFailure as alive_error:
                self.state = ConnectionState.STALE
                self.host_logger.log_connection('stale', error=str(alive_error))
                self._teardown()
                try:
                    self.create_client()
                except LsshError as rebuild_error:
                    raise rebuild_error from alive_error
                self.host_logger.log_connection('reconnect')

            try:
                channel = self.client.get_transport().open_session(timeout=self.config.timeout)
            except (SSHException, OSError, AttributeError) as e:
                raise SessionCreationError(f"cannot open session: {e}", host=self.server) from e

            if self.server_config.ssh_agent_forward:
                self._agent_handlers.append(AgentRequestHandler(channel))

            return channel

    def _teardown(self):
        """Close the target client and every hop client."""
        clients = ([self.client] if self.client else []) + list(reversed(self._hop_clients))
        for client in clients:
            try:
                client.close()
            except (SSHException, OSError) as e:
                self.host_logger.debug("Error closing client", error=str(e))

        for handler in self._agent_handlers:
            handler.close()

        self.client = None
        self._hop_clients = []
        self._agent_handlers = []

    def close(self):
        """Close the connection."""
        with self.lock:
            self._teardown()
            self.state = ConnectionState.UNCONNECTED

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
