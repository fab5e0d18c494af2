"""
Proxy chain resolution.

A server may name a proxy it must be reached through. That proxy is
either another SSH server (which can itself name a proxy) or an
http/https/socks5 tunnelling proxy, which always ends the chain.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple

from .config import Config
from .errors import ConfigResolutionError

# Author: Vamsi


class HopKind(str, Enum):
    """How a hop is traversed."""
    SSH = "ssh"
    HTTP = "http"
    HTTPS = "https"
    SOCKS5 = "socks5"

    @property
    def is_tunnel(self) -> bool:
        return self is not HopKind.SSH


@dataclass(frozen=True)
class Hop:
    """One intermediate endpoint on the way to a target."""
    name: str
    kind: HopKind


def get_proxy_list(server: str, config: Config) -> Tuple[List[Hop], Dict[str, HopKind]]:
    """
    Resolve the hops needed to reach a server.

    The chain is collected by walking backward from the target through
    each server's proxy reference, then reversed so that the first hop is
    the one dialed first and the last hop is adjacent to the target.

    :param server: Target server name
    :param config: Full configuration
    :return: Tuple of (ordered hops, hop name -> kind)
    :raises ConfigResolutionError: If a name is unknown or the chain loops
    """
    if server not in config.servers:
        raise ConfigResolutionError(f"Not Found server : {server}", host=server)

    hops: List[Hop] = []
    visited = {server}
    current = config.servers[server]

    while current.proxy:
        name = current.proxy
        kind = HopKind(current.proxy_type) if current.proxy_type else HopKind.SSH

        if name in visited:
            raise ConfigResolutionError(
                f"proxy loop detected at {name}: "
                f"{' -> '.join([server] + [h.name for h in hops] + [name])}",
                host=server
            )
        visited.add(name)

        if kind.is_tunnel:
            if name not in config.proxies:
                raise ConfigResolutionError(f"Not Found proxy : {name}", host=server)
            hops.append(Hop(name, kind))
            # tunnelling proxies cannot be chained any further
            break

        if name not in config.servers:
            raise ConfigResolutionError(f"Not Found proxy : {name}", host=server)
        hops.append(Hop(name, kind))
        current = config.servers[name]

    hops.reverse()
    return hops, {hop.name: hop.kind for hop in hops}
