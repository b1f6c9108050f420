"""Listen address parsing and socket binding for the HTTP server."""

from __future__ import annotations

import socket
from dataclasses import dataclass


class ListenAddressError(ValueError):
    """Raised for a malformed ``host:port`` listen address."""


@dataclass(frozen=True)
class ListenAddress:
    host: str
    port: int

    @classmethod
    def parse(cls, value: str) -> "ListenAddress":
        """Split at the last ``:``; IPv6 hosts may be wrapped in brackets."""
        port_start = value.rfind(":")
        if port_start == -1:
            raise ListenAddressError("Invalid listen address. Expected: host:port")
        try:
            port = int(value[port_start + 1 :])
        except ValueError as exc:
            raise ListenAddressError("Invalid port number") from exc
        if not 0 <= port <= 65535:
            raise ListenAddressError("Invalid port number")
        host = value[:port_start]
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        return cls(host, port)

    def __str__(self) -> str:
        return f"{format_host(self.host)}:{self.port}"


def format_host(host: str) -> str:
    return f"[{host}]" if ":" in host else host


def bind_socket(address: ListenAddress) -> socket.socket:
    """Bind a listening TCP socket; port 0 picks any free port."""
    family, socktype, proto, _, sockaddr = socket.getaddrinfo(
        address.host or None,
        address.port,
        type=socket.SOCK_STREAM,
        flags=socket.AI_PASSIVE,
    )[0]
    sock = socket.socket(family, socktype, proto)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if family == socket.AF_INET6:
            # Accept IPv4 clients on "::" like a dual-stack server.
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
        sock.bind(sockaddr)
        sock.listen(socket.SOMAXCONN)
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


def bound_address(sock: socket.socket, requested: ListenAddress) -> ListenAddress:
    return ListenAddress(requested.host, sock.getsockname()[1])
