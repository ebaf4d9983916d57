"""Listen address parsing utilities."""

import socket
from dataclasses import dataclass

from aplos.domain.errors import InvalidAddress


@dataclass(frozen=True)
class ListenAddress:
    """A parsed ``host:port`` pair ready to be handed to a socket."""

    host: str
    port: int
    family: socket.AddressFamily = socket.AF_INET

    def as_tuple(self) -> tuple[str, int]:
        """Return the address in the form expected by ``socket.bind``."""
        return self.host, self.port


def split_host_port(address: str) -> tuple[str, str]:
    """Split ``host:port`` into its parts, honouring bracketed IPv6 hosts."""
    if address.startswith("["):
        closing = address.find("]")
        if closing < 0:
            raise InvalidAddress(f"missing ']' in address {address!r}")
        host = address[1:closing]
        remainder = address[closing + 1 :]
        if not remainder.startswith(":"):
            raise InvalidAddress(f"missing port in address {address!r}")
        return host, remainder[1:]

    host, separator, port = address.rpartition(":")
    if not separator:
        raise InvalidAddress(f"missing port in address {address!r}")
    if ":" in host:
        raise InvalidAddress(f"too many colons in address {address!r}")
    return host, port


def _parse_port(port: str, address: str) -> int:
    if port.isdigit():
        number = int(port)
        if number > 65535:
            raise InvalidAddress(f"invalid port {port!r} in address {address!r}")
        return number
    if not port:
        return 0
    try:
        return socket.getservbyname(port, "tcp")
    except OSError as error:
        raise InvalidAddress(f"unknown port {port!r} in address {address!r}") from error


def parse_listen_address(address: str) -> ListenAddress:
    """Parse and resolve a TCP listen address such as ``127.0.0.1:8080``."""
    host, port_text = split_host_port(address)
    port = _parse_port(port_text, address)
    if not host:
        return ListenAddress("0.0.0.0", port)

    try:
        candidates = socket.getaddrinfo(
            host, port, type=socket.SOCK_STREAM, proto=socket.IPPROTO_TCP
        )
    except (socket.gaierror, UnicodeError) as error:
        raise InvalidAddress(f"cannot resolve host {host!r}: {error}") from error

    family, _, _, _, sockaddr = candidates[0]
    return ListenAddress(sockaddr[0], port, family)
