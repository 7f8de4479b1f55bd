#!/usr/bin/env python3
"""
ReconCore - Socket Transport
Copyright (C) 2026  Dorin Badea
GPLv3 License

Single place where the scanners resolve addresses and allocate sockets.
Strategies receive a transport instance so tests can substitute it.
"""

from __future__ import annotations

import errno
import ipaddress
import os
import socket
from typing import Optional, Tuple

from reconcore.core.errors import AddressResolutionError, SocketCreationError

SockAddr = Tuple  # (host, port) or (host, port, flowinfo, scope_id)

# errno values that mean the network or the host actively refused the probe.
REJECTION_ERRNOS = frozenset(
    code
    for code in (
        getattr(errno, "ECONNREFUSED", None),
        getattr(errno, "EHOSTUNREACH", None),
        getattr(errno, "ENETUNREACH", None),
        getattr(errno, "EHOSTDOWN", None),
        getattr(errno, "ECONNRESET", None),
    )
    if code is not None
)

IN_PROGRESS_ERRNOS = frozenset(
    code
    for code in (
        getattr(errno, "EINPROGRESS", None),
        getattr(errno, "EWOULDBLOCK", None),
        getattr(errno, "EAGAIN", None),
        getattr(errno, "EALREADY", None),
        getattr(errno, "WSAEWOULDBLOCK", None),
    )
    if code is not None
)


def is_rejection(code: Optional[int]) -> bool:
    """True when an errno reports an explicit refusal/unreachable signal."""
    return code in REJECTION_ERRNOS


def family_name(family: int) -> str:
    return "IPv6" if family == socket.AF_INET6 else "IPv4"


def normalize_address(address: str) -> str:
    """Canonical textual form of an IP literal (scope id removed)."""
    text = str(address).split("%", 1)[0]
    try:
        return ipaddress.ip_address(text).compressed
    except ValueError:
        return text


def is_raw_icmp_available() -> Tuple[bool, str]:
    """
    Check if raw ICMP sockets can be opened by this process.

    Returns:
        Tuple of (available: bool, reason: str)
    """
    if not hasattr(socket, "SOCK_RAW"):
        return False, "unsupported"
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)
    except PermissionError:
        return False, "requires_root"
    except OSError:
        if hasattr(os, "geteuid") and os.geteuid() != 0:
            return False, "requires_root"
        return False, "unsupported"
    sock.close()
    return True, "available"


class SocketTransport:
    """
    Resolution and socket allocation for the scan strategies.

    The default implementation uses the operating system directly; tests pass
    a subclass or a mock to take the network out of the loop.
    """

    def resolve(
        self, host: str, port: int, socktype: int, family: int = socket.AF_UNSPEC
    ) -> Tuple[int, SockAddr]:
        """
        Resolve host/port to (family, sockaddr).

        Raises:
            AddressResolutionError: host is empty, malformed or unresolvable.
        """
        if not host:
            raise AddressResolutionError(host, "empty host")
        try:
            infos = socket.getaddrinfo(host, port, family, socktype)
        except (socket.gaierror, UnicodeError, ValueError, OSError) as exc:
            raise AddressResolutionError(host, str(exc)) from exc
        for fam, _, _, _, sockaddr in infos:
            if fam in (socket.AF_INET, socket.AF_INET6):
                return fam, sockaddr
        raise AddressResolutionError(host, "no usable address")

    def stream_socket(self, family: int) -> socket.socket:
        return socket.socket(family, socket.SOCK_STREAM)

    def datagram_socket(self, family: int) -> socket.socket:
        return socket.socket(family, socket.SOCK_DGRAM)

    def icmp_socket(self, family: int) -> socket.socket:
        """
        Open a raw ICMP (or ICMPv6) socket.

        Raises:
            SocketCreationError: missing privilege or no raw socket support.
        """
        proto = socket.IPPROTO_ICMPV6 if family == socket.AF_INET6 else socket.IPPROTO_ICMP
        try:
            return socket.socket(family, socket.SOCK_RAW, proto)
        except PermissionError as exc:
            raise SocketCreationError(
                f"Raw {family_name(family)} ICMP socket requires elevated privileges",
                reason="requires_root",
            ) from exc
        except (OSError, AttributeError) as exc:
            raise SocketCreationError(
                f"Cannot open raw {family_name(family)} ICMP socket: {exc}",
                reason="unsupported",
            ) from exc

    def preflight(self, socktype: int) -> None:
        """
        Verify that sockets of the given type can be allocated at all.

        Raises:
            SocketCreationError: before any target of the batch is touched.
        """
        try:
            if socktype == socket.SOCK_STREAM:
                sock = self.stream_socket(socket.AF_INET)
            else:
                sock = self.datagram_socket(socket.AF_INET)
        except OSError as exc:
            raise SocketCreationError(f"Cannot allocate sockets: {exc}") from exc
        sock.close()
