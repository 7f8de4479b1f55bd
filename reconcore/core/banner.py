#!/usr/bin/env python3
"""
ReconCore - Banner Capture
Copyright (C) 2026  Dorin Badea
GPLv3 License

Reads whatever a freshly connected service says first, under a deadline that
is independent of the connect timeout. An empty read is a normal outcome;
only socket faults are raised to the caller.
"""

from __future__ import annotations

import socket
import time
from typing import List, Optional

from reconcore.utils.constants import (
    BANNER_DRAIN_TIMEOUT,
    DEFAULT_BANNER_TIMEOUT,
    MAX_BANNER_BYTES,
)

# Services that wait for the client to speak first
_HTTP_NUDGE = b"HEAD / HTTP/1.0\r\n\r\n"
SILENT_SERVICE_NUDGES = {
    80: _HTTP_NUDGE,
    81: _HTTP_NUDGE,
    591: _HTTP_NUDGE,
    3000: _HTTP_NUDGE,
    5000: _HTTP_NUDGE,
    8000: _HTTP_NUDGE,
    8008: _HTTP_NUDGE,
    8080: _HTTP_NUDGE,
    8081: _HTTP_NUDGE,
    8888: _HTTP_NUDGE,
    6379: b"INFO\r\n",  # redis
    11211: b"version\r\n",  # memcached
}


def nudge_for_port(port: int) -> bytes:
    return SILENT_SERVICE_NUDGES.get(int(port), b"")


def _read_until(sock: socket.socket, deadline: float, max_bytes: int) -> List[bytes]:
    chunks: List[bytes] = []
    total = 0
    while total < max_bytes:
        left = deadline - time.monotonic()
        if left <= 0:
            break
        sock.settimeout(left)
        try:
            data = sock.recv(max_bytes - total)
        except socket.timeout:
            break
        if not data:
            break
        chunks.append(data)
        total += len(data)
        # After the first chunk only keep reading what is already queued.
        deadline = min(deadline, time.monotonic() + BANNER_DRAIN_TIMEOUT)
    return chunks


def grab_banner(
    sock: socket.socket,
    timeout: float = DEFAULT_BANNER_TIMEOUT,
    max_bytes: int = MAX_BANNER_BYTES,
    nudge: bytes = b"",
) -> bytes:
    """
    Capture up to `max_bytes` from a connected socket.

    Args:
        sock: Connected stream socket (left open for the caller to close)
        timeout: Read deadline in seconds, independent of the connect timeout
        max_bytes: Upper bound on captured bytes
        nudge: Optional request sent if the service stays silent

    Returns:
        Captured bytes, possibly empty

    Raises:
        OSError: on socket-level faults (reset, broken pipe, ...)
    """
    if max_bytes <= 0 or timeout <= 0:
        return b""
    previous: Optional[float] = sock.gettimeout()
    try:
        start = time.monotonic()
        deadline = start + timeout
        # Leave half of the window for the nudge round-trip.
        first_deadline = start + timeout / 2 if nudge else deadline
        chunks = _read_until(sock, first_deadline, max_bytes)
        if not chunks and nudge and time.monotonic() < deadline:
            sock.settimeout(max(0.001, deadline - time.monotonic()))
            sock.sendall(nudge)
            chunks = _read_until(sock, deadline, max_bytes)
        return b"".join(chunks)[:max_bytes]
    finally:
        try:
            sock.settimeout(previous)
        except OSError:
            pass
