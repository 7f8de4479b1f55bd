"""
ReconCore - Core Data Models
Copyright (C) 2026  Dorin Badea
GPLv3 License

This module defines the scan unit shared by every strategy. A Target is owned
by the caller for its whole lifetime; strategies only mutate its outcome
fields, never replace it.
"""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from reconcore.core.errors import ConfigurationError
from reconcore.utils.constants import (
    MAX_PORT,
    MIN_PORT,
    PROTO_ICMP,
    PROTO_ICMPV6,
    PROTO_TCP,
    PROTO_UDP,
    REASON_ICMP_UNREACHABLE,
    REASON_REPLY_RECEIVED,
    REASON_TIMED_OUT,
    REASON_UNKNOWN,
    TERMINAL_DEAD_REASONS,
)

_PROTOCOL_ALIASES: Dict[Union[str, int], str] = {
    "tcp": PROTO_TCP,
    "udp": PROTO_UDP,
    "icmp": PROTO_ICMP,
    "icmp4": PROTO_ICMP,
    "icmpv4": PROTO_ICMP,
    "ping": PROTO_ICMP,
    "icmp6": PROTO_ICMPV6,
    "icmpv6": PROTO_ICMPV6,
    "ping6": PROTO_ICMPV6,
    socket.IPPROTO_TCP: PROTO_TCP,
    socket.IPPROTO_UDP: PROTO_UDP,
    socket.IPPROTO_ICMP: PROTO_ICMP,
    socket.IPPROTO_ICMPV6: PROTO_ICMPV6,
}


def normalize_protocol(value: Union[str, int, None]) -> str:
    """
    Map a protocol name or IPPROTO_* number to a PROTO_* constant.

    Raises:
        ConfigurationError: if the protocol is not one the engine can scan.
    """
    key: Union[str, int, None] = value
    if isinstance(value, str):
        key = value.strip().lower()
    elif isinstance(value, bool):
        key = None
    proto = _PROTOCOL_ALIASES.get(key) if key is not None else None  # type: ignore[arg-type]
    if proto is None:
        raise ConfigurationError(f"Unsupported protocol: {value!r}")
    return proto


@dataclass(eq=False)
class Target:
    """One host/port/protocol unit under test and its outcome."""

    host: str
    port: int = 0
    protocol: str = PROTO_TCP
    alive: bool = False
    reason: str = REASON_UNKNOWN
    banner: bytes = field(default=b"", repr=False)

    def __post_init__(self) -> None:
        self.protocol = normalize_protocol(self.protocol)
        port = int(self.port)
        if not MIN_PORT <= port <= MAX_PORT:
            raise ValueError(f"Port out of range: {self.port}")
        self.port = port
        self.host = str(self.host).strip()

    @property
    def banner_length(self) -> int:
        return len(self.banner)

    @property
    def scanned(self) -> bool:
        return self.reason != REASON_UNKNOWN

    @property
    def is_icmp(self) -> bool:
        return self.protocol in (PROTO_ICMP, PROTO_ICMPV6)

    def mark_alive(self, banner: bytes = b"") -> None:
        self.alive = True
        self.reason = REASON_REPLY_RECEIVED
        self.banner = bytes(banner or b"")

    def mark_dead(self, reason: str) -> None:
        if reason not in TERMINAL_DEAD_REASONS:
            raise ValueError(f"Not a terminal dead reason: {reason!r}")
        self.alive = False
        self.reason = reason
        self.banner = b""

    def mark_timed_out(self) -> None:
        self.mark_dead(REASON_TIMED_OUT)

    def mark_unreachable(self) -> None:
        self.mark_dead(REASON_ICMP_UNREACHABLE)

    def reset(self) -> None:
        self.alive = False
        self.reason = REASON_UNKNOWN
        self.banner = b""

    def label(self) -> str:
        if self.is_icmp:
            return f"{self.host}/{self.protocol}"
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}/{self.protocol}"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "host": self.host,
            "port": self.port,
            "protocol": self.protocol,
            "alive": self.alive,
            "reason": self.reason,
            "banner": self.banner.decode("utf-8", errors="replace"),
            "banner_hex": self.banner.hex(),
            "banner_length": self.banner_length,
        }
