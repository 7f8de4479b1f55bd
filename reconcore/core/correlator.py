#!/usr/bin/env python3
"""
ReconCore - ICMP Correlator
Copyright (C) 2026  Dorin Badea
GPLv3 License

Process-wide demultiplexer for inbound ICMP/ICMPv6 messages.

The correlator owns the raw receive channels for both address families. Each
inbound echo reply or destination-unreachable notice is decoded with scapy,
turned into a CorrelationKey and routed to the single probe that registered
that key. Everything else (unmatched, late, foreign traffic) is dropped.
"""

from __future__ import annotations

import logging
import os
import selectors
import socket
import struct
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

# Keep scapy quiet before it is imported
logging.getLogger("scapy.runtime").setLevel(logging.ERROR)

from scapy.config import conf as scapy_conf  # noqa: E402
from scapy.layers.inet import ICMP, IP, ICMPerror, IPerror, TCPerror, UDPerror  # noqa: E402
from scapy.layers.inet6 import (  # noqa: E402
    ICMPv6DestUnreach,
    ICMPv6EchoReply,
    ICMPv6EchoRequest,
    IPerror6,
    IPv6,
)
from scapy.packet import Packet, Raw  # noqa: E402

from reconcore.core.errors import SocketCreationError  # noqa: E402
from reconcore.core.transport import SocketTransport, family_name, normalize_address  # noqa: E402
from reconcore.utils.constants import (  # noqa: E402
    CORRELATOR_POLL_INTERVAL,
    ICMP_DEST_UNREACH,
    ICMP_ECHO_PAYLOAD,
    ICMP_ECHO_REPLY,
    ICMP_ECHO_REQUEST,
    ICMPV6_ECHO_REQUEST,
    MAX_DATAGRAM_BYTES,
    PROTO_ICMP,
    PROTO_ICMPV6,
    PROTO_TCP,
    PROTO_UDP,
)

scapy_conf.verb = 0

logger = logging.getLogger(__name__)

EVENT_ECHO_REPLY = "echo-reply"
EVENT_UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class CorrelationKey:
    """
    Identity of one outstanding probe.

    UDP/TCP: (protocol, destination, destination port, local source port).
    ICMP echo: (protocol, destination, echo identifier, echo sequence).
    """

    protocol: str
    address: str
    port: int
    local: int

    @classmethod
    def make(cls, protocol: str, address: str, port: int, local: int) -> "CorrelationKey":
        return cls(protocol, normalize_address(address), int(port), int(local))


@dataclass(frozen=True)
class IcmpEvent:
    """A decoded inbound ICMP message that refers to one of our probes."""

    kind: str
    key: CorrelationKey
    source: str
    icmp_type: int
    icmp_code: int

    @property
    def is_reply(self) -> bool:
        return self.kind == EVENT_ECHO_REPLY

    @property
    def is_unreachable(self) -> bool:
        return self.kind == EVENT_UNREACHABLE


# ============================================================================
# Wire codec
# ============================================================================


def build_echo_request(
    family: int, ident: int, seq: int, payload: bytes = ICMP_ECHO_PAYLOAD
) -> bytes:
    """Encode an echo request for the given family."""
    if family == socket.AF_INET6:
        # The kernel fills in the ICMPv6 checksum on raw sockets.
        return bytes(ICMPv6EchoRequest(id=ident, seq=seq, data=payload, cksum=0))
    return bytes(ICMP(type=ICMP_ECHO_REQUEST, code=0, id=ident, seq=seq) / Raw(load=payload))


def _quoted_ports(quoted: Packet) -> Optional[Tuple[int, int]]:
    sport = getattr(quoted, "sport", None)
    dport = getattr(quoted, "dport", None)
    if sport is not None and dport is not None:
        return int(sport), int(dport)
    # Routers may quote as little as 8 bytes of the original datagram.
    raw = bytes(quoted)
    if len(raw) < 4:
        return None
    sport, dport = struct.unpack("!HH", raw[:4])
    return sport, dport


def _quoted_echo(quoted: Packet) -> Optional[Tuple[int, int]]:
    raw = bytes(quoted)
    if len(raw) < 8:
        return None
    qtype, _, _, ident, seq = struct.unpack("!BBHHH", raw[:8])
    if qtype not in (ICMP_ECHO_REQUEST, ICMPV6_ECHO_REQUEST):
        return None
    return ident, seq


def _quoted_key(protocol_num: int, dst: str, quoted: Packet, icmp_proto: str) -> Optional[CorrelationKey]:
    if protocol_num in (socket.IPPROTO_ICMP, socket.IPPROTO_ICMPV6) or isinstance(
        quoted, (ICMPerror, ICMPv6EchoRequest)
    ):
        echo = _quoted_echo(quoted)
        if echo is None:
            return None
        return CorrelationKey.make(icmp_proto, dst, echo[0], echo[1])
    if protocol_num == socket.IPPROTO_UDP or isinstance(quoted, UDPerror):
        proto = PROTO_UDP
    elif protocol_num == socket.IPPROTO_TCP or isinstance(quoted, TCPerror):
        proto = PROTO_TCP
    else:
        return None
    ports = _quoted_ports(quoted)
    if ports is None:
        return None
    sport, dport = ports
    return CorrelationKey.make(proto, dst, dport, sport)


def parse_icmpv4(data: bytes) -> Optional[IcmpEvent]:
    """
    Decode a datagram read from a raw IPv4 ICMP socket (IP header included).

    Returns None for anything that is neither an echo reply nor a destination
    unreachable quoting one of our probe types.
    """
    try:
        pkt = IP(data)
    except Exception as exc:
        logger.debug("Undecodable ICMPv4 datagram (%d bytes): %s", len(data), exc)
        return None
    msg = pkt.payload
    if not isinstance(msg, ICMP):
        return None
    source = normalize_address(pkt.src)
    if msg.type == ICMP_ECHO_REPLY:
        key = CorrelationKey.make(PROTO_ICMP, source, msg.id, msg.seq)
        return IcmpEvent(EVENT_ECHO_REPLY, key, source, int(msg.type), int(msg.code))
    if msg.type != ICMP_DEST_UNREACH:
        return None
    inner = msg.payload
    if not isinstance(inner, IPerror):
        return None
    key = _quoted_key(int(inner.proto), inner.dst, inner.payload, PROTO_ICMP)
    if key is None:
        return None
    return IcmpEvent(EVENT_UNREACHABLE, key, source, int(msg.type), int(msg.code))


def parse_icmpv6(data: bytes, source: str) -> Optional[IcmpEvent]:
    """
    Decode a message read from a raw ICMPv6 socket.

    The kernel strips the IPv6 header, so a synthetic one carrying the sender
    address is prepended before dissection.
    """
    src = normalize_address(source)
    try:
        header = IPv6(src=src, dst="::", nh=socket.IPPROTO_ICMPV6, plen=len(data), hlim=255)
        pkt = IPv6(bytes(header) + data)
    except Exception as exc:
        logger.debug("Undecodable ICMPv6 message from %s: %s", src, exc)
        return None
    msg = pkt.payload
    if isinstance(msg, ICMPv6EchoReply):
        key = CorrelationKey.make(PROTO_ICMPV6, src, msg.id, msg.seq)
        return IcmpEvent(EVENT_ECHO_REPLY, key, src, int(msg.type), int(msg.code))
    if not isinstance(msg, ICMPv6DestUnreach):
        return None
    inner = msg.payload
    if not isinstance(inner, IPerror6):
        return None
    key = _quoted_key(int(inner.nh), inner.dst, inner.payload, PROTO_ICMPV6)
    if key is None:
        return None
    return IcmpEvent(EVENT_UNREACHABLE, key, src, int(msg.type), int(msg.code))


# ============================================================================
# Waiters
# ============================================================================


class ProbeWaiter:
    """
    Wake-up handle for one outstanding probe.

    The first delivered event wins. fileno() lazily creates a socketpair so
    the waiter can sit in the same selector as the probe's own socket.
    """

    def __init__(self, key: CorrelationKey):
        self.key = key
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._result: Optional[IcmpEvent] = None
        self._pair: Optional[Tuple[socket.socket, socket.socket]] = None
        self._closed = False

    def fileno(self) -> int:
        with self._lock:
            if self._closed:
                raise ValueError("waiter is closed")
            if self._pair is None:
                rsock, wsock = socket.socketpair()
                rsock.setblocking(False)
                wsock.setblocking(False)
                self._pair = (rsock, wsock)
                if self._event.is_set():
                    self._signal()
            return self._pair[0].fileno()

    def _signal(self) -> None:
        if self._pair is None:
            return
        try:
            self._pair[1].send(b"\x00")
        except OSError:
            logger.debug("Waiter wake-up write failed for %s", self.key, exc_info=True)

    def deliver(self, event: IcmpEvent) -> bool:
        with self._lock:
            if self._event.is_set() or self._closed:
                return False
            self._result = event
            self._event.set()
            self._signal()
        return True

    @property
    def result(self) -> Optional[IcmpEvent]:
        return self._result

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float]) -> Optional[IcmpEvent]:
        self._event.wait(timeout)
        return self._result

    def close(self) -> None:
        with self._lock:
            self._closed = True
            pair, self._pair = self._pair, None
        if pair:
            for sock in pair:
                sock.close()


# ============================================================================
# Correlator
# ============================================================================


class IcmpCorrelator:
    """
    Shared ICMP receive path with a lock-guarded correlation table.

    Lifecycle is explicit: open() acquires the raw sockets and starts the
    reader thread, close() stops it. Strategies receive the instance they
    should use; there is no module-level singleton.
    """

    def __init__(
        self,
        transport: Optional[SocketTransport] = None,
        *,
        families: Sequence[int] = (socket.AF_INET, socket.AF_INET6),
        poll_interval: float = CORRELATOR_POLL_INTERVAL,
    ):
        self._transport = transport or SocketTransport()
        self._families = tuple(families)
        self._poll_interval = float(poll_interval)
        self._lock = threading.Lock()
        self._waiters: Dict[CorrelationKey, ProbeWaiter] = {}
        self._sockets: Dict[int, socket.socket] = {}
        self._unavailable: Dict[int, SocketCreationError] = {}
        self._stop = threading.Event()
        self._reader: Optional[threading.Thread] = None
        self._ident = os.getpid() & 0xFFFF
        self._seq = 0
        self._matched = 0
        self._discarded = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._reader is not None

    @property
    def families(self) -> List[int]:
        return list(self._sockets)

    def open(self) -> "IcmpCorrelator":
        """
        Open raw channels for every configured family and start reading.

        Raises:
            SocketCreationError: no family could be opened.
        """
        if self.is_open:
            return self
        for family in self._families:
            try:
                sock = self._transport.icmp_socket(family)
            except SocketCreationError as exc:
                logger.debug("%s ICMP channel unavailable: %s", family_name(family), exc)
                self._unavailable[family] = exc
                continue
            sock.setblocking(False)
            self._sockets[family] = sock
        if not self._sockets:
            first = next(iter(self._unavailable.values()), None)
            raise SocketCreationError(
                "No raw ICMP channel could be opened",
                reason=first.reason if first else "unsupported",
            )
        self._stop.clear()
        self._reader = threading.Thread(
            target=self._read_loop, name="reconcore-icmp-reader", daemon=True
        )
        self._reader.start()
        logger.info(
            "ICMP correlator listening on %s",
            ", ".join(family_name(f) for f in self._sockets),
        )
        return self

    def close(self) -> None:
        self._stop.set()
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.join(timeout=self._poll_interval * 5)
        for sock in self._sockets.values():
            sock.close()
        self._sockets.clear()
        with self._lock:
            stale = list(self._waiters.values())
            self._waiters.clear()
        for waiter in stale:
            waiter.close()
        logger.debug(
            "ICMP correlator closed (matched=%d, discarded=%d)", self._matched, self._discarded
        )

    def __enter__(self) -> "IcmpCorrelator":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def require(self, family: int) -> None:
        """
        Ensure a raw channel exists for `family`.

        Raises:
            SocketCreationError: the family's channel is not available.
        """
        if family in self._sockets:
            return
        cause = self._unavailable.get(family)
        raise SocketCreationError(
            f"No raw {family_name(family)} ICMP channel available",
            reason=cause.reason if cause else "not_open",
        )

    # -------------------------------------------------------------------------
    # Correlation table
    # -------------------------------------------------------------------------

    def register(self, key: CorrelationKey) -> ProbeWaiter:
        waiter = ProbeWaiter(key)
        with self._lock:
            if key in self._waiters:
                raise ValueError(f"Correlation key already registered: {key}")
            self._waiters[key] = waiter
        return waiter

    def unregister(self, key: CorrelationKey, waiter: ProbeWaiter) -> None:
        with self._lock:
            if self._waiters.get(key) is waiter:
                del self._waiters[key]
        waiter.close()

    @contextmanager
    def expect(self, key: CorrelationKey) -> Iterator[ProbeWaiter]:
        """Register `key` for the duration of a probe's wait window."""
        waiter = self.register(key)
        try:
            yield waiter
        finally:
            self.unregister(key, waiter)

    def pending_keys(self) -> List[CorrelationKey]:
        with self._lock:
            return list(self._waiters)

    def allocate_echo_id(self) -> Tuple[int, int]:
        """Return a process-unique (identifier, sequence) pair."""
        with self._lock:
            self._seq = (self._seq + 1) & 0xFFFF
            return self._ident, self._seq

    def dispatch(self, event: IcmpEvent) -> bool:
        """Route an event to its waiter. Returns False if nobody was waiting."""
        with self._lock:
            waiter = self._waiters.pop(event.key, None)
            if waiter is None:
                self._discarded += 1
            else:
                self._matched += 1
        if waiter is None:
            logger.debug("Discarding unmatched ICMP %s for %s", event.kind, event.key)
            return False
        return waiter.deliver(event)

    def feed(self, family: int, data: bytes, source: str) -> bool:
        """Decode one raw datagram and dispatch it."""
        if family == socket.AF_INET6:
            event = parse_icmpv6(data, source)
        else:
            event = parse_icmpv4(data)
        if event is None:
            return False
        return self.dispatch(event)

    # -------------------------------------------------------------------------
    # I/O
    # -------------------------------------------------------------------------

    def send(self, family: int, packet: bytes, address: Union[str, Tuple]) -> None:
        """Send a pre-built ICMP message through the shared raw socket."""
        self.require(family)
        sockaddr = (address, 0) if isinstance(address, str) else tuple(address)
        self._sockets[family].sendto(packet, sockaddr)

    def _read_loop(self) -> None:
        sel = selectors.DefaultSelector()
        try:
            for family, sock in self._sockets.items():
                sel.register(sock, selectors.EVENT_READ, family)
            while not self._stop.is_set():
                for key, _ in sel.select(timeout=self._poll_interval):
                    if self._stop.is_set():
                        return
                    try:
                        data, addr = key.fileobj.recvfrom(MAX_DATAGRAM_BYTES)  # type: ignore[union-attr]
                    except (BlockingIOError, InterruptedError):
                        continue
                    except OSError as exc:
                        logger.debug("ICMP receive failed: %s", exc)
                        continue
                    self.feed(key.data, data, addr[0])
        except (OSError, ValueError) as exc:
            if not self._stop.is_set():
                logger.error("ICMP reader stopped: %s", exc)
        finally:
            sel.close()
