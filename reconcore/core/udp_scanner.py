#!/usr/bin/env python3
"""
ReconCore - UDP Strategy
Copyright (C) 2026  Dorin Badea
GPLv3 License

Payload-driven UDP probing. Each target receives the protocol-specific payload
for its port (or the generic one). Any datagram coming back marks the target
alive and becomes its banner; a port-unreachable signal, delivered either by
the kernel on the connected socket or by the ICMP correlator, marks it
unreachable. Silence is a timeout, which for UDP is the common
"open|filtered" case.
"""

from __future__ import annotations

import logging
import socket
from contextlib import nullcontext
from typing import Optional, Tuple

from reconcore.core.base import PortScanner
from reconcore.core.correlator import CorrelationKey, IcmpCorrelator
from reconcore.core.models import Target
from reconcore.core.payloads import PayloadLibrary
from reconcore.core.transport import SockAddr, is_rejection
from reconcore.core.waiting import deadline_after, wait_ready
from reconcore.utils.constants import (
    DEFAULT_UDP_TIMEOUT,
    MAX_BANNER_BYTES,
    MAX_DATAGRAM_BYTES,
    PROTO_UDP,
    REASON_ICMP_UNREACHABLE,
    REASON_REPLY_RECEIVED,
    REASON_TIMED_OUT,
)

logger = logging.getLogger(__name__)


class UdpScanner(PortScanner):
    name = "udp"
    protocols = (PROTO_UDP,)

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_UDP_TIMEOUT,
        banner_size: int = MAX_BANNER_BYTES,
        payloads: Optional[PayloadLibrary] = None,
        correlator: Optional[IcmpCorrelator] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.timeout = float(timeout)
        self.banner_size = int(banner_size)
        self.payloads = payloads if payloads is not None else PayloadLibrary.default()
        self.correlator = correlator

    def get_payloads(self) -> PayloadLibrary:
        """Payload library used by this scanner."""
        return self.payloads

    def prepare(self, batch) -> None:
        super().prepare(batch)
        self.transport.preflight(socket.SOCK_DGRAM)

    def probe(self, target: Target) -> None:
        resolved = self.resolve_or_mark(target, socket.SOCK_DGRAM)
        if resolved is None:
            return
        family, sockaddr = resolved
        payload = self.payloads.lookup(target.port)
        sock = self.transport.datagram_socket(family)
        try:
            outcome, data = self._exchange(sock, family, sockaddr, payload, target)
        finally:
            sock.close()
        if outcome == REASON_REPLY_RECEIVED:
            target.mark_alive(data[: self.banner_size])
        else:
            target.mark_dead(outcome)

    def _use_correlator(self, family: int) -> bool:
        return (
            self.correlator is not None
            and self.correlator.is_open
            and family in self.correlator.families
        )

    def _exchange(
        self,
        sock: socket.socket,
        family: int,
        sockaddr: SockAddr,
        payload: bytes,
        target: Target,
    ) -> Tuple[str, bytes]:
        deadline = deadline_after(self.timeout)
        sock.setblocking(False)
        try:
            # Connected so the kernel reports port-unreachable on this socket.
            sock.connect(sockaddr)
        except OSError as exc:
            return self._classify(exc, target), b""

        expect = nullcontext(None)
        if self._use_correlator(family):
            local_port = sock.getsockname()[1]
            key = CorrelationKey.make(PROTO_UDP, sockaddr[0], sockaddr[1], local_port)
            expect = self.correlator.expect(key)

        with expect as waiter:
            try:
                sock.send(payload)
            except OSError as exc:
                return self._classify(exc, target), b""

            readable = [sock] if waiter is None else [sock, waiter]
            while True:
                ready_r, _ = wait_ready(deadline, readable)
                if not ready_r:
                    return REASON_TIMED_OUT, b""
                if sock in ready_r:
                    try:
                        return REASON_REPLY_RECEIVED, sock.recv(MAX_DATAGRAM_BYTES)
                    except (BlockingIOError, InterruptedError):
                        pass
                    except OSError as exc:
                        return self._classify(exc, target), b""
                if waiter is not None and waiter.is_set():
                    logger.debug("ICMP port unreachable for %s", target.label())
                    return REASON_ICMP_UNREACHABLE, b""

    @staticmethod
    def _classify(exc: OSError, target: Target) -> str:
        if isinstance(exc, ConnectionRefusedError) or is_rejection(exc.errno):
            return REASON_ICMP_UNREACHABLE
        logger.debug("UDP probe of %s failed: %s", target.label(), exc)
        return REASON_TIMED_OUT
