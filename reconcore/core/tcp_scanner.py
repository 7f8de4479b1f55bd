#!/usr/bin/env python3
"""
ReconCore - TCP Strategy
Copyright (C) 2026  Dorin Badea
GPLv3 License

Full-handshake TCP connect scan with banner capture.

A completed handshake marks the target alive and hands the socket to the
banner reader. A refusal (RST) or an ICMP unreachable marks it unreachable.
Silence until the connect deadline marks it timed out.
"""

from __future__ import annotations

import logging
import socket
from contextlib import nullcontext
from typing import Optional

from reconcore.core.banner import grab_banner, nudge_for_port
from reconcore.core.base import PortScanner
from reconcore.core.correlator import CorrelationKey, IcmpCorrelator
from reconcore.core.models import Target
from reconcore.core.transport import IN_PROGRESS_ERRNOS, SockAddr, is_rejection
from reconcore.core.waiting import deadline_after, wait_ready
from reconcore.utils.constants import (
    DEFAULT_BANNER_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    MAX_BANNER_BYTES,
    PROTO_TCP,
    REASON_ICMP_UNREACHABLE,
    REASON_REPLY_RECEIVED,
    REASON_TIMED_OUT,
)

logger = logging.getLogger(__name__)


def _wildcard(family: int) -> tuple:
    return ("::", 0) if family == socket.AF_INET6 else ("0.0.0.0", 0)


class TcpScanner(PortScanner):
    """Connect scanner. Optional correlator shortens waits on ICMP-rejected ports."""

    name = "tcp"
    protocols = (PROTO_TCP,)

    def __init__(
        self,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        banner_timeout: float = DEFAULT_BANNER_TIMEOUT,
        banner_size: int = MAX_BANNER_BYTES,
        banner_nudge: bool = True,
        correlator: Optional[IcmpCorrelator] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.connect_timeout = float(connect_timeout)
        self.banner_timeout = float(banner_timeout)
        self.banner_size = int(banner_size)
        self.banner_nudge = bool(banner_nudge)
        self.correlator = correlator

    def prepare(self, batch) -> None:
        super().prepare(batch)
        self.transport.preflight(socket.SOCK_STREAM)

    def probe(self, target: Target) -> None:
        resolved = self.resolve_or_mark(target, socket.SOCK_STREAM)
        if resolved is None:
            return
        family, sockaddr = resolved
        sock = self.transport.stream_socket(family)
        try:
            outcome = self._connect(sock, family, sockaddr, target)
            if outcome != REASON_REPLY_RECEIVED:
                target.mark_dead(outcome)
                return
            target.mark_alive(self._capture(sock, target))
        finally:
            sock.close()

    def _use_correlator(self, family: int) -> bool:
        return (
            self.correlator is not None
            and self.correlator.is_open
            and family in self.correlator.families
        )

    def _connect(self, sock: socket.socket, family: int, sockaddr: SockAddr, target: Target) -> str:
        deadline = deadline_after(self.connect_timeout)
        sock.setblocking(False)

        expect = nullcontext(None)
        if self._use_correlator(family):
            # The source port must be known before the SYN leaves.
            sock.bind(_wildcard(family))
            local_port = sock.getsockname()[1]
            key = CorrelationKey.make(PROTO_TCP, sockaddr[0], sockaddr[1], local_port)
            expect = self.correlator.expect(key)

        with expect as waiter:
            code = sock.connect_ex(sockaddr)
            if code == 0:
                return REASON_REPLY_RECEIVED
            if code not in IN_PROGRESS_ERRNOS:
                return self._classify(code, target)

            readable = [waiter] if waiter is not None else []
            while True:
                ready_r, ready_w = wait_ready(deadline, readable, [sock])
                if not ready_r and not ready_w:
                    return REASON_TIMED_OUT
                if ready_w:
                    code = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
                    if code == 0:
                        return REASON_REPLY_RECEIVED
                    return self._classify(code, target)
                if waiter is not None and waiter.is_set():
                    event = waiter.result
                    logger.debug(
                        "ICMP unreachable for %s from %s (type=%s code=%s)",
                        target.label(),
                        event.source if event else "?",
                        event.icmp_type if event else "?",
                        event.icmp_code if event else "?",
                    )
                    return REASON_ICMP_UNREACHABLE

    @staticmethod
    def _classify(code: int, target: Target) -> str:
        if is_rejection(code):
            return REASON_ICMP_UNREACHABLE
        logger.debug("Connect to %s failed with errno %s", target.label(), code)
        return REASON_TIMED_OUT

    def _capture(self, sock: socket.socket, target: Target) -> bytes:
        nudge = nudge_for_port(target.port) if self.banner_nudge else b""
        try:
            return grab_banner(sock, self.banner_timeout, self.banner_size, nudge)
        except OSError as exc:
            # The handshake already proved liveness; a broken read only loses the banner.
            logger.debug("Banner capture failed for %s: %s", target.label(), exc)
            return b""
