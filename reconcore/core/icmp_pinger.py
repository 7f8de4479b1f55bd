#!/usr/bin/env python3
"""
ReconCore - ICMP Strategy
Copyright (C) 2026  Dorin Badea
GPLv3 License

Echo-based host discovery over the shared ICMP correlator. Replies are
matched by (address, identifier, sequence), so any number of pings can be in
flight on the same raw socket.
"""

from __future__ import annotations

import logging
import socket
from typing import Optional, Sequence, Tuple

from reconcore.core.base import PortScanner
from reconcore.core.correlator import CorrelationKey, IcmpCorrelator, build_echo_request
from reconcore.core.models import Target
from reconcore.core.transport import is_rejection, normalize_address
from reconcore.utils.constants import (
    DEFAULT_ICMP_TIMEOUT,
    ICMP_ECHO_PAYLOAD,
    PROTO_ICMP,
    PROTO_ICMPV6,
)

logger = logging.getLogger(__name__)


def _family_for(target: Target) -> int:
    return socket.AF_INET6 if target.protocol == PROTO_ICMPV6 else socket.AF_INET


class IcmpPinger(PortScanner):
    """
    ICMP/ICMPv6 echo strategy.

    Uses the injected correlator when given one. Otherwise a private correlator
    is opened for the batch families on first use, reopened when a later batch
    needs another family, and released by close().
    """

    name = "icmp"
    protocols = (PROTO_ICMP, PROTO_ICMPV6)

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_ICMP_TIMEOUT,
        payload: bytes = ICMP_ECHO_PAYLOAD,
        correlator: Optional[IcmpCorrelator] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.timeout = float(timeout)
        self.payload = bytes(payload)
        self.correlator = correlator
        self._owns_correlator = False
        self._opened_families: Tuple[int, ...] = ()

    def prepare(self, batch: Sequence[Target]) -> None:
        """
        Raises:
            SocketCreationError: no raw channel for a family present in the batch.
        """
        super().prepare(batch)
        families = sorted({_family_for(t) for t in batch})
        if self._owns_correlator and not set(families) <= set(self._opened_families):
            # Reopen with the union of the old and new families.
            self.close()
        if self.correlator is None:
            wanted = tuple(sorted(set(families) | set(self._opened_families)))
            correlator = IcmpCorrelator(self.transport, families=wanted)
            correlator.open()
            self.correlator = correlator
            self._owns_correlator = True
            self._opened_families = wanted
        for family in families:
            self.correlator.require(family)

    def probe(self, target: Target) -> None:
        family = _family_for(target)
        resolved = self.resolve_or_mark(target, socket.SOCK_DGRAM, family, port=0)
        if resolved is None:
            return
        _, sockaddr = resolved
        ident, seq = self.correlator.allocate_echo_id()
        key = CorrelationKey.make(target.protocol, normalize_address(sockaddr[0]), ident, seq)
        packet = build_echo_request(family, ident, seq, self.payload)

        with self.correlator.expect(key) as waiter:
            try:
                self.correlator.send(family, packet, (sockaddr[0], 0) + tuple(sockaddr[2:]))
            except OSError as exc:
                if is_rejection(exc.errno):
                    target.mark_unreachable()
                else:
                    logger.debug("Echo request to %s failed: %s", target.label(), exc)
                    target.mark_timed_out()
                return
            event = waiter.wait(self.timeout)

        if event is None:
            target.mark_timed_out()
        elif event.is_reply:
            target.mark_alive()
        else:
            logger.debug("ICMP unreachable for %s from %s", target.label(), event.source)
            target.mark_unreachable()

    def close(self) -> None:
        if self._owns_correlator and self.correlator is not None:
            self.correlator.close()
            self.correlator = None
            self._owns_correlator = False
