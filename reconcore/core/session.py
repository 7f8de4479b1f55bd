#!/usr/bin/env python3
"""
ReconCore - Scan Session
Copyright (C) 2026  Dorin Badea
GPLv3 License

Owns the process-wide ICMP receive path for the duration of a run and drives
mixed-protocol batches through the right strategies.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

from reconcore.core.base import PortScanner
from reconcore.core.config_context import ConfigurationContext, create_config_context
from reconcore.core.correlator import IcmpCorrelator
from reconcore.core.errors import ScanError, SocketCreationError
from reconcore.core.models import Target
from reconcore.core.orchestrator import ProgressCallback
from reconcore.core.scanner_factory import PortScannerFactory, get_scanner
from reconcore.core.transport import SocketTransport

logger = logging.getLogger(__name__)


class ScanSession:
    """
    Usage:
        with ScanSession(config) as session:
            session.scan(targets)

    Entering the session tries to open a shared ICMP correlator. Without raw
    socket privileges the session still works: TCP/UDP fall back to kernel
    reported refusals and ICMP targets fail with SocketCreationError.
    """

    def __init__(
        self,
        config: Optional[Union[ConfigurationContext, Mapping[str, Any]]] = None,
        *,
        transport: Optional[SocketTransport] = None,
        correlator: Optional[IcmpCorrelator] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.config = create_config_context(config)
        self.transport = transport or SocketTransport()
        self.correlator = correlator
        self.progress_callback = progress_callback
        self.errors: List[Tuple[str, ScanError]] = []
        self._owns_correlator = False

    def open(self) -> "ScanSession":
        if self.correlator is not None:
            return self
        correlator = IcmpCorrelator(self.transport)
        try:
            correlator.open()
        except SocketCreationError as exc:
            logger.warning("ICMP correlation disabled: %s (%s)", exc, exc.reason or "unknown")
            return self
        self.correlator = correlator
        self._owns_correlator = True
        return self

    def close(self) -> None:
        if self._owns_correlator and self.correlator is not None:
            self.correlator.close()
            self.correlator = None
        self._owns_correlator = False

    def __enter__(self) -> "ScanSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def scanner(self, protocol: Union[str, int], prefer_external: bool = False) -> PortScanner:
        return get_scanner(
            protocol,
            prefer_external,
            config=self.config,
            correlator=self.correlator,
            transport=self.transport,
            progress_callback=self.progress_callback,
        )

    def scan(self, targets: Sequence[Target], prefer_external: bool = False) -> Sequence[Target]:
        """
        Scan a mixed batch in place, one strategy per protocol group.

        A batch-wide failure of one group (e.g. no ICMP privilege) is logged
        and recorded in `errors`; that group's records stay untouched and the
        other groups still run.
        """
        self.errors = []
        groups: "OrderedDict[type, List[Target]]" = OrderedDict()
        for target in targets:
            strategy = PortScannerFactory.strategy_for(target.protocol, prefer_external)
            groups.setdefault(strategy, []).append(target)

        for members in groups.values():
            protocol = members[0].protocol
            try:
                with self.scanner(protocol, prefer_external) as scanner:
                    scanner.scan(members)
            except ScanError as exc:
                logger.error("%s scan of %d targets failed: %s", protocol, len(members), exc)
                self.errors.append((protocol, exc))
        return targets
