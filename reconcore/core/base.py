#!/usr/bin/env python3
"""
ReconCore - Scan strategy base class
Copyright (C) 2026  Dorin Badea
GPLv3 License
"""

from __future__ import annotations

import logging
import socket
from abc import ABC, abstractmethod
from typing import Optional, Sequence, Tuple

from reconcore.core.errors import AddressResolutionError, ConfigurationError
from reconcore.core.models import Target
from reconcore.core.orchestrator import ProgressCallback, run_batch
from reconcore.core.transport import SockAddr, SocketTransport
from reconcore.utils.constants import DEFAULT_WORKERS

logger = logging.getLogger(__name__)


class PortScanner(ABC):
    """
    A protocol-specific implementation of "scan a batch of targets".

    scan() validates the whole batch before any record is touched, then runs
    probe() once per target on the worker pool. Strategies hold resources,
    so callers release them with close() or a `with` block.
    """

    name = "base"
    protocols: Tuple[str, ...] = ()

    def __init__(
        self,
        *,
        workers: int = DEFAULT_WORKERS,
        transport: Optional[SocketTransport] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.workers = int(workers)
        self.transport = transport or SocketTransport()
        self.progress_callback = progress_callback

    def scan(self, batch: Sequence[Target]) -> Sequence[Target]:
        """Scan every target of the batch in place and return the batch."""
        if not batch:
            return batch
        self.prepare(batch)
        return run_batch(
            self.probe,
            batch,
            workers=self.workers,
            progress_callback=self.progress_callback,
            desc=self.name,
        )

    def prepare(self, batch: Sequence[Target]) -> None:
        """
        Batch-wide checks. Raising here leaves every record untouched.

        Raises:
            ConfigurationError: a target's protocol is not handled here.
        """
        for target in batch:
            if target.protocol not in self.protocols:
                raise ConfigurationError(
                    f"{type(self).__name__} cannot scan {target.protocol} target {target.label()}"
                )

    @abstractmethod
    def probe(self, target: Target) -> None:
        """Probe one target and record its outcome."""
        raise NotImplementedError

    def resolve_or_mark(
        self,
        target: Target,
        socktype: int,
        family: int = socket.AF_UNSPEC,
        port: Optional[int] = None,
    ) -> Optional[Tuple[int, SockAddr]]:
        """
        Resolve a target, or record it as timed out when its host is unusable.

        No probe can be sent and no rejection was observed, so TimedOut is the
        closest terminal state.
        """
        try:
            port = target.port if port is None else port
            return self.transport.resolve(target.host, port, socktype, family)
        except AddressResolutionError as exc:
            logger.info("Skipping %s: %s", target.label(), exc)
            target.mark_timed_out()
            return None

    def close(self) -> None:
        """Release resources held by the strategy."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(workers={self.workers})"
