#!/usr/bin/env python3
"""
ReconCore - Bounded waits
Copyright (C) 2026  Dorin Badea
GPLv3 License

A probe waits on several independent sources at once (its own socket and the
ICMP correlator's waiter). Whichever becomes ready first wins; the deadline
is the default outcome.
"""

from __future__ import annotations

import selectors
import time
from typing import Any, Iterable, List, Tuple


def deadline_after(timeout: float) -> float:
    return time.monotonic() + max(0.0, float(timeout))


def remaining(deadline: float) -> float:
    return max(0.0, deadline - time.monotonic())


def wait_ready(
    deadline: float,
    readable: Iterable[Any] = (),
    writable: Iterable[Any] = (),
) -> Tuple[List[Any], List[Any]]:
    """
    Block until one of the sources is ready or the deadline passes.

    Sources are sockets or any object exposing fileno(). Returns the ready
    readable and writable sources; two empty lists mean the deadline expired.
    """
    timeout = remaining(deadline)
    if timeout <= 0:
        return [], []
    with selectors.DefaultSelector() as sel:
        for obj in readable:
            sel.register(obj, selectors.EVENT_READ, obj)
        for obj in writable:
            sel.register(obj, selectors.EVENT_WRITE, obj)
        events = sel.select(timeout=timeout)
    ready_r = [key.data for key, mask in events if mask & selectors.EVENT_READ]
    ready_w = [key.data for key, mask in events if mask & selectors.EVENT_WRITE]
    return ready_r, ready_w
