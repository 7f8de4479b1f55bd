#!/usr/bin/env python3
"""
ReconCore - Concurrency Orchestrator
Copyright (C) 2026  Dorin Badea
GPLv3 License

Fans a batch of targets out over a fixed-size thread pool. Each worker owns
exactly one Target for the duration of its probe, so results land on the
caller's records without any reordering or copying.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Sequence

from reconcore.core.models import Target
from reconcore.utils.constants import (
    DEFAULT_WORKERS,
    FDS_PER_PROBE,
    MAX_WORKERS,
    MIN_WORKERS,
)

logger = logging.getLogger(__name__)

ProbeFunc = Callable[[Target], None]
ProgressCallback = Callable[[int, int, str], None]


def _get_fd_soft_limit() -> Optional[int]:
    try:
        import resource

        soft_limit, _ = resource.getrlimit(resource.RLIMIT_NOFILE)
        if soft_limit in (resource.RLIM_INFINITY, None):
            return None
        soft_int = int(soft_limit)
        return soft_int if soft_int > 0 else None
    except (ImportError, OSError, ValueError):
        return None


def compute_pool_size(requested: int, batch_size: int) -> int:
    """
    Clamp the worker count to the batch, the configured bounds and the
    process file-descriptor budget (80% of the soft limit).
    """
    workers = max(MIN_WORKERS, min(int(requested or DEFAULT_WORKERS), MAX_WORKERS))
    soft_limit = _get_fd_soft_limit()
    if soft_limit:
        fd_cap = max(MIN_WORKERS, int(soft_limit * 0.8) // FDS_PER_PROBE)
        if fd_cap < workers:
            logger.debug("Worker pool capped to %d due to FD limit %d", fd_cap, soft_limit)
            workers = fd_cap
    return max(MIN_WORKERS, min(workers, max(1, batch_size)))


def run_batch(
    probe: ProbeFunc,
    targets: Sequence[Target],
    *,
    workers: int = DEFAULT_WORKERS,
    progress_callback: Optional[ProgressCallback] = None,
    desc: str = "scan",
) -> Sequence[Target]:
    """
    Run `probe` once per target on a bounded worker pool.

    Args:
        probe: Callable that mutates one Target in place
        targets: Caller-owned batch (never added to, removed from or reordered)
        workers: Requested pool size
        progress_callback: Optional callback(completed, total, desc)
        desc: Label passed to the progress callback

    Returns:
        The same `targets` sequence
    """
    # The same record listed twice is still probed by a single worker.
    unique = list({id(t): t for t in targets}.values())
    total = len(unique)
    if total == 0:
        return targets

    pool_size = compute_pool_size(workers, total)
    start_t = time.monotonic()
    failures: List[Target] = []
    done = 0

    logger.debug("Batch %s: %d targets on %d workers", desc, total, pool_size)
    with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="reconcore") as executor:
        futures: Dict[Future, Target] = {executor.submit(probe, t): t for t in unique}
        pending = set(futures)
        while pending:
            completed, pending = wait(pending, timeout=0.25, return_when=FIRST_COMPLETED)
            for fut in completed:
                target = futures[fut]
                try:
                    fut.result()
                except Exception as exc:
                    failures.append(target)
                    logger.error("Worker error for %s: %s", target.label(), exc)
                    logger.debug("Worker exception details for %s", target.label(), exc_info=True)
                done += 1
                if progress_callback:
                    progress_callback(done, total, desc)

    duration = time.monotonic() - start_t
    alive = sum(1 for t in unique if t.alive)
    logger.info(
        "Batch %s: %d/%d alive in %.2fs (%d worker errors)",
        desc,
        alive,
        total,
        duration,
        len(failures),
    )
    return targets
