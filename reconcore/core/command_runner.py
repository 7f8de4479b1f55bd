#!/usr/bin/env python3
"""
ReconCore - External Command Runner
Copyright (C) 2026  Dorin Badea
GPLv3 License

Single entry point for running external tools (nmap). Never uses a shell;
timeouts and missing binaries come back as results rather than exceptions.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

RC_TIMEOUT = 124
RC_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str
    stderr: str
    duration_s: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def format_command(args: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in args)


class CommandRunner:
    def __init__(
        self,
        *,
        logger: Any = None,
        dry_run: bool = False,
        default_timeout: Optional[float] = 60.0,
    ):
        self._logger = logger or logging.getLogger(__name__)
        self._dry_run = bool(dry_run)
        self._default_timeout = default_timeout

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    def run(
        self,
        args: Sequence[str],
        *,
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> CommandResult:
        """
        Run a command and capture its text output.

        Returns:
            CommandResult. returncode is 124 on timeout and 127 when the
            executable cannot be found.
        """
        cmd = self._validate_args(args)
        rendered = format_command(cmd)

        if self._dry_run:
            self._logger.info("[dry-run] %s", rendered)
            return CommandResult(list(cmd), 0, "", "", 0.0)

        timeout_val = timeout if timeout is not None else self._default_timeout
        self._logger.debug("exec: %s", rendered)
        start = time.monotonic()
        try:
            completed = subprocess.run(
                list(cmd),
                cwd=cwd,
                env=self._merge_env(env),
                timeout=timeout_val,
                capture_output=True,
                text=True,
                errors="replace",
            )
        except subprocess.TimeoutExpired as exc:
            self._logger.warning("timeout after %ss: %s", timeout_val, rendered)
            return CommandResult(
                list(cmd),
                RC_TIMEOUT,
                _as_text(exc.stdout),
                _as_text(exc.stderr),
                time.monotonic() - start,
                timed_out=True,
            )
        except FileNotFoundError as exc:
            self._logger.error("command not found: %s", rendered)
            return CommandResult(list(cmd), RC_NOT_FOUND, "", str(exc), time.monotonic() - start)

        return CommandResult(
            list(cmd),
            int(completed.returncode),
            completed.stdout or "",
            completed.stderr or "",
            time.monotonic() - start,
        )

    def _validate_args(self, args: Sequence[str]) -> Tuple[str, ...]:
        if isinstance(args, (str, bytes)):
            raise TypeError("command must be an argv sequence, not a shell string")
        cmd = tuple(a if isinstance(a, str) else str(a) for a in args)
        if not cmd or not cmd[0].strip():
            raise ValueError("command has no executable")
        return cmd

    @staticmethod
    def _merge_env(env: Optional[Mapping[str, str]]) -> Dict[str, str]:
        merged = os.environ.copy()
        if env:
            merged.update({k: v for k, v in env.items() if isinstance(k, str) and isinstance(v, str)})
        return merged


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
