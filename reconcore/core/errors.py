#!/usr/bin/env python3
"""
ReconCore - Scan Errors
Copyright (C) 2026  Dorin Badea
GPLv3 License

Only batch-wide setup failures escape a strategy's scan(). Per-target
conditions (timeouts, unreachable notices, unusable addresses) are absorbed
into the target's reason.
"""


class ScanError(Exception):
    """Base class for every error raised by the scanning engine."""


class ConfigurationError(ScanError, ValueError):
    """Unknown protocol or invalid scanner settings."""


class AddressResolutionError(ScanError):
    """A target host cannot be turned into a socket address."""

    def __init__(self, host: str, detail: str = ""):
        self.host = host
        self.detail = detail
        msg = f"Cannot resolve {host!r}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class SocketCreationError(ScanError):
    """A strategy cannot allocate the socket class it needs (e.g. raw ICMP)."""

    def __init__(self, message: str, reason: str = ""):
        self.reason = reason
        super().__init__(message)


class ScanUnavailableError(ScanError):
    """The external scanning tool is missing or failed to execute."""
