"""
ReconCore - Configuration Context
Copyright (C) 2026  Dorin Badea
GPLv3 License

Typed wrapper around the scan configuration dictionary. Strategies read their
settings through the properties; unknown keys are kept so callers can carry
their own extras.
"""

from __future__ import annotations

import shlex
from collections.abc import MutableMapping
from typing import Any, Dict, Iterator, List, Mapping, Optional

from reconcore.core.errors import ConfigurationError
from reconcore.utils.constants import (
    DEFAULT_BANNER_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_ICMP_TIMEOUT,
    DEFAULT_NMAP_TIMEOUT,
    DEFAULT_UDP_TIMEOUT,
    DEFAULT_WORKERS,
    MAX_BANNER_BYTES,
    MAX_WORKERS,
    MIN_WORKERS,
)


class ConfigurationContext(MutableMapping):
    """
    Typed wrapper for ReconCore scan configuration.

    Values are validated when read, so a bad value coming from a config file
    or the environment surfaces as ConfigurationError at scanner creation
    rather than in the middle of a batch.
    """

    def __init__(self, raw_config: Optional[Dict[str, Any]] = None):
        self._config = self._defaults()
        if raw_config:
            self._config.update(raw_config)

    @staticmethod
    def _defaults() -> Dict[str, Any]:
        return {
            "workers": DEFAULT_WORKERS,
            "connect_timeout": DEFAULT_CONNECT_TIMEOUT,
            "banner_timeout": DEFAULT_BANNER_TIMEOUT,
            "banner_size": MAX_BANNER_BYTES,
            "udp_timeout": DEFAULT_UDP_TIMEOUT,
            "icmp_timeout": DEFAULT_ICMP_TIMEOUT,
            "banner_nudge": True,
            "payload_file": None,
            "nmap_path": "nmap",
            "nmap_timeout": DEFAULT_NMAP_TIMEOUT,
            "nmap_extra_args": "",
            "dry_run": False,
        }

    # -------------------------------------------------------------------------
    # Raw dict access
    # -------------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self._config[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._config[key] = value

    def __delitem__(self, key: str) -> None:
        del self._config[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._config)

    def __len__(self) -> int:
        return len(self._config)

    def __contains__(self, key: object) -> bool:
        return key in self._config

    @property
    def raw(self) -> Dict[str, Any]:
        """Get underlying raw config dict."""
        return self._config

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _number(self, key: str, cast, minimum) -> Any:
        value = self._config.get(key)
        if value is None or value == "":
            value = self._defaults()[key]
        try:
            number = cast(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid value for {key}: {value!r}") from exc
        if number < minimum:
            raise ConfigurationError(f"{key} must be >= {minimum}, got {number}")
        return number

    # -------------------------------------------------------------------------
    # Typed Properties - Native engine
    # -------------------------------------------------------------------------

    @property
    def workers(self) -> int:
        """Worker pool size, clamped to the supported range."""
        return max(MIN_WORKERS, min(self._number("workers", int, MIN_WORKERS), MAX_WORKERS))

    @workers.setter
    def workers(self, value: int) -> None:
        self._config["workers"] = value

    @property
    def connect_timeout(self) -> float:
        return self._number("connect_timeout", float, 0.0)

    @connect_timeout.setter
    def connect_timeout(self, value: float) -> None:
        self._config["connect_timeout"] = value

    @property
    def banner_timeout(self) -> float:
        return self._number("banner_timeout", float, 0.0)

    @banner_timeout.setter
    def banner_timeout(self, value: float) -> None:
        self._config["banner_timeout"] = value

    @property
    def banner_size(self) -> int:
        return self._number("banner_size", int, 0)

    @property
    def udp_timeout(self) -> float:
        return self._number("udp_timeout", float, 0.0)

    @property
    def icmp_timeout(self) -> float:
        return self._number("icmp_timeout", float, 0.0)

    @property
    def banner_nudge(self) -> bool:
        """Send a minimal request to services that wait for the client."""
        return bool(self._config.get("banner_nudge", True))

    @property
    def payload_file(self) -> Optional[str]:
        """Optional nmap-payloads style file merged over the built-in payloads."""
        return self._config.get("payload_file") or None

    # -------------------------------------------------------------------------
    # Typed Properties - External scanner
    # -------------------------------------------------------------------------

    @property
    def nmap_path(self) -> str:
        return str(self._config.get("nmap_path") or "nmap")

    @property
    def nmap_timeout(self) -> float:
        return self._number("nmap_timeout", float, 1.0)

    @property
    def nmap_extra_args(self) -> List[str]:
        value = self._config.get("nmap_extra_args") or ""
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value]
        return shlex.split(str(value))

    @property
    def dry_run(self) -> bool:
        """Check if dry run mode is enabled."""
        return bool(self._config.get("dry_run", False))

    def validate(self) -> None:
        """
        Read every typed setting once.

        Raises:
            ConfigurationError: the first invalid value found.
        """
        for name in (
            "workers",
            "connect_timeout",
            "banner_timeout",
            "banner_size",
            "udp_timeout",
            "icmp_timeout",
            "nmap_timeout",
        ):
            getattr(self, name)


def create_config_context(raw_config: Optional[Mapping[str, Any]] = None) -> ConfigurationContext:
    """Wrap a raw mapping (or reuse an existing context)."""
    if isinstance(raw_config, ConfigurationContext):
        return raw_config
    return ConfigurationContext(dict(raw_config) if raw_config else None)
