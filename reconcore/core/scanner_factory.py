#!/usr/bin/env python3
"""
ReconCore - Scanner Factory
Copyright (C) 2026  Dorin Badea
GPLv3 License

Maps a protocol to its scan strategy. Creating a strategy performs no I/O;
sockets and raw channels are acquired when the batch is scanned.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Type, Union

from reconcore.core.base import PortScanner
from reconcore.core.config_context import ConfigurationContext, create_config_context
from reconcore.core.correlator import IcmpCorrelator
from reconcore.core.errors import ConfigurationError
from reconcore.core.icmp_pinger import IcmpPinger
from reconcore.core.models import normalize_protocol
from reconcore.core.nmap_scanner import NmapScanner
from reconcore.core.orchestrator import ProgressCallback
from reconcore.core.payloads import build_payload_library
from reconcore.core.tcp_scanner import TcpScanner
from reconcore.core.transport import SocketTransport
from reconcore.core.udp_scanner import UdpScanner
from reconcore.utils.config import is_dry_run
from reconcore.utils.constants import PROTO_ICMP, PROTO_ICMPV6, PROTO_TCP, PROTO_UDP

logger = logging.getLogger(__name__)


class PortScannerFactory:
    """Registry of native strategies keyed by protocol."""

    _registry: Dict[str, Type[PortScanner]] = {
        PROTO_TCP: TcpScanner,
        PROTO_UDP: UdpScanner,
        PROTO_ICMP: IcmpPinger,
        PROTO_ICMPV6: IcmpPinger,
    }

    @classmethod
    def strategy_for(cls, protocol: Union[str, int], prefer_external: bool = False) -> Type[PortScanner]:
        """
        The external collaborator is returned for any protocol when preferred.

        Raises:
            ConfigurationError: unknown protocol on the native path.
        """
        if prefer_external:
            return NmapScanner
        proto = normalize_protocol(protocol)
        try:
            return cls._registry[proto]
        except KeyError:
            raise ConfigurationError(f"No scan strategy for protocol {protocol!r}") from None

    @classmethod
    def get(
        cls,
        protocol: Union[str, int],
        prefer_external: bool = False,
        *,
        config: Optional[Union[ConfigurationContext, Mapping[str, Any]]] = None,
        correlator: Optional[IcmpCorrelator] = None,
        transport: Optional[SocketTransport] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> PortScanner:
        strategy = cls.strategy_for(protocol, prefer_external)
        ctx = create_config_context(config)
        common = {
            "workers": ctx.workers,
            "transport": transport,
            "progress_callback": progress_callback,
        }

        if strategy is NmapScanner:
            return NmapScanner(
                nmap_path=ctx.nmap_path,
                timeout=ctx.nmap_timeout,
                extra_args=ctx.nmap_extra_args,
                banner_size=ctx.banner_size,
                dry_run=is_dry_run(ctx.dry_run or None),
                **common,
            )
        if strategy is TcpScanner:
            return TcpScanner(
                connect_timeout=ctx.connect_timeout,
                banner_timeout=ctx.banner_timeout,
                banner_size=ctx.banner_size,
                banner_nudge=ctx.banner_nudge,
                correlator=correlator,
                **common,
            )
        if strategy is UdpScanner:
            return UdpScanner(
                timeout=ctx.udp_timeout,
                banner_size=ctx.banner_size,
                payloads=build_payload_library(ctx.payload_file),
                correlator=correlator,
                **common,
            )
        return IcmpPinger(timeout=ctx.icmp_timeout, correlator=correlator, **common)


def get_scanner(
    protocol: Union[str, int],
    prefer_external: bool = False,
    **kwargs: Any,
) -> PortScanner:
    """
    Return the strategy for `protocol`.

    Args:
        protocol: Protocol name or socket.IPPROTO_* number
        prefer_external: Use the nmap collaborator instead of the native engine
        **kwargs: config, correlator, transport, progress_callback

    Raises:
        ConfigurationError: unknown protocol or invalid configuration.
    """
    return PortScannerFactory.get(protocol, prefer_external, **kwargs)
