#!/usr/bin/env python3
"""ReconCore core subpackage."""

from reconcore.core.correlator import CorrelationKey, IcmpCorrelator
from reconcore.core.models import Target
from reconcore.core.payloads import PayloadLibrary
from reconcore.core.scanner_factory import PortScannerFactory, get_scanner

__all__ = [
    "CorrelationKey",
    "IcmpCorrelator",
    "PayloadLibrary",
    "PortScannerFactory",
    "Target",
    "get_scanner",
]
