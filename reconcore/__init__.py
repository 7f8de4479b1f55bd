#!/usr/bin/env python3
"""
ReconCore - Multi-protocol reconnaissance engine
Copyright (C) 2026  Dorin Badea

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

ReconCore package initialization.
"""

from reconcore.core.errors import ScanError
from reconcore.core.models import Target
from reconcore.core.scanner_factory import get_scanner
from reconcore.core.session import ScanSession
from reconcore.utils.constants import VERSION

__all__ = ["ScanError", "ScanSession", "Target", "VERSION", "__version__", "get_scanner"]
__version__ = VERSION
