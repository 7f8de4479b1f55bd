#!/usr/bin/env python3
"""ReconCore utilities subpackage."""

from reconcore.utils.constants import PROTOCOLS, REASONS, VERSION

__all__ = ["PROTOCOLS", "REASONS", "VERSION"]
