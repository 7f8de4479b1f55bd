#!/usr/bin/env python3
"""
ReconCore - Entry point for `python -m reconcore`
Copyright (C) 2026  Dorin Badea
GPLv3 License
"""

import sys

from reconcore.cli import main

if __name__ == "__main__":
    sys.exit(main())
