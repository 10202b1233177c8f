# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""Entry point for `python -m manjaro_upkeep`."""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
