# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Data file locations.

Frozen builds keep their data next to the executable, script runs use the
current working directory.
"""

import sys
from pathlib import Path


def get_data_dir() -> Path:
    """Get the base directory for .env and store files."""
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    return Path.cwd()


def get_data_file(name: str) -> Path:
    """Get the path of a data file (not created)."""
    return get_data_dir() / name
