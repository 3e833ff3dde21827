# src/token_lifecycle/utils/paths.py
"""
Centralized path management for the token lifecycle library.

Files (database, logs, .env) live under the data root, which is the current
working directory unless TOKEN_DATA_DIR is set.
"""

import os
from pathlib import Path
from typing import Optional, Union


def get_default_root() -> Path:
    """
    Get the default root directory for data files.

    - TOKEN_DATA_DIR when set
    - Otherwise: current working directory
    """
    override = os.getenv("TOKEN_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return Path.cwd()


def get_logs_dir(root: Optional[Union[Path, str]] = None) -> Path:
    """
    Get the logs directory, creating it if needed.

    Args:
        root: Optional root directory. If None, uses get_default_root().
    """
    base = Path(root) if root else get_default_root()
    logs_dir = base / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def get_data_file(filename: str, root: Optional[Union[Path, str]] = None) -> Path:
    """
    Get the path to a data file in the root directory (does not create the file).

    Args:
        filename: Name of the file (e.g., "dashboard.db", ".env")
        root: Optional root directory. If None, uses get_default_root().
    """
    base = Path(root) if root else get_default_root()
    return base / filename
