from __future__ import annotations

import os
from pathlib import Path

APP_ENV_HOME = "BLOCKOS_HOME"
APP_ENV_DB = "BLOCKOS_DB"


def project_root() -> Path:
    """
    Repository/project root directory.
    Contains blockos/, api/, cli/, tests/.
    """
    return Path(__file__).parent.parent.resolve()


def app_home() -> Path:
    """
    User-writable home for BlockOS.
    Override with BLOCKOS_HOME.
    """
    if os.environ.get(APP_ENV_HOME):
        return Path(os.environ[APP_ENV_HOME]).expanduser().resolve()
    return (Path.home() / ".blockos").resolve()


def config_dir() -> Path:
    d = app_home() / "config"
    d.mkdir(parents=True, exist_ok=True)
    return d


def data_dir() -> Path:
    d = app_home() / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


def db_path() -> Path:
    """
    Canonical DB path for blockos.

    Resolution order:
    1. BLOCKOS_DB env var (explicit override)
    2. ~/.blockos/data/blockos.db (default)
    """
    if os.environ.get(APP_ENV_DB):
        return Path(os.environ[APP_ENV_DB]).expanduser().resolve()
    return data_dir() / "blockos.db"
