##############################################################################################################
# Blobsync configuration
#
# Logging set up, cloud type selection and loading of the credentials and settings from the environment.
##############################################################################################################
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Optional

from blobsync.core import api
from blobsync.core.sync_config_objects import FAILED_TO_LOAD, Keys, SyncCfg, SyncSettings

__all__ = [
    "FAILED_TO_LOAD",
    "CloudType",
    "Keys",
    "SyncCfg",
    "SyncSettings",
    "RAISE_WARN",
    "check_keys",
    "load_keys",
    "load_settings",
    "require_keys",
    "setup_logger",
]

LOG_FORMAT = "%(asctime)s %(name)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
DEFAULT_LOG_LEVEL = logging.INFO


class CloudType(Enum):
    AZURE = "azure"
    LOCAL_EMULATOR = "local_emulator"


def RAISE_WARN() -> str:
    """Prefix for log messages that flag degraded behaviour.

    Makes them easy to grep for in a long log."""
    return "RAISE_WARN#"


def setup_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """Return the named logger with a single stderr handler attached.

    Safe to call from every module; the handler is only added once.
    If level is provided it is applied to the logger and its handler."""
    logger = logging.getLogger(name)

    if not any(getattr(h, "_blobsync_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._blobsync_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
        logger.setLevel(DEFAULT_LOG_LEVEL)
        logger.propagate = False

    if level is not None:
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)

    return logger


def load_keys(keys_file: Optional[Path] = None) -> Keys:
    """Load the storage account credentials from the environment, or from keys_file if provided."""
    if keys_file is not None:
        if not keys_file.exists():
            raise ValueError(f"Keys file {keys_file} does not exist")
        return Keys(_env_file=keys_file, _env_file_encoding="utf-8")  # type: ignore
    return Keys()


def check_keys(keys: Keys) -> tuple[bool, str]:
    """Check that all required credentials are present.

    Returns (success, error message)."""
    missing = keys.missing()
    if missing:
        return False, f"Missing environment variable {', '.join(missing)}"
    return True, ""


def require_keys(keys: Keys) -> Keys:
    """Raise CredentialMissing unless all required credentials are present."""
    success, error = check_keys(keys)
    if not success:
        raise api.CredentialMissing(error)
    return keys


def load_settings() -> SyncSettings:
    return SyncSettings()
