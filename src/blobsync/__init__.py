# filepath: blobsync/__init__.py

# Re-export specific classes and functions
# Dynamically fetch the version from the package metadata
import importlib.metadata

from .core import api, checksum, configuration
from .core.chunked_uploader import ChunkedUploader, block_id_for
from .core.cloud_connector import CloudConnector, LocalCloudConnector
from .core.sync_config_objects import Keys, SyncCfg, SyncSettings
from .core.sync_orchestrator import LocalFile, RemoteBlobIndex, SyncOrchestrator, SyncReport

try:
    __version__ = importlib.metadata.version("blobsync")
except importlib.metadata.PackageNotFoundError:
    __version__ = "unknown"

# Optionally, define an explicit __all__ to control what gets imported with "from blobsync import *"
__all__ = [
    "api",
    "block_id_for",
    "checksum",
    "ChunkedUploader",
    "CloudConnector",
    "configuration",
    "Keys",
    "LocalCloudConnector",
    "LocalFile",
    "RemoteBlobIndex",
    "SyncCfg",
    "SyncOrchestrator",
    "SyncReport",
    "SyncSettings",
]
