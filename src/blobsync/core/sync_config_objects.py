from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from blobsync.core import api

##############################################################################################################
#
# Configuration classes
#
# Credentials are read from the environment (ABS_ACCOUNT_NAME / ABS_ACCOUNT_KEY) or an optional .env file.
# Tunables are read from BLOBSYNC_* environment variables.
# Everything a sync run needs is then gathered into a SyncCfg which is passed explicitly to the
# orchestrator and uploader.
##############################################################################################################
FAILED_TO_LOAD = "Not set"


@dataclass
class Configuration:
    """Utility super class"""

    def update_field(self, field_name: str, value: Any) -> None:  # noqa: ANN401
        setattr(self, field_name, value)

    def display(self) -> str:
        return "\n".join(f"{f.name}: {getattr(self, f.name)}" for f in fields(self))

    def get_field(self, field_name: str) -> Any:  # noqa: ANN401
        return getattr(self, field_name)


##############################################################################################################
# Configuration for a single sync run
##############################################################################################################
@dataclass
class SyncCfg(Configuration):
    """Configuration for a sync run"""

    # Destination container; created with private access if it does not exist.
    container: str = "default"

    # Directories whose direct entries are uploaded, in the order given.
    source_dirs: list[Path] = field(default_factory=lambda: [Path(".")])

    # Whether a failed Put Block List aborts the run.
    commit_policy: api.CommitPolicy = api.CommitPolicy.STRICT

    # Files larger than this are uploaded as blocks.
    max_put_blob_size: int = api.MAX_PUT_BLOB_SIZE

    # Size of each block on the chunked path.
    block_size: int = api.BLOCK_SIZE

    # Zero-pad the block index to this many digits. 0 keeps the original unpadded block IDs.
    # The service requires all block IDs within a blob to have the same length once base64-encoded.
    # Unpadded, the tags "50".."599" all encode to 4 characters and "5100" onwards to 8, so the IDs first
    # differ in length at index 100. Files needing more than 100 blocks need a width of at least 3.
    block_id_width: int = 0

    # Send the file MD5 with Put Block List so that the next run can skip the blob.
    stamp_content_md5: bool = True

    def __post_init__(self) -> None:
        self.source_dirs = [Path(d) for d in self.source_dirs]
        self.commit_policy = api.CommitPolicy(self.commit_policy)
        if not self.container:
            raise ValueError("Container name must not be empty")
        if not 0 < self.block_size <= api.MAX_BLOCK_SIZE:
            raise ValueError(f"block_size must be between 1 and {api.MAX_BLOCK_SIZE}: {self.block_size}")
        if self.max_put_blob_size < 1:
            raise ValueError(f"max_put_blob_size must be positive: {self.max_put_blob_size}")
        if self.block_id_width < 0:
            raise ValueError(f"block_id_width must not be negative: {self.block_id_width}")


##############################################################################################################
# Define the settings classes that are populated from the environment
##############################################################################################################
class Keys(BaseSettings):
    """Class to hold the storage account credentials"""

    account_name: str = FAILED_TO_LOAD
    account_key: str = FAILED_TO_LOAD
    endpoint_suffix: str = "core.windows.net"
    model_config = SettingsConfigDict(env_prefix="ABS_", extra="ignore")

    def missing(self) -> list[str]:
        """Return the environment variables that have not been set"""
        missing = []
        if not self.account_name or self.account_name == FAILED_TO_LOAD:
            missing.append("ABS_ACCOUNT_NAME")
        if not self.account_key or self.account_key == FAILED_TO_LOAD:
            missing.append("ABS_ACCOUNT_KEY")
        return missing

    def get_connection_string(self) -> str:
        return (
            f"DefaultEndpointsProtocol=https;AccountName={self.account_name};"
            f"AccountKey={self.account_key};EndpointSuffix={self.endpoint_suffix}"
        )


class SyncSettings(BaseSettings):
    """Tunables for the sync run"""

    commit_policy: api.CommitPolicy = api.CommitPolicy.STRICT
    block_id_width: int = 0
    stamp_content_md5: bool = True
    # Logging: 20=INFO, 10=DEBUG as per logging module
    log_level: int = 20
    model_config = SettingsConfigDict(env_prefix="BLOBSYNC_", extra="ignore")

    def create_sync_cfg(self, container: str, source_dirs: list[Path]) -> SyncCfg:
        return SyncCfg(
            container=container,
            source_dirs=source_dirs,
            commit_policy=self.commit_policy,
            block_id_width=self.block_id_width,
            stamp_content_md5=self.stamp_content_md5,
        )
