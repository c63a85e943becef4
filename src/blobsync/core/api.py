##############################################################################################################
# Blobsync API
#
# File defines constants and error types used on interfaces between components in the Blobsync system.
##############################################################################################################
from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import Optional

from azure.storage.blob import BlockState


##############################################################################################################
# Azure Blob Storage size limits
#
# See Azure documentation for details:
# https://learn.microsoft.com/en-us/rest/api/storageservices/understanding-block-blobs--append-blobs--and-page-blobs
##############################################################################################################
# Largest blob that can be uploaded in a single Put Blob request.
MAX_PUT_BLOB_SIZE = 268_435_456

# Largest single block accepted by Put Block.
MAX_BLOCK_SIZE = 104_857_600

# We upload in blocks of half the service limit to leave headroom.
BLOCK_SIZE = MAX_BLOCK_SIZE // 2

# Block IDs are "5<index>" before base64 encoding.
BLOCK_ID_PREFIX = "5"

# Read size used when streaming a file through the digest.
DIGEST_READ_SIZE = 1024 * 1024


##############################################################################################################
# Behaviour when committing the block list fails
##############################################################################################################
class CommitPolicy(StrEnum):
    STRICT = "strict"  # Commit failures abort the run like any other upload failure
    LEGACY = "legacy"  # Commit failures are logged and the run carries on


##############################################################################################################
# What the orchestrator decided to do with a file
##############################################################################################################
class UploadMode(Enum):
    SKIP = "skip"  # Remote digest matches; nothing to do
    WHOLE = "whole"  # Single Put Blob request
    CHUNKED = "chunked"  # Put Block for each block, then Put Block List
    COMMIT_FAILED = "commit_failed"  # Blocks staged but Put Block List failed and was ignored


##############################################################################################################
# A single block of a chunked upload
#
# Blocks are kept only until they have been staged; the block list that is committed holds a
# BlockListEntry (ID and status) per block so the payloads can be released.
##############################################################################################################
@dataclass
class BlockListEntry:
    block_id: str
    status: BlockState = BlockState.LATEST


@dataclass
class Block:
    block_id: str
    payload: bytes
    status: BlockState = BlockState.LATEST

    def list_entry(self) -> BlockListEntry:
        return BlockListEntry(self.block_id, self.status)


##############################################################################################################
# Errors
#
# Every error carries the operation that failed and the underlying cause.
# str(error) is the one-line message shown to the user before we exit.
##############################################################################################################
class SyncError(Exception):
    """Base class for all errors raised by the sync pipeline"""

    def __init__(self, operation: str, cause: Optional[object] = None) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.cause is None:
            return self.operation
        return f"{self.operation}: {self.cause}"


class CredentialMissing(SyncError):
    pass


class ContainerCreateFailure(SyncError):
    pass


class ListBlobsFailure(SyncError):
    pass


class FileOpenFailure(SyncError):
    pass


class ReadFailure(SyncError):
    pass


class DigestComputeFailure(SyncError):
    pass


class BlobUploadFailure(SyncError):
    pass


class BlockUploadFailure(SyncError):
    pass


class BlockListCommitFailure(SyncError):
    pass
