##############################################################################################################
# Chunked upload of large files
#
# Files too big for a single Put Blob request are read sequentially in blocks of SyncCfg.block_size.
# Each block is staged with Put Block under an ID derived from its position in the file, then the ordered
# list of IDs is committed with Put Block List. The service assembles the blob in list order, so the list
# order must match the byte order of the file.
#
# Block IDs are not content-addressed: the same position always yields the same ID.
##############################################################################################################
import base64
from dataclasses import dataclass, field
from typing import BinaryIO, Optional

from blobsync.core import api
from blobsync.core import configuration as root_cfg
from blobsync.core.cloud_connector import CloudConnector
from blobsync.core.configuration import SyncCfg

logger = root_cfg.setup_logger("blobsync")


def block_id_for(index: int, width: int = 0) -> str:
    """Return the block ID for the block at position index.

    The ID is the ASCII tag "5<index>" in URL-safe base64. A non-zero width zero-pads the index so that
    every ID of a blob has the same length."""
    if index < 0:
        raise ValueError(f"Block index must not be negative: {index}")
    tag = f"{api.BLOCK_ID_PREFIX}{index:0{width}d}" if width else f"{api.BLOCK_ID_PREFIX}{index}"
    return base64.urlsafe_b64encode(tag.encode("ascii")).decode("ascii")


@dataclass
class ChunkedUploadResult:
    """Block IDs staged for a blob, in file order, and whether the block list was committed"""

    block_ids: list[str] = field(default_factory=list)
    committed: bool = False


class ChunkedUploader:
    """Uploads one file at a time as a sequence of blocks followed by a block list commit"""

    def __init__(self, cc: CloudConnector, sync_cfg: SyncCfg) -> None:
        self.cc = cc
        self.sync_cfg = sync_cfg

    def upload(
        self,
        blob_name: str,
        file: BinaryIO,
        content_md5: Optional[bytes] = None,
    ) -> ChunkedUploadResult:
        """Upload the open file as blob_name.

        Parameters
        ----------
        blob_name: name of the blob to create or replace
        file: binary file object positioned at the start of the data; read until EOF
        content_md5: Optional; raw MD5 of the whole file to store with the committed blob

        Return
        ------
        ChunkedUploadResult with the staged block IDs in order. committed is False only when the commit
        failed under CommitPolicy.LEGACY.

        Any read or Put Block failure aborts the upload before anything is committed.
        A failed commit is raised under CommitPolicy.STRICT and logged under CommitPolicy.LEGACY.
        """
        block_size = self.sync_cfg.block_size
        block_list: list[api.BlockListEntry] = []
        index = 0

        logger.info(f"Uploading {blob_name} as blocks of {block_size} bytes")
        while True:
            try:
                chunk = file.read(block_size)
            except OSError as e:
                raise api.ReadFailure(f"Failed to read {blob_name}", e) from e

            # EOF fell exactly on the end of the previous block
            if not chunk:
                break

            block = api.Block(block_id=block_id_for(index, self.sync_cfg.block_id_width), payload=chunk)
            logger.debug(f"Staging block {index} ({len(chunk)} bytes) of {blob_name}")
            self.cc.stage_block(self.sync_cfg.container, blob_name, block)
            block_list.append(block.list_entry())

            if len(chunk) < block_size:
                break
            index += 1

        committed = self._commit(blob_name, block_list, content_md5)
        return ChunkedUploadResult([entry.block_id for entry in block_list], committed)

    def _commit(
        self,
        blob_name: str,
        block_list: list[api.BlockListEntry],
        content_md5: Optional[bytes],
    ) -> bool:
        if not self.sync_cfg.stamp_content_md5:
            content_md5 = None
        try:
            self.cc.commit_block_list(self.sync_cfg.container, blob_name, block_list, content_md5)
            logger.info(f"Committed {len(block_list)} blocks for {blob_name}")
            return True
        except api.BlockListCommitFailure as e:
            if self.sync_cfg.commit_policy == api.CommitPolicy.STRICT:
                raise
            logger.error(f"{root_cfg.RAISE_WARN()}Ignoring block list commit failure: {e}")
            return False
