import os
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Optional

from blobsync.core import api, checksum
from blobsync.core import configuration as root_cfg
from blobsync.core.chunked_uploader import ChunkedUploader
from blobsync.core.cloud_connector import CloudConnector
from blobsync.core.configuration import SyncCfg

logger = root_cfg.setup_logger("blobsync")


##############################################################################################################
# Data held for one sync pass
##############################################################################################################
@dataclass
class LocalFile:
    """A candidate file found in one of the source directories"""

    path: Path

    @property
    def name(self) -> str:
        """The blob name for this file"""
        return self.path.name

    @cached_property
    def digest(self) -> Optional[str]:
        """Hex MD5 of the file, computed on first use.
        None if the file could not be read, in which case it will be uploaded."""
        try:
            return checksum.digest(self.path)
        except api.DigestComputeFailure as e:
            logger.warning(f"{root_cfg.RAISE_WARN()}{e}; will upload")
            return None


class RemoteBlobIndex:
    """Blob name -> hex Content-MD5 for the destination container, built from a single listing.

    Blobs without a usable Content-MD5 map to None."""

    def __init__(self, digests: Optional[dict[str, Optional[str]]] = None) -> None:
        self._digests: dict[str, Optional[str]] = dict(digests or {})

    @classmethod
    def from_listing(cls, listing: dict[str, str]) -> "RemoteBlobIndex":
        """Build the index from blob name -> base64 Content-MD5, as returned by the service"""
        return cls({name: checksum.decode_remote_digest(encoded) for name, encoded in listing.items()})

    def get(self, blob_name: str) -> Optional[str]:
        return self._digests.get(blob_name)


@dataclass
class SyncReport:
    """What happened to each file in a sync run"""

    skipped: list[str] = field(default_factory=list)
    whole: list[str] = field(default_factory=list)
    chunked: list[str] = field(default_factory=list)
    # Blocks staged but the block list commit failed under CommitPolicy.LEGACY; no blob was written
    commit_failed: list[str] = field(default_factory=list)
    bytes_uploaded: int = 0

    def record(self, mode: api.UploadMode, name: str, size: int = 0) -> None:
        if mode == api.UploadMode.SKIP:
            self.skipped.append(name)
            return
        if mode == api.UploadMode.COMMIT_FAILED:
            self.commit_failed.append(name)
            return
        if mode == api.UploadMode.WHOLE:
            self.whole.append(name)
        else:
            self.chunked.append(name)
        self.bytes_uploaded += size

    def summary(self) -> str:
        return (
            f"{len(self.whole) + len(self.chunked)} uploaded "
            f"({len(self.whole)} whole, {len(self.chunked)} in blocks, {self.bytes_uploaded} bytes), "
            f"{len(self.skipped)} unchanged"
            + (f", {len(self.commit_failed)} not committed" if self.commit_failed else "")
        )


##############################################################################################################
# SyncOrchestrator
#
# Runs one sync pass:
# - create the destination container if it does not exist
# - list the direct entries of each source directory
# - fetch the Content-MD5 of every existing blob in one listing
# - for each file in turn: skip if the digests match, else upload whole or in blocks
#
# Files are processed strictly one after another. Any SyncError other than a digest failure stops the run.
##############################################################################################################
class SyncOrchestrator:

    def __init__(self, cc: CloudConnector, sync_cfg: SyncCfg) -> None:
        self.cc = cc
        self.sync_cfg = sync_cfg
        self.uploader = ChunkedUploader(cc, sync_cfg)

    def run(self) -> SyncReport:
        """Run the sync and return a report of what was done"""
        logger.debug(f"Starting sync with config:\n{self.sync_cfg.display()}")
        self.cc.create_container(self.sync_cfg.container)

        files = self.get_files()
        existing_blobs = self.get_existing_blobs()

        report = SyncReport()
        for local_file in files:
            self.sync_file(local_file, existing_blobs, report)

        logger.info(f"Sync to {self.sync_cfg.container} complete: {report.summary()}")
        return report

    def get_files(self) -> list[LocalFile]:
        """Direct entries of each source directory, in name order, directories in the order given.

        Subdirectories are not descended into; they are returned like any other entry and will fail
        when opened for upload."""
        files: list[LocalFile] = []
        for src_dir in self.sync_cfg.source_dirs:
            try:
                entries = sorted(os.listdir(src_dir))
            except OSError as e:
                logger.warning(f"{root_cfg.RAISE_WARN()}Could not list {src_dir}: {e}")
                continue
            files.extend(LocalFile(src_dir / entry) for entry in entries)

        logger.debug(f"Found {len(files)} candidate files in {len(self.sync_cfg.source_dirs)} directories")
        return files

    def get_existing_blobs(self) -> RemoteBlobIndex:
        return RemoteBlobIndex.from_listing(self.cc.list_blob_digests(self.sync_cfg.container))

    def should_skip(self, local_file: LocalFile, existing_blobs: RemoteBlobIndex) -> bool:
        """The local digest is only computed if the blob already exists with a digest."""
        remote_digest = existing_blobs.get(local_file.name)
        if not remote_digest:
            return False
        return checksum.should_skip(local_file.digest, remote_digest)

    def sync_file(
        self,
        local_file: LocalFile,
        existing_blobs: RemoteBlobIndex,
        report: Optional[SyncReport] = None,
    ) -> api.UploadMode:
        """Skip or upload a single file and return what was done"""
        if report is None:
            report = SyncReport()

        if self.should_skip(local_file, existing_blobs):
            logger.debug(f"Skipping {local_file.path}; blob is up to date")
            report.record(api.UploadMode.SKIP, local_file.name)
            return api.UploadMode.SKIP

        logger.info(f"Creating blob for {local_file.path}")
        try:
            f = open(local_file.path, "rb")
        except OSError as e:
            raise api.FileOpenFailure(f"Failed to open {local_file.path}", e) from e

        with f:
            try:
                file_size = os.fstat(f.fileno()).st_size
            except OSError as e:
                raise api.ReadFailure(f"Could not get file info for {local_file.path}", e) from e

            if file_size <= self.sync_cfg.max_put_blob_size:
                mode = api.UploadMode.WHOLE
                self.cc.upload_blob(self.sync_cfg.container, local_file.name, f, file_size)
            else:
                logger.info(f"File is too large ({file_size}), uploading as blocks")
                result = self.uploader.upload(local_file.name, f, self._content_md5(local_file))
                mode = api.UploadMode.CHUNKED if result.committed else api.UploadMode.COMMIT_FAILED

        report.record(mode, local_file.name, file_size)
        return mode

    def _content_md5(self, local_file: LocalFile) -> Optional[bytes]:
        if not self.sync_cfg.stamp_content_md5:
            return None
        local_digest = local_file.digest
        return checksum.digest_bytes(local_digest) if local_digest else None
