import hashlib
import shutil
from pathlib import Path
from typing import BinaryIO, Optional

from azure.core.exceptions import AzureError, ResourceExistsError
from azure.storage.blob import BlobBlock, BlockState, ContainerClient, ContentSettings

from blobsync.core import api, checksum
from blobsync.core import configuration as root_cfg
from blobsync.core.configuration import CloudType, Keys

logger = root_cfg.setup_logger("blobsync")


##########################################################################################################
# Default implementation of the CloudConnector class and interface definition.
#
# This class is used to connect to the cloud storage provider (Azure Blob Storage) synchronously.
# It exposes only the operations the sync pipeline needs and translates storage and I/O errors into
# SyncError subclasses naming the failed operation.
##########################################################################################################
class CloudConnector:

    def __init__(self, keys: Keys) -> None:
        root_cfg.require_keys(keys)
        self._connection_string = keys.get_connection_string()
        self._validated_containers: dict[str, ContainerClient] = {}

    @staticmethod
    def get_instance(
        type: CloudType,
        keys: Optional[Keys] = None,
        local_cloud: Optional[Path] = None,
    ) -> "CloudConnector":
        """We use a factory pattern to offer up alternative types of CloudConnector for accessing
        different cloud storage providers and / or the local emulator."""
        if type == CloudType.AZURE:
            if keys is None:
                raise api.CredentialMissing("No storage account credentials provided")
            return CloudConnector(keys)

        elif type == CloudType.LOCAL_EMULATOR:
            if local_cloud is None:
                raise ValueError("A local_cloud directory is required for the local emulator")
            return LocalCloudConnector(local_cloud)

        else:
            raise ValueError(f"Unsupported cloud type: {type}")

    def create_container(self, container: str) -> None:
        """Create the specified container with private access if it does not already exist"""
        self._validate_container(container)

    def list_blob_digests(self, container: str) -> dict[str, str]:
        """Return blob name -> base64 Content-MD5 for every blob in the container.

        Blobs without a stored Content-MD5 map to an empty string."""
        container_client = self._validate_container(container)
        try:
            blobs = {}
            for blob in container_client.list_blobs():
                blobs[blob.name] = checksum.encode_remote_digest(blob.content_settings.content_md5)
        except AzureError as e:
            raise api.ListBlobsFailure("Could not list existing blobs", e) from e

        logger.debug(f"list_blob_digests returning {len(blobs)!s} blobs")
        return blobs

    def upload_blob(self, container: str, blob_name: str, data: BinaryIO, length: int) -> None:
        """Upload data as a block blob in a single Put Blob request, replacing any existing blob"""
        blob_client = self._validate_container(container).get_blob_client(blob_name)
        try:
            blob_client.upload_blob(
                data,
                length=length,
                overwrite=True,
                max_concurrency=1,
                connection_timeout=600,
            )
        except (AzureError, OSError) as e:
            raise api.BlobUploadFailure(f"Failed to upload {blob_name}", e) from e

    def stage_block(self, container: str, blob_name: str, block: api.Block) -> None:
        """Put Block: upload one uncommitted block of blob_name"""
        blob_client = self._validate_container(container).get_blob_client(blob_name)
        try:
            blob_client.stage_block(
                block_id=block.block_id,
                data=block.payload,
                length=len(block.payload),
            )
        except AzureError as e:
            raise api.BlockUploadFailure(
                f"Failed to upload block {block.block_id} of {blob_name}", e
            ) from e

    def commit_block_list(
        self,
        container: str,
        blob_name: str,
        block_list: list[api.BlockListEntry],
        content_md5: Optional[bytes] = None,
    ) -> None:
        """Put Block List: commit the listed blocks, in list order, as the content of blob_name

        If content_md5 is provided it is stored as the blob's Content-MD5; the service does not compute
        one for blobs assembled from blocks."""
        blob_client = self._validate_container(container).get_blob_client(blob_name)
        blob_blocks = [BlobBlock(block_id=entry.block_id, state=entry.status) for entry in block_list]
        kwargs = {}
        if content_md5 is not None:
            kwargs["content_settings"] = ContentSettings(content_md5=bytearray(content_md5))
        try:
            blob_client.commit_block_list(blob_blocks, **kwargs)
        except AzureError as e:
            raise api.BlockListCommitFailure(f"Failed to commit block list for {blob_name}", e) from e

    def shutdown(self) -> None:
        """Shutdown the CloudConnector instance"""
        logger.debug("Shutting down CloudConnector")
        for container_client in self._validated_containers.values():
            container_client.close()
        self._validated_containers.clear()

    ####################################################################################################
    # Private utility methods
    ####################################################################################################
    def _validate_container(self, container: str) -> ContainerClient:
        """Return a ContainerClient for the named container.
        Create the container if it does not already exist."""
        # Only do an external check if we haven't already validated this container
        if container in self._validated_containers:
            return self._validated_containers[container]

        # Whole uploads must go out as a single Put Blob request, so raise the SDK's single-put
        # threshold to the service limit.
        container_client = ContainerClient.from_connection_string(
            conn_str=self._get_connection_string(),
            container_name=container,
            max_single_put_size=api.MAX_PUT_BLOB_SIZE,
        )

        try:
            if not container_client.exists():
                logger.info(f"Creating container {container}")
                container_client.create_container(public_access=None)
        except ResourceExistsError:
            logger.debug(f"Container {container} already exists")
        except AzureError as e:
            raise api.ContainerCreateFailure("Create container failed", e) from e

        self._validated_containers[container] = container_client
        return container_client

    def _get_connection_string(self) -> str:
        return self._connection_string


#########################################################################################################
# LocalCloudConnector class
#
# This class emulates the blob store in a local directory. It is a subclass of CloudConnector and
# implements the same interface. It is used for dry runs and testing.
#
# Layout under local_cloud:
#   <container>/<blob>                        committed blob content
#   .md5/<container>/<blob>                   base64 Content-MD5, when the service would hold one
#   .blocks/<container>/<blob>/<block_id>     staged, uncommitted blocks
#   .tmp/<container>/<blob>                   blob being written, moved into place once complete
#########################################################################################################
class LocalCloudConnector(CloudConnector):
    def __init__(self, local_cloud: Path) -> None:
        logger.debug("Creating LocalCloudConnector instance")
        self.local_cloud = Path(local_cloud)
        self._validated_containers = {}

    def create_container(self, container: str) -> None:
        """Create the specified container"""
        container_dir = self.local_cloud / container
        if not container_dir.exists():
            logger.info(f"Creating container {container}")
        try:
            container_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise api.ContainerCreateFailure("Create container failed", e) from e

    def list_blob_digests(self, container: str) -> dict[str, str]:
        container_dir = self.local_cloud / container
        try:
            blobs = {}
            for blob in sorted(container_dir.iterdir()):
                if blob.is_file():
                    md5_file = self._md5_path(container, blob.name)
                    blobs[blob.name] = md5_file.read_text().strip() if md5_file.exists() else ""
        except OSError as e:
            raise api.ListBlobsFailure("Could not list existing blobs", e) from e

        logger.debug(f"list_blob_digests returning {len(blobs)!s} blobs")
        return blobs

    def upload_blob(self, container: str, blob_name: str, data: BinaryIO, length: int) -> None:
        md5 = hashlib.md5(usedforsecurity=False)
        tmp_file = self._tmp_path(container, blob_name)
        try:
            tmp_file.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_file, "wb") as blob_file:
                remaining = length
                while remaining > 0:
                    chunk = data.read(min(api.DIGEST_READ_SIZE, remaining))
                    if not chunk:
                        break
                    md5.update(chunk)
                    blob_file.write(chunk)
                    remaining -= len(chunk)
            # Put Blob always stores a Content-MD5
            self._publish(container, blob_name, tmp_file, md5.digest())
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            raise api.BlobUploadFailure(f"Failed to upload {blob_name}", e) from e

    def stage_block(self, container: str, blob_name: str, block: api.Block) -> None:
        block_file = self.local_cloud / ".blocks" / container / blob_name / block.block_id
        try:
            block_file.parent.mkdir(parents=True, exist_ok=True)
            block_file.write_bytes(block.payload)
        except OSError as e:
            raise api.BlockUploadFailure(
                f"Failed to upload block {block.block_id} of {blob_name}", e
            ) from e

    def commit_block_list(
        self,
        container: str,
        blob_name: str,
        block_list: list[api.BlockListEntry],
        content_md5: Optional[bytes] = None,
    ) -> None:
        staging_dir = self.local_cloud / ".blocks" / container / blob_name
        operation = f"Failed to commit block list for {blob_name}"
        block_ids = [entry.block_id for entry in block_list]

        if len(set(block_ids)) != len(block_ids):
            raise api.BlockListCommitFailure(operation, "duplicate block ids in block list")
        # The emulator keeps no committed blocks, so only staged blocks can be listed
        committed = [e.block_id for e in block_list if e.status == BlockState.COMMITTED]
        if committed:
            raise api.BlockListCommitFailure(operation, f"committed blocks not supported: {committed}")
        missing = [b for b in block_ids if not (staging_dir / b).exists()]
        if missing:
            raise api.BlockListCommitFailure(operation, f"blocks not staged: {missing}")

        tmp_file = self._tmp_path(container, blob_name)
        try:
            tmp_file.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_file, "wb") as blob_file:
                for block_id in block_ids:
                    with open(staging_dir / block_id, "rb") as block_file:
                        shutil.copyfileobj(block_file, blob_file)
            self._publish(container, blob_name, tmp_file, content_md5)
            shutil.rmtree(staging_dir)
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            raise api.BlockListCommitFailure(operation, e) from e

    def shutdown(self) -> None:
        logger.debug("Shutting down LocalCloudConnector")

    def _md5_path(self, container: str, blob_name: str) -> Path:
        return self.local_cloud / ".md5" / container / blob_name

    def _tmp_path(self, container: str, blob_name: str) -> Path:
        return self.local_cloud / ".tmp" / container / blob_name

    def _publish(self, container: str, blob_name: str, tmp_file: Path, raw_md5: Optional[bytes]) -> None:
        """Move a fully written blob into place, so a failed write never leaves a partial blob.
        The Content-MD5 is dropped first so it can never describe the wrong content."""
        md5_file = self._md5_path(container, blob_name)
        md5_file.unlink(missing_ok=True)
        tmp_file.replace(self.local_cloud / container / blob_name)
        if raw_md5 is not None:
            md5_file.parent.mkdir(parents=True, exist_ok=True)
            md5_file.write_text(checksum.encode_remote_digest(raw_md5))
