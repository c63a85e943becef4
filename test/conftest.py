import time
from pathlib import Path
from typing import BinaryIO, Optional

import pytest
from azure.storage.blob import BlockState
from blobsync.core import api
from blobsync.core import configuration as root_cfg
from blobsync.core.cloud_connector import LocalCloudConnector

# Set up logger for test execution
test_logger = root_cfg.setup_logger("blobsync")


@pytest.fixture(autouse=True)
def log_test_lifecycle(request):
    """
    Pytest fixture that automatically logs the start and end of every test.
    This runs for all tests without requiring a decorator.
    """
    test_name = request.node.name
    module_name = request.node.module.__name__ if request.node.module else "unknown"

    # Log test start
    start_time = time.time()
    test_logger.info(f"[PYTEST START] {module_name}::{test_name}")

    yield  # This is where the test runs

    # Log test end
    duration = time.time() - start_time
    rep_call = getattr(request.node, "rep_call", None)
    test_result = "FAILED" if rep_call is not None and rep_call.failed else "PASSED"

    if test_result == "PASSED":
        test_logger.info(f"[PYTEST END] {module_name}::{test_name} - "
                         f"{test_result} (Duration: {duration:.3f}s)")
    else:
        test_logger.error(f"[PYTEST END] {module_name}::{test_name} - "
                          f"{test_result} (Duration: {duration:.3f}s)")


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """
    Hook to capture test results for the log_test_lifecycle fixture.
    """
    outcome = yield
    rep = outcome.get_result()
    setattr(item, f"rep_{rep.when}", rep)


@pytest.fixture(autouse=True)
def no_credentials(monkeypatch):
    """Tests never see real storage credentials or BLOBSYNC_* settings from the environment."""
    for var in ("ABS_ACCOUNT_NAME", "ABS_ACCOUNT_KEY", "ABS_ENDPOINT_SUFFIX",
                "BLOBSYNC_COMMIT_POLICY", "BLOBSYNC_BLOCK_ID_WIDTH",
                "BLOBSYNC_STAMP_CONTENT_MD5", "BLOBSYNC_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def local_cc(tmp_path: Path):
    cc = LocalCloudConnector(tmp_path / "local_cloud")
    yield cc
    cc.shutdown()


class RecordingConnector:
    """Stands in for CloudConnector and records every call.

    Block payloads are only kept when keep_payloads is set so that tests with large files only hold
    the sizes."""

    def __init__(self, remote: Optional[dict[str, str]] = None, keep_payloads: bool = False) -> None:
        self.remote = dict(remote or {})
        self.keep_payloads = keep_payloads
        self.containers: list[str] = []
        self.whole_uploads: list[tuple[str, int]] = []
        self.blocks: list[tuple[str, str, int]] = []
        self.payloads: list[bytes] = []
        self.commits: list[tuple[str, list[str], Optional[bytes]]] = []
        self.committed_states: list[list[BlockState]] = []
        self.fail_stage_at: Optional[int] = None
        self.fail_commit = False
        self.fail_upload = False

    def create_container(self, container: str) -> None:
        self.containers.append(container)

    def list_blob_digests(self, container: str) -> dict[str, str]:
        return dict(self.remote)

    def upload_blob(self, container: str, blob_name: str, data: BinaryIO, length: int) -> None:
        if self.fail_upload:
            raise api.BlobUploadFailure(f"Failed to upload {blob_name}", "injected failure")
        self.whole_uploads.append((blob_name, length))

    def stage_block(self, container: str, blob_name: str, block: api.Block) -> None:
        if self.fail_stage_at is not None and len(self.blocks) == self.fail_stage_at:
            raise api.BlockUploadFailure(f"Failed to upload block {block.block_id}", "injected failure")
        self.blocks.append((blob_name, block.block_id, len(block.payload)))
        if self.keep_payloads:
            self.payloads.append(block.payload)

    def commit_block_list(
        self,
        container: str,
        blob_name: str,
        block_list: list[api.BlockListEntry],
        content_md5: Optional[bytes] = None,
    ) -> None:
        if self.fail_commit:
            raise api.BlockListCommitFailure(f"Failed to commit block list for {blob_name}", "injected")
        self.commits.append((blob_name, [entry.block_id for entry in block_list], content_md5))
        self.committed_states.append([entry.status for entry in block_list])

    def shutdown(self) -> None:
        pass


@pytest.fixture
def recording_cc() -> RecordingConnector:
    return RecordingConnector()
