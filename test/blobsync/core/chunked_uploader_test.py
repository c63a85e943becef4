import base64
import io
import os
from unittest.mock import MagicMock

import pytest
from azure.storage.blob import BlockState
from blobsync.core import api
from blobsync.core import configuration as root_cfg
from blobsync.core.chunked_uploader import ChunkedUploader, block_id_for
from blobsync.core.configuration import SyncCfg

logger = root_cfg.setup_logger("blobsync")


def make_uploader(cc, **kwargs) -> ChunkedUploader:
    return ChunkedUploader(cc, SyncCfg(container="test-container", **kwargs))


class Test_block_ids:
    @pytest.mark.parametrize(
        "index, width, expected",
        [
            (0, 0, "NTA="),
            (1, 0, "NTE="),
            (12, 0, "NTEy"),
            (7, 3, "NTAwNw=="),
        ],
    )
    @pytest.mark.unittest
    def test_block_id_for(self, index: int, width: int, expected: str) -> None:
        logger.info(f"Run test_block_id_for test with index {index}, width {width}")
        assert block_id_for(index, width) == expected

    @pytest.mark.unittest
    def test_block_id_tag(self) -> None:
        logger.info("Run test_block_id_tag test")
        assert base64.urlsafe_b64decode(block_id_for(42)) == b"542"

    @pytest.mark.unittest
    def test_padded_block_ids_share_length(self) -> None:
        logger.info("Run test_padded_block_ids_share_length test")
        ids = [block_id_for(i, 4) for i in range(200)]
        assert len(set(ids)) == len(ids)
        assert len({len(block_id) for block_id in ids}) == 1

    @pytest.mark.unittest
    def test_unpadded_block_id_length_changes_at_index_100(self) -> None:
        logger.info("Run test_unpadded_block_id_length_changes_at_index_100 test")
        assert {len(block_id_for(i)) for i in range(100)} == {4}
        assert len(block_id_for(100)) == 8
        assert {len(block_id_for(i, 3)) for i in range(1000)} == {8}

    @pytest.mark.unittest
    def test_negative_index(self) -> None:
        logger.info("Run test_negative_index test")
        with pytest.raises(ValueError):
            block_id_for(-1)


class Test_ChunkedUploader:
    @pytest.mark.parametrize(
        "file_size, expected_sizes",
        [
            (25, [10, 10, 5]),  # Short final block
            (30, [10, 10, 10]),  # Exact multiple; no trailing empty block
            (15, [10, 5]),  # Between one and two blocks
            (10, [10]),
            (3, [3]),
        ],
    )
    @pytest.mark.unittest
    def test_block_boundaries(self, recording_cc, file_size: int, expected_sizes: list[int]) -> None:
        logger.info(f"Run test_block_boundaries test with file_size {file_size}")
        recording_cc.keep_payloads = True
        data = os.urandom(file_size)
        uploader = make_uploader(recording_cc, block_size=10)

        result = uploader.upload("big.bin", io.BytesIO(data))
        block_ids = result.block_ids

        assert [size for _, _, size in recording_cc.blocks] == expected_sizes
        assert block_ids == [block_id_for(i) for i in range(len(expected_sizes))]
        assert len(set(block_ids)) == len(block_ids)
        assert b"".join(recording_cc.payloads) == data
        assert len(recording_cc.commits) == 1
        assert recording_cc.commits[0][:2] == ("big.bin", block_ids)
        assert result.committed

    @pytest.mark.unittest
    def test_content_md5_passed_to_commit(self, recording_cc) -> None:
        logger.info("Run test_content_md5_passed_to_commit test")
        md5 = bytes(range(16))
        make_uploader(recording_cc, block_size=4).upload("a.bin", io.BytesIO(b"0123456789"), md5)
        assert recording_cc.commits[0][2] == md5

    @pytest.mark.unittest
    def test_content_md5_not_stamped(self, recording_cc) -> None:
        logger.info("Run test_content_md5_not_stamped test")
        uploader = make_uploader(recording_cc, block_size=4, stamp_content_md5=False)
        uploader.upload("a.bin", io.BytesIO(b"0123456789"), bytes(range(16)))
        assert recording_cc.commits[0][2] is None

    @pytest.mark.unittest
    def test_block_id_width(self, recording_cc) -> None:
        logger.info("Run test_block_id_width test")
        uploader = make_uploader(recording_cc, block_size=1, block_id_width=2)
        block_ids = uploader.upload("a.bin", io.BytesIO(b"x" * 12)).block_ids
        assert block_ids == [block_id_for(i, 2) for i in range(12)]
        assert len({len(block_id) for block_id in block_ids}) == 1

    @pytest.mark.unittest
    def test_block_failure_aborts_before_commit(self, recording_cc) -> None:
        logger.info("Run test_block_failure_aborts_before_commit test")
        recording_cc.fail_stage_at = 1
        uploader = make_uploader(recording_cc, block_size=10)

        with pytest.raises(api.BlockUploadFailure):
            uploader.upload("a.bin", io.BytesIO(b"y" * 35))

        assert len(recording_cc.blocks) == 1
        assert recording_cc.commits == []

    @pytest.mark.unittest
    def test_read_failure_aborts(self, recording_cc) -> None:
        logger.info("Run test_read_failure_aborts test")
        bad_file = MagicMock()
        bad_file.read.side_effect = [b"z" * 10, OSError("disk on fire")]
        uploader = make_uploader(recording_cc, block_size=10)

        with pytest.raises(api.ReadFailure) as exc_info:
            uploader.upload("a.bin", bad_file)

        assert "disk on fire" in str(exc_info.value)
        assert len(recording_cc.blocks) == 1
        assert recording_cc.commits == []

    @pytest.mark.unittest
    def test_commit_failure_strict(self, recording_cc) -> None:
        logger.info("Run test_commit_failure_strict test")
        recording_cc.fail_commit = True
        uploader = make_uploader(recording_cc, block_size=10, commit_policy=api.CommitPolicy.STRICT)

        with pytest.raises(api.BlockListCommitFailure):
            uploader.upload("a.bin", io.BytesIO(b"w" * 15))

    @pytest.mark.unittest
    def test_commit_failure_legacy(self, recording_cc) -> None:
        logger.info("Run test_commit_failure_legacy test")
        recording_cc.fail_commit = True
        uploader = make_uploader(recording_cc, block_size=10, commit_policy=api.CommitPolicy.LEGACY)

        result = uploader.upload("a.bin", io.BytesIO(b"w" * 15))

        assert result.block_ids == [block_id_for(0), block_id_for(1)]
        assert result.committed is False
        assert recording_cc.commits == []

    @pytest.mark.unittest
    def test_real_block_size(self, recording_cc, tmp_path) -> None:
        logger.info("Run test_real_block_size test")
        file_size = 2 * api.BLOCK_SIZE + 1
        big_file = tmp_path / "big.bin"
        with open(big_file, "wb") as f:
            f.truncate(file_size)

        with open(big_file, "rb") as f:
            result = make_uploader(recording_cc).upload("big.bin", f)

        assert [size for _, _, size in recording_cc.blocks] == [api.BLOCK_SIZE, api.BLOCK_SIZE, 1]
        assert len(result.block_ids) == 3
        assert result.committed

    @pytest.mark.unittest
    def test_block_list_commits_latest_blocks(self, recording_cc) -> None:
        logger.info("Run test_block_list_commits_latest_blocks test")
        make_uploader(recording_cc, block_size=4).upload("a.bin", io.BytesIO(b"0123456789"))
        assert recording_cc.committed_states == [[BlockState.LATEST] * 3]
