##############################################################################################################
# Checksum comparison
#
# A local file is skipped when its MD5 matches the Content-MD5 the service holds for the blob of the same
# name. Locally we use lower-case hex; the service reports base64 so remote digests are converted to hex
# before comparing.
##############################################################################################################
import base64
import binascii
import hashlib
from pathlib import Path
from typing import Optional

from blobsync.core import api
from blobsync.core import configuration as root_cfg

logger = root_cfg.setup_logger("blobsync")


def digest(path: Path) -> str:
    """Stream the file through MD5 and return the lower-case hex digest.

    Raises DigestComputeFailure if the file cannot be opened or read."""
    md5 = hashlib.md5(usedforsecurity=False)
    try:
        with open(path, "rb") as f:
            while chunk := f.read(api.DIGEST_READ_SIZE):
                md5.update(chunk)
    except OSError as e:
        raise api.DigestComputeFailure(f"Failed to compute digest of {path}", e) from e
    return md5.hexdigest()


def digest_bytes(hex_digest: str) -> bytes:
    """Raw 16-byte form of a hex digest, as sent in Content-MD5."""
    return bytes.fromhex(hex_digest)


def encode_remote_digest(raw: Optional[bytes]) -> str:
    """Base64-encode a raw Content-MD5 value the way the service reports it; empty if not set."""
    if not raw:
        return ""
    return base64.b64encode(bytes(raw)).decode("ascii")


def decode_remote_digest(encoded: Optional[str]) -> Optional[str]:
    """Convert a base64 Content-MD5 into lower-case hex.

    Returns None if the blob has no digest or it does not decode to a 16-byte MD5."""
    if not encoded:
        return None
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        logger.warning(f"{root_cfg.RAISE_WARN()}Ignoring undecodable remote digest {encoded!r}")
        return None
    if len(raw) != 16:
        logger.warning(f"{root_cfg.RAISE_WARN()}Ignoring remote digest of {len(raw)} bytes")
        return None
    return raw.hex()


def should_skip(local_digest: Optional[str], remote_digest: Optional[str]) -> bool:
    """True iff the remote digest is present and equal to the local digest."""
    if not remote_digest or not local_digest:
        return False
    return local_digest == remote_digest
