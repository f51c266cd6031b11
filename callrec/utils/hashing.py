"""Call Recording Ingest - Hashing utilities.

All hash functions return HEX DIGEST ONLY (no prefix).
The digest of a recording's exact bytes is the duplicate-detection key.
"""

import hashlib

# Length of a SHA256 hex digest
DIGEST_HEX_LENGTH = 64


def sha256_bytes(data: bytes) -> str:
    """Compute SHA256 hash of bytes.

    Identical bytes always produce the identical digest, regardless of which
    transport (multipart or base64 JSON) delivered them.

    Args:
        data: Bytes to hash.

    Returns:
        SHA256 hex digest (64 lowercase hex characters, no prefix).
    """
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, encoding: str = "utf-8") -> str:
    """Compute SHA256 hash of a text value (used for bearer tokens)."""
    return sha256_bytes(text.encode(encoding))


def short_digest(digest: str, length: int = 8) -> str:
    """Return the leading characters of a digest for object keys and logs.

    Args:
        digest: Full hex digest.
        length: Number of characters to keep.

    Returns:
        Digest prefix.
    """
    return digest[:length]
