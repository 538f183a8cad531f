"""Checksum and storage key utilities for transfers."""

import hashlib
from collections.abc import Sequence
from typing import BinaryIO, Final

from server.apps.transfers.exceptions import KeyScopeError

_CHUNK_SIZE: Final = 8192  # 8KB chunks for checksum calculation
_KEY_MAX_LENGTH: Final = 900  # leaves room for the user ID prefix
_FORBIDDEN_SEGMENTS: Final = frozenset(('', '.', '..'))


def calculate_checksum(content: bytes | BinaryIO) -> str:
    """Calculate SHA256 checksum of bytes or a file.

    File objects are read in chunks and rewound before and after.

    Args:
        content: Raw bytes or a seekable file-like object.

    Returns:
        Hex-encoded SHA256 hash string.
    """
    if isinstance(content, bytes | bytearray | memoryview):
        return hashlib.sha256(content).hexdigest()

    sha256_hash = hashlib.sha256()
    content.seek(0)
    for chunk in iter(lambda: content.read(_CHUNK_SIZE), b''):
        sha256_hash.update(chunk)
    content.seek(0)

    return sha256_hash.hexdigest()


def normalize_checksum(checksum: str) -> str:
    """Normalize a hex checksum for comparison.

    Args:
        checksum: Hex digest, any case, surrounding whitespace allowed.

    Returns:
        Lowercase digest without whitespace.
    """
    return checksum.strip().lower()


def strip_etag(etag: str) -> str:
    """Remove the quotes S3 puts around ETags.

    Args:
        etag: ETag as returned by the object store.

    Returns:
        Bare ETag value.
    """
    return etag.strip().strip('"')


def multipart_etag(part_tokens: Sequence[str]) -> str:
    """Compute the ETag S3 assigns to an object assembled from parts.

    S3 hashes the concatenated binary MD5 digests of the parts and
    appends the part count: ``md5(md5_1 + ... + md5_n)-n``.

    Args:
        part_tokens: Part ETags ordered by part number.

    Returns:
        Bare multipart ETag (no quotes).
    """
    digest = hashlib.md5(usedforsecurity=False)
    for token in part_tokens:
        digest.update(bytes.fromhex(strip_etag(token)))
    return f'{digest.hexdigest()}-{len(part_tokens)}'


def validate_target_key(target_key: str) -> None:
    """Validate a key relative to the caller's namespace.

    The key must not be able to leave the namespace: it has to be
    relative and free of empty, ``.`` and ``..`` segments.

    Args:
        target_key: Proposed key (e.g., 'photos/2024/a.jpg').

    Raises:
        KeyScopeError: If the key is empty, too long or escapes.
    """
    if not target_key:
        raise KeyScopeError('Storage key cannot be empty')

    if len(target_key) > _KEY_MAX_LENGTH:
        raise KeyScopeError(
            f'Storage key is longer than {_KEY_MAX_LENGTH} characters',
        )

    if target_key.startswith('/') or '\\' in target_key:
        raise KeyScopeError('Storage key must be a relative path')

    if _FORBIDDEN_SEGMENTS.intersection(target_key.split('/')):
        raise KeyScopeError(
            f'Storage key has an empty, "." or ".." segment: {target_key}',
        )


def build_storage_key(user_id: int, target_key: str) -> str:
    """Place a relative key inside the user's namespace.

    Args:
        user_id: Owner's user ID.
        target_key: Key relative to the namespace.

    Returns:
        Full object key ``{user_id}/{target_key}``.

    Raises:
        KeyScopeError: If the key fails validation.
    """
    validate_target_key(target_key)
    return f'{user_id}/{target_key}'
