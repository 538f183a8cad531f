"""Tests for checksum and key utilities."""

import hashlib
from io import BytesIO

import pytest

from server.apps.transfers.exceptions import KeyScopeError
from server.apps.transfers.infrastructure.metadata import (
    build_storage_key,
    calculate_checksum,
    multipart_etag,
    normalize_checksum,
    strip_etag,
    validate_target_key,
)


def test_calculate_checksum_bytes():
    """Test SHA256 checksum of raw bytes."""
    checksum = calculate_checksum(b'test content')

    assert checksum == hashlib.sha256(b'test content').hexdigest()
    assert len(checksum) == 64


def test_calculate_checksum_file_matches_bytes():
    """Test file objects hash like their content and are rewound."""
    file_obj = BytesIO(b'test content')
    file_obj.read(4)

    checksum = calculate_checksum(file_obj)

    assert checksum == calculate_checksum(b'test content')
    assert file_obj.tell() == 0


def test_normalize_checksum():
    """Test checksums compare case- and whitespace-insensitively."""
    assert normalize_checksum(' ABCdef \n') == 'abcdef'


def test_strip_etag():
    """Test quotes are removed from ETags."""
    assert strip_etag('"0cc175b9c0f1b6a831c399e269772661"') == (
        '0cc175b9c0f1b6a831c399e269772661'
    )
    assert strip_etag('abc-2') == 'abc-2'


def test_multipart_etag():
    """Test multipart ETag is md5 of part digests plus part count."""
    first = hashlib.md5(b'a').hexdigest()
    second = hashlib.md5(b'b').hexdigest()
    expected = hashlib.md5(
        bytes.fromhex(first) + bytes.fromhex(second),
    ).hexdigest()

    etag = multipart_etag([f'"{first}"', second])

    assert etag == f'{expected}-2'


@pytest.mark.parametrize('key', [
    'a.bin',
    'photos/2024/holiday.jpg',
    'name with spaces.txt',
    '..hidden/file',
])
def test_validate_target_key_valid(key):
    """Test keys inside the namespace pass."""
    validate_target_key(key)


@pytest.mark.parametrize(('key', 'message'), [
    ('', 'cannot be empty'),
    ('/etc/passwd', 'must be a relative path'),
    ('folder\\file', 'must be a relative path'),
    ('../other/a.bin', 'segment'),
    ('a/../../b', 'segment'),
    ('./a.bin', 'segment'),
    ('a//b', 'segment'),
    ('folder/', 'segment'),
    ('x' * 901, 'longer than'),
])
def test_validate_target_key_invalid(key, message):
    """Test keys that could leave the namespace are rejected."""
    with pytest.raises(KeyScopeError, match=message):
        validate_target_key(key)


def test_build_storage_key():
    """Test keys are placed under the user ID."""
    assert build_storage_key(7, 'docs/a.pdf') == '7/docs/a.pdf'


def test_build_storage_key_validates():
    """Test build_storage_key rejects escaping keys."""
    with pytest.raises(KeyScopeError):
        build_storage_key(7, '../8/a.pdf')
