"""Integration tests for multipart transfers against MinIO.

These tests need the MinIO service from Docker Compose and run only
with ``pytest -m integration``. Unlike moto, MinIO enforces the real
5 MiB minimum for every part but the last.
"""
import os
import time
from typing import Final

import pytest
from botocore.awsrequest import AWSRequest, AWSResponse
from botocore.exceptions import ClientError
from botocore.httpsession import URLLib3Session

from server.apps.transfers.exceptions import NotFoundError
from server.apps.transfers.infrastructure.metadata import (
    multipart_etag,
    strip_etag,
)
from server.apps.transfers.infrastructure.storage import TransferStorage

_TEST_BUCKET: Final = 'transfers-integration'
_TEST_KEY: Final = 'integration/big.bin'
_MIN_PART_SIZE: Final = 5 * 1024 * 1024


def _send(method: str, url: str, body: bytes | None = None) -> AWSResponse:
    return URLLib3Session().send(
        AWSRequest(method=method, url=url, data=body).prepare(),
    )


@pytest.fixture
def minio_storage() -> TransferStorage:
    """Storage backend pointed at MinIO with the test bucket present.

    Returns:
        TransferStorage for the integration bucket.
    """
    storage = TransferStorage(
        bucket_name=_TEST_BUCKET,
        endpoint_url=os.getenv('MINIO_ENDPOINT', 'http://minio:9000'),
        access_key=os.getenv('MINIO_ROOT_USER', 'minioadmin'),
        secret_key=os.getenv('MINIO_ROOT_PASSWORD', 'minioadmin'),
        region_name='us-east-1',
        signature_version='s3v4',
        default_acl=None,
    )
    try:
        storage.client.head_bucket(Bucket=_TEST_BUCKET)
    except ClientError:
        storage.client.create_bucket(Bucket=_TEST_BUCKET)
    return storage


@pytest.mark.integration
def test_multipart_round_trip(minio_storage: TransferStorage) -> None:
    """Test two parts assemble into one object with the expected ETag.

    Args:
        minio_storage: Storage backend for MinIO.
    """
    parts = (b'a' * _MIN_PART_SIZE, b'tail')
    upload_id = minio_storage.create_multipart_upload(_TEST_KEY)
    tokens = [
        (part_number, minio_storage.upload_part(
            _TEST_KEY,
            upload_id,
            part_number,
            body,
        ))
        for part_number, body in enumerate(parts, start=1)
    ]

    etag = minio_storage.complete_multipart_upload(_TEST_KEY, upload_id, tokens)

    head = minio_storage.probe(_TEST_KEY)
    assert head is not None
    assert head['ContentLength'] == sum(len(part) for part in parts)
    assert strip_etag(etag) == multipart_etag([token for _, token in tokens])


@pytest.mark.integration
def test_aborted_session_rejects_parts(minio_storage: TransferStorage) -> None:
    """Test an aborted session is gone.

    Args:
        minio_storage: Storage backend for MinIO.
    """
    upload_id = minio_storage.create_multipart_upload(_TEST_KEY)
    minio_storage.abort_multipart_upload(_TEST_KEY, upload_id)

    with pytest.raises(NotFoundError):
        minio_storage.upload_part(_TEST_KEY, upload_id, 1, b'late')


@pytest.mark.integration
def test_signed_urls(minio_storage: TransferStorage) -> None:
    """Test a PUT URL stores bytes a GET URL then returns.

    Args:
        minio_storage: Storage backend for MinIO.
    """
    key = 'integration/signed.txt'
    content = b'Hello from MinIO integration test!'

    put_url = minio_storage.presigned_url(key, 'put', 60)
    put_response = _send('PUT', put_url, content)
    assert put_response.status_code == 200

    get_response = _send('GET', minio_storage.presigned_url(key, 'get', 60))
    assert get_response.status_code == 200
    assert get_response.content == content


@pytest.mark.integration
def test_expired_url_rejected(minio_storage: TransferStorage) -> None:
    """Test the store refuses a URL once its lifetime has passed.

    Args:
        minio_storage: Storage backend for MinIO.
    """
    key = 'integration/expiring.txt'
    minio_storage.client.put_object(Bucket=_TEST_BUCKET, Key=key, Body=b'x')
    url = minio_storage.presigned_url(key, 'get', 1)

    time.sleep(2)

    assert _send('GET', url).status_code == 403
