"""Custom storage backend for S3-compatible multipart transfers."""

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Final, final

from botocore.exceptions import ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError
from storages.backends.s3 import S3Storage
from storages.utils import clean_name

from server.apps.transfers.exceptions import (
    InvalidSizeError,
    NotFoundError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES: Final = frozenset((
    '404',
    'NoSuchKey',
    'NoSuchUpload',
    'NotFound',
    # A listed part is unknown to the session or its ETag differs
    'InvalidPart',
))
_PART_SIZE_CODES: Final = frozenset(('EntityTooSmall',))
_TRANSIENT_CODES: Final = frozenset((
    'InternalError',
    'RequestTimeout',
    'ServiceUnavailable',
    'SlowDown',
    'Throttling',
    'ThrottlingException',
))
_SERVER_ERROR_STATUS: Final = 500

# One signed URL grants exactly one of these operations
_CLIENT_METHODS: Final = {
    'get': 'get_object',
    'put': 'put_object',
}


@contextmanager
def _store_errors(operation: str, key: str) -> Iterator[None]:
    """Translate botocore failures into transfer errors.

    Missing keys, sessions and parts become ``NotFoundError``, parts
    below the store minimum become ``InvalidSizeError``, throttling,
    5xx responses and connection problems become
    ``StoreUnavailableError``. Anything else propagates unchanged.

    Args:
        operation: Store operation name for messages.
        key: Object key the operation targets.

    Yields:
        Nothing, wraps the block.

    Raises:
        NotFoundError: If the object, upload session or part is missing.
        InvalidSizeError: If the store rejects a part as too small.
        StoreUnavailableError: If the failure is transient.
    """
    try:
        yield
    except ClientError as error:
        code = error.response.get('Error', {}).get('Code', '')
        status = error.response.get('ResponseMetadata', {}).get(
            'HTTPStatusCode',
        ) or 0
        if code in _NOT_FOUND_CODES:
            raise NotFoundError(f'{operation}: {key} not found') from error
        if code in _PART_SIZE_CODES:
            logger.warning(
                'Store rejected part size during %s for %s',
                operation,
                key,
            )
            raise InvalidSizeError(
                f'{operation}: a part of {key} is below the store minimum',
            ) from error
        if code in _TRANSIENT_CODES or status >= _SERVER_ERROR_STATUS:
            logger.warning(
                'Transient store error during %s for %s: %s',
                operation,
                key,
                code,
            )
            raise StoreUnavailableError(operation, key) from error
        logger.exception('Object store rejected %s for %s', operation, key)
        raise
    except (BotoConnectionError, HTTPClientError) as error:
        logger.warning('Store connection failed during %s for %s', operation, key)
        raise StoreUnavailableError(operation, key) from error


@final
class TransferStorage(S3Storage):
    """S3 storage backend exposing multipart sessions and presigning.

    Extends django-storages S3Storage with:
    - Multipart session lifecycle (create, part upload, complete, abort)
    - Metadata probes that do not read the object body
    - Single-operation presigned URLs
    - Translation of botocore errors into transfer errors
    """

    @property
    def client(self) -> Any:
        """Low-level boto3 S3 client bound to this backend's connection."""
        return self.bucket.meta.client

    def object_key(self, name: str) -> str:
        """Map a storage name to the object key used in the bucket.

        Args:
            name: Storage name (e.g., '12/photos/a.jpg').

        Returns:
            Key with the configured location prefix applied.
        """
        return self._normalize_name(clean_name(name))

    def create_multipart_upload(self, name: str) -> str:
        """Open a multipart session for ``name``.

        Args:
            name: Storage name of the final object.

        Returns:
            Upload ID of the new session.
        """
        key = self.object_key(name)
        with _store_errors('create_multipart_upload', key):
            response = self.client.create_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
            )
        upload_id = response['UploadId']
        logger.info('Opened multipart session for %s: %s', key, upload_id)
        return upload_id

    def upload_part(
        self,
        name: str,
        upload_id: str,
        part_number: int,
        body: bytes,
    ) -> str:
        """Upload one part of a multipart session.

        Uploading the same part number again replaces the earlier bytes.

        Args:
            name: Storage name of the final object.
            upload_id: Multipart session ID.
            part_number: 1-based part number.
            body: Part content.

        Returns:
            ETag of the stored part.
        """
        key = self.object_key(name)
        with _store_errors('upload_part', key):
            response = self.client.upload_part(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=body,
            )
        logger.debug('Stored part %d of %s', part_number, key)
        return response['ETag']

    def complete_multipart_upload(
        self,
        name: str,
        upload_id: str,
        parts: Sequence[tuple[int, str]],
    ) -> str:
        """Assemble uploaded parts into the final object.

        Args:
            name: Storage name of the final object.
            upload_id: Multipart session ID.
            parts: ``(part_number, etag)`` pairs in ascending order.

        Returns:
            ETag of the assembled object.
        """
        key = self.object_key(name)
        with _store_errors('complete_multipart_upload', key):
            response = self.client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={
                    'Parts': [
                        {'ETag': etag, 'PartNumber': part_number}
                        for part_number, etag in parts
                    ],
                },
            )
        logger.info('Completed multipart upload of %s', key)
        return response['ETag']

    def abort_multipart_upload(self, name: str, upload_id: str) -> None:
        """Release a multipart session and the parts stored under it.

        Args:
            name: Storage name of the final object.
            upload_id: Multipart session ID.
        """
        key = self.object_key(name)
        with _store_errors('abort_multipart_upload', key):
            self.client.abort_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
            )
        logger.info('Aborted multipart session for %s: %s', key, upload_id)

    def probe(self, name: str) -> dict[str, Any] | None:
        """Fetch object metadata without reading its body.

        Args:
            name: Storage name of the object.

        Returns:
            HEAD response, or None if the object does not exist.
        """
        key = self.object_key(name)
        try:
            with _store_errors('head_object', key):
                return self.client.head_object(
                    Bucket=self.bucket_name,
                    Key=key,
                )
        except NotFoundError:
            return None

    def presigned_url(self, name: str, operation: str, expires_in: int) -> str:
        """Sign a URL granting one operation on one object.

        Signing is local, no request reaches the store.

        Args:
            name: Storage name of the object.
            operation: 'get' or 'put'.
            expires_in: URL lifetime in seconds.

        Returns:
            Presigned URL.

        Raises:
            ValueError: If the operation is not 'get' or 'put'.
        """
        try:
            client_method = _CLIENT_METHODS[operation]
        except KeyError as error:
            raise ValueError(f'Unsupported operation: {operation}') from error

        key = self.object_key(name)
        return self.client.generate_presigned_url(
            ClientMethod=client_method,
            Params={'Bucket': self.bucket_name, 'Key': key},
            ExpiresIn=expires_in,
        )
