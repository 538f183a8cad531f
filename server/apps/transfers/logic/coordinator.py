"""Business logic for resumable multipart transfers.

A transfer moves a file from "declared" to "stored as one object":

1. ``begin`` validates the declared sizes, opens a multipart session in
   the object store and records the transfer.
2. ``upload_part`` stores one part at a time; any part can be retried
   on its own after a dropped connection.
3. ``complete`` checks that parts ``1..N`` are all stored and asks the
   object store to assemble them.
4. ``abort`` releases the session and the part records at any point.

Durable state lives in the database, so the coordinator itself holds
nothing between calls and may run in any process model.
"""

import logging
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar, final
from uuid import UUID

from django.core.exceptions import ValidationError
from django.core.files.storage import default_storage
from django.db import InterfaceError, OperationalError, transaction
from django.utils import timezone

from server.apps.transfers.exceptions import (
    ChecksumMismatchError,
    IncompleteTransferError,
    InvalidPartError,
    InvalidSizeError,
    NotFoundError,
    PartConflictError,
    StoreUnavailableError,
    TransferClosedError,
)
from server.apps.transfers.infrastructure.metadata import (
    build_storage_key,
    calculate_checksum,
    multipart_etag,
    normalize_checksum,
    strip_etag,
)
from server.apps.transfers.logic.limits import TransferLimits
from server.apps.transfers.logic.quota_operations import (
    check_quota,
    increment_usage,
)
from server.apps.transfers.logic.retry import RetryPolicy, call_with_retry
from server.apps.transfers.models import (
    PartRecord,
    PartStatus,
    Transfer,
    TransferStatus,
    count_parts,
)

if TYPE_CHECKING:
    from server.apps.transfers.infrastructure.storage import TransferStorage

# User type for Django's dynamic user model
_User = Any
_TransferId = UUID | str

_T = TypeVar('_T')

logger = logging.getLogger(__name__)


def missing_indices(expected_count: int, stored: Iterable[int]) -> list[int]:
    """Find part indices in ``1..expected_count`` that are not stored.

    Args:
        expected_count: Number of parts the transfer needs.
        stored: Indices of stored parts.

    Returns:
        Missing indices in ascending order.
    """
    stored_set = set(stored)
    return [
        index
        for index in range(1, expected_count + 1)
        if index not in stored_set
    ]


@contextmanager
def _metadata_errors(operation: str, target: object) -> Iterator[None]:
    """Translate transient database failures into ``StoreUnavailableError``.

    Wrap ``transaction.atomic()`` from the outside, so the block is
    already rolled back when the error is translated.

    Args:
        operation: Operation name for messages.
        target: Transfer or key the operation works on.

    Yields:
        Nothing, wraps the block.

    Raises:
        StoreUnavailableError: If the database is locked or unreachable.
    """
    try:
        yield
    except (OperationalError, InterfaceError) as error:
        logger.warning(
            'Transient database error during %s for %s: %s',
            operation,
            target,
            error,
        )
        raise StoreUnavailableError(operation, str(target)) from error


@final
class TransferCoordinator:
    """Drives multipart transfers against one storage backend.

    Every operation takes the calling user. Transfers belonging to
    somebody else are reported as missing.
    """

    def __init__(
        self,
        storage: 'TransferStorage',
        limits: TransferLimits,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            storage: Object store backend.
            limits: Part size and count limits.
            retry_policy: Backoff for transient store failures.
        """
        self._storage = storage
        self._limits = limits
        self._retry_policy = retry_policy or RetryPolicy()

    def begin(
        self,
        user: _User,
        file_size: int,
        part_size: int,
        target_key: str,
    ) -> Transfer:
        """Declare a new transfer and open its multipart session.

        Args:
            user: Owner of the transfer.
            file_size: Total size of the file in bytes.
            part_size: Size of every part but the last, in bytes.
            target_key: Key of the final object, relative to the
                user's namespace.

        Returns:
            Transfer in ``initiated`` state.

        Raises:
            InvalidSizeError: If a size is non-positive or out of limits.
            KeyScopeError: If the key escapes the user's namespace.
            QuotaExceededError: If the file does not fit the quota.
            StoreUnavailableError: If the session or the record cannot
                be created.
        """
        part_count = self._validate_sizes(file_size, part_size)
        storage_key = build_storage_key(user.id, target_key)
        self._retry(
            lambda: self._check_quota(user, file_size, storage_key),
            f'check_quota for {storage_key}',
        )

        # Opening a session is not idempotent, so it is never retried
        upload_id = self._storage.create_multipart_upload(storage_key)

        try:
            with _metadata_errors('create_transfer', storage_key):
                with transaction.atomic():
                    transfer = Transfer.objects.create(
                        user=user,
                        target_key=target_key,
                        storage_key=storage_key,
                        total_size=file_size,
                        part_size=part_size,
                        upload_id=upload_id,
                    )
        except Exception:
            logger.exception(
                'Database transaction failed, aborting multipart session: %s',
                storage_key,
            )
            self._release_session(storage_key, upload_id)
            raise

        logger.info(
            'Transfer %s started: %s (%d bytes in %d parts)',
            transfer.pk,
            storage_key,
            file_size,
            part_count,
        )
        return transfer

    def upload_part(
        self,
        user: _User,
        transfer_id: _TransferId,
        part_index: int,
        content: bytes,
        checksum: str,
    ) -> PartRecord:
        """Store one part of a transfer.

        Re-uploading a stored part with the same checksum succeeds and
        leaves the record as it was, so clients can simply retry. The
        part row stays locked while the object store call runs;
        concurrent writers of the same index therefore run one after
        another.

        Args:
            user: Owner of the transfer.
            transfer_id: Transfer to upload into.
            part_index: 1-based part index.
            content: Part bytes.
            checksum: SHA256 hex digest of ``content``.

        Returns:
            Part record in ``stored`` state.

        Raises:
            NotFoundError: If the transfer is unknown or aborted.
            TransferClosedError: If the transfer is already completed.
            InvalidPartError: If the index is out of range.
            InvalidSizeError: If the part has the wrong length.
            ChecksumMismatchError: If ``content`` does not match ``checksum``.
            PartConflictError: If the part is stored with other content.
            StoreUnavailableError: If a store keeps failing.
        """
        transfer = self._retry(
            lambda: self._get_open_transfer(user, transfer_id),
            f'load transfer {transfer_id}',
        )
        self._validate_part(transfer, part_index, content)
        part_checksum = self._verify_checksum(content, checksum)

        part = self._retry(
            lambda: self._store_part(
                transfer,
                part_index,
                content,
                part_checksum,
            ),
            f'upload_part {part_index} of {transfer.storage_key}',
        )

        logger.info(
            'Stored part %d/%d of transfer %s',
            part_index,
            transfer.expected_part_count,
            transfer.pk,
        )
        return part

    def complete(self, user: _User, transfer_id: _TransferId) -> str:
        """Assemble all parts into the final object.

        Safe to call again after a failure or a lost response: a
        completed transfer just returns its key, and a session the store
        no longer knows is accepted when the object already there has
        the ETag the stored parts produce.

        Args:
            user: Owner of the transfer.
            transfer_id: Transfer to complete.

        Returns:
            The committed target key.

        Raises:
            NotFoundError: If the transfer is unknown or aborted.
            IncompleteTransferError: If any part is not stored.
            StoreUnavailableError: If a store keeps failing.
        """
        transfer = self._retry(
            lambda: self._get_transfer(user, transfer_id),
            f'load transfer {transfer_id}',
        )
        if transfer.status == TransferStatus.COMPLETED:
            return transfer.target_key

        # The whole unit is repeatable: a commit that reached the store
        # before the database failed is recognized by its ETag
        completed = self._retry(
            lambda: self._finish(user, transfer.pk),
            f'complete_multipart_upload of {transfer.storage_key}',
        )
        return completed.target_key

    def abort(self, user: _User, transfer_id: _TransferId) -> None:
        """Abort a transfer and release everything it holds.

        Never raises: it is meant for cleanup paths. Aborting an unknown,
        aborted or completed transfer does nothing.

        Args:
            user: Owner of the transfer.
            transfer_id: Transfer to abort.
        """
        try:
            transfer = self._mark_aborted(user, transfer_id)
        except Exception:
            logger.exception('Failed to abort transfer %s', transfer_id)
            return

        if transfer is None:
            return

        self._release_session(transfer.storage_key, transfer.upload_id)

        try:
            deleted, _ = transfer.parts.all().delete()
        except Exception:
            logger.exception(
                'Failed to delete part records of aborted transfer %s',
                transfer.pk,
            )
            return

        logger.info(
            'Transfer %s aborted, released %d part records',
            transfer.pk,
            deleted,
        )

    def status(self, user: _User, transfer_id: _TransferId) -> Transfer:
        """Read-only snapshot of a transfer.

        Args:
            user: Owner of the transfer.
            transfer_id: Transfer to read.

        Returns:
            Transfer instance.

        Raises:
            NotFoundError: If the transfer is unknown.
            StoreUnavailableError: If the database keeps failing.
        """
        return self._retry(
            lambda: self._get_transfer(user, transfer_id),
            f'load transfer {transfer_id}',
        )

    def missing_parts(self, user: _User, transfer_id: _TransferId) -> list[int]:
        """Part indices a client still has to upload.

        Args:
            user: Owner of the transfer.
            transfer_id: Transfer to inspect.

        Returns:
            Missing indices in ascending order.

        Raises:
            NotFoundError: If the transfer is unknown.
            StoreUnavailableError: If the database keeps failing.
        """
        transfer = self.status(user, transfer_id)
        stored = self._retry(
            lambda: self._stored_indices(transfer),
            f'list parts of {transfer.pk}',
        )
        return missing_indices(transfer.expected_part_count, stored)

    def _retry(self, operation: Callable[[], _T], description: str) -> _T:
        return call_with_retry(operation, self._retry_policy, description)

    def _validate_sizes(self, file_size: int, part_size: int) -> int:
        """Check declared sizes against limits.

        Args:
            file_size: Declared file size.
            part_size: Declared part size.

        Returns:
            Expected part count.

        Raises:
            InvalidSizeError: If a size is unacceptable.
        """
        if file_size <= 0:
            raise InvalidSizeError(
                f'File size must be positive, got {file_size}',
                file_size,
            )
        if part_size <= 0:
            raise InvalidSizeError(
                f'Part size must be positive, got {part_size}',
                part_size,
            )
        if part_size > self._limits.max_part_size:
            raise InvalidSizeError(
                f'Part size {part_size} exceeds maximum of '
                f'{self._limits.max_part_size}',
                part_size,
            )

        part_count = count_parts(file_size, part_size)
        # The store only accepts small parts as the last one
        if part_count > 1 and part_size < self._limits.min_part_size:
            raise InvalidSizeError(
                f'Part size {part_size} is below the minimum of '
                f'{self._limits.min_part_size} for multi-part files',
                part_size,
            )
        if part_count > self._limits.max_part_count:
            raise InvalidSizeError(
                f'{file_size} bytes in parts of {part_size} need '
                f'{part_count} parts, maximum is {self._limits.max_part_count}',
                file_size,
            )
        return part_count

    def _validate_part(
        self,
        transfer: Transfer,
        part_index: int,
        content: bytes,
    ) -> None:
        """Check part index and length against the transfer layout.

        Args:
            transfer: Target transfer.
            part_index: 1-based part index.
            content: Part bytes.

        Raises:
            InvalidPartError: If the index is out of range.
            InvalidSizeError: If the length does not fit the layout.
        """
        expected_count = transfer.expected_part_count
        if not 1 <= part_index <= expected_count:
            raise InvalidPartError(part_index, expected_count)

        length = len(content)
        expected_length = transfer.part_length(part_index)
        if length != expected_length:
            raise InvalidSizeError(
                f'Part {part_index} must hold exactly {expected_length} '
                f'bytes, got {length}',
                length,
            )

    def _verify_checksum(self, content: bytes, checksum: str) -> str:
        """Compare the declared checksum with the content.

        Args:
            content: Part bytes.
            checksum: Declared SHA256 hex digest.

        Returns:
            Normalized checksum.

        Raises:
            ChecksumMismatchError: If they differ.
        """
        declared = normalize_checksum(checksum)
        actual = calculate_checksum(content)
        if declared != actual:
            logger.warning('Checksum mismatch: declared %s, got %s', declared, actual)
            raise ChecksumMismatchError(declared=declared, actual=actual)
        return actual

    def _check_quota(
        self,
        user: _User,
        file_size: int,
        storage_key: str,
    ) -> None:
        with _metadata_errors('check_quota', storage_key):
            check_quota(user, file_size)

    def _store_part(
        self,
        transfer: Transfer,
        part_index: int,
        content: bytes,
        part_checksum: str,
    ) -> PartRecord:
        """Upload one part and record it, as one repeatable unit.

        Any failure rolls back the part row, so the unit can run again.

        Args:
            transfer: Open transfer.
            part_index: 1-based part index.
            content: Validated part bytes.
            part_checksum: Normalized checksum of ``content``.

        Returns:
            Part record in ``stored`` state.

        Raises:
            PartConflictError: If the part is stored with other content.
            NotFoundError: If the transfer was aborted meanwhile.
        """
        with _metadata_errors('upload_part', transfer.storage_key):
            with transaction.atomic():
                part, _ = PartRecord.objects.select_for_update().get_or_create(
                    transfer=transfer,
                    part_index=part_index,
                    defaults={
                        'byte_offset': transfer.part_offset(part_index),
                        'size_bytes': len(content),
                        'checksum_sha256': part_checksum,
                    },
                )
                if (
                    part.status == PartStatus.STORED
                    and part.checksum_sha256 != part_checksum
                ):
                    logger.warning(
                        'Rejected conflicting upload of part %d for %s',
                        part_index,
                        transfer.pk,
                    )
                    raise PartConflictError(
                        part_index=part_index,
                        stored_checksum=part.checksum_sha256,
                        received_checksum=part_checksum,
                    )

                part_token = self._storage.upload_part(
                    transfer.storage_key,
                    transfer.upload_id,
                    part_index,
                    content,
                )

                # The transfer may have been aborted while bytes were in flight
                locked = self._lock_open_transfer(transfer.pk)

                unchanged = (
                    part.status == PartStatus.STORED
                    and part.part_token == part_token
                )
                if not unchanged:
                    part.size_bytes = len(content)
                    part.checksum_sha256 = part_checksum
                    part.part_token = part_token
                    part.status = PartStatus.STORED
                    part.stored_at = timezone.now()
                    part.save(update_fields=[
                        'size_bytes',
                        'checksum_sha256',
                        'part_token',
                        'status',
                        'stored_at',
                        'modified_at',
                    ])

                if locked.status == TransferStatus.INITIATED:
                    locked.status = TransferStatus.IN_PROGRESS
                locked.save(update_fields=['status', 'modified_at'])
        return part

    def _finish(self, user: _User, transfer_pk: UUID) -> Transfer:
        """Commit a transfer under its row lock.

        Args:
            user: Owner of the transfer.
            transfer_pk: Transfer primary key.

        Returns:
            The completed transfer.

        Raises:
            NotFoundError: If the transfer was aborted or the session is
                gone without a matching object.
            IncompleteTransferError: If any part is not stored.
        """
        with _metadata_errors('complete', transfer_pk):
            with transaction.atomic():
                transfer = Transfer.objects.select_for_update().get(
                    pk=transfer_pk,
                )
                if transfer.status == TransferStatus.COMPLETED:
                    return transfer
                if transfer.status == TransferStatus.ABORTED:
                    raise NotFoundError(f'Transfer {transfer.pk} was aborted')

                stored_parts = list(
                    transfer.parts.filter(
                        status=PartStatus.STORED,
                    ).order_by('part_index').values_list(
                        'part_index',
                        'part_token',
                        'size_bytes',
                    ),
                )
                missing = missing_indices(
                    transfer.expected_part_count,
                    (part_index for part_index, _, _ in stored_parts),
                )
                if missing:
                    logger.warning(
                        'Transfer %s cannot complete, missing parts: %s',
                        transfer.pk,
                        missing,
                    )
                    raise IncompleteTransferError(transfer.pk, missing)

                etag = self._commit(
                    transfer,
                    [(index, token) for index, token, _ in stored_parts],
                )
                committed_size = sum(size for _, _, size in stored_parts)

                transfer.status = TransferStatus.COMPLETED
                transfer.committed_etag = strip_etag(etag)
                transfer.committed_size = committed_size
                transfer.completed_at = timezone.now()
                transfer.save(update_fields=[
                    'status',
                    'committed_etag',
                    'committed_size',
                    'completed_at',
                    'modified_at',
                ])
                increment_usage(user, committed_size)

        logger.info(
            'Transfer %s completed: %s (%d bytes)',
            transfer.pk,
            transfer.storage_key,
            committed_size,
        )
        return transfer

    def _stored_indices(self, transfer: Transfer) -> list[int]:
        with _metadata_errors('missing_parts', transfer.pk):
            return list(
                transfer.parts.filter(
                    status=PartStatus.STORED,
                ).values_list('part_index', flat=True),
            )

    def _get_transfer(self, user: _User, transfer_id: _TransferId) -> Transfer:
        """Load a transfer owned by ``user``.

        Args:
            user: Expected owner.
            transfer_id: Transfer ID.

        Returns:
            Transfer instance.

        Raises:
            NotFoundError: If missing, malformed or owned by someone else.
        """
        try:
            with _metadata_errors('load_transfer', transfer_id):
                return Transfer.objects.get(pk=transfer_id, user=user)
        except (Transfer.DoesNotExist, ValidationError) as error:
            logger.warning('Transfer not found: %s', transfer_id)
            raise NotFoundError(f'Transfer {transfer_id} not found') from error

    def _get_open_transfer(
        self,
        user: _User,
        transfer_id: _TransferId,
    ) -> Transfer:
        """Load a transfer that still accepts parts.

        Args:
            user: Expected owner.
            transfer_id: Transfer ID.

        Returns:
            Transfer in ``initiated`` or ``in_progress`` state.
        """
        transfer = self._get_transfer(user, transfer_id)
        self._ensure_open(transfer)
        return transfer

    def _lock_open_transfer(self, transfer_pk: UUID) -> Transfer:
        """Lock a transfer row and check it still accepts parts.

        Args:
            transfer_pk: Transfer primary key.

        Returns:
            Locked transfer.
        """
        transfer = Transfer.objects.select_for_update().get(pk=transfer_pk)
        self._ensure_open(transfer)
        return transfer

    def _ensure_open(self, transfer: Transfer) -> None:
        """Reject transfers in a terminal state.

        Args:
            transfer: Transfer to check.

        Raises:
            NotFoundError: If the transfer was aborted.
            TransferClosedError: If the transfer was completed.
        """
        if transfer.status == TransferStatus.ABORTED:
            raise NotFoundError(f'Transfer {transfer.pk} was aborted')
        if transfer.status == TransferStatus.COMPLETED:
            raise TransferClosedError(
                f'Transfer {transfer.pk} is already completed',
            )

    def _commit(
        self,
        transfer: Transfer,
        part_tokens: Sequence[tuple[int, str]],
    ) -> str:
        """Complete the multipart session, tolerating a repeated call.

        Args:
            transfer: Locked transfer with every part stored.
            part_tokens: ``(part_index, etag)`` pairs in order.

        Returns:
            ETag of the assembled object.

        Raises:
            NotFoundError: If the session is gone and no matching
                object exists at the key.
        """
        try:
            return self._storage.complete_multipart_upload(
                transfer.storage_key,
                transfer.upload_id,
                part_tokens,
            )
        except NotFoundError:
            etag = self._existing_commit(transfer, part_tokens)
            if etag is None:
                raise
            logger.info(
                'Multipart session of %s was already completed',
                transfer.storage_key,
            )
            return etag

    def _existing_commit(
        self,
        transfer: Transfer,
        part_tokens: Sequence[tuple[int, str]],
    ) -> str | None:
        """Find an object already assembled from exactly these parts.

        Args:
            transfer: Transfer being completed.
            part_tokens: ``(part_index, etag)`` pairs in order.

        Returns:
            The object's ETag if it matches the parts, otherwise None.
        """
        head = self._storage.probe(transfer.storage_key)
        if head is None:
            return None

        expected = multipart_etag([token for _, token in part_tokens])
        if strip_etag(head['ETag']) != expected:
            logger.warning(
                'Object at %s does not match transfer %s parts',
                transfer.storage_key,
                transfer.pk,
            )
            return None
        return head['ETag']

    def _mark_aborted(
        self,
        user: _User,
        transfer_id: _TransferId,
    ) -> Transfer | None:
        """Switch an open transfer to ``aborted``.

        The status is committed before parts are released, so uploads in
        flight see it when they re-check the transfer.

        Args:
            user: Owner of the transfer.
            transfer_id: Transfer ID.

        Returns:
            The aborted transfer, or None if there was nothing to abort.
        """
        with transaction.atomic():
            try:
                transfer = Transfer.objects.select_for_update().get(
                    pk=transfer_id,
                    user=user,
                )
            except (Transfer.DoesNotExist, ValidationError):
                logger.info('Abort requested for unknown transfer %s', transfer_id)
                return None

            if not transfer.is_open:
                logger.debug(
                    'Transfer %s already %s, nothing to abort',
                    transfer.pk,
                    transfer.status,
                )
                return None

            transfer.status = TransferStatus.ABORTED
            transfer.save(update_fields=['status', 'modified_at'])

        return transfer

    def _release_session(self, storage_key: str, upload_id: str) -> None:
        """Abort a multipart session, best effort.

        Failures are logged: an orphaned session only costs storage and
        can be cleaned up by a bucket lifecycle rule.

        Args:
            storage_key: Object key of the session.
            upload_id: Multipart session ID.
        """
        if not upload_id:
            return

        try:
            self._storage.abort_multipart_upload(storage_key, upload_id)
        except NotFoundError:
            logger.info('Multipart session already released: %s', storage_key)
        except Exception:
            logger.exception(
                'Failed to abort multipart session (orphaned parts): %s',
                storage_key,
            )


def get_coordinator() -> TransferCoordinator:
    """Build a coordinator from Django settings.

    Returns:
        Coordinator using the default storage backend.
    """
    return TransferCoordinator(
        storage=default_storage,  # type: ignore[arg-type]
        limits=TransferLimits.from_settings(),
        retry_policy=RetryPolicy.from_settings(),
    )
