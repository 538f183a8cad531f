"""Database models for transfers app."""

import uuid
from typing import Final, final, override

from django.conf import settings
from django.db import models

# Constants for field max lengths
_KEY_MAX_LENGTH: Final = 1024  # S3 object key limit
_UPLOAD_ID_MAX_LENGTH: Final = 1024
_ETAG_MAX_LENGTH: Final = 128
_CHECKSUM_MAX_LENGTH: Final = 64  # SHA256 hex length
_STATUS_MAX_LENGTH: Final = 16


def count_parts(file_size: int, part_size: int) -> int:
    """Number of parts needed to cover ``file_size`` bytes.

    Args:
        file_size: Declared total size in bytes.
        part_size: Declared part size in bytes.

    Returns:
        ``ceil(file_size / part_size)`` computed on integers.
    """
    return (file_size + part_size - 1) // part_size


class TransferStatus(models.TextChoices):
    """Lifecycle of a transfer."""

    INITIATED = 'initiated', 'Initiated'
    IN_PROGRESS = 'in_progress', 'In progress'
    COMPLETED = 'completed', 'Completed'
    ABORTED = 'aborted', 'Aborted'


class PartStatus(models.TextChoices):
    """Acknowledgment state of a part."""

    PENDING = 'pending', 'Pending'
    STORED = 'stored', 'Stored'


OPEN_STATUSES: Final = (TransferStatus.INITIATED, TransferStatus.IN_PROGRESS)


@final
class Transfer(models.Model):
    """One logical file upload composed of ordered parts.

    The transfer owns an object store multipart session (``upload_id``)
    targeting ``storage_key``, which is ``target_key`` placed inside the
    owner's namespace: ``{user_id}/{target_key}``.

    Rows are kept after completion or abort as an archive; only the
    part records of aborted transfers are removed.
    """

    id = models.UUIDField(  # noqa: WPS125
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='transfers',
        db_index=True,
    )

    target_key = models.CharField(
        max_length=_KEY_MAX_LENGTH,
        help_text='Key relative to the owner namespace',
    )

    storage_key = models.CharField(
        max_length=_KEY_MAX_LENGTH,
        help_text='Full object key: {user_id}/{target_key}',
    )

    total_size = models.BigIntegerField(
        help_text='Declared file size in bytes',
    )

    part_size = models.BigIntegerField(
        help_text='Declared part size in bytes',
    )

    status = models.CharField(
        max_length=_STATUS_MAX_LENGTH,
        choices=TransferStatus.choices,
        default=TransferStatus.INITIATED,
        db_index=True,
    )

    upload_id = models.CharField(
        max_length=_UPLOAD_ID_MAX_LENGTH,
        blank=True,
        default='',
        help_text='Object store multipart session identifier',
    )

    committed_etag = models.CharField(
        max_length=_ETAG_MAX_LENGTH,
        blank=True,
        default='',
    )

    committed_size = models.BigIntegerField(
        null=True,
        blank=True,
        help_text='Size of the assembled object in bytes',
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    modified_at = models.DateTimeField(auto_now=True, db_index=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Transfer'  # type: ignore[mutable-override]
        verbose_name_plural = 'Transfers'  # type: ignore[mutable-override]
        ordering = ['-created_at']

        indexes = [
            # Stale sweep: open transfers by last activity
            models.Index(
                fields=['status', 'modified_at'],
                name='transfers_status_mod_idx',
            ),
        ]

        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_size__gt=0),
                name='transfers_total_size_positive',
            ),
            models.CheckConstraint(
                condition=models.Q(part_size__gt=0),
                name='transfers_part_size_positive',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.storage_key} ({self.status})'

    @property
    def expected_part_count(self) -> int:
        """Number of parts the transfer needs before it can complete."""
        return count_parts(self.total_size, self.part_size)

    @property
    def is_open(self) -> bool:
        """Whether parts may still be uploaded."""
        return self.status in OPEN_STATUSES

    def part_offset(self, part_index: int) -> int:
        """Byte offset where the given part starts.

        Args:
            part_index: 1-based part index.

        Returns:
            Offset of the first byte of the part.
        """
        return (part_index - 1) * self.part_size

    def part_length(self, part_index: int) -> int:
        """Exact byte length the given part must have.

        Every part holds ``part_size`` bytes except the final one, which
        holds whatever remains of ``total_size``.

        Args:
            part_index: 1-based part index.

        Returns:
            Length in bytes.
        """
        return min(self.part_size, self.total_size - self.part_offset(part_index))


@final
class PartRecord(models.Model):
    """One chunk of a transfer acknowledged (or about to be) by the store.

    A record only becomes ``stored`` after the object store confirmed the
    bytes and returned ``part_token``.
    """

    transfer = models.ForeignKey(
        Transfer,
        on_delete=models.CASCADE,
        related_name='parts',
    )

    part_index = models.PositiveIntegerField()

    byte_offset = models.BigIntegerField()

    size_bytes = models.BigIntegerField()

    checksum_sha256 = models.CharField(
        max_length=_CHECKSUM_MAX_LENGTH,
        help_text='SHA256 of the part content',
    )

    status = models.CharField(
        max_length=_STATUS_MAX_LENGTH,
        choices=PartStatus.choices,
        default=PartStatus.PENDING,
    )

    part_token = models.CharField(
        max_length=_ETAG_MAX_LENGTH,
        blank=True,
        default='',
        help_text='ETag returned by the object store',
    )

    stored_at = models.DateTimeField(null=True, blank=True)
    modified_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Part'  # type: ignore[mutable-override]
        verbose_name_plural = 'Parts'  # type: ignore[mutable-override]
        ordering = ['transfer', 'part_index']

        constraints = [
            models.UniqueConstraint(
                fields=['transfer', 'part_index'],
                name='parts_transfer_index_unique',
            ),
            models.CheckConstraint(
                condition=models.Q(part_index__gte=1),
                name='parts_index_positive',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.transfer_id}#{self.part_index} ({self.status})'

    @property
    def byte_range(self) -> tuple[int, int]:
        """Half-open ``(start, end)`` byte range covered by the part."""
        return self.byte_offset, self.byte_offset + self.size_bytes


def _default_quota_bytes() -> int:
    """Default quota from settings (10 GB unless configured)."""
    return settings.TRANSFER_DEFAULT_QUOTA_BYTES


@final
class UserQuota(models.Model):
    """Storage quota for a user.

    ``used_bytes`` counts committed objects. Declared sizes of open
    transfers are reserved on top of it when a new transfer begins.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='quota',
        primary_key=True,
    )

    quota_bytes = models.BigIntegerField(
        default=_default_quota_bytes,
        help_text='Storage quota limit in bytes',
    )

    used_bytes = models.BigIntegerField(
        default=0,
        help_text='Committed storage in bytes',
    )

    class Meta:
        """Model metadata."""

        verbose_name = 'User Quota'  # type: ignore[mutable-override]
        verbose_name_plural = 'User Quotas'  # type: ignore[mutable-override]

        constraints = [
            models.CheckConstraint(
                condition=models.Q(quota_bytes__gte=0),
                name='transfer_quota_bytes_non_negative',
            ),
            models.CheckConstraint(
                condition=models.Q(used_bytes__gte=0),
                name='transfer_used_bytes_non_negative',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.user.username}: {self.used_bytes}/{self.quota_bytes}'

    def has_space_for(self, size_bytes: int, reserved_bytes: int = 0) -> bool:
        """Check if there's enough space for the given size.

        Args:
            size_bytes: Size to check in bytes.
            reserved_bytes: Bytes already promised to open transfers.

        Returns:
            True if there's enough space, False otherwise.
        """
        return self.used_bytes + reserved_bytes + size_bytes <= self.quota_bytes

    def available_bytes(self, reserved_bytes: int = 0) -> int:
        """Get available storage space.

        Args:
            reserved_bytes: Bytes already promised to open transfers.

        Returns:
            Available bytes (never negative).
        """
        available = self.quota_bytes - self.used_bytes - reserved_bytes
        return max(0, available)
