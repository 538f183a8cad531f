"""Tests for Transfer, PartRecord and UserQuota models."""

import math

import pytest
from django.db import IntegrityError, transaction

from server.apps.transfers.models import (
    PartRecord,
    PartStatus,
    Transfer,
    TransferStatus,
    UserQuota,
    count_parts,
)


def _create_transfer(user, total_size=20, part_size=8, **kwargs):
    return Transfer.objects.create(
        user=user,
        target_key='a.bin',
        storage_key=f'{user.id}/a.bin',
        total_size=total_size,
        part_size=part_size,
        **kwargs,
    )


@pytest.mark.parametrize(('file_size', 'part_size'), [
    (1, 1),
    (5, 10),
    (10, 3),
    (10, 5),
    (15_000_000, 5_000_000),
    (15_000_001, 5_000_000),
    (5 * 1024 ** 4, 5 * 1024 ** 2),
])
def test_count_parts_is_ceiling(file_size, part_size):
    """Test count_parts equals ceil(file_size / part_size)."""
    assert count_parts(file_size, part_size) == math.ceil(file_size / part_size)


@pytest.mark.django_db
class TestTransferModel:
    """Tests for Transfer layout helpers."""

    def test_defaults(self, user):
        """Test new transfers start initiated and open."""
        transfer = _create_transfer(user)

        assert transfer.status == TransferStatus.INITIATED
        assert transfer.is_open
        assert transfer.id is not None
        assert transfer.completed_at is None

    def test_expected_part_count(self, user):
        """Test expected part count for a ragged final part."""
        transfer = _create_transfer(user, total_size=20, part_size=8)

        assert transfer.expected_part_count == 3

    def test_part_offset(self, user):
        """Test parts start at multiples of the part size."""
        transfer = _create_transfer(user, total_size=20, part_size=8)

        assert transfer.part_offset(1) == 0
        assert transfer.part_offset(2) == 8
        assert transfer.part_offset(3) == 16

    @pytest.mark.parametrize('total_size', [1, 7, 8, 9, 20, 24])
    def test_part_length(self, user, total_size):
        """Test part lengths add up to exactly the file size."""
        transfer = _create_transfer(user, total_size=total_size, part_size=8)
        indices = range(1, transfer.expected_part_count + 1)
        lengths = [transfer.part_length(index) for index in indices]

        assert sum(lengths) == total_size
        assert all(length == 8 for length in lengths[:-1])
        assert 0 < lengths[-1] <= 8

    @pytest.mark.parametrize('status', [
        TransferStatus.COMPLETED,
        TransferStatus.ABORTED,
    ])
    def test_terminal_transfers_are_not_open(self, user, status):
        """Test completed and aborted transfers are closed."""
        transfer = _create_transfer(user, status=status)

        assert not transfer.is_open

    def test_str(self, user):
        """Test string representation."""
        transfer = _create_transfer(user)

        assert str(transfer) == f'{user.id}/a.bin (initiated)'

    def test_positive_sizes_enforced(self, user):
        """Test the database rejects non-positive sizes."""
        with pytest.raises(IntegrityError), transaction.atomic():
            _create_transfer(user, total_size=0)


@pytest.mark.django_db
class TestPartRecordModel:
    """Tests for PartRecord constraints and helpers."""

    def test_byte_range(self, user):
        """Test byte range is half-open offset..offset+size."""
        transfer = _create_transfer(user)
        part = PartRecord.objects.create(
            transfer=transfer,
            part_index=3,
            byte_offset=16,
            size_bytes=4,
            checksum_sha256='a' * 64,
        )

        assert part.byte_range == (16, 20)
        assert part.status == PartStatus.PENDING

    def test_part_index_unique_per_transfer(self, user):
        """Test a transfer cannot have two records for one index."""
        transfer = _create_transfer(user)
        PartRecord.objects.create(
            transfer=transfer,
            part_index=1,
            byte_offset=0,
            size_bytes=8,
            checksum_sha256='a' * 64,
        )

        with pytest.raises(IntegrityError), transaction.atomic():
            PartRecord.objects.create(
                transfer=transfer,
                part_index=1,
                byte_offset=0,
                size_bytes=8,
                checksum_sha256='b' * 64,
            )

    def test_part_index_starts_at_one(self, user):
        """Test part index zero is rejected."""
        transfer = _create_transfer(user)

        with pytest.raises(IntegrityError), transaction.atomic():
            PartRecord.objects.create(
                transfer=transfer,
                part_index=0,
                byte_offset=0,
                size_bytes=8,
                checksum_sha256='a' * 64,
            )

    def test_parts_deleted_with_transfer(self, user):
        """Test part records cascade with their transfer."""
        transfer = _create_transfer(user)
        PartRecord.objects.create(
            transfer=transfer,
            part_index=1,
            byte_offset=0,
            size_bytes=8,
            checksum_sha256='a' * 64,
        )

        transfer.delete()

        assert PartRecord.objects.count() == 0


@pytest.mark.django_db
class TestUserQuotaModel:
    """Tests for UserQuota helpers."""

    def test_default_quota_from_settings(self, user, settings):
        """Test the default limit comes from settings."""
        settings.TRANSFER_DEFAULT_QUOTA_BYTES = 12345

        quota = UserQuota.objects.create(user=user)

        assert quota.quota_bytes == 12345

    def test_has_space_for_counts_reserved(self, user):
        """Test reserved bytes reduce the available space."""
        quota = UserQuota.objects.create(
            user=user,
            quota_bytes=1000,
            used_bytes=400,
        )

        assert quota.has_space_for(600)
        assert not quota.has_space_for(600, reserved_bytes=1)
        assert quota.available_bytes(reserved_bytes=100) == 500

    def test_available_bytes_never_negative(self, user):
        """Test available bytes clamp to zero."""
        quota = UserQuota.objects.create(
            user=user,
            quota_bytes=1000,
            used_bytes=900,
        )

        assert quota.available_bytes(reserved_bytes=500) == 0
