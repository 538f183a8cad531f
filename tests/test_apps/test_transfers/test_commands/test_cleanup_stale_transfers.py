"""Tests for cleanup_stale_transfers management command."""

import hashlib
from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from server.apps.transfers.models import Transfer, TransferStatus


def _open_sessions(storage):
    response = storage.client.list_multipart_uploads(Bucket=storage.bucket_name)
    return response.get('Uploads', [])


def _age(transfer, **delta):
    Transfer.objects.filter(pk=transfer.pk).update(
        modified_at=timezone.now() - timedelta(**delta),
    )


@pytest.mark.django_db
class TestCleanupStaleTransfersCommand:
    """Tests for cleanup_stale_transfers management command."""

    def test_aborts_stale_transfers(self, coordinator, storage, user, settings):
        """Test transfers idle past the TTL are aborted."""
        settings.TRANSFER_STALE_TTL = 24 * 60 * 60
        transfer = coordinator.begin(user, 20, 8, 'old.bin')
        _age(transfer, days=2)

        out = StringIO()
        call_command('cleanup_stale_transfers', stdout=out)

        transfer.refresh_from_db()
        assert transfer.status == TransferStatus.ABORTED
        assert _open_sessions(storage) == []
        assert 'Aborted 1 stale transfers, 0 failed' in out.getvalue()

    def test_preserves_recent_transfers(self, coordinator, user, settings):
        """Test transfers with recent activity are kept."""
        settings.TRANSFER_STALE_TTL = 24 * 60 * 60
        transfer = coordinator.begin(user, 20, 8, 'recent.bin')
        _age(transfer, hours=23)

        out = StringIO()
        call_command('cleanup_stale_transfers', stdout=out)

        transfer.refresh_from_db()
        assert transfer.is_open
        assert 'Aborted 0 stale transfers, 0 failed' in out.getvalue()

    def test_ignores_finished_transfers(self, coordinator, user, settings):
        """Test completed and aborted transfers are not touched."""
        settings.TRANSFER_STALE_TTL = 60
        completed = coordinator.begin(user, 8, 8, 'done.bin')
        coordinator.upload_part(
            user,
            completed.pk,
            1,
            b'x' * 8,
            hashlib.sha256(b'x' * 8).hexdigest(),
        )
        coordinator.complete(user, completed.pk)
        aborted = coordinator.begin(user, 8, 8, 'gone.bin')
        coordinator.abort(user, aborted.pk)
        _age(completed, days=30)
        _age(aborted, days=30)

        out = StringIO()
        call_command('cleanup_stale_transfers', stdout=out)

        completed.refresh_from_db()
        assert completed.status == TransferStatus.COMPLETED
        assert 'Aborted 0 stale transfers' in out.getvalue()

    def test_dry_run(self, coordinator, storage, user):
        """Test dry run lists transfers without aborting them."""
        transfer = coordinator.begin(user, 20, 8, 'old.bin')
        _age(transfer, days=30)

        out = StringIO()
        call_command('cleanup_stale_transfers', '--dry-run', stdout=out)

        transfer.refresh_from_db()
        assert transfer.is_open
        assert len(_open_sessions(storage)) == 1
        output = out.getvalue()
        assert f'Would abort: {transfer.storage_key}' in output
        assert 'Would abort 1 stale transfers' in output

    def test_batch_size(self, coordinator, user):
        """Test the oldest transfers go first, up to the batch size."""
        oldest = coordinator.begin(user, 20, 8, 'first.bin')
        newer = coordinator.begin(user, 20, 8, 'second.bin')
        _age(oldest, days=30)
        _age(newer, days=20)

        out = StringIO()
        call_command('cleanup_stale_transfers', '--batch-size=1', stdout=out)

        oldest.refresh_from_db()
        newer.refresh_from_db()
        assert oldest.status == TransferStatus.ABORTED
        assert newer.is_open
        assert 'Aborted 1 stale transfers' in out.getvalue()

    def test_older_than_overrides_ttl(self, coordinator, user, settings):
        """Test --older-than replaces the configured TTL."""
        settings.TRANSFER_STALE_TTL = 7 * 24 * 60 * 60
        transfer = coordinator.begin(user, 20, 8, 'old.bin')
        _age(transfer, hours=2)

        out = StringIO()
        call_command('cleanup_stale_transfers', '--older-than=3600', stdout=out)

        transfer.refresh_from_db()
        assert transfer.status == TransferStatus.ABORTED
        assert 'older than 3600 seconds' in out.getvalue()
