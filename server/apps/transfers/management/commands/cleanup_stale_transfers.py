"""Management command to abort transfers that were never finished."""

import logging
from datetime import timedelta
from typing import Any, Final

from django.core.management.base import BaseCommand
from django.utils import timezone

from server.apps.transfers.logic.coordinator import get_coordinator
from server.apps.transfers.logic.limits import TransferLimits
from server.apps.transfers.models import (
    OPEN_STATUSES,
    Transfer,
    TransferStatus,
)

_DEFAULT_BATCH_SIZE: Final = 1000

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Abort open transfers with no activity for longer than the TTL."""

    help = 'Abort initiated/in-progress transfers past TRANSFER_STALE_TTL'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be aborted without aborting',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=_DEFAULT_BATCH_SIZE,
            help=f'Max transfers to process (default: {_DEFAULT_BATCH_SIZE})',
        )
        parser.add_argument(
            '--older-than',
            type=int,
            default=None,
            help='Inactivity in seconds (default: TRANSFER_STALE_TTL)',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the sweep.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        dry_run = options['dry_run']
        batch_size = options['batch_size']
        ttl = options['older_than']
        if ttl is None:
            ttl = TransferLimits.from_settings().stale_transfer_ttl

        cutoff = timezone.now() - timedelta(seconds=ttl)

        self.stdout.write(
            f'Looking for open transfers inactive since {cutoff} '
            f'(older than {ttl} seconds)',
        )

        stale_transfers = Transfer.objects.filter(
            status__in=OPEN_STATUSES,
            modified_at__lte=cutoff,
        ).select_related('user').order_by('modified_at')[:batch_size]

        coordinator = get_coordinator()
        count = 0
        failed = 0

        for stale in stale_transfers:
            if dry_run:
                self.stdout.write(
                    f'Would abort: {stale.storage_key} '
                    f'(user: {stale.user.username}, '
                    f'last activity: {stale.modified_at})',
                )
                count += 1
                continue

            coordinator.abort(stale.user, stale.pk)
            # abort never raises, its outcome is read back from the row
            if Transfer.objects.filter(
                pk=stale.pk,
                status=TransferStatus.ABORTED,
            ).exists():
                count += 1
                logger.info(
                    'Aborted stale transfer: %s (ID: %s)',
                    stale.storage_key,
                    stale.pk,
                )
            else:
                self.stderr.write(f'Failed to abort {stale.pk}')
                failed += 1

        if dry_run:
            self.stdout.write(
                self.style.SUCCESS(f'Would abort {count} stale transfers'),
            )
        else:
            self.stdout.write(
                self.style.SUCCESS(
                    f'Aborted {count} stale transfers, {failed} failed',
                ),
            )
