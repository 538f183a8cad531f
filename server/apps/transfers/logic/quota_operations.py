"""Business logic for storage quota operations."""

import logging
from typing import Any

from django.db import transaction
from django.db.models import F, Sum  # noqa: WPS347

from server.apps.transfers.exceptions import QuotaExceededError
from server.apps.transfers.models import OPEN_STATUSES, Transfer, UserQuota

# User type for Django's dynamic user model
_User = Any

# Field name constant to avoid string literal over-use
_USED_BYTES_FIELD = 'used_bytes'  # noqa: WPS226

logger = logging.getLogger(__name__)


def get_or_create_quota(user: _User) -> UserQuota:
    """Get or create quota for user (on-demand creation).

    Args:
        user: User to get quota for.

    Returns:
        UserQuota instance for the user.
    """
    quota, created = UserQuota.objects.get_or_create(user=user)
    if created:
        logger.info(
            'Created quota for user %s: %d bytes',
            user.username,
            quota.quota_bytes,
        )
    return quota


def reserved_bytes(user: _User) -> int:
    """Sum of declared sizes of the user's open transfers.

    Args:
        user: Owner of the transfers.

    Returns:
        Bytes promised to transfers that have not completed yet.
    """
    total = Transfer.objects.filter(
        user=user,
        status__in=OPEN_STATUSES,
    ).aggregate(total=Sum('total_size'))['total']
    return total or 0


def check_quota(user: _User, size_bytes: int) -> None:
    """Check if user has enough quota for a new transfer.

    Committed usage and the declared sizes of open transfers both
    count against the limit. Creates quota on-demand.

    Args:
        user: User to check quota for.
        size_bytes: Declared size of the new transfer.

    Raises:
        QuotaExceededError: If the transfer would exceed quota.
    """
    quota = get_or_create_quota(user)
    reserved = reserved_bytes(user)

    if not quota.has_space_for(size_bytes, reserved_bytes=reserved):
        logger.warning(
            'Quota exceeded for user %s: need %d, have %d available',
            user.username,
            size_bytes,
            quota.available_bytes(reserved_bytes=reserved),
        )
        raise QuotaExceededError(
            quota_bytes=quota.quota_bytes,
            used_bytes=quota.used_bytes + reserved,
            required_bytes=size_bytes,
        )


def increment_usage(user: _User, size_bytes: int) -> None:
    """Atomically increment user's committed storage usage.

    Args:
        user: User to increment usage for.
        size_bytes: Bytes to add to usage.
    """
    with transaction.atomic():
        updated = UserQuota.objects.filter(user=user).update(
            used_bytes=F(_USED_BYTES_FIELD) + size_bytes,
        )

        if updated == 0:
            # Quota doesn't exist yet, create it
            quota = get_or_create_quota(user)
            quota.used_bytes = size_bytes
            quota.save(update_fields=[_USED_BYTES_FIELD])

    logger.debug(
        'Incremented usage for user %s by %d bytes',
        user.username,
        size_bytes,
    )
