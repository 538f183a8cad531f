"""Signal handlers for transfers app."""

import logging

from django.core.files.storage import default_storage
from django.db.models.signals import post_delete
from django.dispatch import receiver

from server.apps.transfers.exceptions import NotFoundError
from server.apps.transfers.models import Transfer

logger = logging.getLogger(__name__)


@receiver(post_delete, sender=Transfer)
def release_multipart_session(
    sender: type[Transfer],
    instance: Transfer,
    **kwargs: object,
) -> None:
    """Abort the multipart session of an open transfer that was deleted.

    Part records go away with the row (cascade), but the store keeps
    uploaded parts until the session is aborted. This covers deletes
    through the admin, the ORM or a cascading user delete.

    Args:
        sender: The Transfer model class.
        instance: The Transfer instance being deleted.
        **kwargs: Additional signal arguments.
    """
    if not instance.is_open or not instance.upload_id:
        return

    logger.info(
        'Releasing multipart session after DB delete: %s',
        instance.storage_key,
    )

    try:
        default_storage.abort_multipart_upload(
            instance.storage_key,
            instance.upload_id,
        )
    except NotFoundError:
        logger.warning(
            'Multipart session not found (already released?): %s',
            instance.storage_key,
        )
    except Exception:
        # Log error but don't raise - DB delete already succeeded
        logger.exception(
            'Failed to release multipart session (orphaned parts): %s',
            instance.storage_key,
        )
