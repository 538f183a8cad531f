"""Signed URL issuance for direct client access to the object store.

Clients download and upload bytes straight against the store with a
time-limited URL, so payloads never pass through the application. The
issuer keeps no state: a grant depends only on the key, the operation,
the lifetime, the signing credentials and the current time.
"""

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, final

from django.core.files.storage import default_storage
from django.utils import timezone

from server.apps.transfers.exceptions import InvalidExpiryError, NotFoundError
from server.apps.transfers.infrastructure.metadata import build_storage_key
from server.apps.transfers.logic.limits import TransferLimits

if TYPE_CHECKING:
    from server.apps.transfers.infrastructure.storage import TransferStorage

# User type for Django's dynamic user model
_User = Any

logger = logging.getLogger(__name__)


class GrantOperation(enum.StrEnum):
    """The single operation a signed URL allows."""

    GET = 'get'
    PUT = 'put'


@final
@dataclass(frozen=True, slots=True)
class AccessGrant:
    """A signed URL and what it allows. Never persisted."""

    url: str
    key: str
    operation: GrantOperation
    principal_id: int
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, moment: datetime) -> bool:
        """Check whether the store would reject the URL at ``moment``.

        Args:
            moment: Point in time to check.

        Returns:
            True once the lifetime has elapsed.
        """
        return moment >= self.expires_at


@final
class SignedUrlIssuer:
    """Issues single-operation, single-key signed URLs."""

    def __init__(
        self,
        storage: 'TransferStorage',
        limits: TransferLimits,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        """Initialize the issuer.

        Args:
            storage: Object store backend holding the signing credentials.
            limits: Allowed URL lifetimes.
            clock: Source of the current time.
        """
        self._storage = storage
        self._limits = limits
        self._clock = clock

    def issue_download_url(
        self,
        user: _User,
        key: str,
        expires_in: int,
    ) -> AccessGrant:
        """Sign a GET URL for an existing object.

        Existence is checked with a HEAD probe, the object is not read.

        Args:
            user: Caller, owner of the namespace.
            key: Object key relative to the user's namespace.
            expires_in: URL lifetime in seconds.

        Returns:
            Grant for reading the object.

        Raises:
            InvalidExpiryError: If the lifetime is out of range.
            KeyScopeError: If the key escapes the user's namespace.
            NotFoundError: If the object does not exist.
        """
        self._validate_expiry(expires_in)
        storage_key = build_storage_key(user.id, key)

        if self._storage.probe(storage_key) is None:
            logger.warning('Download URL requested for missing key: %s', storage_key)
            raise NotFoundError(f'Object {key} not found')

        return self._issue(user, key, storage_key, GrantOperation.GET, expires_in)

    def issue_upload_url(
        self,
        user: _User,
        key: str,
        expires_in: int,
    ) -> AccessGrant:
        """Sign a PUT URL; the object need not exist yet.

        Args:
            user: Caller, owner of the namespace.
            key: Object key relative to the user's namespace.
            expires_in: URL lifetime in seconds.

        Returns:
            Grant for writing the object.

        Raises:
            InvalidExpiryError: If the lifetime is out of range.
            KeyScopeError: If the key escapes the user's namespace.
        """
        self._validate_expiry(expires_in)
        storage_key = build_storage_key(user.id, key)
        return self._issue(user, key, storage_key, GrantOperation.PUT, expires_in)

    def _validate_expiry(self, expires_in: int) -> None:
        """Check a URL lifetime against the configured window.

        Both bounds are inclusive.

        Args:
            expires_in: Requested lifetime in seconds.

        Raises:
            InvalidExpiryError: If the lifetime is outside the window.
        """
        if not (
            self._limits.min_url_expiry
            <= expires_in
            <= self._limits.max_url_expiry
        ):
            raise InvalidExpiryError(
                expires_in=expires_in,
                min_expiry=self._limits.min_url_expiry,
                max_expiry=self._limits.max_url_expiry,
            )

    def _issue(
        self,
        user: _User,
        key: str,
        storage_key: str,
        operation: GrantOperation,
        expires_in: int,
    ) -> AccessGrant:
        """Sign a URL and describe what it grants.

        Args:
            user: Principal the grant is issued to.
            key: Key as the caller named it.
            storage_key: Key inside the user's namespace.
            operation: The single operation the URL allows.
            expires_in: URL lifetime in seconds, already validated.

        Returns:
            Grant whose expiry matches the lifetime signed into the URL.
        """
        issued_at = self._clock()
        url = self._storage.presigned_url(storage_key, operation, expires_in)
        logger.info(
            'Issued %s URL for %s (expires in %ds)',
            operation,
            storage_key,
            expires_in,
        )
        return AccessGrant(
            url=url,
            key=key,
            operation=operation,
            principal_id=user.id,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=expires_in),
        )


def get_issuer() -> SignedUrlIssuer:
    """Build an issuer from Django settings.

    Returns:
        Issuer using the default storage backend.
    """
    return SignedUrlIssuer(
        storage=default_storage,  # type: ignore[arg-type]
        limits=TransferLimits.from_settings(),
    )
