"""Configured limits for transfers and signed URLs."""

from dataclasses import dataclass
from typing import Final, Self, final

from django.conf import settings

_MIN_URL_EXPIRY: Final = 1


@final
@dataclass(frozen=True, slots=True)
class TransferLimits:
    """Size and lifetime limits passed explicitly into components."""

    min_part_size: int
    max_part_size: int
    max_part_count: int
    max_url_expiry: int
    stale_transfer_ttl: int
    min_url_expiry: int = _MIN_URL_EXPIRY

    @classmethod
    def from_settings(cls) -> Self:
        """Build limits from Django settings.

        Returns:
            Limits configured in ``components/transfers.py``.
        """
        return cls(
            min_part_size=settings.TRANSFER_MIN_PART_SIZE,
            max_part_size=settings.TRANSFER_MAX_PART_SIZE,
            max_part_count=settings.TRANSFER_MAX_PART_COUNT,
            max_url_expiry=settings.TRANSFER_MAX_URL_EXPIRY,
            stale_transfer_ttl=settings.TRANSFER_STALE_TTL,
        )
