"""Exceptions for transfers app."""

from collections.abc import Sequence


class TransferError(Exception):
    """Base class for every error raised by the transfers app."""


class InvalidSizeError(TransferError):
    """Raised when a declared size or a part length is not acceptable."""

    def __init__(self, message: str, size_bytes: int | None = None) -> None:
        """Initialize InvalidSizeError.

        Args:
            message: Human readable reason.
            size_bytes: The rejected size, None when the object store
                rejected a part without naming it.
        """
        self.size_bytes = size_bytes
        super().__init__(message)


class InvalidExpiryError(TransferError):
    """Raised when a signed URL lifetime is outside the allowed window."""

    def __init__(
        self,
        expires_in: int,
        min_expiry: int,
        max_expiry: int,
    ) -> None:
        """Initialize InvalidExpiryError.

        Args:
            expires_in: Requested lifetime in seconds.
            min_expiry: Smallest accepted lifetime in seconds.
            max_expiry: Largest accepted lifetime in seconds.
        """
        self.expires_in = expires_in
        self.min_expiry = min_expiry
        self.max_expiry = max_expiry
        super().__init__(
            f'Expiry must be between {min_expiry} and {max_expiry} '
            f'seconds, got {expires_in}',
        )


class InvalidPartError(TransferError):
    """Raised when a part index is outside ``1..expected_part_count``."""

    def __init__(self, part_index: int, expected_part_count: int) -> None:
        """Initialize InvalidPartError.

        Args:
            part_index: The rejected part index.
            expected_part_count: Number of parts the transfer expects.
        """
        self.part_index = part_index
        self.expected_part_count = expected_part_count
        super().__init__(
            f'Part index {part_index} is outside 1..{expected_part_count}',
        )


class ChecksumMismatchError(TransferError):
    """Raised when uploaded bytes do not hash to the declared checksum."""

    def __init__(self, declared: str, actual: str) -> None:
        """Initialize ChecksumMismatchError.

        Args:
            declared: Checksum sent by the client.
            actual: Checksum computed from the received bytes.
        """
        self.declared = declared
        self.actual = actual
        super().__init__(
            f'Declared checksum {declared} does not match content ({actual})',
        )


class PartConflictError(TransferError):
    """Raised when a stored part is re-uploaded with different content."""

    def __init__(
        self,
        part_index: int,
        stored_checksum: str,
        received_checksum: str,
    ) -> None:
        """Initialize PartConflictError.

        Args:
            part_index: Index of the conflicting part.
            stored_checksum: Checksum of the part already stored.
            received_checksum: Checksum of the rejected upload.
        """
        self.part_index = part_index
        self.stored_checksum = stored_checksum
        self.received_checksum = received_checksum
        super().__init__(
            f'Part {part_index} is already stored with checksum '
            f'{stored_checksum}, refusing {received_checksum}',
        )


class IncompleteTransferError(TransferError):
    """Raised when completing a transfer that still misses parts."""

    def __init__(self, transfer_id: object, missing_parts: Sequence[int]) -> None:
        """Initialize IncompleteTransferError.

        Args:
            transfer_id: Identifier of the transfer.
            missing_parts: Part indices that are not stored yet.
        """
        self.transfer_id = transfer_id
        self.missing_parts = list(missing_parts)
        missing = ', '.join(str(index) for index in self.missing_parts)
        super().__init__(
            f'Transfer {transfer_id} is missing parts: {missing}',
        )


class NotFoundError(TransferError):
    """Raised when a transfer, upload session or object does not exist."""


class TransferClosedError(TransferError):
    """Raised when writing parts to a transfer that is already completed."""


class KeyScopeError(TransferError):
    """Raised when a storage key escapes the caller's namespace."""


class StoreUnavailableError(TransferError):
    """Raised when the object store or the database fails transiently."""

    def __init__(self, operation: str, key: str) -> None:
        """Initialize StoreUnavailableError.

        Args:
            operation: Name of the failed operation.
            key: Storage key or transfer the operation targeted.
        """
        self.operation = operation
        self.key = key
        super().__init__(f'Object store unavailable during {operation}: {key}')


class QuotaExceededError(TransferError):
    """Raised when a transfer would exceed user's storage quota."""

    def __init__(
        self,
        quota_bytes: int,
        used_bytes: int,
        required_bytes: int,
    ) -> None:
        """Initialize QuotaExceededError.

        Args:
            quota_bytes: Total quota limit in bytes.
            used_bytes: Committed plus reserved bytes.
            required_bytes: Bytes needed for the operation.
        """
        self.quota_bytes = quota_bytes
        self.used_bytes = used_bytes
        self.required_bytes = required_bytes

        available = quota_bytes - used_bytes
        super().__init__(
            f'Quota exceeded: need {required_bytes} bytes, '
            f'only {available} bytes available '
            f'(quota: {quota_bytes}, used: {used_bytes})',
        )
