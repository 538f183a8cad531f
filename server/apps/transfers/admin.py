"""Django admin configuration for transfers app."""

from django.contrib import admin
from django.db.models import QuerySet
from django.http import HttpRequest
from django.utils.html import format_html

from server.apps.transfers.models import (
    PartRecord,
    PartStatus,
    Transfer,
    TransferStatus,
    UserQuota,
)


def _format_bytes(size_bytes: int) -> str:
    """Format bytes in human-readable format.

    Args:
        size_bytes: Size in bytes.

    Returns:
        Formatted size string (e.g., '1.5 MB', '234 KB').
    """
    if size_bytes < 1024:
        return f'{size_bytes} B'
    if size_bytes < 1024 * 1024:  # noqa: WPS531
        return f'{size_bytes / 1024:.1f} KB'
    if size_bytes < 1024 * 1024 * 1024:  # noqa: WPS531
        return f'{size_bytes / (1024 * 1024):.1f} MB'
    return f'{size_bytes / (1024 * 1024 * 1024):.1f} GB'


class PartRecordInline(admin.TabularInline):  # type: ignore[type-arg]
    """Read-only list of a transfer's parts."""

    model = PartRecord
    extra = 0
    can_delete = False
    fields = [
        'part_index',
        'byte_offset',
        'size_bytes',
        'status',
        'checksum_sha256',
        'part_token',
        'stored_at',
    ]
    readonly_fields = fields

    def has_add_permission(
        self,
        request: HttpRequest,
        obj: Transfer | None = None,
    ) -> bool:
        """Parts are only created by the coordinator."""
        return False


_STATUS_COLORS = {
    TransferStatus.INITIATED: '#6c757d',
    TransferStatus.IN_PROGRESS: '#ffc107',
    TransferStatus.COMPLETED: '#28a745',
    TransferStatus.ABORTED: '#dc3545',
}


@admin.register(Transfer)
class TransferAdmin(admin.ModelAdmin[Transfer]):
    """Admin interface for Transfer model."""

    list_display = [
        'storage_key',
        'user',
        'size_display',
        'progress_display',
        'status_display',
        'created_at',
        'modified_at',
    ]

    list_filter = [
        'status',
        'created_at',
        'user',
    ]

    search_fields = [
        'storage_key',
        'upload_id',
    ]

    readonly_fields = [
        'id',
        'user',
        'target_key',
        'storage_key',
        'total_size',
        'part_size',
        'status',
        'upload_id',
        'committed_etag',
        'committed_size',
        'created_at',
        'modified_at',
        'completed_at',
    ]

    fieldsets = (
        ('Transfer', {
            'fields': ('id', 'user', 'target_key', 'storage_key', 'status'),
        }),
        ('Layout', {
            'fields': ('total_size', 'part_size'),
        }),
        ('Object Store', {
            'fields': ('upload_id', 'committed_etag', 'committed_size'),
        }),
        ('Timestamps', {
            'fields': ('created_at', 'modified_at', 'completed_at'),
        }),
    )

    inlines = [PartRecordInline]

    def size_display(self, obj: Transfer) -> str:
        """Display declared size in human-readable format.

        Args:
            obj: Transfer instance.

        Returns:
            Formatted size string.
        """
        return _format_bytes(obj.total_size)
    size_display.short_description = 'Size'  # type: ignore[attr-defined]

    def progress_display(self, obj: Transfer) -> str:
        """Display stored parts out of expected parts.

        Args:
            obj: Transfer instance.

        Returns:
            Progress string (e.g., '3/10').
        """
        stored = obj.parts.filter(status=PartStatus.STORED).count()
        return f'{stored}/{obj.expected_part_count}'
    progress_display.short_description = 'Parts'  # type: ignore[attr-defined]

    def status_display(self, obj: Transfer) -> str:
        """Display colored status label.

        Args:
            obj: Transfer instance.

        Returns:
            HTML formatted status.
        """
        return format_html(
            '<span style="color: {color}; font-weight: bold;">'
            '{status}</span>',
            color=_STATUS_COLORS.get(obj.status, '#000000'),
            status=obj.get_status_display(),
        )
    status_display.short_description = 'Status'  # type: ignore[attr-defined]

    def get_queryset(self, request: HttpRequest) -> QuerySet[Transfer]:
        """Optimize queryset with select_related.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return super().get_queryset(request).select_related('user')


@admin.register(UserQuota)
class UserQuotaAdmin(admin.ModelAdmin[UserQuota]):
    """Admin interface for UserQuota model."""

    list_display = [
        'user',
        'quota_display',
        'used_display',
        'percentage_display',
    ]

    search_fields = [
        'user__username',
        'user__email',
    ]

    readonly_fields = [
        'user',
        'used_bytes',
    ]

    def quota_display(self, obj: UserQuota) -> str:
        """Display quota in human-readable format.

        Args:
            obj: UserQuota instance.

        Returns:
            Formatted quota string.
        """
        return _format_bytes(obj.quota_bytes)
    quota_display.short_description = 'Quota'  # type: ignore[attr-defined]

    def used_display(self, obj: UserQuota) -> str:
        """Display used bytes in human-readable format.

        Args:
            obj: UserQuota instance.

        Returns:
            Formatted used bytes string.
        """
        return _format_bytes(obj.used_bytes)
    used_display.short_description = 'Used'  # type: ignore[attr-defined]

    def percentage_display(self, obj: UserQuota) -> str:
        """Display percentage of quota used.

        Args:
            obj: UserQuota instance.

        Returns:
            Percentage string.
        """
        if obj.quota_bytes == 0:
            return '0%'
        percentage = (obj.used_bytes / obj.quota_bytes) * 100
        return f'{percentage:.1f}%'
    percentage_display.short_description = '%'  # type: ignore[attr-defined]

    def get_queryset(self, request: HttpRequest) -> QuerySet[UserQuota]:
        """Optimize queryset with select_related.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return super().get_queryset(request).select_related('user')
