"""Django app configuration for transfers app."""

from typing import override

from django.apps import AppConfig


class TransfersConfig(AppConfig):
    """Configuration for transfers app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'server.apps.transfers'
    verbose_name = 'Transfers'

    @override
    def ready(self) -> None:
        """Import signal handlers when app is ready."""
        from server.apps.transfers import signals  # noqa: F401
