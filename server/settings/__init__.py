"""Django settings for the transfer server.

Settings are split into components and assembled with django-split-settings.
Every component reads the environment through ``config`` from
``server.settings.components``.
"""

import django_stubs_ext
from split_settings.tools import include

# Enables runtime subscripting such as ``admin.ModelAdmin[Transfer]``
django_stubs_ext.monkeypatch()

include(
    'components/common.py',
    'components/logging.py',
    'components/storages.py',
    'components/transfers.py',
)
