"""Root URL configuration.

Transfers are driven through the coordinator from application code,
only the admin is exposed over HTTP here.
"""

from django.contrib import admin
from django.urls import path

urlpatterns = [
    path('admin/', admin.site.urls),
]
