"""Core Django settings: apps, middleware, database, i18n."""

from typing import Final

from decouple import Csv

from server.settings.components import BASE_DIR, config

SECRET_KEY = config('DJANGO_SECRET_KEY', default='insecure-development-key')

DEBUG = config('DJANGO_DEBUG', cast=bool, default=False)

ALLOWED_HOSTS = config(
    'DJANGO_ALLOWED_HOSTS',
    cast=Csv(),
    default='localhost,127.0.0.1',
)

INSTALLED_APPS: Final = (
    # Default django apps:
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Our apps:
    'server.apps.transfers',
)

MIDDLEWARE: Final = (
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
)

ROOT_URLCONF = 'server.urls'

TEMPLATES: Final = [{
    'BACKEND': 'django.template.backends.django.DjangoTemplates',
    'APP_DIRS': True,
    'OPTIONS': {
        'context_processors': [
            'django.template.context_processors.request',
            'django.contrib.auth.context_processors.auth',
            'django.contrib.messages.context_processors.messages',
        ],
    },
}]

# SQLite keeps local runs and the test suite self-contained,
# PostgreSQL is selected with DJANGO_DATABASE_ENGINE
_DATABASE_ENGINE: Final = config(
    'DJANGO_DATABASE_ENGINE',
    default='django.db.backends.sqlite3',
)

if _DATABASE_ENGINE == 'django.db.backends.sqlite3':
    DATABASES = {
        'default': {
            'ENGINE': _DATABASE_ENGINE,
            'NAME': config(
                'DJANGO_DATABASE_NAME',
                default=str(BASE_DIR.joinpath('db.sqlite3')),
            ),
        },
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': _DATABASE_ENGINE,
            'NAME': config('POSTGRES_DB', default='transfers'),
            'USER': config('POSTGRES_USER', default='transfers'),
            'PASSWORD': config('POSTGRES_PASSWORD', default=''),
            'HOST': config('DJANGO_DATABASE_HOST', default='localhost'),
            'PORT': config('DJANGO_DATABASE_PORT', cast=int, default=5432),
            'CONN_MAX_AGE': config('CONN_MAX_AGE', cast=int, default=60),
        },
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True

STATIC_URL = '/static/'
