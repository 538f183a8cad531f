"""Shared fixtures for transfers app tests."""

import boto3
import pytest
from django.conf import settings as django_settings
from django.contrib.auth import get_user_model
from moto import mock_aws

from server.apps.transfers.infrastructure.storage import TransferStorage
from server.apps.transfers.logic.coordinator import TransferCoordinator
from server.apps.transfers.logic.limits import TransferLimits
from server.apps.transfers.logic.retry import RetryPolicy
from server.apps.transfers.logic.signing import SignedUrlIssuer

User = get_user_model()

BUCKET_NAME = django_settings.STORAGES['default']['OPTIONS']['bucket_name']


@pytest.fixture
def user(db):
    """Create test user.

    Returns:
        User instance for testing.
    """
    return User.objects.create_user(
        username='testuser',
        password='testpass123',
        email='test@example.com',
    )


@pytest.fixture
def other_user(db):
    """Create second test user for isolation tests.

    Returns:
        Second user instance.
    """
    return User.objects.create_user(
        username='otheruser',
        password='testpass123',
        email='other@example.com',
    )


@pytest.fixture
def mock_s3():
    """Mock S3 service with the transfers bucket.

    Yields:
        boto3 S3 resource with the bucket created.
    """
    with mock_aws():
        conn = boto3.resource('s3', region_name='us-east-1')
        conn.create_bucket(Bucket=BUCKET_NAME)

        yield conn


@pytest.fixture
def storage(mock_s3):
    """Storage backend configured like the default one.

    Returns:
        TransferStorage bound to the mocked bucket.
    """
    return TransferStorage(**django_settings.STORAGES['default']['OPTIONS'])


@pytest.fixture
def limits():
    """Limits with tiny parts allowed and a small maximum part size.

    Returns:
        TransferLimits for testing.
    """
    return TransferLimits(
        min_part_size=1,
        max_part_size=16 * 1024 * 1024,
        max_part_count=100,
        max_url_expiry=7 * 24 * 60 * 60,
        stale_transfer_ttl=24 * 60 * 60,
    )


@pytest.fixture
def sleeps():
    """Collects backoff delays instead of sleeping.

    Returns:
        List the retry policy appends delays to.
    """
    return []


@pytest.fixture
def retry_policy(sleeps):
    """Retry policy that records delays.

    Returns:
        RetryPolicy with three attempts.
    """
    return RetryPolicy(
        max_attempts=3,
        base_delay=0.1,
        max_delay=1.0,
        sleep=sleeps.append,
    )


@pytest.fixture
def coordinator(storage, limits, retry_policy):
    """Coordinator wired to the mocked bucket.

    Returns:
        TransferCoordinator for testing.
    """
    return TransferCoordinator(
        storage=storage,
        limits=limits,
        retry_policy=retry_policy,
    )


@pytest.fixture
def issuer(storage, limits):
    """URL issuer wired to the mocked bucket.

    Returns:
        SignedUrlIssuer for testing.
    """
    return SignedUrlIssuer(storage=storage, limits=limits)
