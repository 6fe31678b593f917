"""
Pytest configuration and fixtures for all tests.
"""

import copy
import itertools
import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

# Add src to Python path before any imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

# Set up test environment variables before importing any modules
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-east-1')
os.environ.setdefault('TABLE_NAME', 'test-table')
os.environ.setdefault('ENVIRONMENT', 'test')

from domain.models import DnsRecord, SesStatusInfo
from domain.sender_manager import SenderLifecycleManager
from repositories import DomainRepository, SenderRepository
from services.dynamodb import ConditionalCheckFailed

TENANT_ID = 'tenant-1'
FIXED_NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeStore:
    """
    In-memory stand-in for DynamoDBStore.

    Honors Condition (exists / equals) the way DynamoDB condition expressions
    would. Partition queries read the live items; the identity index is keyed
    by the GSI2PK attribute.
    """

    def __init__(self):
        self.items = {}
        self.fail_puts_for = set()

    @staticmethod
    def _key(key):
        return (key['pk'], key['sk'])

    def _check(self, key, condition):
        if condition is None:
            return
        current = self.items.get(self._key(key))
        if condition.exists is True and current is None:
            raise ConditionalCheckFailed("item missing")
        if condition.exists is False and current is not None:
            raise ConditionalCheckFailed("item exists")
        for name, value in condition.equals.items():
            if current is None or current.get(name) != value:
                raise ConditionalCheckFailed(f"{name} mismatch")

    def put_item(self, key, attributes, condition=None):
        if key['sk'] in self.fail_puts_for:
            raise ConditionalCheckFailed("injected failure")
        self._check(key, condition)
        item = copy.deepcopy(attributes)
        item.update(key)
        self.items[self._key(key)] = item

    def get_item(self, key):
        item = self.items.get(self._key(key))
        return copy.deepcopy(item) if item is not None else None

    def query_partition(self, pk, sk_prefix):
        return [
            copy.deepcopy(item) for (item_pk, item_sk), item in self.items.items()
            if item_pk == pk and item_sk.startswith(sk_prefix)
        ]

    def query_by_index(self, index_value):
        return [
            copy.deepcopy(item) for item in self.items.values()
            if item.get('GSI2PK') == index_value
        ]

    def delete_item(self, key, condition=None):
        self._check(key, condition)
        self.items.pop(self._key(key), None)

    def update_item(self, key, set_values=None, add_values=None, condition=None):
        self._check(key, condition)
        item = self.items.setdefault(self._key(key), dict(key))
        item.update(set_values or {})
        for name, value in (add_values or {}).items():
            item[name] = item.get(name, 0) + value
        return copy.deepcopy(item)


class LaggingIndexStore(FakeStore):
    """FakeStore whose identity index has not caught up with any write yet."""

    def query_by_index(self, index_value):
        return []


class FixedClock:
    """Controllable clock for timestamps and timeout checks."""

    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_verifier():
    verifier = MagicMock()
    verifier.identity_arn.side_effect = lambda identity: f"arn:aws:ses:us-east-1:123456789012:identity/{identity}"
    verifier.initiate_mailbox_verification.side_effect = (
        lambda email, tenant_id: f"arn:aws:ses:us-east-1:123456789012:identity/{email}"
    )
    verifier.initiate_domain_verification.side_effect = lambda domain, tenant_id: (
        [
            DnsRecord(
                name=f"tok1._domainkey.{domain}",
                record_type='CNAME',
                value='tok1.dkim.amazonses.com',
                description='DKIM token 1 for email authentication',
            )
        ],
        f"arn:aws:ses:us-east-1:123456789012:identity/{domain}",
    )
    verifier.poll_verification_status.return_value = SesStatusInfo(verification_status='pending')
    return verifier


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def lagging_store():
    return LaggingIndexStore()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def verifier():
    return make_verifier()


@pytest.fixture
def events():
    return MagicMock()


@pytest.fixture
def scheduler():
    return MagicMock()


def build_manager(store, clock, verifier=None, events=None, scheduler=None, id_prefix='sender'):
    """Manager over the given store with mocked collaborators."""
    counter = itertools.count(1)
    return SenderLifecycleManager(
        senders=SenderRepository(store, clock=clock),
        domains=DomainRepository(store, clock=clock),
        verifier=verifier or make_verifier(),
        events=events or MagicMock(),
        scheduler=scheduler or MagicMock(),
        clock=clock,
        verification_timeout=timedelta(hours=24),
        id_factory=lambda: f"{id_prefix}-{next(counter)}",
    )


@pytest.fixture
def manager(store, clock, verifier, events, scheduler):
    return build_manager(store, clock, verifier, events, scheduler)


@pytest.fixture
def manager_factory():
    return build_manager
