"""
Sender repository.

Tenant-scoped CRUD over sender records, plus the per-tenant version item that
serializes multi-record sender mutations (create, delete with default
promotion, default flips) through conditional writes.
"""

import logging
from typing import Callable, Dict, List, Optional

from domain.errors import ConflictError, InternalError, NotFoundError
from domain.models import KeyPatterns, Sender, to_iso, utc_now
from services.dynamodb import Condition, ConditionalCheckFailed

logger = logging.getLogger(__name__)


class SenderRepository:
    """CRUD and listing of a tenant's senders."""

    def __init__(self, store, clock: Callable = utc_now):
        self.store = store
        self.clock = clock

    def create(self, sender: Sender) -> Sender:
        """
        Persist a new sender. Never overwrites.

        Raises:
            ConflictError: If a sender with the same key already exists
        """
        now = to_iso(self.clock())
        record = sender.copy(created_at=now, updated_at=now)
        try:
            self.store.put_item(record.key(), record.to_item(), Condition(exists=False))
        except ConditionalCheckFailed:
            raise ConflictError("Sender already exists")

        logger.info(f"Created sender: tenant_id={record.tenant_id}, sender_id={record.sender_id}")
        return record

    def get_by_id(self, tenant_id: str, sender_id: str) -> Sender:
        """
        Fetch a sender owned by the tenant.

        Raises:
            NotFoundError: If absent or owned by another tenant
        """
        item = self.store.get_item({'pk': tenant_id, 'sk': KeyPatterns.sender(sender_id)})
        if not item:
            raise NotFoundError("Sender not found")

        sender = Sender.from_item(item)
        if sender.tenant_id != tenant_id:
            logger.warning(
                f"Cross-tenant sender access denied: tenant_id={tenant_id}, sender_id={sender_id}"
            )
            raise NotFoundError("Sender not found")
        return sender

    def list_by_tenant(self, tenant_id: str) -> List[Sender]:
        """
        List a tenant's senders. No ordering is guaranteed.

        Reads the tenant's partition with a strongly consistent query, so
        quota counts and default flags reflect every acknowledged write.
        Items that cannot be decoded are logged and skipped.
        """
        items = self.store.query_partition(tenant_id, KeyPatterns.SENDER_PREFIX)
        return [
            sender for sender in self._decode(items)
            if sender.tenant_id == tenant_id
        ]

    def find_by_identity(self, email: str) -> List[Sender]:
        """
        Mailbox senders of every tenant registered for an SES email identity.

        Served by the identity index, which may briefly lag recent writes.
        """
        return self._decode(self.store.query_by_index(KeyPatterns.identity(email)))

    @staticmethod
    def _decode(items) -> List[Sender]:
        senders = []
        for item in items:
            sk = item.get('sk', '')
            if sk == KeyPatterns.SENDER_VERSION_SK or not sk.startswith(KeyPatterns.SENDER_PREFIX):
                continue
            try:
                senders.append(Sender.from_item(item))
            except InternalError as e:
                logger.error(f"Failed to deserialize sender record: sk={sk}, error={e}")
        return senders

    def update(self, sender: Sender, expected: Optional[Dict[str, object]] = None) -> Sender:
        """
        Replace an existing sender record.

        Args:
            sender: New state of the sender
            expected: Attribute values the stored record must still have
                (e.g. {'verificationStatus': 'pending'})

        Raises:
            NotFoundError: If the sender no longer exists
            ConflictError: If the stored record no longer matches `expected`
        """
        record = sender.copy(updated_at=to_iso(self.clock()))
        condition = Condition(exists=True, equals=dict(expected or {}))
        try:
            self.store.put_item(record.key(), record.to_item(), condition)
        except ConditionalCheckFailed:
            if not expected:
                raise NotFoundError("Sender not found")
            raise ConflictError("Sender was modified concurrently, please retry")
        return record

    def delete(self, tenant_id: str, sender_id: str) -> None:
        """
        Delete a sender owned by the tenant.

        Raises:
            NotFoundError: If absent or owned by another tenant
        """
        sender = self.get_by_id(tenant_id, sender_id)
        try:
            self.store.delete_item(sender.key(), Condition(exists=True))
        except ConditionalCheckFailed:
            raise NotFoundError("Sender not found")
        logger.info(f"Deleted sender: tenant_id={tenant_id}, sender_id={sender_id}")

    def get_version(self, tenant_id: str) -> int:
        """Current value of the tenant's sender version (0 if never written)."""
        item = self.store.get_item(self._version_key(tenant_id))
        if not item:
            return 0
        return int(item.get('version', 0))

    def bump_version(self, tenant_id: str, observed: int) -> int:
        """
        Advance the tenant's sender version if it still equals `observed`.

        Raises:
            ConflictError: If another request changed the tenant's senders first
        """
        if observed == 0:
            condition = Condition(exists=False)
        else:
            condition = Condition(exists=True, equals={'version': observed})

        new_version = observed + 1
        try:
            self.store.put_item(
                self._version_key(tenant_id),
                {
                    'tenantId': tenant_id,
                    'version': new_version,
                    'updatedAt': to_iso(self.clock()),
                },
                condition,
            )
        except ConditionalCheckFailed:
            logger.info(f"Sender version race lost: tenant_id={tenant_id}, observed={observed}")
            raise ConflictError("Senders were modified concurrently, please retry")
        return new_version

    def increment_emails_sent(self, tenant_id: str, sender_id: str, count: int = 1) -> Sender:
        """
        Atomically add to a sender's emailsSent counter and stamp lastSentAt.

        Raises:
            NotFoundError: If the sender does not exist
        """
        now = to_iso(self.clock())
        try:
            item = self.store.update_item(
                {'pk': tenant_id, 'sk': KeyPatterns.sender(sender_id)},
                set_values={'lastSentAt': now, 'updatedAt': now},
                add_values={'emailsSent': count},
                condition=Condition(exists=True),
            )
        except ConditionalCheckFailed:
            raise NotFoundError("Sender not found")
        return Sender.from_item(item)

    @staticmethod
    def _version_key(tenant_id: str) -> Dict[str, str]:
        return {'pk': tenant_id, 'sk': KeyPatterns.SENDER_VERSION_SK}
