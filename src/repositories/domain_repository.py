"""
Domain verification repository.

Each record holds the DNS record set of one verification attempt. Issuing a
new attempt replaces the whole record in a single put, so readers never see a
mix of old and new DNS records.
"""

import logging
from typing import Callable, List, Optional

from domain.errors import ConflictError, InternalError, NotFoundError
from domain.models import DomainVerificationRecord, KeyPatterns, to_iso, utc_now
from services.dynamodb import Condition, ConditionalCheckFailed

logger = logging.getLogger(__name__)


class DomainRepository:
    """Create-or-replace, lookup and deletion of domain verification records."""

    def __init__(self, store, clock: Callable = utc_now):
        self.store = store
        self.clock = clock

    def upsert(self, record: DomainVerificationRecord) -> DomainVerificationRecord:
        """Create or atomically replace a domain verification record."""
        saved = record.copy(updated_at=to_iso(self.clock()))
        self.store.put_item(saved.key(), saved.to_item())
        logger.info(
            f"Saved domain verification: tenant_id={saved.tenant_id}, domain={saved.domain}, "
            f"status={saved.verification_status.value}, dns_records={len(saved.dns_records)}"
        )
        return saved

    def create(self, record: DomainVerificationRecord) -> DomainVerificationRecord:
        """
        Persist a domain record that must not exist yet.

        Raises:
            ConflictError: If the tenant already has a record for the domain
        """
        saved = record.copy(updated_at=to_iso(self.clock()))
        try:
            self.store.put_item(saved.key(), saved.to_item(), Condition(exists=False))
        except ConditionalCheckFailed:
            raise ConflictError("Domain already configured for this tenant")
        return saved

    def find(self, tenant_id: str, domain: str) -> Optional[DomainVerificationRecord]:
        item = self.store.get_item({'pk': tenant_id, 'sk': KeyPatterns.domain(domain)})
        if not item:
            return None
        record = DomainVerificationRecord.from_item(item)
        if record.tenant_id != tenant_id:
            return None
        return record

    def get_by_domain(self, tenant_id: str, domain: str) -> DomainVerificationRecord:
        """
        Raises:
            NotFoundError: If the tenant has no record for the domain
        """
        record = self.find(tenant_id, domain)
        if record is None:
            raise NotFoundError(
                "Domain verification not found. Please initiate domain verification first."
            )
        return record

    def find_by_identity(self, domain: str) -> List[DomainVerificationRecord]:
        """Domain records of every tenant registered for an SES domain identity."""
        records = []
        for item in self.store.query_by_index(KeyPatterns.identity(domain)):
            if not item.get('sk', '').startswith('domain#'):
                continue
            try:
                records.append(DomainVerificationRecord.from_item(item))
            except InternalError as e:
                logger.error(f"Failed to deserialize domain record: sk={item.get('sk')}, error={e}")
        return records

    def update_status(
        self,
        record: DomainVerificationRecord,
        expected_status
    ) -> DomainVerificationRecord:
        """
        Write a status change, conditioned on the status observed before it.

        Raises:
            ConflictError: If the stored status changed in the meantime
        """
        saved = record.copy(updated_at=to_iso(self.clock()))
        condition = Condition(exists=True, equals={'verificationStatus': expected_status.value})
        try:
            self.store.put_item(saved.key(), saved.to_item(), condition)
        except ConditionalCheckFailed:
            raise ConflictError("Domain verification was modified concurrently, please retry")
        return saved

    def delete(self, tenant_id: str, domain: str) -> None:
        """
        Raises:
            NotFoundError: If the tenant has no record for the domain
        """
        try:
            self.store.delete_item(
                {'pk': tenant_id, 'sk': KeyPatterns.domain(domain)},
                Condition(exists=True),
            )
        except ConditionalCheckFailed:
            raise NotFoundError("Domain verification not found")
        logger.info(f"Deleted domain verification: tenant_id={tenant_id}, domain={domain}")
