"""
Data models for the sender management domain.

These type-safe data structures define the contracts between the lifecycle
manager, the repositories and the handlers. Stored items and API responses use
camelCase attribute names; the dataclasses use snake_case.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import BadRequestError, InternalError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Format a datetime as the ISO-8601 string stored on records."""
    return moment.astimezone(timezone.utc).isoformat()


def parse_iso(value: str) -> datetime:
    """Parse a stored ISO-8601 timestamp (naive values are treated as UTC)."""
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class VerificationType(str, Enum):
    MAILBOX = 'mailbox'
    DOMAIN = 'domain'

    @classmethod
    def parse(cls, value: Any) -> 'VerificationType':
        """Parse a wire value, rejecting anything outside the closed set."""
        try:
            return cls(value)
        except ValueError:
            raise BadRequestError(
                'Verification type must be either "mailbox" or "domain"'
            )


class VerificationStatus(str, Enum):
    PENDING = 'pending'
    VERIFIED = 'verified'
    FAILED = 'failed'
    VERIFICATION_TIMED_OUT = 'verification_timed_out'

    @classmethod
    def parse(cls, value: Any) -> 'VerificationStatus':
        """Parse a wire value, rejecting anything outside the closed set."""
        try:
            return cls(value)
        except ValueError:
            raise BadRequestError(f"Unknown verification status: {value}")

    @property
    def is_terminal(self) -> bool:
        return self is not VerificationStatus.PENDING


class KeyPatterns:
    """Key formats of the single-table layout."""

    SENDER_PREFIX = 'sender#'
    SENDER_VERSION_SK = 'sender#version'

    @staticmethod
    def sender(sender_id: str) -> str:
        return f"sender#{sender_id}"

    @staticmethod
    def domain(domain: str) -> str:
        return f"domain#{domain}"

    @staticmethod
    def sender_gsi1pk(tenant_id: str) -> str:
        return f"sender#{tenant_id}"

    @staticmethod
    def identity(identity: str) -> str:
        """GSI2 partition of an SES identity (email address or domain)."""
        return f"identity#{identity.lower()}"


@dataclass
class UserContext:
    """
    Caller identity resolved by the API Gateway authorizer.

    Attributes:
        tenant_id: Tenant (brand) the caller acts for
        user_id: Authenticated user identifier
        tier: Subscription tier label (e.g. "creator-tier")
    """
    tenant_id: str
    user_id: Optional[str]
    tier: str


@dataclass
class DnsRecord:
    """
    One DNS record a tenant must publish to prove domain ownership.

    Attributes:
        name: Record host name
        record_type: Record type ("CNAME", "TXT", "MX")
        value: Record value
        description: Human-readable purpose of the record
    """
    name: str
    record_type: str
    value: str
    description: str = ''

    def to_dict(self) -> Dict[str, str]:
        return {
            'name': self.name,
            'type': self.record_type,
            'value': self.value,
            'description': self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DnsRecord':
        return cls(
            name=data['name'],
            record_type=data['type'],
            value=data['value'],
            description=data.get('description', ''),
        )


@dataclass
class Sender:
    """
    A tenant's send-from identity.

    Attributes:
        sender_id: Opaque identifier, unique within the tenant
        tenant_id: Owning tenant
        email: From address
        verification_type: Mailbox or domain verification
        verification_status: Current state of the verification attempt
        is_default: Whether this is the tenant's default sender
        created_at: ISO timestamp of creation
        updated_at: ISO timestamp of the last write
        name: Optional display name
        domain: Domain part of the email (domain senders only)
        ses_identity_arn: Provider identity reference
        verified_at: ISO timestamp of successful verification
        failure_reason: Reason reported with a failed verification
        last_verification_sent: ISO timestamp of the current attempt
        emails_sent: Count of emails sent from this identity
        last_sent_at: ISO timestamp of the last email sent
    """
    sender_id: str
    tenant_id: str
    email: str
    verification_type: VerificationType
    verification_status: VerificationStatus
    is_default: bool
    created_at: str
    updated_at: str
    name: Optional[str] = None
    domain: Optional[str] = None
    ses_identity_arn: Optional[str] = None
    verified_at: Optional[str] = None
    failure_reason: Optional[str] = None
    last_verification_sent: Optional[str] = None
    emails_sent: int = 0
    last_sent_at: Optional[str] = None

    @property
    def identity(self) -> str:
        """Identity registered with the mail provider (email or domain)."""
        if self.verification_type is VerificationType.DOMAIN and self.domain:
            return self.domain
        return self.email

    def copy(self, **changes) -> 'Sender':
        return replace(self, **changes)

    def key(self) -> Dict[str, str]:
        return {'pk': self.tenant_id, 'sk': KeyPatterns.sender(self.sender_id)}

    def to_item(self) -> Dict[str, Any]:
        """Stored item, including table and index keys."""
        item = self.key()
        item['GSI1PK'] = KeyPatterns.sender_gsi1pk(self.tenant_id)
        item['GSI1SK'] = self.email
        if self.verification_type is VerificationType.MAILBOX:
            item['GSI2PK'] = KeyPatterns.identity(self.email)
            item['GSI2SK'] = self.tenant_id
        item.update(self.to_dict())
        item['tenantId'] = self.tenant_id
        if self.ses_identity_arn:
            item['sesIdentityArn'] = self.ses_identity_arn
        if self.last_verification_sent:
            item['lastVerificationSent'] = self.last_verification_sent
        return item

    def to_dict(self) -> Dict[str, Any]:
        """API representation (optional fields omitted when unset)."""
        result = {
            'senderId': self.sender_id,
            'email': self.email,
            'verificationType': self.verification_type.value,
            'verificationStatus': self.verification_status.value,
            'isDefault': self.is_default,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'emailsSent': self.emails_sent,
        }
        optional = {
            'name': self.name,
            'domain': self.domain,
            'verifiedAt': self.verified_at,
            'failureReason': self.failure_reason,
            'lastSentAt': self.last_sent_at,
        }
        result.update({k: v for k, v in optional.items() if v is not None})
        return result

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Sender':
        """
        Build a Sender from a stored item.

        Raises:
            InternalError: If the item is missing required attributes or
                carries unrecognized enum values
        """
        try:
            return cls(
                sender_id=item['senderId'],
                tenant_id=item['tenantId'],
                email=item['email'],
                verification_type=VerificationType(item['verificationType']),
                verification_status=VerificationStatus(item['verificationStatus']),
                is_default=bool(item.get('isDefault', False)),
                created_at=item['createdAt'],
                updated_at=item['updatedAt'],
                name=item.get('name'),
                domain=item.get('domain'),
                ses_identity_arn=item.get('sesIdentityArn'),
                verified_at=item.get('verifiedAt'),
                failure_reason=item.get('failureReason'),
                last_verification_sent=item.get('lastVerificationSent'),
                emails_sent=int(item.get('emailsSent', 0)),
                last_sent_at=item.get('lastSentAt'),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise InternalError(f"Failed to deserialize sender: {e}")


@dataclass
class DomainVerificationRecord:
    """
    DNS verification state of a domain shared by a tenant's senders.

    Attributes:
        domain: Domain being verified
        tenant_id: Owning tenant
        verification_status: Current state of the verification attempt
        dns_records: Records issued for the current attempt, in order
        created_at: ISO timestamp of the first attempt
        updated_at: ISO timestamp of the last write
        ses_identity_arn: Provider identity reference
        verified_at: ISO timestamp of successful verification
        failure_reason: Reason reported with a failed verification
        last_verification_sent: ISO timestamp of the current attempt
    """
    domain: str
    tenant_id: str
    verification_status: VerificationStatus
    created_at: str
    updated_at: str
    dns_records: List[DnsRecord] = field(default_factory=list)
    ses_identity_arn: Optional[str] = None
    verified_at: Optional[str] = None
    failure_reason: Optional[str] = None
    last_verification_sent: Optional[str] = None

    def copy(self, **changes) -> 'DomainVerificationRecord':
        return replace(self, **changes)

    def key(self) -> Dict[str, str]:
        return {'pk': self.tenant_id, 'sk': KeyPatterns.domain(self.domain)}

    def to_item(self) -> Dict[str, Any]:
        item = self.key()
        item['GSI2PK'] = KeyPatterns.identity(self.domain)
        item['GSI2SK'] = self.tenant_id
        item.update(self.to_dict())
        item['tenantId'] = self.tenant_id
        if self.ses_identity_arn:
            item['sesIdentityArn'] = self.ses_identity_arn
        if self.last_verification_sent:
            item['lastVerificationSent'] = self.last_verification_sent
        return item

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'domain': self.domain,
            'verificationStatus': self.verification_status.value,
            'dnsRecords': [r.to_dict() for r in self.dns_records],
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }
        if self.verified_at is not None:
            result['verifiedAt'] = self.verified_at
        if self.failure_reason is not None:
            result['failureReason'] = self.failure_reason
        return result

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'DomainVerificationRecord':
        try:
            return cls(
                domain=item['domain'],
                tenant_id=item['tenantId'],
                verification_status=VerificationStatus(item['verificationStatus']),
                created_at=item['createdAt'],
                updated_at=item['updatedAt'],
                dns_records=[DnsRecord.from_dict(r) for r in item.get('dnsRecords', [])],
                ses_identity_arn=item.get('sesIdentityArn'),
                verified_at=item.get('verifiedAt'),
                failure_reason=item.get('failureReason'),
                last_verification_sent=item.get('lastVerificationSent'),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise InternalError(f"Failed to deserialize domain record: {e}")


@dataclass
class TierLimits:
    """Quota and capabilities of a tier, computed on demand."""
    tier: str
    max_senders: int
    current_count: int
    can_use_dns: bool
    can_use_mailbox: bool

    @property
    def quota_reached(self) -> bool:
        return self.current_count >= self.max_senders

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tier': self.tier,
            'maxSenders': self.max_senders,
            'currentCount': self.current_count,
            'canUseDNS': self.can_use_dns,
            'canUseMailbox': self.can_use_mailbox,
        }


@dataclass
class SesStatusInfo:
    """
    Identity status as reported by the mail provider.

    Attributes:
        verification_status: Lower-cased provider status ("success", "pending",
            "failed", "not_found", "unknown", ...)
        dkim_status: Lower-cased DKIM status
        identity_type: Lower-cased identity type
        error: Description of a failed lookup
    """
    verification_status: str
    dkim_status: str = 'unknown'
    identity_type: str = 'unknown'
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'verificationStatus': self.verification_status,
            'dkimStatus': self.dkim_status,
            'identityType': self.identity_type,
        }
        if self.error:
            result['error'] = self.error
        return result


@dataclass
class StatusCheckResult:
    """
    Outcome of polling a sender's verification status.

    Attributes:
        sender: Sender after any transition was applied
        status_changed: Whether this check changed the stored status
        provider_status: Provider status info (None for verified senders)
        last_checked: ISO timestamp of the check
    """
    sender: Sender
    status_changed: bool
    last_checked: str
    provider_status: Optional[SesStatusInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        result = self.sender.to_dict()
        result['statusChanged'] = self.status_changed
        result['lastChecked'] = self.last_checked
        if self.provider_status is not None:
            result['sesStatus'] = self.provider_status.to_dict()
        return result
