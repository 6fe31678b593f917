"""
Sender lifecycle management - core business logic.

This module orchestrates every change to a tenant's senders:
1. Creation under tier quotas and capabilities
2. Verification status transitions (collaborator results, polls, timeouts)
3. Re-verification and domain status propagation
4. Default sender maintenance on update and delete

Multi-record changes (create, delete with default promotion, default flips)
are serialized per tenant by bumping the tenant's sender version before the
decisive write. Status propagation relies on per-record conditional writes;
a retried request completes whatever a failed one left behind.
"""

import logging
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .dns_guide import (
    dns_instructions,
    estimated_verification_time,
    record_description,
    troubleshooting_tips,
)
from .errors import (
    AwsError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    PartialPropagationError,
    SenderServiceError,
    UnauthorizedError,
)
from .models import (
    DomainVerificationRecord,
    Sender,
    StatusCheckResult,
    TierLimits,
    VerificationStatus,
    VerificationType,
    to_iso,
    utc_now,
)
from .tiers import resolve_limits
from .validation import extract_domain, validate_domain, validate_email, validate_name
from .verification import check_transition, is_timed_out, map_provider_status, timeout_window
from services import events as events_service
from services import scheduler as scheduler_service
from services import ses as ses_service

logger = logging.getLogger(__name__)

# Fields a client may send back unchanged on update, but never change
IMMUTABLE_FIELDS = ('email', 'verificationType', 'domain')

DEFAULT_FAILURE_REASON = "Verification failed"


class SenderLifecycleManager:
    """
    Owns the sender and domain verification lifecycle for all tenants.

    Collaborators (SES verifier, event publisher, scheduler) are modules or
    objects exposing the same functions, so tests can inject mocks.
    """

    def __init__(
        self,
        senders,
        domains,
        verifier=ses_service,
        events=events_service,
        scheduler=scheduler_service,
        clock: Callable = utc_now,
        verification_timeout: Optional[timedelta] = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.senders = senders
        self.domains = domains
        self.verifier = verifier
        self.events = events
        self.scheduler = scheduler
        self.clock = clock
        self.verification_timeout = verification_timeout or timeout_window()
        self.id_factory = id_factory

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_senders(self, tenant_id: str, tier: str) -> Tuple[List[Sender], TierLimits]:
        """List a tenant's senders together with the tier limits they count against."""
        senders = self.senders.list_by_tenant(tenant_id)
        senders.sort(key=lambda s: (s.created_at, s.sender_id))
        return senders, resolve_limits(tier, len(senders))

    def get_sender(self, tenant_id: str, sender_id: str) -> Sender:
        return self.senders.get_by_id(tenant_id, sender_id)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_sender(self, tenant_id: str, tier: str, request: Dict[str, Any]) -> Sender:
        """
        Create a sender and start its verification.

        Args:
            tenant_id: Owning tenant
            tier: Tenant's subscription tier
            request: Body with `email`, optional `name` and `verificationType`

        Returns:
            Sender: The persisted sender

        Raises:
            BadRequestError: If the request is invalid or the quota is reached
            UnauthorizedError: If the tier does not allow the verification type
            ConflictError: If the email is already configured or another
                request changed the tenant's senders concurrently
            AwsError: If verification could not be started (the sender is
                kept as pending)
        """
        if not isinstance(request, dict):
            raise BadRequestError("Invalid request body")

        email = validate_email(request.get('email'))
        verification_type = VerificationType.parse(request.get('verificationType') or 'mailbox')
        name = request.get('name')
        if name is not None:
            name = validate_name(name)

        observed_version = self.senders.get_version(tenant_id)
        existing = self.senders.list_by_tenant(tenant_id)
        limits = resolve_limits(tier, len(existing))

        if limits.quota_reached:
            raise BadRequestError(
                f"Maximum sender limit reached ({limits.max_senders}). Current tier: {tier}"
            )
        if verification_type is VerificationType.DOMAIN and not limits.can_use_dns:
            raise UnauthorizedError(
                f"DNS verification not available for your tier. Current tier: {tier}"
            )
        if verification_type is VerificationType.MAILBOX and not limits.can_use_mailbox:
            raise UnauthorizedError(
                f"Mailbox verification not available for your tier. Current tier: {tier}"
            )
        if any(s.email.lower() == email.lower() for s in existing):
            raise ConflictError("Email address already configured")

        now = to_iso(self.clock())
        domain = None
        domain_record = None
        if verification_type is VerificationType.DOMAIN:
            domain = extract_domain(email)
            domain_record = self.domains.find(tenant_id, domain)

        domain_verified = (
            domain_record is not None
            and domain_record.verification_status is VerificationStatus.VERIFIED
        )

        sender = Sender(
            sender_id=self.id_factory(),
            tenant_id=tenant_id,
            email=email,
            verification_type=verification_type,
            verification_status=(
                VerificationStatus.VERIFIED if domain_verified else VerificationStatus.PENDING
            ),
            is_default=not existing,
            created_at=now,
            updated_at=now,
            name=name,
            domain=domain,
            ses_identity_arn=self.verifier.identity_arn(domain or email),
            verified_at=(domain_record.verified_at or now) if domain_verified else None,
            last_verification_sent=now,
        )

        self.senders.bump_version(tenant_id, observed_version)
        sender = self.senders.create(sender)
        logger.info(
            f"Sender created: tenant_id={tenant_id}, sender_id={sender.sender_id}, "
            f"type={verification_type.value}, status={sender.verification_status.value}, "
            f"is_default={sender.is_default}"
        )

        if verification_type is VerificationType.MAILBOX:
            self.verifier.initiate_mailbox_verification(email, tenant_id)
            self._schedule_check(tenant_id, sender.sender_id)
        elif not domain_verified:
            self._issue_domain_verification(tenant_id, domain, domain_record)
            sender = self.senders.get_by_id(tenant_id, sender.sender_id)

        self._publish('Sender Created', sender)
        return sender

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    def update_sender(self, tenant_id: str, sender_id: str, changes: Dict[str, Any]) -> Sender:
        """
        Update a sender's name and/or default flag.

        Raises:
            BadRequestError: If the change set is empty, invalid, touches an
                immutable field or unsets the default sender
            NotFoundError: If the tenant has no such sender
            ConflictError: If the sender changed concurrently
        """
        if not isinstance(changes, dict):
            raise BadRequestError("Invalid request body")

        sender = self.senders.get_by_id(tenant_id, sender_id)
        current = {
            'email': sender.email,
            'verificationType': sender.verification_type.value,
            'domain': sender.domain,
        }
        for field_name in IMMUTABLE_FIELDS:
            if field_name in changes and changes[field_name] != current[field_name]:
                raise BadRequestError(f"{field_name} cannot be changed after creation")

        if 'name' not in changes and 'isDefault' not in changes:
            raise BadRequestError("At least one field (name, isDefault) must be provided")

        updated = sender
        if 'name' in changes:
            updated = updated.copy(name=validate_name(changes['name']))

        if 'isDefault' in changes:
            make_default = changes['isDefault']
            if not isinstance(make_default, bool):
                raise BadRequestError("isDefault must be a boolean")
            if not make_default and sender.is_default:
                raise BadRequestError(
                    "Cannot unset the default sender; set another sender as default instead"
                )
            if make_default and not sender.is_default:
                return self._make_default(sender, updated)

        saved = self.senders.update(updated, expected={'updatedAt': sender.updated_at})
        logger.info(f"Sender updated: tenant_id={tenant_id}, sender_id={sender_id}")
        return saved

    def delete_sender(self, tenant_id: str, sender_id: str) -> None:
        """
        Delete a sender, promoting a new default if needed.

        The replacement default is chosen among the remaining senders:
        verified first, then earliest createdAt, then senderId.

        Raises:
            NotFoundError: If the tenant has no such sender
            ConflictError: If another request changed the tenant's senders
        """
        sender = self.senders.get_by_id(tenant_id, sender_id)
        observed_version = self.senders.get_version(tenant_id)
        remaining = [
            s for s in self.senders.list_by_tenant(tenant_id) if s.sender_id != sender_id
        ]

        self.senders.bump_version(tenant_id, observed_version)

        # Promotion precedes the delete so the tenant never lacks a default
        if sender.is_default and remaining and not any(s.is_default for s in remaining):
            candidate = select_default_candidate(remaining)
            self.senders.update(
                candidate.copy(is_default=True),
                expected={'isDefault': False, 'updatedAt': candidate.updated_at},
            )
            logger.info(
                f"Default sender promoted: tenant_id={tenant_id}, sender_id={candidate.sender_id}"
            )

        self.senders.delete(tenant_id, sender_id)
        self._cleanup_identity(sender, remaining)
        self._publish('Sender Deleted', sender)

    # ------------------------------------------------------------------
    # Verification status
    # ------------------------------------------------------------------

    def record_sender_result(
        self,
        tenant_id: str,
        sender_id: str,
        status,
        failure_reason: Optional[str] = None
    ) -> Sender:
        """
        Apply a verification result reported for a sender.

        Results for domain senders are applied to the domain record and
        propagated to every sender of the domain.

        Raises:
            BadRequestError: If the status is not recognized
            ConflictError: If the transition is not allowed
        """
        status = VerificationStatus.parse(status)
        sender = self.senders.get_by_id(tenant_id, sender_id)

        if sender.verification_type is VerificationType.DOMAIN:
            self.record_domain_result(tenant_id, sender.domain, status, failure_reason)
            return self.senders.get_by_id(tenant_id, sender_id)

        sender, _ = self._transition_sender(sender, status, failure_reason)
        return sender

    def record_domain_result(
        self,
        tenant_id: str,
        domain: str,
        status,
        failure_reason: Optional[str] = None
    ) -> DomainVerificationRecord:
        """
        Apply a verification result to a domain record and propagate it.

        Raises:
            BadRequestError: If the status is not recognized
            NotFoundError: If the tenant has no record for the domain
            ConflictError: If the transition is not allowed
            PartialPropagationError: If some dependent senders were not updated
        """
        status = VerificationStatus.parse(status)
        record = self.domains.get_by_domain(tenant_id, domain)

        if check_transition(record.verification_status, status):
            updated = self._apply_status(record, status, failure_reason)
            record = self.domains.update_status(updated, record.verification_status)
            logger.info(
                f"Domain verification updated: tenant_id={tenant_id}, domain={domain}, "
                f"status={status.value}"
            )
            self.events.publish('Domain Verification Updated', {
                'tenantId': tenant_id,
                'domain': domain,
                'verificationStatus': status.value,
            })

        self._propagate_domain_status(record)
        return record

    def senders_for_identity(self, email: str) -> List[Sender]:
        """Mailbox senders, across tenants, whose status follows the SES email identity."""
        return [
            s for s in self.senders.find_by_identity(email)
            if s.verification_type is VerificationType.MAILBOX
        ]

    def domains_for_identity(self, domain: str) -> List[DomainVerificationRecord]:
        """Domain records, across tenants, whose status follows the SES domain identity."""
        return self.domains.find_by_identity(domain)

    def get_sender_status(self, tenant_id: str, sender_id: str) -> StatusCheckResult:
        """
        Poll the mail provider for a sender's verification status.

        A provider result is applied as a transition; a sender still pending
        after the timeout window is moved to verification_timed_out.
        """
        sender = self.senders.get_by_id(tenant_id, sender_id)
        now = self.clock()

        if sender.verification_status is VerificationStatus.VERIFIED:
            return StatusCheckResult(sender=sender, status_changed=False, last_checked=to_iso(now))

        provider_status = self.verifier.poll_verification_status(sender.identity)
        mapped = map_provider_status(provider_status.verification_status)
        logger.info(
            f"Polled verification status: sender_id={sender_id}, "
            f"provider={provider_status.verification_status}, stored={sender.verification_status.value}"
        )

        if sender.verification_type is VerificationType.DOMAIN:
            refreshed = self._refresh_domain(sender, mapped, now)
        else:
            refreshed = self._refresh_mailbox(sender, mapped, now)

        return StatusCheckResult(
            sender=refreshed,
            status_changed=refreshed.verification_status is not sender.verification_status,
            last_checked=to_iso(now),
            provider_status=provider_status,
        )

    def check_sender_status(self, tenant_id: str, sender_id: str) -> StatusCheckResult:
        """
        Scheduled status check.

        Schedules the next check while the sender is pending; once the attempt
        has timed out the expired mailbox identity is removed from SES.
        """
        result = self.get_sender_status(tenant_id, sender_id)
        sender = result.sender

        if sender.verification_status is VerificationStatus.PENDING:
            self._schedule_check(tenant_id, sender_id)
        elif (
            sender.verification_status is VerificationStatus.VERIFICATION_TIMED_OUT
            and result.status_changed
            and sender.verification_type is VerificationType.MAILBOX
        ):
            logger.info(f"Cleaning up timed out identity: sender_id={sender_id}")
            self.verifier.delete_identity(sender.email, tenant_id)

        return result

    def resend_verification(self, tenant_id: str, sender_id: str) -> Sender:
        """
        Re-verify a sender, resetting it to pending.

        Mailbox senders get a new verification email. Domain senders get a new
        verification attempt (a new DNS record set) and every sender of the
        domain is reset.

        Raises:
            NotFoundError: If the tenant has no such sender
            AwsError: If SES rejects the request (nothing is changed)
        """
        sender = self.senders.get_by_id(tenant_id, sender_id)

        if sender.verification_type is VerificationType.DOMAIN:
            existing = self.domains.find(tenant_id, sender.domain)
            self._issue_domain_verification(tenant_id, sender.domain, existing)
            return self.senders.get_by_id(tenant_id, sender_id)

        self.verifier.initiate_mailbox_verification(sender.email, tenant_id)
        check_transition(sender.verification_status, VerificationStatus.PENDING, reverify=True)
        saved = self.senders.update(
            self._apply_status(sender, VerificationStatus.PENDING),
            expected={'verificationStatus': sender.verification_status.value},
        )
        logger.info(f"Verification resent: tenant_id={tenant_id}, sender_id={sender_id}")
        self._schedule_check(tenant_id, sender_id)
        return saved

    # ------------------------------------------------------------------
    # Domains
    # ------------------------------------------------------------------

    def start_domain_verification(
        self,
        tenant_id: str,
        tier: str,
        domain: str
    ) -> DomainVerificationRecord:
        """
        Start verifying a domain ahead of creating senders on it.

        Raises:
            BadRequestError: If the domain is malformed
            UnauthorizedError: If the tier does not allow DNS verification
            ConflictError: If the domain is already configured
            AwsError: If SES rejects the request
        """
        domain = validate_domain(domain).lower()
        if not resolve_limits(tier, 0).can_use_dns:
            raise UnauthorizedError(
                f"DNS verification not available for your tier. Current tier: {tier}"
            )
        if self.domains.find(tenant_id, domain) is not None:
            raise ConflictError("Domain already configured for this tenant")

        dns_records, arn = self.verifier.initiate_domain_verification(domain, tenant_id)
        now = to_iso(self.clock())
        record = self.domains.create(DomainVerificationRecord(
            domain=domain,
            tenant_id=tenant_id,
            verification_status=VerificationStatus.PENDING,
            created_at=now,
            updated_at=now,
            dns_records=dns_records,
            ses_identity_arn=arn,
            last_verification_sent=now,
        ))
        logger.info(f"Domain verification started: tenant_id={tenant_id}, domain={domain}")
        return record

    def get_domain_verification(self, tenant_id: str, domain: str) -> Dict[str, Any]:
        """Domain record with DNS setup guidance for its current status."""
        domain = validate_domain(domain).lower()
        record = self.domains.get_by_domain(tenant_id, domain)

        result = record.to_dict()
        result['dnsRecords'] = [
            dict(r.to_dict(), description=record_description(r)) for r in record.dns_records
        ]
        result['instructions'] = dns_instructions(record.dns_records)
        result['estimatedVerificationTime'] = estimated_verification_time(record.verification_status)
        result['troubleshooting'] = troubleshooting_tips(record.verification_status)
        return result

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def record_email_sent(self, tenant_id: str, sender_id: str, count: int = 1) -> Sender:
        """Count emails sent from a sender."""
        if not isinstance(count, int) or isinstance(count, bool) or count < 1:
            raise BadRequestError("count must be a positive integer")
        self.senders.get_by_id(tenant_id, sender_id)
        return self.senders.increment_emails_sent(tenant_id, sender_id, count)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_status(self, entity, target: VerificationStatus, failure_reason: Optional[str] = None):
        """Copy of a sender or domain record moved to `target`."""
        now = to_iso(self.clock())
        if target is VerificationStatus.VERIFIED:
            return entity.copy(
                verification_status=target,
                verified_at=entity.verified_at or now,
                failure_reason=None,
            )
        if target is VerificationStatus.PENDING:
            return entity.copy(
                verification_status=target,
                verified_at=None,
                failure_reason=None,
                last_verification_sent=now,
            )
        if target is VerificationStatus.FAILED:
            reason = failure_reason or DEFAULT_FAILURE_REASON
        else:
            hours = self.verification_timeout.total_seconds() / 3600
            reason = failure_reason or f"Verification not completed within {hours:g} hours"
        return entity.copy(verification_status=target, verified_at=None, failure_reason=reason)

    def _transition_sender(
        self,
        sender: Sender,
        target: VerificationStatus,
        failure_reason: Optional[str] = None
    ) -> Tuple[Sender, bool]:
        if not check_transition(sender.verification_status, target):
            return sender, False

        saved = self.senders.update(
            self._apply_status(sender, target, failure_reason),
            expected={'verificationStatus': sender.verification_status.value},
        )
        logger.info(
            f"Sender status changed: sender_id={sender.sender_id}, "
            f"{sender.verification_status.value} -> {target.value}"
        )
        self._publish('Sender Verification Updated', saved)
        return saved, True

    def _refresh_mailbox(self, sender: Sender, mapped, now) -> Sender:
        if sender.verification_status is not VerificationStatus.PENDING:
            return sender

        if mapped is not None and mapped is not VerificationStatus.PENDING:
            sender, _ = self._transition_sender(sender, mapped)
            return sender

        started = sender.last_verification_sent or sender.created_at
        if is_timed_out(started, now, self.verification_timeout):
            sender, _ = self._transition_sender(sender, VerificationStatus.VERIFICATION_TIMED_OUT)
        return sender

    def _refresh_domain(self, sender: Sender, mapped, now) -> Sender:
        record = self.domains.find(sender.tenant_id, sender.domain)
        if record is None:
            logger.warning(
                f"Domain record missing for domain sender: sender_id={sender.sender_id}, "
                f"domain={sender.domain}"
            )
            return sender

        if record.verification_status is VerificationStatus.PENDING:
            started = record.last_verification_sent or record.created_at
            if mapped is not None and mapped is not VerificationStatus.PENDING:
                self.record_domain_result(sender.tenant_id, sender.domain, mapped)
            elif is_timed_out(started, now, self.verification_timeout):
                self.record_domain_result(
                    sender.tenant_id, sender.domain, VerificationStatus.VERIFICATION_TIMED_OUT
                )
        else:
            # Converge senders a previous propagation missed
            self._propagate_domain_status(record)

        return self.senders.get_by_id(sender.tenant_id, sender.sender_id)

    def _issue_domain_verification(
        self,
        tenant_id: str,
        domain: str,
        existing: Optional[DomainVerificationRecord]
    ) -> DomainVerificationRecord:
        """Start a new verification attempt and reset the domain's senders."""
        dns_records, arn = self.verifier.initiate_domain_verification(domain, tenant_id)
        now = to_iso(self.clock())
        record = self.domains.upsert(DomainVerificationRecord(
            domain=domain,
            tenant_id=tenant_id,
            verification_status=VerificationStatus.PENDING,
            created_at=existing.created_at if existing else now,
            updated_at=now,
            dns_records=dns_records,
            ses_identity_arn=arn,
            last_verification_sent=now,
        ))
        self._propagate_domain_status(record, reverify=True)
        return record

    def _propagate_domain_status(
        self,
        record: DomainVerificationRecord,
        reverify: bool = False
    ) -> int:
        """
        Make every sender of the domain inherit the record's status.

        Returns:
            int: Number of senders written

        Raises:
            PartialPropagationError: If any sender write failed
        """
        target = record.verification_status
        updated = 0
        failed = []

        for sender in self.senders.list_by_tenant(record.tenant_id):
            if sender.verification_type is not VerificationType.DOMAIN or sender.domain != record.domain:
                continue

            if sender.verification_status is target:
                if not reverify or sender.last_verification_sent == record.last_verification_sent:
                    continue

            changed = sender.copy(
                verification_status=target,
                verified_at=record.verified_at,
                failure_reason=record.failure_reason,
                last_verification_sent=record.last_verification_sent,
            )
            try:
                self.senders.update(
                    changed,
                    expected={'verificationStatus': sender.verification_status.value},
                )
                updated += 1
            except NotFoundError:
                logger.info(f"Sender deleted during propagation: sender_id={sender.sender_id}")
            except (ConflictError, AwsError) as e:
                logger.warning(
                    f"Failed to propagate domain status: sender_id={sender.sender_id}, error={e}"
                )
                failed.append(sender.sender_id)

        if failed:
            raise PartialPropagationError(
                f"Domain status not applied to {len(failed)} sender(s), please retry",
                failed_sender_ids=failed,
            )

        if updated:
            logger.info(
                f"Propagated domain status: domain={record.domain}, status={target.value}, "
                f"senders={updated}"
            )
        return updated

    def _cleanup_identity(self, sender: Sender, remaining: List[Sender]) -> None:
        """Remove SES identities and domain records no remaining sender uses."""
        if sender.verification_type is VerificationType.MAILBOX:
            if not any(s.email.lower() == sender.email.lower() for s in remaining):
                self.verifier.delete_identity(sender.email, sender.tenant_id)
            return

        if any(
            s.verification_type is VerificationType.DOMAIN and s.domain == sender.domain
            for s in remaining
        ):
            return

        self.verifier.delete_identity(sender.domain, sender.tenant_id)
        try:
            self.domains.delete(sender.tenant_id, sender.domain)
        except NotFoundError:
            pass
        except SenderServiceError as e:
            logger.warning(
                f"Failed to delete domain record (continuing): domain={sender.domain}, error={e}"
            )

    def _schedule_check(self, tenant_id: str, sender_id: str) -> None:
        self.scheduler.schedule_status_check(tenant_id, sender_id)

    def _publish(self, event_type: str, sender: Sender) -> None:
        self.events.publish(event_type, {
            'tenantId': sender.tenant_id,
            'senderId': sender.sender_id,
            'email': sender.email,
            'verificationType': sender.verification_type.value,
            'verificationStatus': sender.verification_status.value,
            'isDefault': sender.is_default,
        })

    def _make_default(self, sender: Sender, updated: Sender) -> Sender:
        """Flip the tenant's default to `sender` (with any other pending edits)."""
        tenant_id = sender.tenant_id
        observed_version = self.senders.get_version(tenant_id)
        previous_defaults = [
            s for s in self.senders.list_by_tenant(tenant_id)
            if s.is_default and s.sender_id != sender.sender_id
        ]

        self.senders.bump_version(tenant_id, observed_version)

        cleared = []
        try:
            for previous in previous_defaults:
                self.senders.update(
                    previous.copy(is_default=False),
                    expected={'isDefault': True, 'updatedAt': previous.updated_at},
                )
                cleared.append(previous)

            saved = self.senders.update(
                updated.copy(is_default=True),
                expected={'isDefault': False, 'updatedAt': sender.updated_at},
            )
        except SenderServiceError:
            for previous in cleared:
                self.senders.update(previous.copy(is_default=True))
            raise

        logger.info(f"Default sender changed: tenant_id={tenant_id}, sender_id={sender.sender_id}")
        return saved


def select_default_candidate(candidates: List[Sender]) -> Sender:
    """Verified senders first, then earliest createdAt, then senderId."""
    return min(
        candidates,
        key=lambda s: (
            s.verification_status is not VerificationStatus.VERIFIED,
            s.created_at,
            s.sender_id,
        ),
    )
