"""
AWS Lambda handler for SES events delivered through EventBridge.

Two kinds of events are consumed:
- Identity verification results: the identity (email address or domain) is
  resolved to every tenant's sender or domain record through the identity
  index, and the result is applied with record_sender_result /
  record_domain_result.
- Sending events ("Send"): the message tags `tenantId` and `senderId` identify
  the sender whose emailsSent counter is incremented.

Policy: never raise (no EventBridge retries). Errors are logged per record;
the scheduled check or the next status poll converges anything left behind.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from domain.errors import SenderServiceError
from domain.sender_manager import SenderLifecycleManager
from repositories import DomainRepository, SenderRepository
from services.dynamodb import DynamoDBStore

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Add console handler for local testing (AWS Lambda provides handlers automatically)
if not logger.handlers:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter('%(levelname)s - %(message)s')
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

# Initialize manager once at module level (reused across invocations)
_store = DynamoDBStore()
sender_manager = SenderLifecycleManager(
    senders=SenderRepository(_store),
    domains=DomainRepository(_store),
)

SEND_EVENT_TYPE = 'Send'


def extract_details(event: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Event details carried by the invocation.

    Accepts a single EventBridge event or a batch under `Records`.
    """
    records = event.get('Records')
    if isinstance(records, list):
        return [r['detail'] for r in records if isinstance(r, dict) and isinstance(r.get('detail'), dict)]
    if isinstance(event.get('detail'), dict):
        return [event['detail']]
    return []


def map_verification_result(detail: Dict[str, Any]) -> Optional[Tuple[str, Optional[str]]]:
    """
    Map an SES verification event to (status, failure_reason).

    Returns None for event types that carry no verification result.
    """
    event_type = detail.get('event-type') or detail.get('eventType')
    if event_type == 'identityVerificationSuccess':
        return 'verified', None
    if event_type == 'identityVerificationFailure':
        return 'failed', detail.get('reason')
    if event_type == 'domainVerification':
        if detail.get('status') == 'success':
            return 'verified', None
        if detail.get('status') == 'failure':
            return 'failed', detail.get('reason')
    return None


def _tag(tags: Dict[str, Any], name: str) -> Optional[str]:
    # SES sending events carry tag values as lists
    value = tags.get(name)
    if isinstance(value, list):
        value = value[0] if value else None
    return value or None


def process_send_event(detail: Dict[str, Any]) -> str:
    """Count a sent message against the tagged sender."""
    tags = (detail.get('mail') or {}).get('tags') or {}
    tenant_id = _tag(tags, 'tenantId')
    sender_id = _tag(tags, 'senderId')
    if not tenant_id or not sender_id:
        logger.info("Send event without tenantId/senderId tags, skipping")
        return 'skipped'

    try:
        sender_manager.record_email_sent(tenant_id, sender_id)
    except SenderServiceError as e:
        logger.error(f"Failed to count sent email: sender_id={sender_id}, error={e.message}")
        return 'failed'
    return 'applied'


def process_verification_event(detail: Dict[str, Any]) -> List[str]:
    """Apply a verification result to every record registered for its identity."""
    identity = detail.get('identity')
    result = map_verification_result(detail)
    if not identity or result is None:
        logger.info(
            f"Ignoring SES event: type={detail.get('event-type') or detail.get('eventType')}, "
            f"identity={identity}"
        )
        return ['skipped']

    status, failure_reason = result
    outcomes = []

    if '@' in identity:
        targets = [
            (s.tenant_id, s.sender_id, sender_manager.record_sender_result)
            for s in sender_manager.senders_for_identity(identity)
        ]
    else:
        targets = [
            (r.tenant_id, r.domain, sender_manager.record_domain_result)
            for r in sender_manager.domains_for_identity(identity)
        ]

    if not targets:
        logger.info(f"No records registered for SES identity: identity={identity}")
        return ['skipped']

    for tenant_id, target_id, apply_result in targets:
        try:
            apply_result(tenant_id, target_id, status, failure_reason)
            logger.info(
                f"SES verification result applied: tenant_id={tenant_id}, "
                f"target={target_id}, status={status}"
            )
            outcomes.append('applied')
        except SenderServiceError as e:
            logger.error(
                f"Failed to apply SES verification result: tenant_id={tenant_id}, "
                f"target={target_id}, status={status}, error={e.message}"
            )
            outcomes.append('failed')
    return outcomes


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Process SES events.

    Args:
        event: EventBridge event (or batch under `Records`)
        context: Lambda context

    Returns:
        Dict with counts of applied, skipped and failed records (never raises)
    """
    details = extract_details(event)
    if not details:
        logger.error(f"Invalid SES event payload: {json.dumps(event, default=str)}")
        return {'status': 'invalid'}

    counts = {'applied': 0, 'skipped': 0, 'failed': 0}
    for detail in details:
        try:
            if (detail.get('eventType') or detail.get('event-type')) == SEND_EVENT_TYPE:
                outcomes = [process_send_event(detail)]
            else:
                outcomes = process_verification_event(detail)
        except Exception as e:
            logger.error(f"Unexpected error processing SES event: error={str(e)}", exc_info=True)
            outcomes = ['failed']
        for outcome in outcomes:
            counts[outcome] += 1

    logger.info(
        f"SES events processed: applied={counts['applied']}, "
        f"skipped={counts['skipped']}, failed={counts['failed']}"
    )
    return dict(status='processed', **counts)
