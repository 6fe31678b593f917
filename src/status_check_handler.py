"""
AWS Lambda handler for scheduled sender status checks.

Invoked by one-shot EventBridge Scheduler schedules with a payload of
{"tenantId": ..., "senderId": ...}. Thin orchestration layer that delegates to
SenderLifecycleManager.check_sender_status.
Policy: never raise (no scheduler retries). Errors logged to CloudWatch; the
next status poll or resend starts a fresh check.
"""

import json
import logging
from typing import Any, Dict, Optional, Tuple

from domain.errors import NotFoundError, SenderServiceError
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


def parse_check_request(event: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    """
    Extract (tenant_id, sender_id) from a scheduler payload.

    Accepts the payload directly, wrapped in an EventBridge `detail`, or as a
    JSON string `body`. Returns None if either id is missing.
    """
    payload = event
    if isinstance(event.get('detail'), dict):
        payload = event['detail']
    elif isinstance(event.get('body'), str):
        try:
            payload = json.loads(event['body'])
        except ValueError:
            return None

    if not isinstance(payload, dict):
        return None

    tenant_id = payload.get('tenantId')
    sender_id = payload.get('senderId')
    if not tenant_id or not sender_id:
        return None
    return tenant_id, sender_id


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Run one scheduled status check.

    Args:
        event: Scheduler payload
        context: Lambda context

    Returns:
        Dict describing the outcome (never raises)
    """
    request = parse_check_request(event)
    if request is None:
        logger.error(f"Invalid status check payload: {json.dumps(event, default=str)}")
        return {'status': 'invalid'}

    tenant_id, sender_id = request
    logger.info(f"Status check started: tenant_id={tenant_id}, sender_id={sender_id}")

    try:
        result = sender_manager.check_sender_status(tenant_id, sender_id)
    except NotFoundError:
        logger.info(f"Sender no longer exists, skipping check: sender_id={sender_id}")
        return {'status': 'skipped', 'senderId': sender_id}
    except SenderServiceError as e:
        logger.error(f"Status check failed: sender_id={sender_id}, error={e.message}", exc_info=True)
        return {'status': 'error', 'senderId': sender_id, 'error': e.message}
    except Exception as e:
        logger.error(f"Unexpected error in status check: sender_id={sender_id}, error={str(e)}", exc_info=True)
        return {'status': 'error', 'senderId': sender_id, 'error': str(e)}

    status = result.sender.verification_status.value
    logger.info(
        f"Status check complete: sender_id={sender_id}, status={status}, "
        f"changed={result.status_changed}"
    )
    return {
        'status': 'checked',
        'senderId': sender_id,
        'verificationStatus': status,
        'statusChanged': result.status_changed,
    }
