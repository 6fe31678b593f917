"""
AWS Lambda handlers for the sender management API (API Gateway proxy events).

Thin layer: each entry point extracts the user context resolved by the
authorizer, calls SenderLifecycleManager, and turns its result or error into a
JSON response. 4xx errors return their message; anything else is logged and
returned as a generic 500.
"""

import json
import logging
import os
from typing import Any, Callable, Dict, Optional

from domain.errors import (
    BadRequestError,
    PartialPropagationError,
    SenderServiceError,
    UnauthorizedError,
)
from domain.models import UserContext
from domain.sender_manager import SenderLifecycleManager
from domain.tiers import DEFAULT_TIER
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

ENVIRONMENT = os.environ.get('ENVIRONMENT', 'dev')

CORS_HEADERS = {
    'Content-Type': 'application/json',
    'Access-Control-Allow-Origin': '*'
}

# Initialize manager once at module level (reused across invocations)
_store = DynamoDBStore()
sender_manager = SenderLifecycleManager(
    senders=SenderRepository(_store),
    domains=DomainRepository(_store),
)


def get_user_context(event: Dict[str, Any]) -> UserContext:
    """
    Read the caller identity placed on the request by the authorizer.

    Raises:
        UnauthorizedError: If no tenant is present
    """
    authorizer = (event.get('requestContext') or {}).get('authorizer') or {}
    if isinstance(authorizer.get('lambda'), dict):
        authorizer = authorizer['lambda']

    tenant_id = authorizer.get('tenantId')
    if not tenant_id:
        raise UnauthorizedError("Missing tenant context")

    return UserContext(
        tenant_id=tenant_id,
        user_id=authorizer.get('userId'),
        tier=authorizer.get('tier') or DEFAULT_TIER,
    )


def build_response(status_code: int, body: Optional[Any] = None) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': dict(CORS_HEADERS),
        'body': '' if body is None else json.dumps(body),
    }


def _parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
    raw = event.get('body')
    if not raw:
        raise BadRequestError("Request body is required")
    try:
        body = json.loads(raw)
    except (TypeError, ValueError):
        raise BadRequestError("Invalid JSON in request body")
    if not isinstance(body, dict):
        raise BadRequestError("Request body must be a JSON object")
    return body


def _path_parameter(event: Dict[str, Any], name: str) -> str:
    value = (event.get('pathParameters') or {}).get(name)
    if not value:
        raise BadRequestError(f"{name} is required")
    return value


def _handle(
    event: Dict[str, Any],
    operation: str,
    action: Callable[[UserContext], Any],
    success_status: int = 200
) -> Dict[str, Any]:
    """Run an operation and translate its outcome into a response."""
    try:
        user = get_user_context(event)
        logger.info(f"{operation}: tenant_id={user.tenant_id}, user_id={user.user_id}, tier={user.tier}")
        result = action(user)
        return build_response(success_status, result)

    except SenderServiceError as e:
        if e.status_code >= 500:
            logger.error(f"{operation} failed: {e.message}", exc_info=True)
        else:
            logger.warning(f"{operation} rejected: status={e.status_code}, message={e.message}")
        body = {'message': e.user_message}
        if isinstance(e, PartialPropagationError):
            body['failedSenderIds'] = e.failed_sender_ids
        return build_response(e.status_code, body)

    except Exception as e:
        logger.error(f"Unexpected error in {operation}: {str(e)}", exc_info=True)
        return build_response(500, {'message': 'Internal server error'})


def list_senders_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GET /senders"""
    def action(user: UserContext):
        senders, limits = sender_manager.list_senders(user.tenant_id, user.tier)
        return {
            'senders': [s.to_dict() for s in senders],
            'tierLimits': limits.to_dict(),
        }

    return _handle(event, 'ListSenders', action)


def create_sender_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """POST /senders"""
    def action(user: UserContext):
        body = _parse_body(event)
        return sender_manager.create_sender(user.tenant_id, user.tier, body).to_dict()

    return _handle(event, 'CreateSender', action, success_status=201)


def update_sender_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """PUT /senders/{senderId}"""
    def action(user: UserContext):
        sender_id = _path_parameter(event, 'senderId')
        body = _parse_body(event)
        return sender_manager.update_sender(user.tenant_id, sender_id, body).to_dict()

    return _handle(event, 'UpdateSender', action)


def delete_sender_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """DELETE /senders/{senderId}"""
    def action(user: UserContext):
        sender_manager.delete_sender(user.tenant_id, _path_parameter(event, 'senderId'))
        return None

    return _handle(event, 'DeleteSender', action, success_status=204)


def get_sender_status_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GET /senders/{senderId}/status"""
    def action(user: UserContext):
        sender_id = _path_parameter(event, 'senderId')
        return sender_manager.get_sender_status(user.tenant_id, sender_id).to_dict()

    return _handle(event, 'GetSenderStatus', action)


def resend_verification_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """POST /senders/{senderId}/verify"""
    def action(user: UserContext):
        sender_id = _path_parameter(event, 'senderId')
        sender = sender_manager.resend_verification(user.tenant_id, sender_id)
        result = sender.to_dict()
        result['message'] = "Verification resent"
        return result

    return _handle(event, 'ResendVerification', action)


def verify_domain_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """POST /senders/domains"""
    def action(user: UserContext):
        body = _parse_body(event)
        record = sender_manager.start_domain_verification(
            user.tenant_id, user.tier, body.get('domain')
        )
        return sender_manager.get_domain_verification(user.tenant_id, record.domain)

    return _handle(event, 'VerifyDomain', action, success_status=201)


def get_domain_verification_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """GET /senders/domains/{domain}"""
    def action(user: UserContext):
        domain = _path_parameter(event, 'domain')
        return sender_manager.get_domain_verification(user.tenant_id, domain)

    return _handle(event, 'GetDomainVerification', action)


def health_check(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Simple health check endpoint for monitoring.
    """
    return {
        'statusCode': 200,
        'body': json.dumps({
            'status': 'healthy',
            'environment': ENVIRONMENT,
            'tableConfigured': bool(os.environ.get('TABLE_NAME'))
        })
    }
