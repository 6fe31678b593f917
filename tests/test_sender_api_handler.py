"""
Tests for the API Gateway handlers.
"""

import json
import pytest
from unittest.mock import patch
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

import sender_api_handler
from domain.errors import (
    AwsError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    PartialPropagationError,
    UnauthorizedError,
)
from domain.models import (
    DomainVerificationRecord,
    Sender,
    StatusCheckResult,
    TierLimits,
    VerificationStatus,
    VerificationType,
)


def make_event(body=None, path=None, authorizer=None):
    event = {
        'requestContext': {
            'authorizer': authorizer if authorizer is not None else {
                'tenantId': 'tenant-1',
                'userId': 'user-1',
                'tier': 'creator-tier',
            }
        },
        'pathParameters': path,
    }
    if body is not None:
        event['body'] = body if isinstance(body, str) else json.dumps(body)
    return event


def make_sender(**overrides):
    fields = dict(
        sender_id='s-1',
        tenant_id='tenant-1',
        email='a@example.com',
        verification_type=VerificationType.MAILBOX,
        verification_status=VerificationStatus.PENDING,
        is_default=True,
        created_at='2024-01-15T12:00:00+00:00',
        updated_at='2024-01-15T12:00:00+00:00',
    )
    fields.update(overrides)
    return Sender(**fields)


@pytest.fixture
def mock_manager():
    with patch('sender_api_handler.sender_manager') as manager:
        yield manager


class TestGetUserContext:
    """Test reading the authorizer context."""

    def test_rest_api_authorizer(self):
        user = sender_api_handler.get_user_context(make_event())

        assert user.tenant_id == 'tenant-1'
        assert user.user_id == 'user-1'
        assert user.tier == 'creator-tier'

    def test_http_api_lambda_authorizer(self):
        event = make_event(authorizer={'lambda': {'tenantId': 'tenant-9', 'tier': 'pro-tier'}})

        user = sender_api_handler.get_user_context(event)

        assert user.tenant_id == 'tenant-9'
        assert user.tier == 'pro-tier'
        assert user.user_id is None

    def test_tier_defaults_to_free(self):
        user = sender_api_handler.get_user_context(make_event(authorizer={'tenantId': 'tenant-1'}))

        assert user.tier == 'free-tier'

    def test_missing_tenant(self):
        with pytest.raises(UnauthorizedError):
            sender_api_handler.get_user_context({'requestContext': {}})


class TestCreateSenderHandler:
    """Test POST /senders."""

    def test_create_success(self, mock_manager):
        mock_manager.create_sender.return_value = make_sender()

        response = sender_api_handler.create_sender_handler(
            make_event(body={'email': 'a@example.com'}), None
        )

        assert response['statusCode'] == 201
        assert response['headers']['Access-Control-Allow-Origin'] == '*'
        body = json.loads(response['body'])
        assert body['senderId'] == 's-1'
        assert body['verificationStatus'] == 'pending'
        mock_manager.create_sender.assert_called_once_with(
            'tenant-1', 'creator-tier', {'email': 'a@example.com'}
        )

    def test_invalid_json(self, mock_manager):
        response = sender_api_handler.create_sender_handler(make_event(body='{not json'), None)

        assert response['statusCode'] == 400
        assert json.loads(response['body']) == {'message': 'Invalid JSON in request body'}
        mock_manager.create_sender.assert_not_called()

    def test_missing_body(self, mock_manager):
        response = sender_api_handler.create_sender_handler(make_event(), None)

        assert response['statusCode'] == 400

    def test_missing_tenant(self, mock_manager):
        response = sender_api_handler.create_sender_handler(
            make_event(body={'email': 'a@example.com'}, authorizer={}), None
        )

        assert response['statusCode'] == 401
        mock_manager.create_sender.assert_not_called()

    @pytest.mark.parametrize('error,status', [
        (BadRequestError("Maximum sender limit reached (1). Current tier: free-tier"), 400),
        (UnauthorizedError("DNS verification not available for your tier"), 401),
        (ConflictError("Email address already configured"), 409),
    ])
    def test_client_errors_keep_message(self, mock_manager, error, status):
        mock_manager.create_sender.side_effect = error

        response = sender_api_handler.create_sender_handler(
            make_event(body={'email': 'a@example.com'}), None
        )

        assert response['statusCode'] == status
        assert json.loads(response['body']) == {'message': error.message}

    def test_aws_error_hides_detail(self, mock_manager):
        """Test 5xx errors return a generic message."""
        mock_manager.create_sender.side_effect = AwsError("SES mailbox verification failed: throttled")

        response = sender_api_handler.create_sender_handler(
            make_event(body={'email': 'a@example.com'}), None
        )

        assert response['statusCode'] == 500
        assert json.loads(response['body']) == {'message': 'Internal server error'}

    def test_unexpected_error(self, mock_manager):
        mock_manager.create_sender.side_effect = RuntimeError("boom")

        response = sender_api_handler.create_sender_handler(
            make_event(body={'email': 'a@example.com'}), None
        )

        assert response['statusCode'] == 500
        assert 'boom' not in response['body']


class TestOtherHandlers:
    """Test the remaining endpoints."""

    def test_list_senders(self, mock_manager):
        mock_manager.list_senders.return_value = (
            [make_sender()],
            TierLimits('creator-tier', 2, 1, True, True),
        )

        response = sender_api_handler.list_senders_handler(make_event(), None)

        body = json.loads(response['body'])
        assert response['statusCode'] == 200
        assert [s['senderId'] for s in body['senders']] == ['s-1']
        assert body['tierLimits']['maxSenders'] == 2
        assert body['tierLimits']['canUseDNS'] is True

    def test_update_sender(self, mock_manager):
        mock_manager.update_sender.return_value = make_sender(name='News')

        response = sender_api_handler.update_sender_handler(
            make_event(body={'name': 'News'}, path={'senderId': 's-1'}), None
        )

        assert response['statusCode'] == 200
        assert json.loads(response['body'])['name'] == 'News'
        mock_manager.update_sender.assert_called_once_with('tenant-1', 's-1', {'name': 'News'})

    def test_update_requires_sender_id(self, mock_manager):
        response = sender_api_handler.update_sender_handler(make_event(body={'name': 'News'}), None)

        assert response['statusCode'] == 400
        assert json.loads(response['body']) == {'message': 'senderId is required'}

    def test_delete_returns_no_content(self, mock_manager):
        response = sender_api_handler.delete_sender_handler(make_event(path={'senderId': 's-1'}), None)

        assert response['statusCode'] == 204
        assert response['body'] == ''
        mock_manager.delete_sender.assert_called_once_with('tenant-1', 's-1')

    def test_delete_not_found(self, mock_manager):
        mock_manager.delete_sender.side_effect = NotFoundError("Sender not found")

        response = sender_api_handler.delete_sender_handler(make_event(path={'senderId': 's-9'}), None)

        assert response['statusCode'] == 404
        assert json.loads(response['body']) == {'message': 'Sender not found'}

    def test_get_sender_status(self, mock_manager):
        mock_manager.get_sender_status.return_value = StatusCheckResult(
            sender=make_sender(verification_status=VerificationStatus.VERIFIED),
            status_changed=True,
            last_checked='2024-01-15T12:00:00+00:00',
        )

        response = sender_api_handler.get_sender_status_handler(make_event(path={'senderId': 's-1'}), None)

        body = json.loads(response['body'])
        assert body['verificationStatus'] == 'verified'
        assert body['statusChanged'] is True

    def test_resend_verification(self, mock_manager):
        mock_manager.resend_verification.return_value = make_sender()

        response = sender_api_handler.resend_verification_handler(make_event(path={'senderId': 's-1'}), None)

        body = json.loads(response['body'])
        assert response['statusCode'] == 200
        assert body['message'] == 'Verification resent'

    def test_partial_propagation_lists_senders(self, mock_manager):
        mock_manager.resend_verification.side_effect = PartialPropagationError(
            "Domain status not applied to 1 sender(s), please retry", failed_sender_ids=['s-2']
        )

        response = sender_api_handler.resend_verification_handler(make_event(path={'senderId': 's-1'}), None)

        assert response['statusCode'] == 409
        assert json.loads(response['body'])['failedSenderIds'] == ['s-2']

    def test_verify_domain(self, mock_manager):
        mock_manager.start_domain_verification.return_value = DomainVerificationRecord(
            domain='example.com',
            tenant_id='tenant-1',
            verification_status=VerificationStatus.PENDING,
            created_at='2024-01-15T12:00:00+00:00',
            updated_at='2024-01-15T12:00:00+00:00',
        )
        mock_manager.get_domain_verification.return_value = {'domain': 'example.com', 'instructions': []}

        response = sender_api_handler.verify_domain_handler(make_event(body={'domain': 'example.com'}), None)

        assert response['statusCode'] == 201
        mock_manager.start_domain_verification.assert_called_once_with('tenant-1', 'creator-tier', 'example.com')
        mock_manager.get_domain_verification.assert_called_once_with('tenant-1', 'example.com')

    def test_get_domain_verification(self, mock_manager):
        mock_manager.get_domain_verification.return_value = {'domain': 'example.com'}

        response = sender_api_handler.get_domain_verification_handler(
            make_event(path={'domain': 'example.com'}), None
        )

        assert response['statusCode'] == 200
        assert json.loads(response['body']) == {'domain': 'example.com'}


class TestHealthCheck:
    """Test health check endpoint."""

    def test_health_check(self):
        response = sender_api_handler.health_check({}, None)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['status'] == 'healthy'
        assert body['tableConfigured'] is True
