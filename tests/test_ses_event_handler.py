"""
Tests for the SES event handler.
"""

import pytest
from unittest.mock import MagicMock, patch
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

import ses_event_handler
from domain.errors import AwsError, ConflictError, NotFoundError
from domain.models import VerificationStatus

TENANT = 'tenant-1'


def verification_event(identity, event_type='identityVerificationSuccess', **detail):
    detail.update({'event-type': event_type, 'identity': identity})
    return {'detail-type': 'SES Identity Verification', 'source': 'aws.ses', 'detail': detail}


def send_event(tags):
    return {
        'detail-type': 'Email Sent',
        'source': 'aws.ses',
        'detail': {'eventType': 'Send', 'mail': {'source': 'a@example.com', 'tags': tags}},
    }


@pytest.fixture
def mock_manager():
    with patch('ses_event_handler.sender_manager') as manager:
        yield manager


class TestParsing:
    """Test event extraction and result mapping."""

    def test_single_event(self):
        event = verification_event('a@example.com')

        assert ses_event_handler.extract_details(event) == [event['detail']]

    def test_batched_records(self):
        first = verification_event('a@example.com')
        second = verification_event('example.com')

        details = ses_event_handler.extract_details({'Records': [first, second, {'noDetail': True}]})

        assert details == [first['detail'], second['detail']]

    @pytest.mark.parametrize('detail,expected', [
        ({'event-type': 'identityVerificationSuccess'}, ('verified', None)),
        ({'event-type': 'identityVerificationFailure', 'reason': 'Expired'}, ('failed', 'Expired')),
        ({'event-type': 'identityVerificationFailure'}, ('failed', None)),
        ({'event-type': 'domainVerification', 'status': 'success'}, ('verified', None)),
        ({'event-type': 'domainVerification', 'status': 'failure', 'reason': 'DKIM'}, ('failed', 'DKIM')),
        ({'event-type': 'domainVerification', 'status': 'pending'}, None),
        ({'event-type': 'bounce'}, None),
    ])
    def test_map_verification_result(self, detail, expected):
        assert ses_event_handler.map_verification_result(detail) == expected


class TestLambdaHandler:
    """Test event processing with a mocked manager."""

    def test_invalid_payload(self, mock_manager):
        assert ses_event_handler.lambda_handler({'foo': 'bar'}, None) == {'status': 'invalid'}

    def test_mailbox_result_applied_to_every_tenant(self, mock_manager):
        mock_manager.senders_for_identity.return_value = [
            MagicMock(tenant_id='tenant-1', sender_id='s-1'),
            MagicMock(tenant_id='tenant-2', sender_id='s-9'),
        ]

        result = ses_event_handler.lambda_handler(verification_event('a@example.com'), None)

        assert result == {'status': 'processed', 'applied': 2, 'skipped': 0, 'failed': 0}
        mock_manager.senders_for_identity.assert_called_once_with('a@example.com')
        mock_manager.record_sender_result.assert_any_call('tenant-1', 's-1', 'verified', None)
        mock_manager.record_sender_result.assert_any_call('tenant-2', 's-9', 'verified', None)
        mock_manager.record_domain_result.assert_not_called()

    def test_domain_result_applied_to_domain_records(self, mock_manager):
        mock_manager.domains_for_identity.return_value = [
            MagicMock(tenant_id='tenant-1', domain='example.com'),
        ]
        event = verification_event('example.com', 'domainVerification', status='failure', reason='DKIM')

        result = ses_event_handler.lambda_handler(event, None)

        assert result['applied'] == 1
        mock_manager.record_domain_result.assert_called_once_with('tenant-1', 'example.com', 'failed', 'DKIM')
        mock_manager.senders_for_identity.assert_not_called()

    def test_unknown_identity_skipped(self, mock_manager):
        mock_manager.senders_for_identity.return_value = []

        result = ses_event_handler.lambda_handler(verification_event('a@example.com'), None)

        assert result['skipped'] == 1
        mock_manager.record_sender_result.assert_not_called()

    def test_unhandled_event_type_skipped(self, mock_manager):
        result = ses_event_handler.lambda_handler(verification_event('a@example.com', 'bounce'), None)

        assert result['skipped'] == 1
        mock_manager.senders_for_identity.assert_not_called()

    def test_failure_for_one_tenant_does_not_stop_others(self, mock_manager):
        mock_manager.senders_for_identity.return_value = [
            MagicMock(tenant_id='tenant-1', sender_id='s-1'),
            MagicMock(tenant_id='tenant-2', sender_id='s-9'),
        ]
        mock_manager.record_sender_result.side_effect = [ConflictError("Invalid transition"), None]

        result = ses_event_handler.lambda_handler(verification_event('a@example.com'), None)

        assert result == {'status': 'processed', 'applied': 1, 'skipped': 0, 'failed': 1}

    def test_lookup_failure_never_raises(self, mock_manager):
        mock_manager.senders_for_identity.side_effect = AwsError("DynamoDB Query failed")

        result = ses_event_handler.lambda_handler(verification_event('a@example.com'), None)

        assert result['failed'] == 1

    def test_send_event_counts_email(self, mock_manager):
        event = send_event({'tenantId': ['tenant-1'], 'senderId': ['s-1']})

        result = ses_event_handler.lambda_handler(event, None)

        assert result['applied'] == 1
        mock_manager.record_email_sent.assert_called_once_with('tenant-1', 's-1')

    def test_send_event_without_tags_skipped(self, mock_manager):
        result = ses_event_handler.lambda_handler(send_event({'campaign': ['spring']}), None)

        assert result['skipped'] == 1
        mock_manager.record_email_sent.assert_not_called()

    def test_send_event_for_deleted_sender(self, mock_manager):
        mock_manager.record_email_sent.side_effect = NotFoundError("Sender not found")

        result = ses_event_handler.lambda_handler(
            send_event({'tenantId': ['tenant-1'], 'senderId': ['gone']}), None
        )

        assert result['failed'] == 1


class TestWithStore:
    """Test the handler against the in-memory table."""

    def test_mailbox_verified_through_identity_index(self, manager):
        sender = manager.create_sender(TENANT, 'pro-tier', {'email': 'Alice@example.com'})

        with patch('ses_event_handler.sender_manager', manager):
            result = ses_event_handler.lambda_handler(verification_event('alice@example.com'), None)

        assert result['applied'] == 1
        stored = manager.get_sender(TENANT, sender.sender_id)
        assert stored.verification_status is VerificationStatus.VERIFIED

    def test_domain_result_propagates_to_senders(self, manager):
        first = manager.create_sender(TENANT, 'creator-tier', {
            'email': 'news@example.com', 'verificationType': 'domain'
        })
        second = manager.create_sender(TENANT, 'creator-tier', {
            'email': 'hello@example.com', 'verificationType': 'domain'
        })
        event = verification_event('example.com', 'domainVerification', status='success')

        with patch('ses_event_handler.sender_manager', manager):
            ses_event_handler.lambda_handler(event, None)

        for sender in (first, second):
            assert manager.get_sender(TENANT, sender.sender_id).verification_status is VerificationStatus.VERIFIED

    def test_send_event_increments_counter(self, manager):
        sender = manager.create_sender(TENANT, 'pro-tier', {'email': 'a@example.com'})
        event = send_event({'tenantId': [TENANT], 'senderId': [sender.sender_id]})

        with patch('ses_event_handler.sender_manager', manager):
            ses_event_handler.lambda_handler(event, None)
            ses_event_handler.lambda_handler(event, None)

        assert manager.get_sender(TENANT, sender.sender_id).emails_sent == 2
