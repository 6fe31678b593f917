"""
SES v2 identity operations for sender verification.

This module starts mailbox and domain verification, polls identity status and
removes identities. Calls are single attempts; retries are left to the caller's
next explicit action (resend verification, status poll).
"""

import logging
import os
from typing import List, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from domain.errors import AwsError
from domain.models import DnsRecord, SesStatusInfo

logger = logging.getLogger(__name__)

# Configuration from environment
ENVIRONMENT = os.environ.get('ENVIRONMENT', 'dev')
SES_CONFIGURATION_SET = os.environ.get('SES_CONFIGURATION_SET')
SES_VERIFY_TEMPLATE_NAME = os.environ.get('SES_VERIFY_TEMPLATE_NAME')
RESOURCE_ARN_PREFIX = os.environ.get(
    'RESOURCE_ARN_PREFIX', 'arn:aws:ses:us-east-1:123456789012:identity/'
)

# Configure SES client with timeouts and no retries (one attempt per user action)
ses_config = Config(
    retries={
        'max_attempts': 1,
        'mode': 'standard'
    },
    connect_timeout=5,
    read_timeout=15
)

_ses_client = None


def get_client():
    """Return the process-wide SES v2 client, creating it on first use."""
    global _ses_client
    if _ses_client is None:
        region = os.environ.get('AWS_REGION', os.environ.get('AWS_DEFAULT_REGION', 'us-east-1'))
        _ses_client = boto3.client('sesv2', region_name=region, config=ses_config)
        logger.info(f"SES client initialized: region={region}, connect=5s, read=15s, max_attempts=1")
    return _ses_client


def identity_arn(identity: str) -> str:
    """Provider resource ARN of an email or domain identity."""
    return f"{RESOURCE_ARN_PREFIX}{identity}"


def initiate_mailbox_verification(email: str, tenant_id: str) -> str:
    """
    Start verification of a mailbox identity.

    In production with a custom template configured, a branded verification
    email is sent; otherwise the standard SES verification email is triggered
    by creating the identity.

    Args:
        email: Mailbox address to verify
        tenant_id: Tenant the identity is associated with

    Returns:
        str: Identity ARN

    Raises:
        AwsError: If SES rejects the request or times out
    """
    client = get_client()

    try:
        if ENVIRONMENT == 'production' and SES_VERIFY_TEMPLATE_NAME:
            response = client.send_custom_verification_email(
                EmailAddress=email,
                TemplateName=SES_VERIFY_TEMPLATE_NAME
            )
            logger.info(
                f"Custom verification email sent: tenant_id={tenant_id}, email={email}, "
                f"message_id={response.get('MessageId')}"
            )
        else:
            try:
                client.create_email_identity(**_identity_kwargs(email))
            except ClientError as e:
                if e.response.get('Error', {}).get('Code') != 'AlreadyExistsException':
                    raise
                # SES only sends the verification email when the identity is created
                logger.info(f"SES mailbox identity exists, recreating: email={email}")
                client.delete_email_identity(EmailIdentity=email)
                client.create_email_identity(**_identity_kwargs(email))
            logger.info(f"SES mailbox identity created: tenant_id={tenant_id}, email={email}")
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to initiate mailbox verification: email={email}, error={e}")
        raise AwsError(f"SES mailbox verification failed: {e}")

    _associate_tenant(email, tenant_id)
    return identity_arn(email)


def initiate_domain_verification(domain: str, tenant_id: str) -> Tuple[List[DnsRecord], str]:
    """
    Register a domain identity and return the DNS records proving ownership.

    An identity that already exists in SES (a re-verification) is kept and its
    current DKIM tokens are returned.

    Returns:
        Tuple of (DKIM CNAME records, identity ARN)

    Raises:
        AwsError: If SES rejects the request or times out
    """
    client = get_client()

    try:
        try:
            client.create_email_identity(**_identity_kwargs(domain))
            logger.info(f"SES domain identity created: tenant_id={tenant_id}, domain={domain}")
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') != 'AlreadyExistsException':
                raise
            logger.info(f"SES domain identity already exists, reusing: domain={domain}")

        identity = client.get_email_identity(EmailIdentity=domain)
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to initiate domain verification: domain={domain}, error={e}")
        raise AwsError(f"SES domain verification failed: {e}")

    tokens = identity.get('DkimAttributes', {}).get('Tokens', [])
    dns_records = [
        DnsRecord(
            name=f"{token}._domainkey.{domain}",
            record_type='CNAME',
            value=f"{token}.dkim.amazonses.com",
            description=f"DKIM token {i} for email authentication"
        )
        for i, token in enumerate(tokens, start=1)
    ]

    _associate_tenant(domain, tenant_id)
    logger.info(f"Domain verification issued: domain={domain}, dns_records={len(dns_records)}")
    return dns_records, identity_arn(domain)


def poll_verification_status(identity: str) -> SesStatusInfo:
    """
    Look up the verification status of an identity.

    Lookup failures are reported in the returned info rather than raised, so a
    status poll can still answer with the stored status.
    """
    client = get_client()

    try:
        response = client.get_email_identity(EmailIdentity=identity)
    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', '')
        if error_code == 'NotFoundException':
            return SesStatusInfo(
                verification_status='not_found',
                error='Identity not found in SES'
            )
        logger.error(f"Error checking SES verification status: identity={identity}, error={e}")
        return SesStatusInfo(verification_status='unknown', error='Failed to check SES status')
    except BotoCoreError as e:
        logger.error(f"Error checking SES verification status: identity={identity}, error={e}")
        return SesStatusInfo(verification_status='unknown', error='Failed to check SES status')

    return SesStatusInfo(
        verification_status=str(response.get('VerificationStatus', 'unknown')).lower(),
        dkim_status=str(response.get('DkimAttributes', {}).get('Status', 'unknown')).lower(),
        identity_type=str(response.get('IdentityType', 'unknown')).lower(),
    )


def delete_identity(identity: str, tenant_id: str) -> None:
    """
    Remove an identity and its tenant association. Failures are logged only;
    the identity may already be gone.
    """
    client = get_client()

    try:
        client.delete_tenant_resource_association(
            TenantName=tenant_id,
            ResourceArn=identity_arn(identity)
        )
    except (ClientError, BotoCoreError) as e:
        logger.warning(
            f"Failed to delete tenant resource association (continuing): "
            f"identity={identity}, tenant_id={tenant_id}, error={e}"
        )

    try:
        client.delete_email_identity(EmailIdentity=identity)
        logger.info(f"Cleaned up SES identity: identity={identity}")
    except (ClientError, BotoCoreError) as e:
        logger.warning(f"Failed to delete SES identity (continuing): identity={identity}, error={e}")


def _identity_kwargs(identity: str) -> dict:
    kwargs = {'EmailIdentity': identity}
    if SES_CONFIGURATION_SET:
        kwargs['ConfigurationSetName'] = SES_CONFIGURATION_SET
    return kwargs


def _associate_tenant(identity: str, tenant_id: str) -> None:
    """Associate an identity with the tenant (non-fatal)."""
    try:
        get_client().create_tenant_resource_association(
            TenantName=tenant_id,
            ResourceArn=identity_arn(identity)
        )
    except (ClientError, BotoCoreError) as e:
        logger.warning(
            f"Failed to create tenant resource association (non-fatal): "
            f"identity={identity}, tenant_id={tenant_id}, error={e}"
        )
