"""
EventBridge Scheduler follow-up status checks.

After a mailbox verification is issued, a one-shot schedule invokes the status
check function shortly afterwards; each check that still finds the sender
pending schedules the next one until the attempt resolves or times out.
"""

import json
import logging
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

CHECK_SENDER_STATUS_FUNCTION_ARN = os.environ.get('CHECK_SENDER_STATUS_FUNCTION_ARN')
SCHEDULER_ROLE_ARN = os.environ.get('SCHEDULER_ROLE_ARN')
STATUS_CHECK_DELAY_MINUTES = int(os.environ.get('STATUS_CHECK_DELAY_MINUTES', '1'))

scheduler_config = Config(
    retries={
        'max_attempts': 1,
        'mode': 'standard'
    },
    connect_timeout=3,
    read_timeout=5
)

_scheduler_client = None


def get_client():
    """Return the process-wide Scheduler client, creating it on first use."""
    global _scheduler_client
    if _scheduler_client is None:
        region = os.environ.get('AWS_REGION', os.environ.get('AWS_DEFAULT_REGION', 'us-east-1'))
        _scheduler_client = boto3.client('scheduler', region_name=region, config=scheduler_config)
    return _scheduler_client


def is_configured() -> bool:
    """True if both the target function and the scheduler role are set."""
    return bool(CHECK_SENDER_STATUS_FUNCTION_ARN and SCHEDULER_ROLE_ARN)


def build_schedule_name(tenant_id: str, sender_id: str) -> str:
    """Unique schedule name (64 characters max, per the Scheduler API)."""
    suffix = int(time.time() * 1000)
    return f"sender-check-{tenant_id[:8]}-{sender_id[:8]}-{suffix}"


def schedule_status_check(
    tenant_id: str,
    sender_id: str,
    now: Optional[datetime] = None
) -> bool:
    """
    Schedule a one-shot status check for a sender.

    Returns:
        bool: True if the schedule was created; failures are logged only
    """
    if not is_configured():
        logger.info("Status check scheduling not configured, skipping")
        return False

    now = now or datetime.now(timezone.utc)
    run_at = now + timedelta(minutes=STATUS_CHECK_DELAY_MINUTES)
    schedule_name = build_schedule_name(tenant_id, sender_id)

    try:
        get_client().create_schedule(
            Name=schedule_name,
            ScheduleExpression=f"at({run_at.strftime('%Y-%m-%dT%H:%M:%S')})",
            ActionAfterCompletion='DELETE',
            FlexibleTimeWindow={'Mode': 'OFF'},
            Target={
                'Arn': CHECK_SENDER_STATUS_FUNCTION_ARN,
                'RoleArn': SCHEDULER_ROLE_ARN,
                'Input': json.dumps({'tenantId': tenant_id, 'senderId': sender_id}),
            }
        )
    except (ClientError, BotoCoreError) as e:
        logger.error(
            f"Failed to schedule status check: tenant_id={tenant_id}, "
            f"sender_id={sender_id}, error={e}"
        )
        return False

    logger.info(f"Scheduled status check: sender_id={sender_id}, schedule={schedule_name}")
    return True
