"""
EventBridge publication of sender lifecycle events.

Publishing is fire-and-forget: downstream consumers (group assignment,
notifications) are best effort, so failures are logged and never raised.
"""

import json
import logging
import os
from typing import Any, Dict

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

EVENT_BUS_NAME = os.environ.get('EVENT_BUS_NAME', 'default')
EVENT_SOURCE = os.environ.get('EVENT_SOURCE', 'newsletter.senders')

events_config = Config(
    retries={
        'max_attempts': 1,
        'mode': 'standard'
    },
    connect_timeout=3,
    read_timeout=5
)

_events_client = None


def get_client():
    """Return the process-wide EventBridge client, creating it on first use."""
    global _events_client
    if _events_client is None:
        region = os.environ.get('AWS_REGION', os.environ.get('AWS_DEFAULT_REGION', 'us-east-1'))
        _events_client = boto3.client('events', region_name=region, config=events_config)
    return _events_client


def publish(event_type: str, detail: Dict[str, Any]) -> bool:
    """
    Publish an event to the configured bus.

    Args:
        event_type: EventBridge detail-type (e.g. "Sender Created")
        detail: JSON-serializable event detail

    Returns:
        bool: True if EventBridge accepted the event
    """
    try:
        response = get_client().put_events(
            Entries=[{
                'Source': EVENT_SOURCE,
                'DetailType': event_type,
                'Detail': json.dumps(detail),
                'EventBusName': EVENT_BUS_NAME,
            }]
        )
    except (ClientError, BotoCoreError, TypeError, ValueError) as e:
        logger.error(f"Failed to publish event: type={event_type}, error={e}")
        return False

    if response.get('FailedEntryCount', 0):
        entry = (response.get('Entries') or [{}])[0]
        logger.error(
            f"EventBridge rejected event: type={event_type}, "
            f"error_code={entry.get('ErrorCode')}, error_message={entry.get('ErrorMessage')}"
        )
        return False

    logger.info(f"Published event: type={event_type}")
    return True
