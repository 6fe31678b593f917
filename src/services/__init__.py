"""
AWS service modules used by the sender lifecycle manager.

This package contains the DynamoDB store adapter and the SES, EventBridge and
EventBridge Scheduler collaborators. Clients are created lazily on first use
and reused across invocations.
"""

__all__ = ['dynamodb', 'events', 'scheduler', 'ses']
