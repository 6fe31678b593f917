"""
DynamoDB key-value store adapter.

This module provides generic get/put/query/delete/update operations over the
single sender table. Keys are `pk`/`sk`; a tenant's partition is read with
strongly consistent queries, and SES identities are resolved through the GSI2
index. Conditional writes are described with `Condition` and rendered to
boto3 condition expressions here, so callers never build expression strings.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from domain.errors import AwsError, InternalError

logger = logging.getLogger(__name__)

# Configuration from environment
TABLE_NAME = os.environ.get('TABLE_NAME')
IDENTITY_INDEX_NAME = os.environ.get('IDENTITY_INDEX_NAME', 'GSI2')

# Configure DynamoDB client with timeouts so a slow call never hangs the invocation
dynamodb_config = Config(
    retries={
        'max_attempts': 2,
        'mode': 'standard'
    },
    connect_timeout=5,
    read_timeout=10
)


class ConditionalCheckFailed(Exception):
    """Raised when a conditional write's condition does not hold."""
    pass


@dataclass(frozen=True)
class Condition:
    """
    Guard for a conditional write.

    Attributes:
        exists: True requires the item to exist, False requires it to be absent,
            None places no requirement
        equals: Attribute values the stored item must currently have
    """
    exists: Optional[bool] = None
    equals: Dict[str, Any] = field(default_factory=dict)

    def to_expression(self):
        """Render as a boto3 condition expression (None if unconditional)."""
        expression = None
        if self.exists is True:
            expression = Attr('pk').exists()
        elif self.exists is False:
            expression = Attr('pk').not_exists()

        for name, value in self.equals.items():
            clause = Attr(name).eq(value)
            expression = clause if expression is None else expression & clause

        return expression


_table = None


def get_table():
    """
    Return the process-wide DynamoDB Table, creating it on first use.

    Raises:
        InternalError: If TABLE_NAME is not configured
    """
    global _table
    if _table is None:
        if not TABLE_NAME:
            raise InternalError("TABLE_NAME not configured")
        region = os.environ.get('AWS_REGION', os.environ.get('AWS_DEFAULT_REGION', 'us-east-1'))
        resource = boto3.resource('dynamodb', region_name=region, config=dynamodb_config)
        _table = resource.Table(TABLE_NAME)
        logger.info(
            f"DynamoDB table initialized: table={TABLE_NAME}, region={region}, "
            f"connect_timeout=5s, read_timeout=10s"
        )
    return _table


class DynamoDBStore:
    """
    Key-value store over one DynamoDB table.

    The table is resolved lazily, so constructing a store at import time does
    not touch AWS. Tests inject a mock table directly.
    """

    def __init__(self, table=None, index_name: Optional[str] = None):
        self._table = table
        self.index_name = index_name or IDENTITY_INDEX_NAME

    @property
    def table(self):
        if self._table is None:
            self._table = get_table()
        return self._table

    def put_item(
        self,
        key: Dict[str, str],
        attributes: Dict[str, Any],
        condition: Optional[Condition] = None
    ) -> None:
        """
        Write a whole item.

        Raises:
            ConditionalCheckFailed: If the condition does not hold
            AwsError: On any other DynamoDB failure or timeout
        """
        item = dict(attributes)
        item.update(key)
        kwargs = {'Item': item}
        self._apply_condition(kwargs, condition)
        self._call('PutItem', key, self.table.put_item, **kwargs)

    def get_item(self, key: Dict[str, str]) -> Optional[Dict[str, Any]]:
        """Read one item with a strongly consistent read (None if absent)."""
        response = self._call(
            'GetItem', key, self.table.get_item, Key=key, ConsistentRead=True
        )
        return response.get('Item')

    def query_partition(self, pk: str, sk_prefix: str) -> List[Dict[str, Any]]:
        """
        Return every item of one partition whose sort key starts with sk_prefix.

        Reads the base table with ConsistentRead, so writes acknowledged
        before the call are always included (all pages).
        """
        return self._query(
            {'pk': pk, 'sk': sk_prefix},
            KeyConditionExpression=Key('pk').eq(pk) & Key('sk').begins_with(sk_prefix),
            ConsistentRead=True,
        )

    def query_by_index(self, index_value: str) -> List[Dict[str, Any]]:
        """
        Return every item whose GSI2PK equals index_value (all pages).

        Global secondary indexes are eventually consistent; never base a
        conditional write on this listing.
        """
        return self._query(
            {'GSI2PK': index_value},
            IndexName=self.index_name,
            KeyConditionExpression=Key('GSI2PK').eq(index_value),
        )

    def _query(self, key: Dict[str, str], **kwargs) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        while True:
            response = self._call('Query', key, self.table.query, **kwargs)
            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                break
            kwargs['ExclusiveStartKey'] = last_key
        return items

    def delete_item(
        self,
        key: Dict[str, str],
        condition: Optional[Condition] = None
    ) -> None:
        kwargs = {'Key': key}
        self._apply_condition(kwargs, condition)
        self._call('DeleteItem', key, self.table.delete_item, **kwargs)

    def update_item(
        self,
        key: Dict[str, str],
        set_values: Optional[Dict[str, Any]] = None,
        add_values: Optional[Dict[str, Any]] = None,
        condition: Optional[Condition] = None
    ) -> Dict[str, Any]:
        """
        Update individual attributes in place.

        Args:
            key: Item key
            set_values: Attributes to SET
            add_values: Numeric attributes to ADD to (created as 0 when missing)
            condition: Optional guard

        Returns:
            Dict: The item after the update
        """
        set_values = set_values or {}
        add_values = add_values or {}
        if not set_values and not add_values:
            raise InternalError("update_item requires at least one attribute")

        names: Dict[str, str] = {}
        values: Dict[str, Any] = {}
        clauses = []

        set_parts = []
        for i, (name, value) in enumerate(set_values.items()):
            names[f"#s{i}"] = name
            values[f":s{i}"] = value
            set_parts.append(f"#s{i} = :s{i}")
        if set_parts:
            clauses.append("SET " + ", ".join(set_parts))

        add_parts = []
        for i, (name, value) in enumerate(add_values.items()):
            names[f"#a{i}"] = name
            values[f":a{i}"] = value
            add_parts.append(f"#a{i} :a{i}")
        if add_parts:
            clauses.append("ADD " + ", ".join(add_parts))

        kwargs = {
            'Key': key,
            'UpdateExpression': " ".join(clauses),
            'ExpressionAttributeNames': names,
            'ExpressionAttributeValues': values,
            'ReturnValues': 'ALL_NEW',
        }
        self._apply_condition(kwargs, condition)
        response = self._call('UpdateItem', key, self.table.update_item, **kwargs)
        return response.get('Attributes', {})

    @staticmethod
    def _apply_condition(kwargs: Dict[str, Any], condition: Optional[Condition]) -> None:
        if condition is None:
            return
        expression = condition.to_expression()
        if expression is not None:
            kwargs['ConditionExpression'] = expression

    @staticmethod
    def _call(operation: str, key: Dict[str, str], method, **kwargs) -> Dict[str, Any]:
        """Invoke a table method and translate botocore failures."""
        try:
            return method(**kwargs)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == 'ConditionalCheckFailedException':
                logger.info(f"DynamoDB {operation} condition failed: key={key}")
                raise ConditionalCheckFailed(f"{operation} condition failed for {key}")

            error_message = e.response.get('Error', {}).get('Message', str(e))
            logger.error(
                f"DynamoDB {operation} failed: key={key}, "
                f"error_code={error_code}, error_message={error_message}"
            )
            raise AwsError(f"DynamoDB {operation} failed: {error_code}")
        except BotoCoreError as e:
            # Timeouts and connection failures
            logger.error(f"DynamoDB {operation} failed: key={key}, error={e}")
            raise AwsError(f"DynamoDB {operation} failed: {type(e).__name__}")
