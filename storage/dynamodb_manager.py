"""Shared DynamoDB table access for the structured local database tier."""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from processor.errors import StorageUnavailableError

logger = logging.getLogger(__name__)


def from_dynamodb(value: Any) -> Any:
    """Convert DynamoDB Decimals back to int/float recursively."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, list):
        return [from_dynamodb(item) for item in value]
    if isinstance(value, dict):
        return {key: from_dynamodb(item) for key, item in value.items()}
    return value


def to_dynamodb(value: Any) -> Any:
    """Convert floats to Decimal recursively, as boto3 requires."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, list):
        return [to_dynamodb(item) for item in value]
    if isinstance(value, dict):
        return {key: to_dynamodb(item) for key, item in value.items()}
    return value


class DynamoDBManager:
    """Base class wrapping one DynamoDB table."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    KEY_NAME = 'id'

    def __init__(
        self,
        table_name: str,
        endpoint_url: Optional[str] = None,
        region_name: Optional[str] = None
    ):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
            endpoint_url: Optional endpoint, e.g. a local DynamoDB instance
            region_name: Optional AWS region
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource(
            'dynamodb', endpoint_url=endpoint_url, region_name=region_name
        )
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized {type(self).__name__} for table: {table_name}")

    def _scan(self, filter_expression=None) -> List[Dict[str, Any]]:
        """
        Scan the table, following pagination.

        Args:
            filter_expression: Optional boto3 condition

        Returns:
            List of items with Decimals converted

        Raises:
            StorageUnavailableError: If the table cannot be read
        """
        kwargs = {}
        if filter_expression is not None:
            kwargs['FilterExpression'] = filter_expression

        try:
            response = self.table.scan(**kwargs)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs
                )
                items.extend(response.get('Items', []))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error scanning DynamoDB table {self.table_name}: {e}")
            raise StorageUnavailableError(f"Cannot read table {self.table_name}: {e}") from e

        return [from_dynamodb(item) for item in items]

    def _get_item(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.table.get_item(Key={self.KEY_NAME: key})
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading item {key} from {self.table_name}: {e}")
            raise StorageUnavailableError(f"Cannot read table {self.table_name}: {e}") from e
        item = response.get('Item')
        return from_dynamodb(item) if item else None

    def _put_item(self, item: Dict[str, Any], condition=None) -> None:
        kwargs = {'Item': to_dynamodb(item)}
        if condition is not None:
            kwargs['ConditionExpression'] = condition
        try:
            self.table.put_item(**kwargs)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                raise
            logger.error(f"Error writing item to {self.table_name}: {e}")
            raise StorageUnavailableError(f"Cannot write table {self.table_name}: {e}") from e
        except BotoCoreError as e:
            logger.error(f"Error writing item to {self.table_name}: {e}")
            raise StorageUnavailableError(f"Cannot write table {self.table_name}: {e}") from e

    def _delete_item(self, key: str) -> None:
        try:
            self.table.delete_item(Key={self.KEY_NAME: key})
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error deleting item {key} from {self.table_name}: {e}")
            raise StorageUnavailableError(f"Cannot write table {self.table_name}: {e}") from e

    def batch_write(self, items: List[Dict[str, Any]]) -> int:
        """
        Write items in batches of 25.

        Args:
            items: Items to write

        Returns:
            Count of successfully written items
        """
        success_count = 0

        for i in range(0, len(items), self.BATCH_SIZE):
            batch = items[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for item in batch:
                        writer.put_item(Item=to_dynamodb(item))
                success_count += len(batch)
            except (ClientError, BotoCoreError) as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1} to {self.table_name}: {e}"
                )
                # Continue processing remaining batches
                continue

        return success_count

    def batch_delete(self, keys: List[str]) -> int:
        """
        Delete items in batches of 25.

        Args:
            keys: Key values to delete

        Returns:
            Count of successfully deleted items
        """
        success_count = 0

        for i in range(0, len(keys), self.BATCH_SIZE):
            batch = keys[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for key in batch:
                        writer.delete_item(Key={self.KEY_NAME: key})
                success_count += len(batch)
            except (ClientError, BotoCoreError) as e:
                logger.error(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1} from {self.table_name}: {e}"
                )
                continue

        return success_count

    def _clear(self) -> int:
        keys = [item[self.KEY_NAME] for item in self._scan()]
        return self.batch_delete(keys)


def attribute_equals(name: str, value: Any):
    return Attr(name).eq(value)
