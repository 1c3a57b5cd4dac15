"""DynamoDB utilities and helper functions."""

import os
import boto3
from typing import Any, Dict, List, Optional
from decimal import Decimal
from botocore.exceptions import ClientError
import logging

from .exceptions import ConditionFailedError, DatabaseError

logger = logging.getLogger(__name__)


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


class DynamoDBClient:
    """DynamoDB client wrapper with common operations."""

    def __init__(self, table_name: str, resource: Optional[Any] = None):
        """
        Initialize DynamoDB client.

        Args:
            table_name: Name of the DynamoDB table
            resource: Optional pre-built boto3 DynamoDB resource
        """
        self.table_name = table_name

        if resource is not None:
            self.dynamodb = resource
        else:
            # Support for LocalStack
            endpoint_url = os.environ.get('LOCALSTACK_ENDPOINT')
            if endpoint_url and os.environ.get('USE_LOCALSTACK', 'false').lower() == 'true':
                self.dynamodb = boto3.resource('dynamodb', endpoint_url=endpoint_url)
            else:
                self.dynamodb = boto3.resource('dynamodb')

        self.table = self.dynamodb.Table(table_name)

    def put_item(
        self,
        item: Dict[str, Any],
        condition_expression: Optional[str] = None,
        expression_names: Optional[Dict[str, str]] = None,
        expression_values: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Put an item in the table.

        Args:
            item: Item to put
            condition_expression: Optional condition the write must satisfy
            expression_names: Optional expression attribute names
            expression_values: Optional expression attribute values

        Returns:
            The item that was put

        Raises:
            ConditionFailedError: If the condition expression was not met
            DatabaseError: If the operation fails
        """
        try:
            # Convert floats to Decimal for DynamoDB
            item = self._python_to_dynamodb(item)
            kwargs = {'Item': item}

            if condition_expression:
                kwargs['ConditionExpression'] = condition_expression
            if expression_names:
                kwargs['ExpressionAttributeNames'] = expression_names
            if expression_values:
                kwargs['ExpressionAttributeValues'] = self._python_to_dynamodb(expression_values)

            self.table.put_item(**kwargs)
            return item
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                raise ConditionFailedError(f"Conditional put rejected on {self.table_name}")
            logger.error(f"Error putting item: {e}")
            raise DatabaseError(f"Failed to put item: {str(e)}")

    def get_item(self, key: Dict[str, Any], consistent_read: bool = False) -> Optional[Dict[str, Any]]:
        """
        Get an item from the table.

        Args:
            key: Primary key of the item
            consistent_read: Use a strongly consistent read

        Returns:
            The item if found, None otherwise

        Raises:
            DatabaseError: If the operation fails
        """
        try:
            response = self.table.get_item(Key=key, ConsistentRead=consistent_read)
            item = response.get('Item')
            if item:
                return self._dynamodb_to_python(item)
            return None
        except ClientError as e:
            logger.error(f"Error getting item: {e}")
            raise DatabaseError(f"Failed to get item: {str(e)}")

    def update_item(
        self,
        key: Dict[str, Any],
        update_expression: str,
        expression_values: Dict[str, Any],
        expression_names: Optional[Dict[str, str]] = None,
        condition_expression: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Update an item in the table.

        Args:
            key: Primary key of the item
            update_expression: Update expression
            expression_values: Expression attribute values
            expression_names: Optional expression attribute names
            condition_expression: Optional condition the update must satisfy

        Returns:
            Updated item

        Raises:
            ConditionFailedError: If the condition expression was not met
            DatabaseError: If the operation fails
        """
        try:
            expression_values = self._python_to_dynamodb(expression_values)

            kwargs = {
                'Key': key,
                'UpdateExpression': update_expression,
                'ExpressionAttributeValues': expression_values,
                'ReturnValues': 'ALL_NEW'
            }

            if expression_names:
                kwargs['ExpressionAttributeNames'] = expression_names
            if condition_expression:
                kwargs['ConditionExpression'] = condition_expression

            response = self.table.update_item(**kwargs)
            return self._dynamodb_to_python(response['Attributes'])
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                raise ConditionFailedError(f"Conditional update rejected on {self.table_name}")
            logger.error(f"Error updating item: {e}")
            raise DatabaseError(f"Failed to update item: {str(e)}")

    def query(
        self,
        key_condition_expression: Any,
        filter_expression: Optional[Any] = None,
        index_name: Optional[str] = None,
        limit: Optional[int] = None,
        scan_forward: bool = True,
        exclusive_start_key: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Query items from the table.

        Args:
            key_condition_expression: Key condition expression
            filter_expression: Optional filter expression
            index_name: Optional index name
            limit: Optional limit
            scan_forward: Sort order (default: True for ascending)
            exclusive_start_key: Optional pagination key

        Returns:
            Dictionary with items and optional LastEvaluatedKey

        Raises:
            DatabaseError: If the operation fails
        """
        try:
            kwargs = {
                'KeyConditionExpression': key_condition_expression,
                'ScanIndexForward': scan_forward
            }

            if filter_expression:
                kwargs['FilterExpression'] = filter_expression
            if index_name:
                kwargs['IndexName'] = index_name
            if limit:
                kwargs['Limit'] = limit
            if exclusive_start_key:
                kwargs['ExclusiveStartKey'] = exclusive_start_key

            response = self.table.query(**kwargs)

            return {
                'items': [self._dynamodb_to_python(item) for item in response.get('Items', [])],
                'last_evaluated_key': response.get('LastEvaluatedKey')
            }
        except ClientError as e:
            logger.error(f"Error querying items: {e}")
            raise DatabaseError(f"Failed to query items: {str(e)}")

    def scan(
        self,
        filter_expression: Optional[Any] = None,
        limit: Optional[int] = None,
        exclusive_start_key: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Scan items from the table.

        Args:
            filter_expression: Optional filter expression
            limit: Optional limit
            exclusive_start_key: Optional pagination key

        Returns:
            Dictionary with items and optional LastEvaluatedKey

        Raises:
            DatabaseError: If the operation fails
        """
        try:
            kwargs = {}

            if filter_expression:
                kwargs['FilterExpression'] = filter_expression
            if limit:
                kwargs['Limit'] = limit
            if exclusive_start_key:
                kwargs['ExclusiveStartKey'] = exclusive_start_key

            response = self.table.scan(**kwargs)

            return {
                'items': [self._dynamodb_to_python(item) for item in response.get('Items', [])],
                'last_evaluated_key': response.get('LastEvaluatedKey')
            }
        except ClientError as e:
            logger.error(f"Error scanning items: {e}")
            raise DatabaseError(f"Failed to scan items: {str(e)}")

    # Transactions

    def transact_put(
        self,
        item: Dict[str, Any],
        condition_expression: Optional[str] = None,
        expression_names: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """Build a Put entry for ``transact_write``."""
        entry = {'TableName': self.table_name, 'Item': item}
        if condition_expression:
            entry['ConditionExpression'] = condition_expression
        if expression_names:
            entry['ExpressionAttributeNames'] = expression_names
        return {'Put': entry}

    def transact_update(
        self,
        key: Dict[str, Any],
        update_expression: str,
        expression_values: Dict[str, Any],
        expression_names: Optional[Dict[str, str]] = None,
        condition_expression: Optional[str] = None
    ) -> Dict[str, Any]:
        """Build an Update entry for ``transact_write``."""
        entry = {
            'TableName': self.table_name,
            'Key': key,
            'UpdateExpression': update_expression,
            'ExpressionAttributeValues': expression_values
        }
        if expression_names:
            entry['ExpressionAttributeNames'] = expression_names
        if condition_expression:
            entry['ConditionExpression'] = condition_expression
        return {'Update': entry}

    def transact_condition_check(
        self,
        key: Dict[str, Any],
        condition_expression: str,
        expression_values: Dict[str, Any],
        expression_names: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """Build a ConditionCheck entry for ``transact_write``."""
        entry = {
            'TableName': self.table_name,
            'Key': key,
            'ConditionExpression': condition_expression,
            'ExpressionAttributeValues': expression_values
        }
        if expression_names:
            entry['ExpressionAttributeNames'] = expression_names
        return {'ConditionCheck': entry}

    def transact_write(self, entries: List[Dict[str, Any]]) -> None:
        """
        Write several items atomically.

        Args:
            entries: Entries built with ``transact_put``, ``transact_update``
                and ``transact_condition_check`` (on any table)

        Raises:
            ConditionFailedError: If any condition in the transaction failed
            DatabaseError: If the operation fails
        """
        try:
            # The resource's client serializes attribute values itself
            self.dynamodb.meta.client.transact_write_items(
                TransactItems=[self._prepare_entry(entry) for entry in entries]
            )
        except ClientError as e:
            if _error_code(e) == 'TransactionCanceledException':
                reasons = [
                    reason.get('Code', 'None')
                    for reason in e.response.get('CancellationReasons', [])
                ]
                logger.info(f"Transaction cancelled: {reasons}")
                if 'ConditionalCheckFailed' in reasons:
                    error = ConditionFailedError("Transaction condition rejected")
                else:
                    error = DatabaseError(f"Transaction cancelled: {', '.join(reasons)}")
                error.cancellation_reasons = reasons
                raise error
            logger.error(f"Error writing transaction: {e}")
            raise DatabaseError(f"Failed to write transaction: {str(e)}")

    @classmethod
    def _prepare_entry(cls, entry: Dict[str, Any]) -> Dict[str, Any]:
        """Convert floats in a transaction entry to Decimal."""
        (operation, body), = entry.items()
        prepared = dict(body)
        for field in ('Item', 'Key', 'ExpressionAttributeValues'):
            if field in prepared:
                prepared[field] = cls._python_to_dynamodb(prepared[field])
        return {operation: prepared}

    @staticmethod
    def _python_to_dynamodb(obj: Any) -> Any:
        """Convert Python objects to DynamoDB compatible format."""
        if isinstance(obj, dict):
            return {k: DynamoDBClient._python_to_dynamodb(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [DynamoDBClient._python_to_dynamodb(item) for item in obj]
        elif isinstance(obj, float):
            return Decimal(str(obj))
        return obj

    @staticmethod
    def _dynamodb_to_python(obj: Any) -> Any:
        """Convert DynamoDB objects to Python format."""
        if isinstance(obj, dict):
            return {k: DynamoDBClient._dynamodb_to_python(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [DynamoDBClient._dynamodb_to_python(item) for item in obj]
        elif isinstance(obj, Decimal):
            if obj % 1 == 0:
                return int(obj)
            return float(obj)
        return obj
