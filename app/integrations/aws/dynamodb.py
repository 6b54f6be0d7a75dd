"""AWS DynamoDB helpers.

Thin wrappers over `execute_aws_api_call` returning OperationResult. Items
use the low-level attribute-value format ({"S": ...}, {"N": ...}).

Usage:
    result = put_item(
        table_name="delivery-history",
        Item={"entry_id": {"S": "h-1"}},
        ConditionExpression="attribute_not_exists(entry_id)",
    )
"""

from typing import Any, Dict

from infrastructure.operations import OperationResult
from integrations.aws.client import execute_aws_api_call


def get_item(table_name: str, Key: Dict[str, Any], **kwargs) -> OperationResult:
    """Get an item. ``result.data["Item"]`` is absent when not found."""
    return execute_aws_api_call(
        service_name="dynamodb",
        method="get_item",
        TableName=table_name,
        Key=Key,
        **kwargs,
    )


def put_item(table_name: str, Item: Dict[str, Any], **kwargs) -> OperationResult:
    """Put an item, optionally guarded by a ConditionExpression."""
    return execute_aws_api_call(
        service_name="dynamodb",
        method="put_item",
        TableName=table_name,
        Item=Item,
        **kwargs,
    )


def update_item(table_name: str, Key: Dict[str, Any], **kwargs) -> OperationResult:
    """Update an item. A failed condition yields
    ``error_code == "ConditionalCheckFailedException"``."""
    return execute_aws_api_call(
        service_name="dynamodb",
        method="update_item",
        TableName=table_name,
        Key=Key,
        **kwargs,
    )


def query(table_name: str, KeyConditionExpression: str, **kwargs) -> OperationResult:
    """Query a table or index (single page; honours ``Limit``)."""
    return execute_aws_api_call(
        service_name="dynamodb",
        method="query",
        TableName=table_name,
        KeyConditionExpression=KeyConditionExpression,
        **kwargs,
    )
