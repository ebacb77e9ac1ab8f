"""
AWS DynamoDB key-value backend.

This module implements KeyValueBackend on a DynamoDB table with a composite
primary key (pk HASH, sk RANGE). It uses aiobotocore for async calls and
boto3's type serializers for attribute value marshaling.

Invariants:
    - Reads are strongly consistent (ConsistentRead=True)
    - transact_write() maps to a single TransactWriteItems call
    - Ops that ask for it carry ReturnValuesOnConditionCheckFailure=ALL_OLD
    - A TransactionCanceledException whose reasons are only condition
      failures becomes ConditionCheckFailedError; any other cancellation
      reason (TransactionConflict, ThrottlingError, ...) is a
      BackendUnavailableError

How to change safely:
    - Test against DynamoDB Local before deploying to AWS
    - Keep placeholder generation shared between update and condition
      expressions of the same op
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from aiobotocore.session import get_session
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from .base import (
    CONDITION_FAILED,
    NO_FAILURE,
    PARTITION_KEY,
    SORT_KEY,
    BackendConnectionError,
    BackendTimeoutError,
    BackendUnavailableError,
    CancellationReason,
    ConditionCheckFailedError,
    Item,
    Key,
    Put,
    WriteOp,
    check_ops,
)
from .conditions import ExpressionBuilder

logger = logging.getLogger(__name__)

_THROTTLING_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
}

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def marshal(item: Item) -> Dict[str, Any]:
    return {name: _serializer.serialize(value) for name, value in item.items()}


def unmarshal(attrs: Dict[str, Any]) -> Item:
    return {name: _deserializer.deserialize(value) for name, value in attrs.items()}


def _with_expression(request: Dict[str, Any], builder: ExpressionBuilder) -> Dict[str, Any]:
    # DynamoDB rejects empty attribute name/value maps
    if builder.names:
        request["ExpressionAttributeNames"] = dict(builder.names)
    if builder.values:
        request["ExpressionAttributeValues"] = marshal(builder.values)
    return request


class DynamoDBBackend:
    """DynamoDB implementation of KeyValueBackend.

    Attributes:
        config: DynamoDBConfig instance

    Example:
        >>> config = DynamoDBConfig(table_name="ToggleStateTable",
        ...                         endpoint_url="http://localhost:8000")
        >>> backend = DynamoDBBackend(config)
        >>> await backend.connect()
        >>> item = await backend.get(Key("123", "LATEST_SWITCH"))
    """

    def __init__(self, config: Any) -> None:
        self.config = config
        self._session = None
        self._client_ctx = None
        self._client = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def table_name(self) -> str:
        return self.config.table_name

    async def connect(self) -> None:
        """Create the client and verify the table exists.

        Raises:
            BackendConnectionError: If the endpoint or table is unreachable
        """
        if self._connected:
            return

        client_config: Dict[str, Any] = {"region_name": self.config.region}
        if self.config.endpoint_url:
            client_config["endpoint_url"] = self.config.endpoint_url
        if self.config.access_key_id and self.config.secret_access_key:
            client_config["aws_access_key_id"] = self.config.access_key_id
            client_config["aws_secret_access_key"] = self.config.secret_access_key

        try:
            self._session = get_session()
            self._client_ctx = self._session.create_client("dynamodb", **client_config)
            self._client = await self._client_ctx.__aenter__()

            await self._call(self._client.describe_table, TableName=self.table_name)

        except (BackendUnavailableError, BotoCoreError) as e:
            await self._release()
            raise BackendConnectionError(f"Failed to connect to DynamoDB: {e}") from e

        self._connected = True
        logger.info(
            "Connected to DynamoDB",
            extra={
                "table": self.table_name,
                "region": self.config.region,
                "endpoint": self.config.endpoint_url or "AWS",
            },
        )

    async def close(self) -> None:
        await self._release()
        logger.info("DynamoDB connection closed")

    async def get(self, key: Key) -> Optional[Item]:
        client = self._require_client()
        response = await self._call(
            client.get_item,
            TableName=self.table_name,
            Key=marshal(key.to_dict()),
            ConsistentRead=True,
        )
        attrs = response.get("Item")
        return unmarshal(attrs) if attrs else None

    async def transact_write(self, ops: Sequence[WriteOp]) -> None:
        check_ops(ops)
        client = self._require_client()
        transact_items = [self._encode_op(op) for op in ops]

        try:
            await self._call(client.transact_write_items, TransactItems=transact_items)
        except _Cancelled as e:
            reasons = [
                CancellationReason(
                    code=reason.get("Code") or NO_FAILURE,
                    item=unmarshal(reason["Item"]) if reason.get("Item") else None,
                )
                for reason in e.reasons
            ]
            codes = {r.code for r in reasons}
            if CONDITION_FAILED in codes and codes <= {CONDITION_FAILED, NO_FAILURE}:
                raise ConditionCheckFailedError(reasons) from None
            raise BackendUnavailableError(
                f"DynamoDB transaction cancelled: {sorted(codes)}"
            ) from e.__cause__

        logger.debug(
            "Transaction committed to DynamoDB",
            extra={"table": self.table_name, "keys": [str(op.key) for op in ops]},
        )

    async def query(
        self,
        partition: str,
        sort_prefix: str = "",
        limit: Optional[int] = None,
        ascending: bool = True,
    ) -> List[Item]:
        client = self._require_client()

        builder = ExpressionBuilder()
        key_condition = f"{builder.name(PARTITION_KEY)} = {builder.value(partition)}"
        if sort_prefix:
            key_condition += (
                f" AND begins_with({builder.name(SORT_KEY)}, {builder.value(sort_prefix)})"
            )
        request = _with_expression(
            {
                "TableName": self.table_name,
                "KeyConditionExpression": key_condition,
                "ScanIndexForward": ascending,
                "ConsistentRead": True,
            },
            builder,
        )

        items: List[Item] = []
        while True:
            if limit is not None:
                request["Limit"] = limit - len(items)
            response = await self._call(client.query, **request)
            items.extend(unmarshal(attrs) for attrs in response.get("Items", []))

            last_key = response.get("LastEvaluatedKey")
            if not last_key or (limit is not None and len(items) >= limit):
                break
            request["ExclusiveStartKey"] = last_key

        return items

    def _encode_op(self, op: WriteOp) -> Dict[str, Any]:
        builder = ExpressionBuilder()

        if isinstance(op, Put):
            request: Dict[str, Any] = {"TableName": self.table_name, "Item": marshal(op.item)}
            kind = "Put"
        else:
            assignments = ", ".join(
                f"{builder.name(name)} = {builder.value(value)}"
                for name, value in op.set.items()
            )
            request = {
                "TableName": self.table_name,
                "Key": marshal(op.key.to_dict()),
                "UpdateExpression": f"SET {assignments}",
            }
            kind = "Update"

        if op.condition is not None:
            request["ConditionExpression"] = op.condition.render(builder)
        if op.return_old_on_failure:
            request["ReturnValuesOnConditionCheckFailure"] = "ALL_OLD"

        return {kind: _with_expression(request, builder)}

    async def _call(self, method: Any, **kwargs: Any) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(
                method(**kwargs),
                timeout=self.config.request_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise BackendTimeoutError("DynamoDB request timed out") from None
        except EndpointConnectionError as e:
            raise BackendConnectionError(f"Failed to reach DynamoDB endpoint: {e}") from e
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "TransactionCanceledException":
                raise _Cancelled(e.response.get("CancellationReasons", [])) from e
            if error_code in _THROTTLING_CODES:
                raise BackendTimeoutError(f"DynamoDB throttled: {error_code}") from e
            if error_code == "ResourceNotFoundException":
                raise BackendUnavailableError(
                    f"DynamoDB table '{self.table_name}' not found"
                ) from e
            raise BackendUnavailableError(f"DynamoDB error: {e}") from e
        except BotoCoreError as e:
            raise BackendUnavailableError(f"DynamoDB client error: {e}") from e

    def _require_client(self) -> Any:
        if not self._client:
            raise BackendConnectionError("Not connected to DynamoDB")
        return self._client

    async def _release(self) -> None:
        if self._client_ctx is not None:
            try:
                await self._client_ctx.__aexit__(None, None, None)
            except Exception as e:
                logger.warning(f"Error closing DynamoDB client: {e}")
        self._client_ctx = None
        self._client = None
        self._session = None
        self._connected = False


class _Cancelled(Exception):
    """TransactionCanceledException carrying the raw cancellation reasons."""

    def __init__(self, reasons: List[Dict[str, Any]]) -> None:
        super().__init__("TransactionCanceledException")
        self.reasons = reasons
