"""
Unit tests for the DynamoDB backend's request encoding and error mapping.

A recording fake stands in for the aiobotocore client, so these tests run
without DynamoDB. Behaviour against a real table is covered in
tests/e2e/test_dynamodb.py.
"""

import asyncio

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from switchdb.config import DynamoDBConfig
from switchdb.kv import (
    BackendConnectionError,
    BackendTimeoutError,
    BackendUnavailableError,
    ConditionCheckFailedError,
    DynamoDBBackend,
    Key,
    Not,
    AttributeExists,
    Put,
    Update,
    less_than,
)
from switchdb.kv.dynamodb import marshal, unmarshal


def client_error(code, operation="TransactWriteItems", **extra):
    return ClientError({"Error": {"Code": code, "Message": code}, **extra}, operation)


class FakeClient:
    """Records calls and replays queued responses or errors."""

    def __init__(self):
        self.calls = []
        self.responses = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def _respond(self, operation, kwargs):
        self.calls.append((operation, kwargs))
        response = self.responses.pop(0) if self.responses else {}
        if isinstance(response, BaseException):
            raise response
        return response

    async def get_item(self, **kwargs):
        return await self._respond("get_item", kwargs)

    async def transact_write_items(self, **kwargs):
        return await self._respond("transact_write_items", kwargs)

    async def query(self, **kwargs):
        return await self._respond("query", kwargs)


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def backend(client):
    kv = DynamoDBBackend(DynamoDBConfig(table_name="Switches", request_timeout_seconds=0.2))
    kv._client = client
    return kv


class TestMarshaling:
    """Attribute value conversion."""

    def test_marshal(self):
        assert marshal({"pk": "1", "state": True}) == {"pk": {"S": "1"}, "state": {"BOOL": True}}

    def test_unmarshal(self):
        assert unmarshal({"pk": {"S": "1"}, "state": {"BOOL": False}}) == {
            "pk": "1",
            "state": False,
        }


class TestTransactWrite:
    """TransactWriteItems encoding and cancellation mapping."""

    @pytest.mark.asyncio
    async def test_encodes_update_and_put(self, backend, client):
        await backend.transact_write(
            [
                Update(
                    Key("123", "LATEST_SWITCH"),
                    set={"created_at": "t2", "state": False},
                    condition=less_than("created_at", "t2"),
                    return_old_on_failure=True,
                ),
                Put({"pk": "123", "sk": "SWITCH#t2", "state": False}),
            ]
        )

        operation, request = client.calls[0]
        assert operation == "transact_write_items"
        update, put = request["TransactItems"]
        assert update == {
            "Update": {
                "TableName": "Switches",
                "Key": {"pk": {"S": "123"}, "sk": {"S": "LATEST_SWITCH"}},
                "UpdateExpression": "SET #n0 = :v0, #n1 = :v1",
                "ConditionExpression": "#n0 < :v2",
                "ReturnValuesOnConditionCheckFailure": "ALL_OLD",
                "ExpressionAttributeNames": {"#n0": "created_at", "#n1": "state"},
                "ExpressionAttributeValues": {
                    ":v0": {"S": "t2"},
                    ":v1": {"BOOL": False},
                    ":v2": {"S": "t2"},
                },
            }
        }
        assert put == {
            "Put": {
                "TableName": "Switches",
                "Item": {
                    "pk": {"S": "123"},
                    "sk": {"S": "SWITCH#t2"},
                    "state": {"BOOL": False},
                },
            }
        }

    @pytest.mark.asyncio
    async def test_encodes_guarded_put(self, backend, client):
        await backend.transact_write(
            [
                Put(
                    {"pk": "1", "sk": "L"},
                    condition=Not(AttributeExists("pk") & AttributeExists("sk")),
                )
            ]
        )

        put = client.calls[0][1]["TransactItems"][0]["Put"]
        assert put["ConditionExpression"] == (
            "NOT ((attribute_exists(#n0)) AND (attribute_exists(#n1)))"
        )
        assert put["ExpressionAttributeNames"] == {"#n0": "pk", "#n1": "sk"}
        assert "ExpressionAttributeValues" not in put

    @pytest.mark.asyncio
    async def test_condition_failure_with_old_item(self, backend, client):
        client.queue(
            client_error(
                "TransactionCanceledException",
                CancellationReasons=[
                    {
                        "Code": "ConditionalCheckFailed",
                        "Item": {"pk": {"S": "1"}, "created_at": {"S": "t5"}},
                    },
                    {"Code": "None"},
                ],
            )
        )

        with pytest.raises(ConditionCheckFailedError) as exc_info:
            await backend.transact_write([Put({"pk": "1", "sk": "L"}), Put({"pk": "1", "sk": "X"})])

        first, second = exc_info.value.reasons
        assert first.condition_failed
        assert first.item == {"pk": "1", "created_at": "t5"}
        assert not second.condition_failed
        assert second.item is None

    @pytest.mark.asyncio
    async def test_transaction_conflict_is_unavailable(self, backend, client):
        client.queue(
            client_error(
                "TransactionCanceledException",
                CancellationReasons=[{"Code": "TransactionConflict"}, {"Code": "None"}],
            )
        )

        with pytest.raises(BackendUnavailableError) as exc_info:
            await backend.transact_write([Put({"pk": "1", "sk": "L"}), Put({"pk": "1", "sk": "X"})])

        assert not isinstance(exc_info.value, ConditionCheckFailedError)

    @pytest.mark.asyncio
    async def test_mixed_cancellation_is_unavailable(self, backend, client):
        client.queue(
            client_error(
                "TransactionCanceledException",
                CancellationReasons=[
                    {"Code": "ConditionalCheckFailed"},
                    {"Code": "ThrottlingError"},
                ],
            )
        )

        with pytest.raises(BackendUnavailableError):
            await backend.transact_write([Put({"pk": "1", "sk": "L"}), Put({"pk": "1", "sk": "X"})])

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        kv = DynamoDBBackend(DynamoDBConfig())

        with pytest.raises(BackendConnectionError):
            await kv.transact_write([Put({"pk": "1", "sk": "L"})])


class TestErrorMapping:
    """Client exceptions become backend errors."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code", ["ProvisionedThroughputExceededException", "ThrottlingException"]
    )
    async def test_throttling_is_timeout(self, backend, client, code):
        client.queue(client_error(code, "GetItem"))

        with pytest.raises(BackendTimeoutError):
            await backend.get(Key("1", "L"))

    @pytest.mark.asyncio
    async def test_missing_table(self, backend, client):
        client.queue(client_error("ResourceNotFoundException", "GetItem"))

        with pytest.raises(BackendUnavailableError, match="Switches"):
            await backend.get(Key("1", "L"))

    @pytest.mark.asyncio
    async def test_endpoint_unreachable(self, backend, client):
        client.queue(EndpointConnectionError(endpoint_url="http://localhost:8000"))

        with pytest.raises(BackendConnectionError):
            await backend.get(Key("1", "L"))

    @pytest.mark.asyncio
    async def test_request_timeout(self, backend, client):
        async def hang(**kwargs):
            await asyncio.sleep(10)

        client.get_item = hang

        with pytest.raises(BackendTimeoutError):
            await backend.get(Key("1", "L"))


class TestReads:
    """GetItem and Query."""

    @pytest.mark.asyncio
    async def test_get(self, backend, client):
        client.queue({"Item": {"pk": {"S": "1"}, "sk": {"S": "L"}, "state": {"BOOL": True}}})

        item = await backend.get(Key("1", "L"))

        assert item == {"pk": "1", "sk": "L", "state": True}
        request = client.calls[0][1]
        assert request["ConsistentRead"] is True
        assert request["Key"] == {"pk": {"S": "1"}, "sk": {"S": "L"}}

    @pytest.mark.asyncio
    async def test_get_missing(self, backend, client):
        client.queue({})

        assert await backend.get(Key("1", "L")) is None

    @pytest.mark.asyncio
    async def test_query_request(self, backend, client):
        client.queue({"Items": []})

        await backend.query("1", sort_prefix="SWITCH#", ascending=False)

        request = client.calls[0][1]
        assert request["KeyConditionExpression"] == "#n0 = :v0 AND begins_with(#n1, :v1)"
        assert request["ExpressionAttributeNames"] == {"#n0": "pk", "#n1": "sk"}
        assert request["ExpressionAttributeValues"] == {":v0": {"S": "1"}, ":v1": {"S": "SWITCH#"}}
        assert request["ScanIndexForward"] is False
        assert "Limit" not in request

    @pytest.mark.asyncio
    async def test_query_follows_pages(self, backend, client):
        page_key = {"pk": {"S": "1"}, "sk": {"S": "b"}}
        client.queue(
            {"Items": [{"pk": {"S": "1"}, "sk": {"S": "a"}}, {"pk": {"S": "1"}, "sk": {"S": "b"}}],
             "LastEvaluatedKey": page_key},
            {"Items": [{"pk": {"S": "1"}, "sk": {"S": "c"}}]},
        )

        items = await backend.query("1")

        assert [i["sk"] for i in items] == ["a", "b", "c"]
        assert client.calls[1][1]["ExclusiveStartKey"] == page_key

    @pytest.mark.asyncio
    async def test_query_limit_across_pages(self, backend, client):
        client.queue(
            {"Items": [{"pk": {"S": "1"}, "sk": {"S": "a"}}],
             "LastEvaluatedKey": {"pk": {"S": "1"}, "sk": {"S": "a"}}},
            {"Items": [{"pk": {"S": "1"}, "sk": {"S": "b"}}],
             "LastEvaluatedKey": {"pk": {"S": "1"}, "sk": {"S": "b"}}},
        )

        items = await backend.query("1", limit=2)

        assert len(items) == 2
        assert [call[1]["Limit"] for call in client.calls] == [2, 1]
