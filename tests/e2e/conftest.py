"""
E2E test fixtures for SwitchDB.

These tests require DynamoDB Local listening on localhost:8000, e.g.:

    docker run -p 8000:8000 amazon/dynamodb-local
"""

import os
import uuid

import pytest
from aiobotocore.session import get_session

from switchdb.config import DynamoDBConfig
from switchdb.kv import DynamoDBBackend

# Skip E2E tests if not in E2E mode
E2E_ENABLED = os.environ.get("SWITCHDB_E2E_TESTS", "0") == "1"

ENDPOINT_URL = os.environ.get("DYNAMODB_ENDPOINT_URL", "http://localhost:8000")

CLIENT_ARGS = {
    "region_name": "us-east-1",
    "endpoint_url": ENDPOINT_URL,
    "aws_access_key_id": "local",
    "aws_secret_access_key": "local",
}


def pytest_collection_modifyitems(config, items):
    if E2E_ENABLED:
        return
    skip = pytest.mark.skip(reason="E2E tests disabled. Set SWITCHDB_E2E_TESTS=1 to enable.")
    for item in items:
        if "e2e" in item.nodeid:
            item.add_marker(skip)


@pytest.fixture
async def table_name():
    """Create a throwaway pk/sk table and drop it afterwards."""
    name = f"switchdb-e2e-{uuid.uuid4().hex[:8]}"
    async with get_session().create_client("dynamodb", **CLIENT_ARGS) as client:
        await client.create_table(
            TableName=name,
            AttributeDefinitions=[
                {"AttributeName": "pk", "AttributeType": "S"},
                {"AttributeName": "sk", "AttributeType": "S"},
            ],
            KeySchema=[
                {"AttributeName": "pk", "KeyType": "HASH"},
                {"AttributeName": "sk", "KeyType": "RANGE"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        await client.get_waiter("table_exists").wait(TableName=name)
        try:
            yield name
        finally:
            await client.delete_table(TableName=name)


@pytest.fixture
async def backend(table_name):
    """Connected DynamoDB backend on the throwaway table."""
    kv = DynamoDBBackend(
        DynamoDBConfig(
            table_name=table_name,
            region=CLIENT_ARGS["region_name"],
            endpoint_url=ENDPOINT_URL,
            access_key_id="local",
            secret_access_key="local",
        )
    )
    await kv.connect()
    yield kv
    await kv.close()
