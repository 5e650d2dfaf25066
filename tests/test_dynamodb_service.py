# tests/test_dynamodb_service.py
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError, EndpointConnectionError

from backend.lib.dynamodb_service import (
    DynamoDBDeviceStore,
    DynamoDBHistoryStore,
    DynamoDBService,
    from_dynamo,
    to_dynamo,
    translated_errors,
)
from backend.lib.uptime_core.errors import (
    AccessDeniedError,
    ConflictError,
    RecordNotFoundError,
    StoreUnavailableError,
)
from backend.lib.uptime_core.models import Device, HistoryPatch


def client_error(code, operation="PutItem"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def test_decimal_conversion():
    item = to_dynamo({"power": 1.5, "flag": True, "hours": {0: 0.1}, "none": None})
    assert item == {"power": Decimal("1.5"), "flag": True, "hours": {"0": Decimal("0.1")}, "none": None}
    assert from_dynamo(item) == {"power": 1.5, "flag": True, "hours": {"0": 0.1}, "none": None}


@pytest.mark.parametrize("error,expected", [
    (client_error("AccessDeniedException"), AccessDeniedError),
    (client_error("ConditionalCheckFailedException"), ConflictError),
    (client_error("ProvisionedThroughputExceededException"), StoreUnavailableError),
    (EndpointConnectionError(endpoint_url="https://dynamodb.local"), StoreUnavailableError),
])
def test_translated_errors(error, expected):
    with pytest.raises(expected):
        with translated_errors("test"):
            raise error


def test_device_get():
    table = MagicMock()
    table.get_item.return_value = {"Item": {
        "id": "d1", "user_id": "u1", "power_consumption": Decimal("1.5"), "is_user_added": True,
    }}
    device = DynamoDBDeviceStore(table).get("d1")
    assert device.power_rating_kw == 1.5
    assert device.owner_id == "u1"
    assert device.revision == 0
    assert table.get_item.call_args.kwargs["ConsistentRead"] is True

    table.get_item.return_value = {}
    assert DynamoDBDeviceStore(table).get("d2") is None


def test_device_list_follows_pagination():
    table = MagicMock()
    table.scan.side_effect = [
        {"Items": [{"id": "a", "user_id": "u1"}], "LastEvaluatedKey": {"id": "a"}},
        {"Items": [{"id": "b", "user_id": "u1"}]},
    ]
    devices = DynamoDBDeviceStore(table).list(owner_id="u1", is_user_added=True)
    assert [d.id for d in devices] == ["a", "b"]
    assert table.scan.call_args_list[1].kwargs["ExclusiveStartKey"] == {"id": "a"}
    assert "FilterExpression" in table.scan.call_args_list[0].kwargs


def test_device_put_builds_update_expression():
    table = MagicMock()
    DynamoDBDeviceStore(table).put("d1", {"daily_uptime_hours": 0.75, "last_reset_date": date(2024, 1, 2)})
    kwargs = table.update_item.call_args.kwargs
    assert kwargs["Key"] == {"id": "d1"}
    assert kwargs["UpdateExpression"] == "SET #f0 = :v0, #f1 = :v1, #rev = if_not_exists(#rev, :zero) + :one"
    assert kwargs["ExpressionAttributeNames"] == {"#f0": "daily_uptime", "#f1": "last_reset", "#rev": "revision"}
    assert kwargs["ExpressionAttributeValues"] == {
        ":v0": Decimal("0.75"), ":v1": "2024-01-02", ":zero": 0, ":one": 1,
    }
    assert kwargs["ConditionExpression"] == Attr("id").exists()


def test_device_put_with_expected_revision():
    table = MagicMock()
    DynamoDBDeviceStore(table).put("d1", {"last_active": None}, expected_revision=4)
    condition = table.update_item.call_args.kwargs["ConditionExpression"]
    assert condition == Attr("id").exists() & Attr("revision").eq(4)

    DynamoDBDeviceStore(table).put("d1", {"last_active": None}, expected_revision=0)
    condition = table.update_item.call_args.kwargs["ConditionExpression"]
    assert condition == Attr("id").exists() & (Attr("revision").not_exists() | Attr("revision").eq(0))


def test_device_put_stale_revision_conflicts():
    table = MagicMock()
    table.update_item.side_effect = client_error("ConditionalCheckFailedException", "UpdateItem")
    table.get_item.return_value = {"Item": {"id": "d1", "revision": Decimal(5)}}
    store = DynamoDBDeviceStore(table)
    with pytest.raises(ConflictError):
        store.put("d1", {"model": "X"}, expected_revision=4)

    table.get_item.return_value = {}
    with pytest.raises(RecordNotFoundError):
        store.put("d1", {"model": "X"}, expected_revision=4)


def test_device_put_and_delete_missing():
    table = MagicMock()
    table.update_item.side_effect = client_error("ConditionalCheckFailedException", "UpdateItem")
    table.delete_item.side_effect = client_error("ConditionalCheckFailedException", "DeleteItem")
    store = DynamoDBDeviceStore(table)
    with pytest.raises(RecordNotFoundError):
        store.put("d1", {"model": "X"})
    with pytest.raises(RecordNotFoundError):
        store.delete("d1")


def test_device_create_assigns_id():
    table = MagicMock()
    device_id = DynamoDBDeviceStore(table).create(Device(id="", manufacturer="Acme", power_rating_kw=0.5))
    item = table.put_item.call_args.kwargs["Item"]
    assert device_id and item["id"] == device_id
    assert item["power_consumption"] == Decimal("0.5")


def test_history_merge_new_item():
    table = MagicMock()
    table.get_item.return_value = {}
    record = DynamoDBHistoryStore(table).merge("u1", date(2024, 1, 1), HistoryPatch(hourly_consumption={3: 0.5}))
    assert record.hourly_consumption == {3: 0.5}
    item = table.put_item.call_args.kwargs["Item"]
    assert item["user_id"] == "u1"
    assert item["date"] == "2024-01-01"
    assert item["revision"] == 1
    assert item["hourly_consumption"] == {"3": Decimal("0.5")}


def test_history_merge_retries_on_conflict():
    table = MagicMock()
    table.get_item.return_value = {"Item": {
        "user_id": "u1", "date": "2024-01-01", "revision": Decimal(3),
        "hourly_consumption": {"0": Decimal("1.0")},
    }}
    table.put_item.side_effect = [client_error("ConditionalCheckFailedException"), None]

    record = DynamoDBHistoryStore(table).merge("u1", date(2024, 1, 1), HistoryPatch(hourly_consumption={1: 2.0}))

    assert record.hourly_consumption == {0: 1.0, 1: 2.0}
    assert table.put_item.call_count == 2
    assert table.put_item.call_args.kwargs["Item"]["revision"] == 4


def test_history_merge_gives_up():
    table = MagicMock()
    table.get_item.return_value = {}
    table.put_item.side_effect = client_error("ConditionalCheckFailedException")
    with pytest.raises(ConflictError):
        DynamoDBHistoryStore(table).merge("u1", date(2024, 1, 1), HistoryPatch())
    assert table.put_item.call_count == 3


def test_history_query_sorted_and_paginated():
    table = MagicMock()
    table.query.side_effect = [
        {"Items": [{"date": "2024-01-03", "total_consumption": Decimal("2")}], "LastEvaluatedKey": {"k": 1}},
        {"Items": [{"date": "2024-01-01", "total_consumption": Decimal("1")}]},
    ]
    records = DynamoDBHistoryStore(table).query("u1", date(2024, 1, 1), date(2024, 1, 7))
    assert [r.date for r in records] == [date(2024, 1, 1), date(2024, 1, 3)]
    assert records[1].total_consumption_kwh == 2.0


def test_create_tables_only_when_missing():
    resource, client = MagicMock(), MagicMock()
    service = DynamoDBService("Devices", "History", "eu-west-1", dynamodb=resource, client=client)
    assert service.create_tables_if_not_exist()
    resource.create_table.assert_not_called()

    client.describe_table.side_effect = client_error("ResourceNotFoundException", "DescribeTable")
    assert service.create_tables_if_not_exist()
    assert resource.create_table.call_count == 2
    history_call = resource.create_table.call_args_list[1].kwargs
    assert history_call["TableName"] == "History"
    assert history_call["BillingMode"] == "PAY_PER_REQUEST"


def test_service_hands_out_stores():
    resource = MagicMock()
    service = DynamoDBService("Devices", "History", dynamodb=resource, client=MagicMock())
    assert isinstance(service.device_store(), DynamoDBDeviceStore)
    assert isinstance(service.history_store(), DynamoDBHistoryStore)
    resource.Table.assert_any_call("Devices")
