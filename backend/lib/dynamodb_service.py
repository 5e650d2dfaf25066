"""
=============================================================================
DYNAMODB SERVICE - Device ledger and consumption history in Amazon DynamoDB
=============================================================================

Two tables back the consumption engine:

Table: ApplianceDevices
- id (String) - Partition Key
- user_id, category_id, manufacturer, model, power_consumption,
  is_user_added, daily_uptime, total_uptime, daily_consumption,
  last_reset, last_active, schema_version, revision

Table: ConsumptionHistory
- user_id (String) - Partition Key - Groups history by household
- date (String)    - Sort Key      - "YYYY-MM-DD", so date ranges are queries
- total_consumption, hourly_consumption {"0".."23": kWh},
  devices_consumption {device_id: {manufacturer, model, daily_consumption,
  daily_uptime, hourly_data}}, is_reconstructed, last_updated,
  schema_version, revision

Example history item:
{
    "user_id": "user-001",
    "date": "2025-11-01",
    "total_consumption": 4.21,
    "hourly_consumption": {"0": 0.08, "1": 0.06},
    "devices_consumption": {"a1b2": {"manufacturer": "LG", "model": "Fridge",
                                     "daily_consumption": 1.2, "daily_uptime": 2.4,
                                     "hourly_data": {"0": 0.02}}},
    "is_reconstructed": false,
    "revision": 7
}

Several trigger sources (the Flask app and the scheduled Lambda) may touch the
same item, so both tables carry a "revision" attribute. History merges and
device counter updates are read-modify-write cycles that only land if the
revision is unchanged (optimistic compare-and-swap). A lost race is retried
against the fresh item.
=============================================================================
"""

import logging
import os
import uuid
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Mapping, Optional

# boto3 - AWS SDK for Python
import boto3
from boto3.dynamodb.conditions import Attr, Key

# ClientError - AWS API errors; BotoCoreError - connection/credential problems
from botocore.exceptions import BotoCoreError, ClientError

from backend.lib.uptime_core.errors import (
    AccessDeniedError,
    ConflictError,
    RecordNotFoundError,
    StoreUnavailableError,
)
from backend.lib.uptime_core.models import (
    DailyHistoryRecord,
    Device,
    HistoryPatch,
    device_fields_to_item,
)

logger = logging.getLogger(__name__)

MERGE_ATTEMPTS = 3

_ACCESS_DENIED_CODES = {
    "AccessDeniedException",
    "UnrecognizedClientException",
    "ExpiredTokenException",
    "InvalidSignatureException",
}


def to_dynamo(value: Any) -> Any:
    """DynamoDB rejects floats; convert via str to avoid precision noise."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {str(k): to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    return value


def from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Mapping):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    return value


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


@contextmanager
def translated_errors(action: str) -> Iterator[None]:
    """Re-raise AWS errors as the engine's error taxonomy."""
    try:
        yield
    except ClientError as e:
        code = _error_code(e)
        if code in _ACCESS_DENIED_CODES:
            raise AccessDeniedError(f"{action}: {code}") from e
        if code == "ConditionalCheckFailedException":
            raise ConflictError(f"{action}: {code}") from e
        raise StoreUnavailableError(f"{action}: {code or e}") from e
    except BotoCoreError as e:
        raise StoreUnavailableError(f"{action}: {e}") from e


def _scan_all(table, **kwargs) -> List[Dict]:
    # Scan returns at most 1MB per call, so follow LastEvaluatedKey
    response = table.scan(**kwargs)
    items = list(response.get("Items", []))
    while "LastEvaluatedKey" in response:
        response = table.scan(ExclusiveStartKey=response["LastEvaluatedKey"], **kwargs)
        items.extend(response.get("Items", []))
    return items


class DynamoDBDeviceStore:
    """DeviceStore backed by the devices table (partition key ``id``)."""

    def __init__(self, table):
        self.table = table

    def get(self, device_id: str) -> Optional[Device]:
        with translated_errors(f"get device {device_id}"):
            item = self.table.get_item(Key={"id": device_id}, ConsistentRead=True).get("Item")
        return Device.from_item(from_dynamo(item)) if item else None

    def list(self, **criteria: Any) -> List[Device]:
        filter_expression = None
        for name, value in device_fields_to_item(criteria).items():
            condition = Attr(name).eq(to_dynamo(value))
            filter_expression = condition if filter_expression is None else filter_expression & condition

        kwargs = {"FilterExpression": filter_expression} if filter_expression is not None else {}
        with translated_errors("list devices"):
            items = _scan_all(self.table, **kwargs)
        return [Device.from_item(from_dynamo(item)) for item in items]

    def put(
        self, device_id: str, fields: Mapping[str, Any], expected_revision: Optional[int] = None
    ) -> None:
        item = device_fields_to_item(fields)
        if not item:
            return
        names = {f"#f{i}": name for i, name in enumerate(item)}
        names["#rev"] = "revision"
        values = {f":v{i}": to_dynamo(value) for i, value in enumerate(item.values())}
        values.update({":zero": 0, ":one": 1})
        assignments = ", ".join(f"#f{i} = :v{i}" for i in range(len(item)))

        condition = Attr("id").exists()
        if expected_revision is not None:
            if expected_revision == 0:
                # Items written before revisions existed carry no attribute
                condition = condition & (Attr("revision").not_exists() | Attr("revision").eq(0))
            else:
                condition = condition & Attr("revision").eq(expected_revision)

        try:
            with translated_errors(f"update device {device_id}"):
                self.table.update_item(
                    Key={"id": device_id},
                    UpdateExpression=f"SET {assignments}, #rev = if_not_exists(#rev, :zero) + :one",
                    ConditionExpression=condition,
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=values,
                )
        except ConflictError as e:
            if expected_revision is None or self.get(device_id) is None:
                raise RecordNotFoundError(f"Device {device_id} not found") from e
            raise ConflictError(
                f"Device {device_id} changed since revision {expected_revision}"
            ) from e

    def create(self, device: Device) -> str:
        device_id = device.id or uuid.uuid4().hex
        item = device.to_item()
        item["id"] = device_id
        with translated_errors("create device"):
            self.table.put_item(Item=to_dynamo(item))
        return device_id

    def delete(self, device_id: str) -> None:
        try:
            with translated_errors(f"delete device {device_id}"):
                self.table.delete_item(Key={"id": device_id}, ConditionExpression=Attr("id").exists())
        except ConflictError as e:
            raise RecordNotFoundError(f"Device {device_id} not found") from e


class DynamoDBHistoryStore:
    """HistoryStore backed by the history table (``user_id`` + ``date``)."""

    def __init__(self, table, merge_attempts: int = MERGE_ATTEMPTS):
        self.table = table
        self.merge_attempts = merge_attempts

    def _get_item(self, user_id: str, day: date) -> Optional[Dict]:
        with translated_errors(f"get history {user_id}/{day}"):
            response = self.table.get_item(
                Key={"user_id": user_id, "date": day.isoformat()}, ConsistentRead=True
            )
        item = response.get("Item")
        return from_dynamo(item) if item else None

    def get(self, user_id: str, day: date) -> Optional[DailyHistoryRecord]:
        item = self._get_item(user_id, day)
        return DailyHistoryRecord.from_item(item) if item else None

    def merge(self, user_id: str, day: date, patch: HistoryPatch) -> DailyHistoryRecord:
        for attempt in range(1, self.merge_attempts + 1):
            item = self._get_item(user_id, day)
            merged = patch.apply(DailyHistoryRecord.from_item(item) if item else None, day)

            new_item = merged.to_item()
            new_item["user_id"] = user_id
            if item is None:
                condition = Attr("user_id").not_exists()
                new_item["revision"] = 1
            elif "revision" in item:
                revision = int(item["revision"])
                condition = Attr("revision").eq(revision)
                new_item["revision"] = revision + 1
            else:
                condition = Attr("revision").not_exists()
                new_item["revision"] = 1

            try:
                with translated_errors(f"merge history {user_id}/{day}"):
                    self.table.put_item(Item=to_dynamo(new_item), ConditionExpression=condition)
                return merged
            except ConflictError:
                logger.info(
                    "Concurrent write on history %s/%s, retrying (%d/%d)",
                    user_id, day, attempt, self.merge_attempts,
                )
        raise ConflictError(f"Gave up merging history {user_id}/{day} after {self.merge_attempts} attempts")

    def query(self, user_id: str, start: date, end: date) -> List[DailyHistoryRecord]:
        key_condition = Key("user_id").eq(user_id) & Key("date").between(start.isoformat(), end.isoformat())
        with translated_errors(f"query history {user_id}"):
            response = self.table.query(KeyConditionExpression=key_condition)
            items = list(response.get("Items", []))
            while "LastEvaluatedKey" in response:
                response = self.table.query(
                    KeyConditionExpression=key_condition,
                    ExclusiveStartKey=response["LastEvaluatedKey"],
                )
                items.extend(response.get("Items", []))
        records = [DailyHistoryRecord.from_item(from_dynamo(item)) for item in items]
        return sorted(records, key=lambda r: r.date)


class DynamoDBService:
    """
    Owns the boto3 connection and hands out the two stores.

    Usage:
        db = DynamoDBService()
        db.create_tables_if_not_exist()
        devices, history = db.device_store(), db.history_store()
    """

    def __init__(
        self,
        devices_table_name: str = None,
        history_table_name: str = None,
        region: str = None,
        dynamodb=None,
        client=None,
    ):
        self.devices_table_name = devices_table_name or os.getenv("DEVICES_TABLE_NAME", "ApplianceDevices")
        self.history_table_name = history_table_name or os.getenv("HISTORY_TABLE_NAME", "ConsumptionHistory")
        self.region = region or os.getenv("AWS_REGION", "us-east-1")

        if dynamodb is None or client is None:
            # Credentials come from the environment (.env locally, role on AWS)
            session_token = os.getenv("AWS_SESSION_TOKEN")
            credentials = dict(
                region_name=self.region,
                aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
                aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
                aws_session_token=session_token if session_token else None,
            )
            dynamodb = dynamodb or boto3.resource("dynamodb", **credentials)
            client = client or boto3.client("dynamodb", **credentials)

        # Resource for table objects, client for describe_table
        self.dynamodb = dynamodb
        self.client = client

    def device_store(self) -> DynamoDBDeviceStore:
        return DynamoDBDeviceStore(self.dynamodb.Table(self.devices_table_name))

    def history_store(self) -> DynamoDBHistoryStore:
        return DynamoDBHistoryStore(self.dynamodb.Table(self.history_table_name))

    def create_tables_if_not_exist(self) -> bool:
        devices_ok = self._create_table(
            self.devices_table_name,
            key_schema=[{"AttributeName": "id", "KeyType": "HASH"}],
            attributes=[{"AttributeName": "id", "AttributeType": "S"}],
        )
        history_ok = self._create_table(
            self.history_table_name,
            key_schema=[
                {"AttributeName": "user_id", "KeyType": "HASH"},
                {"AttributeName": "date", "KeyType": "RANGE"},
            ],
            attributes=[
                {"AttributeName": "user_id", "AttributeType": "S"},
                {"AttributeName": "date", "AttributeType": "S"},
            ],
        )
        return devices_ok and history_ok

    def _create_table(self, table_name: str, key_schema: List[Dict], attributes: List[Dict]) -> bool:
        try:
            self.client.describe_table(TableName=table_name)
            logger.info("DynamoDB table '%s' exists", table_name)
            return True
        except ClientError as e:
            if _error_code(e) != "ResourceNotFoundException":
                logger.error("Error checking table %s: %s", table_name, e)
                return False

        try:
            table = self.dynamodb.create_table(
                TableName=table_name,
                KeySchema=key_schema,
                AttributeDefinitions=attributes,
                # On-demand pricing, no capacity planning needed
                BillingMode="PAY_PER_REQUEST",
            )
            table.wait_until_exists()
            logger.info("Created DynamoDB table '%s'", table_name)
            return True
        except ClientError as e:
            logger.error("Failed to create table %s: %s", table_name, e)
            return False
