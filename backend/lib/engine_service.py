"""
Wires the consumption engine to concrete storage.

USE_DYNAMODB=true  -> device ledger and history in DynamoDB
USE_DYNAMODB=false -> in-process stores (local development; lost on restart)

The crash-recovery checkpoint file is always local.
"""

import logging

from backend.config import Settings
from backend.lib.checkpoint_service import FileCheckpointStore
from backend.lib.uptime_core.engine import ConsumptionEngine, build_engine
from backend.lib.uptime_core.memory import InMemoryDeviceStore, InMemoryHistoryStore, SystemClock

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> ConsumptionEngine:
    if settings.use_dynamodb:
        from backend.lib.dynamodb_service import DynamoDBService

        service = DynamoDBService(
            devices_table_name=settings.devices_table_name,
            history_table_name=settings.history_table_name,
            region=settings.aws_region,
        )
        service.create_tables_if_not_exist()
        devices, history = service.device_store(), service.history_store()
        logger.info("DynamoDB storage enabled")
    else:
        devices, history = InMemoryDeviceStore(), InMemoryHistoryStore()
        logger.info("DynamoDB disabled, using in-memory storage")

    return build_engine(
        devices=devices,
        history=history,
        checkpoints=FileCheckpointStore(settings.checkpoint_path),
        clock=SystemClock(settings.tz_name),
    )
