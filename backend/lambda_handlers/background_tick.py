# backend/lambda_handlers/background_tick.py
"""
Lambda function that runs the consumption pipeline in the background
Triggered by an EventBridge schedule (or API Gateway for manual runs)

Event:
    {"task": "periodic" | "midnight" | "resume", "user_ids": ["user-001", ...]}
    {"task": "periodic", "user_id": "user-001"}
"""
import json
import logging
import os

from backend.config import load_settings
from backend.lib.checkpoint_service import FileCheckpointStore
from backend.lib.dynamodb_service import DynamoDBService
from backend.lib.uptime_core.engine import ConsumptionEngine, build_engine
from backend.lib.uptime_core.memory import SystemClock
from backend.lib.uptime_core.pipeline import Tick, TickKind

logger = logging.getLogger(__name__)
logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

# Only /tmp is writable inside Lambda
CHECKPOINT_PATH = os.getenv("LAMBDA_CHECKPOINT_PATH", "/tmp/checkpoints.json")

TASKS = {
    "periodic": TickKind.PERIODIC,
    "midnight": TickKind.MIDNIGHT,
    "resume": TickKind.RESUME,
    "background": TickKind.BACKGROUND,
}

# Reused across warm invocations
_engine = None


def get_engine() -> ConsumptionEngine:
    global _engine
    if _engine is None:
        settings = load_settings(dotenv=False)
        service = DynamoDBService(
            devices_table_name=settings.devices_table_name,
            history_table_name=settings.history_table_name,
            region=settings.aws_region,
        )
        _engine = build_engine(
            devices=service.device_store(),
            history=service.history_store(),
            checkpoints=FileCheckpointStore(CHECKPOINT_PATH),
            clock=SystemClock(settings.tz_name),
        )
    return _engine


def lambda_handler(event, context):
    logger.info("Received event: %s", json.dumps(event))
    try:
        return handle_event(event, get_engine())
    except Exception as e:
        logger.exception("Background tick failed")
        return response(500, {'error': str(e)})


def handle_event(event: dict, engine: ConsumptionEngine) -> dict:
    """Run one pipeline pass per requested user."""
    # API Gateway wraps the payload in a JSON "body"
    if isinstance(event.get('body'), str):
        event = json.loads(event['body'] or '{}')

    task = str(event.get('task', 'periodic')).lower()
    if task not in TASKS:
        return response(400, {'error': f"task must be one of {sorted(TASKS)}"})

    user_ids = event.get('user_ids') or ([event['user_id']] if event.get('user_id') else [])
    if not user_ids:
        return response(400, {'error': 'user_id or user_ids is required'})

    reports = []
    for uid in user_ids:
        try:
            reports.append(engine.pipeline.handle(Tick(str(uid), TASKS[task])).to_dict())
        except Exception as e:
            # Reported as a failed user; the rest of the batch still runs
            logger.exception("Pipeline crashed for user %s", uid)
            reports.append({'user_id': str(uid), 'ok': False, 'steps': [], 'error': str(e)})
    failed = [r['user_id'] for r in reports if not r['ok']]
    if failed:
        logger.warning("Pipeline steps failed for users: %s", ", ".join(failed))

    return response(200, {
        'task': task,
        'processed_count': len(reports),
        'failed_users': failed,
        'reports': reports,
    })


def response(status_code: int, body: dict) -> dict:
    """Create API Gateway response."""
    return {
        'statusCode': status_code,
        'headers': {
            'Content-Type': 'application/json',
            'Access-Control-Allow-Origin': '*',
            'Access-Control-Allow-Methods': 'GET,POST,OPTIONS',
            'Access-Control-Allow-Headers': 'Content-Type'
        },
        'body': json.dumps(body)
    }
