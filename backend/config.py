"""
Runtime configuration for the consumption tracker.

Values come from environment variables; a local ``.env`` file is loaded first
so AWS keys and table names stay out of the code.
"""

import logging
import os
from dataclasses import dataclass

# dotenv - Load environment variables from .env file
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class Settings:
    use_dynamodb: bool = False
    aws_region: str = "us-east-1"
    devices_table_name: str = "ApplianceDevices"
    history_table_name: str = "ConsumptionHistory"
    checkpoint_path: str = "backend/data/checkpoints.json"
    tz_name: str = "UTC"
    tick_interval_minutes: float = 5.0
    tariff_rate_per_kwh: float = 1.2
    log_level: str = "INFO"


DEFAULTS = Settings()


def _flag(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def _number(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %s", name, raw, default)
        return default


def load_settings(dotenv: bool = True) -> Settings:
    """Read settings from the environment (and ``.env`` when ``dotenv``)."""
    if dotenv:
        load_dotenv()
    interval = _number("TICK_INTERVAL_MINUTES", DEFAULTS.tick_interval_minutes)
    if interval <= 0:
        logger.warning("TICK_INTERVAL_MINUTES must be positive, using default")
        interval = DEFAULTS.tick_interval_minutes
    return Settings(
        use_dynamodb=_flag("USE_DYNAMODB", DEFAULTS.use_dynamodb),
        aws_region=os.getenv("AWS_REGION", DEFAULTS.aws_region),
        devices_table_name=os.getenv("DEVICES_TABLE_NAME", DEFAULTS.devices_table_name),
        history_table_name=os.getenv("HISTORY_TABLE_NAME", DEFAULTS.history_table_name),
        checkpoint_path=os.getenv("CHECKPOINT_PATH", DEFAULTS.checkpoint_path),
        tz_name=os.getenv("TZ_NAME", DEFAULTS.tz_name),
        tick_interval_minutes=interval,
        tariff_rate_per_kwh=_number("TARIFF_RATE_PER_KWH", DEFAULTS.tariff_rate_per_kwh),
        log_level=os.getenv("LOG_LEVEL", DEFAULTS.log_level).upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
