"""
=============================================================================
APPLIANCE ENERGY TRACKER - MAIN FLASK APPLICATION
=============================================================================

REST API in front of the consumption engine. It provides endpoints for:
- Registering household devices (or adopting a preset from the catalog)
- Recording on/off transitions of a device
- Signing a user in/out (arms and cancels the background timers)
- Running the accounting pipeline on demand (resume / tick)
- Viewing consumption history and aggregated usage (day/week/month)
- Projecting the monthly bill

Storage:
- DynamoDB when USE_DYNAMODB=true (see backend/lib/dynamodb_service.py)
- In-memory stores otherwise (local development)

How to run:
    python -m backend.app

Then visit: http://127.0.0.1:5000/health
=============================================================================
"""

# =============================================================================
# IMPORTS
# =============================================================================

import atexit
import logging
from datetime import date, timedelta

# Flask - web framework; Blueprint groups the routes so create_app can mount them
from flask import Blueprint, Flask, current_app, jsonify, request

from backend.config import Settings, configure_logging, load_settings
from backend.lib.engine_service import create_engine
from backend.lib.scheduler_service import TickDispatcher, TriggerScheduler
from backend.lib.uptime_core.engine import ConsumptionEngine
from backend.lib.uptime_core.errors import ErrorKind, LedgerError, RecordNotFoundError
from backend.lib.uptime_core.estimator import BillingEstimator
from backend.lib.uptime_core.io import parse_preset_csv
from backend.lib.uptime_core.pipeline import Tick, TickKind
from backend.lib.uptime_core.processor import HistoryAnalyzer

logger = logging.getLogger(__name__)

# Error kind -> HTTP status code
STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_DATA: 400,
    ErrorKind.PERMISSION: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.TRANSPORT: 503,
}

# Default look-back for history/usage queries without a start date
DEFAULT_RANGE_DAYS = {"day": 30, "week": 12 * 7, "month": 365}

api = Blueprint("api", __name__)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _engine() -> ConsumptionEngine:
    return current_app.extensions["uptime_engine"]


def _dispatcher() -> TickDispatcher:
    return current_app.extensions["tick_dispatcher"]


def _scheduler() -> TriggerScheduler:
    return current_app.extensions["trigger_scheduler"]


def _settings() -> Settings:
    return current_app.config["TRACKER_SETTINGS"]


def _required_arg(name: str) -> str:
    value = (request.args.get(name) or "").strip()
    if not value:
        raise ValueError(f"{name} required")
    return value


def _date_arg(name: str, default: date) -> date:
    raw = request.args.get(name)
    if not raw:
        return default
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValueError(f"{name} must be a date (YYYY-MM-DD)")


def _date_range(default_days: int):
    end = _date_arg("end", _engine().clock.today())
    start = _date_arg("start", end - timedelta(days=default_days - 1))
    if start > end:
        raise ValueError("start must not be after end")
    return start, end


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValueError("JSON object body required")
    return body


def _device_fields(body: dict) -> dict:
    """Pull the device description out of a request body."""
    user_id = str(body.get("user_id") or "").strip()
    if not user_id:
        raise ValueError("user_id required")
    try:
        category_id = int(body.get("category_id", 0))
    except (TypeError, ValueError):
        raise ValueError("category_id must be an integer")
    return {
        "user_id": user_id,
        "category_id": category_id,
        "manufacturer": str(body.get("manufacturer") or "").strip(),
        "model": str(body.get("model") or "").strip(),
        "power_rating_kw": body.get("power_consumption"),
    }


def _device_json(device) -> dict:
    data = device.to_item()
    data["is_active"] = device.is_active
    return data


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@api.app_errorhandler(LedgerError)
def handle_ledger_error(e: LedgerError):
    status = STATUS_BY_KIND.get(e.kind, 500)
    if status >= 500:
        logger.error("Storage error: %s", e)
    return jsonify({"error": str(e), "kind": e.kind.value}), status


@api.app_errorhandler(ValueError)
def handle_bad_request(e: ValueError):
    return jsonify({"error": str(e)}), 400


# =============================================================================
# API ROUTES - STATUS
# =============================================================================

@api.route("/health", methods=["GET"])
def health():
    return jsonify({
        "status": "ok",
        "storage": "dynamodb" if _settings().use_dynamodb else "memory",
        "tick_dispatcher_running": _dispatcher().running,
        "active_sessions": _scheduler().active_sessions,
    })


# =============================================================================
# API ROUTES - DEVICES
# =============================================================================

@api.route("/devices", methods=["GET"])
def list_devices():
    """
    Devices registered by a user.

    Example:
        GET /devices?user_id=user-001
    """
    user_id = _required_arg("user_id")
    devices = _engine().ledger.list_devices(user_id)
    return jsonify({"user_id": user_id, "devices": [_device_json(d) for d in devices]})


@api.route("/devices/presets", methods=["GET"])
def list_presets():
    raw = request.args.get("category_id")
    try:
        category_id = int(raw) if raw else None
    except ValueError:
        raise ValueError("category_id must be an integer")
    presets = _engine().ledger.list_presets(category_id)
    return jsonify({"presets": [p.to_item() for p in presets]})


@api.route("/devices", methods=["POST"])
def add_device():
    """
    Register a device for a user.

    Body:
        {"user_id": "user-001", "category_id": 2, "manufacturer": "Samsung",
         "model": "QLED 55", "power_consumption": 0.12}

    A preset with the same manufacturer, model and rating is adopted
    instead of creating a duplicate.

    HTTP Status Codes:
        201: Created
        400: Missing or invalid fields
    """
    fields = _device_fields(_json_body())
    ledger = _engine().ledger
    device_id = ledger.add_device(**fields)
    device = _engine().devices.get(device_id)
    return jsonify({"id": device_id, "device": _device_json(device)}), 201


@api.route("/devices/<device_id>", methods=["PUT"])
def update_device(device_id):
    fields = _device_fields(_json_body())
    _engine().ledger.update_device(device_id, **fields)
    return jsonify({"device": _device_json(_engine().devices.get(device_id))})


@api.route("/devices/<device_id>", methods=["DELETE"])
def delete_device(device_id):
    _engine().ledger.delete_device(device_id)
    return "", 204


@api.route("/devices/<device_id>/state", methods=["POST"])
def record_state(device_id):
    """
    Record an on/off observation.

    Body:
        {"is_active": true}               -> credit time since last seen on
        {"is_active": false, "hours": 2}  -> credit exactly 2 hours
    """
    body = _json_body()
    is_active = body.get("is_active")
    if not isinstance(is_active, bool):
        raise ValueError("is_active must be true or false")
    hours = body.get("hours")
    if hours is not None:
        try:
            hours = float(hours)
        except (TypeError, ValueError):
            raise ValueError("hours must be a number")

    with _dispatcher().exclusive():
        device = _engine().accumulator.record_transition(device_id, is_active, explicit_hours=hours)
    return jsonify({"device": _device_json(device)})


@api.route("/presets/upload", methods=["POST"])
def upload_presets():
    """
    Seed the preset catalog from a CSV upload.

    Expected CSV format:
        category_id,manufacturer,model,power_consumption
        2,Samsung,QLED 55,0.12
        5,Panasonic,NN-ST45,1.0

    HTTP Status Codes:
        202: Accepted
        400: No file, or a malformed row
    """
    if "file" not in request.files:
        return jsonify({"error": "No file uploaded"}), 400
    file = request.files["file"]
    try:
        content = file.read().decode("utf-8")
    except UnicodeDecodeError:
        raise ValueError("CSV must be UTF-8 encoded")

    presets = parse_preset_csv(content)
    added = _engine().ledger.seed_presets(presets)
    return jsonify({
        "upload_id": file.filename,
        "parsed_count": len(presets),
        "added_count": added,
    }), 202


# =============================================================================
# API ROUTES - SESSIONS AND PIPELINE
# =============================================================================

@api.route("/users/<user_id>/session", methods=["POST"])
def start_session(user_id):
    """Sign-in: arm the periodic and midnight timers and queue a resume pass."""
    _scheduler().start_session(user_id)
    return jsonify({"user_id": user_id, "session": "started"}), 202


@api.route("/users/<user_id>/session", methods=["DELETE"])
def end_session(user_id):
    _scheduler().end_session(user_id)
    return jsonify({"user_id": user_id, "session": "ended"})


@api.route("/users/<user_id>/resume", methods=["POST"])
def resume(user_id):
    report = _dispatcher().run_now(Tick(user_id, TickKind.RESUME))
    return jsonify(report.to_dict())


@api.route("/users/<user_id>/tick", methods=["POST"])
def tick(user_id):
    report = _dispatcher().run_now(Tick(user_id, TickKind.PERIODIC))
    return jsonify(report.to_dict())


# =============================================================================
# API ROUTES - HISTORY, USAGE AND BILLING
# =============================================================================

@api.route("/history", methods=["GET"])
def history():
    """
    Daily history records, oldest first.

    Example:
        GET /history?user_id=user-001&start=2025-11-01&end=2025-11-07
    """
    user_id = _required_arg("user_id")
    start, end = _date_range(DEFAULT_RANGE_DAYS["day"])
    records = _engine().history.query(user_id, start, end)
    return jsonify({
        "user_id": user_id,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "records": [r.to_item() for r in records],
    })


@api.route("/history/hourly", methods=["GET"])
def hourly_history():
    user_id = _required_arg("user_id")
    day = _date_arg("date", _engine().clock.today())
    record = _engine().history.get(user_id, day)
    if record is None:
        raise RecordNotFoundError(f"No history for {user_id} on {day}")
    profile = HistoryAnalyzer([record]).hourly_profile(day)
    return jsonify({
        "user_id": user_id,
        "date": day.isoformat(),
        "hourly": [{"hour": h, "total_kwh": kwh} for h, kwh in sorted(profile.items())],
        "total_consumption": record.total_consumption_kwh,
        "is_reconstructed": record.is_reconstructed,
    })


@api.route("/usage", methods=["GET"])
def usage():
    """
    Aggregated usage for a user.

    Query Parameters:
        user_id (required)
        period (optional): 'day', 'week' or 'month' (default: 'day')
        start, end (optional): YYYY-MM-DD

    Example Response:
        {"user_id": "user-001", "period": "day",
         "data": [{"period": "2025-11-01", "total_kwh": 4.21}]}
    """
    user_id = _required_arg("user_id")
    period = request.args.get("period", "day").lower()
    if period not in DEFAULT_RANGE_DAYS:
        raise ValueError("period must be 'day', 'week' or 'month'")

    start, end = _date_range(DEFAULT_RANGE_DAYS[period])
    analyzer = HistoryAnalyzer(_engine().history.query(user_id, start, end))
    if period == "day":
        data = [{"period": k, "total_kwh": v} for k, v in sorted(analyzer.daily_usage().items())]
    elif period == "week":
        data = analyzer.weekly_usage()
    else:
        data = analyzer.monthly_usage()

    return jsonify({"user_id": user_id, "period": period, "data": data})


@api.route("/estimate", methods=["GET"])
def estimate():
    """
    Project this month's bill from the consumption recorded so far.

    Query Parameters:
        user_id (required)
        rate (optional): price per kWh (default: TARIFF_RATE_PER_KWH)
    """
    user_id = _required_arg("user_id")
    try:
        rate = float(request.args.get("rate", _settings().tariff_rate_per_kwh))
    except ValueError:
        raise ValueError("rate must be a number")
    if rate < 0:
        raise ValueError("rate must be >= 0")

    today = _engine().clock.today()
    records = _engine().history.query(user_id, today.replace(day=1), today)
    analyzer = HistoryAnalyzer(records)
    estimator = BillingEstimator(rate)

    return jsonify({
        "user_id": user_id,
        "month": today.strftime("%Y-%m"),
        "rate_per_kwh": rate,
        "cost_to_date": estimator.estimate_cost(analyzer.daily_usage()),
        **estimator.project_monthly_bill(analyzer.month_to_date(today), today),
    })


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(
    engine: ConsumptionEngine = None,
    settings: Settings = None,
    start_workers: bool = False,
) -> Flask:
    """
    Build the Flask app around one consumption engine.

    start_workers=True starts the tick consumer thread; tests leave it off
    and drive the pipeline through the synchronous endpoints.
    """
    settings = settings or load_settings()
    engine = engine or create_engine(settings)

    dispatcher = TickDispatcher(engine.pipeline.handle)
    scheduler = TriggerScheduler(dispatcher, engine.clock, settings.tick_interval_minutes)

    app = Flask(__name__)
    app.config["TRACKER_SETTINGS"] = settings
    app.extensions["uptime_engine"] = engine
    app.extensions["tick_dispatcher"] = dispatcher
    app.extensions["trigger_scheduler"] = scheduler
    app.register_blueprint(api)

    if start_workers:
        dispatcher.start()
        atexit.register(scheduler.shutdown)
    return app


# =============================================================================
# RUN THE SERVER
# =============================================================================

if __name__ == "__main__":
    # WARNING: Never use debug=True in production!
    settings = load_settings()
    configure_logging(settings.log_level)
    create_app(settings=settings, start_workers=True).run(debug=True, use_reloader=False)
