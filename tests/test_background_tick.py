# tests/test_background_tick.py
import json

from backend.lambda_handlers.background_tick import handle_event

from conftest import USER, make_device


def body(result):
    return json.loads(result["body"])


def test_periodic_task_for_listed_users(engine):
    engine.devices.create(make_device(last_active=engine.clock.now()))

    result = handle_event({"task": "periodic", "user_ids": [USER, "user-002"]}, engine)

    assert result["statusCode"] == 200
    data = body(result)
    assert data["processed_count"] == 2
    assert data["failed_users"] == []
    assert engine.history.get(USER, engine.clock.today()).hourly_consumption


def test_api_gateway_body_and_single_user(engine):
    event = {"body": json.dumps({"task": "midnight", "user_id": USER})}
    data = body(handle_event(event, engine))
    assert data["task"] == "midnight"
    assert [s["step"] for s in data["reports"][0]["steps"]] == ["rollover"]


def test_rejects_bad_events(engine):
    assert handle_event({"task": "weekly", "user_id": USER}, engine)["statusCode"] == 400
    assert handle_event({"task": "periodic"}, engine)["statusCode"] == 400


def test_crash_for_one_user_does_not_abort_batch(engine, monkeypatch):
    engine.devices.create(make_device(last_active=engine.clock.now()))
    handle = engine.pipeline.handle

    def crashing_handle(tick):
        if tick.user_id == "user-broken":
            raise TypeError("can't subtract offset-naive and offset-aware datetimes")
        return handle(tick)

    monkeypatch.setattr(engine.pipeline, "handle", crashing_handle)

    result = handle_event({"task": "periodic", "user_ids": ["user-broken", USER]}, engine)

    assert result["statusCode"] == 200
    data = body(result)
    assert data["processed_count"] == 2
    assert data["failed_users"] == ["user-broken"]
    assert "offset-naive" in data["reports"][0]["error"]
    assert data["reports"][1]["ok"]
    assert engine.history.get(USER, engine.clock.today()).hourly_consumption
