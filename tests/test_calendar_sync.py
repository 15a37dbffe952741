"""Tests for calendar intents and the httpx calendar adapter."""

import json
from datetime import date, datetime, time, timedelta

import httpx
import pytest

import calendar_sync
from calendar_sync import (
    CalendarIntent,
    HttpCalendarAdapter,
    NullCalendarAdapter,
    build_event,
    delete_intent,
    dispatch_intents,
    upsert_intent,
)
from conftest import RecordingCalendar
from errors import IntegrationError
from models import Task

START = datetime(2026, 3, 12, 10, 0)


def _fields(**overrides):
    fields = dict(
        title="Report",
        description=None,
        start_at=START,
        end_at=START + timedelta(hours=1),
        recurrence_rule=None,
        metadata={"task_id": 7},
    )
    fields.update(overrides)
    return fields


def _adapter(handler, token=""):
    return HttpCalendarAdapter("https://cal.example.com/api/", token=token, transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# build_event / intents
# ---------------------------------------------------------------------------


def test_build_event_covers_one_hour_from_due_moment():
    task = Task(id=7, title="Report", created_by=1, due_date=date(2026, 3, 12), due_time=time(10, 0), department_id=3)
    event = build_event(task)
    assert event.start_at == START
    assert event.end_at == START + timedelta(minutes=60)
    assert event.metadata == {"task_id": 7, "department_id": 3}


def test_build_event_without_time_starts_at_midnight():
    task = Task(id=7, title="Report", created_by=1, due_date=date(2026, 3, 12))
    event = build_event(task)
    assert event.start_at == datetime(2026, 3, 12, 0, 0)
    assert event.metadata == {"task_id": 7}


def test_build_event_carries_recurrence_rule():
    task = Task(
        id=7, title="Standup", created_by=1, due_date=date(2026, 3, 12),
        is_recurrent=True, recurrence_rule="FREQ=DAILY;COUNT=10",
    )
    assert build_event(task).recurrence_rule == "FREQ=DAILY;COUNT=10"


def test_undated_task_has_no_event():
    task = Task(id=7, title="Someday", created_by=1)
    assert build_event(task) is None
    assert upsert_intent(task) is None


def test_upsert_intent_picks_create_or_update():
    task = Task(id=7, title="Report", created_by=1, due_date=date(2026, 3, 12))
    assert upsert_intent(task).action == "create"
    task.calendar_event_id = "evt-9"
    intent = upsert_intent(task)
    assert intent.action == "update"
    assert intent.external_id == "evt-9"


def test_delete_intent_only_when_event_exists():
    task = Task(id=7, title="Report", created_by=1)
    assert delete_intent(task) is None
    task.calendar_event_id = "evt-9"
    assert delete_intent(task) == CalendarIntent("delete", 7, "evt-9")


def test_dispatch_returns_created_ids_and_swallows_failures():
    task = Task(id=7, title="Report", created_by=1, due_date=date(2026, 3, 12))
    ok = dispatch_intents([upsert_intent(task)], RecordingCalendar())
    assert ok == {7: "evt-1"}
    failing = RecordingCalendar(fail=True)
    assert dispatch_intents([upsert_intent(task)], failing) == {}
    assert len(failing.calls) == 1


def test_dispatch_logs_unexpected_errors(caplog):
    class Broken:
        def create(self, **fields):
            raise RuntimeError("boom")

    task = Task(id=7, title="Report", created_by=1, due_date=date(2026, 3, 12))
    assert dispatch_intents([upsert_intent(task)], Broken()) == {}
    assert "Calendar create for task 7 failed" in caplog.text


def test_null_adapter_creates_nothing():
    assert NullCalendarAdapter().create(**_fields()) is None


def test_get_calendar_adapter_without_url_is_null(monkeypatch):
    monkeypatch.setattr(calendar_sync, "_adapter", None)
    monkeypatch.setattr(calendar_sync, "CALENDAR_API_URL", "")
    assert isinstance(calendar_sync.get_calendar_adapter(), NullCalendarAdapter)


def test_get_calendar_adapter_with_url_is_http(monkeypatch):
    monkeypatch.setattr(calendar_sync, "_adapter", None)
    monkeypatch.setattr(calendar_sync, "CALENDAR_API_URL", "https://cal.example.com")
    adapter = calendar_sync.get_calendar_adapter()
    assert isinstance(adapter, HttpCalendarAdapter)
    assert calendar_sync.get_calendar_adapter() is adapter
    adapter.close()


# ---------------------------------------------------------------------------
# HttpCalendarAdapter
# ---------------------------------------------------------------------------


def test_http_create_posts_event_and_returns_id():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "evt-42"})

    adapter = _adapter(handler, token="s3cret")
    assert adapter.create(**_fields(recurrence_rule="FREQ=WEEKLY")) == "evt-42"
    assert seen["method"] == "POST"
    assert seen["path"] == "/api/events"
    assert seen["auth"] == "Bearer s3cret"
    assert seen["body"]["start_at"] == "2026-03-12T10:00:00"
    assert seen["body"]["end_at"] == "2026-03-12T11:00:00"
    assert seen["body"]["recurrence_rule"] == "FREQ=WEEKLY"
    assert seen["body"]["metadata"] == {"task_id": 7}
    assert "description" not in seen["body"]


def test_http_create_without_id_is_an_error():
    adapter = _adapter(lambda request: httpx.Response(200, json={"ok": True}))
    with pytest.raises(IntegrationError, match="missing 'id'"):
        adapter.create(**_fields())


def test_http_error_status_uses_service_message():
    adapter = _adapter(lambda request: httpx.Response(422, json={"message": "start_at in the past"}))
    with pytest.raises(IntegrationError, match="start_at in the past"):
        adapter.create(**_fields())


def test_http_update_patches_event():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        return httpx.Response(200, json={})

    _adapter(handler).update("evt-42", **_fields(title="Renamed"))
    assert seen == {"method": "PATCH", "path": "/api/events/evt-42"}


def test_http_delete_treats_404_as_done():
    _adapter(lambda request: httpx.Response(404, text="not found")).delete("evt-42")


def test_http_delete_server_error_raises():
    adapter = _adapter(lambda request: httpx.Response(503, text="maintenance"))
    with pytest.raises(IntegrationError, match="maintenance"):
        adapter.delete("evt-42")


def test_http_transport_failure_becomes_integration_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(IntegrationError, match="connection refused"):
        _adapter(handler).create(**_fields())
