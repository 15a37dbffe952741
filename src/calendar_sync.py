"""Calendar mirroring of task due windows.

The task service never talks to the calendar inside its transaction. It returns
``CalendarIntent`` records, and ``dispatch_intents`` runs them after commit.
Every failure is logged and swallowed: the task write has already succeeded.

The HTTP adapter targets a calendar service exposing:
    POST   {base}/events        -> {"id": "..."}
    PATCH  {base}/events/{id}
    DELETE {base}/events/{id}
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal, Protocol

import httpx

from errors import IntegrationError
from models import Task
from time_window import combine

logger = logging.getLogger(__name__)

EVENT_DURATION = timedelta(minutes=60)

CALENDAR_API_URL = (os.environ.get("CALENDAR_API_URL") or "").strip()
CALENDAR_API_TOKEN = (os.environ.get("CALENDAR_API_TOKEN") or "").strip()
CALENDAR_TIMEOUT_SECONDS = float(os.environ.get("CALENDAR_TIMEOUT_SECONDS", "10"))


@dataclass(frozen=True)
class CalendarEvent:
    title: str
    description: str | None
    start_at: datetime
    end_at: datetime
    recurrence_rule: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CalendarIntent:
    action: Literal["create", "update", "delete"]
    task_id: int
    external_id: str | None = None
    event: CalendarEvent | None = None


class CalendarSyncAdapter(Protocol):
    def create(
        self,
        *,
        title: str,
        description: str | None,
        start_at: datetime,
        end_at: datetime,
        recurrence_rule: str | None,
        metadata: dict[str, Any],
    ) -> str | None: ...

    def update(
        self,
        external_id: str,
        *,
        title: str,
        description: str | None,
        start_at: datetime,
        end_at: datetime,
        recurrence_rule: str | None,
        metadata: dict[str, Any],
    ) -> None: ...

    def delete(self, external_id: str) -> None: ...


class NullCalendarAdapter:
    """Used when no calendar service is configured. Creates nothing."""

    def create(self, **fields: Any) -> str | None:
        logger.debug("Calendar disabled; skipping create for %s", fields.get("metadata"))
        return None

    def update(self, external_id: str, **fields: Any) -> None:
        logger.debug("Calendar disabled; skipping update of %s", external_id)

    def delete(self, external_id: str) -> None:
        logger.debug("Calendar disabled; skipping delete of %s", external_id)


def _payload(
    title: str,
    description: str | None,
    start_at: datetime,
    end_at: datetime,
    recurrence_rule: str | None,
    metadata: dict[str, Any],
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "title": title,
        "start_at": start_at.isoformat(),
        "end_at": end_at.isoformat(),
        "metadata": metadata,
    }
    if description:
        body["description"] = description
    if recurrence_rule:
        body["recurrence_rule"] = recurrence_rule
    return body


def _error_text(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"]
    return response.text or f"HTTP {response.status_code}"


class HttpCalendarAdapter:
    """Calendar adapter over the calendar service's REST API (httpx, sync)."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = CALENDAR_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise IntegrationError(f"Calendar {method} {url} failed: {exc}") from exc
        return response

    def create(self, **fields: Any) -> str | None:
        response = self._request("POST", "/events", json=_payload(**fields))
        if response.is_error:
            raise IntegrationError(
                f"Calendar create failed ({response.status_code}): {_error_text(response)}"
            )
        data = response.json()
        if not isinstance(data, dict) or not isinstance(data.get("id"), str):
            raise IntegrationError("Calendar create failed: missing 'id' in response")
        return data["id"]

    def update(self, external_id: str, **fields: Any) -> None:
        response = self._request("PATCH", f"/events/{external_id}", json=_payload(**fields))
        if response.is_error:
            raise IntegrationError(
                f"Calendar update failed ({response.status_code}): {_error_text(response)}"
            )

    def delete(self, external_id: str) -> None:
        response = self._request("DELETE", f"/events/{external_id}")
        if response.status_code == 404:
            logger.info("Calendar event %s already gone", external_id)
            return
        if response.is_error:
            raise IntegrationError(
                f"Calendar delete failed ({response.status_code}): {_error_text(response)}"
            )


_adapter: CalendarSyncAdapter | None = None


def get_calendar_adapter() -> CalendarSyncAdapter:
    """Return the shared adapter: HTTP when CALENDAR_API_URL is set, otherwise a no-op."""
    global _adapter
    if _adapter is None:
        if CALENDAR_API_URL:
            _adapter = HttpCalendarAdapter(CALENDAR_API_URL, CALENDAR_API_TOKEN)
        else:
            _adapter = NullCalendarAdapter()
    return _adapter


# ---------------------------------------------------------------------------
# Intents
# ---------------------------------------------------------------------------


def build_event(task: Task) -> CalendarEvent | None:
    """Event mirroring the task's due window, or None while the task has no due date."""
    if task.due_date is None:
        return None
    start_at = combine(task.due_date, task.due_time)
    metadata: dict[str, Any] = {"task_id": task.id}
    if task.department_id is not None:
        metadata["department_id"] = task.department_id
    return CalendarEvent(
        title=task.title,
        description=task.description,
        start_at=start_at,
        end_at=start_at + EVENT_DURATION,
        recurrence_rule=task.recurrence_rule,
        metadata=metadata,
    )


def upsert_intent(task: Task) -> CalendarIntent | None:
    """Update the existing event if the task has one, otherwise create it."""
    event = build_event(task)
    if event is None:
        return None
    if task.calendar_event_id:
        return CalendarIntent("update", task.id, task.calendar_event_id, event)
    return CalendarIntent("create", task.id, None, event)


def delete_intent(task: Task) -> CalendarIntent | None:
    if not task.calendar_event_id:
        return None
    return CalendarIntent("delete", task.id, task.calendar_event_id)


def dispatch_intents(
    intents: list[CalendarIntent],
    adapter: CalendarSyncAdapter,
) -> dict[int, str]:
    """Run intents against the adapter. Returns {task_id: external_id} for created events.

    Must be called after the task transaction has committed. Failures never propagate.
    """
    created: dict[int, str] = {}
    for intent in intents:
        try:
            if intent.action == "create" and intent.event is not None:
                external_id = adapter.create(**asdict(intent.event))
                if external_id:
                    created[intent.task_id] = external_id
            elif intent.action == "update" and intent.event is not None and intent.external_id:
                adapter.update(intent.external_id, **asdict(intent.event))
            elif intent.action == "delete" and intent.external_id:
                adapter.delete(intent.external_id)
        except IntegrationError as exc:
            logger.warning("Calendar %s for task %s failed: %s", intent.action, intent.task_id, exc)
        except Exception:
            logger.exception("Calendar %s for task %s failed", intent.action, intent.task_id)
    return created
