"""FastAPI REST API for office tasks.

Authentication happens upstream: the gateway forwards the authenticated user id
in the ``X-User-Id`` header and the principal is rebuilt from the store on every
request.

Usage:
    python src/api.py              (or: uvicorn api:app --app-dir src)

Env vars:
    API_HOST, API_PORT         bind address (default 0.0.0.0:8000)
    LOG_LEVEL                  root log level (default INFO)
    DATABASE_URL, POSTGRES_*   see db.py
    CALENDAR_API_URL           calendar service base URL; unset disables sync
"""

import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

# Ensure src is on path so sibling modules resolve when run from repo root
_src = Path(__file__).resolve().parent
if str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

import db
import task_service
from errors import AuthorizationError, NotFoundError, StoreError, ValidationError
from schemas import (
    ScopeRead,
    SubtaskCreate,
    SubtaskRead,
    SubtaskUpdate,
    TaskCreate,
    TaskRead,
    TaskUpdate,
    VisibleUserRead,
)
from scope_resolver import Principal

API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("API_PORT", "8000"))
LOG_LEVEL = (os.environ.get("LOG_LEVEL") or "INFO").upper()

app = FastAPI(title="officetasks API")


@app.on_event("startup")
def on_startup() -> None:
    db.init_db()


@app.exception_handler(ValidationError)
def handle_validation_error(request: Request, exc: ValidationError):
    return JSONResponse({"detail": str(exc)}, status_code=400)


@app.exception_handler(AuthorizationError)
def handle_authorization_error(request: Request, exc: AuthorizationError):
    return JSONResponse({"detail": str(exc) or "Forbidden"}, status_code=403)


@app.exception_handler(NotFoundError)
def handle_not_found(request: Request, exc: NotFoundError):
    return JSONResponse({"detail": str(exc) or "Not found"}, status_code=404)


@app.exception_handler(StoreError)
def handle_store_error(request: Request, exc: StoreError):
    logger.error("Store error for %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse({"detail": "Store unavailable, safe to retry"}, status_code=500)


@app.exception_handler(Exception)
def log_unhandled_exception(request: Request, exc: Exception):
    """Log every unhandled exception so 500s show up in the terminal."""
    from starlette.exceptions import HTTPException as StarletteHTTPException
    if isinstance(exc, StarletteHTTPException):
        raise exc
    logger.exception("Unhandled exception for %s %s: %s", request.method, request.url.path, exc)
    return PlainTextResponse(f"Internal Server Error\n\n{type(exc).__name__}", status_code=500)


def get_principal(x_user_id: int | None = Header(None)) -> Principal:
    """Resolve the caller from the gateway header. Raises 403 if missing or unknown."""
    if x_user_id is None:
        raise HTTPException(status_code=403, detail="Forbidden: missing user")
    return task_service.load_principal(x_user_id)


# --- Tasks ---


@app.get("/tasks", response_model=list[TaskRead])
def list_tasks(
    scope: str = Query("visible", description="visible (role scope) or mine"),
    status: str | None = Query(None, description="Stored status or 'overdue'"),
    principal: Principal = Depends(get_principal),
) -> list[TaskRead]:
    """List tasks in the caller's scope, earliest due date first."""
    return task_service.list_tasks(principal, scope=scope, status=status)


@app.get("/tasks/{task_id}", response_model=TaskRead)
def get_task(task_id: int, principal: Principal = Depends(get_principal)) -> TaskRead:
    return task_service.get_task(task_id, principal)


@app.post("/tasks", response_model=TaskRead, status_code=201)
def create_task(body: TaskCreate, principal: Principal = Depends(get_principal)) -> TaskRead:
    return task_service.create_task(body, principal)


@app.patch("/tasks/{task_id}", response_model=TaskRead)
def update_task(
    task_id: int,
    body: TaskUpdate,
    principal: Principal = Depends(get_principal),
) -> TaskRead:
    """Update a task (partial). Priority and status are recomputed after the patch."""
    return task_service.update_task(task_id, body, principal)


@app.delete("/tasks/{task_id}", status_code=204)
def delete_task(task_id: int, principal: Principal = Depends(get_principal)) -> Response:
    task_service.delete_task(task_id, principal)
    return Response(status_code=204)


@app.post("/tasks/{task_id}/refresh", response_model=TaskRead)
def refresh_task(task_id: int, principal: Principal = Depends(get_principal)) -> TaskRead:
    """Re-evaluate priority escalation and status now, without changing any field."""
    return task_service.refresh_task(task_id, principal)


@app.post("/tasks/{task_id}/calendar-sync", response_model=TaskRead)
def sync_task_calendar(task_id: int, principal: Principal = Depends(get_principal)) -> TaskRead:
    return task_service.sync_task_calendar(task_id, principal)


# --- Subtasks ---


@app.get("/tasks/{task_id}/subtasks", response_model=list[SubtaskRead])
def list_subtasks(task_id: int, principal: Principal = Depends(get_principal)) -> list[SubtaskRead]:
    return task_service.list_subtasks(task_id, principal)


@app.post("/tasks/{task_id}/subtasks", response_model=SubtaskRead, status_code=201)
def create_subtask(
    task_id: int,
    body: SubtaskCreate,
    principal: Principal = Depends(get_principal),
) -> SubtaskRead:
    return task_service.create_subtask(task_id, body, principal)


@app.patch("/tasks/{task_id}/subtasks/{subtask_id}", response_model=SubtaskRead)
def update_subtask(
    task_id: int,
    subtask_id: int,
    body: SubtaskUpdate,
    principal: Principal = Depends(get_principal),
) -> SubtaskRead:
    return task_service.update_subtask(task_id, subtask_id, body, principal)


@app.delete("/tasks/{task_id}/subtasks/{subtask_id}", status_code=204)
def delete_subtask(
    task_id: int,
    subtask_id: int,
    principal: Principal = Depends(get_principal),
) -> Response:
    task_service.delete_subtask(task_id, subtask_id, principal)
    return Response(status_code=204)


# --- Scope ---


@app.get("/scope", response_model=ScopeRead)
def get_scope(principal: Principal = Depends(get_principal)) -> ScopeRead:
    """Which tier the caller resolved to, and the user ids it covers."""
    return task_service.describe_scope(principal)


@app.get("/scope/users", response_model=list[VisibleUserRead])
def list_scope_users(principal: Principal = Depends(get_principal)) -> list[VisibleUserRead]:
    """Users the caller may see and assign (assignee dropdown)."""
    return task_service.list_visible_users(principal)


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    uvicorn.run(app, host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    main()
