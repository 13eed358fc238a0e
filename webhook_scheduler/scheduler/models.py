"""Task, trigger, action and result data models."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo
from enum import StrEnum
from typing import Any

from webhook_scheduler.errors import InvalidTriggerError

ONE_OFF = "one-off"
CRON = "cron"


class TaskStatus(StrEnum):
    """Task lifecycle status."""

    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# -- Timestamps ----------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_datetime(value: str | datetime, default_tz: tzinfo = UTC) -> datetime:
    """Parse an ISO 8601 string (or pass through a datetime).

    Naive values are interpreted in *default_tz*. Raises ``ValueError`` on
    unparsable input.
    """
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=default_tz)
    return dt


def to_utc_iso(value: datetime | None) -> str | None:
    """Serialize for storage. UTC keeps lexical and chronological order equal."""
    if value is None:
        return None
    return value.astimezone(UTC).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    return parse_datetime(value) if value else None


# -- Trigger -------------------------------------------------------------------


@dataclass(frozen=True)
class OneOffTrigger:
    """Fire once at an absolute, timezone-aware instant."""

    at: datetime

    kind = ONE_OFF

    def __post_init__(self) -> None:
        if not isinstance(self.at, datetime):
            msg = "one-off trigger requires a datetime"
            raise InvalidTriggerError(msg)
        if self.at.tzinfo is None:
            msg = "one-off trigger datetime must be timezone-aware"
            raise InvalidTriggerError(msg)

    def to_dict(self) -> dict[str, Any]:
        return {"type": ONE_OFF, "datetime": self.at.isoformat()}


@dataclass(frozen=True)
class CronTrigger:
    """Fire repeatedly on a six-field cron expression or ``@`` descriptor."""

    expression: str

    kind = CRON

    def __post_init__(self) -> None:
        if not isinstance(self.expression, str) or not self.expression.strip():
            msg = "cron trigger requires a non-empty expression"
            raise InvalidTriggerError(msg)
        object.__setattr__(self, "expression", self.expression.strip())

    def to_dict(self) -> dict[str, Any]:
        return {"type": CRON, "cron": self.expression}


Trigger = OneOffTrigger | CronTrigger


def trigger_from_dict(data: dict[str, Any], default_tz: tzinfo = UTC) -> Trigger:
    """Build a trigger from its wire shape.

    ``{"type": "one-off", "datetime": "..."}`` or ``{"type": "cron", "cron": "..."}``.
    """
    if not isinstance(data, dict):
        msg = "trigger must be an object"
        raise InvalidTriggerError(msg)

    kind = data.get("type")
    if kind == ONE_OFF:
        raw = data.get("datetime")
        if not raw:
            msg = "datetime is required for one-off trigger"
            raise InvalidTriggerError(msg)
        try:
            at = parse_datetime(raw, default_tz)
        except (TypeError, ValueError) as exc:
            msg = f"invalid datetime for one-off trigger: {raw!r}"
            raise InvalidTriggerError(msg) from exc
        return OneOffTrigger(at=at)

    if kind == CRON:
        expression = data.get("cron")
        if not expression:
            msg = "cron expression is required for cron trigger"
            raise InvalidTriggerError(msg)
        return CronTrigger(expression=expression)

    msg = f"invalid trigger type: {kind}"
    raise InvalidTriggerError(msg)


# -- Action --------------------------------------------------------------------


@dataclass
class Action:
    """The HTTP call a task makes.

    Attributes:
        method: HTTP method, normalised to upper case.
        url: Absolute target URL.
        headers: Request headers applied verbatim.
        payload: Raw request body, or None for no body.
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    payload: str | None = None

    def __post_init__(self) -> None:
        self.method = self.method.strip().upper()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"method": self.method, "url": self.url}
        if self.headers:
            data["headers"] = dict(self.headers)
        if self.payload is not None:
            data["payload"] = self.payload
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Action:
        payload = data.get("payload")
        # JSON bodies may arrive as structured values; keep them as raw text.
        if payload is not None and not isinstance(payload, str):
            payload = json.dumps(payload, separators=(",", ":"))
        headers = {str(k): str(v) for k, v in (data.get("headers") or {}).items()}
        return cls(
            method=data["method"],
            url=data["url"],
            headers=headers,
            payload=payload,
        )


# -- Task ----------------------------------------------------------------------


@dataclass
class Task:
    """A webhook call plus the trigger describing when to make it.

    Attributes:
        id: Unique identifier (UUID string).
        name: Human-readable name.
        trigger: ``OneOffTrigger`` or ``CronTrigger``.
        action: The HTTP call to make.
        status: ``scheduled``, ``cancelled`` or ``completed``.
        created_at: Creation time (UTC).
        updated_at: Last modification time (UTC).
        next_run: Next planned execution, None when nothing is pending.
    """

    id: str
    name: str
    trigger: Trigger
    action: Action
    status: TaskStatus = TaskStatus.SCHEDULED
    created_at: datetime | None = None
    updated_at: datetime | None = None
    next_run: datetime | None = None

    def __post_init__(self) -> None:
        self.status = TaskStatus(self.status)
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    # -- Convenience properties ------------------------------------------------

    @property
    def is_one_off(self) -> bool:
        return isinstance(self.trigger, OneOffTrigger)

    @property
    def is_cron(self) -> bool:
        return isinstance(self.trigger, CronTrigger)

    @property
    def is_scheduled(self) -> bool:
        return self.status == TaskStatus.SCHEDULED

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``tasks`` column order."""
        return (
            self.id,
            self.name,
            json.dumps(self.trigger.to_dict()),
            json.dumps(self.action.to_dict()),
            self.status.value,
            to_utc_iso(self.created_at),
            to_utc_iso(self.updated_at),
            to_utc_iso(self.next_run),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Task:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            name=row[1],
            trigger=trigger_from_dict(json.loads(row[2])),
            action=Action.from_dict(json.loads(row[3])),
            status=TaskStatus(row[4]),
            created_at=_from_iso(row[5]),
            updated_at=_from_iso(row[6]),
            next_run=_from_iso(row[7]),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation for API responses."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "trigger": self.trigger.to_dict(),
            "action": self.action.to_dict(),
            "status": self.status.value,
            "created_at": to_utc_iso(self.created_at),
            "updated_at": to_utc_iso(self.updated_at),
        }
        if self.next_run is not None:
            data["next_run"] = to_utc_iso(self.next_run)
        return data


# -- TaskResult ----------------------------------------------------------------


@dataclass
class TaskResult:
    """Immutable record of one execution attempt.

    ``response_headers`` holds the JSON text of the response header
    multi-map, or None when the response carried no headers (or no response
    was received at all).
    """

    id: str
    task_id: str
    run_at: datetime
    status_code: int = 0
    success: bool = False
    response_headers: str | None = None
    response_body: str = ""
    error_message: str | None = None
    duration_ms: int = 0
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.created_at is None:
            self.created_at = utcnow()

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``task_results`` column order."""
        return (
            self.id,
            self.task_id,
            to_utc_iso(self.run_at),
            self.status_code,
            int(self.success),
            self.response_headers,
            self.response_body,
            self.error_message,
            self.duration_ms,
            to_utc_iso(self.created_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> TaskResult:
        return cls(
            id=row[0],
            task_id=row[1],
            run_at=parse_datetime(row[2]),
            status_code=row[3],
            success=bool(row[4]),
            response_headers=row[5],
            response_body=row[6] or "",
            error_message=row[7],
            duration_ms=row[8],
            created_at=_from_iso(row[9]),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "task_id": self.task_id,
            "run_at": to_utc_iso(self.run_at),
            "status_code": self.status_code,
            "success": self.success,
            # Explicit null, not omission, when no headers were captured.
            "response_headers": (
                json.loads(self.response_headers) if self.response_headers else None
            ),
            "duration_ms": self.duration_ms,
            "created_at": to_utc_iso(self.created_at),
        }
        if self.response_body:
            data["response_body"] = self.response_body
        if self.error_message is not None:
            data["error_message"] = self.error_message
        return data


def make_task_id() -> str:
    """Generate a new task ID."""
    return str(uuid.uuid4())


def make_result_id() -> str:
    """Generate a new result ID."""
    return str(uuid.uuid4())
