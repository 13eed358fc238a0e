"""CronEngine — APScheduler adapter for six-field cron expressions."""

from __future__ import annotations

import contextlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from webhook_scheduler.config import settings
from webhook_scheduler.errors import InvalidScheduleError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from apscheduler.job import Job
    from apscheduler.triggers.base import BaseTrigger

logger = logging.getLogger(__name__)

_DESCRIPTORS = {
    "@yearly": "0 0 0 1 1 *",
    "@annually": "0 0 0 1 1 *",
    "@monthly": "0 0 0 1 * *",
    "@weekly": "0 0 0 * * 0",
    "@daily": "0 0 0 * * *",
    "@midnight": "0 0 0 * * *",
    "@hourly": "0 0 * * * *",
}

# Cron numbering: 0 (and 7) is Sunday. APScheduler numbers from Monday, so
# numeric day-of-week values are rewritten as names.
_DOW_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def _dow_index(token: str, expression: str) -> int:
    token = token.strip().lower()
    if token.isdigit():
        value = int(token)
        if 0 <= value <= 7:
            return value
    elif token[:3] in _DOW_NAMES:
        return _DOW_NAMES.index(token[:3])
    msg = f"invalid day-of-week {token!r} in {expression!r}"
    raise InvalidScheduleError(msg)


def _translate_day_of_week(field: str, expression: str) -> str:
    """Rewrite a cron day-of-week field into APScheduler day names."""
    if field == "*":
        return field

    days: list[str] = []
    for part in field.split(","):
        span, _, step_text = part.partition("/")
        try:
            step = int(step_text) if step_text else 1
        except ValueError as exc:
            msg = f"invalid step {step_text!r} in {expression!r}"
            raise InvalidScheduleError(msg) from exc
        if step < 1:
            msg = f"invalid step {step_text!r} in {expression!r}"
            raise InvalidScheduleError(msg)

        if span == "*":
            start, end = 0, 6
        elif "-" in span:
            low, _, high = span.partition("-")
            start, end = _dow_index(low, expression), _dow_index(high, expression)
        else:
            start = _dow_index(span, expression)
            # "N/step" runs to the end of the week; a bare "N" is one day.
            end = 6 if step_text else start

        if start > end:
            msg = f"invalid day-of-week range {span!r} in {expression!r}"
            raise InvalidScheduleError(msg)

        for value in range(start, end + 1, step):
            name = _DOW_NAMES[value % 7]
            if name not in days:
                days.append(name)

    return ",".join(days)


def parse_duration(text: str) -> float:
    """Parse a Go-style duration (``1h30m``, ``90s``, ``500ms``) into seconds."""
    text = text.strip()
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if not text or pos != len(text):
        msg = f"invalid duration: {text!r}"
        raise InvalidScheduleError(msg)
    return total


@dataclass
class JobHandle:
    """A live cron registration. Cancelling it stops future firings only."""

    job: Job
    expression: str
    trigger: BaseTrigger

    @property
    def job_id(self) -> str:
        return self.job.id

    def cancel(self) -> None:
        with contextlib.suppress(JobLookupError):
            self.job.remove()


class CronEngine:
    """Parses cron expressions and fires callbacks via APScheduler.

    Supports six fields (second, minute, hour, day-of-month, month,
    day-of-week), the ``@yearly``/``@monthly``/``@weekly``/``@daily``/
    ``@hourly`` descriptors and ``@every <duration>``.

    Args:
        timezone: IANA timezone fire times are computed in (default from settings).
    """

    def __init__(self, timezone: str | None = None) -> None:
        self._timezone = ZoneInfo(timezone or settings.scheduler_timezone)
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def timezone(self) -> ZoneInfo:
        return self._timezone

    # -- Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        """Start the timer. Must be called from within the running event loop."""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Cron engine started (tz=%s)", self._timezone)

    def shutdown(self) -> None:
        """Stop firing. Callbacks hand work off immediately, so nothing is awaited here."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Cron engine stopped")

    # -- Parsing ---------------------------------------------------------------

    def parse(self, expression: str) -> BaseTrigger:
        """Convert an expression into an APScheduler trigger.

        Raises:
            InvalidScheduleError: if the expression cannot be parsed.
        """
        expr = (expression or "").strip()
        if not expr:
            msg = "empty cron expression"
            raise InvalidScheduleError(msg)

        lowered = expr.lower()
        if lowered.startswith("@every"):
            seconds = parse_duration(expr[len("@every") :])
            # One-second granularity.
            return IntervalTrigger(seconds=max(1, int(seconds)), timezone=self._timezone)
        if lowered.startswith("@"):
            if lowered not in _DESCRIPTORS:
                msg = f"unrecognized descriptor: {expr!r}"
                raise InvalidScheduleError(msg)
            expr = _DESCRIPTORS[lowered]

        fields = expr.split()
        if len(fields) != 6:
            msg = f"expected 6 fields (sec min hour dom month dow), got {len(fields)}: {expression!r}"
            raise InvalidScheduleError(msg)

        second, minute, hour, day, month, day_of_week = fields
        day = "*" if day == "?" else day
        day_of_week = "*" if day_of_week == "?" else day_of_week
        days = _translate_day_of_week(day_of_week, expression)
        try:
            if day != "*" and day_of_week != "*":
                # Both day fields restricted: cron fires when either matches.
                return OrTrigger(
                    [
                        self._cron_trigger(second, minute, hour, day, month, "*"),
                        self._cron_trigger(second, minute, hour, "*", month, days),
                    ]
                )
            return self._cron_trigger(second, minute, hour, day, month, days)
        except (ValueError, TypeError) as exc:
            msg = f"invalid cron expression {expression!r}: {exc}"
            raise InvalidScheduleError(msg) from exc

    def _cron_trigger(
        self, second: str, minute: str, hour: str, day: str, month: str, day_of_week: str
    ) -> CronTrigger:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
            timezone=self._timezone,
        )

    def validate(self, expression: str) -> None:
        """Raise ``InvalidScheduleError`` if *expression* cannot be parsed."""
        self.parse(expression)

    # -- Jobs ------------------------------------------------------------------

    def add(
        self,
        expression: str,
        callback: Callable[..., Any],
        args: Sequence[Any] = (),
        name: str | None = None,
    ) -> JobHandle:
        """Register *callback* to fire on *expression*. Returns its handle."""
        trigger = self.parse(expression)
        job = self._scheduler.add_job(
            callback,
            trigger=trigger,
            args=list(args),
            name=name,
            misfire_grace_time=None,
            coalesce=True,
        )
        return JobHandle(job=job, expression=expression, trigger=trigger)

    def remove(self, handle: JobHandle) -> None:
        handle.cancel()

    def next_fire_time(self, handle: JobHandle) -> datetime | None:
        """Return when *handle* fires next after now, or None if it never will again."""
        return handle.trigger.get_next_fire_time(None, datetime.now(self._timezone))

    def job_count(self) -> int:
        return len(self._scheduler.get_jobs())
