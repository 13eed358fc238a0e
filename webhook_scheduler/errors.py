"""Exception hierarchy shared by the scheduler, store and service layers."""


class SchedulerError(Exception):
    """Base class for all webhook scheduler errors."""


class InvalidScheduleError(SchedulerError):
    """A cron expression could not be parsed."""


class InvalidTriggerError(SchedulerError):
    """A trigger has an unknown kind or is missing its payload."""


class PersistenceError(SchedulerError):
    """A task store read or write failed."""


class TaskNotFoundError(PersistenceError):
    """The referenced task does not exist."""


class StartupLoadError(SchedulerError):
    """Scheduled tasks could not be loaded when the scheduler started."""


class ValidationError(SchedulerError):
    """A task definition submitted by a caller is invalid."""
