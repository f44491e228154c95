"""Exception types for schedex.

Validation problems are raised synchronously from the entry points before
any runner is started. Callback faults are never wrapped: they propagate
out of the runner task unchanged.
"""


class SchedexError(Exception):
    """Base error for schedex."""


class ScheduleValidationError(SchedexError, ValueError):
    """Schedule inputs were rejected (delay, callback, timezone, options)."""


class InvalidCronExpression(ScheduleValidationError):
    """A textual cron expression could not be parsed.

    Attributes:
        expression: The rejected expression text.
        reason: Parser message describing the failure.
    """

    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(f"Invalid cron expression {expression!r}: {reason}")
        self.expression = expression
        self.reason = reason


class NotCancellableError(SchedexError, TypeError):
    """The cancellation target is not a runner handle."""

    def __init__(self, token: object) -> None:
        super().__init__(f"Not a cancellable token: {token!r}")
        self.token = token
