from __future__ import annotations

from typing import Any


class HabitTrackerError(Exception):
    """Base error carrying the HTTP status and a stable machine-readable code."""

    status_code = 500
    code = "internal_error"
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.context = dict(context or {})

    @property
    def public_message(self) -> str:
        # 5xx details stay server-side.
        if self.status_code >= 500:
            return HabitTrackerError.default_message
        return self.message


class BadRequestError(HabitTrackerError):
    status_code = 400
    code = "bad_request"
    default_message = "Invalid request"


class InvalidTimeZoneError(BadRequestError):
    code = "invalid_timezone"
    default_message = "Invalid time zone"


class InvalidDateError(BadRequestError):
    code = "invalid_date"
    default_message = "Invalid date"


class NotFoundOrUnauthorized(HabitTrackerError):
    """Raised for both missing rows and rows owned by someone else."""

    status_code = 404
    code = "not_found"
    default_message = "Habit not found"


class InconsistentStateError(HabitTrackerError):
    status_code = 500
    code = "inconsistent_state"
