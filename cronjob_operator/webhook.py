"""Defaulting and validation of Cronjob resources on admission."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from .api import GROUP_VERSION, ConcurrencyPolicy, Cronjob
from .schedule import ScheduleError, parse_standard

_log = logging.getLogger("cronjob-resource")

_DNS1035_LABEL_MAX_LENGTH = 63
# Jobs are named "<cronjob>-<unix time>", which adds up to 11 characters.
_MAX_NAME_LENGTH = _DNS1035_LABEL_MAX_LENGTH - 11


@dataclass(frozen=True)
class FieldError:
    """An invalid value found at a field path."""

    field: str
    bad_value: Any
    detail: str

    def __str__(self) -> str:
        value = json.dumps(self.bad_value) if isinstance(self.bad_value, str) else str(self.bad_value)
        message = f"{self.field}: Invalid value: {value}"
        if self.detail:
            message += f": {self.detail}"
        return message


class InvalidError(ValueError):
    """Raised when an object fails validation."""

    def __init__(self, name: str, errors: list[FieldError], kind: str = "Cronjob",
                 group: str = GROUP_VERSION.group) -> None:
        self.name = name
        self.kind = kind
        self.group = group
        self.errors = list(errors)
        qualified = f"{kind}.{group}" if group else kind
        if len(self.errors) == 1:
            details = str(self.errors[0])
        else:
            details = "[" + ", ".join(str(error) for error in self.errors) + "]"
        super().__init__(f"{qualified} {json.dumps(name)} is invalid: {details}")


def _require_cronjob(obj: Any, message: str) -> Cronjob:
    if not isinstance(obj, Cronjob):
        raise TypeError(f"{message} but got {type(obj).__name__}")
    return obj


@dataclass
class CronjobCustomDefaulter:
    """Fills unset Cronjob spec fields with default values."""

    default_concurrency_policy: ConcurrencyPolicy | None = None
    default_suspend: bool = False
    default_successful_jobs_history_limit: int = 0
    default_failed_jobs_history_limit: int = 0

    def default(self, obj: Any) -> None:
        """Apply defaults to ``obj`` in place."""
        cronjob = _require_cronjob(obj, "expected an Cronjob object")
        _log.info("Defaulting for Cronjob name=%s", cronjob.metadata.name)
        spec = cronjob.spec
        if not spec.concurrency_policy:
            spec.concurrency_policy = self.default_concurrency_policy
        if spec.suspend is None:
            spec.suspend = self.default_suspend
        if spec.successful_jobs_history_limit is None:
            spec.successful_jobs_history_limit = self.default_successful_jobs_history_limit
        if spec.failed_jobs_history_limit is None:
            spec.failed_jobs_history_limit = self.default_failed_jobs_history_limit


def default_defaulter() -> CronjobCustomDefaulter:
    """Return the defaulter with the values the webhook is registered with."""
    return CronjobCustomDefaulter(
        default_concurrency_policy=ConcurrencyPolicy.ALLOW,
        default_suspend=False,
        default_successful_jobs_history_limit=3,
        default_failed_jobs_history_limit=1,
    )


class CronjobCustomValidator:
    """Validates Cronjobs on creation, update and deletion.

    Each method returns a list of admission warnings and raises on rejection.
    """

    def validate_create(self, obj: Any) -> list[str]:
        cronjob = _require_cronjob(obj, "expected a Cronjob object")
        _log.info("Validation for Cronjob upon creation name=%s", cronjob.metadata.name)
        validate_cronjob(cronjob)
        return []

    def validate_update(self, old_obj: Any, new_obj: Any) -> list[str]:
        cronjob = _require_cronjob(new_obj, "expected a Cronjob object for the newObj")
        _log.info("Validation for Cronjob upon update name=%s", cronjob.metadata.name)
        validate_cronjob(cronjob)
        return []

    def validate_delete(self, obj: Any) -> list[str]:
        cronjob = _require_cronjob(obj, "expected a Cronjob object")
        _log.info("Validation for Cronjob upon deletion name=%s", cronjob.metadata.name)
        return []


def _name_error(cronjob: Cronjob) -> FieldError | None:
    name = cronjob.metadata.name
    if len(name.encode()) > _MAX_NAME_LENGTH:
        return FieldError("metadata.name", name, f"must be no more than {_MAX_NAME_LENGTH} characters")
    return None


def _schedule_error(cronjob: Cronjob) -> FieldError | None:
    schedule = cronjob.spec.schedule
    try:
        parse_standard(schedule)
    except ScheduleError as exc:
        return FieldError("spec.schedule", schedule, str(exc))
    return None


def validate_cronjob(cronjob: Cronjob) -> None:
    """Raise InvalidError if the name or schedule of ``cronjob`` is invalid."""
    errors = [error for error in (_name_error(cronjob), _schedule_error(cronjob)) if error]
    if errors:
        raise InvalidError(cronjob.metadata.name, errors)