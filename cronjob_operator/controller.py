"""Reconciliation of Cronjob resources into scheduled Jobs."""

from __future__ import annotations

import copy
import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from itertools import islice

from .api import (
    CONDITION_TRUE,
    GROUP_VERSION,
    JOB_COMPLETE,
    JOB_FAILED,
    ConcurrencyPolicy,
    Cronjob,
    Job,
    ObjectMeta,
    ObjectReference,
    OwnerReference,
)
from .schedule import ScheduleError, parse_standard

_log = logging.getLogger(__name__)

SCHEDULED_TIME_ANNOTATION = "batch.tutorial.kubebuilder.io/scheduled-at"
JOB_OWNER_KEY = ".metadata.controller"
_API_GV_STR = str(GROUP_VERSION)
_MAX_MISSED_STARTS = 100
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_RFC3339 = re.compile(
    r"(\d{4}-\d{2}-\d{2})T(\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)


class NotFoundError(LookupError):
    """Raised when a requested object does not exist."""


class _AlreadyExistsError(ValueError):
    """Raised when an object with the same name is already stored."""


@dataclass(frozen=True)
class Request:
    """Identifies the Cronjob to reconcile."""

    namespace: str
    name: str


@dataclass(frozen=True)
class Result:
    """Outcome of a reconciliation: when to look at the object again."""

    requeue_after: timedelta | None = None


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time."""


class RealClock(Clock):
    """A clock reading the system time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass
class InMemoryClient:
    """Stores Cronjobs and Jobs in memory, keyed by namespace and name."""

    clock: Clock = field(default_factory=RealClock)
    _cronjobs: dict[tuple[str, str], Cronjob] = field(init=False, default_factory=dict)
    _jobs: dict[tuple[str, str], Job] = field(init=False, default_factory=dict)

    def _stamp(self, metadata: ObjectMeta) -> None:
        if not metadata.uid:
            metadata.uid = str(uuid.uuid4())
        if metadata.creation_timestamp is None:
            metadata.creation_timestamp = self.clock.now().replace(microsecond=0)

    def get_cronjob(self, namespace: str, name: str) -> Cronjob:
        try:
            return copy.deepcopy(self._cronjobs[(namespace, name)])
        except KeyError:
            raise NotFoundError(f'cronjobs "{name}" not found') from None

    def create_cronjob(self, cronjob: Cronjob) -> Cronjob:
        key = (cronjob.metadata.namespace, cronjob.metadata.name)
        if key in self._cronjobs:
            raise _AlreadyExistsError(f'cronjobs "{key[1]}" already exists')
        stored = copy.deepcopy(cronjob)
        self._stamp(stored.metadata)
        self._cronjobs[key] = stored
        return copy.deepcopy(stored)

    def update_cronjob_status(self, cronjob: Cronjob) -> None:
        key = (cronjob.metadata.namespace, cronjob.metadata.name)
        if key not in self._cronjobs:
            raise NotFoundError(f'cronjobs "{key[1]}" not found')
        self._cronjobs[key].status = copy.deepcopy(cronjob.status)

    def delete_cronjob(self, namespace: str, name: str) -> None:
        if self._cronjobs.pop((namespace, name), None) is None:
            raise NotFoundError(f'cronjobs "{name}" not found')

    def list_jobs(self, namespace: str, owner: str | None = None) -> list[Job]:
        """List jobs in ``namespace``, optionally only those controlled by ``owner``."""
        return [
            copy.deepcopy(job)
            for (job_namespace, _), job in self._jobs.items()
            if job_namespace == namespace
            and (owner is None or owner in job_owner_index(job))
        ]

    def create_job(self, job: Job) -> Job:
        key = (job.metadata.namespace, job.metadata.name)
        if key in self._jobs:
            raise _AlreadyExistsError(f'jobs.batch "{key[1]}" already exists')
        stored = copy.deepcopy(job)
        self._stamp(stored.metadata)
        self._jobs[key] = stored
        return copy.deepcopy(stored)

    def delete_job(self, job: Job) -> None:
        key = (job.metadata.namespace, job.metadata.name)
        if self._jobs.pop(key, None) is None:
            raise NotFoundError(f'jobs.batch "{key[1]}" not found')


def job_owner_index(job: Job) -> list[str]:
    """Return the name of the Cronjob controlling ``job``, as a one-item list."""
    owner = job.controller_of()
    if owner is None or owner.api_version != _API_GV_STR or owner.kind != "Cronjob":
        return []
    return [owner.name]


def _format_rfc3339(t: datetime) -> str:
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    text = t.replace(microsecond=0).isoformat(timespec="seconds")
    if t.utcoffset() == timedelta(0):
        text = text[: -len("+00:00")] + "Z"
    return text


def _parse_rfc3339(text: str) -> datetime:
    match = _RFC3339.fullmatch(text)
    if not match:
        raise ValueError(f'cannot parse "{text}" as RFC 3339 time')
    day, clock, fraction, zone = match.groups()
    micros = (fraction or "").ljust(6, "0")[:6]
    if zone == "Z":
        zone = "+00:00"
    return datetime.fromisoformat(f"{day}T{clock}.{micros}{zone}")


def _finished_type(job: Job) -> str:
    return next(
        (
            condition.type
            for condition in job.status.conditions
            if condition.type in (JOB_COMPLETE, JOB_FAILED)
            and condition.status == CONDITION_TRUE
        ),
        "",
    )


def _scheduled_time(job: Job) -> datetime | None:
    raw = job.metadata.annotations.get(SCHEDULED_TIME_ANNOTATION, "")
    return _parse_rfc3339(raw) if raw else None


def _reference(job: Job) -> ObjectReference:
    return ObjectReference(
        kind=job.kind,
        namespace=job.metadata.namespace,
        name=job.metadata.name,
        uid=job.metadata.uid,
        api_version=job.api_version,
    )


def _too_many_missed() -> ScheduleError:
    return ScheduleError(
        f"Too many missed start times (> {_MAX_MISSED_STARTS}). "
        "Set or decrease .spec.startingDeadlineSeconds or check clock skew."
    )


def get_next_schedule(
    cronjob: Cronjob, now: datetime
) -> tuple[datetime | None, datetime | None]:
    """Return the most recent missed run up to ``now`` and the next run after it.

    The missed run is None when nothing was missed; the next run is None when
    the schedule never fires again.
    """
    schedule_text = cronjob.spec.schedule
    try:
        schedule = parse_standard(schedule_text)
    except ScheduleError as exc:
        raise ScheduleError(
            f"Unparseable schedule {json.dumps(schedule_text)}: {exc}"
        ) from exc

    earliest = (
        cronjob.status.last_schedule_time
        or cronjob.metadata.creation_timestamp
        or _ZERO_TIME
    )
    deadline_seconds = cronjob.spec.starting_deadline_seconds
    if deadline_seconds is not None:
        earliest = max(earliest, now - timedelta(seconds=deadline_seconds))
    if earliest > now:
        return None, schedule.next(now)

    last_missed = None
    starts = 0
    t = schedule.next(earliest)
    while t is None or t <= now:
        if t is None:
            raise _too_many_missed()
        last_missed = t
        starts += 1
        if starts > _MAX_MISSED_STARTS:
            raise _too_many_missed()
        t = schedule.next(t)
    return last_missed, schedule.next(now)


def construct_job(cronjob: Cronjob, scheduled_time: datetime) -> Job:
    """Build the Job that runs ``cronjob`` for the run at ``scheduled_time``."""
    template = cronjob.spec.job_template
    annotations = dict(template.metadata.annotations)
    annotations[SCHEDULED_TIME_ANNOTATION] = _format_rfc3339(scheduled_time)
    owner = OwnerReference(
        api_version=cronjob.api_version,
        kind=cronjob.kind,
        name=cronjob.metadata.name,
        uid=cronjob.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )
    return Job(
        metadata=ObjectMeta(
            name=f"{cronjob.metadata.name}-{int(scheduled_time.timestamp())}",
            namespace=cronjob.metadata.namespace,
            labels=dict(template.metadata.labels),
            annotations=annotations,
            owner_references=[owner],
        ),
        spec=copy.deepcopy(template.spec),
    )


def _oldest_first(jobs: list[Job]) -> list[Job]:
    return sorted(
        jobs,
        key=lambda job: (job.status.start_time is not None, job.status.start_time or _ZERO_TIME),
    )


@dataclass
class CronjobReconciler:
    """Drives the jobs of a Cronjob towards its schedule."""

    client: InMemoryClient
    clock: Clock = field(default_factory=RealClock)

    def _prune(self, jobs: list[Job], limit: int | None, kind: str,
               ignore_missing: bool) -> None:
        if limit is None:
            return
        excess = max(0, len(jobs) - limit)
        for job in islice(_oldest_first(jobs), excess):
            try:
                self.client.delete_job(job)
            except NotFoundError:
                if not ignore_missing:
                    _log.error("unable to delete old %s job %s", kind, job.metadata.name)
                    continue
            _log.info("deleted old %s job %s", kind, job.metadata.name)

    def reconcile(self, request: Request) -> Result:
        """Bring the jobs of the requested Cronjob in line with its spec."""
        try:
            cronjob = self.client.get_cronjob(request.namespace, request.name)
        except NotFoundError:
            _log.error("unable to fetch CronJob %s/%s", request.namespace, request.name)
            return Result()

        child_jobs = self.client.list_jobs(request.namespace, request.name)
        active: list[Job] = []
        successful: list[Job] = []
        failed: list[Job] = []
        most_recent: datetime | None = None
        for job in child_jobs:
            {"": active, JOB_FAILED: failed, JOB_COMPLETE: successful}[
                _finished_type(job)
            ].append(job)
            try:
                scheduled = _scheduled_time(job)
            except ValueError:
                _log.error("unable to parse schedule time for child job %s", job.metadata.name)
                continue
            if scheduled is not None and (most_recent is None or most_recent < scheduled):
                most_recent = scheduled

        cronjob.status.last_schedule_time = most_recent
        cronjob.status.active = [_reference(job) for job in active]
        _log.debug(
            "job count: active=%d successful=%d failed=%d",
            len(active), len(successful), len(failed),
        )
        self.client.update_cronjob_status(cronjob)

        spec = cronjob.spec
        self._prune(failed, spec.failed_jobs_history_limit, "failed", ignore_missing=True)
        self._prune(successful, spec.successful_jobs_history_limit, "successful",
                    ignore_missing=False)

        if spec.suspend:
            _log.debug("cronjob suspended, skipping")
            return Result()

        now = self.clock.now()
        try:
            missed_run, next_run = get_next_schedule(cronjob, now)
        except ScheduleError as exc:
            _log.error("unable to figure out CronJob schedule: %s", exc)
            return Result()

        scheduled_result = Result(requeue_after=next_run - now if next_run else None)
        if missed_run is None:
            _log.debug("no upcoming scheduled times, sleeping until next")
            return scheduled_result

        if spec.starting_deadline_seconds is not None and (
            missed_run + timedelta(seconds=spec.starting_deadline_seconds) < now
        ):
            _log.debug("missed starting deadline for last run, sleeping till next")
            return scheduled_result

        if spec.concurrency_policy == ConcurrencyPolicy.FORBID and active:
            _log.debug("concurrency policy blocks concurrent runs, skipping: %d active",
                       len(active))
            return scheduled_result

        if spec.concurrency_policy == ConcurrencyPolicy.REPLACE:
            for job in active:
                try:
                    self.client.delete_job(job)
                except NotFoundError:
                    pass

        job = construct_job(cronjob, missed_run)
        self.client.create_job(job)
        _log.debug("created Job for CronJob run %s", job.metadata.name)
        return scheduled_result