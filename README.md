# cronjob_operator

A library for working with `Cronjob` resources of the
`batch.tutorial.kubebuilder.io/v1` API group. It parses standard cron
schedules, applies defaults to and validates `Cronjob` objects, and reconciles
a `Cronjob` against the jobs it owns. It has no dependencies outside the
standard library.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

### `cronjob_operator.api`

Dataclasses for the resources: `Cronjob` (with `CronjobSpec` and
`CronjobStatus`), `CronjobList`, `Job` (with `JobStatus` and `JobCondition`),
`JobTemplateSpec`, `ObjectMeta`, `OwnerReference` and `ObjectReference`.
`ConcurrencyPolicy` is an enum with `ALLOW`, `FORBID` and `REPLACE`
(`"Allow"`, `"Forbid"`, `"Replace"`). `GROUP_VERSION` is the
`GroupVersion` of the group; `str(GROUP_VERSION)` gives
`"batch.tutorial.kubebuilder.io/v1"`. `Job.controller_of()` returns the owner
reference marked as controller, or `None`.

### `cronjob_operator.schedule`

`parse_standard(spec)` accepts a five-field expression (minute, hour, day of
month, month, day of week) with lists, ranges, steps, `*`/`?` and month and
weekday names, or one of the descriptors `@yearly`, `@annually`, `@monthly`,
`@weekly`, `@daily`, `@midnight`, `@hourly` and `@every <duration>` (for
example `@every 1h30m`; durations under one second are raised to one second).
It returns a `CronSchedule`; malformed input raises `ScheduleError`, a
`ValueError`.

`CronSchedule.next(after)` returns the first activation strictly after
`after`, or `None` if there is none within five years.

```python
from datetime import datetime, timezone
from cronjob_operator.schedule import parse_standard

schedule = parse_standard("*/15 9-17 * * mon-fri")
print(schedule.next(datetime(2024, 1, 5, 17, 50, tzinfo=timezone.utc)))
# 2024-01-08 09:00:00+00:00
```

### `cronjob_operator.webhook`

- `CronjobCustomDefaulter.default(obj)` fills in, in place, an unset
  concurrency policy, suspend flag and successful/failed history limits.
  `default_defaulter()` returns one set to `Allow`, not suspended, keep 3
  successful and 1 failed job.
- `CronjobCustomValidator` has `validate_create(obj)`,
  `validate_update(old_obj, new_obj)` and `validate_delete(obj)`; each returns
  a list of warnings (always empty). Create and update call
  `validate_cronjob(cronjob)`, which raises `InvalidError` (a `ValueError`
  carrying a list of `FieldError`) if the name is longer than 52 characters or
  the schedule does not parse. Delete performs no checks.
- Passing anything other than a `Cronjob` raises `TypeError`.

```python
from cronjob_operator.api import Cronjob, CronjobSpec, ObjectMeta
from cronjob_operator.webhook import CronjobCustomValidator, InvalidError, default_defaulter

cronjob = Cronjob(
    metadata=ObjectMeta(name="nightly-report", namespace="default"),
    spec=CronjobSpec(schedule="0 2 * * *"),
)
default_defaulter().default(cronjob)
assert cronjob.spec.successful_jobs_history_limit == 3

try:
    CronjobCustomValidator().validate_create(cronjob)
except InvalidError as err:
    print(err.errors)
```

### `cronjob_operator.controller`

- `InMemoryClient(clock=...)` stores Cronjobs and Jobs keyed by namespace and
  name: `get_cronjob`, `create_cronjob`, `update_cronjob_status`,
  `delete_cronjob`, `list_jobs(namespace, owner=None)`, `create_job`,
  `delete_job`. Missing objects raise `NotFoundError`; creating an object
  whose name is taken raises `ValueError`. Created objects get a uid and a
  creation timestamp from the clock.
- `Clock` is the abstract time source; `RealClock` reads the system time in
  UTC.
- `get_next_schedule(cronjob, now)` returns `(last_missed, next_run)`;
  more than 100 missed start times raise `ScheduleError`.
- `construct_job(cronjob, scheduled_time)` builds the Job named
  `<cronjob-name>-<unix-time>`, copying the template's labels, annotations
  and spec, recording the scheduled time in the
  `batch.tutorial.kubebuilder.io/scheduled-at` annotation and setting the
  Cronjob as controlling owner. `job_owner_index(job)` returns the name of that
  owner as a one-item list, or an empty list.
- `CronjobReconciler(client, clock=...)` with `reconcile(Request(namespace,
  name))` returns a `Result` whose `requeue_after` is the time until the next
  run (or `None`).

On each pass the reconciler records the active jobs and the last schedule time
in the status, deletes the oldest finished jobs beyond the history limits,
stops if the Cronjob is suspended, and otherwise creates a job for the most
recent missed run, unless it is past the starting deadline or the `Forbid`
policy sees an active job; with `Replace` it deletes the active jobs first. A
missing Cronjob or an unparseable schedule is logged and yields an empty
`Result`.

```python
from cronjob_operator.controller import CronjobReconciler, InMemoryClient, Request

client = InMemoryClient()
client.create_cronjob(cronjob)

reconciler = CronjobReconciler(client)
result = reconciler.reconcile(Request(namespace="default", name="nightly-report"))
print(result.requeue_after)
```

Messages are written through the standard `logging` module, to the loggers
`cronjob-resource` and `cronjob_operator.controller`.

## What it does not do

There is no command-line program, no HTTP server for admission requests, and
no connection to a cluster API: the reconciler only works through a client
object such as `InMemoryClient`, which keeps everything in memory. Nothing
watches for changes or calls `reconcile` repeatedly; the caller decides when
to reconcile and can use `requeue_after` to schedule the next pass.