from datetime import datetime, timedelta, timezone

import pytest

from cronjob_operator.api import (
    ConcurrencyPolicy,
    Cronjob,
    CronjobSpec,
    Job,
    JobCondition,
    JobTemplateSpec,
    ObjectMeta,
    ObjectReference,
    OwnerReference,
)
from cronjob_operator.controller import (
    Clock,
    CronjobReconciler,
    InMemoryClient,
    NotFoundError,
    RealClock,
    Request,
    Result,
    construct_job,
    get_next_schedule,
    job_owner_index,
)
from cronjob_operator.schedule import ScheduleError

UTC = timezone.utc
CREATED = datetime(2024, 1, 1, 10, 0, 0, tzinfo=UTC)
NOW = datetime(2024, 1, 1, 10, 5, 30, tzinfo=UTC)


class FixedClock(Clock):
    def __init__(self, moment):
        self.moment = moment

    def now(self):
        return self.moment


def make_client():
    return InMemoryClient(clock=FixedClock(CREATED))


def add_cronjob(client, **spec):
    cronjob = Cronjob(
        metadata=ObjectMeta(name="sample", namespace="default"),
        spec=CronjobSpec(**spec),
    )
    return client.create_cronjob(cronjob)


def finished(job, condition_type, start):
    job.status.conditions.append(JobCondition(type=condition_type))
    job.status.start_time = start
    return job


def test_reconcile_resource_without_spec_succeeds():
    client = make_client()
    client.create_cronjob(
        Cronjob(metadata=ObjectMeta(name="test-resource", namespace="default"))
    )
    reconciler = CronjobReconciler(client=client, clock=FixedClock(NOW))
    result = reconciler.reconcile(Request(namespace="default", name="test-resource"))
    assert result == Result()
    client.delete_cronjob("default", "test-resource")
    with pytest.raises(NotFoundError):
        client.get_cronjob("default", "test-resource")


def test_reconcile_missing_cronjob_is_ignored():
    reconciler = CronjobReconciler(client=make_client(), clock=FixedClock(NOW))
    assert reconciler.reconcile(Request("default", "absent")) == Result()


def test_client_errors_and_copies():
    client = make_client()
    stored = add_cronjob(client, schedule="* * * * *")
    assert stored.metadata.creation_timestamp == CREATED
    with pytest.raises(ValueError, match="already exists"):
        add_cronjob(client)
    fetched = client.get_cronjob("default", "sample")
    fetched.spec.schedule = "changed"
    assert client.get_cronjob("default", "sample").spec.schedule == "* * * * *"
    with pytest.raises(NotFoundError):
        client.update_cronjob_status(Cronjob(metadata=ObjectMeta(name="x", namespace="default")))
    with pytest.raises(NotFoundError):
        client.delete_job(Job(metadata=ObjectMeta(name="x", namespace="default")))


def test_get_next_schedule_finds_last_missed_run():
    cronjob = Cronjob(
        metadata=ObjectMeta(creation_timestamp=CREATED),
        spec=CronjobSpec(schedule="* * * * *"),
    )
    missed, upcoming = get_next_schedule(cronjob, NOW)
    assert missed == datetime(2024, 1, 1, 10, 5, tzinfo=UTC)
    assert upcoming == datetime(2024, 1, 1, 10, 6, tzinfo=UTC)


def test_get_next_schedule_earliest_after_now():
    cronjob = Cronjob(
        metadata=ObjectMeta(creation_timestamp=NOW + timedelta(hours=1)),
        spec=CronjobSpec(schedule="*/5 * * * *"),
    )
    assert get_next_schedule(cronjob, NOW) == (None, datetime(2024, 1, 1, 10, 10, tzinfo=UTC))


def test_get_next_schedule_too_many_missed():
    cronjob = Cronjob(
        metadata=ObjectMeta(creation_timestamp=NOW - timedelta(days=1)),
        spec=CronjobSpec(schedule="* * * * *"),
    )
    with pytest.raises(ScheduleError, match="Too many missed start times"):
        get_next_schedule(cronjob, NOW)


def test_get_next_schedule_starting_deadline_limits_lookback():
    cronjob = Cronjob(
        metadata=ObjectMeta(creation_timestamp=NOW - timedelta(days=1)),
        spec=CronjobSpec(schedule="* * * * *", starting_deadline_seconds=120),
    )
    missed, upcoming = get_next_schedule(cronjob, NOW)
    assert missed == datetime(2024, 1, 1, 10, 5, tzinfo=UTC)
    assert upcoming == datetime(2024, 1, 1, 10, 6, tzinfo=UTC)


def test_get_next_schedule_unparseable():
    cronjob = Cronjob(spec=CronjobSpec(schedule="not a schedule"))
    with pytest.raises(ScheduleError, match='Unparseable schedule "not a schedule"'):
        get_next_schedule(cronjob, NOW)


def test_construct_job():
    cronjob = Cronjob(
        metadata=ObjectMeta(name="sample", namespace="default", uid="uid-1"),
        spec=CronjobSpec(
            job_template=JobTemplateSpec(
                metadata=ObjectMeta(labels={"app": "demo"}, annotations={"note": "x"}),
                spec={"parallelism": 1},
            )
        ),
    )
    job = construct_job(cronjob, datetime(2024, 1, 1, 10, 5, tzinfo=UTC))
    assert job.metadata.name == "sample-1704103500"
    assert job.metadata.namespace == "default"
    assert job.metadata.labels == {"app": "demo"}
    assert job.metadata.annotations == {
        "note": "x",
        "batch.tutorial.kubebuilder.io/scheduled-at": "2024-01-01T10:05:00Z",
    }
    assert job.spec == {"parallelism": 1}
    assert job.spec is not cronjob.spec.job_template.spec
    owner = job.controller_of()
    assert (owner.kind, owner.name, owner.uid, owner.api_version) == (
        "Cronjob", "sample", "uid-1", "batch.tutorial.kubebuilder.io/v1"
    )
    assert job_owner_index(job) == ["sample"]


def test_job_owner_index_ignores_other_owners():
    assert job_owner_index(Job()) == []
    foreign = Job(
        metadata=ObjectMeta(
            owner_references=[
                OwnerReference(api_version="apps/v1", kind="Deployment", name="d", controller=True)
            ]
        )
    )
    assert job_owner_index(foreign) == []


def test_reconcile_creates_job_and_is_idempotent():
    client = make_client()
    add_cronjob(client, schedule="*/5 * * * *")
    reconciler = CronjobReconciler(client=client, clock=FixedClock(NOW))
    result = reconciler.reconcile(Request("default", "sample"))
    assert result == Result(requeue_after=timedelta(minutes=4, seconds=30))
    jobs = client.list_jobs("default", "sample")
    assert [job.metadata.name for job in jobs] == ["sample-1704103500"]

    result = reconciler.reconcile(Request("default", "sample"))
    assert result == Result(requeue_after=timedelta(minutes=4, seconds=30))
    assert len(client.list_jobs("default", "sample")) == 1
    status = client.get_cronjob("default", "sample").status
    assert status.last_schedule_time == datetime(2024, 1, 1, 10, 5, tzinfo=UTC)
    assert [ref.name for ref in status.active] == ["sample-1704103500"]


def test_reconcile_updates_status():
    client = make_client()
    cronjob = add_cronjob(client, schedule="*/5 * * * *", suspend=True)
    running = client.create_job(construct_job(cronjob, datetime(2024, 1, 1, 9, 0, tzinfo=UTC)))
    done = construct_job(cronjob, datetime(2024, 1, 1, 9, 30, tzinfo=UTC))
    client.create_job(finished(done, "Complete", CREATED))
    not_done = construct_job(cronjob, datetime(2024, 1, 1, 9, 10, tzinfo=UTC))
    not_done.status.conditions.append(JobCondition(type="Complete", status="False"))
    not_done = client.create_job(not_done)
    broken = construct_job(cronjob, datetime(2024, 1, 1, 9, 20, tzinfo=UTC))
    broken.metadata.name = "sample-broken"
    broken.metadata.annotations["batch.tutorial.kubebuilder.io/scheduled-at"] = "garbage"
    client.create_job(broken)

    reconciler = CronjobReconciler(client=client, clock=FixedClock(NOW))
    assert reconciler.reconcile(Request("default", "sample")) == Result()
    status = client.get_cronjob("default", "sample").status
    assert status.last_schedule_time == datetime(2024, 1, 1, 9, 30, tzinfo=UTC)
    assert status.active[:2] == [
        ObjectReference(kind="Job", namespace="default", name=running.metadata.name,
                        uid=running.metadata.uid, api_version="batch/v1"),
        ObjectReference(kind="Job", namespace="default", name=not_done.metadata.name,
                        uid=not_done.metadata.uid, api_version="batch/v1"),
    ]
    assert len(status.active) == 3
    assert len(client.list_jobs("default", "sample")) == 4


def test_suspended_cronjob_creates_nothing():
    client = make_client()
    add_cronjob(client, schedule="* * * * *", suspend=True)
    reconciler = CronjobReconciler(client=client, clock=FixedClock(NOW))
    assert reconciler.reconcile(Request("default", "sample")) == Result()
    assert client.list_jobs("default") == []


def test_forbid_skips_when_active():
    client = make_client()
    cronjob = add_cronjob(client, schedule="*/5 * * * *",
                          concurrency_policy=ConcurrencyPolicy.FORBID)
    client.create_job(construct_job(cronjob, CREATED))
    reconciler = CronjobReconciler(client=client, clock=FixedClock(NOW))
    result = reconciler.reconcile(Request("default", "sample"))
    assert result.requeue_after == timedelta(minutes=4, seconds=30)
    assert [job.metadata.name for job in client.list_jobs("default")] == ["sample-1704103200"]


def test_replace_deletes_active_jobs():
    client = make_client()
    cronjob = add_cronjob(client, schedule="*/5 * * * *",
                          concurrency_policy=ConcurrencyPolicy.REPLACE)
    client.create_job(construct_job(cronjob, CREATED))
    reconciler = CronjobReconciler(client=client, clock=FixedClock(NOW))
    reconciler.reconcile(Request("default", "sample"))
    assert [job.metadata.name for job in client.list_jobs("default")] == ["sample-1704103500"]


def test_failed_history_limit_keeps_newest():
    client = make_client()
    cronjob = add_cronjob(client, schedule="* * * * *", suspend=True,
                          failed_jobs_history_limit=1)
    made = []
    for minute, start in ((1, CREATED), (2, None), (3, CREATED + timedelta(minutes=1))):
        job = construct_job(cronjob, datetime(2024, 1, 1, 9, minute, tzinfo=UTC))
        made.append(client.create_job(finished(job, "Failed", start)))
    CronjobReconciler(client=client, clock=FixedClock(NOW)).reconcile(
        Request("default", "sample"))
    assert [job.metadata.name for job in client.list_jobs("default")] == [made[2].metadata.name]


def test_successful_history_limit_keeps_newest():
    client = make_client()
    cronjob = add_cronjob(client, schedule="* * * * *", suspend=True,
                          successful_jobs_history_limit=2)
    made = []
    for minute in (1, 2, 3):
        job = construct_job(cronjob, datetime(2024, 1, 1, 9, minute, tzinfo=UTC))
        start = CREATED + timedelta(minutes=minute)
        made.append(client.create_job(finished(job, "Complete", start)))
    CronjobReconciler(client=client, clock=FixedClock(NOW)).reconcile(
        Request("default", "sample"))
    remaining = {job.metadata.name for job in client.list_jobs("default")}
    assert remaining == {made[1].metadata.name, made[2].metadata.name}


def test_real_clock_is_timezone_aware():
    now = RealClock().now()
    assert now.utcoffset() == timedelta(0)