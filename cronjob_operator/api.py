"""Resource types of the batch.tutorial.kubebuilder.io/v1 API group."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class GroupVersion:
    """An API group together with one of its versions."""

    group: str
    version: str

    def __str__(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"


GROUP_VERSION = GroupVersion(group="batch.tutorial.kubebuilder.io", version="v1")

JOB_COMPLETE = "Complete"
JOB_FAILED = "Failed"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"


class ConcurrencyPolicy(str, Enum):
    """How concurrent executions of a scheduled job are treated."""

    ALLOW = "Allow"
    FORBID = "Forbid"
    REPLACE = "Replace"


@dataclass
class OwnerReference:
    """A pointer from an object to the object that owns it."""

    api_version: str
    kind: str
    name: str
    uid: str = ""
    controller: bool = False
    block_owner_deletion: bool = False


@dataclass
class ObjectMeta:
    """Metadata shared by all stored objects."""

    name: str = ""
    namespace: str = ""
    uid: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    creation_timestamp: datetime | None = None
    owner_references: list[OwnerReference] = field(default_factory=list)


@dataclass
class ObjectReference:
    """A reference to a concrete object."""

    kind: str = ""
    namespace: str = ""
    name: str = ""
    uid: str = ""
    api_version: str = ""
    resource_version: str = ""


@dataclass
class JobCondition:
    """One observed condition of a job, such as Complete or Failed."""

    type: str
    status: str = CONDITION_TRUE


@dataclass
class JobStatus:
    """Observed state of a job."""

    conditions: list[JobCondition] = field(default_factory=list)
    start_time: datetime | None = None


@dataclass
class JobTemplateSpec:
    """The template from which jobs are created."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: dict[str, Any] = field(default_factory=dict)


@dataclass
class Job:
    """A batch job."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = field(default_factory=JobStatus)
    api_version: str = "batch/v1"
    kind: str = "Job"

    def controller_of(self) -> OwnerReference | None:
        """Return the owner reference marked as controller, if any."""
        return next(
            (ref for ref in self.metadata.owner_references if ref.controller), None
        )


@dataclass
class CronjobSpec:
    """Desired state of a Cronjob."""

    schedule: str = ""
    job_template: JobTemplateSpec = field(default_factory=JobTemplateSpec)
    starting_deadline_seconds: int | None = None
    concurrency_policy: ConcurrencyPolicy | None = None
    suspend: bool | None = None
    successful_jobs_history_limit: int | None = None
    failed_jobs_history_limit: int | None = None


@dataclass
class CronjobStatus:
    """Observed state of a Cronjob."""

    active: list[ObjectReference] = field(default_factory=list)
    last_schedule_time: datetime | None = None


@dataclass
class Cronjob:
    """A job run on a cron schedule."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: CronjobSpec = field(default_factory=CronjobSpec)
    status: CronjobStatus = field(default_factory=CronjobStatus)
    api_version: str = str(GROUP_VERSION)
    kind: str = "Cronjob"


@dataclass
class CronjobList:
    """A list of Cronjobs."""

    items: list[Cronjob] = field(default_factory=list)
    api_version: str = str(GROUP_VERSION)
    kind: str = "CronjobList"