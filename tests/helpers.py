"""Shared builders for pods, snapshots and a recording sink."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from kubernetes import client

from pod_readiness import PodCondition, PodSnapshot
from startup_tracker import StartupRecord

START = datetime(2026, 1, 1, 10, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """START shifted by the given number of seconds."""
    return START + timedelta(seconds=seconds)


def snapshot(name="web-0", uid=None, created=None, ready=None, ready_at=None,
             namespace="default", extra=()) -> PodSnapshot:
    conds = list(extra)
    if ready is not None:
        conds.append(PodCondition("Ready", "True" if ready else "False", ready_at))
    return PodSnapshot(uid=uid or f"uid-{name}", name=name, namespace=namespace,
                       creation_timestamp=created or at(5), conditions=tuple(conds))


def v1_pod(name="web-0", uid=None, created=None, ready: Optional[bool] = None,
           ready_at=None, namespace="default", rv="1") -> client.V1Pod:
    conditions = None
    if ready is not None:
        conditions = [client.V1PodCondition(type="PodScheduled", status="True",
                                            last_transition_time=created or at(5)),
                      client.V1PodCondition(type="Ready", status="True" if ready else "False",
                                            last_transition_time=ready_at)]
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name, uid=uid or f"uid-{name}", namespace=namespace,
                                     creation_timestamp=created or at(5), resource_version=rv),
        status=client.V1PodStatus(phase="Pending", conditions=conditions),
    )


class RecordingSink:
    def __init__(self):
        self.records: List[StartupRecord] = []

    def __call__(self, record: StartupRecord):
        self.records.append(record)

    @property
    def names(self):
        return [r.name for r in self.records]
