"""
Pod readiness helpers
---------------------
• Typed, validated snapshot of a pod as delivered by the Kubernetes API.
• Readiness evaluation from the pod's status conditions (type "Ready").

Snapshots are decoded once, at the watch boundary, so the tracker never
touches raw client objects.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

READY = "Ready"


class MalformedPodError(ValueError):
    """A pod object that cannot be used to measure startup."""

    def __init__(self, name: Optional[str], reason: str):
        self.name = name or "<unknown>"
        self.reason = reason
        super().__init__(f"pod {self.name}: {reason}")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def _utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class PodCondition:
    type: str
    status: str
    last_transition_time: Optional[datetime] = None


@dataclass(frozen=True)
class PodSnapshot:
    uid: str
    name: str
    namespace: str
    creation_timestamp: datetime
    conditions: Tuple[PodCondition, ...] = ()

    @classmethod
    def from_k8s(cls, pod) -> "PodSnapshot":
        """Build a snapshot from a kubernetes.client V1Pod."""
        meta = getattr(pod, "metadata", None)
        if meta is None:
            raise MalformedPodError(None, "missing metadata")
        name = meta.name
        if not name:
            raise MalformedPodError(None, "missing name")
        if not meta.uid:
            raise MalformedPodError(name, "missing uid")
        if meta.creation_timestamp is None:
            raise MalformedPodError(name, "missing creationTimestamp")

        conds = []
        status = getattr(pod, "status", None)
        for c in ((status.conditions if status else None) or []):
            ltt = c.last_transition_time
            conds.append(PodCondition(type=c.type, status=c.status,
                                      last_transition_time=_utc(ltt) if ltt else None))
        return cls(uid=meta.uid, name=name, namespace=meta.namespace or "",
                   creation_timestamp=_utc(meta.creation_timestamp),
                   conditions=tuple(conds))


# ────────────  Readiness  ────────────
def get_ready_condition(pod: PodSnapshot) -> Optional[PodCondition]:
    for c in pod.conditions:
        if c.type == READY:
            return c
    return None

def is_ready(pod: PodSnapshot) -> bool:
    cond = get_ready_condition(pod)
    return cond is not None and cond.status == "True"

def ready_transition_time(pod: PodSnapshot) -> datetime:
    """
    Time the pod last became Ready. Only meaningful when is_ready(pod);
    raises MalformedPodError rather than inventing a timestamp.
    """
    cond = get_ready_condition(pod)
    if cond is None or cond.status != "True":
        raise MalformedPodError(pod.name, "not Ready")
    if cond.last_transition_time is None:
        raise MalformedPodError(pod.name, "Ready condition has no lastTransitionTime")
    return cond.last_transition_time
