"""
Pod startup tracker
-------------------
Turns the pod lifecycle stream (observed / updated / removed) into one
startup-duration record per pod created after the tracker started:

    duration = Ready.lastTransitionTime - metadata.creationTimestamp

Pods created at or before the start time are ignored. Pods deleted before
they are ever seen Ready produce nothing.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set

from pod_readiness import (MalformedPodError, PodSnapshot, _utc, is_ready,
                           ready_transition_time, utc_now)

log = logging.getLogger("pod-startup")

OBSERVED, UPDATED, REMOVED = "observed", "updated", "removed"


@dataclass(frozen=True)
class StartupRecord:
    name: str
    duration: timedelta
    uid: str
    namespace: str
    created: datetime
    ready_at: datetime


Sink = Callable[[StartupRecord], None]


# ────────────  Sinks  ────────────
def log_startup(record: StartupRecord):
    log.info("startup duration of %s: %.3fs", record.name, record.duration.total_seconds())


class SpanSink:
    """Records each pod start as a span running from creation to Ready."""

    def __init__(self, tracer):
        self.tracer = tracer

    def __call__(self, record: StartupRecord):
        span = self.tracer.start_span("pod-startup",
                                      start_time=int(record.created.timestamp()*1e9))
        span.set_attribute("k8s.namespace.name", record.namespace)
        span.set_attribute("k8s.pod.name",       record.name)
        span.set_attribute("k8s.pod.uid",        record.uid)
        span.set_attribute("startup.duration_ms", record.duration.total_seconds()*1000)
        span.end(end_time=int(record.ready_at.timestamp()*1e9))


# ────────────  Tracker  ────────────
class StartupTracker:

    def __init__(self, start_time: Optional[datetime] = None,
                 sinks: Optional[Iterable[Sink]] = None):
        self.start_time = _utc(start_time) if start_time else utc_now()
        self.sinks: List[Sink] = list(sinks) if sinks is not None else [log_startup]
        self._pending: Dict[str, None] = {}
        self._lock = threading.Lock()

    def observed(self, pod: PodSnapshot):
        """
        First sight of a pod. A pod already Ready here is emitted without
        being tracked, so a repeated observed for it emits again; the feed
        must deliver observed only once per uid (PodFeed keeps that set).
        """
        if pod.creation_timestamp <= self.start_time:
            return
        record = None
        with self._lock:
            if is_ready(pod):
                try:
                    record = _record(pod)
                except MalformedPodError:
                    # keep it so a well-formed update can still emit
                    self._pending[pod.uid] = None
                    raise
            else:
                self._pending[pod.uid] = None
        if record:
            self._emit(record)

    def updated(self, pod: PodSnapshot):
        record = None
        with self._lock:
            if is_ready(pod) and pod.uid in self._pending:
                record = _record(pod)
                del self._pending[pod.uid]
        if record:
            self._emit(record)

    def removed(self, pod: PodSnapshot):
        with self._lock:
            self._pending.pop(pod.uid, None)

    def handle_event(self, kind: str, pod: PodSnapshot):
        """Dispatch one feed event; a malformed pod only abandons this event."""
        handler = {OBSERVED: self.observed, UPDATED: self.updated,
                   REMOVED: self.removed}.get(kind)
        if handler is None:
            raise ValueError(f"unknown pod event kind: {kind!r}")
        try:
            handler(pod)
        except MalformedPodError as e:
            log.error("skipping %s event for %s/%s: %s", kind, pod.namespace, pod.name, e.reason)

    def pending_uids(self) -> Set[str]:
        with self._lock:
            return set(self._pending)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _emit(self, record: StartupRecord):
        for sink in self.sinks:
            try:
                sink(record)
            except Exception as e:
                log.warning("startup sink %r failed for %s: %s", sink, record.name, e)


def _record(pod: PodSnapshot) -> StartupRecord:
    ready_at = ready_transition_time(pod)
    return StartupRecord(name=pod.name, duration=ready_at - pod.creation_timestamp,
                         uid=pod.uid, namespace=pod.namespace,
                         created=pod.creation_timestamp, ready_at=ready_at)
