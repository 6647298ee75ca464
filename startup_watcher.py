#!/usr/bin/env python3
"""
Pod startup watcher
-------------------
• Watches pods (robust LIST + WATCH, re-list on expired resourceVersion).
• For every pod created after the watcher started, logs the time from
  creation to the pod's Ready condition turning True, exactly once.
• Pods that already existed at startup are ignored; pods deleted before
  becoming Ready produce nothing.
• Optionally records each startup as an OpenTelemetry span.

Usage:
  python startup_watcher.py --namespace default --selector app=httpbin
  LOGLEVEL=DEBUG python startup_watcher.py --otlp-endpoint localhost:4317
"""

import argparse
import logging
import os
import threading
from typing import Dict, Optional
from urllib.parse import urlparse

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from pod_readiness import MalformedPodError, PodSnapshot
from startup_tracker import (OBSERVED, REMOVED, UPDATED, SpanSink, StartupTracker,
                             log_startup)

# ────────────  Config  ────────────
WATCH_TIMEOUT_SEC = 300
RECONNECT_DELAY_SEC = 2.0
SERVICE_NAME = "pod-startup-watcher"

# ────────────  Logging  ────────────
level = os.getenv("LOGLEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, level, logging.INFO),
                    format="%(asctime)s %(levelname)s %(message)s")
log = logging.getLogger("pod-startup-watcher")

def _sanitize(endpoint: Optional[str]) -> str:
    endpoint = (endpoint or "").strip().rstrip("/")
    for suffix in ("/v1/traces", "/v1/metrics"):
        if endpoint.endswith(suffix):
            endpoint = endpoint[:-len(suffix)]
    return urlparse(endpoint).netloc if endpoint.startswith(("http://", "https://")) else endpoint


# ────────────  Clients  ────────────
def setup_tracing(endpoint: Optional[str]):
    """Returns (provider, tracer), or (None, None) when no endpoint is set."""
    endpoint = _sanitize(endpoint)
    if not endpoint:
        return None, None
    tp = TracerProvider(resource=Resource({"service.name": SERVICE_NAME}))
    tp.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
    trace.set_tracer_provider(tp)
    log.info("Exporting startup spans to %s", endpoint)
    return tp, trace.get_tracer(__name__)

def setup_k8s(kubeconfig: Optional[str]) -> client.CoreV1Api:
    if kubeconfig and os.path.exists(kubeconfig):
        config.load_kube_config(config_file=kubeconfig)
        log.info("Loaded kubeconfig %s", kubeconfig)
    else:
        try:
            config.load_incluster_config()
            log.info("Loaded in-cluster config")
        except config.ConfigException:
            config.load_kube_config()
            log.info("Loaded kubeconfig")
    return client.CoreV1Api()


# ───────  Pod feed (list + watch)  ───────
class PodFeed:
    """
    Feeds pod lifecycle events into a StartupTracker.

    Keeps the set of pods it has already reported so that a pod's first
    appearance is delivered as "observed" and everything after as "updated",
    also across re-lists.
    """

    def __init__(self, api: client.CoreV1Api, tracker: StartupTracker,
                 namespace: Optional[str] = None, selector: Optional[str] = None,
                 watch_factory=watch.Watch, reconnect_delay: float = RECONNECT_DELAY_SEC):
        self.api = api
        self.tracker = tracker
        self.namespace = namespace
        self.selector = selector or ""
        self.watch_factory = watch_factory
        self.reconnect_delay = reconnect_delay
        self._known: Dict[str, PodSnapshot] = {}
        self._rv: Optional[str] = None

    def _list_call(self):
        if self.namespace:
            return self.api.list_namespaced_pod, {"namespace": self.namespace,
                                                  "label_selector": self.selector}
        return self.api.list_pod_for_all_namespaces, {"label_selector": self.selector}

    def _decode(self, obj, event_type: str) -> Optional[PodSnapshot]:
        try:
            return PodSnapshot.from_k8s(obj)
        except MalformedPodError as e:
            log.warning("ignoring %s pod event: %s", event_type, e)
            return None

    def _deliver(self, pod: PodSnapshot):
        kind = UPDATED if pod.uid in self._known else OBSERVED
        self._known[pod.uid] = pod
        self.tracker.handle_event(kind, pod)

    def relist(self) -> str:
        """Lists pods, reconciles them with the known set, returns the resourceVersion."""
        fn, kwargs = self._list_call()
        resp = fn(**kwargs)
        log.info("Listed %d pod(s) (namespace=%s selector='%s')",
                 len(resp.items), self.namespace or "<all>", self.selector or "<all>")
        fresh: Dict[str, PodSnapshot] = {}
        for obj in resp.items:
            pod = self._decode(obj, "LIST")
            if pod:
                fresh[pod.uid] = pod
        for uid in [u for u in self._known if u not in fresh]:
            self.tracker.handle_event(REMOVED, self._known.pop(uid))
        for pod in fresh.values():
            self._deliver(pod)
        self._rv = resp.metadata.resource_version
        return self._rv

    def dispatch(self, event_type: str, obj):
        if event_type not in ("ADDED", "MODIFIED", "DELETED"):
            return
        pod = self._decode(obj, event_type)
        if pod is None:
            return
        if event_type == "DELETED":
            self._known.pop(pod.uid, None)
            self.tracker.handle_event(REMOVED, pod)
        else:
            self._deliver(pod)

    def watch_once(self, rv: Optional[str] = None) -> str:
        """
        Consumes one watch stream from rv (default: the last resourceVersion
        seen). Every event advances the feed's resourceVersion, so a stream
        that breaks partway resumes after the last event already delivered.
        """
        if rv is not None:
            self._rv = rv
        fn, kwargs = self._list_call()
        w = self.watch_factory()
        try:
            for ev in w.stream(fn, resource_version=self._rv, timeout_seconds=WATCH_TIMEOUT_SEC,
                               allow_watch_bookmarks=True, **kwargs):
                et = ev.get("type")
                obj = ev.get("object")
                if et == "ERROR":
                    raw = ev.get("raw_object") or (obj if isinstance(obj, dict) else {})
                    raise ApiException(status=raw.get("code"), reason=raw.get("message"))
                if obj is None or not hasattr(obj, "metadata"):
                    continue
                self._rv = obj.metadata.resource_version or self._rv
                self.dispatch(et, obj)
        finally:
            w.stop()
        return self._rv

    def run(self, stop: Optional[threading.Event] = None):
        stop = stop or threading.Event()
        while not stop.is_set():
            try:
                if self._rv is None:
                    self.relist()
                self.watch_once()
            except ApiException as exc:
                if exc.status == 410:
                    log.info("resourceVersion %s expired – re-listing", self._rv)
                    self._rv = None
                    continue
                log.warning("pod watch failed (%s %s) – resume from %s in %.0f s",
                            exc.status, exc.reason, self._rv, self.reconnect_delay)
                stop.wait(self.reconnect_delay)
            except Exception as exc:
                log.warning("pod watch closed (%s) – resume from %s in %.0f s",
                            exc, self._rv, self.reconnect_delay)
                stop.wait(self.reconnect_delay)


# ───────  main  ───────
def _default_kubeconfig() -> Optional[str]:
    home = os.path.expanduser("~")
    return os.path.join(home, ".kube", "config") if home and home != "~" else None

def main(argv=None):
    ap = argparse.ArgumentParser("Pod startup watcher (creation → Ready)")
    ap.add_argument("--kubeconfig", default=_default_kubeconfig(),
                    help="(optional) absolute path to the kubeconfig file")
    ap.add_argument("--namespace", default=None, help="Namespace to watch (default: all namespaces)")
    ap.add_argument("--selector", default="", help="Label selector (e.g., 'app=httpbin')")
    ap.add_argument("--otlp-endpoint",
                    default=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or os.getenv("OTEL_COLLECTOR_ENDPOINT"),
                    help="OTLP gRPC endpoint for startup spans (default: disabled)")
    args = ap.parse_args(argv)

    provider, tracer = setup_tracing(args.otlp_endpoint)
    sinks = [log_startup] + ([SpanSink(tracer)] if tracer else [])
    tracker = StartupTracker(sinks=sinks)
    log.info("Watching pods created after %s", tracker.start_time.isoformat())

    api = setup_k8s(args.kubeconfig)
    feed = PodFeed(api, tracker, namespace=args.namespace, selector=args.selector)
    try:
        feed.run()
    except KeyboardInterrupt:
        log.info("Interrupted; %d pod(s) still pending", tracker.pending_count)
    finally:
        if provider:
            provider.shutdown()

if __name__ == "__main__":
    main()
