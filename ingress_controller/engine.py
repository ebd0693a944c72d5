"""Single-consumer reconciliation of ingress and endpoint events."""

import queue
import threading
import time
from typing import Dict, List, Optional, Set

from kubernetes import client

from .cache import EndpointCache
from .exceptions import ControllerError, ProcessError, PublishError
from .logging_config import get_logger, log_reconcile_event
from .models import (ControllerConfig, EventType, ProcessState, PublishResult, ResourceKind,
                     RoutingConfig, WatchEvent)
from .publisher import ConfigPublisher
from .resolver import RuleResolver, endpoint_ips, referenced_services
from .supervisor import ProcessSupervisor

logger = get_logger(__name__)


class ReconciliationEngine:
    """Serializes every mutation behind one ordered work queue.

    Watchers call ``submit`` from their own threads; ``run`` (or
    ``process_pending``) handles events one at a time, so resolving an
    ingress never races an endpoint update for the same service. Per-ingress
    routing tables are kept separately and published as one document ordered
    by ingress name.
    """

    def __init__(self, controller_config: ControllerConfig, resolver: RuleResolver,
                 publisher: ConfigPublisher, supervisor: ProcessSupervisor,
                 cache: Optional[EndpointCache] = None):
        self.config = controller_config
        self.cache = cache if cache is not None else resolver.cache
        self.resolver = resolver
        self.publisher = publisher
        self.supervisor = supervisor

        self._queue: "queue.Queue[WatchEvent]" = queue.Queue()
        self._ingresses: Dict[str, client.V1Ingress] = {}
        self._routes: Dict[str, RoutingConfig] = {}
        self._dependents: Dict[str, Set[str]] = {}
        self._pending: Set[str] = set()
        self._needs_publish = False
        self.last_publish: Optional[PublishResult] = None

    def submit(self, event: WatchEvent) -> None:
        """Queue an event. Safe to call from any thread."""
        self._queue.put(event)

    def run(self, stop_event: threading.Event) -> None:
        """Process events until ``stop_event`` is set, resyncing every ``resync_interval``."""
        logger.info("Reconciliation engine started", namespace=self.config.namespace,
                    resync_interval=self.config.resync_interval)
        next_resync = time.monotonic() + self.config.resync_interval
        while not stop_event.is_set():
            wait = max(0.0, min(next_resync - time.monotonic(), 1.0))
            try:
                event = self._queue.get(timeout=wait)
            except queue.Empty:
                event = None
            if event is not None:
                try:
                    self.handle(event)
                finally:
                    self._queue.task_done()
            if time.monotonic() >= next_resync:
                try:
                    self.resync()
                except Exception as e:
                    logger.error("Unexpected error during resync", error=str(e), exc_info=True)
                next_resync = time.monotonic() + self.config.resync_interval
        logger.info("Reconciliation engine stopped", queued=self._queue.qsize())

    def process_pending(self) -> int:
        """Handle every queued event on the calling thread. Returns how many were handled."""
        handled = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return handled
            try:
                self.handle(event)
            finally:
                self._queue.task_done()
            handled += 1

    def handle(self, event: WatchEvent) -> None:
        """Apply one event. Errors are logged and never propagate."""
        try:
            if event.kind is ResourceKind.INGRESS:
                self._handle_ingress(event)
            else:
                self._handle_endpoints(event)
        except Exception as e:
            name = getattr(getattr(event.resource, "metadata", None), "name", None)
            logger.error("Unexpected error handling event", kind=event.kind.value,
                         event_type=event.type.value, name=name, error=str(e), exc_info=True)

    def resync(self) -> None:
        """Retry failed reconciliations and check the data-plane process."""
        pending = sorted(self._pending)
        if pending:
            log_reconcile_event(logger, "resync", pending=pending, cached_services=len(self.cache))
        for name in pending:
            if name not in self._ingresses:
                self._pending.discard(name)
                continue
            self.reconcile(name)

        if self._needs_publish and self._routes:
            self._publish_and_drive(None)
        elif self._routes:
            try:
                if self.supervisor.state is not ProcessState.RUNNING:
                    self.supervisor.start()
                else:
                    self.supervisor.ensure_running()
            except ProcessError as e:
                logger.error("Data plane restart failed", error=str(e))

    def shutdown(self) -> None:
        """Stop the data-plane process."""
        if self.supervisor.state is ProcessState.RUNNING:
            self.supervisor.stop()

    @property
    def ingresses(self) -> List[str]:
        return sorted(self._ingresses)

    @property
    def pending(self) -> List[str]:
        return sorted(self._pending)

    def dependents(self, service: str) -> List[str]:
        return sorted(self._dependents.get(service, ()))

    def routing_config(self) -> RoutingConfig:
        """The aggregate document for every successfully reconciled ingress."""
        mappings = []
        for name in sorted(self._routes):
            mappings.extend(self._routes[name].ip_mappings)
        return RoutingConfig(ip_mappings=mappings)

    def reconcile(self, name: str) -> bool:
        """Resolve, publish and drive the data plane for one known ingress.

        Returns:
            True on success. On failure the ingress is marked pending and
            retried on the next relevant event or resync.
        """
        ingress = self._ingresses[name]
        try:
            resolution = self.resolver.resolve(ingress)
        except ControllerError as e:
            self._pending.add(name)
            logger.warning("Ingress reconciliation skipped", ingress=name,
                           error_class=e.__class__.__name__, error=str(e))
            return False
        except Exception as e:
            self._pending.add(name)
            logger.error("Unexpected error resolving ingress", ingress=name,
                         error_class=e.__class__.__name__, error=str(e), exc_info=True)
            return False

        for service, ips in resolution.cache_updates.items():
            self.cache.update(service, ips)

        self._routes[name] = resolution.routing_config
        self._pending.discard(name)
        log_reconcile_event(logger, "ingress_resolved", ingress=name,
                            mappings=len(resolution.routing_config.ip_mappings),
                            seeded=sorted(resolution.cache_updates))
        return self._publish_and_drive(name)

    def _publish_and_drive(self, owner: Optional[str]) -> bool:
        try:
            result = self.publisher.publish(self.routing_config())
        except PublishError as e:
            self._needs_publish = True
            logger.error("Publish failed, keeping last good config", error=str(e))
            return False
        self._needs_publish = False
        self.last_publish = result

        try:
            if self.supervisor.state is not ProcessState.RUNNING:
                self.supervisor.start(owner=owner)
            elif result.changed:
                self.supervisor.reload()
            else:
                self.supervisor.ensure_running()
        except ProcessError as e:
            logger.error("Data plane not running, will retry on resync", error=str(e))
            return False
        return True

    def _handle_ingress(self, event: WatchEvent) -> None:
        name = event.name
        log_reconcile_event(logger, "ingress_" + event.type.value.lower(), ingress=name,
                            synthetic=event.synthetic)

        self._forget_dependencies(name)
        if event.type is EventType.DELETED:
            self._delete_ingress(name)
            return

        self._ingresses[name] = event.resource
        for service in referenced_services(event.resource):
            self._dependents.setdefault(service, set()).add(name)
        self.reconcile(name)

    def _delete_ingress(self, name: str) -> None:
        self._ingresses.pop(name, None)
        self._routes.pop(name, None)
        self._pending.discard(name)

        if self._routes:
            # Other ingresses still route through the data plane
            self._publish_and_drive(None)
            return

        self._needs_publish = False
        if self.supervisor.state is ProcessState.RUNNING:
            self.supervisor.stop()
        if self.config.remove_config_on_delete:
            try:
                self.publisher.withdraw()
            except PublishError as e:
                logger.error("Could not withdraw routing config", error=str(e))
        log_reconcile_event(logger, "data_plane_stopped", ingress=name, state=self.supervisor.state.value)

    def _forget_dependencies(self, name: str) -> None:
        for service in list(self._dependents):
            owners = self._dependents[service]
            owners.discard(name)
            if not owners:
                del self._dependents[service]

    def _handle_endpoints(self, event: WatchEvent) -> None:
        service = event.name

        if event.type is EventType.DELETED:
            if self.config.endpoint_eviction == "retain":
                if service in self.cache:
                    logger.warning("Endpoints deleted, keeping stale cache entry",
                                   service=service, dependents=self.dependents(service))
                return
            if not self.cache.evict(service):
                return
            log_reconcile_event(logger, "endpoints_evicted", service=service)
        else:
            if not self.cache.update(service, endpoint_ips(event.resource)):
                return
            log_reconcile_event(logger, "endpoints_changed", service=service,
                                ips=self.cache.lookup(service)[0])

        for name in self.dependents(service):
            if name in self._ingresses:
                self.reconcile(name)
