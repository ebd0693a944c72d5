"""Wires the watchers, engine and data plane together and runs them."""

import threading
from typing import List, Optional

from .cache import EndpointCache
from .client import ClusterClient
from .engine import ReconciliationEngine
from .logging_config import get_logger, log_function_entry, log_function_exit
from .models import ControllerConfig, ResourceKind
from .publisher import ConfigPublisher
from .resolver import RuleResolver
from .supervisor import ProcessSupervisor
from .watcher import ResourceWatcher

logger = get_logger(__name__)


class IngressController:
    """Runs one watcher thread per resource kind and one engine worker thread."""

    def __init__(self, controller_config: ControllerConfig, cluster: Optional[ClusterClient] = None):
        self.config = controller_config
        self.cluster = cluster or ClusterClient.from_config(controller_config)
        self.cache = EndpointCache()
        self.engine = ReconciliationEngine(
            controller_config,
            resolver=RuleResolver(self.cluster, self.cache),
            publisher=ConfigPublisher(controller_config.config_path),
            supervisor=ProcessSupervisor(controller_config.data_plane, controller_config.config_path),
            cache=self.cache,
        )
        self.watchers = [
            ResourceWatcher(self.cluster, kind, self.engine.submit, controller_config.watch)
            for kind in (ResourceKind.ENDPOINTS, ResourceKind.INGRESS)
        ]
        self.stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    def start(self) -> None:
        """Connect, verify access and launch the worker threads.

        Raises:
            ConfigurationError: If credentials are missing or RBAC denies access.
        """
        log_function_entry(logger, "start", namespace=self.config.namespace)
        self.cluster.connect()
        self.cluster.check_access()

        self._threads = [
            threading.Thread(target=self.engine.run, args=(self.stop_event,),
                             name="reconcile-engine", daemon=True)
        ]
        for watcher in self.watchers:
            self._threads.append(threading.Thread(
                target=watcher.run, args=(self.stop_event,),
                name=f"watch-{watcher.kind.value.lower()}", daemon=True))
        for thread in self._threads:
            thread.start()

        logger.info("Ingress controller started", namespace=self.config.namespace,
                    config_path=self.config.config_path, threads=[t.name for t in self._threads])
        log_function_exit(logger, "start", status="running")

    def stop(self, timeout: float = 5.0) -> None:
        """Signal every thread to stop, wait for them, then stop the data plane."""
        self.stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Thread did not stop in time", thread=thread.name)
        self.engine.shutdown()
        self.cluster.close()
        logger.info("Ingress controller stopped")

    def wait(self) -> None:
        """Block until ``stop_event`` is set."""
        while not self.stop_event.wait(timeout=1.0):
            pass
