"""List-then-watch loop for one resource kind."""

import random
import threading
from typing import Any, Callable, Dict, Optional

from .client import ClusterClient
from .exceptions import ConfigurationError, TransientAPIError
from .logging_config import get_logger, log_function_entry, log_function_exit
from .models import EventType, ResourceKind, WatchConfig, WatchEvent

logger = get_logger(__name__)

HTTP_GONE = 410

EventSink = Callable[[WatchEvent], None]


class _Relist(Exception):
    """The watch cannot resume from the current resource version."""


class ResourceWatcher:
    """Delivers ordered, typed events for one resource kind.

    Every (re)subscription starts with a full list. Objects seen for the
    first time are emitted as ADDED, objects already known as MODIFIED,
    and known objects missing from the list as DELETED, so a consumer
    converges to the cluster state even if events were lost while the
    stream was down. The loop only returns once ``stop_event`` is set.
    """

    def __init__(self, cluster: ClusterClient, kind: ResourceKind, sink: EventSink,
                 watch_config: Optional[WatchConfig] = None):
        self.cluster = cluster
        self.kind = kind
        self.sink = sink
        self.watch_config = watch_config or WatchConfig()
        self.resource_version: Optional[str] = None
        self.known: Dict[str, Any] = {}
        self.reconnects = 0

    def run(self, stop_event: threading.Event) -> None:
        log_function_entry(logger, "run", kind=self.kind.value, namespace=self.cluster.namespace)
        backoff = self.watch_config.backoff_initial
        needs_list = True

        while not stop_event.is_set():
            try:
                if needs_list:
                    self.relist()
                    needs_list = False
                self._stream(stop_event)
                backoff = self.watch_config.backoff_initial
                continue
            except _Relist:
                logger.warning("Watch resource version expired, relisting",
                               kind=self.kind.value, resource_version=self.resource_version)
                needs_list = True
                continue
            except TransientAPIError as e:
                if e.status == HTTP_GONE:
                    logger.warning("Watch resource version expired, relisting",
                                   kind=self.kind.value, resource_version=self.resource_version)
                    needs_list = True
                    continue
                logger.warning("Watch stream failed", kind=self.kind.value,
                               failure="api", status=e.status, error=str(e))
            except ConfigurationError as e:
                logger.error("Watch denied by the API server, check RBAC",
                             kind=self.kind.value, failure="auth", error=str(e))
            except ValueError as e:
                logger.warning("Malformed watch payload", kind=self.kind.value,
                               failure="payload", error=str(e))
            except Exception as e:
                logger.error("Unexpected watch failure", kind=self.kind.value,
                             failure=e.__class__.__name__, error=str(e), exc_info=True)

            needs_list = True
            self.reconnects += 1
            delay = backoff * (0.5 + random.random())
            logger.info("Resubscribing after backoff", kind=self.kind.value,
                        delay=round(delay, 2), reconnects=self.reconnects)
            stop_event.wait(timeout=delay)
            backoff = min(backoff * 2, self.watch_config.backoff_max)

        log_function_exit(logger, "run", kind=self.kind.value, reconnects=self.reconnects)

    def relist(self) -> None:
        """List the kind and emit the synthetic events that resynchronize consumers."""
        snapshot = self.cluster.list(self.kind)
        items = snapshot.items or []
        self.resource_version = snapshot.metadata.resource_version if snapshot.metadata else None

        listed = {}
        for item in items:
            name = item.metadata.name
            listed[name] = item
            event_type = EventType.MODIFIED if name in self.known else EventType.ADDED
            self._emit(event_type, item, synthetic=True)

        for name in [n for n in self.known if n not in listed]:
            self._emit(EventType.DELETED, self.known[name], synthetic=True)

        self.known = listed
        logger.info("Resource list synchronized", kind=self.kind.value,
                    count=len(items), resource_version=self.resource_version)

    def _stream(self, stop_event: threading.Event) -> None:
        for raw in self.cluster.watch(self.kind, resource_version=self.resource_version,
                                      timeout_seconds=self.watch_config.timeout_seconds):
            if stop_event.is_set():
                return
            self._dispatch(raw)

    def _dispatch(self, raw: Dict[str, Any]) -> None:
        event_type = str(raw.get("type", ""))
        obj = raw.get("object")

        if event_type == "ERROR":
            code = obj.get("code") if isinstance(obj, dict) else getattr(obj, "code", None)
            if code == HTTP_GONE:
                raise _Relist()
            raise TransientAPIError(f"watch error event for {self.kind.value}: {obj}", status=code)

        metadata = getattr(obj, "metadata", None)
        if metadata is not None and metadata.resource_version:
            self.resource_version = metadata.resource_version

        if event_type == "BOOKMARK":
            return
        if event_type not in EventType.__members__:
            logger.warning("Dropping unknown watch event type", kind=self.kind.value, event_type=event_type)
            return
        if metadata is None or not metadata.name:
            logger.warning("Dropping watch event without metadata", kind=self.kind.value, event_type=event_type)
            return

        if event_type == EventType.DELETED.value:
            self.known.pop(metadata.name, None)
        else:
            self.known[metadata.name] = obj
        self._emit(EventType(event_type), obj)

    def _emit(self, event_type: EventType, obj: Any, synthetic: bool = False) -> None:
        logger.debug("Watch event", kind=self.kind.value, event_type=event_type.value,
                     name=obj.metadata.name, synthetic=synthetic)
        self.sink(WatchEvent(type=event_type, kind=self.kind, resource=obj, synthetic=synthetic))
