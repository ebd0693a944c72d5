"""Thread-safe service name to endpoint IP cache."""

import threading
from typing import Dict, List, Optional, Tuple

from .logging_config import get_logger

logger = get_logger(__name__)


class EndpointCache:
    """Maps service names to the IPs of their ready endpoints.

    A missing key means the service has not been observed yet, which is
    different from a service observed with no ready endpoints (empty list).
    Every read and write takes the same lock for a single entry swap, so
    callers never see a partially replaced list.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[str, ...]] = {}
        self._lock = threading.Lock()

    def update(self, service: str, ips: List[str]) -> bool:
        """Replace the entry for ``service``.

        Returns:
            True if the stored IP set changed (including first insertion).
        """
        new_entry = tuple(ips)
        with self._lock:
            previous = self._entries.get(service)
            self._entries[service] = new_entry
        changed = previous is None or set(previous) != set(new_entry)
        if changed:
            logger.debug("Endpoint cache updated", service=service, ips=list(new_entry),
                         previous=list(previous) if previous is not None else None)
        return changed

    def lookup(self, service: str) -> Tuple[List[str], bool]:
        """Return ``(ips, found)`` for ``service`` without blocking on I/O."""
        with self._lock:
            entry = self._entries.get(service)
        if entry is None:
            return [], False
        return list(entry), True

    def evict(self, service: str) -> bool:
        """Drop the entry for ``service``. Returns True if one existed."""
        with self._lock:
            removed: Optional[Tuple[str, ...]] = self._entries.pop(service, None)
        if removed is not None:
            logger.debug("Endpoint cache entry evicted", service=service)
        return removed is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, service: str) -> bool:
        with self._lock:
            return service in self._entries
