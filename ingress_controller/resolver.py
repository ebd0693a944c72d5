"""Turn one ingress into an ordered list of resolved routing entries."""

from typing import Dict, List, Optional, Tuple, Union

from kubernetes import client

from .cache import EndpointCache
from .client import ClusterClient
from .exceptions import AmbiguousPortError, ResolutionError
from .logging_config import get_logger, log_function_entry, log_function_exit
from .models import IpMapping, Resolution, RoutingConfig

logger = get_logger(__name__)

WILDCARD_PATH = "/"


def endpoint_ips(endpoints: Optional[client.V1Endpoints]) -> List[str]:
    """Flatten the ready addresses of an Endpoints object into a list of IPs."""
    if endpoints is None or not endpoints.subsets:
        return []
    ips = []
    for subset in endpoints.subsets:
        for address in subset.addresses or []:
            if address.ip and address.ip not in ips:
                ips.append(address.ip)
    return ips


def referenced_services(ingress: client.V1Ingress) -> List[str]:
    """Names of the backend services an ingress routes to, in declared order."""
    services = []
    for backend in _backends(ingress):
        if backend.service and backend.service.name not in services:
            services.append(backend.service.name)
    return services


def _backends(ingress: client.V1Ingress) -> List[client.V1IngressBackend]:
    spec = ingress.spec
    if spec is None:
        return []
    if spec.default_backend is not None:
        return [spec.default_backend]
    backends = []
    for rule in spec.rules or []:
        if rule.http is None:
            continue
        for path in rule.http.paths or []:
            backends.append(path.backend)
    return backends


class RuleResolver:
    """Resolves ingress path rules against the endpoint cache and the API.

    The resolver never writes to the cache. Endpoint sets it had to fetch
    because of a cache miss are returned in ``Resolution.cache_updates`` for
    the caller to apply.
    """

    def __init__(self, cluster: ClusterClient, cache: EndpointCache):
        self.cluster = cluster
        self.cache = cache

    def resolve(self, ingress: client.V1Ingress) -> Resolution:
        """Resolve every path of ``ingress`` into an ``IpMapping``.

        Raises:
            ResolutionError: If any backend cannot be resolved. Nothing is
                returned for the ingress in that case.
            TransientAPIError: If an on-demand lookup fails.
        """
        name = ingress.metadata.name
        log_function_entry(logger, "resolve", ingress=name)

        spec = ingress.spec
        if spec is None:
            raise ResolutionError(f"ingress {name} has no spec")

        scheme = "https" if spec.tls else "http"
        fetched: Dict[str, List[str]] = {}
        endpoint_objects: Dict[str, Optional[client.V1Endpoints]] = {}
        mappings: List[IpMapping] = []

        if spec.default_backend is not None:
            if spec.rules:
                logger.warning("Ingress declares a default backend and rules; using the default backend only",
                               ingress=name, rules_count=len(spec.rules))
            mappings.append(self._resolve_backend(
                spec.default_backend, WILDCARD_PATH, scheme, fetched, endpoint_objects))
        else:
            for rule in spec.rules or []:
                if rule.http is None:
                    logger.debug("Skipping rule without http section", ingress=name, host=rule.host)
                    continue
                for path in rule.http.paths or []:
                    mappings.append(self._resolve_backend(
                        path.backend, path.path or WILDCARD_PATH, scheme, fetched, endpoint_objects))

        if not mappings:
            logger.warning("Ingress has no routable paths", ingress=name)

        log_function_exit(logger, "resolve", ingress=name, mappings=len(mappings), fetched=sorted(fetched))
        return Resolution(
            routing_config=RoutingConfig(ip_mappings=mappings),
            cache_updates=fetched,
        )

    def _resolve_backend(self, backend: client.V1IngressBackend, path: str, scheme: str,
                         fetched: Dict[str, List[str]],
                         endpoint_objects: Dict[str, Optional[client.V1Endpoints]]) -> IpMapping:
        if backend is None or backend.service is None:
            raise ResolutionError(f"path {path} does not reference a service backend")

        service_name = backend.service.name
        port_ref = _port_reference(backend.service.port)
        if port_ref is None:
            raise ResolutionError(f"backend {service_name} for path {path} declares no port")

        if service_name in fetched:
            ips = fetched[service_name]
        else:
            ips, found = self.cache.lookup(service_name)
            if found:
                logger.debug("Endpoint cache hit", service=service_name, ips=ips)
            else:
                logger.info("Endpoint cache miss, querying endpoints", service=service_name)
                endpoint_objects[service_name] = self.cluster.get_endpoints(service_name)
                ips = endpoint_ips(endpoint_objects[service_name])
                fetched[service_name] = ips

        service = self.cluster.get_service(service_name)
        target_port = self._target_port(service_name, service, port_ref, endpoint_objects)

        if not ips:
            logger.warning("Backend has no ready endpoints", service=service_name, path=path)

        return IpMapping(path=path, scheme=scheme, port=target_port, ip_addresses=ips)

    def _target_port(self, service_name: str, service: client.V1Service, port_ref: Union[int, str],
                     endpoint_objects: Dict[str, Optional[client.V1Endpoints]]) -> int:
        ports = (service.spec.ports if service.spec else None) or []
        if isinstance(port_ref, int):
            matches = [p for p in ports if p.port == port_ref]
        else:
            matches = [p for p in ports if p.name == port_ref]

        if not matches:
            raise ResolutionError(f"service {service_name} exposes no port {port_ref!r}")
        if len(matches) > 1:
            raise AmbiguousPortError(
                f"service {service_name} has {len(matches)} ports matching {port_ref!r}")

        service_port = matches[0]
        target = service_port.target_port
        if target is None or target == "":
            return service_port.port
        if isinstance(target, int) or (isinstance(target, str) and target.isdigit()):
            return int(target)

        # Named targetPort: the Endpoints object carries the resolved number under the service port name
        if service_name not in endpoint_objects:
            endpoint_objects[service_name] = self.cluster.get_endpoints(service_name)
        resolved = _endpoint_port(endpoint_objects[service_name], service_port.name)
        if resolved is None:
            raise ResolutionError(
                f"cannot resolve named target port {target!r} of service {service_name}")
        return resolved


def _port_reference(port: Optional[client.V1ServiceBackendPort]) -> Optional[Union[int, str]]:
    if port is None:
        return None
    if port.number is not None:
        return int(port.number)
    return port.name


def _endpoint_port(endpoints: Optional[client.V1Endpoints], port_name: Optional[str]) -> Optional[int]:
    if endpoints is None:
        return None
    candidates: List[Tuple[Optional[str], int]] = []
    for subset in endpoints.subsets or []:
        for port in subset.ports or []:
            candidates.append((port.name, port.port))
    for name, number in candidates:
        if name == port_name:
            return number
    if len(candidates) == 1 and not port_name:
        return candidates[0][1]
    return None
