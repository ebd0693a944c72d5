"""Shared fixtures and Kubernetes object builders."""

from types import SimpleNamespace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pytest
from kubernetes import client

from ingress_controller.exceptions import ResolutionError
from ingress_controller.models import ResourceKind

PathSpec = Tuple[str, str, Union[int, str]]


def make_backend(service: str, port: Union[int, str]) -> client.V1IngressBackend:
    if isinstance(port, int):
        backend_port = client.V1ServiceBackendPort(number=port)
    else:
        backend_port = client.V1ServiceBackendPort(name=port)
    return client.V1IngressBackend(service=client.V1IngressServiceBackend(name=service, port=backend_port))


def make_ingress(name: str = "web", paths: Sequence[PathSpec] = (("/api", "svc-a", 80),),
                 host: Optional[str] = None, tls: bool = False,
                 default_backend: Optional[Tuple[str, Union[int, str]]] = None,
                 resource_version: str = "1") -> client.V1Ingress:
    rules = None
    if paths:
        rules = [client.V1IngressRule(
            host=host,
            http=client.V1HTTPIngressRuleValue(paths=[
                client.V1HTTPIngressPath(path=path, path_type="Prefix", backend=make_backend(service, port))
                for path, service, port in paths
            ]),
        )]
    spec = client.V1IngressSpec(
        rules=rules,
        tls=[client.V1IngressTLS(hosts=[host] if host else None, secret_name="tls")] if tls else None,
        default_backend=make_backend(*default_backend) if default_backend else None,
    )
    return client.V1Ingress(
        metadata=client.V1ObjectMeta(name=name, namespace="ingress-test", resource_version=resource_version),
        spec=spec,
    )


def make_endpoints(name: str, ips: Iterable[str], ports: Sequence[Tuple[Optional[str], int]] = (),
                   not_ready: Iterable[str] = (), resource_version: str = "1") -> client.V1Endpoints:
    ips = list(ips)
    not_ready = list(not_ready)
    subsets = None
    if ips or not_ready or ports:
        subsets = [client.V1EndpointSubset(
            addresses=[client.V1EndpointAddress(ip=ip) for ip in ips] or None,
            not_ready_addresses=[client.V1EndpointAddress(ip=ip) for ip in not_ready] or None,
            ports=[client.CoreV1EndpointPort(name=port_name, port=number) for port_name, number in ports] or None,
        )]
    return client.V1Endpoints(
        metadata=client.V1ObjectMeta(name=name, namespace="ingress-test", resource_version=resource_version),
        subsets=subsets,
    )


def make_service(name: str, ports: Sequence[Tuple[Optional[str], int, Union[int, str, None]]] = ((None, 80, 8080),)
                 ) -> client.V1Service:
    return client.V1Service(
        metadata=client.V1ObjectMeta(name=name, namespace="ingress-test"),
        spec=client.V1ServiceSpec(ports=[
            client.V1ServicePort(name=port_name, port=port, target_port=target)
            for port_name, port, target in ports
        ]),
    )


def make_list(items: List, resource_version: str = "100") -> SimpleNamespace:
    return SimpleNamespace(items=items, metadata=SimpleNamespace(resource_version=resource_version))


class FakeCluster:
    """In-memory stand-in for ClusterClient."""

    def __init__(self, namespace: str = "ingress-test"):
        self.namespace = namespace
        self.services: Dict[str, client.V1Service] = {}
        self.endpoints: Dict[str, client.V1Endpoints] = {}
        self.ingresses: Dict[str, client.V1Ingress] = {}
        self.service_reads: List[str] = []
        self.endpoint_reads: List[str] = []
        self.list_calls: List[ResourceKind] = []
        self.watch_calls: List[Tuple[ResourceKind, Optional[str]]] = []
        self.streams: Dict[ResourceKind, List] = {ResourceKind.INGRESS: [], ResourceKind.ENDPOINTS: []}
        self.resource_version = "100"

    def add_service(self, name: str, ips: Iterable[str] = (), ports=((None, 80, 8080),), endpoint_ports=()):
        self.services[name] = make_service(name, ports)
        self.endpoints[name] = make_endpoints(name, ips, ports=endpoint_ports)

    def get_service(self, name: str) -> client.V1Service:
        self.service_reads.append(name)
        if name not in self.services:
            raise ResolutionError(f"read service {name} failed: 404 Not Found")
        return self.services[name]

    def get_endpoints(self, name: str) -> Optional[client.V1Endpoints]:
        self.endpoint_reads.append(name)
        return self.endpoints.get(name)

    def list(self, kind: ResourceKind) -> SimpleNamespace:
        self.list_calls.append(kind)
        source = self.ingresses if kind is ResourceKind.INGRESS else self.endpoints
        return make_list(list(source.values()), self.resource_version)

    def watch(self, kind: ResourceKind, resource_version: Optional[str] = None, timeout_seconds: int = 300):
        """Replay the next scripted stream for ``kind``.

        A stream is a list of raw events or a callable; an exception instance
        in the list is raised at that point.
        """
        self.watch_calls.append((kind, resource_version))
        scripted = self.streams[kind]
        stream = scripted.pop(0) if scripted else []
        if callable(stream):
            stream = stream()
        for item in stream:
            if isinstance(item, BaseException):
                raise item
            yield item


@pytest.fixture
def cluster():
    return FakeCluster()
