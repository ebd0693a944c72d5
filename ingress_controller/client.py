"""Kubernetes API access for the controller's single namespace."""

from typing import Any, Callable, Dict, Iterator, Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from .exceptions import ConfigurationError, ResolutionError, TransientAPIError
from .logging_config import get_logger, log_function_entry, log_function_exit, log_k8s_operation
from .models import ControllerConfig, ResourceKind

logger = get_logger(__name__)


def translate_api_error(exc: Exception, operation: str, not_found: type = TransientAPIError) -> Exception:
    """Map a client-library failure onto the controller's error taxonomy."""
    if isinstance(exc, ApiException):
        message = f"{operation} failed: {exc.status} {exc.reason}"
        if exc.status == 404:
            if not_found is TransientAPIError:
                return TransientAPIError(message, status=404)
            return not_found(message)
        if exc.status in (401, 403):
            return ConfigurationError(message)
        return TransientAPIError(message, status=exc.status)
    return TransientAPIError(f"{operation} failed: {exc.__class__.__name__}: {exc}")


class ClusterClient:
    """List, watch and read ingresses, services and endpoints in one namespace."""

    def __init__(self, namespace: str, kubeconfig_path: Optional[str] = None,
                 context: Optional[str] = None, request_timeout: float = 30.0):
        self.namespace = namespace
        self.kubeconfig_path = kubeconfig_path
        self.context = context
        self.request_timeout = request_timeout
        self._k8s_client: Optional[client.ApiClient] = None
        self._core_v1: Optional[client.CoreV1Api] = None
        self._networking_v1: Optional[client.NetworkingV1Api] = None

    @classmethod
    def from_config(cls, controller_config: ControllerConfig) -> "ClusterClient":
        return cls(
            namespace=controller_config.namespace,
            kubeconfig_path=controller_config.kubeconfig_path,
            context=controller_config.context,
            request_timeout=controller_config.api_timeout,
        )

    def connect(self) -> None:
        """Load credentials and build the API clients.

        Raises:
            ConfigurationError: If neither the kubeconfig nor in-cluster config can be loaded.
        """
        log_function_entry(logger, "connect", namespace=self.namespace)
        log_k8s_operation(logger, "connect", self.namespace,
                          kubeconfig_path=self.kubeconfig_path, context=self.context)

        try:
            if self.kubeconfig_path:
                logger.debug("Loading kubeconfig from file",
                             kubeconfig_path=self.kubeconfig_path, context=self.context)
                config.load_kube_config(config_file=self.kubeconfig_path, context=self.context)
            else:
                logger.debug("Loading in-cluster config")
                config.load_incluster_config()
        except (ConfigException, OSError) as e:
            logger.error("Failed to load cluster credentials",
                         error=str(e), kubeconfig_path=self.kubeconfig_path, context=self.context)
            log_function_exit(logger, "connect", status="error", error=str(e))
            raise ConfigurationError(f"cannot load cluster credentials: {e}") from e

        self._k8s_client = client.ApiClient()
        self._core_v1 = client.CoreV1Api(self._k8s_client)
        self._networking_v1 = client.NetworkingV1Api(self._k8s_client)

        logger.info("Connected to cluster", namespace=self.namespace)
        log_function_exit(logger, "connect", status="success")

    def check_access(self) -> None:
        """Verify that both watched kinds can be listed.

        Raises:
            ConfigurationError: On 401/403, which no amount of retrying will fix.
            TransientAPIError: On anything else.
        """
        for kind in ResourceKind:
            self._call(self._list_function(kind), f"list {kind.value}", limit=1)
        logger.info("Cluster access verified", namespace=self.namespace)

    def close(self) -> None:
        if self._k8s_client:
            self._k8s_client.close()
            self._k8s_client = None

    def _ensure_connected(self) -> None:
        if self._core_v1 is None or self._networking_v1 is None:
            logger.debug("API client not initialized, connecting", namespace=self.namespace)
            self.connect()

    def _list_function(self, kind: ResourceKind) -> Callable[..., Any]:
        self._ensure_connected()
        if kind is ResourceKind.INGRESS:
            return self._networking_v1.list_namespaced_ingress
        return self._core_v1.list_namespaced_endpoints

    def _call(self, func: Callable[..., Any], operation: str, not_found: type = TransientAPIError,
              **kwargs: Any) -> Any:
        log_k8s_operation(logger, operation, self.namespace, **kwargs)
        try:
            return func(namespace=self.namespace, _request_timeout=self.request_timeout, **kwargs)
        except (ApiException, Urllib3HTTPError, OSError) as e:
            raise translate_api_error(e, operation, not_found) from e

    def list(self, kind: ResourceKind) -> Any:
        """Return the current list object (items plus list resourceVersion) for ``kind``."""
        return self._call(self._list_function(kind), f"list {kind.value}")

    def watch(self, kind: ResourceKind, resource_version: Optional[str] = None,
              timeout_seconds: int = 300) -> Iterator[Dict[str, Any]]:
        """Stream raw watch events for ``kind`` starting after ``resource_version``.

        The generator ends when the server closes the stream after
        ``timeout_seconds``. Failures surface as ``TransientAPIError``
        (with ``status`` set for API errors, 410 meaning the version expired).
        """
        list_func = self._list_function(kind)
        log_k8s_operation(logger, f"watch {kind.value}", self.namespace,
                          resource_version=resource_version, timeout_seconds=timeout_seconds)
        watcher = watch.Watch()
        try:
            for event in watcher.stream(list_func, namespace=self.namespace,
                                        resource_version=resource_version,
                                        timeout_seconds=timeout_seconds):
                yield event
        except (ApiException, Urllib3HTTPError, OSError) as e:
            raise translate_api_error(e, f"watch {kind.value}") from e
        finally:
            watcher.stop()

    def get_service(self, name: str) -> client.V1Service:
        """Read a service.

        Raises:
            ResolutionError: If the service does not exist.
        """
        self._ensure_connected()
        log_k8s_operation(logger, "read service", self.namespace, name=name)
        try:
            return self._core_v1.read_namespaced_service(
                name=name, namespace=self.namespace, _request_timeout=self.request_timeout)
        except (ApiException, Urllib3HTTPError, OSError) as e:
            raise translate_api_error(e, f"read service {name}", not_found=ResolutionError) from e

    def get_endpoints(self, name: str) -> Optional[client.V1Endpoints]:
        """Read the Endpoints object of a service, or None if it has none yet."""
        self._ensure_connected()
        log_k8s_operation(logger, "read endpoints", self.namespace, name=name)
        try:
            return self._core_v1.read_namespaced_endpoints(
                name=name, namespace=self.namespace, _request_timeout=self.request_timeout)
        except ApiException as e:
            if e.status == 404:
                logger.debug("Service has no endpoints object yet", service=name)
                return None
            raise translate_api_error(e, f"read endpoints {name}") from e
        except (Urllib3HTTPError, OSError) as e:
            raise translate_api_error(e, f"read endpoints {name}") from e
