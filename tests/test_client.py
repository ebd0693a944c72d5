"""Tests for the Kubernetes cluster client."""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import ProtocolError

from ingress_controller.client import ClusterClient, translate_api_error
from ingress_controller.exceptions import ConfigurationError, ResolutionError, TransientAPIError
from ingress_controller.models import ControllerConfig, ResourceKind

from conftest import make_endpoints, make_service


class TestTranslateApiError:
    """Tests for translate_api_error."""

    @pytest.mark.parametrize("status,expected", [
        (500, TransientAPIError),
        (503, TransientAPIError),
        (429, TransientAPIError),
        (401, ConfigurationError),
        (403, ConfigurationError),
    ])
    def test_status_mapping(self, status, expected):
        """Test API statuses map onto the error taxonomy."""
        error = translate_api_error(ApiException(status=status, reason="x"), "list Ingress")

        assert isinstance(error, expected)

    def test_not_found_override(self):
        """Test 404 maps to the requested error class."""
        assert isinstance(translate_api_error(ApiException(status=404), "read service",
                                              not_found=ResolutionError), ResolutionError)
        error = translate_api_error(ApiException(status=404), "list Ingress")
        assert isinstance(error, TransientAPIError)
        assert error.status == 404

    def test_network_error(self):
        """Test non-API failures become transient errors."""
        error = translate_api_error(ProtocolError("connection reset"), "watch Ingress")

        assert isinstance(error, TransientAPIError)
        assert "ProtocolError" in str(error)


class TestClusterClient:
    """Tests for ClusterClient."""

    @pytest.fixture
    def cluster_client(self):
        """Create a ClusterClient with mocked API objects."""
        cluster_client = ClusterClient("ingress-test", kubeconfig_path="/path/to/kubeconfig",
                                       context="test-context", request_timeout=5.0)
        cluster_client._core_v1 = MagicMock()
        cluster_client._networking_v1 = MagicMock()
        return cluster_client

    def test_from_config(self):
        """Test construction from the controller configuration."""
        cluster_client = ClusterClient.from_config(ControllerConfig(namespace="ns", api_timeout=7.0))

        assert cluster_client.namespace == "ns"
        assert cluster_client.request_timeout == 7.0
        assert cluster_client._core_v1 is None

    @patch("ingress_controller.client.config.load_kube_config")
    @patch("ingress_controller.client.client.ApiClient")
    @patch("ingress_controller.client.client.CoreV1Api")
    @patch("ingress_controller.client.client.NetworkingV1Api")
    def test_connect_with_kubeconfig(self, mock_networking, mock_core, mock_api_client, mock_load_config):
        """Test connecting with a kubeconfig file."""
        cluster_client = ClusterClient("ingress-test", kubeconfig_path="/path/to/kubeconfig", context="ctx")

        cluster_client.connect()

        mock_load_config.assert_called_once_with(config_file="/path/to/kubeconfig", context="ctx")
        mock_api_client.assert_called_once()
        mock_core.assert_called_once()
        mock_networking.assert_called_once()

    @patch("ingress_controller.client.config.load_incluster_config")
    @patch("ingress_controller.client.client.ApiClient")
    def test_connect_incluster(self, mock_api_client, mock_load_config):
        """Test connecting with in-cluster config."""
        ClusterClient("ingress-test").connect()

        mock_load_config.assert_called_once()

    @patch("ingress_controller.client.config.load_incluster_config")
    def test_connect_failure(self, mock_load_config):
        """Test missing credentials are a configuration error."""
        mock_load_config.side_effect = ConfigException("Service host/port is not set.")

        with pytest.raises(ConfigurationError, match="Service host/port"):
            ClusterClient("ingress-test").connect()

    def test_list_ingresses(self, cluster_client):
        """Test listing uses the namespace and the request timeout."""
        cluster_client._networking_v1.list_namespaced_ingress.return_value = "ingresses"

        assert cluster_client.list(ResourceKind.INGRESS) == "ingresses"
        cluster_client._networking_v1.list_namespaced_ingress.assert_called_once_with(
            namespace="ingress-test", _request_timeout=5.0)

    def test_list_endpoints_failure(self, cluster_client):
        """Test list failures are translated."""
        cluster_client._core_v1.list_namespaced_endpoints.side_effect = ApiException(status=500)

        with pytest.raises(TransientAPIError):
            cluster_client.list(ResourceKind.ENDPOINTS)

    def test_check_access_denied(self, cluster_client):
        """Test RBAC denial surfaces as a configuration error."""
        cluster_client._core_v1.list_namespaced_endpoints.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(ConfigurationError, match="403"):
            cluster_client.check_access()

    def test_get_service(self, cluster_client):
        """Test reading a service."""
        service = make_service("svc-a")
        cluster_client._core_v1.read_namespaced_service.return_value = service

        assert cluster_client.get_service("svc-a") is service
        cluster_client._core_v1.read_namespaced_service.assert_called_once_with(
            name="svc-a", namespace="ingress-test", _request_timeout=5.0)

    def test_get_service_not_found(self, cluster_client):
        """Test a missing service is a resolution error."""
        cluster_client._core_v1.read_namespaced_service.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(ResolutionError, match="svc-a"):
            cluster_client.get_service("svc-a")

    def test_get_endpoints(self, cluster_client):
        """Test reading endpoints and tolerating their absence."""
        endpoints = make_endpoints("svc-a", ["10.0.0.5"])
        cluster_client._core_v1.read_namespaced_endpoints.side_effect = [endpoints, ApiException(status=404)]

        assert cluster_client.get_endpoints("svc-a") is endpoints
        assert cluster_client.get_endpoints("svc-a") is None

    def test_get_endpoints_transient(self, cluster_client):
        """Test endpoint read outages are transient errors."""
        cluster_client._core_v1.read_namespaced_endpoints.side_effect = ApiException(status=503)

        with pytest.raises(TransientAPIError):
            cluster_client.get_endpoints("svc-a")

    @patch("ingress_controller.client.watch.Watch")
    def test_watch_streams_and_stops(self, mock_watch_class, cluster_client):
        """Test watch forwards the stream arguments and always stops the watcher."""
        mock_watch = MagicMock()
        mock_watch.stream.return_value = iter([{"type": "ADDED", "object": "a"}])
        mock_watch_class.return_value = mock_watch

        events = list(cluster_client.watch(ResourceKind.INGRESS, resource_version="42", timeout_seconds=30))

        assert events == [{"type": "ADDED", "object": "a"}]
        mock_watch.stream.assert_called_once_with(
            cluster_client._networking_v1.list_namespaced_ingress,
            namespace="ingress-test", resource_version="42", timeout_seconds=30)
        mock_watch.stop.assert_called_once()

    @patch("ingress_controller.client.watch.Watch")
    def test_watch_gone(self, mock_watch_class, cluster_client):
        """Test an expired resource version keeps its status for the watcher."""
        mock_watch = MagicMock()
        mock_watch.stream.side_effect = ApiException(status=410, reason="Gone")
        mock_watch_class.return_value = mock_watch

        with pytest.raises(TransientAPIError) as exc_info:
            list(cluster_client.watch(ResourceKind.ENDPOINTS))

        assert exc_info.value.status == 410
        mock_watch.stop.assert_called_once()
