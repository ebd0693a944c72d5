"""Tests for ingress controller models."""

import json

import pytest
from pydantic import ValidationError

from ingress_controller.models import (ControllerConfig, DataPlaneConfig, EventType, IpMapping,
                                       ResourceKind, RoutingConfig, WatchEvent)

from conftest import make_ingress


class TestControllerConfig:
    """Tests for ControllerConfig model."""

    def test_defaults(self):
        """Test the default configuration matches the stock data-plane layout."""
        config = ControllerConfig()

        assert config.namespace == "default"
        assert config.config_path == "/app/Ingress/ingress.json"
        assert config.endpoint_eviction == "retain"
        assert config.remove_config_on_delete is True
        assert config.data_plane.command == ["dotnet", "/app/Ingress/Ingress.dll"]
        assert config.data_plane.working_dir == "/app/Ingress"
        assert config.watch.backoff_max == 30.0

    def test_nested_from_dict(self):
        """Test nested sections are parsed from plain dictionaries."""
        config = ControllerConfig(**{
            "namespace": "ingress-test",
            "data_plane": {"command": ["envoy"], "reload_signal": "usr1"},
            "watch": {"timeout_seconds": 60},
        })

        assert config.data_plane.command == ["envoy"]
        assert config.data_plane.reload_signal == "SIGUSR1"
        assert config.watch.timeout_seconds == 60

    def test_invalid_eviction_mode(self):
        """Test unknown eviction modes are rejected."""
        with pytest.raises(ValidationError):
            ControllerConfig(endpoint_eviction="grace")

    def test_invalid_signal(self):
        """Test unknown reload signals are rejected."""
        with pytest.raises(ValidationError):
            DataPlaneConfig(reload_signal="SIGNOPE")

    def test_empty_command(self):
        """Test the data-plane command cannot be empty."""
        with pytest.raises(ValidationError):
            DataPlaneConfig(command=[])


class TestRoutingConfig:
    """Tests for RoutingConfig serialization."""

    def test_wire_format(self):
        """Test the document uses the field names the data plane reads."""
        routing = RoutingConfig(ip_mappings=[
            IpMapping(path="/api", scheme="http", port=8080, ip_addresses=["10.0.0.5"]),
        ])

        data = json.loads(routing.to_json())

        assert data == {"ipMappings": [
            {"path": "/api", "scheme": "http", "port": 8080, "ipAddresses": ["10.0.0.5"]},
        ]}

    def test_parse_by_alias(self):
        """Test a published document can be read back."""
        routing = RoutingConfig.model_validate_json(
            '{"ipMappings": [{"path": "/", "scheme": "https", "port": 443, "ipAddresses": []}]}'
        )

        assert routing.ip_mappings[0].scheme == "https"
        assert routing.ip_mappings[0].ip_addresses == []

    def test_invalid_scheme(self):
        """Test only http and https are accepted."""
        with pytest.raises(ValidationError):
            IpMapping(path="/", scheme="ftp", port=21)

    def test_mapping_is_immutable(self):
        """Test mappings are replaced, never mutated."""
        mapping = IpMapping(path="/", port=80)
        with pytest.raises(ValidationError):
            mapping.port = 81


class TestWatchEvent:
    """Tests for WatchEvent."""

    def test_name_from_resource(self):
        """Test the event exposes the resource name."""
        event = WatchEvent(type=EventType.ADDED, kind=ResourceKind.INGRESS, resource=make_ingress("shop"))

        assert event.name == "shop"
        assert event.synthetic is False
