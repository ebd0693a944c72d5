"""Data models for the ingress controller."""

import signal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ResourceKind(str, Enum):
    """Kubernetes resource kinds the controller watches."""

    INGRESS = "Ingress"
    ENDPOINTS = "Endpoints"


class EventType(str, Enum):
    """Watch event types forwarded to the reconciliation engine."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class ProcessState(str, Enum):
    """Lifecycle states of the data-plane process."""

    NOT_STARTED = "NotStarted"
    RUNNING = "Running"
    STOPPED = "Stopped"


class WatchConfig(BaseModel):
    """Watch subscription settings."""

    timeout_seconds: int = Field(300, ge=1, description="Server-side watch timeout before resubscribing")
    backoff_initial: float = Field(1.0, gt=0, description="First reconnect delay in seconds")
    backoff_max: float = Field(30.0, gt=0, description="Reconnect delay cap in seconds")


class DataPlaneConfig(BaseModel):
    """How to launch and control the data-plane process."""

    command: List[str] = Field(
        default_factory=lambda: ["dotnet", "/app/Ingress/Ingress.dll"],
        description="Command line; the config path is appended as the last argument",
    )
    working_dir: str = Field("/app/Ingress", description="Working directory of the process")
    reload_signal: str = Field("SIGHUP", description="Signal name that makes the process re-read its config")
    stop_timeout: float = Field(10.0, gt=0, description="Seconds to wait after SIGTERM before SIGKILL")
    start_attempts: int = Field(3, ge=1, description="Start attempts before giving up until the next resync")
    start_backoff: float = Field(1.0, ge=0, description="Delay before the second start attempt, doubled each time")

    @field_validator("command")
    @classmethod
    def _command_not_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("data_plane.command must not be empty")
        return value

    @field_validator("reload_signal")
    @classmethod
    def _known_signal(cls, value: str) -> str:
        value = value.upper()
        if not value.startswith("SIG"):
            value = "SIG" + value
        if not hasattr(signal, value):
            raise ValueError(f"unknown signal {value}")
        return value


class ControllerConfig(BaseModel):
    """Top-level controller configuration."""

    namespace: str = Field("default", description="Namespace whose ingresses and endpoints are reconciled")
    kubeconfig_path: Optional[str] = Field(None, description="Path to kubeconfig file; in-cluster config when unset")
    context: Optional[str] = Field(None, description="Kubernetes context name")
    config_path: str = Field("/app/Ingress/ingress.json", description="Where the routing config is published")
    remove_config_on_delete: bool = Field(True, description="Withdraw the config file when the last ingress is deleted")
    endpoint_eviction: Literal["retain", "immediate"] = Field(
        "retain", description="What to do with cached IPs when an Endpoints object is deleted"
    )
    resync_interval: float = Field(60.0, gt=0, description="Seconds between retries of failed reconciliations")
    api_timeout: float = Field(30.0, gt=0, description="Per-request timeout for on-demand API lookups")
    watch: WatchConfig = Field(default_factory=WatchConfig)
    data_plane: DataPlaneConfig = Field(default_factory=DataPlaneConfig)


class IpMapping(BaseModel):
    """One resolved routing entry: a path prefix and the backends serving it."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    path: str = Field(..., description="URL path prefix")
    scheme: Literal["http", "https"] = Field("http", description="Scheme the proxy listens with")
    port: int = Field(..., description="Backend target port")
    ip_addresses: List[str] = Field(default_factory=list, alias="ipAddresses", description="Backend pod IPs")


class RoutingConfig(BaseModel):
    """The document consumed by the data-plane process."""

    model_config = ConfigDict(populate_by_name=True)

    ip_mappings: List[IpMapping] = Field(default_factory=list, alias="ipMappings")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2) + "\n"


class WatchEvent(BaseModel):
    """A typed change notification for one watched resource."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    type: EventType
    kind: ResourceKind
    resource: Any = Field(..., description="The Kubernetes model object")
    synthetic: bool = Field(False, description="Produced by a relist rather than the watch stream")

    @property
    def name(self) -> str:
        return self.resource.metadata.name


class PublishResult(BaseModel):
    """Outcome of a config publish."""

    path: str
    changed: bool
    digest: str


class Resolution(BaseModel):
    """Output of the rule resolver for one ingress."""

    routing_config: RoutingConfig
    cache_updates: Dict[str, List[str]] = Field(
        default_factory=dict, description="Endpoint sets fetched on cache miss, to be applied by the engine"
    )
