"""Command-line interface for the ingress controller."""

import argparse
import json
import random
import signal
import sys
from pathlib import Path
from typing import Optional

from .logging_config import setup_logging, get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATHS = [
    Path("ingress-controller.yaml"),
    Path("config.yaml"),
    Path("/etc/ingress-controller/config.yaml"),
]


def load_config(config_path: Optional[str]):
    """Load a ControllerConfig from YAML.

    Without an explicit path the default locations are searched; if none
    exists the built-in defaults are used.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.
    """
    import yaml
    from pydantic import ValidationError
    from .exceptions import ConfigurationError
    from .models import ControllerConfig

    path = None
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")
    else:
        for candidate in DEFAULT_CONFIG_PATHS:
            if candidate.exists():
                path = candidate
                break

    if path is None:
        logger.warning("No configuration file found, using defaults")
        return ControllerConfig()

    try:
        logger.debug("Loading configuration file", config_path=str(path))
        with open(path) as f:
            config_data = yaml.safe_load(f) or {}
        controller_config = ControllerConfig(**config_data)
    except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
        raise ConfigurationError(f"Invalid configuration {path}: {e}") from e

    logger.info("Configuration loaded successfully", config_path=str(path),
                namespace=controller_config.namespace, output=controller_config.config_path)
    return controller_config


def run_command(args: argparse.Namespace) -> None:
    """Run the controller until SIGTERM or SIGINT.

    Startup is retried with backoff while the API server is unreachable;
    only a configuration error ends the process.
    """
    from .controller import IngressController
    from .exceptions import ConfigurationError, TransientAPIError
    from .logging_config import log_function_entry, log_function_exit

    setup_logging(args.verbose)
    log_function_entry(logger, "run_command", config=args.config, namespace=args.namespace)

    try:
        controller_config = load_config(args.config)
        if args.namespace:
            controller_config = controller_config.model_copy(update={"namespace": args.namespace})
        controller = IngressController(controller_config)
    except ConfigurationError as e:
        logger.error("Controller startup failed", error=str(e))
        print(f"Error starting controller: {e}", file=sys.stderr)
        sys.exit(1)

    def handle_signal(signum, frame):
        logger.info("Shutdown signal received", signal=signal.Signals(signum).name)
        controller.stop_event.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    backoff = controller_config.watch.backoff_initial
    while not controller.stop_event.is_set():
        try:
            controller.start()
        except ConfigurationError as e:
            logger.error("Controller startup failed", error=str(e))
            print(f"Error starting controller: {e}", file=sys.stderr)
            sys.exit(1)
        except TransientAPIError as e:
            delay = backoff * (0.5 + random.random())
            logger.warning("Cluster unavailable at startup, retrying", error=str(e), delay=round(delay, 2))
            controller.stop_event.wait(timeout=delay)
            backoff = min(backoff * 2, controller_config.watch.backoff_max)
            continue
        print(f"Watching namespace {controller_config.namespace}, publishing to {controller_config.config_path}")
        break

    controller.wait()
    controller.stop()
    log_function_exit(logger, "run_command", status="stopped")


def resolve_command(args: argparse.Namespace) -> None:
    """Resolve every ingress once and print the routing config without publishing it."""
    import yaml
    from .cache import EndpointCache
    from .client import ClusterClient
    from .exceptions import ControllerError
    from .models import ResourceKind, RoutingConfig
    from .resolver import RuleResolver

    setup_logging(args.verbose)

    try:
        controller_config = load_config(args.config)
        if args.namespace:
            controller_config = controller_config.model_copy(update={"namespace": args.namespace})
        cluster = ClusterClient.from_config(controller_config)
        cluster.connect()
        ingresses = cluster.list(ResourceKind.INGRESS).items or []
    except ControllerError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    resolver = RuleResolver(cluster, EndpointCache())
    mappings = []
    failed = 0
    for ingress in sorted(ingresses, key=lambda i: i.metadata.name):
        try:
            resolution = resolver.resolve(ingress)
        except ControllerError as e:
            failed += 1
            print(f"Skipping ingress {ingress.metadata.name}: {e}", file=sys.stderr)
            continue
        for service, ips in resolution.cache_updates.items():
            resolver.cache.update(service, ips)
        mappings.extend(resolution.routing_config.ip_mappings)

    routing_config = RoutingConfig(ip_mappings=mappings)
    data = routing_config.model_dump(by_alias=True)
    if args.output == "yaml":
        print(yaml.dump(data, default_flow_style=False, sort_keys=False))
    else:
        print(json.dumps(data, indent=2))

    cluster.close()
    if failed:
        sys.exit(2)


def init_config_command(args: argparse.Namespace) -> None:
    """Generate a sample configuration file."""
    import yaml
    from .models import ControllerConfig

    sample_config = ControllerConfig(namespace="ingress-test").model_dump()
    config_yaml = yaml.dump(sample_config, default_flow_style=False, sort_keys=False)

    if args.output:
        output_path = Path(args.output)
        output_path.write_text(config_yaml)
        print(f"Sample configuration written to {output_path}")
    else:
        print("Sample configuration:\n")
        print(config_yaml)


def validate_config_command(args: argparse.Namespace) -> None:
    """Validate a configuration file."""
    from .exceptions import ConfigurationError

    try:
        controller_config = load_config(args.config)
    except ConfigurationError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)

    print(f"✓ Configuration file {args.config} is valid")
    print("\nConfiguration summary:")
    print(f"  Namespace: {controller_config.namespace}")
    print(f"  Config path: {controller_config.config_path}")
    print(f"  Data plane: {' '.join(controller_config.data_plane.command)}")
    print(f"  Working dir: {controller_config.data_plane.working_dir}")
    print(f"  Reload signal: {controller_config.data_plane.reload_signal}")
    print(f"  Endpoint eviction: {controller_config.endpoint_eviction}")
    print(f"  Resync interval: {controller_config.resync_interval}s")


def version_command(args: argparse.Namespace) -> None:
    """Show version information."""
    from . import __version__
    print(f"Ingress Controller {__version__}")


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="ingress-controller",
        description="Ingress Controller: reconcile ingresses and endpoints into a data-plane routing config",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the controller")
    run_parser.add_argument(
        "--config", "-c",
        help="Configuration file path"
    )
    run_parser.add_argument(
        "--namespace", "-n",
        help="Override the namespace from the configuration"
    )
    run_parser.set_defaults(func=run_command)

    resolve_parser = subparsers.add_parser("resolve", help="Resolve ingresses once and print the routing config")
    resolve_parser.add_argument(
        "--config", "-c",
        help="Configuration file path"
    )
    resolve_parser.add_argument(
        "--namespace", "-n",
        help="Override the namespace from the configuration"
    )
    resolve_parser.add_argument(
        "--output", "-o",
        choices=["json", "yaml"],
        default="json",
        help="Output format (default: json)"
    )
    resolve_parser.set_defaults(func=resolve_command)

    init_parser = subparsers.add_parser("init-config", help="Generate a sample configuration file")
    init_parser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)"
    )
    init_parser.set_defaults(func=init_config_command)

    validate_parser = subparsers.add_parser("validate-config", help="Validate a configuration file")
    validate_parser.add_argument(
        "--config", "-c",
        required=True,
        help="Configuration file path"
    )
    validate_parser.set_defaults(func=validate_config_command)

    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.set_defaults(func=version_command)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
