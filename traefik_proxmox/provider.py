"""Traefik provider that discovers services running on a Proxmox cluster."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from traefik_proxmox.client import LOG_LEVEL_INFO, ApiError, ProxmoxClient
from traefik_proxmox.configuration import Configuration, generate_configuration
from traefik_proxmox.models import IP, Service

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL = timedelta(seconds=5)

_LOOPBACK = "127.0.0.1"
_PRIMARY_INTERFACE = "eth0"
_RUNNING = "running"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "\u00b5s": 1e-6,
    "\u03bcs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_COMPONENT = re.compile(r"(\d*)(\.\d*)?([^\d.]*)")

Sink = Callable[[Configuration], object]


class ConfigError(ValueError):
    """The provider configuration is not usable."""


@dataclass
class Config:
    """Provider settings as given by traefik."""

    poll_interval: str = ""
    api_endpoint: str = ""
    api_token_id: str = ""
    api_token: str = ""
    api_logging: str = ""
    api_validate_ssl: str = ""


@dataclass
class ParserConfig:
    """Connection settings for the Proxmox API client."""

    api_endpoint: str
    token_id: str
    token: str
    log_level: str = LOG_LEVEL_INFO
    validate_ssl: bool = True


def create_config() -> Config:
    """Return the default provider configuration."""
    return Config(poll_interval="30s", api_validate_ssl="true", api_logging="info")


def validate_config(config: Optional[Config]) -> None:
    """Raise ConfigError if a mandatory setting is missing."""
    if config is None:
        raise ConfigError("configuration cannot be None")
    if not config.poll_interval:
        raise ConfigError("poll interval must be set")
    if not config.api_endpoint:
        raise ConfigError("API endpoint must be set")
    if not config.api_token_id:
        raise ConfigError("API token ID must be set")
    if not config.api_token:
        raise ConfigError("API token must be set")


def new_parser_config(api_endpoint: str, token_id: str, token: str) -> ParserConfig:
    """Build client settings; endpoint, token id and token are all required."""
    if not api_endpoint or not token_id or not token:
        raise ConfigError("missing mandatory values: apiEndpoint, tokenID or token")
    return ParserConfig(api_endpoint=api_endpoint, token_id=token_id, token=token)


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``30s``, ``1h30m`` or ``1.5s``."""
    original = text
    sign = 1
    if text[:1] in ("+", "-"):
        if text[0] == "-":
            sign = -1
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f"invalid duration {original!r}")

    total = 0.0
    position = 0
    while position < len(text):
        match = _DURATION_COMPONENT.match(text, position)
        whole, fraction, unit = match.groups()
        if not whole and (not fraction or fraction == "."):
            raise ValueError(f"invalid duration {original!r}")
        if not unit:
            raise ValueError(f"missing unit in duration {original!r}")
        if unit not in _DURATION_UNITS:
            raise ValueError(f"unknown unit {unit!r} in duration {original!r}")
        total += float((whole or "0") + (fraction or "")) * _DURATION_UNITS[unit]
        position = match.end()
    return timedelta(seconds=sign * total)


def ips_of_service(client: ProxmoxClient, node_name: str, vm_id: int) -> list[IP]:
    """Return the second non-loopback eth0 address reported by the guest agent."""
    try:
        interfaces = client.vm_network_interfaces(node_name, vm_id)
    except ApiError as exc:
        raise ApiError(f"error getting network interfaces: {exc}") from exc

    eth0 = [
        ip
        for ip in interfaces.ips()
        if ip.address != _LOOPBACK and ip.interface == _PRIMARY_INTERFACE
    ]
    if len(eth0) >= 2:
        return [eth0[1]]
    raise LookupError(f"no second IP found for eth0 on service {vm_id}")


def _running_service(client: ProxmoxClient, node_name: str, vm_id: int, name: str,
                     config_getter: Callable[[str, int], object], kind: str) -> Optional[Service]:
    try:
        parsed = config_getter(node_name, vm_id)
    except ApiError as exc:
        logger.info("Error getting %s config for %d: %s", kind, vm_id, exc)
        return None

    labels = parsed.traefik_map()
    logger.info("%s %s (%d) traefik config: %s", kind.capitalize(), name, vm_id, labels)
    service = Service(id=vm_id, name=name, config=labels)
    try:
        service.ips = ips_of_service(client, node_name, vm_id)
    except (ApiError, LookupError):
        pass
    return service


def scan_services(client: ProxmoxClient, node_name: str) -> list[Service]:
    """Collect the running VMs and containers of one node."""
    services: list[Service] = []

    try:
        vms = client.virtual_machines(node_name)
    except ApiError as exc:
        raise ApiError(f"error scanning VMs on node {node_name}: {exc}") from exc

    for vm in vms:
        logger.info("Scanning VM %s/%s (%d): %s", node_name, vm.name, vm.vmid, vm.status)
        if vm.status == _RUNNING:
            service = _running_service(client, node_name, vm.vmid, vm.name, client.vm_config, "VM")
            if service is not None:
                services.append(service)

    try:
        containers = client.containers(node_name)
    except ApiError as exc:
        raise ApiError(f"error scanning containers on node {node_name}: {exc}") from exc

    for ct in containers:
        logger.info("Scanning container %s/%s (%d): %s", node_name, ct.name, ct.vmid, ct.status)
        if ct.status == _RUNNING:
            service = _running_service(
                client, node_name, ct.vmid, ct.name, client.container_config, "container"
            )
            if service is not None:
                services.append(service)

    return services


def service_map(client: ProxmoxClient) -> dict[str, list[Service]]:
    """Map every node that could be scanned to its running services."""
    try:
        nodes = client.nodes()
    except ApiError as exc:
        raise ApiError(f"error scanning nodes: {exc}") from exc

    services: dict[str, list[Service]] = {}
    for node in nodes:
        try:
            services[node.node] = scan_services(client, node.node)
        except ApiError as exc:
            logger.info("Error scanning services on node %s: %s", node.node, exc)
    return services


class Provider:
    """Polls Proxmox and hands traefik configurations to a sink."""

    def __init__(self, config: Optional[Config], name: str,
                 client: Optional[ProxmoxClient] = None):
        try:
            validate_config(config)
        except ConfigError as exc:
            raise ConfigError(f"invalid configuration: {exc}") from exc

        try:
            interval = parse_duration(config.poll_interval)
        except ValueError as exc:
            raise ConfigError(f"invalid poll interval: {exc}") from exc
        if interval < MIN_POLL_INTERVAL:
            raise ConfigError(f"poll interval must be at least 5 seconds, got {interval}")

        try:
            parser_config = new_parser_config(
                config.api_endpoint, config.api_token_id, config.api_token
            )
        except ConfigError as exc:
            raise ConfigError(f"invalid parser config: {exc}") from exc
        parser_config.log_level = config.api_logging
        parser_config.validate_ssl = config.api_validate_ssl == "true"

        if client is None:
            client = ProxmoxClient(
                parser_config.api_endpoint,
                parser_config.token_id,
                parser_config.token,
                parser_config.validate_ssl,
                parser_config.log_level,
            )

        try:
            version = client.version()
        except ApiError as exc:
            raise ApiError(f"failed to get Proxmox version: {exc}") from exc
        logger.info("Connected to Proxmox VE version %s", version.release)

        self.name = name
        self.poll_interval = interval
        self.client = client
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def init(self) -> None:
        """Nothing to prepare before providing."""

    def provide(self, sink: Sink) -> None:
        """Start polling in the background, sending each configuration to ``sink``."""
        stop_event = threading.Event()
        self._stop_event = stop_event
        self._thread = threading.Thread(
            target=self._poll, args=(sink, stop_event), name=f"proxmox-{self.name}", daemon=True
        )
        self._thread.start()

    def _poll(self, sink: Sink, stop_event: threading.Event) -> None:
        try:
            try:
                self.update_configuration(sink)
            except ApiError as exc:
                logger.info("Error during initial configuration: %s", exc)
            while not stop_event.wait(self.poll_interval.total_seconds()):
                try:
                    self.update_configuration(sink)
                except ApiError as exc:
                    logger.info("Error updating configuration: %s", exc)
        except Exception as exc:  # keep the host alive whatever the sink does
            logger.info("Recovered from error in provider: %s", exc)

    def update_configuration(self, sink: Sink) -> None:
        """Scan the cluster once and send the resulting configuration."""
        try:
            services = service_map(self.client)
        except ApiError as exc:
            raise ApiError(f"error getting service map: {exc}") from exc
        sink(generate_configuration(services))

    def stop(self) -> None:
        """Stop polling."""
        if self._stop_event is not None:
            self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)