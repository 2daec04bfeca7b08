"""Build traefik dynamic configuration from discovered Proxmox services."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Iterable, Mapping, Optional

from traefik_proxmox.models import Service

logger = logging.getLogger(__name__)

_ROUTERS_PREFIX = "traefik.http.routers."
_SERVICES_PREFIX = "traefik.http.services."
_ENABLE_LABEL = "traefik.enable"
_DEFAULT_PRIORITY = 1

_INT_PATTERN = re.compile(r"\s*([+-]?\d+)")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_TRUE_WORDS = frozenset({"true", "1", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "0", "no", "off"})


def _json(name: str, nullable: bool = False) -> dict[str, Any]:
    return {"json": name, "nullable": nullable}


@dataclass
class Domain:
    main: str = field(default="", metadata=_json("main"))
    sans: list[str] = field(default_factory=list, metadata=_json("sans"))


@dataclass
class RouterTLSConfig:
    options: str = field(default="", metadata=_json("options"))
    cert_resolver: str = field(default="", metadata=_json("certResolver"))
    domains: list[Domain] = field(default_factory=list, metadata=_json("domains"))


@dataclass
class Router:
    service: str = field(default="", metadata=_json("service"))
    rule: str = field(default="", metadata=_json("rule"))
    priority: int = field(default=0, metadata=_json("priority"))
    entrypoints: list[str] = field(default_factory=list, metadata=_json("entryPoints"))
    middlewares: list[str] = field(default_factory=list, metadata=_json("middlewares"))
    tls: Optional[RouterTLSConfig] = field(default=None, metadata=_json("tls"))


@dataclass
class Server:
    url: str = field(default="", metadata=_json("url"))


@dataclass
class HealthCheck:
    path: str = field(default="", metadata=_json("path"))
    interval: str = field(default="", metadata=_json("interval"))
    timeout: str = field(default="", metadata=_json("timeout"))


@dataclass
class Cookie:
    name: str = field(default="", metadata=_json("name"))
    secure: bool = field(default=False, metadata=_json("secure"))
    http_only: bool = field(default=False, metadata=_json("httpOnly"))


@dataclass
class Sticky:
    cookie: Optional[Cookie] = field(default=None, metadata=_json("cookie"))


@dataclass
class ResponseForwarding:
    flush_interval: str = field(default="", metadata=_json("flushInterval"))


@dataclass
class LoadBalancer:
    sticky: Optional[Sticky] = field(default=None, metadata=_json("sticky"))
    servers: list[Server] = field(default_factory=list, metadata=_json("servers"))
    health_check: Optional[HealthCheck] = field(default=None, metadata=_json("healthCheck"))
    pass_host_header: Optional[bool] = field(
        default=True, metadata=_json("passHostHeader", nullable=True)
    )
    response_forwarding: Optional[ResponseForwarding] = field(
        default=None, metadata=_json("responseForwarding")
    )


@dataclass
class HTTPService:
    load_balancer: Optional[LoadBalancer] = field(default=None, metadata=_json("loadBalancer"))


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict, bool, int)):
        return not value
    return False


def _encode(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        encoded: dict[str, Any] = {}
        for item in fields(value):
            attribute = getattr(value, item.name)
            if item.metadata.get("nullable"):
                if attribute is None:
                    continue
            elif _is_empty(attribute):
                continue
            encoded[item.metadata["json"]] = _encode(attribute)
        return encoded
    if isinstance(value, dict):
        return {key: _encode(value[key]) for key in sorted(value)}
    if isinstance(value, list):
        return [_encode(item) for item in value]
    return value


@dataclass
class Configuration:
    """HTTP routers and services handed to traefik."""

    routers: dict[str, Router] = field(default_factory=dict)
    services: dict[str, HTTPService] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        http: dict[str, Any] = {}
        if self.routers:
            http["routers"] = _encode(self.routers)
        if self.services:
            http["services"] = _encode(self.services)
        return {"http": http, "tcp": {}, "udp": {}, "tls": {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def _label_names(config: Mapping[str, str], prefix: str) -> list[str]:
    names: dict[str, None] = {}
    for key in config:
        if key.startswith(prefix):
            parts = key.split(".")
            if len(parts) > 3:
                names[parts[3]] = None
    return list(names)


def generate_configuration(services_map: Mapping[str, Iterable[Service]]) -> Configuration:
    """Turn the services of every node into traefik routers and services."""
    configuration = Configuration()

    for node_name, services in services_map.items():
        for service in services:
            if not service.config or not is_bool_label_enabled(service.config, _ENABLE_LABEL):
                logger.info(
                    "Skipping service %s (ID: %d) because traefik.enable is not true",
                    service.name,
                    service.id,
                )
                continue

            default_id = f"{service.name}-{service.id}"
            router_names = _label_names(service.config, _ROUTERS_PREFIX) or [default_id]
            service_names = _label_names(service.config, _SERVICES_PREFIX) or [default_id]

            for service_name in service_names:
                load_balancer = LoadBalancer(pass_host_header=True)
                apply_service_options(load_balancer, service, service_name)
                load_balancer.servers.append(
                    Server(url=service_url(service, service_name, node_name))
                )
                configuration.services[service_name] = HTTPService(load_balancer=load_balancer)

            for router_name in router_names:
                target = service.config.get(
                    f"traefik.http.routers.{router_name}.service", service_names[0]
                )
                router = Router(
                    service=target,
                    rule=router_rule(service, router_name),
                    priority=_DEFAULT_PRIORITY,
                )
                apply_router_options(router, service, router_name)
                configuration.routers[router_name] = router

            logger.info("Created router and service for %s (ID: %d)", service.name, service.id)

    return configuration


def apply_router_options(router: Router, service: Service, router_name: str) -> None:
    """Set entry points, middlewares, priority and TLS of a router from labels."""
    prefix = f"traefik.http.routers.{router_name}"
    config = service.config

    if prefix + ".entrypoints" in config:
        router.entrypoints = config[prefix + ".entrypoints"].split(",")
    elif prefix + ".entrypoint" in config:
        router.entrypoints = [config[prefix + ".entrypoint"]]

    if prefix + ".middlewares" in config:
        router.middlewares = config[prefix + ".middlewares"].split(",")

    if prefix + ".priority" in config:
        try:
            router.priority = string_to_int(config[prefix + ".priority"])
        except ValueError:
            pass

    tls = router_tls(service, prefix)
    if tls is not None:
        router.tls = tls


def apply_service_options(
    load_balancer: LoadBalancer, service: Service, service_name: str
) -> None:
    """Set load balancer options of a service from labels."""
    prefix = f"traefik.http.services.{service_name}.loadbalancer"
    config = service.config

    if prefix + ".passhostheader" in config:
        try:
            load_balancer.pass_host_header = string_to_bool(config[prefix + ".passhostheader"])
        except ValueError:
            pass

    if prefix + ".healthcheck.path" in config:
        health_check = HealthCheck(path=config[prefix + ".healthcheck.path"])
        if prefix + ".healthcheck.interval" in config:
            health_check.interval = config[prefix + ".healthcheck.interval"]
        if prefix + ".healthcheck.timeout" in config:
            health_check.timeout = config[prefix + ".healthcheck.timeout"]
        load_balancer.health_check = health_check

    if prefix + ".sticky.cookie.name" in config:
        cookie = Cookie(name=config[prefix + ".sticky.cookie.name"])
        if prefix + ".sticky.cookie.secure" in config:
            try:
                cookie.secure = string_to_bool(config[prefix + ".sticky.cookie.secure"])
            except ValueError:
                pass
        if prefix + ".sticky.cookie.httponly" in config:
            try:
                cookie.http_only = string_to_bool(config[prefix + ".sticky.cookie.httponly"])
            except ValueError:
                pass
        load_balancer.sticky = Sticky(cookie=cookie)

    if prefix + ".responseforwarding.flushinterval" in config:
        load_balancer.response_forwarding = ResponseForwarding(
            flush_interval=config[prefix + ".responseforwarding.flushinterval"]
        )


def router_tls(service: Service, prefix: str) -> Optional[RouterTLSConfig]:
    """Return the TLS settings of a router, or None when TLS is not in use."""
    config = service.config
    enabled = config.get(prefix + ".tls") == "true"
    cert_resolver = config.get(prefix + ".tls.certresolver")
    domains = config.get(prefix + ".tls.domains")
    options = config.get(prefix + ".tls.options")

    if not enabled and cert_resolver is None and domains is None and options is None:
        return None

    tls = RouterTLSConfig()
    if cert_resolver is not None:
        tls.cert_resolver = cert_resolver
    if options is not None:
        tls.options = options
    if domains is not None:
        tls.domains = [Domain(main=domain) for domain in domains.split(",")]
    return tls


def service_url(service: Service, service_name: str, node_name: str) -> str:
    """Return the backend URL traefik should forward a service's traffic to."""
    prefix = f"traefik.http.services.{service_name}.loadbalancer.server"
    config = service.config

    if prefix + ".url" in config:
        return config[prefix + ".url"]

    protocol = "http"
    port = "80"
    if config.get(prefix + ".scheme") == "https":
        protocol = "https"
        port = "443"

    port = config.get(prefix + ".port", port)

    if prefix + ".ip" in config:
        return f"{protocol}://{config[prefix + '.ip']}:{port}"

    for ip in service.ips:
        if ip.address:
            return f"{protocol}://{ip.address}:{port}"

    url = f"{protocol}://{service.name}.{node_name}:{port}"
    logger.info(
        "No IPs found, using hostname URL %s for service %s (ID: %d)",
        url,
        service.name,
        service.id,
    )
    return url


def router_rule(service: Service, router_name: str) -> str:
    """Return the rule of a router, defaulting to a Host rule on the service name."""
    return service.config.get(
        f"traefik.http.routers.{router_name}.rule", f"Host(`{service.name}`)"
    )


def string_to_int(text: str) -> int:
    """Read a leading decimal integer; raise ValueError if there is none."""
    match = _INT_PATTERN.match(text)
    if match is None:
        raise ValueError(f"cannot convert {text!r} to int")
    value = int(match.group(1))
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"integer overflow: {text!r}")
    return value


def string_to_bool(text: str) -> bool:
    """Interpret true/false, 1/0, yes/no, on/off in any case."""
    word = text.lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ValueError(f"cannot convert {text} to bool")


def is_bool_label_enabled(labels: Mapping[str, str], label: str) -> bool:
    """True only when the label is present and exactly "true"."""
    return labels.get(label) == "true"