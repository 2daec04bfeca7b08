import threading
from datetime import timedelta

import pytest
import requests
import responses

from traefik_proxmox.client import ApiError
from traefik_proxmox.models import (
    IP,
    Container,
    NodeStatus,
    ParsedAgentInterfaces,
    ParsedConfig,
    Service,
    Version,
    VirtualMachine,
)
from traefik_proxmox.provider import (
    Config,
    ConfigError,
    Provider,
    create_config,
    ips_of_service,
    new_parser_config,
    parse_duration,
    scan_services,
    service_map,
    validate_config,
)

ENDPOINT = "https://proxmox.example.com"
TOKEN_ID = "test@pam!test"


class FakeClient:
    def __init__(self, vms=None, containers=None, configs=None, interfaces=None,
                 nodes=("pve",), failing=()):
        self._vms = vms or {}
        self._containers = containers or {}
        self._configs = configs or {}
        self._interfaces = interfaces or {}
        self._nodes = nodes
        self._failing = set(failing)

    def _check(self, *key):
        if key in self._failing:
            raise ApiError(f"failure {key}")

    def version(self):
        self._check("version")
        return Version(release="8.1")

    def nodes(self):
        self._check("nodes")
        return [NodeStatus(node=name) for name in self._nodes]

    def virtual_machines(self, node_name):
        self._check("vms", node_name)
        return self._vms.get(node_name, [])

    def containers(self, node_name):
        self._check("containers", node_name)
        return self._containers.get(node_name, [])

    def vm_config(self, node_name, vm_id):
        self._check("config", vm_id)
        return ParsedConfig(description=self._configs.get(vm_id, ""))

    def container_config(self, node_name, vm_id):
        self._check("config", vm_id)
        return ParsedConfig(description=self._configs.get(vm_id, ""))

    def vm_network_interfaces(self, node_name, vm_id):
        if vm_id not in self._interfaces:
            raise ApiError("agent not running")
        return ParsedAgentInterfaces(result=[self._interfaces[vm_id]])


def valid_config(**overrides):
    values = dict(
        poll_interval="5s",
        api_endpoint=ENDPOINT,
        api_token_id=TOKEN_ID,
        api_token="token",
        api_validate_ssl="true",
        api_logging="info",
    )
    values.update(overrides)
    return Config(**values)


def eth0_pair(second="10.0.0.2"):
    return [
        IP(address="127.0.0.1", interface="eth0"),
        IP(address="10.0.0.1", interface="eth0"),
        IP(address="192.168.0.9", interface="eth1"),
        IP(address=second, interface="eth0"),
    ]


def test_create_config_defaults():
    config = create_config()
    assert config.poll_interval == "30s"
    assert config.api_validate_ssl == "true"
    assert config.api_logging == "info"


def test_new_fails_when_host_unreachable():
    with responses.RequestsMock():
        with pytest.raises(ApiError):
            Provider(valid_config(), "test-provider")


@pytest.mark.parametrize(
    "config",
    [
        None,
        valid_config(poll_interval=""),
        valid_config(poll_interval="invalid"),
        valid_config(poll_interval="1s"),
    ],
)
def test_new_rejects_bad_config(config):
    with pytest.raises(ConfigError):
        Provider(config, "test-provider", client=FakeClient())


def test_new_with_reachable_api():
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.GET, f"{ENDPOINT}/api2/json/version", json={"data": {"release": "8.1"}}
        )
        provider = Provider(valid_config(api_validate_ssl="false"), "test-provider")
        assert provider.client.base_url == f"{ENDPOINT}/api2/json"
        assert provider.client.validate_ssl is False
        assert provider.poll_interval == timedelta(seconds=5)
        assert rsps.calls[0].request.headers["Authorization"] == (
            f"PVEAPIToken={TOKEN_ID}=token"
        )


def test_new_fails_when_version_fails():
    with pytest.raises(ApiError, match="failed to get Proxmox version"):
        Provider(valid_config(), "p", client=FakeClient(failing=[("version",)]))


@pytest.mark.parametrize(
    "config",
    [
        None,
        valid_config(poll_interval=""),
        valid_config(api_endpoint=""),
        valid_config(api_token_id=""),
        valid_config(api_token=""),
    ],
)
def test_validate_config_errors(config):
    with pytest.raises(ConfigError):
        validate_config(config)


def test_validate_config_valid():
    assert validate_config(valid_config()) is None


def test_new_parser_config_valid():
    config = new_parser_config(ENDPOINT, TOKEN_ID, "token")
    assert config.api_endpoint == ENDPOINT
    assert config.token_id == TOKEN_ID
    assert config.token == "token"
    assert config.log_level == "info"
    assert config.validate_ssl is True


@pytest.mark.parametrize(
    "endpoint, token_id, token",
    [("", TOKEN_ID, "token"), (ENDPOINT, "", "token"), (ENDPOINT, TOKEN_ID, "")],
)
def test_new_parser_config_missing(endpoint, token_id, token):
    with pytest.raises(ConfigError):
        new_parser_config(endpoint, token_id, token)


def test_service_constructor():
    service = Service(
        123,
        "test-service",
        {"traefik.enable": "true", "traefik.http.routers.test.rule": "Host(`test.example.com`)"},
    )
    assert service.id == 123
    assert service.name == "test-service"
    assert len(service.config) == 2
    assert service.ips == []


@pytest.mark.parametrize(
    "text, seconds",
    [
        ("30s", 30),
        ("1h30m", 5400),
        ("1.5s", 1.5),
        ("500ms", 0.5),
        ("-2s", -2),
        ("0", 0),
        ("+1m", 60),
    ],
)
def test_parse_duration(text, seconds):
    assert parse_duration(text).total_seconds() == pytest.approx(seconds)


@pytest.mark.parametrize("text", ["", "invalid", "5", "5x", ".s", "-"])
def test_parse_duration_errors(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_ips_of_service_picks_second_eth0():
    client = FakeClient(interfaces={100: eth0_pair()})
    assert ips_of_service(client, "pve", 100) == [IP(address="10.0.0.2", interface="eth0")]


def test_ips_of_service_needs_two_addresses():
    client = FakeClient(interfaces={100: [IP(address="10.0.0.1", interface="eth0")]})
    with pytest.raises(LookupError):
        ips_of_service(client, "pve", 100)


def test_ips_of_service_agent_error():
    with pytest.raises(ApiError, match="error getting network interfaces"):
        ips_of_service(FakeClient(), "pve", 100)


def test_scan_services_collects_running():
    client = FakeClient(
        vms={"pve": [
            VirtualMachine(vmid=100, name="web", status="running"),
            VirtualMachine(vmid=101, name="off", status="stopped"),
            VirtualMachine(vmid=102, name="broken", status="running"),
        ]},
        containers={"pve": [Container(vmid=200, name="ct", status="running")]},
        configs={100: "traefik.enable=true\nother=1", 200: '"traefik.enable" = "true"'},
        interfaces={100: eth0_pair()},
        failing=[("config", 102)],
    )
    services = scan_services(client, "pve")
    assert [(s.id, s.name) for s in services] == [(100, "web"), (200, "ct")]
    assert services[0].config == {"traefik.enable": "true"}
    assert [ip.address for ip in services[0].ips] == ["10.0.0.2"]
    assert services[1].ips == []
    assert services[1].config == {"traefik.enable": "true"}


def test_scan_services_vm_list_error():
    with pytest.raises(ApiError, match="error scanning VMs on node pve"):
        scan_services(FakeClient(failing=[("vms", "pve")]), "pve")


def test_scan_services_container_list_error():
    with pytest.raises(ApiError, match="error scanning containers on node pve"):
        scan_services(FakeClient(failing=[("containers", "pve")]), "pve")


def test_service_map_skips_failing_nodes():
    client = FakeClient(
        nodes=("a", "b"),
        vms={"a": [VirtualMachine(vmid=1, name="x", status="running")]},
        failing=[("vms", "b")],
    )
    result = service_map(client)
    assert list(result) == ["a"]
    assert [s.id for s in result["a"]] == [1]


def test_service_map_node_error():
    with pytest.raises(ApiError, match="error scanning nodes"):
        service_map(FakeClient(failing=[("nodes",)]))


def _web_client():
    return FakeClient(
        vms={"pve": [VirtualMachine(vmid=100, name="web", status="running")]},
        configs={100: "traefik.enable=true\ntraefik.http.routers.test.rule=Host(`test.example.com`)"},
        interfaces={100: eth0_pair()},
    )


def test_update_configuration_sends_configuration():
    provider = Provider(valid_config(), "p", client=_web_client())
    received = []
    provider.update_configuration(received.append)
    assert len(received) == 1
    configuration = received[0]
    router = configuration.routers["test"]
    assert router.rule == "Host(`test.example.com`)"
    assert router.service == "web-100"
    lb = configuration.services["web-100"].load_balancer
    assert [server.url for server in lb.servers] == ["http://10.0.0.2:80"]


def test_update_configuration_error():
    client = FakeClient()
    provider = Provider(valid_config(), "p", client=client)
    client._failing.add(("nodes",))
    with pytest.raises(ApiError, match="error getting service map"):
        provider.update_configuration(lambda configuration: None)


def test_provide_and_stop():
    provider = Provider(valid_config(), "p", client=_web_client())
    received = []
    arrived = threading.Event()

    def sink(configuration):
        received.append(configuration)
        arrived.set()

    provider.init()
    provider.provide(sink)
    assert arrived.wait(5)
    provider.stop()
    assert not provider.running
    assert "test" in received[0].routers