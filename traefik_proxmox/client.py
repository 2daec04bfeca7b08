"""HTTP client for the Proxmox VE API."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import requests

from traefik_proxmox.models import (
    Container,
    NodeStatus,
    ParsedAgentInterfaces,
    ParsedConfig,
    Version,
    VirtualMachine,
)

LOG_LEVEL_INFO = "info"
LOG_LEVEL_DEBUG = "debug"

REQUEST_TIMEOUT = 30.0

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A request to the Proxmox API failed."""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body


class ProxmoxClient:
    """Client for the Proxmox API authenticated with an API token."""

    def __init__(
        self,
        api_endpoint: str,
        token_id: str,
        token: str,
        validate_ssl: bool = True,
        log_level: str = LOG_LEVEL_INFO,
    ):
        self.base_url = f"{api_endpoint}/api2/json"
        self.token_id = token_id
        self.token = token
        self.validate_ssl = validate_ssl
        self.log_level = log_level
        self._session = requests.Session()
        self._session.verify = validate_ssl
        if self._debug:
            logger.info("Creating new Proxmox client with base URL: %s", self.base_url)

    @property
    def _debug(self) -> bool:
        return self.log_level == LOG_LEVEL_DEBUG

    def request(self, method: str, path: str, body: Any = None) -> Any:
        """Send a request and return the decoded JSON response."""
        url = self.base_url + path
        if self._debug:
            logger.info("API Request: %s %s", method, url)

        headers = {
            "Authorization": f"PVEAPIToken={self.token_id}={self.token}",
            "Accept": "application/json",
        }
        data = None
        if body is not None:
            try:
                data = json.dumps(body)
            except (TypeError, ValueError) as exc:
                raise ApiError(f"failed to marshal request body: {exc}") from exc
            headers["Content-Type"] = "application/json"

        try:
            response = self._session.request(
                method, url, data=data, headers=headers, timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as exc:
            raise ApiError(f"failed to execute request: {exc}") from exc

        with response:
            text = response.text
            if not 200 <= response.status_code < 300:
                raise ApiError(
                    f"API request failed with status {response.status_code}: {text}",
                    status=response.status_code,
                    body=text,
                )
            if self._debug:
                logger.info("API Response: %s", text)
            try:
                return json.loads(text)
            except ValueError as exc:
                raise ApiError(f"failed to unmarshal response: {exc}", body=text) from exc

    def get(self, path: str) -> Any:
        """Send a GET request and return the decoded JSON response."""
        return self.request("GET", path)

    def _data(self, path: str) -> Any:
        payload = self.get(path)
        if not isinstance(payload, dict):
            return None
        return payload.get("data")

    def version(self) -> Version:
        return Version.from_dict(self._data("/version"))

    def nodes(self) -> list[NodeStatus]:
        return [NodeStatus.from_dict(item) for item in self._data("/nodes") or []]

    def virtual_machines(self, node_name: str) -> list[VirtualMachine]:
        items = self._data(f"/nodes/{node_name}/qemu") or []
        return [VirtualMachine.from_dict(item) for item in items]

    def containers(self, node_name: str) -> list[Container]:
        items = self._data(f"/nodes/{node_name}/lxc") or []
        return [Container.from_dict(item) for item in items]

    def vm_config(self, node_name: str, vm_id: int) -> ParsedConfig:
        return ParsedConfig.from_dict(self._data(f"/nodes/{node_name}/qemu/{vm_id}/config"))

    def container_config(self, node_name: str, vm_id: int) -> ParsedConfig:
        return ParsedConfig.from_dict(self._data(f"/nodes/{node_name}/lxc/{vm_id}/config"))

    def vm_network_interfaces(self, node_name: str, vm_id: int) -> ParsedAgentInterfaces:
        return ParsedAgentInterfaces.from_dict(
            self._data(f"/nodes/{node_name}/qemu/{vm_id}/agent/network-get-interfaces")
        )