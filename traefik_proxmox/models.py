"""Data models for the Proxmox API responses and discovered services."""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import chain
from typing import Any, Mapping, Optional

_TRAEFIK_PREFIX = "traefik."
_TRIM_CHARS = '" '
_SEPARATOR = "="


def _fields(data: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return data if data is not None else {}


@dataclass
class ParsedConfig:
    """Configuration of a VM or container; only the description matters."""

    description: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ParsedConfig":
        return cls(description=_fields(data).get("description") or "")

    def traefik_map(self) -> dict[str, str]:
        """Return the ``traefik.*`` key/value pairs found in the description."""
        labels: dict[str, str] = {}
        for line in self.description.split("\n"):
            key, found, value = line.partition(_SEPARATOR)
            if not found:
                continue
            key = key.strip(_TRIM_CHARS)
            value = value.strip(_TRIM_CHARS)
            if key.startswith(_TRAEFIK_PREFIX):
                labels[key] = value
        return labels


@dataclass
class IP:
    """An address reported by the guest agent."""

    address: str = ""
    address_type: str = ""
    prefix: int = 0
    interface: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "IP":
        data = _fields(data)
        return cls(
            address=data.get("ip-address") or "",
            address_type=data.get("ip-address-type") or "",
            prefix=int(data.get("prefix") or 0),
            interface=data.get("interface") or "",
        )


@dataclass
class ParsedAgentInterfaces:
    """Network interfaces as returned by the QEMU guest agent."""

    result: list[list[IP]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ParsedAgentInterfaces":
        entries = _fields(data).get("result") or []
        return cls(
            result=[
                [IP.from_dict(item) for item in (_fields(entry).get("ip-addresses") or [])]
                for entry in entries
            ]
        )

    def ips(self) -> list[IP]:
        """All addresses of all interfaces, in order."""
        return list(chain.from_iterable(self.result))


@dataclass
class Node:
    id: str = ""
    name: str = ""
    status: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Node":
        data = _fields(data)
        return cls(
            id=data.get("id") or "",
            name=data.get("node") or "",
            status=data.get("status") or "",
        )


@dataclass
class NodeStatus:
    node: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "NodeStatus":
        return cls(node=_fields(data).get("node") or "")


@dataclass
class VirtualMachine:
    vmid: int = 0
    name: str = ""
    status: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "VirtualMachine":
        data = _fields(data)
        return cls(
            vmid=int(data.get("vmid") or 0),
            name=data.get("name") or "",
            status=data.get("status") or "",
        )


@dataclass
class Container:
    vmid: int = 0
    name: str = ""
    status: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Container":
        data = _fields(data)
        return cls(
            vmid=int(data.get("vmid") or 0),
            name=data.get("name") or "",
            status=data.get("status") or "",
        )


@dataclass
class Version:
    release: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Version":
        return cls(release=_fields(data).get("release") or "")


@dataclass
class Service:
    """A running VM or container together with its traefik labels."""

    id: int
    name: str
    config: dict[str, str] = field(default_factory=dict)
    ips: list[IP] = field(default_factory=list)