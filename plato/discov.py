"""Service registry model and the interface of a discovery backend."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

Json = Union[str, bytes, bytearray]


def _load_object(data: Json) -> dict[str, Any]:
    obj = json.loads(data)
    if not isinstance(obj, dict):
        raise ValueError("expected a JSON object")
    return {k.lower(): v for k, v in obj.items() if isinstance(k, str)}


def _typed(obj: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = obj.get(key)
    if value is None:
        return default
    if kind is int and (isinstance(value, bool) or not isinstance(value, int)):
        raise ValueError(f"field {key} must be an integer")
    if kind is not int and not isinstance(value, kind):
        raise ValueError(f"field {key} must be of type {kind.__name__}")
    return value


@dataclass
class Endpoint:
    """One serving instance of a service."""

    server_name: str = ""
    ip: str = ""
    port: int = 0
    weight: int = 0
    enable: bool = False

    def _as_dict(self) -> dict[str, Any]:
        return {
            "server_name": self.server_name,
            "ip": self.ip,
            "port": self.port,
            "weight": self.weight,
            "enable": self.enable,
        }

    def to_json(self) -> str:
        return json.dumps(self._as_dict(), separators=(",", ":"))

    @classmethod
    def _from_obj(cls, obj: dict[str, Any]) -> "Endpoint":
        return cls(
            server_name=_typed(obj, "server_name", str, ""),
            ip=_typed(obj, "ip", str, ""),
            port=_typed(obj, "port", int, 0),
            weight=_typed(obj, "weight", int, 0),
            enable=_typed(obj, "enable", bool, False),
        )

    @classmethod
    def from_json(cls, data: Json) -> "Endpoint":
        """Parse an endpoint; missing fields take their zero value. Raises ValueError."""
        return cls._from_obj(_load_object(data))


@dataclass
class Service:
    """A named service and its endpoints."""

    name: str = ""
    endpoints: list[Endpoint] = field(default_factory=list)

    def to_json(self) -> str:
        body = {"name": self.name, "endpoints": [ep._as_dict() for ep in self.endpoints]}
        return json.dumps(body, separators=(",", ":"))

    @classmethod
    def from_json(cls, data: Json) -> "Service":
        """Parse a service; raises ValueError on malformed input."""
        obj = _load_object(data)
        raw = _typed(obj, "endpoints", list, [])
        endpoints = []
        for item in raw:
            if not isinstance(item, dict):
                raise ValueError("endpoint must be a JSON object")
            endpoints.append(Endpoint._from_obj({k.lower(): v for k, v in item.items()}))
        return cls(name=_typed(obj, "name", str, ""), endpoints=endpoints)


class Discovery(ABC):
    """A service discovery backend."""

    @abstractmethod
    def name(self) -> str:
        """Name of the backend, such as ``etcd``."""

    @abstractmethod
    def register(self, service: Service) -> None:
        """Announce the endpoints of ``service``."""

    @abstractmethod
    def unregister(self, service: Service) -> None:
        """Withdraw the endpoints of ``service``."""

    @abstractmethod
    def get_service(self, name: str) -> Optional[Service]:
        """The known endpoints of the service called ``name``."""

    @abstractmethod
    def add_listener(self, listener: Callable[[], None]) -> None:
        """Call ``listener`` whenever the known services change."""

    @abstractmethod
    def notify_listeners(self) -> None:
        """Call every registered listener."""