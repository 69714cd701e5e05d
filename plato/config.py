"""Service configuration read from a YAML file, addressed by dotted keys."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

import yaml

_MISSING = object()
_TRUE = {"1", "t", "true"}


def _lookup(node: dict, part: str) -> Any:
    if part in node:
        return node[part]
    lowered = part.lower()
    for key, value in node.items():
        if isinstance(key, str) and key.lower() == lowered:
            return value
    return _MISSING


class Config:
    """Nested configuration mapping; missing values read as zero values."""

    def __init__(self, data: Optional[dict] = None) -> None:
        self._data = dict(data or {})
        self._slot_range: list[int] = []

    @classmethod
    def from_file(cls, path) -> "Config":
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError("configuration root must be a mapping")
        return cls(data)

    def get(self, key: str, default: Any = None) -> Any:
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict):
                return default
            node = _lookup(node, part)
            if node is _MISSING:
                return default
        return node

    def get_int(self, key: str) -> int:
        value = self.get(key)
        if isinstance(value, (bool, int)):
            return int(value)
        if isinstance(value, float):
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                return 0
        return 0

    def get_float(self, key: str) -> float:
        value = self.get(key)
        if isinstance(value, (bool, int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                return 0.0
        return 0.0

    def get_bool(self, key: str) -> bool:
        value = self.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            return value.strip().lower() in _TRUE
        return False

    def get_str(self, key: str) -> str:
        value = self.get(key)
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    def get_list(self, key: str) -> list[str]:
        value = self.get(key)
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        if isinstance(value, str):
            return value.split()
        return [str(value)]

    # global
    def discovery_endpoints(self) -> list[str]:
        return self.get_list("discovery.endpoints")

    def discovery_timeout(self) -> timedelta:
        """Timeout for reaching the discovery cluster; configured in seconds."""
        return timedelta(seconds=self.get_float("discovery.timeout"))

    def ipconf_service_path(self) -> str:
        return self.get_str("ip_conf.service_path")

    def redis_endpoints(self) -> list[str]:
        return self.get_list("cache.redis.endpoints")

    def is_debug(self) -> bool:
        return self.get_str("global.env") == "debug"

    # gateway
    def gateway_max_tcp_num(self) -> int:
        return self.get_int("gateway.tcp_max_num")

    def gateway_epoller_chan_num(self) -> int:
        return self.get_int("gateway.epoll_channel_size")

    def gateway_epoller_num(self) -> int:
        return self.get_int("gateway.epoll_num")

    def gateway_epoll_wait_queue_size(self) -> int:
        return self.get_int("gateway.epoll_wait_queue_size")

    def gateway_tcp_server_port(self) -> int:
        return self.get_int("gateway.tcp_server_port")

    def gateway_rpc_server_port(self) -> int:
        return self.get_int("gateway.rpc_server_port")

    def gateway_worker_pool_num(self) -> int:
        return self.get_int("gateway.worker_pool_num")

    def gateway_cmd_channel_num(self) -> int:
        return self.get_int("gateway.cmd_channel_num")

    def gateway_service_addr(self) -> str:
        return self.get_str("gateway.service_addr")

    def gateway_service_name(self) -> str:
        return self.get_str("gateway.service_name")

    def gateway_rpc_weight(self) -> int:
        return self.get_int("gateway.weight")

    def gateway_state_server_endpoint(self) -> str:
        return self.get_str("gateway.state_server_endpoint")

    # state
    def state_cmd_channel_num(self) -> int:
        return self.get_int("state.cmd_channel_num")

    def state_service_addr(self) -> str:
        return self.get_str("state.servide_addr")

    def state_service_name(self) -> str:
        return self.get_str("state.service_name")

    def state_server_port(self) -> int:
        return self.get_int("state.server_port")

    def state_rpc_weight(self) -> int:
        return self.get_int("state.weight")

    def state_login_slot_range(self) -> list[int]:
        """Login slots from the inclusive ``"left,right"`` range setting."""
        if self._slot_range:
            return list(self._slot_range)
        text = self.get_str("state.conn_state_slot_range")
        parts = text.split(",")
        if len(parts) < 2:
            raise ValueError(f"invalid slot range: {text!r}")
        left, right = int(parts[0]), int(parts[1])
        if right < left - 1:
            raise ValueError(f"invalid slot range: {text!r}")
        self._slot_range = list(range(left, right + 1))
        return list(self._slot_range)

    def state_gateway_server_endpoint(self) -> str:
        return self.get_str("state.gateway_server_endpoint")

    # rpc framework
    def discov_name(self) -> str:
        return self.get_str("prpc.discov.name")

    def discov_endpoints(self) -> list[str]:
        return self.get_list("discovery.endpoints")

    def trace_enable(self) -> bool:
        return self.get_bool("prpc.trace.enable")

    def trace_collection_url(self) -> str:
        return self.get_str("prpc.trace.url")

    def trace_service_name(self) -> str:
        return self.get_str("prpc.trace.service_name")

    def trace_sampler(self) -> float:
        return self.get_float("prpc.trace.sampler")


_current: Optional[Config] = None


def init(path) -> Config:
    """Load the process-wide configuration from ``path``."""
    global _current
    _current = Config.from_file(path)
    return _current


def current() -> Config:
    """The process-wide configuration."""
    if _current is None:
        raise RuntimeError("configuration is not initialised")
    return _current