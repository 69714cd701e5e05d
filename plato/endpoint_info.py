"""Endpoint description published to service discovery."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional, Union


def _dump(value: Any, **kwargs: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False, **kwargs)


@dataclass
class EndpointInfo:
    """An endpoint's address and free-form metadata."""

    ip: str = ""
    port: str = ""
    metadata: Optional[dict[str, Any]] = None

    def marshal(self) -> str:
        """Compact JSON with keys ``ip``, ``port`` and ``meta``."""
        return "{" + ",".join(
            (
                '"ip":' + _dump(self.ip),
                '"port":' + _dump(self.port),
                '"meta":' + _dump(self.metadata, sort_keys=True),
            )
        ) + "}"

    @classmethod
    def unmarshal(cls, data: Union[str, bytes]) -> "EndpointInfo":
        """Parse JSON produced by :meth:`marshal`; raise ValueError if malformed."""
        obj = json.loads(data)
        if not isinstance(obj, dict):
            raise ValueError("endpoint info must be a JSON object")
        ip = obj.get("ip")
        port = obj.get("port")
        meta = obj.get("meta")
        for name, value in (("ip", ip), ("port", port)):
            if value is not None and not isinstance(value, str):
                raise ValueError(f"endpoint info field {name} must be a string")
        if meta is not None and not isinstance(meta, dict):
            raise ValueError("endpoint info field meta must be an object")
        return cls(ip=ip or "", port=port or "", metadata=meta)