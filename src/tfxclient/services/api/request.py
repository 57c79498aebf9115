from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal, Mapping

from tfxclient.config.const import DEFAULT_MAX_429_RETRIES, DEFAULT_MAX_NETWORK_RETRIES

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]
_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


@dataclass(frozen=True, slots=True)
class LogicalRequest:
    """One network intent. Built by callers and never mutated by the client."""

    url: str
    method: HttpMethod = "GET"
    body: Any | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    skip_auth: bool = False
    skip_app_identity: bool = False
    max_network_retries: int = DEFAULT_MAX_NETWORK_RETRIES
    max_429_retries: int = DEFAULT_MAX_429_RETRIES

    def __post_init__(self) -> None:
        method = str(self.method).upper()
        if method not in _METHODS:
            raise ValueError(f"unsupported HTTP method: {self.method}")
        object.__setattr__(self, "method", method)
        object.__setattr__(self, "headers", MappingProxyType({str(k): str(v) for k, v in dict(self.headers).items()}))
        if self.max_network_retries < 0 or self.max_429_retries < 0:
            raise ValueError("retry budgets must be non-negative")

    @property
    def sends_body(self) -> bool:
        return self.body is not None and self.method != "GET"


__all__ = ["HttpMethod", "LogicalRequest"]
