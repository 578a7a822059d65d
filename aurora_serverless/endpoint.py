"""Network endpoint value type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from aurora_serverless.cfn_template import is_token

# Either a concrete value or a CloudFormation intrinsic that resolves to one.
HostLike = Union[str, dict[str, Any]]
PortLike = Union[int, dict[str, Any]]


@dataclass(frozen=True)
class Endpoint:
    """An (address, port) pair identifying a reachable service instance.

    Before a stack is created ``hostname`` and ``port`` are usually
    ``Fn::GetAtt`` tokens; afterwards they are plain values.
    """

    hostname: HostLike
    port: PortLike

    def __post_init__(self) -> None:
        if not is_token(self.port):
            if isinstance(self.port, bool) or not isinstance(self.port, int):
                raise ValueError(f"Port must be an integer, got {self.port!r}")
            if not 1 <= self.port <= 65535:
                raise ValueError(f"Port must be in range [1-65535], got {self.port}")

    @property
    def resolved(self) -> bool:
        """True once neither part is a pending token."""
        return not is_token(self.hostname) and not is_token(self.port)

    @property
    def socket_address(self) -> HostLike:
        """``host:port``; an ``Fn::Join`` while either part is still a token."""
        if self.resolved:
            return f"{self.hostname}:{self.port}"
        return {"Fn::Join": ["", [self.hostname, ":", self.port]]}
