"""Aurora Serverless scaling configuration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import IntEnum
from typing import Any, Optional

from aurora_serverless.errors import ConfigurationError

# The provider never pauses a cluster later than one day after it goes idle.
MAX_AUTO_PAUSE = timedelta(days=1)


class AuroraCapacityUnit(IntEnum):
    """Aurora capacity units (ACUs): processing + memory steps."""

    ACU_1 = 1
    ACU_2 = 2
    ACU_8 = 8
    ACU_16 = 16
    ACU_32 = 32
    ACU_64 = 64
    ACU_128 = 128
    ACU_192 = 192
    ACU_256 = 256
    ACU_384 = 384


@dataclass(frozen=True)
class ServerlessScalingOptions:
    """Capacity range and auto-pause for a serverless cluster.

    Attributes:
        min_capacity: Lower capacity bound; provider default when unset.
        max_capacity: Upper capacity bound; provider default when unset.
        auto_pause: Idle time before the cluster pauses.  ``timedelta(0)``
            disables pausing; unset keeps the provider's default (5 minutes).
    """

    min_capacity: Optional[int] = None
    max_capacity: Optional[int] = None
    auto_pause: Optional[timedelta] = None


def _capacity(value: Optional[int], name: str) -> Optional[int]:
    if value is None:
        return None
    allowed = ", ".join(str(int(u)) for u in AuroraCapacityUnit)
    # bool is an int subclass and 2.0 == 2; neither is a capacity unit.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(
            f"{name} must be one of {allowed}, got {value!r}"
        )
    try:
        return int(AuroraCapacityUnit(value))
    except ValueError:
        raise ConfigurationError(
            f"{name} must be one of {allowed}, got {value}"
        ) from None


def _auto_pause_seconds(auto_pause: timedelta) -> int:
    seconds = auto_pause.total_seconds()
    if seconds != int(seconds):
        raise ConfigurationError(
            f"auto_pause must be a whole number of seconds, got {seconds}"
        )
    if seconds < 0 or auto_pause > MAX_AUTO_PAUSE:
        raise ConfigurationError(
            f"auto_pause must be between 0 and {int(MAX_AUTO_PAUSE.total_seconds())} "
            f"seconds, got {int(seconds)}"
        )
    return int(seconds)


def render_scaling_configuration(options: ServerlessScalingOptions) -> dict[str, Any]:
    """Render ``options`` as a CloudFormation ``ScalingConfiguration``.

    A zero auto-pause renders as ``AutoPause: false`` without a seconds
    value; anything else (including unset) renders ``AutoPause: true``.
    Unset capacities are left out so the provider picks them.

    Raises:
        ConfigurationError: For capacities outside the ACU set, a minimum
            above the maximum, or an out-of-range auto-pause.
    """
    min_capacity = _capacity(options.min_capacity, "min_capacity")
    max_capacity = _capacity(options.max_capacity, "max_capacity")

    if min_capacity is not None and max_capacity is not None and min_capacity > max_capacity:
        raise ConfigurationError(
            "maximum capacity must be greater than or equal to minimum capacity."
        )

    rendered: dict[str, Any] = {"AutoPause": True}
    if options.auto_pause is not None:
        seconds = _auto_pause_seconds(options.auto_pause)
        if seconds == 0:
            rendered["AutoPause"] = False
        else:
            rendered["SecondsUntilAutoPause"] = seconds
    if min_capacity is not None:
        rendered["MinCapacity"] = min_capacity
    if max_capacity is not None:
        rendered["MaxCapacity"] = max_capacity
    return rendered
