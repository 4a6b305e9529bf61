"""Fan speed and duty readings through hwmon files."""

from __future__ import annotations

import abc
import re
from typing import Dict, Mapping

_INTEGER = re.compile(r"[+-]?[0-9]+")
_READ_LIMIT = 128


class FanPlatform(abc.ABC):
    """Board specific locations of fan hwmon files."""

    @abc.abstractmethod
    def pwm_map(self) -> Mapping[int, str]:
        """Map fan numbers to their PWM duty files."""

    @abc.abstractmethod
    def fan_map(self) -> Mapping[int, str]:
        """Map fan numbers to their tachometer files."""


def _read_hwmon(files: Mapping[int, str], fan: int) -> int:
    try:
        path = files[fan]
    except KeyError:
        raise LookupError(f"No such fan {fan}") from None
    with open(path, "rb") as f:
        text = f.read(_READ_LIMIT).decode("ascii", errors="replace").strip("\n")
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"invalid hwmon value {text!r} in {path}")
    return int(text)


class FanSystem:
    """The fans of the system."""

    def __init__(self, fan_map: Mapping[int, str], pwm_map: Mapping[int, str]) -> None:
        self._fan_map: Dict[int, str] = dict(fan_map)
        self._pwm_map: Dict[int, str] = dict(pwm_map)

    def read_fan_rpm(self, fan: int) -> int:
        return _read_hwmon(self._fan_map, fan)

    def fan_count(self) -> int:
        return len(self._fan_map)

    def read_fan_percentage(self, fan: int) -> int:
        """Read the PWM duty of a fan as a whole percentage."""
        value = _read_hwmon(self._pwm_map, fan)
        return int(value * 100.0 / 255.0)


def start_fan(platform: FanPlatform) -> FanSystem:
    return FanSystem(platform.fan_map(), platform.pwm_map())