"""GPIO access through the Linux GPIO character device."""

from __future__ import annotations

import fcntl
import logging
import os
import struct
from dataclasses import dataclass
from typing import List, Optional, Sequence

log = logging.getLogger(__name__)

GPIO_GET_CHIPINFO_IOCTL = 0x8044B401
GPIO_GET_LINEINFO_IOCTL = 0xC048B402
GPIO_GET_LINEHANDLE_IOCTL = 0xC16CB403
GPIO_GET_LINEEVENT_IOCTL = 0xC030B404
GPIOHANDLE_SET_LINE_VALUES_IOCTL = 0xC040B409
GPIOHANDLE_GET_LINE_VALUES_IOCTL = 0xC040B408

GPIOHANDLE_REQUEST_INPUT = 1 << 0
GPIOHANDLE_REQUEST_OUTPUT = 1 << 1
GPIOHANDLE_REQUEST_ACTIVE_LOW = 1 << 2
GPIOHANDLE_REQUEST_OPEN_DRAIN = 1 << 3
GPIOHANDLE_REQUEST_OPEN_SOURCE = 1 << 4

GPIOEVENT_REQUEST_RISING_EDGE = 1 << 0
GPIOEVENT_REQUEST_FALLING_EDGE = 1 << 1
GPIOEVENT_REQUEST_BOTH_EDGES = (
    GPIOEVENT_REQUEST_RISING_EDGE | GPIOEVENT_REQUEST_FALLING_EDGE
)

GPIOEVENT_EVENT_RISING_EDGE = 1
GPIOEVENT_EVENT_FALLING_EDGE = 2
GPIOEVENT_EVENT_UNKNOWN = 0

MAX_LINES = 64
CONSUMER_LABEL = b"u-bmc"

# lineoffsets[64], flags, default_values[64], consumer_label[32], lines, fd
_HANDLE_REQUEST = struct.Struct(f"<{MAX_LINES * 4}sI{MAX_LINES}s32sII")
# lineoffset, handleflags, eventflags, consumer_label[32], fd
_EVENT_REQUEST = struct.Struct("<III32sI")
# timestamp, id, padding to 16 bytes
_EVENT_DATA = struct.Struct("<QII")
_LINE_OFFSETS = struct.Struct(f"<{MAX_LINES}I")


def _ioctl(fd: int, request: int, buf: bytearray, name: str) -> None:
    try:
        fcntl.ioctl(fd, request, buf, True)
    except OSError as err:
        raise OSError(err.errno, f"{name}: {err.strerror}") from err


def _line_values(values: Sequence[bool]) -> bytearray:
    if len(values) > MAX_LINES:
        raise ValueError(f"too many GPIO lines: {len(values)} > {MAX_LINES}")
    return bytearray(bytes(1 if v else 0 for v in values).ljust(MAX_LINES, b"\0"))


@dataclass(frozen=True)
class GpioEventData:
    """One event record read from a line event file descriptor."""

    timestamp: int
    id: int

    SIZE = _EVENT_DATA.size

    @classmethod
    def decode(cls, data: bytes) -> "GpioEventData":
        """Decode a 16-byte kernel event record."""
        if len(data) < _EVENT_DATA.size:
            raise ValueError(
                f"event record too short: {len(data)} < {_EVENT_DATA.size}"
            )
        timestamp, event_id, _ = _EVENT_DATA.unpack_from(data)
        return cls(timestamp, event_id)


class _LinuxGpioLine:
    """A handle on one or more requested lines."""

    def __init__(self, fd: int) -> None:
        self._fd = fd

    def set_values(self, values: Sequence[bool]) -> None:
        buf = _line_values(values)
        _ioctl(self._fd, GPIOHANDLE_SET_LINE_VALUES_IOCTL, buf,
               "GPIOHANDLE_SET_LINE_VALUES_IOCTL")

    def close(self) -> None:
        if self._fd >= 0:
            os.close(self._fd)
            self._fd = -1

    def __enter__(self) -> "_LinuxGpioLine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class _LinuxGpioEvent:
    """A file descriptor delivering edge events of one line."""

    def __init__(self, fd: int) -> None:
        self._fd = fd

    def get_value(self) -> bool:
        buf = bytearray(MAX_LINES)
        _ioctl(self._fd, GPIOHANDLE_GET_LINE_VALUES_IOCTL, buf,
               "GPIOHANDLE_GET_LINE_VALUES_IOCTL")
        return buf[0] != 0

    def read(self) -> Optional[int]:
        """Wait for an event: 1 rising, 2 falling, 0 unknown, None at EOF."""
        data = b""
        while len(data) < GpioEventData.SIZE:
            chunk = os.read(self._fd, GpioEventData.SIZE - len(data))
            if not chunk:
                if not data:
                    return None
                raise OSError("readEvent: unexpected end of event record")
            data += chunk
        event = GpioEventData.decode(data)
        if event.id in (GPIOEVENT_EVENT_RISING_EDGE, GPIOEVENT_EVENT_FALLING_EDGE):
            return event.id
        log.warning("unknown GPIO event: %r", event)
        return GPIOEVENT_EVENT_UNKNOWN

    def close(self) -> None:
        if self._fd >= 0:
            os.close(self._fd)
            self._fd = -1


class LinuxGpio:
    """A GPIO chip character device such as /dev/gpiochip0."""

    def __init__(self, chip: str = "/dev/gpiochip0") -> None:
        self._fd = os.open(chip, os.O_RDWR)

    def _require_open(self) -> int:
        if self._fd < 0:
            raise ValueError("GPIO chip is closed")
        return self._fd

    def request_line_handle(
        self, lines: Sequence[int], out: Sequence[bool]
    ) -> _LinuxGpioLine:
        """Request lines, as outputs with default values if out is not empty."""
        lines = list(lines)
        out = list(out)
        if len(lines) > MAX_LINES:
            raise ValueError(f"too many GPIO lines: {len(lines)} > {MAX_LINES}")
        defaults = _line_values(out)
        try:
            offsets = _LINE_OFFSETS.pack(*lines, *([0] * (MAX_LINES - len(lines))))
        except struct.error as err:
            raise ValueError(f"invalid GPIO line offset: {err}") from err
        flags = GPIOHANDLE_REQUEST_OUTPUT if out else GPIOHANDLE_REQUEST_INPUT
        buf = bytearray(
            _HANDLE_REQUEST.pack(
                offsets, flags, bytes(defaults), CONSUMER_LABEL, len(lines), 0
            )
        )
        _ioctl(self._require_open(), GPIO_GET_LINEHANDLE_IOCTL, buf,
               "GPIO_GET_LINEHANDLE_IOCTL")
        return _LinuxGpioLine(_HANDLE_REQUEST.unpack(buf)[-1])

    def get_line_event(self, line: int) -> _LinuxGpioEvent:
        """Request edge events on both edges of a line."""
        buf = bytearray(
            _EVENT_REQUEST.pack(
                line,
                GPIOHANDLE_REQUEST_INPUT,
                GPIOEVENT_REQUEST_BOTH_EDGES,
                b"",
                0,
            )
        )
        _ioctl(self._require_open(), GPIO_GET_LINEEVENT_IOCTL, buf,
               "GPIO_GET_LINEEVENT_IOCTL")
        return _LinuxGpioEvent(_EVENT_REQUEST.unpack(buf)[-1])

    def close(self) -> None:
        if self._fd >= 0:
            os.close(self._fd)
            self._fd = -1

    def __enter__(self) -> "LinuxGpio":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()