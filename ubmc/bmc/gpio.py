"""GPIO monitoring, line hogging and button control for the BMC."""

from __future__ import annotations

import abc
import enum
import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    Hashable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
)

from ubmc.bmc.gpio_linux import LinuxGpio

log = logging.getLogger(__name__)

GPIO_INVERTED = 0x1
MAX_HOG_LINES = 64
MAX_PRESS_MS = 10 * 1000


class GpioEvent(enum.IntEnum):
    """An edge event reported on a monitored line."""

    UNKNOWN = 0
    RISING_EDGE = 1
    FALLING_EDGE = 2


GpioCallback = Callable[[str, Iterator[bool], bool], None]


class GpioPlatform(abc.ABC):
    """Board specific naming and set-up of GPIO lines."""

    @abc.abstractmethod
    def gpio_name_to_port(self, name: str) -> Optional[int]:
        """Return the line index of a named line, or None."""

    @abc.abstractmethod
    def gpio_port_to_name(self, port: int) -> Optional[str]:
        """Return the name of a line index, or None."""

    @abc.abstractmethod
    def initialize_gpio(self, system: "GpioSystem") -> None:
        """Set up monitors, hogs and buttons on a new GPIO system."""


@dataclass
class _Press:
    duration: float
    done: threading.Event = field(default_factory=threading.Event)


_END = object()


def _drain(values: "queue.Queue[Any]") -> Iterator[bool]:
    while True:
        value = values.get()
        if value is _END:
            return
        yield value


def log_gpio(line: str, values: Iterator[bool], initial: bool) -> None:
    """A monitor callback that logs every edge of a line."""
    log.info("Monitoring GPIO line %-30s [initial value %s]", line, initial)
    for value in values:
        log.info("%s: %s", line, "rising edge" if value else "falling edge")


class GpioSystem:
    """GPIO lines of a platform, driven through a GPIO implementation."""

    def __init__(self, platform: GpioPlatform, impl: Any) -> None:
        self._platform = platform
        self._impl = impl
        self._buttons: Dict[Hashable, "queue.Queue[_Press]"] = {}
        self._lock = threading.Lock()
        self._hogs: List[Any] = []

    def _resolve(self, line: str) -> int:
        port = self._platform.gpio_name_to_port(line)
        if port is None:
            raise LookupError(f"Could not resolve GPIO {line}")
        return port

    def _monitor_one(self, line: str, callback: GpioCallback) -> None:
        port = self._resolve(line)
        event = self._impl.get_line_event(port)
        initial = event.get_value()
        values: "queue.Queue[Any]" = queue.Queue()
        consumer = threading.Thread(
            target=callback, args=(line, _drain(values), initial), daemon=True
        )
        consumer.start()
        try:
            while True:
                raw = event.read()
                if raw is None:
                    break
                try:
                    kind = GpioEvent(raw)
                except ValueError:
                    kind = GpioEvent.UNKNOWN
                if kind is GpioEvent.FALLING_EDGE:
                    values.put(False)
                elif kind is GpioEvent.RISING_EDGE:
                    values.put(True)
                else:
                    log.warning("Received unknown event on GPIO line %s: %r", line, raw)
        finally:
            values.put(_END)
        log.info("Monitoring stopped for GPIO line %s", line)

    def _run_monitor(self, line: str, callback: GpioCallback) -> None:
        try:
            self._monitor_one(line, callback)
        except Exception as err:  # a failed monitor must not stop the others
            log.error("Monitor %s failed: %s", line, err)

    def monitor(self, lines: Mapping[str, GpioCallback]) -> List[threading.Thread]:
        """Start a background monitor per line; return the monitor threads."""
        log.info("Setting up %d GPIO monitors", len(lines))
        threads = []
        for line, callback in lines.items():
            log.info("Starting monitor for GPIO %s", line)
            thread = threading.Thread(
                target=self._run_monitor,
                args=(line, callback),
                name=f"gpio-monitor-{line}",
                daemon=True,
            )
            thread.start()
            threads.append(thread)
        return threads

    def hog(self, lines: Mapping[str, bool]) -> None:
        """Hold named lines as outputs at fixed values."""
        if len(lines) > MAX_HOG_LINES:
            log.error("Too many GPIO lines to hog: %d > %d", len(lines), MAX_HOG_LINES)
            return
        ports: List[int] = []
        values: List[bool] = []
        for name, value in lines.items():
            port = self._platform.gpio_name_to_port(name)
            if port is None:
                log.error("Could not resolve GPIO %s", name)
                return
            ports.append(port)
            values.append(bool(value))
            log.info("Hogging GPIO line %-30s = %s", name, value)
        try:
            handle = self._impl.request_line_handle(ports, values)
        except Exception as err:
            log.error("Hog failed: %s", err)
            return
        self._hogs.append(handle)

    def button(self, button: Hashable) -> "queue.Queue[_Press]":
        """Return the queue of pending presses of a button, creating it."""
        with self._lock:
            return self._buttons.setdefault(button, queue.Queue())

    def press_button(self, button: Hashable, duration_ms: int) -> threading.Event:
        """Queue a press of a button; the returned event is set once released."""
        if duration_ms > MAX_PRESS_MS:
            raise ValueError("Maximum allowed depress duration is 10 seconds")
        if duration_ms < 0:
            raise ValueError("Depress duration must not be negative")
        with self._lock:
            presses = self._buttons.get(button)
        if presses is None:
            raise LookupError(f"Unknown button {button!r}")
        press = _Press(duration_ms / 1000.0)
        presses.put(press)
        return press.done

    @staticmethod
    def _drive(handle: Any, line: str, pressed: bool, flags: int) -> None:
        log.info("%s button %s", "Pressing" if pressed else "Releasing", line)
        value = not pressed if flags & GPIO_INVERTED else pressed
        try:
            handle.set_values([value])
        except Exception as err:
            log.error("Setting button %s failed: %s", line, err)

    def manage_button(self, line: str, button: Hashable, flags: int) -> None:
        """Drive a button line from its press queue; runs until the process ends."""
        port = self._platform.gpio_name_to_port(line)
        if port is None:
            log.error("Could not resolve GPIO %s", line)
            return
        try:
            handle = self._impl.request_line_handle([port], [True])
        except Exception as err:
            log.error("ManageButton %s failed: %s", line, err)
            return
        presses = self.button(button)
        log.info("Initialized button %s", line)
        while True:
            press = presses.get()
            self._drive(handle, line, True, flags)
            time.sleep(press.duration)
            self._drive(handle, line, False, flags)
            press.done.set()


class _Rendezvous:
    """An unbuffered channel: a value passes only to a waiting receiver."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._waiting = 0
        self._items: Deque[bool] = deque()

    def _has_free_receiver(self) -> bool:
        return self._waiting > len(self._items)

    def try_send(self, value: bool) -> bool:
        with self._cond:
            if not self._has_free_receiver():
                return False
            self._items.append(value)
            self._cond.notify_all()
            return True

    def send(self, value: bool) -> None:
        with self._cond:
            self._cond.wait_for(self._has_free_receiver)
            self._items.append(value)
            self._cond.notify_all()

    def receive(self) -> bool:
        with self._cond:
            self._waiting += 1
            self._cond.notify_all()
            self._cond.wait_for(lambda: bool(self._items))
            value = self._items.popleft()
            self._waiting -= 1
            self._cond.notify_all()
            return value


class _FakeGpioLine:
    def __init__(self, gpio: "FakeGpio", lines: Sequence[int]) -> None:
        self._gpio = gpio
        self._lines = list(lines)

    def set_values(self, values: Sequence[bool]) -> None:
        gpio = self._gpio
        with gpio._lock:
            for port, value in zip(self._lines, values):
                gpio._values[port] = value
                name = gpio._platform.gpio_port_to_name(port)
                log.info("FakeGpio: System set port %s to %s", name, value)
                channel = gpio._ports.get(port)
                if channel is not None:
                    channel.try_send(value)


class _FakeGpioEvent:
    def __init__(self, gpio: "FakeGpio", line: int) -> None:
        self._gpio = gpio
        self._line = line

    def get_value(self) -> bool:
        with self._gpio._lock:
            return self._gpio._values.get(self._line, False)

    def read(self) -> int:
        with self._gpio._lock:
            channel = self._gpio._ports[self._line]
        if channel.receive():
            return GpioEvent.RISING_EDGE
        return GpioEvent.FALLING_EDGE


class FakeGpio:
    """An in-memory GPIO implementation driven by a test harness."""

    def __init__(self, platform: GpioPlatform, startup_state: Mapping[int, bool]) -> None:
        self._platform = platform
        self._lock = threading.Lock()
        self._ports: Dict[int, _Rendezvous] = {p: _Rendezvous() for p in startup_state}
        self._values: Dict[int, bool] = dict(startup_state)

    def set(self, port: int, value: bool) -> None:
        """Change a line from outside; blocks until something reads the change."""
        with self._lock:
            channel = self._ports[port]
            name = self._platform.gpio_port_to_name(port)
            log.info("FakeGpio: Test harness set port %s to %s", name, value)
            self._values[port] = value
        channel.send(value)

    def current(self, port: int) -> bool:
        with self._lock:
            return self._values.get(port, False)

    def wait_for_change(self, port: int) -> bool:
        """Block until the system sets the line, and return the new value."""
        with self._lock:
            channel = self._ports[port]
        return channel.receive()

    def request_line_handle(self, lines: Sequence[int], out: Sequence[bool]) -> _FakeGpioLine:
        return _FakeGpioLine(self, lines)

    def get_line_event(self, line: int) -> _FakeGpioEvent:
        return _FakeGpioEvent(self, line)


def start_gpio(platform: GpioPlatform, chip: str = "/dev/gpiochip0") -> GpioSystem:
    """Open the GPIO chip and let the platform set up its lines."""
    impl = LinuxGpio(chip)
    system = GpioSystem(platform, impl)
    try:
        platform.initialize_gpio(system)
    except Exception as err:
        impl.close()
        raise RuntimeError(f"platform initialize_gpio: {err}") from err
    return system