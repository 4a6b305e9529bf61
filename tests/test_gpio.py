import logging
import queue
import threading
import time

import pytest

from ubmc.bmc.gpio import (
    GPIO_INVERTED,
    FakeGpio,
    GpioPlatform,
    GpioSystem,
    log_gpio,
    start_gpio,
)

POWER = 5
LED = 7


class _Platform(GpioPlatform):
    def __init__(self, names=None, fail=False):
        self._names = dict(names or {"POWER_BUTTON": POWER, "LED": LED})
        self._ports = {v: k for k, v in self._names.items()}
        self._fail = fail
        self.initialized = None

    def gpio_name_to_port(self, name):
        return self._names.get(name)

    def gpio_port_to_name(self, port):
        return self._ports.get(port)

    def initialize_gpio(self, system):
        if self._fail:
            raise OSError("board not ready")
        self.initialized = system


class _RecordingImpl:
    def __init__(self):
        self.requests = []

    def request_line_handle(self, lines, out):
        self.requests.append((list(lines), list(out)))
        return object()

    def get_line_event(self, line):
        raise OSError("no events")


def test_monitor_delivers_edges():
    platform = _Platform()
    fake = FakeGpio(platform, {POWER: False})
    system = GpioSystem(platform, fake)
    received = queue.Queue()

    def callback(line, values, initial):
        received.put(("initial", line, initial))
        for value in values:
            received.put(("value", line, value))

    threads = system.monitor({"POWER_BUTTON": callback})
    assert len(threads) == 1
    assert received.get(timeout=5) == ("initial", "POWER_BUTTON", False)
    fake.set(POWER, True)
    assert received.get(timeout=5) == ("value", "POWER_BUTTON", True)
    assert fake.current(POWER) is True
    fake.set(POWER, False)
    assert received.get(timeout=5) == ("value", "POWER_BUTTON", False)
    assert fake.current(POWER) is False


def test_monitor_unresolved_line(caplog):
    caplog.set_level(logging.INFO)
    platform = _Platform()
    system = GpioSystem(platform, FakeGpio(platform, {}))
    called = []
    threads = system.monitor({"MISSING": lambda *args: called.append(args)})
    for thread in threads:
        thread.join(5)
    assert called == []
    assert "Could not resolve GPIO MISSING" in caplog.text


def test_hog_requests_outputs():
    impl = _RecordingImpl()
    system = GpioSystem(_Platform(), impl)
    system.hog({"POWER_BUTTON": True, "LED": False})
    assert impl.requests == [([POWER, LED], [True, False])]


def test_hog_unresolved_line_requests_nothing():
    impl = _RecordingImpl()
    system = GpioSystem(_Platform(), impl)
    system.hog({"POWER_BUTTON": True, "MISSING": False})
    assert impl.requests == []


def test_hog_too_many_lines():
    names = {f"L{i}": i for i in range(65)}
    impl = _RecordingImpl()
    system = GpioSystem(_Platform(names), impl)
    system.hog({name: True for name in names})
    assert impl.requests == []


def test_button_queue_is_shared():
    platform = _Platform()
    fake = FakeGpio(platform, {POWER: False})
    system = GpioSystem(platform, fake)
    first = system.button("power")
    second = system.button("power")
    assert first is second
    # The manager fetches the same queue by name, so a press reaches it.
    threading.Thread(
        target=system.manage_button,
        args=("POWER_BUTTON", "power", 0),
        daemon=True,
    ).start()
    done = system.press_button("power", 10)
    assert done.wait(5) is True
    assert fake.current(POWER) is False


def test_press_button_too_long():
    system = GpioSystem(_Platform(), _RecordingImpl())
    system.button("power")
    with pytest.raises(ValueError):
        system.press_button("power", 10001)


def test_press_unknown_button():
    system = GpioSystem(_Platform(), _RecordingImpl())
    with pytest.raises(LookupError):
        system.press_button("reset", 10)


def _start_manager(system, flags):
    system.button("power")
    threading.Thread(
        target=system.manage_button,
        args=("POWER_BUTTON", "power", flags),
        daemon=True,
    ).start()


def test_press_drives_line_high_then_low():
    platform = _Platform()
    fake = FakeGpio(platform, {POWER: False})
    system = GpioSystem(platform, fake)
    _start_manager(system, 0)
    done = system.press_button("power", 500)
    deadline = time.monotonic() + 5
    while not fake.current(POWER) and time.monotonic() < deadline:
        time.sleep(0.005)
    assert fake.current(POWER) is True
    assert done.wait(5)
    assert fake.current(POWER) is False


def test_inverted_press_ends_high():
    platform = _Platform()
    fake = FakeGpio(platform, {POWER: False})
    system = GpioSystem(platform, fake)
    _start_manager(system, GPIO_INVERTED)
    done = system.press_button("power", 10)
    assert done.wait(5)
    assert fake.current(POWER) is True


def test_manage_unresolved_button(caplog):
    caplog.set_level(logging.INFO)
    system = GpioSystem(_Platform(), _RecordingImpl())
    system.manage_button("MISSING", "power", 0)
    assert "Could not resolve GPIO MISSING" in caplog.text


def test_fake_set_reaches_waiter():
    platform = _Platform()
    fake = FakeGpio(platform, {LED: False})
    results = []
    waiter = threading.Thread(target=lambda: results.append(fake.wait_for_change(LED)))
    waiter.start()
    fake.set(LED, True)
    waiter.join(5)
    assert results == [True]
    assert fake.current(LED) is True


def test_fake_set_unknown_port():
    fake = FakeGpio(_Platform(), {})
    with pytest.raises(KeyError):
        fake.set(LED, True)


def test_fake_line_set_without_waiter():
    fake = FakeGpio(_Platform(), {LED: False})
    handle = fake.request_line_handle([LED], [False])
    handle.set_values([True])
    assert fake.current(LED) is True
    assert fake.get_line_event(LED).get_value() is True


def test_log_gpio_logs_edges(caplog):
    caplog.set_level(logging.INFO)
    log_gpio("POWER_BUTTON", iter([True, False]), False)
    messages = [r.getMessage() for r in caplog.records]
    assert "POWER_BUTTON: rising edge" in messages
    assert "POWER_BUTTON: falling edge" in messages
    assert messages.index("POWER_BUTTON: rising edge") < messages.index(
        "POWER_BUTTON: falling edge"
    )


def test_start_gpio_initializes_platform(tmp_path):
    chip = tmp_path / "gpiochip"
    chip.write_bytes(b"")
    platform = _Platform()
    system = start_gpio(platform, str(chip))
    assert platform.initialized is system


def test_start_gpio_platform_failure(tmp_path):
    chip = tmp_path / "gpiochip"
    chip.write_bytes(b"")
    with pytest.raises(RuntimeError, match="board not ready"):
        start_gpio(_Platform(fail=True), str(chip))


def test_start_gpio_missing_chip():
    with pytest.raises(FileNotFoundError):
        start_gpio(_Platform(), "/nonexistent/gpiochip-for-test")