import queue
import threading
import time

import pytest

from ubmc.bmc.uart import UartSystem, start_uart


class FakeUart:
    def __init__(self):
        self.incoming = queue.Queue()
        self.outgoing = queue.Queue()

    def read(self, size):
        return self.incoming.get()[:size]

    def write(self, data):
        self.outgoing.put(data)
        return len(data)


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_reader_receives_console_data():
    fake = FakeUart()
    system = UartSystem(fake)
    done = threading.Event()
    reader = system.new_reader(done)
    fake.incoming.put(b"Testing")
    assert reader.get(timeout=2) == b"Testing"
    done.set()


def test_consumer_count_follows_readers():
    system = UartSystem(FakeUart())
    done = threading.Event()
    system.new_reader(done)
    assert system.consumer_count() == 1
    done.set()
    assert _wait_for(lambda: system.consumer_count() == 0)


def test_every_reader_gets_the_data():
    fake = FakeUart()
    system = UartSystem(fake)
    done = threading.Event()
    first = system.new_reader(done)
    second = system.new_reader(done)
    fake.incoming.put(b"hello")
    assert first.get(timeout=2) == b"hello"
    assert second.get(timeout=2) == b"hello"
    done.set()


def test_writer_reaches_uart():
    fake = FakeUart()
    system = UartSystem(fake)
    writer = system.new_writer()
    writer.put(b"Testing")
    assert fake.outgoing.get(timeout=2) == b"Testing"
    writer.put(None)


def test_start_uart_missing_device(tmp_path):
    with pytest.raises(OSError):
        start_uart(str(tmp_path / "missing-tty"), 115200)