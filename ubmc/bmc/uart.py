"""Sharing the host serial console among several readers and writers."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, List, Optional

import serial

log = logging.getLogger(__name__)

READ_SIZE = 128
READER_BUFFER = 1024


class _SerialUart:
    """A serial port whose read returns whatever has arrived, at least a byte."""

    def __init__(self, port: serial.Serial) -> None:
        self._port = port

    def read(self, size: int) -> bytes:
        first = self._port.read(1)
        if not first:
            return b""
        waiting = min(self._port.in_waiting, size - 1)
        return first + (self._port.read(waiting) if waiting > 0 else b"")

    def write(self, data: bytes) -> int:
        return self._port.write(data)


class UartSystem:
    """Fans console output out to readers and funnels writers into the UART.

    The uart object needs read(size) -> bytes and write(data) methods.
    """

    def __init__(self, uart: Any) -> None:
        self._uart = uart
        self._lock = threading.Lock()
        self._readers: List["queue.Queue[bytes]"] = []
        self._writes: "queue.Queue[bytes]" = queue.Queue()
        self.overruns = 0
        self.buffered_reads = 0
        threading.Thread(target=self._sender, name="uart-sender", daemon=True).start()
        threading.Thread(target=self._receiver, name="uart-receiver", daemon=True).start()

    def consumer_count(self) -> int:
        """How many readers are attached."""
        with self._lock:
            return len(self._readers)

    def new_reader(self, done: threading.Event) -> "queue.Queue[bytes]":
        """Attach a reader; it is detached once done is set."""
        stream: "queue.Queue[bytes]" = queue.Queue(maxsize=READER_BUFFER)
        with self._lock:
            self._readers.append(stream)

        def detach() -> None:
            done.wait()
            with self._lock:
                self._readers = [r for r in self._readers if r is not stream]

        threading.Thread(target=detach, name="uart-reader-detach", daemon=True).start()
        return stream

    def new_writer(self) -> "queue.Queue[Optional[bytes]]":
        """Return a queue whose data goes to the UART; put None to close it."""
        stream: "queue.Queue[Optional[bytes]]" = queue.Queue()

        def copy() -> None:
            for data in iter(stream.get, None):
                self._writes.put(data)

        threading.Thread(target=copy, name="uart-writer", daemon=True).start()
        return stream

    def _sender(self) -> None:
        while True:
            data = self._writes.get()
            try:
                self._uart.write(data)
            except Exception as err:
                log.error("UART write error: %s", err)
                return

    def _receiver(self) -> None:
        while True:
            try:
                data = self._uart.read(READ_SIZE)
            except Exception as err:
                log.error("UART read error: %s", err)
                return
            if not data:
                continue
            with self._lock:
                readers = list(self._readers)
            pending = 0
            for reader in readers:
                try:
                    reader.put_nowait(bytes(data))
                except queue.Full:
                    self.overruns += 1
                    pending += reader.qsize()
            self.buffered_reads = pending


def start_uart(path: str, baud: int) -> UartSystem:
    """Open a serial port and share it."""
    try:
        port = serial.Serial(str(path), baud)
    except serial.SerialException as err:
        raise OSError(f"serial open {path}: {err}") from err
    return UartSystem(_SerialUart(port))