"""Physical memory access for ASPEED SoCs, directly or over the LPC bus."""

from __future__ import annotations

import abc
import contextlib
import mmap
import os
import platform
import struct
import time
from dataclasses import dataclass
from typing import Iterator, Tuple

_U32 = struct.Struct("=I")
_U8 = struct.Struct("=B")

# SuperIO registers used for the iLPC2AHB bridge
_LPC_ADDRESS_REGS = (0xF0, 0xF1, 0xF2, 0xF3)
_LPC_DATA_REGS = (0xF4, 0xF5, 0xF6, 0xF7)
_LPC_SIZE_REG = 0xF8
_LPC_TRIGGER_REG = 0xFE
_LPC_TRIGGER_WRITE = 0xCF
_LPC_SIZE_8 = 0x0
_LPC_SIZE_32 = 0x2
_LPC_CACHED_REGS = 9


def _check_address(address: int) -> None:
    if address < 0:
        raise ValueError(f"negative address: {address:#x}")


def _check_value(value: int, bits: int) -> None:
    if not 0 <= value < (1 << bits):
        raise ValueError(f"value {value:#x} does not fit in {bits} bits")


class MemoryProvider(abc.ABC):
    """Something that can read and write the SoC's physical address space."""

    @abc.abstractmethod
    def read32(self, address: int) -> int:
        """Read a 32-bit word from a physical address."""

    @abc.abstractmethod
    def read8(self, address: int) -> int:
        """Read a byte from a physical address."""

    @abc.abstractmethod
    def write32(self, address: int, data: int) -> None:
        """Write a 32-bit word to a physical address."""

    @abc.abstractmethod
    def write8(self, address: int, data: int) -> None:
        """Write a byte to a physical address."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the underlying device."""

    def __enter__(self) -> "MemoryProvider":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class HostMemory(MemoryProvider):
    """Memory access through a memory device mapped one page at a time."""

    def __init__(self, path: str = "/dev/mem") -> None:
        self._fd = os.open(path, os.O_RDWR | getattr(os, "O_SYNC", 0))
        self._page_size = mmap.PAGESIZE

    def _require_open(self) -> int:
        if self._fd < 0:
            raise ValueError("memory device is closed")
        return self._fd

    @contextlib.contextmanager
    def _mapped(self, address: int, prot: int) -> Iterator[Tuple[mmap.mmap, int]]:
        _check_address(address)
        fd = self._require_open()
        page = address & ~(self._page_size - 1)
        view = mmap.mmap(
            fd, self._page_size, flags=mmap.MAP_SHARED, prot=prot, offset=page
        )
        try:
            yield view, address - page
        finally:
            view.close()

    def _read(self, address: int, fmt: struct.Struct) -> int:
        with self._mapped(address, mmap.PROT_READ) as (view, offset):
            return fmt.unpack_from(view, offset)[0]

    def _write(self, address: int, fmt: struct.Struct, data: int) -> None:
        with self._mapped(address, mmap.PROT_READ | mmap.PROT_WRITE) as (view, offset):
            fmt.pack_into(view, offset, data)

    def read32(self, address: int) -> int:
        return self._read(address, _U32)

    def read8(self, address: int) -> int:
        return self._read(address, _U8)

    def write32(self, address: int, data: int) -> None:
        _check_value(data, 32)
        self._write(address, _U32, data)

    def write8(self, address: int, data: int) -> None:
        _check_value(data, 8)
        self._write(address, _U8, data)

    def close(self) -> None:
        if self._fd >= 0:
            os.close(self._fd)
            self._fd = -1


@dataclass
class _LpcStats:
    read_count: int = 0
    write_count: int = 0
    cached_write_count: int = 0
    read_time: float = 0.0
    write_time: float = 0.0


class LpcMemory(MemoryProvider):
    """Memory access from the host through the SuperIO iLPC2AHB bridge."""

    def __init__(
        self,
        port: int = 0x2E,
        path: str = "/dev/port",
        cache: bool = False,
        print_stats: bool = False,
    ) -> None:
        self._fd = os.open(path, os.O_RDWR)
        self._offset = port
        self._cache_enabled = cache
        self._print_stats = print_stats
        # Cached view of the F0-F8 registers
        self._registers = bytearray(_LPC_CACHED_REGS)
        self.stats = _LpcStats()
        try:
            self._unlock()
            self._select_device(0x0D)
            # Make the controller match the cache
            for index in range(_LPC_CACHED_REGS):
                self._ctrl(0xF0 + index)
                self._w(0)
            self._enable()
        except BaseException:
            os.close(self._fd)
            self._fd = -1
            raise

    def _require_open(self) -> int:
        if self._fd < 0:
            raise ValueError("LPC device is closed")
        return self._fd

    def _put(self, value: int, position: int) -> None:
        fd = self._require_open()
        self.stats.write_count += 1
        start = time.perf_counter()
        os.pwrite(fd, bytes((value & 0xFF,)), position)
        self.stats.write_time += time.perf_counter() - start

    def _ctrl(self, value: int) -> None:
        self._put(value, self._offset)

    def _w(self, value: int) -> None:
        self._put(value, self._offset + 1)

    def _r(self) -> int:
        fd = self._require_open()
        self.stats.read_count += 1
        start = time.perf_counter()
        data = os.pread(fd, 1, self._offset + 1)
        self.stats.read_time += time.perf_counter() - start
        return data[0] if data else 0

    def _wf(self, register: int, value: int) -> None:
        index = register - 0xF0
        if not self._cache_enabled or self._registers[index] != value:
            self._ctrl(register)
            self._w(value)
            self._registers[index] = value
        else:
            self.stats.cached_write_count += 1

    def _enable(self) -> None:
        self._ctrl(0x30)
        self._w(0x1)

    def _unlock(self) -> None:
        self._ctrl(0xA5)
        self._ctrl(0xA5)

    def _select_device(self, device: int) -> None:
        self._ctrl(0x07)
        self._w(device)

    def _address(self, address: int) -> None:
        _check_address(address)
        for register, shift in zip(_LPC_ADDRESS_REGS, (24, 16, 8, 0)):
            self._wf(register, (address >> shift) & 0xFF)

    def _trigger_read(self) -> None:
        self._ctrl(_LPC_TRIGGER_REG)
        self._r()

    def _read_data(self, register: int) -> int:
        self._ctrl(register)
        value = self._r()
        self._registers[register - 0xF0] = value
        return value

    def read32(self, address: int) -> int:
        self._address(address)
        self._wf(_LPC_SIZE_REG, _LPC_SIZE_32)
        self._trigger_read()
        result = 0
        for register, shift in zip(_LPC_DATA_REGS, (24, 16, 8, 0)):
            result |= self._read_data(register) << shift
        return result

    def read8(self, address: int) -> int:
        self._address(address)
        self._wf(_LPC_SIZE_REG, _LPC_SIZE_8)
        self._trigger_read()
        return self._read_data(_LPC_DATA_REGS[-1])

    def write32(self, address: int, data: int) -> None:
        _check_value(data, 32)
        self._address(address)
        self._wf(_LPC_SIZE_REG, _LPC_SIZE_32)
        for register, shift in zip(_LPC_DATA_REGS, (24, 16, 8, 0)):
            self._wf(register, (data >> shift) & 0xFF)
        self._ctrl(_LPC_TRIGGER_REG)
        self._w(_LPC_TRIGGER_WRITE)

    def write8(self, address: int, data: int) -> None:
        _check_value(data, 8)
        self._address(address)
        self._wf(_LPC_SIZE_REG, _LPC_SIZE_8)
        self._wf(_LPC_DATA_REGS[-1], data)
        self._ctrl(_LPC_TRIGGER_REG)
        self._w(_LPC_TRIGGER_WRITE)

    def close(self) -> None:
        if self._fd < 0:
            return
        # Lock SIO
        self._ctrl(0xAA)
        if self._print_stats:
            s = self.stats
            print(
                f"LPC stats: {s.read_count} RDs (time {s.read_time:.6f}s), "
                f"{s.write_count} WRs (time {s.write_time:.6f}s), "
                f"cached {s.cached_write_count} WRs"
            )
        os.close(self._fd)
        self._fd = -1


def open_memory() -> MemoryProvider:
    """Open direct memory on an ARM BMC, LPC bridge access on any other host."""
    if platform.machine().lower().startswith("arm"):
        return HostMemory()
    return LpcMemory()