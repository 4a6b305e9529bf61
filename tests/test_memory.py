import mmap
import sys

import pytest

from ubmc.aspeed.memory import HostMemory, LpcMemory

PORT = 0x2E


@pytest.fixture
def mem_file(tmp_path):
    path = tmp_path / "mem.bin"
    path.write_bytes(bytes(2 * mmap.PAGESIZE))
    return path


@pytest.fixture
def port_file(tmp_path):
    path = tmp_path / "port.bin"
    path.write_bytes(bytes(PORT + 16))
    return path


def test_host_write32_read32_round_trip(mem_file):
    with HostMemory(str(mem_file)) as mem:
        address = mmap.PAGESIZE + 8
        mem.write32(address, 0x12345678)
        assert mem.read32(address) == 0x12345678


def test_host_write32_uses_native_byte_order(mem_file):
    address = mmap.PAGESIZE + 4
    with HostMemory(str(mem_file)) as mem:
        mem.write32(address, 0x04030201)
    data = mem_file.read_bytes()[address:address + 4]
    assert data == (0x04030201).to_bytes(4, sys.byteorder)


def test_host_read8_matches_stored_bytes(mem_file):
    address = 16
    with HostMemory(str(mem_file)) as mem:
        mem.write32(address, 0x1920C2)
        expected = (0x1920C2).to_bytes(4, sys.byteorder)
        assert bytes(mem.read8(address + i) for i in range(4)) == expected


def test_host_write8_leaves_neighbours(mem_file):
    with HostMemory(str(mem_file)) as mem:
        mem.write32(32, 0)
        mem.write8(33, 0xAB)
        assert mem.read8(33) == 0xAB
        assert mem.read8(32) == 0
        assert mem.read8(34) == 0


def test_host_rejects_bad_values(mem_file):
    with HostMemory(str(mem_file)) as mem:
        with pytest.raises(ValueError):
            mem.write32(0, 1 << 32)
        with pytest.raises(ValueError):
            mem.write8(0, 256)
        with pytest.raises(ValueError):
            mem.read32(-4)


def test_host_closed_raises(mem_file):
    mem = HostMemory(str(mem_file))
    mem.close()
    with pytest.raises(ValueError):
        mem.read32(0)


def test_host_missing_device(tmp_path):
    with pytest.raises(FileNotFoundError):
        HostMemory(str(tmp_path / "missing"))


def test_lpc_init_enables_bridge(port_file):
    mem = LpcMemory(PORT, str(port_file))
    data = port_file.read_bytes()
    assert data[PORT] == 0x30
    assert data[PORT + 1] == 0x1
    mem.close()


def test_lpc_close_locks_sio(port_file):
    mem = LpcMemory(PORT, str(port_file))
    mem.close()
    assert port_file.read_bytes()[PORT] == 0xAA


def test_lpc_write_triggers(port_file):
    with LpcMemory(PORT, str(port_file)) as mem:
        mem.write32(0x1E6E2000, 0x1688A8A8)
        data = port_file.read_bytes()
        assert data[PORT] == 0xFE
        assert data[PORT + 1] == 0xCF


def test_lpc_cached_read_skips_register_writes(port_file):
    with LpcMemory(PORT, str(port_file), cache=True) as mem:
        mem.write8(0x1E620010, 0x3)
        # With address and size cached nothing overwrites the trigger byte
        assert mem.read8(0x1E620010) == 0xCF


def test_lpc_uncached_read_rewrites_registers(port_file):
    with LpcMemory(PORT, str(port_file), cache=False) as mem:
        mem.write8(0x1E620010, 0x3)
        assert mem.read8(0x1E620010) == 0


def test_lpc_cache_reduces_writes(tmp_path):
    uncached_path = tmp_path / "port-uncached.bin"
    uncached_path.write_bytes(bytes(PORT + 16))
    with LpcMemory(PORT, str(uncached_path), cache=False) as mem:
        mem.write32(0x1E785004, 16)
        before = mem.stats.write_count
        mem.write32(0x1E785004, 16)
        uncached_writes = mem.stats.write_count - before
        assert mem.stats.cached_write_count == 0

    cached_path = tmp_path / "port-cached.bin"
    cached_path.write_bytes(bytes(PORT + 16))
    with LpcMemory(PORT, str(cached_path), cache=True) as mem:
        mem.write32(0x1E785004, 16)
        before = mem.stats.write_count
        mem.write32(0x1E785004, 16)
        assert mem.stats.write_count - before < uncached_writes
        assert mem.stats.cached_write_count > 0


def test_lpc_read32_reads_more_than_read8(port_file):
    with LpcMemory(PORT, str(port_file)) as mem:
        start = mem.stats.read_count
        mem.read8(0x1E6E207C)
        after8 = mem.stats.read_count
        mem.read32(0x1E6E207C)
        after32 = mem.stats.read_count
    assert after8 > start
    assert after32 - after8 > after8 - start


def test_lpc_print_stats(port_file, capsys):
    mem = LpcMemory(PORT, str(port_file), print_stats=True)
    mem.read32(0x1E6E2070)
    mem.close()
    assert "LPC stats:" in capsys.readouterr().out


def test_lpc_no_stats_by_default(port_file, capsys):
    mem = LpcMemory(PORT, str(port_file))
    mem.close()
    assert capsys.readouterr().out == ""


def test_lpc_rejects_bad_values(port_file):
    with LpcMemory(PORT, str(port_file)) as mem:
        with pytest.raises(ValueError):
            mem.write32(0, -1)
        with pytest.raises(ValueError):
            mem.write8(0, 0x100)


def test_lpc_closed_raises(port_file):
    mem = LpcMemory(PORT, str(port_file))
    mem.close()
    with pytest.raises(ValueError):
        mem.read8(0)