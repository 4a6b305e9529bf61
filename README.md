# ubmc

Building blocks for ASPEED AST2400/AST2500 baseboard management
controllers: raw physical memory access to the SoC, and the services a
running BMC provides.

- `ubmc.aspeed.memory` reads and writes the SoC's physical address space.
- `ubmc.bmc` holds GPIO line monitoring and button presses, fan readings
  from hwmon, a shared host UART console, a small DNS responder for ACME
  DNS-01 challenges, parsing of IPv6 router-advertised DNS servers
  (RDNSS), and a link-local address check.

## Memory access

Every provider derives from `MemoryProvider` and offers `read32`,
`read8`, `write32`, `write8` and `close`; it also works as a context
manager that closes the device on exit. Values that do not fit the
access width, and negative addresses, raise `ValueError`.

- `HostMemory(path="/dev/mem")` maps one page of the memory device per
  access. Use it on the BMC itself.
- `LpcMemory(port=0x2E, path="/dev/port", cache=False, print_stats=False)`
  drives the SuperIO iLPC2AHB bridge from the host CPU. With `cache=True`
  it skips writes to the bridge's address, size and data registers when
  they already hold the value. Counts and times of port accesses are kept
  in its `stats` attribute and printed on `close()` when `print_stats` is
  set. It only works if the bridge has not been disabled.

`open_memory()` returns a `HostMemory` on an ARM machine and an
`LpcMemory` anywhere else.

```python
from ubmc.aspeed.memory import open_memory

with open_memory() as mem:
    revision = mem.read32(0x1E6E207C)
    print(f"silicon revision {revision:#010x}")
```

Writing SoC registers can hang the machine hard, and nothing here saves
the registers it changes.

## GPIO

`ubmc.bmc.gpio.GpioSystem(platform, impl)` ties a `GpioPlatform` (which
maps line names to line indexes and sets up lines in `initialize_gpio`)
to a GPIO implementation:

- `monitor({name: callback})` starts a background thread per line and
  returns the threads. Each callback is called as
  `callback(line, values, initial)`, where `values` yields `True` on a
  rising edge and `False` on a falling edge. `log_gpio` is a ready-made
  callback that logs every edge.
- `hog({name: value})` holds up to 64 lines as outputs at fixed values.
- `manage_button(line, button, flags)` drives a button line forever from
  its press queue; `GPIO_INVERTED` in `flags` inverts the line.
  `press_button(button, duration_ms)` queues a press of at most
  10 000 ms and returns a `threading.Event` that is set once the button
  is released. An unknown button raises `LookupError`.

`ubmc.bmc.gpio_linux.LinuxGpio(chip="/dev/gpiochip0")` is the
implementation over the Linux GPIO character device;
`start_gpio(platform, chip="/dev/gpiochip0")` opens it, builds the
`GpioSystem` and calls the platform's `initialize_gpio`, raising
`RuntimeError` if that fails. `GpioEventData.decode` reads one 16-byte
kernel event record.

`FakeGpio(platform, startup_state)` is an in-memory implementation for
tests: `set(port, value)` changes a line from outside and blocks until a
monitor reads it, `wait_for_change(port)` blocks until the system sets a
line, and `current(port)` returns its value.

## Fans

`ubmc.bmc.fan.FanSystem(fan_map, pwm_map)` reads hwmon files:
`read_fan_rpm(fan)`, `read_fan_percentage(fan)` (the 0–255 PWM value as a
whole percentage) and `fan_count()`. An unknown fan raises `LookupError`.
`start_fan(platform)` builds one from a `FanPlatform`.

## Host console

`ubmc.bmc.uart.UartSystem(uart)` shares one UART, any object with
`read(size)` and `write(data)`, among many users:

- `new_reader(done)` returns a queue receiving every chunk read from the
  UART, buffering up to 1024 chunks; chunks for a full queue are dropped
  and counted in `overruns`. The reader is detached once the
  `threading.Event` `done` is set.
- `new_writer()` returns a queue whose data is written to the UART; put
  `None` to close it.
- `consumer_count()` tells how many readers are attached.

`start_uart(path, baud)` opens a serial port and shares it, raising
`OSError` if the port cannot be opened.

## DNS challenges

`ubmc.bmc.dns.DnsServer(fqdn, addresser)` answers authoritatively for its
own name: a query for the name itself gets NXDOMAIN, a query for the
current challenge name gets the TXT record set by
`handle_dns01_challenge(fqdn, record)` (TTL 60), and anything else gets
NXDOMAIN. Queries outside its zone get SERVFAIL.

```python
import dns.message

from ubmc.bmc.dns import DnsServer

server = DnsServer("bmc.example.com", addresser)
server.handle_dns01_challenge("_acme-challenge.bmc.example.com", "token")
query = dns.message.make_query("_acme-challenge.bmc.example.com", "TXT")
print(server.reply(query))
```

`serve(port=53)` listens on UDP and TCP in background threads and returns
the bound addresses; `close()` stops it. `start_dns(fqdn, addresser)`
creates a server and serves on port 53, logging rather than raising if it
cannot bind.

## RDNSS and link-local addresses

`ubmc.bmc.rdnss.parse_nd_user_opt(data)` decodes a netlink
neighbour-discovery user option message into an `NDUserOpt` holding its
`RDNSSOption` entries (lifetime and server addresses). It returns `None`
for a message carrying a zero-length option and raises `ValueError` for a
malformed one. `watch_rdnss()` subscribes to the kernel's router
advertisement options over netlink and yields RDNSS options as they
arrive.

`ubmc.bmc.link.is_link_local_for_mac(address, hardware_address)` tells
whether an IPv6 address is the EUI-64 link-local address of a MAC:

```python
from ipaddress import IPv6Address

from ubmc.bmc.link import is_link_local_for_mac

mac = bytes.fromhex("020000000001")
is_link_local_for_mac(IPv6Address("fe80::ff:fe00:1"), mac)  # True
```

## What this package does not do

It provides memory access only: it has no drivers for the SoC's
individual blocks (system control unit, watchdogs, PWM and tachometer,
SPI flash controller, GPIO register decoding). It does not configure
network interfaces, run a management RPC server, export metrics, obtain
certificates or set the system time, and it has no command-line tool.

## Tests

The tests use pytest, from the `test` extra, and need no hardware.