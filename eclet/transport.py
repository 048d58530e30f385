#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# transport.py
#
# Implement the desktop to chip connection: Linux I2C, or the emulator on a Unix socket.
#
#
import os, re, stat, time
import click
from .utils import B2A, crc16b
from .constants import *
from .exceptions import DeviceRuntimeError
from .proto import ECletDevice

# chip is good to 1MHz, but other things share the bus
I2C_FREQUENCY = 100000

# seconds: wake pulse, then time before chip will talk (tWHI)
WAKE_DELAY = 0.003

# largest response: count + 64 bytes + crc
MAX_RESPONSE = 1 + 64 + 2

def open_device(bus=None, address=None, verbose=False):
    #
    # Wake the chip on given bus and return a session to work with it.
    #
    # - a Unix socket in place of the bus means the emulator
    # - verbose: show traffic details on stderr
    #
    bus = bus or DEFAULT_BUS
    if address is None:
        address = DEFAULT_ADDRESS

    if ECUnixTransport.is_simulator(bus):
        tr = ECUnixTransport(bus, verbose=verbose)
    else:
        tr = ECI2CTransport(bus, address, verbose=verbose)

    try:
        tr.wake()
    except DeviceRuntimeError:
        tr.close()
        raise

    return ECletDevice(tr)

def comm_error(msg):
    return DeviceRuntimeError(msg, STATUS_COMM_ERROR, msg)

class ECTransportABC:
    #
    # Abstract base class. Low level details about talking to the chip.
    #
    name = 'abstract'
    is_emulator = False

    def __init__(self, verbose=False):
        self.verbose = verbose

    def _wake(self):
        # send wake pulse, return 4 byte reply
        raise NotImplementedError

    def _sleep(self):
        # put chip to sleep; no reply
        raise NotImplementedError

    def _send_recv(self, packet, delay_ms):
        # write command packet (word address included), wait, read back the response
        raise NotImplementedError

    def close(self):
        # release resources
        pass

    def trace(self, msg):
        if self.verbose:
            click.echo(msg, err=True)

    def wake(self):
        resp = self._wake()
        self.trace(f"<< wake: {B2A(resp)}")
        if resp != WAKE_RESPONSE:
            raise comm_error(f"Unexpected wake response: {B2A(resp) or '(nothing)'}")

    def sleep(self):
        self.trace(">> sleep")
        self._sleep()

    def send(self, opcode, p1=0, p2=0, data=b'', expect_len=None):
        # Build command packet, send it, check and unwrap the response
        # - returns the response data (without count and crc)
        # - one-byte response with non-zero status is raised as error
        body = bytes([7 + len(data), opcode, p1]) + p2.to_bytes(2, 'little') + bytes(data)
        packet = bytes([WA_COMMAND]) + body + crc16b(body)

        self.trace(f">> op=0x{opcode:02x} p1=0x{p1:02x} p2=0x{p2:04x} data={B2A(data) or '-'}")

        resp = self._send_recv(packet, EXEC_TIME_MS.get(opcode, 50))

        self.trace(f"<< {B2A(resp) or '(nothing)'}")

        if len(resp) < 4:
            raise comm_error(f"Short response from chip ({len(resp)} bytes)")
        count = resp[0]
        if count != len(resp):
            raise comm_error(f"Response length mismatch: count={count} got={len(resp)}")
        if crc16b(resp[:-2]) != resp[-2:]:
            raise comm_error("Bad CRC on response")

        rv = resp[1:-2]

        if len(rv) == 1 and rv[0] != STATUS_SUCCESS:
            code = rv[0]
            why = STATUS_NAMES.get(code, 'unknown status')
            raise DeviceRuntimeError(f'0x{code:02x} on op 0x{opcode:02x}: {why}', code, why)

        if expect_len is not None and len(rv) != expect_len:
            raise comm_error(f"Expected {expect_len} bytes from chip, got {len(rv)}")

        return rv

class ECI2CTransport(ECTransportABC):
    #
    # For talking to a real chip, via Linux i2c-dev (Adafruit Blinka underneath).
    #

    def __init__(self, bus, address, verbose=False):
        super().__init__(verbose)
        self.name = f'{bus}@0x{address:02x}'
        self.address = address

        m = re.search(r'i2c-(\d+)$', bus)
        if not m or not os.path.exists(bus):
            raise comm_error(f"No I2C bus at {bus}")

        from adafruit_extended_bus import ExtendedI2C
        from adafruit_bus_device.i2c_device import I2CDevice

        try:
            self._bus = ExtendedI2C(int(m.group(1)), frequency=I2C_FREQUENCY)
        except OSError as exc:
            raise comm_error(f"Unable to open I2C bus {bus}: {exc}")

        # chip is asleep now, so don't probe it
        self._dev = I2CDevice(self._bus, address, probe=False)

    def close(self):
        if getattr(self, '_bus', None) is not None:
            self._bus.deinit()
            self._bus = None

    def _write(self, data):
        try:
            with self._dev as i2c:
                i2c.write(data)
        except OSError as exc:
            raise comm_error(f"I2C write failed (NACK?): {exc}")

    def _read(self, count):
        buf = bytearray(count)
        try:
            with self._dev as i2c:
                i2c.readinto(buf)
        except OSError as exc:
            raise comm_error(f"I2C read failed (NACK?): {exc}")
        return bytes(buf)

    def _wake(self):
        # Holding SDA low long enough is the wake pulse: a write to
        # general-call address zero does that, and nobody acks it.
        while not self._bus.try_lock():
            pass
        try:
            self._bus.writeto(0x00, bytes([0]))
        except OSError:
            pass
        finally:
            self._bus.unlock()

        time.sleep(WAKE_DELAY)

        return self._read(4)

    def _sleep(self):
        self._write(bytes([WA_SLEEP]))

    def _send_recv(self, packet, delay_ms):
        self._write(packet)

        time.sleep(delay_ms / 1000.0)

        first = self._read(1)
        count = first[0]
        if count < 4 or count > MAX_RESPONSE:
            raise comm_error(f"Bad count byte from chip: {count}")

        return first + self._read(count - 1)

class ECUnixTransport(ECTransportABC):
    #
    # Emulation running over a Unix socket.
    #
    is_emulator = True

    @classmethod
    def is_simulator(cls, path):
        try:
            return stat.S_ISSOCK(os.stat(path).st_mode)
        except OSError:
            return False

    def __init__(self, pipename, verbose=False):
        import socket
        super().__init__(verbose)
        self.name = pipename
        self.sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            self.sock.connect(pipename)
        except OSError as exc:
            self.sock.close()
            raise comm_error(f"Unable to reach emulator at {pipename}: {exc}")

    def close(self):
        self.sock.close()

    def _send(self, msg):
        try:
            self.sock.sendall(msg)
        except OSError as exc:
            raise comm_error(f"Emulator connection lost: {exc}")

    def _recv(self):
        try:
            resp = self.sock.recv(4096)
        except OSError as exc:
            raise comm_error(f"Emulator connection lost: {exc}")
        if not resp:
            # closed socket causes this
            raise comm_error("Emu crashed?")
        return resp

    def _wake(self):
        self._send(bytes([WA_RESET]))
        return self._recv()

    def _sleep(self):
        self._send(bytes([WA_SLEEP]))

    def _send_recv(self, packet, delay_ms):
        # no need to wait, emulator answers when done
        self._send(packet)
        return self._recv()

# EOF
