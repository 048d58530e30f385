# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
import string
import click
from binascii import b2a_hex
import crcmod
from .constants import *
from .exceptions import InputError

# show bytes as hex in a string
B2A = lambda x: b2a_hex(x).decode('ascii')

HEX_DIGITS = frozenset(string.hexdigits)

def is_hex_arg(arg, expected_len):
    # True only if exactly expected_len chars, all of them hex digits
    # - nothing is trimmed, padded or truncated
    if arg is None or len(arg) != expected_len:
        return False
    return all(ch in HEX_DIGITS for ch in arg)

def parse_address(arg):
    # I2C address from the command line, always hex, "0x" prefix optional
    # - returns None when nothing was given, so that zero stays a real address
    if arg is None:
        return None
    if isinstance(arg, int):
        value = arg
    else:
        txt = arg.strip().lower()
        if txt.startswith('0x'):
            txt = txt[2:]
        if not txt or not all(ch in HEX_DIGITS for ch in txt):
            raise ValueError(f"Not a hex number: {arg}")
        value = int(txt, 16)

    if not (0 <= value <= MAX_ADDRESS):
        raise ValueError(f"Address out of range (0..0x{MAX_ADDRESS:02x}): {arg}")

    return value

def read_input(fname=None):
    # Read everything to be hashed, from named file or stdin
    use_stdin = (fname is None or fname == '-')
    try:
        if use_stdin:
            return click.get_binary_stream('stdin').read()

        with open(fname, 'rb') as fp:
            return fp.read()
    except OSError as exc:
        raise InputError(f"Unable to read {'stdin' if use_stdin else fname}: {exc.strerror}")

# CRC-16 used by the chip: poly 0x8005, bits in LSB first, result not reflected,
# sent low byte first.
_base_crc16 = crcmod.mkCrcFun(0x18005, initCrc=0, rev=True)

def crc16(data):
    x = _base_crc16(bytes(data))
    rev = int(f"{x:016b}"[::-1], 2)
    return ((rev & 0xFF) << 8) + (rev >> 8)

def crc16b(data):
    # two bytes as they appear on the wire
    return crc16(data).to_bytes(2, 'big')

def crc16_value(data):
    # CRC as the little-endian param2 value expected by Lock
    return int.from_bytes(crc16b(data), 'little')

def hexdump_lines(data, width=BLOCK_SIZE):
    # hex, one line per block
    return [B2A(data[i:i+width]) for i in range(0, len(data), width)]

# EOF
