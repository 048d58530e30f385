#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# System constants.
#
from enum import Enum

# Linux I2C bus and 7-bit address where the chip lives by default
DEFAULT_BUS = '/dev/i2c-1'
DEFAULT_ADDRESS = 0x60

# address option is one byte, however given
MAX_ADDRESS = 0xFF

# key slots on the chip, numbered 0..15
NUM_SLOTS = 16
DEFAULT_KEY_SLOT = 0

# slots that personalize loads with private keys; the rest hold data
PRIVATE_KEY_SLOTS = range(0, 8)

# hex argument lengths (ascii hex chars, 2 per byte)
CHALLENGE_HEX_LEN = 64
CHALLENGE_RSP_HEX_LEN = 64
META_HEX_LEN = 26
SIGNATURE_HEX_LEN = 128
PUB_KEY_HEX_LEN = 130
WRITE_DATA_HEX_LEN = 64

# uncompressed point tag for a P-256 public key
UNCOMPRESSED_TAG = 0x04

# sizes (bytes)
DIGEST_SIZE = 32
RANDOM_SIZE = 32
SIGNATURE_SIZE = 64
PUB_KEY_SIZE = 65
SERIAL_SIZE = 9
CONFIG_ZONE_SIZE = 128
OTP_ZONE_SIZE = 64
BLOCK_SIZE = 32
WORD_SIZE = 4

# process exit status
EXIT_SUCCESS = 0
EXIT_DEVICE_ERROR = 1
EXIT_USAGE_ERROR = 2            # same as click.UsageError.exit_code
EXIT_INPUT_ERROR = 3
EXIT_CRYPTO_ERROR = 4

#
# Chip protocol
#

# first byte of every write to the chip
WA_RESET = 0x00
WA_SLEEP = 0x01
WA_IDLE = 0x02
WA_COMMAND = 0x03

# what the chip says after a wake pulse: count, status 0x11, crc
WAKE_RESPONSE = bytes([0x04, 0x11, 0x33, 0x43])

# opcodes
OP_GENKEY = 0x40
OP_LOCK = 0x17
OP_NONCE = 0x16
OP_RANDOM = 0x1B
OP_READ = 0x02
OP_SIGN = 0x41
OP_VERIFY = 0x45
OP_WRITE = 0x12

# worst case execution times, in milliseconds
EXEC_TIME_MS = {
    OP_GENKEY: 115,
    OP_LOCK: 32,
    OP_NONCE: 7,
    OP_RANDOM: 23,
    OP_READ: 1,
    OP_SIGN: 50,
    OP_VERIFY: 58,
    OP_WRITE: 26,
}

# status byte values in one-byte responses
STATUS_SUCCESS = 0x00
STATUS_MISCOMPARE = 0x01
STATUS_PARSE_ERROR = 0x03
STATUS_ECC_FAULT = 0x05
STATUS_EXECUTION_ERROR = 0x0F
STATUS_AFTER_WAKE = 0x11
STATUS_COMM_ERROR = 0xFF

STATUS_NAMES = {
    STATUS_MISCOMPARE: 'checkmac or verify miscompare',
    STATUS_PARSE_ERROR: 'parse error',
    STATUS_ECC_FAULT: 'ECC fault',
    STATUS_EXECUTION_ERROR: 'execution error',
    STATUS_AFTER_WAKE: 'unexpected wake status',
    STATUS_COMM_ERROR: 'communication error',
}

# memory zones, as encoded in Read/Write param1
ZONE_CONFIG = 0x00
ZONE_OTP = 0x01
ZONE_DATA = 0x02

# param1 bit for 32-byte reads/writes
ZONE_READ_32 = 0x80

# Random modes
RANDOM_SEED_UPDATE = 0x00
RANDOM_NO_SEED_UPDATE = 0x01

# Nonce pass-through: loads TempKey with 32 bytes given
NONCE_PASSTHROUGH = 0x03

# GenKey modes
GENKEY_PUBLIC = 0x00
GENKEY_PRIVATE = 0x04

# Sign message from TempKey
SIGN_EXTERNAL = 0x80

# Verify with public key given in the command, and its key type
VERIFY_EXTERNAL = 0x02
KEY_TYPE_P256 = 0x0004

# Lock modes
LOCK_CONFIG = 0x00
LOCK_DATA = 0x01
LOCK_NO_CRC = 0x80

# config zone offsets
CFG_SERIAL_HEAD = slice(0, 4)
CFG_SERIAL_TAIL = slice(8, 13)
CFG_SLOT_CONFIG = 20            # 16 x 2 bytes
CFG_LOCK_WORD = 21              # word holding bytes 84..87
CFG_LOCK_VALUE = 86             # data/OTP lock byte
CFG_LOCK_CONFIG = 87            # config lock byte
CFG_KEY_CONFIG = 96             # 16 x 2 bytes
CFG_FIRST_WRITABLE = 16

# lock byte values
LOCKED = 0x00
UNLOCKED = 0x55

# slot/key config used by personalize
# - private P-256 key, GenKey allowed, never readable
PRIVATE_SLOT_CONFIG = bytes([0x83, 0x20])
PRIVATE_KEY_CONFIG = bytes([0x33, 0x00])
# - plain 32-byte data
DATA_SLOT_CONFIG = bytes([0x00, 0x00])
DATA_KEY_CONFIG = bytes([0x3C, 0x00])


class DeviceState(Enum):
    # what state is the chip in, based on its lock bytes
    FACTORY = 'Factory'
    INITIALIZED = 'Initialized'
    PERSONALIZED = 'Personalized'

    def __str__(self):
        return self.value

# EOF
