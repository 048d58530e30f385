#!/usr/bin/env python3
#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Emulate the ECC chip, enough to run every eclet command against it.
#
# Socket protocol: each message is what would be written on the I2C bus, starting
# with the word address byte. A lone 0x00 stands in for the wake pulse.
#
import os, traceback
import click
from dataclasses import dataclass

from eclet.constants import *
from eclet.utils import B2A, crc16b, crc16_value
from eclet.compat import CT_pick_keypair, CT_sign, CT_sig_verify
from eclet.exceptions import CryptoError
from eclet.transport import ECTransportABC
from eclet.proto import ECletDevice

# Print traffic? (daemon turns it on)
DEBUG = False

OPCODE_NAMES = {
    OP_GENKEY: 'genkey',
    OP_LOCK: 'lock',
    OP_NONCE: 'nonce',
    OP_RANDOM: 'random',
    OP_READ: 'read',
    OP_SIGN: 'sign',
    OP_VERIFY: 'verify',
    OP_WRITE: 'write',
}

# what random gives before config is locked
FACTORY_RANDOM = bytes([0xff, 0xff, 0x00, 0x00]) * 8

# provides msg + status byte
class ChipError(RuntimeError):
    def __init__(self, msg, code):
        self.code = code
        super().__init__(msg)

def wrap_response(data):
    # count, data, crc
    body = bytes([len(data) + 3]) + bytes(data)
    return body + crc16b(body)

def factory_config(serial=None):
    # config zone as shipped
    serial = serial or (bytes([0x01, 0x23]) + os.urandom(6) + bytes([0xee]))
    assert len(serial) == SERIAL_SIZE

    cfg = bytearray(CONFIG_ZONE_SIZE)
    cfg[CFG_SERIAL_HEAD] = serial[0:4]
    cfg[4:8] = bytes([0x00, 0x00, 0x10, 0x00])         # revision
    cfg[CFG_SERIAL_TAIL] = serial[4:9]
    cfg[14] = 0x01                                      # I2C enable
    cfg[16] = DEFAULT_ADDRESS << 1                      # 8-bit form
    cfg[18] = 0xAA                                      # OTP mode
    cfg[52:84] = bytes([0xff]) * 32                     # counters, last key use
    cfg[CFG_LOCK_VALUE] = UNLOCKED
    cfg[CFG_LOCK_CONFIG] = UNLOCKED
    cfg[88:90] = bytes([0xff, 0xff])                    # slot locked

    return cfg

@dataclass
class ChipState:
    '''
        Whole-chip state
    '''
    config: bytearray
    otp: bytearray
    slots: list
    tempkey: (bytes, None) = None
    awake: bool = False

    # counters, for tests to look at
    seed_updates: int = 0
    random_reads: int = 0

    def __init__(self, serial=None):
        self.config = factory_config(serial)
        self.otp = bytearray(OTP_ZONE_SIZE)
        self.slots = [None] * NUM_SLOTS
        self.tempkey = None
        self.awake = False
        self.seed_updates = 0
        self.random_reads = 0

    def __repr__(self):
        keys = sum(1 for s in self.slots if s)
        return f'<CHIP: {B2A(self.serial)} {self.state} keys={keys}>'

    @property
    def serial(self):
        return bytes(self.config[CFG_SERIAL_HEAD] + self.config[CFG_SERIAL_TAIL])

    @property
    def config_locked(self):
        return self.config[CFG_LOCK_CONFIG] == LOCKED

    @property
    def data_locked(self):
        return self.config[CFG_LOCK_VALUE] == LOCKED

    @property
    def state(self):
        if not self.config_locked:
            return DeviceState.FACTORY
        if not self.data_locked:
            return DeviceState.INITIALIZED
        return DeviceState.PERSONALIZED

    def _is_private_slot(self, slot):
        # KeyConfig bit 0: slot holds a private key
        return bool(self.config[CFG_KEY_CONFIG + (slot * 2)] & 0x01)

    def _zone(self, p1):
        zone = p1 & 0x03
        if zone == ZONE_CONFIG:
            return self.config
        if zone == ZONE_OTP:
            return self.otp
        raise ChipError('data zone not emulated', STATUS_PARSE_ERROR)

    def _check_slot(self, slot):
        if slot >= NUM_SLOTS:
            raise ChipError('bad slot', STATUS_PARSE_ERROR)

    #
    # Commands.
    #

    def cmd_read(self, p1, p2, data):
        zone = self._zone(p1)
        size = BLOCK_SIZE if (p1 & ZONE_READ_32) else WORD_SIZE
        offset = ((p2 >> 3) * BLOCK_SIZE) if (p1 & ZONE_READ_32) else (p2 * WORD_SIZE)
        if offset + size > len(zone):
            raise ChipError('read past end', STATUS_PARSE_ERROR)

        return bytes(zone[offset:offset+size])

    def cmd_write(self, p1, p2, data):
        if (p1 & 0x03) != ZONE_CONFIG or (p1 & ZONE_READ_32):
            raise ChipError('only 4-byte config writes emulated', STATUS_PARSE_ERROR)
        if len(data) != WORD_SIZE:
            raise ChipError('need 4 bytes', STATUS_PARSE_ERROR)
        if self.config_locked:
            raise ChipError('config is locked', STATUS_EXECUTION_ERROR)

        offset = p2 * WORD_SIZE
        if offset < CFG_FIRST_WRITABLE or offset + WORD_SIZE > CONFIG_ZONE_SIZE:
            raise ChipError('not writable', STATUS_EXECUTION_ERROR)
        if offset == CFG_LOCK_WORD * WORD_SIZE:
            # lock bytes only change via Lock command
            raise ChipError('not writable', STATUS_EXECUTION_ERROR)

        self.config[offset:offset+WORD_SIZE] = data
        return bytes([STATUS_SUCCESS])

    def cmd_lock(self, p1, p2, data):
        zone = p1 & 0x03
        no_crc = bool(p1 & LOCK_NO_CRC)

        if zone == LOCK_CONFIG:
            if self.config_locked:
                raise ChipError('config already locked', STATUS_EXECUTION_ERROR)
            if not no_crc and crc16_value(self.config) != p2:
                raise ChipError('config CRC mismatch', STATUS_EXECUTION_ERROR)
            self.config[CFG_LOCK_CONFIG] = LOCKED
        elif zone == LOCK_DATA:
            if not self.config_locked:
                raise ChipError('lock config first', STATUS_EXECUTION_ERROR)
            if self.data_locked:
                raise ChipError('data already locked', STATUS_EXECUTION_ERROR)
            if not no_crc:
                # no data zone contents to summarize here
                raise ChipError('data zone CRC not emulated', STATUS_EXECUTION_ERROR)
            self.config[CFG_LOCK_VALUE] = LOCKED
        else:
            raise ChipError('bad lock mode', STATUS_PARSE_ERROR)

        return bytes([STATUS_SUCCESS])

    def cmd_random(self, p1, p2, data):
        self.random_reads += 1
        if not self.config_locked:
            return FACTORY_RANDOM

        if p1 == RANDOM_SEED_UPDATE:
            self.seed_updates += 1

        return os.urandom(RANDOM_SIZE)

    def cmd_nonce(self, p1, p2, data):
        if (p1 & 0x03) != NONCE_PASSTHROUGH:
            raise ChipError('only pass-through nonce emulated', STATUS_PARSE_ERROR)
        if len(data) != DIGEST_SIZE:
            raise ChipError('need 32 bytes', STATUS_PARSE_ERROR)

        self.tempkey = bytes(data)
        return bytes([STATUS_SUCCESS])

    def cmd_genkey(self, p1, p2, data):
        slot = p2
        self._check_slot(slot)
        if not self.config_locked:
            raise ChipError('config not locked', STATUS_EXECUTION_ERROR)
        if not self._is_private_slot(slot):
            raise ChipError('not a private key slot', STATUS_EXECUTION_ERROR)

        if p1 & GENKEY_PRIVATE:
            priv, pub = CT_pick_keypair()
            self.slots[slot] = (priv, pub)
        else:
            if not self.slots[slot]:
                raise ChipError('no key in slot', STATUS_EXECUTION_ERROR)
            priv, pub = self.slots[slot]

        return pub[1:]

    def cmd_sign(self, p1, p2, data):
        slot = p2
        self._check_slot(slot)
        if self.state != DeviceState.PERSONALIZED:
            raise ChipError('not personalized', STATUS_EXECUTION_ERROR)
        if not (p1 & SIGN_EXTERNAL):
            raise ChipError('only external sign emulated', STATUS_PARSE_ERROR)
        if self.tempkey is None or not self.slots[slot]:
            raise ChipError('no tempkey or no key', STATUS_EXECUTION_ERROR)

        priv, _ = self.slots[slot]
        digest, self.tempkey = self.tempkey, None

        return CT_sign(priv, digest)

    def cmd_verify(self, p1, p2, data):
        if (p1 & 0x03) != VERIFY_EXTERNAL or p2 != KEY_TYPE_P256:
            raise ChipError('only external P256 verify emulated', STATUS_PARSE_ERROR)
        if len(data) != SIGNATURE_SIZE + PUB_KEY_SIZE - 1:
            raise ChipError('need sig and pubkey', STATUS_PARSE_ERROR)
        if self.tempkey is None:
            raise ChipError('no tempkey', STATUS_EXECUTION_ERROR)

        digest, self.tempkey = self.tempkey, None
        sig = bytes(data[0:SIGNATURE_SIZE])
        pub = bytes([UNCOMPRESSED_TAG]) + bytes(data[SIGNATURE_SIZE:])

        try:
            ok = CT_sig_verify(pub, digest, sig)
        except CryptoError:
            raise ChipError('pubkey not on curve', STATUS_ECC_FAULT)

        if not ok:
            raise ChipError('miscompare', STATUS_MISCOMPARE)

        return bytes([STATUS_SUCCESS])

    def execute(self, body):
        # process one command packet (word address removed), return response packet
        try:
            if len(body) < 7 or body[0] != len(body) or crc16b(body[:-2]) != body[-2:]:
                raise ChipError('bad packet', STATUS_COMM_ERROR)

            opcode, p1 = body[1], body[2]
            p2 = int.from_bytes(body[3:5], 'little')
            data = body[5:-2]

            name = OPCODE_NAMES.get(opcode)
            if not name:
                raise ChipError('unknown opcode', STATUS_PARSE_ERROR)

            resp = getattr(self, 'cmd_' + name)(p1, p2, data)
            msg = None
        except ChipError as exc:
            resp = bytes([exc.code])
            msg = str(exc)

        if DEBUG:
            what = OPCODE_NAMES.get(body[1], '???') if len(body) > 1 else '???'
            print(f"Command '{what}' => " + (B2A(resp) if msg is None else f'{msg} (0x{resp[0]:02x})'))

        return wrap_response(resp)

    def handle(self, msg):
        # Take raw bus write, maybe return a reply
        if not msg:
            return b''

        wa = msg[0]
        if wa == WA_RESET and len(msg) == 1:
            # wake pulse
            self.awake = True
            return WAKE_RESPONSE

        if not self.awake:
            # chip ignores bus while asleep
            return b''

        if wa == WA_SLEEP:
            self.awake = False
            self.tempkey = None
            return None
        if wa == WA_IDLE:
            return None
        if wa == WA_COMMAND:
            return self.execute(msg[1:])

        return b''

    def emulate(self, pipename):
        # Using a unix socket as connector, run as an emulator for the chip.
        import atexit, socket

        # manage unix socket cleanup for client
        def sock_cleanup():
            if os.path.exists(pipename):
                os.unlink(pipename)
        sock_cleanup()
        atexit.register(sock_cleanup)

        pipe = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)

        pipe.bind(pipename)
        pipe.listen()
        while 1:
            print(f"Waiting for new connection on: {pipename}")
            con, addr = pipe.accept()

            print(f"Connected.")

            while 1:
                msg = con.recv(256)
                if not msg: break

                try:
                    resp = self.handle(msg)
                except Exception:
                    # shouldn't happen
                    traceback.print_exc()
                    resp = wrap_response(bytes([STATUS_EXECUTION_ERROR]))

                if resp:
                    con.sendall(resp)

            # like losing power: back to sleep
            self.awake = False
            self.tempkey = None
            con.close()

class ECEmulatedTransport(ECTransportABC):
    #
    # In-process connection to a ChipState; no socket needed.
    #
    is_emulator = True

    def __init__(self, chip, verbose=False):
        super().__init__(verbose)
        self.chip = chip
        self.name = 'emulator'

    def _wake(self):
        return self.chip.handle(bytes([WA_RESET]))

    def _sleep(self):
        self.chip.handle(bytes([WA_SLEEP]))

    def _send_recv(self, packet, delay_ms):
        return self.chip.handle(packet) or b''

def open_emulated(chip, verbose=False):
    # session on an in-process chip, already awake
    tr = ECEmulatedTransport(chip, verbose=verbose)
    tr.wake()
    return ECletDevice(tr)

def personalized_chip(serial=None):
    # chip that has been through "eclet personalize"
    chip = ChipState(serial)
    dev = open_emulated(chip)
    try:
        dev.personalize()
    finally:
        dev.close()
    return chip

# Options we want for all commands
@click.group()
@click.option('--quiet', '-q', is_flag=True, help='Less debugging')
def main(quiet=False):
    global DEBUG
    DEBUG = not quiet

@main.command('emulate')
@click.option('--factory', '-f', is_flag=True, help='Fresh from factory, needs personalize')
@click.option('--pipe', '-p', type=str, default='/tmp/eclet-pipe', help='Unix pipe for comms', metavar="PATH")
def emulate_chip(pipe, factory=False):
    '''
        Emulate a chip. Use "eclet -b PATH ..." to talk to it.
    '''
    chip = ChipState() if factory else personalized_chip()

    print(chip)

    chip.emulate(pipe)

@main.command('selftest')
def basic_test():
    '''
    Build a chip, personalize it, and do the basics with it.
    '''
    from eclet.compat import sha256s

    chip = ChipState()
    dev = open_emulated(chip)

    assert dev.read_state() == DeviceState.FACTORY
    assert dev.read_random() == FACTORY_RANDOM

    assert dev.personalize() == DeviceState.PERSONALIZED
    print(chip)

    md = sha256s(b'hello')
    pub = dev.get_public_key(0)
    sig = dev.sign(0, md)
    assert dev.verify(pub, md, sig)
    assert CT_sig_verify(pub, md, sig)
    assert not dev.verify(pub, sha256s(b'other'), sig)

    dev.close()
    print("sign/verify works")

if __name__ == '__main__':
    main()

# EOF
