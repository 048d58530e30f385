#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# proto.py
#
# Implement the higher-level commands for the chip, on top of a transport.
#
#
from eclet.utils import crc16_value
from eclet.constants import *
from eclet.exceptions import DeviceRuntimeError

class ECletDevice:
    #
    # Session with the chip. Call methods on this instance to get work done.
    #
    def __init__(self, transport):
        self.tr = transport

    def __repr__(self):
        return '<%s via %s>' % (self.__class__.__name__, self.tr.name)

    def close(self):
        # put chip to sleep and release the bus
        try:
            self.tr.sleep()
        finally:
            self.tr.close()

    def send(self, opcode, p1=0, p2=0, data=b'', expect_len=None):
        return self.tr.send(opcode, p1=p1, p2=p2, data=data, expect_len=expect_len)

    #
    # Memory zones
    #
    def read_word(self, zone, word):
        # 4 bytes from zone, at word address
        return self.send(OP_READ, p1=zone, p2=word, expect_len=WORD_SIZE)

    def read_block(self, zone, block):
        # 32 bytes from zone
        return self.send(OP_READ, p1=zone | ZONE_READ_32, p2=block << 3, expect_len=BLOCK_SIZE)

    def _read_zone(self, zone, size):
        return b''.join(self.read_block(zone, b) for b in range(size // BLOCK_SIZE))

    def read_config_zone(self):
        # whole 128 bytes of the config zone
        return self._read_zone(ZONE_CONFIG, CONFIG_ZONE_SIZE)

    def read_otp_zone(self):
        # whole 64 bytes of the OTP zone
        return self._read_zone(ZONE_OTP, OTP_ZONE_SIZE)

    def write_word(self, zone, word, data):
        assert len(data) == WORD_SIZE
        self.send(OP_WRITE, p1=zone, p2=word, data=data, expect_len=1)

    def read_serial(self):
        # 9-byte serial number, which is split in the first block of config
        blk = self.read_block(ZONE_CONFIG, 0)
        return blk[CFG_SERIAL_HEAD] + blk[CFG_SERIAL_TAIL]

    def read_state(self):
        # Factory: nothing locked. Initialized: config locked. Personalized: both.
        word = self.read_word(ZONE_CONFIG, CFG_LOCK_WORD)
        lock_value = word[CFG_LOCK_VALUE % WORD_SIZE]
        lock_config = word[CFG_LOCK_CONFIG % WORD_SIZE]

        if lock_config != LOCKED:
            return DeviceState.FACTORY
        if lock_value != LOCKED:
            return DeviceState.INITIALIZED
        return DeviceState.PERSONALIZED

    #
    # Random
    #
    def read_random(self, update_seed=False):
        # 32 bytes from chip's RNG
        # - in factory state, chip gives a fixed pattern: FFFF0000...
        mode = RANDOM_SEED_UPDATE if update_seed else RANDOM_NO_SEED_UPDATE
        return self.send(OP_RANDOM, p1=mode, data=bytes(20), expect_len=RANDOM_SIZE)

    #
    # Keys and signatures
    #
    def _check_slot(self, slot):
        if not (0 <= slot < NUM_SLOTS):
            raise ValueError(f"Key slot out of range: {slot}")

    def generate_key(self, slot):
        # pick a new private key in slot; returns 65-byte uncompressed pubkey
        self._check_slot(slot)
        xy = self.send(OP_GENKEY, p1=GENKEY_PRIVATE, p2=slot,
                                            expect_len=PUB_KEY_SIZE-1)
        return bytes([UNCOMPRESSED_TAG]) + xy

    def get_public_key(self, slot):
        # calculate pubkey for private key already in slot
        self._check_slot(slot)
        xy = self.send(OP_GENKEY, p1=GENKEY_PUBLIC, p2=slot,
                                            expect_len=PUB_KEY_SIZE-1)
        return bytes([UNCOMPRESSED_TAG]) + xy

    def load_tempkey(self, digest):
        # put 32 bytes into TempKey, for following sign/verify
        if len(digest) != DIGEST_SIZE:
            raise ValueError("Digest must be exactly 32 bytes")
        self.send(OP_NONCE, p1=NONCE_PASSTHROUGH, data=digest, expect_len=1)

    def sign(self, slot, digest):
        # ECDSA sign of 32-byte digest; returns 64 bytes: R, S
        self._check_slot(slot)
        self.load_tempkey(digest)
        return self.send(OP_SIGN, p1=SIGN_EXTERNAL, p2=slot, expect_len=SIGNATURE_SIZE)

    def verify(self, pub_key, digest, signature):
        # have chip check signature over digest; returns True or False
        if len(pub_key) != PUB_KEY_SIZE or pub_key[0] != UNCOMPRESSED_TAG:
            raise ValueError("Public key must be 65 bytes, uncompressed")
        if len(signature) != SIGNATURE_SIZE:
            raise ValueError("Signature must be exactly 64 bytes")

        self.load_tempkey(digest)
        try:
            self.send(OP_VERIFY, p1=VERIFY_EXTERNAL, p2=KEY_TYPE_P256,
                            data=bytes(signature) + bytes(pub_key[1:]), expect_len=1)
        except DeviceRuntimeError as exc:
            if exc.code == STATUS_MISCOMPARE:
                return False
            raise

        return True

    #
    # Setup
    #
    def lock_config(self):
        # lock config zone, after checking it's what we think it is
        summary = crc16_value(self.read_config_zone())
        self.send(OP_LOCK, p1=LOCK_CONFIG, p2=summary, expect_len=1)

    def lock_data(self):
        self.send(OP_LOCK, p1=LOCK_DATA | LOCK_NO_CRC, expect_len=1)

    def write_slot_configs(self):
        # private keys in low slots, data in the others
        slot_cfg = b''
        key_cfg = b''
        for slot in range(NUM_SLOTS):
            if slot in PRIVATE_KEY_SLOTS:
                slot_cfg += PRIVATE_SLOT_CONFIG
                key_cfg += PRIVATE_KEY_CONFIG
            else:
                slot_cfg += DATA_SLOT_CONFIG
                key_cfg += DATA_KEY_CONFIG

        for base, blob in [(CFG_SLOT_CONFIG, slot_cfg), (CFG_KEY_CONFIG, key_cfg)]:
            for pos in range(0, len(blob), WORD_SIZE):
                self.write_word(ZONE_CONFIG, (base + pos) // WORD_SIZE, blob[pos:pos+WORD_SIZE])

    def personalize(self):
        # Walk chip forward to personalized state; returns final state
        # - factory: write slot configs, lock config
        # - initialized: make private keys, lock data
        # - personalized: nothing to do
        state = self.read_state()

        if state == DeviceState.FACTORY:
            self.write_slot_configs()
            self.lock_config()
            state = self.read_state()

        if state == DeviceState.INITIALIZED:
            for slot in PRIVATE_KEY_SLOTS:
                self.generate_key(slot)
            self.lock_data()
            state = self.read_state()

        return state

# EOF
