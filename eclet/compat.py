#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Wrappers for the crypto library. AKA API Cleanup
#
# My standards:
# - pubkeys: 65 bytes, always uncompressed (0x04 tag, X, Y)
# - private key: 32 bytes
# - signature: 64 bytes (R, S)
# - no DER, no PEM, no other serializations
# - message digests (for sig/verify) are already digested
# - ECDSA verify returns bool, doesn't raise exception for a bad signature
# - NIST P-256 only, because that's all the chip does
#
from hashlib import sha256

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, utils

from eclet.exceptions import CryptoError

__all__ = [ 'sha256s', 'CT_sig_verify', 'CT_sign', 'CT_pick_keypair', 'CT_priv_to_pubkey' ]

CURVE = ec.SECP256R1()

# digest is done already, so tell library not to hash again
_PREHASHED = ec.ECDSA(utils.Prehashed(hashes.SHA256()))

def sha256s(msg):
    # single-shot SHA256
    return sha256(msg).digest()

def _load_pubkey(pub):
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, bytes(pub))
    except ValueError as exc:
        raise CryptoError(f"Public key is not a P-256 point: {exc}")

def _load_privkey(priv):
    assert len(priv) == 32
    return ec.derive_private_key(int.from_bytes(priv, 'big'), CURVE)

def CT_pick_keypair():
    # return (priv[32], pub[65])
    pk = ec.generate_private_key(CURVE)
    priv = pk.private_numbers().private_value.to_bytes(32, 'big')
    return priv, _encode_pubkey(pk.public_key())

def _encode_pubkey(pubkey):
    nums = pubkey.public_numbers()
    return bytes([0x04]) + nums.x.to_bytes(32, 'big') + nums.y.to_bytes(32, 'big')

def CT_priv_to_pubkey(priv):
    # return uncompressed pubkey, 65 bytes
    return _encode_pubkey(_load_privkey(priv).public_key())

def CT_sign(priv, msg_digest):
    # returns 64-byte sig: R then S
    assert len(msg_digest) == 32
    der = _load_privkey(priv).sign(msg_digest, _PREHASHED)
    r, s = utils.decode_dss_signature(der)
    return r.to_bytes(32, 'big') + s.to_bytes(32, 'big')

def CT_sig_verify(pub, msg_digest, sig):
    # returns True or False
    # - raises CryptoError if the pubkey itself is unusable
    assert len(sig) == 64
    assert len(msg_digest) == 32

    key = _load_pubkey(pub)
    r = int.from_bytes(sig[0:32], 'big')
    s = int.from_bytes(sig[32:64], 'big')
    if not r or not s:
        # DER encoder is happy with zero, but it can never verify
        return False

    try:
        key.verify(utils.encode_dss_signature(r, s), msg_digest, _PREHASHED)
        return True
    except InvalidSignature:
        return False

# EOF
