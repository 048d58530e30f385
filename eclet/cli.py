#!/usr/bin/env python
#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# To use this, install with:
#
#   pip install --editable .
#
# That will create the command "eclet" in your path.
#
#
import click

from eclet.utils import is_hex_arg, parse_address
from eclet.constants import *
from eclet.dispatch import ArgumentsBuilder, dispatch
from eclet import __version__

def hex_arg(length, what):
    # make click callback: exactly "length" hex digits, given back as bytes
    def check(ctx, param, value):
        if value is None:
            return None
        if not is_hex_arg(value, length):
            raise click.BadParameter(f"Invalid {what}: need exactly {length} hex digits.")
        return bytes.fromhex(value)
    return check

_check_signature = hex_arg(SIGNATURE_HEX_LEN, 'P256 Signature')
_check_pubkey_hex = hex_arg(PUB_KEY_HEX_LEN, 'P256 Public Key')

def check_pub_key(ctx, param, value):
    # uncompressed point only: 0x04 then X and Y
    rv = _check_pubkey_hex(ctx, param, value)
    if rv is not None and rv[0] != UNCOMPRESSED_TAG:
        raise click.BadParameter("Invalid P256 Public Key: must start with 04 (uncompressed point).")
    return rv

def check_address(ctx, param, value):
    try:
        return parse_address(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc))


@click.command(context_settings=dict(auto_envvar_prefix='ECLET'))
@click.argument('command', metavar='COMMAND')
@click.option('--verbose', '-v', is_flag=True, help="Produce verbose output")
@click.option('--quiet', '--silent', '-q', '-s', 'silent', is_flag=True,
                    help="Don't produce any output")
@click.option('--bus', '-b', metavar="BUS", default=None,
                    help=f"I2C bus: defaults to {DEFAULT_BUS}")
@click.option('--address', '-a', metavar="ADDRESS", default=None, callback=check_address,
                    help=f"I2C address for the device (in hex): defaults to {DEFAULT_ADDRESS:02x}")
@click.option('--file', '-f', 'input_file', metavar="FILE", default=None,
                    help="Read from FILE vs. stdin")
@click.option('--signature', metavar="SIGNATURE", callback=_check_signature,
                    help="The signature to be verified (R,S: 128 hex digits)")
@click.option('--public-key', 'pub_key', metavar="PUBLIC_KEY", callback=check_pub_key,
                    help="The public key that produced the signature (04, X, Y: 130 hex digits)")
@click.option('--update-seed', is_flag=True,
                    help="Updates the random seed. Only applicable to certain commands")
@click.option('--key-slot', '-k', type=click.IntRange(min=0, max=NUM_SLOTS-1), metavar="SLOT",
                    default=None, help="The internal key slot to use (0-15)")
@click.option('--write', '-w', 'write_data', metavar="WRITE",
                    callback=hex_arg(WRITE_DATA_HEX_LEN, 'Data'),
                    help="The 32 byte data to write to a slot (64 hex digits)")
@click.option('--challenge', '-c', metavar="CHALLENGE",
                    callback=hex_arg(CHALLENGE_HEX_LEN, 'Challenge'),
                    help="The 32 byte challenge (64 hex digits)")
@click.option('--challenge-response', '-r', 'challenge_response', metavar="CHALLENGE_RESPONSE",
                    callback=hex_arg(CHALLENGE_RSP_HEX_LEN, 'Challenge Response'),
                    help="The 32 byte challenge response (64 hex digits)")
@click.option('--meta-data', '-m', 'meta', metavar="META",
                    callback=hex_arg(META_HEX_LEN, 'Meta Data'),
                    help="The 13 byte meta data associated with the mac (26 hex digits)")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx, command, **kws):
    '''
    Talk to the ECC chip (ATECC108) in your EClet.

    Currently implemented commands:

    \b
    personalize   You should run this command first upon receiving your
                  EClet.
    random        Retrieves 32 bytes of random data from the device.
    serial-num    Retrieves the device's serial number.
    get-config    Dumps the configuration zone.
    get-otp       Dumps the OTP (one time programmable) zone.
    state         Returns the device's state:
                    Factory -- Random will produce a fixed 0xFFFF0000
                    Initialized -- Configuration is locked, keys may be
                                   written
                    Personalized -- Keys are loaded. Memory is locked
    gen-key       Generates a P256 private key in the specified key slot.
                  Returns the public key (x,y) with the leading
                  uncompressed point format tag (0x04).
    get-pub       Returns the public key of a slot: 'get-pub -k <slot>'
    sign          ECDSA signature using the NIST P-256 curve. File given
                  with -f (or stdin) is SHA-256 hashed prior to signing.
                  Key picked with -k. Returns the signature (R,S).
    verify        Uses the device to verify the signature. Give the
                  public key with --public-key (including 04 tag), the
                  signature with --signature, and the file with -f.
    offline-verify-sign
                  Same as verify except it does NOT use the device, but
                  a software library.

    Options may also be given as environment variables, like ECLET_BUS.
    '''
    args = ArgumentsBuilder().update(command=command, **kws).freeze()

    ctx.exit(dispatch(command, args))

# EOF
