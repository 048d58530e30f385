#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# dispatch.py
#
# Table of commands, and the logic that picks one and runs it with validated arguments.
#
from collections import namedtuple
from dataclasses import dataclass, fields, replace
from typing import Optional

import click

from eclet.constants import *
from eclet.exceptions import DeviceRuntimeError, InputError, CryptoError
from eclet.compat import sha256s, CT_sig_verify
from eclet.utils import B2A, read_input, hexdump_lines


@dataclass(frozen=True)
class ParsedArguments:
    """
    Everything from the command line, validated. Built once per run, never changed.

    Hex values arrive here already decoded to bytes of exactly the right length.
    """
    command: str
    bus: str = DEFAULT_BUS
    address: int = DEFAULT_ADDRESS
    verbose: bool = False
    silent: bool = False
    input_file: Optional[str] = None
    key_slot: Optional[int] = None
    update_seed: bool = False
    write_data: Optional[bytes] = None
    challenge: Optional[bytes] = None
    challenge_response: Optional[bytes] = None
    meta: Optional[bytes] = None
    signature: Optional[bytes] = None
    pub_key: Optional[bytes] = None


class ArgumentsBuilder:
    #
    # Collects values while options are parsed, then freezes them.
    #
    # - None means "not given", so defaults from ParsedArguments apply
    #
    FIELDS = frozenset(f.name for f in fields(ParsedArguments))

    def __init__(self):
        self._values = dict()
        self._frozen = False

    def set(self, name, value):
        if self._frozen:
            raise RuntimeError("Arguments already frozen")
        if name not in self.FIELDS:
            raise KeyError(name)
        if value is not None:
            self._values[name] = value
        return self

    def update(self, **kws):
        for k, v in kws.items():
            self.set(k, v)
        return self

    def freeze(self):
        if 'command' not in self._values:
            raise click.UsageError("Missing command.")

        args = ParsedArguments(**self._values)
        if args.silent and args.verbose:
            # quiet wins
            args = replace(args, verbose=False)

        self._frozen = True
        return args


# command line spelling of each field, for error messages
OPTION_NAMES = {
    'input_file': '--file',
    'key_slot': '--key-slot',
    'write_data': '--write',
    'challenge': '--challenge',
    'challenge_response': '--challenge-response',
    'meta': '--meta-data',
    'signature': '--signature',
    'pub_key': '--public-key',
}

Command = namedtuple('Command', 'name handler requires hashes_input uses_device')

# command name => Command
COMMANDS = dict()

def command(name, requires=(), hashes_input=False, uses_device=True):
    # register handler for a command word
    # - requires: fields of ParsedArguments which must be present
    # - hashes_input: handler gets SHA256 of input file (or stdin) as "digest"
    # - uses_device: handler gets an open device session as "dev"
    def doit(fcn):
        COMMANDS[name] = Command(name, fcn, tuple(requires), hashes_input, uses_device)
        return fcn
    return doit

def missing_arguments(cmd, args):
    # list of option names the command needs, but didn't get
    return [OPTION_NAMES.get(f, f) for f in cmd.requires if getattr(args, f) is None]

def resolve_slot(args):
    # use chip's default slot when none given
    return DEFAULT_KEY_SLOT if args.key_slot is None else args.key_slot

def emit(args, *lines):
    # normal output, unless told to be quiet
    if not args.silent:
        for ln in lines:
            click.echo(ln)

def report(msg):
    # errors always shown
    click.echo(f"FAILURE: {msg}", err=True)

def dispatch(command_name, args, opener=None):
    '''
    Run one command. Returns process exit status.

    Usage problems are raised as click.UsageError before any I/O happens.
    '''
    cmd = COMMANDS.get(command_name)
    if cmd is None:
        raise click.UsageError(f"Unknown command: {command_name}")

    missing = missing_arguments(cmd, args)
    if missing:
        raise click.UsageError(f"Command '{cmd.name}' requires: {', '.join(missing)}")

    if opener is None:
        from eclet.transport import open_device as opener

    try:
        kws = dict()
        if cmd.hashes_input:
            kws['digest'] = sha256s(read_input(args.input_file))

        if not cmd.uses_device:
            return cmd.handler(args, **kws)

        dev = opener(args.bus, args.address, verbose=args.verbose)
        try:
            rv = cmd.handler(args, dev=dev, **kws)
        except Exception:
            # first problem is the one to report; chip may not hear the sleep
            try:
                dev.close()
            except DeviceRuntimeError:
                pass
            raise

        dev.close()
        return rv

    except InputError as exc:
        report(exc)
        return EXIT_INPUT_ERROR
    except CryptoError as exc:
        report(exc)
        return EXIT_CRYPTO_ERROR
    except DeviceRuntimeError as exc:
        report(exc)
        return EXIT_DEVICE_ERROR

#
# The commands.
#

@command('personalize')
def do_personalize(args, dev):
    state = dev.personalize()
    emit(args, str(state))
    return EXIT_SUCCESS

@command('random')
def do_random(args, dev):
    emit(args, B2A(dev.read_random(update_seed=args.update_seed)))
    return EXIT_SUCCESS

@command('serial-num')
def do_serial_num(args, dev):
    emit(args, B2A(dev.read_serial()))
    return EXIT_SUCCESS

@command('get-config')
def do_get_config(args, dev):
    emit(args, *hexdump_lines(dev.read_config_zone()))
    return EXIT_SUCCESS

@command('get-otp')
def do_get_otp(args, dev):
    emit(args, *hexdump_lines(dev.read_otp_zone()))
    return EXIT_SUCCESS

@command('state')
def do_state(args, dev):
    emit(args, str(dev.read_state()))
    return EXIT_SUCCESS

@command('gen-key')
def do_gen_key(args, dev):
    emit(args, B2A(dev.generate_key(resolve_slot(args))))
    return EXIT_SUCCESS

@command('get-pub')
def do_get_pub(args, dev):
    emit(args, B2A(dev.get_public_key(resolve_slot(args))))
    return EXIT_SUCCESS

@command('sign', hashes_input=True)
def do_sign(args, dev, digest):
    emit(args, B2A(dev.sign(resolve_slot(args), digest)))
    return EXIT_SUCCESS

@command('verify', requires=['pub_key', 'signature'], hashes_input=True)
def do_verify(args, dev, digest):
    ok = dev.verify(args.pub_key, digest, args.signature)
    emit(args, 'valid' if ok else 'invalid')
    return EXIT_SUCCESS

@command('offline-verify-sign', requires=['pub_key', 'signature'], hashes_input=True,
                                    uses_device=False)
def do_offline_verify(args, digest):
    ok = CT_sig_verify(args.pub_key, digest, args.signature)
    emit(args, 'valid' if ok else 'invalid')
    return EXIT_SUCCESS

# EOF
