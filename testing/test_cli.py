#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Command line: parsing, validation, and dispatch of each command (against emulator).
#
import pytest
from eclet.constants import *
from eclet.compat import sha256s, CT_pick_keypair, CT_sign, CT_sig_verify
from eclet.utils import B2A

MSG = b'Attack at dawn\n'

@pytest.fixture
def msg_file(tmp_path):
    fn = tmp_path / 'msg.txt'
    fn.write_bytes(MSG)
    return str(fn)

@pytest.fixture
def keypair():
    pk, pub = CT_pick_keypair()
    return pk, pub, CT_sign(pk, sha256s(MSG))

def test_unknown_command(run_cli, opened):
    r = run_cli('bogus-command')
    assert r.exit_code == EXIT_USAGE_ERROR
    assert 'bogus-command' in r.output
    assert 'Usage:' in r.output
    assert not opened

def test_no_command(run_cli, opened):
    r = run_cli()
    assert r.exit_code == EXIT_USAGE_ERROR
    assert not opened

def test_two_commands(run_cli, opened):
    r = run_cli('state', 'random')
    assert r.exit_code == EXIT_USAGE_ERROR
    assert not opened

def test_command_case(run_cli, opened):
    r = run_cli('STATE')
    assert r.exit_code == EXIT_USAGE_ERROR
    assert not opened

def test_help(run_cli):
    r = run_cli('--help')
    assert r.exit_code == 0
    for cmd in ['personalize', 'random', 'serial-num', 'get-config', 'get-otp', 'state',
                'gen-key', 'get-pub', 'sign', 'verify', 'offline-verify-sign']:
        assert cmd in r.output

def test_version(run_cli):
    from eclet import __version__
    r = run_cli('--version')
    assert r.exit_code == 0
    assert __version__ in r.output

@pytest.mark.parametrize('slot', ['0', '15'])
def test_key_slot_ok(run_cli, opened, slot):
    r = run_cli('state', '-k', slot)
    assert r.exit_code == 0, r.output

@pytest.mark.parametrize('slot', ['-1', '16', 'x', '1.5'])
def test_key_slot_bad(run_cli, opened, slot):
    r = run_cli('get-pub', '-k', slot)
    assert r.exit_code == EXIT_USAGE_ERROR
    assert '--key-slot' in r.output
    assert not opened

@pytest.mark.parametrize('opt,length', [
    ('--signature', SIGNATURE_HEX_LEN),
    ('--public-key', PUB_KEY_HEX_LEN),
    ('--write', WRITE_DATA_HEX_LEN),
    ('--challenge', CHALLENGE_HEX_LEN),
    ('--challenge-response', CHALLENGE_RSP_HEX_LEN),
    ('--meta-data', META_HEX_LEN),
])
@pytest.mark.parametrize('delta', [-1, +1, -2])
def test_hex_option_length(run_cli, opened, opt, length, delta):
    r = run_cli('state', opt, '04' + ('a' * (length + delta - 2)))
    assert r.exit_code == EXIT_USAGE_ERROR
    assert opt in r.output
    assert not opened

@pytest.mark.parametrize('opt,length', [
    ('-w', WRITE_DATA_HEX_LEN),
    ('-c', CHALLENGE_HEX_LEN),
    ('-r', CHALLENGE_RSP_HEX_LEN),
    ('-m', META_HEX_LEN),
])
def test_hex_option_chars(run_cli, opened, opt, length):
    r = run_cli('state', opt, 'z' * length)
    assert r.exit_code == EXIT_USAGE_ERROR
    assert not opened

    # right size: accepted, and ignored by read-only command
    r = run_cli('state', opt, 'A0' * (length // 2))
    assert r.exit_code == 0, r.output
    assert r.output.strip() == 'Personalized'

def test_pubkey_tag(run_cli, opened, msg_file, keypair):
    pk, pub, sig = keypair
    bad = '05' + B2A(pub[1:])
    assert len(bad) == PUB_KEY_HEX_LEN

    r = run_cli('verify', '--public-key', bad, '--signature', B2A(sig), '-f', msg_file)
    assert r.exit_code == EXIT_USAGE_ERROR
    assert '--public-key' in r.output
    assert not opened

def test_short_signature(run_cli, opened, msg_file, keypair):
    pk, pub, sig = keypair
    r = run_cli('verify', '--signature', B2A(sig)[:-1])
    assert r.exit_code == EXIT_USAGE_ERROR
    assert '--signature' in r.output
    assert not opened

@pytest.mark.parametrize('cmd', ['verify', 'offline-verify-sign'])
def test_verify_needs_both(run_cli, opened, msg_file, keypair, cmd):
    pk, pub, sig = keypair

    r = run_cli(cmd, '--signature', B2A(sig), '-f', msg_file)
    assert r.exit_code == EXIT_USAGE_ERROR
    assert '--public-key' in r.output

    r = run_cli(cmd, '--public-key', B2A(pub), '-f', msg_file)
    assert r.exit_code == EXIT_USAGE_ERROR
    assert '--signature' in r.output

    r = run_cli(cmd, '-f', msg_file)
    assert r.exit_code == EXIT_USAGE_ERROR
    assert '--public-key' in r.output and '--signature' in r.output

    assert not opened

def test_random(run_cli, opened, chip):
    r = run_cli('random')
    assert r.exit_code == 0
    assert len(r.output.strip()) == RANDOM_SIZE * 2
    assert chip.seed_updates == 0

def test_random_update_seed(run_cli, opened, chip):
    r = run_cli('random', '--update-seed')
    assert r.exit_code == 0
    assert len(bytes.fromhex(r.output.strip())) == RANDOM_SIZE
    assert chip.seed_updates == 1

def test_serial(run_cli, opened, chip):
    r = run_cli('serial-num')
    assert r.exit_code == 0
    assert r.output.strip() == B2A(chip.serial)

def test_get_config(run_cli, opened, chip):
    r = run_cli('get-config')
    assert r.exit_code == 0
    lines = r.output.split()
    assert len(lines) == CONFIG_ZONE_SIZE // BLOCK_SIZE
    assert bytes.fromhex(''.join(lines)) == bytes(chip.config)

def test_get_otp(run_cli, opened):
    r = run_cli('get-otp')
    assert r.exit_code == 0
    assert bytes.fromhex(''.join(r.output.split())) == bytes(OTP_ZONE_SIZE)

def test_state(run_cli, opened):
    r = run_cli('state')
    assert r.exit_code == 0
    assert r.output.strip() == 'Personalized'

def test_personalize_again(run_cli, opened):
    r = run_cli('personalize')
    assert r.exit_code == 0
    assert r.output.strip() == 'Personalized'

def test_personalize_factory(run_cli, monkeypatch, factory_chip):
    from eclet.emulator import open_emulated
    import eclet.transport
    monkeypatch.setattr(eclet.transport, 'open_device',
                            lambda bus, address, verbose=False: open_emulated(factory_chip))

    r = run_cli('state')
    assert r.output.strip() == 'Factory'

    r = run_cli('random')
    assert r.output.strip() == 'ffff0000' * 8

    r = run_cli('personalize')
    assert r.exit_code == 0
    assert r.output.strip() == 'Personalized'
    assert factory_chip.data_locked

def test_gen_key(run_cli, opened, chip):
    r = run_cli('gen-key', '-k', '3')
    assert r.exit_code == 0
    pub = bytes.fromhex(r.output.strip())
    assert len(pub) == PUB_KEY_SIZE and pub[0] == UNCOMPRESSED_TAG
    assert chip.slots[3][1] == pub

    r = run_cli('get-pub', '-k', '3')
    assert r.output.strip() == B2A(pub)

def test_get_pub_default_slot(run_cli, opened, chip):
    r = run_cli('get-pub')
    assert r.exit_code == 0
    assert bytes.fromhex(r.output.strip()) == chip.slots[DEFAULT_KEY_SLOT][1]

def test_get_pub_empty_slot(run_cli, opened):
    # data slot: chip refuses, which is a device error
    r = run_cli('get-pub', '-k', '9')
    assert r.exit_code == EXIT_DEVICE_ERROR
    assert 'FAILURE' in r.output

def test_sign(run_cli, opened, chip, msg_file):
    r = run_cli('sign', '-f', msg_file, '-k', '0')
    assert r.exit_code == 0
    sig = r.output.strip()
    assert len(sig) == SIGNATURE_HEX_LEN

    pub = chip.slots[0][1]
    assert CT_sig_verify(pub, sha256s(MSG), bytes.fromhex(sig))

def test_sign_stdin(run_cli, opened, chip):
    r = run_cli('sign', '-k', '2', input=MSG)
    assert r.exit_code == 0
    sig = bytes.fromhex(r.output.strip())
    assert CT_sig_verify(chip.slots[2][1], sha256s(MSG), sig)

def test_sign_missing_file(run_cli, opened, tmp_path):
    r = run_cli('sign', '-f', str(tmp_path / 'nope.txt'))
    assert r.exit_code == EXIT_INPUT_ERROR
    assert 'nope.txt' in r.output
    assert not opened

@pytest.mark.parametrize('cmd', ['verify', 'offline-verify-sign'])
def test_verify_missing_file(run_cli, opened, tmp_path, keypair, cmd):
    pk, pub, sig = keypair
    r = run_cli(cmd, '--public-key', B2A(pub), '--signature', B2A(sig),
                    '-f', str(tmp_path / 'nope.txt'))
    assert r.exit_code == EXIT_INPUT_ERROR
    assert 'FAILURE' in r.output and 'nope.txt' in r.output
    assert not opened

def test_error_beats_sleep_error(run_cli, opened, monkeypatch):
    # chip refuses, then won't go to sleep either: report the refusal
    from eclet.emulator import ECEmulatedTransport
    from eclet.transport import comm_error

    def nack(self):
        raise comm_error("I2C write failed (NACK?)")
    monkeypatch.setattr(ECEmulatedTransport, '_sleep', nack)

    r = run_cli('get-pub', '-k', '9')
    assert r.exit_code == EXIT_DEVICE_ERROR
    assert 'execution error' in r.output
    assert 'NACK' not in r.output

    # but on its own, a failed sleep is still a failure
    r = run_cli('state')
    assert r.exit_code == EXIT_DEVICE_ERROR
    assert 'Personalized' in r.output
    assert 'NACK' in r.output

def test_emulator_hangs_up(run_cli, tmp_path):
    # peer answers the wake, then goes away
    import socket, threading

    pipe = str(tmp_path / 'pipe')
    srv = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    srv.bind(pipe)
    srv.listen()

    def serve():
        con, _ = srv.accept()
        con.recv(256)
        con.sendall(WAKE_RESPONSE)
        con.close()
        srv.close()
    th = threading.Thread(target=serve, daemon=True)
    th.start()

    r = run_cli('state', '-b', pipe)
    th.join(timeout=5)

    assert r.exit_code == EXIT_DEVICE_ERROR
    assert 'FAILURE' in r.output
    assert r.exception is None or isinstance(r.exception, SystemExit)

def test_options_anywhere(run_cli, opened, msg_file):
    r = run_cli('-k', '1', 'sign', '-f', msg_file)
    assert r.exit_code == 0
    r2 = run_cli('sign', '-f', msg_file, '--key-slot=1')
    assert r2.exit_code == 0

@pytest.mark.parametrize('cmd', ['verify', 'offline-verify-sign'])
def test_verify_good(run_cli, opened, msg_file, keypair, cmd):
    pk, pub, sig = keypair
    r = run_cli(cmd, '--public-key', B2A(pub), '--signature', B2A(sig), '-f', msg_file)
    assert r.exit_code == 0
    assert r.output.strip() == 'valid'

@pytest.mark.parametrize('cmd', ['verify', 'offline-verify-sign'])
def test_verify_mismatch(run_cli, opened, msg_file, keypair, cmd):
    pk, pub, sig = keypair
    _, other_pub = CT_pick_keypair()

    r = run_cli(cmd, '--public-key', B2A(other_pub).upper(), '--signature', B2A(sig),
                    '-f', msg_file)
    assert r.exit_code == 0
    assert r.output.strip() == 'invalid'

def test_offline_no_device(run_cli, opened, msg_file, keypair):
    pk, pub, sig = keypair
    r = run_cli('offline-verify-sign', '--public-key', B2A(pub), '--signature', B2A(sig),
                    '-f', msg_file)
    assert r.exit_code == 0
    assert not opened

def test_offline_bad_point(run_cli, opened, msg_file):
    r = run_cli('offline-verify-sign', '--public-key', '04' + '00'*64,
                    '--signature', '11' * 64, '-f', msg_file)
    assert r.exit_code == EXIT_CRYPTO_ERROR
    assert 'FAILURE' in r.output

def test_sign_then_verify_on_chip(run_cli, opened, msg_file):
    pub = run_cli('get-pub', '-k', '5').output.strip()
    sig = run_cli('sign', '-k', '5', '-f', msg_file).output.strip()

    r = run_cli('verify', '--public-key', pub, '--signature', sig, '-f', msg_file)
    assert r.output.strip() == 'valid'

    r = run_cli('verify', '--public-key', pub, '--signature', sig, input=b'something else')
    assert r.output.strip() == 'invalid'

def test_quiet(run_cli, opened):
    for flag in ['-q', '-s', '--quiet', '--silent']:
        r = run_cli('serial-num', flag)
        assert r.exit_code == 0
        assert r.output == ''

def test_quiet_beats_verbose(run_cli, opened):
    r = run_cli('state', '-v', '-q')
    assert r.output == ''
    assert opened[-1][2] == False

def test_verbose(run_cli, opened):
    r = run_cli('state', '-v')
    assert r.exit_code == 0
    assert opened[-1][2] == True
    assert '>> op=' in r.output

def test_bus_address(run_cli, opened):
    run_cli('state')
    assert opened[-1][:2] == (DEFAULT_BUS, DEFAULT_ADDRESS)

    run_cli('state', '-b', '/dev/i2c-7', '-a', '0x64')
    assert opened[-1][:2] == ('/dev/i2c-7', 0x64)

    # zero is a real address, not a parse failure
    run_cli('state', '-a', '0')
    assert opened[-1][:2] == (DEFAULT_BUS, 0)

def test_bad_address(run_cli, opened):
    r = run_cli('state', '-a', 'zz')
    assert r.exit_code == EXIT_USAGE_ERROR
    assert '--address' in r.output
    assert not opened

def test_env_config(run_cli, opened, monkeypatch):
    monkeypatch.setenv('ECLET_BUS', '/dev/i2c-3')
    monkeypatch.setenv('ECLET_ADDRESS', '61')
    r = run_cli('state')
    assert r.exit_code == 0
    assert opened[-1][:2] == ('/dev/i2c-3', 0x61)

def test_no_bus(run_cli, tmp_path):
    # nothing there: device error, not a crash
    r = run_cli('state', '-b', str(tmp_path / 'i2c-99'))
    assert r.exit_code == EXIT_DEVICE_ERROR
    assert 'i2c-99' in r.output

# EOF
