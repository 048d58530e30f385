import pytest

def pytest_addoption(parser):
    parser.addoption("--bus", action="store", type=str,
                     default=None, help="I2C bus with a real chip on it, like /dev/i2c-1")

def pytest_configure(config):
    config.addinivalue_line("markers", "device: needs a real chip (use --bus)")

@pytest.fixture(scope='session')
def real_dev(request):
    # a real chip over I2C; does not change its state
    from eclet.transport import open_device

    bus = request.config.getoption("--bus")
    if bus is None:
        raise pytest.skip("need --bus for this test")

    dev = open_device(bus)
    yield dev
    dev.close()

@pytest.fixture
def factory_chip():
    from eclet.emulator import ChipState
    return ChipState()

@pytest.fixture
def chip():
    # emulated chip, already personalized
    from eclet.emulator import personalized_chip
    return personalized_chip()

@pytest.fixture
def dev(chip):
    # session on the emulated chip
    from eclet.emulator import open_emulated
    d = open_emulated(chip)
    yield d
    d.close()

@pytest.fixture
def opened(monkeypatch, chip):
    # route "eclet" CLI to the emulated chip, and remember what was opened
    from eclet.emulator import open_emulated
    import eclet.transport

    calls = []
    def fake_open(bus=None, address=None, verbose=False):
        calls.append((bus, address, verbose))
        return open_emulated(chip, verbose=verbose)

    monkeypatch.setattr(eclet.transport, 'open_device', fake_open)
    return calls

@pytest.fixture
def run_cli():
    from click.testing import CliRunner
    from eclet.cli import main

    def doit(*args, input=None):
        return CliRunner().invoke(main, list(args), input=input)

    return doit

# EOF
