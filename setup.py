#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
#
# EClet command line driver and python support library
#

# To use this command to install and yet be able to edit the code (here). Great for dev:
#
#   pip install --editable .
#
# with test dependencies
#
#   pip install --editable '.[test]'
#
#
import re
from setuptools import setup

# package imports its dependencies, so don't import it here
with open("eclet/__init__.py", "r") as fh:
    __version__ = re.search(r"^__version__ = '([^']+)'", fh.read(), re.M).group(1)

# these minimum versions are tested, some earlier values would probably work too.
requirements = [
    'click>=8.0.3',
    'crcmod>=1.7',
    'cryptography>=3.4',
    'adafruit-circuitpython-busdevice>=5.1.0',
    'adafruit-extended-bus>=1.0.2',
]

test_requirements = [
    'pytest',
]

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='eclet',
    version=__version__,
    packages=[ 'eclet' ],
    python_requires='>=3.7',
    install_requires=requirements,
    extras_require={
        'test': test_requirements,
    },
    author='Coinkite Inc.',
    author_email='support@coinkite.com',
    description="Talk to the ECC chip in your EClet (ATECC108) using Python",
    long_description=long_description,
    long_description_content_type="text/markdown",
    entry_points='''
        [console_scripts]
        eclet=eclet.cli:main
        eclet-emulator=eclet.emulator:main
    ''',
    classifiers=[
        'Operating System :: POSIX :: Linux',
    ],
)

