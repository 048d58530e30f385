#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#

__version__ = '0.2.0'

__all__ = [ 'proto', 'exceptions', 'transport', 'constants', 'utils', 'dispatch' ]

# wake chip on a bus, get a session
from eclet.transport import open_device

# commands for the chip, wants a transport
from eclet.proto import ECletDevice
