#
# (c) Copyright 2022 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# Exceptions
#

class DeviceRuntimeError(RuntimeError):
    # chip said no, or we could not talk to it
    def __init__(self, msg, code, raw_msg):
        self.code = code
        self.raw_msg = raw_msg
        super().__init__(msg)

class InputError(RuntimeError):
    # file (or stdin) to be hashed could not be read
    pass

class CryptoError(RuntimeError):
    # software crypto failed, which is different from "signature invalid"
    pass

# EOF
