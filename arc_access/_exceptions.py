# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from subprocess import CalledProcessError


class AuthenticationError(Exception):

    def __init__(self, user: str, address: str, message: str):
        super().__init__(message)
        self.user = user
        self.address = address


class ElevationError(Exception):
    pass


class CommandFailed(CalledProcessError):
    """Non-zero exit status; output is stdout and stderr combined."""

    _where = 'on'

    def __init__(self, host: str, returncode, cmd, output: str):
        super().__init__(returncode, cmd, output)
        self.host = host

    def __str__(self):
        output = self.output[:5000]
        if self.returncode is None:
            result = "no exit status"
        else:
            result = f"exit status {self.returncode}"
        if not output:
            return f"Command {self.cmd!r} {self._where} {self.host} died with {result}"
        return f"Command {self.cmd!r} {self._where} {self.host} died with {result} ({output})"


class RemoteCommandError(CommandFailed):
    pass


class LocalCommandError(CommandFailed):

    _where = 'at'

    def __init__(self, returncode, cmd, output: str):
        super().__init__('localhost', returncode, cmd, output)
