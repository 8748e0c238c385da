# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from abc import ABCMeta
from abc import abstractmethod
from typing import Optional
from typing import Sequence

from arc_access import CommandFailed
from arc_access import LocalShell
from arc_access import Ssh
from arc_access import command_to_script
from arc_access import local_shell

_logger = logging.getLogger(__name__)


class Machine(metaclass=ABCMeta):
    """Commands on one side as a user allowed to sudo without a password."""

    name: str

    @abstractmethod
    def run(self, args: Sequence, input: Optional[str] = None, strip: bool = True) -> str:  # noqa PyShadowingBuiltins
        pass

    @abstractmethod
    def sudo(self, args: Sequence, input: Optional[str] = None, strip: bool = True) -> str:  # noqa PyShadowingBuiltins
        pass

    def sh(self, script: str) -> str:
        return self.run(['sh', '-c', script])

    def sudo_sh(self, script: str) -> str:
        return self.sudo(['sh', '-c', script])

    def succeeds(self, args: Sequence) -> bool:
        try:
            self.run(args)
        except CommandFailed:
            return False
        return True

    def read_root_file(self, path: str) -> str:
        return self.sudo(['cat', path], strip=False)

    def install_root_file(self, path: str, content: str, mode: str = '0644'):
        if not content.endswith('\n'):
            content += '\n'
        _logger.info("%s: install %s", self.name, path)
        self.sudo(['install', '-D', '-m', mode, '/dev/stdin', path], input=content)


class LocalMachine(Machine):
    name = 'local'

    def __init__(self, shell: LocalShell = local_shell):
        self._shell = shell

    def __repr__(self):
        return '<LocalMachine>'

    def run(self, args, input=None, strip=True):  # noqa PyShadowingBuiltins
        return self._shell.run(args, input=input, strip=strip)

    def sudo(self, args, input=None, strip=True):  # noqa PyShadowingBuiltins
        return self._shell.sudo(*args, input=input, strip=strip)


class RemoteMachine(Machine):
    name = 'remote'

    def __init__(self, ssh: Ssh):
        self._ssh = ssh

    def __repr__(self):
        return f'<RemoteMachine {self._ssh.netloc()}>'

    def run(self, args, input=None, strip=True):  # noqa PyShadowingBuiltins
        return self._ssh.run(command_to_script(args), input=input, strip=strip)

    def sudo(self, args, input=None, strip=True):  # noqa PyShadowingBuiltins
        return self._ssh.run('sudo -n ' + command_to_script(args), input=input, strip=strip)
