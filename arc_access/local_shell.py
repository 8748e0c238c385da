# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import subprocess
from typing import Optional
from typing import Sequence
from typing import Union

from arc_access._exceptions import ElevationError
from arc_access._exceptions import LocalCommandError
from arc_access._posix_shell import command_to_script

_logger = logging.getLogger(__name__)


class LocalShell:

    def __init__(self, command_timeout_sec: float = 600):
        self._command_timeout_sec = command_timeout_sec

    def __repr__(self):
        return '<LocalShell>'

    def run(
            self,
            args: Sequence,
            *,
            input: Union[str, bytes, None] = None,  # noqa PyShadowingBuiltins
            timeout_sec: Optional[float] = None,
            check: bool = True,
            strip: bool = True,
            ) -> str:
        """Run a command synchronously; return stdout and stderr combined.

        Output is trimmed unless strip is false.

        >>> local_shell.run(['echo', 'hello'])
        'hello'
        >>> local_shell.run(['sh', '-c', 'echo oops; exit 3'], check=False)
        'oops'
        """
        script = command_to_script(args)
        if isinstance(input, str):
            input = input.encode('utf8')
        if timeout_sec is None:
            timeout_sec = self._command_timeout_sec
        _logger.info("Run: %s", script)
        try:
            process = subprocess.run(
                [str(arg) for arg in args],
                input=input,
                stdin=None if input is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=timeout_sec,
                )
        except subprocess.TimeoutExpired as e:
            output = (e.output or b'').decode(errors='backslashreplace').strip()
            raise LocalCommandError(None, script, output + f"\nTimed out after {timeout_sec} seconds")
        except FileNotFoundError as e:
            raise LocalCommandError(None, script, str(e))
        output = process.stdout.decode(errors='backslashreplace')
        if strip:
            output = output.strip()
        _logger.debug("Exit status %d: %s", process.returncode, output)
        if check and process.returncode != 0:
            raise LocalCommandError(process.returncode, script, output.strip())
        return output

    def sudo(self, *args, input=None, timeout_sec=None, check=True, strip=True) -> str:  # noqa PyShadowingBuiltins
        return self.run(
            ['sudo', '-n', *args], input=input, timeout_sec=timeout_sec, check=check, strip=strip)

    def succeeds(self, args: Sequence) -> bool:
        try:
            self.run(args)
        except LocalCommandError:
            return False
        return True


local_shell = LocalShell()


def check_local_privilege(shell: LocalShell = local_shell):
    try:
        shell.sudo('true')
    except LocalCommandError as e:
        raise ElevationError(
            "Local sudo must work without a password prompt; "
            f"run 'sudo -v' first or configure NOPASSWD: {e}") from e
