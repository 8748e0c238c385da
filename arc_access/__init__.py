# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from arc_access._exceptions import AuthenticationError
from arc_access._exceptions import CommandFailed
from arc_access._exceptions import ElevationError
from arc_access._exceptions import LocalCommandError
from arc_access._exceptions import RemoteCommandError
from arc_access._posix_shell import command_to_script
from arc_access._posix_shell import heredoc
from arc_access._posix_shell import login_shell_command
from arc_access._posix_shell import quote_arg
from arc_access._posix_shell import sudo_stdin_command
from arc_access._ssh_shell import Ssh
from arc_access._ssh_shell import detect_privilege
from arc_access._ssh_shell import split_address
from arc_access.local_shell import LocalShell
from arc_access.local_shell import check_local_privilege
from arc_access.local_shell import local_shell

__all__ = [
    'AuthenticationError',
    'CommandFailed',
    'ElevationError',
    'LocalCommandError',
    'LocalShell',
    'RemoteCommandError',
    'Ssh',
    'check_local_privilege',
    'command_to_script',
    'detect_privilege',
    'heredoc',
    'local_shell',
    'login_shell_command',
    'quote_arg',
    'split_address',
    'sudo_stdin_command',
    ]
