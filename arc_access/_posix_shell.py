# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import os
import shlex
from textwrap import dedent


def quote_arg(arg):
    return shlex.quote(str(arg))


def command_to_script(command):
    str_args = []
    for arg in command:
        if isinstance(arg, str):
            str_args.append(arg)
        elif isinstance(arg, int) and not isinstance(arg, bool):
            str_args.append(str(arg))
        elif isinstance(arg, os.PathLike):
            str_args.append(os.fspath(arg))
        else:
            raise TypeError(f"Unsupported arg type {arg} in command {command}")
    return shlex.join(str_args)


def login_shell_command(script: str) -> str:
    """Wrap a script so that it runs in a login shell.

    Login shell is needed to have the PATH of the target user,
    e.g. /usr/sbin for wg and nft.

    >>> print(login_shell_command('id -u arc'))
    /bin/sh -lc 'id -u arc'
    >>> print(login_shell_command("echo 'x'"))
    /bin/sh -lc 'echo '"'"'x'"'"''
    """
    return '/bin/sh -lc ' + quote_arg(dedent(script).strip())


def sudo_stdin_command(command: str) -> str:
    """Prefix command with sudo reading password from stdin.

    The password is never a part of the command line. An empty prompt keeps
    the prompt out of the combined output. Cached credentials are dropped,
    so every elevated command asks for the password again.

    >>> print(sudo_stdin_command('/bin/sh -lc true'))
    sudo -S -p '' -k /bin/sh -lc true
    """
    return "sudo -S -p '' -k " + command


def heredoc(path: str, content: str, marker: str = 'ARC_EOF') -> str:
    """Shell snippet that writes content to path literally.

    >>> print(heredoc('/tmp/x', 'a $b\\n'))
    cat > /tmp/x <<'ARC_EOF'
    a $b
    ARC_EOF
    """
    if marker in content.splitlines():
        raise ValueError(f"Content contains heredoc marker {marker!r}")
    if not content.endswith('\n'):
        content += '\n'
    return f"cat > {quote_arg(path)} <<'{marker}'\n{content}{marker}"
