# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""The arc service account on the remote host.

Bootstrap steps log in with the operator's password and elevate with it
if the operator is not root. Everything after them logs in as arc with
the local key and uses passwordless sudo.
"""
import logging
from pathlib import Path

from arc_access import RemoteCommandError
from arc_access import Ssh
from arc_access import heredoc
from arc_access import quote_arg

_logger = logging.getLogger(__name__)

ARC_USER = 'arc'
SUDOERS_FILE = '/etc/sudoers.d/arc'

_home = f'home="$(getent passwd {ARC_USER} | cut -d: -f6)"'


def _bootstrap(ssh: Ssh, script: str, use_sudo: bool, password: str, what: str):
    try:
        ssh.run(script, elevate=use_sudo, sudo_password=password)
    except RemoteCommandError as e:
        raise RemoteCommandError(ssh.netloc(), e.returncode, what, e.output) from e


def ensure_user(ssh: Ssh, use_sudo: bool, password: str):
    _bootstrap(ssh, f'''
        set -eu
        if ! id -u {ARC_USER} >/dev/null 2>&1; then
            useradd --create-home --shell /bin/bash {ARC_USER}
        fi
        {_home}
        install -d -m 0755 -o {ARC_USER} -g {ARC_USER} "$home"
        ''', use_sudo, password, f"create user {ARC_USER}")


def ensure_sudoers(ssh: Ssh, use_sudo: bool, password: str):
    # Files with a dot in the name are ignored by sudo; validate before moving in place.
    staging = SUDOERS_FILE + '.arc-new'
    _bootstrap(ssh, '\n'.join([
        'set -eu',
        'umask 0337',
        heredoc(staging, f'{ARC_USER} ALL=(ALL) NOPASSWD:ALL\n'),
        f'visudo -cf {staging} >/dev/null',
        f'chmod 0440 {staging}',
        f'mv -f {staging} {SUDOERS_FILE}',
        ]), use_sudo, password, f"install {SUDOERS_FILE}")


def ensure_hushlogin(ssh: Ssh, use_sudo: bool, password: str):
    _bootstrap(ssh, f'''
        set -eu
        {_home}
        touch "$home/.hushlogin"
        chown {ARC_USER}:{ARC_USER} "$home/.hushlogin"
        ''', use_sudo, password, "create ~/.hushlogin for arc")


def ensure_authorized_key(ssh: Ssh, use_sudo: bool, password: str, public_key_line: str):
    public_key_line = public_key_line.strip()
    if not public_key_line:
        raise ValueError("Public key line is empty")
    key = quote_arg(public_key_line)
    _bootstrap(ssh, f'''
        set -eu
        {_home}
        install -d -m 0700 -o {ARC_USER} -g {ARC_USER} "$home/.ssh"
        file="$home/.ssh/authorized_keys"
        touch "$file"
        if ! grep -qxF {key} "$file"; then
            if [ -s "$file" ] && [ -n "$(tail -c 1 "$file")" ]; then
                echo >> "$file"
            fi
            printf '%s\\n' {key} >> "$file"
        fi
        chown {ARC_USER}:{ARC_USER} "$file"
        chmod 0600 "$file"
        ''', use_sudo, password, "install arc authorized_keys")


def arc_session(address: str, key_path: Path, connect_timeout_sec: float, command_timeout_sec: float) -> Ssh:
    return Ssh.from_address(
        ARC_USER, address,
        key_path=key_path,
        connect_timeout_sec=connect_timeout_sec,
        command_timeout_sec=command_timeout_sec,
        )


def verify_login(ssh: Ssh):
    """Log in as arc with the key and check passwordless sudo."""
    ssh.run('true')
    try:
        ssh.run('sudo -n true')
    except RemoteCommandError as e:
        raise RemoteCommandError(ssh.netloc(), e.returncode, "arc sudo verification", e.output) from e
    _logger.info("%s: key login and sudo work for %s", ssh, ARC_USER)
