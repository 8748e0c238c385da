# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Remote display forwarding with waypipe over the tunnel.

The local user service keeps a waypipe client socket and forwards it to
the runtime directory of arc on the remote host, where waypipe server
picks it up. The runtime directory must outlive SSH sessions (linger),
and sshd must replace stale forwarded sockets.
"""
import logging
from pathlib import Path

from arc_provisioning._machine import Machine
from arc_provisioning._packages import install_packages
from arc_provisioning._wireguard_config import SERVER_IP

_logger = logging.getLogger(__name__)

SSHD_DROP_IN = '/etc/ssh/sshd_config.d/arc-waypipe.conf'
UNIT_NAME = 'arc-waypipe.service'
LOCAL_SOCKET = 'arc-waypipe.sock'
REMOTE_SOCKET = 'waypipe.sock'


def configure_remote_runtime(remote: Machine, os_id: str):
    install_packages(remote, os_id, ['waypipe'])
    remote.sudo(['loginctl', 'enable-linger', 'arc'])
    remote.install_root_file(SSHD_DROP_IN, 'StreamLocalBindUnlink yes\n')
    remote.sudo(['sshd', '-t'])
    remote.sudo(['sh', '-c', 'systemctl reload ssh || systemctl reload sshd'])


def render_user_unit(remote_uid: str, key_path: Path) -> str:
    remote_socket = f'/run/user/{remote_uid}/{REMOTE_SOCKET}'
    return '\n'.join([
        '[Unit]',
        'Description=ARC persistent waypipe tunnel to remotehost',
        'After=network-online.target',
        '',
        '[Service]',
        f'ExecStartPre=-/bin/rm -f %t/{LOCAL_SOCKET}',
        (
            "ExecStart=/bin/sh -c '"
            f"waypipe --socket %t/{LOCAL_SOCKET} client & "
            f"exec ssh -N -i {key_path} "
            "-o ExitOnForwardFailure=yes -o ServerAliveInterval=15 "
            "-o StrictHostKeyChecking=accept-new "
            f"-R {remote_socket}:%t/{LOCAL_SOCKET} arc@{SERVER_IP}'"
            ),
        'Restart=always',
        'RestartSec=5',
        '',
        '[Install]',
        'WantedBy=default.target',
        '',
        ])


def configure_local_tunnel(local: Machine, os_id: str, remote_uid: str, key_path: Path, home: Path):
    install_packages(local, os_id, ['waypipe'])
    unit_path = home / '.config' / 'systemd' / 'user' / UNIT_NAME
    unit_path.parent.mkdir(parents=True, exist_ok=True)
    unit = render_user_unit(remote_uid, key_path)
    if unit_path.exists() and unit_path.read_text() == unit:
        _logger.info("%s is up to date", unit_path)
    else:
        unit_path.write_text(unit)
    local.run(['systemctl', '--user', 'daemon-reload'])
    local.run(['systemctl', '--user', 'enable', '--now', UNIT_NAME])
    local.run(['systemctl', '--user', 'restart', UNIT_NAME])
