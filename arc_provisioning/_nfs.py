# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Share /home/arc of the remote host with the local host over the tunnel.

The export is reachable from the tunnel client address only, and all
access is squashed to arc, so ownership on the remote side never depends
on the local UID. The local side mounts it on demand with systemd
automount, so boot does not hang while the tunnel is down.
"""
import logging
import time
from typing import Callable
from typing import Tuple

from arc_access import CommandFailed
from arc_provisioning._errors import NfsMountError
from arc_provisioning._firewall import ufw_active
from arc_provisioning._machine import Machine
from arc_provisioning._managed_text import upsert_mount
from arc_provisioning._os_release import APT_FAMILY
from arc_provisioning._packages import install_packages
from arc_provisioning._wireguard_config import CLIENT_ADDRESS
from arc_provisioning._wireguard_config import CLIENT_IP
from arc_provisioning._wireguard_config import SERVER_IP

_logger = logging.getLogger(__name__)

MOUNT_TARGET = '/home/arc'
EXPORTS_FILE = '/etc/exports.d/arc.exports'
EXPORT_SOURCE = f'{SERVER_IP}:{MOUNT_TARGET}'
AUTOMOUNT_UNIT = 'home-arc.automount'
_MOUNT_OPTIONS = [
    'rw',
    'soft',
    'noauto',
    'x-systemd.automount',
    'x-systemd.idle-timeout=300',
    'x-systemd.mount-timeout=8s',
    '_netdev',
    'nofail',
    'nfsvers=4.2',
    'proto=tcp',
    'timeo=10',
    'retrans=1',
    ]


def render_exports(uid: str, gid: str) -> str:
    return (
        f'{MOUNT_TARGET} {CLIENT_ADDRESS}'
        f'(rw,sync,all_squash,no_subtree_check,anonuid={uid.strip()},anongid={gid.strip()},sec=sys)\n')


def render_fstab_line() -> str:
    return f'{EXPORT_SOURCE} {MOUNT_TARGET} nfs4 {",".join(_MOUNT_OPTIONS)} 0 0'


def resolve_arc_ids(remote: Machine) -> Tuple[str, str]:
    uid = remote.run(['id', '-u', 'arc'])
    gid = remote.run(['id', '-g', 'arc'])
    if not uid or not gid:
        raise NfsMountError("Resolved empty arc UID/GID on remote")
    return uid, gid


def install_server(remote: Machine, os_id: str):
    install_packages(remote, os_id, ['nfs-kernel-server'])


def export_home(remote: Machine):
    uid, gid = resolve_arc_ids(remote)
    remote.install_root_file(EXPORTS_FILE, render_exports(uid, gid), mode='0644')
    remote.sudo(['exportfs', '-ra'])
    if remote.succeeds(['systemctl', 'cat', 'nfs-server.service']):
        remote.sudo(['systemctl', 'enable', '--now', 'nfs-server'])
    else:
        remote.sudo(['systemctl', 'enable', '--now', 'nfs-kernel-server'])
    if ufw_active(remote):
        remote.sudo([
            'ufw', 'allow', 'in', 'on', 'wg0', 'proto', 'tcp',
            'from', CLIENT_IP, 'to', 'any', 'port', '2049',
            ])


def install_client(local: Machine, os_id: str):
    if os_id in APT_FAMILY:
        install_packages(local, os_id, ['nfs-common'])
    else:
        install_packages(local, os_id, ['nfs-utils'])


def _ensure_mount_target(local: Machine):
    try:
        # Exits with non-zero status if nothing is mounted exactly there.
        output = local.run(['findmnt', '-n', '-o', 'SOURCE,FSTYPE', '-M', MOUNT_TARGET])
    except CommandFailed:
        output = ''
    for line in output.splitlines():
        source, fs_type = (line.split() + ['', ''])[:2]
        # The automount trigger shows up as autofs until the first access.
        if fs_type == 'autofs' and source.startswith('systemd-'):
            continue
        if (source, fs_type) != (EXPORT_SOURCE, 'nfs4'):
            raise NfsMountError(
                f"{MOUNT_TARGET} is already mounted as {source} ({fs_type}), "
                f"expected {EXPORT_SOURCE} (nfs4)")
    if output:
        return
    if not local.succeeds(['test', '-e', MOUNT_TARGET]):
        local.sudo(['install', '-d', '-m', '0755', MOUNT_TARGET])
        return
    if not local.succeeds(['test', '-d', MOUNT_TARGET]):
        raise NfsMountError(f"{MOUNT_TARGET} exists but is not a directory")
    if local.sudo(['ls', '-A', MOUNT_TARGET]):
        raise NfsMountError(f"{MOUNT_TARGET} exists and is not empty; move existing data first, then retry")


def configure_automount(local: Machine):
    _ensure_mount_target(local)
    fstab = local.read_root_file('/etc/fstab')
    updated, changed = upsert_mount(fstab, MOUNT_TARGET, render_fstab_line())
    if changed:
        local.install_root_file('/etc/fstab', updated, mode='0644')
    local.sudo(['systemctl', 'daemon-reload'])
    try:
        local.sudo(['systemctl', 'restart', AUTOMOUNT_UNIT])
    except CommandFailed as e:
        _logger.warning("Restart %s failed, try to start: %s", AUTOMOUNT_UNIT, e)
        local.sudo(['systemctl', 'start', AUTOMOUNT_UNIT])


def _verify_once(local: Machine):
    # Listing the directory triggers the automount.
    local.run(['ls', '-la', MOUNT_TARGET])
    try:
        output = local.run(['findmnt', '-n', '-t', 'nfs4', '-o', 'SOURCE,TARGET', '-T', MOUNT_TARGET])
    except CommandFailed as e:
        raise NfsMountError(f"nfs4 mount not active for {MOUNT_TARGET}: {e}")
    fields = output.split()
    if fields[:2] != [EXPORT_SOURCE, MOUNT_TARGET]:
        raise NfsMountError(f"Unexpected findmnt output for {MOUNT_TARGET}: {output!r}")


def verify_mount(local: Machine, attempts: int = 5, sleep: Callable[[float], None] = time.sleep):
    """Check the real NFS mount, not the autofs trigger, with backoff."""
    for attempt in range(1, attempts + 1):
        try:
            _verify_once(local)
            return
        except (CommandFailed, NfsMountError) as e:
            last_error = e
            _logger.info("Verify %s, attempt %d/%d: %s", MOUNT_TARGET, attempt, attempts, e)
        if attempt < attempts:
            sleep(2 ** (attempt - 1))
    raise NfsMountError(
        f"Verify {MOUNT_TARGET} failed after {attempts} attempts with backoff: {last_error}")
