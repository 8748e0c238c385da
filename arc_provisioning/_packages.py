# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import re
from typing import List
from typing import Optional
from typing import Sequence

from arc_access import CommandFailed
from arc_provisioning._errors import PackageInstallError
from arc_provisioning._errors import UnsupportedPlatformError
from arc_provisioning._machine import Machine
from arc_provisioning._os_release import APT_FAMILY
from arc_provisioning._os_release import LOCAL_SUPPORTED
from arc_provisioning._os_release import PACMAN_FAMILY

_logger = logging.getLogger(__name__)


def install_packages(
        machine: Machine,
        os_id: str,
        apt_packages: Sequence[str],
        pacman_packages: Optional[Sequence[str]] = None,
        ):
    if pacman_packages is None:
        pacman_packages = apt_packages
    if os_id in APT_FAMILY:
        machine.sudo(['apt-get', 'update'])
        machine.sudo(['env', 'DEBIAN_FRONTEND=noninteractive', 'apt-get', 'install', '-y', *apt_packages])
    elif os_id in PACMAN_FAMILY:
        machine.sudo(['pacman', '-Sy', '--noconfirm', '--needed', *pacman_packages])
    else:
        raise UnsupportedPlatformError(machine.name, os_id, LOCAL_SUPPORTED)


def install_wireguard(machine: Machine, os_id: str):
    install_packages(machine, os_id, ['wireguard', 'wireguard-tools'], ['wireguard-tools'])
    ensure_wireguard_kernel(machine, os_id)


def manjaro_headers_package(kernel_release: str) -> Optional[str]:
    """Name the header package of a Manjaro kernel.

    >>> manjaro_headers_package('6.6.11-1-MANJARO')
    'linux66-headers'
    >>> manjaro_headers_package('6.10.1-3-MANJARO')
    'linux610-headers'
    >>> manjaro_headers_package('garbage') is None
    True
    """
    match = re.match(r'\D*(\d+)\.(\d+)', kernel_release)
    if match is None:
        return None
    return f'linux{match.group(1)}{match.group(2)}-headers'


class _InstallLog:

    def __init__(self, machine: Machine):
        self._machine = machine
        self._entries: List[str] = []

    def try_sudo(self, args: Sequence[str]) -> bool:
        command = ' '.join(args)
        try:
            output = self._machine.sudo(args)
        except CommandFailed as e:
            self._entries.append(f"$ sudo -n {command}\n{e.output}\nERR: exit status {e.returncode}")
            return False
        self._entries.append(f"$ sudo -n {command}\n{output or '(ok)'}")
        return True

    def __str__(self):
        return '\n\n'.join(self._entries)


def ensure_wireguard_kernel(machine: Machine, os_id: str):
    """Load the wireguard module, installing DKMS or extra modules if needed.

    Most kernels have WireGuard built in or shipped as a module.
    Custom and older kernels need DKMS with matching headers.
    """
    try:
        machine.sudo(['modprobe', 'wireguard'])
        return
    except CommandFailed as e:
        _logger.warning("%s: modprobe wireguard failed, try to install kernel support: %s", machine.name, e)
    kernel_release = machine.run(['uname', '-r'])
    log = _InstallLog(machine)
    if os_id == 'ubuntu':
        log.try_sudo(['apt-get', 'install', '-y', 'linux-modules-extra-' + kernel_release])
        log.try_sudo(['apt-get', 'install', '-y', 'wireguard-dkms', 'linux-headers-' + kernel_release])
    elif os_id == 'debian':
        log.try_sudo(['apt-get', 'install', '-y', 'wireguard-dkms', 'linux-headers-' + kernel_release])
    elif os_id in PACMAN_FAMILY:
        log.try_sudo(['pacman', '-Sy', '--noconfirm', 'dkms', 'wireguard-dkms'])
        for headers in _pacman_header_candidates(machine, kernel_release):
            if log.try_sudo(['pacman', '-Sy', '--noconfirm', headers]):
                break
    log.try_sudo(['depmod', '-a'])
    try:
        machine.sudo(['modprobe', 'wireguard'])
    except CommandFailed as e:
        raise PackageInstallError(
            f"{machine.name}: WireGuard kernel support missing (modprobe wireguard failed): {e}",
            "Install log:\n" + str(log),
            ) from e


def _pacman_header_candidates(machine: Machine, kernel_release: str) -> List[str]:
    candidates = []
    try:
        pkgbase = machine.run(['cat', f'/usr/lib/modules/{kernel_release}/pkgbase'])
    except CommandFailed:
        pkgbase = ''
    if pkgbase:
        candidates.append(pkgbase + '-headers')
    manjaro_headers = manjaro_headers_package(kernel_release)
    if manjaro_headers is not None:
        candidates.append(manjaro_headers)
    candidates.append('linux-headers')
    return candidates
