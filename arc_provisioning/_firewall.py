# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Remote firewall: ufw rule for the tunnel, nftables redirect to loopback.

The redirect makes services bound to 127.0.0.1 on the remote host
reachable from the local host as 10.0.0.1 over the tunnel only.
"""
import logging

from arc_access import CommandFailed
from arc_provisioning._errors import ServiceError
from arc_provisioning._machine import Machine
from arc_provisioning._packages import install_packages
from arc_provisioning._wireguard_config import SERVER_IP
from arc_provisioning._wireguard_config import WG_INTERFACE
from arc_provisioning._wireguard_config import WG_PORT

_logger = logging.getLogger(__name__)

NFT_PATH = '/etc/nftables.d/lh_redirect.nft'
REDIRECT_SERVICE = 'arc-lh-redirect-nftable.service'
REDIRECT_SERVICE_PATH = '/etc/systemd/system/' + REDIRECT_SERVICE
SYSCTL_PATH = '/etc/sysctl.d/99-arc-route-localnet.conf'
_NFT_CANDIDATES = ['/usr/sbin/nft', '/usr/bin/nft', '/sbin/nft', '/bin/nft']


def ufw_active(machine: Machine) -> bool:
    if not machine.succeeds(['sh', '-c', 'command -v ufw']):
        return False
    try:
        status = machine.sudo(['ufw', 'status'])
    except CommandFailed:
        return False
    return 'Status: active' in status


def open_wireguard_port(machine: Machine):
    if not ufw_active(machine):
        _logger.info("%s: ufw is not active, leave firewall as is", machine.name)
        return
    machine.sudo(['ufw', 'allow', f'{WG_PORT}/udp'])


def render_nft_rules() -> str:
    return (
        'table ip lh_redirect {\n'
        '  chain prerouting {\n'
        '    type nat hook prerouting priority dstnat; policy accept;\n'
        '\n'
        '    # Expose localhost services over WireGuard by DNATing wg destination to loopback.\n'
        f'    iifname "{WG_INTERFACE}" ip daddr {SERVER_IP} dnat to 127.0.0.1\n'
        '  }\n'
        '}\n'
        )


def render_redirect_service(nft_binary: str) -> str:
    return (
        '[Unit]\n'
        'Description=ARC nftables redirect rules\n'
        'After=network-online.target\n'
        'Wants=network-online.target\n'
        '\n'
        '[Service]\n'
        'Type=oneshot\n'
        f'ExecStartPre=-{nft_binary} delete table ip lh_redirect\n'
        f'ExecStart={nft_binary} -f {NFT_PATH}\n'
        'RemainAfterExit=yes\n'
        '\n'
        '[Install]\n'
        'WantedBy=multi-user.target\n'
        )


def render_sysctl() -> str:
    return (
        'net.ipv4.conf.all.route_localnet=1\n'
        f'net.ipv4.conf.{WG_INTERFACE}.route_localnet=1\n'
        )


def _find_nft(machine: Machine) -> str:
    try:
        return machine.run(['sh', '-c', 'command -v nft'])
    except CommandFailed:
        pass
    for candidate in _NFT_CANDIDATES:
        if machine.succeeds(['test', '-x', candidate]):
            return candidate
    raise ServiceError(f"{machine.name}: nft binary not found")


def apply_redirect(machine: Machine, os_id: str):
    install_packages(machine, os_id, ['nftables'])
    nft_binary = _find_nft(machine)
    machine.install_root_file(SYSCTL_PATH, render_sysctl())
    machine.sudo(['sysctl', '-w', 'net.ipv4.conf.all.route_localnet=1'])
    machine.sudo(['sysctl', '-w', f'net.ipv4.conf.{WG_INTERFACE}.route_localnet=1'])
    machine.sudo(['sysctl', '--system'])
    machine.install_root_file(NFT_PATH, render_nft_rules())
    machine.install_root_file(REDIRECT_SERVICE_PATH, render_redirect_service(nft_binary))
    machine.sudo(['systemctl', 'daemon-reload'])
    machine.sudo(['systemctl', 'enable', '--now', REDIRECT_SERVICE])
    try:
        machine.sudo(['systemctl', 'is-active', '--quiet', REDIRECT_SERVICE])
    except CommandFailed as e:
        raise ServiceError(
            f"{REDIRECT_SERVICE} is not active: {e}\n"
            f"{service_report(machine, REDIRECT_SERVICE)}") from e


def service_report(machine: Machine, service: str) -> str:
    parts = []
    for label, args in [
            ('status', ['systemctl', 'status', '--no-pager', '-l', service]),
            ('journal', ['journalctl', '-u', service, '-b', '--no-pager', '-n', '120']),
            ]:
        try:
            parts.append(f"{label}:\n{machine.sudo(args)}")
        except CommandFailed as e:
            parts.append(f"{label}:\n{e.output}")
    return '\n\n'.join(parts)
