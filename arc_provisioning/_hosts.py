# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import ipaddress
import logging
import socket

from arc_provisioning._errors import ValidationError
from arc_provisioning._machine import Machine
from arc_provisioning._managed_text import upsert_host_aliases
from arc_provisioning._wireguard_config import SERVER_IP

_logger = logging.getLogger(__name__)

TUNNEL_ALIAS = 'remotehost'
PUBLIC_ALIAS = 'pub.remotehost'


def resolve_host(host: str) -> str:
    """Resolve to an address, preferring IPv4 to keep /etc/hosts simple."""
    host = host.strip()
    if not host:
        raise ValidationError("Host is empty")
    try:
        return str(ipaddress.ip_address(host))
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    except socket.gaierror as e:
        raise ValidationError(f"DNS lookup failed for {host!r}: {e}")
    addresses = [info[4][0] for info in infos]
    if not addresses:
        raise ValidationError(f"DNS lookup returned no addresses for {host!r}")
    for family, *_, sockaddr in infos:
        if family == socket.AF_INET:
            return sockaddr[0]
    return addresses[0]


def ensure_host_aliases(machine: Machine, public_host: str):
    aliases = {
        TUNNEL_ALIAS: SERVER_IP,
        PUBLIC_ALIAS: resolve_host(public_host),
        }
    content = machine.read_root_file('/etc/hosts')
    updated, changed = upsert_host_aliases(content, aliases)
    if not changed:
        _logger.info("/etc/hosts already has %s", ', '.join(aliases))
        return
    machine.install_root_file('/etc/hosts', updated, mode='0644')
