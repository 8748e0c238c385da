# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from typing import List
from typing import NamedTuple
from typing import Optional
from typing import Sequence
from typing import Tuple

from arc_provisioning._errors import ValidationError
from arc_provisioning._errors import WireGuardConfigError
from arc_provisioning._wireguard_keys import generate_key_pair

_logger = logging.getLogger(__name__)

WG_INTERFACE = 'wg0'
WG_PORT = 51820
SERVER_IP = '10.0.0.1'
CLIENT_IP = '10.0.0.2'
SERVER_ADDRESS = SERVER_IP + '/32'
CLIENT_ADDRESS = CLIENT_IP + '/32'
KEEPALIVE_SEC = '25'


class TunnelConfig(NamedTuple):
    server_private_key: str = ''
    server_public_key: str = ''
    client_private_key: str = ''
    client_public_key: str = ''
    server_conf: str = ''
    client_conf: str = ''
    endpoint: str = ''

    @classmethod
    def empty(cls) -> 'TunnelConfig':
        return cls()

    def is_built(self) -> bool:
        return bool(self.endpoint)


def build_tunnel_config(endpoint_host: str) -> TunnelConfig:
    """Generate both key pairs and render both ends of the tunnel.

    The remote host is the server: it listens and knows nothing about the
    client endpoint. The local host is the client: it dials the endpoint
    and keeps the NAT mapping alive.
    """
    host = endpoint_host.strip()
    if not host:
        raise ValidationError("Missing host for WireGuard endpoint")
    server_private_key, server_public_key = generate_key_pair()
    client_private_key, client_public_key = generate_key_pair()
    if ':' in host:
        endpoint = f'[{host}]:{WG_PORT}'
    else:
        endpoint = f'{host}:{WG_PORT}'
    server_conf = '\n'.join([
        '[Interface]',
        'Address = ' + SERVER_ADDRESS,
        f'ListenPort = {WG_PORT}',
        'PrivateKey = ' + server_private_key,
        '',
        '[Peer]',
        'PublicKey = ' + client_public_key,
        'AllowedIPs = ' + CLIENT_ADDRESS,
        '',
        ])
    client_conf = '\n'.join([
        '[Interface]',
        'Address = ' + CLIENT_ADDRESS,
        'PrivateKey = ' + client_private_key,
        '',
        '[Peer]',
        'PublicKey = ' + server_public_key,
        'Endpoint = ' + endpoint,
        'AllowedIPs = ' + SERVER_ADDRESS,
        'PersistentKeepalive = ' + KEEPALIVE_SEC,
        '',
        ])
    return TunnelConfig(
        server_private_key=server_private_key,
        server_public_key=server_public_key,
        client_private_key=client_private_key,
        client_public_key=client_public_key,
        server_conf=server_conf,
        client_conf=client_conf,
        endpoint=endpoint,
        )


def _key_value(line: str) -> Optional[Tuple[str, str]]:
    stripped = line.strip()
    if not stripped or stripped.startswith(('#', ';')):
        return None
    key, sep, value = stripped.partition('=')
    if not sep:
        return None
    return key.strip(), value.strip()


class _Section:

    def __init__(self, header: str):
        self.header = header
        self.lines: List[str] = []

    def __repr__(self):
        return f'<_Section {self.header.strip()}>'

    def is_named(self, name: str) -> bool:
        return self.header.strip()[1:-1].strip().lower() == name.lower()

    def get(self, key: str) -> Optional[str]:
        for line in self.lines:
            key_value = _key_value(line)
            if key_value is not None and key_value[0].lower() == key.lower():
                return key_value[1]
        return None

    def replace(self, key: str, value: str):
        for i, line in enumerate(self.lines):
            key_value = _key_value(line)
            if key_value is not None and key_value[0].lower() == key.lower():
                self.lines[i] = f'{key} = {value}'

    def insert_first(self, fields: Sequence[Tuple[str, str]]):
        self.lines[0:0] = [f'{key} = {value}' for key, value in fields]


class WireGuardConfig:
    """Preamble and sections, each kept as raw lines.

    Untouched lines are rendered back byte-for-byte.

    >>> text = '# wg0\\n[Interface]\\nPrivateKey = a\\n\\n[Peer]\\nPublicKey = b\\n'
    >>> WireGuardConfig.parse(text).render() == text
    True
    """

    def __init__(self, preamble: List[str], sections: List[_Section]):
        self._preamble = preamble
        self._sections = sections

    @classmethod
    def parse(cls, text: str) -> 'WireGuardConfig':
        preamble = []
        sections = []
        for line in text.split('\n'):
            stripped = line.strip()
            if stripped.startswith('[') and stripped.endswith(']'):
                sections.append(_Section(line))
            elif sections:
                sections[-1].lines.append(line)
            else:
                preamble.append(line)
        return cls(preamble, sections)

    def render(self) -> str:
        lines = list(self._preamble)
        for section in self._sections:
            lines.append(section.header)
            lines.extend(section.lines)
        return '\n'.join(lines)

    def sections(self, name: str) -> List[_Section]:
        return [s for s in self._sections if s.is_named(name)]


def parse_private_key(text: str) -> str:
    for interface in WireGuardConfig.parse(text).sections('Interface'):
        private_key = interface.get('PrivateKey')
        if private_key:
            return private_key
    raise WireGuardConfigError("WireGuard config has no [Interface] PrivateKey")


def _allowed_ips(peer: _Section) -> List[str]:
    return [part.strip() for part in (peer.get('AllowedIPs') or '').split(',')]


def patch_peer(
        text: str,
        allowed_ip: str,
        public_key: str,
        endpoint: str = '',
        keepalive: str = '',
        ) -> Tuple[str, bool]:
    """Point the peer that routes allowed_ip to the given key and endpoint.

    Only the selected [Peer] section is touched. Values are compared,
    not lines, so spacing differences are not changes. Missing fields are
    inserted right after the [Peer] header.
    """
    config = WireGuardConfig.parse(text)
    peers = config.sections('Peer')
    if not peers:
        raise WireGuardConfigError("WireGuard config has no [Peer] section")
    allowed_ip = allowed_ip.strip()
    for peer in peers:
        if allowed_ip and allowed_ip in _allowed_ips(peer):
            break
    else:
        peer = peers[0]
        _logger.warning(
            "No [Peer] routes %s among %d peer(s); patch the first one", allowed_ip, len(peers))
    wanted = [('PublicKey', public_key.strip())]
    if allowed_ip and allowed_ip not in _allowed_ips(peer):
        wanted.append(('AllowedIPs', allowed_ip))
    if endpoint.strip():
        wanted.append(('Endpoint', endpoint.strip()))
    if keepalive.strip():
        wanted.append(('PersistentKeepalive', keepalive.strip()))
    missing = []
    changed = False
    for key, value in wanted:
        current = peer.get(key)
        if current is None:
            missing.append((key, value))
            changed = True
        elif current != value:
            peer.replace(key, value)
            changed = True
    peer.insert_first(missing)
    return config.render(), changed
