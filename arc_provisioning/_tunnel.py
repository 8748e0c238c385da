# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from abc import ABCMeta
from abc import abstractmethod
from typing import Callable
from typing import Optional
from typing import Sequence

from arc_access import AuthenticationError
from arc_access import CommandFailed
from arc_access import LocalShell
from arc_access import Ssh
from arc_access import command_to_script
from arc_access import local_shell
from arc_provisioning._errors import TunnelDriftError
from arc_provisioning._errors import WireGuardConfigError
from arc_provisioning._wireguard_config import CLIENT_ADDRESS
from arc_provisioning._wireguard_config import KEEPALIVE_SEC
from arc_provisioning._wireguard_config import SERVER_ADDRESS
from arc_provisioning._wireguard_config import WG_INTERFACE
from arc_provisioning._wireguard_config import parse_private_key
from arc_provisioning._wireguard_config import patch_peer
from arc_provisioning._wireguard_keys import public_key_from_private

_logger = logging.getLogger(__name__)

WG_SERVICE = f'wg-quick@{WG_INTERFACE}'
WG_CONFIG_PATH = f'/etc/wireguard/{WG_INTERFACE}.conf'


class TunnelEnd(metaclass=ABCMeta):
    """One machine of the tunnel, managed with non-interactive sudo."""

    @abstractmethod
    def _sudo(self, args: Sequence[str], input: Optional[str] = None) -> str:  # noqa PyShadowingBuiltins
        pass

    def read_config(self) -> str:
        try:
            return self._sudo(['cat', WG_CONFIG_PATH])
        except CommandFailed as e:
            _logger.warning("%r: cannot read %s, dump live config: %s", self, WG_CONFIG_PATH, e)
        return self._sudo(['wg', 'showconf', WG_INTERFACE])

    def install_config(self, text: str):
        if not text.endswith('\n'):
            text += '\n'
        self._sudo(['install', '-d', '-m', '0700', '/etc/wireguard'])
        self._sudo(['install', '-m', '0600', '/dev/stdin', WG_CONFIG_PATH], input=text)

    def stop(self):
        try:
            self._sudo(['systemctl', 'stop', WG_SERVICE])
        except CommandFailed as e:
            _logger.info("%r: %s was not stopped: %s", self, WG_SERVICE, e)

    def enable(self):
        self._sudo(['systemctl', 'enable', WG_SERVICE])

    def restart(self):
        self._sudo(['systemctl', 'restart', WG_SERVICE])
        self._sudo(['systemctl', 'is-active', '--quiet', WG_SERVICE])

    def service_report(self) -> str:
        return self._collect([
            ('status', ['systemctl', 'status', '--no-pager', '-l', WG_SERVICE]),
            ('journal', ['journalctl', '-u', WG_SERVICE, '-b', '--no-pager', '-n', '120']),
            ])

    def diagnostics(self) -> str:
        return self._collect([
            ('wg show', ['wg', 'show', WG_INTERFACE]),
            ('latest-handshakes', ['wg', 'show', WG_INTERFACE, 'latest-handshakes']),
            ('endpoints', ['wg', 'show', WG_INTERFACE, 'endpoints']),
            ('transfer', ['wg', 'show', WG_INTERFACE, 'transfer']),
            ])

    def _collect(self, commands):
        parts = []
        for label, args in commands:
            try:
                output = self._sudo(args)
            except (CommandFailed, AuthenticationError) as e:
                parts.append(f"{label}: (error: {e})")
            else:
                parts.append(f"{label}:\n{output or '(empty)'}")
        return '\n\n'.join(parts)


class LocalTunnelEnd(TunnelEnd):

    def __init__(self, shell: LocalShell = local_shell):
        self._shell = shell

    def __repr__(self):
        return '<LocalTunnelEnd>'

    def _sudo(self, args, input=None):  # noqa PyShadowingBuiltins
        return self._shell.sudo(*args, input=input)


class RemoteTunnelEnd(TunnelEnd):

    def __init__(self, ssh: Ssh):
        self._ssh = ssh

    def __repr__(self):
        return f'<RemoteTunnelEnd {self._ssh.netloc()}>'

    def _sudo(self, args, input=None):  # noqa PyShadowingBuiltins
        return self._ssh.run('sudo -n ' + command_to_script(args), input=input)


def sync_peer_keys(local: TunnelEnd, remote: TunnelEnd, endpoint: str) -> bool:
    """Point each peer at the public key derived from the other's private key.

    Stored public keys are not trusted: they are what went stale.
    Nothing is installed or restarted when both peers are already right.
    """
    remote_conf = remote.read_config()
    local_conf = local.read_config()
    try:
        remote_public_key = public_key_from_private(parse_private_key(remote_conf))
    except WireGuardConfigError as e:
        raise WireGuardConfigError(f"Remote {WG_CONFIG_PATH}: {e}") from e
    try:
        local_public_key = public_key_from_private(parse_private_key(local_conf))
    except WireGuardConfigError as e:
        raise WireGuardConfigError(f"Local {WG_CONFIG_PATH}: {e}") from e
    local_patched, local_changed = patch_peer(
        local_conf, SERVER_ADDRESS, remote_public_key, endpoint, KEEPALIVE_SEC)
    remote_patched, remote_changed = patch_peer(
        remote_conf, CLIENT_ADDRESS, local_public_key)
    if not local_changed and not remote_changed:
        _logger.info("Peer keys match on both ends")
        return False
    _logger.warning(
        "Peer keys drifted (local changed: %s, remote changed: %s); reinstall both ends",
        local_changed, remote_changed)
    local.install_config(local_patched)
    remote.install_config(remote_patched)
    local.restart()
    remote.restart()
    return True


def verify_tunnel(
        local: TunnelEnd,
        remote: TunnelEnd,
        endpoint: str,
        ping: Callable[[], object],
        ):
    """Ping once; on failure sync the peer keys once and ping again.

    There is no retry loop: a firewall or routing problem must surface
    instead of being retried forever.
    """
    try:
        ping()
    except CommandFailed as e:
        probe_error = str(e)
    else:
        return
    _logger.warning("Tunnel ping failed, try to repair peer keys: %s", probe_error)
    try:
        changed = sync_peer_keys(local, remote, endpoint)
    except (CommandFailed, AuthenticationError, WireGuardConfigError) as e:
        repair_error = f"Cannot sync peer keys: {e}"
    else:
        if not changed:
            repair_error = "Peer keys already match on both ends"
        else:
            try:
                ping()
            except CommandFailed as e:
                repair_error = f"Peer keys synced, ping still fails: {e}"
            else:
                _logger.warning("Tunnel repaired by syncing peer keys")
                return
    raise TunnelDriftError(probe_error, repair_error, local.diagnostics(), remote.diagnostics())
