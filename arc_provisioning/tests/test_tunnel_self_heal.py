# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest

import paramiko

from arc_access import LocalCommandError
from arc_access import RemoteCommandError
from arc_access import Ssh
from arc_provisioning._errors import TunnelDriftError
from arc_provisioning._tunnel import WG_CONFIG_PATH
from arc_provisioning._tunnel import RemoteTunnelEnd
from arc_provisioning._tunnel import TunnelEnd
from arc_provisioning._tunnel import sync_peer_keys
from arc_provisioning._tunnel import verify_tunnel
from arc_provisioning._wireguard_config import build_tunnel_config
from arc_provisioning._wireguard_config import parse_private_key
from arc_provisioning._wireguard_keys import generate_key_pair
from arc_provisioning._wireguard_keys import public_key_from_private


class _FakeTunnelEnd(TunnelEnd):
    """Keeps wg0.conf in memory and records privileged commands."""

    def __init__(self, name, config):
        self._name = name
        self.config = config
        self.commands = []
        self.installed = 0
        self.restarted = 0

    def __repr__(self):
        return f'<_FakeTunnelEnd {self._name}>'

    def _sudo(self, args, input=None):  # noqa PyShadowingBuiltins
        self.commands.append(list(args))
        if args == ['cat', WG_CONFIG_PATH]:
            if self.config is None:
                raise RemoteCommandError(self._name, 1, 'cat', "No such file or directory")
            return self.config
        if args[:1] == ['install'] and args[-1] == WG_CONFIG_PATH:
            self.config = input
            self.installed += 1
            return ''
        if args[:2] == ['systemctl', 'restart']:
            self.restarted += 1
            return ''
        if args[:1] == ['wg']:
            return f"interface: wg0 on {self._name}"
        return ''


class _Network:
    """Ping passes when each peer knows the public key of the other."""

    def __init__(self, local: _FakeTunnelEnd, remote: _FakeTunnelEnd, blocked=False):
        self._local = local
        self._remote = remote
        self._blocked = blocked
        self.pings = 0

    def ping(self):
        self.pings += 1
        if self._blocked or not self._keys_match():
            raise LocalCommandError(1, 'ping -c 1 10.0.0.1', "1 packets transmitted, 0 received")

    def _keys_match(self):
        local_public = public_key_from_private(parse_private_key(self._local.config))
        remote_public = public_key_from_private(parse_private_key(self._remote.config))
        return (
            'PublicKey = ' + remote_public in self._local.config and
            'PublicKey = ' + local_public in self._remote.config)


class TestTunnelSelfHeal(unittest.TestCase):

    def setUp(self):
        self._tunnel = build_tunnel_config('203.0.113.7')
        self._local = _FakeTunnelEnd('local', self._tunnel.client_conf)
        self._remote = _FakeTunnelEnd('remote', self._tunnel.server_conf)

    def _drift_remote(self):
        # Remote was rewritten by a later run that never reached the local end.
        newer = build_tunnel_config('203.0.113.7')
        self._remote.config = newer.server_conf

    def test_healthy_tunnel_not_touched(self):
        network = _Network(self._local, self._remote)
        verify_tunnel(self._local, self._remote, self._tunnel.endpoint, network.ping)
        self.assertEqual(network.pings, 1)
        self.assertEqual(self._local.installed + self._remote.installed, 0)
        self.assertEqual(self._local.commands, [])

    def test_drift_repaired(self):
        self._drift_remote()
        remote_private_key = parse_private_key(self._remote.config)
        network = _Network(self._local, self._remote)
        with self.assertLogs('arc_provisioning._tunnel', logging.WARNING):
            verify_tunnel(self._local, self._remote, self._tunnel.endpoint, network.ping)
        self.assertEqual(network.pings, 2)
        self.assertEqual(self._local.installed, 1)
        self.assertEqual(self._remote.installed, 1)
        self.assertEqual(self._local.restarted, 1)
        self.assertEqual(self._remote.restarted, 1)
        # Private keys are never regenerated by the repair.
        self.assertEqual(parse_private_key(self._remote.config), remote_private_key)
        self.assertEqual(parse_private_key(self._local.config), self._tunnel.client_private_key)

    def test_blocked_network_reported_with_diagnostics(self):
        self._drift_remote()
        network = _Network(self._local, self._remote, blocked=True)
        with self.assertRaises(TunnelDriftError) as context:
            verify_tunnel(self._local, self._remote, self._tunnel.endpoint, network.ping)
        self.assertEqual(network.pings, 2)
        self.assertIn('ping still fails', context.exception.repair_error)
        self.assertIn('interface: wg0 on local', context.exception.local_diagnostics)
        self.assertIn('interface: wg0 on remote', context.exception.remote_diagnostics)
        self.assertIn('0 received', str(context.exception))

    def test_keys_already_match_no_second_ping(self):
        network = _Network(self._local, self._remote, blocked=True)
        with self.assertRaises(TunnelDriftError) as context:
            verify_tunnel(self._local, self._remote, self._tunnel.endpoint, network.ping)
        self.assertEqual(network.pings, 1)
        self.assertEqual(context.exception.repair_error, "Peer keys already match on both ends")
        self.assertEqual(self._local.installed + self._remote.installed, 0)

    def test_unreadable_config_reported(self):
        self._remote.config = '[Interface]\nAddress = 10.0.0.1/32\n[Peer]\nPublicKey = x=\n'
        network = _Network(self._local, self._remote, blocked=True)
        with self.assertRaises(TunnelDriftError) as context:
            verify_tunnel(self._local, self._remote, self._tunnel.endpoint, network.ping)
        self.assertIn('Cannot sync peer keys', context.exception.repair_error)
        self.assertIn('Remote', context.exception.repair_error)

    def test_sync_without_config_file_uses_live_config(self):
        live = self._tunnel.server_conf
        remote = _LiveOnlyTunnelEnd(live)
        changed = sync_peer_keys(self._local, remote, self._tunnel.endpoint)
        self.assertFalse(changed)
        self.assertIn(['wg', 'showconf', 'wg0'], remote.commands)

    def test_sync_points_local_at_remote_key(self):
        _private, unrelated_public = generate_key_pair()
        self._local.config = self._local.config.replace(self._tunnel.server_public_key, unrelated_public)
        self.assertTrue(sync_peer_keys(self._local, self._remote, self._tunnel.endpoint))
        self.assertIn('PublicKey = ' + self._tunnel.server_public_key, self._local.config)
        self.assertEqual(self._remote.config, self._tunnel.server_conf)

    def test_lost_remote_session_reported_with_diagnostics(self):
        remote = RemoteTunnelEnd(_DroppedSsh())
        network = _Network(self._local, self._remote, blocked=True)
        with self.assertRaises(TunnelDriftError) as context:
            verify_tunnel(self._local, remote, self._tunnel.endpoint, network.ping)
        self.assertIn('Tunnel ping failed: Command', str(context.exception))
        self.assertIn('0 received', str(context.exception))
        self.assertIn('Cannot sync peer keys', context.exception.repair_error)
        self.assertIn('SSH session not active', context.exception.repair_error)
        self.assertIn('interface: wg0 on local', context.exception.local_diagnostics)
        self.assertIn('203.0.113.7:22', context.exception.remote_diagnostics)


class _LiveOnlyTunnelEnd(_FakeTunnelEnd):

    def __init__(self, live_config):
        super().__init__('remote', None)
        self._live_config = live_config

    def _sudo(self, args, input=None):  # noqa PyShadowingBuiltins
        if args == ['wg', 'showconf', 'wg0']:
            self.commands.append(list(args))
            return self._live_config
        return super()._sudo(args, input)


class _DroppedTransport:

    def is_active(self):
        return True

    def open_session(self, timeout=None):
        raise paramiko.SSHException("SSH session not active")


class _DroppedClient:

    def get_transport(self):
        return _DroppedTransport()

    def close(self):
        pass


class _DroppedSsh(Ssh):
    """Connected once; every channel fails to open since."""

    def __init__(self):
        super().__init__('203.0.113.7', 22, 'arc', password='secret')

    def _client(self):
        return _DroppedClient()


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s %(levelname)s %(message)s')
    unittest.main()
