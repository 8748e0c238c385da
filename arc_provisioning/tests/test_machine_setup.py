# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest

from arc_access import LocalCommandError
from arc_provisioning._errors import NfsMountError
from arc_provisioning._errors import PackageInstallError
from arc_provisioning._errors import ServiceError
from arc_provisioning._errors import UnsupportedPlatformError
from arc_provisioning._firewall import NFT_PATH
from arc_provisioning._firewall import REDIRECT_SERVICE_PATH
from arc_provisioning._firewall import SYSCTL_PATH
from arc_provisioning._firewall import apply_redirect
from arc_provisioning._firewall import open_wireguard_port
from arc_provisioning._hosts import ensure_host_aliases
from arc_provisioning._machine import Machine
from arc_provisioning._nfs import EXPORTS_FILE
from arc_provisioning._nfs import configure_automount
from arc_provisioning._nfs import export_home
from arc_provisioning._nfs import render_exports
from arc_provisioning._nfs import render_fstab_line
from arc_provisioning._nfs import verify_mount
from arc_provisioning._os_release import LOCAL_SUPPORTED
from arc_provisioning._os_release import REMOTE_SUPPORTED
from arc_provisioning._os_release import detect_os_id
from arc_provisioning._packages import install_wireguard


def _failure(command, output=''):
    return LocalCommandError(1, command, output)


class _FakeMachine(Machine):
    """Answers commands from a script; keeps installed files in memory.

    A scripted answer is a string, an exception to raise or a list of
    those consumed one per call. Unscripted commands succeed silently.
    """

    name = 'fake'

    def __init__(self, script=None, files=None):
        self._script = dict(script or {})
        self.files = dict(files or {})
        self.commands = []

    def __repr__(self):
        return '<_FakeMachine>'

    def run(self, args, input=None, strip=True):  # noqa PyShadowingBuiltins
        return self._answer(list(args), input, strip)

    def sudo(self, args, input=None, strip=True):  # noqa PyShadowingBuiltins
        return self._answer(list(args), input, strip)

    def _answer(self, args, input, strip):  # noqa PyShadowingBuiltins
        self.commands.append(' '.join(args))
        if args[0] == 'cat' and args[1] in self.files:
            content = self.files[args[1]]
            return content.strip() if strip else content
        if args[0] == 'install' and args[-2] == '/dev/stdin':
            self.files[args[-1]] = input
            return ''
        answer = self._script.get(' '.join(args), '')
        if isinstance(answer, list):
            answer = answer.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


class TestOsDetection(unittest.TestCase):

    def test_supported(self):
        machine = _FakeMachine(files={'/etc/os-release': 'NAME="Ubuntu"\nID=ubuntu\n'})
        self.assertEqual(detect_os_id(machine, REMOTE_SUPPORTED), 'ubuntu')

    def test_unsupported_remote(self):
        machine = _FakeMachine(files={'/etc/os-release': 'ID="arch"\n'})
        self.assertEqual(detect_os_id(machine, LOCAL_SUPPORTED), 'arch')
        with self.assertRaises(UnsupportedPlatformError) as context:
            detect_os_id(machine, REMOTE_SUPPORTED)
        self.assertEqual(context.exception.os_id, 'arch')


class TestInstallWireGuard(unittest.TestCase):

    def test_apt(self):
        machine = _FakeMachine()
        install_wireguard(machine, 'debian')
        self.assertEqual(machine.commands, [
            'apt-get update',
            'env DEBIAN_FRONTEND=noninteractive apt-get install -y wireguard wireguard-tools',
            'modprobe wireguard',
            ])

    def test_pacman_kernel_support_missing(self):
        machine = _FakeMachine({
            'modprobe wireguard': _failure('modprobe wireguard', "FATAL: Module wireguard not found"),
            'uname -r': '6.6.11-1-MANJARO',
            'cat /usr/lib/modules/6.6.11-1-MANJARO/pkgbase': _failure('cat', "No such file"),
            })
        with self.assertRaises(PackageInstallError) as context:
            install_wireguard(machine, 'manjaro')
        self.assertEqual(machine.commands[0], 'pacman -Sy --noconfirm --needed wireguard-tools')
        self.assertIn('pacman -Sy --noconfirm linux66-headers', machine.commands)
        self.assertNotIn('pacman -Sy --noconfirm linux-headers', machine.commands)
        self.assertIn('$ sudo -n depmod -a', context.exception.install_log)

    def test_dkms_fixes_module(self):
        machine = _FakeMachine({
            'modprobe wireguard': [_failure('modprobe wireguard'), ''],
            'uname -r': '5.4.0-42-generic',
            'apt-get install -y linux-modules-extra-5.4.0-42-generic': _failure('apt-get', "Unable to locate package"),
            })
        install_wireguard(machine, 'ubuntu')
        self.assertIn('apt-get install -y wireguard-dkms linux-headers-5.4.0-42-generic', machine.commands)
        self.assertEqual(machine.commands[-1], 'modprobe wireguard')


class TestFirewall(unittest.TestCase):

    def test_ufw_absent(self):
        machine = _FakeMachine({'sh -c command -v ufw': _failure('sh')})
        open_wireguard_port(machine)
        self.assertEqual(machine.commands, ['sh -c command -v ufw'])

    def test_ufw_inactive(self):
        machine = _FakeMachine({'ufw status': 'Status: inactive'})
        open_wireguard_port(machine)
        self.assertNotIn('ufw allow 51820/udp', machine.commands)

    def test_ufw_active(self):
        machine = _FakeMachine({'ufw status': 'Status: active'})
        open_wireguard_port(machine)
        self.assertIn('ufw allow 51820/udp', machine.commands)

    def test_redirect(self):
        machine = _FakeMachine({'sh -c command -v nft': '/usr/sbin/nft'})
        apply_redirect(machine, 'ubuntu')
        self.assertIn('iifname "wg0" ip daddr 10.0.0.1 dnat to 127.0.0.1', machine.files[NFT_PATH])
        self.assertIn('ExecStart=/usr/sbin/nft -f ' + NFT_PATH, machine.files[REDIRECT_SERVICE_PATH])
        self.assertIn('net.ipv4.conf.wg0.route_localnet=1', machine.files[SYSCTL_PATH])
        self.assertEqual(machine.commands[-2], 'systemctl enable --now arc-lh-redirect-nftable.service')

    def test_redirect_service_failed(self):
        machine = _FakeMachine({
            'sh -c command -v nft': _failure('sh'),
            'test -x /usr/bin/nft': '',
            'test -x /usr/sbin/nft': _failure('test'),
            'systemctl is-active --quiet arc-lh-redirect-nftable.service': _failure('systemctl'),
            'systemctl status --no-pager -l arc-lh-redirect-nftable.service': "Active: failed",
            })
        with self.assertRaises(ServiceError) as context:
            apply_redirect(machine, 'debian')
        self.assertIn('Active: failed', str(context.exception))
        self.assertIn('ExecStart=/usr/bin/nft -f', machine.files[REDIRECT_SERVICE_PATH])


class TestNfsServer(unittest.TestCase):

    def test_exports(self):
        self.assertEqual(
            render_exports('1001', '1001\n'),
            '/home/arc 10.0.0.2/32(rw,sync,all_squash,no_subtree_check,anonuid=1001,anongid=1001,sec=sys)\n')

    def test_export_home(self):
        machine = _FakeMachine({
            'id -u arc': '1001',
            'id -g arc': '1002',
            'systemctl cat nfs-server.service': _failure('systemctl'),
            'sh -c command -v ufw': _failure('sh'),
            })
        export_home(machine)
        self.assertIn('anonuid=1001,anongid=1002', machine.files[EXPORTS_FILE])
        self.assertIn('exportfs -ra', machine.commands)
        self.assertIn('systemctl enable --now nfs-kernel-server', machine.commands)

    def test_export_opened_on_tunnel_only(self):
        machine = _FakeMachine({
            'id -u arc': '1001',
            'id -g arc': '1001',
            'ufw status': 'Status: active',
            })
        export_home(machine)
        self.assertIn('systemctl enable --now nfs-server', machine.commands)
        self.assertIn('ufw allow in on wg0 proto tcp from 10.0.0.2 to any port 2049', machine.commands)

    def test_unknown_arc_user(self):
        machine = _FakeMachine({'id -u arc': ''})
        self.assertRaises(NfsMountError, export_home, machine)


class TestNfsClient(unittest.TestCase):

    def test_fstab_line(self):
        fields = render_fstab_line().split()
        self.assertEqual(len(fields), 6)
        self.assertEqual(fields[:3], ['10.0.0.1:/home/arc', '/home/arc', 'nfs4'])
        options = fields[3].split(',')
        for option in 'noauto', 'x-systemd.automount', '_netdev', 'nofail', 'nfsvers=4.2', 'soft':
            self.assertIn(option, options)
        self.assertEqual(fields[4:], ['0', '0'])

    def test_automount_fresh(self):
        machine = _FakeMachine(
            {
                'findmnt -n -o SOURCE,FSTYPE -M /home/arc': _failure('findmnt'),
                'test -e /home/arc': _failure('test'),
                },
            files={'/etc/fstab': 'UUID=abc / ext4 defaults 0 1\n'},
            )
        configure_automount(machine)
        self.assertIn('install -d -m 0755 /home/arc', machine.commands)
        self.assertEqual(
            machine.files['/etc/fstab'],
            'UUID=abc / ext4 defaults 0 1\n' + render_fstab_line() + '\n')
        self.assertEqual(machine.commands[-1], 'systemctl restart home-arc.automount')

    def test_automount_rerun_keeps_fstab(self):
        fstab = 'UUID=abc / ext4 defaults 0 1\n' + render_fstab_line() + '\n'
        machine = _FakeMachine(
            {'findmnt -n -o SOURCE,FSTYPE -M /home/arc': 'systemd-1 autofs\n10.0.0.1:/home/arc nfs4'},
            files={'/etc/fstab': fstab},
            )
        configure_automount(machine)
        self.assertFalse(any(c.startswith('install') for c in machine.commands))

    def test_foreign_mount(self):
        machine = _FakeMachine({'findmnt -n -o SOURCE,FSTYPE -M /home/arc': '/dev/sdb1 ext4'})
        self.assertRaises(NfsMountError, configure_automount, machine)

    def test_existing_data(self):
        machine = _FakeMachine({
            'findmnt -n -o SOURCE,FSTYPE -M /home/arc': _failure('findmnt'),
            'ls -A /home/arc': 'notes.txt',
            })
        with self.assertRaises(NfsMountError) as context:
            configure_automount(machine)
        self.assertIn('not empty', str(context.exception))

    def test_restart_falls_back_to_start(self):
        machine = _FakeMachine({
            'findmnt -n -o SOURCE,FSTYPE -M /home/arc': _failure('findmnt'),
            'systemctl restart home-arc.automount': _failure('systemctl'),
            })
        configure_automount(machine)
        self.assertEqual(machine.commands[-1], 'systemctl start home-arc.automount')

    def test_verify_with_backoff(self):
        machine = _FakeMachine({
            'findmnt -n -t nfs4 -o SOURCE,TARGET -T /home/arc': [
                _failure('findmnt'),
                'systemd-1 /home/arc',
                '10.0.0.1:/home/arc /home/arc',
                ],
            })
        sleeps = []
        verify_mount(machine, attempts=5, sleep=sleeps.append)
        self.assertEqual(sleeps, [1, 2])

    def test_verify_gives_up(self):
        machine = _FakeMachine({
            'findmnt -n -t nfs4 -o SOURCE,TARGET -T /home/arc': _failure('findmnt'),
            })
        sleeps = []
        with self.assertRaises(NfsMountError) as context:
            verify_mount(machine, attempts=3, sleep=sleeps.append)
        self.assertEqual(sleeps, [1, 2])
        self.assertIn('after 3 attempts', str(context.exception))


class TestHostAliases(unittest.TestCase):

    def test_aliases_added_once(self):
        machine = _FakeMachine(files={'/etc/hosts': '127.0.0.1\tlocalhost\n'})
        ensure_host_aliases(machine, '203.0.113.7')
        self.assertEqual(
            machine.files['/etc/hosts'],
            '127.0.0.1\tlocalhost\n10.0.0.1\tremotehost\n203.0.113.7\tpub.remotehost\n')
        installs = [c for c in machine.commands if c.startswith('install')]
        ensure_host_aliases(machine, '203.0.113.7')
        self.assertEqual([c for c in machine.commands if c.startswith('install')], installs)

    def test_leading_blank_line_and_indent_kept(self):
        machine = _FakeMachine(files={'/etc/hosts': '\n  127.0.0.1\tlocalhost\n'})
        ensure_host_aliases(machine, '203.0.113.7')
        self.assertEqual(
            machine.files['/etc/hosts'],
            '\n  127.0.0.1\tlocalhost\n10.0.0.1\tremotehost\n203.0.113.7\tpub.remotehost\n')


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s %(levelname)s %(message)s')
    unittest.main()
